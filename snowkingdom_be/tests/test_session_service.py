import threading
import unittest
from decimal import Decimal

import pytest

from snowkingdom_be.services.session_service import SessionState, SessionStore


class TestSessionStore(unittest.TestCase):

    def setUp(self):
        self.store = SessionStore(default_balance=Decimal('1000.00'), default_game_id="SnowKingdom")

    def test_created_on_first_reference(self):
        self.assertIsNone(self.store.get("abc"))
        state = self.store.get_or_create("abc")
        self.assertEqual(state.balance, Decimal('1000.00'))
        self.assertEqual(state.game_id, "SnowKingdom")
        self.assertEqual(state.free_spins_remaining, 0)
        self.assertIsNone(state.mystery_trigger)
        self.assertIs(self.store.get("abc"), state)
        self.assertIs(self.store.get_or_create("abc"), state)

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.store.get("nope"))

    def test_save_replaces_snapshot(self):
        state = self.store.get_or_create("abc").evolve(balance=Decimal('5.00'))
        self.store.save("abc", state)
        self.assertEqual(self.store.get("abc").balance, Decimal('5.00'))

    def test_save_rejects_other_types(self):
        with self.assertRaises(TypeError):
            self.store.save("abc", {'balance': 1})

    def test_reset_restores_defaults_and_keeps_game(self):
        self.store.save("abc", SessionState(balance=Decimal('3.00'), free_spins_remaining=4,
                                            feature_symbol="Queen", game_id="OtherGame"))
        state = self.store.reset("abc")
        self.assertEqual(state.balance, Decimal('1000.00'))
        self.assertEqual(state.free_spins_remaining, 0)
        self.assertIsNone(state.feature_symbol)
        self.assertEqual(state.game_id, "OtherGame")

    def test_reset_unknown_session_creates_it(self):
        state = self.store.reset("fresh")
        self.assertEqual(state.game_id, "SnowKingdom")
        self.assertIs(self.store.get("fresh"), state)

    def test_snapshots_are_immutable(self):
        state = self.store.get_or_create("abc")
        with self.assertRaises(AttributeError):
            state.balance = Decimal('1.00')
        changed = state.evolve(balance=Decimal('1.00'))
        self.assertEqual(state.balance, Decimal('1000.00'))
        self.assertEqual(changed.balance, Decimal('1.00'))


def test_locked_cycles_do_not_interleave():
    store = SessionStore(default_balance=Decimal('0.00'))
    store.get_or_create("shared")

    def deposit_many():
        for _ in range(200):
            with store.locked("shared"):
                state = store.get("shared")
                store.save("shared", state.evolve(balance=state.balance + Decimal('0.01')))

    threads = [threading.Thread(target=deposit_many) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("shared").balance == Decimal('16.00')


@pytest.mark.parametrize("free_spins, expected", [(0, False), (1, True), (10, True)])
def test_in_free_spin_round(free_spins, expected):
    assert SessionState(balance=Decimal('1.00'), free_spins_remaining=free_spins).in_free_spin_round is expected
