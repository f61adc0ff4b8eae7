"""
In-memory session repository.

Each session id maps to an immutable `SessionState` snapshot. Callers that
read, compute and write a session hold `SessionStore.locked(session_id)` for
the whole cycle so requests for one session never interleave, while
different sessions proceed in parallel.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Optional

from snowkingdom_be.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

EXIT_FREE_SPINS = "freeSpins"
EXIT_ACTION_GAMES = "actionGames"


@dataclass(frozen=True)
class SessionState:
    balance: Decimal
    free_spins_remaining: int = 0
    bonus_spins_remaining: int = 0
    feature_symbol: Optional[str] = None
    accumulated_bonus_round_win: Decimal = ZERO
    penny_pool: Decimal = ZERO
    bonus_bet_pool: Decimal = ZERO
    losing_spins_after_feature: int = 0
    last_feature_exit_type: Optional[str] = None
    mystery_trigger: Optional[int] = None
    last_win: Decimal = ZERO
    last_outcome: Optional[Any] = None
    game_id: Optional[str] = None

    @property
    def in_free_spin_round(self) -> bool:
        return self.free_spins_remaining > 0

    def evolve(self, **changes) -> "SessionState":
        return replace(self, **changes)


class SessionStore:
    """Thread-safe map of session id to `SessionState` with one lock per session."""

    def __init__(self, default_balance=Decimal('1000.00'), default_game_id=None):
        self.default_balance = to_money(default_balance)
        self.default_game_id = default_game_id
        self._sessions: Dict[str, SessionState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, session_id):
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    @contextmanager
    def locked(self, session_id):
        """Holds the exclusive lock of `session_id` for the duration of the block."""
        lock = self._lock_for(session_id)
        with lock:
            yield

    def new_state(self, game_id=None) -> SessionState:
        return SessionState(balance=self.default_balance, game_id=game_id or self.default_game_id)

    def get(self, session_id) -> Optional[SessionState]:
        with self._guard:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id, game_id=None) -> SessionState:
        with self._guard:
            state = self._sessions.get(session_id)
            if state is None:
                state = self.new_state(game_id)
                self._sessions[session_id] = state
                logger.info(f"Created session {session_id} with balance {state.balance}")
            return state

    def save(self, session_id, state: SessionState):
        if not isinstance(state, SessionState):
            raise TypeError(f"Expected SessionState, got {type(state).__name__}")
        with self._guard:
            self._sessions[session_id] = state

    def reset(self, session_id) -> SessionState:
        """Restores the default state, keeping the game the session plays."""
        with self.locked(session_id):
            with self._guard:
                previous = self._sessions.get(session_id)
                state = self.new_state(previous.game_id if previous else None)
                self._sessions[session_id] = state
        logger.info(f"Reset session {session_id}")
        return state
