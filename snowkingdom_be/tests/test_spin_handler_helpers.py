import random
import unittest
from dataclasses import replace
from decimal import Decimal
from unittest.mock import MagicMock

from snowkingdom_be.exceptions import GameConfigurationError
from snowkingdom_be.utils.spin_handler import (
    SCATTER_LINE_INDEX,
    _calculate_feature_game_wins,
    _calculate_payline_wins_for_grid,
    _calculate_scatter_wins_for_grid,
    check_action_game_trigger,
    evaluate_spin,
    expand_feature_symbol,
    generate_spin_grid,
    select_feature_symbol,
)
from snowkingdom_be.tests.game_fixtures import (
    A_THREE_GRID, LOSING_GRID, QUEEN_THREE_REELS_GRID, QUEEN_TWO_REELS_GRID,
    SIX_WOLVES_GRID, THREE_BOOKS_GRID, make_test_config,
)

BET = Decimal('1.00')


class TestGenerateSpinGrid(unittest.TestCase):

    def setUp(self):
        self.config = make_test_config()

    def test_grid_dimensions_and_symbols(self):
        grid = generate_spin_grid(self.config, random.Random(7))
        self.assertEqual(len(grid), 5)
        for reel_idx, reel in enumerate(grid):
            self.assertEqual(len(reel), 3)
            for symbol in reel:
                self.assertIn(symbol, self.config.reel_strips[reel_idx])

    def test_same_seed_same_grid(self):
        self.assertEqual(
            generate_spin_grid(self.config, random.Random(42)),
            generate_spin_grid(self.config, random.Random(42)),
        )

    def test_window_wraps_around_strip_end(self):
        rng = MagicMock()
        rng.randrange.return_value = 4  # last index of a five symbol strip
        grid = generate_spin_grid(self.config, rng)
        self.assertEqual(grid[0], ["Book", "A", "K"])

    def test_empty_strip_raises(self):
        config = replace(self.config, reel_strips=self.config.reel_strips[:4] + ((),))
        with self.assertRaises(GameConfigurationError):
            generate_spin_grid(config, random.Random(1))

    def test_missing_strip_raises(self):
        config = replace(self.config, reel_strips=self.config.reel_strips[:3])
        with self.assertRaises(GameConfigurationError):
            generate_spin_grid(config, random.Random(1))


class TestPaylineWins(unittest.TestCase):

    def setUp(self):
        self.config = make_test_config()

    def test_three_a_on_first_payline(self):
        outcome = evaluate_spin(A_THREE_GRID, self.config, BET)

        self.assertEqual(outcome.total_win, Decimal('5.00'))
        self.assertEqual(len(outcome.winning_lines), 1)
        line = outcome.winning_lines[0]
        self.assertEqual(line.payline_index, 0)
        self.assertEqual(line.symbol, "A")
        self.assertEqual(line.count, 3)
        self.assertEqual(line.payout, Decimal('5.00'))
        self.assertEqual(line.line, (1, 1, 1, 1, 1))

    def test_payout_table_is_keyed_by_bet(self):
        outcome = evaluate_spin(A_THREE_GRID, self.config, Decimal('2.00'))
        self.assertEqual(outcome.total_win, Decimal('10.00'))

    def test_losing_grid_pays_nothing(self):
        outcome = evaluate_spin(LOSING_GRID, self.config, BET)
        self.assertEqual(outcome.total_win, Decimal('0.00'))
        self.assertEqual(outcome.winning_lines, ())
        self.assertFalse(outcome.action_game_triggered)

    def test_single_symbol_never_wins(self):
        result = _calculate_payline_wins_for_grid(LOSING_GRID, self.config, BET, self.config.paylines)
        self.assertEqual(result["winning_lines"], [])

    def test_missing_payout_entry_pays_zero_and_is_reported(self):
        raw_symbols = {
            "A": {"name": "A", "payoutByBet": {"1.00": {"2": 0, "4": 10.00}}},
            "K": {"name": "K", "payoutByBet": {"1.00": {"2": 0}}},
            "Queen": {"name": "Queen"},
            "Wolf": {"name": "Wolf", "payoutByBet": {"1.00": {"2": 0}}},
            "Book": {"name": "Book"},
        }
        config = make_test_config(symbols=raw_symbols)

        result = _calculate_payline_wins_for_grid(A_THREE_GRID, config, BET, config.paylines)

        self.assertEqual(result["win"], Decimal('0.00'))
        self.assertEqual(result["winning_lines"], [])
        self.assertEqual(len(result["config_issues"]), 1)
        self.assertIn("A x3", result["config_issues"][0])

    def test_book_substitutes_in_base_game(self):
        grid = [list(reel) for reel in A_THREE_GRID]
        grid[0][1] = "Book"
        outcome = evaluate_spin(grid, self.config, BET)
        self.assertEqual(outcome.total_win, Decimal('5.00'))
        self.assertEqual(outcome.winning_lines[0].symbol, "A")

    def test_book_does_not_substitute_when_it_is_the_feature_symbol(self):
        grid = [list(reel) for reel in A_THREE_GRID]
        grid[0][1] = "Book"
        result = _calculate_payline_wins_for_grid(
            grid, self.config, BET, self.config.paylines, is_free_spin=True, feature_symbol="Book"
        )
        self.assertEqual(result["winning_lines"], [])

    def test_feature_symbol_lines_are_left_to_expansion(self):
        result = _calculate_payline_wins_for_grid(
            A_THREE_GRID, self.config, BET, self.config.paylines, is_free_spin=True, feature_symbol="A"
        )
        self.assertEqual(result["winning_lines"], [])

    def test_active_payline_count_limits_evaluation(self):
        grid = [list(reel) for reel in A_THREE_GRID]
        outcome = evaluate_spin(grid, self.config, BET, num_paylines=1)
        self.assertEqual(outcome.total_win, Decimal('5.00'))

        # Payline 0 is the only active line; a top row match is ignored
        grid_top = [[reel[1], reel[0], reel[2]] for reel in A_THREE_GRID]
        outcome = evaluate_spin(grid_top, self.config, BET, num_paylines=1)
        self.assertEqual(outcome.total_win, Decimal('0.00'))

    def test_evaluation_is_repeatable(self):
        first = evaluate_spin(QUEEN_THREE_REELS_GRID, self.config, BET, is_free_spin=True, feature_symbol="Queen")
        second = evaluate_spin(QUEEN_THREE_REELS_GRID, self.config, BET, is_free_spin=True, feature_symbol="Queen")
        self.assertEqual(first, second)


class TestScatterWins(unittest.TestCase):

    def setUp(self):
        self.config = make_test_config()

    def test_three_books_pay_and_trigger_free_spins(self):
        result = _calculate_scatter_wins_for_grid(THREE_BOOKS_GRID, self.config, BET)

        self.assertEqual(result["win"], Decimal('2.00'))
        self.assertEqual(result["scatter"].count, 3)
        self.assertTrue(result["scatter"].triggered_free_spins)
        line = result["winning_line"]
        self.assertEqual(line.payline_index, SCATTER_LINE_INDEX)
        self.assertEqual(line.line, (2, 1, 0))

    def test_scatter_line_is_included_in_spin_outcome(self):
        outcome = evaluate_spin(THREE_BOOKS_GRID, self.config, BET)
        self.assertEqual(outcome.total_win, Decimal('2.00'))
        self.assertEqual([l.payline_index for l in outcome.winning_lines], [SCATTER_LINE_INDEX])

    def test_two_books_do_not_trigger(self):
        grid = [list(reel) for reel in THREE_BOOKS_GRID]
        grid[4][0] = "K"
        result = _calculate_scatter_wins_for_grid(grid, self.config, BET)
        self.assertEqual(result["scatter"].count, 2)
        self.assertFalse(result["scatter"].triggered_free_spins)
        self.assertEqual(result["win"], Decimal('0.00'))

    def test_book_feature_absorbs_scatter_during_free_spins(self):
        result = _calculate_scatter_wins_for_grid(
            THREE_BOOKS_GRID, self.config, BET, is_free_spin=True, feature_symbol="Book"
        )
        self.assertFalse(result["scatter"].triggered_free_spins)
        self.assertEqual(result["win"], Decimal('0.00'))

    def test_retrigger_with_other_feature_symbol(self):
        result = _calculate_scatter_wins_for_grid(
            THREE_BOOKS_GRID, self.config, BET, is_free_spin=True, feature_symbol="Queen"
        )
        self.assertTrue(result["scatter"].triggered_free_spins)


class TestActionGameTrigger(unittest.TestCase):

    def setUp(self):
        self.config = make_test_config()

    def test_six_wolves_fire_trigger(self):
        result = check_action_game_trigger(SIX_WOLVES_GRID, self.config, Decimal('0.20'))
        self.assertTrue(result['triggered'])
        self.assertEqual(result['name'], "wolfPack")
        self.assertEqual(result['spins'], 3)
        self.assertEqual(result['win'], Decimal('0.40'))

    def test_trigger_adds_to_spin_outcome(self):
        outcome = evaluate_spin(SIX_WOLVES_GRID, self.config, BET)
        self.assertTrue(outcome.action_game_triggered)
        self.assertEqual(outcome.action_game_spins, 3)
        self.assertEqual(outcome.action_game_win, Decimal('0.40'))
        self.assertEqual(outcome.total_win, Decimal('0.40'))

    def test_no_trigger_below_count(self):
        result = check_action_game_trigger(LOSING_GRID, self.config, Decimal('0.20'))
        self.assertFalse(result['triggered'])
        self.assertEqual(result['win'], Decimal('0.00'))


class TestFeatureExpansion(unittest.TestCase):

    def setUp(self):
        self.config = make_test_config()

    def test_queen_on_three_reels_pays_every_active_line(self):
        outcome = evaluate_spin(
            QUEEN_THREE_REELS_GRID, self.config, BET, num_paylines=5, is_free_spin=True, feature_symbol="Queen"
        )
        self.assertEqual(outcome.expanded_win, Decimal('35.00'))
        self.assertEqual(len(outcome.feature_winning_lines), 5)
        self.assertEqual(len(outcome.expanded_positions), 6)
        self.assertEqual(outcome.total_win, Decimal('0.00'))
        for reel_idx in (0, 2, 4):
            self.assertEqual(outcome.expanded_grid[reel_idx], ("Queen", "Queen", "Queen"))
        # Original grid is not modified
        self.assertEqual(outcome.grid[0], ("Queen", "A", "K"))

    def test_two_reels_do_not_expand(self):
        outcome = evaluate_spin(
            QUEEN_TWO_REELS_GRID, self.config, BET, is_free_spin=True, feature_symbol="Queen"
        )
        self.assertEqual(outcome.expanded_win, Decimal('0.00'))
        self.assertEqual(outcome.expanded_positions, ())
        self.assertIsNone(outcome.expanded_grid)

    def test_no_expansion_outside_free_spins(self):
        outcome = evaluate_spin(QUEEN_THREE_REELS_GRID, self.config, BET, feature_symbol="Queen")
        self.assertEqual(outcome.expanded_win, Decimal('0.00'))
        self.assertIsNone(outcome.feature_symbol)

    def test_feature_pass_needs_three_full_reels(self):
        expanded = expand_feature_symbol(QUEEN_TWO_REELS_GRID, "Queen", {0, 2})
        result = _calculate_feature_game_wins(expanded, self.config, BET, self.config.paylines, "Queen")
        self.assertEqual(result["expanded_reels"], 2)
        self.assertEqual(result["win"], Decimal('0.00'))


class TestSelectFeatureSymbol(unittest.TestCase):

    def test_excludes_book_and_low_cards(self):
        config = make_test_config()
        for seed in range(20):
            self.assertIn(select_feature_symbol(config, random.Random(seed)), {"Queen", "Wolf"})

    def test_falls_back_to_any_non_book_symbol(self):
        config = make_test_config(symbols={
            "A": {"name": "A"},
            "K": {"name": "K"},
            "Book": {"name": "Book"},
        }, reelStrips=[["A", "K", "Book"] for _ in range(5)])
        self.assertIn(select_feature_symbol(config, random.Random(3)), {"A", "K"})


if __name__ == '__main__':
    unittest.main()
