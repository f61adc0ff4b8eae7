import random
from collections import Counter
from decimal import Decimal
from unittest.mock import MagicMock

from snowkingdom_be.utils.action_game_helper import WheelSpinResult, spin_action_game_wheel
from snowkingdom_be.tests.game_fixtures import make_test_config


def test_outcome_follows_cumulative_weights():
    config = make_test_config()  # weights 5 / 3 / 2
    rng = MagicMock()

    rng.randrange.return_value = 4
    assert spin_action_game_wheel(config, rng).wheel_result == "0"

    rng.randrange.return_value = 5
    result = spin_action_game_wheel(config, rng)
    assert result.wheel_result == "R10"
    assert result.win == Decimal('10.00')
    assert result.additional_spins == 0
    assert result.segment_index == 1

    rng.randrange.return_value = 9
    result = spin_action_game_wheel(config, rng)
    assert result.wheel_result == "6spins"
    assert result.additional_spins == 6
    assert result.win == Decimal('0.00')
    rng.randrange.assert_called_with(10)


def test_legacy_wheel_names_are_parsed():
    config = make_test_config(actionGameWheel={"0": 1, "R2.50": 1, "3spins": 1})
    names = {o.name: (o.win, o.spins) for o in config.action_game_wheel}
    assert names == {
        "0": (Decimal('0.00'), 0),
        "R2.50": (Decimal('2.50'), 0),
        "3spins": (Decimal('0.00'), 3),
    }


def test_zero_weight_outcome_never_selected():
    config = make_test_config(actionGameWheel={"0": 0, "R10": 4})
    rng = random.Random(5)
    assert all(spin_action_game_wheel(config, rng).wheel_result == "R10" for _ in range(50))


def test_empty_wheel_returns_null_outcome():
    config = make_test_config(actionGameWheel={})
    assert spin_action_game_wheel(config, random.Random(1)) == WheelSpinResult()

    config = make_test_config(actionGameWheel={"R10": 0})
    assert spin_action_game_wheel(config, random.Random(1)).segment_index == -1


def test_distribution_roughly_matches_weights():
    config = make_test_config()
    rng = random.Random(123)
    counts = Counter(spin_action_game_wheel(config, rng).wheel_result for _ in range(5000))
    assert 2200 < counts["0"] < 2800
    assert 1200 < counts["R10"] < 1800
    assert 700 < counts["6spins"] < 1300
