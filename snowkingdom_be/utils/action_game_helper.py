import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal

from snowkingdom_be.utils.money import ZERO

logger = logging.getLogger(__name__)

NULL_OUTCOME = "0"


@dataclass(frozen=True)
class WheelSpinResult:
    wheel_result: str = NULL_OUTCOME
    win: Decimal = ZERO
    additional_spins: int = 0
    segment_index: int = -1


def spin_action_game_wheel(config, rng=None):
    """
    Resolves one spin of the action game wheel.

    Draws a uniform integer in [0, total weight) and walks the outcomes in
    configured order until the cumulative weight exceeds the draw. A wheel
    with no outcomes or no weight always lands on the null outcome.

    Args:
        config (GameConfig): Game definition holding `action_game_wheel`.
        rng (random.Random, optional): Random source. Defaults to `secrets.SystemRandom()`.

    Returns:
        WheelSpinResult: The selected outcome, its cash win and spin grant.
    """
    outcomes = config.action_game_wheel
    total_weight = sum(outcome.weight for outcome in outcomes)
    if not outcomes or total_weight <= 0:
        logger.debug(f"Action game wheel for '{config.game_id}' has no weighted outcomes, returning null outcome.")
        return WheelSpinResult()

    secure_random = rng or secrets.SystemRandom()
    draw = secure_random.randrange(total_weight)

    cumulative = 0
    for index, outcome in enumerate(outcomes):
        cumulative += outcome.weight
        if draw < cumulative:
            return WheelSpinResult(
                wheel_result=outcome.name,
                win=outcome.win,
                additional_spins=outcome.spins,
                segment_index=index,
            )

    # Unreachable while weights are non-negative integers
    return WheelSpinResult()
