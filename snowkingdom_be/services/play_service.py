"""
Per-request session transition for play and action game wheel requests.

A play request runs, in order: bet resolution, cost application, win
application, free spin bookkeeping, bonus spin bookkeeping, feature exit
detection and the mystery prize step. Each step takes a `SessionState`
snapshot and returns a new one, so nothing is stored unless the whole
transition completes.
"""

import logging
import secrets
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, Optional, Tuple

from snowkingdom_be.error_codes import ErrorCodes
from snowkingdom_be.exceptions import (
    InsufficientFundsException, InvalidBetException, NoActionGameSpinsException, NotFoundException
)
from snowkingdom_be.services.session_service import (
    EXIT_ACTION_GAMES, EXIT_FREE_SPINS, SessionState, SessionStore
)
from snowkingdom_be.utils.action_game_helper import WheelSpinResult, spin_action_game_wheel
from snowkingdom_be.utils.game_config import GameConfig
from snowkingdom_be.utils.game_config_manager import GameConfigManager
from snowkingdom_be.utils.game_logger import GameEventLogger
from snowkingdom_be.utils.money import ZERO, to_money
from snowkingdom_be.utils.spin_handler import (
    SpinOutcome, evaluate_spin, generate_spin_grid, select_feature_symbol
)

logger = logging.getLogger(__name__)

SPIN_NORMAL = "normal"
SPIN_FREE = "free"
SPIN_BONUS = "bonus"

MYSTERY_TRIGGER_MIN = 2
MYSTERY_TRIGGER_MAX = 5


@dataclass(frozen=True)
class PlaySettings:
    default_game_id: str = "SnowKingdom"
    penny_game_cost: Decimal = Decimal('0.10')
    action_game_cost: Decimal = Decimal('0.00')
    bet_match_epsilon: Decimal = Decimal('0.01')

    @classmethod
    def from_config(cls, config):
        return cls(
            default_game_id=config.get('DEFAULT_GAME_ID', 'SnowKingdom'),
            penny_game_cost=to_money(config.get('PENNY_GAME_COST', '0.10')),
            action_game_cost=to_money(config.get('ACTION_GAME_COST', '0.00')),
            bet_match_epsilon=Decimal(str(config.get('BET_MATCH_EPSILON', '0.01'))),
        )


@dataclass(frozen=True)
class PlayRequest:
    session_id: str
    bet_amount: Decimal = ZERO
    num_paylines: int = 0
    bet_per_payline: Decimal = ZERO
    action_game_spins: int = 0
    game_id: Optional[str] = None


@dataclass(frozen=True)
class PlayResult:
    session_id: str
    game_id: str
    spin_type: str
    total_bet: Decimal
    cost: Decimal
    outcome: SpinOutcome
    state: SessionState
    previous_balance: Decimal
    credited_win: Decimal
    free_spins_awarded: int = 0
    bonus_spins_awarded: int = 0
    feature_symbol_selected: Optional[str] = None
    feature_exit_type: Optional[str] = None
    released_bonus_round_win: Decimal = ZERO
    mystery_prize_awarded: Decimal = ZERO

    @property
    def is_bonus_round(self) -> bool:
        return self.spin_type in (SPIN_FREE, SPIN_BONUS)


@dataclass(frozen=True)
class ActionGameSpinResult:
    session_id: str
    game_id: str
    wheel: WheelSpinResult
    cost: Decimal
    state: SessionState
    previous_balance: Decimal
    feature_exit_type: Optional[str] = None


def _context_details(state):
    return {
        'currentBalance': float(state.balance),
        'freeSpinsRemaining': state.free_spins_remaining,
        'actionGameSpins': state.bonus_spins_remaining,
    }


# --- Step 1: bet resolution ---

def resolve_bet(config: GameConfig, bet_amount=ZERO, num_paylines=0, bet_per_payline=ZERO,
                in_free_spin_round=False, epsilon=Decimal('0.01')) -> Decimal:
    """
    Resolves the total bet of a play request and snaps it to a configured bet.

    The explicit total wins if positive; otherwise per-line bet times line
    count; otherwise, only during a free spin round, the lowest configured bet.

    Raises:
        InvalidBetException: If no bet can be resolved or it is not within
            `epsilon` of a configured bet amount.
    """
    bet_amount = Decimal(str(bet_amount or 0))
    bet_per_payline = Decimal(str(bet_per_payline or 0))

    if bet_amount > 0:
        total_bet = bet_amount
    elif num_paylines and num_paylines > 0 and bet_per_payline > 0:
        total_bet = bet_per_payline * num_paylines
    elif in_free_spin_round and config.lowest_bet is not None:
        total_bet = config.lowest_bet
        logger.debug(f"Free spin without a usable bet, using lowest configured bet {total_bet}")
    else:
        raise InvalidBetException("Invalid bet amount", details={'allowedBets': [float(b) for b in config.bet_amounts]})

    closest = min(config.bet_amounts, key=lambda b: abs(b - total_bet))
    if abs(closest - total_bet) < epsilon:
        return closest

    logger.warning(f"Bet {total_bet} does not match any configured bet for '{config.game_id}' (closest {closest})")
    raise InvalidBetException(
        f"Bet amount {total_bet} is not one of the configured bets",
        details={'betAmount': float(total_bet), 'allowedBets': [float(b) for b in config.bet_amounts]},
    )


def determine_spin_type(state: SessionState, requested_action_game_spins=0) -> str:
    """
    Classifies a play request. A request flagged as an action game spin must
    be backed by a bonus spin credit held by the session.
    """
    if requested_action_game_spins and requested_action_game_spins > 0:
        if state.bonus_spins_remaining <= 0:
            raise NoActionGameSpinsException(details=_context_details(state))
        return SPIN_BONUS
    if state.free_spins_remaining > 0:
        return SPIN_FREE
    return SPIN_NORMAL


# --- Step 2: cost ---

def apply_cost(state: SessionState, spin_type: str, total_bet: Decimal, settings: PlaySettings) -> Tuple[SessionState, Decimal]:
    """
    Charges the request. Normal spins pay the total bet; free spins consume a
    free spin credit and pay the penny cost into the penny pool; bonus spins
    consume a bonus spin credit and pay the action game cost into the
    bonus-bet pool.

    Raises:
        InsufficientFundsException: If the balance does not cover the cost.
    """
    if spin_type == SPIN_FREE:
        cost = settings.penny_game_cost
    elif spin_type == SPIN_BONUS:
        cost = settings.action_game_cost
    else:
        cost = total_bet

    if state.balance < cost:
        raise InsufficientFundsException("Insufficient balance", details=_context_details(state))

    if spin_type == SPIN_FREE:
        return state.evolve(
            balance=state.balance - cost,
            penny_pool=state.penny_pool + cost,
            free_spins_remaining=max(0, state.free_spins_remaining - 1),
        ), cost
    if spin_type == SPIN_BONUS:
        return state.evolve(
            balance=state.balance - cost,
            bonus_bet_pool=state.bonus_bet_pool + cost,
            bonus_spins_remaining=max(0, state.bonus_spins_remaining - 1),
        ), cost
    return state.evolve(balance=state.balance - cost), cost


# --- Step 3: wins ---

def apply_wins(state: SessionState, outcome: SpinOutcome, spin_type: str) -> Tuple[SessionState, Decimal]:
    """
    Credits the base win then the expanded win. An action game trigger win
    landing during a free spin is withheld into the bonus round pool and left
    out of the stored outcome's `total_win`.

    Returns:
        tuple: (new state, amount credited to the balance)
    """
    withheld = ZERO
    if spin_type == SPIN_FREE and outcome.action_game_win > 0:
        withheld = outcome.action_game_win
        outcome = replace(outcome, total_win=outcome.total_win - withheld)

    credited = outcome.combined_win
    return state.evolve(
        balance=state.balance + credited,
        accumulated_bonus_round_win=state.accumulated_bonus_round_win + withheld,
        last_win=credited,
        last_outcome=outcome,
    ), credited


# --- Steps 4 and 5: free spin and bonus spin bookkeeping ---

def apply_free_spin_award(state: SessionState, outcome: SpinOutcome, config: GameConfig,
                          round_was_active: bool, rng=None) -> Tuple[SessionState, int, Optional[str]]:
    """
    Adds the free spin award on a trigger. Only the start of a round selects a
    new feature symbol; a retrigger keeps the round's symbol.

    Returns:
        tuple: (new state, free spins awarded, newly selected feature symbol or None)
    """
    if not outcome.scatter.triggered_free_spins:
        return state, 0, None

    awarded = config.free_spins_awarded
    state = state.evolve(free_spins_remaining=state.free_spins_remaining + awarded)
    if round_was_active and state.feature_symbol:
        return state, awarded, None

    selected = select_feature_symbol(config, rng)
    logger.info(f"Free spin round started with {awarded} spins, feature symbol {selected}")
    return state.evolve(feature_symbol=selected), awarded, selected


def apply_bonus_spin_award(state: SessionState, outcome: SpinOutcome) -> Tuple[SessionState, int]:
    if outcome.action_game_spins <= 0:
        return state, 0
    return state.evolve(bonus_spins_remaining=state.bonus_spins_remaining + outcome.action_game_spins), outcome.action_game_spins


# --- Step 6: feature exit ---

def detect_feature_exit(previous: SessionState, state: SessionState, spin_type: str) -> Tuple[SessionState, Optional[str], Decimal]:
    """
    Records the end of a free spin round (free spin requests) or of the action
    games (bonus requests). A free spin exit releases the withheld bonus round
    win and clears the feature symbol.

    Returns:
        tuple: (new state, exit type or None, released bonus round win)
    """
    if spin_type == SPIN_FREE and previous.free_spins_remaining > 0 and state.free_spins_remaining == 0:
        released = state.accumulated_bonus_round_win
        return state.evolve(
            balance=state.balance + released,
            accumulated_bonus_round_win=ZERO,
            last_win=state.last_win + released,
            feature_symbol=None,
            last_feature_exit_type=EXIT_FREE_SPINS,
            losing_spins_after_feature=0,
            mystery_trigger=None,
        ), EXIT_FREE_SPINS, released

    if spin_type == SPIN_BONUS and previous.bonus_spins_remaining > 0 and state.bonus_spins_remaining == 0:
        return state.evolve(
            last_feature_exit_type=EXIT_ACTION_GAMES,
            losing_spins_after_feature=0,
            mystery_trigger=None,
        ), EXIT_ACTION_GAMES, ZERO

    return state, None, ZERO


# --- Step 7: mystery prize ---

def decide_mystery_trigger(losing_spins: int, current_trigger: Optional[int], rng=None) -> Optional[int]:
    """
    Returns the mystery prize threshold for the current cycle. An existing
    threshold is kept; a new one in [2, 5] is drawn once the losing streak
    reaches two; before that there is none.
    """
    if current_trigger is not None:
        return current_trigger
    if losing_spins < MYSTERY_TRIGGER_MIN:
        return None
    secure_random = rng or secrets.SystemRandom()
    return secure_random.randint(MYSTERY_TRIGGER_MIN, MYSTERY_TRIGGER_MAX)


def apply_mystery_prize(state: SessionState, spin_type: str, spin_win: Decimal, rng=None) -> Tuple[SessionState, Decimal]:
    """
    Advances the mystery prize cycle after a normal spin while a feature exit
    is being tracked.

    Returns:
        tuple: (new state, prize paid this spin)
    """
    if spin_type != SPIN_NORMAL or state.last_feature_exit_type is None:
        return state, ZERO

    if spin_win != 0:
        changes = {'losing_spins_after_feature': 0, 'mystery_trigger': None}
        if state.penny_pool == 0 and state.bonus_bet_pool == 0:
            changes['last_feature_exit_type'] = None
        return state.evolve(**changes), ZERO

    losing = state.losing_spins_after_feature + 1
    trigger = decide_mystery_trigger(losing, state.mystery_trigger, rng)
    if trigger is None or losing != trigger:
        return state.evolve(losing_spins_after_feature=losing, mystery_trigger=trigger), ZERO

    prize = state.penny_pool + state.bonus_bet_pool
    return state.evolve(
        balance=state.balance + prize,
        last_win=prize,
        penny_pool=ZERO,
        bonus_bet_pool=ZERO,
        losing_spins_after_feature=0,
        mystery_trigger=None,
        last_feature_exit_type=None,
    ), prize


# --- Orchestration ---

def _resolve_game_id(request_game_id, state, settings):
    return request_game_id or (state.game_id if state else None) or settings.default_game_id


def handle_play(store: SessionStore, request: PlayRequest, settings: PlaySettings = PlaySettings(),
                config_provider: Callable[[str], GameConfig] = GameConfigManager.get_game_config,
                rng=None, grid=None) -> PlayResult:
    """
    Processes one play request as a single critical section on the session.

    Args:
        store (SessionStore): Session repository.
        request (PlayRequest): Validated request values.
        settings (PlaySettings): Side costs, default game and bet tolerance.
        config_provider (callable): Maps a game id to its `GameConfig`.
        rng (random.Random, optional): Random source for grid, feature symbol and
            mystery threshold. Defaults to `secrets.SystemRandom()`.
        grid (list, optional): Forced grid[reel][row] used instead of a random one.

    Returns:
        PlayResult: Outcome and the stored session state.

    Raises:
        InvalidBetException, InsufficientFundsException, NoActionGameSpinsException:
            The request is rejected and the session is left unchanged.
    """
    session_id = request.session_id
    secure_random = rng or secrets.SystemRandom()

    with store.locked(session_id):
        existing = store.get(session_id)
        game_id = _resolve_game_id(request.game_id, existing, settings)
        # An unknown game must not leave a session bound to it
        config = config_provider(game_id)
        previous = existing or store.get_or_create(session_id, game_id)

        spin_type = determine_spin_type(previous, request.action_game_spins)
        round_was_active = previous.in_free_spin_round
        total_bet = resolve_bet(
            config, request.bet_amount, request.num_paylines, request.bet_per_payline,
            in_free_spin_round=round_was_active, epsilon=settings.bet_match_epsilon,
        )

        state = previous.evolve(game_id=game_id)
        state, cost = apply_cost(state, spin_type, total_bet, settings)

        is_free_spin = spin_type == SPIN_FREE
        feature_symbol = state.feature_symbol if is_free_spin else None
        if is_free_spin and not feature_symbol:
            feature_symbol = select_feature_symbol(config, secure_random)
            state = state.evolve(feature_symbol=feature_symbol)
            logger.warning(f"Session {session_id} was in free spins without a feature symbol, selected {feature_symbol}")

        spin_grid = grid if grid is not None else generate_spin_grid(config, secure_random)
        active_lines = config.active_paylines(request.num_paylines)
        if request.num_paylines and request.num_paylines > 0 and request.bet_per_payline and request.bet_per_payline > 0:
            line_bet = Decimal(str(request.bet_per_payline))
        else:
            line_bet = total_bet / len(active_lines)
        outcome = evaluate_spin(
            spin_grid, config, total_bet,
            num_paylines=request.num_paylines,
            line_bet=line_bet,
            is_free_spin=is_free_spin,
            feature_symbol=feature_symbol,
        )

        state, credited = apply_wins(state, outcome, spin_type)
        outcome = state.last_outcome
        state, free_spins_awarded, selected_symbol = apply_free_spin_award(state, outcome, config, round_was_active, secure_random)
        state, bonus_spins_awarded = apply_bonus_spin_award(state, outcome)
        state, exit_type, released = detect_feature_exit(previous, state, spin_type)
        state, mystery_prize = apply_mystery_prize(state, spin_type, credited, secure_random)

        if mystery_prize > 0:
            GameEventLogger.log_mystery_prize(session_id, mystery_prize, previous.penny_pool, previous.bonus_bet_pool,
                                              previous.losing_spins_after_feature + 1)

        store.save(session_id, state)

    result = PlayResult(
        session_id=session_id,
        game_id=game_id,
        spin_type=spin_type,
        total_bet=total_bet,
        cost=cost,
        outcome=outcome,
        state=state,
        previous_balance=previous.balance,
        credited_win=credited + released + mystery_prize,
        free_spins_awarded=free_spins_awarded,
        bonus_spins_awarded=bonus_spins_awarded,
        feature_symbol_selected=selected_symbol,
        feature_exit_type=exit_type,
        released_bonus_round_win=released,
        mystery_prize_awarded=mystery_prize,
    )

    GameEventLogger.log_spin(
        session_id, game_id, spin_type, total_bet, cost, result.credited_win, state.balance,
        details={
            'free_spins_awarded': free_spins_awarded,
            'bonus_spins_awarded': bonus_spins_awarded,
            'feature_symbol': state.feature_symbol,
            'expanded_win': str(outcome.expanded_win),
        },
    )
    if exit_type:
        GameEventLogger.log_feature_exit(session_id, exit_type, released)
    if outcome.config_issues:
        GameEventLogger.log_config_issues(session_id, game_id, outcome.config_issues)
    return result


def handle_action_game_spin(store: SessionStore, session_id: str, settings: PlaySettings = PlaySettings(),
                            config_provider: Callable[[str], GameConfig] = GameConfigManager.get_game_config,
                            rng=None) -> ActionGameSpinResult:
    """
    Spends one bonus spin credit on the action game wheel.

    Raises:
        NotFoundException: If the session has never played.
        NoActionGameSpinsException: If the session holds no bonus spin credit.
        InsufficientFundsException: If the balance does not cover the action game cost.
    """
    with store.locked(session_id):
        previous = store.get(session_id)
        if previous is None:
            raise NotFoundException("Session not found", error_code=ErrorCodes.SESSION_NOT_FOUND,
                                    details={'sessionId': session_id})
        if previous.bonus_spins_remaining <= 0:
            raise NoActionGameSpinsException(details=_context_details(previous))

        game_id = previous.game_id or settings.default_game_id
        config = config_provider(game_id)

        state, cost = apply_cost(previous, SPIN_BONUS, ZERO, settings)
        wheel = spin_action_game_wheel(config, rng)
        state = state.evolve(
            balance=state.balance + wheel.win,
            bonus_spins_remaining=state.bonus_spins_remaining + wheel.additional_spins,
            last_win=wheel.win,
        )
        state, exit_type, _ = detect_feature_exit(previous, state, SPIN_BONUS)
        store.save(session_id, state)

    GameEventLogger.log_action_game_spin(session_id, game_id, wheel.wheel_result, wheel.win,
                                         wheel.additional_spins, state.bonus_spins_remaining)
    if exit_type:
        GameEventLogger.log_feature_exit(session_id, exit_type)

    return ActionGameSpinResult(
        session_id=session_id,
        game_id=game_id,
        wheel=wheel,
        cost=cost,
        state=state,
        previous_balance=previous.balance,
        feature_exit_type=exit_type,
    )
