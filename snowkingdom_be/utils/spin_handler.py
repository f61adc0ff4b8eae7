import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from snowkingdom_be.exceptions import GameConfigurationError
from snowkingdom_be.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

# Card ranks never chosen as the expanding symbol of a free spin round
LOW_CARD_SYMBOLS = frozenset({"A", "K", "Q", "J", "10"})

MIN_LINE_MATCH = 2
MIN_SCATTER_TRIGGER = 3
MIN_EXPANDED_REELS = 3
SCATTER_LINE_INDEX = -1


@dataclass(frozen=True)
class WinningLine:
    payline_index: int
    symbol: str
    count: int
    payout: Decimal
    line: Tuple[int, ...]


@dataclass(frozen=True)
class ScatterResult:
    count: int = 0
    triggered_free_spins: bool = False
    positions: Tuple[Tuple[int, int], ...] = ()


@dataclass(frozen=True)
class SpinOutcome:
    """
    Result of evaluating one grid. `total_win` is the base-game win (paylines,
    scatter and any action game trigger win); `expanded_win` is the separate
    feature pass of a free spin round.
    """
    grid: Tuple[Tuple[str, ...], ...]
    total_win: Decimal = ZERO
    winning_lines: Tuple[WinningLine, ...] = ()
    scatter: ScatterResult = ScatterResult()
    action_game_triggered: bool = False
    action_game_spins: int = 0
    action_game_win: Decimal = ZERO
    feature_symbol: Optional[str] = None
    expanded_grid: Optional[Tuple[Tuple[str, ...], ...]] = None
    expanded_positions: Tuple[Tuple[int, int], ...] = ()
    expanded_win: Decimal = ZERO
    feature_winning_lines: Tuple[WinningLine, ...] = ()
    config_issues: Tuple[str, ...] = ()

    @property
    def combined_win(self) -> Decimal:
        return self.total_win + self.expanded_win


def _freeze_grid(grid):
    return tuple(tuple(reel) for reel in grid)


def generate_spin_grid(config, rng=None):
    """
    Generates the visible symbol grid for a spin from the configured reel strips.

    Each reel stops at a uniformly random index and shows `num_rows`
    consecutive symbols from there, wrapping around the end of the strip.

    Args:
        config (GameConfig): Game definition providing reel strips and dimensions.
        rng (random.Random, optional): Random source. Defaults to `secrets.SystemRandom()`.

    Returns:
        list: `num_reels` lists of `num_rows` symbol names (grid[reel][row]).

    Raises:
        GameConfigurationError: If a reel strip is missing or empty.
    """
    secure_random = rng or secrets.SystemRandom()
    if len(config.reel_strips) < config.num_reels:
        raise GameConfigurationError(f"Game '{config.game_id}' defines {len(config.reel_strips)} reel strips for {config.num_reels} reels.")

    grid = []
    for reel_idx in range(config.num_reels):
        strip = config.reel_strips[reel_idx]
        strip_len = len(strip)
        if strip_len == 0:
            logger.error(f"Reel strip {reel_idx} is empty for game '{config.game_id}'.")
            raise GameConfigurationError(f"Reel strip {reel_idx} is empty.")
        stop = secure_random.randrange(strip_len)
        grid.append([strip[(stop + row_idx) % strip_len] for row_idx in range(config.num_rows)])
    return grid


def _winning_symbol_for_line(line_symbols, substitute_symbol):
    """First symbol on the line that is not the substitute; the substitute itself if the line is all substitutes."""
    for symbol in line_symbols:
        if symbol != substitute_symbol:
            return symbol
    return substitute_symbol


def _substitution_allowed(config, is_free_spin, feature_symbol):
    if config.is_book_style:
        return not (is_free_spin and feature_symbol == config.book_symbol)
    # Separate wilds never substitute during free spins
    return not is_free_spin


def _calculate_payline_wins_for_grid(grid, config, total_bet, active_paylines, is_free_spin=False, feature_symbol=None):
    """
    Evaluates every active payline against the (unexpanded) grid.

    Args:
        grid (list): grid[reel][row] symbol names.
        config (GameConfig): Game definition.
        total_bet (Decimal): Configured bet amount used as the payout table key.
        active_paylines (tuple): Paylines in play, one row index per reel each.
        is_free_spin (bool): Whether a free spin round is active.
        feature_symbol (str, optional): Sticky expanding symbol of the round.

    Returns:
        dict: {"win": Decimal, "winning_lines": [WinningLine], "action_game_spins": int,
               "config_issues": [str]}
    """
    substitute = config.substitute_symbol
    can_substitute = _substitution_allowed(config, is_free_spin, feature_symbol)

    payline_win = ZERO
    winning_lines = []
    action_game_spins = 0
    config_issues = []

    for payline_index, line in enumerate(active_paylines):
        line_symbols = [grid[reel_idx][row_idx] for reel_idx, row_idx in enumerate(line)]
        winning_symbol = _winning_symbol_for_line(line_symbols, substitute)

        count = 0
        for symbol in line_symbols:
            if symbol == winning_symbol or (can_substitute and symbol == substitute):
                count += 1
            else:
                break

        if count < MIN_LINE_MATCH or winning_symbol not in config.symbols:
            continue
        if is_free_spin and feature_symbol and winning_symbol == feature_symbol:
            # Resolved by the expansion pass
            continue

        payout = config.symbol_payout(winning_symbol, total_bet, count)
        if payout is None:
            issue = f"No payout for {winning_symbol} x{count} at bet {total_bet}"
            logger.warning(f"{issue} (game '{config.game_id}', payline {payline_index}). Check configuration!")
            config_issues.append(issue)
            continue
        if payout <= 0:
            continue

        payline_win += payout
        winning_lines.append(WinningLine(
            payline_index=payline_index,
            symbol=winning_symbol,
            count=count,
            payout=payout,
            line=tuple(line),
        ))
        action_game_spins += config.symbol_action_games(winning_symbol, total_bet, count)

    return {
        "win": payline_win,
        "winning_lines": winning_lines,
        "action_game_spins": action_game_spins,
        "config_issues": config_issues,
    }


def _calculate_scatter_wins_for_grid(grid, config, total_bet, is_free_spin=False, feature_symbol=None):
    """
    Counts scatter (or book) symbols anywhere on the grid and resolves the
    free spin trigger and scatter payout.

    While a free spin round is running with the scatter itself as the
    feature symbol, scatters neither retrigger nor pay here.

    Returns:
        dict: {"win": Decimal, "scatter": ScatterResult, "winning_line": WinningLine or None,
               "action_game_spins": int, "config_issues": [str]}
    """
    scatter_symbol = config.effective_scatter_symbol
    positions = [
        (reel_idx, row_idx)
        for reel_idx, reel in enumerate(grid)
        for row_idx, symbol in enumerate(reel)
        if symbol == scatter_symbol
    ]
    scatter_count = len(positions)

    absorbed_by_feature = bool(is_free_spin and feature_symbol and feature_symbol in (config.scatter_symbol, config.book_symbol))
    is_scatter_event = scatter_count >= MIN_SCATTER_TRIGGER
    result = {
        "win": ZERO,
        "scatter": ScatterResult(
            count=scatter_count,
            triggered_free_spins=is_scatter_event and not absorbed_by_feature,
            positions=tuple(positions),
        ),
        "winning_line": None,
        "action_game_spins": 0,
        "config_issues": [],
    }

    if not is_scatter_event or absorbed_by_feature:
        return result

    payout = config.scatter_payout(total_bet, scatter_count)
    if payout is None:
        issue = f"No scatter payout for {scatter_count} scatters at bet {total_bet}"
        logger.warning(f"{issue} (game '{config.game_id}'). Check configuration!")
        result["config_issues"].append(issue)
        return result
    if payout > 0:
        result["win"] = payout
        result["winning_line"] = WinningLine(
            payline_index=SCATTER_LINE_INDEX,
            symbol=scatter_symbol,
            count=scatter_count,
            payout=payout,
            line=tuple(row_idx for _, row_idx in positions),
        )
        result["action_game_spins"] = config.scatter_action_games(total_bet, scatter_count)
    return result


def check_action_game_trigger(grid, config, line_bet):
    """
    Checks the configured action game triggers against total symbol counts on the grid.

    The first trigger (in configuration order) whose symbol appears at least
    `count` times fires; at most one trigger fires per spin.

    Returns:
        dict: {'triggered': bool, 'name': str, 'spins': int, 'win': Decimal}
    """
    if not config.action_game_triggers:
        return {'triggered': False, 'name': None, 'spins': 0, 'win': ZERO}

    symbol_counts = {}
    for reel in grid:
        for symbol in reel:
            symbol_counts[symbol] = symbol_counts.get(symbol, 0) + 1

    for trigger in config.action_game_triggers:
        if symbol_counts.get(trigger.symbol, 0) >= trigger.count:
            return {
                'triggered': True,
                'name': trigger.name,
                'spins': trigger.action_spins,
                'win': to_money(trigger.base_win * Decimal(str(line_bet))),
            }
    return {'triggered': False, 'name': None, 'spins': 0, 'win': ZERO}


def reels_with_symbol(grid, symbol):
    return {reel_idx for reel_idx, reel in enumerate(grid) if symbol in reel}


def expand_feature_symbol(grid, feature_symbol, reels_to_expand):
    """Returns a new grid with every row of the given reels set to the feature symbol."""
    return [
        [feature_symbol] * len(reel) if reel_idx in reels_to_expand else list(reel)
        for reel_idx, reel in enumerate(grid)
    ]


def get_expanded_positions(original_grid, expanded_grid, feature_symbol):
    return [
        (reel_idx, row_idx)
        for reel_idx, reel in enumerate(original_grid)
        for row_idx, symbol in enumerate(reel)
        if symbol != feature_symbol and expanded_grid[reel_idx][row_idx] == feature_symbol
    ]


def _calculate_feature_game_wins(expanded_grid, config, total_bet, active_paylines, feature_symbol):
    """
    Secondary payout pass over the expanded grid: once at least three reels
    are fully covered by the feature symbol, every active payline pays the
    feature symbol's amount for that reel count.

    Returns:
        dict: {"win": Decimal, "winning_lines": [WinningLine], "expanded_reels": int,
               "config_issues": [str]}
    """
    expanded_reels = sum(1 for reel in expanded_grid if reel and all(s == feature_symbol for s in reel))
    result = {"win": ZERO, "winning_lines": [], "expanded_reels": expanded_reels, "config_issues": []}

    if expanded_reels < MIN_EXPANDED_REELS or feature_symbol not in config.symbols:
        return result

    per_line_payout = config.symbol_payout(feature_symbol, total_bet, expanded_reels)
    if per_line_payout is None:
        issue = f"No payout for {feature_symbol} x{expanded_reels} at bet {total_bet}"
        logger.warning(f"{issue} (game '{config.game_id}', feature pass). Check configuration!")
        result["config_issues"].append(issue)
        return result
    if per_line_payout <= 0:
        return result

    result["win"] = per_line_payout * len(active_paylines)
    result["winning_lines"] = [
        WinningLine(
            payline_index=payline_index,
            symbol=feature_symbol,
            count=expanded_reels,
            payout=per_line_payout,
            line=tuple(line),
        )
        for payline_index, line in enumerate(active_paylines)
    ]
    return result


def evaluate_spin(grid, config, total_bet, num_paylines=0, line_bet=None, is_free_spin=False, feature_symbol=None):
    """
    Evaluates a grid: paylines, scatter, action game trigger and, during a
    free spin round, the feature expansion pass.

    Args:
        grid (list): grid[reel][row] symbol names. Never modified.
        config (GameConfig): Game definition.
        total_bet (Decimal): Resolved total bet, a configured bet amount.
        num_paylines (int): Active payline count; 0 means all paylines.
        line_bet (Decimal, optional): Per-line bet used to scale action game
            trigger wins. Defaults to `total_bet` spread over the active lines.
        is_free_spin (bool): Whether this spin belongs to a free spin round.
        feature_symbol (str, optional): The round's expanding symbol.

    Returns:
        SpinOutcome: Immutable evaluation result.
    """
    total_bet = to_money(total_bet)
    active_paylines = config.active_paylines(num_paylines)
    if line_bet is None:
        line_bet = total_bet / len(active_paylines) if active_paylines else total_bet

    payline_result = _calculate_payline_wins_for_grid(grid, config, total_bet, active_paylines, is_free_spin, feature_symbol)
    scatter_result = _calculate_scatter_wins_for_grid(grid, config, total_bet, is_free_spin, feature_symbol)
    trigger_result = check_action_game_trigger(grid, config, line_bet)

    winning_lines = list(payline_result["winning_lines"])
    if scatter_result["winning_line"] is not None:
        winning_lines.append(scatter_result["winning_line"])
    config_issues = payline_result["config_issues"] + scatter_result["config_issues"]

    total_win = payline_result["win"] + scatter_result["win"] + trigger_result["win"]
    action_game_spins = payline_result["action_game_spins"] + scatter_result["action_game_spins"] + trigger_result["spins"]

    expanded_grid = None
    expanded_positions = []
    expanded_win = ZERO
    feature_lines = []
    round_feature = feature_symbol if (is_free_spin and feature_symbol) else None
    if round_feature:
        reels_to_expand = reels_with_symbol(grid, round_feature)
        if len(reels_to_expand) >= MIN_EXPANDED_REELS:
            expanded = expand_feature_symbol(grid, round_feature, reels_to_expand)
            expanded_grid = _freeze_grid(expanded)
            expanded_positions = get_expanded_positions(grid, expanded, round_feature)
            feature_result = _calculate_feature_game_wins(expanded, config, total_bet, active_paylines, round_feature)
            expanded_win = feature_result["win"]
            feature_lines = feature_result["winning_lines"]
            config_issues += feature_result["config_issues"]
            logger.debug(f"Feature expansion of {round_feature} on {len(reels_to_expand)} reels, expanded win {expanded_win}")

    return SpinOutcome(
        grid=_freeze_grid(grid),
        total_win=total_win,
        winning_lines=tuple(winning_lines),
        scatter=scatter_result["scatter"],
        action_game_triggered=action_game_spins > 0 or trigger_result["triggered"],
        action_game_spins=action_game_spins,
        action_game_win=trigger_result["win"],
        feature_symbol=round_feature,
        expanded_grid=expanded_grid,
        expanded_positions=tuple(expanded_positions),
        expanded_win=expanded_win,
        feature_winning_lines=tuple(feature_lines),
        config_issues=tuple(config_issues),
    )


def select_feature_symbol(config, rng=None):
    """
    Picks the expanding symbol for a new free spin round.

    Eligible symbols exclude the book/wild and the low card ranks; if none
    remain, any symbol except the book; failing that, the first symbol.
    """
    secure_random = rng or secrets.SystemRandom()
    excluded = {config.book_symbol, config.wild_symbol} - {None}
    symbol_names = list(config.symbols.keys())

    eligible = [s for s in symbol_names if s not in excluded and s not in LOW_CARD_SYMBOLS]
    if not eligible:
        eligible = [s for s in symbol_names if s != config.book_symbol]
    if not eligible:
        return symbol_names[0] if symbol_names else None
    return eligible[secure_random.randrange(len(eligible))]
