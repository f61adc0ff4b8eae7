"""
Immutable game definition shared read-only by every session playing a game.

Instances are built by `GameConfigManager` from the JSON game configuration
and never mutated afterwards. Bet-indexed tables are keyed by normalized
`Decimal` bet amounts (see `utils.money.to_money`).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from snowkingdom_be.utils.money import to_money

EMPTY_MAPPING = MappingProxyType({})


def freeze_table(table):
    """Wraps a nested {bet: {count: value}} dict in read-only mapping proxies."""
    return MappingProxyType({bet: MappingProxyType(dict(by_count)) for bet, by_count in table.items()})


@dataclass(frozen=True)
class SymbolConfig:
    name: str
    payout_by_bet: Mapping[Decimal, Mapping[int, Decimal]] = field(default_factory=lambda: EMPTY_MAPPING)
    action_games_by_bet: Mapping[Decimal, Mapping[int, int]] = field(default_factory=lambda: EMPTY_MAPPING)
    image: str = ""


@dataclass(frozen=True)
class ActionGameTrigger:
    name: str
    symbol: str
    count: int
    base_win: Decimal
    action_spins: int


@dataclass(frozen=True)
class WheelOutcome:
    name: str
    weight: int
    win: Decimal = Decimal('0.00')
    spins: int = 0


@dataclass(frozen=True)
class GameConfig:
    game_id: str
    game_name: str
    num_reels: int
    num_rows: int
    symbols: Mapping[str, SymbolConfig]
    reel_strips: Tuple[Tuple[str, ...], ...]
    paylines: Tuple[Tuple[int, ...], ...]
    bet_amounts: Tuple[Decimal, ...]
    free_spins_awarded: int
    wild_symbol: str = "WILD"
    scatter_symbol: str = "SCATTER"
    book_symbol: Optional[str] = None
    max_paylines: int = 10
    scatter_payout_by_bet: Mapping[Decimal, Mapping[int, Decimal]] = field(default_factory=lambda: EMPTY_MAPPING)
    scatter_action_games_by_bet: Mapping[Decimal, Mapping[int, int]] = field(default_factory=lambda: EMPTY_MAPPING)
    action_game_triggers: Tuple[ActionGameTrigger, ...] = ()
    action_game_wheel: Tuple[WheelOutcome, ...] = ()

    @property
    def is_book_style(self) -> bool:
        """Book of Ra style games use one combined wild/scatter symbol."""
        return bool(self.book_symbol)

    @property
    def substitute_symbol(self) -> str:
        return self.book_symbol or self.wild_symbol

    @property
    def effective_scatter_symbol(self) -> str:
        return self.book_symbol or self.scatter_symbol

    @property
    def lowest_bet(self) -> Optional[Decimal]:
        return min(self.bet_amounts) if self.bet_amounts else None

    def active_paylines(self, num_paylines=0):
        """First `num_paylines` paylines; 0 or None means all of them."""
        if num_paylines and num_paylines > 0:
            return self.paylines[:min(num_paylines, len(self.paylines))]
        return self.paylines

    def symbol_payout(self, symbol, total_bet, count) -> Optional[Decimal]:
        """Bet-keyed payout for `count` of `symbol`, or None when the table has no entry."""
        symbol_config = self.symbols.get(symbol)
        if symbol_config is None:
            return None
        return symbol_config.payout_by_bet.get(to_money(total_bet), EMPTY_MAPPING).get(count)

    def symbol_action_games(self, symbol, total_bet, count) -> int:
        symbol_config = self.symbols.get(symbol)
        if symbol_config is None:
            return 0
        return symbol_config.action_games_by_bet.get(to_money(total_bet), EMPTY_MAPPING).get(count, 0)

    def scatter_payout(self, total_bet, count) -> Optional[Decimal]:
        return self.scatter_payout_by_bet.get(to_money(total_bet), EMPTY_MAPPING).get(count)

    def scatter_action_games(self, total_bet, count) -> int:
        return self.scatter_action_games_by_bet.get(to_money(total_bet), EMPTY_MAPPING).get(count, 0)
