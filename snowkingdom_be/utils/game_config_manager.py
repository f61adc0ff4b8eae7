"""
Game Configuration Manager
Loads, validates and caches the immutable per-game configuration
"""

import json
import logging
import os
import re
import threading
from types import MappingProxyType
from typing import Dict, Optional

from flask import current_app, has_app_context

from snowkingdom_be.exceptions import GameConfigurationError, NotFoundException
from snowkingdom_be.error_codes import ErrorCodes
from snowkingdom_be.utils.game_config import (
    ActionGameTrigger, GameConfig, SymbolConfig, WheelOutcome, freeze_table
)
from snowkingdom_be.utils.money import to_money

logger = logging.getLogger(__name__)

DEFAULT_GAME_CONFIG_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'public', 'games'))
CONFIG_FILE_NAME = "gameConfig.json"

_GAME_ID_PATTERN = re.compile(r'^[A-Za-z0-9_\-]+$')
_CASH_OUTCOME = re.compile(r'^R(\d+(?:\.\d+)?)$')
_SPINS_OUTCOME = re.compile(r'^(\d+)spins$')


class GameConfigManager:
    """Read-only provider of `GameConfig` objects, cached per game id"""

    _config_cache: Dict[str, GameConfig] = {}
    _cache_lock = threading.Lock()

    @classmethod
    def get_game_config(cls, game_id: str, config_dir: Optional[str] = None) -> GameConfig:
        """
        Returns the configuration for `game_id`, loading it on first use.

        Args:
            game_id (str): Directory name of the game under the configuration root.
            config_dir (str, optional): Configuration root. Defaults to the app's
                GAME_CONFIG_DIR, or the packaged `public/games` directory.

        Raises:
            NotFoundException: If no configuration file exists for the game.
            GameConfigurationError: If the file is malformed or inconsistent.
        """
        if not isinstance(game_id, str) or not _GAME_ID_PATTERN.match(game_id):
            raise NotFoundException(f"Unknown game '{game_id}'", error_code=ErrorCodes.GAME_NOT_FOUND)

        base_dir = cls._resolve_config_dir(config_dir)
        cache_key = f"{base_dir}:{game_id}"
        with cls._cache_lock:
            cached = cls._config_cache.get(cache_key)
            if cached is not None:
                return cached

            raw_config = cls._load_raw_config(game_id, base_dir)
            config = build_game_config(game_id, raw_config)
            cls._config_cache[cache_key] = config
            logger.info(f"Loaded game configuration '{game_id}' ({config.num_reels}x{config.num_rows}, "
                        f"{len(config.paylines)} paylines, bets {[str(b) for b in config.bet_amounts]})")
            return config

    @classmethod
    def clear_cache(cls):
        with cls._cache_lock:
            cls._config_cache.clear()

    @staticmethod
    def _resolve_config_dir(config_dir):
        if config_dir:
            return os.path.abspath(config_dir)
        if has_app_context() and current_app.config.get('GAME_CONFIG_DIR'):
            return os.path.abspath(current_app.config['GAME_CONFIG_DIR'])
        return DEFAULT_GAME_CONFIG_DIR

    @staticmethod
    def _load_raw_config(game_id, base_dir):
        file_path = os.path.join(base_dir, game_id, CONFIG_FILE_NAME)
        if not os.path.exists(file_path):
            logger.error(f"Configuration file not found for game '{game_id}' at {file_path}")
            raise NotFoundException(f"Game '{game_id}' not found", error_code=ErrorCodes.GAME_NOT_FOUND)
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error for {file_path} (game '{game_id}'): {e.msg} at line {e.lineno} col {e.colno}")
            raise GameConfigurationError(f"Invalid JSON in configuration for game '{game_id}'",
                                         details={'line': e.lineno, 'column': e.colno, 'error': e.msg})


def _fail(game_id, message):
    raise GameConfigurationError(f"Config validation error for game '{game_id}': {message}")


def _parse_bet_table(game_id, table, label, value_parser):
    """Parses {"1.00": {"3": 5.0}} into {Decimal('1.00'): {3: value}}."""
    if table is None:
        return {}
    if not isinstance(table, dict):
        _fail(game_id, f"{label} must be an object keyed by bet amount.")
    parsed = {}
    for bet_key, by_count in table.items():
        try:
            bet = to_money(bet_key)
        except ValueError:
            _fail(game_id, f"{label} has an invalid bet key '{bet_key}'.")
        if not isinstance(by_count, dict):
            _fail(game_id, f"{label}['{bet_key}'] must be an object keyed by symbol count.")
        counts = {}
        for count_key, value in by_count.items():
            try:
                count = int(count_key)
                counts[count] = value_parser(value)
            except (TypeError, ValueError):
                _fail(game_id, f"{label}['{bet_key}']['{count_key}'] is invalid.")
        parsed[bet] = counts
    return parsed


def _parse_wheel(game_id, wheel):
    """
    Accepts either a list of {"name", "weight", "win", "spins"} objects or the
    legacy {name: weight} object, where "R<amount>" is a cash prize and
    "<n>spins" grants additional action game spins.
    """
    if not wheel:
        return ()
    outcomes = []
    if isinstance(wheel, dict):
        for name, weight in wheel.items():
            win, spins = to_money(0), 0
            cash = _CASH_OUTCOME.match(name)
            extra_spins = _SPINS_OUTCOME.match(name)
            if cash:
                win = to_money(cash.group(1))
            elif extra_spins:
                spins = int(extra_spins.group(1))
            outcomes.append((name, weight, win, spins))
    elif isinstance(wheel, list):
        for i, entry in enumerate(wheel):
            if not isinstance(entry, dict) or 'name' not in entry:
                _fail(game_id, f"actionGameWheel[{i}] must be an object with a name.")
            try:
                outcomes.append((str(entry['name']), entry.get('weight', 0),
                                 to_money(entry.get('win', 0)), int(entry.get('spins', 0))))
            except (TypeError, ValueError):
                _fail(game_id, f"actionGameWheel[{i}] has an invalid win or spins value.")
    else:
        _fail(game_id, "actionGameWheel must be an object or a list.")

    parsed = []
    for name, weight, win, spins in outcomes:
        if not isinstance(weight, int) or isinstance(weight, bool) or weight < 0:
            _fail(game_id, f"actionGameWheel outcome '{name}' must have a non-negative integer weight.")
        if spins < 0 or win < 0:
            _fail(game_id, f"actionGameWheel outcome '{name}' cannot have a negative win or spin grant.")
        parsed.append(WheelOutcome(name=name, weight=weight, win=win, spins=spins))
    return tuple(parsed)


def build_game_config(game_id, raw):
    """
    Validates a raw (JSON-decoded) game configuration and builds a `GameConfig`.

    Raises:
        GameConfigurationError: If any validation check fails.
    """
    if not isinstance(raw, dict):
        _fail(game_id, "Root must be an object.")

    num_reels = raw.get('numReels')
    num_rows = raw.get('numRows')
    if not isinstance(num_reels, int) or num_reels <= 0:
        _fail(game_id, "numReels must be a positive integer.")
    if not isinstance(num_rows, int) or num_rows <= 0:
        _fail(game_id, "numRows must be a positive integer.")

    symbols_raw = raw.get('symbols')
    if not isinstance(symbols_raw, dict) or not symbols_raw:
        _fail(game_id, "symbols must be a non-empty object.")
    symbols = {}
    for key, sym in symbols_raw.items():
        if not isinstance(sym, dict):
            _fail(game_id, f"symbols['{key}'] must be an object.")
        symbols[key] = SymbolConfig(
            name=sym.get('name') or key,
            payout_by_bet=freeze_table(_parse_bet_table(game_id, sym.get('payoutByBet'), f"symbols['{key}'].payoutByBet", to_money)),
            action_games_by_bet=freeze_table(_parse_bet_table(game_id, sym.get('actionGamesByBet'), f"symbols['{key}'].actionGamesByBet", int)),
            image=sym.get('image', ''),
        )

    book_symbol = raw.get('bookSymbol') or None
    wild_symbol = raw.get('wildSymbol', 'WILD')
    scatter_symbol = raw.get('scatterSymbol', 'SCATTER')
    if book_symbol is not None and book_symbol not in symbols:
        _fail(game_id, f"bookSymbol '{book_symbol}' is not a defined symbol.")

    reel_strips = raw.get('reelStrips')
    if not isinstance(reel_strips, list) or len(reel_strips) != num_reels:
        _fail(game_id, "reelStrips must be a list with one strip per reel.")
    for i, strip in enumerate(reel_strips):
        if not isinstance(strip, list) or not strip:
            _fail(game_id, f"reelStrips[{i}] must be a non-empty list.")
        for j, symbol in enumerate(strip):
            if symbol not in symbols and symbol not in (wild_symbol, scatter_symbol):
                _fail(game_id, f"reelStrips[{i}][{j}] '{symbol}' is not a defined symbol.")

    paylines = raw.get('paylines')
    if not isinstance(paylines, list) or not paylines:
        _fail(game_id, "paylines must be a non-empty list.")
    for i, line in enumerate(paylines):
        if not isinstance(line, list) or len(line) != num_reels:
            _fail(game_id, f"paylines[{i}] must list one row index per reel.")
        for row in line:
            if not isinstance(row, int) or not 0 <= row < num_rows:
                _fail(game_id, f"paylines[{i}] row index {row} out of bounds (rows: {num_rows}).")

    bet_amounts_raw = raw.get('betAmounts')
    if not isinstance(bet_amounts_raw, list) or not bet_amounts_raw:
        _fail(game_id, "betAmounts must be a non-empty list.")
    try:
        bet_amounts = tuple(sorted({to_money(b) for b in bet_amounts_raw}))
    except ValueError:
        _fail(game_id, "betAmounts must contain numbers.")
    if any(b <= 0 for b in bet_amounts):
        _fail(game_id, "betAmounts must be positive.")

    free_spins_awarded = raw.get('freeSpinsAwarded', 0)
    if not isinstance(free_spins_awarded, int) or free_spins_awarded < 0:
        _fail(game_id, "freeSpinsAwarded must be a non-negative integer.")

    triggers = []
    for name, trig in (raw.get('actionGameTriggers') or {}).items():
        if not isinstance(trig, dict):
            _fail(game_id, f"actionGameTriggers['{name}'] must be an object.")
        try:
            triggers.append(ActionGameTrigger(
                name=name,
                symbol=trig['symbol'],
                count=int(trig['count']),
                base_win=to_money(trig.get('baseWin', 0)),
                action_spins=int(trig.get('actionSpins', 0)),
            ))
        except (KeyError, TypeError, ValueError):
            _fail(game_id, f"actionGameTriggers['{name}'] needs symbol, count, baseWin and actionSpins.")

    return GameConfig(
        game_id=game_id,
        game_name=raw.get('gameName') or game_id,
        num_reels=num_reels,
        num_rows=num_rows,
        symbols=MappingProxyType(symbols),
        reel_strips=tuple(tuple(strip) for strip in reel_strips),
        paylines=tuple(tuple(line) for line in paylines),
        bet_amounts=bet_amounts,
        free_spins_awarded=free_spins_awarded,
        wild_symbol=wild_symbol,
        scatter_symbol=scatter_symbol,
        book_symbol=book_symbol,
        max_paylines=raw.get('maxPaylines') or len(paylines),
        scatter_payout_by_bet=freeze_table(_parse_bet_table(game_id, raw.get('scatterPayoutByBet'), "scatterPayoutByBet", to_money)),
        scatter_action_games_by_bet=freeze_table(_parse_bet_table(game_id, raw.get('scatterActionGamesByBet'), "scatterActionGamesByBet", int)),
        action_game_triggers=tuple(triggers),
        action_game_wheel=_parse_wheel(game_id, raw.get('actionGameWheel')),
    )
