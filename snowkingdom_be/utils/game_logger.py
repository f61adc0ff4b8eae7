"""
Game Event Logging
Structured audit lines for spins, action game spins, feature exits and mystery prizes
"""

import json
import logging
from datetime import datetime, timezone

from flask import current_app, g, has_app_context, has_request_context, request

from snowkingdom_be.utils.money import money_str

_fallback_logger = logging.getLogger(__name__)


def _logger():
    return current_app.logger if has_app_context() else _fallback_logger


def _request_context():
    if not has_request_context():
        return 'N/A', None
    return g.get('request_id', 'N/A'), request.remote_addr


class GameEventLogger:
    """Centralized game event logging"""

    @staticmethod
    def _emit(sub_type: str, session_id: str, level=logging.INFO, **fields):
        request_id, ip_address = _request_context()
        event_data = {
            'event_type': 'game',
            'sub_type': sub_type,
            'session_id': session_id,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'request_id': request_id,
            'ip_address': ip_address,
        }
        event_data.update(fields)
        _logger().log(level, f"GAME_EVENT: {json.dumps(event_data, default=str)}")

    @staticmethod
    def log_spin(session_id: str, game_id: str, spin_type: str, total_bet, cost, win,
                 balance_after, details: dict = None):
        """Log a processed play request"""
        GameEventLogger._emit(
            'spin', session_id,
            game_id=game_id,
            spin_type=spin_type,
            total_bet=money_str(total_bet),
            cost=money_str(cost),
            win=money_str(win),
            balance_after=money_str(balance_after),
            details=details or {},
        )

    @staticmethod
    def log_action_game_spin(session_id: str, game_id: str, wheel_result: str, win,
                             additional_spins: int, remaining_spins: int):
        GameEventLogger._emit(
            'action_game_spin', session_id,
            game_id=game_id,
            wheel_result=wheel_result,
            win=money_str(win),
            additional_spins=additional_spins,
            remaining_spins=remaining_spins,
        )

    @staticmethod
    def log_feature_exit(session_id: str, exit_type: str, released_win=None):
        GameEventLogger._emit(
            'feature_exit', session_id,
            exit_type=exit_type,
            released_win=money_str(released_win or 0),
        )

    @staticmethod
    def log_mystery_prize(session_id: str, prize, penny_pool, bonus_bet_pool, trigger: int):
        GameEventLogger._emit(
            'mystery_prize', session_id,
            prize=money_str(prize),
            penny_pool=money_str(penny_pool),
            bonus_bet_pool=money_str(bonus_bet_pool),
            trigger=trigger,
        )

    @staticmethod
    def log_config_issues(session_id: str, game_id: str, issues):
        """Payout lookups that found no table entry; the spin still completed with zero for them."""
        GameEventLogger._emit(
            'config_issue', session_id, level=logging.WARNING,
            game_id=game_id,
            issues=list(issues),
        )
