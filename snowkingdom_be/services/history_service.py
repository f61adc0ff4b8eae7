"""
Spin history sink and query helpers backed by Flask-SQLAlchemy.

Recording is best effort: failures are logged and never reach the caller.
"""

import threading
from datetime import datetime, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from snowkingdom_be.models import db, PlaySession, SpinRecord
from snowkingdom_be.schemas import PlaySessionSchema, SpinRecordSchema, dump_winning_line
from snowkingdom_be.utils.money import ZERO, to_money


class SpinHistoryRecorder:
    """Persists one `SpinRecord` per processed play request."""

    def __init__(self, app=None, async_mode=True):
        self.app = app
        self.async_mode = async_mode
        self._guard = threading.Lock()
        self._session_locks = {}

    def _lock_for(self, session_id):
        with self._guard:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = self._session_locks[session_id] = threading.Lock()
            return lock

    def record(self, session_id, game_id, bet, outcome, was_bonus_round, free_spins_awarded, feature_payout=ZERO):
        """
        Records a spin, on a daemon thread when `async_mode` is set.

        `feature_payout` is what the request credited beyond the spin outcome:
        a bonus round win released at the end of free spins and any mystery prize.

        Never raises: persistence errors are logged and dropped.
        """
        app = self.app or current_app._get_current_object()
        args = (app, session_id, game_id, bet, outcome, was_bonus_round, free_spins_awarded, feature_payout)
        if not self.async_mode:
            self._record_with_context(*args)
            return None

        thread = threading.Thread(target=self._record_with_context, args=args, daemon=True)
        thread.start()
        return thread

    def _record_with_context(self, app, *args):
        session_id = args[0]
        with app.app_context(), self._lock_for(session_id):
            try:
                try:
                    self._write(*args)
                except IntegrityError:
                    # Another writer created the session row first; the retry updates it
                    db.session.rollback()
                    app.logger.info(f"Play session row for {session_id} created concurrently, retrying")
                    self._write(*args)
            except SQLAlchemyError as e:
                db.session.rollback()
                app.logger.error(f"Failed to save spin transaction for session {session_id}: {e}")
            except Exception as e:
                db.session.rollback()
                app.logger.error(f"Unexpected error saving spin transaction for session {session_id}: {e}", exc_info=True)

    @staticmethod
    def _write(session_id, game_id, bet, outcome, was_bonus_round, free_spins_awarded, feature_payout=ZERO):
        now = datetime.now(timezone.utc)
        bet = to_money(bet)
        feature_payout = to_money(feature_payout)
        total_win = outcome.combined_win + feature_payout

        play_session = db.session.scalar(select(PlaySession).filter_by(session_id=session_id))
        if play_session is None:
            play_session = PlaySession(session_id=session_id, game_id=game_id, total_bet=ZERO, total_win=ZERO,
                                       num_spins=0, num_bonus_spins=0, free_spins_awarded=0)
            db.session.add(play_session)
            db.session.flush()

        play_session.game_id = game_id
        play_session.num_spins += 1
        play_session.total_win = (play_session.total_win or ZERO) + total_win
        if was_bonus_round:
            play_session.num_bonus_spins += 1
        else:
            play_session.total_bet = (play_session.total_bet or ZERO) + bet
        play_session.free_spins_awarded += free_spins_awarded
        play_session.last_spin_at = now

        record = SpinRecord(
            play_session_id=play_session.id,
            session_id=session_id,
            game_id=game_id,
            bet_amount=bet,
            base_win=outcome.total_win,
            expanded_win=outcome.expanded_win,
            feature_payout=feature_payout,
            total_win=total_win,
            grid=[list(reel) for reel in outcome.grid],
            winning_lines=[dump_winning_line(line) for line in outcome.winning_lines + outcome.feature_winning_lines],
            feature_symbol=outcome.feature_symbol,
            scatter_count=outcome.scatter.count,
            is_bonus_round=bool(was_bonus_round),
            free_spins_awarded=free_spins_awarded,
            action_game_spins_awarded=outcome.action_game_spins,
            spin_time=now,
        )
        db.session.add(record)
        db.session.commit()
        return record


def get_spin_history(session_id, limit=50):
    """Most recent spins of a session, newest first."""
    records = db.session.scalars(
        select(SpinRecord)
        .filter_by(session_id=session_id)
        .order_by(SpinRecord.spin_time.desc(), SpinRecord.id.desc())
        .limit(limit)
    ).all()
    return SpinRecordSchema(many=True).dump(records)


def get_session_summary(session_id):
    play_session = db.session.scalar(select(PlaySession).filter_by(session_id=session_id))
    if play_session is None:
        return None
    return PlaySessionSchema().dump(play_session)


def get_game_stats():
    """Aggregate totals over all recorded spins, overall and per game."""
    totals = db.session.execute(
        select(
            func.count(SpinRecord.id),
            func.coalesce(func.sum(SpinRecord.bet_amount), 0),
            func.coalesce(func.sum(SpinRecord.total_win), 0),
        ).where(SpinRecord.is_bonus_round.is_(False))
    ).one()
    bonus_spins = db.session.scalar(select(func.count(SpinRecord.id)).where(SpinRecord.is_bonus_round.is_(True)))
    bonus_win = db.session.scalar(
        select(func.coalesce(func.sum(SpinRecord.total_win), 0)).where(SpinRecord.is_bonus_round.is_(True))
    )

    paid_spins, total_bet, base_win = totals
    sessions = db.session.scalar(select(func.count(PlaySession.id)))
    total_bet = to_money(Decimal(str(total_bet)))
    total_win = to_money(Decimal(str(base_win))) + to_money(Decimal(str(bonus_win)))
    rtp = (total_win / total_bet * 100).quantize(Decimal('0.01')) if total_bet > 0 else ZERO

    per_game = db.session.execute(
        select(SpinRecord.game_id, func.count(SpinRecord.id), func.coalesce(func.sum(SpinRecord.total_win), 0))
        .group_by(SpinRecord.game_id)
    ).all()

    return {
        'totalSpins': paid_spins + (bonus_spins or 0),
        'paidSpins': paid_spins,
        'bonusRoundSpins': bonus_spins or 0,
        'totalSessions': sessions,
        'totalBet': float(total_bet),
        'totalWin': float(total_win),
        'returnToPlayerPercent': float(rtp),
        'games': [
            {'gameId': game_id, 'spins': count, 'totalWin': float(to_money(Decimal(str(win))))}
            for game_id, count, win in per_game
        ],
    }
