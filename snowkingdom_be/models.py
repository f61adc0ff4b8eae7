from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Index, JSON, Numeric

db = SQLAlchemy()

MONEY = Numeric(12, 2, asdecimal=True)


class PlaySession(db.Model):
    __tablename__ = 'play_session'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    game_id = db.Column(db.String(64), nullable=False, index=True)
    total_bet = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    total_win = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    num_spins = db.Column(db.Integer, default=0, nullable=False)
    num_bonus_spins = db.Column(db.Integer, default=0, nullable=False)
    free_spins_awarded = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    last_spin_at = db.Column(db.DateTime(timezone=True), nullable=True)

    spins = db.relationship('SpinRecord', back_populates='play_session', lazy='dynamic')

    def __repr__(self):
        return f"<PlaySession {self.session_id} (Game: {self.game_id}, Spins: {self.num_spins})>"


class SpinRecord(db.Model):
    __tablename__ = 'spin_record'
    id = db.Column(db.Integer, primary_key=True)
    play_session_id = db.Column(db.Integer, db.ForeignKey('play_session.id'), nullable=False, index=True)
    session_id = db.Column(db.String(128), nullable=False, index=True)
    game_id = db.Column(db.String(64), nullable=False, index=True)
    bet_amount = db.Column(MONEY, nullable=False)
    base_win = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    expanded_win = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    feature_payout = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    total_win = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    grid = db.Column(JSON, nullable=False)
    winning_lines = db.Column(JSON, nullable=False, default=list)
    feature_symbol = db.Column(db.String(64), nullable=True)
    scatter_count = db.Column(db.Integer, default=0, nullable=False)
    is_bonus_round = db.Column(db.Boolean, default=False, nullable=False)
    free_spins_awarded = db.Column(db.Integer, default=0, nullable=False)
    action_game_spins_awarded = db.Column(db.Integer, default=0, nullable=False)
    spin_time = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    play_session = db.relationship('PlaySession', back_populates='spins')

    __table_args__ = (
        Index('ix_spin_record_session_time', 'session_id', 'spin_time'),
    )

    def __repr__(self):
        return f"<SpinRecord {self.id} (Session: {self.session_id}, Bet: {self.bet_amount}, Win: {self.total_win})>"
