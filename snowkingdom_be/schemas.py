from decimal import Decimal

from marshmallow import Schema, fields, EXCLUDE
from marshmallow.validate import Length, Range, Regexp
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema

from .models import db, PlaySession, SpinRecord

SESSION_ID_VALIDATORS = [
    Length(min=1, max=128),
    Regexp(r'^[A-Za-z0-9_\-.:]+$', error="Session id may only contain letters, digits and _ - . :"),
]


def camelcase(s):
    parts = iter(s.split("_"))
    return next(parts) + "".join(i.title() for i in parts)


class CamelCaseSchema(Schema):
    """Schema that uses camel-case for its external representation
    and snake-case for its internal representation.
    """

    def on_bind_field(self, field_name, field_obj):
        field_obj.data_key = camelcase(field_obj.data_key or field_name)


# --- Request Schemas ---
class PlayRequestSchema(CamelCaseSchema):
    class Meta:
        unknown = EXCLUDE

    session_id = fields.Str(required=True, validate=SESSION_ID_VALIDATORS)
    game_id = fields.Str(load_default=None, allow_none=True, validate=Length(min=1, max=64))
    bet_amount = fields.Decimal(load_default=Decimal('0'), validate=Range(min=0))
    num_paylines = fields.Int(load_default=0, validate=Range(min=0, max=100))
    bet_per_payline = fields.Decimal(load_default=Decimal('0'), validate=Range(min=0))
    action_game_spins = fields.Int(load_default=0, validate=Range(min=0))


class ActionGameSpinRequestSchema(CamelCaseSchema):
    class Meta:
        unknown = EXCLUDE

    session_id = fields.Str(required=True, validate=SESSION_ID_VALIDATORS)


class HistoryQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    limit = fields.Int(load_default=50, validate=Range(min=1, max=500))


# --- Persistence Schemas ---
class PlaySessionSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = PlaySession
        load_instance = True
        sqla_session = db.session
        exclude = ('id',)

    total_bet = fields.Float()
    total_win = fields.Float()

    def on_bind_field(self, field_name, field_obj):
        field_obj.data_key = camelcase(field_obj.data_key or field_name)


class SpinRecordSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = SpinRecord
        load_instance = True
        sqla_session = db.session

    bet_amount = fields.Float()
    base_win = fields.Float()
    expanded_win = fields.Float()
    feature_payout = fields.Float()
    total_win = fields.Float()

    def on_bind_field(self, field_name, field_obj):
        field_obj.data_key = camelcase(field_obj.data_key or field_name)


# --- Response payloads ---
def dump_winning_line(line):
    return {
        'paylineIndex': line.payline_index,
        'symbol': line.symbol,
        'count': line.count,
        'payout': float(line.payout),
        'line': list(line.line),
    }


def dump_spin_outcome(outcome):
    """Serializes a `SpinOutcome` as the `results` object of a game state."""
    if outcome is None:
        return None
    return {
        'totalWin': float(outcome.total_win),
        'winningLines': [dump_winning_line(line) for line in outcome.winning_lines],
        'scatterWin': {
            'count': outcome.scatter.count,
            'triggeredFreeSpins': outcome.scatter.triggered_free_spins,
        },
        'grid': [list(reel) for reel in outcome.grid],
        'actionGameTriggered': outcome.action_game_triggered,
        'actionGameSpins': outcome.action_game_spins,
        'actionGameWin': float(outcome.action_game_win),
        'featureSymbol': outcome.feature_symbol,
        'expandedGrid': [list(reel) for reel in outcome.expanded_grid] if outcome.expanded_grid else None,
        'expandedSymbols': [{'reel': reel, 'row': row} for reel, row in outcome.expanded_positions],
        'expandedWin': float(outcome.expanded_win),
        'featureGameWinningLines': [dump_winning_line(line) for line in outcome.feature_winning_lines],
    }


def dump_session_state(state):
    """Serializes a `SessionState` as a camelCase game state."""
    return {
        'balance': float(state.balance),
        'freeSpinsRemaining': state.free_spins_remaining,
        'lastWin': float(state.last_win),
        'results': dump_spin_outcome(state.last_outcome),
        'actionGameSpins': state.bonus_spins_remaining,
        'featureSymbol': state.feature_symbol,
        'accumulatedActionGameWin': float(state.accumulated_bonus_round_win),
        'accumulatedPennyGameBets': float(state.penny_pool),
        'accumulatedActionGameBets': float(state.bonus_bet_pool),
        'losingSpinsAfterFeature': state.losing_spins_after_feature,
        'lastFeatureExitType': state.last_feature_exit_type,
        'mysteryPrizeTrigger': state.mystery_trigger,
        'gameId': state.game_id,
    }
