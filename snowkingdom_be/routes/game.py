from flask import Blueprint, request, jsonify, current_app, g

from snowkingdom_be.error_codes import ErrorCodes
from snowkingdom_be.exceptions import NotFoundException
from snowkingdom_be.schemas import (
    PlayRequestSchema, ActionGameSpinRequestSchema, HistoryQuerySchema,
    dump_session_state, dump_spin_outcome
)
from snowkingdom_be.services import history_service
from snowkingdom_be.services.play_service import (
    PlayRequest, PlaySettings, handle_play, handle_action_game_spin
)
from snowkingdom_be.utils.security import limiter, play_rate_limit

game_bp = Blueprint('game', __name__)


def _session_payload(session_id, state, **extra):
    game_state = dump_session_state(state)
    payload = {
        'sessionId': session_id,
        'player': game_state,
        'game': game_state,
        'freeSpins': state.free_spins_remaining,
        'actionGameSpins': state.bonus_spins_remaining,
        'featureSymbol': state.feature_symbol,
    }
    payload.update(extra)
    return payload


def _rgs_spin_payload(result):
    state = result.state
    return {
        'player': {
            'sessionId': result.session_id,
            'balance': float(state.balance),
            'freeSpinsRemaining': state.free_spins_remaining,
            'lastWin': float(state.last_win),
            'actionGameSpins': state.bonus_spins_remaining,
            'featureSymbol': state.feature_symbol,
        },
        'game': {
            'results': dump_spin_outcome(result.outcome),
            'mode': 1 if state.free_spins_remaining > 0 else 0,
        },
        'freeSpins': state.free_spins_remaining,
        'actionGameSpins': state.bonus_spins_remaining,
        'featureSymbol': state.feature_symbol,
    }


@game_bp.route('/play', methods=['POST'])
@limiter.limit(play_rate_limit)
def play():
    data = PlayRequestSchema().load(request.get_json(silent=True) or {})
    play_request = PlayRequest(**data)

    result = handle_play(
        current_app.session_store,
        play_request,
        settings=PlaySettings.from_config(current_app.config),
    )

    if current_app.config.get('HISTORY_ENABLED', True):
        current_app.history_recorder.record(
            result.session_id, result.game_id, result.total_bet, result.outcome,
            result.is_bonus_round, result.free_spins_awarded,
            feature_payout=result.released_bonus_round_win + result.mystery_prize_awarded,
        )

    current_app.rgs_service.send_spin_data(result.session_id, result.game_id, _rgs_spin_payload(result))

    state = result.state
    return jsonify(_session_payload(
        result.session_id, state,
        spinType=result.spin_type,
        totalBet=float(result.total_bet),
        freeSpinsAwarded=result.free_spins_awarded,
        featureExitType=result.feature_exit_type,
        mysteryPrizeAwarded=float(result.mystery_prize_awarded),
        accumulatedPennyGameBets=float(state.penny_pool),
        accumulatedActionGameBets=float(state.bonus_bet_pool),
    )), 200


@game_bp.route('/action-game/spin', methods=['POST'])
@limiter.limit(play_rate_limit)
def action_game_spin():
    data = ActionGameSpinRequestSchema().load(request.get_json(silent=True) or {})
    session_id = data['session_id']

    result = handle_action_game_spin(
        current_app.session_store,
        session_id,
        settings=PlaySettings.from_config(current_app.config),
    )

    state = result.state
    response = {
        'sessionId': session_id,
        'result': {
            'win': float(result.wheel.win),
            'additionalSpins': result.wheel.additional_spins,
            'wheelResult': result.wheel.wheel_result,
            'segmentIndex': result.wheel.segment_index,
        },
        'remainingSpins': state.bonus_spins_remaining,
        'accumulatedWin': float(result.wheel.win),
        'totalActionSpins': state.bonus_spins_remaining,
        'featureExitType': result.feature_exit_type,
        'balance': float(state.balance),
    }
    current_app.rgs_service.send_action_game_spin_data(session_id, response)
    return jsonify(response), 200


@game_bp.route('/session/<session_id>', methods=['GET'])
def get_session(session_id):
    state = current_app.session_store.get_or_create(session_id)
    return jsonify(_session_payload(session_id, state)), 200


@game_bp.route('/session/<session_id>/reset', methods=['POST'])
def reset_session(session_id):
    current_app.session_store.reset(session_id)
    current_app.logger.info(f"Request ID: {g.get('request_id', 'N/A')} - Session {session_id} reset")
    return jsonify({'message': 'Session reset successfully'}), 200


@game_bp.route('/game/sessions/<session_id>/history', methods=['GET'])
def get_spin_history(session_id):
    query = HistoryQuerySchema().load(request.args)
    return jsonify(history_service.get_spin_history(session_id, query['limit'])), 200


@game_bp.route('/game/sessions/<session_id>', methods=['GET'])
def get_session_details(session_id):
    summary = history_service.get_session_summary(session_id)
    if summary is None:
        raise NotFoundException("Session not found", error_code=ErrorCodes.SESSION_NOT_FOUND,
                                details={'sessionId': session_id})
    return jsonify(summary), 200


@game_bp.route('/game/stats', methods=['GET'])
def get_game_stats():
    return jsonify(history_service.get_game_stats()), 200
