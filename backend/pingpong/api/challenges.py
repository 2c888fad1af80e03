from flask import Blueprint, jsonify, request, current_app
from pingpong import socketio
from pingpong.services.challenges.accumulator import (
    Outcome, create_challenge, issue_challenge, submit_response,
)
from pingpong.services.challenges.dispatcher import team_room
from pingpong.services.challenges.errors import ConflictRetriesExhausted
from pingpong.services.challenges.runtime import build_store, dispatch_pending
from pingpong.services.challenges.scoreboard import compose, instant_in_range


challenges = Blueprint('challenges', __name__)

SUBMIT_STATUS = {
    Outcome.ACCEPTED: 201,
    Outcome.ALREADY_RESPONDED: 200,
    Outcome.NOT_FOUND: 404,
    Outcome.TOO_LATE: 409,
    Outcome.NOT_ISSUED: 409,
}


def _capacity():
    return int(current_app.config.get('CHALLENGE_CAPACITY', 3))


def _max_attempts():
    return int(current_app.config.get('CAS_MAX_ATTEMPTS', 5))


def _as_int(value):
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def as_timestamp(value):
    """Integer ms since epoch within the calendar range, else None."""
    timestamp = _as_int(value)
    if timestamp is None or not instant_in_range(timestamp):
        return None
    return timestamp


def _announce(state):
    socketio.emit('challenge_update', state.to_dict(), to=team_room(state.team), namespace='/ws')


def _conflict_response(exc):
    current_app.logger.warning(f"[conflict-exhausted] challenge={exc.challenge_id} attempts={exc.attempts}")
    return jsonify({'error': 'Challenge is busy, try again', 'retryable': True}), 503


def open_challenge(team, initiator, issued_at=None):
    """Create and issue a challenge, then let the dispatcher announce it.

    A challenge that cannot be issued is deleted again before the conflict
    propagates; its queued ``created`` event then drains as a no-op.
    """
    store = build_store()
    created = create_challenge(store, team, initiator)
    try:
        issue_challenge(store, created.id, issued_at, max_attempts=_max_attempts())
    except ConflictRetriesExhausted:
        store.delete(created.id)
        current_app.logger.warning(f"[issue-failed] challenge={created.id} team={team} removed")
        raise
    state = store.get(created.id)
    if state is None:
        raise LookupError(f"challenge {created.id} vanished after issue")
    _announce(state)
    dispatch_pending(current_app._get_current_object())
    return state


def record_response(challenge_id, responder_id, observed_timestamp):
    """Submit a response; mutations are announced and dispatched."""
    store = build_store()
    result = submit_response(
        store, challenge_id, responder_id, observed_timestamp,
        capacity=_capacity(), max_attempts=_max_attempts(),
    )
    if result.accepted:
        state = store.get(challenge_id)
        if state is not None:
            _announce(state)
        dispatch_pending(current_app._get_current_object())
    return result


@challenges.route('', methods=['POST'])
def issue():
    data = request.get_json(silent=True) or {}
    team = data.get('team')
    initiator = data.get('initiator')
    if not all([isinstance(team, str) and team, isinstance(initiator, str) and initiator]):
        return jsonify({'error': 'team and initiator are required'}), 400
    issued_at = data.get('issued_at')
    if issued_at is not None:
        issued_at = as_timestamp(issued_at)
        if issued_at is None:
            return jsonify({'error': 'issued_at must be an integer (ms since epoch)'}), 400
    try:
        state = open_challenge(team, initiator, issued_at)
    except ConflictRetriesExhausted as exc:
        return _conflict_response(exc)
    return jsonify(state.to_dict()), 201


@challenges.route('/<string:challenge_id>', methods=['GET'])
def get_challenge(challenge_id):
    state = build_store().get(challenge_id)
    if state is None:
        return jsonify({'error': 'Challenge not found'}), 404
    payload = state.to_dict()
    payload['capacity'] = _capacity()
    return jsonify(payload)


@challenges.route('/<string:challenge_id>/responses', methods=['POST'])
def respond(challenge_id):
    data = request.get_json(silent=True) or {}
    responder_id = data.get('responder_id')
    observed_timestamp = as_timestamp(data.get('observed_timestamp'))
    if not (isinstance(responder_id, str) and responder_id) or observed_timestamp is None:
        return jsonify({'error': 'responder_id and integer observed_timestamp are required'}), 400
    try:
        result = record_response(challenge_id, responder_id, observed_timestamp)
    except ConflictRetriesExhausted as exc:
        return _conflict_response(exc)
    payload = result.to_dict()
    if result.outcome == Outcome.NOT_FOUND:
        payload['error'] = 'Challenge not found'
    elif result.outcome == Outcome.TOO_LATE:
        payload['error'] = 'Too late: this challenge already has all its responses'
    elif result.outcome == Outcome.NOT_ISSUED:
        payload['error'] = 'Challenge has not been issued yet'
    return jsonify(payload), SUBMIT_STATUS[result.outcome]


@challenges.route('/<string:challenge_id>/scoreboard', methods=['GET'])
def scoreboard(challenge_id):
    state = build_store().get(challenge_id)
    if state is None:
        return jsonify({'error': 'Challenge not found'}), 404
    return jsonify(compose(state, _capacity()).payload)
