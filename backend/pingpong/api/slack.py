"""Slack-shaped intake: ``/ping`` slash command and the pong button.

Request signing and OAuth are handled upstream; these views only map the
platform's form payloads onto the challenge services.
"""

from decimal import Decimal
import json

from flask import Blueprint, jsonify, request, current_app
from pingpong.api.challenges import as_timestamp, open_challenge, record_response
from pingpong.services.challenges.accumulator import Outcome
from pingpong.services.challenges.errors import ConflictRetriesExhausted
from pingpong.services.challenges.scoreboard import format_latency


slack = Blueprint('slack', __name__)


def _ephemeral(text, status=200):
    return jsonify({'response_type': 'ephemeral', 'text': text}), status


def _slack_ts_to_ms(value):
    """Slack timestamps are seconds with a fractional part, as a string."""
    try:
        millis = int(Decimal(str(value)) * 1000)
    except (ArithmeticError, TypeError, ValueError):
        return None
    return as_timestamp(millis)


@slack.route('/commands', methods=['POST'])
def slash_command():
    team_id = request.form.get('team_id')
    user_id = request.form.get('user_id')
    if not all([team_id, user_id]):
        return _ephemeral('Missing team_id or user_id', 400)
    try:
        state = open_challenge(team_id, user_id)
    except ConflictRetriesExhausted:
        return _ephemeral('Busy, try again in a moment', 503)
    current_app.logger.info(f"[slash] team={team_id} user={user_id} challenge={state.id}")
    return _ephemeral('Ping sent!')


@slack.route('/actions', methods=['POST'])
def action():
    try:
        payload = json.loads(request.form.get('payload') or '')
    except ValueError:
        return _ephemeral('Malformed payload', 400)
    if not isinstance(payload, dict):
        return _ephemeral('Malformed payload', 400)

    user_id = (payload.get('user') or {}).get('id')
    actions = payload.get('actions') or []
    challenge_id = actions[0].get('value') if actions and isinstance(actions[0], dict) else None
    observed = _slack_ts_to_ms(payload.get('action_ts'))
    if not all([user_id, challenge_id]) or observed is None:
        return _ephemeral('Malformed payload', 400)

    try:
        result = record_response(challenge_id, user_id, observed)
    except ConflictRetriesExhausted:
        return _ephemeral('Busy, try again in a moment', 503)

    if result.outcome == Outcome.ACCEPTED:
        return _ephemeral(f"Pong! You're #{result.rank} ({format_latency(result.latency)})")
    if result.outcome == Outcome.ALREADY_RESPONDED:
        return _ephemeral(f"You already ponged: #{result.rank} ({format_latency(result.latency)})")
    if result.outcome == Outcome.TOO_LATE:
        return _ephemeral('Too late! The scoreboard is full.')
    return _ephemeral('That ping is not open.')
