"""Wiring between the Flask app and the challenge services."""

from pingpong import db, socketio
from .dispatcher import LifecycleDispatcher, team_room
from .gateway import RoutingGateway, SocketIOGateway, WebhookGateway
from .store import ChallengeStore


def build_store():
    return ChallengeStore(db.session)


def build_gateway(app):
    timeout = int(app.config.get('WEBHOOK_TIMEOUT_SEC', 5))
    return RoutingGateway(WebhookGateway(timeout=timeout), SocketIOGateway(socketio))


def resolve_team_endpoint(team: str) -> str:
    """The team's registered webhook, or its socket room when none is set."""
    from pingpong.models import Team
    record = db.session.get(Team, team)
    if record and record.endpoint:
        return record.endpoint
    return team_room(team)


def build_dispatcher(app):
    return LifecycleDispatcher(
        build_store(),
        app.extensions['pingpong.gateway'],
        resolve_team_endpoint,
        capacity=int(app.config.get('CHALLENGE_CAPACITY', 3)),
        max_attempts=int(app.config.get('CAS_MAX_ATTEMPTS', 5)),
    )


def dispatch_pending(app) -> None:
    """Drain queued change events.

    - Runs inline, in the caller's app context, in TESTING mode so tests
      observe notifications directly
    - Otherwise runs as a Socket.IO background task with its own app context
    """
    limit = int(app.config.get('DISPATCH_BATCH_SIZE', 100)) or None

    def _drain():
        handled = build_dispatcher(app).drain(limit=limit)
        if handled:
            app.logger.info(f"[dispatch] handled={handled}")

    def _worker():
        with app.app_context():
            _drain()

    if app.config.get('TESTING'):
        _drain()
    else:
        socketio.start_background_task(_worker)
