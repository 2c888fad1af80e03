from flask_socketio import join_room, leave_room, emit
from pingpong import socketio
from pingpong.services.challenges.dispatcher import team_room


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_team(data):
    team = (data or {}).get('team')
    if not team:
        emit('error', {'message': 'team is required'})
        return
    room = team_room(team)
    join_room(room)
    emit('joined', {'room': room})


def handle_leave_team(data):
    team = (data or {}).get('team')
    if not team:
        emit('error', {'message': 'team is required'})
        return
    room = team_room(team)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('join_team', handle_join_team, namespace=namespace)
        socketio.on_event('leave_team', handle_leave_team, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
