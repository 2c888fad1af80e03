from flask import Blueprint, request, jsonify
from .models import db, Team

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the pingpong server!'})

@main.route('/api/teams', methods=['POST'])
def register_team():
    data = request.get_json(silent=True) or {}
    team_id = data.get('id')
    if not (isinstance(team_id, str) and team_id):
        return jsonify({'error': 'Team id is required'}), 400
    endpoint = data.get('endpoint')
    if endpoint is not None and not isinstance(endpoint, str):
        return jsonify({'error': 'endpoint must be a string'}), 400

    team = db.session.get(Team, team_id)
    created = team is None
    if created:
        team = Team(id=team_id)
    if 'name' in data:
        team.name = data.get('name')
    if 'endpoint' in data:
        team.endpoint = endpoint or None
    db.session.add(team)
    db.session.commit()
    return jsonify(team.to_dict()), 201 if created else 200

@main.route('/api/teams/<string:team_id>', methods=['GET'])
def get_team(team_id):
    team = db.session.get(Team, team_id)
    if not team:
        return jsonify({'error': 'Team not found'}), 404
    return jsonify(team.to_dict())
