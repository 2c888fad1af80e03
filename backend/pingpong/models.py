from pingpong import db
from pingpong.services.challenges.state import ChallengeState, generate_id
import json
import time


class Team(db.Model):
    __tablename__ = 'team'
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=True)
    # Webhook URL; when empty notifications go to the team's socket room
    endpoint = db.Column(db.String(512), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'endpoint': self.endpoint,
        }


class Challenge(db.Model):
    __tablename__ = 'challenge'
    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    team = db.Column(db.String(64), nullable=False, index=True)
    initiator = db.Column(db.String(64), nullable=False)
    issued_at = db.Column(db.BigInteger, nullable=True)  # ms since epoch
    responses = db.Column(db.Text, nullable=False, default='{}')  # JSON responder -> ms, acceptance order
    closed = db.Column(db.Boolean, default=False, nullable=False)
    broadcast_sent = db.Column(db.Boolean, default=False, nullable=False)
    scoreboard_sent = db.Column(db.Boolean, default=False, nullable=False)
    version = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.Float, default=time.time, nullable=False)

    @classmethod
    def from_state(cls, state: ChallengeState) -> 'Challenge':
        return cls(
            id=state.id,
            team=state.team,
            initiator=state.initiator,
            issued_at=state.issued_at,
            responses=json.dumps(state.responses),
            closed=state.closed,
            broadcast_sent=state.broadcast_sent,
            scoreboard_sent=state.scoreboard_sent,
            version=state.version or 1,
        )

    def to_state(self) -> ChallengeState:
        try:
            responses = json.loads(self.responses) if self.responses else {}
        except ValueError:
            responses = {}
        return ChallengeState(
            id=self.id,
            team=self.team,
            initiator=self.initiator,
            issued_at=self.issued_at,
            responses={str(k): int(v) for k, v in responses.items()},
            closed=bool(self.closed),
            broadcast_sent=bool(self.broadcast_sent),
            scoreboard_sent=bool(self.scoreboard_sent),
            version=int(self.version or 1),
        )


class ChallengeEvent(db.Model):
    """Outbox row written in the same transaction as the challenge change."""
    __tablename__ = 'challenge_event'
    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.String(32), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)  # created, issued, closed
    created_at = db.Column(db.Float, default=time.time, nullable=False)
