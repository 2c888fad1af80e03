from dataclasses import dataclass, field, replace
from typing import Dict, Optional
import time
import uuid

# Responses a challenge accepts before it closes
CAPACITY = 3

# Change kinds carried by the store's change stream
CREATED = 'created'
ISSUED = 'issued'
CLOSED = 'closed'
DELETED = 'deleted'


def generate_id() -> str:
    """Opaque, unique challenge identifier."""
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ChallengeState:
    """Snapshot of one challenge record as read from the store.

    ``responses`` maps responder -> observed timestamp (ms) and keeps the
    order in which responses were accepted. ``version`` is the store's row
    version the snapshot was read at; writes are conditional on it.
    """
    id: str
    team: str
    initiator: str
    issued_at: Optional[int] = None
    responses: Dict[str, int] = field(default_factory=dict)
    closed: bool = False
    broadcast_sent: bool = False
    scoreboard_sent: bool = False
    version: int = 0

    @property
    def issued(self) -> bool:
        return self.issued_at is not None

    def evolve(self, **changes) -> 'ChallengeState':
        """Copy with ``changes`` applied; the responses map is never shared."""
        changes.setdefault('responses', dict(self.responses))
        return replace(self, **changes)

    def to_dict(self):
        return {
            'id': self.id,
            'team': self.team,
            'initiator': self.initiator,
            'issued_at': self.issued_at,
            'responses': dict(self.responses),
            'response_count': len(self.responses),
            'closed': self.closed,
            'version': self.version,
        }


@dataclass(frozen=True)
class ChangeEvent:
    """One entry of the change stream: the record as it is now, and why."""
    kind: str
    challenge_id: str
    record: Optional[ChallengeState] = None
    event_id: Optional[int] = None
