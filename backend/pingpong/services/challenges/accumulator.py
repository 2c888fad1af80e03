from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from .errors import ConflictRetriesExhausted
from .scoreboard import rank_of
from .state import CAPACITY, ChallengeState, generate_id, now_ms


logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


class Outcome(str, Enum):
    ACCEPTED = 'accepted'
    ALREADY_RESPONDED = 'already_responded'
    TOO_LATE = 'too_late'
    NOT_FOUND = 'not_found'
    NOT_ISSUED = 'not_issued'
    ISSUED = 'issued'
    ALREADY_ISSUED = 'already_issued'


@dataclass(frozen=True)
class SubmitOutcome:
    outcome: Outcome
    challenge_id: str
    responder_id: Optional[str] = None
    rank: Optional[int] = None
    latency: Optional[int] = None
    closed_now: bool = False
    attempts: int = 1

    @property
    def accepted(self) -> bool:
        return self.outcome == Outcome.ACCEPTED

    def to_dict(self):
        return {
            'outcome': self.outcome.value,
            'challenge_id': self.challenge_id,
            'responder_id': self.responder_id,
            'rank': self.rank,
            'latency': self.latency,
            'closed': self.closed_now,
        }


@dataclass(frozen=True)
class IssueOutcome:
    outcome: Outcome
    challenge_id: str
    issued_at: Optional[int] = None


def create_challenge(store, team: str, initiator: str, challenge_id: Optional[str] = None) -> ChallengeState:
    """Persist an empty, not yet issued challenge."""
    state = ChallengeState(id=challenge_id or generate_id(), team=team, initiator=initiator)
    created = store.create(state)
    logger.info(f"[create] challenge={created.id} team={team} initiator={initiator}")
    return created


def issue_challenge(store, challenge_id: str, issued_at: Optional[int] = None,
                    max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> IssueOutcome:
    """Set ``issued_at`` once. A challenge that is already issued keeps its time."""
    issued_at = now_ms() if issued_at is None else int(issued_at)
    for attempt in range(1, max_attempts + 1):
        current = store.get(challenge_id)
        if current is None:
            return IssueOutcome(Outcome.NOT_FOUND, challenge_id)
        if current.issued:
            return IssueOutcome(Outcome.ALREADY_ISSUED, challenge_id, current.issued_at)
        if store.conditional_update(challenge_id, current.version, current.evolve(issued_at=issued_at)):
            logger.info(f"[issue] challenge={challenge_id} issued_at={issued_at} attempt={attempt}")
            return IssueOutcome(Outcome.ISSUED, challenge_id, issued_at)
        logger.info(f"[conflict] challenge={challenge_id} op=issue attempt={attempt}")
    raise ConflictRetriesExhausted(challenge_id, max_attempts)


def submit_response(store, challenge_id: str, responder_id: str, observed_timestamp: int,
                    capacity: int = CAPACITY, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> SubmitOutcome:
    """Record one responder's pong under optimistic concurrency.

    Every attempt reads the record, decides, and writes back conditionally on
    the version it read. A lost race re-runs the whole decision on a fresh
    read, so the capacity check and the closing flag always land in the same
    write as the response that fills the challenge.

    - responder already present: ``ALREADY_RESPONDED``, first timestamp kept
    - capacity reached: ``TOO_LATE``, nothing written
    - otherwise ``ACCEPTED`` with the responder's current rank and latency

    Raises ``ConflictRetriesExhausted`` after ``max_attempts`` lost races.
    """
    observed_timestamp = int(observed_timestamp)
    for attempt in range(1, max_attempts + 1):
        current = store.get(challenge_id)
        if current is None:
            return SubmitOutcome(Outcome.NOT_FOUND, challenge_id, responder_id, attempts=attempt)
        if not current.issued:
            return SubmitOutcome(Outcome.NOT_ISSUED, challenge_id, responder_id, attempts=attempt)

        if responder_id in current.responses:
            return SubmitOutcome(
                Outcome.ALREADY_RESPONDED, challenge_id, responder_id,
                rank=rank_of(current.responses, responder_id),
                latency=current.responses[responder_id] - current.issued_at,
                attempts=attempt,
            )

        if current.closed or len(current.responses) >= capacity:
            logger.info(f"[too-late] challenge={challenge_id} responder={responder_id}")
            return SubmitOutcome(Outcome.TOO_LATE, challenge_id, responder_id, attempts=attempt)

        responses = dict(current.responses)
        responses[responder_id] = observed_timestamp
        closed_now = len(responses) >= capacity
        updated = current.evolve(responses=responses, closed=closed_now)

        if store.conditional_update(challenge_id, current.version, updated):
            rank = rank_of(responses, responder_id)
            latency = observed_timestamp - current.issued_at
            logger.info(
                f"[accept] challenge={challenge_id} responder={responder_id} rank={rank} "
                f"latency={latency}ms closed={closed_now} attempt={attempt}"
            )
            return SubmitOutcome(
                Outcome.ACCEPTED, challenge_id, responder_id,
                rank=rank, latency=latency, closed_now=closed_now, attempts=attempt,
            )
        logger.info(f"[conflict] challenge={challenge_id} responder={responder_id} attempt={attempt}")
    raise ConflictRetriesExhausted(challenge_id, max_attempts)
