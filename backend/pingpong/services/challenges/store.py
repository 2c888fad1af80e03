"""Challenge stores.

Both stores offer the same small surface the core relies on:

- ``create(state)`` persists a new record and queues a ``created`` event
- ``get(challenge_id)`` returns a fresh ``ChallengeState`` or ``None``
- ``conditional_update(challenge_id, expected_version, new_state)`` writes
  only if the record is still at ``expected_version``; returns ``False`` on
  a lost race. Lifecycle transitions (issued, closed) found in the write are
  queued as change events in the same atomic step.
- ``subscribe_to_changes(predicate)`` yields queued ``ChangeEvent`` items
  oldest first; ``ack(event)`` removes a handled one.
"""

import itertools
import json
import logging
import threading
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import update

from pingpong import db
from pingpong.models import Challenge, ChallengeEvent
from .state import CLOSED, CREATED, DELETED, ISSUED, ChallengeState, ChangeEvent


logger = logging.getLogger(__name__)

Predicate = Optional[Callable[[ChangeEvent], bool]]


def transition_kinds(before: ChallengeState, after: ChallengeState) -> List[str]:
    kinds = []
    if before.issued_at is None and after.issued_at is not None:
        kinds.append(ISSUED)
    if not before.closed and after.closed:
        kinds.append(CLOSED)
    return kinds


class ChallengeStore:
    """SQL-backed store: versioned-row update plus an outbox table."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    def create(self, state: ChallengeState) -> ChallengeState:
        row = Challenge.from_state(state.evolve(version=1))
        self.session.add(row)
        self.session.add(ChallengeEvent(challenge_id=row.id, kind=CREATED))
        self.session.commit()
        return row.to_state()

    def get(self, challenge_id: str) -> Optional[ChallengeState]:
        row = self.session.get(Challenge, challenge_id, populate_existing=True)
        return row.to_state() if row else None

    def conditional_update(self, challenge_id: str, expected_version: int, new_state: ChallengeState) -> bool:
        before = self.get(challenge_id)
        if before is None or before.version != expected_version:
            self.session.rollback()
            return False
        result = self.session.execute(
            update(Challenge)
            .where(Challenge.id == challenge_id, Challenge.version == expected_version)
            .values(
                issued_at=new_state.issued_at,
                responses=json.dumps(new_state.responses),
                closed=new_state.closed,
                broadcast_sent=new_state.broadcast_sent,
                scoreboard_sent=new_state.scoreboard_sent,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            return False
        for kind in transition_kinds(before, new_state):
            self.session.add(ChallengeEvent(challenge_id=challenge_id, kind=kind))
        self.session.commit()
        return True

    def subscribe_to_changes(self, predicate: Predicate = None, limit: Optional[int] = None) -> Iterator[ChangeEvent]:
        query = self.session.query(ChallengeEvent).order_by(ChallengeEvent.id)
        if limit:
            query = query.limit(limit)
        pending = [(e.id, e.challenge_id, e.kind) for e in query.all()]
        for event_id, challenge_id, kind in pending:
            record = self.get(challenge_id)
            event = ChangeEvent(
                kind=kind if record is not None else DELETED,
                challenge_id=challenge_id,
                record=record,
                event_id=event_id,
            )
            if predicate is None or predicate(event):
                yield event

    def ack(self, event: ChangeEvent) -> None:
        if event.event_id is None:
            return
        self.session.query(ChallengeEvent).filter_by(id=event.event_id).delete()
        self.session.commit()

    def delete(self, challenge_id: str) -> None:
        self.session.query(Challenge).filter_by(id=challenge_id).delete()
        self.session.commit()


class MemoryChallengeStore:
    """In-process store. The lock stands in for the database's row atomicity."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, ChallengeState] = {}
        self._events: List[Tuple[int, str, str]] = []
        self._event_ids = itertools.count(1)

    def create(self, state: ChallengeState) -> ChallengeState:
        with self._lock:
            if state.id in self._records:
                raise KeyError(f"challenge {state.id} already exists")
            stored = state.evolve(version=1)
            self._records[state.id] = stored
            self._events.append((next(self._event_ids), state.id, CREATED))
            return stored.evolve()

    def get(self, challenge_id: str) -> Optional[ChallengeState]:
        with self._lock:
            record = self._records.get(challenge_id)
            return record.evolve() if record else None

    def conditional_update(self, challenge_id: str, expected_version: int, new_state: ChallengeState) -> bool:
        with self._lock:
            before = self._records.get(challenge_id)
            if before is None or before.version != expected_version:
                return False
            self._records[challenge_id] = new_state.evolve(version=expected_version + 1)
            for kind in transition_kinds(before, new_state):
                self._events.append((next(self._event_ids), challenge_id, kind))
            return True

    def subscribe_to_changes(self, predicate: Predicate = None, limit: Optional[int] = None) -> Iterator[ChangeEvent]:
        with self._lock:
            pending = list(self._events[:limit] if limit else self._events)
        for event_id, challenge_id, kind in pending:
            record = self.get(challenge_id)
            event = ChangeEvent(
                kind=kind if record is not None else DELETED,
                challenge_id=challenge_id,
                record=record,
                event_id=event_id,
            )
            if predicate is None or predicate(event):
                yield event

    def ack(self, event: ChangeEvent) -> None:
        with self._lock:
            self._events = [e for e in self._events if e[0] != event.event_id]

    def delete(self, challenge_id: str) -> None:
        with self._lock:
            self._records.pop(challenge_id, None)

    def redeliver(self, event: ChangeEvent) -> None:
        """Queue an already-handled event again, as an at-least-once stream may."""
        with self._lock:
            self._events.append((next(self._event_ids), event.challenge_id, event.kind))

    def pending_count(self) -> int:
        with self._lock:
            return len(self._events)
