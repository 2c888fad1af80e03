from typing import Callable, Optional
import logging

from .errors import ConflictRetriesExhausted
from .scoreboard import compose, render_broadcast
from .state import CAPACITY, CLOSED, CREATED, ISSUED, ChallengeState, ChangeEvent


logger = logging.getLogger(__name__)

BROADCAST = 'broadcast'
SCOREBOARD = 'scoreboard'


def team_room(team: str) -> str:
    return f"team:{team}"


class LifecycleDispatcher:
    """Turns challenge change events into notifications, once per transition.

    The store may deliver an event more than once, and several dispatchers
    may drain the same stream. Each side effect is therefore claimed first
    by flipping its flag on the record (``broadcast_sent`` or
    ``scoreboard_sent``) with a conditional update; only the claim winner
    delivers. Delivery happens after the claim, so a failed delivery is
    dropped rather than repeated.
    """

    def __init__(self, store, gateway, resolve_endpoint: Optional[Callable[[str], str]] = None,
                 capacity: int = CAPACITY, max_attempts: int = 5):
        self.store = store
        self.gateway = gateway
        self.resolve_endpoint = resolve_endpoint or team_room
        self.capacity = capacity
        self.max_attempts = max_attempts

    def handle(self, event: ChangeEvent) -> Optional[str]:
        """Handle one change event; returns which notification was sent, if any."""
        # Render before claiming: a set flag always has a deliverable payload.
        if event.kind in (CREATED, ISSUED):
            current = self.store.get(event.challenge_id)
            if current is None or not current.issued or current.broadcast_sent:
                return None
            payload = render_broadcast(current, self.capacity)
            claimed = self._claim(event.challenge_id, 'broadcast_sent', lambda c: c.issued)
            if claimed is None:
                return None
            self.gateway.deliver(self.resolve_endpoint(claimed.team), payload)
            logger.info(f"[broadcast] challenge={claimed.id} team={claimed.team}")
            return BROADCAST

        if event.kind == CLOSED:
            current = self.store.get(event.challenge_id)
            if current is None or not current.closed or current.scoreboard_sent:
                return None
            # responses never change once closed, so this is the final board
            summary = compose(current, self.capacity)
            claimed = self._claim(event.challenge_id, 'scoreboard_sent', lambda c: c.closed)
            if claimed is None:
                return None
            self.gateway.deliver(self.resolve_endpoint(claimed.team), summary.payload)
            logger.info(f"[scoreboard] challenge={claimed.id} team={claimed.team} entries={len(summary.entries)}")
            return SCOREBOARD

        # deleted records and unknown kinds are cleanup, not transitions
        return None

    def drain(self, limit: Optional[int] = None, predicate=None) -> int:
        """Handle and acknowledge queued events. Failed events stay queued."""
        handled = 0
        for event in self.store.subscribe_to_changes(predicate, limit=limit):
            try:
                self.handle(event)
            except Exception:
                logger.exception(f"[dispatch-failed] challenge={event.challenge_id} kind={event.kind} event={event.event_id}")
                continue
            self.store.ack(event)
            handled += 1
        return handled

    def _claim(self, challenge_id: str, flag: str, ready: Callable[[ChallengeState], bool]) -> Optional[ChallengeState]:
        for attempt in range(1, self.max_attempts + 1):
            current = self.store.get(challenge_id)
            if current is None or not ready(current) or getattr(current, flag):
                return None
            claimed = current.evolve(**{flag: True})
            if self.store.conditional_update(challenge_id, current.version, claimed):
                return claimed
            logger.info(f"[conflict] challenge={challenge_id} op=claim-{flag} attempt={attempt}")
        raise ConflictRetriesExhausted(challenge_id, self.max_attempts)
