from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
import json
import logging

from .state import CAPACITY, ChallengeState


logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# Instants representable as a UTC datetime (years 1..9999)
MIN_TIMESTAMP_MS = -62135596800000
MAX_TIMESTAMP_MS = 253402300799999


@dataclass(frozen=True)
class ScoreboardEntry:
    rank: int
    responder: str
    timestamp: int
    latency: Optional[int]
    clock_anomaly: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rank': self.rank,
            'responder': self.responder,
            'response_instant': format_instant(self.timestamp),
            'latency': self.latency,
            'latency_text': format_latency(self.latency),
            'clock_anomaly': self.clock_anomaly,
        }


@dataclass(frozen=True)
class RenderedSummary:
    challenge_id: str
    entries: Tuple[ScoreboardEntry, ...]
    payload: Dict[str, Any]
    body: str


def rank_responses(responses: Mapping[str, int]) -> List[Tuple[str, int]]:
    """Responses ordered by timestamp, ties kept in acceptance order."""
    return sorted(responses.items(), key=lambda item: item[1])


def rank_of(responses: Mapping[str, int], responder: str) -> Optional[int]:
    for idx, (name, _) in enumerate(rank_responses(responses), start=1):
        if name == responder:
            return idx
    return None


def instant_in_range(timestamp_ms: int) -> bool:
    return MIN_TIMESTAMP_MS <= timestamp_ms <= MAX_TIMESTAMP_MS


def format_instant(timestamp_ms: int) -> str:
    """UTC ISO-8601 with milliseconds; raw ms when no calendar date exists."""
    if not instant_in_range(timestamp_ms):
        return f"{timestamp_ms}ms"
    instant = EPOCH + timedelta(milliseconds=timestamp_ms)
    return instant.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def format_latency(latency_ms: Optional[int]) -> str:
    if latency_ms is None:
        return '-'
    sign = '-' if latency_ms < 0 else ''
    seconds, millis = divmod(abs(latency_ms), 1000)
    return f"{sign}{seconds}.{millis:03d}s"


def compose(challenge: ChallengeState, capacity: int = CAPACITY) -> RenderedSummary:
    """Rank a challenge's responses and render the scoreboard payload.

    Pure apart from logging: the same challenge always renders the same
    ``body``. A negative latency or an instant outside the calendar range means a
    clock or event-ordering fault; the entry is flagged and still shown.
    """
    entries = []
    for rank, (responder, timestamp) in enumerate(rank_responses(challenge.responses)[:capacity], start=1):
        latency = timestamp - challenge.issued_at if challenge.issued_at is not None else None
        anomaly = (latency is not None and latency < 0) or not instant_in_range(timestamp)
        if anomaly:
            logger.warning(
                f"[clock-anomaly] challenge={challenge.id} responder={responder} timestamp={timestamp} latency={latency}ms"
            )
        entries.append(ScoreboardEntry(rank, responder, timestamp, latency, anomaly))

    lines = [f"Scoreboard for <@{challenge.initiator}>'s ping:"]
    for entry in entries:
        note = ' (clock anomaly)' if entry.clock_anomaly else ''
        lines.append(f"{entry.rank}. <@{entry.responder}> {format_latency(entry.latency)}{note}")
    if not entries:
        lines.append('Nobody ponged.')

    payload = {
        'type': 'scoreboard',
        'challenge_id': challenge.id,
        'team': challenge.team,
        'initiator': challenge.initiator,
        'issued_at': challenge.issued_at,
        'closed': challenge.closed,
        'text': '\n'.join(lines),
        'entries': [entry.to_dict() for entry in entries],
    }
    body = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return RenderedSummary(challenge.id, tuple(entries), payload, body)


def render_broadcast(challenge: ChallengeState, capacity: int = CAPACITY) -> Dict[str, Any]:
    """Challenge announcement with a single pong action keyed by the challenge id."""
    return {
        'type': 'challenge',
        'challenge_id': challenge.id,
        'team': challenge.team,
        'initiator': challenge.initiator,
        'issued_at': challenge.issued_at,
        'text': f"<@{challenge.initiator}> says ping! First {capacity} to pong make the scoreboard.",
        'actions': [
            {'name': 'pong', 'text': 'Pong!', 'type': 'button', 'value': challenge.id},
        ],
    }
