"""
event_log.py - Append-only ordered record of ledger events

The EventLog is the single source of historical truth. Events are keyed by
(height, sequence), appended in that order, and never mutated or removed.

It also records a timestamp per height (the logical block clock), so that
heights without events still have a time and snapshots can be tagged.

EventLog implements the EventFeed protocol.
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .core import (
    LedgerEvent, EventKind, HeightBound,
    EARLIEST, LATEST, EPOCH,
    CorruptionError,
    _freeze_args, digest_events,
)


def verify_ordering(events: Iterable[LedgerEvent]) -> None:
    """
    Check that events are strictly increasing by (height, sequence).

    Raises:
        CorruptionError: On the first event that is out of order or repeats
                         the position of its predecessor
    """
    previous: Optional[LedgerEvent] = None
    for event in events:
        if not isinstance(event, LedgerEvent):
            raise CorruptionError(f"Malformed event: {event!r}")
        if previous is not None and event.position <= previous.position:
            raise CorruptionError(
                f"Event {event.event_id} at {event.position} is not after "
                f"{previous.event_id} at {previous.position}"
            )
        previous = event


def resolve_bound(
    bound: HeightBound,
    earliest: Optional[int],
    latest: Optional[int],
) -> Optional[int]:
    """
    Turn a height bound into an int.

    EARLIEST resolves to `earliest` and LATEST to `latest`, on either side
    of a range. None means unbounded.
    """
    if bound is None:
        return None
    if bound == EARLIEST:
        return earliest
    if bound == LATEST:
        return latest
    if isinstance(bound, bool) or not isinstance(bound, int):
        raise ValueError(f"Height bound must be int, '{EARLIEST}' or '{LATEST}', got {bound!r}")
    return bound


class EventLog:
    """
    Ordered, append-only event log for one ledger.

    Sequence numbers are assigned by the log and increase monotonically
    across the whole log. Heights never decrease.

    Thread Safety:
        One writer. Readers receive tuples, never the internal list.
    """

    def __init__(self, ledger_id: str = ""):
        self.ledger_id = ledger_id
        self._events: List[LedgerEvent] = []
        self._next_sequence: int = 0
        # Parallel sorted lists of (height, timestamp) marks
        self._mark_heights: List[int] = []
        self._mark_times: List[datetime] = []

    @classmethod
    def from_events(cls, events: Iterable[LedgerEvent], ledger_id: str = "") -> EventLog:
        """
        Build a log from already-ordered events (e.g. fetched from a feed).

        Raises:
            CorruptionError: If the events are not strictly ordered
        """
        log = cls(ledger_id)
        for event in events:
            log.append_event(event)
        return log

    def clone(self) -> EventLog:
        """Independent copy sharing the (immutable) events."""
        cloned = EventLog.__new__(EventLog)
        cloned.ledger_id = self.ledger_id
        cloned._events = list(self._events)
        cloned._next_sequence = self._next_sequence
        cloned._mark_heights = list(self._mark_heights)
        cloned._mark_times = list(self._mark_times)
        return cloned

    # ========================================================================
    # APPEND
    # ========================================================================

    def append(
        self,
        kind: EventKind,
        args: Dict[str, Any],
        height: int,
        timestamp: Optional[datetime] = None,
    ) -> LedgerEvent:
        """
        Create and append an event at `height`, assigning the next sequence.

        Raises:
            CorruptionError: If `height` is below the last appended height
        """
        event = LedgerEvent(
            height=height,
            sequence=self._next_sequence,
            kind=kind,
            timestamp=timestamp or self.timestamp_at(height),
            _frozen_args=_freeze_args(args),
        )
        self.append_event(event)
        return event

    def append_event(self, event: LedgerEvent) -> None:
        """
        Append a pre-built event.

        Raises:
            CorruptionError: If the event does not sort strictly after the last one
        """
        if not isinstance(event, LedgerEvent):
            raise CorruptionError(f"Malformed event: {event!r}")
        if self._events and event.position <= self._events[-1].position:
            raise CorruptionError(
                f"Cannot append {event.event_id} at {event.position}: "
                f"log already at {self._events[-1].position}"
            )
        self._events.append(event)
        self._next_sequence = event.sequence + 1
        self.mark_height(event.height, event.timestamp)

    def mark_height(self, height: int, timestamp: datetime) -> None:
        """
        Record the time of a height. Marks only move forward.

        Re-marking the latest height keeps its first timestamp.
        """
        if self._mark_heights:
            last = self._mark_heights[-1]
            if height < last:
                raise CorruptionError(f"Height {height} is below latest height {last}")
            if height == last:
                return
            if timestamp < self._mark_times[-1]:
                raise CorruptionError(
                    f"Timestamp {timestamp} at height {height} precedes {self._mark_times[-1]}"
                )
        self._mark_heights.append(height)
        self._mark_times.append(timestamp)

    # ========================================================================
    # READ
    # ========================================================================

    @property
    def events(self) -> Tuple[LedgerEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(tuple(self._events))

    @property
    def first_height(self) -> Optional[int]:
        """Height of the first event ever appended, or None."""
        return self._events[0].height if self._events else None

    @property
    def latest_height(self) -> Optional[int]:
        """Highest marked height, or None if nothing was ever marked."""
        return self._mark_heights[-1] if self._mark_heights else None

    def timestamp_at(self, height: int) -> datetime:
        """Timestamp of the latest mark at or before `height` (EPOCH if none)."""
        idx = bisect_right(self._mark_heights, height) - 1
        if idx < 0:
            return EPOCH
        return self._mark_times[idx]

    def query_events(
        self,
        kinds: Optional[Iterable[EventKind]] = None,
        from_height: HeightBound = EARLIEST,
        to_height: HeightBound = LATEST,
        account: Optional[str] = None,
    ) -> List[LedgerEvent]:
        """
        Return events in (height, sequence) order within the height bounds.

        Args:
            kinds: Optional set of EventKinds to keep
            from_height: Lowest height (inclusive), EARLIEST or LATEST
            to_height: Highest height (inclusive), EARLIEST or LATEST
            account: Optional account that must appear in the payload
        """
        earliest = self._mark_heights[0] if self._mark_heights else None
        low = resolve_bound(from_height, earliest, self.latest_height)
        high = resolve_bound(to_height, earliest, self.latest_height)
        wanted = frozenset(kinds) if kinds is not None else None
        result = []
        for event in self._events:
            if low is not None and event.height < low:
                continue
            if high is not None and event.height > high:
                break
            if wanted is not None and event.kind not in wanted:
                continue
            if account is not None and not event.involves(account):
                continue
            result.append(event)
        return result

    def prefix(self, height: Optional[int]) -> Tuple[LedgerEvent, ...]:
        """All events with height <= `height` (the whole log when None)."""
        if height is None:
            return tuple(self._events)
        return tuple(e for e in self._events if e.height <= height)

    def digest(self, height: Optional[int] = None) -> str:
        """Content digest of the prefix up to `height`."""
        return digest_events(self.prefix(height))

    def __repr__(self) -> str:
        return f"EventLog({self.ledger_id!r}, {len(self._events)} events, latest={self.latest_height})"
