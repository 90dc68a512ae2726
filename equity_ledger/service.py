"""
service.py - Cap table queries over registered ledgers

CapTableService turns "cap table of ledger X at height H" into a snapshot:

    1. Resolve the ledger's event feed (NotFoundError if unknown)
    2. Discover its deployment height (registered value, else first event)
    3. Range-check H against [deployment, current - confirmation_depth]
    4. Fetch events up to H and assemble the snapshot

Finality: with confirmation_depth = d, heights above current - d are not
final and are rejected with OutOfRangeError. Snapshots are cached only for
heights strictly below the current height, whose events can no longer change.

Thread Safety:
    Caches are guarded by a lock; snapshot assembly itself is pure, so
    concurrent get_cap_table() calls are safe.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple

from .core import (
    EventFeed, PERCENTAGE_PRECISION, EARLIEST,
    NotFoundError, OutOfRangeError,
)
from .ledger import GatedLedger
from .replay import CheckpointCache
from .snapshot import CapTableSnapshot, assemble_snapshot
from .history import HistoryEntry, transaction_history


@dataclass(frozen=True, slots=True)
class HeightLookup:
    """Result of find_height_by_timestamp()."""
    height: int
    timestamp: datetime


class CapTableService:
    """
    Snapshot query service over one or more event feeds.

    Example:
        service = CapTableService(confirmation_depth=0)
        service.register_ledger(ledger)
        table = service.get_cap_table(ledger.ledger_id, height=120)
        for holder in table.holders:
            print(holder.address, holder.balance, holder.percentage)
    """

    def __init__(
        self,
        precision: int = PERCENTAGE_PRECISION,
        confirmation_depth: int = 0,
        cache_snapshots: bool = True,
        verbose: bool = False,
    ):
        if confirmation_depth < 0:
            raise ValueError(f"confirmation_depth must be >= 0, got {confirmation_depth}")
        if precision < 0:
            raise ValueError(f"precision must be >= 0, got {precision}")
        self.precision = precision
        self.confirmation_depth = confirmation_depth
        self.cache_snapshots = cache_snapshots
        self.verbose = verbose
        self._feeds: Dict[str, EventFeed] = {}
        self._registered_heights: Dict[str, int] = {}
        self._deployment_cache: Dict[str, int] = {}
        self._snapshots: Dict[Tuple[str, int], CapTableSnapshot] = {}
        self._checkpoints: Dict[str, CheckpointCache] = {}
        self._lock = Lock()

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register(
        self,
        ledger_id: str,
        feed: EventFeed,
        deployment_height: Optional[int] = None,
    ) -> None:
        """
        Register an event feed under `ledger_id`.

        Re-registering replaces the feed and drops everything cached for it.
        """
        if not isinstance(feed, EventFeed):
            raise TypeError(f"{feed!r} does not implement EventFeed")
        with self._lock:
            self._feeds[ledger_id] = feed
            if deployment_height is not None:
                self._registered_heights[ledger_id] = deployment_height
            else:
                self._registered_heights.pop(ledger_id, None)
        self.invalidate(ledger_id)

    def register_ledger(self, ledger: GatedLedger) -> None:
        """Register a live ledger's own log, with its genesis height."""
        self.register(ledger.ledger_id, ledger.event_log, ledger.genesis_height)

    def unregister(self, ledger_id: str) -> None:
        with self._lock:
            self._feeds.pop(ledger_id, None)
            self._registered_heights.pop(ledger_id, None)
        self.invalidate(ledger_id)

    @property
    def ledger_ids(self) -> List[str]:
        return sorted(self._feeds)

    def _feed(self, ledger_id: str) -> EventFeed:
        feed = self._feeds.get(ledger_id)
        if feed is None:
            raise NotFoundError(f"Unknown ledger: {ledger_id}")
        return feed

    # ========================================================================
    # HEIGHTS
    # ========================================================================

    def deployment_height(self, ledger_id: str) -> int:
        """
        Genesis height of a ledger.

        Uses the height given at registration, otherwise the height of the
        first event the feed returns. The result is cached.

        Raises:
            NotFoundError: If the ledger is unknown or has neither
        """
        feed = self._feed(ledger_id)
        with self._lock:
            cached = self._deployment_cache.get(ledger_id)
            if cached is not None:
                return cached
            registered = self._registered_heights.get(ledger_id)

        height = registered
        if height is None:
            first = feed.query_events(from_height=EARLIEST)
            if not first:
                raise NotFoundError(f"Deployment height of {ledger_id} cannot be determined")
            height = first[0].height

        with self._lock:
            self._deployment_cache[ledger_id] = height
        return height

    def current_height(self, ledger_id: str) -> int:
        latest = self._feed(ledger_id).latest_height
        if latest is None:
            raise NotFoundError(f"Ledger {ledger_id} has no heights yet")
        return latest

    def finalized_height(self, ledger_id: str) -> int:
        """Highest height at least confirmation_depth below the current one."""
        return self.current_height(ledger_id) - self.confirmation_depth

    def _check_range(self, ledger_id: str, height: int) -> None:
        genesis = self.deployment_height(ledger_id)
        current = self.current_height(ledger_id)
        final = current - self.confirmation_depth
        if height < genesis:
            raise OutOfRangeError(
                f"Height {height} is before deployment of {ledger_id} at height {genesis}"
            )
        if height > current:
            raise OutOfRangeError(
                f"Height {height} is in the future. Current height: {current}"
            )
        if height > final:
            raise OutOfRangeError(
                f"Height {height} is not final yet (finalized height: {final})"
            )

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def get_cap_table(self, ledger_id: str, height: Optional[int] = None) -> CapTableSnapshot:
        """
        Cap table of `ledger_id` at `height`.

        Args:
            ledger_id: Registered ledger
            height: Snapshot height; None means the finalized height

        Raises:
            NotFoundError: Unknown ledger or undiscoverable deployment height
            OutOfRangeError: height before deployment, in the future, or not final
            CorruptionError: The feed returned an invalid event sequence
        """
        feed = self._feed(ledger_id)
        target = self.finalized_height(ledger_id) if height is None else height
        self._check_range(ledger_id, target)

        key = (ledger_id, target)
        with self._lock:
            cached = self._snapshots.get(key)
        if cached is not None:
            if self.verbose:
                print(f"↺ CACHED: {ledger_id} @ {target}")
            return cached

        genesis = self.deployment_height(ledger_id)
        events = feed.query_events(from_height=genesis, to_height=target)
        snapshot = assemble_snapshot(
            events,
            height=target,
            timestamp=feed.timestamp_at(target),
            ledger_id=ledger_id,
            precision=self.precision,
            checkpoints=self._checkpoint_cache(ledger_id),
        )

        if self.cache_snapshots and target < self.current_height(ledger_id):
            with self._lock:
                self._snapshots[key] = snapshot
        if self.verbose:
            print(f"✓ SNAPSHOT: {ledger_id} @ {target}: {len(snapshot.holders)} holders, "
                  f"supply {snapshot.total_supply}")
        return snapshot

    def _checkpoint_cache(self, ledger_id: str) -> CheckpointCache:
        with self._lock:
            cache = self._checkpoints.get(ledger_id)
            if cache is None:
                cache = self._checkpoints[ledger_id] = CheckpointCache()
            return cache

    def invalidate(self, ledger_id: Optional[str] = None) -> None:
        """Drop cached snapshots, checkpoints and deployment heights (all ledgers if None)."""
        with self._lock:
            if ledger_id is None:
                self._snapshots.clear()
                self._checkpoints.clear()
                self._deployment_cache.clear()
            else:
                for key in [k for k in self._snapshots if k[0] == ledger_id]:
                    del self._snapshots[key]
                self._checkpoints.pop(ledger_id, None)
                self._deployment_cache.pop(ledger_id, None)
        if self.verbose:
            print(f"✗ INVALIDATED: {ledger_id or 'all ledgers'}")

    # ========================================================================
    # TIME LOOKUP
    # ========================================================================

    def find_height_by_timestamp(self, ledger_id: str, timestamp: datetime) -> HeightLookup:
        """
        Latest height whose timestamp is <= `timestamp`, by binary search
        between the deployment height and the current height.

        Raises:
            OutOfRangeError: If timestamp is after the current height's time,
                             or before the deployment height's time
        """
        feed = self._feed(ledger_id)
        current = self.current_height(ledger_id)
        if timestamp > feed.timestamp_at(current):
            raise OutOfRangeError(
                f"Timestamp {timestamp} is in the future (current height {current} "
                f"at {feed.timestamp_at(current)})"
            )
        genesis = self.deployment_height(ledger_id)
        if timestamp < feed.timestamp_at(genesis):
            raise OutOfRangeError(
                f"Timestamp {timestamp} is before deployment of {ledger_id} at height {genesis}"
            )

        low, high, found = genesis, current, genesis
        while low <= high:
            mid = (low + high) // 2
            if feed.timestamp_at(mid) <= timestamp:
                found = mid
                low = mid + 1
            else:
                high = mid - 1
        return HeightLookup(found, feed.timestamp_at(found))

    def get_cap_table_at_time(self, ledger_id: str, timestamp: datetime) -> CapTableSnapshot:
        return self.get_cap_table(ledger_id, self.find_height_by_timestamp(ledger_id, timestamp).height)

    # ========================================================================
    # HISTORY
    # ========================================================================

    def transaction_history(
        self,
        ledger_id: str,
        entry_types: Optional[Iterable[str]] = None,
        from_height: Optional[int] = None,
        to_height: Optional[int] = None,
        account: Optional[str] = None,
        newest_first: bool = True,
    ) -> List[HistoryEntry]:
        """History entries of a ledger; see history.transaction_history()."""
        feed = self._feed(ledger_id)
        genesis = self.deployment_height(ledger_id)
        events = feed.query_events(from_height=genesis)
        return transaction_history(
            events,
            entry_types=entry_types,
            from_height=from_height,
            to_height=to_height,
            account=account,
            newest_first=newest_first,
        )
