"""In-memory store of tracked changes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from review_monitor.classifier import DEFAULT_CI_ACCOUNT, classify
from review_monitor.models import ChangeRecord, ChangeStatus, TrackedChange

logger = logging.getLogger("review_monitor")


@dataclass
class ChangeStore:
    """Tracked changes keyed by change number, with a change-id index.

    Every operation takes one lock around both maps and never blocks on
    anything else, so the index and the primary map are always consistent.
    Callers do their network I/O first and hand finished records to
    ``set``/``remove``.

    Usage:
        store = ChangeStore()
        store.set(record)            # classify and track (or drop)
        store.get(12345)             # by number
        store.get_by_change_id("I0123abc...")
        for tracked in store.snapshot(): ...
    """

    ci_account: str = DEFAULT_CI_ACCOUNT
    _changes: dict[int, TrackedChange] = field(default_factory=dict)
    _by_change_id: dict[str, set[int]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._changes)

    def __contains__(self, number: object) -> bool:
        with self._lock:
            return number in self._changes

    def set(self, record: ChangeRecord) -> TrackedChange | None:
        """Track *record*, or drop it if it is closed or work in progress.

        The state timestamp is kept when the newly classified state has the
        same kind as the stored one, even if the record itself was updated.
        Returns the stored entry, or None when the change was dropped.
        """
        if record.status is not ChangeStatus.NEW or record.work_in_progress:
            with self._lock:
                dropped = self._discard(record.number)
            if dropped:
                logger.info(
                    "change %s dropped (status=%s wip=%s)",
                    record.number,
                    record.status,
                    record.work_in_progress,
                )
            return None

        state = classify(record, self.ci_account)
        with self._lock:
            previous = self._changes.get(record.number)
            if previous is not None and previous.state.same_kind(state):
                changed_at = previous.state_changed_at
            else:
                changed_at = record.updated

            tracked = TrackedChange(record=record, state=state, state_changed_at=changed_at)
            if previous is not None and previous.change_id != record.change_id:
                self._unindex(previous.change_id, record.number)
            self._changes[record.number] = tracked
            self._by_change_id.setdefault(record.change_id, set()).add(record.number)

        logger.debug("change %s -> %s", record.number, state.describe())
        if previous is not None and not previous.state.same_kind(state):
            logger.info(
                "change %s state %s -> %s",
                record.number,
                previous.state.kind,
                state.kind,
            )
        return tracked

    def remove(self, record: ChangeRecord) -> None:
        """Stop tracking the change behind *record*; no-op if untracked."""
        with self._lock:
            self._discard(record.number)

    def retain(self, numbers: set[int]) -> list[int]:
        """Drop every tracked change whose number is not in *numbers*.

        Used after a full resync: a change missing from the complete open
        set was closed or turned WIP upstream. Returns the dropped numbers.
        """
        with self._lock:
            dropped = sorted(number for number in self._changes if number not in numbers)
            for number in dropped:
                self._discard(number)
        if dropped:
            logger.info("dropped %s changes no longer open: %s", len(dropped), dropped)
        return dropped

    def get(self, number: int) -> TrackedChange | None:
        with self._lock:
            return self._changes.get(number)

    def get_by_change_id(self, change_id: str) -> TrackedChange | None:
        """Look a change up by Change-Id.

        A Change-Id can be shared by changes on different branches; the
        lowest change number wins.
        """
        with self._lock:
            numbers = self._by_change_id.get(change_id)
            if not numbers:
                return None
            return self._changes.get(min(numbers))

    def lookup(self, identifier: str) -> TrackedChange | None:
        """Resolve a user-supplied change number or Change-Id."""
        identifier = identifier.strip()
        try:
            number = int(identifier)
        except ValueError:
            return self.get_by_change_id(identifier)
        return self.get(number)

    def snapshot(self) -> list[TrackedChange]:
        """Copy of every tracked change, safe to iterate without the lock."""
        with self._lock:
            return list(self._changes.values())

    def _discard(self, number: int) -> bool:
        tracked = self._changes.pop(number, None)
        if tracked is None:
            return False
        self._unindex(tracked.change_id, number)
        return True

    def _unindex(self, change_id: str, number: int) -> None:
        numbers = self._by_change_id.get(change_id)
        if numbers is None:
            return
        numbers.discard(number)
        if not numbers:
            del self._by_change_id[change_id]
