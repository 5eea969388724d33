"""Background synchronisation with the review server.

Each iteration fetches either every open change (a full resync, once per
``full_sync_interval_seconds``) or only recently touched ones, feeds the
records into the store (a full resync also drops every tracked change
missing from the open set), then applies the auto-abandon policies:

1. Inactive for longer than ``abandon.inactive_days`` -> abandon.
2. Inactive for longer than ``abandon.failing_ci_days`` and the CI bot's
   latest Verified vote is present and not positive -> abandon.

Fetch failures never end the loop; they are retried after the constant
``retry_delay_seconds``.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Protocol

from review_monitor.config_schema import AbandonConfig, MonitorConfig
from review_monitor.exceptions import ConflictError, ReviewToolError
from review_monitor.models import VERIFIED_LABEL, ChangeRecord, ChangeStatus, Vote
from review_monitor.store import ChangeStore

logger = logging.getLogger("review_monitor")

# Fetch mode of the sync iteration in progress, shown in log lines.
sync_mode: contextvars.ContextVar[str | None] = contextvars.ContextVar("sync_mode", default=None)

INACTIVE_MESSAGE = (
    "Automatically abandoned due to inactivity of over two years.\n"
    "Please rebase and reopen if this should still be merged."
)
FAILING_CI_MESSAGE = (
    "Automatically abandoned due to missing or failing CI and inactivity of over one year.\n"
    "Please rebase, resolve CI and reopen if this should still be merged.\n"
    "\n"
    "CI status: {username}={value}"
)


class ChangeSource(Protocol):
    """What the sync loop needs from a review-server client."""

    async def fetch_all_open_changes(self) -> list[ChangeRecord]: ...

    async def fetch_recent_changes(self) -> list[ChangeRecord]: ...

    async def abandon(self, number: int, message: str) -> ChangeRecord: ...


class FetchMode(StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass
class SyncResult:
    """Outcome of one sync iteration."""

    mode: FetchMode
    fetched: int = 0
    dropped: list[int] = field(default_factory=list)
    abandoned: list[int] = field(default_factory=list)
    abandon_conflicts: list[int] = field(default_factory=list)
    abandon_failures: list[int] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def latest_ci_vote(change: ChangeRecord, ci_account: str) -> Vote | None:
    """Return the last Verified vote cast by the CI account, if any."""
    latest = None
    for vote in change.votes(VERIFIED_LABEL):
        if vote.username == ci_account:
            latest = vote
    return latest


def abandon_message(
    change: ChangeRecord,
    now: datetime,
    policy: AbandonConfig,
    ci_account: str,
) -> str | None:
    """Return the abandon message if *change* should be retired, else None."""
    inactive_for = now - change.updated
    if inactive_for > timedelta(days=policy.inactive_days):
        return INACTIVE_MESSAGE
    if inactive_for > timedelta(days=policy.failing_ci_days):
        vote = latest_ci_vote(change, ci_account)
        if vote is not None and vote.value <= 0:
            return FAILING_CI_MESSAGE.format(username=vote.username, value=vote.value)
    return None


@dataclass
class SyncLoop:
    """Keeps a ChangeStore in step with the review server."""

    client: ChangeSource
    store: ChangeStore
    config: MonitorConfig
    clock: Callable[[], datetime] = _utcnow
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    last_full_sync: datetime | None = None
    last_result: SyncResult | None = None

    def next_mode(self, now: datetime) -> FetchMode:
        if self.last_full_sync is None:
            return FetchMode.FULL
        elapsed = now - self.last_full_sync
        if elapsed >= timedelta(seconds=self.config.full_sync_interval_seconds):
            return FetchMode.FULL
        return FetchMode.INCREMENTAL

    async def run_once(self) -> SyncResult:
        """Fetch, feed the store, and apply abandon policies once.

        Raises:
            ReviewToolError: when the fetch itself fails.
        """
        now = self.clock()
        mode = self.next_mode(now)
        token = sync_mode.set(str(mode))
        try:
            return await self._run(mode, now)
        finally:
            sync_mode.reset(token)

    async def _run(self, mode: FetchMode, now: datetime) -> SyncResult:
        if mode is FetchMode.FULL:
            records = await self.client.fetch_all_open_changes()
            self.last_full_sync = now
        else:
            records = await self.client.fetch_recent_changes()

        for record in records:
            self.store.set(record)

        result = SyncResult(mode=mode, fetched=len(records))
        if mode is FetchMode.FULL:
            result.dropped = self.store.retain({record.number for record in records})
        if self.config.abandon.enabled:
            for record in records:
                await self._maybe_abandon(record, now, result)

        logger.info(
            "sync[%s] -> fetched=%s tracked=%s dropped=%s abandoned=%s",
            mode,
            result.fetched,
            len(self.store),
            len(result.dropped),
            len(result.abandoned),
        )
        self.last_result = result
        return result

    async def _maybe_abandon(self, record: ChangeRecord, now: datetime, result: SyncResult) -> None:
        if record.status is not ChangeStatus.NEW or record.work_in_progress:
            return
        message = abandon_message(record, now, self.config.abandon, self.config.ci_account)
        if message is None:
            return

        logger.info("Abandoning change %s (last updated: %s)", record.number, record.updated)
        try:
            await self.client.abandon(record.number, message)
        except ConflictError as exc:
            logger.warning("Abandon of change %s conflicted, keeping it: %s", record.number, exc)
            result.abandon_conflicts.append(record.number)
            return
        except ReviewToolError as exc:
            logger.error("Failed to abandon change %s: %s", record.number, exc)
            result.abandon_failures.append(record.number)
            return

        self.store.remove(record)
        result.abandoned.append(record.number)
        logger.info("Successfully abandoned change %s", record.number)

    async def run_forever(self) -> None:
        """Sync until cancelled; failed iterations retry after a fixed delay."""
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except ReviewToolError as exc:
                logger.warning(
                    "sync failed: %s; retrying in %ss", exc, self.config.retry_delay_seconds
                )
                await self.sleep(self.config.retry_delay_seconds)
                continue
            except Exception:
                logger.exception(
                    "sync failed unexpectedly; retrying in %ss", self.config.retry_delay_seconds
                )
                await self.sleep(self.config.retry_delay_seconds)
                continue
            await self.sleep(self.config.poll_interval_seconds)
