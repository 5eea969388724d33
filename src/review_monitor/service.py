"""Application context and lifespan for the review monitor."""

from __future__ import annotations

import asyncio
import contextvars
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field

from fastmcp import FastMCP

from review_monitor.config_schema import MonitorConfig, load_monitor_config, resolve_config_path
from review_monitor.exceptions import ConfigurationError
from review_monitor.gerrit import GerritClient
from review_monitor.store import ChangeStore
from review_monitor.sync import SyncLoop

logger = logging.getLogger("review_monitor")

# ContextVar holding the caller identity for log lines.
# Default "monitor" is used for internal/system actions.
caller_tag: contextvars.ContextVar[str] = contextvars.ContextVar("caller_tag", default="monitor")


@dataclass
class AppContext:
    """Application context shared by tools, routes and the sync loop."""

    config: MonitorConfig
    store: ChangeStore
    client: GerritClient | None = None
    sync: SyncLoop | None = None
    started_at: float = field(default_factory=time.monotonic)

    def change_url(self, project: str, number: int) -> str:
        return f"{self.config.gerrit_url}/c/{project}/+/{number}"


# Module-level AppContext, set by monitor_lifespan via set_app_context().
_app_ctx: AppContext | None = None


def set_app_context(ctx: AppContext | None) -> None:
    """Store the AppContext for route handlers to access."""
    global _app_ctx
    _app_ctx = ctx


def get_app_context() -> AppContext | None:
    return _app_ctx


async def _run_sync(loop: SyncLoop) -> None:
    caller_tag.set("sync")
    await loop.run_forever()


@asynccontextmanager
async def monitor_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the store and start syncing at server startup, stop on shutdown."""
    del server
    config_path = resolve_config_path()
    config = load_monitor_config(config_path)
    store = ChangeStore(ci_account=config.ci_account)

    client: GerritClient | None = None
    try:
        client = GerritClient.from_env(
            config.gerrit_url,
            timeout=config.request_timeout_seconds,
            incremental_lookback=config.incremental_lookback,
        )
    except ConfigurationError as exc:
        logger.warning("Gerrit credentials missing, sync disabled: %s", exc.message)

    ctx = AppContext(config=config, store=store, client=client)
    background_task: asyncio.Task | None = None
    if client is not None:
        ctx.sync = SyncLoop(client=client, store=store, config=config)
        background_task = asyncio.create_task(_run_sync(ctx.sync))

    set_app_context(ctx)
    logger.info("Monitor ready - gerrit=%s config=%s", config.gerrit_url, config_path)
    try:
        yield ctx
    finally:
        if background_task is not None:
            background_task.cancel()
            with suppress(asyncio.CancelledError):
                await background_task
        if client is not None:
            await client.close()
        set_app_context(None)
