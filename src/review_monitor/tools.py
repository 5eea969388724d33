"""MCP tool definitions for the review monitor."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastmcp import Context

from review_monitor.aggregator import (
    TimeBucket,
    changes_by_owner_time,
    pick_community_review_changes,
)
from review_monitor.dashboard import build_report, change_summary
from review_monitor.models import ResponsibleParty
from review_monitor.server import mcp
from review_monitor.service import AppContext, caller_tag

logger = logging.getLogger("review_monitor")


def mcp_tool(*args, **kwargs):
    """FastMCP tool decorator with legacy `.fn` compatibility for tests/internal calls."""
    raw_tool = mcp.tool

    # Bare decorator usage: @mcp_tool
    if args and callable(args[0]) and len(args) == 1 and not kwargs:
        fn = args[0]
        registered = raw_tool(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    decorator = raw_tool(*args, **kwargs)

    def _decorate(fn):
        registered = decorator(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    return _decorate


def _app_ctx(ctx: Context) -> AppContext:
    """Resolve the monitor AppContext from a FastMCP Context, across versions."""
    if ctx is None:
        raise RuntimeError("Missing MCP context")
    if hasattr(ctx, "lifespan_context"):
        return ctx.lifespan_context
    rc = getattr(ctx, "request_context", None)
    if rc is not None and hasattr(rc, "lifespan_context"):
        return rc.lifespan_context
    fm = getattr(ctx, "fastmcp", None)
    if fm is not None and hasattr(fm, "_lifespan_result"):
        return fm._lifespan_result
    raise RuntimeError("Unable to resolve monitor lifespan context")


def _resolve_caller(caller_id: str | None) -> str:
    if not caller_id or caller_id.strip() == "":
        return "monitor"
    return caller_id.strip()


def _missing(value: str | None) -> bool:
    """Treat None/empty/whitespace-only as missing."""
    return value is None or value.strip() == ""


@mcp_tool
async def get_report(
    project: str | None = None,
    owner: str | None = None,
    by_repo: bool = False,
    caller_id: str | None = None,
    ctx: Context = None,
) -> dict:
    """Summarize open changes by who must act next.

    Rows are time since the review state last changed (<24 hrs ... >8 weeks),
    or repositories when by_repo=True. Columns are Community, Maintainers and
    Author. Use `project` or `owner` (username) to narrow the report.
    """
    caller_tag.set(_resolve_caller(caller_id))
    app: AppContext = _app_ctx(ctx)
    project = None if _missing(project) else project
    owner = None if _missing(owner) else owner
    result = build_report(app, project=project, owner=owner, by_repo=by_repo)
    logger.info(
        "get_report -> project=%s owner=%s by_repo=%s",
        project or "*",
        owner or "*",
        by_repo,
    )
    return result


@mcp_tool
async def get_review_status(
    change: str,
    caller_id: str | None = None,
    ctx: Context = None,
) -> dict:
    """Get the review state of one change by change number or Change-Id."""
    caller_tag.set(_resolve_caller(caller_id))
    app: AppContext = _app_ctx(ctx)
    tracked = app.store.lookup(change)
    if tracked is None:
        logger.info("get_review_status -> %s not found", change)
        return {"error": f"Could not find change: {change}"}
    logger.info("get_review_status -> %s %s", change, tracked.state.kind)
    return change_summary(app, tracked, datetime.now(UTC))


@mcp_tool
async def list_changes(
    party: str | None = None,
    bucket: str | None = None,
    project: str | None = None,
    owner: str | None = None,
    caller_id: str | None = None,
    ctx: Context = None,
) -> dict:
    """List tracked changes, optionally narrowed to one report cell.

    `party` is one of author, community, maintainer. `bucket` is one of
    "<24 hrs", "<72 hrs", "<2 weeks", "<8 weeks", ">8 weeks".
    """
    caller_tag.set(_resolve_caller(caller_id))
    app: AppContext = _app_ctx(ctx)
    project = None if _missing(project) else project
    owner = None if _missing(owner) else owner

    parties = list(ResponsibleParty)
    if not _missing(party):
        try:
            parties = [ResponsibleParty(party.strip().lower())]
        except ValueError:
            return {"error": f"Unknown party: {party}"}
    buckets = list(TimeBucket)
    if not _missing(bucket):
        try:
            buckets = [TimeBucket(bucket.strip())]
        except ValueError:
            return {"error": f"Unknown bucket: {bucket}"}

    now = datetime.now(UTC)
    changes = app.store.snapshot()
    report = changes_by_owner_time(changes, now=now, project=project, owner=owner)
    by_number = {tracked.number: tracked for tracked in changes}
    numbers = sorted(
        number
        for selected_bucket in buckets
        for selected_party in parties
        for number in report.get_changes(selected_bucket, selected_party)
    )
    logger.info("list_changes -> %s changes", len(numbers))
    return {"changes": [change_summary(app, by_number[number], now) for number in numbers]}


@mcp_tool
async def get_community_review_picks(
    caller_id: str | None = None,
    ctx: Context = None,
) -> dict:
    """Suggest a few changes waiting on community review, favouring recent ones."""
    caller_tag.set(_resolve_caller(caller_id))
    app: AppContext = _app_ctx(ctx)
    now = datetime.now(UTC)
    picks, total = pick_community_review_changes(
        app.store.snapshot(),
        app.config.community_patterns,
        now=now,
        total=app.config.community_picks.total,
        recent=app.config.community_picks.recent,
    )
    logger.info("get_community_review_picks -> %s of %s", len(picks), total)
    return {
        "changes": [change_summary(app, tracked, now) for tracked in picks],
        "total": total,
        "more": max(total - len(picks), 0),
    }


@mcp_tool
async def get_sync_status(caller_id: str | None = None, ctx: Context = None) -> dict:
    """Report whether syncing is enabled and what the last iteration did."""
    caller_tag.set(_resolve_caller(caller_id))
    app: AppContext = _app_ctx(ctx)
    sync = app.sync
    if sync is None:
        return {"enabled": False, "tracked": len(app.store)}
    last = sync.last_result
    return {
        "enabled": True,
        "tracked": len(app.store),
        "last_full_sync": sync.last_full_sync.isoformat() if sync.last_full_sync else None,
        "last_mode": str(last.mode) if last else None,
        "last_fetched": last.fetched if last else None,
        "last_abandoned": last.abandoned if last else [],
        "last_dropped": last.dropped if last else [],
    }
