"""Dashboard HTTP routes serving change reports as HTML pages and JSON."""

from __future__ import annotations

import html
import logging
import time
from datetime import UTC, datetime

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from review_monitor import __version__
from review_monitor.aggregator import (
    changes_by_owner_repo,
    changes_by_owner_time,
    format_waiting,
    render_change_list,
    render_report,
    select_changes,
)
from review_monitor.models import TrackedChange
from review_monitor.responsibility import owner_of
from review_monitor.service import AppContext, get_app_context

logger = logging.getLogger("review_monitor")

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
</head>
<body>
<nav><a href="/report">Overall</a> | <a href="/report/repo">By repository</a></nav>
<h1>{title}</h1>
{body}
</body>
</html>
"""


def change_summary(app: AppContext, tracked: TrackedChange, now: datetime) -> dict:
    """Serialize a tracked change for tool and API responses."""
    record = tracked.record
    party = owner_of(tracked.state)
    return {
        "number": record.number,
        "change_id": record.change_id,
        "project": record.project,
        "branch": record.branch,
        "subject": record.subject,
        "owner": record.owner.username,
        "updated": record.updated.isoformat(),
        "state": str(tracked.state.kind),
        "state_text": tracked.state.describe(),
        "party": str(party) if party is not None else None,
        "state_changed_at": tracked.state_changed_at.isoformat(),
        "waiting": format_waiting(now - tracked.state_changed_at),
        "url": app.change_url(record.project, record.number),
    }


def build_report(
    app: AppContext,
    project: str | None = None,
    owner: str | None = None,
    by_repo: bool = False,
    changes: list[TrackedChange] | None = None,
) -> dict:
    """Aggregate *changes* (default: a fresh store snapshot) into the report payload."""
    if changes is None:
        changes = app.store.snapshot()
    if by_repo:
        report = changes_by_owner_repo(changes, project=project, owner=owner)
    else:
        report = changes_by_owner_time(changes, project=project, owner=owner)
    if project is not None:
        title = f"Project {project}"
    elif owner is not None:
        title = f"User {owner}"
    else:
        title = "Overall Status"
    return {
        "title": title,
        "report_text": render_report(report),
        "report": report.to_dict(),
    }


def _render_page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        PAGE_TEMPLATE.format(title=html.escape(title), body=body),
        status_code=status_code,
    )


def _pre(text: str) -> str:
    return f"<pre>{html.escape(text)}</pre>"


def _not_ready() -> Response:
    return PlainTextResponse("Monitor not ready", status_code=503)


def _report_page(
    app: AppContext,
    project: str | None = None,
    owner: str | None = None,
    by_repo: bool = False,
) -> HTMLResponse:
    changes = app.store.snapshot()
    data = build_report(app, project=project, owner=owner, by_repo=by_repo, changes=changes)
    body = _pre(data["report_text"])
    if not by_repo:
        changes_text = render_change_list(
            select_changes(changes, project, owner),
            change_url=lambda tracked: app.change_url(tracked.record.project, tracked.number),
        )
        if changes_text:
            body += "\n<h2>Changes</h2>\n" + _pre(changes_text)
    return _render_page(data["title"], body)


def register_dashboard_routes(mcp: object) -> None:
    """Register all dashboard HTTP routes on the FastMCP server instance.

    Routes: /healthz, /api/report, /api/changes/{change}, /report,
            /report/repo, /report/project/{project}, /report/user/{username},
            /change/{change}
    """
    started = time.monotonic()

    @mcp.custom_route("/healthz", methods=["GET"])  # type: ignore[union-attr]
    async def healthz(request: Request) -> Response:
        app = get_app_context()
        return JSONResponse({
            "status": "ok" if app is not None else "starting",
            "version": __version__,
            "uptime_seconds": round(time.monotonic() - started, 1),
            "tracked": len(app.store) if app is not None else 0,
        })

    @mcp.custom_route("/api/report", methods=["GET"])  # type: ignore[union-attr]
    async def report_api(request: Request) -> Response:
        """JSON report; query params: project, owner, by=repo."""
        app = get_app_context()
        if app is None:
            return _not_ready()
        params = request.query_params
        data = build_report(
            app,
            project=params.get("project") or None,
            owner=params.get("owner") or None,
            by_repo=params.get("by") == "repo",
        )
        return JSONResponse(data)

    @mcp.custom_route("/api/changes/{change}", methods=["GET"])  # type: ignore[union-attr]
    async def change_api(request: Request) -> Response:
        app = get_app_context()
        if app is None:
            return _not_ready()
        change = request.path_params["change"]
        tracked = app.store.lookup(change)
        if tracked is None:
            return JSONResponse({"error": f"Could not find change: {change}"}, status_code=404)
        return JSONResponse(change_summary(app, tracked, datetime.now(UTC)))

    @mcp.custom_route("/report", methods=["GET"])  # type: ignore[union-attr]
    async def report_overall(request: Request) -> Response:
        app = get_app_context()
        if app is None:
            return _not_ready()
        return _report_page(app)

    @mcp.custom_route("/report/repo", methods=["GET"])  # type: ignore[union-attr]
    async def report_by_repo(request: Request) -> Response:
        app = get_app_context()
        if app is None:
            return _not_ready()
        return _report_page(app, by_repo=True)

    @mcp.custom_route("/report/project/{project:path}", methods=["GET"])  # type: ignore[union-attr]
    async def report_project(request: Request) -> Response:
        app = get_app_context()
        if app is None:
            return _not_ready()
        return _report_page(app, project=request.path_params["project"])

    @mcp.custom_route("/report/user/{username}", methods=["GET"])  # type: ignore[union-attr]
    async def report_user(request: Request) -> Response:
        app = get_app_context()
        if app is None:
            return _not_ready()
        return _report_page(app, owner=request.path_params["username"])

    @mcp.custom_route("/change/{change}", methods=["GET"])  # type: ignore[union-attr]
    async def change_page(request: Request) -> Response:
        app = get_app_context()
        if app is None:
            return _not_ready()
        change = request.path_params["change"]
        tracked = app.store.lookup(change)
        if tracked is None:
            return _render_page(
                f"Change {change}",
                f"<p>Could not find change: {html.escape(change)}</p>",
                status_code=404,
            )
        url = app.change_url(tracked.record.project, tracked.number)
        body = (
            f"<p>{html.escape(tracked.record.subject)}</p>\n"
            f"<p>Change {tracked.number} is {html.escape(tracked.state.describe())}"
            f" (waiting {format_waiting(datetime.now(UTC) - tracked.state_changed_at)}).</p>\n"
            f'<p><a href="{html.escape(url)}">{html.escape(url)}</a></p>'
        )
        return _render_page(f"Change {change}", body)
