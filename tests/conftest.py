"""Shared test fixtures for the review monitor."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest

from review_monitor.config_schema import MonitorConfig
from review_monitor.models import Account, ChangeRecord, ChangeStatus, Vote
from review_monitor.service import AppContext
from review_monitor.store import ChangeStore

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)
CI_ACCOUNT = "jenkins-openbmc-ci"
OWNER = Account(account_id=1000, username="alice", name="Alice Author")


def build_record(**overrides) -> ChangeRecord:
    """A NEW change with passing CI and no reviews (community review) unless overridden."""
    number = overrides.get("number", 1)
    defaults = {
        "number": number,
        "change_id": f"I{number:040x}",
        "project": "openbmc/bmcweb",
        "branch": "master",
        "subject": f"Change number {number}",
        "owner": OWNER,
        "created": NOW - timedelta(days=10),
        "updated": NOW - timedelta(days=1),
        "status": ChangeStatus.NEW,
        "work_in_progress": False,
        "mergeable": True,
        "unresolved_comment_count": 0,
        "labels": {
            "Verified": [Vote(username=CI_ACCOUNT, value=1)],
            "Code-Review": [],
        },
        "submit_requirements": [],
    }
    defaults.update(overrides)
    return ChangeRecord(**defaults)


@dataclass
class _MockFastMCP:
    """Stands in for the FastMCP instance so ctx.fastmcp._lifespan_result works."""

    _lifespan_result: AppContext


@dataclass
class MockContext:
    """Minimal mock for fastmcp.Context that provides fastmcp._lifespan_result."""

    fastmcp: _MockFastMCP

    @property
    def lifespan_context(self) -> AppContext:
        return self.fastmcp._lifespan_result


@pytest.fixture
def make_record() -> Callable[..., ChangeRecord]:
    return build_record


@pytest.fixture
def store() -> ChangeStore:
    return ChangeStore(ci_account=CI_ACCOUNT)


@pytest.fixture
def app_ctx(store: ChangeStore) -> AppContext:
    return AppContext(config=MonitorConfig(), store=store)


@pytest.fixture
def ctx(app_ctx: AppContext) -> MockContext:
    """Create a MockContext wrapping an AppContext with an empty store."""
    return MockContext(fastmcp=_MockFastMCP(_lifespan_result=app_ctx))
