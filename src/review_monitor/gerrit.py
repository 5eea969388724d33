"""Async Gerrit REST client.

Fetches open changes and issues abandon requests. Responses are parsed into
``ChangeRecord`` snapshots here; anything that cannot be parsed surfaces as
``ResponseError`` so callers never see a partial record.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from review_monitor.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ResponseError,
    ReviewToolError,
    ServerError,
    TransportError,
)
from review_monitor.models import (
    Account,
    ChangeRecord,
    RequirementStatus,
    SubmitRequirement,
    Vote,
)

logger = logging.getLogger("review_monitor")

USERNAME_ENV_VAR = "GERRIT_USERNAME"
PASSWORD_ENV_VAR = "GERRIT_PASSWORD"
# Gerrit prefixes JSON bodies with this to defeat XSSI.
MAGIC_PREFIX = ")]}'"
QUERY_OPTIONS = (
    "LABELS",
    "DETAILED_LABELS",
    "DETAILED_ACCOUNTS",
    "SUBMITTABLE",
    "CURRENT_REVISION",
    "CURRENT_FILES",
)
OPEN_CHANGES_QUERY = "status:open -is:wip"
# Closed and WIP changes are included so the store sees them leave.
TOUCHED_CHANGES_QUERY = "(status:open OR status:closed)"


def prune_magic(text: str) -> str:
    if text.startswith(MAGIC_PREFIX):
        return text[len(MAGIC_PREFIX):]
    return text


def parse_timestamp(value: str) -> datetime:
    """Parse Gerrit's 'YYYY-MM-DD hh:mm:ss.fffffffff' UTC timestamps."""
    head, _, fraction = value.strip().partition(".")
    # strptime only understands microseconds; Gerrit sends nanoseconds.
    micros = (fraction[:6] or "0").ljust(6, "0")
    parsed = datetime.strptime(f"{head}.{micros}", "%Y-%m-%d %H:%M:%S.%f")
    return parsed.replace(tzinfo=UTC)


def _parse_account(payload: dict[str, Any]) -> Account:
    account_id = int(payload.get("_account_id", 0))
    username = payload.get("username") or payload.get("name") or str(account_id)
    return Account(
        account_id=account_id,
        username=username,
        name=payload.get("name"),
        email=payload.get("email"),
    )


def _parse_labels(payload: dict[str, Any]) -> dict[str, list[Vote]]:
    labels: dict[str, list[Vote]] = {}
    for label, info in (payload or {}).items():
        votes = []
        for approval in info.get("all", []) or []:
            account = _parse_account(approval)
            votes.append(Vote(username=account.username, value=int(approval.get("value", 0))))
        labels[label] = votes
    return labels


def _parse_files(payload: dict[str, Any]) -> list[str] | None:
    revision = (payload.get("revisions") or {}).get(payload.get("current_revision"))
    if revision is None or "files" not in revision:
        return None
    return sorted(path for path in revision["files"] if not path.startswith("/"))


def parse_change(payload: dict[str, Any]) -> ChangeRecord:
    """Convert one ChangeInfo JSON entity into a ChangeRecord.

    Raises:
        ResponseError: if required fields are missing or malformed.
    """
    try:
        return ChangeRecord(
            number=int(payload["_number"]),
            change_id=payload["change_id"],
            project=payload["project"],
            branch=payload["branch"],
            subject=payload["subject"],
            owner=_parse_account(payload["owner"]),
            created=parse_timestamp(payload["created"]),
            updated=parse_timestamp(payload["updated"]),
            status=payload["status"],
            work_in_progress=bool(payload.get("work_in_progress", False)),
            mergeable=bool(payload.get("mergeable", True)),
            unresolved_comment_count=int(payload.get("unresolved_comment_count", 0)),
            labels=_parse_labels(payload.get("labels", {})),
            submit_requirements=[
                SubmitRequirement(
                    name=record["rule_name"],
                    status=RequirementStatus(record["status"]),
                )
                for record in payload.get("submit_records", []) or []
            ],
            topic=payload.get("topic"),
            insertions=int(payload.get("insertions", 0)),
            deletions=int(payload.get("deletions", 0)),
            files=_parse_files(payload),
        )
    except (KeyError, TypeError, ValueError, AttributeError, PydanticValidationError) as exc:
        number = payload.get("_number") if isinstance(payload, dict) else None
        raise ResponseError("MALFORMED_CHANGE", f"change {number}: {exc}") from exc


class GerritClient:
    """Thin async client for the Gerrit changes API.

    Handles:
    - HTTP basic auth against the ``/a/`` authenticated endpoints
    - Stripping the XSSI prefix and parsing ChangeInfo entities
    - Mapping HTTP failures into typed ``ReviewToolError`` subclasses
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 30.0,
        incremental_lookback: str = "1h",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.incremental_lookback = incremental_lookback
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(username, password),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(
        cls,
        base_url: str,
        timeout: float = 30.0,
        incremental_lookback: str = "1h",
    ) -> GerritClient:
        """Build a client with credentials from GERRIT_USERNAME/GERRIT_PASSWORD."""
        username = os.environ.get(USERNAME_ENV_VAR)
        password = os.environ.get(PASSWORD_ENV_VAR)
        if not username or not password:
            raise ConfigurationError(
                f"{USERNAME_ENV_VAR} and {PASSWORD_ENV_VAR} must be set"
            )
        return cls(
            base_url,
            username,
            password,
            timeout=timeout,
            incremental_lookback=incremental_lookback,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GerritClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def fetch_all_open_changes(self) -> list[ChangeRecord]:
        """All open, non-WIP changes."""
        return await self._query(OPEN_CHANGES_QUERY)

    async def fetch_recent_changes(self) -> list[ChangeRecord]:
        """Every change touched within the incremental lookback, open or not."""
        return await self._query(f"{TOUCHED_CHANGES_QUERY} -age:{self.incremental_lookback}")

    async def abandon(self, number: int, message: str) -> ChangeRecord:
        """Abandon a change, attaching *message*.

        Raises:
            ConflictError: the change was modified or closed concurrently.
            ReviewToolError: any other failure.
        """
        payload = await self._request(
            "POST",
            f"/a/changes/{number}/abandon",
            json={"message": message},
        )
        if not isinstance(payload, dict):
            raise ResponseError("MALFORMED_CHANGE", "abandon response is not an object")
        return parse_change(payload)

    async def _query(self, query: str) -> list[ChangeRecord]:
        params = [("q", query), ("no-limit", "")] + [("o", option) for option in QUERY_OPTIONS]
        payload = await self._request("GET", "/a/changes/", params=params)
        if not isinstance(payload, list):
            raise ResponseError("MALFORMED_RESPONSE", "change query did not return a list")
        return [parse_change(entry) for entry in payload]

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError("TIMEOUT", f"{method} {path} timed out") from exc
        except httpx.RequestError as exc:
            raise TransportError("CONNECTION_ERROR", str(exc)) from exc

        if response.status_code >= 400:
            raise self._error_for(response)

        try:
            return json.loads(prune_magic(response.text))
        except json.JSONDecodeError as exc:
            raise ResponseError("MALFORMED_RESPONSE", f"{method} {path}: {exc}") from exc

    @staticmethod
    def _error_for(response: httpx.Response) -> ReviewToolError:
        message = response.text.strip() or f"HTTP {response.status_code}"
        status_code = response.status_code
        if status_code in (401, 403):
            return AuthenticationError("AUTHENTICATION_FAILED", message)
        if status_code == 404:
            return NotFoundError("NOT_FOUND", message)
        if status_code == 409:
            return ConflictError("CONFLICT", message)
        if status_code >= 500:
            return ServerError("SERVER_ERROR", message)
        return ReviewToolError(f"HTTP_{status_code}", message)
