"""Aggregated views over tracked changes.

Changes are grouped by who has to act next (see ``responsibility.owner_of``)
and either by how long they have been stuck in their current review state
or by repository. Changes whose state is UNKNOWN have no owner and are kept
out of every bucket; their numbers are listed in ``ChangeReport.unclassified``.
"""

from __future__ import annotations

import io
import random
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from rich import box
from rich.console import Console
from rich.table import Table

from review_monitor.config_schema import CommunityPatterns
from review_monitor.filters import should_include_change
from review_monitor.models import ResponsibleParty, ReviewStateKind, TrackedChange
from review_monitor.responsibility import owner_of


class TimeBucket(StrEnum):
    """Elapsed time since a change's review state last changed."""

    UNDER_24_HOURS = "<24 hrs"
    UNDER_72_HOURS = "<72 hrs"
    UNDER_2_WEEKS = "<2 weeks"
    UNDER_8_WEEKS = "<8 weeks"
    OVER_8_WEEKS = ">8 weeks"


# Checked in order; the first limit strictly greater than the elapsed time wins.
BUCKET_LIMITS: tuple[tuple[timedelta, TimeBucket], ...] = (
    (timedelta(hours=24), TimeBucket.UNDER_24_HOURS),
    (timedelta(hours=72), TimeBucket.UNDER_72_HOURS),
    (timedelta(weeks=2), TimeBucket.UNDER_2_WEEKS),
    (timedelta(weeks=8), TimeBucket.UNDER_8_WEEKS),
)
RECENT_BUCKETS = frozenset({TimeBucket.UNDER_24_HOURS, TimeBucket.UNDER_72_HOURS})

# Column order used when rendering tables.
PARTY_COLUMNS: tuple[tuple[ResponsibleParty, str], ...] = (
    (ResponsibleParty.COMMUNITY, "Community"),
    (ResponsibleParty.MAINTAINER, "Maintainers"),
    (ResponsibleParty.AUTHOR, "Author"),
)


class GroupBy(StrEnum):
    TIME = "time"
    REPO = "repo"


def time_bucket(elapsed: timedelta) -> TimeBucket:
    """Place an elapsed duration into its bucket; boundaries are exclusive."""
    for limit, bucket in BUCKET_LIMITS:
        if elapsed < limit:
            return bucket
    return TimeBucket.OVER_8_WEEKS


@dataclass
class ChangeReport:
    """Change numbers keyed by (group key, responsible party)."""

    group_by: GroupBy
    cells: dict[tuple[str, ResponsibleParty], list[int]] = field(default_factory=dict)
    unclassified: list[int] = field(default_factory=list)

    def get_changes(self, key: str, party: ResponsibleParty) -> list[int]:
        return self.cells.get((str(key), party), [])

    def count(self, key: str, party: ResponsibleParty) -> int:
        return len(self.get_changes(key, party))

    def keys(self) -> list[str]:
        """Group keys in display order: bucket order for time, sorted for repos."""
        if self.group_by is GroupBy.TIME:
            return [str(bucket) for bucket in TimeBucket]
        return sorted({key for key, _ in self.cells})

    def total(self, party: ResponsibleParty | None = None) -> int:
        return sum(
            len(numbers)
            for (_, cell_party), numbers in self.cells.items()
            if party is None or cell_party is party
        )

    def to_dict(self) -> dict:
        return {
            "group_by": str(self.group_by),
            "groups": [
                {
                    "key": key,
                    **{
                        str(party): {
                            "count": self.count(key, party),
                            "changes": self.get_changes(key, party),
                        }
                        for party, _ in PARTY_COLUMNS
                    },
                }
                for key in self.keys()
            ],
            "unclassified": self.unclassified,
        }


def select_changes(
    changes: Iterable[TrackedChange],
    project: str | None = None,
    owner: str | None = None,
) -> list[TrackedChange]:
    """Keep changes in *project* owned by *owner*; None matches anything."""
    return [
        change
        for change in changes
        if (project is None or change.record.project == project)
        and (owner is None or change.record.owner.username == owner)
    ]


def _aggregate(
    changes: Iterable[TrackedChange],
    group_by: GroupBy,
    key_of: Callable[[TrackedChange], str],
) -> ChangeReport:
    report = ChangeReport(group_by=group_by)
    for change in changes:
        party = owner_of(change.state)
        if party is None:
            report.unclassified.append(change.number)
            continue
        report.cells.setdefault((key_of(change), party), []).append(change.number)
    for numbers in report.cells.values():
        numbers.sort()
    report.unclassified.sort()
    return report


def changes_by_owner_time(
    changes: Iterable[TrackedChange],
    *,
    now: datetime | None = None,
    project: str | None = None,
    owner: str | None = None,
    bucketer: Callable[[timedelta], TimeBucket] = time_bucket,
) -> ChangeReport:
    """Group changes by responsible party and time stuck in their state.

    Args:
        changes: Tracked changes, typically ``ChangeStore.snapshot()``.
        now: Reference time, defaults to the current UTC time.
        project: Keep only changes in this project (exact match).
        owner: Keep only changes owned by this username.
        bucketer: Maps elapsed time to a bucket.
    """
    now = now or datetime.now(UTC)
    return _aggregate(
        select_changes(changes, project, owner),
        GroupBy.TIME,
        lambda change: str(bucketer(now - change.state_changed_at)),
    )


def changes_by_owner_repo(
    changes: Iterable[TrackedChange],
    *,
    project: str | None = None,
    owner: str | None = None,
) -> ChangeReport:
    """Group changes by responsible party and repository."""
    return _aggregate(
        select_changes(changes, project, owner),
        GroupBy.REPO,
        lambda change: change.record.project,
    )


def render_report(report: ChangeReport) -> str:
    """Render a report as a plain-text table."""
    table = Table(box=box.ROUNDED, show_header=True)
    table.add_column("" if report.group_by is GroupBy.TIME else "Repo")
    for _, title in PARTY_COLUMNS:
        table.add_column(title, justify="right")
    for key in report.keys():
        table.add_row(key, *(str(report.count(key, party)) for party, _ in PARTY_COLUMNS))

    buffer = io.StringIO()
    console = Console(file=buffer, width=200, no_color=True, highlight=False)
    console.print(table)
    return buffer.getvalue().rstrip("\n")


def format_waiting(duration: timedelta) -> str:
    """Render a wait time as '3 days', '1 hour' or 'less than 1 hour'."""
    days = duration.days
    hours = int(duration.total_seconds() // 3600)
    if days > 0:
        return "1 day" if days == 1 else f"{days} days"
    if hours > 0:
        return "1 hour" if hours == 1 else f"{hours} hours"
    return "less than 1 hour"


def render_change_list(
    changes: Iterable[TrackedChange],
    *,
    now: datetime | None = None,
    change_url: Callable[[TrackedChange], str] | None = None,
) -> str:
    """One line per change, grouped by party, oldest state first."""
    now = now or datetime.now(UTC)
    lines: list[str] = []
    by_party: dict[ResponsibleParty, list[TrackedChange]] = {}
    for change in changes:
        party = owner_of(change.state)
        if party is not None:
            by_party.setdefault(party, []).append(change)

    for party, title in PARTY_COLUMNS:
        entries = sorted(
            by_party.get(party, []),
            key=lambda change: (change.state_changed_at, change.number),
        )
        if not entries:
            continue
        lines.append(f"{title} ({len(entries)}):")
        for change in entries:
            link = f" {change_url(change)}" if change_url is not None else ""
            lines.append(
                f"  {change.number} [{change.record.project}] {change.record.subject}"
                f" - {change.state.describe()}"
                f" (waiting {format_waiting(now - change.state_changed_at)}){link}"
            )
    return "\n".join(lines)


def pick_community_review_changes(
    changes: Iterable[TrackedChange],
    patterns: CommunityPatterns,
    *,
    now: datetime | None = None,
    total: int = 5,
    recent: int = 4,
    rng: random.Random | None = None,
) -> tuple[list[TrackedChange], int]:
    """Suggest a handful of changes waiting on community review.

    Up to *recent* changes are drawn at random from the <24 hrs and <72 hrs
    buckets, then older changes fill the selection up to *total*.

    Returns:
        (selected changes, number of eligible changes)
    """
    now = now or datetime.now(UTC)
    rng = rng or random.Random()
    candidates = [
        change
        for change in changes
        if change.state.kind is ReviewStateKind.COMMUNITY_REVIEW
        and should_include_change(change.record, patterns)
    ]
    report = changes_by_owner_time(candidates, now=now)
    by_number = {change.number: change for change in candidates}

    recent_changes: list[TrackedChange] = []
    older_changes: list[TrackedChange] = []
    for bucket in TimeBucket:
        for number in report.get_changes(bucket, ResponsibleParty.COMMUNITY):
            target = recent_changes if bucket in RECENT_BUCKETS else older_changes
            target.append(by_number[number])

    rng.shuffle(recent_changes)
    rng.shuffle(older_changes)
    selected = recent_changes[: min(recent, total)]
    selected.extend(older_changes[: total - len(selected)])
    return selected, len(candidates)
