"""Tests for report aggregation, rendering and community review picks."""

from __future__ import annotations

import random
from datetime import timedelta

import pytest
from conftest import NOW, build_record

from review_monitor.aggregator import (
    ChangeReport,
    GroupBy,
    TimeBucket,
    changes_by_owner_repo,
    changes_by_owner_time,
    format_waiting,
    pick_community_review_changes,
    render_change_list,
    render_report,
    select_changes,
    time_bucket,
)
from review_monitor.config_schema import CommunityPatterns
from review_monitor.models import Account, ResponsibleParty, ReviewState, TrackedChange


def _tracked(
    number: int,
    state: ReviewState,
    age: timedelta,
    project: str = "openbmc/bmcweb",
    owner: str = "alice",
    **overrides,
) -> TrackedChange:
    record = build_record(
        number=number,
        project=project,
        owner=Account(account_id=number, username=owner),
        **overrides,
    )
    return TrackedChange(record=record, state=state, state_changed_at=NOW - age)


def _cells(row: str) -> list[str]:
    return [cell.strip() for cell in row.split("│") if cell.strip()]


class TestTimeBucket:
    @pytest.mark.parametrize(
        ("elapsed", "expected"),
        [
            (timedelta(0), TimeBucket.UNDER_24_HOURS),
            (timedelta(hours=23, minutes=59), TimeBucket.UNDER_24_HOURS),
            (timedelta(hours=24), TimeBucket.UNDER_72_HOURS),
            (timedelta(hours=72), TimeBucket.UNDER_2_WEEKS),
            (timedelta(weeks=2), TimeBucket.UNDER_8_WEEKS),
            (timedelta(weeks=8), TimeBucket.OVER_8_WEEKS),
            (timedelta(days=900), TimeBucket.OVER_8_WEEKS),
        ],
    )
    def test_boundaries_are_exclusive(self, elapsed: timedelta, expected: TimeBucket) -> None:
        assert time_bucket(elapsed) is expected


class TestChangesByOwnerTime:
    def test_groups_by_party_and_bucket(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=2)),
            _tracked(2, ReviewState.missing_ci(), timedelta(hours=30)),
            _tracked(3, ReviewState.ready_to_submit(), timedelta(days=20)),
            _tracked(4, ReviewState.community_review(), timedelta(hours=5)),
        ]
        report = changes_by_owner_time(changes, now=NOW)
        assert report.get_changes(TimeBucket.UNDER_24_HOURS, ResponsibleParty.COMMUNITY) == [1, 4]
        assert report.get_changes(TimeBucket.UNDER_72_HOURS, ResponsibleParty.AUTHOR) == [2]
        assert report.get_changes(TimeBucket.UNDER_8_WEEKS, ResponsibleParty.MAINTAINER) == [3]
        assert report.count(TimeBucket.OVER_8_WEEKS, ResponsibleParty.AUTHOR) == 0
        assert report.total() == 4
        assert report.total(ResponsibleParty.COMMUNITY) == 2

    def test_exactly_one_day_is_in_72_hour_bucket(self) -> None:
        changes = [_tracked(1, ReviewState.community_review(), timedelta(hours=24))]
        report = changes_by_owner_time(changes, now=NOW)
        assert report.get_changes(TimeBucket.UNDER_24_HOURS, ResponsibleParty.COMMUNITY) == []
        assert report.get_changes(TimeBucket.UNDER_72_HOURS, ResponsibleParty.COMMUNITY) == [1]

    def test_cells_are_sorted(self) -> None:
        changes = [
            _tracked(number, ReviewState.community_review(), timedelta(hours=1))
            for number in (9, 3, 7, 1)
        ]
        report = changes_by_owner_time(changes, now=NOW)
        assert report.get_changes(TimeBucket.UNDER_24_HOURS, ResponsibleParty.COMMUNITY) == [
            1,
            3,
            7,
            9,
        ]

    def test_unknown_state_is_unclassified(self) -> None:
        changes = [
            _tracked(5, ReviewState.unknown(), timedelta(hours=1)),
            _tracked(6, ReviewState.failing_ci(), timedelta(hours=1)),
        ]
        report = changes_by_owner_time(changes, now=NOW)
        assert report.unclassified == [5]
        assert report.total() == 1

    def test_project_filter(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=1), project="a"),
            _tracked(2, ReviewState.community_review(), timedelta(hours=1), project="b"),
        ]
        report = changes_by_owner_time(changes, now=NOW, project="b")
        assert report.get_changes(TimeBucket.UNDER_24_HOURS, ResponsibleParty.COMMUNITY) == [2]

    def test_owner_filter(self) -> None:
        changes = [
            _tracked(1, ReviewState.merge_conflict(), timedelta(hours=1), owner="alice"),
            _tracked(2, ReviewState.merge_conflict(), timedelta(hours=1), owner="bob"),
        ]
        report = changes_by_owner_time(changes, now=NOW, owner="alice")
        assert report.get_changes(TimeBucket.UNDER_24_HOURS, ResponsibleParty.AUTHOR) == [1]

    def test_custom_bucketer(self) -> None:
        changes = [_tracked(1, ReviewState.community_review(), timedelta(days=100))]
        report = changes_by_owner_time(
            changes, now=NOW, bucketer=lambda _: TimeBucket.UNDER_24_HOURS
        )
        assert report.get_changes(TimeBucket.UNDER_24_HOURS, ResponsibleParty.COMMUNITY) == [1]

    def test_keys_follow_bucket_order(self) -> None:
        report = changes_by_owner_time([], now=NOW)
        assert report.keys() == ["<24 hrs", "<72 hrs", "<2 weeks", "<8 weeks", ">8 weeks"]


class TestSelectChanges:
    def test_project_and_owner(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=1), project="a"),
            _tracked(2, ReviewState.community_review(), timedelta(hours=1), project="b"),
            _tracked(3, ReviewState.merge_conflict(), timedelta(hours=1), project="b", owner="bob"),
        ]
        assert [c.number for c in select_changes(changes)] == [1, 2, 3]
        assert [c.number for c in select_changes(changes, project="b")] == [2, 3]
        assert [c.number for c in select_changes(changes, owner="bob")] == [3]
        assert select_changes(changes, project="a", owner="bob") == []


class TestChangesByOwnerRepo:
    def test_groups_by_repository(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=1), project="z/repo"),
            _tracked(2, ReviewState.maintainer_review(), timedelta(days=9), project="a/repo"),
            _tracked(3, ReviewState.community_review(), timedelta(days=90), project="z/repo"),
        ]
        report = changes_by_owner_repo(changes)
        assert report.group_by is GroupBy.REPO
        assert report.keys() == ["a/repo", "z/repo"]
        assert report.get_changes("z/repo", ResponsibleParty.COMMUNITY) == [1, 3]
        assert report.get_changes("a/repo", ResponsibleParty.MAINTAINER) == [2]

    def test_to_dict(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=1), project="x"),
            _tracked(2, ReviewState.unknown(), timedelta(hours=1), project="x"),
        ]
        data = changes_by_owner_repo(changes).to_dict()
        assert data["group_by"] == "repo"
        assert data["unclassified"] == [2]
        assert data["groups"] == [
            {
                "key": "x",
                "community": {"count": 1, "changes": [1]},
                "maintainer": {"count": 0, "changes": []},
                "author": {"count": 0, "changes": []},
            }
        ]


class TestRendering:
    def test_render_report_table(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=1)),
            _tracked(2, ReviewState.community_review(), timedelta(hours=2)),
            _tracked(3, ReviewState.pending_feedback("bob"), timedelta(days=70)),
        ]
        text = render_report(changes_by_owner_time(changes, now=NOW))
        lines = text.splitlines()
        header = next(line for line in lines if "Community" in line)
        assert header.index("Community") < header.index("Maintainers") < header.index("Author")
        assert _cells(next(line for line in lines if "<24 hrs" in line)) == [
            "<24 hrs",
            "2",
            "0",
            "0",
        ]
        assert _cells(next(line for line in lines if ">8 weeks" in line)) == [
            ">8 weeks",
            "0",
            "0",
            "1",
        ]

    def test_render_repo_report_has_repo_column(self) -> None:
        report = ChangeReport(group_by=GroupBy.REPO)
        assert "Repo" in render_report(report)

    def test_render_change_list(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=3), subject="Fix a"),
            _tracked(2, ReviewState.community_review(), timedelta(days=3), subject="Fix b"),
            _tracked(3, ReviewState.unknown(), timedelta(days=3)),
        ]
        text = render_change_list(changes, now=NOW, change_url=lambda c: f"https://x/{c.number}")
        lines = text.splitlines()
        assert lines[0] == "Community (2):"
        assert lines[1].startswith("  2 [openbmc/bmcweb] Fix b")
        assert "(waiting 3 days) https://x/2" in lines[1]
        assert "(waiting 3 hours)" in lines[2]
        assert all(" 3 [" not in line for line in lines)

    def test_empty_change_list(self) -> None:
        assert render_change_list([], now=NOW) == ""


class TestFormatWaiting:
    def test_units(self) -> None:
        assert format_waiting(timedelta(minutes=10)) == "less than 1 hour"
        assert format_waiting(timedelta(hours=1, minutes=5)) == "1 hour"
        assert format_waiting(timedelta(hours=5)) == "5 hours"
        assert format_waiting(timedelta(days=1, hours=3)) == "1 day"
        assert format_waiting(timedelta(days=12)) == "12 days"


class TestCommunityPicks:
    def _patterns(self) -> CommunityPatterns:
        return CommunityPatterns(rejected_repos=["openbmc/openbmc"])

    def test_only_eligible_community_changes(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=1)),
            _tracked(2, ReviewState.missing_ci(), timedelta(hours=1)),
            _tracked(3, ReviewState.community_review(), timedelta(hours=1), project="openbmc/openbmc"),
        ]
        picks, total = pick_community_review_changes(
            changes, self._patterns(), now=NOW, rng=random.Random(0)
        )
        assert [change.number for change in picks] == [1]
        assert total == 1

    def test_recent_changes_are_capped(self) -> None:
        recent = [
            _tracked(number, ReviewState.community_review(), timedelta(hours=number))
            for number in range(1, 7)
        ]
        older = [
            _tracked(number, ReviewState.community_review(), timedelta(days=30))
            for number in range(100, 104)
        ]
        picks, total = pick_community_review_changes(
            recent + older, self._patterns(), now=NOW, rng=random.Random(42)
        )
        numbers = [change.number for change in picks]
        assert total == 10
        assert len(numbers) == 5
        assert len(set(numbers)) == 5
        assert len([n for n in numbers if n < 100]) == 4
        assert len([n for n in numbers if n >= 100]) == 1

    def test_older_changes_fill_remaining_slots(self) -> None:
        changes = [
            _tracked(1, ReviewState.community_review(), timedelta(hours=1)),
            _tracked(2, ReviewState.community_review(), timedelta(days=20)),
            _tracked(3, ReviewState.community_review(), timedelta(days=90)),
        ]
        picks, total = pick_community_review_changes(
            changes, self._patterns(), now=NOW, total=5, recent=4, rng=random.Random(1)
        )
        assert picks[0].number == 1
        assert sorted(change.number for change in picks) == [1, 2, 3]
        assert total == 3

    def test_seeded_rng_is_reproducible(self) -> None:
        changes = [
            _tracked(number, ReviewState.community_review(), timedelta(hours=number))
            for number in range(1, 12)
        ]
        first, _ = pick_community_review_changes(
            changes, self._patterns(), now=NOW, rng=random.Random(7)
        )
        second, _ = pick_community_review_changes(
            changes, self._patterns(), now=NOW, rng=random.Random(7)
        )
        assert [c.number for c in first] == [c.number for c in second]
