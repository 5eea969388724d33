"""Pydantic models and enums for the review monitor."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

VERIFIED_LABEL = "Verified"
CODE_REVIEW_LABEL = "Code-Review"


class ChangeStatus(StrEnum):
    """Lifecycle status of a change on the review server."""

    NEW = "NEW"
    MERGED = "MERGED"
    ABANDONED = "ABANDONED"


class RequirementStatus(StrEnum):
    """Status of a submit requirement evaluated by the review server."""

    OK = "OK"
    NOT_READY = "NOT_READY"
    CLOSED = "CLOSED"
    FORCED = "FORCED"
    RULE_ERROR = "RULE_ERROR"


class ReviewStateKind(StrEnum):
    """Discriminant of a ReviewState."""

    UNKNOWN = "unknown"
    MISSING_CI = "missing_ci"
    FAILING_CI = "failing_ci"
    MERGE_CONFLICT = "merge_conflict"
    PENDING_FEEDBACK = "pending_feedback"
    PENDING_COMMENT_RESOLUTION = "pending_comment_resolution"
    COMMUNITY_REVIEW = "community_review"
    MAINTAINER_REVIEW = "maintainer_review"
    READY_TO_SUBMIT = "ready_to_submit"


STATE_DESCRIPTIONS: dict[ReviewStateKind, str] = {
    ReviewStateKind.UNKNOWN: "Unknown",
    ReviewStateKind.MISSING_CI: "Missing CI",
    ReviewStateKind.FAILING_CI: "Failing CI",
    ReviewStateKind.MERGE_CONFLICT: "Merge Conflicts to be Resolved",
    ReviewStateKind.PENDING_FEEDBACK: "Pending Feedback to be Addressed",
    ReviewStateKind.PENDING_COMMENT_RESOLUTION: "Pending Comment(s) to be Addressed",
    ReviewStateKind.COMMUNITY_REVIEW: "Awaiting Community Review",
    ReviewStateKind.MAINTAINER_REVIEW: "Awaiting Maintainer Review",
    ReviewStateKind.READY_TO_SUBMIT: "Ready to Submit",
}


class ResponsibleParty(StrEnum):
    """Who has to act next on a change."""

    AUTHOR = "author"
    COMMUNITY = "community"
    MAINTAINER = "maintainer"


class Account(BaseModel):
    """A review-server user account."""

    model_config = ConfigDict(frozen=True)

    account_id: int
    username: str
    name: str | None = None
    email: str | None = None


class Vote(BaseModel):
    """A single score cast on a label."""

    model_config = ConfigDict(frozen=True)

    username: str
    value: int = 0


class SubmitRequirement(BaseModel):
    """A named submit rule and its evaluated status."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: RequirementStatus


class ChangeRecord(BaseModel):
    """Immutable snapshot of a change as returned by the review server."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(description="Numeric change number; the primary key")
    change_id: str = Field(description="Change-Id footer, may repeat across branches")
    project: str
    branch: str
    subject: str
    owner: Account
    created: datetime
    updated: datetime
    status: ChangeStatus
    work_in_progress: bool = False
    mergeable: bool = True
    unresolved_comment_count: int = 0
    labels: dict[str, list[Vote]] = Field(default_factory=dict)
    submit_requirements: list[SubmitRequirement] = Field(default_factory=list)
    topic: str | None = None
    insertions: int = 0
    deletions: int = 0
    files: list[str] | None = None

    def votes(self, label: str) -> list[Vote]:
        """Votes cast on *label*; an absent label has no votes."""
        return self.labels.get(label, [])


class ReviewState(BaseModel):
    """Classified blocking condition of a change.

    Only the discriminant takes part in state-change detection;
    ``reviewer`` and ``count`` are informational payload.
    """

    model_config = ConfigDict(frozen=True)

    kind: ReviewStateKind
    reviewer: str | None = None
    count: int | None = None

    @classmethod
    def unknown(cls) -> ReviewState:
        return cls(kind=ReviewStateKind.UNKNOWN)

    @classmethod
    def missing_ci(cls) -> ReviewState:
        return cls(kind=ReviewStateKind.MISSING_CI)

    @classmethod
    def failing_ci(cls) -> ReviewState:
        return cls(kind=ReviewStateKind.FAILING_CI)

    @classmethod
    def merge_conflict(cls) -> ReviewState:
        return cls(kind=ReviewStateKind.MERGE_CONFLICT)

    @classmethod
    def pending_feedback(cls, reviewer: str) -> ReviewState:
        return cls(kind=ReviewStateKind.PENDING_FEEDBACK, reviewer=reviewer)

    @classmethod
    def pending_comment_resolution(cls, count: int) -> ReviewState:
        return cls(kind=ReviewStateKind.PENDING_COMMENT_RESOLUTION, count=count)

    @classmethod
    def community_review(cls) -> ReviewState:
        return cls(kind=ReviewStateKind.COMMUNITY_REVIEW)

    @classmethod
    def maintainer_review(cls) -> ReviewState:
        return cls(kind=ReviewStateKind.MAINTAINER_REVIEW)

    @classmethod
    def ready_to_submit(cls) -> ReviewState:
        return cls(kind=ReviewStateKind.READY_TO_SUBMIT)

    @property
    def is_unknown(self) -> bool:
        return self.kind is ReviewStateKind.UNKNOWN

    def same_kind(self, other: ReviewState) -> bool:
        """Compare discriminants only."""
        return self.kind is other.kind

    def describe(self) -> str:
        """Human-readable text used in reports."""
        if self.kind is ReviewStateKind.PENDING_FEEDBACK:
            return f"Pending Feedback to be Addressed (by {self.reviewer})"
        if self.kind is ReviewStateKind.PENDING_COMMENT_RESOLUTION:
            return f"Pending Comment(s) to be Addressed ({self.count} pending)"
        return STATE_DESCRIPTIONS[self.kind]


class TrackedChange(BaseModel):
    """A change held by the store, with the time its state last changed."""

    model_config = ConfigDict(frozen=True)

    record: ChangeRecord
    state: ReviewState
    state_changed_at: datetime

    @property
    def number(self) -> int:
        return self.record.number

    @property
    def change_id(self) -> str:
        return self.record.change_id
