"""Review-state classification for open changes.

A change is run through a fixed, ordered chain of rules. Each rule either
reports a concrete state or ``UNKNOWN`` (meaning "not my concern"); the first
concrete state wins:

1. CI bot has not voted on Verified, or voted 0 -> MISSING_CI
2. CI bot voted negative on Verified -> FAILING_CI
3. Change is not mergeable -> MERGE_CONFLICT
4. A non-owner voted negative on Code-Review -> PENDING_FEEDBACK(reviewer)
5. Unresolved comments remain -> PENDING_COMMENT_RESOLUTION(count)
6. No non-owner has cast a nonzero Code-Review vote -> COMMUNITY_REVIEW
7. Owners submit requirement NOT_READY -> MAINTAINER_REVIEW, OK -> READY_TO_SUBMIT
8. Otherwise -> UNKNOWN

The order is a priority: a change missing CI with unresolved comments is
MISSING_CI.
"""

from __future__ import annotations

from collections.abc import Callable

from review_monitor.models import (
    CODE_REVIEW_LABEL,
    VERIFIED_LABEL,
    ChangeRecord,
    RequirementStatus,
    ReviewState,
    Vote,
)

DEFAULT_CI_ACCOUNT = "jenkins-openbmc-ci"
OWNERS_REQUIREMENT = "owners~OwnersSubmitRequirement"

Rule = Callable[[ChangeRecord, str], ReviewState]


def ci_vote(change: ChangeRecord, ci_account: str = DEFAULT_CI_ACCOUNT) -> Vote | None:
    """Return the first Verified vote cast by the CI account, if any."""
    for vote in change.votes(VERIFIED_LABEL):
        if vote.username == ci_account:
            return vote
    return None


def missing_ci(change: ChangeRecord, ci_account: str) -> ReviewState:
    vote = ci_vote(change, ci_account)
    # No vote at all counts the same as an explicit 0.
    if vote is None or vote.value == 0:
        return ReviewState.missing_ci()
    return ReviewState.unknown()


def failing_ci(change: ChangeRecord, ci_account: str) -> ReviewState:
    vote = ci_vote(change, ci_account)
    if vote is not None and vote.value < 0:
        return ReviewState.failing_ci()
    return ReviewState.unknown()


def merge_conflict(change: ChangeRecord, ci_account: str) -> ReviewState:
    del ci_account
    if not change.mergeable:
        return ReviewState.merge_conflict()
    return ReviewState.unknown()


def _peer_reviews(change: ChangeRecord) -> list[Vote]:
    """Code-Review votes excluding the owner's own."""
    return [
        vote
        for vote in change.votes(CODE_REVIEW_LABEL)
        if vote.username != change.owner.username
    ]


def pending_feedback(change: ChangeRecord, ci_account: str) -> ReviewState:
    del ci_account
    for vote in _peer_reviews(change):
        if vote.value < 0:
            return ReviewState.pending_feedback(vote.username)
    return ReviewState.unknown()


def pending_comments(change: ChangeRecord, ci_account: str) -> ReviewState:
    del ci_account
    if change.unresolved_comment_count != 0:
        return ReviewState.pending_comment_resolution(change.unresolved_comment_count)
    return ReviewState.unknown()


def no_reviews(change: ChangeRecord, ci_account: str) -> ReviewState:
    del ci_account
    if any(vote.value != 0 for vote in _peer_reviews(change)):
        return ReviewState.unknown()
    return ReviewState.community_review()


def maintainer_gate(change: ChangeRecord, ci_account: str) -> ReviewState:
    del ci_account
    for requirement in change.submit_requirements:
        if requirement.name != OWNERS_REQUIREMENT:
            continue
        if requirement.status is RequirementStatus.NOT_READY:
            return ReviewState.maintainer_review()
        if requirement.status is RequirementStatus.OK:
            return ReviewState.ready_to_submit()
    return ReviewState.unknown()


RULES: tuple[Rule, ...] = (
    missing_ci,
    failing_ci,
    merge_conflict,
    pending_feedback,
    pending_comments,
    no_reviews,
    maintainer_gate,
)


def classify(change: ChangeRecord, ci_account: str = DEFAULT_CI_ACCOUNT) -> ReviewState:
    """Derive the review state of a change.

    Args:
        change: The change snapshot to classify.
        ci_account: Username of the CI bot whose Verified vote gates the chain.

    Returns:
        The state reported by the first rule that does not return UNKNOWN,
        or UNKNOWN if every rule passes.
    """
    for rule in RULES:
        state = rule(change, ci_account)
        if not state.is_unknown:
            return state
    return ReviewState.unknown()
