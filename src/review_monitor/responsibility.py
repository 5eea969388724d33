"""Mapping from review state to the party that has to act next."""

from __future__ import annotations

from review_monitor.models import ResponsibleParty, ReviewState, ReviewStateKind

NEXT_STEP_OWNER: dict[ReviewStateKind, ResponsibleParty] = {
    ReviewStateKind.MISSING_CI: ResponsibleParty.AUTHOR,
    ReviewStateKind.FAILING_CI: ResponsibleParty.AUTHOR,
    ReviewStateKind.MERGE_CONFLICT: ResponsibleParty.AUTHOR,
    ReviewStateKind.PENDING_FEEDBACK: ResponsibleParty.AUTHOR,
    ReviewStateKind.PENDING_COMMENT_RESOLUTION: ResponsibleParty.AUTHOR,
    ReviewStateKind.COMMUNITY_REVIEW: ResponsibleParty.COMMUNITY,
    ReviewStateKind.MAINTAINER_REVIEW: ResponsibleParty.MAINTAINER,
    ReviewStateKind.READY_TO_SUBMIT: ResponsibleParty.MAINTAINER,
}


def owner_of(state: ReviewState) -> ResponsibleParty | None:
    """Return who must act on a change in *state*.

    UNKNOWN has no owner and returns None; aggregations leave such
    changes out of every bucket.
    """
    return NEXT_STEP_OWNER.get(state.kind)
