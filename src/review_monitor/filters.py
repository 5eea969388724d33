"""Community-relevance filter.

Some repos and files (generated bumps, vendored metadata) never need a
human reviewer from the wider community. A change is left out of
community-review suggestions when:

1. its repo is listed in ``rejected_repos``, or
2. its project matches one of ``rejected_project_regex``, or
3. every file it touches is rejected (by exact path, or by a regex under
   ``rejected_file_regex["all"]`` or ``rejected_file_regex[<project>]``), or
4. its topic is ``autobump``.

A change whose file list is unknown is treated as relevant.
"""

from __future__ import annotations

import re

from review_monitor.config_schema import CommunityPatterns
from review_monitor.models import ChangeRecord

AUTOBUMP_TOPIC = "autobump"


def community_repo(change: ChangeRecord, patterns: CommunityPatterns) -> bool:
    if change.project in patterns.rejected_repos:
        return False
    return not any(
        re.search(pattern, change.project) for pattern in patterns.rejected_project_regex
    )


def community_files(change: ChangeRecord, patterns: CommunityPatterns) -> bool:
    if not change.files:
        return True

    regexes = [
        re.compile(pattern)
        for key in ("all", change.project)
        for pattern in patterns.rejected_file_regex.get(key, [])
    ]
    for path in change.files:
        if path in patterns.rejected_files:
            continue
        if any(regex.search(path) for regex in regexes):
            continue
        return True
    return False


def autobump_topic(change: ChangeRecord) -> bool:
    return change.topic == AUTOBUMP_TOPIC


def should_include_change(change: ChangeRecord, patterns: CommunityPatterns) -> bool:
    """Return True when *change* should be offered for community review."""
    return (
        community_repo(change, patterns)
        and community_files(change, patterns)
        and not autobump_topic(change)
    )
