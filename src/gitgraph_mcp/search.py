"""Text and regex filtering over graph rows."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence

from .errors import ErrorCode, GitGraphError
from .models import CommitSearchQuery, GraphRow

Matcher = Callable[[str], bool]


def filter_commits(rows: Sequence[GraphRow], query: CommitSearchQuery) -> list[GraphRow]:
    """Return rows where at least one enabled field matches the query text.

    A blank needle is no filter at all and returns every row in order.
    """
    needle = query.text.strip()
    if not needle:
        return list(rows)

    matches = build_matcher(needle, query)
    return [row for row in rows if _row_matches(row, query, matches)]


def build_matcher(needle: str, query: CommitSearchQuery) -> Matcher:
    if query.use_regex:
        flags = 0 if query.case_sensitive else re.IGNORECASE
        try:
            pattern = re.compile(needle, flags)
        except re.error as exc:
            raise GitGraphError(
                ErrorCode.PARSE_ERROR,
                f"invalid regex {needle!r}: {exc}",
                "Fix the pattern or disable regex search.",
                {"pattern": needle},
            ) from exc
        return lambda part: pattern.search(part) is not None

    if query.case_sensitive:
        return lambda part: needle in part

    lowered = needle.lower()
    return lambda part: lowered in part.lower()


def _row_matches(row: GraphRow, query: CommitSearchQuery, matches: Matcher) -> bool:
    if query.include_hash and (matches(row.hash) or matches(row.short_hash)):
        return True
    if query.include_subject and matches(row.subject):
        return True
    if query.include_body and matches(row.body):
        return True
    if query.include_author and matches(row.author_name):
        return True
    if query.include_email and matches(row.author_email):
        return True
    if query.include_refs:
        for ref in row.refs:
            if matches(ref.name):
                return True
            if ref.target is not None and matches(ref.target):
                return True
    return False
