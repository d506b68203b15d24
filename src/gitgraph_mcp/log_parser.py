"""Decoding of delimited `git log` / `git branch` output into records."""

from __future__ import annotations

import re

from .constants import FIELD_SEP, LOG_FIELD_COUNT, RECORD_SEP
from .errors import ErrorCode, GitGraphError
from .models import BranchInfo, CommitRecord, GitRef, RefKind

_RECORD_TRIM_CHARS = "\r\n "
_REF_PREFIXES = ("refs/heads/", "refs/remotes/", "refs/tags/")
# ASCII digits with an optional sign; no padding or digit separators.
_TIMESTAMP_PATTERN = re.compile(r"[+-]?[0-9]+")


def parse_log_records(stdout: str) -> list[CommitRecord]:
    """Parse record-separated log output; the first malformed record aborts."""
    commits: list[CommitRecord] = []
    for raw_record in stdout.split(RECORD_SEP):
        record = raw_record.strip(_RECORD_TRIM_CHARS)
        if not record:
            continue
        commits.append(_parse_record(record))
    return commits


def _parse_record(record: str) -> CommitRecord:
    fields = record.split(FIELD_SEP)
    if len(fields) != LOG_FIELD_COUNT:
        raise GitGraphError(
            ErrorCode.PARSE_ERROR,
            f"expected {LOG_FIELD_COUNT} fields, got {len(fields)} in record {record!r}",
            "Ensure the log format emits exactly 10 fields per record.",
            {"field_count": len(fields), "record": record},
        )

    authored_unix = _parse_timestamp(fields[5], "authored_unix", record)
    committed_unix = _parse_timestamp(fields[6], "committed_unix", record)
    parents = fields[2].split()

    return CommitRecord(
        hash=fields[0],
        short_hash=fields[1],
        parents=parents,
        author_name=fields[3],
        author_email=fields[4],
        authored_unix=authored_unix,
        committed_unix=committed_unix,
        decorations=fields[7],
        refs=parse_refs(fields[7]),
        subject=fields[8],
        body=fields[9],
    )


def _parse_timestamp(value: str, field_name: str, record: str) -> int:
    if not _TIMESTAMP_PATTERN.fullmatch(value):
        raise GitGraphError(
            ErrorCode.PARSE_ERROR,
            f"invalid {field_name} timestamp {value!r}",
            "Timestamps must be integer unix epoch seconds.",
            {"field": field_name, "value": value, "record": record},
        )
    return int(value)


def parse_refs(decorations: str) -> list[GitRef]:
    cleaned = decorations.strip()
    if not cleaned:
        return []
    return [
        parse_ref_token(token)
        for token in (part.strip() for part in cleaned.split(","))
        if token
    ]


def parse_ref_token(token: str) -> GitRef:
    """Classify a single decoration token such as `HEAD -> refs/heads/main`."""
    if " -> " in token:
        left, right = token.split(" -> ", 1)
        left = left.strip()
        kind = RefKind.HEAD if left == "HEAD" else classify_ref(left)
        return GitRef(
            kind=kind,
            name=simplify_ref_name(left),
            target=simplify_ref_name(right.strip()),
        )

    if token.startswith("tag: "):
        return GitRef(kind=RefKind.TAG, name=simplify_ref_name(token[len("tag: "):].strip()))

    if token == "HEAD":
        return GitRef(kind=RefKind.HEAD, name="HEAD")

    return GitRef(kind=classify_ref(token), name=simplify_ref_name(token))


def classify_ref(raw: str) -> RefKind:
    if raw.startswith("refs/heads/"):
        return RefKind.LOCAL_BRANCH
    if raw.startswith("refs/remotes/"):
        return RefKind.REMOTE_BRANCH
    if raw.startswith("refs/tags/"):
        return RefKind.TAG
    if raw.startswith("refs/stash"):
        return RefKind.STASH
    return RefKind.OTHER


def simplify_ref_name(raw: str) -> str:
    for prefix in _REF_PREFIXES:
        if raw.startswith(prefix):
            return raw[len(prefix):]
    return raw


def parse_branch_lines(stdout: str) -> list[BranchInfo]:
    """Parse `%(upstream:remotename)<FS>%(refname)` lines from `git branch`."""
    branches: list[BranchInfo] = []
    for line in stdout.split("\n"):
        # str.strip() would also eat the leading field separator
        trimmed = line.strip(" \t\r")
        if not trimmed:
            continue
        remote_name, _, full_ref = trimmed.partition(FIELD_SEP)
        remote_name = remote_name.strip()
        full_ref = full_ref.strip()
        if not full_ref:
            continue
        branches.append(
            BranchInfo(
                name=simplify_ref_name(full_ref),
                full_ref=full_ref,
                is_remote=full_ref.startswith("refs/remotes/"),
                remote_name=remote_name or None,
            )
        )
    return branches
