"""Lane assignment for commit rows.

Rows are processed strictly in input order while a single list of active
lane slots is mutated in place. Each slot holds the hash of the commit that is
expected to appear next in that column, or ``None`` when the column is free.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import CommitRecord, GraphEdge, GraphRow


def build_graph_rows(commits: Iterable[CommitRecord]) -> list[GraphRow]:
    active_lanes: list[str | None] = []
    rows: list[GraphRow] = []

    for commit in commits:
        lane = _find_or_allocate_lane(commit.hash, active_lanes)

        # A hash can be awaited in several lanes after merges; collapse onto one.
        for index, awaited in enumerate(active_lanes):
            if index != lane and awaited == commit.hash:
                active_lanes[index] = None

        edges: list[GraphEdge] = []
        if commit.parents:
            first_parent = commit.parents[0]
            active_lanes[lane] = first_parent
            edges.append(GraphEdge(to_lane=lane, parent_hash=first_parent))
        else:
            active_lanes[lane] = None

        for parent in commit.parents[1:]:
            target_lane = _find_or_allocate_lane(parent, active_lanes)
            edges.append(GraphEdge(to_lane=target_lane, parent_hash=parent))

        while active_lanes and active_lanes[-1] is None:
            active_lanes.pop()

        rows.append(
            GraphRow(
                **dict(commit),
                lane=lane,
                active_lane_count=len(active_lanes),
                edges=edges,
            )
        )
    return rows


def _find_or_allocate_lane(commit_hash: str, active_lanes: list[str | None]) -> int:
    if commit_hash in active_lanes:
        return active_lanes.index(commit_hash)
    if None in active_lanes:
        index = active_lanes.index(None)
        active_lanes[index] = commit_hash
        return index
    active_lanes.append(commit_hash)
    return len(active_lanes) - 1
