from __future__ import annotations

from pathlib import Path

import pytest

from conftest import commit_file, git
from gitgraph_mcp.actions import builtin_catalog_provider
from gitgraph_mcp.errors import ErrorCode, GitGraphError
from gitgraph_mcp.git_runner import GitRunner
from gitgraph_mcp.models import (
    ActionContext,
    ActionRequest,
    CommitSearchQuery,
    GraphQuery,
    RefKind,
)
from gitgraph_mcp.runtime import RuntimeSettings
from gitgraph_mcp.service import GitGraphService, normalize_numstat_path, parse_numstat_value


@pytest.fixture()
def service() -> GitGraphService:
    return GitGraphService(GitRunner(), builtin_catalog_provider.get(), RuntimeSettings())


def _subjects(rows) -> list[str]:
    return [row.subject for row in rows]


def test_graph_reads_history_refs_and_branches(git_repo: Path, service: GitGraphService) -> None:
    data = service.graph(git_repo)

    assert len(data.commits) == 5
    assert data.repository == str(git_repo.resolve())
    merge = data.commits[0]
    assert len(merge.parents) == 2
    assert [edge.parent_hash for edge in merge.edges] == merge.parents
    assert merge.edges[0].to_lane == merge.lane
    ref_kinds = {(ref.kind, ref.name) for ref in merge.refs}
    assert (RefKind.TAG, "v1.0") in ref_kinds
    assert any(ref.kind == RefKind.HEAD and ref.target == "main" for ref in merge.refs)
    assert data.commits[-1].subject == "init"
    assert data.commits[-1].parents == []
    assert {branch.name for branch in data.branches} == {"main", "feature"}


def test_graph_limit_and_skip(git_repo: Path, service: GitGraphService) -> None:
    full = service.graph(git_repo)
    window = service.graph(git_repo, GraphQuery(limit=2, skip=1))

    assert [row.hash for row in window.commits] == [row.hash for row in full.commits[1:3]]


def test_graph_includes_stash_ref_when_present(git_repo: Path, service: GitGraphService) -> None:
    (git_repo / "a.txt").write_text("dirty\n", encoding="utf-8")
    git(git_repo, "stash", "push", "-q", "-m", "wip")

    without_stash = service.graph(git_repo, GraphQuery(all_refs=False, include_stash_ref=False))
    with_stash = service.graph(git_repo, GraphQuery(all_refs=False))

    assert len(without_stash.commits) == 5
    assert len(with_stash.commits) > 5
    assert any(ref.kind == RefKind.STASH for row in with_stash.commits for ref in row.refs)


def test_graph_rejects_non_repository(tmp_path: Path, service: GitGraphService) -> None:
    with pytest.raises(GitGraphError) as exc_info:
        service.graph(tmp_path)

    assert exc_info.value.code == ErrorCode.INVALID_REPOSITORY


def test_graph_filtered_by_metadata(git_repo: Path, service: GitGraphService) -> None:
    data = service.graph_filtered(git_repo, None, CommitSearchQuery(text="FEATURE"))

    assert _subjects(data.commits) == [
        row.subject for row in service.graph(git_repo).commits if "feature" in row.subject.lower()
    ]
    assert "feature work" in _subjects(data.commits)


def test_graph_filtered_blank_text_keeps_everything(git_repo: Path, service: GitGraphService) -> None:
    data = service.graph_filtered(git_repo, None, CommitSearchQuery(text="  "))

    assert len(data.commits) == 5


@pytest.mark.parametrize("chunk_size", [1, 200])
def test_graph_filtered_by_file_contents(git_repo: Path, chunk_size: int) -> None:
    service = GitGraphService(
        GitRunner(), builtin_catalog_provider.get(), RuntimeSettings(grep_chunk_size=chunk_size)
    )

    data = service.graph_filtered(
        git_repo, None, CommitSearchQuery(text="NEEDLE", file_path="src/feature.txt")
    )

    # the feature commit and the merge both contain the file
    assert len(data.commits) == 2
    assert "feature work" in _subjects(data.commits)

    data = service.graph_filtered(
        git_repo,
        None,
        CommitSearchQuery(text="NEEDLE", file_path="src/feature.txt", case_sensitive=True),
    )
    assert data.commits == []


def test_history_grep_failure_is_command_failed(git_repo: Path, service: GitGraphService) -> None:
    with pytest.raises(GitGraphError) as exc_info:
        service.graph_filtered(
            git_repo,
            None,
            CommitSearchQuery(text="(", use_regex=True, file_path="a.txt"),
        )

    assert exc_info.value.code == ErrorCode.COMMAND_FAILED
    assert exc_info.value.details["args"][0] == "grep"


def test_blame_line(git_repo: Path, service: GitGraphService) -> None:
    blame = service.blame_line(git_repo, "a.txt", 2)

    assert blame.summary == "add beta line"
    assert blame.author_name == "Test"
    assert blame.author_email == "test@example.com"
    assert blame.author_time_unix > 0
    assert len(blame.commit_hash) == 40
    assert blame.line == 2


def test_blame_line_clamps_to_first_line(git_repo: Path, service: GitGraphService) -> None:
    blame = service.blame_line(git_repo, git_repo.resolve() / "a.txt", 0)

    assert blame.line == 1
    assert blame.summary == "init"


def test_commit_file_changes(git_repo: Path, service: GitGraphService) -> None:
    head = git(git_repo, "rev-parse", "HEAD^2")

    changes = service.commit_file_changes(git_repo, head)

    assert [(c.path, c.added, c.removed) for c in changes] == [("src/feature.txt", 1, 0)]


def test_commit_file_patch(git_repo: Path, service: GitGraphService) -> None:
    feature = git(git_repo, "rev-parse", "HEAD^2")

    patch = service.commit_file_patch(git_repo, feature, "src/feature.txt", context_lines=0)

    assert "+needle in feature" in patch
    assert service.commit_file_patch(git_repo, feature, "a.txt") == ""
    assert service.commit_file_patch(git_repo, feature, "   ") == ""


def test_commit_file_patch_follows_rename_notation(git_repo: Path, service: GitGraphService) -> None:
    git(git_repo, "mv", "b.txt", "c.txt")
    git(git_repo, "commit", "-q", "-m", "rename b")
    head = git(git_repo, "rev-parse", "HEAD")

    changes = service.commit_file_changes(git_repo, head)
    assert [c.path for c in changes] == ["b.txt => c.txt"]

    patch = service.commit_file_patch(git_repo, head, changes[0].path)
    assert "c.txt" in patch
    assert "+bravo" in patch or "rename to c.txt" in patch


def test_execute_argv_action(git_repo: Path, service: GitGraphService) -> None:
    result = service.execute_action(
        git_repo,
        ActionRequest(template_id="tag:1:delete", context=ActionContext(tag_name="v1.0")),
    )

    assert result.action_id == "tag:1:delete"
    assert result.args == ["tag", "-d", "v1.0"]
    assert result.output.exit_code == 0
    assert git(git_repo, "tag", "--list") == ""


def test_execute_shell_action(git_repo: Path, service: GitGraphService) -> None:
    (git_repo / "new.txt").write_text("new\n", encoding="utf-8")

    result = service.execute_action(
        git_repo,
        ActionRequest(template_id="global:6:commit-all", params={"1": "shell commit"}),
    )

    assert result.command_line == 'add --all && git commit -m "shell commit"'
    assert git(git_repo, "log", "-1", "--format=%s") == "shell commit"


def test_execute_short_id_action_uses_context(git_repo: Path, service: GitGraphService) -> None:
    result = service.execute_action(
        git_repo,
        ActionRequest(template_id="checkout", context=ActionContext(branch_name="feature")),
    )

    assert result.action_id == "branch:1:checkout"
    assert git(git_repo, "rev-parse", "--abbrev-ref", "HEAD") == "feature"


def test_execute_failing_action_is_command_failed(git_repo: Path, service: GitGraphService) -> None:
    with pytest.raises(GitGraphError) as exc_info:
        service.execute_action(
            git_repo,
            ActionRequest(template_id="branch:1:checkout", context=ActionContext(branch_name="nope")),
        )

    assert exc_info.value.code == ErrorCode.COMMAND_FAILED
    assert exc_info.value.details["args"] == ["checkout", "nope"]


def test_preview_uses_git_lookup_only_with_repo(git_repo: Path, service: GitGraphService) -> None:
    commit_file(git_repo, "d.txt", "d\n", "previous subject")

    with_repo = service.resolve_action_preview(
        ActionRequest(template_id="global:7:amend-last-commit"), git_repo
    )
    without_repo = service.resolve_action_preview(ActionRequest(template_id="global:7:amend-last-commit"))

    assert with_repo.args == ["commit", "--amend", "-m", "previous subject"]
    assert without_repo.args == ["commit", "--amend", "-m", "{GIT_EXEC:log -1 --format=%B}"]


def test_preview_fills_default_remote(service: GitGraphService) -> None:
    resolved = service.resolve_action_preview(
        ActionRequest(template_id="tag:2:push", context=ActionContext(tag_name="v2"))
    )

    assert resolved.args == ["push", "origin", "v2"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("README.md", "README.md"),
        ("old.txt => new.txt", "new.txt"),
        ("src/{old => new}/mod.rs", "src/new/mod.rs"),
        ('"src/{old => new}/mod.rs"', "src/new/mod.rs"),
        ("  ", ""),
    ],
)
def test_normalize_numstat_path(raw: str, expected: str) -> None:
    assert normalize_numstat_path(raw) == expected


def test_parse_numstat_value() -> None:
    assert parse_numstat_value("12") == 12
    assert parse_numstat_value("-") is None
    assert parse_numstat_value("x") is None
