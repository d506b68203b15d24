from __future__ import annotations

from pathlib import Path

import pytest

from gitgraph_mcp.errors import ErrorCode, GitGraphError
from gitgraph_mcp.git_runner import GitDynamicLookup, GitRunner


@pytest.fixture()
def runner() -> GitRunner:
    return GitRunner()


def test_exec_captures_stdout(git_repo: Path, runner: GitRunner) -> None:
    out = runner.exec(git_repo, ["rev-parse", "--abbrev-ref", "HEAD"])

    assert out.exit_code == 0
    assert out.stdout.strip() == "main"


def test_exec_non_zero_exit_is_command_failed(git_repo: Path, runner: GitRunner) -> None:
    with pytest.raises(GitGraphError) as exc_info:
        runner.exec(git_repo, ["rev-parse", "--verify", "no-such-ref"])

    error = exc_info.value
    assert error.code == ErrorCode.COMMAND_FAILED
    assert error.details["program"] == "git"
    assert error.details["args"] == ["rev-parse", "--verify", "no-such-ref"]
    assert error.details["exit_code"] != 0
    assert "stderr" in error.details


def test_exec_allow_non_zero_returns_output(git_repo: Path, runner: GitRunner) -> None:
    out = runner.exec(git_repo, ["rev-parse", "--verify", "no-such-ref"], allow_non_zero=True)

    assert out.exit_code not in (0, None)


def test_missing_binary_is_io_error(tmp_path: Path) -> None:
    runner = GitRunner(git_binary="definitely-not-a-real-git-binary")

    with pytest.raises(GitGraphError) as exc_info:
        runner.exec(tmp_path, ["status"])

    assert exc_info.value.code == ErrorCode.IO_ERROR


def test_exec_shell_runs_script(git_repo: Path, runner: GitRunner) -> None:
    out = runner.exec_shell(git_repo, "git rev-parse --abbrev-ref HEAD && echo done")

    assert out.stdout.split() == ["main", "done"]


def test_validate_repo(git_repo: Path, tmp_path: Path, runner: GitRunner) -> None:
    runner.validate_repo(git_repo)

    plain_dir = tmp_path / "plain"
    plain_dir.mkdir()
    for path in (plain_dir, tmp_path / "missing"):
        with pytest.raises(GitGraphError) as exc_info:
            runner.validate_repo(path)
        assert exc_info.value.code == ErrorCode.INVALID_REPOSITORY
        assert exc_info.value.details == {"path": str(path)}


def test_discover_repo_root_from_subdirectory(git_repo: Path, runner: GitRunner) -> None:
    root = runner.discover_repo_root(git_repo / "src")

    assert root.resolve() == git_repo.resolve()


def test_dynamic_lookup(git_repo: Path, runner: GitRunner) -> None:
    lookup = GitDynamicLookup(runner, git_repo)

    assert lookup("GIT_CONFIG:user.email") == "test@example.com"
    assert lookup("GIT_CONFIG:no.such.key") == ""
    assert lookup("GIT_EXEC:log -1 --format=%an") == "Test"
    assert lookup("GIT_EXEC:") == ""
    assert lookup("BRANCH_NAME") is None
