from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )
    return completed.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture()
def git_repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A small repository: main with two commits, a merged feature branch and a tag."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    for key, value in GIT_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("HOME", str(tmp_path))

    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "config", "user.name", "Test")
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "commit.gpgsign", "false")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")

    commit_file(repo, "a.txt", "alpha\n", "init")
    commit_file(repo, "a.txt", "alpha\nbeta\n", "add beta line")
    git(repo, "checkout", "-q", "-b", "feature")
    commit_file(repo, "src/feature.txt", "needle in feature\n", "feature work")
    git(repo, "checkout", "-q", "main")
    commit_file(repo, "b.txt", "bravo\n", "main work")
    git(repo, "merge", "-q", "--no-ff", "--no-edit", "feature")
    git(repo, "tag", "v1.0")
    return repo
