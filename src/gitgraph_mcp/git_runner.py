"""Process helpers for invoking git, used by the gitgraph service."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from .actions import tokenize_args
from .constants import DEFAULT_GIT_BINARY, DYNAMIC_CONFIG_PREFIX, DYNAMIC_EXEC_PREFIX
from .errors import ErrorCode, GitGraphError, command_failed
from .models import GitOutput

logger = logging.getLogger(__name__)


class GitRunner:
    """Run git (or a shell script) in a repository and capture its output."""

    def __init__(
        self,
        git_binary: str = DEFAULT_GIT_BINARY,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.git_binary = git_binary
        self.env = dict(env or {})
        self.timeout_seconds = timeout_seconds or None

    def exec(
        self,
        repo_path: Path | str,
        args: Sequence[str],
        allow_non_zero: bool = False,
    ) -> GitOutput:
        return self._run(
            program=self.git_binary,
            args=list(args),
            repo_path=Path(repo_path),
            allow_non_zero=allow_non_zero,
            operation="running git command",
        )

    def exec_shell(
        self,
        repo_path: Path | str,
        script: str,
        allow_non_zero: bool = False,
    ) -> GitOutput:
        if sys.platform.startswith("win"):
            program, args = "cmd", ["/C", script]
        else:
            program, args = "sh", ["-lc", script]
        return self._run(
            program=program,
            args=args,
            repo_path=Path(repo_path),
            allow_non_zero=allow_non_zero,
            operation="running shell git script",
        )

    def validate_repo(self, repo_path: Path | str) -> None:
        path = Path(repo_path)
        if not path.is_dir():
            raise _invalid_repository(path)
        out = self.exec(path, ["rev-parse", "--is-inside-work-tree"], allow_non_zero=True)
        if out.stdout.strip() != "true":
            raise _invalid_repository(path)

    def discover_repo_root(self, start_path: Path | str) -> Path:
        out = self.exec(start_path, ["rev-parse", "--show-toplevel"])
        root = out.stdout.strip()
        if not root:
            raise _invalid_repository(Path(start_path))
        return Path(root)

    def _run(
        self,
        program: str,
        args: list[str],
        repo_path: Path,
        allow_non_zero: bool,
        operation: str,
    ) -> GitOutput:
        env = None
        if self.env:
            env = {**os.environ, **self.env}
        started = time.perf_counter()
        try:
            completed = subprocess.run(
                [program, *args],
                cwd=repo_path,
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitGraphError(
                ErrorCode.IO_ERROR,
                f"I/O failure while {operation}: timed out after {self.timeout_seconds}s",
                "Increase GITGRAPH_COMMAND_TIMEOUT_SECONDS or narrow the query.",
                {"operation": operation, "program": program, "args": args},
            ) from exc
        except OSError as exc:
            raise GitGraphError(
                ErrorCode.IO_ERROR,
                f"I/O failure while {operation}: {exc}",
                "Check that the git binary exists and the repository path is accessible.",
                {"operation": operation, "program": program, "args": args},
            ) from exc

        output = GitOutput(
            stdout=completed.stdout.decode("utf-8", errors="replace"),
            stderr=completed.stderr.decode("utf-8", errors="replace"),
            exit_code=completed.returncode,
        )
        logger.debug(
            "%s %s exit=%s elapsed_ms=%.1f",
            program,
            args,
            completed.returncode,
            (time.perf_counter() - started) * 1000,
        )
        if completed.returncode == 0 or allow_non_zero:
            return output
        raise command_failed(program, args, output.exit_code, output.stdout, output.stderr)


class GitDynamicLookup:
    """Resolve `GIT_CONFIG:<key>` and `GIT_EXEC:<args>` placeholders via git."""

    def __init__(self, runner: GitRunner, repo_path: Path | str) -> None:
        self.runner = runner
        self.repo_path = Path(repo_path)

    def __call__(self, key: str) -> str | None:
        if key.startswith(DYNAMIC_CONFIG_PREFIX):
            config_key = key[len(DYNAMIC_CONFIG_PREFIX):]
            out = self.runner.exec(
                self.repo_path, ["config", "--get", config_key], allow_non_zero=True
            )
            return out.stdout.strip()
        if key.startswith(DYNAMIC_EXEC_PREFIX):
            args = tokenize_args(key[len(DYNAMIC_EXEC_PREFIX):])
            if not args:
                return ""
            out = self.runner.exec(self.repo_path, args, allow_non_zero=True)
            return out.stdout.strip()
        return None


def _invalid_repository(path: Path) -> GitGraphError:
    return GitGraphError(
        ErrorCode.INVALID_REPOSITORY,
        f"invalid git repository: {path}",
        "Pass --repo pointing at a git work tree.",
        {"path": str(path)},
    )
