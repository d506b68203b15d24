"""Service facade wiring git execution, graph building, search and actions."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from .actions import ActionCatalog
from .constants import FIELD_SEP, LOG_PRETTY_FORMAT, STASH_REF
from .errors import command_failed
from .git_runner import GitDynamicLookup, GitRunner
from .graph import build_graph_rows
from .log_parser import parse_branch_lines, parse_log_records
from .models import (
    ActionExecutionResult,
    ActionRequest,
    BlameInfo,
    BranchInfo,
    CommitSearchQuery,
    FileChange,
    GitOutput,
    GraphData,
    GraphQuery,
    GraphRow,
    ResolvedAction,
)
from .resolver import ActionResolver, normalize_action_request, no_dynamic_lookup
from .runtime import RuntimeSettings
from .search import filter_commits

logger = logging.getLogger(__name__)

# Keeps git output plain and stable for parsing.
PLAIN_OUTPUT_CONFIG = ["-c", "color.ui=never", "-c", "core.quotePath=false"]


class GitGraphService:
    """Repository-facing operations built on the pure graph and action core."""

    def __init__(
        self,
        runner: GitRunner,
        catalog: ActionCatalog,
        settings: RuntimeSettings | None = None,
    ) -> None:
        self.runner = runner
        self.catalog = catalog
        self.settings = settings or RuntimeSettings()
        self.resolver = ActionResolver(catalog)

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, catalog: ActionCatalog) -> GitGraphService:
        runner = GitRunner(
            git_binary=settings.git_binary,
            timeout_seconds=settings.command_timeout_seconds,
        )
        return cls(runner, catalog, settings)

    def graph(self, repo_path: Path | str, query: GraphQuery | None = None) -> GraphData:
        """Run `git log`, parse it and place every commit on a lane."""
        query = query or GraphQuery(limit=self.settings.log_limit)
        repo = Path(repo_path)
        self.runner.validate_repo(repo)

        started = time.perf_counter()
        log_output = self._run_log(repo, query)
        commits = build_graph_rows(parse_log_records(log_output.stdout))
        branches = self.read_branches(repo)
        logger.debug(
            "graph repo=%s commits=%d branches=%d elapsed_ms=%.1f",
            repo,
            len(commits),
            len(branches),
            (time.perf_counter() - started) * 1000,
        )
        return GraphData(
            repository=str(_normalize_repo_path(repo)),
            generated_at_unix=int(time.time()),
            query=query,
            commits=commits,
            branches=branches,
        )

    def graph_filtered(
        self,
        repo_path: Path | str,
        query: GraphQuery | None,
        search: CommitSearchQuery,
    ) -> GraphData:
        """Build the graph and keep only rows matching ``search``.

        With ``search.file_path`` set, rows are matched by the file's content at
        each commit (history grep) instead of commit metadata.
        """
        data = self.graph(repo_path, query)
        started = time.perf_counter()
        if search.file_path:
            data.commits = self._filter_by_file_contents(
                Path(repo_path), data.commits, search, search.file_path
            )
        elif search.text.strip():
            data.commits = filter_commits(data.commits, search)
        logger.debug(
            "search matched=%d elapsed_ms=%.1f",
            len(data.commits),
            (time.perf_counter() - started) * 1000,
        )
        return data

    def read_branches(self, repo_path: Path | str) -> list[BranchInfo]:
        out = self.runner.exec(
            repo_path,
            [
                "branch",
                "--list",
                "--all",
                "--sort=-committerdate",
                f"--format=%(upstream:remotename){FIELD_SEP}%(refname)",
            ],
        )
        return parse_branch_lines(out.stdout)

    def resolve_action_preview(
        self,
        request: ActionRequest,
        repo_path: Path | str | None = None,
    ) -> ResolvedAction:
        """Resolve an action without running it; git lookups need a repository."""
        request = normalize_action_request(
            request, self.catalog, self.settings.default_remote_name
        )
        lookup = no_dynamic_lookup
        if repo_path is not None:
            lookup = GitDynamicLookup(self.runner, repo_path)
        return self.resolver.resolve(request, lookup)

    def execute_action(self, repo_path: Path | str, request: ActionRequest) -> ActionExecutionResult:
        """Resolve an action against the repository and run it."""
        request = normalize_action_request(
            request, self.catalog, self.settings.default_remote_name
        )
        resolved = self.resolver.resolve(request, GitDynamicLookup(self.runner, repo_path))
        logger.info("Running action %s: %s", resolved.id, resolved.command_line)
        if resolved.shell_script is not None:
            script = f"{self.runner.git_binary} {resolved.shell_script}"
            output = self.runner.exec_shell(
                repo_path, script, allow_non_zero=resolved.allow_non_zero_exit
            )
        else:
            output = self.runner.exec(
                repo_path, resolved.args, allow_non_zero=resolved.allow_non_zero_exit
            )
        return ActionExecutionResult(
            action_id=resolved.id,
            command_line=resolved.command_line,
            args=resolved.args,
            output=output,
        )

    def blame_line(self, repo_path: Path | str, file: Path | str, line: int) -> BlameInfo:
        """Blame a single line (1-based; smaller values are clamped to 1)."""
        line_no = max(line, 1)
        repo = _normalize_repo_path(Path(repo_path))
        repo_file = _relative_repo_file(repo, Path(file))
        out = self.runner.exec(
            repo,
            ["blame", f"-L{line_no},{line_no}", "--porcelain", "--", str(repo_file)],
        )
        info = BlameInfo(file=str(repo / repo_file), line=line_no)
        for index, raw in enumerate(out.stdout.split("\n")):
            if index == 0:
                parts = raw.split()
                info.commit_hash = parts[0] if parts else ""
            elif raw.startswith("author "):
                info.author_name = raw[len("author "):]
            elif raw.startswith("author-mail "):
                info.author_email = raw[len("author-mail "):].strip("<>")
            elif raw.startswith("author-time "):
                try:
                    info.author_time_unix = int(raw[len("author-time "):])
                except ValueError:
                    info.author_time_unix = 0
            elif raw.startswith("summary "):
                info.summary = raw[len("summary "):]
        return info

    def commit_file_changes(self, repo_path: Path | str, commit_hash: str) -> list[FileChange]:
        """List per-file added/removed line counts for a commit."""
        self.runner.validate_repo(repo_path)
        out = self.runner.exec(
            repo_path,
            [
                *PLAIN_OUTPUT_CONFIG,
                "show",
                "--numstat",
                "--no-color",
                "--no-ext-diff",
                "--format=",
                "--find-renames",
                "--find-copies",
                commit_hash,
            ],
        )
        files: list[FileChange] = []
        for raw in out.stdout.split("\n"):
            trimmed = raw.strip()
            if not trimmed:
                continue
            parts = trimmed.split("\t", 2)
            if len(parts) < 3:
                continue
            added_raw, removed_raw, path = parts
            files.append(
                FileChange(
                    path=path,
                    added=parse_numstat_value(added_raw),
                    removed=parse_numstat_value(removed_raw),
                )
            )
        return files

    def commit_file_patch(
        self,
        repo_path: Path | str,
        commit_hash: str,
        file_path: str,
        context_lines: int = 3,
    ) -> str:
        """Return the patch of one file in a commit, or "" when it has none.

        Rename-style numstat paths are retried with their destination path, and
        merge commits are retried against each parent (`-m`).
        """
        self.runner.validate_repo(repo_path)
        raw_path = file_path.strip()
        candidates = [raw_path]
        normalized = normalize_numstat_path(file_path)
        if normalized != raw_path:
            candidates.append(normalized)

        for candidate in candidates:
            if not candidate:
                continue
            for split_merge_parents in (False, True):
                patch = self._try_commit_file_patch(
                    repo_path, commit_hash, candidate, context_lines, split_merge_parents
                )
                if patch is not None:
                    return patch
        return ""

    def validate_repo(self, repo_path: Path | str) -> Path:
        self.runner.validate_repo(repo_path)
        return self.runner.discover_repo_root(repo_path)

    def _try_commit_file_patch(
        self,
        repo_path: Path | str,
        commit_hash: str,
        file_path: str,
        context_lines: int,
        split_merge_parents: bool,
    ) -> str | None:
        args = [
            *PLAIN_OUTPUT_CONFIG,
            "show",
            "--patch",
            "--no-color",
            "--no-ext-diff",
            "--format=",
            "--find-renames",
            "--find-copies",
            f"--unified={max(context_lines, 0)}",
        ]
        if split_merge_parents:
            args.append("-m")
        args.extend([commit_hash, "--", file_path])
        out = self.runner.exec(repo_path, args)
        if not out.stdout.strip():
            return None
        return out.stdout

    def _run_log(self, repo_path: Path, query: GraphQuery) -> GitOutput:
        args = [
            "-c",
            "color.ui=never",
            "log",
            "--date-order",
            "--topo-order",
            "--decorate=full",
            "--color=never",
            f"--pretty=format:{LOG_PRETTY_FORMAT}",
            "--no-show-signature",
            "--no-notes",
            "-n",
            str(query.limit),
            "--skip",
            str(query.skip),
        ]
        if query.all_refs:
            args.append("--all")
        if query.include_stash_ref and self._has_stash_ref(repo_path):
            args.append(STASH_REF)
        args.extend(query.additional_args)
        return self.runner.exec(repo_path, args)

    def _has_stash_ref(self, repo_path: Path) -> bool:
        out = self.runner.exec(
            repo_path,
            ["show-ref", "--verify", "--quiet", STASH_REF],
            allow_non_zero=True,
        )
        return out.exit_code == 0

    def _filter_by_file_contents(
        self,
        repo_path: Path,
        rows: list[GraphRow],
        search: CommitSearchQuery,
        file_path: str,
    ) -> list[GraphRow]:
        if not rows or not search.text.strip():
            return rows

        normalized_path = file_path.replace("\\", "/")
        chunk_size = self.settings.grep_chunk_size
        matched_hashes: set[str] = set()
        for start in range(0, len(rows), chunk_size):
            chunk = rows[start:start + chunk_size]
            args = ["grep", "-E" if search.use_regex else "-F"]
            if not search.case_sensitive:
                args.append("-i")
            args.extend(["-n", "-e", search.text])
            args.extend(row.hash for row in chunk)
            args.extend(["--", normalized_path])

            out = self.runner.exec(repo_path, args, allow_non_zero=True)
            # grep exits 1 when nothing matched
            if out.exit_code not in (0, 1):
                raise command_failed(
                    self.runner.git_binary, args, out.exit_code, out.stdout, out.stderr
                )
            for line in out.stdout.split("\n"):
                commit_hash, separator, _ = line.partition(":")
                if separator:
                    matched_hashes.add(commit_hash)

        if not matched_hashes:
            return []
        return [row for row in rows if row.hash in matched_hashes]


def parse_numstat_value(raw: str) -> int | None:
    """Numstat count, or None for binary files (`-`) and unparsable values."""
    if raw == "-":
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


def normalize_numstat_path(raw: str) -> str:
    """Reduce numstat rename notation (`a => b`, `dir/{a => b}/f`) to the new path."""
    path = raw.strip().strip('"')
    if not path:
        return path

    if "{" in path and " => " in path:
        out: list[str] = []
        index = 0
        while index < len(path):
            if path[index] == "{":
                close = path.find("}", index + 1)
                if close >= 0:
                    inner = path[index + 1:close]
                    _, separator, rhs = inner.partition(" => ")
                    if separator:
                        out.append(rhs.strip())
                        index = close + 1
                        continue
            out.append(path[index])
            index += 1
        path = "".join(out)

    _, separator, rhs = path.rpartition(" => ")
    if separator:
        path = rhs.strip()
    return path


def _normalize_repo_path(repo_path: Path) -> Path:
    try:
        return repo_path.resolve(strict=True)
    except OSError:
        return repo_path


def _relative_repo_file(repo_root: Path, file: Path) -> Path:
    if file.is_absolute():
        try:
            return file.relative_to(repo_root)
        except ValueError:
            return file
    return file
