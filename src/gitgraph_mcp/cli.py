"""Command line interface for gitgraph with parity to MCP tools."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import ErrorCode, GitGraphError
from .models import (
    ActionContext,
    ActionRequest,
    ActionScope,
    CommitSearchQuery,
    GraphQuery,
)
from .runtime import (
    RuntimeSettings,
    build_catalog,
    configure_logging,
    get_runtime_settings,
)
from .service import GitGraphService


def _key_value(raw: str, flag: str) -> tuple[str, str]:
    key, separator, value = raw.partition("=")
    if not separator or not key.strip():
        raise GitGraphError(
            ErrorCode.INVALID_INPUT,
            f"{flag} expects KEY=VALUE, got {raw!r}",
            f"Use {flag} NAME=value.",
        )
    return key.strip(), value


def _load_context(path_value: str) -> ActionContext:
    context_path = Path(path_value).expanduser()
    try:
        payload = json.loads(context_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise GitGraphError(
            ErrorCode.INVALID_INPUT,
            "Unable to read context-json file.",
            "Ensure --context-json points to a readable JSON file.",
        ) from exc
    except json.JSONDecodeError as exc:
        raise GitGraphError(
            ErrorCode.INVALID_INPUT,
            "context-json must contain a valid JSON object.",
            'Provide JSON like {"branch_name": "main", "commit_hash": "abc123"}.',
        ) from exc
    if not isinstance(payload, dict):
        raise GitGraphError(
            ErrorCode.INVALID_INPUT,
            "context-json must contain a JSON object.",
            'Provide JSON like {"branch_name": "main", "commit_hash": "abc123"}.',
        )
    return ActionContext.model_validate(payload)


def _build_action_request(args: argparse.Namespace) -> ActionRequest:
    context = _load_context(args.context_json) if args.context_json else ActionContext()
    for raw in args.ctx:
        key, value = _key_value(raw, "--ctx")
        context.apply_placeholder(key, value)
    params = dict(_key_value(raw, "--param") for raw in args.param)
    return ActionRequest(
        template_id=args.id,
        params=params,
        enabled_options=set(args.option),
        context=context,
    )


def _load_settings(args: argparse.Namespace) -> RuntimeSettings:
    try:
        return get_runtime_settings(
            config_path=args.config_file or None,
            repo_path=getattr(args, "repo", None) or ".",
        )
    except ValueError as exc:
        raise GitGraphError(
            ErrorCode.INVALID_INPUT,
            str(exc),
            "Fix the GITGRAPH_* environment variables or the YAML config file.",
        ) from exc


def _print_graph_rows(rows: list[dict[str, Any]]) -> None:
    for row in rows:
        lanes = ["|"] * max(row.get("active_lane_count", 0), row.get("lane", 0) + 1)
        lanes[row.get("lane", 0)] = "*"
        names = ", ".join(ref.get("name", "") for ref in row.get("refs", []))
        decoration = f" ({names})" if names else ""
        print(f"{' '.join(lanes)}  {row.get('short_hash', '')}{decoration} {row.get('subject', '')}")


def _print_payload(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return

    status = payload.get("status", "unknown").upper()
    message = payload.get("message", "")
    print(f"[{status}] {message}")

    if payload.get("status") == "error":
        error_code = payload.get("error_code", "")
        suggestion = payload.get("suggestion", "")
        if error_code:
            print(f"error_code: {error_code}")
        if suggestion:
            print(f"suggestion: {suggestion}")
        return

    for key in ("repository", "count", "repo_root", "command_line", "exit_code"):
        if key in payload and payload[key] not in ("", None):
            print(f"{key}: {payload[key]}")

    if "settings" in payload and isinstance(payload["settings"], dict):
        print("settings:")
        for setting_key, setting_value in payload["settings"].items():
            print(f"  {setting_key}: {setting_value}")

    if "graph" in payload:
        _print_graph_rows(payload["graph"].get("commits", []))

    if "blame" in payload:
        blame = payload["blame"]
        print(
            f"{blame.get('commit_hash', '')[:12]} {blame.get('author_name', '')} "
            f"<{blame.get('author_email', '')}> {blame.get('summary', '')}"
        )

    if "files" in payload:
        for change in payload["files"]:
            added = "-" if change.get("added") is None else change["added"]
            removed = "-" if change.get("removed") is None else change["removed"]
            print(f"+{added} -{removed} {change.get('path', '')}")

    if "actions" in payload:
        for action in payload["actions"]:
            print(f"- {action.get('id')}: {action.get('raw_args')}")

    if payload.get("patch"):
        print(payload["patch"], end="")

    if payload.get("stdout"):
        print(payload["stdout"], end="")
    if payload.get("stderr"):
        print(payload["stderr"], end="", file=sys.stderr)


def _error_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, GitGraphError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        errors: Any
        try:
            errors = exc.errors(include_context=False, include_input=False)
        except TypeError:
            errors = exc.errors()
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check command arguments and constraints.",
            "details": {"errors": errors},
        }
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Retry with --json for diagnostics and inspect logs.",
        "details": {},
    }


def _add_common_arguments(parser: argparse.ArgumentParser, repo_default: str | None = ".") -> None:
    parser.add_argument("-r", "--repo", default=repo_default, help="Git repository path")
    parser.add_argument(
        "--config-file",
        default="",
        help="YAML settings file (default: GITGRAPH_CONFIG_FILE or <repo>/.gitgraph.yaml)",
    )
    parser.add_argument("--json", action="store_true", help="Output machine-readable JSON")


def _add_graph_window_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-n", "--limit", type=int, default=None, help="Maximum commits (default: log_limit)"
    )
    parser.add_argument("--skip", type=int, default=0, help="Commits to skip from the top")


def _add_action_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--id", required=True, help="Template id (full or short, e.g. checkout)")
    parser.add_argument(
        "--param", action="append", default=[], help="Param value as ID=VALUE (repeatable)"
    )
    parser.add_argument(
        "--option", action="append", default=[], help="Enable option by id or flag (repeatable)"
    )
    parser.add_argument(
        "--ctx",
        action="append",
        default=[],
        help="Context placeholder as NAME=VALUE, e.g. BRANCH_NAME=main (repeatable)",
    )
    parser.add_argument("--context-json", default="", help="JSON file with the action context")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gitgraph-cli", description="Git commit graph CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    graph = subparsers.add_parser("graph", help="Show the commit graph")
    _add_common_arguments(graph)
    _add_graph_window_arguments(graph)
    graph.add_argument(
        "--all",
        dest="all_refs",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Include every ref (default: on)",
    )
    graph.add_argument("--no-stash", action="store_true", help="Do not include refs/stash")
    graph.add_argument(
        "--arg",
        dest="extra_args",
        action="append",
        default=[],
        help="Extra argument passed to git log (repeatable)",
    )

    search = subparsers.add_parser("search", help="Filter the commit graph")
    _add_common_arguments(search)
    _add_graph_window_arguments(search)
    search.add_argument("--text", required=True, help="Search text or pattern")
    search.add_argument("--file", default="", help="Search this file's contents across history")
    search.add_argument("--regex", action="store_true", help="Treat text as a regular expression")
    search.add_argument("--case-sensitive", action="store_true", help="Match case exactly")

    blame = subparsers.add_parser("blame", help="Blame one line of a file")
    _add_common_arguments(blame)
    blame.add_argument("--file", required=True, help="File path (relative to the repository)")
    blame.add_argument("--line", type=int, required=True, help="1-based line number")

    files = subparsers.add_parser("files", help="List files changed by a commit")
    _add_common_arguments(files)
    files.add_argument("commit", help="Commit hash")

    patch = subparsers.add_parser("patch", help="Show one file's patch in a commit")
    _add_common_arguments(patch)
    patch.add_argument("commit", help="Commit hash")
    patch.add_argument("path", help="File path (numstat rename notation accepted)")
    patch.add_argument("--context-lines", type=int, default=3, help="Unified diff context")

    actions = subparsers.add_parser("actions", help="List, preview or run catalog actions")
    action_commands = actions.add_subparsers(dest="action_command", required=True)

    actions_list = action_commands.add_parser("list", help="List action templates")
    _add_common_arguments(actions_list)
    actions_list.add_argument(
        "--scope",
        choices=[scope.value for scope in ActionScope],
        default="",
        help="Only templates of this scope",
    )

    preview = action_commands.add_parser("preview", help="Resolve an action without running it")
    _add_common_arguments(preview, repo_default=None)
    _add_action_arguments(preview)

    run = action_commands.add_parser("run", help="Resolve and run an action")
    _add_common_arguments(run)
    _add_action_arguments(run)

    validate = subparsers.add_parser("validate-repo", help="Check that a path is a git work tree")
    _add_common_arguments(validate)

    config = subparsers.add_parser("config", help="Print effective settings")
    _add_common_arguments(config)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    as_json = bool(getattr(args, "json", False))

    try:
        settings = _load_settings(args)
        configure_logging(settings.log_level)

        if args.command == "config":
            response = {
                "status": "success",
                "message": "Effective settings",
                "settings": settings.to_payload(),
            }
            _print_payload(response, as_json=as_json)
            return 0

        service = GitGraphService.from_settings(settings, build_catalog(settings))

        if args.command in ("graph", "search"):
            query = GraphQuery(
                limit=args.limit if args.limit is not None else settings.log_limit,
                skip=args.skip,
                all_refs=getattr(args, "all_refs", True),
                include_stash_ref=not getattr(args, "no_stash", False),
                additional_args=getattr(args, "extra_args", []),
            )
            if args.command == "graph":
                data = service.graph(args.repo, query)
            else:
                data = service.graph_filtered(
                    args.repo,
                    query,
                    CommitSearchQuery(
                        text=args.text,
                        case_sensitive=args.case_sensitive,
                        use_regex=args.regex,
                        file_path=args.file or None,
                    ),
                )
            response = {
                "status": "success",
                "message": f"{len(data.commits)} commits",
                "repository": data.repository,
                "count": len(data.commits),
                "graph": data.model_dump(mode="json"),
            }
        elif args.command == "blame":
            blame = service.blame_line(args.repo, args.file, args.line)
            response = {
                "status": "success",
                "message": f"Blame for {args.file}:{blame.line}",
                "blame": blame.model_dump(mode="json"),
            }
        elif args.command == "files":
            changes = service.commit_file_changes(args.repo, args.commit)
            response = {
                "status": "success",
                "message": f"{len(changes)} files changed in {args.commit}",
                "count": len(changes),
                "files": [change.model_dump(mode="json") for change in changes],
            }
        elif args.command == "patch":
            patch_text = service.commit_file_patch(
                args.repo, args.commit, args.path, args.context_lines
            )
            response = {
                "status": "success",
                "message": "Patch found" if patch_text else "No patch for this path",
                "patch": patch_text,
            }
        elif args.command == "actions":
            if args.action_command == "list":
                templates = (
                    service.catalog.templates_for_scope(args.scope)
                    if args.scope
                    else list(service.catalog)
                )
                response = {
                    "status": "success",
                    "message": f"{len(templates)} action templates",
                    "count": len(templates),
                    "actions": [template.model_dump(mode="json") for template in templates],
                }
            elif args.action_command == "preview":
                resolved = service.resolve_action_preview(_build_action_request(args), args.repo)
                response = {
                    "status": "success",
                    "message": f"Resolved {resolved.id}",
                    "command_line": resolved.command_line,
                    "action": resolved.model_dump(mode="json"),
                }
            else:
                result = service.execute_action(args.repo, _build_action_request(args))
                response = {
                    "status": "success",
                    "message": f"Ran {result.action_id}",
                    "command_line": result.command_line,
                    "exit_code": result.output.exit_code,
                    "stdout": result.output.stdout,
                    "stderr": result.output.stderr,
                    "result": result.model_dump(mode="json"),
                }
        else:
            repo_root = service.validate_repo(args.repo)
            response = {
                "status": "success",
                "message": "Valid git repository",
                "repo_root": str(repo_root),
            }

        _print_payload(response, as_json=as_json)
        return 0
    except Exception as exc:  # noqa: BLE001
        payload = _error_payload(exc)
        _print_payload(payload, as_json=as_json)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
