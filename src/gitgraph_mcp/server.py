"""MCP server entrypoint and tool definitions for gitgraph."""

from __future__ import annotations

import argparse
import json
import logging
import time
import uuid
from typing import Annotated, Any, Callable

from mcp.server.fastmcp import FastMCP
from pydantic import Field, ValidationError

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
    allow_public_http_default,
    build_catalog,
    configure_logging,
    get_runtime_settings,
    get_server_defaults,
    validate_streamable_http_binding,
)
from .service import GitGraphService

logger = logging.getLogger(__name__)


def _build_fastmcp() -> FastMCP:
    """Instantiate FastMCP with compatibility fallbacks for older SDK versions."""
    kwargs: dict[str, Any] = {
        "name": "gitgraph",
        "instructions": (
            "Explore git history as a lane-assigned commit graph and run catalog actions. "
            "Use gitgraph_graph and gitgraph_search to read history, gitgraph_blame, "
            "gitgraph_commit_files and gitgraph_commit_patch to inspect commits, and "
            "gitgraph_actions_list, gitgraph_action_preview and gitgraph_action_run "
            "to resolve and execute parameterized git commands."
        ),
        "json_response": True,
    }
    optional_keys = ("json_response",)

    while True:
        try:
            return FastMCP(**kwargs)
        except TypeError as exc:
            message = str(exc).lower()
            if "unexpected keyword argument" not in message:
                raise

            removed_key = next((key for key in optional_keys if key in message and key in kwargs), None)
            if removed_key is None:
                raise
            kwargs.pop(removed_key, None)
            logger.debug(
                "FastMCP constructor does not support '%s'; using compatibility fallback.",
                removed_key,
            )


mcp = _build_fastmcp()

_service: GitGraphService | None = None

READ_ONLY_TOOL_ANNOTATIONS = {
    "readOnlyHint": True,
    "idempotentHint": True,
    "destructiveHint": False,
    "openWorldHint": False,
}

# Actions may rewrite history or push to remotes.
DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": True,
    "openWorldHint": True,
}


def _register_tool(annotations: dict[str, bool]):
    """Register tool with annotations, falling back for SDKs without the kwarg."""

    def decorator(func):
        try:
            return mcp.tool(annotations=annotations)(func)
        except TypeError as exc:
            message = str(exc).lower()
            if "annotations" not in message and "unexpected keyword argument" not in message:
                raise
            logger.debug("FastMCP tool annotations not supported in this SDK version; using fallback.")
            return mcp.tool()(func)

    return decorator


def get_service() -> GitGraphService:
    """Return the process-wide service, building it from the environment on first use."""
    global _service
    if _service is None:
        _service = _build_service(get_runtime_settings())
    return _service


def set_service(service: GitGraphService | None) -> None:
    global _service
    _service = service


def _build_service(settings: RuntimeSettings) -> GitGraphService:
    return GitGraphService.from_settings(settings, build_catalog(settings))


def _error_payload_from_exception(exc: Exception) -> dict[str, Any]:
    """Convert internal exceptions into stable MCP error payloads."""
    if isinstance(exc, GitGraphError):
        payload = exc.to_payload()
    elif isinstance(exc, ValidationError):
        payload = {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check field constraints and request schema.",
            "details": {"errors": exc.errors(include_context=False, include_input=False)},
        }
    else:
        logger.exception("Unhandled server exception", exc_info=exc)
        payload = {
            "status": "error",
            "error_code": ErrorCode.INTERNAL_ERROR.value,
            "message": str(exc),
            "suggestion": "Check server logs and retry the operation.",
            "details": {},
        }
    return payload


def _build_correlation_id() -> str:
    """Generate short operation correlation IDs for diagnostics."""
    return uuid.uuid4().hex[:12]


def _log_tool_phase(
    *,
    correlation_id: str,
    tool_name: str,
    phase: str,
    status: str,
    elapsed_seconds: float,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit structured phase-level diagnostics for tool execution."""
    payload: dict[str, Any] = {
        "event_type": "mcp_tool_phase",
        "correlation_id": correlation_id,
        "tool_name": tool_name,
        "phase": phase,
        "status": status,
        "elapsed_ms": round(elapsed_seconds * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("mcp_tool_phase %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))


def _run_tool(
    tool_name: str,
    operation: Callable[[], dict[str, Any]],
) -> dict[str, Any]:
    """Execute a tool operation, mapping failures to error payloads."""
    total_start = time.perf_counter()
    correlation_id = _build_correlation_id()
    operation_start = time.perf_counter()
    try:
        response_payload = dict(operation())
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="operation_execution",
            status="ok",
            elapsed_seconds=time.perf_counter() - operation_start,
        )
        response_payload["correlation_id"] = correlation_id
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="total",
            status="ok",
            elapsed_seconds=time.perf_counter() - total_start,
        )
        return response_payload
    except Exception as exc:  # noqa: BLE001
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="operation_execution",
            status="error",
            elapsed_seconds=time.perf_counter() - operation_start,
            details={"exception": exc.__class__.__name__},
        )
        error_payload = _error_payload_from_exception(exc)
        error_payload["correlation_id"] = correlation_id
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="total",
            status="error",
            elapsed_seconds=time.perf_counter() - total_start,
            details={"error_code": error_payload.get("error_code")},
        )
        return error_payload


def _graph_query(limit: int | None, skip: int, all_refs: bool = True, include_stash_ref: bool = True) -> GraphQuery:
    service = get_service()
    return GraphQuery(
        limit=limit if limit is not None else service.settings.log_limit,
        skip=skip,
        all_refs=all_refs,
        include_stash_ref=include_stash_ref,
    )


def _action_request(
    template_id: str,
    params: dict[str, str] | None,
    enabled_options: list[str] | None,
    context: dict[str, Any] | None,
) -> ActionRequest:
    return ActionRequest(
        template_id=template_id,
        params=params or {},
        enabled_options=set(enabled_options or []),
        context=ActionContext.model_validate(context or {}),
    )


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gitgraph_graph(
    repo_path: Annotated[str, Field(description="Path to a git work tree")],
    limit: Annotated[
        int | None, Field(ge=1, description="Maximum commits (default: configured log_limit)")
    ] = None,
    skip: Annotated[int, Field(ge=0, description="Commits to skip from the top")] = 0,
    all_refs: Annotated[bool, Field(description="Include every ref, not only HEAD")] = True,
    include_stash_ref: Annotated[bool, Field(description="Include refs/stash when present")] = True,
) -> dict[str, Any]:
    """Return lane-assigned commit graph rows and branches for a repository."""

    def _operation() -> dict[str, Any]:
        data = get_service().graph(
            repo_path, _graph_query(limit, skip, all_refs, include_stash_ref)
        )
        return {
            "status": "success",
            "message": f"{len(data.commits)} commits",
            "graph": data.model_dump(mode="json"),
        }

    return _run_tool("gitgraph_graph", operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gitgraph_search(
    repo_path: Annotated[str, Field(description="Path to a git work tree")],
    text: Annotated[str, Field(description="Search text or pattern")],
    file_path: Annotated[
        str | None,
        Field(description="Match this file's contents across history instead of commit metadata"),
    ] = None,
    use_regex: Annotated[bool, Field(description="Treat text as a regular expression")] = False,
    case_sensitive: Annotated[bool, Field(description="Match case exactly")] = False,
    limit: Annotated[int | None, Field(ge=1, description="Maximum commits to scan")] = None,
    skip: Annotated[int, Field(ge=0, description="Commits to skip from the top")] = 0,
) -> dict[str, Any]:
    """Filter the commit graph by metadata or by file contents."""

    def _operation() -> dict[str, Any]:
        search = CommitSearchQuery(
            text=text,
            use_regex=use_regex,
            case_sensitive=case_sensitive,
            file_path=file_path,
        )
        data = get_service().graph_filtered(repo_path, _graph_query(limit, skip), search)
        return {
            "status": "success",
            "message": f"{len(data.commits)} matching commits",
            "graph": data.model_dump(mode="json"),
        }

    return _run_tool("gitgraph_search", operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gitgraph_blame(
    repo_path: Annotated[str, Field(description="Path to a git work tree")],
    file: Annotated[str, Field(min_length=1, description="File path inside the repository")],
    line: Annotated[int, Field(ge=1, description="1-based line number")],
) -> dict[str, Any]:
    """Return the commit and author that last changed one line."""

    def _operation() -> dict[str, Any]:
        blame = get_service().blame_line(repo_path, file, line)
        return {
            "status": "success",
            "message": f"Blame for {file}:{blame.line}",
            "blame": blame.model_dump(mode="json"),
        }

    return _run_tool("gitgraph_blame", operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gitgraph_commit_files(
    repo_path: Annotated[str, Field(description="Path to a git work tree")],
    commit_hash: Annotated[str, Field(min_length=1, description="Commit hash")],
) -> dict[str, Any]:
    """List files changed by a commit with added/removed line counts."""

    def _operation() -> dict[str, Any]:
        changes = get_service().commit_file_changes(repo_path, commit_hash)
        return {
            "status": "success",
            "message": f"{len(changes)} files changed",
            "count": len(changes),
            "files": [change.model_dump(mode="json") for change in changes],
        }

    return _run_tool("gitgraph_commit_files", operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gitgraph_commit_patch(
    repo_path: Annotated[str, Field(description="Path to a git work tree")],
    commit_hash: Annotated[str, Field(min_length=1, description="Commit hash")],
    file_path: Annotated[str, Field(min_length=1, description="File path (rename notation accepted)")],
    context_lines: Annotated[int, Field(ge=0, le=1000, description="Unified diff context lines")] = 3,
) -> dict[str, Any]:
    """Return the patch of a single file within a commit."""

    def _operation() -> dict[str, Any]:
        patch_text = get_service().commit_file_patch(repo_path, commit_hash, file_path, context_lines)
        return {
            "status": "success",
            "message": "Patch found" if patch_text else "No patch for this path",
            "patch": patch_text,
        }

    return _run_tool("gitgraph_commit_patch", operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gitgraph_actions_list(
    scope: Annotated[
        str | None,
        Field(description="Only templates of this scope: " + ", ".join(s.value for s in ActionScope)),
    ] = None,
) -> dict[str, Any]:
    """List action templates from the catalog."""

    def _operation() -> dict[str, Any]:
        catalog = get_service().catalog
        templates = catalog.templates_for_scope(scope) if scope else list(catalog)
        return {
            "status": "success",
            "message": f"{len(templates)} action templates",
            "count": len(templates),
            "actions": [template.model_dump(mode="json") for template in templates],
        }

    return _run_tool("gitgraph_actions_list", operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gitgraph_action_preview(
    template_id: Annotated[str, Field(min_length=1, description="Full or short template id")],
    params: Annotated[
        dict[str, str] | None, Field(description="Param values keyed by param id ('1', '2', ...)")
    ] = None,
    enabled_options: Annotated[
        list[str] | None, Field(description="Option ids or flags to enable")
    ] = None,
    context: Annotated[
        dict[str, Any] | None,
        Field(description="Action context (branch_name, commit_hash, tag_name, ...)"),
    ] = None,
    repo_path: Annotated[
        str | None, Field(description="Repository for GIT_CONFIG:/GIT_EXEC: lookups")
    ] = None,
) -> dict[str, Any]:
    """Resolve an action into its final command without running it."""

    def _operation() -> dict[str, Any]:
        request = _action_request(template_id, params, enabled_options, context)
        resolved = get_service().resolve_action_preview(request, repo_path)
        return {
            "status": "success",
            "message": f"Resolved {resolved.id}",
            "action": resolved.model_dump(mode="json"),
        }

    return _run_tool("gitgraph_action_preview", operation=_operation)


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def gitgraph_action_run(
    repo_path: Annotated[str, Field(description="Path to a git work tree")],
    template_id: Annotated[str, Field(min_length=1, description="Full or short template id")],
    params: Annotated[
        dict[str, str] | None, Field(description="Param values keyed by param id ('1', '2', ...)")
    ] = None,
    enabled_options: Annotated[
        list[str] | None, Field(description="Option ids or flags to enable")
    ] = None,
    context: Annotated[
        dict[str, Any] | None,
        Field(description="Action context (branch_name, commit_hash, tag_name, ...)"),
    ] = None,
) -> dict[str, Any]:
    """Resolve an action and run it in the repository."""

    def _operation() -> dict[str, Any]:
        request = _action_request(template_id, params, enabled_options, context)
        result = get_service().execute_action(repo_path, request)
        return {
            "status": "success",
            "message": f"Ran {result.action_id}",
            "result": result.model_dump(mode="json"),
        }

    return _run_tool("gitgraph_action_run", operation=_operation)


def main() -> None:
    """Run gitgraph MCP server in stdio or streamable HTTP mode."""
    parser = argparse.ArgumentParser(description="gitgraph MCP server")
    try:
        transport_default, host_default, port_default = get_server_defaults()
        public_http_default = allow_public_http_default()
        settings = get_runtime_settings()
    except ValueError as exc:
        parser.error(str(exc))
    parser.add_argument(
        "--transport",
        choices=["stdio", "streamable-http"],
        default=transport_default,
        help="Server transport mode (default: stdio).",
    )
    parser.add_argument(
        "--host",
        default=host_default,
        help="Host for streamable HTTP transport.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=port_default,
        help="Port for streamable HTTP transport.",
    )
    parser.add_argument(
        "--allow-public-http",
        action=argparse.BooleanOptionalAction,
        default=public_http_default,
        help=(
            "Allow non-loopback streamable-http host binding. "
            "Required for 0.0.0.0 or other public interface hosts."
        ),
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate runtime settings and exit without starting server transport.",
    )
    parser.add_argument(
        "--print-effective-config",
        action="store_true",
        help="Print effective runtime configuration and exit.",
    )
    args = parser.parse_args()

    try:
        validate_streamable_http_binding(
            transport=args.transport,
            host=args.host,
            allow_public_http=args.allow_public_http,
        )
    except ValueError as exc:
        parser.error(str(exc))

    configure_logging(settings.log_level)
    try:
        set_service(_build_service(settings))
    except GitGraphError as exc:
        parser.error(exc.message)
    mcp.settings.host = args.host
    mcp.settings.port = int(args.port)

    if args.print_effective_config:
        print(
            json.dumps(
                {
                    "transport": str(args.transport),
                    "host": str(args.host),
                    "port": int(args.port),
                    "allow_public_http": bool(args.allow_public_http),
                    "settings": settings.to_payload(),
                },
                indent=2,
                sort_keys=True,
            )
        )

    if args.check_config or args.print_effective_config:
        if not args.print_effective_config:
            print("Configuration is valid.")
        return

    if args.transport == "stdio":
        mcp.run()
        return

    mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
