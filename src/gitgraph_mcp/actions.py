"""Action catalog: loading, identifying and looking up command templates."""

from __future__ import annotations

import json
import logging
import re
import shlex
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from threading import Lock
from typing import Any

from .constants import DEFAULT_ACTIONS_FILE_NAME
from .errors import ErrorCode, GitGraphError
from .models import ActionOption, ActionParam, ActionScope, ActionTemplate

logger = logging.getLogger(__name__)

BUILTIN_ACTIONS_PATH = Path(__file__).with_name(DEFAULT_ACTIONS_FILE_NAME)
NON_ALNUM_RUN_PATTERN = re.compile(r"[^a-z0-9]+")
SHELL_OPERATORS = ("&&", "||", ";")


class ActionCatalog:
    """Immutable, ordered collection of action templates."""

    def __init__(self, templates: Iterable[ActionTemplate] = ()) -> None:
        self._templates = tuple(templates)
        self._by_id: dict[str, ActionTemplate] = {}
        for template in self._templates:
            if template.id in self._by_id:
                raise GitGraphError(
                    ErrorCode.PARSE_ERROR,
                    f"duplicate action template id: {template.id}",
                    "Template ids must be unique within a catalog.",
                    {"template_id": template.id},
                )
            self._by_id[template.id] = template

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> ActionCatalog:
        return cls(load_action_templates(document))

    @classmethod
    def from_json_text(cls, text: str) -> ActionCatalog:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GitGraphError(
                ErrorCode.PARSE_ERROR,
                f"invalid actions json: {exc}",
                "Actions file must be a JSON object keyed by actions.<scope>.",
            ) from exc
        if not isinstance(document, dict):
            raise GitGraphError(
                ErrorCode.PARSE_ERROR,
                "invalid actions json: top level must be an object",
                "Actions file must be a JSON object keyed by actions.<scope>.",
            )
        return cls.from_document(document)

    @classmethod
    def from_file(cls, path: Path) -> ActionCatalog:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise GitGraphError(
                ErrorCode.IO_ERROR,
                f"I/O failure while reading actions file {path}: {exc}",
                "Check the actions file path and permissions.",
                {"operation": "reading actions file", "path": str(path)},
            ) from exc
        return cls.from_json_text(text)

    @property
    def templates(self) -> tuple[ActionTemplate, ...]:
        return self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self):
        return iter(self._templates)

    def find(self, template_id: str) -> ActionTemplate | None:
        """Exact id match, else the staged short-id lookup for scope-free ids."""
        exact = self._by_id.get(template_id)
        if exact is not None:
            return exact
        if ":" in template_id:
            return None
        candidates = self.short_id_candidates(template_id)
        if not candidates:
            return None
        return min(candidates, key=ActionTemplate.sort_key)

    def short_id_candidates(self, short_id: str) -> list[ActionTemplate]:
        """Return the first non-empty match stage: id suffix, title slug, first arg."""
        suffix = f":{short_id}"
        by_suffix = [t for t in self._templates if t.id.endswith(suffix)]
        if by_suffix:
            return by_suffix

        title_prefix = f"{short_id}-"
        by_title = []
        for template in self._templates:
            slug = sanitize_id_fragment(template.title)
            if slug == short_id or slug.startswith(title_prefix):
                by_title.append(template)
        if by_title:
            return by_title

        lowered = short_id.lower()
        return [t for t in self._templates if t.args and t.args[0].lower() == lowered]

    def templates_for_scope(self, scope: ActionScope | str) -> list[ActionTemplate]:
        try:
            scope = ActionScope(scope)
        except ValueError as exc:
            raise GitGraphError(
                ErrorCode.INVALID_INPUT,
                f"unknown action scope {scope!r}",
                "Use one of: " + ", ".join(item.value for item in ActionScope) + ".",
                {"scope": str(scope)},
            ) from exc
        return [t for t in self._templates if t.scope == scope]


class CatalogProvider:
    """Build a catalog once and hand out the same read-only instance."""

    def __init__(self, loader: Callable[[], ActionCatalog]) -> None:
        self._loader = loader
        self._lock = Lock()
        self._catalog: ActionCatalog | None = None

    def get(self) -> ActionCatalog:
        catalog = self._catalog
        if catalog is not None:
            return catalog
        with self._lock:
            if self._catalog is None:
                self._catalog = self._loader()
                logger.info("Loaded action catalog with %d templates.", len(self._catalog))
            return self._catalog

    @property
    def loaded(self) -> bool:
        return self._catalog is not None


def load_builtin_catalog() -> ActionCatalog:
    return ActionCatalog.from_file(BUILTIN_ACTIONS_PATH)


builtin_catalog_provider = CatalogProvider(load_builtin_catalog)


def load_action_templates(document: Mapping[str, Any]) -> list[ActionTemplate]:
    """Convert an `actions.<scope>` JSON document into templates, scope by scope."""
    templates: list[ActionTemplate] = []
    for scope in ActionScope:
        raw_actions = document.get(f"actions.{scope.value}") or []
        if not isinstance(raw_actions, list):
            raise GitGraphError(
                ErrorCode.PARSE_ERROR,
                f"actions.{scope.value} must be a list",
                "Each actions.<scope> entry must be a JSON array of action objects.",
                {"scope": scope.value},
            )
        for index, raw_action in enumerate(raw_actions):
            if not isinstance(raw_action, dict):
                raise GitGraphError(
                    ErrorCode.PARSE_ERROR,
                    f"actions.{scope.value}[{index}] must be an object",
                    "Each action must be a JSON object.",
                    {"scope": scope.value, "index": index},
                )
            templates.append(_convert_raw_action(scope, index, raw_action))
    return templates


def _convert_raw_action(scope: ActionScope, index: int, raw: dict[str, Any]) -> ActionTemplate:
    raw_args = str(raw.get("args") or "")
    args = tokenize_args(raw_args)
    title = choose_title(raw.get("title"), raw.get("description"), args)
    ignore_errors = bool(raw.get("ignore_errors", False))
    return ActionTemplate(
        id=f"{scope.value}:{index + 1}:{sanitize_id_fragment(title)}",
        scope=scope,
        title=title,
        icon=raw.get("icon"),
        description=str(raw.get("description") or ""),
        info=raw.get("info"),
        args=args,
        raw_args=raw_args,
        shell_script=is_shell_script(raw_args),
        params=[
            _convert_raw_param(param_index, raw_param)
            for param_index, raw_param in enumerate(raw.get("params") or [])
        ],
        options=[
            _convert_raw_option(option_index, raw_option)
            for option_index, raw_option in enumerate(raw.get("options") or [])
        ],
        immediate=bool(raw.get("immediate", False)),
        ignore_errors=ignore_errors,
        allow_non_zero_exit=ignore_errors,
    )


def _convert_raw_param(index: int, raw: Any) -> ActionParam:
    param_id = str(index + 1)
    if isinstance(raw, str):
        return ActionParam(id=param_id, default_value=raw)
    if isinstance(raw, dict):
        return ActionParam(
            id=param_id,
            default_value=str(raw.get("value") or ""),
            placeholder=raw.get("placeholder"),
            multiline=bool(raw.get("multiline", False)),
            readonly=bool(raw.get("readonly", False)),
        )
    raise GitGraphError(
        ErrorCode.PARSE_ERROR,
        f"invalid action param {raw!r}",
        "Params must be a default-value string or an object with 'value'.",
        {"param": raw},
    )


def _convert_raw_option(index: int, raw: Any) -> ActionOption:
    if not isinstance(raw, dict) or not isinstance(raw.get("value"), str):
        raise GitGraphError(
            ErrorCode.PARSE_ERROR,
            f"invalid action option {raw!r}",
            "Options must be objects with a string 'value'.",
            {"option": raw},
        )
    flag = raw["value"]
    return ActionOption(
        id=sanitize_id_fragment(f"{flag}-{index + 1}"),
        title=flag,
        flag=flag,
        default_active=bool(raw.get("default_active", False)),
        info=raw.get("info"),
    )


def choose_title(title: str | None, description: str | None, args: list[str]) -> str:
    explicit = (title or "").strip()
    if explicit:
        return explicit
    described = (description or "").strip()
    if described:
        return described.split("(", 1)[0].strip()
    return " ".join(args)


def sanitize_id_fragment(text: str) -> str:
    return NON_ALNUM_RUN_PATTERN.sub("-", text.lower()).strip("-")


def tokenize_args(args: str) -> list[str]:
    """Shell-style split, falling back to whitespace split on bad quoting."""
    if not args.strip():
        return []
    try:
        return shlex.split(args)
    except ValueError:
        return args.split()


def is_shell_script(raw_args: str) -> bool:
    return any(operator in raw_args for operator in SHELL_OPERATORS)
