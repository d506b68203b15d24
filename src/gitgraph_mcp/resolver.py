"""Placeholder expansion and action template resolution."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping

from .actions import ActionCatalog, tokenize_args
from .constants import DYNAMIC_PREFIXES
from .errors import ErrorCode, GitGraphError, missing_placeholder
from .models import ActionContext, ActionRequest, ActionTemplate, ResolvedAction

DynamicLookup = Callable[[str], str | None]

PLACEHOLDER_PATTERN = re.compile(r"\{([^}]+)\}")


def no_dynamic_lookup(_key: str) -> str | None:
    return None


def expand_placeholders(
    text: str,
    values: Mapping[str, str],
    lookup: DynamicLookup | None = None,
) -> str:
    """Substitute `{NAME}` and `$<digits>` tokens in ``text``.

    `{NAME}` is looked up in ``values`` first and then through ``lookup``;
    `$N` only reads the `$N` key of ``values``. A `$` that is not followed by a
    digit is kept as is. Unresolved names raise MISSING_PLACEHOLDER and an
    unclosed `{` raises PARSE_ERROR.
    """
    lookup = lookup or no_dynamic_lookup
    out: list[str] = []
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == "{":
            close = text.find("}", index + 1)
            if close < 0:
                raise GitGraphError(
                    ErrorCode.PARSE_ERROR,
                    f"unterminated placeholder in token {text!r}",
                    "Close every '{' with a matching '}'.",
                    {"token": text},
                )
            key = text[index + 1:close]
            value = values.get(key)
            if value is None:
                value = lookup(key)
                if value is not None:
                    value = value.strip()
            if value is None:
                raise missing_placeholder(key)
            out.append(value)
            index = close + 1
            continue

        if char == "$":
            end = index + 1
            while end < length and text[end].isdigit() and text[end].isascii():
                end += 1
            if end == index + 1:
                out.append("$")
                index += 1
                continue
            key = text[index:end]
            value = values.get(key)
            if value is None:
                raise missing_placeholder(key)
            out.append(value)
            index = end
            continue

        out.append(char)
        index += 1
    return "".join(out)


def numeric_placeholder_aliases(values: Mapping[str, str]) -> dict[str, str]:
    return {
        f"${key}": value
        for key, value in values.items()
        if key and key.isascii() and key.isdigit()
    }


class ActionResolver:
    """Expand a catalog template against a request into a runnable command."""

    def __init__(self, catalog: ActionCatalog) -> None:
        self.catalog = catalog

    def resolve(
        self,
        request: ActionRequest,
        lookup: DynamicLookup | None = None,
    ) -> ResolvedAction:
        lookup = lookup or no_dynamic_lookup
        template = self.catalog.find(request.template_id)
        if template is None:
            raise GitGraphError(
                ErrorCode.UNKNOWN_TEMPLATE,
                f"unknown action template id: {request.template_id}",
                "List available actions and use a full or short template id.",
                {"template_id": request.template_id},
            )

        placeholders = request.context.to_placeholder_map()
        placeholders.update(request.params)
        for param in template.params:
            if param.id in placeholders or f"${param.id}" in placeholders:
                continue
            try:
                value = expand_placeholders(param.default_value, placeholders, lookup)
            except GitGraphError as exc:
                if exc.code != ErrorCode.MISSING_PLACEHOLDER:
                    raise
                value = param.default_value
            placeholders[param.id] = value
        placeholders.update(numeric_placeholder_aliases(placeholders))

        args = [expand_placeholders(token, placeholders, lookup) for token in template.args]
        enabled_options = [
            option
            for option in template.options
            if option.default_active
            or option.id in request.enabled_options
            or option.flag in request.enabled_options
        ]
        for option in enabled_options:
            for token in tokenize_args(option.flag):
                args.append(expand_placeholders(token, placeholders, lookup))

        if template.shell_script:
            parts = [expand_placeholders(template.raw_args, placeholders, lookup)]
            for option in enabled_options:
                expanded = expand_placeholders(option.flag, placeholders, lookup)
                if expanded:
                    parts.append(expanded)
            command_line = " ".join(parts)
        else:
            command_line = " ".join(args)

        return ResolvedAction(
            id=template.id,
            title=template.title,
            scope=template.scope,
            args=args,
            shell_script=command_line if template.shell_script else None,
            command_line=command_line,
            allow_non_zero_exit=template.allow_non_zero_exit,
            ignore_errors=template.ignore_errors,
        )


def count_unsatisfied_placeholders(template: ActionTemplate, available: Mapping[str, str]) -> int:
    """Count `{NAME}` tokens the available table cannot fill (dynamic ones excluded)."""
    texts = [*template.args, template.raw_args, *(p.default_value for p in template.params)]
    missing = 0
    for name in PLACEHOLDER_PATTERN.findall(" ".join(texts)):
        if name.startswith(DYNAMIC_PREFIXES):
            continue
        if name not in available:
            missing += 1
    return missing


def choose_template_for_short_id(
    catalog: ActionCatalog,
    short_id: str,
    context: ActionContext,
    params: Mapping[str, str],
) -> str | None:
    candidates = catalog.short_id_candidates(short_id)
    if not candidates:
        return None
    available = context.to_placeholder_map()
    available.update(params)
    best = min(
        candidates,
        key=lambda t: (count_unsatisfied_placeholders(t, available), *t.sort_key()),
    )
    return best.id


def normalize_action_request(
    request: ActionRequest,
    catalog: ActionCatalog,
    default_remote_name: str,
) -> ActionRequest:
    """Fill remote defaults and pin a scope-free id to its best-fitting template."""
    context = request.context.model_copy(deep=True)
    if context.remote_name is None:
        context.remote_name = default_remote_name
    if context.default_remote_name is None:
        context.default_remote_name = default_remote_name

    template_id = request.template_id
    if ":" not in template_id:
        best_id = choose_template_for_short_id(catalog, template_id, context, request.params)
        if best_id is not None:
            template_id = best_id
    return request.model_copy(update={"template_id": template_id, "context": context})
