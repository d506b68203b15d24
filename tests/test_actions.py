from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from gitgraph_mcp.actions import (
    ActionCatalog,
    CatalogProvider,
    builtin_catalog_provider,
    choose_title,
    is_shell_script,
    load_action_templates,
    load_builtin_catalog,
    sanitize_id_fragment,
    tokenize_args,
)
from gitgraph_mcp.errors import ErrorCode, GitGraphError
from gitgraph_mcp.models import ActionScope


@pytest.fixture()
def catalog() -> ActionCatalog:
    return builtin_catalog_provider.get()


def test_every_scope_has_templates(catalog: ActionCatalog) -> None:
    for scope in ActionScope:
        assert catalog.templates_for_scope(scope), scope


def test_template_ids_are_unique_and_scoped(catalog: ActionCatalog) -> None:
    ids = [template.id for template in catalog]
    assert len(ids) == len(set(ids))
    for template in catalog:
        scope, ordinal, slug = template.id.split(":")
        assert scope == template.scope.value
        assert int(ordinal) >= 1
        assert slug == sanitize_id_fragment(template.title)


def test_templates_for_scope_keeps_catalog_order(catalog: ActionCatalog) -> None:
    branch_ids = [template.id for template in catalog.templates_for_scope("branch")]

    assert branch_ids[:3] == ["branch:1:checkout", "branch:2:merge", "branch:3:rebase"]


def test_builtin_title_falls_back_to_description(catalog: ActionCatalog) -> None:
    status = catalog.find("global:8:show-the-working-tree-status-short-format")
    assert status is None

    status = catalog.find("global:8:show-the-working-tree-status")
    assert status is not None
    assert status.title == "Show the working tree status"
    assert status.args == ["status", "--short", "--branch"]


def test_shell_script_templates_are_detected(catalog: ActionCatalog) -> None:
    commit_all = catalog.find("global:6:commit-all")
    assert commit_all is not None
    assert commit_all.shell_script is True
    assert commit_all.raw_args == 'add --all && git commit -m "$1"'

    assert catalog.find("branch:1:checkout").shell_script is False


def test_find_exact_id(catalog: ActionCatalog) -> None:
    template = catalog.find("commit:1:checkout")

    assert template is not None
    assert template.args == ["checkout", "{COMMIT_HASH}"]


def test_find_unknown_scoped_id_does_not_fall_back(catalog: ActionCatalog) -> None:
    assert catalog.find("commit:99:checkout") is None
    assert catalog.find("nothing-like-this") is None


def test_find_short_id_prefers_plain_argv_with_fewer_params(catalog: ActionCatalog) -> None:
    # merge exists in branch-drop (shell, 0 params), commit (argv, 0 params, 2 args)
    # and branch (argv, 1 param); the commit template has the smallest key.
    template = catalog.find("merge")

    assert template is not None
    assert template.id == "commit:7:merge"


def test_find_by_title_slug_prefix_and_first_arg() -> None:
    catalog = ActionCatalog.from_document(
        {
            "actions.global": [
                {"title": "Fetch all remotes", "args": "fetch --all"},
                {"title": "Tidy", "args": "gc --prune=now"},
            ]
        }
    )

    assert catalog.find("fetch").id == "global:1:fetch-all-remotes"
    assert catalog.find("GC").id == "global:2:tidy"


def test_short_id_candidates_stop_at_first_matching_stage() -> None:
    catalog = ActionCatalog.from_document(
        {
            "actions.global": [
                {"title": "Push", "args": "push"},
                {"title": "Publish", "args": "push --tags"},
            ]
        }
    )

    assert [t.id for t in catalog.short_id_candidates("push")] == ["global:1:push"]
    assert catalog.short_id_candidates("missing") == []


def test_params_and_options_conversion() -> None:
    templates = load_action_templates(
        {
            "actions.commit": [
                {
                    "title": "Tag",
                    "args": "tag $1 {COMMIT_HASH}",
                    "params": ["v1", {"value": "", "placeholder": "msg", "multiline": True}],
                    "options": [{"value": "--force", "default_active": True, "info": "overwrite"}],
                    "ignore_errors": True,
                    "immediate": True,
                }
            ]
        }
    )

    template = templates[0]
    assert template.id == "commit:1:tag"
    assert [(p.id, p.default_value) for p in template.params] == [("1", "v1"), ("2", "")]
    assert template.params[1].multiline is True
    assert template.params[1].placeholder == "msg"
    option = template.options[0]
    assert option.id == "force-1"
    assert option.flag == option.title == "--force"
    assert option.default_active is True
    assert template.ignore_errors is True
    assert template.allow_non_zero_exit is True
    assert template.immediate is True


def test_invalid_option_is_parse_error() -> None:
    with pytest.raises(GitGraphError) as exc_info:
        load_action_templates({"actions.global": [{"args": "fetch", "options": ["--all"]}]})

    assert exc_info.value.code == ErrorCode.PARSE_ERROR


def test_duplicate_ids_rejected() -> None:
    templates = load_action_templates({"actions.global": [{"title": "A", "args": "status"}]})

    with pytest.raises(GitGraphError) as exc_info:
        ActionCatalog([*templates, *templates])

    assert exc_info.value.code == ErrorCode.PARSE_ERROR


def test_from_json_text_and_file(tmp_path: Path) -> None:
    document = {"actions.tag": [{"title": "Show", "args": "show {TAG_NAME}"}]}
    path = tmp_path / "actions.json"
    path.write_text(json.dumps(document), encoding="utf-8")

    catalog = ActionCatalog.from_file(path)
    assert [t.id for t in catalog] == ["tag:1:show"]

    with pytest.raises(GitGraphError) as exc_info:
        ActionCatalog.from_json_text("{not json")
    assert exc_info.value.code == ErrorCode.PARSE_ERROR

    with pytest.raises(GitGraphError) as exc_info:
        ActionCatalog.from_json_text("[]")
    assert exc_info.value.code == ErrorCode.PARSE_ERROR

    with pytest.raises(GitGraphError) as exc_info:
        ActionCatalog.from_file(tmp_path / "missing.json")
    assert exc_info.value.code == ErrorCode.IO_ERROR


def test_tokenize_args() -> None:
    assert tokenize_args('commit -m "hello world"') == ["commit", "-m", "hello world"]
    assert tokenize_args("log --format='%H %s'") == ["log", "--format=%H %s"]
    # unbalanced quotes fall back to whitespace splitting
    assert tokenize_args('commit -m "oops') == ["commit", "-m", '"oops']
    assert tokenize_args("   ") == []


def test_is_shell_script() -> None:
    assert is_shell_script("add . && git commit")
    assert is_shell_script("fetch || true")
    assert is_shell_script("status; git log")
    assert not is_shell_script("merge --no-ff main")


def test_sanitize_and_choose_title() -> None:
    assert sanitize_id_fragment("  Cherry pick (selected)!") == "cherry-pick-selected"
    assert sanitize_id_fragment("--no-ff-2") == "no-ff-2"
    assert choose_title("  Explicit ", "desc", ["x"]) == "Explicit"
    assert choose_title(None, "Stage all (git add)", ["add"]) == "Stage all"
    assert choose_title("", "", ["status", "--short"]) == "status --short"


def test_catalog_provider_builds_once_under_concurrency() -> None:
    calls: list[int] = []
    barrier = threading.Barrier(8)

    def loader() -> ActionCatalog:
        calls.append(1)
        return load_builtin_catalog()

    provider = CatalogProvider(loader)
    results: list[ActionCatalog] = []

    def worker() -> None:
        barrier.wait()
        results.append(provider.get())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert provider.loaded is True
    assert all(result is results[0] for result in results)


def test_templates_for_unknown_scope_is_invalid_input(catalog: ActionCatalog) -> None:
    with pytest.raises(GitGraphError) as exc_info:
        catalog.templates_for_scope("bogus")

    assert exc_info.value.code == ErrorCode.INVALID_INPUT
    assert exc_info.value.details == {"scope": "bogus"}
