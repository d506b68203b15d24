"""Pydantic models for commit graph data and action templates."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RefKind(str, Enum):
    HEAD = "Head"
    LOCAL_BRANCH = "LocalBranch"
    REMOTE_BRANCH = "RemoteBranch"
    TAG = "Tag"
    STASH = "Stash"
    OTHER = "Other"


class ActionScope(str, Enum):
    """Category an action template applies to, in catalog order."""

    GLOBAL = "global"
    BRANCH_DROP = "branch-drop"
    COMMIT = "commit"
    COMMITS = "commits"
    STASH = "stash"
    TAG = "tag"
    BRANCH = "branch"


class GitRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: RefKind
    name: str
    target: str | None = None


class CommitRecord(BaseModel):
    """One decoded `git log` entry. Immutable once parsed."""

    model_config = ConfigDict(frozen=True)

    hash: str
    short_hash: str
    parents: list[str] = Field(default_factory=list)
    author_name: str = ""
    author_email: str = ""
    authored_unix: int = 0
    committed_unix: int = 0
    decorations: str = ""
    refs: list[GitRef] = Field(default_factory=list)
    subject: str = ""
    body: str = ""


class GraphEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    to_lane: int
    parent_hash: str


class GraphRow(CommitRecord):
    """A commit record placed on the graph: its lane plus outgoing edges."""

    lane: int
    active_lane_count: int
    edges: list[GraphEdge] = Field(default_factory=list)


class GraphQuery(BaseModel):
    limit: int = Field(default=15_000, ge=1)
    skip: int = Field(default=0, ge=0)
    all_refs: bool = True
    include_stash_ref: bool = True
    additional_args: list[str] = Field(default_factory=list)


class CommitSearchQuery(BaseModel):
    text: str = ""
    case_sensitive: bool = False
    use_regex: bool = False
    file_path: str | None = None
    include_hash: bool = True
    include_subject: bool = True
    include_body: bool = True
    include_author: bool = True
    include_email: bool = True
    include_refs: bool = True

    @field_validator("file_path")
    @classmethod
    def _blank_path_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class BranchInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    full_ref: str
    is_remote: bool = False
    remote_name: str | None = None


class GraphData(BaseModel):
    repository: str
    generated_at_unix: int
    query: GraphQuery
    commits: list[GraphRow] = Field(default_factory=list)
    branches: list[BranchInfo] = Field(default_factory=list)


class BlameInfo(BaseModel):
    file: str
    line: int
    commit_hash: str = ""
    author_name: str = ""
    author_email: str = ""
    author_time_unix: int = 0
    summary: str = ""


class FileChange(BaseModel):
    path: str
    added: int | None = None
    removed: int | None = None


class ActionParam(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    default_value: str = ""
    placeholder: str | None = None
    multiline: bool = False
    readonly: bool = False


class ActionOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    flag: str = ""
    default_active: bool = False
    info: str | None = None


class ActionTemplate(BaseModel):
    """A parameterized git command definition from the action catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    scope: ActionScope = ActionScope.GLOBAL
    title: str = ""
    icon: str | None = None
    description: str = ""
    info: str | None = None
    args: list[str] = Field(default_factory=list)
    raw_args: str = ""
    shell_script: bool = False
    params: list[ActionParam] = Field(default_factory=list)
    options: list[ActionOption] = Field(default_factory=list)
    immediate: bool = False
    ignore_errors: bool = False
    allow_non_zero_exit: bool = False

    def sort_key(self) -> tuple[bool, int, int]:
        """Preference order among equally matching templates."""
        return (self.shell_script, len(self.params), len(self.args))


_CONTEXT_PLACEHOLDER_FIELDS = (
    ("BRANCH_DISPLAY_NAME", "branch_display_name"),
    ("BRANCH_NAME", "branch_name"),
    ("LOCAL_BRANCH_NAME", "local_branch_name"),
    ("BRANCH_ID", "branch_id"),
    ("SOURCE_BRANCH_NAME", "source_branch_name"),
    ("TARGET_BRANCH_NAME", "target_branch_name"),
    ("COMMIT_HASH", "commit_hash"),
    ("COMMIT_BODY", "commit_body"),
    ("STASH_NAME", "stash_name"),
    ("TAG_NAME", "tag_name"),
    ("REMOTE_NAME", "remote_name"),
    ("DEFAULT_REMOTE_NAME", "default_remote_name"),
)


class ActionContext(BaseModel):
    branch_display_name: str | None = None
    branch_name: str | None = None
    local_branch_name: str | None = None
    branch_id: str | None = None
    source_branch_name: str | None = None
    target_branch_name: str | None = None
    commit_hash: str | None = None
    commit_hashes: list[str] = Field(default_factory=list)
    commit_body: str | None = None
    stash_name: str | None = None
    tag_name: str | None = None
    remote_name: str | None = None
    default_remote_name: str | None = None
    additional_placeholders: dict[str, str] = Field(default_factory=dict)

    def to_placeholder_map(self) -> dict[str, str]:
        """Map populated fields to their UPPER_SNAKE_CASE placeholder names."""
        out: dict[str, str] = {}
        for key, attribute in _CONTEXT_PLACEHOLDER_FIELDS:
            value = getattr(self, attribute)
            if value is not None:
                out[key] = value
        if self.commit_hashes:
            out["COMMIT_HASHES"] = " ".join(self.commit_hashes)
        if self.default_remote_name is None and self.remote_name is not None:
            out["DEFAULT_REMOTE_NAME"] = self.remote_name
        out.update(self.additional_placeholders)
        return out

    def apply_placeholder(self, key: str, value: str) -> None:
        """Set the field named by a placeholder key, or store it as extra."""
        if key == "COMMIT_HASHES":
            self.commit_hashes = [
                item for item in value.replace(",", " ").split() if item
            ]
            return
        for placeholder, attribute in _CONTEXT_PLACEHOLDER_FIELDS:
            if placeholder == key:
                setattr(self, attribute, value)
                return
        self.additional_placeholders[key] = value


class ActionRequest(BaseModel):
    template_id: str = Field(..., min_length=1)
    params: dict[str, str] = Field(default_factory=dict)
    enabled_options: set[str] = Field(default_factory=set)
    context: ActionContext = Field(default_factory=ActionContext)

    @field_validator("template_id")
    @classmethod
    def _template_id_not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("template_id must not be blank")
        return stripped


class ResolvedAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    scope: ActionScope
    args: list[str] = Field(default_factory=list)
    shell_script: str | None = None
    command_line: str = ""
    allow_non_zero_exit: bool = False
    ignore_errors: bool = False


class GitOutput(BaseModel):
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None


class ActionExecutionResult(BaseModel):
    action_id: str
    command_line: str
    args: list[str] = Field(default_factory=list)
    output: GitOutput

