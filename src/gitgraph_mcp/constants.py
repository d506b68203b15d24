"""Project-wide constants for gitgraph."""

FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"
LOG_FIELD_COUNT = 10
LOG_PRETTY_FORMAT = "%H%x1f%h%x1f%P%x1f%an%x1f%ae%x1f%at%x1f%ct%x1f%D%x1f%s%x1f%b%x1e"

DEFAULT_GIT_BINARY = "git"
DEFAULT_REMOTE_NAME = "origin"
DEFAULT_LOG_LIMIT = 15_000
DEFAULT_GREP_CHUNK_SIZE = 200
STASH_REF = "refs/stash"

DYNAMIC_CONFIG_PREFIX = "GIT_CONFIG:"
DYNAMIC_EXEC_PREFIX = "GIT_EXEC:"
DYNAMIC_PREFIXES = (DYNAMIC_CONFIG_PREFIX, DYNAMIC_EXEC_PREFIX)

DEFAULT_ACTIONS_FILE_NAME = "default_actions.json"
REPO_CONFIG_FILE_NAME = ".gitgraph.yaml"
