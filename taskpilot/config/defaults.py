"""Default limits and tunables for taskpilot.

These are the values used when no config file overrides them.
"""

# Retry policy
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 10000
DEFAULT_JITTER_FACTOR = 0.2
MIN_RETRY_DELAY_MS = 1

# Workspace
WORKSPACE_ROOT_ENV_VAR = "AGENT_WORKSPACE_ROOT"
WRITES_ENABLED_ENV_VAR = "AGENT_FILESYSTEM_WRITES_ENABLED"

# File tools
MAX_READ_BYTES = 1024 * 1024
MAX_WRITE_BYTES = 1024 * 1024
DEFAULT_READ_LINES = 200
MAX_READ_LINES = 1000
MAX_LINE_LENGTH = 2000

# Search tools
DEFAULT_GLOB_LIMIT = 100
MAX_GLOB_LIMIT = 500
DEFAULT_GREP_MATCHES = 50
MAX_GREP_MATCHES = 500
MAX_LIST_ENTRIES = 500

# Shell / fetch
SHELL_TIMEOUT_MS = 30000
MAX_SHELL_TIMEOUT_MS = 600000
MAX_TOOL_OUTPUT_CHARS = 100000
MAX_FETCH_BYTES = 512 * 1024

# Context store
CONTEXT_DIR_NAME = ".taskpilot/context"
CONTEXT_INLINE_LIMIT = 8000
CONTEXT_MAX_CHARS = 16000
