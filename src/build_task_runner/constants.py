STATE_DIR_NAME = ".taskrunner"
CONFIG_FILE = "config.yaml"
LOGS_DIR = "logs"

DEFAULT_TASK_NAME = "default"
DEFAULT_DEBOUNCE_SECONDS = 0.2
DEFAULT_WATCH_PROFILE = "default"
DEFAULT_CHANGELOG = "CHANGELOG.md"
DEFAULT_LOG_TAIL_CHARS = 2000

# Exit code used when a command task exceeds its timeout (matches `timeout(1)`).
TIMEOUT_EXIT_CODE = 124

VERSION_PATTERN = r"[0-9]{1,2}\.[0-9]{1,2}\.[0-9]{1,2}"

