TASKS_DIR_NAME = "tasks"
STATE_DIR_NAME = ".taskplain"
CONFIG_FILE = "config.yaml"
TASK_FILE_SUFFIX = ".md"

STATE_PREFIXES = {
    "idea": "00-idea",
    "ready": "10-ready",
    "in-progress": "20-in-progress",
    "done": "30-done",
    "canceled": "40-canceled",
}

MAX_HIERARCHY_DEPTH = 3  # epic -> story -> task

DEFAULT_MIN_PARALLEL_FILES = 25
DEFAULT_NEXT_COUNT = 1
DEFAULT_LOG_LEVEL = "INFO"

# Done tasks completed before this instant are exempt from the commit_message rule.
COMMIT_MESSAGE_CUTOFF = "2025-11-01T00:00:00+00:00"

# Touch token that conflicts with every other token.
GLOBAL_TOUCH_TOKEN = "__GLOBAL__"

RANKING_RULES_VERSION = "v1"
RANKING_RATIONALE = (
    "priority → epic_in_flight → size → executor_fit → ambiguity → isolation → updated_at"
)
