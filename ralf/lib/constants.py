"""Shared constants for Ralf."""

# Paths relative to the project directory
DEFAULT_PRD_PATH = "prd.json"
STATE_FILE = ".claude/ralf-state.json"
RALF_DIR = ".ralf"
HOOKS_DIR = ".ralf/hooks"
CONFIG_FILE = ".ralf/config.yaml"
LAST_BRANCH_FILE = ".ralf/last-branch"
LAST_STORY_SET_FILE = ".ralf/last-prd.json"
LOCK_FILE = ".ralf/ralf.lock"
PROGRESS_FILE = "progress.txt"
ARCHIVE_DIR = "archive"

DEFAULT_COMPLETION_PROMISE = "COMPLETE"
DEFAULT_PROJECT = "Unknown"
DEFAULT_BRANCH = "ralf/feature"

# Execution modes
MODE_SEQUENTIAL = "sequential"
MODE_PARALLEL = "parallel"
MODE_FULL_PARALLEL = "full-parallel"
EXECUTION_MODES = (MODE_SEQUENTIAL, MODE_PARALLEL, MODE_FULL_PARALLEL)

# Story set setting defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_EVALUATE_EVERY = 3
DEFAULT_MAX_PARALLEL = 3

DEFAULT_HOOK_TIMEOUT = 60

# Execution result statuses
STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"
STATUS_BLOCKED = "blocked"
RESULT_STATUSES = (STATUS_SUCCESS, STATUS_FAILURE, STATUS_BLOCKED)

LOOP_PROMPT = (
    "You are Ralf, an autonomous coding agent. Execute the next incomplete story from "
    "{prd_path} following the Ralf workflow: read PRD, check branch, implement story, "
    "verify, commit, update status, log progress. Work on ONE story per iteration."
)
