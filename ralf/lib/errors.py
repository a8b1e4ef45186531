"""
Error taxonomy for Ralf.

Every error carries the exit code the CLI reports when it escapes a command.
Only ConfigError and state-file I/O failures are fatal to a loop; the rest
are contained by the component that raises them.
"""

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_CONFIG = 2
EXIT_ALREADY_ACTIVE = 3
EXIT_STALLED = 4
EXIT_MAX_ITERATIONS = 5
EXIT_CANCELLED = 6
EXIT_LOCKED = 7
EXIT_IO = 9


class RalfError(Exception):
    """Base class for Ralf errors."""
    exit_code = 1


class ConfigError(RalfError):
    """Malformed story set, missing required fields or duplicate ids."""
    exit_code = EXIT_CONFIG


class StorySetNotFound(ConfigError):
    """Story set file does not exist."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"PRD file not found: {path}")


class StoryNotFound(RalfError):
    """No story with the given id in the story set."""
    exit_code = EXIT_CONFIG

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f"Story not found: {story_id}")


class AlreadyActiveError(RalfError):
    """A loop state file is already present for this project."""
    exit_code = EXIT_ALREADY_ACTIVE


class StaleStateError(RalfError):
    """Loop state file exists but cannot be interpreted."""
    exit_code = EXIT_IO


class HookFailure(RalfError):
    """A lifecycle hook exited non-zero, timed out or could not run."""


class ExecutorFailure(RalfError):
    """The external executor crashed or returned an unusable result."""


class ReorderRejected(RalfError):
    """An evaluator reorder proposal violates story precedence."""
