"""Exception types raised by taskplain."""

from __future__ import annotations


class TaskplainError(Exception):
    """Base class for errors raised by taskplain."""


class TaskFileError(TaskplainError):
    """A single task document could not be read or parsed.

    Scoped to one file: callers fold it into the validation stream instead of
    aborting the run.
    """

    def __init__(self, file: str, reason: str):
        super().__init__(f"{file}: {reason}")
        self.file = file
        self.reason = reason


class ConfigError(TaskplainError):
    """The project configuration file exists but could not be used."""
