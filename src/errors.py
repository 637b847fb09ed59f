"""Exception hierarchy for tasktrail.

Every failure raised by the core derives from TaskTrailError so the CLI can
report it with a single except clause. Extra keyword context (paths, line
numbers, hook names) is kept on the exception and appended to the message.

    TaskTrailError
    ├── ParseError
    │   ├── DateParseError
    │   ├── FilterParseError
    │   └── RecordParseError
    ├── NotFoundError
    ├── HookError
    │   ├── HookExitError
    │   └── HookOutputError
    ├── StoreError
    └── ConfigError
"""
from __future__ import annotations
from typing import Any


class TaskTrailError(Exception):
    """Base exception; ``context`` holds whatever locates the failure."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ParseError(TaskTrailError):
    pass


class DateParseError(ParseError):
    pass


class FilterParseError(ParseError):
    pass


class RecordParseError(ParseError):
    """A stored record (or import line) could not be decoded."""

    def __init__(self, message: str, path: Any = None, line: int | None = None) -> None:
        self.path = path
        self.line = line
        context: dict[str, Any] = {}
        if path is not None:
            context['file'] = path
        if line is not None:
            context['line'] = line
        super().__init__(message, **context)


class NotFoundError(TaskTrailError):
    pass


class HookError(TaskTrailError):
    pass


class HookExitError(HookError):
    pass


class HookOutputError(HookError):
    pass


class StoreError(TaskTrailError):
    """File creation, rename or permission failure on a store file."""

    def __init__(self, message: str, path: Any, action: str) -> None:
        self.path = path
        self.action = action
        super().__init__(message, path=path, action=action)


class ConfigError(TaskTrailError):
    pass
