"""Error hierarchy for sdc-useradm.

Every error the tool raises on purpose derives from :class:`UseradmError`,
which carries the process ``exit_status`` and an optional machine-readable
``code``.  The CLI mainline catches these and prints a single line.

Directory failures are normalised at the client boundary into
:class:`DirectoryError`, a tagged error with explicit ``status_code``, ``code``
and ``message`` fields.  Subcommands wrap unexpected ones in :class:`APIError`.
"""
from __future__ import annotations

import json
from typing import Any

__all__ = [
    "UseradmError",
    "UsageError",
    "ConfigError",
    "UnsupportedOperatorError",
    "UnknownFieldError",
    "TypeCoercionError",
    "NoSuchUserError",
    "NoSuchKeyError",
    "NoSuchAttributeError",
    "NoSuchValueError",
    "DirectoryError",
    "APIError",
]


class UseradmError(Exception):
    """Base class for all sdc-useradm errors."""

    exit_status: int = 1
    code: str | None = None

    def __init__(self, message: str, *, code: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class UsageError(UseradmError):
    """Bad argument shape or count."""

    exit_status = 2
    code = "Usage"


class ConfigError(UseradmError):
    code = "Config"


# ---------------------------------------------------------------------------
# Search term errors
# ---------------------------------------------------------------------------


class UnsupportedOperatorError(UseradmError):
    """Raised for operators that look plausible but are not supported."""

    def __init__(self, operator: str, replacement: str) -> None:
        super().__init__(f'"{operator}" operator not supported, use "{replacement}"')
        self.operator = operator
        self.replacement = replacement


class UnknownFieldError(UseradmError):
    def __init__(self, field: str) -> None:
        super().__init__(f'unknown filter field: "{field}"')
        self.field = field


class TypeCoercionError(UseradmError, TypeError):
    """A value could not be coerced to the type its field requires."""

    def __init__(self, name: str, value: Any) -> None:
        super().__init__(f'invalid value for "{name}": {json.dumps(value, default=str)}')
        self.name = name
        self.value = value


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------


class NoSuchUserError(UseradmError):
    code = "NoSuchUser"

    def __init__(self, login_or_uuid: str) -> None:
        super().__init__(f'no such user: "{login_or_uuid}"')
        self.login_or_uuid = login_or_uuid


class NoSuchKeyError(UseradmError):
    code = "NoSuchKey"

    def __init__(self, login_or_uuid: str, key: str, cause: BaseException | None = None) -> None:
        super().__init__(f'no such key "{key}" for user "{login_or_uuid}"', cause=cause)
        self.login_or_uuid = login_or_uuid
        self.key = key


class NoSuchAttributeError(UseradmError):
    code = "NoSuchAttribute"

    def __init__(self, login_or_uuid: str, attr: str) -> None:
        super().__init__(f'user "{login_or_uuid}" has no "{attr}" attribute')
        self.login_or_uuid = login_or_uuid
        self.attr = attr


class NoSuchValueError(UseradmError):
    code = "NoSuchValue"

    def __init__(self, login_or_uuid: str, attr: str, value: str) -> None:
        super().__init__(f'user "{login_or_uuid}" has no "{attr}" attribute with value "{value}"')
        self.login_or_uuid = login_or_uuid
        self.attr = attr
        self.value = value


# ---------------------------------------------------------------------------
# Directory errors
# ---------------------------------------------------------------------------


class DirectoryError(UseradmError):
    """A failed directory operation, tagged with an HTTP-like status.

    ``message`` holds the directory's diagnostic text, e.g.
    ``passwordTooShort`` for a password policy rejection.
    """

    def __init__(self, status_code: int, code: str, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message, code=code, cause=cause)
        self.status_code = status_code

    def __repr__(self) -> str:
        return (
            f"DirectoryError(status_code={self.status_code!r}, code={self.code!r}, "
            f"message={self.message!r})"
        )


class APIError(UseradmError):
    """Wraps a :class:`DirectoryError` raised while serving a subcommand."""

    def __init__(self, cause: DirectoryError) -> None:
        super().__init__(cause.message, code=cause.code, cause=cause)
        self.status_code = cause.status_code
