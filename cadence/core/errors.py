"""
Cadence exception hierarchy.

Every error raised by the package inherits from CadenceError.

Two kinds matter to callers of the scheduler:

    ArgumentError    — the public API was misused (wrong type passed).
                       Always raised immediately.
    ValidationError  — recurrence or task data is malformed (out-of-range
                       field, unknown enum value). Nothing is registered.

Usage:
    try:
        scheduler.schedule(handler, frequency="fortnightly")
    except ValidationError as e:
        print(e.field, e.expected)
"""


class CadenceError(Exception):
    """Base exception for all Cadence errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ArgumentError(CadenceError, TypeError):
    """A public operation was called with the wrong kind of argument."""

    def __init__(self, message: str, argument: str = "", details: dict | None = None):
        self.argument = argument
        super().__init__(message, details)


class ValidationError(CadenceError, ValueError):
    """Recurrence/task data failed validation."""

    def __init__(
        self,
        message: str,
        field: str = "",
        expected: str = "",
        details: dict | None = None,
    ):
        self.field = field
        self.expected = expected
        super().__init__(message, details)


class ConfigError(CadenceError):
    """Configuration is invalid, missing, or malformed."""

    pass
