"""
Exceptions raised by the form engine.

Field-level faults (validator exceptions, async validator failures, unknown
keys in a batch) are folded into ValidationResults or BatchResults and never
raised. Only the faults below reach the caller.
"""
from typing import Any, Optional


class FormStateError(Exception):
    """Base class for all form engine errors."""


class TypeMismatchError(FormStateError, TypeError):
    """A value's runtime type disagrees with the field's inferred type."""

    def __init__(self, key: str, expected: type, actual: type):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Type mismatch for '{key}': expected {expected.__name__}, got {actual.__name__}"
        )


class RequiredValueError(FormStateError, LookupError):
    """A non-null accessor found no value for the field."""

    def __init__(self, key: str, detail: Optional[Any] = None):
        self.key = key
        message = f"Field '{key}' has no value"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class EngineDisposedError(FormStateError, RuntimeError):
    """A coroutine entry point was called on a disposed engine."""
