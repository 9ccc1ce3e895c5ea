"""Execution error classification.

:class:`ErrorClassifier` turns whatever a backend raised into a
:class:`~semql.errors.DatabaseError` with an :class:`ErrorClass` and a
``repairable`` flag.  SQLSTATE codes are consulted first; driver messages are
matched against patterns only when no code is recognized.

Only ``syntax``, ``missing_object`` and ``type_mismatch`` failures are
repairable: a reformulated statement can plausibly succeed.  A timeout or a
connection failure would fail the same way again.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from enum import Enum

from semql.errors import DatabaseError, ExecutionTimeoutError, PolicyViolationError
from semql.execute.backend import BackendError, BackendTimeout


class ErrorClass(str, Enum):
    SYNTAX = "syntax"
    MISSING_OBJECT = "missing_object"
    TYPE_MISMATCH = "type_mismatch"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    POLICY = "policy"
    UNKNOWN = "unknown"

    @property
    def repairable(self) -> bool:
        return self in _REPAIRABLE


_REPAIRABLE = frozenset({ErrorClass.SYNTAX, ErrorClass.MISSING_OBJECT, ErrorClass.TYPE_MISMATCH})

#: Exact SQLSTATE (or driver error name) → class.
SQLSTATE_CLASSES: dict[str, ErrorClass] = {
    "42601": ErrorClass.SYNTAX,
    "42P01": ErrorClass.MISSING_OBJECT,
    "42703": ErrorClass.MISSING_OBJECT,
    "42883": ErrorClass.TYPE_MISMATCH,
    "42804": ErrorClass.TYPE_MISMATCH,
    "22P02": ErrorClass.TYPE_MISMATCH,
    "57014": ErrorClass.TIMEOUT,
    "SQLITE_INTERRUPT": ErrorClass.TIMEOUT,
    "SQLITE_MISMATCH": ErrorClass.TYPE_MISMATCH,
    "SQLITE_CANTOPEN": ErrorClass.CONNECTION,
    "SQLITE_BUSY": ErrorClass.CONNECTION,
    "SQLITE_LOCKED": ErrorClass.CONNECTION,
}

#: SQLSTATE class prefix → class.
SQLSTATE_PREFIXES: dict[str, ErrorClass] = {
    "08": ErrorClass.CONNECTION,
}

#: Message patterns, tried in order.
MESSAGE_PATTERNS: tuple[tuple[re.Pattern[str], ErrorClass], ...] = (
    (
        re.compile(
            r"unable to open database|could not connect|connection (refused|reset)|"
            r"server closed the connection|database is locked",
            re.I,
        ),
        ErrorClass.CONNECTION,
    ),
    (
        re.compile(
            r"no such (column|table|function)|unknown column|"
            r"(column|relation|table) \S+ does not exist",
            re.I,
        ),
        ErrorClass.MISSING_OBJECT,
    ),
    (re.compile(r"syntax error|incomplete input|unrecognized token", re.I), ErrorClass.SYNTAX),
    (
        re.compile(
            r"datatype mismatch|type mismatch|invalid input syntax|operator does not exist|"
            r"cannot be cast",
            re.I,
        ),
        ErrorClass.TYPE_MISMATCH,
    ),
    (re.compile(r"interrupted|statement timeout|canceling statement|timed? ?out", re.I), ErrorClass.TIMEOUT),
)


class ErrorClassifier:
    """Maps backend failures onto :class:`ErrorClass`.

    Args:
        extra_patterns: Additional ``(regex, class)`` pairs tried before the
            built-in message patterns.
    """

    def __init__(self, extra_patterns: Iterable[tuple[str, ErrorClass]] = ()) -> None:
        self._patterns = tuple(
            (re.compile(pattern, re.I), error_class) for pattern, error_class in extra_patterns
        ) + MESSAGE_PATTERNS

    def classify(self, exc: BaseException) -> DatabaseError:
        """Return a classified :class:`DatabaseError` for ``exc``."""
        if isinstance(exc, DatabaseError):
            return exc
        if isinstance(exc, PolicyViolationError):
            return DatabaseError(str(exc), ErrorClass.POLICY.value, False, exc.code)

        code = exc.code if isinstance(exc, BackendError) else None
        message = exc.message if isinstance(exc, BackendError) else str(exc)

        if isinstance(exc, BackendTimeout):
            return ExecutionTimeoutError(message, backend_code=code)

        error_class = self.class_for(code, message)
        if error_class is ErrorClass.TIMEOUT:
            return ExecutionTimeoutError(message, backend_code=code)
        return DatabaseError(message, error_class.value, error_class.repairable, code)

    def class_for(self, code: str | None, message: str) -> ErrorClass:
        if code:
            if code in SQLSTATE_CLASSES:
                return SQLSTATE_CLASSES[code]
            for prefix, error_class in SQLSTATE_PREFIXES.items():
                if code.startswith(prefix):
                    return error_class
        for pattern, error_class in self._patterns:
            if pattern.search(message):
                return error_class
        return ErrorClass.UNKNOWN
