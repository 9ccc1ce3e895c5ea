"""Database boundary.

``ExecutionBackend`` is the only way SemQL touches a database.  A backend
executes one rendered read-only statement with named parameters under a
deadline, and reports failures as :class:`BackendError` (or
:class:`BackendTimeout`) carrying the driver's code, so the classifier never
has to guess from a bare exception type.

Two adapters are provided:

``SQLiteBackend``
    Stdlib ``sqlite3``, opened read-only by default.  The deadline is enforced with a progress handler
    that interrupts the running statement.
``SqlAlchemyBackend``
    Any SQLAlchemy engine.  The statement runs on a worker thread with a
    bounded wait; on timeout the driver connection is asked to cancel.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

logger = logging.getLogger(__name__)

_PROGRESS_OPCODES = 1000


@dataclass(frozen=True)
class ColumnMeta:
    """Result column metadata.

    Attributes:
        name: Output column name.
        type_code: Driver-reported type, when available.
    """

    name: str
    type_code: Any = None


@dataclass(frozen=True)
class ResultSet:
    columns: tuple[ColumnMeta, ...]
    rows: tuple[tuple[Any, ...], ...]

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def __len__(self) -> int:
        return len(self.rows)


class BackendError(Exception):
    """A driver failure reported by an :class:`ExecutionBackend`.

    Args:
        code: Driver code (SQLSTATE, or a driver error name such as
            ``SQLITE_ERROR``), if known.
        message: Driver message.
        original: The underlying driver exception.
    """

    def __init__(self, code: str | None, message: str, original: BaseException | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.original = original


class BackendTimeout(BackendError):
    """Raised when a statement is cancelled at its deadline."""


@runtime_checkable
class ExecutionBackend(Protocol):
    """Executes one rendered statement under a deadline."""

    def execute(self, sql: str, params: Mapping[str, Any], timeout: float) -> ResultSet:
        """Run ``sql`` with ``params``.

        Raises:
            BackendTimeout: If ``timeout`` seconds elapse first.
            BackendError: On any other driver failure.
        """
        ...


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


def _adapt_sqlite_value(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class SQLiteBackend:
    """Executes statements against a SQLite database file.

    A new connection is opened per statement and closed afterwards, so the
    backend is safe to share between runs.  A plain path is opened as a
    ``mode=ro`` URI: a missing file fails with ``SQLITE_CANTOPEN`` instead of
    being created empty.

    Args:
        path: Database file path (or a ``file:`` URI when ``uri`` is set).
        uri: Interpret ``path`` as a URI, e.g. ``file:db.sqlite?mode=rw``.
            The URI is used unchanged.
    """

    def __init__(self, path: str | Path, *, uri: bool = False) -> None:
        if uri:
            self._path = str(path)
        else:
            self._path = f"file:{quote(Path(path).as_posix())}?mode=ro"

    def execute(self, sql: str, params: Mapping[str, Any], timeout: float) -> ResultSet:
        deadline = time.monotonic() + timeout
        try:
            conn = sqlite3.connect(self._path, uri=True, timeout=timeout)
        except sqlite3.Error as exc:
            raise BackendError(_sqlite_code(exc), str(exc), exc) from exc
        conn.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_OPCODES)
        try:
            cursor = conn.execute(sql, {k: _adapt_sqlite_value(v) for k, v in params.items()})
            columns = tuple(ColumnMeta(name=d[0], type_code=d[1]) for d in cursor.description or ())
            rows = tuple(tuple(row) for row in cursor.fetchall())
        except sqlite3.OperationalError as exc:
            if time.monotonic() > deadline and "interrupt" in str(exc).lower():
                raise BackendTimeout(
                    "SQLITE_INTERRUPT", f"Statement exceeded {timeout}s and was interrupted.", exc
                ) from exc
            raise BackendError(_sqlite_code(exc), str(exc), exc) from exc
        except sqlite3.Error as exc:
            raise BackendError(_sqlite_code(exc), str(exc), exc) from exc
        finally:
            conn.close()
        return ResultSet(columns=columns, rows=rows)


def _sqlite_code(exc: sqlite3.Error) -> str | None:
    return getattr(exc, "sqlite_errorname", None)


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------


class SqlAlchemyBackend:
    """Executes statements through a SQLAlchemy :class:`~sqlalchemy.engine.Engine`.

    The rendered SQL must use ``:name`` placeholders (the SQLite compiler
    style), which :func:`sqlalchemy.text` translates for every driver.

    Args:
        engine: A SQLAlchemy engine.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="semql-exec")

    def execute(self, sql: str, params: Mapping[str, Any], timeout: float) -> ResultSet:
        holder: dict[str, Any] = {}
        started = threading.Event()

        def _run() -> ResultSet:
            with self._engine.connect() as conn:
                holder["dbapi"] = conn.connection.dbapi_connection
                started.set()
                result = conn.execute(text(sql), dict(params))
                columns = tuple(ColumnMeta(name=str(key)) for key in result.keys())
                rows = tuple(tuple(row) for row in result)
                conn.rollback()
                return ResultSet(columns=columns, rows=rows)

        future = self._executor.submit(_run)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as exc:
            if started.is_set():
                self._cancel(holder.get("dbapi"))
            raise BackendTimeout(None, f"Statement exceeded {timeout}s.", exc) from exc
        except DBAPIError as exc:
            orig = exc.orig
            raise BackendError(_sqlstate(orig), str(orig), exc) from exc
        except SQLAlchemyError as exc:
            raise BackendError(None, str(exc), exc) from exc

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _cancel(dbapi_connection: Any) -> None:
        """Best-effort cancellation of a running statement."""
        if dbapi_connection is None:
            return
        for name in ("cancel", "interrupt"):
            cancel = getattr(dbapi_connection, name, None)
            if callable(cancel):
                try:
                    cancel()
                except Exception:
                    logger.warning("Driver %s() failed during timeout cancellation", name, exc_info=True)
                return
        logger.warning("Driver connection %r cannot be cancelled", type(dbapi_connection).__name__)


def _sqlstate(orig: BaseException | None) -> str | None:
    """Extract a SQLSTATE from a DB-API exception across common drivers."""
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    args: Sequence[Any] = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return str(args[0])
    if isinstance(orig, sqlite3.Error):
        return _sqlite_code(orig)
    return None
