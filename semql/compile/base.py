"""Compiler abstractions: CompiledSQL and the SQLCompiler ABC.

The Template Method pattern (GoF) is used:
- ``StatementRenderer`` defines the algorithm skeleton for rendering each
  clause of a validated statement.
- ``PostgresCompiler`` and ``SQLiteCompiler`` override dialect-specific steps
  (parameter placeholder style, ILIKE support, quoting).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class CompiledSQL:
    """The output of a successful rendering.

    Attributes:
        sql: The rendered SQL string with named placeholders.
        params: Values for every placeholder.  Literal values are never
            inlined into ``sql``.
        dialect: The target dialect (``'postgres'`` or ``'sqlite'``).
    """

    sql: str
    params: dict[str, Any]
    dialect: str


class SQLCompiler(ABC):
    """Abstract base for dialect-specific SQL compilers.

    Subclasses implement the dialect-specific methods; the
    ``StatementRenderer`` uses this interface via the Strategy / Template
    Method patterns.
    """

    @abstractmethod
    def param_placeholder(self, name: str) -> str:
        """Return the SQL placeholder string for a named parameter.

        Args:
            name: Parameter name (e.g. ``'param_0'``).

        Returns:
            Dialect-specific placeholder string.
        """

    @abstractmethod
    def like_operator(self, op: str) -> str:
        """Return the SQL keyword for a LIKE / ILIKE operator.

        SQLite does not support ``ILIKE``; it falls back to ``LIKE``, which
        is already case-insensitive for ASCII there.

        Args:
            op: ``'LIKE'`` or ``'ILIKE'``.

        Returns:
            SQL operator keyword.
        """

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Return a properly-quoted SQL identifier.

        Args:
            name: Unquoted identifier (table, alias, or column name).

        Returns:
            Quoted identifier.
        """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the canonical dialect name (``'postgres'`` or ``'sqlite'``)."""
