"""Compiler registry.

``CompilerFactory`` is the central registry for
:class:`~semql.compile.base.SQLCompiler` implementations.  Register a new
compiler once and every caller that resolves a dialect by name picks it up.

Usage::

    from semql.compile.registry import CompilerFactory

    @CompilerFactory.register("duckdb")
    class DuckDBCompiler(SQLCompiler):
        ...
"""

from __future__ import annotations

from collections.abc import Callable
from typing import ClassVar

from semql.compile.base import SQLCompiler
from semql.compile.postgres import PostgresCompiler
from semql.compile.sqlite import SQLiteCompiler
from semql.errors import CompilationError


class CompilerFactory:
    """Registry mapping dialect target names to :class:`SQLCompiler` classes.

    Example::

        @CompilerFactory.register("duckdb")
        class DuckDBCompiler(SQLCompiler):
            ...

        compiler = CompilerFactory.create("duckdb")
    """

    _compilers: ClassVar[dict[str, type[SQLCompiler]]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[type[SQLCompiler]], type[SQLCompiler]]:
        """Decorator that registers a compiler class under ``name``.

        Args:
            name: The dialect target name (e.g. ``"postgres"``).

        Returns:
            A decorator that registers and returns the compiler class.
        """

        def decorator(compiler_cls: type[SQLCompiler]) -> type[SQLCompiler]:
            cls.register_class(name, compiler_cls)
            return compiler_cls

        return decorator

    @classmethod
    def register_class(cls, name: str, compiler_cls: type[SQLCompiler]) -> None:
        """Register a compiler class without using the decorator form.

        Names are case-insensitive; registering an existing name replaces
        the previous compiler.
        """
        cls._compilers[name.lower()] = compiler_cls

    @classmethod
    def create(cls, name: str) -> SQLCompiler:
        """Instantiate the compiler registered for ``name``.

        Raises:
            CompilationError: If no compiler is registered for ``name``.
        """
        compiler_cls = cls._compilers.get(name.lower())
        if compiler_cls is None:
            registered = sorted(cls._compilers)
            raise CompilationError(
                f"Unsupported dialect target: '{name}'. Registered targets: {registered}."
            )
        return compiler_cls()

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name.lower() in cls._compilers

    @classmethod
    def registered_targets(cls) -> list[str]:
        """Return the sorted list of registered dialect target names."""
        return sorted(cls._compilers)


CompilerFactory.register_class("sqlite", SQLiteCompiler)
CompilerFactory.register_class("postgres", PostgresCompiler)
