"""SemQL compilation layer: QueryPlan → SqlStatement → parameterized SQL."""
from semql.compile.base import CompiledSQL, SQLCompiler
from semql.compile.builder import StatementBuilder
from semql.compile.postgres import PostgresCompiler
from semql.compile.registry import CompilerFactory
from semql.compile.renderer import StatementRenderer
from semql.compile.sqlite import SQLiteCompiler

__all__ = [
    "CompiledSQL",
    "SQLCompiler",
    "StatementBuilder",
    "StatementRenderer",
    "CompilerFactory",
    "PostgresCompiler",
    "SQLiteCompiler",
]
