"""Unit tests for semql.catalog.converters.catalog_from_sqlalchemy."""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from semql.catalog.catalog import SemanticCatalog
from semql.catalog.converters import catalog_from_sqlalchemy
from semql.catalog.model import AggregationKind, JoinKind, ValueType
from semql.joins.path_finder import JoinPathFinder

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _engine(path: Path) -> Engine:
    return create_engine(f"sqlite:///{path}")


def _no_fk_engine(tmp_path: Path) -> Engine:
    """Two tables related only by naming convention, plus a self reference."""
    engine = _engine(tmp_path / "orders.sqlite")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT)"))
        conn.execute(
            text(
                "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, "
                "placed_on DATE, total REAL)"
            )
        )
        conn.execute(
            text(
                "CREATE TABLE staff (id INTEGER PRIMARY KEY, name TEXT, "
                "manager_id INTEGER REFERENCES staff(id))"
            )
        )
    return engine


@pytest.fixture(scope="module")
def reflected(db_path: Path) -> SemanticCatalog:
    engine = _engine(db_path)
    try:
        return catalog_from_sqlalchemy(engine, collect_statistics=True)
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Reflection
# ---------------------------------------------------------------------------


def test_every_table_becomes_an_entity(reflected: SemanticCatalog):
    assert set(reflected.entity_names) == {
        "companies",
        "departments",
        "employees",
        "deals",
        "audit_log",
    }
    assert reflected.lookup_entity("deals").table == "deals"


def test_numeric_non_key_columns_become_measures(reflected: SemanticCatalog):
    companies = reflected.lookup_entity("companies")
    revenue = companies.get_measure("annual_revenue")
    assert revenue is not None
    assert revenue.aggregation is AggregationKind.SUM
    # key columns stay dimensions even when numeric
    assert companies.get_measure("id") is None
    assert companies.get_dimension("id").type is ValueType.NUMBER
    assert companies.get_dimension("industry").type is ValueType.STRING


def test_foreign_keys_become_many_to_one_joins(reflected: SemanticCatalog):
    deals = reflected.lookup_entity("deals")
    joins = {j.target: j for j in deals.joins}
    assert set(joins) == {"companies", "employees"}
    assert joins["companies"].kind is JoinKind.MANY_TO_ONE
    assert joins["companies"].key_pairs == [("company_id", "id")]
    assert joins["employees"].key_pairs == [("owner_id", "id")]
    assert set(deals.key_columns) == {"id", "company_id", "owner_id"}


def test_reflected_catalog_supports_join_paths(reflected: SemanticCatalog):
    path = JoinPathFinder(reflected).find_path(["companies", "employees"])
    assert len(path) == 2
    assert {"companies", "employees"} <= set(path.entities)


def test_statistics_collected(reflected: SemanticCatalog):
    stats = reflected.statistics_for("companies")
    assert stats.row_count == 4
    assert stats.distinct_counts["industry"] == 3
    assert stats.distinct_counts["country"] == 3
    assert "annual_revenue" not in stats.distinct_counts
    assert reflected.statistics_for("deals").row_count == 5


def test_statistics_skipped_by_default(db_path: Path):
    engine = _engine(db_path)
    try:
        catalog = catalog_from_sqlalchemy(engine)
    finally:
        engine.dispose()
    assert catalog.statistics_for("companies") is None


def test_include_tables(db_path: Path):
    engine = _engine(db_path)
    try:
        catalog = catalog_from_sqlalchemy(engine, include_tables=["companies", "audit_log"])
    finally:
        engine.dispose()
    assert set(catalog.entity_names) == {"companies", "audit_log"}


# ---------------------------------------------------------------------------
# Joins inferred from names
# ---------------------------------------------------------------------------


def test_no_joins_without_constraints(tmp_path: Path):
    catalog = catalog_from_sqlalchemy(_no_fk_engine(tmp_path))
    assert catalog.lookup_entity("orders").joins == ()


def test_inferred_joins(tmp_path: Path):
    catalog = catalog_from_sqlalchemy(_no_fk_engine(tmp_path), infer_joins=True)
    orders = catalog.lookup_entity("orders")
    (join,) = orders.joins
    assert join.target == "customers"
    assert join.key_pairs == [("customer_id", "id")]
    assert orders.get_dimension("placed_on").type is ValueType.DATE


def test_self_references_are_skipped(tmp_path: Path):
    catalog = catalog_from_sqlalchemy(_no_fk_engine(tmp_path), infer_joins=True)
    assert catalog.lookup_entity("staff").joins == ()
