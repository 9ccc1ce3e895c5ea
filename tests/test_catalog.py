"""Unit tests for the semantic catalog models and index."""

from __future__ import annotations

import copy

import pytest

from semql.catalog.catalog import SemanticCatalog, tokenize
from semql.catalog.model import AggregationKind, Entity, JoinKind, ValueType
from semql.errors import CatalogError, PlanError, UnknownEntityError
from tests.fixtures import CATALOG_RECORDS


def _records() -> list[dict]:
    return copy.deepcopy(CATALOG_RECORDS)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def test_field_column_defaults_to_name(catalog: SemanticCatalog):
    company = catalog.lookup_entity("Company")
    assert company.get_dimension("industry").column == "industry"
    assert company.get_measure("revenue").column == "annual_revenue"


def test_field_defaults(catalog: SemanticCatalog):
    company = catalog.lookup_entity("Company")
    assert company.get_dimension("name").type is ValueType.STRING
    assert company.get_dimension("founded_on").type is ValueType.DATE
    assert company.get_measure("revenue").type is ValueType.NUMBER
    assert company.get_measure("company_count").aggregation is AggregationKind.COUNT


def test_enumerated_domain(catalog: SemanticCatalog):
    industry = catalog.lookup_entity("Company").get_dimension("industry")
    assert industry.values == ("Technology", "Finance", "Retail")


def test_get_field_missing_returns_none(catalog: SemanticCatalog):
    company = catalog.lookup_entity("Company")
    assert company.get_dimension("revenue") is None
    assert company.get_measure("industry") is None


def test_column_names_deduplicated(catalog: SemanticCatalog):
    company = catalog.lookup_entity("Company")
    # "id" backs a measure and is also a key column
    assert company.column_names.count("id") == 1
    assert "annual_revenue" in company.column_names


def test_duplicate_field_name_rejected():
    with pytest.raises(ValueError, match="twice"):
        Entity(
            name="X",
            table="x",
            dimensions=[{"name": "a"}],
            measures=[{"name": "a"}],
        )


def test_models_are_frozen(catalog: SemanticCatalog):
    company = catalog.lookup_entity("Company")
    with pytest.raises(Exception):
        company.table = "other"


def test_join_kind_reversed():
    assert JoinKind.MANY_TO_ONE.reversed() is JoinKind.ONE_TO_MANY
    assert JoinKind.ONE_TO_MANY.reversed() is JoinKind.MANY_TO_ONE
    assert JoinKind.ONE_TO_ONE.reversed() is JoinKind.ONE_TO_ONE


def test_join_key_pairs(catalog: SemanticCatalog):
    join = catalog.lookup_entity("Deal").joins[1]
    assert join.target == "Employee"
    assert join.key_pairs == [("owner_id", "id")]


# ---------------------------------------------------------------------------
# Catalog construction
# ---------------------------------------------------------------------------


def test_catalog_loads_all_entities(catalog: SemanticCatalog):
    assert catalog.entity_names == ["Company", "Department", "Employee", "Deal", "AuditLog"]
    assert len(catalog) == 5
    assert "Deal" in catalog
    assert "Invoice" not in catalog


def test_table_names(catalog: SemanticCatalog):
    assert catalog.table_names == ["companies", "departments", "employees", "deals", "audit_log"]


def test_edges_in_declaration_order(catalog: SemanticCatalog):
    pairs = [(owner.name, join.target) for owner, join in catalog.edges()]
    assert pairs == [
        ("Department", "Company"),
        ("Employee", "Department"),
        ("Deal", "Company"),
        ("Deal", "Employee"),
    ]


def test_duplicate_entity_rejected():
    records = _records()
    records.append(copy.deepcopy(records[0]))
    with pytest.raises(CatalogError, match="declared twice"):
        SemanticCatalog.from_records(records)


def test_join_to_undeclared_entity_rejected():
    records = _records()
    records[1]["joins"][0]["target"] = "Organisation"
    with pytest.raises(CatalogError, match="undeclared entity 'Organisation'"):
        SemanticCatalog.from_records(records)


def test_join_on_unknown_local_column_rejected():
    records = _records()
    records[1]["joins"][0]["local_columns"] = ["org_id"]
    with pytest.raises(CatalogError) as exc_info:
        SemanticCatalog.from_records(records)
    assert exc_info.value.details["column"] == "org_id"
    assert exc_info.value.details["entity"] == "Department"


def test_join_on_unknown_remote_column_rejected():
    records = _records()
    records[1]["joins"][0]["remote_columns"] = ["uuid"]
    with pytest.raises(CatalogError, match="uuid"):
        SemanticCatalog.from_records(records)


def test_join_key_length_mismatch_rejected():
    records = _records()
    records[1]["joins"][0]["remote_columns"] = ["id", "name"]
    with pytest.raises(CatalogError, match="malformed"):
        SemanticCatalog.from_records(records)


def test_unknown_record_key_rejected():
    records = _records()
    records[0]["owner"] = "sales"
    with pytest.raises(CatalogError) as exc_info:
        SemanticCatalog.from_records(records)
    assert exc_info.value.details["entity"] == "Company"


def test_malformed_statistics_rejected():
    with pytest.raises(CatalogError, match="companies"):
        SemanticCatalog.from_records(_records(), {"companies": {"row_count": -1}})


def test_catalog_error_is_structural():
    from semql.errors import StructuralError

    assert issubclass(CatalogError, StructuralError)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def test_lookup_entity(catalog: SemanticCatalog):
    assert catalog.lookup_entity("Employee").table == "employees"


def test_lookup_unknown_entity_raises_plan_error(catalog: SemanticCatalog):
    with pytest.raises(UnknownEntityError) as exc_info:
        catalog.lookup_entity("Invoice")
    assert isinstance(exc_info.value, PlanError)
    assert exc_info.value.details["known_entities"] == catalog.entity_names
    assert exc_info.value.to_error_response()["error"] == "UNKNOWN_ENTITY"


def test_get_entity_returns_none(catalog: SemanticCatalog):
    assert catalog.get_entity("Invoice") is None


def test_entity_for_table(catalog: SemanticCatalog):
    assert catalog.entity_for_table("deals").name == "Deal"
    assert catalog.entity_for_table("invoices") is None


def test_statistics_for(catalog: SemanticCatalog, bare_catalog: SemanticCatalog):
    assert catalog.statistics_for("companies").row_count == 100
    assert catalog.statistics_for("audit_log") is None
    assert bare_catalog.statistics_for("companies") is None


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def test_tokenize_splits_case_and_underscores():
    assert tokenize("AuditLog founded_on") == {"audit", "log", "founded", "on"}
    assert tokenize(None) == set()


def test_search_ranks_field_matches_above_descriptions(catalog: SemanticCatalog):
    hits = catalog.search_entities("revenue by industry")
    assert [h.name for h in hits] == ["Company", "Deal"]
    assert hits[0].score > hits[1].score
    assert "revenue" in hits[0].measures


def test_search_matches_synonyms(catalog: SemanticCatalog):
    hits = catalog.search_entities("staff")
    assert [h.name for h in hits] == ["Employee"]
    assert hits[0].table == "employees"


def test_search_matches_field_synonyms(catalog: SemanticCatalog):
    hits = catalog.search_entities("sector")
    assert hits[0].name == "Company"


def test_search_respects_limit(catalog: SemanticCatalog):
    assert len(catalog.search_entities("name revenue amount budget", limit=2)) == 2


def test_search_without_overlap_is_empty(catalog: SemanticCatalog):
    assert catalog.search_entities("weather forecast") == []
    assert catalog.search_entities("") == []


def test_search_index_exposed(catalog: SemanticCatalog):
    docs = {doc.entity: doc for doc in catalog.search_index}
    assert "customer" in docs["Company"].name_tokens
    assert "amount" in docs["Deal"].field_tokens
