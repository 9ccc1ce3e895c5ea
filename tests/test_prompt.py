"""Unit tests for PromptBuilder."""

from __future__ import annotations

import json

from semql.catalog.catalog import SemanticCatalog
from semql.errors import DatabaseError
from semql.phase.controller import Capability
from semql.policy.engine import SecurityPolicy, TablePolicy
from semql.prompt.builder import PromptBuilder
from tests.conftest import ALL_TABLES


def _entities(catalog_json: str) -> dict[str, dict]:
    return {e["name"]: e for e in json.loads(catalog_json)["entities"]}


def test_catalog_summary_lists_fields_and_joins(catalog: SemanticCatalog, policy: SecurityPolicy):
    components = PromptBuilder(catalog, policy).build("Revenue by industry?")
    entities = _entities(components.catalog_json)
    company = entities["Company"]
    assert [d["name"] for d in company["dimensions"]] == ["name", "industry", "country", "founded_on"]
    industry = company["dimensions"][1]
    assert industry["values"] == ["Technology", "Finance", "Retail"]
    assert {"name": "revenue", "aggregation": "sum"}.items() <= company["measures"][0].items()
    assert company["joins_with"] == ["Deal", "Department"]
    assert entities["Deal"]["joins_with"] == ["Company", "Employee"]
    assert "joins_with" not in entities["AuditLog"]


def test_catalog_summary_hides_disallowed_tables(catalog: SemanticCatalog):
    policy = SecurityPolicy(allowed_tables=["companies", "deals"])
    entities = _entities(PromptBuilder(catalog, policy).build("q").catalog_json)
    assert sorted(entities) == ["Company", "Deal"]


def test_catalog_summary_hides_denied_columns(catalog: SemanticCatalog):
    policy = SecurityPolicy(
        allowed_tables=ALL_TABLES,
        denied_columns=["email"],
        tables={"employees": TablePolicy(denied_columns=["salary"])},
    )
    employee = _entities(PromptBuilder(catalog, policy).build("q").catalog_json)["Employee"]
    assert "email" not in [d["name"] for d in employee["dimensions"]]
    assert [m["name"] for m in employee["measures"]] == ["headcount"]


def test_system_prompt_sections(catalog: SemanticCatalog):
    policy = SecurityPolicy(allowed_tables=ALL_TABLES, max_limit=500, default_limit=50)
    components = PromptBuilder(catalog, policy).build("Which deals closed?")
    system = components.system_prompt
    assert "Do NOT output SQL strings." in system
    assert "At most 500 rows are returned per query." in system
    assert "at most 50 rows" in system
    assert components.catalog_json in system
    assert components.user_prompt.strip() == "Which deals closed?"


def test_capabilities_in_prompt(catalog: SemanticCatalog, policy: SecurityPolicy):
    builder = PromptBuilder(catalog, policy)
    restricted = builder.build("q", capabilities=[Capability.PROPOSE_PLAN, Capability.SEARCH_ENTITIES])
    assert "propose_plan, search_entities" in restricted.system_prompt
    assert "(not restricted)" in builder.build("q").system_prompt
    assert "(none)" in builder.build("q", capabilities=frozenset()).system_prompt


def test_repair_prompt_embeds_sql_and_error(catalog: SemanticCatalog, policy: SecurityPolicy):
    error = DatabaseError("no such column: Employee.job_title", "missing_object", True, "SQLITE_ERROR")
    components = PromptBuilder(catalog, policy).build_repair_prompt(
        error, 'SELECT "Employee"."job_title" AS "job" FROM "employees" AS "Employee"'
    )
    assert '"Employee"."job_title"' in components.user_prompt
    assert '"error_class": "missing_object"' in components.user_prompt
    assert "DATABASE_ERROR" in components.user_prompt
    assert "corrected QueryPlan JSON" in components.user_prompt
