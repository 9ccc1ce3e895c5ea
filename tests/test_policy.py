"""Unit tests for SecurityPolicy and SecurityValidator."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from semql.catalog.catalog import SemanticCatalog
from semql.errors import (
    DisallowedColumnError,
    DisallowedStatementKindError,
    DisallowedTableError,
    LimitExceededError,
    PolicyConfigError,
    PolicyViolationError,
)
from semql.policy.engine import (
    SecurityPolicy,
    SecurityValidator,
    TablePolicy,
    ValidatedStatement,
    load_policy,
)
from semql.schema.query_plan import FilterOp
from semql.schema.statement import (
    Column,
    CommonTableExpression,
    Comparison,
    JoinClause,
    Projection,
    Source,
    SqlStatement,
    StatementKind,
)
from tests.conftest import ALL_TABLES

COMPANY_NAME = Column("Company", "companies", "name")
COMPANY_ID = Column("Company", "companies", "id")
DEAL_COMPANY = Column("Deal", "deals", "company_id")
DEAL_AMOUNT = Column("Deal", "deals", "amount")


def _select(*columns: Column, limit: int | None = None, kind=StatementKind.SELECT) -> SqlStatement:
    return SqlStatement(
        kind=kind,
        projections=tuple(Projection(c, c.name) for c in columns),
        source=Source(columns[0].table, columns[0].qualifier),
        limit=limit,
    )


def _deals_with_company() -> SqlStatement:
    return SqlStatement(
        projections=(Projection(COMPANY_NAME, "name"), Projection(DEAL_AMOUNT, "amount")),
        source=Source("deals", "Deal"),
        joins=(JoinClause(Source("companies", "Company"), ((DEAL_COMPANY, COMPANY_ID),)),),
    )


def _validator(**overrides) -> SecurityValidator:
    overrides.setdefault("allowed_tables", ALL_TABLES)
    overrides.setdefault("default_limit", 0)
    return SecurityValidator(SecurityPolicy(**overrides))


# ---------------------------------------------------------------------------
# Statement kind
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("kind", list(StatementKind), ids=lambda k: k.value)
def test_only_read_only_kinds_pass(kind: StatementKind):
    statement = _select(COMPANY_NAME, kind=kind)
    if kind.is_read_only:
        assert _validator().validate(statement).statement.kind is kind
    else:
        with pytest.raises(DisallowedStatementKindError) as exc_info:
            _validator().validate(statement)
        assert exc_info.value.details["kind"] == kind.value


@pytest.mark.parametrize(
    "kind", [k for k in StatementKind if not k.is_read_only], ids=lambda k: k.value
)
def test_write_kind_cannot_be_configured(kind: StatementKind):
    with pytest.raises(PolicyConfigError):
        SecurityPolicy(allowed_kinds=[StatementKind.SELECT, kind])


def test_policy_can_narrow_read_kinds():
    validator = _validator(allowed_kinds=[StatementKind.SELECT])
    with pytest.raises(DisallowedStatementKindError):
        validator.validate(_select(COMPANY_NAME, kind=StatementKind.WITH))


def test_write_kind_hidden_in_cte_rejected():
    inner = _select(DEAL_AMOUNT, kind=StatementKind.DELETE)
    outer = SqlStatement(
        kind=StatementKind.WITH,
        projections=(Projection(Column("gone", "gone", "amount"), "amount"),),
        source=Source("gone"),
        ctes=(CommonTableExpression("gone", inner),),
    )
    with pytest.raises(DisallowedStatementKindError):
        _validator().validate(outer)


# ---------------------------------------------------------------------------
# Table allowlist
# ---------------------------------------------------------------------------


def test_allowed_tables_pass():
    validated = _validator().validate(_deals_with_company())
    assert isinstance(validated, ValidatedStatement)


def test_joined_table_outside_allowlist_rejected():
    with pytest.raises(DisallowedTableError) as exc_info:
        _validator(allowed_tables=["deals"]).validate(_deals_with_company())
    err = exc_info.value
    assert err.details["table"] == "companies"
    assert err.details["allowed_tables"] == ["deals"]
    assert err.to_error_response()["error"] == "DISALLOWED_TABLE"


def test_empty_allowlist_denies_everything():
    validator = SecurityValidator(SecurityPolicy(default_limit=0))
    with pytest.raises(DisallowedTableError):
        validator.validate(_select(COMPANY_NAME))


def test_cte_names_are_virtual_but_bodies_are_checked():
    inner = _select(DEAL_AMOUNT)
    outer = SqlStatement(
        kind=StatementKind.WITH,
        projections=(Projection(Column("recent", "recent", "amount"), "amount"),),
        source=Source("recent"),
        ctes=(CommonTableExpression("recent", inner),),
    )
    assert _validator(allowed_tables=["deals"]).validate(outer)
    with pytest.raises(DisallowedTableError) as exc_info:
        _validator(allowed_tables=["companies"]).validate(outer)
    assert exc_info.value.details["table"] == "deals"


def test_filter_column_table_is_checked():
    statement = SqlStatement(
        projections=(Projection(COMPANY_NAME, "name"),),
        source=Source("companies", "Company"),
        where=Comparison(Column("Secret", "payroll", "amount"), FilterOp.GT, 0),
    )
    with pytest.raises(DisallowedTableError, match="payroll"):
        _validator().validate(statement)


# ---------------------------------------------------------------------------
# Column access
# ---------------------------------------------------------------------------


def test_globally_denied_column():
    validator = _validator(denied_columns=["amount"])
    with pytest.raises(DisallowedColumnError) as exc_info:
        validator.validate(_deals_with_company())
    assert exc_info.value.details["column"] == "amount"
    assert exc_info.value.details["table"] == "deals"


def test_per_table_denied_column_only_applies_to_its_table():
    validator = _validator(tables={"employees": TablePolicy(denied_columns=["name"])})
    assert validator.validate(_select(COMPANY_NAME))
    with pytest.raises(DisallowedColumnError):
        validator.validate(_select(Column("Employee", "employees", "name")))


def test_per_table_allowlist():
    validator = _validator(
        tables={"companies": TablePolicy(allowed_columns=["id", "name"])}
    )
    assert validator.validate(_select(COMPANY_NAME, COMPANY_ID))
    with pytest.raises(DisallowedColumnError) as exc_info:
        validator.validate(_select(COMPANY_NAME, Column("Company", "companies", "country")))
    assert exc_info.value.details["allowed_columns"] == ["id", "name"]


def test_deny_wins_over_allow():
    validator = _validator(
        denied_columns=["name"],
        tables={"companies": TablePolicy(allowed_columns=["id", "name"])},
    )
    with pytest.raises(DisallowedColumnError) as exc_info:
        validator.validate(_select(COMPANY_NAME))
    assert exc_info.value.details["allowed_columns"] == ["id"]


def test_join_key_columns_are_checked():
    validator = _validator(tables={"deals": TablePolicy(denied_columns=["company_id"])})
    with pytest.raises(DisallowedColumnError, match="company_id"):
        validator.validate(_deals_with_company())


def test_column_read_through_another_tables_qualifier_rejected():
    # Rendered as "Employee"."salary" even though it claims to live on deals.
    validator = _validator(tables={"employees": TablePolicy(denied_columns=["salary"])})
    statement = SqlStatement(
        projections=(Projection(Column("Employee", "deals", "salary"), "salary"),),
        source=Source("employees", "Employee"),
    )
    with pytest.raises(DisallowedColumnError) as exc_info:
        validator.validate(statement)
    assert "Employee" in exc_info.value.details["reason"]
    assert exc_info.value.details["table"] == "deals"


def test_unbound_qualifier_rejected():
    statement = SqlStatement(
        projections=(Projection(COMPANY_NAME, "name"), Projection(DEAL_AMOUNT, "amount")),
        source=Source("deals", "Deal"),
    )
    with pytest.raises(DisallowedColumnError, match="not bound") as exc_info:
        _validator().validate(statement)
    assert exc_info.value.details["column"] == "name"


def test_misbound_column_inside_cte_rejected():
    inner = SqlStatement(
        projections=(Projection(Column("Deal", "companies", "amount"), "amount"),),
        source=Source("deals", "Deal"),
    )
    outer = SqlStatement(
        kind=StatementKind.WITH,
        projections=(Projection(Column("recent", "recent", "amount"), "amount"),),
        source=Source("recent"),
        ctes=(CommonTableExpression("recent", inner),),
    )
    with pytest.raises(DisallowedColumnError, match="not bound"):
        _validator().validate(outer)


def test_resolved_table_is_checked_for_denied_columns():
    validator = _validator(tables={"employees": TablePolicy(denied_columns=["salary"])})
    statement = SqlStatement(
        projections=(Projection(Column("Employee", "employees", "salary"), "salary"),),
        source=Source("employees", "Employee"),
    )
    referenced = statement.referenced_columns()
    assert ("employees", "salary") in referenced
    with pytest.raises(DisallowedColumnError, match="salary"):
        validator.validate(statement)


def test_is_column_allowed():
    policy = SecurityPolicy(
        denied_columns=["ssn"],
        tables={"employees": TablePolicy(allowed_columns=["id", "title"])},
    )
    assert policy.is_column_allowed("companies", "name")
    assert not policy.is_column_allowed("companies", "ssn")
    assert policy.is_column_allowed("employees", "title")
    assert not policy.is_column_allowed("employees", "salary")


# ---------------------------------------------------------------------------
# LIMIT enforcement
# ---------------------------------------------------------------------------


def test_default_limit_injected():
    validated = _validator(default_limit=50).validate(_select(COMPANY_NAME))
    assert validated.statement.limit == 50
    assert validated.notes == ("LIMIT 50 applied by default.",)


def test_zero_default_limit_leaves_statement_unbounded():
    validated = _validator(default_limit=0).validate(_select(COMPANY_NAME))
    assert validated.statement.limit is None
    assert validated.notes == ()


def test_limit_within_max_untouched():
    validated = _validator(max_limit=100).validate(_select(COMPANY_NAME, limit=100))
    assert validated.statement.limit == 100
    assert validated.notes == ()


def test_limit_clamped():
    statement = _select(COMPANY_NAME, limit=5000)
    validated = _validator(max_limit=200).validate(statement)
    assert validated.statement.limit == 200
    assert validated.notes == ("LIMIT 5000 clamped to 200.",)
    # the input statement is never mutated
    assert statement.limit == 5000


def test_limit_rejected_without_clamping():
    with pytest.raises(LimitExceededError) as exc_info:
        _validator(max_limit=200, clamp_limit=False).validate(_select(COMPANY_NAME, limit=201))
    assert exc_info.value.details == {"limit": 201, "max_limit": 200}


def test_default_limit_above_max_is_config_error():
    with pytest.raises(PolicyConfigError, match="default_limit"):
        SecurityPolicy(default_limit=500, max_limit=100)


def test_unknown_policy_key_rejected():
    with pytest.raises(Exception):
        SecurityPolicy(allow_writes=True)


# ---------------------------------------------------------------------------
# Logging and construction helpers
# ---------------------------------------------------------------------------


def test_violation_logged_at_warning(caplog: pytest.LogCaptureFixture):
    with caplog.at_level(logging.WARNING, logger="semql.policy.engine"):
        with pytest.raises(PolicyViolationError):
            _validator(allowed_tables=["deals"]).validate(_deals_with_company())
    assert "DISALLOWED_TABLE" in caplog.text


def test_for_catalog_allows_catalog_tables(catalog: SemanticCatalog):
    policy = SecurityPolicy.for_catalog(catalog, default_limit=10)
    assert set(policy.allowed_tables) == set(ALL_TABLES)
    assert policy.default_limit == 10


def test_load_policy_yaml(tmp_path: Path):
    path = tmp_path / "policy.yaml"
    path.write_text(
        "allowed_tables: [companies, deals]\n"
        "denied_columns: [ssn]\n"
        "max_limit: 50\n"
        "default_limit: 25\n"
        "tables:\n"
        "  companies:\n"
        "    allowed_columns: [id, name]\n",
        encoding="utf-8",
    )
    policy = load_policy(path)
    assert policy.allowed_tables == ("companies", "deals")
    assert policy.tables["companies"].allowed_columns == ("id", "name")
    assert policy.default_limit == 25


def test_load_policy_json(tmp_path: Path):
    path = tmp_path / "policy.json"
    path.write_text(json.dumps({"allowed_tables": ["deals"], "clamp_limit": False}))
    policy = load_policy(str(path))
    assert policy.allowed_tables == ("deals",)
    assert policy.clamp_limit is False


@pytest.mark.parametrize(
    ("name", "content"),
    [
        ("broken.json", "{not json"),
        ("broken.yaml", "allowed_tables: [unclosed"),
        ("list.yaml", "- companies\n- deals\n"),
        ("typo.json", '{"allowed_tabels": ["deals"]}'),
        ("writes.json", '{"allowed_kinds": ["select", "delete"]}'),
    ],
    ids=["bad-json", "bad-yaml", "not-a-mapping", "unknown-key", "write-kind"],
)
def test_load_policy_invalid(tmp_path: Path, name: str, content: str):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    with pytest.raises(PolicyConfigError):
        load_policy(path)
