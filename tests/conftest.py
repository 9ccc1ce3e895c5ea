"""Shared pytest fixtures for SemQL unit and integration tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from semql.catalog.catalog import SemanticCatalog
from semql.config import EngineSettings
from semql.policy.engine import SecurityPolicy
from tests.fixtures import create_database, load_catalog

ALL_TABLES = ["companies", "departments", "employees", "deals", "audit_log"]


@pytest.fixture(scope="session")
def catalog() -> SemanticCatalog:
    """Sample catalog with table statistics."""
    return load_catalog()


@pytest.fixture(scope="session")
def bare_catalog() -> SemanticCatalog:
    """Sample catalog without statistics."""
    return load_catalog(with_statistics=False)


@pytest.fixture(scope="session")
def policy() -> SecurityPolicy:
    """Allows every sample table, no LIMIT injection."""
    return SecurityPolicy(allowed_tables=ALL_TABLES, default_limit=0)


@pytest.fixture(scope="session")
def db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Seeded SQLite database file shared across the session (read-only use)."""
    return create_database(tmp_path_factory.mktemp("semql") / "crm.sqlite")


@pytest.fixture()
def settings() -> EngineSettings:
    """Deterministic engine settings that ignore the process environment."""
    return EngineSettings(
        _env_file=None,
        max_attempts=2,
        max_steps=50,
        statement_timeout_seconds=5.0,
        tie_break="most_frequent",
        dialect="sqlite",
        warn_row_threshold=100_000,
    )
