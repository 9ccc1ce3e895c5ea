"""Test fixtures: sample catalog records, statistics, DDL, and seed rows.

The sample model is a small CRM::

    Company ──< Department ──< Employee ──< Deal >── Company

The join graph contains one cycle (Company, Department, Employee, Deal).
``AuditLog`` declares no joins at all.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

from semql.catalog.catalog import SemanticCatalog

CATALOG_RECORDS: list[dict[str, Any]] = [
    {
        "name": "Company",
        "table": "companies",
        "description": "Customer organisations",
        "synonyms": ["customer", "account"],
        "key_columns": ["id"],
        "dimensions": [
            {"name": "name", "description": "Legal name"},
            {
                "name": "industry",
                "values": ["Technology", "Finance", "Retail"],
                "synonyms": ["sector", "vertical"],
            },
            {"name": "country", "description": "ISO country code"},
            {"name": "founded_on", "type": "date"},
        ],
        "measures": [
            {"name": "revenue", "column": "annual_revenue", "aggregation": "sum"},
            {"name": "company_count", "column": "id", "aggregation": "count"},
        ],
    },
    {
        "name": "Department",
        "table": "departments",
        "key_columns": ["id", "company_id"],
        "dimensions": [
            {"name": "name"},
            {"name": "code"},
        ],
        "measures": [
            {"name": "budget", "aggregation": "sum"},
        ],
        "joins": [
            {
                "target": "Company",
                "kind": "many_to_one",
                "local_columns": ["company_id"],
                "remote_columns": ["id"],
            },
        ],
    },
    {
        "name": "Employee",
        "table": "employees",
        "description": "People on the payroll",
        "synonyms": ["staff", "headcount"],
        "key_columns": ["id", "department_id"],
        "dimensions": [
            {"name": "first_name"},
            {"name": "last_name"},
            {"name": "title", "synonyms": ["role"]},
            {"name": "hire_date", "type": "date"},
            {"name": "active", "type": "boolean"},
            {"name": "email"},
        ],
        "measures": [
            {"name": "salary", "aggregation": "avg"},
            {"name": "headcount", "column": "id", "aggregation": "count"},
        ],
        "joins": [
            {
                "target": "Department",
                "kind": "many_to_one",
                "local_columns": ["department_id"],
                "remote_columns": ["id"],
            },
        ],
    },
    {
        "name": "Deal",
        "table": "deals",
        "description": "Sales opportunities and closed revenue",
        "synonyms": ["opportunity", "sale"],
        "key_columns": ["id", "company_id", "owner_id"],
        "dimensions": [
            {"name": "stage", "values": ["open", "won", "lost"]},
            {"name": "closed_on", "type": "date"},
        ],
        "measures": [
            {"name": "amount", "aggregation": "sum"},
            {"name": "deal_count", "column": "id", "aggregation": "count_distinct"},
        ],
        "joins": [
            {
                "target": "Company",
                "kind": "many_to_one",
                "local_columns": ["company_id"],
                "remote_columns": ["id"],
            },
            {
                "target": "Employee",
                "kind": "many_to_one",
                "local_columns": ["owner_id"],
                "remote_columns": ["id"],
            },
        ],
    },
    {
        "name": "AuditLog",
        "table": "audit_log",
        "key_columns": ["id"],
        "dimensions": [{"name": "action"}],
        "measures": [{"name": "events", "column": "id", "aggregation": "count"}],
    },
]

STATISTICS: dict[str, dict[str, Any]] = {
    "companies": {"row_count": 100, "distinct_counts": {"industry": 5, "country": 10}},
    "departments": {"row_count": 400, "distinct_counts": {"name": 40}},
    "employees": {"row_count": 4000, "distinct_counts": {"title": 20}, "avg_row_bytes": 128},
    "deals": {"row_count": 20000, "distinct_counts": {"stage": 3}},
}

DDL = """
CREATE TABLE companies (
    id             INTEGER PRIMARY KEY,
    name           TEXT    NOT NULL,
    industry       TEXT    NOT NULL,
    country        TEXT    NOT NULL,
    founded_on     TEXT,
    annual_revenue REAL
);

CREATE TABLE departments (
    id         INTEGER PRIMARY KEY,
    company_id INTEGER NOT NULL REFERENCES companies(id),
    name       TEXT    NOT NULL,
    code       TEXT    NOT NULL,
    budget     REAL
);

CREATE TABLE employees (
    id            INTEGER PRIMARY KEY,
    department_id INTEGER NOT NULL REFERENCES departments(id),
    first_name    TEXT    NOT NULL,
    last_name     TEXT    NOT NULL,
    title         TEXT    NOT NULL,
    hire_date     TEXT,
    active        INTEGER NOT NULL,
    email         TEXT,
    salary        REAL
);

CREATE TABLE deals (
    id        INTEGER PRIMARY KEY,
    company_id INTEGER NOT NULL REFERENCES companies(id),
    owner_id  INTEGER NOT NULL REFERENCES employees(id),
    stage     TEXT    NOT NULL,
    closed_on TEXT,
    amount    REAL
);

CREATE TABLE audit_log (
    id     INTEGER PRIMARY KEY,
    action TEXT NOT NULL
);
"""

SEED: dict[str, list[tuple[Any, ...]]] = {
    "companies": [
        (1, "Acme", "Technology", "DE", "2010-01-01", 1_000_000.0),
        (2, "Beta", "Finance", "FR", "2015-06-01", 500_000.0),
        (3, "Gamma", "Technology", "US", "2018-03-15", 250_000.0),
        (4, "Delta", "Retail", "DE", "2001-09-30", 750_000.0),
    ],
    "departments": [
        (1, 1, "Engineering", "ENG", 500_000.0),
        (2, 1, "Sales", "SALES", 200_000.0),
        (3, 2, "Finance", "FIN", 300_000.0),
        (4, 3, "Engineering", "ENG", 150_000.0),
    ],
    "employees": [
        (1, 1, "Alice", "Smith", "Engineer", "2019-01-10", 1, "alice@acme.test", 120_000.0),
        (2, 1, "Bob", "Jones", "Engineer", "2020-02-01", 1, "bob@acme.test", 100_000.0),
        (3, 2, "Carol", "White", "Account Executive", "2018-05-20", 1, "carol@acme.test", 90_000.0),
        (4, 3, "Dan", "Brown", "Analyst", "2021-07-01", 0, None, 80_000.0),
        (5, 4, "Eve", "Black", "Engineer", "2022-03-03", 1, "eve@gamma.test", 110_000.0),
    ],
    "deals": [
        (1, 1, 3, "won", "2024-01-15", 50_000.0),
        (2, 1, 3, "open", None, 20_000.0),
        (3, 2, 4, "won", "2024-02-20", 30_000.0),
        (4, 3, 5, "lost", "2024-03-01", 10_000.0),
        (5, 2, 4, "won", "2024-04-11", 15_000.0),
    ],
    "audit_log": [
        (1, "login"),
        (2, "export"),
    ],
}


def load_catalog(with_statistics: bool = True) -> SemanticCatalog:
    """Build the sample catalog, optionally with table statistics."""
    return SemanticCatalog.from_records(
        CATALOG_RECORDS, STATISTICS if with_statistics else None
    )


def seed_database(conn: sqlite3.Connection) -> None:
    """Create the sample tables and insert the seed rows."""
    conn.executescript(DDL)
    for table, rows in SEED.items():
        placeholders = ",".join("?" for _ in rows[0])
        conn.executemany(f"INSERT INTO {table} VALUES ({placeholders})", rows)
    conn.commit()


def create_database(path: str | Path) -> Path:
    """Create a seeded SQLite database file at ``path``."""
    path = Path(path)
    conn = sqlite3.connect(path)
    try:
        seed_database(conn)
    finally:
        conn.close()
    return path
