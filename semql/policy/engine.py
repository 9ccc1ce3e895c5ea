"""Security policy and statement validation.

``SecurityValidator`` is the last gate before a statement is rendered.  It
inspects the typed :class:`~semql.schema.statement.SqlStatement` (never SQL
text) and enforces, in order:

* **Statement kind** - only read-only kinds (``select`` / ``with``) that are
  also listed in :attr:`SecurityPolicy.allowed_kinds` pass.  No
  configuration can admit a write kind.
* **Table allowlist** - every physical table referenced anywhere in the
  statement, CTE bodies included, must be allowed.  CTE names are virtual
  and are not checked against the allowlist.  An empty allowlist denies
  everything.
* **Column access control** - every column must be addressed through a
  FROM / JOIN qualifier bound to its own table; then a globally denied
  column list, plus per-table positive allowlists (``allowed_columns``) and
  negative blocklists (``denied_columns``).
* **LIMIT enforcement** - injects ``default_limit`` when absent; clamps or
  rejects limits above ``max_limit``.

The first violation stops validation.  Every violation is logged at WARNING
before it is raised.

Example - per-role column allowlist::

    analyst_policy = SecurityPolicy(
        allowed_tables=["companies", "deals"],
        default_limit=100,
        tables={
            "companies": TablePolicy(
                allowed_columns=["id", "name", "industry", "country"],
            ),
        },
    )
    validated = SecurityValidator(analyst_policy).validate(statement)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from semql.errors import (
    DisallowedColumnError,
    DisallowedStatementKindError,
    DisallowedTableError,
    LimitExceededError,
    PolicyConfigError,
    PolicyViolationError,
)
from semql.schema.statement import READ_ONLY_KINDS, SqlStatement, StatementKind

if TYPE_CHECKING:
    from semql.catalog.catalog import SemanticCatalog

logger = logging.getLogger(__name__)

_APPROVAL = object()


class TablePolicy(BaseModel):
    """Per-table column rules.

    Attributes:
        allowed_columns: Positive allowlist.  When non-empty, **only** the
            listed columns may be referenced on this table.  Empty means
            every column is allowed (subject to ``denied_columns``).
        denied_columns: Columns that may never be referenced on this table.
            Applied on top of ``allowed_columns`` when both are set.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    allowed_columns: tuple[str, ...] = ()
    denied_columns: tuple[str, ...] = ()


class SecurityPolicy(BaseModel):
    """Read-only access policy applied to every statement.

    Attributes:
        allowed_tables: Physical tables a statement may reference.  Empty
            means nothing is allowed.
        allowed_kinds: Statement kinds that may pass.  Restricted to
            read-only kinds.
        denied_columns: Column names denied on every table.
        tables: Per-table column rules keyed by table name.
        max_limit: Upper bound on a statement's LIMIT.
        clamp_limit: If ``True``, an over-limit LIMIT is lowered to
            ``max_limit``; otherwise it is rejected.
        default_limit: LIMIT injected when a statement has none (``0`` = no
            injection).

    Raises:
        PolicyConfigError: If a write kind is configured, or
            ``default_limit`` exceeds ``max_limit``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    allowed_tables: tuple[str, ...] = ()
    allowed_kinds: tuple[StatementKind, ...] = (StatementKind.SELECT, StatementKind.WITH)
    denied_columns: tuple[str, ...] = ()
    tables: dict[str, TablePolicy] = Field(default_factory=dict)
    max_limit: int = Field(default=1000, gt=0)
    clamp_limit: bool = True
    default_limit: int = Field(default=100, ge=0)

    @field_validator("allowed_kinds")
    @classmethod
    def _read_only_kinds(cls, kinds: tuple[StatementKind, ...]) -> tuple[StatementKind, ...]:
        writes = [k.value for k in kinds if k not in READ_ONLY_KINDS]
        if writes:
            raise PolicyConfigError(
                f"Statement kinds {writes} are not read-only and cannot be allowed.",
                details={"kinds": writes},
            )
        return kinds

    @model_validator(mode="after")
    def _check_limits(self) -> SecurityPolicy:
        if self.default_limit > self.max_limit:
            raise PolicyConfigError(
                f"default_limit={self.default_limit} exceeds max_limit={self.max_limit}.",
                details={"default_limit": self.default_limit, "max_limit": self.max_limit},
            )
        return self

    @classmethod
    def for_catalog(cls, catalog: SemanticCatalog, **overrides: Any) -> SecurityPolicy:
        """Build a policy that allows every table backing ``catalog``.

        Args:
            catalog: The semantic catalog.
            **overrides: Any other :class:`SecurityPolicy` field.
        """
        overrides.setdefault("allowed_tables", tuple(catalog.table_names))
        return cls(**overrides)

    def denied_columns_for(self, table: str) -> set[str]:
        """Return global plus per-table denied columns for ``table``."""
        table_policy = self.tables.get(table)
        table_denied = table_policy.denied_columns if table_policy is not None else ()
        return set(self.denied_columns) | set(table_denied)

    def is_column_allowed(self, table: str, column: str) -> bool:
        if column in self.denied_columns_for(table):
            return False
        table_policy = self.tables.get(table)
        if table_policy is not None and table_policy.allowed_columns:
            return column in table_policy.allowed_columns
        return True


def load_policy(path: str | Path) -> SecurityPolicy:
    """Load a :class:`SecurityPolicy` from a JSON or YAML file.

    Files ending in ``.yaml`` / ``.yml`` are parsed with PyYAML; anything
    else is parsed as JSON.

    Raises:
        PolicyConfigError: If the file cannot be parsed or does not describe
            a valid policy.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise PolicyConfigError(f"Policy file '{path}' cannot be parsed: {exc}") from exc
    if not isinstance(data, dict):
        raise PolicyConfigError(f"Policy file '{path}' must contain a mapping.")
    try:
        return SecurityPolicy.model_validate(data)
    except PydanticValidationError as exc:
        raise PolicyConfigError(
            f"Policy file '{path}' is invalid: {exc}",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


@dataclass(frozen=True)
class ValidatedStatement:
    """A statement that passed :class:`SecurityValidator`.

    Only :meth:`SecurityValidator.validate` produces approved instances; the
    renderer refuses any other.

    Attributes:
        statement: The approved statement, possibly with a defaulted or
            clamped LIMIT.
        notes: Human-readable notes about adjustments made during validation.
    """

    statement: SqlStatement
    notes: tuple[str, ...] = ()
    _approval: object = field(default=None, init=False, repr=False, compare=False)

    @property
    def approved(self) -> bool:
        return self._approval is _APPROVAL


class SecurityValidator:
    """Checks statements against a :class:`SecurityPolicy`.

    Uses the Strategy pattern: the policy is the swappable strategy, the
    validator is the context that executes it.

    Args:
        policy: Access rules for this run.
    """

    def __init__(self, policy: SecurityPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> SecurityPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, statement: SqlStatement) -> ValidatedStatement:
        """Run every check in order and return the approved statement.

        Steps executed in order:

        1. Statement kind.
        2. Table allowlist (CTE bodies included).
        3. Column access (qualifier binding, global deny, per-table deny /
           allow).
        4. LIMIT default / clamp.

        Args:
            statement: A typed statement.

        Returns:
            :class:`ValidatedStatement` wrapping the (possibly adjusted)
            statement.

        Raises:
            DisallowedStatementKindError: If the kind is not allowed.
            DisallowedTableError: If a referenced table is not allowed.
            DisallowedColumnError: If a referenced column is denied.
            LimitExceededError: If the LIMIT is too large and clamping is off.
        """
        try:
            self._check_kind(statement)
            self._check_tables(statement)
            self._check_columns(statement)
            statement, notes = self._enforce_limit(statement)
        except PolicyViolationError as exc:
            logger.warning("Policy violation [%s]: %s", exc.code, exc)
            raise
        validated = ValidatedStatement(statement=statement, notes=tuple(notes))
        object.__setattr__(validated, "_approval", _APPROVAL)
        return validated

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_kind(self, statement: SqlStatement) -> None:
        kinds = [statement.kind, *(cte.statement.kind for cte in statement.ctes)]
        for kind in kinds:
            if kind not in READ_ONLY_KINDS or kind not in self._policy.allowed_kinds:
                raise DisallowedStatementKindError(
                    kind.value, [k.value for k in self._policy.allowed_kinds]
                )

    def _check_tables(self, statement: SqlStatement) -> None:
        allowed = set(self._policy.allowed_tables)
        for table in sorted(statement.referenced_tables()):
            if table not in allowed:
                raise DisallowedTableError(table, sorted(allowed))

    def _check_columns(self, statement: SqlStatement) -> None:
        misbound = statement.misbound_columns()
        if misbound:
            stray = misbound[0]
            raise DisallowedColumnError(
                stray.table,
                stray.name,
                self._effective_allowed_columns(stray.table),
                reason=f"Qualifier '{stray.qualifier}' is not bound to table '{stray.table}'.",
            )
        for table, column in sorted(statement.referenced_columns()):
            if not self._policy.is_column_allowed(table, column):
                raise DisallowedColumnError(table, column, self._effective_allowed_columns(table))

    def _effective_allowed_columns(self, table: str) -> list[str]:
        table_policy = self._policy.tables.get(table)
        if table_policy is None or not table_policy.allowed_columns:
            return []
        denied = self._policy.denied_columns_for(table)
        return [c for c in table_policy.allowed_columns if c not in denied]

    def _enforce_limit(self, statement: SqlStatement) -> tuple[SqlStatement, list[str]]:
        notes: list[str] = []
        policy = self._policy
        if statement.limit is None:
            if policy.default_limit > 0:
                notes.append(f"LIMIT {policy.default_limit} applied by default.")
                return statement.with_limit(policy.default_limit), notes
            return statement, notes
        if statement.limit > policy.max_limit:
            if not policy.clamp_limit:
                raise LimitExceededError(statement.limit, policy.max_limit)
            notes.append(f"LIMIT {statement.limit} clamped to {policy.max_limit}.")
            return statement.with_limit(policy.max_limit), notes
        return statement, notes
