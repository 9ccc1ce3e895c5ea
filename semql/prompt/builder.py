"""Prompt builder: constructs system and user prompts for external planners.

The planner receives four structured inputs:
1. **Catalog summary** – entities, their dimensions and measures, and which
   entities can be joined.
2. **Policy summary** – the tables, row limit, and read-only rules in force.
3. **Capabilities** – the operations callable in the run's current phase.
4. **Plan format** – the exact QueryPlan JSON shape.

``PromptBuilder`` assembles these into a system prompt and a user prompt.
The library does NOT call a model; callers use the returned strings with
their own model SDK.
"""
from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass

from semql.catalog.catalog import SemanticCatalog
from semql.errors import DatabaseError
from semql.phase.controller import Capability
from semql.policy.engine import SecurityPolicy

_SYSTEM_PROMPT_TEMPLATE = """\
You are a query planner for a semantic analytics catalog.

## Your role
- Output a structured QueryPlan (JSON only).
- Do NOT output SQL strings.
- Do NOT output commentary, explanations, or markdown.
- Do NOT invent entities or fields; reference them as "Entity.field".
- Do NOT describe joins; they are resolved from the catalog.

## Exact output format: follow this precisely

Keys (omit unused): entities, dimensions, measures, filters, group_by,
order_by, limit

- entities:   ["Company", "Deal"]            every entity you reference
- dimensions: ["Company.industry"]           groupable fields to select
- measures:   ["Deal.amount"]                aggregated fields to select
- filters:    [{{"field": "Company.country", "op": "eq", "value": "DE"}}]
    ops: eq, ne, gt, gte, lt, lte, in, not_in, between, like, ilike, is_null,
         is_not_null
    "in" / "not_in" take a non-empty list, "between" takes [low, high],
    "is_null" / "is_not_null" take no value.
- group_by:   leave empty; grouping is derived from the selected dimensions.
- order_by:   [{{"field": "Deal.amount", "direction": "desc"}}]
- limit:      a positive integer

### Complete example
{{
  "entities": ["Company", "Deal"],
  "dimensions": ["Company.industry"],
  "measures": ["Deal.amount"],
  "filters": [{{"field": "Company.country", "op": "in", "value": ["DE", "FR"]}}],
  "order_by": [{{"field": "Deal.amount", "direction": "desc"}}],
  "limit": 20
}}

## Policy summary
{policy_summary}

## Operations available now
{capabilities}

## Catalog (entities, fields, and joinable entities you may reference)
{catalog_summary}

## Error repair
If the system returns a structured error, output only a corrected QueryPlan JSON.
Do not include commentary.  Do not change unrelated parts of the plan.
"""

_USER_PROMPT_TEMPLATE = """\
{question}
"""


@dataclass
class PromptComponents:
    """The prompt parts ready to pass to a model.

    Attributes:
        system_prompt: Full system prompt including catalog and policy.
        user_prompt: The user's question.
        catalog_json: The catalog summary as a JSON string (for logging or
            debugging).
    """

    system_prompt: str
    user_prompt: str
    catalog_json: str


class PromptBuilder:
    """Builds structured prompts for the external planner.

    Args:
        catalog: Catalog visible to the planner.
        policy: Policy in force.  Tables it does not allow, and columns it
            denies, are left out of the catalog summary.
    """

    def __init__(self, catalog: SemanticCatalog, policy: SecurityPolicy) -> None:
        self._catalog = catalog
        self._policy = policy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(
        self,
        question: str,
        capabilities: Iterable[Capability] | None = None,
    ) -> PromptComponents:
        """Build system and user prompts for ``question``.

        Args:
            question: The user's natural-language question.
            capabilities: Operations callable in the current phase; omitted
                from the prompt when ``None``.
        """
        catalog_json = self._build_catalog_summary()
        if capabilities is None:
            capabilities_text = "(not restricted)"
        else:
            capabilities_text = ", ".join(sorted(Capability(c).value for c in capabilities)) or "(none)"

        system_prompt = _SYSTEM_PROMPT_TEMPLATE.format(
            policy_summary=self._build_policy_summary(),
            capabilities=capabilities_text,
            catalog_summary=catalog_json,
        )
        return PromptComponents(
            system_prompt=system_prompt,
            user_prompt=_USER_PROMPT_TEMPLATE.format(question=question),
            catalog_json=catalog_json,
        )

    def build_repair_prompt(self, error: DatabaseError, previous_sql: str) -> PromptComponents:
        """Build a correction prompt after a classified execution failure.

        Args:
            error: The classified error from the repair loop.
            previous_sql: The SQL that failed.
        """
        error_text = json.dumps(error.to_error_response(), indent=2, default=str)
        repair_question = (
            f"The following SQL, compiled from your QueryPlan, failed:\n"
            f"```sql\n{previous_sql}\n```\n\n"
            f"Error:\n```json\n{error_text}\n```\n\n"
            f"Output only a corrected QueryPlan JSON. "
            f"Do not include commentary. "
            f"Do not change unrelated parts of the plan."
        )
        return self.build(repair_question)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_catalog_summary(self) -> str:
        allowed_tables = set(self._policy.allowed_tables)
        summary: dict = {"entities": []}
        for entity in self._catalog.entities:
            if entity.table not in allowed_tables:
                continue
            dims = [
                {
                    "name": d.name,
                    "type": d.type.value,
                    **({"values": list(d.values)} if d.values else {}),
                    **({"description": d.description} if d.description else {}),
                }
                for d in entity.dimensions
                if self._policy.is_column_allowed(entity.table, d.column)
            ]
            measures = [
                {
                    "name": m.name,
                    "aggregation": m.aggregation.value,
                    **({"description": m.description} if m.description else {}),
                }
                for m in entity.measures
                if self._policy.is_column_allowed(entity.table, m.column)
            ]
            entry: dict = {"name": entity.name, "dimensions": dims, "measures": measures}
            if entity.description:
                entry["description"] = entity.description
            joins = sorted(
                {join.target for join in entity.joins}
                | {owner.name for owner, join in self._catalog.edges() if join.target == entity.name}
            )
            if joins:
                entry["joins_with"] = joins
            summary["entities"].append(entry)
        return json.dumps(summary, indent=2)

    def _build_policy_summary(self) -> str:
        policy = self._policy
        lines = [
            "Read-only: only SELECT statements are ever executed.",
            f"At most {policy.max_limit} rows are returned per query.",
        ]
        if policy.default_limit:
            lines.append(f"Queries without a limit return at most {policy.default_limit} rows.")
        return "\n".join(lines)
