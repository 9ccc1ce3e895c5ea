"""In-memory semantic catalog.

The :class:`SemanticCatalog` indexes entities, their fields, declared joins,
and optional table statistics.  It is built once at process start and is
read-only afterwards, so concurrent runs may share a single instance.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from semql.catalog.model import Entity, Join, TableStatistics
from semql.errors import CatalogError, UnknownEntityError

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class EntitySummary:
    """A ranked search hit.

    Attributes:
        name: Entity identifier.
        table: Backing table.
        description: Entity description, if any.
        dimensions: Dimension names.
        measures: Measure names.
        score: Lexical match score (higher is better).
    """

    name: str
    table: str
    description: str | None
    dimensions: tuple[str, ...]
    measures: tuple[str, ...]
    score: float


@dataclass(frozen=True)
class SearchDocument:
    """Searchable text for one entity, weighted by where the token came from."""

    entity: str
    name_tokens: frozenset[str]
    text_tokens: frozenset[str]
    field_tokens: frozenset[str]


def tokenize(text: str | None) -> set[str]:
    """Lower-case alphanumeric tokens, splitting camelCase and snake_case."""
    if not text:
        return set()
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", text)
    return set(_TOKEN_RE.findall(spaced.lower()))


class SemanticCatalog:
    """Read-only index of entities and their join relationships.

    Args:
        entities: Validated entity records.
        statistics: Optional table statistics keyed by backing table name.

    Raises:
        CatalogError: On duplicate entity names, join targets that are not
            declared entities, or join keys that are not columns of the
            owning entity.
    """

    def __init__(
        self,
        entities: Iterable[Entity],
        statistics: Mapping[str, TableStatistics] | None = None,
    ) -> None:
        self._entities: dict[str, Entity] = {}
        for entity in entities:
            if entity.name in self._entities:
                raise CatalogError(
                    f"Entity '{entity.name}' is declared twice.",
                    details={"entity": entity.name},
                )
            self._entities[entity.name] = entity
        self._statistics: dict[str, TableStatistics] = dict(statistics or {})
        self._check_joins()
        self._search_index = tuple(self._index(e) for e in self._entities.values())
        logger.debug(
            "Catalog loaded: %d entities, %d joins",
            len(self._entities),
            sum(1 for _ in self.edges()),
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        statistics: Mapping[str, Mapping[str, Any] | TableStatistics] | None = None,
    ) -> SemanticCatalog:
        """Build a catalog from already-parsed entity mappings.

        Args:
            records: One mapping per entity, shaped like :class:`Entity`.
            statistics: Optional table statistics keyed by table name.

        Raises:
            CatalogError: If any record fails structural validation.
        """
        entities: list[Entity] = []
        for record in records:
            try:
                entities.append(Entity.model_validate(record))
            except PydanticValidationError as exc:
                name = record.get("name", "<unnamed>") if isinstance(record, Mapping) else "<invalid>"
                raise CatalogError(
                    f"Entity '{name}' is malformed: {exc}",
                    details={"entity": name, "errors": exc.errors(include_url=False)},
                ) from exc
        stats: dict[str, TableStatistics] = {}
        for table, raw in (statistics or {}).items():
            try:
                stats[table] = (
                    raw if isinstance(raw, TableStatistics) else TableStatistics.model_validate(raw)
                )
            except PydanticValidationError as exc:
                raise CatalogError(
                    f"Statistics for table '{table}' are malformed: {exc}",
                    details={"table": table},
                ) from exc
        return cls(entities, stats)

    def _check_joins(self) -> None:
        for entity in self._entities.values():
            for join in entity.joins:
                target = self._entities.get(join.target)
                if target is None:
                    raise CatalogError(
                        f"Entity '{entity.name}' declares a join to undeclared entity "
                        f"'{join.target}'.",
                        details={"entity": entity.name, "target": join.target},
                    )
                self._check_join_columns(entity, join.local_columns, join)
                self._check_join_columns(target, join.remote_columns, join)

    @staticmethod
    def _check_join_columns(entity: Entity, columns: Iterable[str], join: Join) -> None:
        known = entity.column_names
        for col in columns:
            if col not in known:
                raise CatalogError(
                    f"Join to '{join.target}' references column '{col}', which entity "
                    f"'{entity.name}' does not declare.",
                    details={"entity": entity.name, "column": col, "known_columns": known},
                )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_entity(self, name: str) -> Entity | None:
        """Returns the entity called ``name``, or ``None``."""
        return self._entities.get(name)

    def lookup_entity(self, name: str) -> Entity:
        """Returns the entity called ``name``.

        Raises:
            UnknownEntityError: If no such entity is declared.
        """
        entity = self._entities.get(name)
        if entity is None:
            raise UnknownEntityError(name, self.entity_names)
        return entity

    def entity_for_table(self, table: str) -> Entity | None:
        """Returns the first entity backed by ``table``, or ``None``."""
        for entity in self._entities.values():
            if entity.table == table:
                return entity
        return None

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    @property
    def entities(self) -> list[Entity]:
        """Returns all entities in declaration order."""
        return list(self._entities.values())

    @property
    def entity_names(self) -> list[str]:
        """Returns all entity names in declaration order."""
        return list(self._entities)

    @property
    def table_names(self) -> list[str]:
        """Returns distinct backing table names in declaration order."""
        return list(dict.fromkeys(e.table for e in self._entities.values()))

    def edges(self) -> Iterator[tuple[Entity, Join]]:
        """Yields ``(owner, join)`` for every declared join, in order."""
        for entity in self._entities.values():
            for join in entity.joins:
                yield entity, join

    def statistics_for(self, table: str) -> TableStatistics | None:
        """Returns statistics for ``table``, or ``None`` if not collected."""
        return self._statistics.get(table)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @property
    def search_index(self) -> tuple[SearchDocument, ...]:
        """The searchable documents, one per entity, for external rankers."""
        return self._search_index

    def search_entities(self, query_text: str, limit: int = 10) -> list[EntitySummary]:
        """Rank entities by lexical overlap with ``query_text``.

        Name and synonym matches weigh 3, field-name matches 2, and
        description matches 1.  Entities with no overlap are omitted; ties
        keep declaration order.

        Args:
            query_text: Free text.
            limit: Maximum number of results.

        Returns:
            Ranked :class:`EntitySummary` list.
        """
        terms = tokenize(query_text)
        if not terms:
            return []
        scored: list[tuple[float, int, SearchDocument]] = []
        for position, doc in enumerate(self._search_index):
            score = (
                3.0 * len(terms & doc.name_tokens)
                + 2.0 * len(terms & doc.field_tokens)
                + 1.0 * len(terms & doc.text_tokens)
            )
            if score > 0:
                scored.append((score, position, doc))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [self._summarize(doc.entity, score) for score, _, doc in scored[:limit]]

    def _summarize(self, name: str, score: float) -> EntitySummary:
        entity = self._entities[name]
        return EntitySummary(
            name=entity.name,
            table=entity.table,
            description=entity.description,
            dimensions=tuple(d.name for d in entity.dimensions),
            measures=tuple(m.name for m in entity.measures),
            score=score,
        )

    @staticmethod
    def _index(entity: Entity) -> SearchDocument:
        name_tokens = tokenize(entity.name) | tokenize(entity.table)
        for synonym in entity.synonyms:
            name_tokens |= tokenize(synonym)
        field_tokens: set[str] = set()
        text_tokens = tokenize(entity.description)
        for field in (*entity.dimensions, *entity.measures):
            field_tokens |= tokenize(field.name)
            for synonym in field.synonyms:
                field_tokens |= tokenize(synonym)
            text_tokens |= tokenize(field.description)
        return SearchDocument(
            entity=entity.name,
            name_tokens=frozenset(name_tokens),
            text_tokens=frozenset(text_tokens),
            field_tokens=frozenset(field_tokens),
        )
