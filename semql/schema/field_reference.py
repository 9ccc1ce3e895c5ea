"""Typed field-reference class.

Plans name fields as ``"Entity.field"``.  :class:`FieldReference` owns the
parsing and catalog-resolution logic so the builder and the plan validators
do not repeat ``ref.split(".", 1)`` everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from semql.errors import UnknownFieldError

if TYPE_CHECKING:
    from semql.catalog.catalog import SemanticCatalog
    from semql.catalog.model import Dimension, Entity, Measure


@dataclass(frozen=True)
class FieldReference:
    """A parsed ``Entity.field`` reference.

    Attributes:
        entity: Entity identifier.
        field: Field name on that entity.
    """

    entity: str
    field: str

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, ref: str) -> FieldReference:
        """Parse an ``"Entity.field"`` string.

        Raises:
            ValueError: If ``ref`` is not qualified by an entity.
        """
        entity, sep, field = ref.partition(".")
        if not sep or not entity or not field:
            raise ValueError(f"Field reference '{ref}' must have the form 'Entity.field'.")
        return cls(entity=entity, field=field)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_dimension(self, catalog: SemanticCatalog) -> tuple[Entity, Dimension]:
        """Return the owning entity and the dimension this reference names.

        Raises:
            UnknownEntityError: If the entity is not declared.
            UnknownFieldError: If the field is missing or is a measure.
        """
        entity = catalog.lookup_entity(self.entity)
        dimension = entity.get_dimension(self.field)
        if dimension is None:
            reason = (
                "is a measure, not a dimension"
                if entity.get_measure(self.field) is not None
                else f"is not a dimension of '{self.entity}'"
            )
            raise UnknownFieldError(str(self), reason, [d.name for d in entity.dimensions])
        return entity, dimension

    def resolve_measure(self, catalog: SemanticCatalog) -> tuple[Entity, Measure]:
        """Return the owning entity and the measure this reference names.

        Raises:
            UnknownEntityError: If the entity is not declared.
            UnknownFieldError: If the field is missing or is a dimension.
        """
        entity = catalog.lookup_entity(self.entity)
        measure = entity.get_measure(self.field)
        if measure is None:
            reason = (
                "is a dimension, not a measure"
                if entity.get_dimension(self.field) is not None
                else f"is not a measure of '{self.entity}'"
            )
            raise UnknownFieldError(str(self), reason, [m.name for m in entity.measures])
        return entity, measure

    def __str__(self) -> str:
        return f"{self.entity}.{self.field}"
