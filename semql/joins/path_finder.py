"""Join path resolution over the catalog's join graph.

Declared joins are treated as undirected edges.  For a set of requested
entities, :class:`JoinPathFinder` runs one breadth-first search from each
requested entity, unions the shortest paths from that root to every other
requested entity, and keeps the root whose tree uses the fewest edges.
Unrequested entities are tried as hubs too: their trees are pruned of
unrequested leaves and re-rooted at the preferred requested entity.

Every search tracks visited entities, so catalogs containing join cycles
terminate in O(entities + joins) per root.
"""
from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum

from semql.catalog.catalog import SemanticCatalog
from semql.catalog.model import Join, JoinKind
from semql.errors import DisconnectedError, NoPathError, PlanError
from semql.schema.query_plan import EntityMentions

logger = logging.getLogger(__name__)


class TieBreakRule(str, Enum):
    """Deterministic rule for choosing between equally short join trees.

    ``most_frequent``
        Prefer the root referenced most often in the plan, then the most
        recently referenced one, then the alphabetically first.
    ``most_recent``
        Prefer the root referenced last in the plan, then alphabetical.
    ``alphabetical``
        Prefer the alphabetically first root.
    """

    MOST_FREQUENT = "most_frequent"
    MOST_RECENT = "most_recent"
    ALPHABETICAL = "alphabetical"


@dataclass(frozen=True)
class JoinStep:
    """One edge of a join path, oriented in traversal direction.

    Attributes:
        from_entity: Entity already present in the statement.
        to_entity: Entity this step brings in.
        join: The declared join backing this edge.
        owner: Entity that declared ``join``.
        reversed: ``True`` when the edge is traversed against its declaration.
    """

    from_entity: str
    to_entity: str
    join: Join
    owner: str
    reversed: bool

    @property
    def key_pairs(self) -> list[tuple[str, str]]:
        """``(from_column, to_column)`` pairs oriented from → to."""
        if self.reversed:
            return [(remote, local) for local, remote in self.join.key_pairs]
        return self.join.key_pairs

    @property
    def kind(self) -> JoinKind:
        """Cardinality seen from ``from_entity``."""
        return self.join.kind.reversed() if self.reversed else self.join.kind


@dataclass(frozen=True)
class JoinPath:
    """A resolved join tree rooted at ``root``.

    Steps are ordered so that every ``from_entity`` is either the root or
    the ``to_entity`` of an earlier step.
    """

    root: str
    steps: tuple[JoinStep, ...] = ()

    @property
    def entities(self) -> list[str]:
        return [self.root, *(step.to_entity for step in self.steps)]

    @property
    def is_trivial(self) -> bool:
        return not self.steps

    def __len__(self) -> int:
        return len(self.steps)


@dataclass(frozen=True)
class _Edge:
    neighbor: str
    join: Join
    owner: str
    reversed: bool


class JoinPathFinder:
    """Finds a minimal connecting join tree for a set of entities.

    Args:
        catalog: The semantic catalog.
        tie_break: Rule used when several roots yield equally short trees.
    """

    def __init__(
        self,
        catalog: SemanticCatalog,
        tie_break: TieBreakRule | str = TieBreakRule.MOST_FREQUENT,
    ) -> None:
        self._catalog = catalog
        self._tie_break = TieBreakRule(tie_break)
        self._adjacency: dict[str, list[_Edge]] = {name: [] for name in catalog.entity_names}
        for owner, join in catalog.edges():
            if join.target == owner.name:
                continue
            self._adjacency[owner.name].append(_Edge(join.target, join, owner.name, False))
            self._adjacency[join.target].append(_Edge(owner.name, join, owner.name, True))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_path(
        self,
        entities: Iterable[str],
        mentions: EntityMentions | None = None,
    ) -> JoinPath:
        """Resolve a join path connecting every entity in ``entities``.

        Args:
            entities: Requested entity identifiers (non-empty).
            mentions: Reference counts / positions from the plan, used by
                the tie-break rule.  Defaults to one mention per entity in
                the given order.

        Returns:
            A :class:`JoinPath`.  A single entity yields an empty path.

        Raises:
            PlanError: If ``entities`` is empty.
            UnknownEntityError: If an entity is not in the catalog.
            NoPathError: If a requested entity declares no joins at all.
            DisconnectedError: If the requested entities span more than one
                connected component.
        """
        requested = list(dict.fromkeys(entities))
        if not requested:
            raise PlanError("At least one entity is required to resolve a join path.")
        for name in requested:
            self._catalog.lookup_entity(name)

        mentions = mentions or EntityMentions(
            counts={name: 1 for name in requested},
            last_position={name: i for i, name in enumerate(requested)},
        )
        ranked_roots = sorted(requested, key=lambda name: self._preference(name, mentions))

        if len(requested) == 1:
            return JoinPath(root=requested[0])

        isolated = [name for name in requested if not self._adjacency[name]]
        if isolated:
            raise NoPathError(ranked_roots[0], isolated)

        best: JoinPath | None = None
        for root in ranked_roots:
            candidate = self._tree_from(root, requested)
            if candidate is None:
                continue
            # Roots are visited in preference order, so only a strictly
            # shorter tree displaces the current best.
            if best is None or len(candidate) < len(best):
                best = candidate

        if best is not None:
            wanted = set(requested)
            for hub in sorted(self._adjacency):
                if hub in wanted or not self._adjacency[hub]:
                    continue
                candidate = self._tree_from(hub, requested)
                if candidate is None:
                    continue
                candidate = self._prune(candidate, wanted, ranked_roots[0])
                if len(candidate) < len(best):
                    best = candidate

        if best is None:
            root = ranked_roots[0]
            reachable = self._reachable(root)
            unreachable = [name for name in requested if name not in reachable]
            raise DisconnectedError(root, unreachable)

        logger.debug(
            "Join path for %s rooted at %s with %d steps", requested, best.root, len(best)
        )
        return best

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _bfs(self, root: str) -> dict[str, tuple[str, _Edge] | None]:
        """Return BFS parent pointers from ``root`` (discovery-ordered)."""
        parents: dict[str, tuple[str, _Edge] | None] = {root: None}
        queue: deque[str] = deque([root])
        while queue:
            current = queue.popleft()
            for edge in self._adjacency[current]:
                if edge.neighbor in parents:
                    continue
                parents[edge.neighbor] = (current, edge)
                queue.append(edge.neighbor)
        return parents

    def _reachable(self, root: str) -> set[str]:
        return set(self._bfs(root))

    def _tree_from(self, root: str, requested: list[str]) -> JoinPath | None:
        """Union of shortest paths from ``root`` to every requested entity."""
        parents = self._bfs(root)
        if any(name not in parents for name in requested):
            return None

        needed: set[str] = set()
        for target in requested:
            node = target
            while parents[node] is not None:
                if node in needed:
                    break
                needed.add(node)
                node = parents[node][0]

        # ``parents`` preserves BFS discovery order, so parents precede
        # children and every step's from_entity is already joined.
        steps: list[JoinStep] = []
        for node, link in parents.items():
            if node not in needed or link is None:
                continue
            parent, edge = link
            steps.append(
                JoinStep(
                    from_entity=parent,
                    to_entity=node,
                    join=edge.join,
                    owner=edge.owner,
                    reversed=edge.reversed,
                )
            )
        return JoinPath(root=root, steps=tuple(steps))

    def _prune(self, path: JoinPath, wanted: set[str], root: str) -> JoinPath:
        """Drop unrequested leaves from ``path`` and re-root it at ``root``."""
        steps = list(path.steps)
        degree: Counter[str] = Counter()
        for step in steps:
            degree[step.from_entity] += 1
            degree[step.to_entity] += 1
        pruned = True
        while pruned:
            pruned = False
            for step in list(steps):
                ends = (step.from_entity, step.to_entity)
                if any(n not in wanted and degree[n] == 1 for n in ends):
                    steps.remove(step)
                    degree[step.from_entity] -= 1
                    degree[step.to_entity] -= 1
                    pruned = True

        incident: dict[str, list[JoinStep]] = {}
        for step in steps:
            incident.setdefault(step.from_entity, []).append(step)
            incident.setdefault(step.to_entity, []).append(step)
        ordered: list[JoinStep] = []
        seen = {root}
        queue: deque[str] = deque([root])
        while queue:
            current = queue.popleft()
            for step in incident.get(current, ()):
                if step.from_entity == current:
                    oriented = step
                else:
                    oriented = replace(
                        step,
                        from_entity=step.to_entity,
                        to_entity=step.from_entity,
                        reversed=not step.reversed,
                    )
                if oriented.to_entity in seen:
                    continue
                seen.add(oriented.to_entity)
                queue.append(oriented.to_entity)
                ordered.append(oriented)
        return JoinPath(root=root, steps=tuple(ordered))

    # ------------------------------------------------------------------
    # Tie-break
    # ------------------------------------------------------------------

    def _preference(self, name: str, mentions: EntityMentions) -> tuple:
        """Sort key: smaller is preferred."""
        count = mentions.counts.get(name, 0)
        last = mentions.last_position.get(name, -1)
        if self._tie_break is TieBreakRule.MOST_FREQUENT:
            return (-count, -last, name)
        if self._tie_break is TieBreakRule.MOST_RECENT:
            return (-last, name)
        return (name,)
