"""
Grade progression graph.

Built once per rollover run from every grade level of a school. Resolution is a single hop along
next_grade_id; the whole graph is checked for cycles and for successors that point at a foreign or
inactive grade before any resolution is trusted.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.core.exceptions import GradeGraphError
from enrollment_engine.core.models import GradeLevel


@dataclass(frozen=True)
class GradeNode:
    id: UUID
    school_id: UUID
    name: str
    order_index: int
    next_grade_id: Optional[UUID]
    is_graduation_grade: bool
    is_active: bool


@dataclass(frozen=True)
class Resolution:
    """Outcome of one hop: either a successor grade or terminal (graduation)."""

    grade_id: UUID
    next_grade_id: Optional[UUID]

    @property
    def is_terminal(self) -> bool:
        return self.next_grade_id is None


@dataclass
class GradeProgressionGraph:
    school_id: UUID
    nodes: Dict[UUID, GradeNode] = field(default_factory=dict)

    @classmethod
    def from_nodes(cls, school_id: UUID, nodes: Iterable[GradeNode]) -> "GradeProgressionGraph":
        return cls(school_id=school_id, nodes={n.id: n for n in nodes})

    def active_nodes(self) -> List[GradeNode]:
        return sorted(
            (n for n in self.nodes.values() if n.is_active and n.school_id == self.school_id),
            key=lambda n: (n.order_index, n.name),
        )

    def problems(self) -> List[str]:
        """Configuration errors: dangling, foreign or inactive successors, and cycles."""
        errors: List[str] = []
        for node in self.active_nodes():
            if node.next_grade_id is None:
                continue
            target = self.nodes.get(node.next_grade_id)
            if target is None or target.school_id != self.school_id:
                errors.append(f"Grade '{node.name}' points to a next grade outside this school")
            elif not target.is_active:
                errors.append(f"Grade '{node.name}' points to inactive grade '{target.name}'")
            elif target.id == node.id:
                errors.append(f"Grade '{node.name}' points to itself")
        if errors:
            return errors
        for cycle in self._cycles():
            names = " -> ".join(self.nodes[g].name for g in cycle)
            errors.append(f"Grade progression cycle: {names}")
        return errors

    def _cycles(self) -> List[List[UUID]]:
        # Out-degree is at most one, so each walk either ends or enters a loop.
        state: Dict[UUID, int] = {}  # 1 = on current path, 2 = finished
        cycles: List[List[UUID]] = []
        for start in (n.id for n in self.active_nodes()):
            if start in state:
                continue
            path: List[UUID] = []
            current: Optional[UUID] = start
            while current is not None and current in self.nodes and current not in state:
                state[current] = 1
                path.append(current)
                current = self.nodes[current].next_grade_id
            if current is not None and state.get(current) == 1:
                cycles.append(path[path.index(current):])
            for g in path:
                state[g] = 2
        return cycles

    def validate(self) -> None:
        errors = self.problems()
        if errors:
            raise GradeGraphError("; ".join(errors))

    def resolve_next(self, grade_level_id: UUID) -> Resolution:
        """One hop along next_grade_id. Call validate() first."""
        node = self.nodes.get(grade_level_id)
        if node is None or node.school_id != self.school_id:
            raise GradeGraphError(f"Grade level {grade_level_id} does not belong to this school")
        if not node.is_active:
            raise GradeGraphError(f"Grade '{node.name}' is inactive")
        return Resolution(grade_id=node.id, next_grade_id=node.next_grade_id)

    def unflagged_terminals(self, grade_ids: Iterable[UUID]) -> List[GradeNode]:
        """Grades without a successor that are not explicitly marked as graduation grades."""
        out = []
        for gid in grade_ids:
            node = self.nodes.get(gid)
            if node and node.next_grade_id is None and not node.is_graduation_grade:
                out.append(node)
        return sorted(out, key=lambda n: (n.order_index, n.name))

    def would_create_problem(self, grade_id: UUID, next_grade_id: Optional[UUID]) -> List[str]:
        """Problems the graph would have if grade_id's successor changed to next_grade_id."""
        node = self.nodes.get(grade_id)
        if node is None:
            return [f"Grade level {grade_id} not found"]
        changed = GradeNode(
            id=node.id,
            school_id=node.school_id,
            name=node.name,
            order_index=node.order_index,
            next_grade_id=next_grade_id,
            is_graduation_grade=node.is_graduation_grade,
            is_active=node.is_active,
        )
        trial = GradeProgressionGraph(school_id=self.school_id, nodes={**self.nodes, grade_id: changed})
        return trial.problems()


def node_from_model(g: GradeLevel) -> GradeNode:
    return GradeNode(
        id=g.id,
        school_id=g.school_id,
        name=g.name,
        order_index=g.order_index or 0,
        next_grade_id=g.next_grade_id,
        is_graduation_grade=bool(g.is_graduation_grade),
        is_active=bool(g.is_active),
    )


async def load_graph(db: AsyncSession, school_id: UUID) -> GradeProgressionGraph:
    """Load the school's grades plus any foreign grade referenced as a successor (to report it)."""
    result = await db.execute(select(GradeLevel).where(GradeLevel.school_id == school_id))
    grades = list(result.scalars().all())
    known = {g.id for g in grades}
    dangling = {g.next_grade_id for g in grades if g.next_grade_id and g.next_grade_id not in known}
    if dangling:
        extra = await db.execute(select(GradeLevel).where(GradeLevel.id.in_(dangling)))
        grades.extend(extra.scalars().all())
    return GradeProgressionGraph.from_nodes(school_id, (node_from_model(g) for g in grades))
