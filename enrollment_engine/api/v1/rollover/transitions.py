"""
Rollover status state machine.

pending is the only initial state; promoted, retained, graduated, transferred and dropped are the
outcomes for the year. While the enrollment is open any status may be set (including back to
pending); once closed by a rollover or a withdrawal the row is frozen.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from enrollment_engine.core.enums import EnrollmentCode, RolloverStatus
from enrollment_engine.core.exceptions import ConflictError, GradeGraphError, ValidationError

from .progression import GradeProgressionGraph

# Outcomes that end the student's enrollment chain: no next-year row.
CHAIN_ENDING = frozenset({RolloverStatus.graduated, RolloverStatus.dropped, RolloverStatus.transferred})

NEXT_YEAR_CODE = {
    RolloverStatus.promoted: EnrollmentCode.PROMOTION,
    RolloverStatus.retained: EnrollmentCode.RETENTION,
}


@dataclass(frozen=True)
class Outcome:
    status: RolloverStatus
    next_grade_id: Optional[UUID]
    manual: bool

    @property
    def creates_next_year_row(self) -> bool:
        return self.status not in CHAIN_ENDING

    @property
    def enrollment_code(self) -> Optional[EnrollmentCode]:
        return NEXT_YEAR_CODE.get(self.status)


def parse_status(value) -> RolloverStatus:
    """Strict parse: unknown literals are rejected, never coerced to pending."""
    if isinstance(value, RolloverStatus):
        return value
    try:
        return RolloverStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown rollover status '{value}'")


def ensure_open(end_date) -> None:
    if end_date is not None:
        raise ConflictError("Enrollment is closed; create a new enrollment instead of editing history")


def resolve_outcome(
    current_status: RolloverStatus,
    grade_level_id: Optional[UUID],
    override_next_grade_id: Optional[UUID],
    graph: GradeProgressionGraph,
) -> Outcome:
    """Target status for one open enrollment.

    A status other than pending is a manual override and wins as set. Otherwise the grade graph
    decides: terminal grade -> graduated, else promoted to the single-hop successor.
    """
    if current_status != RolloverStatus.pending:
        return Outcome(
            status=current_status,
            next_grade_id=_override_target(current_status, grade_level_id, override_next_grade_id, graph),
            manual=True,
        )
    if grade_level_id is None:
        raise GradeGraphError("Enrollment has no grade level; set a rollover status manually")
    resolution = graph.resolve_next(grade_level_id)
    if resolution.is_terminal:
        return Outcome(status=RolloverStatus.graduated, next_grade_id=None, manual=False)
    return Outcome(status=RolloverStatus.promoted, next_grade_id=resolution.next_grade_id, manual=False)


def _override_target(
    status: RolloverStatus,
    grade_level_id: Optional[UUID],
    override_next_grade_id: Optional[UUID],
    graph: GradeProgressionGraph,
) -> Optional[UUID]:
    if status in CHAIN_ENDING:
        return None
    if override_next_grade_id is not None:
        target = graph.nodes.get(override_next_grade_id)
        if target is None or target.school_id != graph.school_id or not target.is_active:
            raise GradeGraphError("Manual next grade is not an active grade of this school")
        return override_next_grade_id
    if status == RolloverStatus.retained:
        return grade_level_id
    # promoted without an explicit target follows the graph
    if grade_level_id is None:
        raise GradeGraphError("Promoted enrollment has no grade level and no next grade")
    resolution = graph.resolve_next(grade_level_id)
    if resolution.is_terminal:
        node = graph.nodes[grade_level_id]
        raise GradeGraphError(
            f"Student marked promoted from terminal grade '{node.name}' without a next grade"
        )
    return resolution.next_grade_id
