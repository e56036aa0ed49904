"""Rollover status transition function."""

import uuid

import pytest

from enrollment_engine.api.v1.rollover.progression import GradeNode, GradeProgressionGraph
from enrollment_engine.api.v1.rollover.transitions import ensure_open, parse_status, resolve_outcome
from enrollment_engine.core.enums import EnrollmentCode, RolloverStatus
from enrollment_engine.core.exceptions import ConflictError, GradeGraphError, ValidationError

SCHOOL = uuid.uuid4()
G5, G6, G12, OTHER = uuid.uuid4(), uuid.uuid4(), uuid.uuid4(), uuid.uuid4()


def _node(grade_id, name, order_index, next_grade_id=None, school_id=SCHOOL, **kw) -> GradeNode:
    return GradeNode(
        id=grade_id,
        school_id=school_id,
        name=name,
        order_index=order_index,
        next_grade_id=next_grade_id,
        is_graduation_grade=kw.get("is_graduation_grade", False),
        is_active=kw.get("is_active", True),
    )


@pytest.fixture()
def graph() -> GradeProgressionGraph:
    return GradeProgressionGraph.from_nodes(
        SCHOOL,
        [
            _node(G5, "Grade 5", 5, G6),
            _node(G6, "Grade 6", 6),
            _node(G12, "Grade 12", 12, is_graduation_grade=True),
            _node(OTHER, "Other school grade", 1, school_id=uuid.uuid4()),
        ],
    )


def test_pending_non_terminal_is_promoted(graph) -> None:
    outcome = resolve_outcome(RolloverStatus.pending, G5, None, graph)
    assert outcome.status == RolloverStatus.promoted
    assert outcome.next_grade_id == G6
    assert outcome.manual is False
    assert outcome.creates_next_year_row
    assert outcome.enrollment_code == EnrollmentCode.PROMOTION


def test_pending_terminal_is_graduated(graph) -> None:
    outcome = resolve_outcome(RolloverStatus.pending, G12, None, graph)
    assert outcome.status == RolloverStatus.graduated
    assert outcome.next_grade_id is None
    assert not outcome.creates_next_year_row
    assert outcome.enrollment_code is None


def test_pending_ignores_stored_next_grade(graph) -> None:
    outcome = resolve_outcome(RolloverStatus.pending, G5, G12, graph)
    assert outcome.next_grade_id == G6


def test_pending_without_grade_is_an_error(graph) -> None:
    with pytest.raises(GradeGraphError):
        resolve_outcome(RolloverStatus.pending, None, None, graph)


def test_retained_defaults_to_same_grade(graph) -> None:
    outcome = resolve_outcome(RolloverStatus.retained, G5, None, graph)
    assert outcome.status == RolloverStatus.retained
    assert outcome.next_grade_id == G5
    assert outcome.manual is True
    assert outcome.enrollment_code == EnrollmentCode.RETENTION


def test_manual_next_grade_wins(graph) -> None:
    outcome = resolve_outcome(RolloverStatus.promoted, G5, G12, graph)
    assert outcome.next_grade_id == G12


def test_manual_graduation_from_non_terminal_grade(graph) -> None:
    outcome = resolve_outcome(RolloverStatus.graduated, G5, None, graph)
    assert outcome.status == RolloverStatus.graduated
    assert not outcome.creates_next_year_row


@pytest.mark.parametrize("status", [RolloverStatus.dropped, RolloverStatus.transferred])
def test_chain_ending_statuses_drop_next_grade(graph, status) -> None:
    outcome = resolve_outcome(status, G5, G6, graph)
    assert outcome.next_grade_id is None
    assert not outcome.creates_next_year_row


def test_promoted_from_terminal_without_target_is_an_error(graph) -> None:
    with pytest.raises(GradeGraphError):
        resolve_outcome(RolloverStatus.promoted, G12, None, graph)


def test_manual_next_grade_from_other_school_is_rejected(graph) -> None:
    with pytest.raises(GradeGraphError):
        resolve_outcome(RolloverStatus.promoted, G5, OTHER, graph)


def test_parse_status_is_strict() -> None:
    assert parse_status("retained") == RolloverStatus.retained
    assert parse_status(RolloverStatus.pending) == RolloverStatus.pending
    with pytest.raises(ValidationError):
        parse_status("on_hold")
    with pytest.raises(ValidationError):
        parse_status("")


def test_ensure_open() -> None:
    ensure_open(None)
    with pytest.raises(ConflictError):
        ensure_open("2026-06-30")
