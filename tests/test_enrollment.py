"""Enrollment records, rollover-status overrides and statistics."""

import uuid
from typing import Set

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.api.v1.enrollment import service as enrollment_service
from enrollment_engine.core.exceptions import DatastoreTransientError
from enrollment_engine.core.models import RolloverLock, Student, StudentEnrollment


async def new_student(db: AsyncSession, school_id: uuid.UUID, number: str = "N0001") -> uuid.UUID:
    student = Student(school_id=school_id, student_number=number, full_name="New Student")
    db.add(student)
    await db.commit()
    return student.id


async def statuses(db: AsyncSession, academic_year_id: uuid.UUID) -> dict:
    db.expire_all()
    result = await db.execute(
        select(StudentEnrollment.student_id, StudentEnrollment.rollover_status).where(
            StudentEnrollment.academic_year_id == academic_year_id
        )
    )
    return dict(result.all())


@pytest.mark.asyncio
async def test_create_enrollment(client: AsyncClient, db_session: AsyncSession, school) -> None:
    student_id = await new_student(db_session, school.id)
    payload = {
        "student_id": str(student_id),
        "academic_year_id": str(school.current_year_id),
        "school_id": str(school.id),
        "grade_level_id": str(school.grade5_id),
        "enrollment_code": "ADMISSION",
        "start_date": "2025-08-15",
    }

    response = await client.post("/api/v1/enrollment", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["enrollment_code"] == "ADMISSION"
    assert data["rollover_status"] == "pending"
    assert data["end_date"] is None
    assert data["grade_name"] == "Grade 5"
    assert data["academic_year_name"] == "2025-2026"


@pytest.mark.asyncio
async def test_create_enrollment_unknown_code(client: AsyncClient, db_session: AsyncSession, school) -> None:
    student_id = await new_student(db_session, school.id)
    payload = {
        "student_id": str(student_id),
        "academic_year_id": str(school.current_year_id),
        "school_id": str(school.id),
        "enrollment_code": "BOGUS",
        "start_date": "2025-08-15",
    }
    response = await client.post("/api/v1/enrollment", json=payload)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_enrollment_outside_year(client: AsyncClient, db_session: AsyncSession, school) -> None:
    student_id = await new_student(db_session, school.id)
    payload = {
        "student_id": str(student_id),
        "academic_year_id": str(school.current_year_id),
        "school_id": str(school.id),
        "enrollment_code": "ADMISSION",
        "start_date": "2027-01-01",
    }
    response = await client.post("/api/v1/enrollment", json=payload)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_second_open_enrollment_is_a_conflict(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    payload = {
        "student_id": str(s.student_id),
        "academic_year_id": str(school.next_year_id),
        "school_id": str(school.id),
        "enrollment_code": "RE_ADMISSION",
        "start_date": "2026-08-01",
    }
    response = await client.post("/api/v1/enrollment", json=payload)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_create_enrollment_unknown_student(client: AsyncClient, school) -> None:
    payload = {
        "student_id": str(uuid.uuid4()),
        "academic_year_id": str(school.current_year_id),
        "school_id": str(school.id),
        "enrollment_code": "ADMISSION",
        "start_date": "2025-08-15",
    }
    response = await client.post("/api/v1/enrollment", json=payload)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_current_enrollment(client: AsyncClient, db_session: AsyncSession, school, enroll) -> None:
    s = await enroll()
    response = await client.get(f"/api/v1/enrollment/student/{s.student_id}/current")
    assert response.status_code == 200
    data = response.json()
    assert data["enrollment_id"] == str(s.enrollment_id)
    assert data["year_name"] == "2025-2026"
    assert data["grade_name"] == "Grade 5"
    assert data["enrollment_code"] == "ADMISSION"

    other = await new_student(db_session, school.id)
    missing = await client.get(f"/api/v1/enrollment/student/{other}/current")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_history_most_recent_first(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    rollover = await client.post(
        "/api/v1/rollover/execute",
        json={
            "school_id": str(school.id),
            "current_year_id": str(school.current_year_id),
            "next_year_id": str(school.next_year_id),
        },
    )
    assert rollover.status_code == 200

    url = f"/api/v1/enrollment/student/{s.student_id}/history"
    full = (await client.get(url, params={"include_current": "true"})).json()
    assert [r["academic_year_name"] for r in full] == ["2026-2027", "2025-2026"]
    assert full[0]["end_date"] is None

    past = (await client.get(url)).json()
    assert [r["academic_year_name"] for r in past] == ["2025-2026"]
    assert past[0]["rollover_status"] == "promoted"


@pytest.mark.asyncio
async def test_update_open_enrollment(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    response = await client.patch(
        f"/api/v1/enrollment/{s.enrollment_id}",
        json={"rollover_notes": "Needs review", "grade_level_id": str(school.grade6_id)},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["rollover_notes"] == "Needs review"
    assert data["grade_level_id"] == str(school.grade6_id)


@pytest.mark.asyncio
async def test_update_rejects_end_date(client: AsyncClient, enroll) -> None:
    s = await enroll()
    response = await client.patch(f"/api/v1/enrollment/{s.enrollment_id}", json={"end_date": "2026-01-01"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_closed_enrollment_cannot_be_edited(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    withdraw = await client.post(
        f"/api/v1/enrollment/{s.enrollment_id}/withdraw",
        json={"enrollment_code": "DROP", "end_date": "2026-01-15"},
    )
    assert withdraw.status_code == 200

    response = await client.patch(f"/api/v1/enrollment/{s.enrollment_id}", json={"rollover_notes": "late"})
    assert response.status_code == 409

    status_change = await client.patch(
        f"/api/v1/enrollment/student/{s.student_id}/rollover-status",
        json={"academic_year_id": str(school.current_year_id), "rollover_status": "retained"},
    )
    assert status_change.status_code == 409


@pytest.mark.asyncio
async def test_set_student_rollover_status(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    response = await client.patch(
        f"/api/v1/enrollment/student/{s.student_id}/rollover-status",
        json={
            "academic_year_id": str(school.current_year_id),
            "rollover_status": "retained",
            "notes": "Repeat year",
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["rollover_status"] == "retained"
    assert data["rollover_notes"] == "Repeat year"


@pytest.mark.asyncio
async def test_unknown_rollover_status_is_rejected(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    response = await client.patch(
        f"/api/v1/enrollment/student/{s.student_id}/rollover-status",
        json={"academic_year_id": str(school.current_year_id), "rollover_status": "on_hold"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_bulk_by_section(client: AsyncClient, db_session: AsyncSession, school, enroll, make_section) -> None:
    section_a = await make_section("A")
    section_b = await make_section("B")
    in_a: Set[uuid.UUID] = set()
    for i in range(30):
        s = await enroll(section_id=section_a if i < 12 else section_b)
        if i < 12:
            in_a.add(s.student_id)

    response = await client.patch(
        "/api/v1/enrollment/bulk-rollover-status",
        json={
            "school_id": str(school.id),
            "academic_year_id": str(school.current_year_id),
            "filters": {"section_id": str(section_a)},
            "rollover_status": "retained",
        },
    )
    assert response.status_code == 200
    assert response.json() == {"updated_count": 12}

    by_student = await statuses(db_session, school.current_year_id)
    assert {sid for sid, st in by_student.items() if st == "retained"} == in_a
    assert await db_session.scalar(select(RolloverLock.id)) is None


@pytest.mark.asyncio
async def test_bulk_by_grade_touches_only_open_rows(client: AsyncClient, db_session: AsyncSession, school, enroll) -> None:
    grade5 = {(await enroll(grade_id=school.grade5_id)).student_id for _ in range(3)}
    for _ in range(2):
        await enroll(grade_id=school.grade6_id)
    closed = await enroll(grade_id=school.grade5_id)
    await client.post(
        f"/api/v1/enrollment/{closed.enrollment_id}/withdraw",
        json={"enrollment_code": "TRANSFER_OUT", "end_date": "2026-02-01"},
    )

    response = await client.patch(
        "/api/v1/enrollment/bulk-rollover-status",
        json={
            "school_id": str(school.id),
            "academic_year_id": str(school.current_year_id),
            "filters": {"grade_level_id": str(school.grade5_id)},
            "rollover_status": "retained",
        },
    )
    assert response.json()["updated_count"] == 3

    by_student = await statuses(db_session, school.current_year_id)
    assert {sid for sid, st in by_student.items() if st == "retained"} == grade5
    assert by_student[closed.student_id] == "transferred"


@pytest.mark.asyncio
async def test_bulk_filters_compose(client: AsyncClient, school, enroll, make_section) -> None:
    section_a = await make_section("A")
    first = await enroll(section_id=section_a)
    await enroll(section_id=section_a)
    await enroll()

    response = await client.patch(
        "/api/v1/enrollment/bulk-rollover-status",
        json={
            "school_id": str(school.id),
            "academic_year_id": str(school.current_year_id),
            "filters": {"section_id": str(section_a), "student_ids": [str(first.student_id)]},
            "rollover_status": "graduated",
        },
    )
    assert response.json()["updated_count"] == 1


@pytest.mark.asyncio
async def test_bulk_without_filters_matches_cohort(client: AsyncClient, school, enroll) -> None:
    for _ in range(4):
        await enroll()
    response = await client.patch(
        "/api/v1/enrollment/bulk-rollover-status",
        json={
            "school_id": str(school.id),
            "academic_year_id": str(school.current_year_id),
            "rollover_status": "promoted",
            "next_grade_id": str(school.grade6_id),
        },
    )
    assert response.json()["updated_count"] == 4


@pytest.mark.asyncio
async def test_bulk_rejects_unknown_filter(client: AsyncClient, school) -> None:
    response = await client.patch(
        "/api/v1/enrollment/bulk-rollover-status",
        json={
            "school_id": str(school.id),
            "academic_year_id": str(school.current_year_id),
            "filters": {"homeroom": "7B"},
            "rollover_status": "retained",
        },
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_bulk_refused_during_rollover(client: AsyncClient, db_session: AsyncSession, school, enroll) -> None:
    await enroll()
    db_session.add(RolloverLock(school_id=school.id, academic_year_id=school.current_year_id, holder="execute"))
    await db_session.commit()

    response = await client.patch(
        "/api/v1/enrollment/bulk-rollover-status",
        json={
            "school_id": str(school.id),
            "academic_year_id": str(school.current_year_id),
            "rollover_status": "retained",
        },
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_withdraw(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    response = await client.post(
        f"/api/v1/enrollment/{s.enrollment_id}/withdraw",
        json={"enrollment_code": "TRANSFER_OUT", "end_date": "2026-01-15", "notes": "Moved city"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["end_date"] == "2026-01-15"
    assert data["rollover_status"] == "transferred"
    assert data["rollover_notes"] == "Moved city"

    current = await client.get(f"/api/v1/enrollment/student/{s.student_id}/current")
    assert current.status_code == 404


@pytest.mark.asyncio
async def test_withdraw_validation(client: AsyncClient, school, enroll) -> None:
    s = await enroll()
    url = f"/api/v1/enrollment/{s.enrollment_id}/withdraw"
    wrong_code = await client.post(url, json={"enrollment_code": "PROMOTION", "end_date": "2026-01-15"})
    assert wrong_code.status_code == 400
    too_early = await client.post(url, json={"enrollment_code": "DROP", "end_date": "2025-01-01"})
    assert too_early.status_code == 400


@pytest.mark.asyncio
async def test_statistics_zero_filled(client: AsyncClient, school, enroll) -> None:
    await enroll(grade_id=school.grade5_id)
    await enroll(grade_id=school.grade5_id, rollover_status="retained")
    await enroll(grade_id=school.grade6_id)

    response = await client.get(
        "/api/v1/enrollment/statistics",
        params={"school_id": str(school.id), "academic_year_id": str(school.current_year_id)},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_students"] == 3
    assert data["by_rollover_status"] == {
        "pending": 2,
        "promoted": 0,
        "retained": 1,
        "graduated": 0,
        "dropped": 0,
        "transferred": 0,
    }
    codes = {c["code"]: c["count"] for c in data["by_enrollment_code"]}
    assert len(codes) == 8
    assert codes["ADMISSION"] == 3
    assert codes["PROMOTION"] == 0
    grades = {g["grade_name"]: g["count"] for g in data["by_grade"]}
    assert grades == {"Grade 5": 2, "Grade 6": 1, "Grade 12": 0}


@pytest.mark.asyncio
async def test_students_by_status(client: AsyncClient, school, enroll, make_section) -> None:
    section_a = await make_section("A")
    retained = await enroll(section_id=section_a, rollover_status="retained")
    await enroll()

    params = {"school_id": str(school.id), "academic_year_id": str(school.current_year_id)}
    everyone = await client.get("/api/v1/enrollment/by-status", params=params)
    assert len(everyone.json()) == 2

    response = await client.get("/api/v1/enrollment/by-status", params={**params, "status": "retained"})
    assert response.status_code == 200
    assert response.json() == [
        {
            "student_id": str(retained.student_id),
            "student_number": retained.student_number,
            "grade_name": "Grade 5",
            "section_name": "A",
            "rollover_status": "retained",
        }
    ]

    bad = await client.get("/api/v1/enrollment/by-status", params={**params, "status": "on_hold"})
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_reads_for_unknown_year_are_not_found(client: AsyncClient, school) -> None:
    for other_year in (uuid.uuid4(), school.grade5_id):
        params = {"school_id": str(school.id), "academic_year_id": str(other_year)}
        statistics = await client.get("/api/v1/enrollment/statistics", params=params)
        assert statistics.status_code == 404
        by_status = await client.get("/api/v1/enrollment/by-status", params=params)
        assert by_status.status_code == 404


@pytest.mark.asyncio
async def test_reads_report_datastore_outage(client: AsyncClient, school, enroll, monkeypatch) -> None:
    enrolled = await enroll()

    async def unavailable(*args, **kwargs):
        raise DatastoreTransientError()

    monkeypatch.setattr(enrollment_service, "get_statistics", unavailable)
    monkeypatch.setattr(enrollment_service, "get_enrollment_history", unavailable)

    statistics = await client.get(
        "/api/v1/enrollment/statistics",
        params={"school_id": str(school.id), "academic_year_id": str(school.current_year_id)},
    )
    assert statistics.status_code == 500
    assert statistics.json()["detail"] == "Datastore temporarily unavailable"

    history = await client.get(f"/api/v1/enrollment/student/{enrolled.student_id}/history")
    assert history.status_code == 500
    assert history.json()["detail"] == "Datastore temporarily unavailable"
