import uuid
from typing import AsyncGenerator, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.auth.security import create_access_token
from enrollment_engine.main import app


@pytest.fixture()
async def token_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Client that authenticates with real bearer tokens."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def bearer(
    school_id: uuid.UUID,
    role: str = "TEACHER",
    permissions: Optional[Dict[str, Dict[str, bool]]] = None,
    expires_minutes: Optional[int] = None,
) -> Dict[str, str]:
    token = create_access_token(
        subject={
            "sub": str(uuid.uuid4()),
            "school_id": str(school_id),
            "role": role,
            "permissions": permissions or {},
        },
        expires_minutes=expires_minutes,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_missing_token_is_rejected(token_client: AsyncClient, school) -> None:
    response = await token_client.get("/api/v1/grades/progression", params={"school_id": str(school.id)})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(token_client: AsyncClient, school) -> None:
    response = await token_client.get(
        "/api/v1/grades/progression",
        params={"school_id": str(school.id)},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_expired_token_is_rejected(token_client: AsyncClient, school) -> None:
    response = await token_client.get(
        "/api/v1/grades/progression",
        params={"school_id": str(school.id)},
        headers=bearer(school.id, role="SUPER_ADMIN", expires_minutes=-1),
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_permission_granted_by_token(token_client: AsyncClient, school) -> None:
    headers = bearer(school.id, permissions={"grades": {"read": True}})
    response = await token_client.get(
        "/api/v1/grades/progression", params={"school_id": str(school.id)}, headers=headers
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_missing_permission_is_forbidden(token_client: AsyncClient, school) -> None:
    headers = bearer(school.id, permissions={"rollover": {"read": True}})
    response = await token_client.post(
        "/api/v1/rollover/execute",
        json={
            "school_id": str(school.id),
            "current_year_id": str(school.current_year_id),
            "next_year_id": str(school.next_year_id),
        },
        headers=headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_other_school_is_forbidden(token_client: AsyncClient, school) -> None:
    headers = bearer(uuid.uuid4(), role="SUPER_ADMIN")
    response = await token_client.post(
        "/api/v1/rollover/preview",
        json={
            "school_id": str(school.id),
            "current_year_id": str(school.current_year_id),
            "next_year_id": str(school.next_year_id),
        },
        headers=headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_platform_admin_may_act_on_any_school(token_client: AsyncClient, school) -> None:
    headers = bearer(uuid.uuid4(), role="PLATFORM_ADMIN")
    response = await token_client.post(
        "/api/v1/rollover/preview",
        json={
            "school_id": str(school.id),
            "current_year_id": str(school.current_year_id),
            "next_year_id": str(school.next_year_id),
        },
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["current_year"] == "2025-2026"


@pytest.mark.asyncio
async def test_caller_school_is_the_default(token_client: AsyncClient, school) -> None:
    headers = bearer(school.id, permissions={"academic_years": {"read": True}})
    response = await token_client.get("/api/v1/academic-years", headers=headers)
    assert response.status_code == 200
    assert {y["name"] for y in response.json()} == {"2025-2026", "2026-2027"}
