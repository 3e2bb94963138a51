"""
Tests for the SDMS API router, run in-process over httpx's ASGI transport.
"""

import pytest
from unittest.mock import AsyncMock, Mock
from httpx import AsyncClient, ASGITransport

from elby_dashboard.core.config import Settings
from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.integrations.sdms.errors import TransientFetchError
from elby_dashboard.integrations.sdms.records import SDMSStudentRecord
from elby_dashboard.main import create_app


@pytest.fixture
def sdms_mock():
    client = Mock(spec=SDMSClient)
    client.get_school = AsyncMock(return_value=None)
    client.get_student = AsyncMock(return_value=None)
    client.get_staff = AsyncMock(return_value=None)
    return client


@pytest.fixture
async def api(session_factory, audit, sdms_mock):
    settings = Settings(_env_file=None, SDMS_API_URL="http://sdms.test/api", SDMS_CACHE_TTL=3600)
    app = create_app(settings, run_scheduler=False)
    # The lifespan does not run under ASGITransport; wire the state directly
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.audit = audit
    app.state.sdms_client = sdms_mock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestSDMSApi:

    @pytest.mark.asyncio
    async def test_health(self, api):
        response = await api.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_link_user(self, api, sdms_mock, make_user):
        await make_user(7)
        sdms_mock.get_student.return_value = SDMSStudentRecord.model_validate({
            "studentNumber": "STU001",
            "combination": "Software Development",
            "gender": "F",
        })

        response = await api.post("/api/v1/sdms/users/7/link", json={"sdms_code": "STU001"})

        assert response.status_code == 201
        body = response.json()
        assert body["sdms_id"] == "STU001"
        assert body["user_type"] == "student"
        assert body["sync_status"] == "synced"
        assert body["student"]["program"] == "Software Development"

        profile = await api.get("/api/v1/sdms/users/7/profile")
        assert profile.status_code == 200
        assert profile.json()["sdms_id"] == "STU001"

    @pytest.mark.asyncio
    async def test_link_staff_alias(self, api, sdms_mock):
        sdms_mock.get_staff.return_value = None

        response = await api.post(
            "/api/v1/sdms/users/7/link", json={"sdms_code": "T100", "user_type": "staff"}
        )

        assert response.status_code == 404
        sdms_mock.get_staff.assert_awaited_once_with("T100")

    @pytest.mark.asyncio
    async def test_link_conflict(self, api, make_link):
        await make_link(8, "STU001")

        response = await api.post("/api/v1/sdms/users/7/link", json={"sdms_code": "STU001"})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_link_blank_code(self, api):
        response = await api.post("/api/v1/sdms/users/7/link", json={"sdms_code": "   "})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_link_unknown_user_type(self, api):
        response = await api.post(
            "/api/v1/sdms/users/7/link", json={"sdms_code": "STU001", "user_type": "parent"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_profile_unlinked(self, api):
        response = await api.get("/api/v1/sdms/users/7/profile")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_refresh_unlinked(self, api):
        response = await api.post("/api/v1/sdms/users/7/refresh")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_school_fetch_failure(self, api, sdms_mock):
        sdms_mock.get_school.side_effect = TransientFetchError(
            "SDMS API error after 3 attempt(s): HTTP 503", status_code=503, entity_type="school",
        )

        response = await api.get("/api/v1/sdms/schools/SCH99")

        assert response.status_code == 502
        assert response.json()["detail"]["status_code"] == 503

    @pytest.mark.asyncio
    async def test_cached_school(self, api, sdms_mock, make_school):
        await make_school(code="SCH01", name="Test School")

        response = await api.get("/api/v1/sdms/schools/SCH01")

        assert response.status_code == 200
        assert response.json()["school_name"] == "Test School"
        assert response.json()["is_stale"] is False
        sdms_mock.get_school.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sync_unknown_school(self, api):
        response = await api.post("/api/v1/sdms/schools/SCH99/sync")
        assert response.status_code == 404


class TestUnconfiguredSDMS:

    @pytest.mark.asyncio
    async def test_app_starts_and_sdms_routes_return_503(self, tmp_path):
        settings = Settings(
            _env_file=None,
            SDMS_API_URL="",
            DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'app.db'}",
        )
        app = create_app(settings, run_scheduler=True)

        async with app.router.lifespan_context(app):
            assert app.state.sdms_client is None
            assert set(app.state.scheduler.jobs) == {
                "compute_user_metrics", "aggregate_school_metrics", "cleanup_old_metrics"
            }

            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                health = await client.get("/health")
                profile = await client.get("/api/v1/sdms/users/7/profile")
                link = await client.post("/api/v1/sdms/users/7/link", json={"sdms_code": "STU001"})

        assert health.status_code == 200
        assert profile.status_code == 503
        assert link.status_code == 503
        assert "not configured" in profile.json()["detail"]
