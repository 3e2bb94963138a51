"""
Tests for the SDMS API client: retry policy, response quirks and audit logging.
"""

import asyncio
import re
import pytest
from unittest.mock import Mock
from aioresponses import aioresponses
from sqlalchemy import select

from elby_dashboard.core.sdms_config import SDMSClientConfig
from elby_dashboard.integrations.sdms.audit import SyncLogWriter
from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.integrations.sdms.errors import (
    SDMSConfigurationError, TransientFetchError, PermanentFetchError
)
from elby_dashboard.models.sync_log import SyncLogEntry, SyncOperation

STUDENT_URL = re.compile(r"^http://sdms\.test/api/student\?.*$")
STAFF_URL = re.compile(r"^http://sdms\.test/api/staff\?.*$")
SCHOOL_URL = re.compile(r"^http://sdms\.test/api/school\?.*$")


async def _log_entries(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(SyncLogEntry).order_by(SyncLogEntry.id))
        return result.scalars().all()


class TestSDMSClientConfig:

    def test_missing_base_url_raises(self):
        with pytest.raises(SDMSConfigurationError):
            SDMSClient(SDMSClientConfig())

    def test_trailing_slash_stripped(self):
        config = SDMSClientConfig(base_url="https://sdms.example.rw/api/")
        assert config.base_url == "https://sdms.example.rw/api"

    def test_base_url_requires_scheme(self):
        with pytest.raises(ValueError):
            SDMSClientConfig(base_url="sdms.example.rw")


class TestSDMSClientRetries:

    @pytest.mark.asyncio
    async def test_server_errors_are_retried_until_success(self, sdms_client, session_factory):
        with aioresponses() as m:
            m.get(STUDENT_URL, status=500)
            m.get(STUDENT_URL, status=502)
            m.get(STUDENT_URL, status=200, payload={"studentNumber": "STU001", "schoolCode": "SCH01"})

            record = await sdms_client.get_student("STU001")

        assert record.student_number == "STU001"
        entries = await _log_entries(session_factory)
        assert [e.operation for e in entries] == [
            SyncOperation.ERROR.value, SyncOperation.ERROR.value, SyncOperation.FETCH.value
        ]
        assert [e.response_code for e in entries] == [500, 502, 200]
        assert entries[0].error_message == "HTTP 500"

    @pytest.mark.asyncio
    async def test_retries_exhausted_raises_transient_error(self, sdms_client):
        with aioresponses() as m:
            for _ in range(3):
                m.get(SCHOOL_URL, status=503)

            with pytest.raises(TransientFetchError) as exc_info:
                await sdms_client.get_school("SCH01")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True
        assert "3 attempt" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, sdms_client):
        with aioresponses() as m:
            m.get(STUDENT_URL, exception=asyncio.TimeoutError())
            m.get(STUDENT_URL, status=200, payload={"studentNumber": "STU002"})

            record = await sdms_client.get_student("STU002")

        assert record.student_number == "STU002"

    @pytest.mark.asyncio
    async def test_not_found_returns_none_without_retry(self, sdms_client, session_factory):
        with aioresponses() as m:
            m.get(STUDENT_URL, status=404)

            assert await sdms_client.get_student("NOPE") is None

        entries = await _log_entries(session_factory)
        assert len(entries) == 1
        assert entries[0].operation == SyncOperation.SKIP.value
        assert entries[0].details == "Not found"

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self, sdms_client):
        with aioresponses() as m:
            m.get(STAFF_URL, status=400)

            with pytest.raises(PermanentFetchError) as exc_info:
                await sdms_client.get_staff("T1")

        assert exc_info.value.status_code == 400
        assert exc_info.value.retryable is False


class TestSDMSClientResponses:

    @pytest.mark.asyncio
    async def test_list_body_is_unwrapped(self, sdms_client):
        with aioresponses() as m:
            m.get(STUDENT_URL, status=200, payload=[{"studentNumber": "STU001"}, {"studentNumber": "X"}])

            record = await sdms_client.get_student("STU001")

        assert record.student_number == "STU001"

    @pytest.mark.asyncio
    async def test_empty_body_is_not_found(self, sdms_client, session_factory):
        with aioresponses() as m:
            m.get(STUDENT_URL, status=200, payload=[])

            assert await sdms_client.get_student("STU001") is None

        entries = await _log_entries(session_factory)
        assert entries[0].details == "Empty response"

    @pytest.mark.asyncio
    async def test_other_success_statuses_are_accepted(self, sdms_client):
        with aioresponses() as m:
            m.get(STUDENT_URL, status=201, payload={"studentNumber": "STU001"})

            record = await sdms_client.get_student("STU001")

        assert record.student_number == "STU001"

    @pytest.mark.asyncio
    async def test_no_content_is_not_found(self, sdms_client, session_factory):
        with aioresponses() as m:
            m.get(STUDENT_URL, status=204, body="")

            assert await sdms_client.get_student("STU001") is None

        entries = await _log_entries(session_factory)
        assert len(entries) == 1
        assert entries[0].response_code == 204
        assert entries[0].operation == SyncOperation.SKIP.value

    @pytest.mark.asyncio
    async def test_error_status_inside_ok_response(self, sdms_client):
        with aioresponses() as m:
            m.get(STUDENT_URL, status=200, payload={"status": 500, "message": "Database unavailable"})

            with pytest.raises(PermanentFetchError) as exc_info:
                await sdms_client.get_student("STU001")

        assert exc_info.value.status_code == 500
        assert "Database unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_json_is_permanent(self, sdms_client):
        with aioresponses() as m:
            m.get(SCHOOL_URL, status=200, body="<html>gateway</html>")

            with pytest.raises(PermanentFetchError):
                await sdms_client.get_school("SCH01")

    @pytest.mark.asyncio
    async def test_staff_misspelled_school_code(self, sdms_client):
        with aioresponses() as m:
            m.get(STAFF_URL, status=200, payload={"staffNumber": "T1", "schooCode": "SCH09"})
            m.get(STAFF_URL, status=200, payload={
                "staffNumber": "T2", "schoolCode": "SCH01", "schooCode": "SCH09"
            })

            misspelled = await sdms_client.get_staff("T1")
            both = await sdms_client.get_staff("T2")

        assert misspelled.school_code == "SCH09"
        assert both.school_code == "SCH01"

    @pytest.mark.asyncio
    async def test_school_hierarchy_is_parsed(self, sdms_client, school_payload):
        with aioresponses() as m:
            m.get(SCHOOL_URL, status=200, payload=school_payload())

            record = await sdms_client.get_school("SCH01")

        assert record.active is True
        assert record.levels[0].level_name == "TVET"
        assert [c.combination_code for c in record.levels[0].combinations] == ["541", "542"]
        assert record.levels[0].combinations[0].grades[0].class_groups[1].class_group_id == "CG2"

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_request(self, client_config):
        broken_factory = Mock(side_effect=RuntimeError("database is down"))
        client = SDMSClient(client_config, audit=SyncLogWriter(broken_factory))
        try:
            with aioresponses() as m:
                m.get(STUDENT_URL, status=200, payload={"studentNumber": "STU001"})

                record = await client.get_student("STU001")
        finally:
            await client.close()

        assert record.student_number == "STU001"
        broken_factory.assert_called()
