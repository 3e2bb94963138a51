"""
SDMS API client.

Lookup-only HTTP client for the Student Data Management System. The remote
side authorizes by network allow-listing, so no authentication header is
sent. Every attempt is written to the sync audit log.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple, Type, TypeVar
from urllib.parse import urlencode

import aiohttp
from pydantic import ValidationError

from elby_dashboard.core.sdms_config import SDMSClientConfig
from elby_dashboard.integrations.sdms.audit import SyncLogWriter
from elby_dashboard.integrations.sdms.errors import (
    SDMSConfigurationError, TransientFetchError, PermanentFetchError
)
from elby_dashboard.integrations.sdms.records import (
    SDMSRecord, SDMSStudentRecord, SDMSStaffRecord, SDMSSchoolRecord
)
from elby_dashboard.models.sync_log import SyncOperation


logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=SDMSRecord)


class SDMSClient:
    """HTTP client for the student, staff and school lookup endpoints."""

    def __init__(
        self,
        config: SDMSClientConfig,
        audit: Optional[SyncLogWriter] = None,
        triggered_by: str = "api",
    ):
        if not config.base_url:
            raise SDMSConfigurationError(
                "SDMS API URL is not configured. Please contact your administrator."
            )
        self.config = config
        self.audit = audit or SyncLogWriter(None)
        self.triggered_by = triggered_by
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    async def get_student(self, code: str) -> Optional[SDMSStudentRecord]:
        """Fetch a student by student code; None if SDMS has no such student."""
        return await self._fetch_record(
            SDMSStudentRecord, "student", {"studentCode": code}, "student", code
        )

    async def get_staff(self, staff_id: str) -> Optional[SDMSStaffRecord]:
        """Fetch a staff member by staff number; None if not found."""
        return await self._fetch_record(
            SDMSStaffRecord, "staff", {"staffNumber": staff_id}, "staff", staff_id
        )

    async def get_school(self, code: str) -> Optional[SDMSSchoolRecord]:
        """Fetch a school with its full level hierarchy; None if not found."""
        return await self._fetch_record(
            SDMSSchoolRecord, "school", {"schoolCode": code}, "school", code
        )

    async def _fetch_record(
        self,
        record_class: Type[RecordT],
        endpoint: str,
        params: Dict[str, str],
        entity_type: str,
        entity_id: str,
    ) -> Optional[RecordT]:
        data = await self._fetch(endpoint, params, entity_type, entity_id)
        if data is None:
            return None
        try:
            return record_class.model_validate(data)
        except ValidationError as e:
            raise PermanentFetchError(
                f"SDMS returned a malformed {entity_type} record",
                entity_type=entity_type,
                entity_id=entity_id,
                details={'validation_errors': e.errors(include_url=False)},
            )

    async def _fetch(
        self,
        endpoint: str,
        params: Dict[str, str],
        entity_type: str,
        entity_id: str,
    ) -> Optional[Dict[str, Any]]:
        """
        GET with retry: 5xx and connection failures are retried with
        exponential backoff, 404 is not-found, any other status fails at once.
        """
        url = f"{self.config.base_url}/{endpoint}"
        logged_url = f"{url}?{urlencode(params)}"
        last_error = ""
        last_status: Optional[int] = None

        for attempt in range(1, self.config.max_retries + 1):
            started = time.monotonic()
            try:
                status, body = await self._send(url, params)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                last_status = 0
                last_error = f"Connection error: {str(e) or type(e).__name__}"
                await self._log_attempt(logged_url, 0, elapsed_ms, entity_type, entity_id, last_error)
                if attempt < self.config.max_retries:
                    await self._backoff(attempt)
                    continue
                break

            elapsed_ms = int((time.monotonic() - started) * 1000)

            if 200 <= status < 300:
                return await self._parse_success(body, status, logged_url, elapsed_ms, entity_type, entity_id)

            if status == 404:
                await self._log_attempt(
                    logged_url, status, elapsed_ms, entity_type, entity_id, None, details="Not found"
                )
                return None

            last_status = status
            last_error = f"HTTP {status}"
            await self._log_attempt(logged_url, status, elapsed_ms, entity_type, entity_id, last_error)

            if status >= 500:
                if attempt < self.config.max_retries:
                    await self._backoff(attempt)
                    continue
                break

            raise PermanentFetchError(
                f"SDMS request for {entity_type} {entity_id} failed: {last_error}",
                status_code=status,
                entity_type=entity_type,
                entity_id=entity_id,
            )

        raise TransientFetchError(
            f"SDMS API error after {self.config.max_retries} attempt(s): {last_error}",
            status_code=last_status or None,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    async def _parse_success(
        self,
        body: str,
        status: int,
        logged_url: str,
        elapsed_ms: int,
        entity_type: str,
        entity_id: str,
    ) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(body) if body and body.strip() else None
        except ValueError:
            error = "Invalid JSON response"
            await self._log_attempt(logged_url, status, elapsed_ms, entity_type, entity_id, error)
            raise PermanentFetchError(
                "SDMS returned an invalid response. Please try again later.",
                status_code=status,
                entity_type=entity_type,
                entity_id=entity_id,
            )

        # The API sometimes wraps the record in a list
        if isinstance(data, list):
            data = data[0] if data else None

        if not data:
            await self._log_attempt(
                logged_url, status, elapsed_ms, entity_type, entity_id, None, details="Empty response"
            )
            return None

        if not isinstance(data, dict):
            error = f"Unexpected response type: {type(data).__name__}"
            await self._log_attempt(logged_url, status, elapsed_ms, entity_type, entity_id, error)
            raise PermanentFetchError(
                error, status_code=status, entity_type=entity_type, entity_id=entity_id
            )

        # Server-side failures can arrive as a 2xx with {"status": 500, "message": ...}
        remote_status = _as_int(data.get("status"))
        if remote_status is not None and remote_status >= 400:
            message = data.get("message") or "Unknown error"
            await self._log_attempt(
                logged_url, status, elapsed_ms, entity_type, entity_id, f"SDMS error: {message}"
            )
            raise PermanentFetchError(
                f"SDMS server error for this {entity_type}: {message}",
                status_code=remote_status,
                entity_type=entity_type,
                entity_id=entity_id,
                details={'remote_message': message},
            )

        await self._log_attempt(logged_url, status, elapsed_ms, entity_type, entity_id, None)
        return data

    async def _send(self, url: str, params: Dict[str, str]) -> Tuple[int, str]:
        session = await self._get_session()
        async with session.get(url, params=params) as response:
            body = await response.text()
            return response.status, body

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._http_session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    'User-Agent': 'Elby-Dashboard/1.0',
                    'Accept': 'application/json',
                }
            )
        return self._http_session

    async def _backoff(self, attempt: int) -> None:
        delay = self.config.retry_base_delay ** attempt if self.config.retry_base_delay else 0
        logger.info(f"Retrying SDMS request in {delay:.1f}s (attempt {attempt}/{self.config.max_retries})")
        await asyncio.sleep(delay)

    async def _log_attempt(
        self,
        url: str,
        status: int,
        elapsed_ms: int,
        entity_type: str,
        entity_id: str,
        error: Optional[str],
        details: Optional[str] = None,
    ) -> None:
        if error:
            operation = SyncOperation.ERROR
        elif details:
            operation = SyncOperation.SKIP
        else:
            operation = SyncOperation.FETCH
        await self.audit.record(
            entity_type,
            entity_id,
            operation,
            request_url=url,
            response_code=status,
            response_time_ms=elapsed_ms,
            error_message=error,
            details=details,
            triggered_by=self.triggered_by,
        )


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
