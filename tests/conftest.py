"""
Shared fixtures: a file-backed SQLite database per test (the audit writer
needs a second connection), config structs with retries that never sleep,
and small factories for cached rows.
"""

import pytest
from datetime import timedelta

from elby_dashboard.core.database import build_engine, build_session_factory, init_db
from elby_dashboard.core.sdms_config import (
    SDMSClientConfig, CacheConfig, MetricsConfig, RetentionConfig, AutoLinkConfig, utcnow
)
from elby_dashboard.integrations.sdms.audit import SyncLogWriter
from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.models import User, School, UserLink, UserType, SyncStatus

SDMS_URL = "http://sdms.test/api"


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit(session_factory):
    return SyncLogWriter(session_factory)


@pytest.fixture
def client_config():
    return SDMSClientConfig(base_url=SDMS_URL, timeout=5, max_retries=3, retry_base_delay=0)


@pytest.fixture
async def sdms_client(client_config, audit):
    client = SDMSClient(client_config, audit=audit)
    yield client
    await client.close()


@pytest.fixture
def cache_config():
    return CacheConfig(ttl_seconds=3600, refresh_user_batch=10, refresh_school_batch=10)


@pytest.fixture
def metrics_config():
    return MetricsConfig(session_gap_seconds=1800, at_risk_inactivity_days=7)


@pytest.fixture
def retention_config():
    return RetentionConfig(weekly_metrics_days=90, monthly_metrics_days=365, sync_log_days=30)


@pytest.fixture
def auto_link_config():
    return AutoLinkConfig(email_domains=["rtb.ac.rw", "rtb.gov.rw"], batch_size=50)


@pytest.fixture
def make_user(db_session):
    async def _make_user(user_id, email=None, deleted=False):
        user = User(
            id=user_id,
            email=email or f"user{user_id}@example.com",
            username=f"user{user_id}",
            full_name=f"User {user_id}",
            deleted=deleted,
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make_user


@pytest.fixture
def make_school(db_session):
    async def _make_school(code="SCH01", name="Test School", age=timedelta(0)):
        school = School(
            school_code=code,
            school_name=name,
            sync_status=SyncStatus.SYNCED,
            last_synced=utcnow() - age,
        )
        db_session.add(school)
        await db_session.commit()
        return school
    return _make_school


@pytest.fixture
def make_link(db_session):
    async def _make_link(user_id, sdms_id, user_type=UserType.STUDENT, school_id=None, age=timedelta(0)):
        link = UserLink(
            user_id=user_id,
            sdms_id=sdms_id,
            user_type=user_type,
            school_id=school_id,
            sync_status=SyncStatus.SYNCED,
            last_synced=utcnow() - age,
        )
        db_session.add(link)
        await db_session.commit()
        return link
    return _make_link


def build_school_payload(code="SCH01", levels=None, **overrides):
    """An SDMS school response body."""
    payload = {
        "schoolCode": code,
        "schoolName": f"School {code}",
        "regionCode": "11203",
        "isActive": "ACTIVE",
        "schoolStatus": "PUBLIC",
        "schoolCategory": "TVET",
        "academicYear": "2025",
        "levels": levels if levels is not None else [
            {
                "levelId": "L5",
                "levelName": "TVET",
                "combinations": [
                    {
                        "combinationCode": "541",
                        "combinationName": "Software Development",
                        "grades": [
                            {
                                "gradeCode": "L3",
                                "gradeName": "Level 3",
                                "classGroups": [
                                    {"classGroupId": "CG1", "classGroupName": "A"},
                                    {"classGroupId": "CG2", "classGroupName": "B"},
                                ],
                            },
                        ],
                    },
                    {
                        "combinationCode": "542",
                        "combinationName": "Networking",
                        "grades": [
                            {
                                "gradeCode": "L4",
                                "gradeName": "Level 4",
                                "classGroups": [{"classGroupId": "CG3", "classGroupName": "A"}],
                            },
                        ],
                    },
                ],
            },
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def school_payload():
    return build_school_payload
