import os
import asyncio
import sqlite3
from datetime import datetime, date
from pathlib import Path

import pytest

os.environ.setdefault("USE_SQLITE", "true")
os.environ.setdefault("SQLITE_URL", "sqlite+aiosqlite:///./data/test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "")

# Avoid deprecated sqlite3 default datetime adapters in Python 3.12+.
sqlite3.register_adapter(datetime, lambda value: value.isoformat(sep=" "))
sqlite3.register_adapter(date, lambda value: value.isoformat())


@pytest.fixture(scope="session")
def sqlite_db_path() -> Path:
    return Path("data/test.db")


@pytest.fixture(autouse=True, scope="session")
def _ensure_test_db_dir(sqlite_db_path: Path) -> None:
    sqlite_db_path.parent.mkdir(parents=True, exist_ok=True)
    if sqlite_db_path.exists():
        sqlite_db_path.unlink()


@pytest.fixture(autouse=True, scope="session")
def _dispose_engine() -> None:
    yield
    from smart_digest.database import dispose_engine
    loop = asyncio.new_event_loop()
    loop.run_until_complete(dispose_engine())
    loop.close()


@pytest.fixture
def make_preference():
    """Build a fully populated, unsaved DigestPreference.

    Column defaults only apply on flush, so every field is set explicitly.
    """
    from smart_digest.models.digest_preference import DigestPreference

    def _make(**overrides) -> DigestPreference:
        fields = dict(
            user_id="user-1",
            email_address="rep@example.com",
            timezone="UTC",
            daily_digest_enabled=True,
            daily_send_time="09:00",
            weekly_digest_enabled=False,
            weekly_send_day="monday",
            weekly_send_time="08:00",
            immediate_digest_enabled=False,
            immediate_threshold=5,
            business_hours_start=8,
            business_hours_end=18,
            paused_until=None,
            include_appointments=True,
            include_followups=True,
            include_stale_deals=True,
            include_pipeline_summary=True,
            include_recent_wins=True,
            include_quarterly_checkins=False,
            include_new_referrals=True,
            appointment_lookahead_days=1,
            stale_deal_threshold_days=7,
            last_daily_sent_at=None,
            last_weekly_sent_at=None,
            last_immediate_sent_at=None,
            total_emails_sent=0,
        )
        fields.update(overrides)
        return DigestPreference(**fields)

    return _make


@pytest.fixture
def make_bundle():
    """Build a ContentBundle with ``appointments`` placeholder items."""
    from smart_digest.schemas.digest import Appointment, ContentBundle, PipelineSummary

    def _make(appointments: int = 0, total_deals: int = 0, total_value: float = 0.0) -> ContentBundle:
        return ContentBundle(
            appointments=[
                Appointment(
                    id=i + 1,
                    business_name=f"Merchant {i + 1}",
                    appointment_date=datetime(2026, 10, 19, 14, 0),
                )
                for i in range(appointments)
            ],
            pipeline_summary=PipelineSummary(total_deals=total_deals, total_value=total_value),
        )

    return _make
