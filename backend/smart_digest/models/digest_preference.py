import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID

from smart_digest.database import Base


class Cadence(str, enum.Enum):
    """Independent delivery tiers a user can enable."""
    DAILY = "daily"
    WEEKLY = "weekly"
    IMMEDIATE = "immediate"


# Processing order within one pass
CADENCE_ORDER = (Cadence.DAILY, Cadence.WEEKLY, Cadence.IMMEDIATE)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

ENABLED_FIELDS = {
    Cadence.DAILY: "daily_digest_enabled",
    Cadence.WEEKLY: "weekly_digest_enabled",
    Cadence.IMMEDIATE: "immediate_digest_enabled",
}

SEND_TIME_FIELDS = {
    Cadence.DAILY: "daily_send_time",
    Cadence.WEEKLY: "weekly_send_time",
}

LAST_SENT_FIELDS = {
    Cadence.DAILY: "last_daily_sent_at",
    Cadence.WEEKLY: "last_weekly_sent_at",
    Cadence.IMMEDIATE: "last_immediate_sent_at",
}


class DigestPreference(Base):
    """Digest configuration for one user, all cadence tiers together."""
    __tablename__ = "digest_preferences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    email_address = Column(String(320), nullable=True)
    timezone = Column(String(64), nullable=False, default="America/New_York")

    daily_digest_enabled = Column(Boolean, nullable=False, default=True)
    daily_send_time = Column(String(5), nullable=False, default="07:00")  # HH:MM local

    weekly_digest_enabled = Column(Boolean, nullable=False, default=False)
    weekly_send_day = Column(String(10), nullable=False, default="monday")
    weekly_send_time = Column(String(5), nullable=False, default="08:00")

    immediate_digest_enabled = Column(Boolean, nullable=False, default=False)
    immediate_threshold = Column(Integer, nullable=False, default=5)
    business_hours_start = Column(Integer, nullable=False, default=8)  # 0-23 local
    business_hours_end = Column(Integer, nullable=False, default=18)  # 0-23 local

    paused_until = Column(DateTime(timezone=True), nullable=True)

    # Content toggles, passed through to the gatherer
    include_appointments = Column(Boolean, nullable=False, default=True)
    include_followups = Column(Boolean, nullable=False, default=True)
    include_stale_deals = Column(Boolean, nullable=False, default=True)
    include_pipeline_summary = Column(Boolean, nullable=False, default=True)
    include_recent_wins = Column(Boolean, nullable=False, default=True)
    include_quarterly_checkins = Column(Boolean, nullable=False, default=False)
    include_new_referrals = Column(Boolean, nullable=False, default=True)
    appointment_lookahead_days = Column(Integer, nullable=False, default=1)
    stale_deal_threshold_days = Column(Integer, nullable=False, default=7)

    last_daily_sent_at = Column(DateTime(timezone=True), nullable=True)
    last_weekly_sent_at = Column(DateTime(timezone=True), nullable=True)
    last_immediate_sent_at = Column(DateTime(timezone=True), nullable=True)
    total_emails_sent = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), onupdate=lambda: datetime.now(timezone.utc))

    def is_enabled(self, cadence: Cadence) -> bool:
        return bool(getattr(self, ENABLED_FIELDS[cadence]))

    def last_sent_at(self, cadence: Cadence) -> datetime | None:
        return getattr(self, LAST_SENT_FIELDS[cadence])

    def __repr__(self) -> str:
        return f"<DigestPreference {self.user_id} ({self.timezone})>"
