import re
from datetime import datetime
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from smart_digest.models.digest_history import DigestStatus
from smart_digest.models.digest_preference import WEEKDAYS, Cadence

_SEND_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Content bundle (gatherer output)
# ---------------------------------------------------------------------------


class Appointment(BaseModel):
    id: int
    business_name: str
    appointment_date: datetime
    temperature: Optional[str] = None
    stage: Optional[str] = None


class FollowUp(BaseModel):
    id: int
    business_name: str
    next_follow_up_date: datetime
    follow_up_number: int = 0
    temperature: Optional[str] = None


class StaleDeal(BaseModel):
    id: int
    business_name: str
    last_activity_date: Optional[datetime] = None
    days_since_activity: int
    stage: Optional[str] = None
    estimated_value: Optional[float] = None


class RecentWin(BaseModel):
    id: int
    business_name: str
    won_date: datetime
    estimated_value: Optional[float] = None


class QuarterlyCheckin(BaseModel):
    id: int
    business_name: str
    next_quarterly_checkin: datetime


class NewReferral(BaseModel):
    id: int
    business_name: str
    referrer_name: Optional[str] = None
    created_at: datetime


class PipelineSummary(BaseModel):
    total_deals: int = 0
    total_value: float = 0.0
    deals_by_stage: Dict[str, int] = Field(default_factory=dict)


class ContentBundle(BaseModel):
    appointments: List[Appointment] = Field(default_factory=list)
    followups: List[FollowUp] = Field(default_factory=list)
    stale_deals: List[StaleDeal] = Field(default_factory=list)
    recent_wins: List[RecentWin] = Field(default_factory=list)
    quarterly_checkins: List[QuarterlyCheckin] = Field(default_factory=list)
    new_referrals: List[NewReferral] = Field(default_factory=list)
    pipeline_summary: PipelineSummary = Field(default_factory=PipelineSummary)

    @property
    def item_counts(self) -> Dict[str, int]:
        return {
            "appointments": len(self.appointments),
            "followups": len(self.followups),
            "stale_deals": len(self.stale_deals),
            "recent_wins": len(self.recent_wins),
            "quarterly_checkins": len(self.quarterly_checkins),
            "new_referrals": len(self.new_referrals),
        }

    @property
    def total_items(self) -> int:
        return sum(self.item_counts.values())

    @property
    def has_content(self) -> bool:
        return self.total_items > 0 or self.pipeline_summary.total_deals > 0


class CategoryConfig(BaseModel):
    """Content toggles and tuning values, passed through to the gatherer."""
    include_appointments: bool = True
    include_followups: bool = True
    include_stale_deals: bool = True
    include_pipeline_summary: bool = True
    include_recent_wins: bool = True
    include_quarterly_checkins: bool = False
    include_new_referrals: bool = True
    appointment_lookahead_days: int = 1
    stale_deal_threshold_days: int = 7

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Transport / run outcomes
# ---------------------------------------------------------------------------


class SendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    subject_line: Optional[str] = None


class DigestRunRecord(BaseModel):
    user_id: str
    cadence: Cadence
    status: DigestStatus
    reason: str = "scheduled"
    item_counts: Dict[str, int] = Field(default_factory=dict)
    pipeline_value: Optional[float] = None
    error: Optional[str] = None
    sent_at: datetime
    subject_line: Optional[str] = None
    provider_message_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DigestRunResult(BaseModel):
    user_id: str
    cadence: Cadence
    status: DigestStatus
    item_count: int = 0
    error: Optional[str] = None
    sent_at: datetime
    provider_message_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != DigestStatus.FAILED


class SchedulerStats(BaseModel):
    last_run: Optional[datetime] = None
    total_runs: int = 0
    total_sent: int = 0
    total_skipped: int = 0
    total_errors: int = 0
    next_run_time: Optional[datetime] = None
    average_processing_time_ms: float = 0.0
    is_running: bool = False


class PassSummary(BaseModel):
    results: List[DigestRunResult] = Field(default_factory=list)
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    processing_time_ms: float = 0.0


class RunPassResponse(BaseModel):
    started: bool
    results: List[DigestRunResult] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Preference API
# ---------------------------------------------------------------------------


class DigestPreferenceUpdate(BaseModel):
    email_address: Optional[str] = None
    timezone: Optional[str] = None
    daily_digest_enabled: Optional[bool] = None
    daily_send_time: Optional[str] = None
    weekly_digest_enabled: Optional[bool] = None
    weekly_send_day: Optional[str] = None
    weekly_send_time: Optional[str] = None
    immediate_digest_enabled: Optional[bool] = None
    immediate_threshold: Optional[int] = Field(default=None, ge=1)
    business_hours_start: Optional[int] = Field(default=None, ge=0, le=23)
    business_hours_end: Optional[int] = Field(default=None, ge=0, le=23)
    include_appointments: Optional[bool] = None
    include_followups: Optional[bool] = None
    include_stale_deals: Optional[bool] = None
    include_pipeline_summary: Optional[bool] = None
    include_recent_wins: Optional[bool] = None
    include_quarterly_checkins: Optional[bool] = None
    include_new_referrals: Optional[bool] = None
    appointment_lookahead_days: Optional[int] = Field(default=None, ge=1, le=30)
    stale_deal_threshold_days: Optional[int] = Field(default=None, ge=1, le=365)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("daily_send_time", "weekly_send_time")
    @classmethod
    def validate_send_time(cls, v):
        if v is not None and not _SEND_TIME_RE.match(v):
            raise ValueError("send time must be HH:MM (24-hour)")
        return v

    @field_validator("weekly_send_day")
    @classmethod
    def validate_send_day(cls, v):
        if v is None:
            return v
        v = v.lower()
        if v not in WEEKDAYS:
            raise ValueError(f"weekly_send_day must be one of {', '.join(WEEKDAYS)}")
        return v

    @model_validator(mode="after")
    def check_business_hours(self):
        start, end = self.business_hours_start, self.business_hours_end
        if start is not None and end is not None and start >= end:
            raise ValueError("business_hours_start must be before business_hours_end")
        return self


class DigestPreferenceResponse(BaseModel):
    user_id: str
    email_address: Optional[str] = None
    timezone: str
    daily_digest_enabled: bool
    daily_send_time: str
    weekly_digest_enabled: bool
    weekly_send_day: str
    weekly_send_time: str
    immediate_digest_enabled: bool
    immediate_threshold: int
    business_hours_start: int
    business_hours_end: int
    paused_until: Optional[datetime] = None
    last_daily_sent_at: Optional[datetime] = None
    last_weekly_sent_at: Optional[datetime] = None
    last_immediate_sent_at: Optional[datetime] = None
    total_emails_sent: int = 0

    model_config = ConfigDict(from_attributes=True)


class PauseRequest(BaseModel):
    until: datetime
