import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from smart_digest.database import Base


class DigestStatus(str, enum.Enum):
    SENT = "sent"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_THRESHOLD = "skipped_threshold"
    FAILED = "failed"


class DigestHistory(Base):
    """Append-only audit trail: one row per fire decision."""
    __tablename__ = "digest_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    cadence = Column(String(10), nullable=False)  # daily, weekly, immediate
    reason = Column(String(10), nullable=False, default="scheduled")  # scheduled, manual
    status = Column(String(20), nullable=False)
    item_counts = Column(JSON, nullable=False, default=dict)
    pipeline_value = Column(Float, nullable=True)
    error = Column(Text, nullable=True)
    subject_line = Column(String(255), nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    sent_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_digest_history_user_sent", "user_id", "sent_at"),
    )
