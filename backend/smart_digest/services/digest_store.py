"""Preference and history persistence for the digest scheduler."""
import logging
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smart_digest.database import get_session_maker
from smart_digest.models.digest_history import DigestHistory
from smart_digest.models.digest_preference import ENABLED_FIELDS, Cadence, DigestPreference
from smart_digest.schemas.digest import DigestRunRecord

logger = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    async def get_active_preferences(self, cadence: Cadence) -> list[DigestPreference]: ...

    async def get_preference(self, user_id: str) -> Optional[DigestPreference]: ...

    async def update_preference(self, user_id: str, fields: dict[str, Any]) -> None: ...


class HistoryStore(Protocol):
    async def append_history(self, record: DigestRunRecord) -> None: ...


class DigestStore:
    """SQLAlchemy-backed preference store and history log.

    Every call opens its own session so a failure for one user never leaves a
    half-committed transaction behind for the next one.
    """

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self._session_factory = session_factory or get_session_maker()

    async def get_active_preferences(self, cadence: Cadence) -> list[DigestPreference]:
        """Coarse pre-filter: cadence enabled and an address to send to."""
        enabled_column = getattr(DigestPreference, ENABLED_FIELDS[Cadence(cadence)])
        async with self._session_factory() as session:
            result = await session.execute(
                select(DigestPreference)
                .where(enabled_column.is_(True))
                .where(DigestPreference.email_address.is_not(None))
                .where(DigestPreference.email_address != "")
                .order_by(DigestPreference.user_id)
            )
            return list(result.scalars().all())

    async def get_preference(self, user_id: str) -> Optional[DigestPreference]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DigestPreference).where(DigestPreference.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def upsert_preference(self, user_id: str, fields: dict[str, Any]) -> DigestPreference:
        """Create the user's preference on first opt-in, otherwise apply ``fields``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(DigestPreference).where(DigestPreference.user_id == user_id)
            )
            pref = result.scalar_one_or_none()
            if pref is None:
                pref = DigestPreference(user_id=user_id)
                session.add(pref)
            for key, value in fields.items():
                setattr(pref, key, value)
            await session.commit()
            await session.refresh(pref)
            return pref

    async def update_preference(self, user_id: str, fields: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DigestPreference).where(DigestPreference.user_id == user_id)
            )
            pref = result.scalar_one_or_none()
            if pref is None:
                logger.warning(f"Cannot update digest preference for unknown user {user_id}")
                return
            for key, value in fields.items():
                setattr(pref, key, value)
            await session.commit()

    async def append_history(self, record: DigestRunRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                DigestHistory(
                    user_id=record.user_id,
                    cadence=record.cadence.value,
                    reason=record.reason,
                    status=record.status.value,
                    item_counts=record.item_counts,
                    pipeline_value=record.pipeline_value,
                    error=record.error,
                    subject_line=record.subject_line,
                    provider_message_id=record.provider_message_id,
                    sent_at=record.sent_at,
                )
            )
            await session.commit()

    async def list_history(self, user_id: str, limit: int = 20) -> list[DigestHistory]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DigestHistory)
                .where(DigestHistory.user_id == user_id)
                .order_by(DigestHistory.sent_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
