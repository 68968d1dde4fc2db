"""Content gathering: asks the CRM query service what belongs in a user's digest."""
import logging
from typing import Optional, Protocol

import httpx

from smart_digest.config import get_settings
from smart_digest.models.digest_preference import Cadence
from smart_digest.schemas.digest import CategoryConfig, ContentBundle

logger = logging.getLogger(__name__)


class ContentGatherer(Protocol):
    async def gather_content(
        self,
        user_id: str,
        timezone: str,
        categories: CategoryConfig,
        cadence: Cadence,
    ) -> ContentBundle: ...


def lookback_days_for(cadence: Cadence) -> int:
    # Immediate digests reuse the daily lookback
    return 7 if Cadence(cadence) == Cadence.WEEKLY else 1


class HttpContentGatherer:
    """Fetch a ContentBundle from the CRM query service over HTTP.

    Errors (timeouts, non-2xx responses, malformed payloads) propagate to the
    caller, which records them against the user being processed.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._base_url = (base_url or settings.gatherer_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.gatherer_api_key
        self._timeout = timeout or settings.digest_gather_timeout_seconds
        self._transport = transport

    async def gather_content(
        self,
        user_id: str,
        timezone: str,
        categories: CategoryConfig,
        cadence: Cadence,
    ) -> ContentBundle:
        payload = {
            "user_id": user_id,
            "timezone": timezone,
            "cadence": Cadence(cadence).value,
            "lookback_days": lookback_days_for(cadence),
            "categories": categories.model_dump(),
        }
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(f"{self._base_url}/digest-content", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        bundle = ContentBundle.model_validate(data)
        logger.debug(f"Gathered {bundle.total_items} digest items for user {user_id}")
        return bundle
