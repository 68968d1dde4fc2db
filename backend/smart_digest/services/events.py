"""Scheduler observers.

The scheduler reports pass completions and unexpected errors to a list of
listeners so logging, metrics and real-time consumers stay decoupled from it.
Events are published to Redis as ``{"type": ..., "data": ...}`` JSON documents.
"""

import json
import logging
from typing import Optional, Protocol

from redis.exceptions import RedisError

from smart_digest.config import get_settings
from smart_digest.metrics import DIGEST_ERRORS, DIGEST_PASS_DURATION, DIGEST_RESULTS
from smart_digest.schemas.digest import PassSummary

logger = logging.getLogger(__name__)


class SchedulerListener(Protocol):
    async def on_run_complete(self, summary: PassSummary) -> None: ...

    async def on_error(self, error: BaseException, context: str) -> None: ...


class MetricsListener:
    """Record pass outcomes as Prometheus metrics."""

    async def on_run_complete(self, summary: PassSummary) -> None:
        DIGEST_PASS_DURATION.observe(summary.processing_time_ms / 1000)
        for result in summary.results:
            DIGEST_RESULTS.labels(cadence=result.cadence.value, status=result.status.value).inc()

    async def on_error(self, error: BaseException, context: str) -> None:
        DIGEST_ERRORS.labels(context=context).inc()


class RedisEventListener:
    """Publish pass outcomes to a Redis channel for real-time consumers."""

    def __init__(self, redis_url: Optional[str] = None, channel: Optional[str] = None):
        settings = get_settings()
        self._redis_url = redis_url if redis_url is not None else settings.redis_url
        self._channel = channel or settings.redis_events_channel

    async def publish_event(self, event_type: str, data: dict) -> bool:
        """Publish an event to Redis.

        Args:
            event_type: Event type identifier (e.g., "digest:run_complete")
            data: Event payload data

        Returns:
            True if event was published successfully, False otherwise
        """
        if not self._redis_url:
            logger.debug("Redis URL not configured, skipping event publish")
            return False

        from redis.asyncio import Redis

        redis = Redis.from_url(self._redis_url, decode_responses=True)
        try:
            await redis.publish(self._channel, json.dumps({"type": event_type, "data": data}))
            logger.debug(f"Published {event_type} event")
            return True
        except RedisError as e:
            logger.error(f"Failed to publish event {event_type}: {e}")
            return False
        finally:
            await redis.aclose()

    async def on_run_complete(self, summary: PassSummary) -> None:
        await self.publish_event(
            "digest:run_complete",
            {
                "sent": summary.sent,
                "skipped": summary.skipped,
                "failed": summary.failed,
                "processing_time_ms": summary.processing_time_ms,
            },
        )

    async def on_error(self, error: BaseException, context: str) -> None:
        await self.publish_event(
            "digest:error",
            {"context": context, "error": f"{type(error).__name__}: {error}"},
        )
