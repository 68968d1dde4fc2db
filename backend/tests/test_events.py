import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from smart_digest.metrics import DIGEST_ERRORS, DIGEST_RESULTS
from smart_digest.models.digest_history import DigestStatus
from smart_digest.models.digest_preference import Cadence
from smart_digest.schemas.digest import DigestRunResult, PassSummary
from smart_digest.services.events import MetricsListener, RedisEventListener

NOW = datetime(2026, 10, 19, 9, 5, tzinfo=timezone.utc)


def _summary() -> PassSummary:
    return PassSummary(
        results=[
            DigestRunResult(user_id="a", cadence=Cadence.DAILY, status=DigestStatus.SENT, item_count=3, sent_at=NOW),
        ],
        sent=1,
        processing_time_ms=42.0,
    )


@pytest.mark.asyncio
async def test_metrics_listener_counts_results():
    counter = DIGEST_RESULTS.labels(cadence="daily", status="sent")
    before = counter._value.get()

    await MetricsListener().on_run_complete(_summary())

    assert counter._value.get() == before + 1


@pytest.mark.asyncio
async def test_metrics_listener_counts_errors():
    counter = DIGEST_ERRORS.labels(context="enumerate_daily")
    before = counter._value.get()

    await MetricsListener().on_error(ConnectionError("down"), "enumerate_daily")

    assert counter._value.get() == before + 1


@pytest.mark.asyncio
async def test_publish_skipped_without_redis_url():
    listener = RedisEventListener(redis_url="")
    assert await listener.publish_event("digest:run_complete", {}) is False


@pytest.mark.asyncio
async def test_run_complete_is_published():
    mock_redis = AsyncMock()

    with patch("redis.asyncio.Redis.from_url", return_value=mock_redis):
        listener = RedisEventListener(redis_url="redis://localhost:6379/0", channel="digest-events")
        await listener.on_run_complete(_summary())

    channel, payload = mock_redis.publish.await_args.args
    assert channel == "digest-events"
    event = json.loads(payload)
    assert event["type"] == "digest:run_complete"
    assert event["data"]["sent"] == 1
    assert event["data"]["processing_time_ms"] == 42.0
    mock_redis.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_publish_failure_returns_false():
    mock_redis = AsyncMock()
    mock_redis.publish.side_effect = RedisConnectionError("refused")

    with patch("redis.asyncio.Redis.from_url", return_value=mock_redis):
        listener = RedisEventListener(redis_url="redis://localhost:6379/0")
        published = await listener.publish_event("digest:error", {"context": "run_pass"})

    assert published is False
    mock_redis.aclose.assert_awaited_once()
