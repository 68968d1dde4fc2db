import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from smart_digest.schemas.digest import (
    DigestPreferenceResponse,
    DigestPreferenceUpdate,
    DigestRunRecord,
    DigestRunResult,
    PauseRequest,
    RunPassResponse,
    SchedulerStats,
)
from smart_digest.services.digest_scheduler import PreferenceNotFoundError, SmartDigestScheduler
from smart_digest.services.digest_store import DigestStore

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()


def get_digest_scheduler(request: Request) -> SmartDigestScheduler:
    return request.app.state.digest_scheduler


def get_digest_store(request: Request) -> DigestStore:
    return request.app.state.digest_store


# ---------------------------------------------------------------------------
# Operator endpoints
# ---------------------------------------------------------------------------


@admin_router.get("/stats", response_model=SchedulerStats)
async def get_scheduler_stats(scheduler: SmartDigestScheduler = Depends(get_digest_scheduler)):
    return scheduler.get_stats()


@admin_router.post("/run", response_model=RunPassResponse)
async def run_digest_pass(scheduler: SmartDigestScheduler = Depends(get_digest_scheduler)):
    """Run one evaluation pass now. Ignored if a pass is already running."""
    if scheduler.get_stats().is_running:
        return RunPassResponse(started=False)
    results = await scheduler.run_pass()
    return RunPassResponse(started=True, results=results)


# ---------------------------------------------------------------------------
# Per-user endpoints
# ---------------------------------------------------------------------------


async def _require_preference(store: DigestStore, user_id: str):
    pref = await store.get_preference(user_id)
    if not pref:
        raise HTTPException(status_code=404, detail="No digest preferences found")
    return pref


@router.get("/{user_id}/preferences", response_model=DigestPreferenceResponse)
async def get_digest_preferences(user_id: str, store: DigestStore = Depends(get_digest_store)):
    return await _require_preference(store, user_id)


@router.put("/{user_id}/preferences", response_model=DigestPreferenceResponse)
async def update_digest_preferences(
    user_id: str,
    payload: DigestPreferenceUpdate,
    store: DigestStore = Depends(get_digest_store),
):
    """Create or update a user's digest preferences."""
    data = payload.model_dump(exclude_unset=True)
    existing = await store.get_preference(user_id)
    if existing:
        start = data.get("business_hours_start", existing.business_hours_start)
        end = data.get("business_hours_end", existing.business_hours_end)
        if start >= end:
            raise HTTPException(status_code=400, detail="business_hours_start must be before business_hours_end")
    return await store.upsert_preference(user_id, data)


@router.post("/{user_id}/pause", response_model=DigestPreferenceResponse)
async def pause_digests(user_id: str, payload: PauseRequest, store: DigestStore = Depends(get_digest_store)):
    await _require_preference(store, user_id)
    return await store.upsert_preference(user_id, {"paused_until": payload.until})


@router.post("/{user_id}/resume", response_model=DigestPreferenceResponse)
async def resume_digests(user_id: str, store: DigestStore = Depends(get_digest_store)):
    await _require_preference(store, user_id)
    return await store.upsert_preference(user_id, {"paused_until": None})


@router.post("/{user_id}/send-now", response_model=DigestRunResult)
async def send_digest_now(user_id: str, scheduler: SmartDigestScheduler = Depends(get_digest_scheduler)):
    """Send this user's digest immediately, outside the normal schedule."""
    try:
        return await scheduler.trigger_for_user(user_id)
    except PreferenceNotFoundError:
        raise HTTPException(status_code=404, detail="No digest preferences found")
    except asyncio.TimeoutError:
        logger.warning(f"Preference lookup timed out for user {user_id}")
        raise HTTPException(status_code=503, detail="Digest store unavailable")


@router.get("/{user_id}/history", response_model=List[DigestRunRecord])
async def get_digest_history(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    store: DigestStore = Depends(get_digest_store),
):
    return await store.list_history(user_id, limit=limit)
