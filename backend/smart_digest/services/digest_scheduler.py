"""Adaptive multi-cadence digest scheduler.

One evaluation pass at a time walks the daily, weekly and immediate cadences,
asks the due-time evaluator about every user, gathers content for the users
that are due, gates empty or below-threshold bundles, sends the rest and
records one history row per fire decision. After each pass the planner picks
the next sleep and a one-shot APScheduler job is re-armed for that instant.

Only one scheduler instance may be active per deployment; that is enforced
outside this process (single replica or leader election).
"""
import asyncio
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Iterable, Optional, TypeVar

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from smart_digest.config import Settings, get_settings
from smart_digest.metrics import DIGEST_NEXT_SLEEP
from smart_digest.models.digest_history import DigestStatus
from smart_digest.models.digest_preference import CADENCE_ORDER, LAST_SENT_FIELDS, Cadence
from smart_digest.schemas.digest import (
    CategoryConfig,
    DigestRunRecord,
    DigestRunResult,
    PassSummary,
    SchedulerStats,
)
from smart_digest.services.digest_due import is_due
from smart_digest.services.digest_gatherer import ContentGatherer
from smart_digest.services.digest_mailer import DigestSender
from smart_digest.services.digest_planner import next_sleep_duration
from smart_digest.services.digest_store import HistoryStore, PreferenceStore
from smart_digest.services.events import SchedulerListener

logger = structlog.get_logger(__name__)

JOB_ID = "smart_digest_pass"
DEFAULT_IMMEDIATE_THRESHOLD = 5

T = TypeVar("T")


class SchedulerError(Exception):
    """Base class for digest scheduler errors."""


class PreferenceNotFoundError(SchedulerError):
    def __init__(self, user_id: str):
        super().__init__(f"No digest preferences found for user {user_id}")
        self.user_id = user_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class SmartDigestScheduler:
    """Run coordinator: owns the wake/sleep loop, the pass, and its statistics."""

    def __init__(
        self,
        store: PreferenceStore,
        gatherer: ContentGatherer,
        sender: DigestSender,
        *,
        history: Optional[HistoryStore] = None,
        settings: Optional[Settings] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        listeners: Iterable[SchedulerListener] = (),
        clock=_utcnow,
    ):
        self._store = store
        self._history = history if history is not None else store
        self._gatherer = gatherer
        self._sender = sender
        self._settings = settings or get_settings()
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._listeners = list(listeners)
        self._clock = clock

        self._stats = SchedulerStats()
        self._processing_times: deque[float] = deque(maxlen=self._settings.digest_processing_time_samples)
        self._started = False
        self._enumeration_failed = False
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._started

    def add_listener(self, listener: SchedulerListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        """Arm the first pass immediately. Must be called from a running event loop."""
        if self._started:
            logger.warning("Digest scheduler already running")
            return

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone="UTC")
        if not self._scheduler.running:
            self._scheduler.start()

        self._started = True
        logger.info("Starting smart digest scheduler")
        self._arm(timedelta(0))

    def stop(self) -> None:
        """Disarm the timer. A pass already in progress runs to completion."""
        if not self._started:
            return
        self._started = False
        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(JOB_ID)
            except JobLookupError:
                pass
        self._stats.next_run_time = None
        logger.info("Digest scheduler stopped")

    async def wait_until_idle(self) -> None:
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Stop, let any running pass finish, then release an owned APScheduler."""
        self.stop()
        await self.wait_until_idle()
        if self._owns_scheduler and self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

    def get_stats(self) -> SchedulerStats:
        return self._stats.model_copy()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _arm(self, delay: timedelta) -> None:
        run_date = self._clock() + delay
        self._stats.next_run_time = run_date
        DIGEST_NEXT_SLEEP.set(delay.total_seconds())
        self._scheduler.add_job(
            self._run_and_schedule_next,
            "date",
            run_date=run_date,
            id=JOB_ID,
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug("Next digest pass armed", delay_seconds=round(delay.total_seconds()), run_date=run_date.isoformat())

    async def _run_and_schedule_next(self) -> None:
        if not self._started:
            return
        try:
            await self.run_pass()
        except Exception as e:
            logger.error("Digest pass failed", error=_describe(e), exc_info=True)
            self._stats.total_errors += 1
            self._enumeration_failed = True
            await self._notify_error(e, "run_pass")

        delay = await self.plan_next_interval()
        if self._started:
            self._arm(delay)

    async def plan_next_interval(self) -> timedelta:
        settings = self._settings
        min_interval = timedelta(seconds=settings.digest_min_check_interval_seconds)
        if self._enumeration_failed:
            return min_interval
        try:
            preferences = await self._all_active_preferences()
        except Exception as e:
            logger.warning("Could not enumerate preferences for planning", error=_describe(e))
            return min_interval
        return next_sleep_duration(
            preferences,
            self._clock(),
            min_interval=min_interval,
            max_interval=timedelta(seconds=settings.digest_max_check_interval_seconds),
            immediate_interval=timedelta(seconds=settings.digest_immediate_check_interval_seconds),
            window_minutes=settings.digest_delivery_window_minutes,
        )

    async def _bounded(self, call: Awaitable[T]) -> T:
        """Await a store call, giving up after the configured store timeout."""
        return await asyncio.wait_for(call, timeout=self._settings.digest_store_timeout_seconds)

    async def _all_active_preferences(self) -> list:
        by_user = {}
        for cadence in CADENCE_ORDER:
            for pref in await self._bounded(self._store.get_active_preferences(cadence)):
                by_user[pref.user_id] = pref
        return list(by_user.values())

    # ------------------------------------------------------------------
    # Evaluation pass
    # ------------------------------------------------------------------

    async def run_pass(self) -> list[DigestRunResult]:
        """Run one evaluation pass over every cadence.

        Returns an empty list without doing anything if a pass is already running.
        """
        if self._stats.is_running:
            logger.info("Digest pass already running, skipping")
            return []

        self._stats.is_running = True
        self._idle.clear()
        self._enumeration_failed = False
        started = time.monotonic()
        results: list[DigestRunResult] = []
        not_due = 0

        try:
            for cadence in CADENCE_ORDER:
                cadence_results, skipped = await self._process_cadence(cadence)
                results.extend(cadence_results)
                not_due += skipped

            processing_ms = (time.monotonic() - started) * 1000
            self._processing_times.append(processing_ms)
            self._stats.average_processing_time_ms = sum(self._processing_times) / len(self._processing_times)

            sent = sum(1 for r in results if r.status == DigestStatus.SENT)
            failed = sum(1 for r in results if r.status == DigestStatus.FAILED)
            skipped = not_due + len(results) - sent - failed

            self._stats.last_run = self._clock()
            self._stats.total_runs += 1
            self._stats.total_sent += sent
            self._stats.total_skipped += skipped
            self._stats.total_errors += failed

            if results:
                logger.info(
                    "Digest pass complete",
                    sent=sent,
                    skipped=skipped,
                    failed=failed,
                    processing_ms=round(processing_ms),
                )
            await self._notify_run_complete(
                PassSummary(
                    results=results,
                    sent=sent,
                    skipped=skipped,
                    failed=failed,
                    processing_time_ms=processing_ms,
                )
            )
        finally:
            self._stats.is_running = False
            self._idle.set()

        return results

    async def _process_cadence(self, cadence: Cadence) -> tuple[list[DigestRunResult], int]:
        try:
            preferences = await self._bounded(self._store.get_active_preferences(cadence))
        except Exception as e:
            logger.error("Failed to load digest preferences", cadence=cadence.value, error=_describe(e))
            self._stats.total_errors += 1
            self._enumeration_failed = True
            await self._notify_error(e, f"enumerate_{cadence.value}")
            return [], 0

        settings = self._settings
        results = []
        not_due = 0
        for pref in preferences:
            try:
                due = is_due(
                    pref,
                    cadence,
                    self._clock(),
                    window_minutes=settings.digest_delivery_window_minutes,
                    immediate_cooldown=timedelta(minutes=settings.digest_immediate_cooldown_minutes),
                )
            except Exception as e:
                logger.warning("Could not evaluate digest preference", user_id=pref.user_id, error=_describe(e))
                due = False
            if not due:
                not_due += 1
                continue
            results.append(await self._deliver(pref, cadence, reason="scheduled"))
        return results, not_due

    # ------------------------------------------------------------------
    # Ad-hoc trigger
    # ------------------------------------------------------------------

    async def trigger_for_user(self, user_id: str) -> DigestRunResult:
        """Send a daily digest now, bypassing the due-time checks but not content gating."""
        pref = await self._bounded(self._store.get_preference(user_id))
        if pref is None:
            raise PreferenceNotFoundError(user_id)
        return await self._deliver(pref, Cadence.DAILY, reason="manual")

    # ------------------------------------------------------------------
    # Per-user delivery
    # ------------------------------------------------------------------

    async def _deliver(self, pref, cadence: Cadence, reason: str) -> DigestRunResult:
        """Gather, gate, send and record for one user. Never raises."""
        settings = self._settings
        bundle = None
        subject_line = None
        message_id = None
        error = None

        with structlog.contextvars.bound_contextvars(user_id=pref.user_id, cadence=cadence.value):
            try:
                if not pref.email_address:
                    raise SchedulerError("No email address on digest preference")

                bundle = await asyncio.wait_for(
                    self._gatherer.gather_content(
                        pref.user_id,
                        pref.timezone,
                        CategoryConfig.model_validate(pref),
                        cadence,
                    ),
                    timeout=settings.digest_gather_timeout_seconds,
                )

                threshold = pref.immediate_threshold or DEFAULT_IMMEDIATE_THRESHOLD
                if not bundle.has_content:
                    logger.debug("Skipping empty digest")
                    status = DigestStatus.SKIPPED_EMPTY
                elif cadence == Cadence.IMMEDIATE and bundle.total_items < threshold:
                    logger.debug("Skipping immediate digest below threshold", items=bundle.total_items, threshold=threshold)
                    status = DigestStatus.SKIPPED_THRESHOLD
                else:
                    send_result = await asyncio.wait_for(
                        self._sender.render_and_send(
                            pref.email_address,
                            bundle,
                            settings.app_base_url,
                            cadence,
                            timezone=pref.timezone,
                        ),
                        timeout=settings.digest_send_timeout_seconds,
                    )
                    subject_line = send_result.subject_line
                    if send_result.success:
                        status = DigestStatus.SENT
                        message_id = send_result.message_id
                    else:
                        status = DigestStatus.FAILED
                        error = send_result.error or "Unknown delivery error"
                        logger.warning("Digest delivery failed", error=error)
            except Exception as e:
                logger.error("Error sending digest", error=_describe(e), exc_info=True)
                status = DigestStatus.FAILED
                error = f"{type(e).__name__}: {_describe(e)}"

            now = self._clock()
            await self._append_history(
                DigestRunRecord(
                    user_id=pref.user_id,
                    cadence=cadence,
                    status=status,
                    reason=reason,
                    item_counts=bundle.item_counts if bundle else {},
                    pipeline_value=bundle.pipeline_summary.total_value if bundle else None,
                    error=error,
                    sent_at=now,
                    subject_line=subject_line,
                    provider_message_id=message_id,
                )
            )
            if status == DigestStatus.SENT:
                await self._mark_sent(pref, cadence, now)
                logger.info("Digest sent", reason=reason)

        return DigestRunResult(
            user_id=pref.user_id,
            cadence=cadence,
            status=status,
            item_count=bundle.total_items if bundle else 0,
            error=error,
            sent_at=now,
            provider_message_id=message_id,
        )

    async def _append_history(self, record: DigestRunRecord) -> None:
        try:
            await self._bounded(self._history.append_history(record))
        except Exception as e:
            logger.error("Failed to write digest history", status=record.status.value, error=_describe(e))
            await self._notify_error(e, "append_history")

    async def _mark_sent(self, pref, cadence: Cadence, now: datetime) -> None:
        fields = {
            LAST_SENT_FIELDS[cadence]: now,
            "total_emails_sent": (pref.total_emails_sent or 0) + 1,
        }
        try:
            await self._bounded(self._store.update_preference(pref.user_id, fields))
        except Exception as e:
            logger.error("Failed to record digest delivery on preference", error=_describe(e))
            await self._notify_error(e, "update_preference")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    async def _notify_run_complete(self, summary: PassSummary) -> None:
        for listener in self._listeners:
            try:
                await listener.on_run_complete(summary)
            except Exception as e:
                logger.warning("Digest listener failed", listener=type(listener).__name__, error=_describe(e))

    async def _notify_error(self, error: BaseException, context: str) -> None:
        for listener in self._listeners:
            try:
                await listener.on_error(error, context)
            except Exception as e:
                logger.warning("Digest listener failed", listener=type(listener).__name__, error=_describe(e))
