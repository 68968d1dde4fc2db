"""Digest rendering and delivery.

Turns a gathered ContentBundle into a subject line plus HTML/text bodies and
hands them to the configured email provider.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from smart_digest.models.digest_preference import Cadence
from smart_digest.schemas.digest import ContentBundle, SendResult
from smart_digest.services.digest_due import DigestConfigError, resolve_timezone
from smart_digest.services.email_service import EmailService, TemplateRenderer, email_service, template_renderer

logger = logging.getLogger(__name__)

MAX_STALE_DEALS = 5


class DigestSender(Protocol):
    async def render_and_send(
        self,
        email_address: str,
        bundle: ContentBundle,
        app_base_url: str,
        cadence: Cadence,
        timezone: Optional[str] = None,
    ) -> SendResult: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DigestItem(BaseModel):
    text: str
    link: Optional[str] = None


class DigestSection(BaseModel):
    title: str
    content: str
    items: list[DigestItem] = Field(default_factory=list)


class ComposedDigest(BaseModel):
    subject: str
    greeting: str
    sections: list[DigestSection]
    closing: str


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _money(value: Optional[float]) -> str:
    return f"${value:,.0f}" if value else ""


def compose_digest(
    bundle: ContentBundle,
    cadence: Cadence,
    user_name: str = "there",
    now: Optional[datetime] = None,
) -> ComposedDigest:
    """Build the digest sections from gathered content."""
    now = now or datetime.now(timezone.utc)
    # Immediate digests read like a daily briefing
    label = "weekly" if Cadence(cadence) == Cadence.WEEKLY else "daily"
    sections: list[DigestSection] = []

    if bundle.appointments:
        sections.append(DigestSection(
            title="Upcoming Appointments",
            content=f"You have {_plural(len(bundle.appointments), 'appointment')} scheduled.",
            items=[
                DigestItem(
                    text=f"{a.business_name} - {a.appointment_date.strftime('%b %d, %I:%M %p')}",
                    link=f"/deals/{a.id}",
                )
                for a in sorted(bundle.appointments, key=lambda a: a.appointment_date)
            ],
        ))

    if bundle.followups:
        sections.append(DigestSection(
            title="Follow-Ups Due",
            content=f"{_plural(len(bundle.followups), 'follow-up')} need your attention.",
            items=[
                DigestItem(text=f"{f.business_name} - Follow-up #{f.follow_up_number + 1}", link=f"/deals/{f.id}")
                for f in bundle.followups
            ],
        ))

    if bundle.stale_deals:
        stale = sorted(bundle.stale_deals, key=lambda s: s.days_since_activity, reverse=True)
        sections.append(DigestSection(
            title="Deals Need Attention",
            content=f"{_plural(len(stale), 'deal')} haven't been updated recently.",
            items=[
                DigestItem(
                    text=f"{s.business_name} - {s.days_since_activity} days since last activity",
                    link=f"/deals/{s.id}",
                )
                for s in stale[:MAX_STALE_DEALS]
            ],
        ))

    if bundle.recent_wins:
        sections.append(DigestSection(
            title="Recent Wins",
            content=f"Congratulations on {_plural(len(bundle.recent_wins), 'closed deal')}!",
            items=[
                DigestItem(
                    text=" - ".join(part for part in (w.business_name, _money(w.estimated_value)) if part),
                    link=f"/deals/{w.id}",
                )
                for w in bundle.recent_wins
            ],
        ))

    if bundle.quarterly_checkins:
        sections.append(DigestSection(
            title="Quarterly Check-Ins",
            content=f"{_plural(len(bundle.quarterly_checkins), 'merchant')} due for a check-in this week.",
            items=[
                DigestItem(
                    text=f"{q.business_name} - {q.next_quarterly_checkin.strftime('%b %d')}",
                    link=f"/deals/{q.id}",
                )
                for q in bundle.quarterly_checkins
            ],
        ))

    if bundle.new_referrals:
        sections.append(DigestSection(
            title="New Referrals",
            content=f"{_plural(len(bundle.new_referrals), 'new referral')} came in.",
            items=[
                DigestItem(
                    text=f"{r.business_name}" + (f" (from {r.referrer_name})" if r.referrer_name else ""),
                )
                for r in bundle.new_referrals
            ],
        ))

    if bundle.pipeline_summary.total_deals > 0:
        summary = bundle.pipeline_summary
        sections.append(DigestSection(
            title="Pipeline Summary",
            content=f"You have {_plural(summary.total_deals, 'active deal')} worth ${summary.total_value:,.0f}.",
            items=[
                DigestItem(text=f"{stage.replace('_', ' ').title()}: {count}")
                for stage, count in sorted(summary.deals_by_stage.items())
            ],
        ))

    return ComposedDigest(
        subject=f"Your {label} sales briefing - {now.strftime('%b')} {now.day}",
        greeting=f"Good morning, {user_name}!",
        sections=sections,
        closing="Have a productive week!" if label == "weekly" else "Have a productive day!",
    )


class DigestMailer:
    """Render a ContentBundle and deliver it through the email service."""

    def __init__(
        self,
        service: EmailService = email_service,
        renderer: TemplateRenderer = template_renderer,
        user_name: str = "there",
        clock=_utcnow,
    ):
        self._service = service
        self._renderer = renderer
        self._user_name = user_name
        self._clock = clock

    def _local_now(self, tz_name: Optional[str]) -> datetime:
        now = self._clock()
        if not tz_name:
            return now
        try:
            return now.astimezone(resolve_timezone(tz_name))
        except DigestConfigError as e:
            logger.warning(f"Dating digest in UTC: {e}")
            return now

    async def render_and_send(
        self,
        email_address: str,
        bundle: ContentBundle,
        app_base_url: str,
        cadence: Cadence,
        timezone: Optional[str] = None,
    ) -> SendResult:
        digest = compose_digest(bundle, cadence, user_name=self._user_name, now=self._local_now(timezone))
        context = {
            "digest": digest,
            "app_base_url": app_base_url.rstrip("/"),
        }
        html = self._renderer.render("digest.html", **context)
        text = self._renderer.render("digest.txt", **context)

        result = await self._service.send(to=email_address, subject=digest.subject, html=html, text=text)
        return result.model_copy(update={"subject_line": digest.subject})
