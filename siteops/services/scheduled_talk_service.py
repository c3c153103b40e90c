"""Scheduled talks: an employee working through an assigned toolbox talk.

Transaction policy: functions flush(), the route handler commits.

Employee flow: read sections in order → watch video → pass quiz → sign.
Talks are looked up through the caller's Employee record, so a talk
owned by someone else reads as "not found".
"""
import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal

from siteops.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from siteops.models import db
from siteops.models.toolbox import (
    DEFAULT_MAX_REMINDERS,
    DEFAULT_PASSING_SCORE,
    DEFAULT_REMINDER_FREQUENCY_DAYS,
    TALK_CANCELLED,
    TALK_COMPLETED,
    TALK_IN_PROGRESS,
    TALK_OVERDUE,
    TALK_PENDING,
    TALK_STATUSES,
    ScheduledTalk,
    ScheduledTalkCompletion,
    ScheduledTalkQuizAttempt,
    ToolboxTalkSettings,
)
from siteops.services import core_service, toolbox_talk_service
from siteops.utils.helpers import get_tenant_record, to_int

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (TALK_COMPLETED, TALK_CANCELLED)


def _now():
    return datetime.now(timezone.utc)


# ── Manager views ────────────────────────────────────────────────────────────


def get_talk(tenant_id, scheduled_talk_id):
    return get_tenant_record(ScheduledTalk, scheduled_talk_id, tenant_id, label="Scheduled talk")


def list_talks(tenant_id, employee_id=None, status=None, schedule_id=None, talk_id=None):
    if status and status not in TALK_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(TALK_STATUSES)}")
    q = ScheduledTalk.active_for_tenant(tenant_id)
    if employee_id:
        q = q.filter(ScheduledTalk.employee_id == employee_id)
    if status:
        q = q.filter(ScheduledTalk.status == status)
    if schedule_id:
        q = q.filter(ScheduledTalk.schedule_id == schedule_id)
    if talk_id:
        q = q.filter(ScheduledTalk.toolbox_talk_id == talk_id)
    return q.order_by(ScheduledTalk.due_date, ScheduledTalk.id)


def cancel_talk(tenant_id, scheduled_talk_id):
    talk = get_talk(tenant_id, scheduled_talk_id)
    if talk.status in CLOSED_STATUSES:
        raise InvalidTransitionError("ScheduledTalk", talk.status, TALK_CANCELLED)
    talk.status = TALK_CANCELLED
    db.session.flush()
    logger.info("Scheduled talk %d cancelled", talk.id, extra={"tenant_id": tenant_id})
    return talk


def mark_overdue_talks(today=None):
    """Pending / InProgress talks past their due date become Overdue (all tenants)."""
    today = today or date.today()
    count = (
        ScheduledTalk.query
        .filter(
            ScheduledTalk.deleted_at.is_(None),
            ScheduledTalk.status.in_((TALK_PENDING, TALK_IN_PROGRESS)),
            ScheduledTalk.due_date < today,
        )
        .update({"status": TALK_OVERDUE}, synchronize_session="fetch")
    )
    db.session.flush()
    if count:
        logger.info("Marked %d scheduled talks overdue", count)
    return count


def send_reminders(now=None):
    """Remind employees about overdue talks (all tenants).

    A talk past its due date that is still open gets a reminder when it
    is below the tenant's ``max_reminders`` and its last reminder is at
    least ``reminder_frequency_days`` old. Reminded talks are marked
    Overdue. Delivery is a log line; there is no mail transport.
    """
    now = now or _now()
    today = now.date()
    settings = {s.tenant_id: s for s in ToolboxTalkSettings.query.all()}
    talks = (
        ScheduledTalk.query
        .filter(
            ScheduledTalk.deleted_at.is_(None),
            ScheduledTalk.status.in_((TALK_PENDING, TALK_IN_PROGRESS, TALK_OVERDUE)),
            ScheduledTalk.due_date < today,
        )
        .order_by(ScheduledTalk.tenant_id, ScheduledTalk.id)
        .all()
    )

    sent = 0
    for talk in talks:
        tenant_settings = settings.get(talk.tenant_id)
        limit = DEFAULT_MAX_REMINDERS
        every = DEFAULT_REMINDER_FREQUENCY_DAYS
        if tenant_settings is not None:
            if tenant_settings.max_reminders is not None:
                limit = tenant_settings.max_reminders
            every = tenant_settings.reminder_frequency_days or every

        already = talk.reminders_sent or 0
        if already >= limit:
            continue
        if talk.last_reminder_at is not None and (today - talk.last_reminder_at.date()).days < every:
            continue

        talk.reminders_sent = already + 1
        talk.last_reminder_at = now
        talk.status = TALK_OVERDUE
        sent += 1
        logger.info(
            "Reminder %d sent to employee %d for %r (due %s)",
            talk.reminders_sent, talk.employee_id, talk.talk.title if talk.talk else talk.toolbox_talk_id,
            talk.due_date.isoformat(),
            extra={"tenant_id": talk.tenant_id},
        )

    db.session.flush()
    return sent


# ── Employee actions ─────────────────────────────────────────────────────────


def my_talks(tenant_id, user_id, status=None):
    employee = core_service.employee_for_user(tenant_id, user_id)
    return list_talks(tenant_id, employee_id=employee.id, status=status)


def get_my_talk(tenant_id, user_id, scheduled_talk_id):
    employee = core_service.employee_for_user(tenant_id, user_id)
    talk = get_talk(tenant_id, scheduled_talk_id)
    if talk.employee_id != employee.id:
        raise NotFoundError(resource="Scheduled talk", resource_id=scheduled_talk_id, tenant_id=tenant_id)
    return talk


def _require_open(talk):
    if talk.status in CLOSED_STATUSES:
        raise ValidationError(f"This talk is {talk.status} and can no longer be changed")


def _start(talk):
    if talk.status in (TALK_PENDING, TALK_OVERDUE):
        talk.status = TALK_IN_PROGRESS
        talk.started_at = talk.started_at or _now()


def _unread(talk):
    return [p for p in talk.section_progress if not p.is_read]


def mark_section_read(tenant_id, user_id, scheduled_talk_id, section_id, time_spent_seconds=0):
    """Mark one section read; sections must be read in section_number order."""
    talk = get_my_talk(tenant_id, user_id, scheduled_talk_id)
    _require_open(talk)

    progress = next((p for p in talk.section_progress if p.section_id == section_id), None)
    if progress is None:
        raise ValidationError(f"Section {section_id} is not part of this talk")

    number = progress.section.section_number
    earlier_unread = [
        p.section.section_number for p in talk.section_progress
        if not p.is_read and p.section.section_number < number
    ]
    if earlier_unread:
        raise ValidationError(
            f"Previous sections must be read first (unread: {', '.join(map(str, sorted(earlier_unread)))})",
        )

    seconds = to_int(time_spent_seconds, "time_spent_seconds", default=0)
    if seconds < 0:
        raise ValidationError("time_spent_seconds cannot be negative")
    progress.time_spent_seconds = (progress.time_spent_seconds or 0) + seconds
    if not progress.is_read:
        progress.is_read = True
        progress.read_at = _now()
    _start(talk)
    db.session.flush()
    return talk


def update_video_progress(tenant_id, user_id, scheduled_talk_id, watch_percent):
    talk = get_my_talk(tenant_id, user_id, scheduled_talk_id)
    _require_open(talk)
    pct = to_int(watch_percent, "watch_percent")
    if pct is None:
        raise ValidationError("watch_percent is required", details={"watch_percent": "required"})
    pct = max(0, min(100, pct))
    talk.video_watch_percent = max(talk.video_watch_percent or 0, pct)
    _start(talk)
    db.session.flush()
    return talk


def _normalise(answer):
    return str(answer).strip().casefold() if answer is not None else ""


def submit_quiz(tenant_id, user_id, scheduled_talk_id, answers):
    """Grade a quiz attempt. ``answers`` maps question id → answer text."""
    talk = get_my_talk(tenant_id, user_id, scheduled_talk_id)
    _require_open(talk)
    content = talk.talk
    if not content.requires_quiz or not content.questions:
        raise ValidationError("This talk does not have a quiz")
    if _unread(talk):
        raise ValidationError("All sections must be read before taking the quiz")
    if not isinstance(answers, dict):
        raise ValidationError("answers must be an object keyed by question id")

    given = {str(k): v for k, v in answers.items()}
    score = 0
    max_score = 0
    for question in content.questions:
        points = question.points or 0
        max_score += points
        if _normalise(given.get(str(question.id))) == _normalise(question.correct_answer):
            score += points

    percentage = Decimal("0")
    if max_score:
        percentage = (Decimal(score) / Decimal(max_score) * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_EVEN)
    passing = content.passing_score if content.passing_score is not None else DEFAULT_PASSING_SCORE
    passed = percentage >= passing

    attempt = ScheduledTalkQuizAttempt(
        attempt_number=len(talk.quiz_attempts) + 1,
        answers=given,
        score=score,
        max_score=max_score,
        percentage=percentage,
        passed=passed,
        attempted_at=_now(),
    )
    talk.quiz_attempts.append(attempt)
    _start(talk)
    db.session.flush()
    logger.info(
        "Quiz attempt %d on scheduled talk %d: %s/%s (%s)",
        attempt.attempt_number, talk.id, score, max_score, "passed" if passed else "failed",
        extra={"tenant_id": tenant_id},
    )
    return attempt


def complete_talk(tenant_id, user_id, scheduled_talk_id, data, ip_address=None, user_agent=None):
    """Sign off a talk once every requirement is met."""
    talk = get_my_talk(tenant_id, user_id, scheduled_talk_id)
    _require_open(talk)
    content = talk.talk

    if _unread(talk):
        raise ValidationError("All sections must be read before completing the talk")

    latest = talk.quiz_attempts[-1] if talk.quiz_attempts else None
    if content.requires_quiz and not any(a.passed for a in talk.quiz_attempts):
        raise ValidationError("A passing quiz attempt is required before completing the talk")

    if content.video_url:
        settings = toolbox_talk_service.get_settings(tenant_id)
        minimum = content.minimum_video_watch_percent or 0
        if settings.require_video_completion and (talk.video_watch_percent or 0) < minimum:
            raise ValidationError(
                f"At least {minimum}% of the video must be watched "
                f"(watched: {talk.video_watch_percent or 0}%)",
            )

    signature = (data.get("signature_data") or "").strip()
    signed_by = (data.get("signed_by_name") or "").strip()
    if not signature or not signed_by:
        missing = [f for f, v in (("signature_data", signature), ("signed_by_name", signed_by)) if not v]
        raise ValidationError("A signature is required to complete the talk",
                              details={f: "required" for f in missing})

    now = _now()
    talk.completion = ScheduledTalkCompletion(
        completed_at=now,
        total_time_spent_seconds=sum(p.time_spent_seconds or 0 for p in talk.section_progress),
        video_watch_percent=talk.video_watch_percent,
        quiz_score=latest.score if latest else None,
        quiz_max_score=latest.max_score if latest else None,
        quiz_passed=latest.passed if latest else None,
        signature_data=signature,
        signed_at=now,
        signed_by_name=signed_by,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
    )
    talk.status = TALK_COMPLETED
    db.session.flush()
    logger.info("Scheduled talk %d completed by %s", talk.id, signed_by, extra={"tenant_id": tenant_id})
    return talk
