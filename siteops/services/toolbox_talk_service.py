"""Toolbox talk library: talks, their sections & quiz questions, tenant settings.

Transaction policy: functions flush(), the route handler commits.
"""
import logging

from sqlalchemy import or_

from siteops.core.exceptions import ValidationError
from siteops.models import db
from siteops.models.toolbox import (
    DEFAULT_DUE_DAYS,
    DEFAULT_MAX_REMINDERS,
    DEFAULT_REMINDER_FREQUENCY_DAYS,
    QUESTION_TYPES,
    SCHEDULE_ACTIVE,
    SCHEDULE_DRAFT,
    ScheduledTalkSectionProgress,
    ToolboxTalk,
    ToolboxTalkQuestion,
    ToolboxTalkSchedule,
    ToolboxTalkSection,
    ToolboxTalkSettings,
)
from siteops.utils.helpers import apply_fields, get_tenant_record, require_fields, to_int

logger = logging.getLogger(__name__)

TALK_FIELDS = (
    "title", "description", "category", "video_url", "attachment_url",
    "minimum_video_watch_percent", "requires_quiz", "passing_score", "is_active",
)
SECTION_FIELDS = ("section_number", "title", "content", "requires_acknowledgment")
QUESTION_FIELDS = (
    "question_number", "question_text", "question_type", "options", "correct_answer", "points",
)
SETTINGS_FIELDS = (
    "default_due_days", "require_video_completion", "reminder_frequency_days", "max_reminders",
)


def get_talk(tenant_id, talk_id):
    return get_tenant_record(ToolboxTalk, talk_id, tenant_id, label="Toolbox talk")


def list_talks(tenant_id, search=None, category=None, active_only=False):
    q = ToolboxTalk.active_for_tenant(tenant_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(ToolboxTalk.title.ilike(like), ToolboxTalk.description.ilike(like)))
    if category:
        q = q.filter(ToolboxTalk.category == category)
    if active_only:
        q = q.filter(ToolboxTalk.is_active.is_(True))
    return q.order_by(ToolboxTalk.title)


def _validate_talk(talk):
    if talk.requires_quiz:
        if talk.passing_score is None:
            raise ValidationError(
                "passing_score is required when requires_quiz is set",
                details={"passing_score": "required"},
            )
    if talk.passing_score is not None and not 1 <= talk.passing_score <= 100:
        raise ValidationError(
            "passing_score must be between 1 and 100", details={"passing_score": str(talk.passing_score)},
        )
    pct = talk.minimum_video_watch_percent
    if pct is not None and not 0 <= pct <= 100:
        raise ValidationError("minimum_video_watch_percent must be between 0 and 100")

    numbers = [s.section_number for s in talk.sections]
    duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
    if duplicates:
        raise ValidationError(
            f"Section numbers must be unique within a talk (duplicated: {', '.join(map(str, duplicates))})",
        )


def _number_new(items, attr):
    last = max((getattr(i, attr) for i in items if getattr(i, attr) is not None), default=0)
    for item in items:
        if getattr(item, attr) is None:
            last += 1
            setattr(item, attr, last)


def _sync_sections(talk, raw_sections):
    """Upsert sections by id; ones missing from the payload are removed.

    New sections without a ``section_number`` are appended after the
    highest number already in use.
    """
    existing = {s.id: s for s in talk.sections if s.id is not None}
    keep = []
    for raw in raw_sections:
        section = existing.pop(raw.get("id"), None) if raw.get("id") is not None else None
        if section is None:
            require_fields(raw, "title", "content")
            section = ToolboxTalkSection()
        apply_fields(section, raw, SECTION_FIELDS, ints=("section_number",))
        keep.append(section)
    _number_new(keep, "section_number")

    for orphan in existing.values():
        in_use = ScheduledTalkSectionProgress.query.filter_by(section_id=orphan.id).first()
        if in_use:
            raise ValidationError(
                f"Section '{orphan.title}' has recorded progress and cannot be removed",
            )
    talk.sections = keep


def _sync_questions(talk, raw_questions):
    existing = {q.id: q for q in talk.questions if q.id is not None}
    keep = []
    for raw in raw_questions:
        question = existing.pop(raw.get("id"), None) if raw.get("id") is not None else None
        if question is None:
            require_fields(raw, "question_text", "correct_answer")
            question = ToolboxTalkQuestion()
        apply_fields(question, raw, QUESTION_FIELDS, ints=("question_number", "points"))
        if question.question_type and question.question_type not in QUESTION_TYPES:
            raise ValidationError(f"question_type must be one of {', '.join(QUESTION_TYPES)}")
        if question.points is not None and question.points < 0:
            raise ValidationError("points cannot be negative")
        keep.append(question)
    _number_new(keep, "question_number")
    talk.questions = keep


def create_talk(tenant_id, data, user=None):
    require_fields(data, "title")
    talk = ToolboxTalk(
        tenant_id=tenant_id, created_by=user, is_active=True,
        requires_quiz=False, minimum_video_watch_percent=90,
    )
    apply_fields(talk, data, TALK_FIELDS, ints=("minimum_video_watch_percent", "passing_score"))
    _sync_sections(talk, data.get("sections") or [])
    _sync_questions(talk, data.get("questions") or [])
    _validate_talk(talk)
    db.session.add(talk)
    db.session.flush()
    logger.info("Toolbox talk %r created (%d sections)", talk.title, len(talk.sections),
                extra={"tenant_id": tenant_id})
    return talk


def update_talk(tenant_id, talk_id, data):
    talk = get_talk(tenant_id, talk_id)
    apply_fields(talk, data, TALK_FIELDS, ints=("minimum_video_watch_percent", "passing_score"))
    if "sections" in data:
        _sync_sections(talk, data["sections"] or [])
    if "questions" in data:
        _sync_questions(talk, data["questions"] or [])
    _validate_talk(talk)
    db.session.flush()
    return talk


def delete_talk(tenant_id, talk_id):
    talk = get_talk(tenant_id, talk_id)
    live = (
        ToolboxTalkSchedule.active_for_tenant(tenant_id)
        .filter(
            ToolboxTalkSchedule.toolbox_talk_id == talk.id,
            ToolboxTalkSchedule.status.in_((SCHEDULE_DRAFT, SCHEDULE_ACTIVE)),
        )
        .count()
    )
    if live:
        raise ValidationError(
            f"Toolbox talk '{talk.title}' has {live} active schedule(s); cancel them before deleting",
        )
    talk.soft_delete()
    db.session.flush()


# ── Settings ─────────────────────────────────────────────────────────────────


def get_settings(tenant_id):
    """The tenant's settings row, created with defaults on first read."""
    settings = ToolboxTalkSettings.query_for_tenant(tenant_id).first()
    if settings is None:
        settings = ToolboxTalkSettings(
            tenant_id=tenant_id,
            default_due_days=DEFAULT_DUE_DAYS,
            require_video_completion=True,
            reminder_frequency_days=DEFAULT_REMINDER_FREQUENCY_DAYS,
            max_reminders=DEFAULT_MAX_REMINDERS,
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def update_settings(tenant_id, data):
    settings = get_settings(tenant_id)
    apply_fields(
        settings, data, SETTINGS_FIELDS,
        ints=("default_due_days", "reminder_frequency_days", "max_reminders"),
    )
    for field in ("default_due_days", "reminder_frequency_days"):
        value = getattr(settings, field)
        if value is None or value < 1:
            raise ValidationError(f"{field} must be at least 1", details={field: str(value)})
    if settings.max_reminders is not None and settings.max_reminders < 0:
        raise ValidationError("max_reminders cannot be negative")
    db.session.flush()
    return settings


def due_days_for(tenant_id):
    settings = ToolboxTalkSettings.query_for_tenant(tenant_id).first()
    if settings is None or not settings.default_due_days:
        return DEFAULT_DUE_DAYS
    return to_int(settings.default_due_days)
