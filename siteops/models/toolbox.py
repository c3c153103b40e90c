"""
Toolbox Talk Models: safety-training content, schedules, and per-employee
assignments.

    ToolboxTalk ──< ToolboxTalkSection
                └─< ToolboxTalkQuestion
    ToolboxTalkSchedule ──< ToolboxTalkScheduleAssignment (one per target employee)
    ScheduledTalk (one employee × one run) ──< SectionProgress
                                           ├─< QuizAttempt
                                           └── Completion (signature record)
"""

from siteops.models import db
from siteops.models.base import TenantModel, iso, money
from siteops.models.soft_delete import SoftDeleteMixin

# ── Schedule recurrence / status ─────────────────────────────────────────────
FREQ_ONCE = "Once"
FREQ_WEEKLY = "Weekly"
FREQ_MONTHLY = "Monthly"
FREQ_ANNUALLY = "Annually"
FREQUENCIES = (FREQ_ONCE, FREQ_WEEKLY, FREQ_MONTHLY, FREQ_ANNUALLY)

SCHEDULE_DRAFT = "Draft"
SCHEDULE_ACTIVE = "Active"
SCHEDULE_COMPLETED = "Completed"
SCHEDULE_CANCELLED = "Cancelled"

# ── ScheduledTalk status ─────────────────────────────────────────────────────
TALK_PENDING = "Pending"
TALK_IN_PROGRESS = "InProgress"
TALK_COMPLETED = "Completed"
TALK_OVERDUE = "Overdue"
TALK_CANCELLED = "Cancelled"
TALK_STATUSES = (TALK_PENDING, TALK_IN_PROGRESS, TALK_COMPLETED, TALK_OVERDUE, TALK_CANCELLED)

QUESTION_TYPES = ("MultipleChoice", "TrueFalse", "ShortAnswer")

DEFAULT_DUE_DAYS = 7
DEFAULT_PASSING_SCORE = 80
DEFAULT_REMINDER_FREQUENCY_DAYS = 1
DEFAULT_MAX_REMINDERS = 5


class ToolboxTalk(SoftDeleteMixin, TenantModel):
    __tablename__ = "toolbox_talks"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(100))
    video_url = db.Column(db.String(500))
    attachment_url = db.Column(db.String(500))
    minimum_video_watch_percent = db.Column(db.Integer, default=90)
    requires_quiz = db.Column(db.Boolean, default=False)
    passing_score = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    sections = db.relationship(
        "ToolboxTalkSection", back_populates="talk", cascade="all, delete-orphan",
        order_by="ToolboxTalkSection.section_number",
    )
    questions = db.relationship(
        "ToolboxTalkQuestion", back_populates="talk", cascade="all, delete-orphan",
        order_by="ToolboxTalkQuestion.question_number",
    )

    def to_dict(self, include_content=True, include_answers=True):
        d = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "video_url": self.video_url,
            "attachment_url": self.attachment_url,
            "minimum_video_watch_percent": self.minimum_video_watch_percent,
            "requires_quiz": self.requires_quiz,
            "passing_score": self.passing_score,
            "is_active": self.is_active,
            "section_count": len(self.sections),
            "question_count": len(self.questions),
            **self._audit_dict(),
        }
        if include_content:
            d["sections"] = [s.to_dict() for s in self.sections]
            d["questions"] = [q.to_dict(include_answer=include_answers) for q in self.questions]
        return d


class ToolboxTalkSection(db.Model):
    __tablename__ = "toolbox_talk_sections"

    id = db.Column(db.Integer, primary_key=True)
    toolbox_talk_id = db.Column(
        db.Integer, db.ForeignKey("toolbox_talks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    section_number = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    requires_acknowledgment = db.Column(db.Boolean, default=True)

    talk = db.relationship("ToolboxTalk", back_populates="sections")

    def to_dict(self):
        return {
            "id": self.id,
            "section_number": self.section_number,
            "title": self.title,
            "content": self.content,
            "requires_acknowledgment": self.requires_acknowledgment,
        }


class ToolboxTalkQuestion(db.Model):
    __tablename__ = "toolbox_talk_questions"

    id = db.Column(db.Integer, primary_key=True)
    toolbox_talk_id = db.Column(
        db.Integer, db.ForeignKey("toolbox_talks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_number = db.Column(db.Integer, nullable=False)
    question_text = db.Column(db.Text, nullable=False)
    question_type = db.Column(db.String(30), default="MultipleChoice")
    options = db.Column(db.JSON)  # list[str] for MultipleChoice
    correct_answer = db.Column(db.String(500), nullable=False)
    points = db.Column(db.Integer, default=1)

    talk = db.relationship("ToolboxTalk", back_populates="questions")

    def to_dict(self, include_answer=True):
        d = {
            "id": self.id,
            "question_number": self.question_number,
            "question_text": self.question_text,
            "question_type": self.question_type,
            "options": self.options,
            "points": self.points,
        }
        if include_answer:
            d["correct_answer"] = self.correct_answer
        return d


class ToolboxTalkSettings(TenantModel):
    """Per-tenant defaults; one row per tenant, created on first read."""

    __tablename__ = "toolbox_talk_settings"

    id = db.Column(db.Integer, primary_key=True)
    default_due_days = db.Column(db.Integer, default=DEFAULT_DUE_DAYS)
    require_video_completion = db.Column(db.Boolean, default=True)
    reminder_frequency_days = db.Column(db.Integer, default=DEFAULT_REMINDER_FREQUENCY_DAYS)
    max_reminders = db.Column(db.Integer, default=DEFAULT_MAX_REMINDERS)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_toolbox_settings_tenant"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "default_due_days": self.default_due_days,
            "require_video_completion": self.require_video_completion,
            "reminder_frequency_days": self.reminder_frequency_days,
            "max_reminders": self.max_reminders,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Schedules
# ═════════════════════════════════════════════════════════════════════════════

class ToolboxTalkSchedule(SoftDeleteMixin, TenantModel):
    __tablename__ = "toolbox_talk_schedules"

    id = db.Column(db.Integer, primary_key=True)
    toolbox_talk_id = db.Column(db.Integer, db.ForeignKey("toolbox_talks.id"), nullable=False, index=True)
    scheduled_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    frequency = db.Column(db.String(20), nullable=False, default=FREQ_ONCE)
    assign_to_all_employees = db.Column(db.Boolean, default=False)
    status = db.Column(db.String(20), nullable=False, default=SCHEDULE_DRAFT, index=True)
    next_run_date = db.Column(db.Date, nullable=True, index=True)
    last_processed_at = db.Column(db.DateTime)
    notes = db.Column(db.Text)

    talk = db.relationship("ToolboxTalk")
    assignments = db.relationship(
        "ToolboxTalkScheduleAssignment", back_populates="schedule", cascade="all, delete-orphan",
        order_by="ToolboxTalkScheduleAssignment.id",
    )

    @property
    def is_recurring(self):
        return self.frequency != FREQ_ONCE

    def to_dict(self, include_assignments=False):
        d = {
            "id": self.id,
            "toolbox_talk_id": self.toolbox_talk_id,
            "toolbox_talk_title": self.talk.title if self.talk else None,
            "scheduled_date": iso(self.scheduled_date),
            "end_date": iso(self.end_date),
            "frequency": self.frequency,
            "assign_to_all_employees": self.assign_to_all_employees,
            "status": self.status,
            "next_run_date": iso(self.next_run_date),
            "last_processed_at": iso(self.last_processed_at),
            "notes": self.notes,
            "assignment_count": len(self.assignments),
            "processed_count": sum(1 for a in self.assignments if a.is_processed),
            **self._audit_dict(),
        }
        if include_assignments:
            d["assignments"] = [a.to_dict() for a in self.assignments]
        return d


class ToolboxTalkScheduleAssignment(db.Model):
    __tablename__ = "toolbox_talk_schedule_assignments"

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(
        db.Integer, db.ForeignKey("toolbox_talk_schedules.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False)
    is_processed = db.Column(db.Boolean, default=False, nullable=False)
    processed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint("schedule_id", "employee_id", name="uq_schedule_assignment_employee"),
    )

    schedule = db.relationship("ToolboxTalkSchedule", back_populates="assignments")
    employee = db.relationship("Employee")

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "employee_name": self.employee.full_name if self.employee else None,
            "is_processed": self.is_processed,
            "processed_at": iso(self.processed_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Scheduled talks (materialised assignments)
# ═════════════════════════════════════════════════════════════════════════════

class ScheduledTalk(SoftDeleteMixin, TenantModel):
    __tablename__ = "scheduled_talks"

    id = db.Column(db.Integer, primary_key=True)
    toolbox_talk_id = db.Column(db.Integer, db.ForeignKey("toolbox_talks.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey("toolbox_talk_schedules.id"), nullable=True, index=True)
    required_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TALK_PENDING, index=True)
    language_code = db.Column(db.String(10), default="en")
    video_watch_percent = db.Column(db.Integer, default=0)
    started_at = db.Column(db.DateTime)
    reminders_sent = db.Column(db.Integer, default=0)
    last_reminder_at = db.Column(db.DateTime)

    talk = db.relationship("ToolboxTalk")
    employee = db.relationship("Employee")
    schedule = db.relationship("ToolboxTalkSchedule")
    section_progress = db.relationship(
        "ScheduledTalkSectionProgress", back_populates="scheduled_talk", cascade="all, delete-orphan",
        order_by="ScheduledTalkSectionProgress.id",
    )
    quiz_attempts = db.relationship(
        "ScheduledTalkQuizAttempt", back_populates="scheduled_talk", cascade="all, delete-orphan",
        order_by="ScheduledTalkQuizAttempt.attempt_number",
    )
    completion = db.relationship(
        "ScheduledTalkCompletion", back_populates="scheduled_talk", uselist=False,
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_progress=False):
        read = sum(1 for p in self.section_progress if p.is_read)
        d = {
            "id": self.id,
            "toolbox_talk_id": self.toolbox_talk_id,
            "toolbox_talk_title": self.talk.title if self.talk else None,
            "employee_id": self.employee_id,
            "employee_name": self.employee.full_name if self.employee else None,
            "schedule_id": self.schedule_id,
            "required_date": iso(self.required_date),
            "due_date": iso(self.due_date),
            "status": self.status,
            "language_code": self.language_code,
            "video_watch_percent": self.video_watch_percent,
            "started_at": iso(self.started_at),
            "reminders_sent": self.reminders_sent,
            "sections_read": read,
            "sections_total": len(self.section_progress),
            "quiz_attempt_count": len(self.quiz_attempts),
            "completed_at": iso(self.completion.completed_at) if self.completion else None,
        }
        if include_progress:
            d["section_progress"] = [p.to_dict() for p in self.section_progress]
            d["quiz_attempts"] = [a.to_dict() for a in self.quiz_attempts]
            d["completion"] = self.completion.to_dict() if self.completion else None
        return d


class ScheduledTalkSectionProgress(db.Model):
    __tablename__ = "scheduled_talk_section_progress"

    id = db.Column(db.Integer, primary_key=True)
    scheduled_talk_id = db.Column(
        db.Integer, db.ForeignKey("scheduled_talks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    section_id = db.Column(db.Integer, db.ForeignKey("toolbox_talk_sections.id"), nullable=False)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime)
    time_spent_seconds = db.Column(db.Integer, default=0)

    __table_args__ = (
        db.UniqueConstraint("scheduled_talk_id", "section_id", name="uq_section_progress"),
    )

    scheduled_talk = db.relationship("ScheduledTalk", back_populates="section_progress")
    section = db.relationship("ToolboxTalkSection")

    def to_dict(self):
        return {
            "section_id": self.section_id,
            "section_number": self.section.section_number if self.section else None,
            "section_title": self.section.title if self.section else None,
            "is_read": self.is_read,
            "read_at": iso(self.read_at),
            "time_spent_seconds": self.time_spent_seconds,
        }


class ScheduledTalkQuizAttempt(db.Model):
    __tablename__ = "scheduled_talk_quiz_attempts"

    id = db.Column(db.Integer, primary_key=True)
    scheduled_talk_id = db.Column(
        db.Integer, db.ForeignKey("scheduled_talks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    attempt_number = db.Column(db.Integer, nullable=False)
    answers = db.Column(db.JSON)
    score = db.Column(db.Integer, nullable=False)
    max_score = db.Column(db.Integer, nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=False)
    passed = db.Column(db.Boolean, nullable=False)
    attempted_at = db.Column(db.DateTime)

    scheduled_talk = db.relationship("ScheduledTalk", back_populates="quiz_attempts")

    def to_dict(self):
        return {
            "id": self.id,
            "attempt_number": self.attempt_number,
            "score": self.score,
            "max_score": self.max_score,
            "percentage": money(self.percentage),
            "passed": self.passed,
            "attempted_at": iso(self.attempted_at),
        }


class ScheduledTalkCompletion(db.Model):
    __tablename__ = "scheduled_talk_completions"

    id = db.Column(db.Integer, primary_key=True)
    scheduled_talk_id = db.Column(
        db.Integer, db.ForeignKey("scheduled_talks.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    completed_at = db.Column(db.DateTime, nullable=False)
    total_time_spent_seconds = db.Column(db.Integer, default=0)
    video_watch_percent = db.Column(db.Integer)
    quiz_score = db.Column(db.Integer)
    quiz_max_score = db.Column(db.Integer)
    quiz_passed = db.Column(db.Boolean)
    signature_data = db.Column(db.Text, nullable=False)
    signed_at = db.Column(db.DateTime, nullable=False)
    signed_by_name = db.Column(db.String(200), nullable=False)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))

    scheduled_talk = db.relationship("ScheduledTalk", back_populates="completion")

    def to_dict(self):
        return {
            "id": self.id,
            "scheduled_talk_id": self.scheduled_talk_id,
            "completed_at": iso(self.completed_at),
            "total_time_spent_seconds": self.total_time_spent_seconds,
            "video_watch_percent": self.video_watch_percent,
            "quiz_score": self.quiz_score,
            "quiz_max_score": self.quiz_max_score,
            "quiz_passed": self.quiz_passed,
            "signed_at": iso(self.signed_at),
            "signed_by_name": self.signed_by_name,
            "ip_address": self.ip_address,
        }
