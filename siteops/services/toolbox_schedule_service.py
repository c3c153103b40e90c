"""Toolbox talk schedules: targeting, processing and recurrence.

Transaction policy: functions flush(); ``process_due_schedules`` commits
per schedule because it runs from the job scheduler.

Processing a schedule turns every unprocessed assignment into a
ScheduledTalk for that employee. Once-off schedules then complete;
recurring ones move ``next_run_date`` forward by exactly one interval
and reset their assignments for the next run (assign-to-all schedules
re-resolve the active employees instead). Missed runs are not caught up.
"""
import calendar
import logging
from datetime import date, datetime, timedelta, timezone

from siteops.core.exceptions import InvalidTransitionError, ValidationError
from siteops.models import db
from siteops.models.core import Employee
from siteops.models.toolbox import (
    FREQ_ANNUALLY,
    FREQ_MONTHLY,
    FREQ_ONCE,
    FREQ_WEEKLY,
    FREQUENCIES,
    SCHEDULE_ACTIVE,
    SCHEDULE_CANCELLED,
    SCHEDULE_COMPLETED,
    SCHEDULE_DRAFT,
    TALK_PENDING,
    ScheduledTalk,
    ScheduledTalkSectionProgress,
    ToolboxTalkSchedule,
    ToolboxTalkScheduleAssignment,
)
from siteops.services import toolbox_talk_service
from siteops.utils.helpers import get_tenant_record, parse_date_input, require_fields, to_int

logger = logging.getLogger(__name__)


def get_schedule(tenant_id, schedule_id):
    return get_tenant_record(ToolboxTalkSchedule, schedule_id, tenant_id, label="Schedule")


def list_schedules(tenant_id, status=None, talk_id=None):
    q = ToolboxTalkSchedule.active_for_tenant(tenant_id)
    if status:
        q = q.filter(ToolboxTalkSchedule.status == status)
    if talk_id:
        q = q.filter(ToolboxTalkSchedule.toolbox_talk_id == talk_id)
    return q.order_by(ToolboxTalkSchedule.scheduled_date.desc(), ToolboxTalkSchedule.id.desc())


# ── Targeting ────────────────────────────────────────────────────────────────


def _active_employees(tenant_id):
    return Employee.active_for_tenant(tenant_id).filter(Employee.is_active.is_(True))


def _resolve_targets(tenant_id, assign_to_all, employee_ids):
    """Return the employee ids a schedule should assign to."""
    if assign_to_all:
        ids = [e.id for e in _active_employees(tenant_id).order_by(Employee.id).all()]
        if not ids:
            raise ValidationError("No active employees found to assign the talk to")
        return ids

    if not employee_ids:
        raise ValidationError(
            "employee_ids is required unless assign_to_all_employees is set",
            details={"employee_ids": "required"},
        )
    wanted = list(dict.fromkeys(to_int(i, "employee_ids") for i in employee_ids))
    found = {
        e.id for e in _active_employees(tenant_id).filter(Employee.id.in_(wanted)).all()
    }
    missing = [i for i in wanted if i not in found]
    if missing:
        raise ValidationError(
            f"Employees not found or inactive: {', '.join(map(str, missing))}",
            details={"employee_ids": missing},
        )
    return wanted


def _validate_header(tenant_id, data, schedule):
    talk = toolbox_talk_service.get_talk(tenant_id, data.get("toolbox_talk_id", schedule.toolbox_talk_id))
    if not talk.is_active:
        raise ValidationError(f"Toolbox talk '{talk.title}' is not active")
    schedule.toolbox_talk_id = talk.id

    if "frequency" in data:
        schedule.frequency = data["frequency"]
    if schedule.frequency not in FREQUENCIES:
        raise ValidationError(f"frequency must be one of {', '.join(FREQUENCIES)}")

    if "scheduled_date" in data:
        schedule.scheduled_date = parse_date_input(data["scheduled_date"], "scheduled_date")
    if schedule.scheduled_date is None:
        raise ValidationError("scheduled_date is required", details={"scheduled_date": "required"})
    if "end_date" in data:
        schedule.end_date = parse_date_input(data["end_date"], "end_date")
    if schedule.end_date and schedule.end_date < schedule.scheduled_date:
        raise ValidationError("end_date cannot be before scheduled_date")

    if "assign_to_all_employees" in data:
        schedule.assign_to_all_employees = bool(data["assign_to_all_employees"])
    if "notes" in data:
        schedule.notes = data["notes"]


def create_schedule(tenant_id, data, user=None):
    require_fields(data, "toolbox_talk_id", "scheduled_date")
    schedule = ToolboxTalkSchedule(
        tenant_id=tenant_id,
        frequency=FREQ_ONCE,
        assign_to_all_employees=False,
        status=SCHEDULE_DRAFT,
        created_by=user,
    )
    _validate_header(tenant_id, data, schedule)
    targets = _resolve_targets(tenant_id, schedule.assign_to_all_employees, data.get("employee_ids"))
    schedule.next_run_date = schedule.scheduled_date
    schedule.assignments = [
        ToolboxTalkScheduleAssignment(employee_id=emp_id, is_processed=False) for emp_id in targets
    ]
    db.session.add(schedule)
    db.session.flush()
    logger.info(
        "Schedule %d created for talk %d (%s, %d employees)",
        schedule.id, schedule.toolbox_talk_id, schedule.frequency, len(targets),
        extra={"tenant_id": tenant_id, "schedule_id": schedule.id},
    )
    return schedule


def update_schedule(tenant_id, schedule_id, data):
    schedule = get_schedule(tenant_id, schedule_id)
    if schedule.status != SCHEDULE_DRAFT:
        raise ValidationError(f"Only Draft schedules can be edited (status: {schedule.status})")
    _validate_header(tenant_id, data, schedule)
    targets = _resolve_targets(
        tenant_id, schedule.assign_to_all_employees,
        data.get("employee_ids", [a.employee_id for a in schedule.assignments]),
    )
    # Reuse rows for employees who stay targeted; (schedule, employee) is unique.
    existing = {a.employee_id: a for a in schedule.assignments}
    rebuilt = []
    for emp_id in targets:
        assignment = existing.get(emp_id) or ToolboxTalkScheduleAssignment(employee_id=emp_id)
        assignment.is_processed = False
        assignment.processed_at = None
        rebuilt.append(assignment)
    schedule.assignments = rebuilt
    schedule.next_run_date = schedule.scheduled_date
    db.session.flush()
    return schedule


def cancel_schedule(tenant_id, schedule_id):
    schedule = get_schedule(tenant_id, schedule_id)
    if schedule.status in (SCHEDULE_COMPLETED, SCHEDULE_CANCELLED):
        raise InvalidTransitionError("ToolboxTalkSchedule", schedule.status, SCHEDULE_CANCELLED)
    schedule.status = SCHEDULE_CANCELLED
    schedule.next_run_date = None
    db.session.flush()
    logger.info("Schedule %d cancelled", schedule.id,
                extra={"tenant_id": tenant_id, "schedule_id": schedule.id})
    return schedule


def delete_schedule(tenant_id, schedule_id):
    schedule = get_schedule(tenant_id, schedule_id)
    if schedule.status not in (SCHEDULE_DRAFT, SCHEDULE_CANCELLED):
        raise ValidationError(f"Only Draft or Cancelled schedules can be deleted (status: {schedule.status})")
    schedule.soft_delete()
    db.session.flush()


# ── Recurrence ───────────────────────────────────────────────────────────────


def _add_months(value, months):
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_occurrence(current, frequency):
    """``current`` advanced by one interval of ``frequency``."""
    if frequency == FREQ_WEEKLY:
        return current + timedelta(days=7)
    if frequency == FREQ_MONTHLY:
        return _add_months(current, 1)
    if frequency == FREQ_ANNUALLY:
        return _add_months(current, 12)
    raise ValueError(f"{frequency} schedules do not recur")


def _refresh_all_employee_assignments(schedule):
    active_ids = {e.id for e in _active_employees(schedule.tenant_id).all()}
    current = {a.employee_id: a for a in schedule.assignments}

    for assignment in list(schedule.assignments):
        if assignment.employee_id not in active_ids:
            schedule.assignments.remove(assignment)
        else:
            assignment.is_processed = False
            assignment.processed_at = None

    for emp_id in sorted(active_ids - set(current)):
        schedule.assignments.append(
            ToolboxTalkScheduleAssignment(employee_id=emp_id, is_processed=False),
        )


def process_schedule(tenant_id, schedule_id, today=None):
    """Materialise one run of a schedule.

    Returns ``{"talks_created", "schedule_completed", "next_run_date"}``.
    """
    today = today or date.today()
    schedule = get_schedule(tenant_id, schedule_id)
    if schedule.status == SCHEDULE_CANCELLED:
        raise ValidationError("Cannot process a cancelled schedule.")
    if schedule.status == SCHEDULE_COMPLETED:
        raise ValidationError("Schedule has already been completed.")

    due_days = toolbox_talk_service.due_days_for(tenant_id)
    pending = [a for a in schedule.assignments if not a.is_processed]
    if not pending and schedule.assign_to_all_employees and schedule.is_recurring:
        _refresh_all_employee_assignments(schedule)
        pending = [a for a in schedule.assignments if not a.is_processed]

    now = datetime.now(timezone.utc)
    sections = list(schedule.talk.sections)
    created = 0
    for assignment in pending:
        employee = assignment.employee
        db.session.add(ScheduledTalk(
            tenant_id=tenant_id,
            toolbox_talk_id=schedule.toolbox_talk_id,
            employee_id=assignment.employee_id,
            schedule_id=schedule.id,
            required_date=today,
            due_date=today + timedelta(days=due_days),
            status=TALK_PENDING,
            language_code=(employee.preferred_language if employee else None) or "en",
            video_watch_percent=0,
            reminders_sent=0,
            section_progress=[
                ScheduledTalkSectionProgress(section_id=s.id, is_read=False, time_spent_seconds=0)
                for s in sections
            ],
            created_by="System",
        ))
        assignment.is_processed = True
        assignment.processed_at = now
        created += 1

    schedule.last_processed_at = now
    completed = False
    next_run = None
    if not schedule.is_recurring:
        schedule.status = SCHEDULE_COMPLETED
        schedule.next_run_date = None
        completed = True
    else:
        if schedule.status == SCHEDULE_DRAFT:
            schedule.status = SCHEDULE_ACTIVE
        next_run = next_occurrence(schedule.next_run_date or schedule.scheduled_date, schedule.frequency)
        if schedule.end_date and next_run > schedule.end_date:
            schedule.status = SCHEDULE_COMPLETED
            schedule.next_run_date = None
            completed = True
            next_run = None
        else:
            schedule.next_run_date = next_run
            # Assign-to-all schedules re-resolve their employees on the next run.
            if not schedule.assign_to_all_employees:
                for assignment in schedule.assignments:
                    assignment.is_processed = False
                    assignment.processed_at = None

    db.session.flush()
    logger.info(
        "Schedule %d processed: %d talks created%s", schedule.id, created,
        ", completed" if completed else f", next run {next_run}",
        extra={"tenant_id": tenant_id, "schedule_id": schedule.id},
    )
    return {
        "talks_created": created,
        "schedule_completed": completed,
        "next_run_date": next_run.isoformat() if next_run else None,
    }


def process_due_schedules(today=None):
    """Process every Draft/Active schedule due on or before ``today``, all tenants.

    Each schedule commits on its own; a failure is rolled back, logged
    and counted, and the loop moves on.
    """
    today = today or date.today()
    due = (
        ToolboxTalkSchedule.query_active()
        .filter(
            ToolboxTalkSchedule.status.in_((SCHEDULE_DRAFT, SCHEDULE_ACTIVE)),
            ToolboxTalkSchedule.next_run_date.isnot(None),
            ToolboxTalkSchedule.next_run_date <= today,
        )
        .order_by(ToolboxTalkSchedule.next_run_date, ToolboxTalkSchedule.id)
        .with_entities(ToolboxTalkSchedule.id, ToolboxTalkSchedule.tenant_id)
        .all()
    )

    processed = failed = talks = completed = 0
    for schedule_id, tenant_id in due:
        try:
            result = process_schedule(tenant_id, schedule_id, today=today)
            db.session.commit()
        except Exception:
            db.session.rollback()
            failed += 1
            logger.exception("Processing schedule %d failed", schedule_id,
                             extra={"tenant_id": tenant_id, "schedule_id": schedule_id})
            continue
        processed += 1
        talks += result["talks_created"]
        completed += int(result["schedule_completed"])

    return {
        "due": len(due),
        "processed": processed,
        "failed": failed,
        "talks_created": talks,
        "schedules_completed": completed,
    }
