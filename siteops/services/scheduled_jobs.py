"""
Scheduled Jobs: the daily background work.

Jobs:
    - process_toolbox_schedules: materialise due toolbox talk schedules
    - mark_overdue_talks: flag assigned talks past their due date
    - expire_proposals: expire proposals past their validity date
    - send_toolbox_talk_reminders: remind employees about overdue talks

Each job commits its own work and returns a dict that is stored on its
ScheduledJob row as ``last_run_result``.
"""

from __future__ import annotations

import logging
from typing import Any

from siteops.models import db
from siteops.services import proposal_service, scheduled_talk_service, toolbox_schedule_service
from siteops.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("process_toolbox_schedules")
def process_toolbox_schedules(app) -> dict[str, Any]:
    """Process every Draft/Active toolbox talk schedule that is due today."""
    results = toolbox_schedule_service.process_due_schedules()
    if results["failed"]:
        logger.warning("%d of %d due schedules failed", results["failed"], results["due"],
                       extra={"job_name": "process_toolbox_schedules"})
    return results


@register_job("mark_overdue_talks")
def mark_overdue_talks(app) -> dict[str, Any]:
    """Mark Pending/InProgress scheduled talks past their due date as Overdue."""
    count = scheduled_talk_service.mark_overdue_talks()
    db.session.commit()
    return {"talks_marked_overdue": count}


@register_job("expire_proposals")
def expire_proposals(app) -> dict[str, Any]:
    """Expire open proposals whose valid-until date has passed."""
    count = proposal_service.expire_proposals()
    db.session.commit()
    return {"proposals_expired": count}


@register_job("send_toolbox_talk_reminders")
def send_toolbox_talk_reminders(app) -> dict[str, Any]:
    """Remind employees about overdue talks, within each tenant's reminder limits."""
    count = scheduled_talk_service.send_reminders()
    db.session.commit()
    return {"reminders_sent": count}
