"""
Scheduler Service: background job registry and runner.

Jobs are plain functions registered with ``@register_job(name)``; each
one gets a ScheduledJob row holding its enable switch and last-run
bookkeeping. Jobs are triggered by ``flask run-job <name>`` (cron) or
``POST /api/v1/scheduler/jobs/<name>/run``.

Architecture:
    - SchedulerService: registration, persistence and execution
    - Jobs run inside the Flask app context and commit their own work
    - A disabled job is recorded as skipped unless the run is forced
"""

from __future__ import annotations

import contextlib
import logging
import time
from typing import Callable

from flask import Flask, has_app_context

from siteops.models import db
from siteops.models.scheduling import (
    JOB_ACTIVE,
    JOB_PAUSED,
    RUN_FAILED,
    RUN_SKIPPED,
    RUN_SUCCESS,
    ScheduledJob,
)

logger = logging.getLogger(__name__)


_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("mark_overdue_talks")
        def mark_overdue_talks(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


class SchedulerService:
    """Runs registered jobs and keeps their ScheduledJob rows current."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def _context(cls):
        # Reuse an active context (request, CLI, tests) so the job shares its session.
        if has_app_context():
            return contextlib.nullcontext()
        return cls._app.app_context()

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._context():
            for name, fn in _job_registry.items():
                if ScheduledJob.query.filter_by(job_name=name).first():
                    continue
                job = ScheduledJob(
                    job_name=name,
                    description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                    schedule_config=_get_default_schedule(name),
                    status=JOB_ACTIVE,
                    is_enabled=True,
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, force: bool = False) -> dict | None:
        """Execute a single job by name.

        Returns a dict with status, duration_ms and result or error, or
        None when no job of that name is registered.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return None
        if not cls._app:
            raise RuntimeError("SchedulerService.init_app() has not been called")

        with cls._context():
            cls.ensure_jobs_registered()
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if record is not None and not record.is_enabled and not force:
                record.record_run(status=RUN_SKIPPED, duration_ms=0, result={"reason": "disabled"})
                db.session.commit()
                logger.info("Job %s is disabled, skipped", job_name, extra={"job_name": job_name})
                return {"job_name": job_name, "status": RUN_SKIPPED, "duration_ms": 0,
                        "result": None, "error": None}

            start = time.monotonic()
            result = None
            error = None
            status = RUN_SUCCESS
            try:
                result = fn(cls._app)
            except Exception as exc:
                db.session.rollback()
                status = RUN_FAILED
                error = str(exc)
                logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
            duration_ms = int((time.monotonic() - start) * 1000)

            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if record is not None:
                record.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()

        logger.info("Job %s finished: %s in %dms", job_name, status, duration_ms,
                    extra={"job_name": job_name})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def registered_job_names(cls) -> list[str]:
        return sorted(_job_registry)

    @classmethod
    def list_jobs(cls) -> list[dict]:
        cls.ensure_jobs_registered()
        jobs = []
        for name in cls.registered_job_names():
            record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": record.to_dict() if record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        return record.to_dict() if record else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a job. The caller commits."""
        if job_name not in _job_registry:
            return None
        cls.ensure_jobs_registered()
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        record.is_enabled = enabled
        record.status = JOB_ACTIVE if enabled else JOB_PAUSED
        db.session.flush()
        return record.to_dict()


def _get_default_schedule(job_name: str) -> dict:
    defaults = {
        "process_toolbox_schedules": {"hour": "6", "minute": "0", "description": "Daily at 06:00"},
        "mark_overdue_talks": {"hour": "0", "minute": "30", "description": "Daily at 00:30"},
        "expire_proposals": {"hour": "1", "minute": "0", "description": "Daily at 01:00"},
        "send_toolbox_talk_reminders": {"hour": "8", "minute": "0", "description": "Daily at 08:00"},
    }
    return defaults.get(job_name, {"hour": "0", "minute": "0", "description": "Daily at midnight"})
