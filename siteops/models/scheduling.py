"""
Background job registry.

One ScheduledJob row per job function registered with
``scheduler_service.register_job``. The row carries the on/off switch
and the outcome of the latest run, as shown by
``GET /api/v1/scheduler/jobs``.
"""

from siteops.models import db
from siteops.models.base import iso, utcnow

JOB_ACTIVE = "active"
JOB_PAUSED = "paused"

RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"


class ScheduledJob(db.Model):
    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    # suggested crontab slot for `flask run-job`, e.g. {"hour": "6", "minute": "0"}
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default=JOB_ACTIVE)
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime, nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def record_run(self, *, status, duration_ms=0, result=None, error=None):
        """Store one run outcome. Failures also bump error_count."""
        self.last_run_at = utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == RUN_FAILED:
            self.error_count = (self.error_count or 0) + 1
            self.last_error = error

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_config": self.schedule_config or {},
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": iso(self.last_run_at),
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} {self.status}>"
