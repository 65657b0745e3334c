"""
Certificate Workflow Service
Scheduler Service.

Lightweight interval scheduler for background jobs (outbox drain).

Architecture:
    - Job functions are registered with the ``register_job`` decorator
    - Each registered job gets a ScheduledJob row holding its interval,
      enabled flag and run history
    - run_job() executes one job inside an app context and records the run
    - start() launches a daemon thread that runs due jobs; in tests and
      single-shot deployments jobs are triggered via API or CLI instead
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable

from flask import Flask

from certflow.models import db
from certflow.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}
_default_intervals: dict[str, int] = {}


def register_job(name: str, interval_seconds: int = 60):
    """Decorator to register a job function.

    Usage:
        @register_job("notification_outbox_drain", interval_seconds=30)
        def drain_outbox(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        _default_intervals[name] = interval_seconds
        return fn
    return decorator


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _stop: threading.Event | None = None
    _thread: threading.Thread | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        interval_seconds=_default_intervals.get(name, 60),
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)

        # Update DB record
        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        """Get status of a specific job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record:
            return job_record.to_dict()
        return None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()

    # ── Background loop ───────────────────────────────────────────────────

    @classmethod
    def _due_jobs(cls) -> list[str]:
        now = datetime.now(timezone.utc)
        due = []
        with cls._app.app_context():
            for job in ScheduledJob.query.filter_by(is_enabled=True).all():
                if job.job_name not in _job_registry:
                    continue
                last = job.last_run_at
                if last is not None and last.tzinfo is None:
                    last = last.replace(tzinfo=timezone.utc)
                if last is None or (now - last).total_seconds() >= job.interval_seconds:
                    due.append(job.job_name)
        return due

    @classmethod
    def _loop(cls, tick_seconds: float) -> None:
        while not cls._stop.is_set():
            try:
                for name in cls._due_jobs():
                    cls.run_job(name)
            except Exception:
                logger.exception("Scheduler tick failed")
            cls._stop.wait(tick_seconds)

    @classmethod
    def start(cls, tick_seconds: float = 5.0) -> bool:
        """Start the background thread. Returns False if already running."""
        if not cls._app:
            raise RuntimeError("Scheduler not initialized")
        if cls._thread is not None and cls._thread.is_alive():
            return False
        cls.ensure_jobs_registered()
        cls._stop = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(tick_seconds,), name="certflow-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler thread started (tick=%ss)", tick_seconds)
        return True

    @classmethod
    def stop(cls, timeout: float = 10.0) -> None:
        if cls._stop is not None:
            cls._stop.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._thread = None
        logger.info("Scheduler thread stopped")
