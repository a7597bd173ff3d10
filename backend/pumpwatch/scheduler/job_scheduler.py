"""
Job scheduler — named, independently controllable recurring jobs.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE (per job)
═══════════════════════════════════════════════════════════════════════════

    Unregistered ──register──▶ Stopped ◀──stop / start──▶ Running

    register  creates (or replaces) the job; it always lands Stopped
    start     resume the timer, schedule unchanged
    stop      pause the timer; an in-flight run is not aborted
    restart   stop, swap in the new schedule (if any), start
    trigger   run now, out of band, with the same bookkeeping as a timer firing

Timers are APScheduler cron jobs on one ``AsyncIOScheduler``. A job id is
its name, so one name can never hold two timers.

═══════════════════════════════════════════════════════════════════════════
MUTUAL EXCLUSION — SKIP
═══════════════════════════════════════════════════════════════════════════

Each job owns an ``asyncio.Lock``. A firing (scheduled or manual) that
finds the same job in flight is skipped: it returns a ``skipped`` run
record and touches no counters.

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import ConfigurationError, JobNotFoundError
from backend.pumpwatch.core.logging_config import log_context

logger = logging.getLogger(__name__)

JobTask = Callable[[], Awaitable[Any]]

# cron day-of-week numbers (0 and 7 = Sunday) → names APScheduler reads unambiguously
_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_DOW_NUMBER = re.compile(r"(?<![/\d])([0-7])(?!\d)")


# ═══════════════════════════════════════════════════════════════════════════
# Schedules
# ═══════════════════════════════════════════════════════════════════════════

def parse_schedule(expression: str, tz: Optional[str] = None) -> CronTrigger:
    """
    Build a cron trigger from a 5-field crontab or a 6-field form with a
    leading seconds field. Raises ConfigurationError on anything else.
    """
    fields = (expression or "").split()
    if len(fields) == 5:
        second, (minute, hour, day, month, dow) = "0", fields
    elif len(fields) == 6:
        second, minute, hour, day, month, dow = fields
    else:
        raise ConfigurationError(
            f"Schedule must have 5 or 6 fields, got {len(fields)}: {expression!r}",
            field="schedule",
        )

    if dow != "*":
        dow = _DOW_NUMBER.sub(lambda mt: _DOW_NAMES[int(mt.group(1))], dow)

    try:
        return CronTrigger(
            second=second, minute=minute, hour=hour, day=day, month=month,
            day_of_week=dow, timezone=tz or settings.TIMEZONE,
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f"Invalid schedule {expression!r}: {e}", field="schedule",
        ) from e


# ═══════════════════════════════════════════════════════════════════════════
# Job records
# ═══════════════════════════════════════════════════════════════════════════

class JobState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class RunRecord:
    """Outcome of one firing."""
    name: str
    source: str  # "scheduled" | "manual"
    started_at: datetime
    finished_at: Optional[datetime] = None
    ok: bool = True
    skipped: bool = False
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "ok": self.ok,
            "skipped": self.skipped,
            "error": self.error,
            "result": self.result,
        }


@dataclass
class _Job:
    name: str
    schedule: str
    task: JobTask
    lock: asyncio.Lock
    status: JobState = JobState.STOPPED
    last_run_at: Optional[datetime] = None
    error_count: int = 0
    run_count: int = 0
    last_error: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None


def _result_dict(result: Any) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    if hasattr(result, "to_dict"):
        return result.to_dict()
    if isinstance(result, dict):
        return result
    return {"value": result}


def _result_ok(result: Any) -> bool:
    if isinstance(result, dict):
        return bool(result.get("ok", True))
    return bool(getattr(result, "ok", True))


# ═══════════════════════════════════════════════════════════════════════════
# Scheduler
# ═══════════════════════════════════════════════════════════════════════════

class JobScheduler:
    """
    Built once per process and passed to every control/query entry point.

    Usage:
        scheduler = JobScheduler()
        scheduler.start_timers()                  # inside a running event loop
        scheduler.register("pump-sync", "*/5 * * * *", engine.run_cycle)
        scheduler.start("pump-sync")
        record = await scheduler.trigger("pump-sync")
        print(scheduler.get_all())
    """

    def __init__(self, *, timezone_name: Optional[str] = None, job_timeout_s: Optional[float] = None):
        self.timezone_name = timezone_name or settings.TIMEZONE
        self.job_timeout_s = job_timeout_s if job_timeout_s is not None else settings.JOB_TIMEOUT_S
        self._scheduler = AsyncIOScheduler(timezone=self.timezone_name)
        self._jobs: Dict[str, _Job] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ── Timer lifecycle ──

    def start_timers(self) -> None:
        """Start the underlying timer loop. Needs a running event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Job scheduler started (%d jobs)", len(self._jobs))

    def shutdown(self) -> None:
        """Stop all timers; in-flight runs finish on their own."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Job scheduler shut down")

    # ── Control operations ──

    def _get(self, name: str) -> _Job:
        job = self._jobs.get(name)
        if job is None:
            raise JobNotFoundError(name)
        return job

    def register(self, name: str, schedule: str, task: JobTask) -> Dict[str, Any]:
        """Create or replace a job; the old timer is removed first. Lands Stopped."""
        if not name:
            raise ConfigurationError("Job name must not be empty", field="name")
        trigger = parse_schedule(schedule, self.timezone_name)

        if name in self._jobs:
            self._scheduler.remove_job(name)
            logger.info("Re-registering job %s", name, extra={"job": name})

        lock = self._locks.setdefault(name, asyncio.Lock())
        self._scheduler.add_job(
            self._run_scheduled,
            trigger,
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=None,
        )
        self._jobs[name] = _Job(name=name, schedule=schedule, task=task, lock=lock)
        return self.status(name)

    def start(self, name: str) -> Dict[str, Any]:
        job = self._get(name)
        if job.status != JobState.RUNNING:
            self._scheduler.resume_job(name)
            job.status = JobState.RUNNING
            logger.info("Job %s started (%s)", name, job.schedule, extra={"job": name})
        return self.status(name)

    def stop(self, name: str) -> Dict[str, Any]:
        job = self._get(name)
        if job.status != JobState.STOPPED:
            self._scheduler.pause_job(name)
            job.status = JobState.STOPPED
            logger.info("Job %s stopped", name, extra={"job": name})
        return self.status(name)

    def restart(self, name: str, schedule: Optional[str] = None) -> Dict[str, Any]:
        """Stop, optionally swap the schedule, then start."""
        job = self._get(name)
        trigger = parse_schedule(schedule, self.timezone_name) if schedule else None

        self.stop(name)
        if trigger is not None:
            self._scheduler.modify_job(name, trigger=trigger)
            job.schedule = schedule
        return self.start(name)

    async def trigger(self, name: str) -> RunRecord:
        """Run the job now; skipped if the same job is already in flight."""
        self._get(name)
        return await self._execute(name, source="manual")

    # ── Queries ──

    def status(self, name: str) -> Dict[str, Any]:
        job = self._get(name)
        ap_job = self._scheduler.get_job(name)
        next_run = getattr(ap_job, "next_run_time", None) if ap_job else None
        return {
            "name": job.name,
            "schedule": job.schedule,
            "status": job.status.value,
            "last_run_at": job.last_run_at.isoformat() if job.last_run_at else None,
            "error_count": job.error_count,
            "run_count": job.run_count,
            "in_flight": job.lock.locked(),
            "next_run_at": next_run.isoformat() if next_run else None,
            "last_error": job.last_error,
            "last_result": job.last_result,
        }

    def get_all(self) -> List[Dict[str, Any]]:
        return [self.status(name) for name in sorted(self._jobs)]

    def names(self) -> List[str]:
        return sorted(self._jobs)

    # ── Execution ──

    async def _run_scheduled(self, name: str) -> None:
        if name not in self._jobs:
            return
        await self._execute(name, source="scheduled")

    async def _execute(self, name: str, source: str) -> RunRecord:
        job = self._jobs[name]
        now = datetime.now(timezone.utc)

        if job.lock.locked():
            logger.info("Job %s already in flight, %s run skipped", name, source, extra={"job": name})
            return RunRecord(name=name, source=source, started_at=now, finished_at=now, skipped=True)

        async with job.lock:
            record = RunRecord(name=name, source=source, started_at=now)
            job.last_run_at = now
            job.run_count += 1
            start = time.perf_counter()

            with log_context(job=name):
                try:
                    result = await asyncio.wait_for(job.task(), timeout=self.job_timeout_s)
                    record.result = _result_dict(result)
                    record.ok = _result_ok(result)
                    if not record.ok:
                        errors = (record.result or {}).get("errors") or []
                        record.error = "; ".join(str(e) for e in errors) or "run reported failure"
                except asyncio.TimeoutError:
                    record.ok = False
                    record.error = f"timed out after {self.job_timeout_s:.0f}s"
                except Exception as e:
                    logger.exception("Job %s raised", name)
                    record.ok = False
                    record.error = f"{type(e).__name__}: {e}"

            record.finished_at = datetime.now(timezone.utc)
            duration_ms = (time.perf_counter() - start) * 1000
            job.last_result = record.result
            if record.ok:
                job.last_error = None
                logger.info("Job %s (%s) ok in %.0fms", name, source, duration_ms,
                            extra={"job": name, "duration_ms": duration_ms})
            else:
                job.error_count += 1
                job.last_error = record.error
                logger.warning("Job %s (%s) failed: %s", name, source, record.error,
                               extra={"job": name, "error_count": job.error_count})
            return record
