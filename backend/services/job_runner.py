"""
Job Runner Service
Runs the scan and monitor jobs periodically from a background thread.

Usage:
    from services import get_job_runner

    runner = get_job_runner()
    runner.start()
    # scan every 12h, monitor every 15m
    runner.stop()

The jobs themselves carry their own overlap guard, so a slow scan simply
makes the next tick report a skip.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from core.clock import utcnow

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0


@dataclass
class JobStats:
    """Per-job run counters"""
    runs: int = 0
    skipped: int = 0
    failures: int = 0
    last_run: Optional[datetime] = None
    last_duration: float = 0.0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_duration": round(self.last_duration, 2),
            "last_error": self.last_error,
        }


@dataclass
class _Job:
    name: str
    func: Callable[[], Dict[str, Any]]
    interval_sec: float
    next_run: float = 0.0
    stats: JobStats = field(default_factory=JobStats)


class JobRunner:
    """
    Periodic job thread.

    Each job is a zero-argument callable returning a result dict. A job
    that raises is counted as a failure and rescheduled; the thread keeps
    going.
    """

    def __init__(self):
        self._jobs: Dict[str, _Job] = {}
        self._running = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def add_job(self, name: str, func: Callable[[], Dict[str, Any]], interval_sec: float,
                run_immediately: bool = False):
        """Register a job; the first run is one interval out unless run_immediately."""
        first = time.monotonic() + (0 if run_immediately else interval_sec)
        self._jobs[name] = _Job(name, func, interval_sec, next_run=first)

    def start(self) -> Dict[str, Any]:
        if self._running:
            return {"status": "already_running", "jobs": list(self._jobs)}
        if not self._jobs:
            return {"status": "error", "message": "No jobs registered"}

        self._stop.clear()
        self._running = True
        self._started_at = utcnow()
        self._thread = threading.Thread(target=self._loop, name="spreadwatch-jobs", daemon=True)
        self._thread.start()
        logger.info("Job runner started: %s", ", ".join(self._jobs))
        return {"status": "started", "jobs": list(self._jobs)}

    def stop(self, timeout: float = 5.0) -> Dict[str, Any]:
        if not self._running:
            return {"status": "not_running"}
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._running = False
        logger.info("Job runner stopped")
        return {"status": "stopped"}

    def run_job(self, name: str) -> Dict[str, Any]:
        """Run one job now, on the calling thread."""
        job = self._jobs[name]
        started = time.monotonic()
        try:
            result = job.func() or {}
        except Exception as e:
            logger.exception("Job %s failed", name)
            job.stats.failures += 1
            job.stats.last_error = str(e)
            result = {"success": False, "error": str(e)}
        else:
            if result.get("skipped"):
                job.stats.skipped += 1
            else:
                job.stats.runs += 1
                if result.get("success") is False:
                    job.stats.failures += 1
                    job.stats.last_error = result.get("error")
        job.stats.last_run = utcnow()
        job.stats.last_duration = time.monotonic() - started
        return result

    def _loop(self):
        while not self._stop.is_set():
            now = time.monotonic()
            for job in list(self._jobs.values()):
                if now >= job.next_run:
                    self.run_job(job.name)
                    job.next_run = time.monotonic() + job.interval_sec
            self._stop.wait(TICK_SECONDS)
        self._running = False

    def stats(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "jobs": {
                name: {"interval_sec": job.interval_sec, **job.stats.to_dict()}
                for name, job in self._jobs.items()
            },
        }


# Singleton
_job_runner: Optional[JobRunner] = None


def get_job_runner() -> JobRunner:
    """Get or create the runner with the scan and monitor jobs registered"""
    global _job_runner
    if _job_runner is None:
        from core.config import get_settings
        from core.scheduler import get_context, run_monitor, run_scan

        settings = get_settings()
        ctx = get_context()
        runner = JobRunner()
        runner.add_job("scan", lambda: run_scan(ctx), settings.scheduler.scan_interval_sec)
        runner.add_job("monitor", lambda: run_monitor(ctx), settings.scheduler.monitor_interval_sec)
        _job_runner = runner
    return _job_runner


def current_job_runner() -> Optional[JobRunner]:
    """The runner if one was created, without creating it"""
    return _job_runner
