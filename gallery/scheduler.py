# gallery/scheduler.py
"""
Durable deferred-call scheduler.

enqueue() persists a row in scheduled_jobs before anything runs, so the
caller returns as soon as the row is committed. Jobs run on a thread pool;
a job that raises is marked failed and is never retried here. On startup
recover() re-dispatches anything left queued or running (at-least-once).

Env vars:
- SCHEDULER_AUTORUN (default: true) - when false, jobs only run via run_due()
- SCHEDULER_MAX_WORKERS (default: 4)
"""

import os
import json
import uuid
import datetime
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from gallery import db as dbmod
from gallery import monitoring

SCHEDULER_AUTORUN = os.getenv("SCHEDULER_AUTORUN", "true").lower() in ("1", "true", "yes")
SCHEDULER_MAX_WORKERS = int(os.getenv("SCHEDULER_MAX_WORKERS", "4"))

STATE_QUEUED = "queued"
STATE_RUNNING = "running"
STATE_SUCCEEDED = "succeeded"
STATE_FAILED = "failed"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class Scheduler:
    def __init__(self, max_workers: int = SCHEDULER_MAX_WORKERS, autorun: bool = SCHEDULER_AUTORUN):
        self.max_workers = max_workers
        self.autorun = autorun
        self._registry: Dict[str, Callable[..., Any]] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register(self, name: str, fn: Optional[Callable[..., Any]] = None):
        """Register a job function by name; usable as a decorator."""
        def _register(f):
            self._registry[name] = f
            return f
        if fn is not None:
            return _register(fn)
        return _register

    # ------------------------------------------------------------------
    # Enqueue / dispatch
    # ------------------------------------------------------------------
    def enqueue(self, name: str, args: Dict[str, Any], delay_s: float = 0.0) -> str:
        from gallery.models import ScheduledJob
        job_id = str(uuid.uuid4())
        run_at = _utcnow() + datetime.timedelta(seconds=max(delay_s, 0.0))
        db: Session = dbmod.SessionLocal()
        try:
            db.add(ScheduledJob(job_id=job_id, name=name, args_json=json.dumps(args),
                                state=STATE_QUEUED, run_at=run_at))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        monitoring.logger.info("Job enqueued", extra={"job_id": job_id, "job_name": name, "delay_s": delay_s})
        if self.autorun:
            self._dispatch(job_id, delay_s)
        return job_id

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                    thread_name_prefix="gallery-job")
            return self._executor

    def _dispatch(self, job_id: str, delay_s: float):
        if delay_s <= 0:
            self._pool().submit(self.run_job, job_id)
            return

        def _fire():
            with self._lock:
                self._timers.pop(job_id, None)
            self._pool().submit(self.run_job, job_id)

        timer = threading.Timer(delay_s, _fire)
        timer.daemon = True
        with self._lock:
            self._timers[job_id] = timer
        timer.start()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _claim(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Atomically move a queued job to running; None if someone else has it."""
        from gallery.models import ScheduledJob
        db: Session = dbmod.SessionLocal()
        try:
            claimed = (
                db.query(ScheduledJob)
                .filter(ScheduledJob.job_id == job_id, ScheduledJob.state == STATE_QUEUED)
                .update({ScheduledJob.state: STATE_RUNNING, ScheduledJob.updated_at: _utcnow()},
                        synchronize_session=False)
            )
            db.commit()
            if not claimed:
                return None
            job = db.query(ScheduledJob).filter(ScheduledJob.job_id == job_id).first()
            return {"name": job.name, "args": json.loads(job.args_json or "{}")}
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _finish(self, job_id: str, state: str, error: Optional[str] = None):
        from gallery.models import ScheduledJob
        db: Session = dbmod.SessionLocal()
        try:
            db.query(ScheduledJob).filter(ScheduledJob.job_id == job_id).update(
                {ScheduledJob.state: state, ScheduledJob.error: error,
                 ScheduledJob.updated_at: _utcnow()},
                synchronize_session=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def run_job(self, job_id: str) -> Optional[str]:
        """Run one job to completion. Returns its terminal state, or None if not claimable."""
        job = self._claim(job_id)
        if job is None:
            return None
        fn = self._registry.get(job["name"])
        if fn is None:
            monitoring.logger.error("Unknown job name", extra={"job_id": job_id, "job_name": job["name"]})
            self._finish(job_id, STATE_FAILED, f"Unknown job {job['name']!r}")
            return STATE_FAILED
        try:
            fn(**job["args"])
        except Exception as e:
            monitoring.logger.exception("Job failed", extra={"job_id": job_id, "job_name": job["name"]})
            self._finish(job_id, STATE_FAILED, f"{type(e).__name__}: {e}")
            return STATE_FAILED
        self._finish(job_id, STATE_SUCCEEDED)
        return STATE_SUCCEEDED

    def run_due(self, now: Optional[datetime.datetime] = None) -> Dict[str, Optional[str]]:
        """Synchronously run every queued job whose run_at has passed."""
        from gallery.models import ScheduledJob
        now = now or _utcnow()
        db: Session = dbmod.SessionLocal()
        try:
            due = [
                j.job_id for j in db.query(ScheduledJob)
                .filter(ScheduledJob.state == STATE_QUEUED, ScheduledJob.run_at <= now)
                .order_by(ScheduledJob.id)
                .all()
            ]
        finally:
            db.close()
        return {job_id: self.run_job(job_id) for job_id in due}

    def recover(self) -> int:
        """Requeue jobs interrupted by a restart and dispatch everything queued."""
        from gallery.models import ScheduledJob
        db: Session = dbmod.SessionLocal()
        try:
            db.query(ScheduledJob).filter(ScheduledJob.state == STATE_RUNNING).update(
                {ScheduledJob.state: STATE_QUEUED}, synchronize_session=False
            )
            db.commit()
            queued = [
                (j.job_id, j.run_at) for j in db.query(ScheduledJob)
                .filter(ScheduledJob.state == STATE_QUEUED)
                .order_by(ScheduledJob.id)
                .all()
            ]
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if queued:
            monitoring.logger.info("Recovering queued jobs", extra={"count": len(queued)})
        if self.autorun:
            now = _utcnow()
            for job_id, run_at in queued:
                self._dispatch(job_id, (run_at - now).total_seconds())
        return len(queued)

    def list_jobs(self, state: Optional[str] = None) -> List[Dict[str, Any]]:
        from gallery.models import ScheduledJob
        db: Session = dbmod.SessionLocal()
        try:
            q = db.query(ScheduledJob)
            if state is not None:
                q = q.filter(ScheduledJob.state == state)
            return [
                {
                    "job_id": j.job_id,
                    "name": j.name,
                    "args": json.loads(j.args_json or "{}"),
                    "state": j.state,
                    "error": j.error,
                }
                for j in q.order_by(ScheduledJob.id).all()
            ]
        finally:
            db.close()

    def shutdown(self, wait: bool = True):
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            executor, self._executor = self._executor, None
        for t in timers:
            t.cancel()
        if executor is not None:
            executor.shutdown(wait=wait)


scheduler = Scheduler()
