# Job queue - scan job lifecycle, concurrency admission and persistence hooks
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Any

from config.settings import get_settings, Settings
from schemas.scan import (
    JobProgress,
    JobStatus,
    QueueStats,
    ScanJob,
    ScanRequest,
    ScanResult,
    utcnow,
)
from services.result_store import ResultStore
from utils.errors import JobActiveError, PersistenceError, classify_error

logger = logging.getLogger(__name__)

JobRunner = Callable[[ScanJob], Awaitable[None]]

ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: (JobStatus.RUNNING,),
    JobStatus.RUNNING: (JobStatus.COMPLETED, JobStatus.FAILED),
    JobStatus.COMPLETED: (),
    JobStatus.FAILED: (),
}

SHUTDOWN_MESSAGE = 'Scan cancelled: service shutting down'


class JobQueue:
    """In-process queue of scan jobs.

    At most ``max_concurrent_jobs`` jobs run at once. Pending jobs are admitted
    oldest first whenever a job is created or a running job reaches a
    terminal state. Admitted jobs are executed by ``runner`` in their own
    asyncio task; a job never stays ``running`` after its runner returns or
    raises.

    All state changes happen on the event loop, so the job table needs no
    locking.
    """

    def __init__(
        self,
        max_concurrent_jobs: Optional[int] = None,
        store: Optional[ResultStore] = None,
        runner: Optional[JobRunner] = None,
        max_retained_jobs: Optional[int] = None,
        settings: Optional[Settings] = None
    ):
        settings = settings or get_settings()
        self.max_concurrent_jobs = max_concurrent_jobs or settings.max_concurrent_jobs
        self.max_retained_jobs = max_retained_jobs or settings.max_retained_jobs
        self.store = store
        self.runner = runner
        self.jobs: Dict[str, ScanJob] = {}
        self.running_jobs: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task] = {}
        # Record fields whose last write failed, replayed with the next write
        self._unsaved: Dict[str, Dict[str, Any]] = {}
        self._closing = False

    def set_runner(self, runner: JobRunner):
        self.runner = runner

    async def create_job(self, request: ScanRequest, user_id: Optional[str] = None) -> ScanJob:
        """Register a pending job and admit it if a slot is free; does not wait for the scan"""
        job = ScanJob(request=request, user_id=user_id)
        self.jobs[job.id] = job
        logger.info(f"Created job {job.id} for {request.full_name}")

        if self.store is not None:
            try:
                await self.store.create_job_record(job)
            except PersistenceError as e:
                logger.warning(f"Job {job.id} not persisted: {e.message}")
                self._unsaved[job.id] = job.to_record()

        self.cleanup()
        self._process_next_jobs()
        return job

    def get_job(self, job_id: str) -> Optional[ScanJob]:
        return self.jobs.get(job_id)

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        error_code: Optional[str] = None
    ):
        """Move a job along pending -> running -> completed|failed"""
        job = self.jobs.get(job_id)
        if not job:
            return

        self._transition(job, JobStatus(status), error, error_code)

        if job.is_terminal:
            self._process_next_jobs()

        fields = {
            'status': job.status,
            'started_at': job.started_at.isoformat() if job.started_at else None,
            'completed_at': job.completed_at.isoformat() if job.completed_at else None,
            'error_message': job.error,
            'error_code': job.error_code
        }
        await self._persist(job_id, fields)
        if job.is_terminal and job_id in self._unsaved:
            await self._persist(job_id, {})

    async def update_progress(self, job_id: str, progress: JobProgress):
        """Overwrite the advisory progress snapshot of a running job"""
        job = self.jobs.get(job_id)
        if not job or job.status != JobStatus.RUNNING:
            return
        if job.progress and progress.current < job.progress.current:
            return

        job.progress = progress
        await self._persist(job_id, {
            'progress_current': progress.current,
            'progress_total': progress.total,
            'progress_file': progress.current_file
        })

    async def set_result(self, job_id: str, result: ScanResult):
        """Attach the final result and persist its findings and stats"""
        job = self.jobs.get(job_id)
        if not job:
            return

        job.result = result.redacted()
        if self.store is None:
            return

        # Requests without a branch record the one actually scanned
        await self._persist(job_id, {'branch': result.repository.branch})

        try:
            await self.store.append_findings(job_id, job.result.findings)
            await self.store.upsert_stats(job_id, job.result.stats)
        except PersistenceError as e:
            logger.error(f"Failed to persist results for job {job_id}: {e.message}")

    def get_pending_jobs(self) -> List[ScanJob]:
        pending = [job for job in self.jobs.values() if job.status == JobStatus.PENDING]
        return sorted(pending, key=lambda job: job.created_at)

    def get_running_jobs(self) -> List[ScanJob]:
        return [job for job in self.jobs.values() if job.status == JobStatus.RUNNING]

    def get_all_jobs(self) -> List[ScanJob]:
        return sorted(self.jobs.values(), key=lambda job: job.created_at, reverse=True)

    def get_queue_stats(self) -> QueueStats:
        jobs = list(self.jobs.values())
        return QueueStats(
            pending=len([j for j in jobs if j.status == JobStatus.PENDING]),
            running=len([j for j in jobs if j.status == JobStatus.RUNNING]),
            completed=len([j for j in jobs if j.status == JobStatus.COMPLETED]),
            failed=len([j for j in jobs if j.status == JobStatus.FAILED]),
            total=len(jobs)
        )

    async def delete_job(self, job_id: str) -> bool:
        """Forget a finished job here and in the store"""
        job = self.jobs.get(job_id)
        if job and not job.is_terminal:
            raise JobActiveError(f"Cannot delete active job {job_id}")

        removed = self.jobs.pop(job_id, None) is not None
        self._unsaved.pop(job_id, None)
        if self.store is not None:
            removed = await self.store.delete_job(job_id) or removed
        return removed

    def cleanup(self):
        """Drop the oldest finished jobs beyond the retention limit"""
        excess = len(self.jobs) - self.max_retained_jobs
        if excess <= 0:
            return

        finished = sorted(
            (job for job in self.jobs.values() if job.is_terminal),
            key=lambda job: job.created_at
        )
        for job in finished[:excess]:
            del self.jobs[job.id]
            self._unsaved.pop(job.id, None)
        logger.info(f"Cleaned up {min(excess, len(finished))} old jobs")

    async def shutdown(self):
        """Cancel running jobs; each ends as failed"""
        self._closing = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} running jobs on shutdown")

        # Tasks cancelled before their first step never reach the handler in _run_job
        for job in self.get_running_jobs():
            await self.update_status(job.id, JobStatus.FAILED, SHUTDOWN_MESSAGE, 'cancelled')

    def _transition(self, job: ScanJob, status: JobStatus, error: Optional[str], error_code: Optional[str]):
        current = JobStatus(job.status)
        if status not in ALLOWED_TRANSITIONS[current]:
            raise ValueError(f"Illegal transition for job {job.id}: {current.value} -> {status.value}")

        job.status = status.value
        now = utcnow()
        if status == JobStatus.RUNNING and job.started_at is None:
            job.started_at = now

        if job.is_terminal:
            job.completed_at = now
            self.running_jobs.discard(job.id)

        if error:
            job.error = error
            job.error_code = error_code

        logger.info(f"Job {job.id} status: {status.value}")

    def _process_next_jobs(self):
        if self.runner is None or self._closing:
            return

        while len(self.running_jobs) < self.max_concurrent_jobs:
            pending = self.get_pending_jobs()
            if not pending:
                return

            job = pending[0]
            self._transition(job, JobStatus.RUNNING, None, None)
            self.running_jobs.add(job.id)
            self._tasks[job.id] = asyncio.create_task(self._run_job(job))

    async def _run_job(self, job: ScanJob):
        try:
            await self._persist(job.id, {
                'status': job.status,
                'started_at': job.started_at.isoformat()
            })
            await self.runner(job)
        except asyncio.CancelledError:
            if not job.is_terminal:
                await self.update_status(job.id, JobStatus.FAILED, SHUTDOWN_MESSAGE, 'cancelled')
            raise
        except Exception as e:
            code, message = classify_error(e)
            logger.error(f"Job {job.id} failed ({code}): {e}")
            if not job.is_terminal:
                await self.update_status(job.id, JobStatus.FAILED, message, code)
        else:
            if not job.is_terminal:
                await self.update_status(job.id, JobStatus.COMPLETED)
        finally:
            self._tasks.pop(job.id, None)

    async def _persist(self, job_id: str, fields: Dict[str, Any]):
        if self.store is None:
            return
        merged = {**self._unsaved.pop(job_id, {}), **fields}
        try:
            await self.store.update_job_record(job_id, merged)
        except PersistenceError as e:
            self._unsaved[job_id] = merged
            logger.warning(f"Job {job_id} record not updated, will retry: {e.message}")
