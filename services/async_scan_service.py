# Async scan service - connects the job queue to the scan pipeline
import logging
from typing import Any, Callable, Dict, Optional

from config.settings import get_settings, Settings
from schemas.scan import JobProgress, JobStatus, RateLimitStatus, ScanJob, ScanRequest, ScanResult
from services.github_service import GitHubService
from services.job_queue import JobQueue
from services.result_store import ResultStore
from services.scan_service import ScanService
from services.secret_scanner import SecretScanner
from utils.errors import RateLimitError

logger = logging.getLogger(__name__)

GitHubFactory = Callable[[Optional[str]], GitHubService]


class AsyncScanService:
    """Queues scans, runs admitted jobs and serves their status and results"""

    def __init__(
        self,
        queue: JobQueue,
        store: Optional[ResultStore] = None,
        settings: Optional[Settings] = None,
        github_factory: Optional[GitHubFactory] = None,
        scanner: Optional[SecretScanner] = None
    ):
        self.settings = settings or get_settings()
        self.queue = queue
        self.store = store if store is not None else queue.store
        self.scanner = scanner or SecretScanner()
        self.github_factory = github_factory or (lambda token: GitHubService(token, settings=self.settings))
        queue.set_runner(self.process_job)

    def _scan_service(self, token: Optional[str]) -> ScanService:
        return ScanService(
            self.github_factory(token),
            scanner=self.scanner,
            store=self.store,
            settings=self.settings
        )

    async def queue_scan(self, request: ScanRequest, user_id: Optional[str] = None) -> ScanJob:
        """Create a scan job unless the token's quota is already exhausted"""
        rate = await self.github_factory(request.github_token).rate_limit()
        if rate.remaining <= 0:
            logger.warning(f"Refusing scan of {request.full_name}: rate limit exhausted")
            raise RateLimitError(
                f"GitHub API rate limit exhausted. Resets at {rate.reset_time.isoformat()}",
                reset_time=rate.reset_time
            )

        job = await self.queue.create_job(request, user_id)
        logger.info(f"Queued scan job {job.id} for {request.full_name}")
        return job

    async def process_job(self, job: ScanJob):
        """Runner invoked by the queue once the job holds a slot"""
        logger.info(f"Processing job {job.id}: {job.request.full_name}")

        async def on_progress(progress: JobProgress):
            await self.queue.update_progress(job.id, progress)

        result = await self._scan_service(job.request.github_token).scan_with_progress(
            job.id, job.request, on_progress
        )
        await self.queue.set_result(job.id, result)
        await self.queue.update_status(job.id, JobStatus.COMPLETED)
        logger.info(f"Job {job.id} completed: {result.stats.keys_found} keys found")

    async def scan_now(self, request: ScanRequest) -> ScanResult:
        """Synchronous scan outside the queue"""
        return await self._scan_service(request.github_token).scan(request)

    async def get_rate_limit(self, token: Optional[str] = None) -> RateLimitStatus:
        return await self.github_factory(token).rate_limit()

    def get_job_status(self, job_id: str, user_id: Optional[str] = None) -> Optional[ScanJob]:
        job = self.queue.get_job(job_id)
        if job is None or (user_id and job.user_id != user_id):
            return None
        return job

    async def get_job_status_record(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Live job snapshot, or the persisted record once the job left memory"""
        job = self.get_job_status(job_id, user_id)
        if job is not None:
            return job.model_dump(exclude={'result'})
        if self.store is None:
            return None
        return await self.store.get_job_record(job_id, user_id)

    async def get_job_result(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        job = self.get_job_status(job_id, user_id)
        if job is not None and job.result is not None:
            return {
                'status': job.status,
                'results': [finding.model_dump() for finding in job.result.findings],
                'stats': job.result.stats.model_dump(),
                'repository': job.result.repository.model_dump()
            }

        if self.store is None:
            return None
        record = await self.store.get_job_record(job_id, user_id)
        if record is None:
            return None
        return {
            'status': record.get('status'),
            'results': await self.store.get_findings(job_id),
            'stats': await self.store.get_stats(job_id),
            'repository': {'full_name': record.get('repository'), 'branch': record.get('branch')}
        }

    def get_queue_stats(self) -> Dict[str, Any]:
        return {
            'stats': self.queue.get_queue_stats().model_dump(),
            'pending_jobs': [
                {
                    'id': job.id,
                    'repository': job.request.full_name,
                    'created_at': job.created_at
                }
                for job in self.queue.get_pending_jobs()
            ],
            'running_jobs': [
                {
                    'id': job.id,
                    'repository': job.request.full_name,
                    'started_at': job.started_at,
                    'progress': job.progress.model_dump() if job.progress else None
                }
                for job in self.queue.get_running_jobs()
            ]
        }

    async def delete_job(self, job_id: str, user_id: Optional[str] = None) -> bool:
        if user_id and self.store is not None:
            record = await self.store.get_job_record(job_id, user_id)
            if record is None and self.get_job_status(job_id, user_id) is None:
                return False
        elif user_id and self.get_job_status(job_id, user_id) is None:
            return False
        return await self.queue.delete_job(job_id)
