# Scan service - crawls a repository, detects secrets and aggregates results
import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from config.settings import get_settings, Settings
from schemas.scan import (
    FileRef,
    Finding,
    JobProgress,
    RepositoryMeta,
    ScanRequest,
    ScanResult,
    ScanStats,
)
from services.github_service import GitHubService
from services.result_store import ResultStore
from services.secret_scanner import SecretScanner
from utils.errors import FileFetchError, PersistenceError, RateLimitError, RepositoryTooLargeError
from utils.repo_size import format_repo_size, get_repo_size_warning, get_scanning_recommendation

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[JobProgress], Awaitable[None]]


class ScanService:
    """Single-repository scan: crawl, detect, aggregate"""

    def __init__(
        self,
        github: GitHubService,
        scanner: Optional[SecretScanner] = None,
        store: Optional[ResultStore] = None,
        batch_size: Optional[int] = None,
        settings: Optional[Settings] = None
    ):
        settings = settings or get_settings()
        self.github = github
        self.scanner = scanner or SecretScanner()
        self.store = store
        self.batch_size = batch_size or settings.scan_batch_size

    async def scan(self, request: ScanRequest) -> ScanResult:
        """Scan a repository and return every finding at once"""
        return await self._run(request)

    async def scan_with_progress(
        self,
        job_id: str,
        request: ScanRequest,
        on_progress: Optional[ProgressCallback] = None
    ) -> ScanResult:
        """Scan for a queued job: report progress per file and flush findings per batch"""
        return await self._run(request, job_id=job_id, on_progress=on_progress)

    async def _run(
        self,
        request: ScanRequest,
        job_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> ScanResult:
        started = time.monotonic()

        # Phase 1: repository metadata and quota preflight
        repository, branch = await self._resolve_repository(request)

        # Phase 2: discovery
        await self._report(on_progress, 0, 0, 'Discovering files...')
        files = await self.github.list_files(request.owner, request.repo, branch)
        if files:
            branch = files[0].branch
        total = len(files)
        await self._report(on_progress, 0, total, 'Starting scan...')

        # Phase 3: batched fetch + detect
        findings: List[Finding] = []
        unflushed: List[Finding] = []
        flushed: Set[Tuple[str, int]] = set()
        files_scanned = 0
        files_skipped = 0
        processed = 0

        for start in range(0, total, self.batch_size):
            batch = files[start:start + self.batch_size]
            contents = await asyncio.gather(*(self._fetch(ref) for ref in batch))

            for ref, content in zip(batch, contents):
                processed += 1
                if content is None:
                    files_skipped += 1
                else:
                    file_findings = self.scanner.detect(content, ref.path)
                    findings.extend(file_findings)
                    unflushed.extend(file_findings)
                    files_scanned += 1
                await self._report(on_progress, processed, total, ref.path)

            if job_id:
                unflushed = await self._flush(job_id, unflushed, flushed)

        if job_id and unflushed:
            await self._flush(job_id, unflushed, flushed)

        # Phase 4: stats
        duration_ms = int((time.monotonic() - started) * 1000)
        stats = ScanStats.from_findings(
            findings,
            files_scanned=files_scanned,
            files_skipped=files_skipped,
            total_files=total,
            duration_ms=duration_ms
        )

        logger.info(
            f"Scan of {request.full_name}@{branch} finished: {files_scanned}/{total} files, "
            f"{stats.keys_found} keys found in {duration_ms}ms"
        )

        return ScanResult(
            success=True,
            findings=findings,
            stats=stats,
            repository=RepositoryMeta(
                owner=request.owner,
                repo=request.repo,
                branch=branch,
                default_branch=repository.get('default_branch'),
                total_files=total,
                size_kb=repository.get('size') or 0,
                private=repository.get('private', False)
            )
        )

    async def _resolve_repository(self, request: ScanRequest):
        """Fetch metadata, pick the branch and refuse scans the quota cannot afford"""
        repository = await self.github.get_repository(request.owner, request.repo)
        branch = request.branch or repository.get('default_branch') or 'main'
        size_kb = repository.get('size') or 0

        warning = get_repo_size_warning(size_kb)
        if not warning.can_scan:
            raise RepositoryTooLargeError(
                f"{warning.message} ({format_repo_size(size_kb)}). {warning.suggestion}",
                details=warning.model_dump()
            )

        rate = await self.github.rate_limit()
        recommendation = get_scanning_recommendation(rate.remaining, size_kb)
        if not recommendation.can_scan:
            raise RateLimitError(recommendation.message, reset_time=rate.reset_time)

        return repository, branch

    async def _fetch(self, ref: FileRef) -> Optional[str]:
        try:
            return await self.github.fetch_content(ref)
        except FileFetchError as e:
            logger.warning(e.message)
            return None

    async def _flush(self, job_id: str, pending: List[Finding], flushed: Set[Tuple[str, int]]) -> List[Finding]:
        """Persist new findings; on failure keep them for the next flush point"""
        fresh = [f for f in pending if f.key not in flushed]
        if not fresh or self.store is None:
            return []

        try:
            added = await self.store.append_findings(job_id, [f.redacted() for f in fresh])
        except PersistenceError as e:
            logger.warning(f"Flush for job {job_id} failed, retrying at next batch: {e.message}")
            return fresh

        flushed.update(f.key for f in fresh)
        logger.debug(f"Flushed {added} findings for job {job_id}")
        return []

    @staticmethod
    async def _report(on_progress: Optional[ProgressCallback], current: int, total: int, current_file: str):
        if on_progress is not None:
            await on_progress(JobProgress(current=current, total=total, current_file=current_file))
