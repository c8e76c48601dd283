# Result store - persistence boundary for scan jobs, findings and stats
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from schemas.scan import Finding, JobStatus, ScanJob, ScanStats
from utils.errors import JobActiveError, PersistenceError

logger = logging.getLogger(__name__)

SEVERITY_RANK = {'high': 0, 'medium': 1, 'low': 2}
ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def finding_document(job_id: str, finding: Finding) -> Dict[str, Any]:
    """Persisted shape of a finding: masked value only"""
    doc = finding.model_dump(exclude={'job_id'})
    doc['job_id'] = job_id
    doc['created_at'] = datetime.now(timezone.utc).isoformat()
    return doc


def sort_by_severity(findings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(
        findings,
        key=lambda f: (SEVERITY_RANK.get(f.get('severity'), 3), f.get('file_path', ''), f.get('line_number', 0))
    )


def aggregate_user_stats(jobs: List[Dict[str, Any]], stats: List[Dict[str, Any]]) -> Dict[str, int]:
    totals = {
        'total_scans': len(jobs),
        'completed_scans': len([j for j in jobs if j.get('status') == JobStatus.COMPLETED.value]),
        'failed_scans': len([j for j in jobs if j.get('status') == JobStatus.FAILED.value]),
        'total_keys_found': 0,
        'total_files_scanned': 0
    }
    for item in stats:
        totals['total_keys_found'] += item.get('keys_found', 0)
        totals['total_files_scanned'] += item.get('files_scanned', 0)
    return totals


class ResultStore(ABC):
    """Narrow persistence interface used by the job queue and orchestrator"""

    @abstractmethod
    async def create_job_record(self, job: ScanJob) -> None:
        ...

    @abstractmethod
    async def update_job_record(self, job_id: str, fields: Dict[str, Any]) -> None:
        """Set fields on the job record, creating it when missing"""

    @abstractmethod
    async def append_findings(self, job_id: str, findings: List[Finding]) -> int:
        """Insert findings not yet stored under (job_id, file_path, line_number); returns rows added"""

    @abstractmethod
    async def upsert_stats(self, job_id: str, stats: ScanStats) -> None:
        ...

    @abstractmethod
    async def get_job_record(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_findings(self, job_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_stats(self, job_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_user_jobs(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_user_stats(self, user_id: str) -> Dict[str, int]:
        ...

    @abstractmethod
    async def delete_job(self, job_id: str) -> bool:
        """Remove a terminal job with its findings and stats"""


class MongoResultStore(ResultStore):
    """ResultStore backed by motor collections"""

    def __init__(self, db):
        self.db = db

    async def create_job_record(self, job: ScanJob) -> None:
        try:
            await self.db.scan_jobs.insert_one(job.to_record())
        except PyMongoError as e:
            logger.error(f"Failed to create scan job {job.id}: {e}")
            raise PersistenceError(f"Failed to create scan job: {e}") from e

    async def update_job_record(self, job_id: str, fields: Dict[str, Any]) -> None:
        update = dict(fields)
        update['updated_at'] = datetime.now(timezone.utc).isoformat()
        try:
            await self.db.scan_jobs.update_one({'id': job_id}, {'$set': update}, upsert=True)
        except PyMongoError as e:
            logger.error(f"Failed to update scan job {job_id}: {e}")
            raise PersistenceError(f"Failed to update scan job: {e}") from e

    async def append_findings(self, job_id: str, findings: List[Finding]) -> int:
        if not findings:
            return 0

        operations = []
        seen = set()
        for finding in findings:
            if finding.key in seen:
                continue
            seen.add(finding.key)
            operations.append(UpdateOne(
                {'job_id': job_id, 'file_path': finding.file_path, 'line_number': finding.line_number},
                {'$setOnInsert': finding_document(job_id, finding)},
                upsert=True
            ))

        try:
            result = await self.db.scan_results.bulk_write(operations, ordered=False)
        except PyMongoError as e:
            logger.error(f"Failed to store scan results for job {job_id}: {e}")
            raise PersistenceError(f"Failed to store scan results: {e}") from e

        return result.upserted_count

    async def upsert_stats(self, job_id: str, stats: ScanStats) -> None:
        doc = stats.model_dump()
        doc['job_id'] = job_id
        doc['updated_at'] = datetime.now(timezone.utc).isoformat()
        try:
            await self.db.scan_stats.update_one({'job_id': job_id}, {'$set': doc}, upsert=True)
        except PyMongoError as e:
            logger.error(f"Failed to store scan stats for job {job_id}: {e}")
            raise PersistenceError(f"Failed to store scan stats: {e}") from e

    async def get_job_record(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = {'id': job_id}
        if user_id:
            query['user_id'] = user_id
        try:
            return await self.db.scan_jobs.find_one(query, {'_id': 0})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to get scan job: {e}") from e

    async def get_findings(self, job_id: str) -> List[Dict[str, Any]]:
        try:
            findings = await self.db.scan_results.find({'job_id': job_id}, {'_id': 0}).to_list(None)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to get scan results: {e}") from e
        return sort_by_severity(findings)

    async def get_stats(self, job_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.db.scan_stats.find_one({'job_id': job_id}, {'_id': 0})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to get scan stats: {e}") from e

    async def list_user_jobs(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            return await self.db.scan_jobs.find(
                {'user_id': user_id},
                {'_id': 0}
            ).sort('created_at', -1).limit(limit).to_list(limit)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to get user scan jobs: {e}") from e

    async def get_user_stats(self, user_id: str) -> Dict[str, int]:
        try:
            jobs = await self.db.scan_jobs.find({'user_id': user_id}, {'_id': 0}).to_list(None)
            job_ids = [job['id'] for job in jobs]
            stats = await self.db.scan_stats.find({'job_id': {'$in': job_ids}}, {'_id': 0}).to_list(None)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to get user stats: {e}") from e
        return aggregate_user_stats(jobs, stats)

    async def delete_job(self, job_id: str) -> bool:
        record = await self.get_job_record(job_id)
        if not record:
            return False
        if record.get('status') in ACTIVE_STATUSES:
            raise JobActiveError(f"Cannot delete active job {job_id}")

        try:
            await self.db.scan_results.delete_many({'job_id': job_id})
            await self.db.scan_stats.delete_one({'job_id': job_id})
            await self.db.scan_jobs.delete_one({'id': job_id})
        except PyMongoError as e:
            logger.error(f"Failed to delete scan job {job_id}: {e}")
            raise PersistenceError(f"Failed to delete scan job: {e}") from e

        logger.info(f"Deleted scan job {job_id}")
        return True


class InMemoryResultStore(ResultStore):
    """Process-local ResultStore for tests and database-less runs"""

    def __init__(self):
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.results: Dict[str, Dict[tuple, Dict[str, Any]]] = {}
        self.stats: Dict[str, Dict[str, Any]] = {}

    async def create_job_record(self, job: ScanJob) -> None:
        self.jobs[job.id] = job.to_record()

    async def update_job_record(self, job_id: str, fields: Dict[str, Any]) -> None:
        self.jobs.setdefault(job_id, {'id': job_id}).update(fields)

    async def append_findings(self, job_id: str, findings: List[Finding]) -> int:
        rows = self.results.setdefault(job_id, {})
        added = 0
        for finding in findings:
            if finding.key in rows:
                continue
            rows[finding.key] = finding_document(job_id, finding)
            added += 1
        return added

    async def upsert_stats(self, job_id: str, stats: ScanStats) -> None:
        self.stats[job_id] = {**stats.model_dump(), 'job_id': job_id}

    async def get_job_record(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        record = self.jobs.get(job_id)
        if record is None or (user_id and record.get('user_id') != user_id):
            return None
        return dict(record)

    async def get_findings(self, job_id: str) -> List[Dict[str, Any]]:
        return sort_by_severity(list(self.results.get(job_id, {}).values()))

    async def get_stats(self, job_id: str) -> Optional[Dict[str, Any]]:
        return self.stats.get(job_id)

    async def list_user_jobs(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        jobs = [dict(j) for j in self.jobs.values() if j.get('user_id') == user_id]
        jobs.sort(key=lambda j: j['created_at'], reverse=True)
        return jobs[:limit]

    async def get_user_stats(self, user_id: str) -> Dict[str, int]:
        jobs = [j for j in self.jobs.values() if j.get('user_id') == user_id]
        stats = [self.stats[j['id']] for j in jobs if j['id'] in self.stats]
        return aggregate_user_stats(jobs, stats)

    async def delete_job(self, job_id: str) -> bool:
        record = self.jobs.get(job_id)
        if record is None:
            return False
        if record.get('status') in ACTIVE_STATUSES:
            raise JobActiveError(f"Cannot delete active job {job_id}")

        self.results.pop(job_id, None)
        self.stats.pop(job_id, None)
        del self.jobs[job_id]
        return True
