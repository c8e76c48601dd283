# Scan schemas
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Severity(str, Enum):
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


class ScanRequest(BaseModel):
    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    branch: Optional[str] = None  # None resolves to the default branch
    github_token: Optional[str] = Field(default=None, exclude=True, repr=False)

    @field_validator('owner', 'repo', mode='before')
    @classmethod
    def no_slashes(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if '/' in value:
                raise ValueError('must not contain "/"')
        return value

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class Finding(BaseModel):
    """One detected credential occurrence.

    ``match`` holds the raw secret in memory only: it is excluded from
    serialisation and repr so that only ``masked_value`` leaves the process.
    """
    model_config = ConfigDict(extra='ignore', use_enum_values=True)

    service: str
    file_path: str
    line_number: int = Field(..., ge=1)
    severity: Severity
    description: str
    masked_value: str
    job_id: Optional[str] = None
    match: Optional[str] = Field(default=None, exclude=True, repr=False)

    @property
    def key(self) -> tuple:
        return (self.file_path, self.line_number)

    def redacted(self) -> 'Finding':
        return self.model_copy(update={'match': None})


class ScanStats(BaseModel):
    model_config = ConfigDict(extra='ignore')

    files_scanned: int = 0
    files_skipped: int = 0
    keys_found: int = 0
    high_severity: int = 0
    medium_severity: int = 0
    low_severity: int = 0
    total_files: int = 0
    duration_ms: int = 0

    @classmethod
    def from_findings(
        cls,
        findings: List[Finding],
        files_scanned: int = 0,
        files_skipped: int = 0,
        total_files: int = 0,
        duration_ms: int = 0
    ) -> 'ScanStats':
        return cls(
            files_scanned=files_scanned,
            files_skipped=files_skipped,
            keys_found=len(findings),
            high_severity=len([f for f in findings if f.severity == Severity.HIGH]),
            medium_severity=len([f for f in findings if f.severity == Severity.MEDIUM]),
            low_severity=len([f for f in findings if f.severity == Severity.LOW]),
            total_files=total_files,
            duration_ms=duration_ms
        )


class RepositoryMeta(BaseModel):
    owner: str
    repo: str
    branch: str
    default_branch: Optional[str] = None
    total_files: int = 0
    size_kb: int = 0
    private: bool = False


class ScanResult(BaseModel):
    scan_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    success: bool
    findings: List[Finding] = Field(default_factory=list)
    stats: ScanStats = Field(default_factory=ScanStats)
    repository: RepositoryMeta
    timestamp: datetime = Field(default_factory=utcnow)

    def redacted(self) -> 'ScanResult':
        return self.model_copy(update={'findings': [f.redacted() for f in self.findings]})


class JobProgress(BaseModel):
    current: int = 0
    total: int = 0
    current_file: Optional[str] = None


class ScanJob(BaseModel):
    model_config = ConfigDict(extra='ignore', use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str = 'scan'
    status: JobStatus = JobStatus.PENDING
    user_id: Optional[str] = None
    request: ScanRequest
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: Optional[JobProgress] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    result: Optional[ScanResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_record(self) -> dict:
        """Flat document persisted in scan_jobs"""
        progress = self.progress or JobProgress()
        return {
            'id': self.id,
            'user_id': self.user_id,
            'status': JobStatus(self.status).value,
            'repository': self.request.full_name,
            'branch': self.request.branch,
            'created_at': self.created_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error_message': self.error,
            'error_code': self.error_code,
            'progress_current': progress.current,
            'progress_total': progress.total,
            'progress_file': progress.current_file
        }


class QueueStats(BaseModel):
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class FileRef(BaseModel):
    path: str
    name: str
    sha: str
    size: int = 0
    branch: str
    download_url: str


class RateLimitStatus(BaseModel):
    limit: int
    remaining: int
    reset_time: datetime
    used: int = 0


class RepoSizeWarning(BaseModel):
    level: str  # success, info, warning, error
    message: str
    suggestion: str
    estimated_requests: int
    can_scan: bool
    risk_level: str  # low, medium, high, very-high


class ScanRecommendation(BaseModel):
    can_scan: bool
    message: str
    suggestion: str
