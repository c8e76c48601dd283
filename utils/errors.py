# Error taxonomy for the scanning pipeline
from datetime import datetime
from typing import Optional, Tuple, Any


class ScanError(Exception):
    """Base error with a stable classification code and HTTP status"""

    code = 'internal_error'
    status_code = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        data = {'error': self.message, 'code': self.code}
        if self.details:
            data['details'] = self.details
        return data


class NotConnectedError(ScanError):
    """No valid credential for the code host"""
    code = 'not_connected'
    status_code = 401


class RateLimitError(ScanError):
    code = 'rate_limited'
    status_code = 429

    def __init__(self, message: str, reset_time: Optional[datetime] = None, details: Any = None):
        super().__init__(message, details)
        self.reset_time = reset_time

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.reset_time:
            data['reset_time'] = self.reset_time.isoformat()
        return data


class NotFoundError(ScanError):
    code = 'not_found'
    status_code = 404


class RepositoryTooLargeError(ScanError):
    code = 'repository_too_large'
    status_code = 413


class FileFetchError(ScanError):
    """Per-file fetch failure; absorbed by the orchestrator"""
    code = 'fetch_failed'
    status_code = 502


class PersistenceError(ScanError):
    code = 'persistence_error'
    status_code = 500


class GitHubAPIError(ScanError):
    code = 'github_error'
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message, details)
        self.status = status


class JobActiveError(ScanError):
    code = 'job_active'
    status_code = 409


class VaultKeyConflictError(ScanError):
    code = 'duplicate_key'
    status_code = 409


class EncryptionError(ScanError):
    code = 'encryption_error'
    status_code = 500


def classify_error(exc: BaseException) -> Tuple[str, str]:
    """Map any exception to a (code, human readable message) pair"""
    if isinstance(exc, ScanError):
        return exc.code, exc.message
    return ScanError.code, 'Internal error while scanning repository'
