from schemas.scan import (
    Finding, JobProgress, JobStatus, ScanJob, ScanRequest, ScanResult, ScanStats, Severity
)
from schemas.vault import StoreKeyRequest, RotateKeyRequest, VaultKeyPublic, VaultKeyValue

__all__ = [
    'Finding', 'JobProgress', 'JobStatus', 'ScanJob', 'ScanRequest', 'ScanResult', 'ScanStats', 'Severity',
    'StoreKeyRequest', 'RotateKeyRequest', 'VaultKeyPublic', 'VaultKeyValue'
]
