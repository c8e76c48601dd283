# Scan routes
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from typing import Optional, Dict, Any
import logging
from middleware.auth import get_current_user, get_github_token
from utils.jwt import TokenData
from utils.repo_size import format_repo_size, get_repo_size_warning, get_scanning_recommendation
from schemas.scan import RateLimitStatus, ScanJob, ScanRequest, ScanResult
from services.async_scan_service import AsyncScanService

router = APIRouter(prefix='/scan', tags=['Scans'])
logger = logging.getLogger(__name__)

def get_scan_service(request: Request) -> AsyncScanService:
    return request.app.state.scan_service

def _with_token(scan_request: ScanRequest, token: Optional[str]) -> ScanRequest:
    if token is None:
        return scan_request
    return scan_request.model_copy(update={'github_token': token})

@router.post('', response_model=ScanResult)
async def scan_repository(
    scan_request: ScanRequest,
    current_user: TokenData = Depends(get_current_user),
    github_token: Optional[str] = Depends(get_github_token),
    service: AsyncScanService = Depends(get_scan_service)
):
    """Scan a repository and wait for the result"""
    result = await service.scan_now(_with_token(scan_request, github_token))
    return result.redacted()

@router.post('/async', response_model=ScanJob, status_code=status.HTTP_202_ACCEPTED)
async def queue_scan(
    scan_request: ScanRequest,
    current_user: TokenData = Depends(get_current_user),
    github_token: Optional[str] = Depends(get_github_token),
    service: AsyncScanService = Depends(get_scan_service)
):
    """Queue a background scan; poll the job for progress"""
    return await service.queue_scan(_with_token(scan_request, github_token), current_user.user_id)

@router.get('/jobs/{job_id}')
async def get_job_status(
    job_id: str,
    current_user: TokenData = Depends(get_current_user),
    service: AsyncScanService = Depends(get_scan_service)
) -> Dict[str, Any]:
    """Get the status and progress of a scan job"""
    job = await service.get_job_status_record(job_id, current_user.user_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Scan job not found')
    return job

@router.get('/jobs/{job_id}/results')
async def get_job_results(
    job_id: str,
    current_user: TokenData = Depends(get_current_user),
    service: AsyncScanService = Depends(get_scan_service)
) -> Dict[str, Any]:
    """Get the findings and stats of a scan job"""
    results = await service.get_job_result(job_id, current_user.user_id)
    if results is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Scan job not found')
    return results

@router.delete('/jobs/{job_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(
    job_id: str,
    current_user: TokenData = Depends(get_current_user),
    service: AsyncScanService = Depends(get_scan_service)
):
    """Delete a finished scan job with its findings and stats"""
    if not await service.delete_job(job_id, current_user.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Scan job not found')

@router.get('/queue')
async def get_queue_stats(
    current_user: TokenData = Depends(get_current_user),
    service: AsyncScanService = Depends(get_scan_service)
) -> Dict[str, Any]:
    """Snapshot of the scan queue"""
    return service.get_queue_stats()

@router.get('/rate-limit', response_model=RateLimitStatus)
async def get_rate_limit(
    current_user: TokenData = Depends(get_current_user),
    github_token: Optional[str] = Depends(get_github_token),
    service: AsyncScanService = Depends(get_scan_service)
):
    """Current GitHub API quota for the caller's token"""
    return await service.get_rate_limit(github_token)

@router.get('/repo-size')
async def get_repo_size(
    size_kb: int = Query(..., ge=0),
    remaining: Optional[int] = Query(default=None, ge=0),
    current_user: TokenData = Depends(get_current_user)
) -> Dict[str, Any]:
    """Size warning for a repository, plus a quota recommendation when remaining is given"""
    response = {
        'size': format_repo_size(size_kb),
        'warning': get_repo_size_warning(size_kb).model_dump()
    }
    if remaining is not None:
        response['recommendation'] = get_scanning_recommendation(remaining, size_kb).model_dump()
    return response
