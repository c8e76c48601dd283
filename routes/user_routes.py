# User routes
from fastapi import APIRouter, Depends, Query, Request
from typing import Any, Dict, List
from middleware.auth import get_current_user
from utils.jwt import TokenData
from services.result_store import ResultStore

router = APIRouter(prefix='/users', tags=['Users'])

def get_result_store(request: Request) -> ResultStore:
    return request.app.state.result_store

@router.get('/me/jobs')
async def get_my_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    current_user: TokenData = Depends(get_current_user),
    store: ResultStore = Depends(get_result_store)
) -> List[Dict[str, Any]]:
    """Recent scan jobs of the current user"""
    return await store.list_user_jobs(current_user.user_id, limit)

@router.get('/me/stats')
async def get_my_stats(
    current_user: TokenData = Depends(get_current_user),
    store: ResultStore = Depends(get_result_store)
) -> Dict[str, int]:
    """Scan totals of the current user"""
    return await store.get_user_stats(current_user.user_id)
