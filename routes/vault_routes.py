# Vault routes
from fastapi import APIRouter, Depends, Query, Request, status
from typing import List, Optional
from middleware.auth import get_current_user
from utils.jwt import TokenData
from utils.errors import EncryptionError
from schemas.vault import RotateKeyRequest, StoreKeyRequest, VaultKeyPublic, VaultKeyValue
from services.vault_service import VaultService

router = APIRouter(prefix='/vault', tags=['Vault'])

def get_vault_service(request: Request) -> VaultService:
    vault = request.app.state.vault_service
    if vault is None:
        raise EncryptionError('Vault is disabled: VAULT_ENCRYPTION_KEY is not set')
    return vault

@router.post('/keys', response_model=VaultKeyPublic, status_code=status.HTTP_201_CREATED)
async def store_key(
    key_request: StoreKeyRequest,
    current_user: TokenData = Depends(get_current_user),
    vault: VaultService = Depends(get_vault_service)
):
    """Encrypt and store a key"""
    return await vault.store_key(current_user.user_id, key_request)

@router.get('/keys', response_model=List[VaultKeyPublic])
async def list_keys(
    environment: Optional[str] = Query(default=None),
    current_user: TokenData = Depends(get_current_user),
    vault: VaultService = Depends(get_vault_service)
):
    """List stored keys (masked)"""
    return await vault.list_keys(current_user.user_id, environment)

@router.get('/keys/{key_name}', response_model=VaultKeyValue)
async def get_key_value(
    key_name: str,
    environment: str = Query(default='production'),
    current_user: TokenData = Depends(get_current_user),
    vault: VaultService = Depends(get_vault_service)
):
    """Decrypt a stored key"""
    return await vault.get_key_value(current_user.user_id, key_name, environment)

@router.put('/keys/{key_name}/rotate', response_model=VaultKeyPublic)
async def rotate_key(
    key_name: str,
    rotate_request: RotateKeyRequest,
    environment: str = Query(default='production'),
    current_user: TokenData = Depends(get_current_user),
    vault: VaultService = Depends(get_vault_service)
):
    """Replace a stored key's value"""
    return await vault.rotate_key(current_user.user_id, key_name, rotate_request.value, environment)

@router.delete('/keys/{key_name}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_key(
    key_name: str,
    environment: str = Query(default='production'),
    current_user: TokenData = Depends(get_current_user),
    vault: VaultService = Depends(get_vault_service)
):
    """Delete a stored key"""
    await vault.delete_key(current_user.user_id, key_name, environment)
