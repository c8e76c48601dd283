# Request identity and code-host credentials
from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer
from fastapi.security.http import HTTPAuthorizationCredentials
from utils.jwt import decode_access_token, TokenData

security = HTTPBearer()

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> TokenData:
    """Resolve the calling user from the bearer JWT"""
    token_data = decode_access_token(credentials.credentials)

    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Could not validate credentials',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    return token_data

async def get_github_token(x_github_token: Optional[str] = Header(default=None)) -> Optional[str]:
    """GitHub token for the scan; falls back to the server token when absent"""
    if x_github_token is None:
        return None
    return x_github_token.strip() or None
