# JWT token utilities
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError
from pydantic import BaseModel
from config.settings import get_settings

settings = get_settings()

class TokenData(BaseModel):
    user_id: str
    email: Optional[str] = None

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token; ``sub`` carries the user id"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({'exp': expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.algorithm)

def decode_access_token(token: str) -> Optional[TokenData]:
    """Decode and validate a JWT token issued by the identity provider"""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    user_id = payload.get('sub')
    if user_id is None:
        return None

    return TokenData(user_id=user_id, email=payload.get('email'))
