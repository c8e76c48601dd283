# Vault schemas
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime, timezone
import uuid


class StoreKeyRequest(BaseModel):
    key_name: str = Field(..., min_length=1, max_length=128)
    service: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1, repr=False)
    environment: str = 'production'


class RotateKeyRequest(BaseModel):
    value: str = Field(..., min_length=1, repr=False)


class VaultKeyPublic(BaseModel):
    """What callers get back: never the ciphertext or the value hash"""
    model_config = ConfigDict(extra='ignore')

    id: str
    key_name: str
    service: str
    environment: str
    masked_value: str
    created_at: datetime
    updated_at: datetime
    last_accessed: Optional[datetime] = None
    access_count: int = 0
    rotation_count: int = 0


class VaultKey(VaultKeyPublic):
    model_config = ConfigDict(extra='ignore')

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    encrypted_value: str = Field(..., repr=False)
    value_hash: str = Field(..., repr=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def public(self) -> VaultKeyPublic:
        return VaultKeyPublic(**self.model_dump())


class VaultKeyValue(BaseModel):
    key_name: str
    service: str
    environment: str
    value: str = Field(..., repr=False)
