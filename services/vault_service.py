# Vault service - encrypted storage for keys found by scans or added by users
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from schemas.scan import Finding
from schemas.vault import StoreKeyRequest, VaultKey, VaultKeyPublic, VaultKeyValue
from utils.encryption import EncryptionService
from utils.errors import NotFoundError, PersistenceError, VaultKeyConflictError

logger = logging.getLogger(__name__)

DATETIME_FIELDS = ('created_at', 'updated_at', 'last_accessed')


def _to_doc(key: VaultKey) -> dict:
    doc = key.model_dump()
    for field in DATETIME_FIELDS:
        if doc.get(field):
            doc[field] = doc[field].isoformat()
    return doc


class VaultService:
    """Per-user key vault on top of the ``vault_keys`` collection"""

    def __init__(self, db, encryption: Optional[EncryptionService] = None):
        self.db = db
        self.encryption = encryption or EncryptionService()

    async def store_key(self, user_id: str, request: StoreKeyRequest) -> VaultKeyPublic:
        """Encrypt and store a new key; the same value may only be stored once per user"""
        value_hash = self.encryption.hash(request.value)

        try:
            existing = await self.db.vault_keys.find_one(
                {'user_id': user_id, 'value_hash': value_hash},
                {'_id': 0, 'key_name': 1}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to look up vault keys: {e}") from e
        if existing:
            raise VaultKeyConflictError(f"This value is already stored as '{existing['key_name']}'")

        key = VaultKey(
            user_id=user_id,
            key_name=request.key_name,
            service=request.service,
            environment=request.environment,
            encrypted_value=self.encryption.encrypt(request.value),
            value_hash=value_hash,
            masked_value=self.encryption.mask(request.value)
        )

        try:
            await self.db.vault_keys.insert_one(_to_doc(key))
        except DuplicateKeyError as e:
            raise VaultKeyConflictError(
                f"Key '{request.key_name}' already exists in {request.environment}"
            ) from e
        except PyMongoError as e:
            logger.error(f"Failed to store vault key {request.key_name}: {e}")
            raise PersistenceError(f"Failed to store vault key: {e}") from e

        logger.info(f"Stored vault key {key.key_name} ({key.masked_value}) for user {user_id}")
        return key.public()

    async def store_finding(
        self,
        user_id: str,
        finding: Finding,
        key_name: Optional[str] = None,
        environment: str = 'production'
    ) -> VaultKeyPublic:
        """Move a freshly detected secret into the vault"""
        if not finding.match:
            raise ValueError('Finding no longer carries its raw value')

        request = StoreKeyRequest(
            key_name=key_name or f"{finding.service}:{finding.file_path}:{finding.line_number}",
            service=finding.service,
            value=finding.match,
            environment=environment
        )
        return await self.store_key(user_id, request)

    async def list_keys(self, user_id: str, environment: Optional[str] = None) -> List[VaultKeyPublic]:
        query = {'user_id': user_id}
        if environment:
            query['environment'] = environment
        try:
            docs = await self.db.vault_keys.find(query, {'_id': 0}).sort('created_at', -1).to_list(1000)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to list vault keys: {e}") from e
        return [VaultKeyPublic(**doc) for doc in docs]

    async def _get(self, user_id: str, key_name: str, environment: str) -> VaultKey:
        try:
            doc = await self.db.vault_keys.find_one(
                {'user_id': user_id, 'key_name': key_name, 'environment': environment},
                {'_id': 0}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to get vault key: {e}") from e
        if not doc:
            raise NotFoundError(f"Vault key '{key_name}' not found in {environment}")
        return VaultKey(**doc)

    async def get_key_value(self, user_id: str, key_name: str, environment: str = 'production') -> VaultKeyValue:
        """Decrypt a key and record the access"""
        key = await self._get(user_id, key_name, environment)
        value = self.encryption.decrypt(key.encrypted_value)

        try:
            await self.db.vault_keys.update_one(
                {'id': key.id},
                {
                    '$set': {'last_accessed': datetime.now(timezone.utc).isoformat()},
                    '$inc': {'access_count': 1}
                }
            )
        except PyMongoError as e:
            logger.warning(f"Access to vault key {key_name} not recorded: {e}")

        logger.info(f"Vault key {key_name} accessed by user {user_id}")
        return VaultKeyValue(
            key_name=key.key_name,
            service=key.service,
            environment=key.environment,
            value=value
        )

    async def rotate_key(
        self,
        user_id: str,
        key_name: str,
        new_value: str,
        environment: str = 'production'
    ) -> VaultKeyPublic:
        """Replace a key's value, keeping its name and history counters"""
        key = await self._get(user_id, key_name, environment)
        value_hash = self.encryption.hash(new_value)

        try:
            existing = await self.db.vault_keys.find_one(
                {'user_id': user_id, 'value_hash': value_hash, 'id': {'$ne': key.id}},
                {'_id': 0, 'key_name': 1}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to look up vault keys: {e}") from e
        if existing:
            raise VaultKeyConflictError(f"This value is already stored as '{existing['key_name']}'")

        now = datetime.now(timezone.utc)
        masked = self.encryption.mask(new_value)

        try:
            await self.db.vault_keys.update_one(
                {'id': key.id},
                {
                    '$set': {
                        'encrypted_value': self.encryption.encrypt(new_value),
                        'value_hash': value_hash,
                        'masked_value': masked,
                        'updated_at': now.isoformat()
                    },
                    '$inc': {'rotation_count': 1}
                }
            )
        except PyMongoError as e:
            logger.error(f"Failed to rotate vault key {key_name}: {e}")
            raise PersistenceError(f"Failed to rotate vault key: {e}") from e

        logger.info(f"Rotated vault key {key_name} for user {user_id}")
        return key.public().model_copy(update={
            'masked_value': masked,
            'updated_at': now,
            'rotation_count': key.rotation_count + 1
        })

    async def delete_key(self, user_id: str, key_name: str, environment: str = 'production') -> bool:
        try:
            result = await self.db.vault_keys.delete_one(
                {'user_id': user_id, 'key_name': key_name, 'environment': environment}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to delete vault key: {e}") from e

        if result.deleted_count == 0:
            raise NotFoundError(f"Vault key '{key_name}' not found in {environment}")
        logger.info(f"Deleted vault key {key_name} for user {user_id}")
        return True
