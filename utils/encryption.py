# Symmetric encryption helpers for the key vault
import base64
import hashlib
import json
import logging
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from config.settings import get_settings
from utils.errors import EncryptionError

logger = logging.getLogger(__name__)

KEY_SALT = b'vault-salt'
IV_LENGTH = 12
TAG_LENGTH = 16


def mask(value: str, visible_chars: int = 4) -> str:
    """Mask a secret for display, keeping a short prefix and suffix"""
    if len(value) <= visible_chars * 2:
        return '*' * len(value)

    start = value[:visible_chars]
    end = value[-visible_chars:]
    middle = '*' * (len(value) - visible_chars * 2)
    return f"{start}{middle}{end}"


def hash_value(value: str) -> str:
    """One-way digest used only to detect duplicate stored values"""
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


class EncryptionService:
    """AES-256-GCM encryption with a scrypt-derived key"""

    def __init__(self, secret: Optional[str] = None):
        if secret is None:
            secret = get_settings().vault_encryption_key
        if not secret:
            raise EncryptionError('VAULT_ENCRYPTION_KEY is required for vault encryption')

        kdf = Scrypt(salt=KEY_SALT, length=32, n=2 ** 14, r=8, p=1)
        self._aesgcm = AESGCM(kdf.derive(secret.encode('utf-8')))

    def encrypt(self, text: str) -> str:
        """Encrypt text into an opaque base64 envelope"""
        iv = os.urandom(IV_LENGTH)
        try:
            sealed = self._aesgcm.encrypt(iv, text.encode('utf-8'), None)
        except Exception as e:
            logger.error(f"Encryption failed: {type(e).__name__}")
            raise EncryptionError('Failed to encrypt sensitive data') from e

        # AESGCM appends the tag to the ciphertext
        envelope = {
            'iv': iv.hex(),
            'authTag': sealed[-TAG_LENGTH:].hex(),
            'encryptedData': sealed[:-TAG_LENGTH].hex()
        }
        return base64.b64encode(json.dumps(envelope).encode('utf-8')).decode('ascii')

    def decrypt(self, encrypted_data: str) -> str:
        """Decrypt an envelope produced by encrypt()"""
        try:
            envelope = json.loads(base64.b64decode(encrypted_data).decode('utf-8'))
            iv = bytes.fromhex(envelope['iv'])
            sealed = bytes.fromhex(envelope['encryptedData']) + bytes.fromhex(envelope['authTag'])
            return self._aesgcm.decrypt(iv, sealed, None).decode('utf-8')
        except (InvalidTag, ValueError, KeyError, TypeError) as e:
            logger.error(f"Decryption failed: {type(e).__name__}")
            raise EncryptionError('Failed to decrypt sensitive data') from e

    def hash(self, value: str) -> str:
        return hash_value(value)

    def mask(self, value: str, visible_chars: int = 4) -> str:
        return mask(value, visible_chars)

    @staticmethod
    def generate_secure_key() -> str:
        """Generate a random key suitable for VAULT_ENCRYPTION_KEY"""
        return secrets.token_hex(32)
