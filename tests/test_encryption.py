import base64
import json

import pytest

from utils.encryption import EncryptionService, hash_value, mask
from utils.errors import EncryptionError


@pytest.fixture(scope='module')
def encryption():
    return EncryptionService('test-vault-secret')


def test_round_trip(encryption):
    secret = 'sk_live_' + 'a' * 24
    assert encryption.decrypt(encryption.encrypt(secret)) == secret


def test_round_trip_unicode(encryption):
    assert encryption.decrypt(encryption.encrypt('pässwörd-🔑')) == 'pässwörd-🔑'


def test_envelope_shape(encryption):
    envelope = json.loads(base64.b64decode(encryption.encrypt('value')))

    assert set(envelope) == {'iv', 'authTag', 'encryptedData'}
    assert len(bytes.fromhex(envelope['iv'])) == 12
    assert len(bytes.fromhex(envelope['authTag'])) == 16


def test_encrypting_twice_uses_fresh_iv(encryption):
    assert encryption.encrypt('value') != encryption.encrypt('value')


def test_tampered_ciphertext_is_rejected(encryption):
    envelope = json.loads(base64.b64decode(encryption.encrypt('value')))
    data = bytearray(bytes.fromhex(envelope['encryptedData']))
    data[0] ^= 0x01
    envelope['encryptedData'] = data.hex()
    tampered = base64.b64encode(json.dumps(envelope).encode()).decode()

    with pytest.raises(EncryptionError):
        encryption.decrypt(tampered)


def test_other_key_cannot_decrypt(encryption):
    token = encryption.encrypt('value')
    with pytest.raises(EncryptionError):
        EncryptionService('another-secret').decrypt(token)


def test_garbage_is_rejected(encryption):
    with pytest.raises(EncryptionError):
        encryption.decrypt('not-an-envelope')


def test_missing_secret_is_rejected():
    with pytest.raises(EncryptionError):
        EncryptionService('')


@pytest.mark.parametrize('value, expected', [
    ('abcd1234efgh', 'abcd****efgh'),
    ('abcdefgh', '********'),
    ('abc', '***'),
    ('', ''),
])
def test_mask(value, expected):
    assert mask(value) == expected


def test_mask_keeps_length():
    value = 'ghp_' + 'x' * 36
    masked = mask(value)
    assert len(masked) == len(value)
    assert masked.startswith('ghp_') and masked.endswith('xxxx')


def test_hash_is_sha256_hex(encryption):
    digest = hash_value('value')
    assert len(digest) == 64
    assert digest == encryption.hash('value')
    assert digest != hash_value('other')


def test_generate_secure_key():
    key = EncryptionService.generate_secure_key()
    assert len(key) == 64
    int(key, 16)
