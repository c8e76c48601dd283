from utils.jwt import TokenData, create_access_token, decode_access_token
from utils.errors import ScanError, classify_error

__all__ = [
    'TokenData', 'create_access_token', 'decode_access_token',
    'ScanError', 'classify_error'
]
