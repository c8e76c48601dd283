# Backend configuration settings
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv
import os

# Aliased variables such as JWT_SECRET_KEY are read through os.environ
load_dotenv()

class Settings(BaseSettings):
    # MongoDB
    mongo_url: str = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
    db_name: str = os.environ.get('DB_NAME', 'keyscan')

    # JWT (tokens are issued by the external auth service)
    secret_key: str = os.environ.get('JWT_SECRET_KEY', 'your-super-secret-key-change-in-production-min-32-chars')
    algorithm: str = os.environ.get('JWT_ALGORITHM', 'HS256')
    access_token_expire_minutes: int = int(os.environ.get('ACCESS_TOKEN_EXPIRE_MINUTES', 10080))  # 7 days

    # CORS
    cors_origins: str = os.environ.get('CORS_ORIGINS', '*')

    # GitHub
    github_api_url: str = os.environ.get('GITHUB_API_URL', 'https://api.github.com')
    github_raw_url: str = os.environ.get('GITHUB_RAW_URL', 'https://raw.githubusercontent.com')
    github_token: str = os.environ.get('GITHUB_TOKEN', '')  # fallback when a request carries none
    github_timeout: float = float(os.environ.get('GITHUB_TIMEOUT', 30.0))

    # Vault
    vault_encryption_key: str = os.environ.get('VAULT_ENCRYPTION_KEY', '')

    # Scanning
    max_concurrent_jobs: int = int(os.environ.get('MAX_CONCURRENT_JOBS', 3))
    scan_batch_size: int = int(os.environ.get('SCAN_BATCH_SIZE', 5))
    max_scan_files: int = int(os.environ.get('MAX_SCAN_FILES', 1000))
    max_file_size: int = int(os.environ.get('MAX_FILE_SIZE', 1048576))  # 1 MiB
    max_retained_jobs: int = int(os.environ.get('MAX_RETAINED_JOBS', 1000))

    # Logging
    log_level: str = os.environ.get('LOG_LEVEL', 'INFO')

    # JWT Secret Key alias
    @property
    def jwt_secret_key(self) -> str:
        return self.secret_key

    class Config:
        env_file = '.env'
        case_sensitive = False
        extra = 'ignore'  # Allow extra fields from .env

@lru_cache()
def get_settings() -> Settings:
    return Settings()
