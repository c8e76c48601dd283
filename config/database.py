# Database connection configuration
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from config.settings import get_settings
import logging

logger = logging.getLogger(__name__)
settings = get_settings()

class Database:
    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

    @classmethod
    async def connect_db(cls):
        try:
            cls.client = AsyncIOMotorClient(settings.mongo_url)
            cls.db = cls.client[settings.db_name]

            # Job records
            await cls.db.scan_jobs.create_index('id', unique=True)
            await cls.db.scan_jobs.create_index([('user_id', 1), ('created_at', -1)])

            # One finding row per (job, file, line) so re-flushing is idempotent
            await cls.db.scan_results.create_index(
                [('job_id', 1), ('file_path', 1), ('line_number', 1)],
                unique=True
            )
            await cls.db.scan_stats.create_index('job_id', unique=True)

            # Vault
            await cls.db.vault_keys.create_index(
                [('user_id', 1), ('key_name', 1), ('environment', 1)],
                unique=True
            )
            await cls.db.vault_keys.create_index([('user_id', 1), ('value_hash', 1)])

            logger.info(f'Connected to MongoDB: {settings.db_name}')
        except Exception as e:
            logger.error(f'Failed to connect to MongoDB: {e}')
            raise

    @classmethod
    async def close_db(cls):
        if cls.client:
            cls.client.close()
            logger.info('Closed MongoDB connection')

    @classmethod
    def get_db(cls) -> AsyncIOMotorDatabase:
        return cls.db
