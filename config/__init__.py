from config.settings import get_settings
from config.database import Database

__all__ = ['get_settings', 'Database']
