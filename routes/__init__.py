from routes.scan_routes import router as scan_router
from routes.vault_routes import router as vault_router
from routes.user_routes import router as user_router

__all__ = [
    'scan_router',
    'vault_router',
    'user_router'
]
