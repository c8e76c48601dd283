# Keyscan API Server
from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from config import get_settings, Database
from routes import scan_router, vault_router, user_router
from services.async_scan_service import AsyncScanService
from services.job_queue import JobQueue
from services.result_store import MongoResultStore
from services.vault_service import VaultService
from utils.encryption import EncryptionService
from utils.errors import ScanError

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await Database.connect_db()
    db = Database.get_db()

    store = MongoResultStore(db)
    queue = JobQueue(store=store, settings=settings)
    app.state.result_store = store
    app.state.job_queue = queue
    app.state.scan_service = AsyncScanService(queue, store, settings=settings)

    if settings.vault_encryption_key:
        app.state.vault_service = VaultService(db, EncryptionService(settings.vault_encryption_key))
    else:
        app.state.vault_service = None
        logger.warning('VAULT_ENCRYPTION_KEY not set, vault endpoints disabled')

    logger.info('Application started')
    yield
    # Shutdown
    await queue.shutdown()
    await Database.close_db()
    logger.info('Application shutdown')

app = FastAPI(
    title='Keyscan API',
    description='Repository secret scanning with an encrypted key vault',
    version='1.0.0',
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(','),
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

@app.exception_handler(ScanError)
async def scan_error_handler(request: Request, exc: ScanError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.code}): {exc.message}")
    body = {'success': False, **exc.to_dict(), 'timestamp': datetime.now(timezone.utc).isoformat()}
    return JSONResponse(status_code=exc.status_code, content=body)

# API Router
api_router = APIRouter(prefix='/api')
api_router.include_router(scan_router)
api_router.include_router(vault_router)
api_router.include_router(user_router)
app.include_router(api_router)

@app.get('/')
async def root():
    return {'message': 'Keyscan API v1.0.0', 'status': 'operational'}

@app.get('/health')
async def health():
    return {'status': 'healthy'}

@app.get('/api/health')
async def api_health():
    return {
        'status': 'healthy',
        'service': 'keyscan-api',
        'version': '1.0.0'
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", reload=True)
