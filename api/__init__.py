"""REST API module for the game item marketplace.

This module provides HTTP endpoints for:
- Wallet authentication and session management
- User profiles and favorites
- Games and game items
- Marketplace listings, purchases and auction bids
- Market analytics
- System health monitoring
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings_conf
from settlement import SettlementManager
from .responses import error

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
EXPIRY_SWEEP_SECONDS = settings_conf['expiry_sweep_seconds']

# Background task for listing expiry and auction settlement
async def expire_listings_task():
    """Background task to expire listings and settle ended auctions."""
    manager = SettlementManager()
    while True:
        try:
            await asyncio.sleep(EXPIRY_SWEEP_SECONDS)
            result = await manager.sweep()
            if any(result.values()):
                logger.info(
                    f"Expiry sweep: {result['expired_listings']} listings expired, "
                    f"{result['settled_auctions']} auctions settled, "
                    f"{result['expired_auctions']} auctions expired"
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in listing expiry task: {e}")

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    # Database setup is handled in __main__.py

    expiry_task = asyncio.create_task(expire_listings_task())
    logger.info(f"Started listing expiry task (every {EXPIRY_SWEEP_SECONDS} seconds)")

    yield

    logger.info("Shutting down API...")
    expiry_task.cancel()
    try:
        await expiry_task
    except asyncio.CancelledError:
        pass

# Create FastAPI app
app = FastAPI(
    title="Game Items Market API",
    description="REST API for trading blockchain game items",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings_conf['cors_origins'],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def _client(request: Request) -> str:
    return request.client.host if request.client else 'unknown'

# Error handlers render every failure in the response envelope
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors."""
    message = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        message = "Endpoint not found"
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} from {_client(request)}: {exc.status_code} {message}")
    return error(exc.status_code, message, headers=getattr(exc, 'headers', None))

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Render request validation failures as 400 errors."""
    logger.warning(f"{request.method} {request.url.path} from {_client(request)}: validation failed")
    return error(status.HTTP_400_BAD_REQUEST, "Validation failed", details=exc.errors())

@app.exception_handler(asyncpg.exceptions.UniqueViolationError)
async def unique_violation_handler(request: Request, exc: asyncpg.exceptions.UniqueViolationError):
    """Render unique constraint violations as conflicts."""
    logger.warning(f"{request.method} {request.url.path} from {_client(request)}: {exc}")
    return error(status.HTTP_409_CONFLICT, "Resource already exists")

@app.exception_handler(asyncpg.exceptions.ForeignKeyViolationError)
async def foreign_key_violation_handler(request: Request, exc: asyncpg.exceptions.ForeignKeyViolationError):
    """Render foreign key violations as bad requests."""
    logger.warning(f"{request.method} {request.url.path} from {_client(request)}: {exc}")
    return error(status.HTTP_400_BAD_REQUEST, "Referenced resource does not exist")

@app.exception_handler(asyncpg.exceptions.UndefinedTableError)
async def undefined_table_handler(request: Request, exc: asyncpg.exceptions.UndefinedTableError):
    """Render missing tables as a schema error."""
    logger.error(f"{request.method} {request.url.path} from {_client(request)}: {exc}")
    return error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database schema error")

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Render anything else as an internal error, hiding details in production."""
    logger.exception(f"{request.method} {request.url.path} from {_client(request)}: {exc}")
    message = (
        "Internal server error" if settings_conf['environment'] == 'production'
        else str(exc) or exc.__class__.__name__
    )
    return error(status.HTTP_500_INTERNAL_SERVER_ERROR, message)

@app.get("/")
async def root():
    """Root endpoint returning service information."""
    return {
        "name": "Game Items Market API",
        "version": "1.0.0",
        "status": "running"
    }

# Import and include all routers
from .auth import router as auth_router
from .users import router as users_router
from .items import router as items_router
from .market import router as market_router
from .games import router as games_router
from .analytics import router as analytics_router
from .system import router as system_router

# Include all routers
app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(users_router, prefix=API_PREFIX)
app.include_router(items_router, prefix=API_PREFIX)
app.include_router(market_router, prefix=API_PREFIX)
app.include_router(games_router, prefix=API_PREFIX)
app.include_router(analytics_router, prefix=API_PREFIX)
app.include_router(system_router)

# Uploaded avatars
app.mount(
    "/uploads",
    StaticFiles(directory=settings_conf['upload_dir'], check_dir=False),
    name="uploads"
)
