"""Database module for managing connections to PostgreSQL.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
"""

import logging
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs, urlunparse

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'application_name': 'game-items-market',
            'statement_timeout': '60000',  # 1 minute
        }
    }

    if params.get('sslmode', ['disable'])[0] in ('require', 'verify-ca', 'verify-full'):
        kwargs['ssl'] = 'require'

    return kwargs

def _maintenance_url(db_url: str) -> str:
    """Return the same URL pointing at the 'postgres' maintenance database."""
    parsed = urlparse(db_url)
    return urlunparse(parsed._replace(path='/postgres'))

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database if it doesn't exist.

    Args:
        db_url: Database connection URL

    Raises:
        Exception: If database creation fails after retries
    """
    db_name = urlparse(db_url).path.strip('/')
    if not db_name or db_name == 'postgres':
        return

    logger.info(f"Connecting to postgres to create {db_name} if needed")
    conn = await asyncpg.connect(_maintenance_url(db_url), **_get_connection_kwargs(db_url))

    try:
        exists = await conn.fetchval(
            'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
            db_name
        )

        if not exists:
            await conn.execute(f'CREATE DATABASE "{db_name}"')
            logger.info(f"Created database {db_name}")

    except asyncpg.exceptions.InsufficientPrivilegeError:
        logger.warning(f"No privilege to create database {db_name}, assuming it exists")
    finally:
        await conn.close()

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> None:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.
        force_recreate: If True, drop and recreate all tables

    Raises:
        ValueError: If database URL is not provided
        Exception: If initialization fails after retries
    """
    global _pool, _schema_manager

    try:
        # Import here to avoid circular imports
        from config import settings_conf

        url = db_url or settings_conf.get('db_url')
        if not url:
            raise ValueError("Database URL not provided")

        await create_database_if_not_exists(url)

        _pool = await asyncpg.create_pool(
            url,
            min_size=2,
            max_size=20,
            max_queries=10000,   # Reset connection after this many queries
            max_inactive_connection_lifetime=30.0,
            command_timeout=60.0,
            **_get_connection_kwargs(url)
        )

        _schema_manager = SchemaManager(_pool)

        if force_recreate:
            logger.info("Force recreate requested. Resetting schema version...")
            async with _pool.acquire() as conn:
                await conn.execute('DROP TABLE IF EXISTS schema_version')

        await _schema_manager.initialize()
        logger.info("Connected to PostgreSQL database")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = ['init_db', 'get_pool', 'close', 'DatabaseError', 'DatabaseSchemaError']
