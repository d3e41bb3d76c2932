"""System health endpoint."""

import logging
import os
import time

from fastapi import APIRouter
import psutil

from config import settings_conf
from database import get_pool
from ..responses import encode

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])

async def check_database() -> str:
    """Return 'connected' if the database answers a trivial query."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval('SELECT 1')
        return "connected"
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        return "disconnected"

@router.get("/health")
async def get_system_health():
    """Get service health, process and database status."""
    process = psutil.Process(os.getpid())
    database_status = await check_database()

    return encode({
        'status': 'OK' if database_status == 'connected' else 'DEGRADED',
        'uptime': round(time.time() - process.create_time(), 3),
        'environment': settings_conf['environment'],
        'cpu_usage': psutil.cpu_percent(),
        'memory_usage': psutil.virtual_memory().percent,
        'process_memory_mb': round(process.memory_info().rss / (1024 * 1024), 2),
        'database_status': database_status,
        'timestamp': time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime())
    })

# Export the router
__all__ = ['router']
