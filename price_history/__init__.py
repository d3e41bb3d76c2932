"""Price history of settled trades.

One row is appended per completed sale. Reads either return the raw points
or aggregate them into fixed-width time buckets for charting.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Any

from database import get_pool

logger = logging.getLogger(__name__)

PERIODS = {
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
    '90d': timedelta(days=90),
    'all': None
}

INTERVALS = {
    '1h': timedelta(hours=1),
    '4h': timedelta(hours=4),
    '1d': timedelta(days=1),
    '7d': timedelta(days=7)
}

def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of a reporting period, or None for 'all'.

    Raises:
        ValueError: If the period is unknown
    """
    if period not in PERIODS:
        raise ValueError(f"Invalid period: {period}")
    span = PERIODS[period]
    if span is None:
        return None
    return (now or datetime.now(timezone.utc)) - span

async def record_price(
    conn,
    item_id: int,
    price: Decimal,
    currency: str,
    transaction_id: Optional[int] = None
) -> None:
    """Append a price point on an open connection."""
    await conn.execute(
        '''
        INSERT INTO price_history (item_id, price, currency, transaction_id)
        VALUES ($1, $2, $3, $4)
        ''',
        item_id,
        price,
        currency,
        transaction_id
    )

class PriceHistory:
    """Queries over recorded trade prices."""

    def __init__(self, pool=None):
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_item_history(self, item_id: int, period: str = '30d', limit: int = 100) -> List[Dict[str, Any]]:
        """Get raw price points for an item, newest first.

        Args:
            item_id: The item ID
            period: One of 24h, 7d, 30d, 90d, all
            limit: Maximum number of points

        Returns:
            List of {price, currency, transaction_id, recorded_at}
        """
        await self.ensure_pool()
        since = period_start(period)

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT price, currency, transaction_id, recorded_at
                FROM price_history
                WHERE item_id = $1
                AND ($2::timestamptz IS NULL OR recorded_at >= $2)
                ORDER BY recorded_at DESC
                LIMIT $3
                ''',
                item_id,
                since,
                limit
            )
            return [dict(row) for row in rows]

    async def get_bucketed_history(
        self,
        item_id: int,
        period: str = '30d',
        interval: str = '1d'
    ) -> List[Dict[str, Any]]:
        """Aggregate an item's trades into time buckets.

        Args:
            item_id: The item ID
            period: One of 24h, 7d, 30d, 90d, all
            interval: Bucket width, one of 1h, 4h, 1d, 7d

        Returns:
            List of buckets, oldest first, each with open/close/min/max/avg
            price and the number of trades

        Raises:
            ValueError: If period or interval is unknown
        """
        if interval not in INTERVALS:
            raise ValueError(f"Invalid interval: {interval}")
        since = period_start(period)

        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT
                    date_bin($2::interval, recorded_at, TIMESTAMPTZ '2000-01-01') AS bucket,
                    (array_agg(price ORDER BY recorded_at ASC))[1] AS open_price,
                    (array_agg(price ORDER BY recorded_at DESC))[1] AS close_price,
                    MIN(price) AS min_price,
                    MAX(price) AS max_price,
                    AVG(price) AS avg_price,
                    COUNT(*) AS trades
                FROM price_history
                WHERE item_id = $1
                AND ($3::timestamptz IS NULL OR recorded_at >= $3)
                GROUP BY bucket
                ORDER BY bucket ASC
                ''',
                item_id,
                INTERVALS[interval],
                since
            )
            return [dict(row) for row in rows]

__all__ = [
    'PriceHistory',
    'record_price',
    'period_start',
    'PERIODS',
    'INTERVALS'
]
