"""Analytics module for marketplace statistics.

All figures are computed from the listings, transactions and price history
tables at query time; only completed transactions count as trades.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Any

from database import get_pool
from price_history import period_start

logger = logging.getLogger(__name__)

TOP_ITEM_METRICS = ('volume', 'price', 'transactions')

def item_scope(
    params: List[Any],
    game_id: Optional[int] = None,
    rarity: Optional[str] = None,
    category: Optional[str] = None
) -> str:
    """Build conditions on the `gi` (game_items) alias, appending to params."""
    conditions = []
    if game_id is not None:
        params.append(game_id)
        conditions.append(f'gi.game_id = ${len(params)}')
    if rarity:
        params.append(rarity)
        conditions.append(f'gi.rarity = ${len(params)}')
    if category:
        params.append(category)
        conditions.append(f'gi.category = ${len(params)}')
    return ' AND '.join(conditions) if conditions else 'TRUE'

def since_clause(params: List[Any], period: str, column: str) -> str:
    """Build a time-window condition on `column`, appending to params."""
    since = period_start(period)
    if since is None:
        return 'TRUE'
    params.append(since)
    return f'{column} >= ${len(params)}'

def sell_through_rate(sold: int, closed: int) -> Optional[Decimal]:
    """Share of closed listings that ended in a sale."""
    if not closed:
        return None
    return (Decimal(sold) / Decimal(closed)).quantize(Decimal('0.0001'))

class AnalyticsManager:
    """Read-only statistics over the marketplace."""

    def __init__(self, pool=None):
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_overview(self, period: str = '30d') -> Dict[str, Any]:
        """Platform totals plus activity within the period."""
        await self.ensure_pool()
        params: List[Any] = []
        tx_window = since_clause(params, period, 't.created_at')

        async with self.pool.acquire() as conn:
            totals = await conn.fetchrow(
                '''
                SELECT
                    (SELECT COUNT(*) FROM users) AS total_users,
                    (SELECT COUNT(*) FROM games WHERE is_active) AS total_games,
                    (SELECT COUNT(*) FROM game_items WHERE is_active) AS total_items,
                    (SELECT COUNT(*) FROM listings WHERE is_active) AS active_listings
                '''
            )
            activity = await conn.fetchrow(
                f'''
                SELECT
                    COUNT(*) AS total_transactions,
                    COALESCE(SUM(t.price), 0) AS total_volume,
                    AVG(t.price) AS avg_price,
                    COUNT(DISTINCT lower(t.buyer_address)) AS unique_buyers,
                    COUNT(DISTINCT lower(t.seller_address)) AS unique_sellers
                FROM transactions t
                WHERE t.status = 'completed' AND {tx_window}
                ''',
                *params
            )

            user_params: List[Any] = []
            new_users = await conn.fetchval(
                f'SELECT COUNT(*) FROM users WHERE {since_clause(user_params, period, "created_at")}',
                *user_params
            )

        return {**dict(totals), **dict(activity), 'new_users': new_users}

    async def get_market_stats(self, game_id: Optional[int] = None, period: str = '24h') -> Dict[str, Any]:
        """Listing figures for listings created in the period, plus sales settled in it.

        Sales come from completed transactions, so an auction counts at the
        price it actually sold for rather than its opening price.
        """
        await self.ensure_pool()
        params: List[Any] = []
        scope = item_scope(params, game_id=game_id)
        window = since_clause(params, period, 'l.created_at')

        sale_params: List[Any] = []
        sale_scope = item_scope(sale_params, game_id=game_id)
        sale_window = since_clause(sale_params, period, 't.created_at')

        async with self.pool.acquire() as conn:
            listing_row = await conn.fetchrow(
                f'''
                SELECT
                    COUNT(l.id) AS total_listings,
                    COUNT(l.id) FILTER (WHERE l.is_active) AS active_listings,
                    COUNT(DISTINCT lower(l.seller_address)) AS unique_sellers,
                    AVG(l.price) AS avg_price,
                    MIN(l.price) FILTER (WHERE l.is_active AND l.listing_type = 'fixed') AS floor_price
                FROM listings l
                JOIN game_items gi ON gi.id = l.item_id
                WHERE {scope} AND {window}
                ''',
                *params
            )
            sales_row = await conn.fetchrow(
                f'''
                SELECT
                    COUNT(t.id) AS total_sales,
                    COALESCE(SUM(t.price), 0) AS total_volume
                FROM transactions t
                JOIN game_items gi ON gi.id = t.item_id
                WHERE t.status = 'completed' AND {sale_scope} AND {sale_window}
                ''',
                *sale_params
            )

        return {'game_id': game_id, 'period': period, **dict(listing_row), **dict(sales_row)}

    async def get_trending(self, period: str = '24h', limit: int = 10) -> Dict[str, Any]:
        """Most traded items and highest-volume games in the period."""
        await self.ensure_pool()
        params: List[Any] = []
        window = since_clause(params, period, 't.created_at')
        params.append(limit)
        limit_param = f'${len(params)}'

        async with self.pool.acquire() as conn:
            items = await conn.fetch(
                f'''
                SELECT gi.id, gi.name, gi.rarity, gi.image_url, g.name AS game_name,
                       COUNT(t.id) AS trade_count, AVG(t.price) AS avg_price
                FROM transactions t
                JOIN game_items gi ON gi.id = t.item_id
                JOIN games g ON g.id = gi.game_id
                WHERE t.status = 'completed' AND {window}
                GROUP BY gi.id, g.name
                ORDER BY trade_count DESC, avg_price DESC
                LIMIT {limit_param}
                ''',
                *params
            )
            games = await conn.fetch(
                f'''
                SELECT g.id, g.name, g.logo_url,
                       COUNT(t.id) AS trade_count, COALESCE(SUM(t.price), 0) AS volume
                FROM transactions t
                JOIN game_items gi ON gi.id = t.item_id
                JOIN games g ON g.id = gi.game_id
                WHERE t.status = 'completed' AND {window}
                GROUP BY g.id
                ORDER BY volume DESC, trade_count DESC
                LIMIT {limit_param}
                ''',
                *params
            )

        return {
            'period': period,
            'items': [dict(row) for row in items],
            'games': [dict(row) for row in games]
        }

    async def get_market_trends(
        self,
        period: str = '7d',
        game_id: Optional[int] = None,
        rarity: Optional[str] = None,
        category: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Daily trade count, volume and average price."""
        await self.ensure_pool()
        params: List[Any] = []
        scope = item_scope(params, game_id, rarity, category)
        window = since_clause(params, period, 't.created_at')

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT date_trunc('day', t.created_at) AS day,
                       COUNT(*) AS transactions,
                       COALESCE(SUM(t.price), 0) AS volume,
                       AVG(t.price) AS avg_price,
                       COUNT(DISTINCT lower(t.buyer_address)) AS unique_buyers
                FROM transactions t
                JOIN game_items gi ON gi.id = t.item_id
                WHERE t.status = 'completed' AND {scope} AND {window}
                GROUP BY day
                ORDER BY day ASC
                ''',
                *params
            )
            return [dict(row) for row in rows]

    async def get_top_items(
        self,
        metric: str = 'volume',
        period: str = '7d',
        game_id: Optional[int] = None,
        rarity: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Items ranked by trade volume, highest price or number of trades.

        Raises:
            ValueError: If the metric is unknown
        """
        if metric not in TOP_ITEM_METRICS:
            raise ValueError(f"Invalid metric: {metric}")

        await self.ensure_pool()
        params: List[Any] = []
        scope = item_scope(params, game_id, rarity, category)
        window = since_clause(params, period, 't.created_at')
        params.append(limit)

        order_by = {
            'volume': 'volume DESC',
            'price': 'max_price DESC',
            'transactions': 'transactions DESC'
        }[metric]

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT gi.id, gi.name, gi.rarity, gi.category, gi.image_url,
                       g.name AS game_name,
                       COUNT(t.id) AS transactions,
                       COALESCE(SUM(t.price), 0) AS volume,
                       MAX(t.price) AS max_price,
                       AVG(t.price) AS avg_price
                FROM transactions t
                JOIN game_items gi ON gi.id = t.item_id
                JOIN games g ON g.id = gi.game_id
                WHERE t.status = 'completed' AND {scope} AND {window}
                GROUP BY gi.id, g.name
                ORDER BY {order_by}, gi.id ASC
                LIMIT ${len(params)}
                ''',
                *params
            )
            return [dict(row) for row in rows]

    async def get_user_stats(self, address: str, period: str = '30d') -> Dict[str, Any]:
        """Buying, selling and bidding figures for one address."""
        await self.ensure_pool()
        params: List[Any] = [address]
        window = since_clause(params, period, 'created_at')

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                SELECT
                    COUNT(*) FILTER (WHERE status = 'completed'
                        AND lower(buyer_address) = lower($1)) AS purchases,
                    COUNT(*) FILTER (WHERE status = 'completed'
                        AND lower(seller_address) = lower($1)) AS sales,
                    COALESCE(SUM(price) FILTER (WHERE status = 'completed'
                        AND lower(buyer_address) = lower($1)), 0) AS volume_bought,
                    COALESCE(SUM(price) FILTER (WHERE status = 'completed'
                        AND lower(seller_address) = lower($1)), 0) AS volume_sold,
                    COUNT(*) FILTER (WHERE tx_type = 'bid'
                        AND lower(buyer_address) = lower($1)) AS bids_placed,
                    AVG(price) FILTER (WHERE status = 'completed') AS avg_trade_price
                FROM transactions
                WHERE (lower(buyer_address) = lower($1) OR lower(seller_address) = lower($1))
                AND {window}
                ''',
                *params
            )
            return dict(row)

    async def get_rarity_distribution(
        self,
        game_id: Optional[int] = None,
        category: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Item counts, share and listed prices per rarity."""
        await self.ensure_pool()
        params: List[Any] = []
        scope = item_scope(params, game_id=game_id, category=category)

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT gi.rarity,
                       COUNT(*) AS item_count,
                       ROUND(100.0 * COUNT(*) / SUM(COUNT(*)) OVER (), 2) AS percentage,
                       COUNT(l.id) AS listed_count,
                       AVG(l.price) AS avg_listed_price,
                       MIN(l.price) AS floor_price
                FROM game_items gi
                LEFT JOIN listings l ON l.item_id = gi.id AND l.is_active
                WHERE gi.is_active AND {scope}
                GROUP BY gi.rarity
                ORDER BY item_count DESC
                ''',
                *params
            )
            return [dict(row) for row in rows]

    async def get_market_health(self, game_id: Optional[int] = None) -> Dict[str, Any]:
        """Liquidity indicators over the last day and week."""
        await self.ensure_pool()
        params: List[Any] = []
        scope = item_scope(params, game_id=game_id)

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                SELECT
                    COUNT(*) FILTER (WHERE l.is_active) AS active_listings,
                    COUNT(*) FILTER (WHERE l.created_at >= now() - interval '24 hours') AS new_listings_24h,
                    COUNT(*) FILTER (WHERE l.status = 'sold'
                        AND l.updated_at >= now() - interval '24 hours') AS sales_24h,
                    COUNT(*) FILTER (WHERE l.status = 'sold'
                        AND l.updated_at >= now() - interval '7 days') AS sales_7d,
                    COUNT(*) FILTER (WHERE NOT l.is_active
                        AND l.updated_at >= now() - interval '7 days') AS closed_7d,
                    EXTRACT(EPOCH FROM AVG(l.updated_at - l.created_at)
                        FILTER (WHERE l.status = 'sold')) / 3600 AS avg_hours_to_sale
                FROM listings l
                JOIN game_items gi ON gi.id = l.item_id
                WHERE {scope}
                ''',
                *params
            )
            traders = await conn.fetchrow(
                f'''
                SELECT
                    COUNT(DISTINCT lower(t.buyer_address)) AS unique_buyers_7d,
                    COUNT(DISTINCT lower(t.seller_address)) AS unique_sellers_7d
                FROM transactions t
                JOIN game_items gi ON gi.id = t.item_id
                WHERE t.status = 'completed'
                AND t.created_at >= now() - interval '7 days'
                AND {scope}
                ''',
                *params
            )

        health = {**dict(row), **dict(traders)}
        health['sell_through_rate_7d'] = sell_through_rate(health['sales_7d'], health['closed_7d'])
        return health

__all__ = ['AnalyticsManager', 'TOP_ITEM_METRICS', 'sell_through_rate']
