""" Search listings in the database """
import logging
import math
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple

from database import get_pool
from .get_listing import LISTING_DETAIL_COLUMNS, LISTING_DETAIL_JOINS

logger = logging.getLogger(__name__)

SORT_FIELDS = ('created_at', 'price', 'end_time')
SORT_ORDERS = ('asc', 'desc')
DEFAULT_LIMIT = 20
MAX_LIMIT = 100

def build_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    """Build the pagination block returned with every paged listing."""
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'total_pages': total_pages,
        'has_next': page < total_pages,
        'has_prev': page > 1
    }

def clamp_paging(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    """Normalize page and limit to the supported range."""
    page = max(page or 1, 1)
    limit = min(max(limit or DEFAULT_LIMIT, 1), MAX_LIMIT)
    return page, limit

def build_filters(
    game_id: Optional[int] = None,
    seller_address: Optional[str] = None,
    rarity: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    listing_type: Optional[str] = None,
    status: Optional[str] = 'active'
) -> Tuple[str, List[Any]]:
    """Build the WHERE clause and parameters for a listing search."""
    conditions = []
    params: List[Any] = []

    def add(condition: str, value: Any) -> None:
        params.append(value)
        conditions.append(condition.format(f'${len(params)}'))

    if game_id is not None:
        add('gi.game_id = {}', game_id)
    if seller_address:
        add('lower(l.seller_address) = lower({})', seller_address)
    if rarity:
        add('gi.rarity = {}', rarity)
    if category:
        add('gi.category = {}', category)
    if min_price is not None:
        add('l.price >= {}', min_price)
    if max_price is not None:
        add('l.price <= {}', max_price)
    if listing_type:
        add('l.listing_type = {}', listing_type)
    if status:
        add('l.status = {}', status)

    where = ' AND '.join(conditions) if conditions else 'TRUE'
    return where, params

async def search(
        game_id: Optional[int] = None,
        seller_address: Optional[str] = None,
        rarity: Optional[str] = None,
        category: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        listing_type: Optional[str] = None,
        status: Optional[str] = 'active',
        sort: str = 'created_at',
        order: str = 'desc',
        page: int = 1,
        limit: int = DEFAULT_LIMIT,
        pool=None
    ) -> Dict[str, Any]:
        """Search listings with various filters.

        Args:
            game_id: Optional game to filter by
            seller_address: Optional seller address to filter by
            rarity: Optional item rarity
            category: Optional item category
            min_price: Optional minimum listing price
            max_price: Optional maximum listing price
            listing_type: Optional 'fixed' or 'auction'
            status: Listing status to filter by (default: active, None for all)
            sort: One of created_at, price, end_time
            order: asc or desc
            page: Page number, starting at 1
            limit: Page size (1-100)

        Returns:
            Dict containing:
                - listings: Matching listings with item, game and auction fields
                - pagination: Page metadata
        """
        if pool is None:
            pool = await get_pool()

        if sort not in SORT_FIELDS:
            sort = 'created_at'
        if order not in SORT_ORDERS:
            order = 'desc'
        page, limit = clamp_paging(page, limit)

        where, params = build_filters(
            game_id=game_id,
            seller_address=seller_address,
            rarity=rarity,
            category=category,
            min_price=min_price,
            max_price=max_price,
            listing_type=listing_type,
            status=status
        )

        async with pool.acquire() as conn:
            total = await conn.fetchval(
                f'SELECT COUNT(*) {LISTING_DETAIL_JOINS} WHERE {where}',
                *params
            )

            rows = await conn.fetch(
                f'''
                SELECT {LISTING_DETAIL_COLUMNS},
                    a.current_price,
                    a.buyout_price,
                    a.highest_bidder,
                    a.bid_count
                {LISTING_DETAIL_JOINS}
                LEFT JOIN auction_info a ON a.listing_id = l.id
                WHERE {where}
                ORDER BY l.{sort} {order.upper()} NULLS LAST, l.id {order.upper()}
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                *params,
                limit,
                (page - 1) * limit
            )

        logger.debug(f"Listing search matched {total} rows")
        return {
            'listings': [dict(row) for row in rows],
            'pagination': build_pagination(page, limit, total or 0)
        }
