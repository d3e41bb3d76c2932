from typing import Dict, Any

from database import get_pool
from .exceptions import ListingNotFoundError

LISTING_DETAIL_COLUMNS = '''
    l.*,
    gi.name AS item_name,
    gi.description AS item_description,
    gi.image_url AS item_image,
    gi.token_id,
    gi.rarity,
    gi.category,
    gi.game_id,
    g.name AS game_name,
    g.logo_url AS game_logo
'''

LISTING_DETAIL_JOINS = '''
    FROM listings l
    JOIN game_items gi ON l.item_id = gi.id
    JOIN games g ON gi.game_id = g.id
'''

async def get_listing(listing_id: int, pool=None) -> Dict[str, Any]:
    """Get a listing by ID with its item, game and auction data.

    Args:
        listing_id: The listing ID

    Returns:
        Dict containing listing details; `auction_info` is set for auctions
        and None for fixed price listings

    Raises:
        ListingNotFoundError: If listing doesn't exist
    """
    if pool is None:
        pool = await get_pool()

    async with pool.acquire() as conn:
        listing = await conn.fetchrow(
            f'SELECT {LISTING_DETAIL_COLUMNS} {LISTING_DETAIL_JOINS} WHERE l.id = $1',
            listing_id
        )

        if not listing:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        result = dict(listing)
        result['auction_info'] = None

        if listing['listing_type'] == 'auction':
            auction = await conn.fetchrow(
                'SELECT * FROM auction_info WHERE listing_id = $1',
                listing_id
            )
            result['auction_info'] = dict(auction) if auction else None

        return result
