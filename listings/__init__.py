"""Listings module for managing marketplace listings.

This module provides functionality for:
- Creating fixed price and auction listings
- Re-pricing and cancelling listings
- Fetching and searching listings
"""

import logging
from typing import Dict, Optional, Any
from decimal import Decimal

import asyncpg

from database import get_pool
from .exceptions import (
    ListingError,
    ListingNotFoundError,
    ItemNotFoundError,
    ListingPermissionError,
    ListingStateError,
    InvalidPriceError
)
from .get_listing import get_listing
from .search import search, build_pagination, clamp_paging
from . import rules

logger = logging.getLogger(__name__)

class ListingManager:
    """Manager class for handling listing operations."""

    def __init__(self, pool=None):
        """Initialize the listing manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_listing(
        self,
        seller_address: str,
        item_id: int,
        price: Decimal,
        currency: str = 'ETH',
        listing_type: str = 'fixed',
        duration_hours: Optional[int] = None,
        starting_price: Optional[Decimal] = None,
        min_increment: Optional[Decimal] = None,
        buyout_price: Optional[Decimal] = None
    ) -> Dict[str, Any]:
        """Create a new listing.

        Args:
            seller_address: The seller's wallet address
            item_id: The item being listed
            price: Listing price (reserve price for auctions)
            currency: One of ETH, USDC, USDT
            listing_type: 'fixed' or 'auction'
            duration_hours: Optional lifetime in hours (1-168)
            starting_price: Auction opening price, defaults to price
            min_increment: Auction bid increment, defaults to 5% of price
            buyout_price: Optional auction buyout price

        Returns:
            Dict containing the created listing, with `auction_info` for auctions

        Raises:
            ItemNotFoundError: If the item doesn't exist
            ListingPermissionError: If the seller doesn't own the item
            ListingStateError: If the item already has an active listing
            InvalidPriceError: If a price or duration is invalid
        """
        await self.ensure_pool()

        if currency not in rules.CURRENCIES:
            raise ListingError(f"Invalid currency: {currency}")
        if listing_type not in rules.LISTING_TYPES:
            raise ListingError(f"Invalid listing type: {listing_type}")

        price = rules.to_decimal(price)
        if price <= 0:
            raise InvalidPriceError("Price must be greater than 0")
        end_time = rules.compute_end_time(duration_hours)
        if listing_type == 'auction':
            opening, increment, buyout = rules.auction_terms(
                price, starting_price, min_increment, buyout_price
            )

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    item = await conn.fetchrow(
                        'SELECT * FROM game_items WHERE id = $1 FOR UPDATE',
                        item_id
                    )
                    if not item:
                        raise ItemNotFoundError(f"Item {item_id} not found")

                    rules.ensure_item_owner(item, seller_address)

                    existing = await conn.fetchval(
                        'SELECT id FROM listings WHERE item_id = $1 AND is_active',
                        item_id
                    )
                    if existing:
                        raise ListingStateError("Item is already listed")

                    listing = await conn.fetchrow(
                        '''
                        INSERT INTO listings (
                            item_id, seller_address, price, currency,
                            listing_type, end_time
                        ) VALUES ($1, $2, $3, $4, $5, $6)
                        RETURNING *
                        ''',
                        item_id,
                        seller_address,
                        price,
                        currency,
                        listing_type,
                        end_time
                    )
                    result = dict(listing)
                    result['auction_info'] = None

                    if listing_type == 'auction':
                        auction = await conn.fetchrow(
                            '''
                            INSERT INTO auction_info (
                                listing_id, starting_price, current_price,
                                min_increment, buyout_price
                            ) VALUES ($1, $2, $2, $3, $4)
                            RETURNING *
                            ''',
                            listing['id'],
                            opening,
                            increment,
                            buyout
                        )
                        result['auction_info'] = dict(auction)

        except asyncpg.exceptions.UniqueViolationError:
            # Lost a race with another listing for the same item
            raise ListingStateError("Item is already listed")

        logger.info(
            f"New {listing_type} listing created: {result['id']} for item {item_id} "
            f"by {seller_address}"
        )
        return result

    async def get_listing(self, listing_id: int) -> Dict[str, Any]:
        """Get a listing by ID.

        Raises:
            ListingNotFoundError: If listing not found
        """
        await self.ensure_pool()
        return await get_listing(listing_id, pool=self.pool)

    async def get_active_listing_by_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        """Get the active listing for an item, if any."""
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            listing = await conn.fetchrow(
                'SELECT * FROM listings WHERE item_id = $1 AND is_active',
                item_id
            )
            return dict(listing) if listing else None

    async def search_listings(self, **filters) -> Dict[str, Any]:
        """Search listings. See `listings.search.search` for the filters."""
        await self.ensure_pool()
        return await search(pool=self.pool, **filters)

    async def update_price(self, listing_id: int, caller: str, price: Decimal) -> Dict[str, Any]:
        """Update the price of a fixed price listing.

        Args:
            listing_id: The listing ID
            caller: Address of the user making the change
            price: The new price

        Returns:
            The updated listing

        Raises:
            ListingNotFoundError: If listing not found
            ListingPermissionError: If caller is not the seller
            ListingStateError: If the listing is inactive or an auction
            InvalidPriceError: If the price is not positive
        """
        await self.ensure_pool()

        price = rules.to_decimal(price)
        if price <= 0:
            raise InvalidPriceError("Price must be greater than 0")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                listing = await conn.fetchrow(
                    'SELECT * FROM listings WHERE id = $1 FOR UPDATE',
                    listing_id
                )
                if not listing:
                    raise ListingNotFoundError(f"Listing {listing_id} not found")

                rules.check_price_update(listing, caller)

                updated = await conn.fetchrow(
                    'UPDATE listings SET price = $2 WHERE id = $1 RETURNING *',
                    listing_id,
                    price
                )

        logger.info(f"Listing {listing_id} re-priced to {price} by {caller}")
        return dict(updated)

    async def cancel_listing(self, listing_id: int, caller: str) -> Dict[str, Any]:
        """Cancel an active listing.

        Args:
            listing_id: The listing ID
            caller: Address of the user cancelling

        Returns:
            The cancelled listing

        Raises:
            ListingNotFoundError: If listing not found
            ListingPermissionError: If caller is not the seller
            ListingStateError: If the listing is already inactive
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                listing = await conn.fetchrow(
                    'SELECT * FROM listings WHERE id = $1 FOR UPDATE',
                    listing_id
                )
                if not listing:
                    raise ListingNotFoundError(f"Listing {listing_id} not found")

                rules.check_cancellation(listing, caller)

                cancelled = await conn.fetchrow(
                    '''
                    UPDATE listings
                    SET status = 'cancelled', is_active = false
                    WHERE id = $1
                    RETURNING *
                    ''',
                    listing_id
                )

        logger.info(f"Listing {listing_id} cancelled by {caller}")
        return dict(cancelled)

# Export public interface
__all__ = [
    'ListingManager',
    'ListingError',
    'ListingNotFoundError',
    'ItemNotFoundError',
    'ListingPermissionError',
    'ListingStateError',
    'InvalidPriceError',
    'get_listing',
    'search',
    'build_pagination',
    'clamp_paging',
    'rules'
]
