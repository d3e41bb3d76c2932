"""Purchase settlement and listing expiry.

A settlement performs four writes in one database transaction: the ledger
entry, the ownership transfer, the listing deactivation and the price
history point. Purchases settle immediately; auctions that end with a
highest bidder are settled by the periodic sweep.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional, Any

from asyncpg.exceptions import PostgresError

from database import get_pool, DatabaseError
from ledger import record_transaction
from listings import ListingNotFoundError, rules
from price_history import record_price

logger = logging.getLogger(__name__)

async def transfer_and_close(
    conn,
    listing: Dict[str, Any],
    buyer_address: str,
    price: Decimal,
    transaction_id: Optional[int]
) -> None:
    """Move the item to the buyer, mark the listing sold and record the price.

    Must run on a connection inside the caller's transaction.
    """
    await conn.execute(
        'UPDATE game_items SET owner_address = $2 WHERE id = $1',
        listing['item_id'],
        buyer_address
    )
    await conn.execute(
        '''
        UPDATE listings
        SET status = 'sold', is_active = false
        WHERE id = $1
        ''',
        listing['id']
    )
    await record_price(
        conn,
        listing['item_id'],
        price,
        listing['currency'],
        transaction_id
    )

class SettlementManager:
    """Manager class for purchases and listing expiry."""

    def __init__(self, pool=None):
        """Initialize the settlement manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def buy_listing(
        self,
        listing_id: int,
        buyer_address: str,
        tx_hash: str,
        gas_fee: Decimal = Decimal('0')
    ) -> Dict[str, Any]:
        """Buy a fixed price listing or an auction at its buyout price.

        Args:
            listing_id: The listing ID
            buyer_address: The buyer's wallet address
            tx_hash: On-chain payment transaction hash
            gas_fee: Gas paid by the buyer

        Returns:
            Dict containing:
                - transaction: The completed ledger row
                - item_id: The purchased item
                - price: The settlement price

        Raises:
            ListingNotFoundError: If the listing doesn't exist
            ListingStateError: If the listing can't be bought by this buyer
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

                rules.check_purchase(listing, buyer_address)

                auction = None
                if listing['listing_type'] == 'auction':
                    auction = await conn.fetchrow(
                        'SELECT * FROM auction_info WHERE listing_id = $1 FOR UPDATE',
                        listing_id
                    )
                price = rules.settlement_price(listing, auction)

                transaction = await record_transaction(
                    conn,
                    listing_id=listing_id,
                    buyer_address=buyer_address,
                    seller_address=listing['seller_address'],
                    item_id=listing['item_id'],
                    tx_hash=tx_hash,
                    price=price,
                    currency=listing['currency'],
                    tx_type='purchase',
                    status='completed',
                    gas_fee=rules.to_decimal(gas_fee)
                )

                await transfer_and_close(conn, listing, buyer_address, price, transaction['id'])

                if auction:
                    # A buyout ends the auction for every open bid
                    await conn.execute(
                        '''
                        UPDATE transactions SET status = 'outbid'
                        WHERE listing_id = $1 AND tx_type = 'bid' AND status = 'pending'
                        ''',
                        listing_id
                    )

        logger.info(
            f"Item purchased: listing {listing_id} by {buyer_address} for "
            f"{price} {listing['currency']}, transaction {tx_hash}"
        )
        return {
            'transaction': transaction,
            'item_id': listing['item_id'],
            'price': price
        }

    async def expire_fixed_listings(self) -> int:
        """Expire active fixed price listings whose end time has passed.

        Returns:
            Number of listings expired
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    '''
                    UPDATE listings
                    SET status = 'expired', is_active = false
                    WHERE
                        is_active
                        AND listing_type = 'fixed'
                        AND end_time IS NOT NULL
                        AND end_time < now()
                    '''
                )

                expired_count = int(result.split()[-1])
                if expired_count > 0:
                    logger.info(f"Expired {expired_count} fixed price listings")
                return expired_count

        except PostgresError as e:
            logger.error(f"Database error expiring listings: {e}")
            raise DatabaseError(f"Failed to expire listings: {e}")

    async def settle_auction(self, listing_id: int) -> Optional[str]:
        """Close an ended auction.

        Auctions with a highest bidder are sold to that bidder at the current
        price; auctions without bids expire.

        Returns:
            'sold', 'expired', or None if the listing was not an ended active auction
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                listing = await conn.fetchrow(
                    'SELECT * FROM listings WHERE id = $1 FOR UPDATE',
                    listing_id
                )
                if (
                    not listing
                    or listing['listing_type'] != 'auction'
                    or not listing['is_active']
                    or not rules.is_expired(listing)
                ):
                    return None

                auction = await conn.fetchrow(
                    'SELECT * FROM auction_info WHERE listing_id = $1 FOR UPDATE',
                    listing_id
                )

                if not auction or not auction['highest_bidder']:
                    await conn.execute(
                        '''
                        UPDATE listings
                        SET status = 'expired', is_active = false
                        WHERE id = $1
                        ''',
                        listing_id
                    )
                    logger.info(f"Auction {listing_id} ended without bids")
                    return 'expired'

                winner = auction['highest_bidder']
                winning_bid = await conn.fetchrow(
                    '''
                    SELECT * FROM transactions
                    WHERE listing_id = $1
                    AND tx_type = 'bid'
                    AND status = 'pending'
                    AND lower(buyer_address) = lower($2)
                    ORDER BY price DESC
                    LIMIT 1
                    FOR UPDATE
                    ''',
                    listing_id,
                    winner
                )

                winning_id = None
                if winning_bid:
                    winning_id = winning_bid['id']
                    await conn.execute(
                        "UPDATE transactions SET status = 'completed' WHERE id = $1",
                        winning_id
                    )
                else:
                    logger.warning(f"No pending bid row for auction {listing_id} winner {winner}")

                await conn.execute(
                    '''
                    UPDATE transactions SET status = 'outbid'
                    WHERE listing_id = $1 AND tx_type = 'bid' AND status = 'pending'
                    ''',
                    listing_id
                )

                await transfer_and_close(
                    conn,
                    listing,
                    winner,
                    rules.to_decimal(auction['current_price']),
                    winning_id
                )

        logger.info(
            f"Auction {listing_id} settled to {winner} for "
            f"{auction['current_price']} {listing['currency']}"
        )
        return 'sold'

    async def settle_ended_auctions(self) -> Dict[str, int]:
        """Settle or expire every active auction past its end time.

        Returns:
            Dict with counts of 'sold' and 'expired' auctions
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            ended = await conn.fetch(
                '''
                SELECT id FROM listings
                WHERE is_active
                AND listing_type = 'auction'
                AND end_time IS NOT NULL
                AND end_time < now()
                ORDER BY end_time ASC
                '''
            )

        counts = {'sold': 0, 'expired': 0}
        for row in ended:
            try:
                outcome = await self.settle_auction(row['id'])
            except PostgresError as e:
                logger.error(f"Failed to settle auction {row['id']}: {e}")
                continue
            if outcome:
                counts[outcome] += 1

        return counts

    async def sweep(self) -> Dict[str, int]:
        """Run one expiry pass over fixed listings and auctions."""
        expired = await self.expire_fixed_listings()
        auctions = await self.settle_ended_auctions()
        return {
            'expired_listings': expired,
            'settled_auctions': auctions['sold'],
            'expired_auctions': auctions['expired']
        }

__all__ = ['SettlementManager', 'transfer_and_close']
