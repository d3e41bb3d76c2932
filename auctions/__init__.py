"""Auction bidding.

Bids lock the listing and its auction row for the duration of one database
transaction, so concurrent bidders are applied one at a time and each sees
the minimum raised by the previous winner.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Any

from database import get_pool
from ledger import record_transaction, TransactionLedger
from listings import ListingNotFoundError, ListingStateError, rules

logger = logging.getLogger(__name__)

class AuctionManager:
    """Manager class for auction bids."""

    def __init__(self, pool=None):
        """Initialize the auction manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def place_bid(
        self,
        listing_id: int,
        bidder_address: str,
        bid_amount: Decimal,
        tx_hash: str
    ) -> Dict[str, Any]:
        """Place a bid on an auction listing.

        Args:
            listing_id: The auction listing ID
            bidder_address: The bidder's wallet address
            bid_amount: Amount bid, in the listing currency
            tx_hash: On-chain transaction hash backing the bid

        Returns:
            Dict containing:
                - transaction: The pending bid ledger row
                - current_price: The new auction price
                - next_min_bid: Smallest acceptable next bid

        Raises:
            ListingNotFoundError: If the listing doesn't exist
            ListingStateError: If the listing is not an open auction or is the bidder's own
            InvalidPriceError: If the bid is below the minimum
        """
        await self.ensure_pool()
        bid_amount = rules.to_decimal(bid_amount)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                listing = await conn.fetchrow(
                    'SELECT * FROM listings WHERE id = $1 FOR UPDATE',
                    listing_id
                )
                if not listing:
                    raise ListingNotFoundError(f"Listing {listing_id} not found")

                rules.check_bid_target(listing, bidder_address)

                auction = await conn.fetchrow(
                    'SELECT * FROM auction_info WHERE listing_id = $1 FOR UPDATE',
                    listing_id
                )
                if not auction:
                    raise ListingStateError(f"Auction data missing for listing {listing_id}")

                rules.check_bid_amount(auction, bid_amount, listing['currency'])

                updated = await conn.fetchrow(
                    '''
                    UPDATE auction_info
                    SET current_price = $2,
                        highest_bidder = $3,
                        bid_count = bid_count + 1
                    WHERE listing_id = $1
                    RETURNING *
                    ''',
                    listing_id,
                    bid_amount,
                    bidder_address
                )

                transaction = await record_transaction(
                    conn,
                    listing_id=listing_id,
                    buyer_address=bidder_address,
                    seller_address=listing['seller_address'],
                    item_id=listing['item_id'],
                    tx_hash=tx_hash,
                    price=bid_amount,
                    currency=listing['currency'],
                    tx_type='bid',
                    status='pending'
                )

        logger.info(
            f"Bid placed: {bid_amount} {listing['currency']} on listing {listing_id} "
            f"by {bidder_address}"
        )
        return {
            'transaction': transaction,
            'current_price': updated['current_price'],
            'next_min_bid': rules.minimum_bid(updated)
        }

    async def get_bids(self, listing_id: int) -> List[Dict[str, Any]]:
        """Get all bids on an auction listing, highest first.

        Raises:
            ListingNotFoundError: If the listing doesn't exist
            ListingStateError: If the listing is not an auction
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            listing_type = await conn.fetchval(
                'SELECT listing_type FROM listings WHERE id = $1',
                listing_id
            )
        if listing_type is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        if listing_type != 'auction':
            raise ListingStateError("This is not an auction")

        return await TransactionLedger(self.pool).get_listing_bids(listing_id)

__all__ = ['AuctionManager']
