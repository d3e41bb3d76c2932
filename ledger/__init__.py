"""Transaction ledger for purchases and bids.

Rows are appended by settlement and bidding inside their own database
transactions; afterwards only the status column changes.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Any

from database import get_pool
from listings.search import build_pagination, clamp_paging

logger = logging.getLogger(__name__)

TX_TYPES = ('purchase', 'bid')
TX_STATUSES = ('pending', 'completed', 'outbid', 'failed')

class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass

class TransactionNotFoundError(LedgerError):
    """Raised when a transaction is not found."""
    pass

async def record_transaction(
    conn,
    *,
    listing_id: Optional[int],
    buyer_address: str,
    seller_address: str,
    item_id: int,
    tx_hash: str,
    price: Decimal,
    currency: str,
    tx_type: str,
    status: str,
    gas_fee: Decimal = Decimal('0')
) -> Dict[str, Any]:
    """Append a ledger row on an open connection.

    Callers pass the connection of their own transaction so the ledger write
    commits or rolls back together with the rest of the settlement.
    """
    if tx_type not in TX_TYPES:
        raise LedgerError(f"Invalid transaction type: {tx_type}")
    if status not in TX_STATUSES:
        raise LedgerError(f"Invalid transaction status: {status}")

    row = await conn.fetchrow(
        '''
        INSERT INTO transactions (
            listing_id, buyer_address, seller_address, item_id,
            tx_hash, tx_type, price, currency, gas_fee, status
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
        RETURNING *
        ''',
        listing_id,
        buyer_address,
        seller_address,
        item_id,
        tx_hash,
        tx_type,
        price,
        currency,
        gas_fee,
        status
    )
    return dict(row)

class TransactionLedger:
    """Read and status-update access to the transaction ledger."""

    def __init__(self, pool=None):
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        """Get a transaction by hash.

        Raises:
            TransactionNotFoundError: If no transaction has this hash
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT * FROM transactions WHERE tx_hash = $1',
                tx_hash
            )
            if not row:
                raise TransactionNotFoundError(f"Transaction {tx_hash} not found")
            return dict(row)

    async def get_address_transactions(
        self,
        address: str,
        role: str = 'all',
        tx_type: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """Get transactions where an address is buyer and/or seller.

        Args:
            address: Wallet address
            role: 'buyer', 'seller' or 'all'
            tx_type: Optional 'purchase' or 'bid'
            page: Page number
            limit: Page size

        Returns:
            Dict containing transactions (with item names) and pagination
        """
        await self.ensure_pool()
        page, limit = clamp_paging(page, limit)

        if role == 'buyer':
            condition = 'lower(t.buyer_address) = lower($1)'
        elif role == 'seller':
            condition = 'lower(t.seller_address) = lower($1)'
        else:
            condition = '(lower(t.buyer_address) = lower($1) OR lower(t.seller_address) = lower($1))'

        params: List[Any] = [address]
        if tx_type:
            params.append(tx_type)
            condition += f' AND t.tx_type = ${len(params)}'

        async with self.pool.acquire() as conn:
            total = await conn.fetchval(
                f'SELECT COUNT(*) FROM transactions t WHERE {condition}',
                *params
            )
            rows = await conn.fetch(
                f'''
                SELECT t.*, gi.name AS item_name, gi.image_url AS item_image
                FROM transactions t
                JOIN game_items gi ON t.item_id = gi.id
                WHERE {condition}
                ORDER BY t.created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                *params,
                limit,
                (page - 1) * limit
            )

        return {
            'transactions': [dict(row) for row in rows],
            'pagination': build_pagination(page, limit, total or 0)
        }

    async def get_listing_bids(self, listing_id: int) -> List[Dict[str, Any]]:
        """Get bids on a listing, highest first."""
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT id, buyer_address AS bidder_address, price AS bid_amount,
                       currency, tx_hash, status, created_at
                FROM transactions
                WHERE listing_id = $1 AND tx_type = 'bid'
                ORDER BY price DESC, created_at ASC
                ''',
                listing_id
            )
            return [dict(row) for row in rows]

    async def get_item_transactions(self, item_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        """Get completed purchases of an item, newest first."""
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM transactions
                WHERE item_id = $1 AND status = 'completed'
                ORDER BY created_at DESC
                LIMIT $2
                ''',
                item_id,
                limit
            )
            return [dict(row) for row in rows]

    async def update_status(self, tx_hash: str, status: str) -> Dict[str, Any]:
        """Update a transaction's status.

        Raises:
            LedgerError: If the status is invalid
            TransactionNotFoundError: If no transaction has this hash
        """
        if status not in TX_STATUSES:
            raise LedgerError(f"Invalid transaction status: {status}")

        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE transactions SET status = $2
                WHERE tx_hash = $1
                RETURNING *
                ''',
                tx_hash,
                status
            )
            if not row:
                raise TransactionNotFoundError(f"Transaction {tx_hash} not found")

        logger.info(f"Transaction {tx_hash} marked {status}")
        return dict(row)

__all__ = [
    'TransactionLedger',
    'record_transaction',
    'LedgerError',
    'TransactionNotFoundError',
    'TX_TYPES',
    'TX_STATUSES'
]
