"""Tests for purchases, auction settlement and listing expiry."""

from decimal import Decimal
from unittest.mock import AsyncMock

import asyncpg
import pytest

from database import DatabaseError
from ledger import record_transaction, LedgerError
from listings import ListingNotFoundError, ListingStateError
from settlement import SettlementManager
from conftest import (
    FakePool, FakeConnection, SELLER_ADDRESS, BUYER_ADDRESS, BIDDER_ADDRESS,
    make_listing, make_auction, make_transaction, later, ended
)

def executed(conn):
    """SQL text of every execute() call, in order."""
    return [' '.join(call.args[0].split()) for call in conn.execute.call_args_list]

@pytest.mark.asyncio
async def test_buy_fixed_listing():
    """Test a purchase records the sale, transfers the item and closes the listing."""
    pool = FakePool(fetchrow=[make_listing(), make_transaction()])

    result = await SettlementManager(pool).buy_listing(
        1, BUYER_ADDRESS, '0xabc', Decimal('0.001')
    )

    assert result['item_id'] == 7
    assert result['price'] == Decimal('1.5')
    assert result['transaction']['status'] == 'completed'

    ledger_args = pool.conn.fetchrow.call_args_list[1].args
    assert ledger_args[5:] == (
        '0xabc', 'purchase', Decimal('1.5'), 'ETH', Decimal('0.001'), 'completed'
    )

    statements = executed(pool.conn)
    assert len(statements) == 3
    assert statements[0].startswith('UPDATE game_items SET owner_address')
    assert pool.conn.execute.call_args_list[0].args[1:] == (7, BUYER_ADDRESS)
    assert "status = 'sold'" in statements[1]
    assert statements[2].startswith('INSERT INTO price_history')
    assert pool.conn.execute.call_args_list[2].args[1:] == (7, Decimal('1.5'), 'ETH', 100)

@pytest.mark.asyncio
async def test_buy_own_listing():
    """Test sellers can't buy their own listings."""
    pool = FakePool(fetchrow=[make_listing()])

    with pytest.raises(ListingStateError, match="Cannot buy your own listing"):
        await SettlementManager(pool).buy_listing(1, SELLER_ADDRESS, '0xabc')
    pool.conn.execute.assert_not_called()

@pytest.mark.asyncio
async def test_buy_expired_listing():
    pool = FakePool(fetchrow=[make_listing(end_time=ended())])

    with pytest.raises(ListingStateError, match="Listing has expired"):
        await SettlementManager(pool).buy_listing(1, BUYER_ADDRESS, '0xabc')

@pytest.mark.asyncio
async def test_buy_missing_listing():
    pool = FakePool(fetchrow=[None])

    with pytest.raises(ListingNotFoundError):
        await SettlementManager(pool).buy_listing(1, BUYER_ADDRESS, '0xabc')

@pytest.mark.asyncio
async def test_buy_auction_without_buyout():
    """Test auctions without a buyout price can't be bought outright."""
    listing = make_listing(listing_type='auction', end_time=later())
    pool = FakePool(fetchrow=[listing, make_auction()])

    with pytest.raises(ListingStateError, match="does not have a buyout price"):
        await SettlementManager(pool).buy_listing(1, BUYER_ADDRESS, '0xabc')

@pytest.mark.asyncio
async def test_buy_auction_at_buyout_outbids_pending_bids():
    """Test a buyout settles at the buyout price and closes open bids."""
    listing = make_listing(listing_type='auction', end_time=later())
    auction = make_auction(buyout_price=Decimal('5'), highest_bidder=BIDDER_ADDRESS)
    pool = FakePool(fetchrow=[listing, auction, make_transaction(price=Decimal('5'))])

    result = await SettlementManager(pool).buy_listing(1, BUYER_ADDRESS, '0xabc')

    assert result['price'] == Decimal('5')
    statements = executed(pool.conn)
    assert len(statements) == 4
    assert "SET status = 'outbid'" in statements[3]

@pytest.mark.asyncio
async def test_buyout_after_bidding_passed_it():
    """Test a buyout cannot undercut a leading bid above the buyout price."""
    listing = make_listing(listing_type='auction', end_time=later())
    auction = make_auction(
        buyout_price=Decimal('5'), current_price=Decimal('6'), highest_bidder=BIDDER_ADDRESS
    )
    pool = FakePool(fetchrow=[listing, auction])

    with pytest.raises(ListingStateError, match="passed the buyout price"):
        await SettlementManager(pool).buy_listing(1, BUYER_ADDRESS, '0xabc')
    pool.conn.execute.assert_not_called()

@pytest.mark.asyncio
async def test_duplicate_tx_hash_propagates():
    """Test a reused transaction hash surfaces as a unique violation."""
    pool = FakePool(fetchrow=[
        make_listing(),
        asyncpg.exceptions.UniqueViolationError('duplicate key value')
    ])

    with pytest.raises(asyncpg.exceptions.UniqueViolationError):
        await SettlementManager(pool).buy_listing(1, BUYER_ADDRESS, '0xabc')
    pool.conn.execute.assert_not_called()

@pytest.mark.asyncio
async def test_record_transaction_validates_type():
    with pytest.raises(LedgerError):
        await record_transaction(
            FakeConnection(),
            listing_id=1,
            buyer_address=BUYER_ADDRESS,
            seller_address=SELLER_ADDRESS,
            item_id=7,
            tx_hash='0xabc',
            price=Decimal('1'),
            currency='ETH',
            tx_type='refund',
            status='completed'
        )

@pytest.mark.asyncio
async def test_expire_fixed_listings():
    """Test the expiry count is read from the command status."""
    pool = FakePool(execute='UPDATE 3')

    assert await SettlementManager(pool).expire_fixed_listings() == 3

@pytest.mark.asyncio
async def test_expire_fixed_listings_database_error():
    pool = FakePool(execute=[asyncpg.exceptions.PostgresError('connection lost')])

    with pytest.raises(DatabaseError):
        await SettlementManager(pool).expire_fixed_listings()

@pytest.mark.asyncio
async def test_settle_auction_with_winner():
    """Test an ended auction is sold to its highest bidder."""
    listing = make_listing(listing_type='auction', end_time=ended())
    auction = make_auction(current_price=Decimal('2.5'), highest_bidder=BIDDER_ADDRESS)
    winning_bid = make_transaction(
        id=55, buyer_address=BIDDER_ADDRESS, tx_type='bid', status='pending'
    )
    pool = FakePool(fetchrow=[listing, auction, winning_bid])

    assert await SettlementManager(pool).settle_auction(1) == 'sold'

    statements = executed(pool.conn)
    assert statements[0] == "UPDATE transactions SET status = 'completed' WHERE id = $1"
    assert "SET status = 'outbid'" in statements[1]
    assert pool.conn.execute.call_args_list[2].args[1:] == (7, BIDDER_ADDRESS)
    assert pool.conn.execute.call_args_list[4].args[1:] == (7, Decimal('2.5'), 'ETH', 55)

@pytest.mark.asyncio
async def test_settle_auction_without_bids_expires():
    listing = make_listing(listing_type='auction', end_time=ended())
    pool = FakePool(fetchrow=[listing, make_auction()])

    assert await SettlementManager(pool).settle_auction(1) == 'expired'
    statements = executed(pool.conn)
    assert len(statements) == 1
    assert "status = 'expired'" in statements[0]

@pytest.mark.asyncio
async def test_settle_auction_still_running():
    pool = FakePool(fetchrow=[make_listing(listing_type='auction', end_time=later())])

    assert await SettlementManager(pool).settle_auction(1) is None
    pool.conn.execute.assert_not_called()

@pytest.mark.asyncio
async def test_settle_ended_auctions_counts_outcomes():
    pool = FakePool(fetch=[[{'id': 1}, {'id': 2}, {'id': 3}]])
    manager = SettlementManager(pool)
    manager.settle_auction = AsyncMock(side_effect=['sold', 'expired', None])

    assert await manager.settle_ended_auctions() == {'sold': 1, 'expired': 1}

@pytest.mark.asyncio
async def test_sweep():
    manager = SettlementManager(FakePool())
    manager.expire_fixed_listings = AsyncMock(return_value=2)
    manager.settle_ended_auctions = AsyncMock(return_value={'sold': 1, 'expired': 4})

    assert await manager.sweep() == {
        'expired_listings': 2,
        'settled_auctions': 1,
        'expired_auctions': 4
    }
