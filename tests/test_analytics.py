"""Tests for analytics and price history queries."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from analytics import AnalyticsManager, sell_through_rate, item_scope
from price_history import PriceHistory, period_start, record_price
from conftest import FakePool, FakeConnection

LISTING_FIGURES = {
    'total_listings': 4,
    'active_listings': 1,
    'unique_sellers': 2,
    'avg_price': Decimal('1.25'),
    'floor_price': Decimal('1')
}

def test_period_start():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)

    assert period_start('7d', now) == now - timedelta(days=7)
    assert period_start('all', now) is None
    with pytest.raises(ValueError, match="Invalid period"):
        period_start('1y', now)

def test_sell_through_rate():
    assert sell_through_rate(3, 4) == Decimal('0.7500')
    assert sell_through_rate(0, 0) is None

def test_item_scope_numbers_parameters():
    params = ['0xabc']

    scope = item_scope(params, game_id=2, category='weapon')

    assert scope == 'gi.game_id = $2 AND gi.category = $3'
    assert params == ['0xabc', 2, 'weapon']
    assert item_scope([]) == 'TRUE'

@pytest.mark.asyncio
async def test_record_price():
    conn = FakeConnection()

    await record_price(conn, 7, Decimal('2.5'), 'ETH', transaction_id=100)

    _, *values = conn.execute.call_args.args
    assert values == [7, Decimal('2.5'), 'ETH', 100]

@pytest.mark.asyncio
async def test_bucketed_history_rejects_interval():
    """Test unknown bucket widths are refused before querying."""
    pool = FakePool()

    with pytest.raises(ValueError, match="Invalid interval"):
        await PriceHistory(pool).get_bucketed_history(7, interval='2h')

    pool.conn.fetch.assert_not_awaited()

@pytest.mark.asyncio
async def test_bucketed_history_rejects_period():
    pool = FakePool()

    with pytest.raises(ValueError, match="Invalid period"):
        await PriceHistory(pool).get_bucketed_history(7, period='1y')

    pool.conn.fetch.assert_not_awaited()

@pytest.mark.asyncio
async def test_bucketed_history():
    pool = FakePool(fetch=[[{'bucket': None, 'open_price': Decimal('1'), 'trades': 2}]])

    buckets = await PriceHistory(pool).get_bucketed_history(7, period='all', interval='4h')

    assert buckets[0]['trades'] == 2
    _, item_id, interval, since = pool.conn.fetch.call_args.args
    assert (item_id, interval, since) == (7, timedelta(hours=4), None)

@pytest.mark.asyncio
async def test_market_stats_volume_uses_settled_prices():
    """Test sales volume comes from completed transactions, not listing prices.

    An auction opened at 1 and bought out at 5 must count as 5.
    """
    pool = FakePool(
        fetchrow=[LISTING_FIGURES, {'total_sales': 1, 'total_volume': Decimal('5')}]
    )

    stats = await AnalyticsManager(pool).get_market_stats(game_id=2, period='7d')

    assert stats['total_volume'] == Decimal('5')
    assert stats['total_sales'] == 1
    assert stats['floor_price'] == Decimal('1')
    assert stats['game_id'] == 2

    listing_sql = pool.conn.fetchrow.call_args_list[0].args[0]
    assert "status = 'sold'" not in listing_sql
    sales_sql, game_id, since = pool.conn.fetchrow.call_args_list[1].args
    assert 'FROM transactions t' in sales_sql
    assert "t.status = 'completed'" in sales_sql
    assert 't.created_at >= $2' in sales_sql
    assert game_id == 2
    assert isinstance(since, datetime)

@pytest.mark.asyncio
async def test_market_stats_all_time():
    pool = FakePool(fetchrow=[LISTING_FIGURES, {'total_sales': 0, 'total_volume': Decimal('0')}])

    await AnalyticsManager(pool).get_market_stats(period='all')

    sales_sql, *params = pool.conn.fetchrow.call_args_list[1].args
    assert params == []
    assert 'TRUE AND TRUE' in sales_sql

@pytest.mark.asyncio
async def test_market_health_without_closed_listings():
    """Test the sell-through rate is empty when nothing closed in the week."""
    figures = {
        'active_listings': 3,
        'new_listings_24h': 3,
        'sales_24h': 0,
        'sales_7d': 0,
        'closed_7d': 0,
        'avg_hours_to_sale': None
    }
    traders = {'unique_buyers_7d': 0, 'unique_sellers_7d': 0}
    pool = FakePool(fetchrow=[figures, traders])

    health = await AnalyticsManager(pool).get_market_health()

    assert health['sell_through_rate_7d'] is None
    assert health['active_listings'] == 3

@pytest.mark.asyncio
async def test_market_health_sell_through_rate():
    figures = {'active_listings': 1, 'sales_7d': 1, 'closed_7d': 4}
    pool = FakePool(fetchrow=[figures, {'unique_buyers_7d': 1, 'unique_sellers_7d': 1}])

    health = await AnalyticsManager(pool).get_market_health(game_id=2)

    assert health['sell_through_rate_7d'] == Decimal('0.2500')
    assert pool.conn.fetchrow.call_args_list[1].args[1:] == (2,)

@pytest.mark.asyncio
async def test_top_items_rejects_metric():
    pool = FakePool()

    with pytest.raises(ValueError, match="Invalid metric"):
        await AnalyticsManager(pool).get_top_items(metric='likes')

    pool.conn.fetch.assert_not_awaited()

@pytest.mark.asyncio
async def test_top_items_by_price():
    pool = FakePool(fetch=[[]])

    await AnalyticsManager(pool).get_top_items(metric='price', period='all', rarity='epic', limit=5)

    sql, *params = pool.conn.fetch.call_args.args
    assert 'ORDER BY max_price DESC' in sql
    assert 'LIMIT $2' in sql
    assert params == ['epic', 5]
