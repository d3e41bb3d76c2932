"""Shared fixtures: an in-memory stand-in for the asyncpg pool and an API client."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest

import auth
import database

SELLER_ADDRESS = "0x1111111111111111111111111111111111111111"
BUYER_ADDRESS = "0x2222222222222222222222222222222222222222"
BIDDER_ADDRESS = "0x3333333333333333333333333333333333333333"

class _Context:
    """Async context manager yielding a fixed value."""

    def __init__(self, value: Any = None):
        self.value = value

    async def __aenter__(self):
        return self.value

    async def __aexit__(self, exc_type, exc, tb):
        return False

def _mock(results):
    if isinstance(results, list):
        return AsyncMock(side_effect=results)
    return AsyncMock(return_value=results)

class FakeConnection:
    """Connection whose query methods replay queued results.

    Pass a list to return one result per call in order, or a single value to
    return it on every call. `fetch` always takes a list of per-call row lists.
    """

    def __init__(self, fetchrow=None, fetchval=None, fetch=None, execute='UPDATE 0'):
        self.fetchrow = _mock(fetchrow)
        self.fetchval = _mock(fetchval)
        self.fetch = AsyncMock(return_value=[]) if fetch is None else AsyncMock(side_effect=fetch)
        self.execute = _mock(execute)

    def transaction(self):
        return _Context()

class FakePool:
    """Pool handing out a single FakeConnection."""

    def __init__(self, conn: Optional[FakeConnection] = None, **results):
        self.conn = conn or FakeConnection(**results)

    def acquire(self):
        return _Context(self.conn)

def make_listing(**overrides) -> Dict[str, Any]:
    listing = {
        'id': 1,
        'item_id': 7,
        'seller_address': SELLER_ADDRESS,
        'price': Decimal('1.5'),
        'currency': 'ETH',
        'listing_type': 'fixed',
        'status': 'active',
        'is_active': True,
        'end_time': None,
        'created_at': datetime.now(timezone.utc)
    }
    listing.update(overrides)
    return listing

def make_auction(**overrides) -> Dict[str, Any]:
    auction = {
        'id': 1,
        'listing_id': 1,
        'starting_price': Decimal('1.0'),
        'current_price': Decimal('1.0'),
        'min_increment': Decimal('0.05'),
        'buyout_price': None,
        'highest_bidder': None,
        'bid_count': 0
    }
    auction.update(overrides)
    return auction

def make_item(**overrides) -> Dict[str, Any]:
    item = {
        'id': 7,
        'game_id': 1,
        'token_id': '42',
        'name': 'Flame Sword',
        'owner_address': SELLER_ADDRESS,
        'rarity': 'epic',
        'category': 'weapon'
    }
    item.update(overrides)
    return item

def make_game(**overrides) -> Dict[str, Any]:
    game = {
        'id': 1,
        'name': 'Dungeon Crawl',
        'developer': 'Crawl Studio',
        'contract_address': None,
        'genre': 'rpg',
        'platforms': None,
        'social_links': None,
        'is_verified': False,
        'is_active': True
    }
    game.update(overrides)
    return game

def make_transaction(**overrides) -> Dict[str, Any]:
    transaction = {
        'id': 100,
        'listing_id': 1,
        'buyer_address': BUYER_ADDRESS,
        'seller_address': SELLER_ADDRESS,
        'item_id': 7,
        'tx_hash': '0xabc',
        'tx_type': 'purchase',
        'price': Decimal('1.5'),
        'currency': 'ETH',
        'gas_fee': Decimal('0'),
        'status': 'completed'
    }
    transaction.update(overrides)
    return transaction

def make_user(**overrides) -> Dict[str, Any]:
    user = {
        'id': 1,
        'wallet_address': BUYER_ADDRESS,
        'username': None,
        'email': None,
        'avatar_url': None,
        'bio': None,
        'reputation_score': 0,
        'is_verified': False,
        'role': 'user',
        'created_at': datetime.now(timezone.utc)
    }
    user.update(overrides)
    return user

def ended() -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=1)

def later() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=1)

@pytest.fixture
def use_pool(monkeypatch):
    """Install a FakePool as the module-wide database pool."""
    def install(pool: FakePool) -> FakePool:
        monkeypatch.setattr(database, '_pool', pool)
        monkeypatch.setattr(auth.manager, 'pool', None)
        return pool
    return install

@pytest.fixture
def app():
    from api import app as fastapi_app
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()

@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    from api.auth import auth_rate_limit

    async def no_rate_limit():
        return None

    app.dependency_overrides[auth_rate_limit] = no_rate_limit
    return TestClient(app)

@pytest.fixture
def login(app):
    """Authenticate API requests as the given user."""
    def install(user: Dict[str, Any]) -> Dict[str, Any]:
        app.dependency_overrides[auth.get_current_user] = lambda: user
        app.dependency_overrides[auth.get_optional_user] = lambda: user
        return user
    return install
