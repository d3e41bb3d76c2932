"""Tests for the games module."""

import pytest

from games import (
    GameManager,
    GameError,
    GameNotFoundError,
    GamePermissionError,
    GameConflictError
)
from conftest import FakePool, BUYER_ADDRESS, make_game

@pytest.mark.asyncio
async def test_create_game_makes_creator_owner():
    """Test that registering a game adds the creator as its owner."""
    pool = FakePool(
        fetchval=[None],
        fetchrow=[make_game(id=3, platforms='["pc", "mobile"]')],
        execute='INSERT 0 1'
    )

    game = await GameManager(pool).create_game(
        5, name='Dungeon Crawl', developer='Crawl Studio', platforms=['pc', 'mobile']
    )

    assert game['platforms'] == ['pc', 'mobile']
    insert_sql, *values = pool.conn.fetchrow.call_args.args
    assert 'INSERT INTO games (name, developer, platforms)' in insert_sql
    assert values == ['Dungeon Crawl', 'Crawl Studio', '["pc", "mobile"]']
    owner_sql, game_id, user_id = pool.conn.execute.call_args.args
    assert "'owner'" in owner_sql
    assert (game_id, user_id) == (3, 5)

@pytest.mark.asyncio
async def test_create_game_name_taken():
    """Test that game names are unique regardless of case."""
    pool = FakePool(fetchval=[10])

    with pytest.raises(GameConflictError, match="name already exists"):
        await GameManager(pool).create_game(5, name='dungeon crawl', developer='Someone')

    pool.conn.fetchrow.assert_not_awaited()

@pytest.mark.asyncio
async def test_create_game_contract_taken():
    """Test that a contract address can only back one game."""
    pool = FakePool(fetchval=[None, 11])

    with pytest.raises(GameConflictError, match="contract address is already registered"):
        await GameManager(pool).create_game(
            5,
            name='New Game',
            developer='Someone',
            contract_address='0xdddddddddddddddddddddddddddddddddddddddd'
        )

    pool.conn.fetchrow.assert_not_awaited()

@pytest.mark.asyncio
async def test_get_missing_game():
    pool = FakePool(fetchrow=[None])

    with pytest.raises(GameNotFoundError):
        await GameManager(pool).get_game(99)

@pytest.mark.asyncio
async def test_update_game_requires_developer():
    """Test that only team members can update a game."""
    pool = FakePool(fetchrow=[make_game()], fetchval=[None])

    with pytest.raises(GamePermissionError):
        await GameManager(pool).update_game(1, 5, {'description': 'New'})

    assert pool.conn.fetchrow.await_count == 1

@pytest.mark.asyncio
async def test_update_game_encodes_json_fields():
    """Test updating a game stores social links as JSON and skips empty fields."""
    updated = make_game(social_links='{"x": "@crawl"}')
    pool = FakePool(fetchrow=[make_game(), updated], fetchval=['developer'])

    game = await GameManager(pool).update_game(
        1, 5, {'social_links': {'x': '@crawl'}, 'description': None}
    )

    assert game['social_links'] == {'x': '@crawl'}
    sql, game_id, value = pool.conn.fetchrow.call_args.args
    assert 'SET social_links = $2 WHERE' in sql
    assert game_id == 1
    assert value == '{"x": "@crawl"}'

@pytest.mark.asyncio
async def test_update_game_without_fields():
    pool = FakePool(fetchrow=[make_game()], fetchval=['developer'])

    with pytest.raises(GameError, match="No valid fields"):
        await GameManager(pool).update_game(1, 5, {'contract_address': '0x1'})

@pytest.mark.asyncio
async def test_verify_game_twice():
    """Test that a verified game cannot be verified again."""
    pool = FakePool(fetchrow=[make_game(is_verified=True)])

    with pytest.raises(GameError, match="already verified"):
        await GameManager(pool).verify_game(1)

@pytest.mark.asyncio
async def test_set_active_requires_developer():
    pool = FakePool(fetchrow=[make_game()], fetchval=[None])

    with pytest.raises(GamePermissionError):
        await GameManager(pool).set_active(1, 5, False)

@pytest.mark.asyncio
async def test_add_developer_requires_owner():
    """Test that only the game owner can grow the team."""
    pool = FakePool(fetchrow=[make_game()], fetchval=['developer'])

    with pytest.raises(GamePermissionError, match="Only game owners"):
        await GameManager(pool).add_developer(1, 5, BUYER_ADDRESS)

@pytest.mark.asyncio
async def test_add_developer_rejects_owner_role():
    """Test that a second owner cannot be added."""
    pool = FakePool(fetchrow=[make_game()])

    with pytest.raises(GameError, match="Invalid role"):
        await GameManager(pool).add_developer(1, 5, BUYER_ADDRESS, role='owner')

    pool.conn.fetchval.assert_not_awaited()

@pytest.mark.asyncio
async def test_add_unknown_user_as_developer():
    pool = FakePool(fetchrow=[make_game(), None], fetchval=['owner'])

    with pytest.raises(GameNotFoundError, match="User with this address not found"):
        await GameManager(pool).add_developer(1, 5, BUYER_ADDRESS)

@pytest.mark.asyncio
async def test_add_existing_developer():
    """Test adding someone already on the team."""
    pool = FakePool(
        fetchrow=[make_game(), {'id': 9, 'wallet_address': BUYER_ADDRESS}, None],
        fetchval=['owner']
    )

    with pytest.raises(GameConflictError):
        await GameManager(pool).add_developer(1, 5, BUYER_ADDRESS)

@pytest.mark.asyncio
async def test_add_developer():
    pool = FakePool(
        fetchrow=[
            make_game(),
            {'id': 9, 'wallet_address': BUYER_ADDRESS},
            {'game_id': 1, 'user_id': 9, 'role': 'moderator'}
        ],
        fetchval=['owner']
    )

    member = await GameManager(pool).add_developer(1, 5, BUYER_ADDRESS, role='moderator')

    assert member == {
        'game_id': 1,
        'user_id': 9,
        'wallet_address': BUYER_ADDRESS,
        'role': 'moderator'
    }
    _, game_id, user_id, role = pool.conn.fetchrow.call_args.args
    assert (game_id, user_id, role) == (1, 9, 'moderator')

@pytest.mark.asyncio
async def test_list_games_filters():
    """Test listing games builds filters and pagination."""
    pool = FakePool(fetchval=[1], fetch=[[make_game(items_count=4)]])

    result = await GameManager(pool).list_games(verified=True, search='crawl', sort='bogus')

    assert result['games'][0]['items_count'] == 4
    assert result['pagination']['total'] == 1
    sql, *params = pool.conn.fetch.call_args.args
    assert 'ORDER BY g.created_at DESC' in sql
    assert params == [True, True, '%crawl%', 20, 0]
