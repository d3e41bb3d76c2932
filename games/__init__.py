"""Games module for the game registry.

This module provides functionality for:
- Registering games and tracking their developer teams
- Updating, verifying and activating games
- Per-game marketplace statistics
"""

import json
import logging
from typing import Dict, List, Optional, Any

from database import get_pool
from listings.search import build_pagination, clamp_paging
from price_history import period_start

logger = logging.getLogger(__name__)

GENRES = (
    'action', 'adventure', 'rpg', 'strategy', 'puzzle',
    'racing', 'sports', 'simulation', 'other'
)
DEVELOPER_ROLES = ('owner', 'developer', 'admin', 'moderator')
GAME_SORT_FIELDS = ('created_at', 'name', 'items_count')

# Fields a game developer may change
MUTABLE_FIELDS = (
    'name',
    'developer',
    'description',
    'logo_url',
    'website_url',
    'genre',
    'platforms',
    'social_links'
)

JSON_FIELDS = ('platforms', 'social_links')

class GameError(Exception):
    """Base exception for game operations."""
    pass

class GameNotFoundError(GameError):
    """Raised when a game is not found."""
    pass

class GamePermissionError(GameError):
    """Raised when a user may not manage a game."""
    pass

class GameConflictError(GameError):
    """Raised when a game name, contract or developer is already registered."""
    pass

def _encode(field: str, value: Any) -> Any:
    return json.dumps(value) if field in JSON_FIELDS and value is not None else value

def _decode(row) -> Dict[str, Any]:
    game = dict(row)
    for field in JSON_FIELDS:
        if isinstance(game.get(field), str):
            game[field] = json.loads(game[field])
    return game

class GameManager:
    """Manager class for games and their developers."""

    def __init__(self, pool=None):
        """Initialize the game manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_game(self, game_id: int) -> Dict[str, Any]:
        """Get a game by ID.

        Raises:
            GameNotFoundError: If the game doesn't exist
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM games WHERE id = $1', game_id)
            if not row:
                raise GameNotFoundError(f"Game {game_id} not found")
            return _decode(row)

    async def get_game_detail(self, game_id: int) -> Dict[str, Any]:
        """Get a game with its statistics and ten most recent items.

        Raises:
            GameNotFoundError: If the game doesn't exist
        """
        game = await self.get_game(game_id)
        game['stats'] = await self.get_game_stats(game_id)

        async with self.pool.acquire() as conn:
            recent = await conn.fetch(
                '''
                SELECT * FROM game_items
                WHERE game_id = $1 AND is_active
                ORDER BY created_at DESC
                LIMIT 10
                ''',
                game_id
            )
        game['recent_items'] = [dict(row) for row in recent]
        return game

    async def list_games(
        self,
        verified: Optional[bool] = None,
        active: Optional[bool] = True,
        developer: Optional[str] = None,
        search: Optional[str] = None,
        sort: str = 'created_at',
        order: str = 'desc',
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """List games with filters.

        Args:
            verified: Optional verification flag filter
            active: Active flag filter (default: only active games)
            developer: Optional wallet address of a team member
            search: Optional text matched against name and description
            sort: One of created_at, name, items_count
            order: asc or desc
            page: Page number
            limit: Page size

        Returns:
            Dict containing games (with items_count) and pagination
        """
        await self.ensure_pool()
        page, limit = clamp_paging(page, limit)
        if sort not in GAME_SORT_FIELDS:
            sort = 'created_at'
        order = 'ASC' if order == 'asc' else 'DESC'

        conditions = []
        params: List[Any] = []
        if verified is not None:
            params.append(verified)
            conditions.append(f'g.is_verified = ${len(params)}')
        if active is not None:
            params.append(active)
            conditions.append(f'g.is_active = ${len(params)}')
        if developer:
            params.append(developer)
            conditions.append(
                f'''EXISTS (
                    SELECT 1 FROM game_developers gd
                    JOIN users u ON u.id = gd.user_id
                    WHERE gd.game_id = g.id AND lower(u.wallet_address) = lower(${len(params)})
                )'''
            )
        if search:
            params.append(f'%{search}%')
            conditions.append(f'(g.name ILIKE ${len(params)} OR g.description ILIKE ${len(params)})')
        where = ' AND '.join(conditions) if conditions else 'TRUE'

        order_by = 'items_count' if sort == 'items_count' else f'g.{sort}'

        async with self.pool.acquire() as conn:
            total = await conn.fetchval(f'SELECT COUNT(*) FROM games g WHERE {where}', *params)
            rows = await conn.fetch(
                f'''
                SELECT g.*,
                    (SELECT COUNT(*) FROM game_items gi WHERE gi.game_id = g.id) AS items_count
                FROM games g
                WHERE {where}
                ORDER BY {order_by} {order}, g.id {order}
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                *params,
                limit,
                (page - 1) * limit
            )

        return {
            'games': [_decode(row) for row in rows],
            'pagination': build_pagination(page, limit, total or 0)
        }

    async def create_game(self, creator_id: int, **fields) -> Dict[str, Any]:
        """Register a new game; the creator becomes its owner developer.

        Args:
            creator_id: User ID of the registering user
            **fields: name, developer and optional description, logo_url,
                website_url, contract_address, genre, platforms, social_links

        Returns:
            The created game

        Raises:
            GameConflictError: If the name or contract address is taken
        """
        await self.ensure_pool()

        columns = [name for name in MUTABLE_FIELDS + ('contract_address',) if fields.get(name) is not None]
        values = [_encode(name, fields[name]) for name in columns]
        placeholders = ', '.join(f'${i}' for i in range(1, len(values) + 1))

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                taken = await conn.fetchval(
                    'SELECT id FROM games WHERE lower(name) = lower($1)',
                    fields['name']
                )
                if taken:
                    raise GameConflictError("A game with this name already exists")

                if fields.get('contract_address'):
                    taken = await conn.fetchval(
                        'SELECT id FROM games WHERE lower(contract_address) = lower($1)',
                        fields['contract_address']
                    )
                    if taken:
                        raise GameConflictError("This contract address is already registered")

                game = await conn.fetchrow(
                    f'''
                    INSERT INTO games ({', '.join(columns)})
                    VALUES ({placeholders})
                    RETURNING *
                    ''',
                    *values
                )

                await conn.execute(
                    '''
                    INSERT INTO game_developers (game_id, user_id, role)
                    VALUES ($1, $2, 'owner')
                    ''',
                    game['id'],
                    creator_id
                )

        logger.info(f"New game registered: {game['id']} ({fields['name']}) by user {creator_id}")
        return _decode(game)

    async def get_developer_role(self, user_id: int, game_id: int) -> Optional[str]:
        """Get a user's role on a game team, or None."""
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'SELECT role FROM game_developers WHERE game_id = $1 AND user_id = $2',
                game_id,
                user_id
            )

    async def check_developer_permission(self, user_id: int, game_id: int) -> bool:
        """Check whether a user is on a game's developer team."""
        return await self.get_developer_role(user_id, game_id) is not None

    async def update_game(self, game_id: int, user_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Update a game's metadata.

        Raises:
            GameNotFoundError: If the game doesn't exist
            GamePermissionError: If the user is not a developer of the game
            GameError: If there is nothing to update
        """
        await self.get_game(game_id)

        if not await self.check_developer_permission(user_id, game_id):
            raise GamePermissionError("No permission to update this game")

        fields = [name for name in MUTABLE_FIELDS if updates.get(name) is not None]
        if not fields:
            raise GameError("No valid fields to update")

        assignments = ', '.join(f'{name} = ${i}' for i, name in enumerate(fields, start=2))
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'UPDATE games SET {assignments} WHERE id = $1 RETURNING *',
                game_id,
                *[_encode(name, updates[name]) for name in fields]
            )

        logger.info(f"Game updated: {game_id} by user {user_id}")
        return _decode(row)

    async def verify_game(self, game_id: int) -> Dict[str, Any]:
        """Mark a game as verified.

        Raises:
            GameNotFoundError: If the game doesn't exist
            GameError: If the game is already verified
        """
        game = await self.get_game(game_id)
        if game['is_verified']:
            raise GameError("Game is already verified")

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'UPDATE games SET is_verified = true WHERE id = $1 RETURNING *',
                game_id
            )

        logger.info(f"Game verified: {game_id}")
        return _decode(row)

    async def set_active(self, game_id: int, user_id: int, active: bool) -> Dict[str, Any]:
        """Activate or deactivate a game.

        Raises:
            GameNotFoundError: If the game doesn't exist
            GamePermissionError: If the user is not a developer of the game
        """
        await self.get_game(game_id)

        if not await self.check_developer_permission(user_id, game_id):
            raise GamePermissionError("No permission to modify this game")

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'UPDATE games SET is_active = $2 WHERE id = $1 RETURNING *',
                game_id,
                active
            )

        logger.info(f"Game {game_id} {'activated' if active else 'deactivated'} by user {user_id}")
        return _decode(row)

    async def get_developers(self, game_id: int) -> List[Dict[str, Any]]:
        """List a game's developer team.

        Raises:
            GameNotFoundError: If the game doesn't exist
        """
        await self.get_game(game_id)

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT u.id AS user_id, u.wallet_address, u.username, u.avatar_url,
                       gd.role, gd.created_at AS added_at
                FROM game_developers gd
                JOIN users u ON u.id = gd.user_id
                WHERE gd.game_id = $1
                ORDER BY gd.created_at ASC
                ''',
                game_id
            )
            return [dict(row) for row in rows]

    async def add_developer(
        self,
        game_id: int,
        caller_id: int,
        user_address: str,
        role: str = 'developer'
    ) -> Dict[str, Any]:
        """Add a user to a game's developer team.

        Args:
            game_id: The game ID
            caller_id: User ID of the caller, who must be the game owner
            user_address: Wallet address of the user to add
            role: Team role for the new member

        Raises:
            GameNotFoundError: If the game or user doesn't exist
            GamePermissionError: If the caller is not the owner
            GameConflictError: If the user is already on the team
            GameError: If the role is invalid
        """
        await self.get_game(game_id)

        if role not in DEVELOPER_ROLES or role == 'owner':
            raise GameError(f"Invalid role: {role}")

        if await self.get_developer_role(caller_id, game_id) != 'owner':
            raise GamePermissionError("Only game owners can add developers")

        async with self.pool.acquire() as conn:
            user = await conn.fetchrow(
                'SELECT id, wallet_address FROM users WHERE lower(wallet_address) = lower($1)',
                user_address
            )
            if not user:
                raise GameNotFoundError("User with this address not found")

            inserted = await conn.fetchrow(
                '''
                INSERT INTO game_developers (game_id, user_id, role)
                VALUES ($1, $2, $3)
                ON CONFLICT (game_id, user_id) DO NOTHING
                RETURNING *
                ''',
                game_id,
                user['id'],
                role
            )
            if not inserted:
                raise GameConflictError("User is already a developer for this game")

        logger.info(f"User {user['wallet_address']} added to game {game_id} as {role}")
        return {
            'game_id': game_id,
            'user_id': user['id'],
            'wallet_address': user['wallet_address'],
            'role': role
        }

    async def get_game_stats(self, game_id: int, period: str = 'all') -> Dict[str, Any]:
        """Get marketplace statistics for a game.

        Args:
            game_id: The game ID
            period: Trading window for volume figures (24h, 7d, 30d, 90d, all)

        Returns:
            Dict with item, owner, listing and trade figures
        """
        await self.ensure_pool()
        since = period_start(period)

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT
                    (SELECT COUNT(*) FROM game_items WHERE game_id = $1) AS total_items,
                    (SELECT COUNT(DISTINCT lower(owner_address))
                     FROM game_items WHERE game_id = $1) AS unique_owners,
                    (SELECT COUNT(*) FROM listings l
                     JOIN game_items gi ON gi.id = l.item_id
                     WHERE gi.game_id = $1 AND l.is_active) AS active_listings,
                    (SELECT MIN(l.price) FROM listings l
                     JOIN game_items gi ON gi.id = l.item_id
                     WHERE gi.game_id = $1 AND l.is_active
                     AND l.listing_type = 'fixed') AS floor_price,
                    COUNT(t.id) AS total_trades,
                    COALESCE(SUM(t.price), 0) AS total_volume,
                    AVG(t.price) AS avg_price
                FROM transactions t
                JOIN game_items gi ON gi.id = t.item_id
                WHERE gi.game_id = $1
                AND t.status = 'completed'
                AND ($2::timestamptz IS NULL OR t.created_at >= $2)
                ''',
                game_id,
                since
            )
            return dict(row)

__all__ = [
    'GameManager',
    'GameError',
    'GameNotFoundError',
    'GamePermissionError',
    'GameConflictError',
    'GENRES',
    'DEVELOPER_ROLES'
]
