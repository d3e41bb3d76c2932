"""Items module for game item records.

Items mirror on-chain tokens: they are minted by a game's developers and
change owner only through marketplace settlement.
"""

import json
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Any

from database import get_pool
from games import GameManager, GameNotFoundError
from listings import ListingManager
from listings.rules import RARITIES
from listings.search import build_pagination, clamp_paging
from price_history import PriceHistory

logger = logging.getLogger(__name__)

ITEM_SORT_FIELDS = ('created_at', 'price', 'rarity', 'name')

# Metadata developers may change after minting
MUTABLE_FIELDS = ('name', 'description', 'image_url', 'attributes', 'level_requirement')

class ItemError(Exception):
    """Base exception for item operations."""
    pass

class ItemNotFoundError(ItemError):
    """Raised when an item is not found."""
    pass

class ItemPermissionError(ItemError):
    """Raised when a user may not manage an item."""
    pass

class ItemConflictError(ItemError):
    """Raised when a token is already registered."""
    pass

def _decode(row) -> Dict[str, Any]:
    item = dict(row)
    if isinstance(item.get('attributes'), str):
        item['attributes'] = json.loads(item['attributes'])
    return item

class ItemManager:
    """Manager class for game items."""

    def __init__(self, pool=None):
        """Initialize the item manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_item(self, item_id: int) -> Dict[str, Any]:
        """Get an item with its game name.

        Raises:
            ItemNotFoundError: If the item doesn't exist
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT gi.*, g.name AS game_name, g.logo_url AS game_logo
                FROM game_items gi
                JOIN games g ON g.id = gi.game_id
                WHERE gi.id = $1
                ''',
                item_id
            )
            if not row:
                raise ItemNotFoundError(f"Item {item_id} not found")
            return _decode(row)

    async def get_item_detail(self, item_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Get an item with price history, its active listing and favorite flag.

        Args:
            item_id: The item ID
            user_id: Optional viewer, used for `is_favorited`

        Raises:
            ItemNotFoundError: If the item doesn't exist
        """
        item = await self.get_item(item_id)
        item['price_history'] = await PriceHistory(self.pool).get_item_history(item_id)
        item['current_listing'] = await ListingManager(self.pool).get_active_listing_by_item(item_id)

        item['is_favorited'] = False
        if user_id is not None:
            async with self.pool.acquire() as conn:
                item['is_favorited'] = bool(await conn.fetchval(
                    'SELECT EXISTS(SELECT 1 FROM user_favorites WHERE user_id = $1 AND item_id = $2)',
                    user_id,
                    item_id
                ))
        return item

    async def search_items(
        self,
        game_id: Optional[int] = None,
        owner_address: Optional[str] = None,
        rarity: Optional[str] = None,
        category: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        sort: str = 'created_at',
        order: str = 'desc',
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """Search active items.

        Price filters and sorting use the item's active listing price, so
        they only match listed items.

        Returns:
            Dict containing items and pagination
        """
        await self.ensure_pool()
        page, limit = clamp_paging(page, limit)
        if sort not in ITEM_SORT_FIELDS:
            sort = 'created_at'
        direction = 'ASC' if order == 'asc' else 'DESC'

        conditions = ['gi.is_active']
        params: List[Any] = []

        def add(condition: str, value: Any) -> None:
            params.append(value)
            conditions.append(condition.format(f'${len(params)}'))

        if game_id is not None:
            add('gi.game_id = {}', game_id)
        if owner_address:
            add('lower(gi.owner_address) = lower({})', owner_address)
        if rarity:
            add('gi.rarity = {}', rarity)
        if category:
            add('gi.category = {}', category)
        if min_price is not None:
            add('l.price >= {}', min_price)
        if max_price is not None:
            add('l.price <= {}', max_price)
        where = ' AND '.join(conditions)

        order_by = {
            'created_at': 'gi.created_at',
            'price': 'l.price',
            'name': 'gi.name',
            'rarity': f"array_position(ARRAY{list(RARITIES)}::text[], gi.rarity)"
        }[sort]

        joins = '''
            FROM game_items gi
            JOIN games g ON g.id = gi.game_id
            LEFT JOIN listings l ON l.item_id = gi.id AND l.is_active
        '''

        async with self.pool.acquire() as conn:
            total = await conn.fetchval(f'SELECT COUNT(*) {joins} WHERE {where}', *params)
            rows = await conn.fetch(
                f'''
                SELECT gi.*, g.name AS game_name,
                    l.id AS listing_id, l.price AS current_price,
                    l.currency, l.listing_type
                {joins}
                WHERE {where}
                ORDER BY {order_by} {direction} NULLS LAST, gi.id {direction}
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                *params,
                limit,
                (page - 1) * limit
            )

        return {
            'items': [_decode(row) for row in rows],
            'pagination': build_pagination(page, limit, total or 0)
        }

    async def create_item(self, user_id: int, **fields) -> Dict[str, Any]:
        """Record a newly minted item.

        Args:
            user_id: The user creating the item; must develop the game
            **fields: game_id, token_id, contract_address, owner_address, name,
                rarity, category, item_type and optional description,
                image_url, attributes, level_requirement

        Returns:
            The created item

        Raises:
            ItemNotFoundError: If the game doesn't exist
            ItemPermissionError: If the user doesn't develop the game
            ItemConflictError: If the token is already registered
        """
        await self.ensure_pool()
        games = GameManager(self.pool)

        try:
            await games.get_game(fields['game_id'])
        except GameNotFoundError:
            raise ItemNotFoundError(f"Game {fields['game_id']} not found")

        if not await games.check_developer_permission(user_id, fields['game_id']):
            raise ItemPermissionError("No permission to create items for this game")

        async with self.pool.acquire() as conn:
            existing = await conn.fetchval(
                '''
                SELECT id FROM game_items
                WHERE lower(contract_address) = lower($1) AND token_id = $2
                ''',
                fields['contract_address'],
                fields['token_id']
            )
            if existing:
                raise ItemConflictError("Item with this token ID already exists")

            attributes = fields.get('attributes')
            row = await conn.fetchrow(
                '''
                INSERT INTO game_items (
                    game_id, token_id, contract_address, owner_address, name,
                    description, image_url, attributes, rarity, category,
                    item_type, level_requirement
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                RETURNING *
                ''',
                fields['game_id'],
                fields['token_id'],
                fields['contract_address'],
                fields['owner_address'],
                fields['name'],
                fields.get('description'),
                fields.get('image_url'),
                json.dumps(attributes) if attributes is not None else None,
                fields['rarity'],
                fields['category'],
                fields['item_type'],
                fields.get('level_requirement') or 0
            )

        logger.info(f"Game item created: {row['id']} (token {fields['token_id']}) by user {user_id}")
        return _decode(row)

    async def update_item(self, item_id: int, user_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Update an item's metadata.

        Raises:
            ItemNotFoundError: If the item doesn't exist
            ItemPermissionError: If the user doesn't develop the item's game
            ItemError: If there is nothing to update
        """
        item = await self.get_item(item_id)

        if not await GameManager(self.pool).check_developer_permission(user_id, item['game_id']):
            raise ItemPermissionError("No permission to update this item")

        fields = [name for name in MUTABLE_FIELDS if updates.get(name) is not None]
        if not fields:
            raise ItemError("No valid fields to update")

        values = [
            json.dumps(updates[name]) if name == 'attributes' else updates[name]
            for name in fields
        ]
        assignments = ', '.join(f'{name} = ${i}' for i, name in enumerate(fields, start=2))

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'UPDATE game_items SET {assignments} WHERE id = $1 RETURNING *',
                item_id,
                *values
            )

        logger.info(f"Game item updated: {item_id} by user {user_id}")
        return _decode(row)

__all__ = [
    'ItemManager',
    'ItemError',
    'ItemNotFoundError',
    'ItemPermissionError',
    'ItemConflictError'
]
