"""Users module for profiles and favorites."""

import logging
import os
import re
import secrets
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

import aiofiles

from config import settings_conf
from database import get_pool

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{3,30}$')
MAX_BIO_LENGTH = 500

AVATAR_TYPES = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp'
}

# Fields returned to anyone looking at a profile
PUBLIC_FIELDS = (
    'id',
    'wallet_address',
    'username',
    'avatar_url',
    'bio',
    'reputation_score',
    'is_verified',
    'created_at',
    'last_login'
)

class UserError(Exception):
    """Base exception for user operations."""
    pass

class UserNotFoundError(UserError):
    """Raised when a user is not found."""
    pass

class UserConflictError(UserError):
    """Raised when a username is already taken."""
    pass

class AvatarError(UserError):
    """Raised when an avatar upload is rejected."""
    pass

def public_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    """Strip private fields (email, role) from a user record."""
    return {field: user.get(field) for field in PUBLIC_FIELDS}

class UserManager:
    """Manager class for user profiles and favorites."""

    def __init__(self, pool=None):
        """Initialize the user manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_user(self, address: str) -> Dict[str, Any]:
        """Get a user by wallet address.

        Raises:
            UserNotFoundError: If no user has this address
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            user = await conn.fetchrow(
                'SELECT * FROM users WHERE lower(wallet_address) = lower($1)',
                address
            )
            if not user:
                raise UserNotFoundError(f"User {address} not found")
            return dict(user)

    async def get_profile(self, address: str) -> Dict[str, Any]:
        """Get a public profile with trading statistics.

        Returns:
            Public user fields plus `stats` with total_items, total_trades
            and total_volume

        Raises:
            UserNotFoundError: If no user has this address
        """
        user = await self.get_user(address)

        async with self.pool.acquire() as conn:
            stats = await conn.fetchrow(
                '''
                SELECT
                    (SELECT COUNT(*) FROM game_items
                     WHERE lower(owner_address) = lower($1)) AS total_items,
                    COUNT(*) AS total_trades,
                    COALESCE(SUM(price), 0) AS total_volume
                FROM transactions
                WHERE (lower(buyer_address) = lower($1) OR lower(seller_address) = lower($1))
                AND status = 'completed'
                ''',
                address
            )

        profile = public_profile(user)
        profile['stats'] = dict(stats)
        return profile

    async def update_profile(
        self,
        user: Dict[str, Any],
        username: Optional[str] = None,
        email: Optional[str] = None,
        bio: Optional[str] = None,
        avatar_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """Update the caller's own profile.

        Args:
            user: The authenticated user record
            username: Optional new username (3-30 letters, digits, _ or -)
            email: Optional email
            bio: Optional bio (max 500 characters)
            avatar_url: Optional avatar URL

        Returns:
            The updated user record

        Raises:
            UserError: If nothing is given or a value is invalid
            UserConflictError: If the username is taken
        """
        await self.ensure_pool()

        updates = {}
        if username is not None:
            if not USERNAME_PATTERN.match(username):
                raise UserError(
                    "Username must be 3-30 characters of letters, numbers, underscores and hyphens"
                )
            updates['username'] = username
        if email is not None:
            updates['email'] = email
        if bio is not None:
            if len(bio) > MAX_BIO_LENGTH:
                raise UserError(f"Bio must be less than {MAX_BIO_LENGTH} characters")
            updates['bio'] = bio
        if avatar_url is not None:
            updates['avatar_url'] = avatar_url

        if not updates:
            raise UserError("No valid fields to update")

        async with self.pool.acquire() as conn:
            if 'username' in updates:
                taken = await conn.fetchval(
                    'SELECT id FROM users WHERE lower(username) = lower($1) AND id != $2',
                    username,
                    user['id']
                )
                if taken:
                    raise UserConflictError("Username already taken")

            assignments = ', '.join(
                f'{name} = ${i}' for i, name in enumerate(updates, start=2)
            )
            row = await conn.fetchrow(
                f'UPDATE users SET {assignments} WHERE id = $1 RETURNING *',
                user['id'],
                *updates.values()
            )

        logger.info(f"User profile updated: {user['wallet_address']}")
        return dict(row)

    async def save_avatar(
        self,
        user: Dict[str, Any],
        content_type: Optional[str],
        content: bytes
    ) -> str:
        """Store an uploaded avatar image and point the profile at it.

        Args:
            user: The authenticated user record
            content_type: MIME type of the upload
            content: Raw image bytes

        Returns:
            The new avatar URL

        Raises:
            AvatarError: If the file type or size is not allowed
        """
        extension = AVATAR_TYPES.get(content_type or '')
        if not extension:
            raise AvatarError("Avatar must be a JPEG, PNG, GIF or WEBP image")
        if not content:
            raise AvatarError("Avatar file is required")
        if len(content) > settings_conf['max_upload_bytes']:
            raise AvatarError(
                f"Avatar must be at most {settings_conf['max_upload_bytes']} bytes"
            )

        avatar_dir = os.path.join(settings_conf['upload_dir'], 'avatars')
        os.makedirs(avatar_dir, exist_ok=True)

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        filename = f"{user['id']}-{timestamp}-{secrets.token_hex(4)}.{extension}"
        async with aiofiles.open(os.path.join(avatar_dir, filename), 'wb') as f:
            await f.write(content)

        avatar_url = f"/uploads/avatars/{filename}"
        await self.update_profile(user, avatar_url=avatar_url)

        logger.info(f"Avatar updated for user: {user['wallet_address']}")
        return avatar_url

    async def get_favorites(self, user_id: int) -> List[Dict[str, Any]]:
        """Get a user's favorite items, most recent first."""
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT gi.*, g.name AS game_name, g.logo_url AS game_logo,
                       owner.username AS owner_username, uf.created_at AS favorited_at
                FROM user_favorites uf
                JOIN game_items gi ON uf.item_id = gi.id
                JOIN games g ON gi.game_id = g.id
                LEFT JOIN users owner ON lower(gi.owner_address) = lower(owner.wallet_address)
                WHERE uf.user_id = $1
                ORDER BY uf.created_at DESC
                ''',
                user_id
            )
            return [dict(row) for row in rows]

    async def add_favorite(self, user_id: int, item_id: int) -> bool:
        """Add an item to favorites.

        Returns:
            True if added, False if it was already a favorite

        Raises:
            UserNotFoundError: If the item doesn't exist
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            exists = await conn.fetchval('SELECT id FROM game_items WHERE id = $1', item_id)
            if not exists:
                raise UserNotFoundError(f"Item {item_id} not found")

            added = await conn.fetchval(
                '''
                INSERT INTO user_favorites (user_id, item_id)
                VALUES ($1, $2)
                ON CONFLICT (user_id, item_id) DO NOTHING
                RETURNING item_id
                ''',
                user_id,
                item_id
            )
            return added is not None

    async def remove_favorite(self, user_id: int, item_id: int) -> bool:
        """Remove an item from favorites.

        Returns:
            True if removed, False if it was not a favorite
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            removed = await conn.fetchval(
                '''
                DELETE FROM user_favorites
                WHERE user_id = $1 AND item_id = $2
                RETURNING item_id
                ''',
                user_id,
                item_id
            )
            return removed is not None

__all__ = [
    'UserManager',
    'UserError',
    'UserNotFoundError',
    'UserConflictError',
    'AvatarError',
    'public_profile'
]
