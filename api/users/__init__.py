"""User profile and favorites endpoints."""

from fastapi import APIRouter, HTTPException, Query, Path, Security, UploadFile, File, status
from typing import Dict, Any, Optional, Literal
from pydantic import BaseModel, Field

from auth import get_current_user, is_valid_address, addresses_match
from items import ItemManager
from ledger import TransactionLedger
from users import (
    UserManager, UserError, UserNotFoundError, UserConflictError, AvatarError,
    public_profile
)
from ..responses import success

router = APIRouter(
    prefix="/users",
    tags=["Users"]
)

class ProfileUpdate(BaseModel):
    """Model for profile updates."""
    username: Optional[str] = Field(None, min_length=3, max_length=30, pattern=r'^[a-zA-Z0-9_-]+$')
    email: Optional[str] = Field(None, pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None

def require_address(address: str) -> str:
    if not is_valid_address(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid wallet address format"
        )
    return address

@router.put("/profile")
async def update_profile(
    update: ProfileUpdate,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Update the authenticated user's profile."""
    try:
        updated = await UserManager().update_profile(
            user,
            username=update.username,
            email=update.email,
            bio=update.bio,
            avatar_url=update.avatar_url
        )
    except UserConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except UserError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return success(
        {**public_profile(updated), 'email': updated.get('email')},
        message="Profile updated successfully"
    )

@router.post("/avatar")
async def upload_avatar(
    avatar: UploadFile = File(...),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Upload a profile image."""
    content = await avatar.read()
    try:
        avatar_url = await UserManager().save_avatar(user, avatar.content_type, content)
    except AvatarError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return success({'avatar_url': avatar_url}, message="Avatar uploaded successfully")

@router.post("/favorites/{item_id}")
async def add_favorite(
    item_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Add an item to the user's favorites."""
    try:
        added = await UserManager().add_favorite(user['id'], item_id)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")

    return success(message="Item added to favorites" if added else "Item already in favorites")

@router.delete("/favorites/{item_id}")
async def remove_favorite(
    item_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Remove an item from the user's favorites."""
    removed = await UserManager().remove_favorite(user['id'], item_id)
    return success(message="Item removed from favorites" if removed else "Item not in favorites")

@router.get("/{address}")
async def get_profile(address: str):
    """Get a user's public profile and trading stats."""
    require_address(address)
    try:
        return success(await UserManager().get_profile(address))
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

@router.get("/{address}/items")
async def get_user_items(
    address: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    game_id: Optional[int] = Query(None, ge=1),
    rarity: Optional[Literal['common', 'rare', 'epic', 'legendary', 'mythic']] = Query(None),
    category: Optional[str] = Query(None)
):
    """Get the items a user owns."""
    require_address(address)
    try:
        await UserManager().get_user(address)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    result = await ItemManager().search_items(
        owner_address=address,
        game_id=game_id,
        rarity=rarity,
        category=category,
        page=page,
        limit=limit
    )
    return success(result)

@router.get("/{address}/favorites")
async def get_favorites(
    address: str,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Get the user's own favorite items."""
    require_address(address)
    if not addresses_match(address, user['wallet_address']):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    favorites = await UserManager().get_favorites(user['id'])
    return success({'favorites': favorites})

@router.get("/{address}/transactions")
async def get_user_transactions(
    address: str,
    role: Literal['all', 'buyer', 'seller'] = Query('all'),
    tx_type: Optional[Literal['purchase', 'bid']] = Query(None, alias='type'),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    """Get purchases, sales and bids involving an address."""
    require_address(address)
    result = await TransactionLedger().get_address_transactions(
        address,
        role=role,
        tx_type=tx_type,
        page=page,
        limit=limit
    )
    return success(result)

# Export the router
__all__ = ['router']
