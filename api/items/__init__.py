"""Game item endpoints."""

from fastapi import APIRouter, HTTPException, Query, Path, Security, Depends, status
from typing import Dict, Any, Optional, Literal
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator

from auth import get_current_user, get_optional_user, is_valid_address
from items import (
    ItemManager, ItemError, ItemNotFoundError, ItemPermissionError, ItemConflictError
)
from ledger import TransactionLedger
from ..responses import success

router = APIRouter(
    prefix="/items",
    tags=["Items"]
)

Rarity = Literal['common', 'rare', 'epic', 'legendary', 'mythic']
Category = Literal[
    'weapon', 'armor', 'consumable', 'character', 'pet',
    'skin', 'currency', 'badge', 'collectible'
]

class CreateItemRequest(BaseModel):
    """Request model for recording a minted item."""
    game_id: int = Field(..., ge=1)
    token_id: str = Field(..., min_length=1)
    contract_address: str
    owner_address: str
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    image_url: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None
    rarity: Rarity
    category: Category
    item_type: str = Field(..., min_length=1)
    level_requirement: int = Field(0, ge=0)

    @field_validator('contract_address', 'owner_address')
    @classmethod
    def check_address(cls, value: str) -> str:
        if not is_valid_address(value):
            raise ValueError('Invalid address format')
        return value

class UpdateItemRequest(BaseModel):
    """Request model for updating item metadata."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    image_url: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None
    level_requirement: Optional[int] = Field(None, ge=0)

def item_http_error(e: ItemError) -> HTTPException:
    """Translate an item error into an HTTP error."""
    if isinstance(e, ItemNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ItemPermissionError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, ItemConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("")
async def search_items(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    game_id: Optional[int] = Query(None, ge=1),
    owner: Optional[str] = Query(None),
    rarity: Optional[Rarity] = Query(None),
    category: Optional[Category] = Query(None),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    sort: Literal['created_at', 'price', 'rarity', 'name'] = Query('created_at'),
    order: Literal['asc', 'desc'] = Query('desc')
):
    """Search items with filters and pagination."""
    if owner is not None and not is_valid_address(owner):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid owner address format"
        )

    result = await ItemManager().search_items(
        game_id=game_id,
        owner_address=owner,
        rarity=rarity,
        category=category,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        order=order,
        page=page,
        limit=limit
    )
    return success(result)

@router.get("/{item_id}")
async def get_item(
    item_id: int = Path(..., ge=1),
    user: Optional[Dict[str, Any]] = Depends(get_optional_user)
):
    """Get an item with price history and its current listing."""
    try:
        item = await ItemManager().get_item_detail(item_id, user['id'] if user else None)
    except ItemError as e:
        raise item_http_error(e)
    return success(item)

@router.get("/{item_id}/history")
async def get_item_history(
    item_id: int = Path(..., ge=1),
    limit: int = Query(20, ge=1, le=50)
):
    """Get completed sales of an item."""
    try:
        await ItemManager().get_item(item_id)
    except ItemError as e:
        raise item_http_error(e)

    transactions = await TransactionLedger().get_item_transactions(item_id, limit)
    return success({'item_id': item_id, 'transactions': transactions})

@router.post("")
async def create_item(
    request: CreateItemRequest,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Record a newly minted item (game developers only)."""
    try:
        item = await ItemManager().create_item(user['id'], **request.model_dump())
    except ItemError as e:
        raise item_http_error(e)

    return success(item, message="Item created successfully", code=status.HTTP_201_CREATED)

@router.put("/{item_id}")
async def update_item(
    request: UpdateItemRequest,
    item_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Update item metadata (game developers only)."""
    try:
        item = await ItemManager().update_item(
            item_id,
            user['id'],
            request.model_dump(exclude_none=True)
        )
    except ItemError as e:
        raise item_http_error(e)

    return success(item, message="Item updated successfully")

# Export the router
__all__ = ['router']
