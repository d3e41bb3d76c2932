"""Game registry endpoints."""

from fastapi import APIRouter, HTTPException, Query, Path, Security, Depends, status
from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, Field, field_validator

from auth import get_current_user, require_admin, is_valid_address
from games import (
    GameManager, GameError, GameNotFoundError, GamePermissionError, GameConflictError
)
from items import ItemManager
from ..responses import success

router = APIRouter(
    prefix="/games",
    tags=["Games"]
)

Genre = Literal[
    'action', 'adventure', 'rpg', 'strategy', 'puzzle',
    'racing', 'sports', 'simulation', 'other'
]

class CreateGameRequest(BaseModel):
    """Request model for registering a game."""
    name: str = Field(..., min_length=1, max_length=100)
    developer: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    contract_address: Optional[str] = None
    genre: Optional[Genre] = None
    platforms: Optional[List[str]] = None
    social_links: Optional[Dict[str, str]] = None

    @field_validator('contract_address')
    @classmethod
    def check_contract(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_address(value):
            raise ValueError('Invalid contract address format')
        return value

class UpdateGameRequest(BaseModel):
    """Request model for updating a game."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    developer: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    genre: Optional[Genre] = None
    platforms: Optional[List[str]] = None
    social_links: Optional[Dict[str, str]] = None

class ActivateRequest(BaseModel):
    """Request model for activating or deactivating a game."""
    active: bool

class AddDeveloperRequest(BaseModel):
    """Request model for adding a developer to a game."""
    user_address: str
    role: Literal['developer', 'admin', 'moderator'] = 'developer'

    @field_validator('user_address')
    @classmethod
    def check_address(cls, value: str) -> str:
        if not is_valid_address(value):
            raise ValueError('Invalid user address format')
        return value

def game_http_error(e: GameError) -> HTTPException:
    """Translate a game error into an HTTP error."""
    if isinstance(e, GameNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, GamePermissionError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, GameConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("")
async def list_games(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    verified: Optional[bool] = Query(None),
    active: Optional[bool] = Query(True),
    developer: Optional[str] = Query(None),
    search: Optional[str] = Query(None, min_length=1, max_length=100),
    sort: Literal['created_at', 'name', 'items_count'] = Query('created_at'),
    order: Literal['asc', 'desc'] = Query('desc')
):
    """List games with filters and pagination."""
    if developer is not None and not is_valid_address(developer):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid developer address format"
        )

    result = await GameManager().list_games(
        verified=verified,
        active=active,
        developer=developer,
        search=search,
        sort=sort,
        order=order,
        page=page,
        limit=limit
    )
    return success(result)

@router.get("/{game_id}")
async def get_game(game_id: int = Path(..., ge=1)):
    """Get a game with stats and recent items."""
    try:
        return success(await GameManager().get_game_detail(game_id))
    except GameError as e:
        raise game_http_error(e)

@router.get("/{game_id}/items")
async def get_game_items(
    game_id: int = Path(..., ge=1),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    owner: Optional[str] = Query(None),
    rarity: Optional[Literal['common', 'rare', 'epic', 'legendary', 'mythic']] = Query(None),
    category: Optional[str] = Query(None),
    sort: Literal['created_at', 'name', 'rarity'] = Query('created_at'),
    order: Literal['asc', 'desc'] = Query('desc')
):
    """Get a game's items."""
    if owner is not None and not is_valid_address(owner):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid owner address format"
        )
    try:
        game = await GameManager().get_game(game_id)
    except GameError as e:
        raise game_http_error(e)

    result = await ItemManager().search_items(
        game_id=game_id,
        owner_address=owner,
        rarity=rarity,
        category=category,
        sort=sort,
        order=order,
        page=page,
        limit=limit
    )
    result['game'] = {'id': game['id'], 'name': game['name']}
    return success(result)

@router.get("/{game_id}/developers")
async def get_developers(game_id: int = Path(..., ge=1)):
    """List a game's developer team."""
    try:
        developers = await GameManager().get_developers(game_id)
    except GameError as e:
        raise game_http_error(e)
    return success({'game_id': game_id, 'developers': developers})

@router.get("/{game_id}/stats")
async def get_game_stats(
    game_id: int = Path(..., ge=1),
    period: Literal['24h', '7d', '30d', '90d', 'all'] = Query('30d')
):
    """Get marketplace statistics for a game."""
    manager = GameManager()
    try:
        await manager.get_game(game_id)
    except GameError as e:
        raise game_http_error(e)

    stats = await manager.get_game_stats(game_id, period)
    return success({'game_id': game_id, 'period': period, 'stats': stats})

@router.post("")
async def create_game(
    request: CreateGameRequest,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Register a new game; the caller becomes its owner."""
    try:
        game = await GameManager().create_game(user['id'], **request.model_dump())
    except GameError as e:
        raise game_http_error(e)

    return success(game, message="Game registered successfully", code=status.HTTP_201_CREATED)

@router.put("/{game_id}")
async def update_game(
    request: UpdateGameRequest,
    game_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Update a game (developers only)."""
    try:
        game = await GameManager().update_game(
            game_id,
            user['id'],
            request.model_dump(exclude_none=True)
        )
    except GameError as e:
        raise game_http_error(e)

    return success(game, message="Game updated successfully")

@router.post("/{game_id}/verify")
async def verify_game(
    game_id: int = Path(..., ge=1),
    admin: Dict[str, Any] = Depends(require_admin)
):
    """Mark a game as verified (admin only)."""
    try:
        game = await GameManager().verify_game(game_id)
    except GameError as e:
        raise game_http_error(e)

    return success(game, message="Game verified successfully")

@router.post("/{game_id}/activate")
async def activate_game(
    request: ActivateRequest,
    game_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Activate or deactivate a game (developers only)."""
    try:
        game = await GameManager().set_active(game_id, user['id'], request.active)
    except GameError as e:
        raise game_http_error(e)

    return success(
        game,
        message=f"Game {'activated' if request.active else 'deactivated'} successfully"
    )

@router.post("/{game_id}/developers")
async def add_developer(
    request: AddDeveloperRequest,
    game_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Add a developer to a game (owner only)."""
    try:
        developer = await GameManager().add_developer(
            game_id,
            user['id'],
            request.user_address,
            request.role
        )
    except GameError as e:
        raise game_http_error(e)

    return success(developer, message="Developer added successfully", code=status.HTTP_201_CREATED)

# Export the router
__all__ = ['router']
