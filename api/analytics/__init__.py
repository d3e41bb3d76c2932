"""Analytics endpoints."""

from fastapi import APIRouter, HTTPException, Query, Path, status
from typing import Optional, Literal

from analytics import AnalyticsManager
from auth import is_valid_address
from items import ItemManager, ItemNotFoundError
from price_history import PriceHistory
from users import UserManager, UserNotFoundError
from ..responses import success

router = APIRouter(
    prefix="/analytics",
    tags=["Analytics"]
)

Period = Literal['24h', '7d', '30d', '90d', 'all']
TrendPeriod = Literal['24h', '7d', '30d', '90d']
Rarity = Literal['common', 'rare', 'epic', 'legendary', 'mythic']
Category = Literal[
    'weapon', 'armor', 'consumable', 'character', 'pet',
    'skin', 'currency', 'badge', 'collectible'
]

@router.get("/overview")
async def get_overview(period: Period = Query('30d')):
    """Get platform overview statistics."""
    overview = await AnalyticsManager().get_overview(period)
    return success({'period': period, **overview})

@router.get("/market-trends")
async def get_market_trends(
    period: TrendPeriod = Query('7d'),
    game_id: Optional[int] = Query(None, ge=1),
    rarity: Optional[Rarity] = Query(None),
    category: Optional[Category] = Query(None)
):
    """Get daily trading volume and prices."""
    trends = await AnalyticsManager().get_market_trends(period, game_id, rarity, category)
    return success({
        'period': period,
        'filters': {'game_id': game_id, 'rarity': rarity, 'category': category},
        'trends': trends
    })

@router.get("/price-history/{item_id}")
async def get_price_history(
    item_id: int = Path(..., ge=1),
    period: Period = Query('30d'),
    interval: Literal['1h', '4h', '1d', '7d'] = Query('1d')
):
    """Get bucketed price history for an item."""
    try:
        item = await ItemManager().get_item(item_id)
    except ItemNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")

    history = await PriceHistory().get_bucketed_history(item_id, period, interval)
    return success({
        'item': {
            'id': item['id'],
            'name': item['name'],
            'token_id': item['token_id'],
            'game_id': item['game_id'],
            'rarity': item['rarity']
        },
        'period': period,
        'interval': interval,
        'price_history': history
    })

@router.get("/top-items")
async def get_top_items(
    metric: Literal['volume', 'price', 'transactions'] = Query('volume'),
    period: TrendPeriod = Query('7d'),
    game_id: Optional[int] = Query(None, ge=1),
    rarity: Optional[Rarity] = Query(None),
    category: Optional[Category] = Query(None),
    limit: int = Query(20, ge=1, le=100)
):
    """Get items ranked by a trading metric."""
    items = await AnalyticsManager().get_top_items(metric, period, game_id, rarity, category, limit)
    return success({
        'metric': metric,
        'period': period,
        'filters': {'game_id': game_id, 'rarity': rarity, 'category': category},
        'items': items
    })

@router.get("/user-stats/{address}")
async def get_user_stats(address: str, period: Period = Query('30d')):
    """Get a user's trading statistics."""
    if not is_valid_address(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid address format"
        )
    try:
        user = await UserManager().get_user(address)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    stats = await AnalyticsManager().get_user_stats(address, period)
    return success({
        'user': {
            'address': user['wallet_address'],
            'username': user['username'],
            'reputation_score': user['reputation_score']
        },
        'period': period,
        'stats': stats
    })

@router.get("/rarity-distribution")
async def get_rarity_distribution(
    game_id: Optional[int] = Query(None, ge=1),
    category: Optional[Category] = Query(None)
):
    """Get item rarity distribution."""
    distribution = await AnalyticsManager().get_rarity_distribution(game_id, category)
    return success({'game_id': game_id, 'category': category, 'distribution': distribution})

@router.get("/market-health")
async def get_market_health(game_id: Optional[int] = Query(None, ge=1)):
    """Get market liquidity indicators."""
    health = await AnalyticsManager().get_market_health(game_id)
    return success({'game_id': game_id, 'health_indicators': health})

# Export the router
__all__ = ['router']
