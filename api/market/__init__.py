"""Marketplace endpoints for listings, purchases, bids and market data."""

from fastapi import APIRouter, HTTPException, status, Query, Path, Security, Depends
from typing import Dict, Any, Optional, Literal
from decimal import Decimal
from pydantic import BaseModel, Field

from auth import get_current_user, require_admin, is_valid_address
from analytics import AnalyticsManager
from auctions import AuctionManager
from ledger import TransactionLedger, LedgerError, TransactionNotFoundError
from listings import (
    ListingManager, ListingError, ListingNotFoundError, ItemNotFoundError,
    ListingPermissionError
)
from settlement import SettlementManager
from ..responses import success

# Create router
router = APIRouter(
    prefix="/market",
    tags=["Market"]
)

Currency = Literal['ETH', 'USDC', 'USDT']
Rarity = Literal['common', 'rare', 'epic', 'legendary', 'mythic']
Category = Literal[
    'weapon', 'armor', 'consumable', 'character', 'pet',
    'skin', 'currency', 'badge', 'collectible'
]
Period = Literal['24h', '7d', '30d', '90d', 'all']

class CreateListingRequest(BaseModel):
    """Request model for creating a listing."""
    item_id: int = Field(..., ge=1)
    price: Decimal = Field(..., gt=0)
    currency: Currency = 'ETH'
    listing_type: Literal['fixed', 'auction']
    duration_hours: Optional[int] = Field(None, ge=1, le=168)
    # Auction only
    starting_price: Optional[Decimal] = Field(None, gt=0)
    min_increment: Optional[Decimal] = Field(None, gt=0)
    buyout_price: Optional[Decimal] = Field(None, gt=0)

class UpdateListingRequest(BaseModel):
    """Request model for re-pricing a listing."""
    price: Decimal = Field(..., gt=0)

class BuyRequest(BaseModel):
    """Request model for buying a listing."""
    transaction_hash: str = Field(..., min_length=1)
    gas_fee: Decimal = Field(Decimal('0'), ge=0)

class BidRequest(BaseModel):
    """Request model for bidding on an auction."""
    bid_amount: Decimal = Field(..., gt=0)
    transaction_hash: str = Field(..., min_length=1)

class TransactionStatusRequest(BaseModel):
    """Request model for changing a transaction's status."""
    status: Literal['pending', 'completed', 'outbid', 'failed']

def listing_http_error(e: ListingError) -> HTTPException:
    """Translate a marketplace error into an HTTP error."""
    if isinstance(e, (ListingNotFoundError, ItemNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ListingPermissionError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

""" Public Endpoints - No Authentication Required """
@router.get("/listings")
async def search_listings(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    game_id: Optional[int] = Query(None, ge=1),
    seller: Optional[str] = Query(None),
    rarity: Optional[Rarity] = Query(None),
    category: Optional[Category] = Query(None),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    listing_type: Optional[Literal['fixed', 'auction']] = Query(None),
    sort: Literal['created_at', 'price', 'end_time'] = Query('created_at'),
    order: Literal['asc', 'desc'] = Query('desc'),
    listing_status: Literal['active', 'sold', 'cancelled', 'expired'] = Query('active', alias='status')
):
    """Search listings with filters, sorting and pagination."""
    if seller is not None and not is_valid_address(seller):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid seller address format"
        )

    result = await ListingManager().search_listings(
        game_id=game_id,
        seller_address=seller,
        rarity=rarity,
        category=category,
        min_price=min_price,
        max_price=max_price,
        listing_type=listing_type,
        status=listing_status,
        sort=sort,
        order=order,
        page=page,
        limit=limit
    )
    return success(result)

@router.get("/listings/{listing_id}")
async def get_listing(listing_id: int = Path(..., ge=1)):
    """Get a listing with item, game and auction details."""
    try:
        return success(await ListingManager().get_listing(listing_id))
    except ListingError as e:
        raise listing_http_error(e)

@router.get("/listings/{listing_id}/bids")
async def get_listing_bids(listing_id: int = Path(..., ge=1)):
    """Get the bids on an auction, highest first."""
    try:
        bids = await AuctionManager().get_bids(listing_id)
        return success({'listing_id': listing_id, 'bids': bids})
    except ListingError as e:
        raise listing_http_error(e)

@router.get("/stats")
async def get_market_stats(
    game_id: Optional[int] = Query(None, ge=1),
    period: Period = Query('24h')
):
    """Get listing and sales statistics."""
    return success(await AnalyticsManager().get_market_stats(game_id, period))

@router.get("/trending")
async def get_trending(
    period: Literal['24h', '7d', '30d'] = Query('24h'),
    limit: int = Query(10, ge=1, le=50)
):
    """Get the most traded items and games."""
    return success(await AnalyticsManager().get_trending(period, limit))

@router.get("/transactions/{tx_hash}")
async def get_transaction(tx_hash: str):
    """Get a ledger entry by transaction hash."""
    try:
        return success(await TransactionLedger().get_transaction(tx_hash))
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

""" Protected Endpoints - Authentication Required """
@router.post("/listings")
async def create_listing(
    request: CreateListingRequest,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Create a fixed price or auction listing for an owned item."""
    try:
        listing = await ListingManager().create_listing(
            seller_address=user['wallet_address'],
            item_id=request.item_id,
            price=request.price,
            currency=request.currency,
            listing_type=request.listing_type,
            duration_hours=request.duration_hours,
            starting_price=request.starting_price,
            min_increment=request.min_increment,
            buyout_price=request.buyout_price
        )
    except ListingError as e:
        raise listing_http_error(e)

    return success(listing, message="Listing created successfully", code=status.HTTP_201_CREATED)

@router.put("/listings/{listing_id}")
async def update_listing(
    request: UpdateListingRequest,
    listing_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Update the price of a fixed price listing."""
    try:
        listing = await ListingManager().update_price(
            listing_id,
            user['wallet_address'],
            request.price
        )
    except ListingError as e:
        raise listing_http_error(e)

    return success(listing, message="Listing updated successfully")

@router.delete("/listings/{listing_id}")
async def cancel_listing(
    listing_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Cancel an active listing."""
    try:
        await ListingManager().cancel_listing(listing_id, user['wallet_address'])
    except ListingError as e:
        raise listing_http_error(e)

    return success(message="Listing cancelled successfully")

@router.post("/listings/{listing_id}/buy")
async def buy_listing(
    request: BuyRequest,
    listing_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Buy a fixed price listing or an auction at its buyout price."""
    try:
        result = await SettlementManager().buy_listing(
            listing_id,
            user['wallet_address'],
            request.transaction_hash,
            request.gas_fee
        )
    except ListingError as e:
        raise listing_http_error(e)

    return success(
        {'transaction': result['transaction'], 'item_id': result['item_id']},
        message="Item purchased successfully"
    )

@router.post("/listings/{listing_id}/bid")
async def place_bid(
    request: BidRequest,
    listing_id: int = Path(..., ge=1),
    user: Dict[str, Any] = Security(get_current_user)
):
    """Place a bid on an auction."""
    try:
        result = await AuctionManager().place_bid(
            listing_id,
            user['wallet_address'],
            request.bid_amount,
            request.transaction_hash
        )
    except ListingError as e:
        raise listing_http_error(e)

    return success(result, message="Bid placed successfully")

@router.post("/transactions/{tx_hash}/status")
async def update_transaction_status(
    request: TransactionStatusRequest,
    tx_hash: str,
    admin: Dict[str, Any] = Depends(require_admin)
):
    """Change a transaction's status (admin only)."""
    try:
        transaction = await TransactionLedger().update_status(tx_hash, request.status)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LedgerError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return success(transaction, message="Transaction status updated")

# Export the router
__all__ = ['router']
