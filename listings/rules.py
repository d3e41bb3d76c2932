"""Marketplace rules that do not touch the database.

Every check takes plain mappings (asyncpg records or dicts) so the same
rules run inside a locked transaction and in unit tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Tuple

from auth import addresses_match
from config import settings_conf
from .exceptions import (
    ListingPermissionError,
    ListingStateError,
    InvalidPriceError
)

CURRENCIES = ('ETH', 'USDC', 'USDT')
LISTING_TYPES = ('fixed', 'auction')
LISTING_STATUSES = ('active', 'sold', 'cancelled', 'expired')
RARITIES = ('common', 'rare', 'epic', 'legendary', 'mythic')
CATEGORIES = (
    'weapon', 'armor', 'consumable', 'character', 'pet',
    'skin', 'currency', 'badge', 'collectible'
)

MIN_DURATION_HOURS = 1
MAX_DURATION_HOURS = 168

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def to_decimal(value: Any) -> Decimal:
    """Convert a numeric value to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

def format_amount(value: Any) -> str:
    """Render an amount without trailing zeros or exponent notation."""
    amount = to_decimal(value).normalize()
    return f"{amount:f}"

def compute_end_time(duration_hours: Optional[int], now: Optional[datetime] = None) -> Optional[datetime]:
    """Return when a listing with the given duration ends, or None if open-ended.

    Raises:
        InvalidPriceError: If the duration is outside the allowed range
    """
    if duration_hours is None:
        return None
    if not MIN_DURATION_HOURS <= duration_hours <= MAX_DURATION_HOURS:
        raise InvalidPriceError(
            f"Duration must be between {MIN_DURATION_HOURS} and {MAX_DURATION_HOURS} hours"
        )
    return (now or utcnow()) + timedelta(hours=duration_hours)

def default_min_increment(price: Any) -> Decimal:
    """Minimum auction increment when the seller does not give one."""
    return to_decimal(price) * settings_conf['default_min_increment_percent']

def auction_terms(
    price: Any,
    starting_price: Any = None,
    min_increment: Any = None,
    buyout_price: Any = None
) -> Tuple[Decimal, Decimal, Optional[Decimal]]:
    """Resolve an auction's opening price, increment and buyout price.

    Raises:
        InvalidPriceError: If the buyout does not exceed the opening price
    """
    opening = to_decimal(starting_price) if starting_price else to_decimal(price)
    increment = to_decimal(min_increment) if min_increment else default_min_increment(price)
    buyout = to_decimal(buyout_price) if buyout_price else None
    if buyout is not None and buyout <= opening:
        raise InvalidPriceError("Buyout price must be greater than the starting price")
    return opening, increment, buyout

def is_expired(listing: Mapping[str, Any], now: Optional[datetime] = None) -> bool:
    """Check whether a listing's end time has passed."""
    end_time = listing.get('end_time')
    return end_time is not None and (now or utcnow()) > end_time

def ensure_item_owner(item: Mapping[str, Any], caller: str) -> None:
    if not addresses_match(item['owner_address'], caller):
        raise ListingPermissionError("You do not own this item")

def ensure_seller(listing: Mapping[str, Any], caller: str) -> None:
    if not addresses_match(listing['seller_address'], caller):
        raise ListingPermissionError("You do not own this listing")

def check_price_update(listing: Mapping[str, Any], caller: str) -> None:
    """Validate that `caller` may re-price `listing`.

    Raises:
        ListingPermissionError: If the caller is not the seller
        ListingStateError: If the listing is inactive or an auction
    """
    ensure_seller(listing, caller)
    if not listing['is_active']:
        raise ListingStateError("Cannot update inactive listing")
    if listing['listing_type'] != 'fixed':
        raise ListingStateError("Can only update price for fixed price listings")

def check_cancellation(listing: Mapping[str, Any], caller: str) -> None:
    """Validate that `caller` may cancel `listing`.

    Raises:
        ListingPermissionError: If the caller is not the seller
        ListingStateError: If the listing is already inactive
    """
    ensure_seller(listing, caller)
    if not listing['is_active']:
        raise ListingStateError("Listing is already inactive")

def check_purchase(listing: Mapping[str, Any], buyer: str, now: Optional[datetime] = None) -> None:
    """Validate that `buyer` may purchase `listing`.

    Raises:
        ListingStateError: If the listing is inactive, expired or the buyer's own
    """
    if not listing['is_active']:
        raise ListingStateError("Listing is not active")
    if addresses_match(listing['seller_address'], buyer):
        raise ListingStateError("Cannot buy your own listing")
    if is_expired(listing, now):
        raise ListingStateError("Listing has expired")

def check_bid_target(listing: Mapping[str, Any], bidder: str, now: Optional[datetime] = None) -> None:
    """Validate that `listing` is an open auction `bidder` may bid on.

    Raises:
        ListingStateError: If the listing cannot take bids from this bidder
    """
    if listing['listing_type'] != 'auction':
        raise ListingStateError("This is not an auction")
    if not listing['is_active']:
        raise ListingStateError("Auction is not active")
    if is_expired(listing, now):
        raise ListingStateError("Auction has ended")
    if addresses_match(listing['seller_address'], bidder):
        raise ListingStateError("Cannot bid on your own auction")

def minimum_bid(auction: Mapping[str, Any]) -> Decimal:
    """Smallest bid an auction currently accepts."""
    return to_decimal(auction['current_price']) + to_decimal(auction['min_increment'])

def check_bid_amount(auction: Mapping[str, Any], amount: Any, currency: str) -> None:
    """Reject bids below the current price plus the minimum increment.

    Raises:
        InvalidPriceError: If the bid is too low
    """
    min_bid = minimum_bid(auction)
    if to_decimal(amount) < min_bid:
        raise InvalidPriceError(f"Bid must be at least {format_amount(min_bid)} {currency}")

def settlement_price(listing: Mapping[str, Any], auction: Optional[Mapping[str, Any]] = None) -> Decimal:
    """Price a buyer pays to take a listing immediately.

    Fixed listings settle at their price; auctions only at their buyout price.

    Raises:
        ListingStateError: If the auction has no buyout price, or bidding
            has already reached it
    """
    if listing['listing_type'] != 'auction':
        return to_decimal(listing['price'])
    if not auction or auction.get('buyout_price') is None:
        raise ListingStateError("This auction does not have a buyout price")
    buyout = to_decimal(auction['buyout_price'])
    if auction.get('highest_bidder') and to_decimal(auction['current_price']) >= buyout:
        raise ListingStateError("Bidding has passed the buyout price")
    return buyout
