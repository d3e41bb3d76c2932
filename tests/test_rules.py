"""Tests for the marketplace rules."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from listings import ListingPermissionError, ListingStateError, InvalidPriceError, rules
from conftest import (
    SELLER_ADDRESS, BUYER_ADDRESS, make_listing, make_auction, ended, later
)

def test_format_amount_strips_trailing_zeros():
    assert rules.format_amount(Decimal('1.0500')) == '1.05'
    assert rules.format_amount(Decimal('100')) == '100'
    assert rules.format_amount('0.10') == '0.1'

def test_to_decimal_avoids_float_artifacts():
    assert rules.to_decimal(0.1) == Decimal('0.1')

def test_compute_end_time():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert rules.compute_end_time(None, now) is None
    assert rules.compute_end_time(24, now) == now + timedelta(hours=24)

@pytest.mark.parametrize('hours', [0, 169])
def test_compute_end_time_rejects_out_of_range(hours):
    with pytest.raises(InvalidPriceError):
        rules.compute_end_time(hours)

def test_default_min_increment_is_five_percent():
    assert rules.default_min_increment(Decimal('2')) == Decimal('0.1')

def test_is_expired():
    assert not rules.is_expired(make_listing())
    assert not rules.is_expired(make_listing(end_time=later()))
    assert rules.is_expired(make_listing(end_time=ended()))

def test_seller_check_ignores_address_case():
    mixed = "0xAbCdEf0000000000000000000000000000000001"
    rules.ensure_seller(make_listing(seller_address=mixed), mixed.lower())
    with pytest.raises(ListingPermissionError, match="You do not own this listing"):
        rules.ensure_seller(make_listing(), BUYER_ADDRESS)

def test_price_update_only_for_active_fixed_listings():
    rules.check_price_update(make_listing(), SELLER_ADDRESS)
    with pytest.raises(ListingStateError, match="Cannot update inactive listing"):
        rules.check_price_update(make_listing(is_active=False), SELLER_ADDRESS)
    with pytest.raises(ListingStateError, match="fixed price listings"):
        rules.check_price_update(make_listing(listing_type='auction'), SELLER_ADDRESS)
    with pytest.raises(ListingPermissionError):
        rules.check_price_update(make_listing(), BUYER_ADDRESS)

def test_cancellation_requires_active_listing():
    rules.check_cancellation(make_listing(), SELLER_ADDRESS)
    with pytest.raises(ListingStateError, match="already inactive"):
        rules.check_cancellation(make_listing(is_active=False), SELLER_ADDRESS)

def test_purchase_checks_in_order():
    rules.check_purchase(make_listing(), BUYER_ADDRESS)
    with pytest.raises(ListingStateError, match="Listing is not active"):
        rules.check_purchase(make_listing(is_active=False), SELLER_ADDRESS)
    with pytest.raises(ListingStateError, match="Cannot buy your own listing"):
        rules.check_purchase(make_listing(end_time=ended()), SELLER_ADDRESS)
    with pytest.raises(ListingStateError, match="Listing has expired"):
        rules.check_purchase(make_listing(end_time=ended()), BUYER_ADDRESS)

def test_bid_target_checks():
    auction = make_listing(listing_type='auction', end_time=later())
    rules.check_bid_target(auction, BUYER_ADDRESS)
    with pytest.raises(ListingStateError, match="This is not an auction"):
        rules.check_bid_target(make_listing(), BUYER_ADDRESS)
    with pytest.raises(ListingStateError, match="Auction is not active"):
        rules.check_bid_target({**auction, 'is_active': False}, BUYER_ADDRESS)
    with pytest.raises(ListingStateError, match="Auction has ended"):
        rules.check_bid_target({**auction, 'end_time': ended()}, BUYER_ADDRESS)
    with pytest.raises(ListingStateError, match="Cannot bid on your own auction"):
        rules.check_bid_target(auction, SELLER_ADDRESS)

def test_bid_amount_must_clear_increment():
    auction = make_auction(current_price=Decimal('1.0'), min_increment=Decimal('0.05'))
    assert rules.minimum_bid(auction) == Decimal('1.05')
    rules.check_bid_amount(auction, Decimal('1.05'), 'ETH')
    with pytest.raises(InvalidPriceError, match="Bid must be at least 1.05 ETH"):
        rules.check_bid_amount(auction, Decimal('1.04'), 'ETH')

def test_settlement_price():
    assert rules.settlement_price(make_listing()) == Decimal('1.5')
    auction_listing = make_listing(listing_type='auction')
    assert rules.settlement_price(
        auction_listing, make_auction(buyout_price=Decimal('3'))
    ) == Decimal('3')
    with pytest.raises(ListingStateError, match="does not have a buyout price"):
        rules.settlement_price(auction_listing, make_auction())

def test_settlement_price_after_bids_pass_buyout():
    """Test a buyout is refused once the leading bid has reached it."""
    auction_listing = make_listing(listing_type='auction')
    overtaken = make_auction(
        buyout_price=Decimal('3'), current_price=Decimal('3.2'), highest_bidder=BUYER_ADDRESS
    )

    with pytest.raises(ListingStateError, match="passed the buyout price"):
        rules.settlement_price(auction_listing, overtaken)

def test_auction_terms_defaults():
    opening, increment, buyout = rules.auction_terms(Decimal('2'))

    assert opening == Decimal('2')
    assert increment == Decimal('0.1')
    assert buyout is None

def test_auction_terms_explicit():
    terms = rules.auction_terms(Decimal('2'), Decimal('1'), Decimal('0.5'), Decimal('4'))

    assert terms == (Decimal('1'), Decimal('0.5'), Decimal('4'))

@pytest.mark.parametrize('starting_price, buyout_price', [
    (None, Decimal('2')),
    (None, Decimal('1.5')),
    (Decimal('3'), Decimal('2.5'))
])
def test_auction_terms_buyout_must_exceed_opening(starting_price, buyout_price):
    with pytest.raises(InvalidPriceError, match="Buyout price must be greater"):
        rules.auction_terms(Decimal('2'), starting_price, None, buyout_price)
