"""Tests for wallet signature authentication and sessions."""

from datetime import datetime, timedelta, timezone

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi import HTTPException

from auth import (
    AuthManager,
    AuthError,
    NonceExpiredError,
    MessageMismatchError,
    InvalidSignatureError,
    SessionExpiredError,
    RateLimitError,
    AUTH_RATE_LIMIT,
    is_valid_address,
    addresses_match,
    sign_message_for,
    recover_address,
    verify_signature,
    create_token,
    decode_token,
    get_current_user,
    require_admin
)
from conftest import FakePool, make_user

def sign(account, message: str) -> str:
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return '0x' + bytes(signed.signature).hex()

@pytest.fixture
def wallet():
    return Account.create()

def nonce_row(message: str, expires_in: timedelta = timedelta(minutes=5)):
    return {
        'id': 10,
        'message': message,
        'expires_at': datetime.now(timezone.utc) + expires_in
    }

def test_address_validation():
    assert is_valid_address('0x' + 'a' * 40)
    assert is_valid_address('0x' + 'AbC123' * 6 + 'dEf0')
    assert not is_valid_address('0x' + 'g' * 40)
    assert not is_valid_address('a' * 40)
    assert not is_valid_address('0x' + 'a' * 39)
    assert not is_valid_address(None)

def test_addresses_match_is_case_insensitive():
    assert addresses_match('0xABCDEF', '0xabcdef')
    assert not addresses_match('0xABCDEF', None)

def test_sign_message_format():
    assert sign_message_for('deadbeef') == 'Sign this message to authenticate: deadbeef'

def test_signature_round_trip(wallet):
    message = sign_message_for('1234')
    signature = sign(wallet, message)

    assert recover_address(message, signature) == wallet.address
    assert verify_signature(message, signature, wallet.address.lower())
    assert not verify_signature(message, signature, Account.create().address)
    assert not verify_signature('other message', signature, wallet.address)

def test_malformed_signature(wallet):
    with pytest.raises(InvalidSignatureError):
        recover_address('hello', '0x1234')
    assert not verify_signature('hello', 'not-a-signature', wallet.address)

def test_token_round_trip():
    user = make_user(role='admin')
    token = create_token(user, datetime.now(timezone.utc) + timedelta(hours=1))

    payload = decode_token(token)
    assert payload['sub'] == user['wallet_address']
    assert payload['uid'] == user['id']
    assert payload['role'] == 'admin'

def test_expired_token():
    token = create_token(make_user(), datetime.now(timezone.utc) - timedelta(minutes=5))

    with pytest.raises(SessionExpiredError):
        decode_token(token)

def test_invalid_token():
    with pytest.raises(AuthError):
        decode_token('not.a.token')

@pytest.mark.asyncio
async def test_create_nonce(wallet):
    pool = FakePool()

    result = await AuthManager(pool).create_nonce(wallet.address)

    assert result['message'] == sign_message_for(result['nonce'])
    assert len(result['nonce']) == 32
    assert result['expires_at'] > datetime.now(timezone.utc)
    # Previous nonces are retired before the new one is stored
    assert pool.conn.execute.await_count == 2

@pytest.mark.asyncio
async def test_connect_creates_user(wallet):
    """Test a first login creates the user and opens a session."""
    message = sign_message_for('abc')
    user = make_user(wallet_address=wallet.address)
    pool = FakePool(fetchrow=[nonce_row(message), None, user])

    result = await AuthManager(pool).connect(wallet.address, sign(wallet, message), message)

    assert result['created'] is True
    assert result['user']['wallet_address'] == wallet.address
    assert decode_token(result['token'])['sub'] == wallet.address
    # Mark nonce used, revoke old sessions, insert new session
    assert pool.conn.execute.await_count == 3
    session_args = pool.conn.execute.call_args_list[2].args
    assert session_args[2] == result['token']

@pytest.mark.asyncio
async def test_connect_existing_user(wallet):
    message = sign_message_for('abc')
    user = make_user(wallet_address=wallet.address)
    pool = FakePool(fetchrow=[nonce_row(message), user, user])

    result = await AuthManager(pool).connect(wallet.address, sign(wallet, message), message)

    assert result['created'] is False

@pytest.mark.asyncio
async def test_connect_expired_nonce(wallet):
    message = sign_message_for('abc')
    pool = FakePool(fetchrow=[nonce_row(message, expires_in=timedelta(minutes=-1))])

    with pytest.raises(NonceExpiredError):
        await AuthManager(pool).connect(wallet.address, sign(wallet, message), message)

@pytest.mark.asyncio
async def test_connect_without_nonce(wallet):
    pool = FakePool(fetchrow=[None])

    with pytest.raises(NonceExpiredError):
        await AuthManager(pool).connect(wallet.address, '0x00', 'anything')

@pytest.mark.asyncio
async def test_connect_message_mismatch(wallet):
    issued = sign_message_for('abc')
    forged = sign_message_for('xyz')
    pool = FakePool(fetchrow=[nonce_row(issued)])

    with pytest.raises(MessageMismatchError):
        await AuthManager(pool).connect(wallet.address, sign(wallet, forged), forged)

@pytest.mark.asyncio
async def test_connect_wrong_signer(wallet):
    """Test a signature from another wallet is rejected and the nonce kept."""
    message = sign_message_for('abc')
    pool = FakePool(fetchrow=[nonce_row(message)])

    with pytest.raises(InvalidSignatureError):
        await AuthManager(pool).connect(wallet.address, sign(Account.create(), message), message)
    pool.conn.execute.assert_not_called()

@pytest.mark.asyncio
async def test_verify_session():
    user = make_user()
    token = create_token(user, datetime.now(timezone.utc) + timedelta(hours=1))
    session = {'expires_at': datetime.now(timezone.utc) + timedelta(hours=1)}
    pool = FakePool(fetchrow=[session, user])

    assert await AuthManager(pool).verify_session(token) == user

@pytest.mark.asyncio
async def test_verify_revoked_session():
    token = create_token(make_user(), datetime.now(timezone.utc) + timedelta(hours=1))
    pool = FakePool(fetchrow=[None])

    with pytest.raises(AuthError, match="revoked"):
        await AuthManager(pool).verify_session(token)

@pytest.mark.asyncio
async def test_rate_limit_starts_new_window():
    pool = FakePool(fetchrow=[None])

    await AuthManager(pool).check_rate_limit('/api/v1/auth/nonce', '127.0.0.1')

    assert 'INSERT INTO rate_limits' in pool.conn.execute.call_args.args[0]

@pytest.mark.asyncio
async def test_rate_limit_exceeded():
    row = {
        'request_count': AUTH_RATE_LIMIT,
        'reset_time': datetime.now(timezone.utc) + timedelta(minutes=10)
    }
    pool = FakePool(fetchrow=[row])

    with pytest.raises(RateLimitError):
        await AuthManager(pool).check_rate_limit('/api/v1/auth/nonce', '127.0.0.1')
    pool.conn.execute.assert_not_called()

@pytest.mark.asyncio
async def test_get_current_user_requires_token():
    with pytest.raises(HTTPException) as exc_info:
        await get_current_user(None)
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Access token required"

@pytest.mark.asyncio
async def test_require_admin():
    admin = make_user(role='admin')
    assert await require_admin(admin) == admin

    with pytest.raises(HTTPException) as exc_info:
        await require_admin(make_user())
    assert exc_info.value.status_code == 403
