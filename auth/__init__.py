"""Authentication module using wallet signatures and JWT sessions.

This module provides:
1. Nonce issuance and EIP-191 personal-sign verification
2. Single active session per wallet address
3. FastAPI dependencies for protecting routes
4. Per-client rate limiting for the login endpoints
"""

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from config import settings_conf
from database import get_pool

logger = logging.getLogger(__name__)

# Constants
NONCE_EXPIRY_MINUTES = settings_conf['nonce_expiry_minutes']
SESSION_EXPIRY_HOURS = settings_conf['jwt_expiry_hours']
JWT_SECRET = settings_conf['jwt_secret']
JWT_ALGORITHM = "HS256"
AUTH_RATE_LIMIT = settings_conf['auth_rate_limit']
AUTH_RATE_WINDOW_SECONDS = settings_conf['auth_rate_window_seconds']
SIGN_MESSAGE_PREFIX = "Sign this message to authenticate: "

ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class NonceExpiredError(AuthError):
    """Raised when no valid nonce exists for the address."""
    pass

class MessageMismatchError(AuthError):
    """Raised when the signed message is not the one issued for the nonce."""
    pass

class InvalidSignatureError(AuthError):
    """Raised when message signature verification fails."""
    pass

class SessionExpiredError(AuthError):
    """Raised when a session has expired."""
    pass

class RateLimitError(AuthError):
    """Raised when a client exceeds the auth rate limit."""
    pass

def is_valid_address(address: Optional[str]) -> bool:
    """Check that a string is a 0x-prefixed 20-byte hex address."""
    return bool(address) and bool(ADDRESS_PATTERN.match(address))

def addresses_match(first: Optional[str], second: Optional[str]) -> bool:
    """Compare two wallet addresses case-insensitively."""
    if not first or not second:
        return False
    return first.lower() == second.lower()

def sign_message_for(nonce: str) -> str:
    """Build the message a wallet must sign for a nonce."""
    return f"{SIGN_MESSAGE_PREFIX}{nonce}"

def recover_address(message: str, signature: str) -> str:
    """Recover the signing address of an EIP-191 personal message.

    Raises:
        InvalidSignatureError: If the signature is malformed
    """
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise InvalidSignatureError(f"Malformed signature: {e}")

def verify_signature(message: str, signature: str, address: str) -> bool:
    """Check that `signature` over `message` was produced by `address`."""
    try:
        return addresses_match(recover_address(message, signature), address)
    except InvalidSignatureError:
        return False

def create_token(user: Dict[str, Any], expires_at: datetime) -> str:
    """Issue a signed JWT for a user."""
    return jwt.encode(
        {
            'sub': user['wallet_address'],
            'uid': user['id'],
            'role': user.get('role', 'user'),
            'exp': int(expires_at.timestamp())
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM
    )

def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT.

    Raises:
        SessionExpiredError: If the token has expired
        AuthError: If the token is otherwise invalid
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise SessionExpiredError("Token expired")
    except JWTError as e:
        raise AuthError(f"Invalid token: {str(e)}")

class AuthManager:
    """Manages nonces, sessions and auth rate limits."""

    def __init__(self, pool=None):
        """Initialize auth manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure database pool is available."""
        if not self.pool:
            self.pool = await get_pool()

    async def check_rate_limit(self, endpoint: str, client_id: str) -> None:
        """Count a request against the per-client auth rate limit.

        Args:
            endpoint: The endpoint being accessed
            client_id: The client's identifier (IP address)

        Raises:
            RateLimitError: If the client has exhausted its window
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                rate_limit = await conn.fetchrow(
                    '''
                    SELECT request_count, reset_time
                    FROM rate_limits
                    WHERE endpoint = $1 AND client_id = $2
                    FOR UPDATE
                    ''',
                    endpoint,
                    client_id
                )

                now = datetime.now(timezone.utc)
                if not rate_limit or rate_limit['reset_time'] <= now:
                    await conn.execute(
                        '''
                        INSERT INTO rate_limits (endpoint, client_id, request_count, reset_time)
                        VALUES ($1, $2, 1, $3)
                        ON CONFLICT (endpoint, client_id) DO UPDATE
                        SET request_count = 1, reset_time = $3
                        ''',
                        endpoint,
                        client_id,
                        now + timedelta(seconds=AUTH_RATE_WINDOW_SECONDS)
                    )
                    return

                if rate_limit['request_count'] >= AUTH_RATE_LIMIT:
                    logger.warning(f"Auth rate limit exceeded for {client_id} on {endpoint}")
                    raise RateLimitError("Too many authentication attempts, please try again later")

                await conn.execute(
                    '''
                    UPDATE rate_limits
                    SET request_count = request_count + 1
                    WHERE endpoint = $1 AND client_id = $2
                    ''',
                    endpoint,
                    client_id
                )

    async def create_nonce(self, address: str) -> Dict[str, Any]:
        """Issue a new nonce for a wallet address.

        Args:
            address: The wallet address to authenticate

        Returns:
            Dict containing:
                - nonce: Random nonce
                - message: Message to sign
                - expires_at: Nonce expiration timestamp
        """
        await self.ensure_pool()

        nonce = secrets.token_hex(16)
        message = sign_message_for(nonce)
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=NONCE_EXPIRY_MINUTES)

        async with self.pool.acquire() as conn:
            # Only the newest nonce per address is valid
            await conn.execute(
                '''
                UPDATE auth_nonces
                SET used = true
                WHERE lower(address) = lower($1) AND NOT used
                ''',
                address
            )
            await conn.execute(
                '''
                INSERT INTO auth_nonces (address, nonce, message, expires_at)
                VALUES ($1, $2, $3, $4)
                ''',
                address,
                nonce,
                message,
                expires_at
            )

        logger.info(f"Nonce generated for address: {address}")
        return {
            'nonce': nonce,
            'message': message,
            'expires_at': expires_at
        }

    async def connect(
        self,
        address: str,
        signature: str,
        message: str,
        request: Optional[Request] = None
    ) -> Dict[str, Any]:
        """Verify a signed nonce, find or create the user and open a session.

        Args:
            address: The wallet address that signed
            signature: The hex signature
            message: The signed message
            request: Optional request object for session metadata

        Returns:
            Dict containing:
                - token: JWT for future requests
                - expires_at: Session expiration timestamp
                - user: The user record
                - created: Whether the user was created by this login

        Raises:
            NonceExpiredError: If no unused, unexpired nonce exists
            MessageMismatchError: If message differs from the issued one
            InvalidSignatureError: If signature verification fails
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                stored = await conn.fetchrow(
                    '''
                    SELECT id, message, expires_at
                    FROM auth_nonces
                    WHERE lower(address) = lower($1) AND NOT used
                    ORDER BY created_at DESC
                    LIMIT 1
                    FOR UPDATE
                    ''',
                    address
                )

                if not stored or stored['expires_at'] < datetime.now(timezone.utc):
                    logger.warning(f"AUTH_INVALID_NONCE address={address}")
                    raise NonceExpiredError("Invalid or expired nonce")

                if message != stored['message']:
                    logger.warning(f"AUTH_MESSAGE_MISMATCH address={address}")
                    raise MessageMismatchError("Message mismatch")

                if not verify_signature(message, signature, address):
                    logger.warning(f"AUTH_INVALID_SIGNATURE address={address}")
                    raise InvalidSignatureError("Invalid signature")

                await conn.execute(
                    'UPDATE auth_nonces SET used = true WHERE id = $1',
                    stored['id']
                )

                user = await conn.fetchrow(
                    'SELECT * FROM users WHERE lower(wallet_address) = lower($1)',
                    address
                )
                created = user is None
                if created:
                    user = await conn.fetchrow(
                        '''
                        INSERT INTO users (wallet_address, last_login)
                        VALUES ($1, now())
                        RETURNING *
                        ''',
                        address
                    )
                    logger.info(f"New user created: {address}")
                else:
                    user = await conn.fetchrow(
                        '''
                        UPDATE users SET last_login = now()
                        WHERE id = $1
                        RETURNING *
                        ''',
                        user['id']
                    )
                    logger.info(f"User logged in: {address}")

                user = dict(user)
                expires_at = datetime.now(timezone.utc) + timedelta(hours=SESSION_EXPIRY_HOURS)
                token = create_token(user, expires_at)

                # Revoke any existing sessions for this address
                await conn.execute(
                    '''
                    UPDATE auth_sessions
                    SET revoked = true, revoked_at = now()
                    WHERE lower(address) = lower($1) AND NOT revoked
                    ''',
                    address
                )

                await conn.execute(
                    '''
                    INSERT INTO auth_sessions (
                        address, token, expires_at,
                        user_agent, ip_address
                    ) VALUES ($1, $2, $3, $4, $5)
                    ''',
                    user['wallet_address'],
                    token,
                    expires_at,
                    request.headers.get('user-agent') if request else None,
                    request.client.host if request and request.client else None
                )

        return {
            'token': token,
            'expires_at': expires_at,
            'user': user,
            'created': created
        }

    async def verify_session(self, token: str) -> Dict[str, Any]:
        """Verify a session token and load its user.

        Args:
            token: The JWT to verify

        Returns:
            The authenticated user record

        Raises:
            SessionExpiredError: If session has expired
            AuthError: For other verification errors
        """
        payload = decode_token(token)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            session = await conn.fetchrow(
                '''
                SELECT expires_at
                FROM auth_sessions
                WHERE token = $1 AND NOT revoked
                ''',
                token
            )

            if not session:
                raise AuthError("Session not found or revoked")

            if session['expires_at'] < datetime.now(timezone.utc):
                raise SessionExpiredError("Session has expired")

            user = await conn.fetchrow(
                'SELECT * FROM users WHERE lower(wallet_address) = lower($1)',
                payload['sub']
            )
            if not user:
                raise AuthError("User not found")

            await conn.execute(
                'UPDATE auth_sessions SET last_used_at = now() WHERE token = $1',
                token
            )

            return dict(user)

    async def logout(self, address: str) -> None:
        """Log out by revoking the active session.

        Args:
            address: Address to log out
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                UPDATE auth_sessions
                SET revoked = true, revoked_at = now()
                WHERE lower(address) = lower($1)
                AND NOT revoked
                ''',
                address
            )
        logger.info(f"User logged out: {address}")

# Create global instance
manager = AuthManager()

# FastAPI security schemes
auth_scheme = HTTPBearer(
    auto_error=False,
    description="JWT Bearer token required"
)

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> Dict[str, Any]:
    """FastAPI dependency for getting the authenticated user.

    Returns:
        The authenticated user record

    Raises:
        HTTPException: If authentication fails
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required"
        )
    try:
        return await manager.verify_session(credentials.credentials)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> Optional[Dict[str, Any]]:
    """FastAPI dependency that resolves the user when a valid token is sent."""
    if credentials is None:
        return None
    try:
        return await manager.verify_session(credentials.credentials)
    except AuthError:
        return None

async def require_admin(
    user: Dict[str, Any] = Depends(get_current_user)
) -> Dict[str, Any]:
    """FastAPI dependency that only admits admin users."""
    if user.get('role') != 'admin':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user

# Export public interface
__all__ = [
    'manager',
    'AuthManager',
    'get_current_user',
    'get_optional_user',
    'require_admin',
    'is_valid_address',
    'addresses_match',
    'sign_message_for',
    'recover_address',
    'verify_signature',
    'create_token',
    'decode_token',
    'AuthError',
    'NonceExpiredError',
    'MessageMismatchError',
    'InvalidSignatureError',
    'SessionExpiredError',
    'RateLimitError'
]
