"""Authentication API endpoints."""

from fastapi import APIRouter, HTTPException, Query, Request, status, Depends, Security
from typing import Dict, Any
from pydantic import BaseModel, Field

from auth import (
    manager, get_current_user, is_valid_address, AuthError, NonceExpiredError,
    MessageMismatchError, InvalidSignatureError, RateLimitError
)
from users import public_profile
from ..responses import success

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)

class ConnectRequest(BaseModel):
    """Request model for wallet login."""
    address: str
    signature: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)

async def auth_rate_limit(request: Request) -> None:
    """Limit nonce and login requests per client IP."""
    client_id = request.client.host if request.client else 'unknown'
    try:
        await manager.check_rate_limit(request.url.path, client_id)
    except RateLimitError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(e)
        )

def require_address(address: str) -> str:
    if not is_valid_address(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid wallet address format"
        )
    return address

@router.get("/nonce", dependencies=[Depends(auth_rate_limit)])
async def get_nonce(address: str = Query(...)):
    """Issue a nonce for the wallet to sign."""
    require_address(address)
    result = await manager.create_nonce(address)
    return success(result)

@router.post("/connect", dependencies=[Depends(auth_rate_limit)])
async def connect(request: ConnectRequest, fastapi_request: Request):
    """Verify a signed nonce and open a session."""
    require_address(request.address)
    try:
        result = await manager.connect(
            request.address,
            request.signature,
            request.message,
            fastapi_request
        )
    except NonceExpiredError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )
    except (MessageMismatchError, InvalidSignatureError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return success(
        {
            'token': result['token'],
            'expires_at': result['expires_at'],
            'user': {**public_profile(result['user']), 'email': result['user'].get('email')}
        },
        message="Authentication successful"
    )

@router.post("/disconnect")
async def disconnect(user: Dict[str, Any] = Security(get_current_user)):
    """Log out the current user by revoking their session."""
    await manager.logout(user['wallet_address'])
    return success(message="Disconnected successfully")

@router.get("/verify")
async def verify_token(user: Dict[str, Any] = Security(get_current_user)):
    """Verify the current session token."""
    return success({
        'valid': True,
        'user': {**public_profile(user), 'email': user.get('email'), 'role': user.get('role')}
    })

@router.post("/refresh")
async def refresh_token(user: Dict[str, Any] = Security(get_current_user)):
    """Token refresh is not supported; clients reconnect with a new signature."""
    raise HTTPException(
        status_code=status.HTTP_501_NOT_IMPLEMENTED,
        detail="Token refresh not implemented"
    )

# Export the router
__all__ = ['router']
