"""Response envelope helpers.

Every response body carries `code` and `timestamp`; successes add optional
`message` and `data`, errors add `message` and optional `details`.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()

def encode(data: Any) -> Any:
    """JSON-encode data, keeping decimals exact as strings."""
    return jsonable_encoder(data, custom_encoder={Decimal: str})

def success(data: Any = None, message: Optional[str] = None, code: int = 200) -> JSONResponse:
    """Build a success envelope."""
    body = {'code': code}
    if message is not None:
        body['message'] = message
    if data is not None:
        body['data'] = encode(data)
    body['timestamp'] = _timestamp()
    return JSONResponse(status_code=code, content=body)

def error_body(code: int, message: Any, details: Any = None) -> dict:
    """Build an error envelope body."""
    body = {'code': code, 'message': message}
    if details is not None:
        body['details'] = encode(details)
    body['timestamp'] = _timestamp()
    return body

def error(code: int, message: Any, details: Any = None, headers: Optional[dict] = None) -> JSONResponse:
    """Build an error envelope response."""
    return JSONResponse(
        status_code=code,
        content=error_body(code, message, details),
        headers=headers
    )
