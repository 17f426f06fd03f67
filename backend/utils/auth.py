import secrets
from typing import Optional

from fastapi import Request, HTTPException, WebSocket, status
from config import get_settings


def _bearer(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, value = header_value.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return None
    return value.strip()


def token_matches(token: Optional[str]) -> bool:
    expected = get_settings().api_token
    if not token or not expected:
        return False
    return secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


async def verify_api_token(request: Request):
    token = _bearer(request.headers.get("Authorization"))
    if not token_matches(token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid or missing API token"
        )


def websocket_token_valid(websocket: WebSocket) -> bool:
    """Browsers cannot set headers on WebSocket upgrades, so the token may also come as ?token=."""
    token = _bearer(websocket.headers.get("Authorization")) or websocket.query_params.get("token")
    return token_matches(token)


def webhook_auth_header(request: Request) -> str:
    """LiveKit signs webhooks with a raw JWT in the Authorization header (no scheme)."""
    value = request.headers.get("Authorization") or ""
    return _bearer(value) or value
