"""FastAPI auth dependencies.

Learn: get_current_user is attached at router level in api/__init__.py,
and also injected into handlers that need to know who is calling. Both
uses resolve once per request (FastAPI caches dependencies).

The WebSocket endpoint can't use Header dependencies the same way, so it
calls identity_from_token() with the ?token= query param.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

from parley.auth.jwt import TokenError, verify_token


@dataclass(frozen=True)
class CurrentIdentity:
    """The authenticated user making the request."""
    id: int
    email: str
    name: str


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=401,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


def identity_from_token(token: str) -> CurrentIdentity:
    """Decode an access token. Raises TokenError."""
    payload = verify_token(token)
    return CurrentIdentity(
        id=payload["sub"],
        email=payload.get("email", ""),
        name=payload.get("name", ""),
    )


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> CurrentIdentity:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized()
    try:
        return identity_from_token(authorization[7:])
    except TokenError as e:
        raise Unauthorized(str(e))
