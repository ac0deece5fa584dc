from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from .errors import Unauthorized


def issue_token(user_id: str, secret: str, ttl_seconds: int = 3600, username: Optional[str] = None, algorithm: str = "HS256") -> str:
    """Mint a bearer token whose `sub` is the user id."""
    now = datetime.now(timezone.utc)
    claims = {"sub": user_id, "iat": now, "exp": now + timedelta(seconds=ttl_seconds)}
    if username:
        claims["username"] = username
    return jwt.encode(claims, secret, algorithm=algorithm)


def verify_token(token: Optional[str], secret: str, algorithm: str = "HS256") -> str:
    """Return the owning user id for a valid, unexpired token."""
    if not token:
        raise Unauthorized("missing token")
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm], options={"require": ["exp", "sub"]})
    except jwt.PyJWTError as exc:
        raise Unauthorized(f"token rejected: {type(exc).__name__}") from exc
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise Unauthorized("token has no subject")
    return subject
