"""Bearer token handling. Tokens are issued by the external identity service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

ALGORITHM = "HS256"


def create_token(secret: str, user_id: str, expiry_hours: int = 24) -> str:
    """Create a signed JWT whose subject is ``user_id``."""
    exp = datetime.now(timezone.utc) + timedelta(hours=expiry_hours)
    return jwt.encode({"sub": user_id, "exp": exp}, secret, algorithm=ALGORITHM)


def decode_subject(token: str, secret: str) -> str | None:
    """Return the ``sub`` claim of a valid, unexpired token, else None."""
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    subject = claims.get("sub")
    return subject if isinstance(subject, str) and subject else None


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
