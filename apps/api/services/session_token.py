"""Bearer session tokens for API requests and social-login handoff."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "eternalme_session"


@dataclass(frozen=True)
class SessionToken:
    token: str
    expires_at: int

    def as_dict(self) -> Dict[str, Any]:
        return {"token": self.token, "expires_at": self.expires_at}


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed session token payload for API authentication."""
    return issue_session(user_id, email=email, expires_hours=expires_hours).as_dict()


def issue_session(
    user_id: str,
    *,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SessionToken:
    issued_at = now or datetime.now(timezone.utc)
    ttl_hours = max(int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24), 1)
    expires_at = int((issued_at + timedelta(hours=ttl_hours)).timestamp())
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": expires_at,
    }
    if email:
        claims["email"] = email
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return SessionToken(token=token, expires_at=expires_at)


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    # OAuth state blobs share the signing key; only session tokens pass here.
    if str(payload.get("type", "")).strip() != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    if not str(payload.get("sub", "")).strip():
        raise ValueError("Session token missing subject.")
    return payload
