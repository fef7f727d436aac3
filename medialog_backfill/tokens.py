"""Structural validation of admin API tokens."""

from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jwt

LOG_READ_SCOPE = "log:read"
LOG_WRITE_SCOPE = "log:write"


class InvalidTokenError(ValueError):
    """Raised when no usable token is available."""


@dataclass
class TokenInfo:
    valid: bool
    error: Optional[str] = None
    expired: bool = False
    expires_at: Optional[dt.datetime] = None
    expires_in_days: Optional[int] = None
    scopes: List[str] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_log_read(self) -> bool:
        return LOG_READ_SCOPE in self.scopes

    @property
    def has_log_write(self) -> bool:
        return LOG_WRITE_SCOPE in self.scopes

    @property
    def has_required_scopes(self) -> bool:
        return self.has_log_read and self.has_log_write


def _scopes(payload: Dict[str, Any]) -> List[str]:
    scopes = payload.get("scopes")
    if isinstance(scopes, list):
        return [str(scope) for scope in scopes]
    scope = payload.get("scope")
    if isinstance(scope, str):
        return scope.split()
    return []


def validate_token(token: str, now: Optional[float] = None) -> TokenInfo:
    """Decode a JWT without verifying its signature and check its expiry."""
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        return TokenInfo(valid=False, error=f"Invalid token format: {exc}")

    current = time.time() if now is None else now
    exp = payload.get("exp")
    expires_at = None
    if exp is not None:
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return TokenInfo(
                valid=False, error="Token has a non-numeric exp claim", payload=payload
            )
        expires_at = dt.datetime.fromtimestamp(exp, tz=dt.timezone.utc)
        if exp < current:
            return TokenInfo(
                valid=False,
                error="Token has expired",
                expired=True,
                expires_at=expires_at,
                payload=payload,
            )

    return TokenInfo(
        valid=True,
        expires_at=expires_at,
        expires_in_days=int((exp - current) // 86400) if exp is not None else None,
        scopes=_scopes(payload),
        payload=payload,
    )


def require_valid_token(token: Optional[str]) -> TokenInfo:
    if not token:
        raise InvalidTokenError("No authentication token found")
    info = validate_token(token)
    if not info.valid:
        raise InvalidTokenError(f"Invalid token: {info.error}")
    return info
