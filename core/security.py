"""
Security utilities.

Provides:
- JWT access tokens for coach/admin sessions (issuance itself happens in the
  external auth service; we sign/verify with the shared SECRET_KEY)
- Invite token generation and hashing

SECURITY REQUIREMENTS:
- SECRET_KEY must be set via environment variable
- SECRET_KEY must be cryptographically secure (32+ characters)
- Raw invite tokens are never stored; only their SHA-256 hex digest is
"""
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
from core.config import settings

# JWT settings - SECRET_KEY is required by config.py, will fail at startup if not set
SECRET_KEY = settings.SECRET_KEY

# Validate SECRET_KEY strength at module load
if len(SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters. "
        "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

ALGORITHM = "HS256"
INVITE_TOKEN_BYTES = 32


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def generate_invite_token() -> str:
    """New raw invite token (64 hex chars). Returned to the coach exactly once."""
    return secrets.token_hex(INVITE_TOKEN_BYTES)


def hash_invite_token(token: str) -> str:
    """Deterministic one-way lookup key for an invite token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
