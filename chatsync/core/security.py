from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from chatsync.core.config import settings
from chatsync.utils.time import utcnow


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token for a user id"""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(subject),
        "type": "access",
        "exp": utcnow() + expires_delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token, returning None when it is invalid or expired"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
