"""JWT access tokens identifying the owner of sync requests.

Tokens are issued by the external identity provider in production; `create_access_token`
exists for local setups and tests that share `JWT_SECRET_KEY`.
"""

import os
import jwt
from datetime import timedelta
from typing import Optional, Dict
from dotenv import load_dotenv

from focusgrid.models.timestamps import utcnow

load_dotenv()

# JWT configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))


def create_access_token(user_id: str) -> str:
    """Create a signed token whose subject is `user_id`."""
    issued_at = utcnow()
    payload = {
        "sub": user_id,
        "exp": issued_at + timedelta(hours=JWT_EXPIRATION_HOURS),
        "iat": issued_at,
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a token; None if it is invalid or expired."""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def get_user_id_from_token(token: str) -> Optional[str]:
    payload = decode_access_token(token)
    if payload:
        return payload.get("sub")
    return None
