"""Security utilities: JWT token handling.

Authentication itself happens upstream; this service only verifies the
signature and reads the identity claim {id, name, email, role}.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID
import logging

import jwt
from pydantic import BaseModel, EmailStr

from ..models import UserRole
from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # User ID
    name: str
    email: EmailStr
    role: UserRole
    exp: datetime
    iat: datetime


def create_access_token(
    user_id: UUID,
    name: str,
    email: str,
    role: UserRole | str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token carrying the identity claim."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user_id),
        "name": name,
        "email": email,
        "role": UserRole(role).value,
        "exp": expire,
        "iat": now,
    }

    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token. Returns None when it can't be trusted."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError:
        return None
    except ValueError as e:
        # Signature fine but the claim is malformed (unknown role, bad fields)
        logger.warning(f"Rejected token with malformed claims: {e}")
        return None
