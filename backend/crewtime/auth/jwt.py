"""JWT token creation and decoding.

Token claims:
  - sub:   external user ID (string form)
  - type:  "access"
  - exp:   expiry timestamp

Workspace membership and permissions are resolved per request from the
database, so they are not embedded in the token.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from crewtime.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: int,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
