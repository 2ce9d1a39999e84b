import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from gather.config import settings

ACCESS_TOKEN_TYPE = "access"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    email: str | None
    role: str
    expires_at: datetime


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def validate_password_strength(password: str) -> list[str]:
    """Return the list of unmet password rules (empty when the password is acceptable)."""
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if not any(c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_CHARACTERS.search(password):
        errors.append("Password must contain at least one special character")
    return errors


def access_token_ttl_seconds() -> int:
    return settings.JWT_EXPIRE_MINUTES * 60


def create_access_token(user_id: int, role: str, email: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> AccessClaims | None:
    """Verify signature and expiry; any failure collapses to None."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        return None
    sub = payload.get("sub")
    role = payload.get("role")
    exp = payload.get("exp")
    if sub is None or not role or exp is None:
        return None
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        return None

    return AccessClaims(
        user_id=user_id,
        email=payload.get("email"),
        role=role,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
