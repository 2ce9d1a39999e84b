"""Request guards.

Routes compose these as FastAPI dependencies; each guard either raises an
``ApiError`` (short-circuit) or returns what the next guard needs:

    bearer -> get_current_user_optional -> get_current_user -> require_roles(...)
"""

from typing import Annotated

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from gather.errors import forbidden, unauthorized
from gather.models import User, UserRole, get_db
from gather.services.rate_limit import (
    RateLimit,
    RateLimiter,
    enforce_rate_limit,
    get_client_ip,
    get_rate_limiter,
)
from gather.services.security import decode_access_token

security = HTTPBearer(auto_error=False)


def get_current_user_optional(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
) -> User | None:
    if not credentials:
        return None
    claims = decode_access_token(credentials.credentials)
    if claims is None:
        return None
    user = db.query(User).filter(User.id == claims.user_id).first()
    if user is None or not user.is_active:
        return None
    request.state.user = user
    request.state.token_claims = claims
    return user


def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    user: Annotated[User | None, Depends(get_current_user_optional)],
) -> User:
    if user is None:
        if not credentials:
            raise unauthorized("Missing authorization token")
        raise unauthorized("Invalid or expired token")
    return user


def require_roles(*roles: UserRole):
    """Gate a route on the role carried by the access token."""
    allowed = {role.value for role in roles}
    label = " or ".join(role.value for role in roles)

    def role_checker(
        request: Request,
        user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        claims = request.state.token_claims
        if claims.role not in allowed:
            raise forbidden(f"{label.capitalize()} access required")
        return user

    return role_checker


require_moderator = require_roles(UserRole.MODERATOR, UserRole.ADMIN)
require_admin = require_roles(UserRole.ADMIN)


class RateLimitByIp:
    """Per-IP fixed window guard, keyed as ``<prefix>:<ip>``."""

    def __init__(self, prefix: str, limit: RateLimit):
        self.prefix = prefix
        self.limit = limit

    def __call__(
        self,
        request: Request,
        response: Response,
        limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ) -> None:
        ip = get_client_ip(request) or "anonymous"
        enforce_rate_limit(limiter, f"{self.prefix}:{ip}", self.limit, response)
