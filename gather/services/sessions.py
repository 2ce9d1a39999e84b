"""Refresh-token-backed sessions.

Each row binds one refresh token (stored as its SHA-256 hash) to a user and a
device. Refreshing rotates the hash in place, so a refresh token works once.
An expired row is deleted when its refresh token is next presented.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from gather.config import settings
from gather.models import User, UserSession
from gather.services.security import create_access_token
from gather.services.tokens import as_utc, db_datetime, hash_token, new_token, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


@dataclass
class RefreshResult:
    user: User
    tokens: TokenPair


def _refresh_expiry() -> datetime:
    return utcnow() + timedelta(days=settings.JWT_REFRESH_EXPIRE_DAYS)


def create_session(
    db: Session,
    user: User,
    device_info: dict | None = None,
    ip_address: str | None = None,
) -> TokenPair:
    raw = new_token()
    expires_at = _refresh_expiry()
    db.add(
        UserSession(
            user_id=user.id,
            token_hash=hash_token(raw),
            expires_at=expires_at,
            device_info=device_info,
            ip_address=ip_address,
        )
    )
    db.flush()
    return TokenPair(
        access_token=create_access_token(user.id, user.role, user.email),
        refresh_token=raw,
        refresh_expires_at=expires_at,
    )


def refresh_session(db: Session, raw_token: str) -> RefreshResult | None:
    """Rotate a refresh token. None tells the caller to clear the client cookie."""
    old_hash = hash_token(raw_token)
    current = db.query(UserSession).filter(UserSession.token_hash == old_hash).first()
    if not current:
        return None

    if as_utc(current.expires_at) <= utcnow():
        db.delete(current)
        db.flush()
        return None

    user = db.query(User).filter(User.id == current.user_id).first()
    if user is None or not user.is_active:
        db.delete(current)
        db.flush()
        return None

    new_raw = new_token()
    expires_at = _refresh_expiry()
    updated = (
        db.query(UserSession)
        .filter(UserSession.id == current.id, UserSession.token_hash == old_hash)
        .update(
            {
                UserSession.token_hash: hash_token(new_raw),
                UserSession.expires_at: db_datetime(db, expires_at),
                UserSession.last_active_at: db_datetime(db, utcnow()),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        logger.warning("Refresh token for session id=%s was rotated concurrently", current.id)
        return None

    return RefreshResult(
        user=user,
        tokens=TokenPair(
            access_token=create_access_token(user.id, user.role, user.email),
            refresh_token=new_raw,
            refresh_expires_at=expires_at,
        ),
    )


def invalidate_session(db: Session, raw_token: str) -> bool:
    deleted = (
        db.query(UserSession)
        .filter(UserSession.token_hash == hash_token(raw_token))
        .delete(synchronize_session=False)
    )
    return deleted > 0


def invalidate_all_sessions(db: Session, user_id: int) -> int:
    deleted = (
        db.query(UserSession)
        .filter(UserSession.user_id == user_id)
        .delete(synchronize_session=False)
    )
    if deleted:
        logger.info("Invalidated %s session(s) for user id=%s", deleted, user_id)
    return deleted


def count_active_sessions(db: Session, user_id: int) -> int:
    return (
        db.query(UserSession)
        .filter(
            UserSession.user_id == user_id,
            UserSession.expires_at > db_datetime(db, utcnow()),
        )
        .count()
    )
