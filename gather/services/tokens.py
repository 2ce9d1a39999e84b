import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from gather.models import OneTimeToken, User

ONE_TIME_PURPOSE_MAGIC_LINK = "magic_link"
ONE_TIME_PURPOSE_PASSWORD_RESET = "password_reset"

logger = logging.getLogger(__name__)


@dataclass
class MagicLinkResult:
    user: User
    is_new_user: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def db_datetime(db: Session, value: datetime) -> datetime:
    bind = db.get_bind()
    if bind and bind.dialect.name == "sqlite":
        return value.replace(tzinfo=None)
    return value


def new_token() -> str:
    return secrets.token_urlsafe(48)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def display_name_from_email(email: str) -> str:
    """jane.doe_smith@example.com -> "Jane Doe Smith"."""
    prefix = email.split("@", 1)[0]
    words = [word for word in re.split(r"[._-]", prefix) if word]
    return " ".join(word[:1].upper() + word[1:].lower() for word in words) or prefix


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def issue_one_time_token(
    db: Session,
    email: str,
    purpose: str,
    expires_in_minutes: int,
    user_id: int | None = None,
) -> tuple[str, OneTimeToken]:
    raw = new_token()
    record = OneTimeToken(
        user_id=user_id,
        email=normalize_email(email),
        purpose=purpose,
        token_hash=hash_token(raw),
        expires_at=utcnow() + timedelta(minutes=expires_in_minutes),
    )
    db.add(record)
    db.flush()
    return raw, record


def consume_one_time_token(db: Session, raw_token: str, purpose: str) -> OneTimeToken | None:
    """Mark a token used. Unknown, expired and already-used tokens all return None."""
    token_hash = hash_token(raw_token)
    db_now = db_datetime(db, utcnow())

    updated = (
        db.query(OneTimeToken)
        .filter(
            OneTimeToken.token_hash == token_hash,
            OneTimeToken.purpose == purpose,
            OneTimeToken.used_at.is_(None),
            OneTimeToken.expires_at > db_now,
        )
        .update(
            {
                OneTimeToken.used_at: db_now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        return None

    return (
        db.query(OneTimeToken)
        .filter(
            OneTimeToken.token_hash == token_hash,
            OneTimeToken.purpose == purpose,
        )
        .first()
    )


def create_magic_link(db: Session, email: str, expires_in_minutes: int) -> tuple[str, datetime]:
    existing = get_user_by_email(db, email)
    raw, record = issue_one_time_token(
        db=db,
        email=email,
        purpose=ONE_TIME_PURPOSE_MAGIC_LINK,
        expires_in_minutes=expires_in_minutes,
        user_id=existing.id if existing else None,
    )
    return raw, as_utc(record.expires_at)


def _mark_verified(user: User) -> None:
    if not user.is_email_verified:
        user.is_email_verified = True
        user.email_verified_at = utcnow()


def verify_magic_link(db: Session, raw_token: str) -> MagicLinkResult | None:
    """Consume a magic link and resolve its user.

    An email nobody has registered yet gets a fresh account here, so this
    call can create a user.
    """
    token = consume_one_time_token(db, raw_token, ONE_TIME_PURPOSE_MAGIC_LINK)
    if not token:
        return None

    user = None
    if token.user_id is not None:
        user = db.query(User).filter(User.id == token.user_id).first()
    if user is None:
        user = get_user_by_email(db, token.email)

    if user is not None:
        _mark_verified(user)
        db.flush()
        return MagicLinkResult(user=user, is_new_user=False)

    # New magic-link accounts start verified, same as existing ones above
    user = User(
        email=token.email,
        display_name=display_name_from_email(token.email),
        is_email_verified=True,
        email_verified_at=utcnow(),
    )
    db.add(user)
    db.flush()
    logger.info("Created user id=%s from magic link sign-in", user.id)
    return MagicLinkResult(user=user, is_new_user=True)


def create_password_reset_token(db: Session, user: User, expires_in_minutes: int) -> str:
    raw, _ = issue_one_time_token(
        db=db,
        email=user.email,
        purpose=ONE_TIME_PURPOSE_PASSWORD_RESET,
        expires_in_minutes=expires_in_minutes,
        user_id=user.id,
    )
    return raw


def verify_password_reset_token(db: Session, raw_token: str) -> int | None:
    token = consume_one_time_token(db, raw_token, ONE_TIME_PURPOSE_PASSWORD_RESET)
    if not token:
        return None
    return token.user_id
