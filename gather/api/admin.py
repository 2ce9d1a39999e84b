import logging
import math
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from gather.dependencies import require_moderator
from gather.errors import forbidden, not_found
from gather.models import User, UserRole, UserStatus, get_db
from gather.schemas import (
    AdminUserDetailResponse,
    AdminUserListResponse,
    AdminUserUpdateRequest,
    Pagination,
    user_to_response,
)
from gather.services.sessions import count_active_sessions, invalidate_all_sessions
from gather.services.tokens import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)

STAFF_ROLES = {UserRole.MODERATOR.value, UserRole.ADMIN.value}


def _detail_response(db: Session, user: User) -> AdminUserDetailResponse:
    return AdminUserDetailResponse(
        **user_to_response(user).model_dump(),
        activeSessions=count_active_sessions(db, user.id),
    )


@router.get(
    "/users",
    response_model=AdminUserListResponse,
    summary="List users",
)
def list_users(
    moderator: Annotated[User, Depends(require_moderator)],
    db: Annotated[Session, Depends(get_db)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    q: Annotated[str | None, Query(max_length=255)] = None,
    role: UserRole | None = None,
):
    """Newest first; `q` matches email or display name."""
    query = db.query(User)
    if q:
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(or_(User.email.ilike(pattern), User.display_name.ilike(pattern)))
    if role is not None:
        query = query.filter(User.role == role.value)

    total = query.count()
    users = (
        query.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return AdminUserListResponse(
        users=[user_to_response(user) for user in users],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            totalPages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.get(
    "/users/{user_id}",
    response_model=AdminUserDetailResponse,
    summary="Get user by ID",
)
def get_user(
    user_id: int,
    moderator: Annotated[User, Depends(require_moderator)],
    db: Annotated[Session, Depends(get_db)],
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise not_found("User not found")
    return _detail_response(db, user)


@router.patch(
    "/users/{user_id}",
    response_model=AdminUserDetailResponse,
    summary="Update a user's role, status or profile flags",
)
def update_user(
    user_id: int,
    body: AdminUserUpdateRequest,
    request: Request,
    moderator: Annotated[User, Depends(require_moderator)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Role changes need an admin token, and so does any change to a moderator or
    admin account. Nobody can suspend themselves. Suspending a user deletes all
    of their sessions, and their access tokens stop resolving to a user.
    """
    is_admin = request.state.token_claims.role == UserRole.ADMIN.value
    if body.role is not None and not is_admin:
        raise forbidden("Only admins can change user roles")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise not_found("User not found")
    if body.status == UserStatus.SUSPENDED and user.id == moderator.id:
        raise forbidden("You cannot suspend your own account")
    if not is_admin and user.role in STAFF_ROLES:
        raise forbidden("Only admins can manage moderator or admin accounts")

    changes: dict[str, object] = {}
    if body.role is not None and body.role.value != user.role:
        user.role = body.role.value
        changes["role"] = body.role.value
    if body.status is not None and body.status.value != user.status:
        user.status = body.status.value
        changes["status"] = body.status.value
        if body.status == UserStatus.SUSPENDED:
            invalidate_all_sessions(db, user.id)
    if body.email_verified is not None and body.email_verified != user.is_email_verified:
        user.is_email_verified = body.email_verified
        user.email_verified_at = utcnow() if body.email_verified else None
        changes["emailVerified"] = body.email_verified
    if body.display_name is not None:
        user.display_name = body.display_name
        changes["displayName"] = body.display_name

    db.commit()
    db.refresh(user)
    if changes:
        logger.info("User id=%s updated by id=%s: %s", user.id, moderator.id, changes)
    return _detail_response(db, user)
