import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from gather.api.auth import get_user_agent, password_rule_errors, set_refresh_cookie
from gather.dependencies import get_current_user
from gather.errors import INVALID_CREDENTIALS, SAME_PASSWORD, ApiError, validation_error
from gather.models import User, get_db
from gather.schemas import AccessTokenResponse, ChangePasswordRequest
from gather.services.rate_limit import get_client_ip
from gather.services.security import access_token_ttl_seconds, get_password_hash, verify_password
from gather.services.sessions import create_session, invalidate_all_sessions

router = APIRouter()
logger = logging.getLogger(__name__)


class PasswordChangedResponse(AccessTokenResponse):
    message: str


@router.patch(
    "/password",
    response_model=PasswordChangedResponse,
    summary="Change or set the account password",
)
def change_password(
    body: ChangePasswordRequest,
    request: Request,
    response: Response,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Accounts created by magic link may set a first password without
    `currentPassword`. Every existing session is deleted and the caller gets a
    fresh one.
    """
    if body.current_password and body.current_password == body.new_password:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            SAME_PASSWORD,
            "New password must be different from current password",
        )

    problems = password_rule_errors(body.new_password, "newPassword")
    if problems:
        raise validation_error(problems)

    if current_user.has_password:
        if not body.current_password:
            raise validation_error([{"field": "currentPassword", "message": "Current password is required"}])
        if not verify_password(body.current_password, current_user.hashed_password):
            raise ApiError(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS, "Current password is incorrect")

    current_user.hashed_password = get_password_hash(body.new_password)
    invalidate_all_sessions(db, current_user.id)
    user_agent = get_user_agent(request)
    tokens = create_session(
        db,
        current_user,
        {"userAgent": user_agent, "platform": "web"} if user_agent else None,
        get_client_ip(request),
    )
    db.commit()
    logger.info("Password changed for user id=%s", current_user.id)

    set_refresh_cookie(response, tokens.refresh_token)
    return PasswordChangedResponse(
        message="Password updated successfully",
        accessToken=tokens.access_token,
        expiresIn=access_token_ttl_seconds(),
    )
