import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Cookie, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from gather.config import settings
from gather.dependencies import RateLimitByIp, get_current_user
from gather.errors import (
    ACCOUNT_SUSPENDED,
    INVALID_CREDENTIALS,
    INVALID_TOKEN,
    UNAUTHORIZED,
    USER_EXISTS,
    ApiError,
    conflict,
    error_body,
    unauthorized,
    validation_error,
)
from gather.models import User, get_db
from gather.schemas import (
    AccessTokenResponse,
    AuthResponse,
    ForgotPasswordRequest,
    MagicLinkRequest,
    MagicLinkSentResponse,
    MagicLinkUserResponse,
    MagicLinkVerifyRequest,
    MagicLinkVerifyResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SigninRequest,
    UserResponse,
    user_to_response,
)
from gather.services.email_service import send_magic_link_email, send_password_reset_email
from gather.services.rate_limit import (
    FORGOT_PASSWORD_PER_EMAIL,
    FORGOT_PASSWORD_PER_IP,
    MAGIC_LINK_PER_EMAIL,
    MAGIC_LINK_PER_IP,
    RateLimiter,
    enforce_rate_limit,
    get_client_ip,
    get_rate_limiter,
)
from gather.services.security import (
    access_token_ttl_seconds,
    get_password_hash,
    validate_password_strength,
    verify_password,
)
from gather.services.sessions import (
    create_session,
    invalidate_all_sessions,
    invalidate_session,
    refresh_session,
)
from gather.services.tokens import (
    create_magic_link,
    create_password_reset_token,
    display_name_from_email,
    get_user_by_email,
    normalize_email,
    utcnow,
    verify_magic_link,
    verify_password_reset_token,
)

router = APIRouter()
logger = logging.getLogger(__name__)

REFRESH_COOKIE_NAME = "refresh_token"
FORGOT_PASSWORD_MESSAGE = "If an account exists with that email, a password reset link has been sent."


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.JWT_REFRESH_EXPIRE_DAYS * 24 * 60 * 60,
        path="/",
        httponly=True,
        secure=settings.IS_PRODUCTION,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=REFRESH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.IS_PRODUCTION,
        samesite="strict",
    )


def get_user_agent(request: Request) -> str | None:
    user_agent = request.headers.get("user-agent")
    if not user_agent:
        return None
    return user_agent[:512]


def _device_info(request: Request) -> dict | None:
    user_agent = get_user_agent(request)
    if not user_agent:
        return None
    return {"userAgent": user_agent, "platform": "web"}


def password_rule_errors(password: str, field: str) -> list[dict[str, str]]:
    return [{"field": field, "message": message} for message in validate_password_strength(password)]


def _deliver_email(kind: str, send, *args) -> None:
    try:
        send(*args)
    except Exception:
        logger.exception("Failed to send %s email", kind)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register with email and password",
)
def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
):
    """Create a password account and sign it in."""
    problems = password_rule_errors(body.password, "password")
    if problems:
        raise validation_error(problems)

    email = normalize_email(body.email)
    if get_user_by_email(db, email):
        raise conflict("An account with this email already exists", USER_EXISTS)

    user = User(
        email=email,
        display_name=body.display_name or display_name_from_email(email),
        hashed_password=get_password_hash(body.password),
        is_email_verified=True,
        email_verified_at=utcnow(),
    )
    db.add(user)
    db.flush()

    tokens = create_session(db, user, _device_info(request), get_client_ip(request))
    db.commit()
    db.refresh(user)
    logger.info("Registered user id=%s", user.id)

    set_refresh_cookie(response, tokens.refresh_token)
    return AuthResponse(
        user=user_to_response(user),
        accessToken=tokens.access_token,
        expiresIn=access_token_ttl_seconds(),
    )


@router.post(
    "/signin",
    response_model=AuthResponse,
    summary="Sign in with email and password",
)
def signin(
    body: SigninRequest,
    request: Request,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
):
    """Return an access token and set the refresh cookie."""
    user = get_user_by_email(db, body.email)
    if not user or not verify_password(body.password, user.hashed_password):
        raise ApiError(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS, "Invalid email or password")
    if not user.is_active:
        raise ApiError(status.HTTP_403_FORBIDDEN, ACCOUNT_SUSPENDED, "Your account has been suspended")

    tokens = create_session(db, user, _device_info(request), get_client_ip(request))
    db.commit()

    set_refresh_cookie(response, tokens.refresh_token)
    return AuthResponse(
        user=user_to_response(user),
        accessToken=tokens.access_token,
        expiresIn=access_token_ttl_seconds(),
    )


@router.post(
    "/magic-link",
    response_model=MagicLinkSentResponse,
    summary="Email a one-time sign-in link",
    dependencies=[Depends(RateLimitByIp("magic-link", MAGIC_LINK_PER_IP))],
)
def request_magic_link(
    body: MagicLinkRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Annotated[Session, Depends(get_db)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
):
    """Always reports success for a well-formed email."""
    email = normalize_email(body.email)
    enforce_rate_limit(limiter, f"magic-link:{email}", MAGIC_LINK_PER_EMAIL, response)

    token, expires_at = create_magic_link(db, email, settings.MAGIC_LINK_EXPIRE_MINUTES)
    db.commit()

    background_tasks.add_task(
        _deliver_email, "magic link", send_magic_link_email, email, token, settings.MAGIC_LINK_EXPIRE_MINUTES
    )

    return MagicLinkSentResponse(
        message="Magic link sent",
        expiresIn=max(0, int((expires_at - utcnow()).total_seconds())),
    )


@router.post(
    "/magic-link/verify",
    response_model=MagicLinkVerifyResponse,
    summary="Exchange a magic link token for a session",
)
def verify_magic_link_token(
    body: MagicLinkVerifyRequest,
    request: Request,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
):
    """Sign in with a magic link; unseen emails get a new account."""
    result = verify_magic_link(db, body.token)
    if result is None:
        raise unauthorized("Invalid or expired magic link")

    user = result.user
    if not user.is_active:
        db.commit()
        raise ApiError(status.HTTP_403_FORBIDDEN, ACCOUNT_SUSPENDED, "Your account has been suspended")

    device_info = _device_info(request) or {"userAgent": "Unknown", "platform": "web"}
    tokens = create_session(db, user, device_info, get_client_ip(request))
    db.commit()
    db.refresh(user)

    set_refresh_cookie(response, tokens.refresh_token)
    return MagicLinkVerifyResponse(
        user=MagicLinkUserResponse(
            **user_to_response(user).model_dump(),
            isNewUser=result.is_new_user,
        ),
        accessToken=tokens.access_token,
        expiresIn=access_token_ttl_seconds(),
    )


@router.post(
    "/refresh",
    response_model=AccessTokenResponse,
    summary="Rotate the refresh cookie and issue a new access token",
)
def refresh(
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    refresh_token: Annotated[str | None, Cookie(alias=REFRESH_COOKIE_NAME)] = None,
):
    """Single use: the presented refresh token stops working once rotated."""
    if not refresh_token:
        raise unauthorized("No refresh token provided")

    result = refresh_session(db, refresh_token)
    db.commit()
    if result is None:
        failed = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=error_body(UNAUTHORIZED, "Invalid or expired refresh token"),
        )
        clear_refresh_cookie(failed)
        return failed

    set_refresh_cookie(response, result.tokens.refresh_token)
    return AccessTokenResponse(
        accessToken=result.tokens.access_token,
        expiresIn=access_token_ttl_seconds(),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Delete the current session",
)
def logout(
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    refresh_token: Annotated[str | None, Cookie(alias=REFRESH_COOKIE_NAME)] = None,
):
    """Idempotent: succeeds whether or not the session still exists."""
    if refresh_token:
        invalidate_session(db, refresh_token)
        db.commit()
    clear_refresh_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/logout-all",
    response_model=MessageResponse,
    summary="Sign out of every device",
)
def logout_all(
    response: Response,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Delete every session of the caller. Access tokens already issued run out on their own."""
    invalidate_all_sessions(db, current_user.id)
    db.commit()
    clear_refresh_cookie(response)
    return MessageResponse(message="Signed out of all sessions")


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset email",
    dependencies=[Depends(RateLimitByIp("forgot-password", FORGOT_PASSWORD_PER_IP))],
)
def forgot_password(
    body: ForgotPasswordRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Annotated[Session, Depends(get_db)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
):
    """Same response whether or not the account exists; the email goes out after the response."""
    email = normalize_email(body.email)
    enforce_rate_limit(limiter, f"forgot-password:{email}", FORGOT_PASSWORD_PER_EMAIL, response)

    user = get_user_by_email(db, email)
    if not user or not user.has_password:
        logger.info("Password reset requested for unknown or passwordless account")
        return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

    reset_token = create_password_reset_token(db, user, settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES)
    db.commit()

    background_tasks.add_task(
        _deliver_email, "password reset", send_password_reset_email, user.email, user.display_name, reset_token
    )

    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Set a new password with a reset token",
)
def reset_password(
    body: ResetPasswordRequest,
    db: Annotated[Session, Depends(get_db)],
):
    """Reset the password and delete every session of the user."""
    problems = password_rule_errors(body.password, "password")
    if problems:
        raise validation_error(problems)

    user_id = verify_password_reset_token(db, body.token)
    user = db.query(User).filter(User.id == user_id).first() if user_id is not None else None
    if user is None:
        db.commit()
        raise ApiError(status.HTTP_400_BAD_REQUEST, INVALID_TOKEN, "Invalid or expired reset token")

    user.hashed_password = get_password_hash(body.password)
    invalidate_all_sessions(db, user.id)
    db.commit()
    logger.info("Password reset for user id=%s", user.id)
    return MessageResponse(
        message="Password has been reset successfully. Please sign in with your new password."
    )


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get the authenticated user",
)
def me(
    current_user: Annotated[User, Depends(get_current_user)],
):
    return user_to_response(current_user)
