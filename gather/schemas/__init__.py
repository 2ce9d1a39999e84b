from gather.schemas.admin import (
    AdminUserDetailResponse,
    AdminUserListResponse,
    AdminUserUpdateRequest,
    Pagination,
)
from gather.schemas.auth import (
    AccessTokenResponse,
    AuthResponse,
    ChangePasswordRequest,
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

__all__ = [
    "AccessTokenResponse",
    "AdminUserDetailResponse",
    "AdminUserListResponse",
    "AdminUserUpdateRequest",
    "AuthResponse",
    "ChangePasswordRequest",
    "ForgotPasswordRequest",
    "MagicLinkRequest",
    "MagicLinkSentResponse",
    "MagicLinkUserResponse",
    "MagicLinkVerifyRequest",
    "MagicLinkVerifyResponse",
    "MessageResponse",
    "Pagination",
    "RegisterRequest",
    "ResetPasswordRequest",
    "SigninRequest",
    "UserResponse",
    "user_to_response",
]
