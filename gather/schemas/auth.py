from pydantic import BaseModel, ConfigDict, EmailStr, Field

from gather.models import User


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    display_name: str | None = Field(default=None, alias="displayName", min_length=1, max_length=100)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{"email": "user@example.com", "password": "Str0ng!pass", "displayName": "Jane"}]
        },
        populate_by_name=True,
    )


class SigninRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class MagicLinkRequest(CamelModel):
    email: EmailStr


class MagicLinkVerifyRequest(CamelModel):
    token: str = Field(min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=1, max_length=128)


class ChangePasswordRequest(CamelModel):
    current_password: str | None = Field(default=None, alias="currentPassword", min_length=1)
    new_password: str = Field(alias="newPassword", min_length=1, max_length=128)


class MessageResponse(CamelModel):
    message: str


class UserResponse(CamelModel):
    id: int
    email: str
    display_name: str | None = Field(default=None, alias="displayName")
    role: str
    status: str
    email_verified: bool = Field(alias="emailVerified")
    has_password: bool = Field(alias="hasPassword")
    created_at: str = Field(alias="createdAt")


class MagicLinkUserResponse(UserResponse):
    is_new_user: bool = Field(alias="isNewUser")


class AuthResponse(CamelModel):
    user: UserResponse
    access_token: str = Field(alias="accessToken")
    expires_in: int = Field(alias="expiresIn")


class MagicLinkVerifyResponse(CamelModel):
    user: MagicLinkUserResponse
    access_token: str = Field(alias="accessToken")
    expires_in: int = Field(alias="expiresIn")


class AccessTokenResponse(CamelModel):
    access_token: str = Field(alias="accessToken")
    expires_in: int = Field(alias="expiresIn")


class MagicLinkSentResponse(CamelModel):
    message: str
    expires_in: int = Field(alias="expiresIn")


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        displayName=user.display_name,
        role=user.role,
        status=user.status,
        emailVerified=user.is_email_verified,
        hasPassword=user.has_password,
        createdAt=user.created_at.isoformat() if user.created_at else "",
    )
