from pydantic import Field

from gather.models import UserRole, UserStatus
from gather.schemas.auth import CamelModel, UserResponse


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")


class AdminUserListResponse(CamelModel):
    users: list[UserResponse]
    pagination: Pagination


class AdminUserDetailResponse(UserResponse):
    active_sessions: int = Field(alias="activeSessions")


class AdminUserUpdateRequest(CamelModel):
    role: UserRole | None = None
    status: UserStatus | None = None
    email_verified: bool | None = Field(default=None, alias="emailVerified")
    display_name: str | None = Field(default=None, alias="displayName", min_length=1, max_length=255)

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [{"role": "moderator"}, {"status": "suspended"}],
        },
    }
