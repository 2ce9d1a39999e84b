from gather.models.database import Base, get_db
from gather.models.user import User, UserRole, UserStatus
from gather.models.auth_token import OneTimeToken, UserSession

__all__ = ["Base", "get_db", "User", "UserRole", "UserStatus", "OneTimeToken", "UserSession"]
