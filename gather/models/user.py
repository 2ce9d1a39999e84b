from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from gather.models.database import Base


class UserRole(str, Enum):
    REGULAR = "regular"
    MODERATOR = "moderator"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)  # always lower-cased
    display_name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=True)  # null for magic-link-only accounts
    role = Column(String(16), nullable=False, default=UserRole.REGULAR.value)
    status = Column(String(16), nullable=False, default=UserStatus.ACTIVE.value)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    sessions = relationship("UserSession", back_populates="user", passive_deletes=True)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def has_password(self) -> bool:
        return bool(self.hashed_password)
