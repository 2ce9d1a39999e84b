import math
import os
from typing import Callable, Generator

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only-32chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["SMTP_HOST"] = ""
os.environ["SMTP_FROM_EMAIL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gather.main import app
from gather.models.database import Base, get_db
from gather.models.user import User, UserRole, UserStatus
from gather.services.rate_limit import RateLimiter, get_rate_limiter
from gather.services.security import get_password_hash

TEST_PASSWORD = "Testpass123!"

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeRedis:
    """In-memory counter store with a manual clock, for driving RateLimiter."""

    def __init__(self):
        self.now = 0.0
        self.values: dict[str, int] = {}
        self.expires: dict[str, float] = {}

    def _evict(self, key: str) -> None:
        deadline = self.expires.get(key)
        if deadline is not None and deadline <= self.now:
            self.values.pop(key, None)
            self.expires.pop(key, None)

    def incr(self, key: str) -> int:
        self._evict(key)
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key: str, seconds: int) -> bool:
        self.expires[key] = self.now + seconds
        return True

    def ttl(self, key: str) -> int:
        self._evict(key)
        if key not in self.values:
            return -2
        if key not in self.expires:
            return -1
        return math.ceil(self.expires[key] - self.now)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def close(self) -> None:
        pass


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def rate_limiter(fake_redis: FakeRedis) -> RateLimiter:
    return RateLimiter(fake_redis)


@pytest.fixture(scope="function")
def client(db: Session, rate_limiter: RateLimiter) -> Generator[TestClient, None, None]:
    """Create a test client with database and rate limiter overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    """Factory for persisted users."""

    def _make_user(
        email: str = "test@example.com",
        password: str | None = TEST_PASSWORD,
        role: UserRole = UserRole.REGULAR,
        status: UserStatus = UserStatus.ACTIVE,
        display_name: str = "Test User",
    ) -> User:
        user = User(
            email=email,
            display_name=display_name,
            hashed_password=get_password_hash(password) if password else None,
            role=role.value,
            status=status.value,
            is_email_verified=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def test_user(make_user) -> User:
    return make_user()


@pytest.fixture
def moderator_user(make_user) -> User:
    return make_user(email="mod@example.com", role=UserRole.MODERATOR, display_name="Mod")


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(email="admin@example.com", role=UserRole.ADMIN, display_name="Admin")


def signin(client: TestClient, email: str, password: str = TEST_PASSWORD):
    return client.post("/api/auth/signin", json={"email": email, "password": password})


@pytest.fixture
def auth_headers(client: TestClient, test_user: User) -> dict[str, str]:
    response = signin(client, test_user.email)
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}


@pytest.fixture
def moderator_headers(client: TestClient, moderator_user: User) -> dict[str, str]:
    response = signin(client, moderator_user.email)
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}


@pytest.fixture
def admin_headers(client: TestClient, admin_user: User) -> dict[str, str]:
    response = signin(client, admin_user.email)
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}
