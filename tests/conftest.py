import os

# Must be set before the application settings are imported
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from docbook.main import app
from docbook.core.database import get_db, get_redis, Base
from docbook.core.permissions import Principal
from docbook.core.security import UserRole, create_token_pair, get_password_hash
from docbook.models.user import User

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "TestPassword123"
_password_hash = None


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


class FakeRedis:
    """In-memory stand-in for the few Redis commands the rate limiter uses."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = str(value)
        return True

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])


@pytest.fixture(scope="function")
def test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client(test_db, fake_redis):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _hashed_password():
    global _password_hash
    if _password_hash is None:
        _password_hash = get_password_hash(TEST_PASSWORD)
    return _password_hash


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=UserRole.CUSTOMER, approved=False, name=None, **fields):
        counter["n"] += 1
        user = User(
            name=name or f"{role.value.title()} {counter['n']}",
            email=f"{role.value}{counter['n']}@example.com",
            password_hash=_hashed_password(),
            role=role,
            approved=approved,
            is_active=True,
            **fields
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user(UserRole.CUSTOMER, name="Alice")


@pytest.fixture
def other_customer(make_user):
    return make_user(UserRole.CUSTOMER, name="Bob")


@pytest.fixture
def doctor(make_user):
    return make_user(UserRole.DOCTOR, approved=True, name="Dr. Grey", specialty="Cardiology")


@pytest.fixture
def other_doctor(make_user):
    return make_user(UserRole.DOCTOR, approved=True, name="Dr. House", specialty="Diagnostics")


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, approved=True, name="Root")


def principal_for(user):
    return Principal(user_id=user.id, role=user.role)


def auth_headers(user):
    token = create_token_pair(user.id, user.email, user.role).access_token
    return {"Authorization": f"Bearer {token}"}
