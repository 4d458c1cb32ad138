import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from main import app
from database import Base, get_db
from models import User
from auth import get_password_hash, create_access_token

# Import rate limiters to override them
from utils.rate_limiter import auth_rate_limiter, access_request_rate_limiter

# Setup in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def client(db_session):
    """Create a FastAPI TestClient with overridden database dependency."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_db, None)

def make_user(db_session, email, full_name=None, password="password123"):
    user = User(
        email=email,
        hashed_password=get_password_hash(password),
        full_name=full_name,
        is_active=True
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user

def headers_for(user):
    access_token = create_access_token(data={"sub": user.email})
    return {"Authorization": f"Bearer {access_token}"}

@pytest.fixture
def test_user(db_session):
    """Create a test user and return the user object."""
    return make_user(db_session, "test@example.com", "Test User")

@pytest.fixture
def auth_headers(test_user):
    """Return authorization headers for the test user."""
    return headers_for(test_user)

@pytest.fixture
def other_user(db_session):
    return make_user(db_session, "other@example.com", "Other User")

@pytest.fixture
def other_headers(other_user):
    return headers_for(other_user)

@pytest.fixture
def third_user(db_session):
    return make_user(db_session, "third@example.com", "Third User")

@pytest.fixture
def third_headers(third_user):
    return headers_for(third_user)

@pytest.fixture
def subscription_payload():
    """A valid subscription body renewing in 30 days."""
    def build(**overrides):
        payload = {
            "name": "Family Netflix",
            "service_name": "Netflix",
            "description": "Premium plan",
            "total_price": 5590,
            "currency": "brl",
            "max_members": 4,
            "is_public": True,
            "renewal_date": (datetime.utcnow() + timedelta(days=30)).isoformat(),
        }
        payload.update(overrides)
        return payload
    return build

@pytest.fixture
def subscription(client, auth_headers, subscription_payload):
    """A public subscription owned by test_user."""
    response = client.post("/subscriptions", headers=auth_headers, json=subscription_payload())
    assert response.status_code == 200
    return response.json()

@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Disable all rate limits during testing using dependency overrides."""
    async def mock_rate_limit():
        return True

    limiters = [auth_rate_limiter, access_request_rate_limiter]

    for limiter in limiters:
        app.dependency_overrides[limiter] = mock_rate_limit

    yield

    for limiter in limiters:
        app.dependency_overrides.pop(limiter, None)
