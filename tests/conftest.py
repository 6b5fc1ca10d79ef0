"""
Pytest configuration and fixtures for backend tests.
"""
import os
import sys
from typing import Callable, Generator
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from app.core.database import Base, get_db  # noqa: E402
from app.core.security import AuthorizationContext, create_access_token  # noqa: E402
from app.models import Category, Product  # noqa: E402
from app.services.category_service import CategoryService  # noqa: E402
from app.services.category_store import CategoryStore  # noqa: E402
from main import app  # noqa: E402

# Use in-memory SQLite for tests; StaticPool keeps one connection so the
# TestClient worker thread sees the same database as the test body.
TEST_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> TestClient:
    """Create a test client with overridden database dependency."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def store(db_session: Session) -> CategoryStore:
    return CategoryStore(db_session)


@pytest.fixture
def service(store: CategoryStore) -> CategoryService:
    return CategoryService(store)


@pytest.fixture
def admin() -> AuthorizationContext:
    return AuthorizationContext.admin("tester")


@pytest.fixture
def anonymous() -> AuthorizationContext:
    return AuthorizationContext.anonymous()


@pytest.fixture
def make_category(db_session: Session) -> Callable[..., int]:
    """Insert a category row directly, bypassing the service validation."""
    def _make(
        name: str,
        parent_id: int | None = None,
        display_order: int = 0,
        is_visible: bool = True,
        category_id: int | None = None,
    ) -> int:
        kwargs = {
            "name": name,
            "slug": name.lower().replace(" ", "-"),
            "parentId": parent_id,
            "displayOrder": display_order,
            "isVisible": is_visible,
        }
        if category_id is not None:
            kwargs["id"] = category_id
        row = Category(**kwargs)
        db_session.add(row)
        db_session.commit()
        return row.id

    return _make


@pytest.fixture
def make_product(db_session: Session) -> Callable[..., int]:
    def _make(name: str, category_id: int | None) -> int:
        row = Product(name=name, categoryId=category_id)
        db_session.add(row)
        db_session.commit()
        return row.id

    return _make


@pytest.fixture
def admin_headers():
    """Bearer token carrying the admin capability."""
    token = create_access_token(data={"sub": "admin-1", "isAdmin": True})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    """Bearer token of a signed-in user without the admin capability."""
    token = create_access_token(data={"sub": "user-1", "isAdmin": False})
    return {"Authorization": f"Bearer {token}"}
