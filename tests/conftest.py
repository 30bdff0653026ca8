"""Pytest configuration and shared fixtures."""

import os

# Must be set before procureflow.db.session builds its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal
from typing import Callable, Dict, List
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from procureflow.core.config import get_settings
from procureflow.core.roles import UserRole
from procureflow.db.base import Base
from procureflow.db.models import User
import procureflow.db.models  # noqa: F401

from tests.factories import create_org_settings, create_organisation, create_user


@pytest.fixture()
def engine():
    """In-memory SQLite engine shared across threads for one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    """Database session bound to the test engine."""
    TestingSession = sessionmaker(bind=engine, autoflush=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Organisation and users
# ---------------------------------------------------------------------------


@pytest.fixture()
def org(db_session):
    """Threshold-routed organisation: auto-approve below 5000, CEO above 15000."""
    organisation = create_organisation(db_session, name="Harbour Lettings", accounts_email="accounts@harbour.example")
    create_org_settings(
        db_session,
        org=organisation,
        auto_approve_below_amount=Decimal("5000"),
        require_ceo_above_amount=Decimal("15000"),
    )
    db_session.commit()
    return organisation


@pytest.fixture()
def pm(db_session, org) -> User:
    user = create_user(db_session, org=org, role=UserRole.PROPERTY_MANAGER, name="Pat Manager")
    db_session.commit()
    return user


@pytest.fixture()
def md(db_session, org) -> User:
    user = create_user(db_session, org=org, role=UserRole.MD, name="Morgan Director")
    db_session.commit()
    return user


@pytest.fixture()
def ceo(db_session, org) -> User:
    user = create_user(db_session, org=org, role=UserRole.CEO, name="Casey Chief")
    db_session.commit()
    return user


@pytest.fixture()
def admin(db_session, org) -> User:
    user = create_user(db_session, org=org, role=UserRole.ADMIN, name="Alex Admin")
    db_session.commit()
    return user


@pytest.fixture()
def accounts(db_session, org) -> User:
    user = create_user(db_session, org=org, role=UserRole.ACCOUNTS, name="Avery Accounts")
    db_session.commit()
    return user


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture()
def committed_messages() -> List[List[UUID]]:
    """Outbox id batches handed to the commit hook during a test."""
    return []


@pytest.fixture()
def client(db_session, committed_messages):
    """TestClient sharing the test session, with side-effect dispatch captured."""
    from procureflow.api.deps import get_commit_hook, get_db
    from procureflow.api.main import app

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_commit_hook] = lambda: committed_messages.append
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Build bearer headers for a user, signed like the auth provider's tokens."""
    settings = get_settings()

    def _headers(user: User) -> Dict[str, str]:
        token = jwt.encode({"sub": str(user.id)}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        return {"Authorization": f"Bearer {token}"}

    return _headers
