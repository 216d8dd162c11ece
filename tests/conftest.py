"""
Shared fixtures.

Every test gets its own in-memory SQLite database. Service-level tests use
the stores and services directly; API tests go through the FastAPI app with
``get_db`` and the session registry swapped for the test instances.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import get_session_registry
from database import Base, get_db
from security import PasswordHasher, SessionAuthenticator, SessionRegistry
from services import ExpenseAccessService, IdentityResolver, UserService
from stores import SqlCredentialStore, SqlExpenseStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def hasher():
    return PasswordHasher()


@pytest.fixture
def credentials(db):
    return SqlCredentialStore(db)


@pytest.fixture
def users(credentials, hasher):
    return UserService(credentials, hasher)


@pytest.fixture
def expenses(db, credentials):
    return ExpenseAccessService(SqlExpenseStore(db), IdentityResolver(credentials))


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def authenticator(credentials, hasher, registry):
    return SessionAuthenticator(credentials, hasher, registry, secret_key="test-secret")


@pytest.fixture
def alice(users):
    return users.register("alice", "pw1", "a@x.com")


@pytest.fixture
def bob(users):
    return users.register("bob", "pw2", "b@x.com")


@pytest.fixture
def client(session_factory, registry):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def coffee(**overrides):
    fields = {
        "description": "Coffee",
        "amount": "3.50",
        "date": "2024-01-01",
        "category": "Food",
    }
    fields.update(overrides)
    return fields
