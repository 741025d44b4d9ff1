"""
Shared fixtures: an in-memory SQLite database, a fakeredis backed user cache
and a TestClient over a freshly built application.
"""
import itertools
from datetime import datetime, timedelta

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.cache import UserCache
from app.database import Database
from app.main import create_app
from app.models import User
from app.services.connections import ConnectionService


@pytest.fixture
def database():
    """One in-memory SQLite database per test, shared by the test session and the app."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = Database(engine=engine)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def user_cache(redis_client):
    return UserCache(redis_client, ttl_seconds=60)


@pytest.fixture
def client(database, user_cache):
    with TestClient(create_app(database=database, user_cache=user_cache)) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    """Factory for users. Each new user is one minute newer than the previous one."""
    counter = itertools.count()
    start = datetime(2024, 1, 1, 12, 0, 0)

    def _make_user(first_name="Test", last_name="Rider", display_name=None,
                   is_verified=True, is_active=True, **fields):
        n = next(counter)
        user = User(
            first_name=first_name,
            last_name=last_name,
            display_name=display_name,
            email=fields.pop("email", f"rider{n}@ridealong.app"),
            is_verified=is_verified,
            is_active=is_active,
            created_at=start + timedelta(minutes=n),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def service(db):
    return ConnectionService(db)


@pytest.fixture
def befriend(service):
    """Make two users friends through the normal request/accept flow."""
    def _befriend(user_a, user_b):
        request = service.send_request(user_a.id, user_b.id)
        return service.respond(request.id, user_b.id, accept=True)
    return _befriend


@pytest.fixture
def auth():
    """Headers that authenticate as the given user through the X-User-ID fallback."""
    def _auth(user):
        return {"X-User-ID": user.id}
    return _auth
