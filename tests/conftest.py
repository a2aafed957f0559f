import os
import itertools

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "true")

from core.context import RequestContext
from core.db import DB, bind, build_engine
from core.models import Base
from core.services import relationships as relationship_service
from core.services import users as user_service


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "bondledger.sqlite"
    engine = build_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    bind(engine)
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(server_db):
    counter = itertools.count(1)

    def _make(first_name: str = "Test", last_name: str = "User") -> dict:
        n = next(counter)
        result = user_service.register_user(
            username=f"user_{n}",
            email=f"user{n}@example.com",
            first_name=first_name,
            last_name=last_name,
        )
        return result["user"]

    return _make


@pytest.fixture
def as_user():
    return RequestContext.for_user


@pytest.fixture
def active_pair(make_user):
    """Two users with an accepted relationship: (alice_id, bob_id, relationship_id)."""
    alice = make_user("Alice", "Archer")
    bob = make_user("Bob", "Baker")
    proposed = relationship_service.propose_relationship(
        partner_email=bob["email"],
        title="Best Friends",
        type="best_friend",
        context=RequestContext.for_user(alice["id"]),
    )
    relationship_id = proposed["relationship"]["id"]
    relationship_service.accept_relationship(relationship_id, context=RequestContext.for_user(bob["id"]))
    return alice["id"], bob["id"], relationship_id
