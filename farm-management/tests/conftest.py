import os

# Must be set before the app modules build their engine.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFICATIONS_ENABLED"] = "true"

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farm_service.app.database import Base, get_db
from farm_service.app.main import app
from farm_service.app.messaging.bus import NotificationDispatcher, get_notifier
from farm_service.app.models import Ferme, StockItem, User


class RecordingProducer:
    """Stands in for RabbitMQProducer and keeps what would have been sent."""

    def __init__(self):
        self.published = []

    def publish(self, routing_key, message):
        self.published.append((routing_key, message))

    def routing_keys(self):
        return [key for key, _ in self.published]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
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
def producer():
    return RecordingProducer()


@pytest.fixture
def notifier(producer):
    return NotificationDispatcher(producer=producer)


@pytest.fixture
def people(db):
    """Two farms with their admins, a plain user of farm A and a superadmin."""
    db.add_all([
        Ferme(id="A", nom="Ferme A", admins=["admin-a", "boss"]),
        Ferme(id="B", nom="Ferme B", admins=["admin-b", "boss"]),
        User(uid="admin-a", nom="Amina", email="amina@example.com", role="admin", ferme_id="A"),
        User(uid="user-a", nom="Youssef", role="user", ferme_id="A"),
        User(uid="admin-b", nom="Brahim", role="admin", ferme_id="B"),
        User(uid="boss", nom="Boss", role="superadmin", ferme_id=None),
    ])
    db.commit()
    return SimpleNamespace(
        admin_a=db.get(User, "admin-a"),
        user_a=db.get(User, "user-a"),
        admin_b=db.get(User, "admin-b"),
        boss=db.get(User, "boss"),
    )


@pytest.fixture
def gloves(db, people):
    stock = StockItem(item="Gloves", quantity=10, unit="pièces", category="Général", secteur_id="A", secteur_name="Ferme A")
    db.add(stock)
    db.commit()
    return stock


@pytest.fixture
def client(session_factory, notifier):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
