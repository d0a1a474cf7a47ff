from __future__ import annotations

import os

# Must be set before `database` is imported: the module builds its engine at import time.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("APP_URL", None)

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers tables on Base.metadata)
from core.game_manager import GameManager
from database import Base, get_db
from models import Game, Player
from services.notification_service import DeliveryStatus, NotificationGateway, get_notification_gateway


class RecordingGateway(NotificationGateway):
    """Gateway double that remembers every notification it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, object, dict]] = []

    def notify(self, recipient, event_kind, payload):
        self.sent.append((recipient, event_kind, payload))
        return DeliveryStatus.DELIVERED

    def kinds(self) -> list[str]:
        return [kind.value for _, kind, _ in self.sent]


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture()
def client(session_factory, gateway) -> Generator[TestClient, None, None]:
    from main import app

    def _override_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_notification_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


NAMES = ["Alice", "Bob", "Carol", "Dave", "Erin", "Frank", "Grace", "Heidi", "Ivan", "Judy"]


@pytest.fixture()
def make_game(db) -> Callable[..., tuple[Game, list[Player]]]:
    """Create a waiting game with `n` players named Alice, Bob, ... in join order."""

    def _make(n: int, tasks: list[str] | None = None, name: str = "Birthday Party") -> tuple[Game, list[Player]]:
        game = GameManager.create_game(db, name, tasks or [])
        players = [
            GameManager.add_player(db, game.id, NAMES[i], f"04123456{i:02d}")
            for i in range(n)
        ]
        return game, players

    return _make
