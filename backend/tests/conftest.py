from __future__ import annotations

import base64
import os
from datetime import datetime, timedelta, timezone
from typing import Generator

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend.main import app
from backend.core.database import Base, build_engine, build_session_factory, get_db
from backend.core.security import create_access_token, get_password_hash
from backend.models.user import User
from backend.routers.deps import get_vision_history, get_vision_storage
from backend.services.vision_history import VisionHistoryService
from backend.services.vision_storage import VisionStorageService


class StepClock:
    """Deterministic clock: every call is `step` later than the previous one."""

    def __init__(
        self,
        start: datetime = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
        step: timedelta = timedelta(seconds=1),
    ) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


@pytest.fixture(scope="function")
def db_engine(tmp_path) -> Generator[Engine, None, None]:
    # File-backed so each session gets its own connection and its own transaction.
    engine = build_engine(f"sqlite:///{(tmp_path / 'history.db').as_posix()}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(db_engine)


@pytest.fixture(scope="function")
def test_db(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def storage(session_factory: sessionmaker[Session], clock: StepClock) -> VisionStorageService:
    return VisionStorageService(session_factory, clock=clock)


@pytest.fixture
def history(session_factory: sessionmaker[Session]) -> VisionHistoryService:
    return VisionHistoryService(session_factory, max_limit=100)


@pytest.fixture(scope="function")
def client(
    test_db: Session,
    storage: VisionStorageService,
    history: VisionHistoryService,
) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_db] = lambda: test_db
    app.dependency_overrides[get_vision_storage] = lambda: storage
    app.dependency_overrides[get_vision_history] = lambda: history

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def sample_image_bytes() -> bytes:
    return base64.b64decode(
        "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8DwHwAFBQIAX8jx0gAAAABJRU5ErkJggg=="
    )


@pytest.fixture
def sample_detections() -> list[dict]:
    return [
        {
            "label": "cup",
            "confidence": 0.91,
            "bounding_box": {"x_min": 10, "y_min": 20, "x_max": 110, "y_max": 140},
        },
        {
            "label": "table",
            "confidence": 0.78,
            "bounding_box": {"x_min": 0, "y_min": 90, "x_max": 640, "y_max": 480},
            "attributes": {"color": "brown"},
        },
    ]


def _make_user(db: Session, username: str, password: str) -> User:
    user = User(
        username=username,
        hashed_password=get_password_hash(password),
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user(test_db: Session) -> User:
    return _make_user(test_db, "testuser", "testpass123")


@pytest.fixture
def other_user(test_db: Session) -> User:
    return _make_user(test_db, "otheruser", "otherpass123")


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=test_user.id)}"}


@pytest.fixture
def other_headers(other_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=other_user.id)}"}
