import os
from datetime import datetime, time, timedelta
from typing import Generator
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.database import Base, SessionLocal, engine  # noqa: E402
from common.dependencies import get_notifier  # noqa: E402
from common.models import RoleEnum  # noqa: E402
from common.repositories import available_days_cache  # noqa: E402
from services.meetings.app import app as meetings_app  # noqa: E402
from services.organizations.app import app as organizations_app  # noqa: E402
from services.rooms.app import app as rooms_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

EASTERN = ZoneInfo("America/New_York")
PASSWORD = "Passw0rd!"


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    def notify(self, organization_id, event) -> None:
        self.events.append((organization_id, event))

    def kinds(self):
        return [event.kind for _, event in self.events]


def next_local(weekday: int, hour: int, minute: int = 0, weeks_ahead: int = 1) -> datetime:
    """An Eastern-time datetime on ``weekday`` (Sunday=0) at least a week out."""

    today = datetime.now(EASTERN).date()
    days = (weekday - (today.weekday() + 1) % 7) % 7 + 7 * weeks_ahead
    return datetime.combine(today + timedelta(days=days), time(hour, minute), tzinfo=EASTERN)


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    available_days_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def notifier() -> Generator[RecordingNotifier, None, None]:
    recorder = RecordingNotifier()
    for service in (rooms_app, meetings_app):
        service.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    for service in (rooms_app, meetings_app):
        service.dependency_overrides.pop(get_notifier, None)


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def organizations_client() -> Generator[TestClient, None, None]:
    with TestClient(organizations_app) as client:
        yield client


@pytest.fixture()
def rooms_client(notifier) -> Generator[TestClient, None, None]:
    with TestClient(rooms_app) as client:
        yield client


@pytest.fixture()
def meetings_client(notifier) -> Generator[TestClient, None, None]:
    with TestClient(meetings_app) as client:
        yield client


def auth_header(users_client, username: str, password: str = PASSWORD) -> dict[str, str]:
    response = users_client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def register(users_client, username: str, role: RoleEnum = RoleEnum.REGULAR) -> dict[str, str]:
    users_client.post(
        "/users/register",
        json={
            "name": username.title(),
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
            "role": role.value,
        },
    )
    return auth_header(users_client, username)


@pytest.fixture()
def admin_headers(users_client) -> dict[str, str]:
    return register(users_client, "admin", RoleEnum.ADMIN)


@pytest.fixture()
def make_organization(users_client, organizations_client, admin_headers):
    """Create an active organization owned by a fresh user; returns (id, creator headers)."""

    def factory(name: str, state: str = "UNLOCKED"):
        headers = register(users_client, f"{name}-lead")
        org = organizations_client.post(
            "/organizations", json={"name": name.title(), "url": name}, headers=headers
        ).json()
        organizations_client.put(f"/organizations/{org['id']}/state", json={"state": state}, headers=admin_headers)
        return org["id"], headers

    return factory


@pytest.fixture()
def make_room(rooms_client, admin_headers):
    def factory(name: str, available_days=None, floor: int = 1) -> int:
        payload = {"name": name, "floor": floor}
        if available_days is not None:
            payload["available_days"] = available_days
        response = rooms_client.post("/rooms", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["id"]

    return factory


@pytest.fixture()
def register_user(users_client):
    def factory(username: str, role: RoleEnum = RoleEnum.REGULAR) -> dict[str, str]:
        return register(users_client, username, role)

    return factory


@pytest.fixture()
def slot():
    """Build ``(start, end)`` ISO strings for an Eastern-time window on a given weekday."""

    def factory(weekday: int, hour: int, minutes: int = 60, start_minute: int = 0, weeks_ahead: int = 1):
        start = next_local(weekday, hour, start_minute, weeks_ahead)
        return start.isoformat(), (start + timedelta(minutes=minutes)).isoformat()

    return factory
