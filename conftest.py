from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from ats.config import Settings
from ats.errors import CacheError
from ats.main import create_app
from ats.repository import AtsRepository
from fastapi import FastAPI
from fastapi.testclient import TestClient


class FakeCache:
    """In-memory CacheGateway. Flip ``fail`` to simulate a Redis outage."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False
        self.calls: list[tuple[str, str]] = []

    def _check(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if self.fail:
            raise CacheError(f"{op} {key}: connection refused")

    def get(self, key: str) -> str | None:
        self._check("get", key)
        return self.values.get(key)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._check("set", key)
        self.values[key] = value
        self.ttls[key] = ttl_seconds

    def set_if_absent(self, key: str, value: str) -> bool:
        self._check("set_if_absent", key)
        if key in self.values:
            return False
        self.values[key] = value
        return True

    def increment(self, key: str) -> int:
        self._check("increment", key)
        self.values[key] = str(int(self.values.get(key, "0")) + 1)
        return int(self.values[key])


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_path=str(tmp_path / "ats.sqlite3"),
        jwt_secret="test-access-secret",
        refresh_token_secret="test-refresh-secret",
        password_hash_rounds=4,
    )


@pytest.fixture
def repository(settings: Settings) -> Iterator[AtsRepository]:
    repo = AtsRepository(settings.database_path)
    repo.connect()
    yield repo
    repo.close()


@pytest.fixture
def app(settings: Settings, fake_cache: FakeCache) -> FastAPI:
    return create_app(settings=settings, cache_gateway=fake_cache)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    client.app.state.auth_service.create_admin(
        email="admin@example.com",
        name="Admin User",
        password="admin-password",
    )
    response = client.post(
        "/api/auth/login",
        json={"email": "admin@example.com", "password": "admin-password"},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def candidate_headers(client: TestClient) -> Callable[..., dict[str, str]]:
    def _signup_and_login(email: str, *, register_profile: bool = True) -> dict[str, str]:
        signup = client.post(
            "/api/auth/signup",
            json={"email": email, "name": email.split("@")[0], "password": "candidate-pw"},
        )
        assert signup.status_code == 201
        login = client.post(
            "/api/auth/login",
            json={"email": email, "password": "candidate-pw"},
        )
        assert login.status_code == 200
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
        if register_profile:
            profile = client.post(
                "/api/candidates/register",
                headers=headers,
                json={"full_name": f"Candidate {email}", "phone": "555-0100"},
            )
            assert profile.status_code == 201
        return headers

    return _signup_and_login
