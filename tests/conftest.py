"""Root test configuration for KeyShield.

Every test gets a low-cost Config: bcrypt rounds 4 and a database under
tmp_path. Components are wired the same way the lifespan wires them.

The ``app`` fixture runs the real lifespan with ``keyshield.main.load_config``
patched to return the test Config, so HTTP tests exercise the same startup
path as production.
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from keyshield.audit.sink import AuditSink
from keyshield.auth.gate import AuthenticationGate
from keyshield.auth.hashing import KeyHasher
from keyshield.auth.sessions import SessionManager
from keyshield.config import AdminSeedConfig, Config, SecurityConfig, StoreConfig
from keyshield.keys.lifecycle import KeyLifecycleManager
from keyshield.store.sqlite_store import SQLiteCredentialStore

TEST_PEPPER = "test-pepper-0123456789abcdef"
TEST_SESSION_SECRET = "test-session-secret-0123456789abcdef"
TEST_ADMIN_USERNAME = "admin"
TEST_ADMIN_PASSWORD = "admin123"
TEST_BCRYPT_ROUNDS = 4


@pytest.fixture(autouse=True)
def isolate_config_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep a developer's KEYSHIELD_* variables and config files out of tests."""
    for name in (
        "KEYSHIELD_CONFIG",
        "KEYSHIELD_PORT",
        "KEYSHIELD_HOST",
        "KEYSHIELD_DB_PATH",
        "KEYSHIELD_ENV",
        "KEYSHIELD_KEY_PEPPER",
        "KEYSHIELD_SESSION_SECRET",
        "KEYSHIELD_ADMIN_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "keyshield.config.DEFAULT_CONFIG_PATHS",
        [str(tmp_path / "no-such-dir" / "config.yaml")],
    )


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        store=StoreConfig(path=str(tmp_path / "keyshield.db")),
        security=SecurityConfig(
            key_pepper=TEST_PEPPER,
            session_secret=TEST_SESSION_SECRET,
            key_bcrypt_rounds=TEST_BCRYPT_ROUNDS,
            password_bcrypt_rounds=TEST_BCRYPT_ROUNDS,
        ),
        admin=AdminSeedConfig(username=TEST_ADMIN_USERNAME, password=TEST_ADMIN_PASSWORD),
    )


@pytest.fixture
async def store(config: Config) -> AsyncIterator[SQLiteCredentialStore]:
    s = SQLiteCredentialStore(config.db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def hasher() -> KeyHasher:
    return KeyHasher(TEST_PEPPER, rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def sessions() -> SessionManager:
    return SessionManager(TEST_SESSION_SECRET, ttl_seconds=3600)


@pytest.fixture
def gate(
    store: SQLiteCredentialStore, hasher: KeyHasher, sessions: SessionManager
) -> AuthenticationGate:
    return AuthenticationGate(store, hasher, sessions, password_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def audit(store: SQLiteCredentialStore) -> AuditSink:
    return AuditSink(store)


@pytest.fixture
def lifecycle(
    store: SQLiteCredentialStore,
    hasher: KeyHasher,
    gate: AuthenticationGate,
    audit: AuditSink,
) -> KeyLifecycleManager:
    return KeyLifecycleManager(store, hasher, gate, audit)


@pytest.fixture
async def app(config: Config, monkeypatch: pytest.MonkeyPatch) -> AsyncIterator[FastAPI]:
    """A started application (lifespan entered, ready=True)."""
    from keyshield.main import create_app, lifespan

    monkeypatch.setattr("keyshield.main.load_config", lambda: config)
    application = create_app()
    async with lifespan(application):
        yield application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def auth_headers(client: AsyncClient) -> dict[str, str]:
    response = await client.post(
        "/auth/login",
        json={"username": TEST_ADMIN_USERNAME, "password": TEST_ADMIN_PASSWORD},
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}
