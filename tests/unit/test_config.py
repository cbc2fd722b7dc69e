"""Unit tests for keyshield/config.py.

Covers:
  - missing file → defaults (secrets from env)
  - invalid YAML / missing version / unsupported version / bad environment
    → SystemExit(1)
  - env overrides, including invalid KEYSHIELD_PORT
  - secret validation: missing, placeholder and short secrets, bcrypt rounds
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from keyshield.config import (
    SUPPORTED_VERSIONS,
    Config,
    SecurityConfig,
    load_config,
    read_config,
    validate_config,
)

STRONG_PEPPER = "pepper-0123456789abcdef"
STRONG_SECRET = "session-0123456789abcdef"


def _write(tmp_path: Path, body: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(body))
    return str(path)


@pytest.fixture
def strong_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KEYSHIELD_KEY_PEPPER", STRONG_PEPPER)
    monkeypatch.setenv("KEYSHIELD_SESSION_SECRET", STRONG_SECRET)


# ─── Missing file ─────────────────────────────────────────────────────────────


class TestMissingConfigFile:
    def test_defaults(self, tmp_path: Path, strong_secrets: None) -> None:
        config = load_config(str(tmp_path / "absent.yaml"))
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 3000
        assert config.environment == "development"
        assert config.security.key_bcrypt_rounds == 12
        assert config.security.session_ttl_seconds == 7200
        assert config.cors.allow_origins == ["http://localhost:4200"]
        assert config.path is None

    def test_missing_secrets_refuse_start(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            load_config(str(tmp_path / "absent.yaml"))
        assert exc_info.value.code == 1

    def test_read_config_skips_secret_validation(self, tmp_path: Path) -> None:
        config = read_config(str(tmp_path / "absent.yaml"))
        assert config.security.key_pepper == ""


# ─── File parsing ─────────────────────────────────────────────────────────────


class TestConfigFile:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            f"""
            version: 1
            environment: production
            server:
              host: 0.0.0.0
              port: 8080
            store:
              path: {tmp_path}/ks.db
            security:
              key_pepper: {STRONG_PEPPER}
              session_secret: {STRONG_SECRET}
              session_ttl_seconds: 600
              key_bcrypt_rounds: 10
            admin:
              username: root
              password: very-long-admin-password
            cors:
              allow_origins: ["https://vault.example.com"]
            """,
        )
        config = load_config(path)

        assert config.path == path
        assert config.is_production
        assert config.server.port == 8080
        assert config.db_path == f"{tmp_path}/ks.db"
        assert config.security.session_ttl_seconds == 600
        assert config.security.key_bcrypt_rounds == 10
        assert config.security.password_bcrypt_rounds == 10
        assert config.admin.username == "root"
        assert config.cors.allow_origins == ["https://vault.example.com"]

    def test_version_only(self, tmp_path: Path, strong_secrets: None) -> None:
        config = load_config(_write(tmp_path, "version: 1\n"))
        assert config.server.port == 3000
        assert config.admin.username == "admin"

    @pytest.mark.parametrize(
        "body",
        [
            "server: {port: 1}\n",
            "",
            "version: 2\n",
            "version: 1\nenvironment: staging\n",
            "- just\n- a list\n",
            "version: 1\nserver: [unclosed\n",
        ],
        ids=["no-version", "empty", "unsupported", "bad-env", "not-mapping", "bad-yaml"],
    )
    def test_invalid_files_refuse_start(
        self, tmp_path: Path, strong_secrets: None, body: str
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            load_config(_write(tmp_path, body))
        assert exc_info.value.code == 1

    def test_keyshield_config_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, strong_secrets: None
    ) -> None:
        path = _write(tmp_path, "version: 1\nserver:\n  port: 9999\n")
        monkeypatch.setenv("KEYSHIELD_CONFIG", path)
        assert load_config().server.port == 9999

    def test_supported_versions(self) -> None:
        assert 1 in SUPPORTED_VERSIONS


# ─── Env overrides ────────────────────────────────────────────────────────────


class TestEnvOverrides:
    def test_all_overrides(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, strong_secrets: None
    ) -> None:
        monkeypatch.setenv("KEYSHIELD_PORT", "4000")
        monkeypatch.setenv("KEYSHIELD_HOST", "10.1.2.3")
        monkeypatch.setenv("KEYSHIELD_DB_PATH", str(tmp_path / "env.db"))
        monkeypatch.setenv("KEYSHIELD_ENV", "production")
        monkeypatch.setenv("KEYSHIELD_ADMIN_PASSWORD", "from-env-password")

        config = load_config(_write(tmp_path, "version: 1\nserver:\n  port: 1234\n"))

        assert config.server.port == 4000
        assert config.server.host == "10.1.2.3"
        assert config.db_path == str(tmp_path / "env.db")
        assert config.environment == "production"
        assert config.admin.password == "from-env-password"
        assert config.security.key_pepper == STRONG_PEPPER
        assert config.security.session_secret == STRONG_SECRET

    def test_invalid_port(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, strong_secrets: None
    ) -> None:
        monkeypatch.setenv("KEYSHIELD_PORT", "not-a-port")
        with pytest.raises(SystemExit):
            load_config(str(tmp_path / "absent.yaml"))

    def test_invalid_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, strong_secrets: None
    ) -> None:
        monkeypatch.setenv("KEYSHIELD_ENV", "qa")
        with pytest.raises(SystemExit):
            load_config(str(tmp_path / "absent.yaml"))


# ─── Secret validation ────────────────────────────────────────────────────────


def _config(environment: str = "development", **security: object) -> Config:
    values: dict = {"key_pepper": STRONG_PEPPER, "session_secret": STRONG_SECRET}
    values.update(security)
    return Config(environment=environment, security=SecurityConfig(**values))


class TestValidateConfig:
    def test_strong_config_passes(self) -> None:
        validate_config(_config("production"))

    @pytest.mark.parametrize("field", ["key_pepper", "session_secret"])
    def test_empty_secret(self, field: str) -> None:
        with pytest.raises(SystemExit):
            validate_config(_config(**{field: ""}))

    @pytest.mark.parametrize("value", ["pepper-change-me", "dev-secret-change-me", "short"])
    def test_weak_secret_refused_in_production(self, value: str) -> None:
        with pytest.raises(SystemExit):
            validate_config(_config("production", key_pepper=value))

    @pytest.mark.parametrize("value", ["pepper-change-me", "short"])
    def test_weak_secret_allowed_in_development(self, value: str) -> None:
        validate_config(_config("development", session_secret=value))

    @pytest.mark.parametrize("rounds", [3, 32, "12"])
    def test_bad_rounds(self, rounds: object) -> None:
        with pytest.raises(SystemExit):
            validate_config(_config(key_bcrypt_rounds=rounds))

    def test_bad_session_ttl(self) -> None:
        with pytest.raises(SystemExit):
            validate_config(_config(session_ttl_seconds=0))

    def test_repr_hides_secrets(self) -> None:
        text = repr(_config())
        assert STRONG_PEPPER not in text
        assert STRONG_SECRET not in text
