"""Config loading for KeyShield.

Reads `.keyshield/config.yaml` (or `~/.keyshield/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or unusable
secrets. If no config file is found, defaults are used and the secrets must
come from the environment.

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. KEYSHIELD_CONFIG environment variable (if set)
  3. `.keyshield/config.yaml` (working directory — for development)
  4. `~/.keyshield/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file):
  KEYSHIELD_PORT            → server.port
  KEYSHIELD_HOST            → server.host
  KEYSHIELD_DB_PATH         → store.path
  KEYSHIELD_ENV             → environment
  KEYSHIELD_KEY_PEPPER      → security.key_pepper
  KEYSHIELD_SESSION_SECRET  → security.session_secret
  KEYSHIELD_ADMIN_PASSWORD  → admin.password
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from keyshield.constants import (
    DEFAULT_KEY_BCRYPT_ROUNDS,
    DEFAULT_PASSWORD_BCRYPT_ROUNDS,
    MAX_BCRYPT_ROUNDS,
    MIN_BCRYPT_ROUNDS,
    SESSION_TTL_SECONDS,
)
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1
SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

ENV_DEVELOPMENT = "development"
ENV_PRODUCTION = "production"
VALID_ENVIRONMENTS: frozenset[str] = frozenset({ENV_DEVELOPMENT, ENV_PRODUCTION})

# Values shipped in sample configs. Refused in production.
PLACEHOLDER_SECRETS: frozenset[str] = frozenset(
    {"pepper-change-me", "dev-secret-change-me", "change-me"}
)
MIN_SECRET_LENGTH = 16

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"

DEFAULT_CONFIG_PATHS = [
    ".keyshield/config.yaml",
    os.path.expanduser("~/.keyshield/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """HTTP binding."""

    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class StoreConfig:
    path: str = "~/.keyshield/keyshield.db"


@dataclass
class SecurityConfig:
    """Secrets and hashing costs.

    key_pepper:      HMAC key for API key fingerprints. Changing it orphans
                     every issued key.
    session_secret:  HS256 signing key for operator sessions.
    """

    key_pepper: str = ""
    session_secret: str = ""
    session_ttl_seconds: int = SESSION_TTL_SECONDS
    key_bcrypt_rounds: int = DEFAULT_KEY_BCRYPT_ROUNDS
    password_bcrypt_rounds: int = DEFAULT_PASSWORD_BCRYPT_ROUNDS

    def __repr__(self) -> str:
        return (
            f"SecurityConfig(session_ttl_seconds={self.session_ttl_seconds}, "
            f"key_bcrypt_rounds={self.key_bcrypt_rounds}, "
            f"password_bcrypt_rounds={self.password_bcrypt_rounds})"
        )


@dataclass
class AdminSeedConfig:
    """Built-in operator inserted on first startup when absent."""

    username: str = DEFAULT_ADMIN_USERNAME
    password: str = DEFAULT_ADMIN_PASSWORD

    def __repr__(self) -> str:
        return f"AdminSeedConfig(username={self.username!r})"


@dataclass
class CorsConfig:
    allow_origins: list[str] = field(default_factory=lambda: ["http://localhost:4200"])


@dataclass
class Config:
    """Root configuration object populated from .keyshield/config.yaml."""

    version: int = SUPPORTED_CONFIG_VERSION
    environment: str = ENV_DEVELOPMENT
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    admin: AdminSeedConfig = field(default_factory=AdminSeedConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    path: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == ENV_PRODUCTION

    @property
    def db_path(self) -> str:
        return os.path.expanduser(self.store.path)

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            SystemExit(1): On an invalid environment value.
        """
        environment = raw.get("environment", ENV_DEVELOPMENT)
        _check_environment(environment, source=path or "config")

        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 3000),
        )

        store_raw = raw.get("store") or {}
        store = StoreConfig(path=store_raw.get("path", "~/.keyshield/keyshield.db"))

        security_raw = raw.get("security") or {}
        security = SecurityConfig(
            key_pepper=str(security_raw.get("key_pepper") or ""),
            session_secret=str(security_raw.get("session_secret") or ""),
            session_ttl_seconds=security_raw.get("session_ttl_seconds", SESSION_TTL_SECONDS),
            key_bcrypt_rounds=security_raw.get("key_bcrypt_rounds", DEFAULT_KEY_BCRYPT_ROUNDS),
            password_bcrypt_rounds=security_raw.get(
                "password_bcrypt_rounds", DEFAULT_PASSWORD_BCRYPT_ROUNDS
            ),
        )

        admin_raw = raw.get("admin") or {}
        admin = AdminSeedConfig(
            username=admin_raw.get("username", DEFAULT_ADMIN_USERNAME),
            password=str(admin_raw.get("password", DEFAULT_ADMIN_PASSWORD)),
        )

        cors_raw = raw.get("cors") or {}
        cors = CorsConfig(
            allow_origins=list(
                cors_raw.get(
                    "allow_origins",
                    CorsConfig.__dataclass_fields__["allow_origins"].default_factory(),  # type: ignore[misc]
                )
            )
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            environment=environment,
            server=server,
            store=store,
            security=security,
            admin=admin,
            cors=cors,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def _fail(msg: str) -> NoReturn:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _check_environment(environment: object, source: str) -> None:
    if environment not in VALID_ENVIRONMENTS:
        _fail(
            f"CONFIG ERROR: Invalid environment '{environment}' in {source}. "
            f"Supported values: {sorted(VALID_ENVIRONMENTS)}."
        )


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate KeyShield configuration.

    If no file is found at any search path, defaults are used (not an error).
    If a file is found but invalid, writes the error to stderr and raises
    SystemExit(1). Environment overrides are applied in both cases, then the
    secrets are validated.

    Raises:
        SystemExit(1): On YAML parse error, missing or unsupported ``version``,
                       invalid ``environment``, invalid ``KEYSHIELD_PORT``,
                       or unusable secrets (see validate_config()).
    """
    config = read_config(config_path)
    validate_config(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: KeyShield is configured to bind on 0.0.0.0 (all interfaces). "
            "Put it behind a TLS-terminating proxy or bind to 127.0.0.1."
        )

    logger.info(
        "config_loaded",
        path=config.path,
        version=config.version,
        environment=config.environment,
    )
    return config


def read_config(config_path: Optional[str] = None) -> Config:
    """Locate, parse and apply env overrides, without validating secrets.

    Used where only non-secret settings are needed (CORS origins at app
    construction, host/port in run.py).
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("KEYSHIELD_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.debug("config_file_not_found", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "KeyShield refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply KEYSHIELD_* environment variables to a Config in-place.

    Raises:
        SystemExit(1): If KEYSHIELD_PORT is not an integer or KEYSHIELD_ENV
                       is not a supported environment.
    """
    env_port = os.environ.get("KEYSHIELD_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(
                "CONFIG ERROR: KEYSHIELD_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )

    env_host = os.environ.get("KEYSHIELD_HOST")
    if env_host:
        config.server.host = env_host

    env_db = os.environ.get("KEYSHIELD_DB_PATH")
    if env_db:
        config.store.path = env_db

    env_environment = os.environ.get("KEYSHIELD_ENV")
    if env_environment:
        _check_environment(env_environment, source="KEYSHIELD_ENV")
        config.environment = env_environment

    env_pepper = os.environ.get("KEYSHIELD_KEY_PEPPER")
    if env_pepper:
        config.security.key_pepper = env_pepper

    env_secret = os.environ.get("KEYSHIELD_SESSION_SECRET")
    if env_secret:
        config.security.session_secret = env_secret

    env_admin_password = os.environ.get("KEYSHIELD_ADMIN_PASSWORD")
    if env_admin_password:
        config.admin.password = env_admin_password


def validate_config(config: Config) -> None:
    """Refuse to start with secrets or costs that cannot be used safely.

    Raises:
        SystemExit(1): Empty pepper or session secret; bcrypt rounds outside
                       4..31; placeholder or short secrets in production.
    """
    security = config.security
    for name, value in (
        ("security.key_pepper", security.key_pepper),
        ("security.session_secret", security.session_secret),
    ):
        if not value:
            _fail(
                f"CONFIG ERROR: {name} is not set. Set it in the config file or via "
                f"KEYSHIELD_{name.split('.')[1].upper()}."
            )
        weak = value in PLACEHOLDER_SECRETS or len(value) < MIN_SECRET_LENGTH
        if weak and config.is_production:
            _fail(
                f"CONFIG ERROR: {name} is a placeholder or shorter than "
                f"{MIN_SECRET_LENGTH} characters. Refusing to start in production."
            )
        if weak:
            logger.warning("weak_secret_configured", setting=name, environment=config.environment)

    for name, rounds in (
        ("security.key_bcrypt_rounds", security.key_bcrypt_rounds),
        ("security.password_bcrypt_rounds", security.password_bcrypt_rounds),
    ):
        if not isinstance(rounds, int) or not MIN_BCRYPT_ROUNDS <= rounds <= MAX_BCRYPT_ROUNDS:
            _fail(
                f"CONFIG ERROR: {name} must be an integer between "
                f"{MIN_BCRYPT_ROUNDS} and {MAX_BCRYPT_ROUNDS}, got {rounds!r}."
            )

    if security.session_ttl_seconds <= 0:
        _fail("CONFIG ERROR: security.session_ttl_seconds must be positive.")

    if config.is_production and config.admin.password == DEFAULT_ADMIN_PASSWORD:
        logger.warning(
            "SECURITY WARNING: the built-in admin still uses the default password. "
            "Set KEYSHIELD_ADMIN_PASSWORD before the first start."
        )
