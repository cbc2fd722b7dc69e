"""Programmatic uvicorn entry point for KeyShield.

Reads host and port from the config (127.0.0.1:3000 by default) and starts
uvicorn with hardened defaults:

  --limit-concurrency 100  Max 100 concurrent connections; HTTP 503 when exceeded
  --backlog 50             OS connection queue depth
  --timeout-keep-alive 5   Short keep-alive narrows the Slow Loris window

Usage:
    python -m keyshield.run
    keyshield                  # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from keyshield.config import load_config

UVICORN_LIMIT_CONCURRENCY: int = 100
UVICORN_BACKLOG: int = 50
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start KeyShield.

    The config is validated here as well as in the lifespan so a bad secret
    stops the process before uvicorn binds the port.

    Raises:
        SystemExit: Propagated from load_config().
    """
    config = load_config()

    uvicorn.run(
        "keyshield.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
