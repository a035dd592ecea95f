"""Programmatic uvicorn entry point for FormGuard.

Reads host and port from the loaded config (127.0.0.1:8788 by default) and
starts uvicorn with hardened connection limits.

Usage:
    python -m formguard.run     # reads .formguard/config.yaml
    formguard                   # via pyproject.toml [project.scripts]

Configuring dashboard.host: "0.0.0.0" is allowed but logs a SECURITY WARNING
at startup (see formguard/config.py:load_config).
"""

from __future__ import annotations

import uvicorn

from formguard.config import load_config

# Maximum number of concurrent connections accepted by uvicorn.
# New connections receive HTTP 503 when this limit is exceeded.
UVICORN_LIMIT_CONCURRENCY: int = 50

# OS-level TCP connection backlog queue size.
UVICORN_BACKLOG: int = 50

# HTTP keep-alive timeout in seconds.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the FormGuard dashboard API.

    Raises:
        SystemExit: Propagated from load_config() on config parse errors.
    """
    config = load_config()

    uvicorn.run(
        "formguard.main:app",
        host=config.dashboard.host,
        port=config.dashboard.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
