"""Logging setup (stdlib) for the inventory service."""

from __future__ import annotations

import logging

from backend.app.core.config import settings

LOG_FORMAT = "[%(asctime)s] [{service}] [%(levelname)s] %(name)s: %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure le root logger une seule fois (idempotent)."""
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT.format(service=settings.SERVICE_NAME),
    )
    # SQLAlchemy est bavard en DEBUG, on ne garde que les warnings
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
