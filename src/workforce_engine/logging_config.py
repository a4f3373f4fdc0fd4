"""Logging setup shared by the API and CLI entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Audit writes that fail are reported here instead of to the caller.
AUDIT_ERROR_LOGGER = "workforce_engine.audit.errors"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for a process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
