"""
Logging utilities for the FastAPI application and maintenance hooks.

Provides a consistent logging format and configuration.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def redact(value: str | None, visible: int = 8) -> str:
    """Shorten an identifier or secret so it can appear in log lines."""
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}..."


__all__ = ["configure_logging", "redact"]
