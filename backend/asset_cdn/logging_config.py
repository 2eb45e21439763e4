"""Logging setup. Call configure_logging() once at startup."""
import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging to stdout.

    Idempotent: if handlers are already installed (uvicorn, pytest) only the
    level is adjusted.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    if root.handlers:
        return

    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
