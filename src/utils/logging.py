"""Logging setup for the CLI."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer")


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Configure root logging with a Rich handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        verbose: Show timestamps, paths and AWS SDK debug output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = RichHandler(
        show_time=verbose,
        show_path=verbose,
        rich_tracebacks=True,
        markup=False,
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # AWS SDK loggers are very chatty at DEBUG
    sdk_level = logging.DEBUG if verbose else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)
