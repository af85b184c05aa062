from __future__ import annotations

import sys

from loguru import logger

from .config import settings


def setup_logging(level: str | None = None, serialize: bool | None = None) -> None:
    """Route loguru to a single stdout sink.

    JSON output (``serialize=True``) keeps bound fields such as ``submission_id``
    and ``run_id`` in ``record.extra`` for log shippers.
    """
    logger.remove()
    logger.add(
        sys.stdout,
        level=(level or settings.log_level).upper(),
        serialize=settings.log_json if serialize is None else serialize,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name} | {message}",
        backtrace=False,
        diagnose=False,
    )
