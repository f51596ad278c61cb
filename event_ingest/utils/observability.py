from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional


@contextmanager
def log_duration(
    logger: logging.Logger,
    operation: str,
    *,
    slow_ms: Optional[float] = None,
    **fields: object,
) -> Iterator[None]:
    """Log how long ``operation`` took as ``op=<name> duration_ms=<n> k=v ...``.

    Logged at DEBUG, or WARNING once ``slow_ms`` is exceeded. Runs even if the
    body raises.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        level = logging.DEBUG
        if slow_ms is not None and elapsed_ms > slow_ms:
            level = logging.WARNING
        extras = " ".join(f"{k}={v}" for k, v in fields.items())
        if extras:
            logger.log(level, "op=%s duration_ms=%.2f %s", operation, elapsed_ms, extras)
        else:
            logger.log(level, "op=%s duration_ms=%.2f", operation, elapsed_ms)
