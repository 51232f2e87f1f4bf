"""Cooperative cancellation for parse / normalize / analyze."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .errors import CancellationRequested

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag shared with the caller that fetched the plan."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


def check_cancelled(token: Optional[CancellationToken], stage: str) -> None:
    """Abort ``stage`` before it mutates anything if the token is set."""
    if token is not None and token.is_cancelled:
        logger.info("Cancellation requested, skipping %s", stage)
        raise CancellationRequested(stage)
