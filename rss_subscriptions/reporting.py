"""Error reporting for faults that must not interrupt processing."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class ErrorReporter(Protocol):
    def notify(
        self, exc: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> None:
        ...


class LoggingErrorReporter:
    """Report faults through the logging system with their traceback."""

    def __init__(self, name: str = "rss_subscriptions.errors") -> None:
        self._logger = logging.getLogger(name)

    def notify(
        self, exc: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> None:
        self._logger.error(
            "%s: %s %s", type(exc).__name__, exc, context or {}, exc_info=exc
        )


class RecordingErrorReporter:
    """Keep notifications in memory."""

    def __init__(self) -> None:
        self.notifications: List[Tuple[BaseException, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(
        self, exc: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> None:
        with self._lock:
            self.notifications.append((exc, dict(context or {})))
        logger.debug("Recorded %s", type(exc).__name__)
