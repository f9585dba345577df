"""Best-effort diagnostics log file.

Entries are appended one line at a time as ``YYYY-MM-DD_HH-MM-SS UTC: message``.
Writing diagnostics never raises into the request flow.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "yomitan-api.log"


class _UTCFormatter(logging.Formatter):
    converter = time.gmtime


class Diagnostics:
    """Append-only failure log shared by the whole bridge process."""

    def __init__(self, log_file: Optional[Path]) -> None:
        self.log_file = log_file
        self._handler: Optional[logging.Handler] = None
        # A private logger, so each instance writes only to its own file.
        self._logger = logging.Logger(f"{__name__}.file", level=logging.INFO)

        if log_file is None:
            return
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Diagnostics log unavailable at {log_file}: {e}")
            return
        handler.setFormatter(_UTCFormatter("%(asctime)s UTC: %(message)s", datefmt="%Y-%m-%d_%H-%M-%S"))
        self._handler = handler
        self._logger.addHandler(handler)

    @property
    def enabled(self) -> bool:
        """Whether entries reach a file."""
        return self._handler is not None

    def record(self, message: str) -> None:
        """Append a line to the diagnostics file and echo it to stderr logging."""
        logger.info(message)
        if self._handler is not None:
            self._logger.info(message)

    def record_failure(self, operation: str, error: BaseException) -> None:
        """Append a failure entry naming the operation and its cause."""
        message = f"{operation} failed: {type(error).__name__}: {error}"
        logger.error(message)
        if self._handler is not None:
            self._logger.error(message)

    def close(self) -> None:
        """Flush and close the log file."""
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
