"""
Last-resort cleanup of server processes.

SIGINT, SIGTERM, interpreter exit and uncaught exceptions all end up in
``ShutdownHandler.shutdown``, which disposes every live process with a short
timeout so the harness can still exit promptly.
"""

import atexit
import logging
import os
import signal
import sys
import threading
from typing import List

from .config import SHUTDOWN_TIMEOUT
from .errors import HarnessError

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Disposes the processes of ``managers``; the list is read at shutdown time"""

    def __init__(self, managers: List, timeout: float = SHUTDOWN_TIMEOUT):
        self.managers = managers
        self.timeout = timeout
        self._lock = threading.RLock()
        self._shutting_down = False
        self._previous_handlers = {}
        self._previous_excepthook = None

    def __enter__(self):
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.uninstall()
        return False

    def install(self):
        for sig in HANDLED_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)
        atexit.register(self.shutdown)
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._handle_exception

    def uninstall(self):
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()
        atexit.unregister(self.shutdown)
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
            self._previous_excepthook = None

    def shutdown(self):
        with self._lock:
            if self._shutting_down:
                return
            self._shutting_down = True

        for manager in list(self.managers):
            try:
                manager.shutdown(timeout=self.timeout)
            except HarnessError as e:
                logger.error(f"Error during shutdown: {e}")

    def _handle_signal(self, signum, frame):
        name = signal.Signals(signum).name
        if self._shutting_down:
            # Second signal while cleaning up
            logger.warning(f"Received {name} again, exiting immediately")
            os._exit(128 + signum)

        logger.warning(f"Received {name}, stopping all server processes")
        self.shutdown()
        sys.exit(128 + signum)

    def _handle_exception(self, exc_type, exc, tb):
        logger.critical("Uncaught exception, stopping all server processes", exc_info=(exc_type, exc, tb))
        self.shutdown()
        if self._previous_excepthook is not None:
            self._previous_excepthook(exc_type, exc, tb)
