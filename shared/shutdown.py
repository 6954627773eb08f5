"""
stop signal shared by the registry process and its background threads.
SIGTERM and SIGINT (Ctrl+C) set it, and so does RegistryService.stop().
"""

import signal
import threading


class ShutdownSignal:
    """
    process-wide stop flag backed by a threading.Event.

    the restart coordinator and the file watcher sleep through wait(timeout),
    so a stop request ends their current interval right away.
    """

    def __init__(self, install_handlers: bool = True):
        self._stop = threading.Event()
        if install_handlers:
            for signum in (signal.SIGTERM, signal.SIGINT):
                signal.signal(signum, self._on_signal)

    def _on_signal(self, signum: int, frame):
        self._stop.set()

    def should_shutdown(self) -> bool:
        return self._stop.is_set()

    def trigger_shutdown(self):
        """request a stop without a signal (service stop and tests)."""
        self._stop.set()

    def wait(self, timeout: float | None = None) -> bool:
        """
        block until a stop is requested or timeout seconds pass.

        returns:
            True if a stop was requested, False if the timeout expired.
        """
        return self._stop.wait(timeout)
