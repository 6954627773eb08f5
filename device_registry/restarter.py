"""
Coalesces restart requests from registry saves into at most one restart of the
external service per interval.
"""

import logging
import queue
import shlex
import subprocess
import threading
from enum import Enum
from typing import Callable, Optional, Sequence

from device_registry.errors import RestartCommandError
from shared.shutdown import ShutdownSignal


DEFAULT_RESTART_INTERVAL = 60.0
DEFAULT_QUEUE_SIZE = 256


class RestartState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    RESTARTING = "restarting"
    STOPPED = "stopped"


def run_restart_command(command: Sequence[str], timeout: Optional[float] = None) -> None:
    """
    Run the external restart command with no stdin.

    Raises:
        RestartCommandError: if the command cannot be started, times out or exits non-zero.
    """
    try:
        result = subprocess.run(
            list(command),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise RestartCommandError(f"restart command timed out after {timeout}s") from e
    except OSError as e:
        raise RestartCommandError(f"restart command failed to start: {e}") from e

    if result.returncode != 0:
        raise RestartCommandError(f"restart command exited with {result.returncode}: {result.stderr.strip()}")


class RestartCoordinator:
    """
    Background task that restarts the external service on a fixed timer.

    Saves call request_restart(), which never blocks. On every tick, if at least one
    request is pending, the coordinator takes the registry lock, runs the restart
    command once and clears every request that accumulated while it waited.
    """

    def __init__(
        self,
        command: str | Sequence[str],
        lock: threading.RLock,
        shutdown_signal: ShutdownSignal,
        interval: float = DEFAULT_RESTART_INTERVAL,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        timeout: Optional[float] = None,
        runner: Optional[Callable[[Sequence[str]], None]] = None,
    ):
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._command:
            raise ValueError("restart command must not be empty")
        self._lock = lock
        self._shutdown_signal = shutdown_signal
        self._interval = interval
        self._timeout = timeout
        self._runner = runner or (lambda cmd: run_restart_command(cmd, self._timeout))
        self._requests: queue.Queue = queue.Queue(maxsize=queue_size)
        self._state = RestartState.IDLE
        self._restarts = 0

    @property
    def state(self) -> RestartState:
        return self._state

    @property
    def restarts(self) -> int:
        """Number of restart command invocations so far."""
        return self._restarts

    def pending(self) -> bool:
        return not self._requests.empty()

    def request_restart(self) -> None:
        try:
            self._requests.put_nowait(True)
        except queue.Full:
            # a restart is already pending; the next tick covers this request too
            logging.debug("action: request_restart | result: coalesced | reason: queue full")
        if self._state == RestartState.IDLE:
            self._state = RestartState.PENDING

    def run(self):
        """Tick every interval until shutdown is requested."""
        logging.info(f"action: restart_coordinator_start | interval: {self._interval}s | command: {self._command}")

        while not self._shutdown_signal.wait(timeout=self._interval):
            try:
                self.tick()
            except Exception:
                logging.exception("Unhandled error in restart coordinator loop")

        self._state = RestartState.STOPPED
        logging.info("action: restart_coordinator_stop | result: success")

    def tick(self) -> bool:
        """Restart once if any request is pending. Returns True when the command ran."""
        if self._requests.empty():
            return False

        with self._lock:
            self._state = RestartState.RESTARTING
            logging.info(f"action: restart_service | command: {self._command}")
            try:
                self._runner(self._command)
                logging.info("action: restart_service | result: success")
            except RestartCommandError as e:
                logging.error(f"action: restart_service | result: fail | error: {e}")
            finally:
                self._restarts += 1
                self._drain()
                self._state = RestartState.IDLE
        return True

    def _drain(self) -> int:
        drained = 0
        while True:
            try:
                self._requests.get_nowait()
                drained += 1
            except queue.Empty:
                break
        logging.debug(f"action: restart_requests_cleared | coalesced: {drained}")
        return drained
