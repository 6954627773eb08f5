"""
Device registry service: owns the registry and runs the restart coordinator and
file watcher threads next to the caller's own request handling.
"""

import logging
import threading
from typing import Optional

from device_registry.config import RegistryConfiguration
from device_registry.registry import DeviceRegistry
from device_registry.restarter import RestartCoordinator
from device_registry.watcher import FileWatcher
from shared.shutdown import ShutdownSignal


class RegistryService:
    """Composition root wiring the registry to its background tasks."""

    def __init__(self, config: RegistryConfiguration, shutdown_signal: ShutdownSignal):
        self._config = config
        self._shutdown_signal = shutdown_signal

        self._registry = DeviceRegistry(
            config.dhcpd_conf_file,
            suppress_window=config.suppress_window,
            restart_on_save_failure=config.restart_on_save_failure,
        )
        self._restarter = RestartCoordinator(
            command=config.dhcpd_restart_cmd,
            lock=self._registry.lock,
            shutdown_signal=shutdown_signal,
            interval=config.restart_interval,
            queue_size=config.restart_queue_size,
            timeout=config.restart_timeout,
        )
        self._registry.set_restarter(self._restarter)

        self._watcher: Optional[FileWatcher] = None
        if config.watch_enabled:
            self._watcher = FileWatcher(self._registry, shutdown_signal, settle_delay=config.settle_delay)

        self._restarter_thread: Optional[threading.Thread] = None
        self._watcher_thread: Optional[threading.Thread] = None

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def restarter(self) -> RestartCoordinator:
        return self._restarter

    @property
    def watcher(self) -> Optional[FileWatcher]:
        return self._watcher

    def start(self) -> None:
        """
        Load the config file and start the background threads.

        Raises:
            FileAccessError: if the config file cannot be opened.
        """
        self._registry.load()
        logging.info(f"action: registry_service_start | devices: {self._registry.num_devices()}")

        self._restarter_thread = threading.Thread(target=self._restarter.run, name="RESTARTER", daemon=False)
        self._restarter_thread.start()

        if self._watcher is not None:
            self._watcher.start()
            self._watcher_thread = threading.Thread(target=self._watcher.run, name="WATCHER", daemon=False)
            self._watcher_thread.start()

    def run(self) -> None:
        """Start and block until shutdown is requested."""
        try:
            self.start()
            self._shutdown_signal.wait()
            logging.info("Shutdown signal received, waiting for threads to finish")
        finally:
            self.stop()

    def stop(self, timeout: float = 5.0) -> None:
        """Signal both background tasks and wait for them to exit."""
        self._shutdown_signal.trigger_shutdown()

        for thread in (self._restarter_thread, self._watcher_thread):
            if thread and thread.is_alive():
                thread.join(timeout=timeout)

        if self._watcher is not None:
            self._watcher.close()

        logging.info("action: registry_service_stop | result: success")
