"""
Watches the registry's config file for external edits and reloads the registry.

The watchdog observer watches the parent directory (editors often replace the file
instead of writing it in place) and the handler turns events for the config file into
WRITE / REMOVE / ERROR entries on a bounded queue consumed by the watcher thread.
"""

import logging
import os
import queue
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from device_registry.errors import FileAccessError, WatcherError
from device_registry.registry import DeviceRegistry
from shared.shutdown import ShutdownSignal


DEFAULT_SETTLE_DELAY = 1.0
EVENT_QUEUE_SIZE = 64
POLL_TIMEOUT = 1.0


class WatchEventKind(Enum):
    WRITE = "write"
    REMOVE = "remove"
    ERROR = "error"


class WatchEvent(NamedTuple):
    kind: WatchEventKind
    detail: str = ""


class ConfigFileEventHandler(FileSystemEventHandler):
    """Filters directory events down to the watched config file."""

    def __init__(self, path: Path, events: queue.Queue):
        super().__init__()
        self._path = path
        self._events = events

    def _is_target(self, raw: Optional[str | bytes]) -> bool:
        if not raw:
            return False
        return Path(os.fsdecode(raw)).resolve() == self._path

    def classify(self, event) -> Optional[WatchEventKind]:
        if getattr(event, "is_directory", False):
            return None

        event_type = getattr(event, "event_type", None)
        src = getattr(event, "src_path", None)
        dest = getattr(event, "dest_path", None)

        if event_type in ("modified", "created") and self._is_target(src):
            return WatchEventKind.WRITE
        if event_type == "deleted" and self._is_target(src):
            return WatchEventKind.REMOVE
        # moved away, or another file renamed over ours
        if event_type == "moved" and (self._is_target(src) or self._is_target(dest)):
            return WatchEventKind.REMOVE
        return None

    def on_any_event(self, event) -> None:
        try:
            kind = self.classify(event)
        except Exception as e:
            self._put(WatchEvent(WatchEventKind.ERROR, str(e)))
            return
        if kind is not None:
            self._put(WatchEvent(kind, getattr(event, "event_type", "")))

    def _put(self, event: WatchEvent) -> None:
        try:
            self._events.put_nowait(event)
        except queue.Full:
            logging.warning(f"action: watcher_event | result: dropped | kind: {event.kind.value} | reason: queue full")


class FileWatcher:
    """
    Background task that reloads the registry when its file is edited externally.

    Events that arrive while the registry is inside its post-save suppression window
    are received but do not trigger a reload.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        shutdown_signal: ShutdownSignal,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        queue_size: int = EVENT_QUEUE_SIZE,
        poll_timeout: float = POLL_TIMEOUT,
    ):
        self._registry = registry
        self._shutdown_signal = shutdown_signal
        self._settle_delay = settle_delay
        self._poll_timeout = poll_timeout
        self._path = Path(registry.config_path).resolve()
        self._events: queue.Queue = queue.Queue(maxsize=queue_size)
        self._handler = ConfigFileEventHandler(self._path, self._events)
        self._observer = None
        self._watch = None
        self._reloads = 0

    @property
    def reloads(self) -> int:
        """Number of reloads the watcher has triggered."""
        return self._reloads

    def start(self) -> None:
        """Start the watchdog observer and subscribe to the config file's directory."""
        self._observer = Observer()
        self._observer.daemon = True
        try:
            self._subscribe()
        except WatcherError as e:
            logging.error(f"action: watcher_subscribe | result: fail | error: {e}")
        self._observer.start()
        logging.info(f"action: watcher_start | path: {self._path}")

    def _subscribe(self) -> None:
        if self._watch is not None:
            try:
                self._observer.unschedule(self._watch)
            except Exception as e:
                logging.debug(f"action: watcher_unsubscribe | result: fail | error: {e}")
            self._watch = None

        try:
            self._watch = self._observer.schedule(self._handler, str(self._path.parent), recursive=False)
        except Exception as e:
            raise WatcherError(f"cannot watch {self._path.parent}: {e}") from e

    def run(self) -> None:
        """Consume file events until shutdown is requested, then release the observer."""
        if self._observer is None:
            self.start()

        try:
            while not self._shutdown_signal.should_shutdown():
                try:
                    event = self._events.get(timeout=self._poll_timeout)
                except queue.Empty:
                    self._check_observer()
                    continue
                try:
                    self.handle_event(event)
                except Exception:
                    logging.exception("Unhandled error in file watcher loop")
        finally:
            self.close()

    def _check_observer(self) -> None:
        if self._watch is None:
            try:
                self._subscribe()
                logging.info(f"action: watcher_subscribe | result: success | path: {self._path}")
            except WatcherError as e:
                logging.debug(f"action: watcher_subscribe | result: retry | error: {e}")
        elif not self._observer.is_alive():
            self.handle_event(WatchEvent(WatchEventKind.ERROR, "observer thread stopped"))

    def handle_event(self, event: WatchEvent) -> bool:
        """Apply one file event. Returns True when it caused a reload."""
        logging.debug(f"action: watcher_event | kind: {event.kind.value} | detail: {event.detail}")

        if event.kind == WatchEventKind.ERROR:
            logging.error(f"action: watcher_event | result: fail | error: {event.detail}")
            if self._observer is not None and not self._observer.is_alive():
                self._restart_observer()
            return False

        if self._registry.is_ignoring_writes():
            logging.debug(f"action: watcher_event | result: ignored | reason: own write | kind: {event.kind.value}")
            return False

        if event.kind == WatchEventKind.REMOVE:
            logging.info("action: config_file_replaced | result: reloading")
            if self._shutdown_signal.wait(timeout=self._settle_delay):
                return False
            self._discard_pending()
            reloaded = self._reload()
            if self._observer is not None:
                try:
                    self._subscribe()
                except WatcherError as e:
                    logging.error(f"action: watcher_subscribe | result: fail | error: {e}")
            return reloaded

        logging.info("action: config_file_edited | result: reloading")
        return self._reload()

    def _reload(self) -> bool:
        try:
            self._registry.load()
        except FileAccessError as e:
            logging.error(f"action: watcher_reload | result: fail | error: {e}")
            return False
        self._reloads += 1
        return True

    def _discard_pending(self) -> None:
        # events queued during the settle delay are covered by the reload that follows
        discarded = 0
        while True:
            try:
                self._events.get_nowait()
                discarded += 1
            except queue.Empty:
                break
        if discarded:
            logging.debug(f"action: watcher_settle | discarded_events: {discarded}")

    def _restart_observer(self) -> None:
        self._watch = None
        self._observer = Observer()
        self._observer.daemon = True
        try:
            self._subscribe()
            self._observer.start()
            logging.info("action: watcher_restart | result: success")
        except Exception as e:
            logging.error(f"action: watcher_restart | result: fail | error: {e}")

    def close(self) -> None:
        """Stop the observer and release the watch."""
        if self._observer is None:
            return
        try:
            self._observer.stop()
            if self._observer.is_alive():
                self._observer.join(timeout=5.0)
        except Exception as e:
            logging.error(f"action: watcher_close | result: fail | error: {e}")
        self._observer = None
        self._watch = None
        logging.info("action: watcher_stop | result: success")
