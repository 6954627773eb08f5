"""Thread-safe device registry backed by the dhcpd config file."""

import logging
import os
import tempfile
import threading
import time
from typing import Optional, Protocol

from device_registry import codec
from device_registry.errors import FileAccessError, SaveError
from device_registry.index import OrderedIndex
from shared.device import Device


DEFAULT_SUPPRESS_WINDOW = 1.0
CONFIG_FILE_MODE = 0o660
CONFIG_FILE_ENCODING = "utf-8"


class RestartRequester(Protocol):
    def request_restart(self) -> None: ...


class DeviceRegistry:
    """
    Authoritative in-memory store of device records bound to one config file.

    Every mutation, load and save runs under a single re-entrant lock. The restart
    coordinator takes the same lock while the external service restarts, so the
    service never reads a half-written file.
    """

    def __init__(
        self,
        config_path: str,
        suppress_window: float = DEFAULT_SUPPRESS_WINDOW,
        restart_on_save_failure: bool = True,
    ):
        self._config_path = config_path
        self._suppress_window = suppress_window
        self._restart_on_save_failure = restart_on_save_failure
        self._lock = threading.RLock()
        self._index = OrderedIndex()
        self._file_head = ""
        self._ignore_writes_until = 0.0
        self._restarter: Optional[RestartRequester] = None

    @property
    def config_path(self) -> str:
        return self._config_path

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def file_head(self) -> str:
        with self._lock:
            return self._file_head

    def set_restarter(self, restarter: RestartRequester) -> None:
        self._restarter = restarter

    def is_ignoring_writes(self) -> bool:
        """True during the short window after save() in which file events come from our own write."""
        return time.monotonic() < self._ignore_writes_until

    def load(self) -> None:
        """
        Rebuild the registry from the config file.

        Raises:
            FileAccessError: if the file cannot be opened; the current state is kept.
        """
        with self._lock:
            try:
                with open(self._config_path, "r", encoding=CONFIG_FILE_ENCODING, errors="surrogateescape") as f:
                    parsed = codec.parse(f)
            except OSError as e:
                logging.error(f"action: registry_load | result: fail | path: {self._config_path} | error: {e}")
                raise FileAccessError(f"cannot open {self._config_path}: {e}") from e

            index = OrderedIndex()
            for device in parsed.devices:
                if not index.add(device):
                    logging.warning(f"action: registry_load | result: duplicate_mac | mac: {device.mac}")

            self._index = index
            self._file_head = parsed.head

            logging.info(
                f"action: registry_load | result: success | devices: {len(index)} | "
                f"malformed: {len(parsed.malformed_lines)}"
            )

    def save(self) -> None:
        """
        Write the registry to the config file and request a service restart.
        Write failures are logged only.
        """
        with self._lock:
            self._ignore_writes_until = time.monotonic() + self._suppress_window
            logging.info(f"action: registry_save | path: {self._config_path} | devices: {len(self._index)}")

            written = True
            try:
                self._write(self.to_config_text())
            except SaveError as e:
                written = False
                logging.error(f"action: registry_save | result: fail | error: {e}")

            if written or self._restart_on_save_failure:
                self._request_restart()

    def _write(self, content: str) -> None:
        """
        Replace the config file atomically (temp file in the same directory + os.replace).
        The new file takes over the owner and group of the one it replaces.
        """
        dir_path = os.path.dirname(os.path.abspath(self._config_path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=dir_path, prefix=".registry-")
            try:
                with os.fdopen(fd, "w", encoding=CONFIG_FILE_ENCODING, errors="surrogateescape") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_path, CONFIG_FILE_MODE)
                self._copy_ownership(tmp_path)
                os.replace(tmp_path, self._config_path)
            except Exception:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise SaveError(f"cannot write {self._config_path}: {e}") from e

    def _copy_ownership(self, tmp_path: str) -> None:
        try:
            current = os.stat(self._config_path)
        except FileNotFoundError:
            return
        try:
            os.chown(tmp_path, current.st_uid, current.st_gid)
        except PermissionError:
            # unprivileged process: keep at least the group when we belong to it
            try:
                os.chown(tmp_path, -1, current.st_gid)
            except PermissionError as e:
                logging.warning(
                    f"action: registry_save | result: ownership_changed | "
                    f"uid: {current.st_uid} | gid: {current.st_gid} | error: {e}"
                )

    def _request_restart(self) -> None:
        if self._restarter is None:
            logging.debug("action: request_restart | result: skipped | reason: no restarter attached")
            return
        self._restarter.request_restart()

    def to_config_text(self) -> str:
        with self._lock:
            return codec.serialize(self._file_head, self._index)

    def get(self, mac: str) -> Optional[Device]:
        with self._lock:
            return self._index.get(mac)

    def contains(self, mac: str) -> bool:
        with self._lock:
            return self._index.contains(mac)

    def add(self, device: Device) -> bool:
        """Insert a device if its MAC is not registered yet; existing records are left untouched."""
        with self._lock:
            return self._index.add(device)

    def set(self, device: Device) -> bool:
        """Replace the record with the same MAC. Does nothing if the MAC is unknown."""
        with self._lock:
            if not self._index.contains(device.mac):
                return False
            self._index.remove(device.mac)
            self._index.add(device)
            return True

    def replace(self, old_mac: str, device: Device) -> bool:
        """
        Move a record to a (possibly) new MAC in one step.
        Fails without changes if old_mac is unknown or the new MAC is already taken.
        """
        with self._lock:
            if device.mac == old_mac:
                return self.set(device)
            if not self._index.contains(old_mac) or self._index.contains(device.mac):
                return False
            self._index.remove(old_mac)
            self._index.add(device)
            return True

    def remove(self, mac: str) -> bool:
        with self._lock:
            return self._index.remove(mac)

    def list_all(self) -> list[Device]:
        with self._lock:
            return list(self._index)

    def list_for_user(self, owner: str) -> list[Device]:
        with self._lock:
            return [device for device in self._index if device.owner == owner]

    def num_devices(self) -> int:
        with self._lock:
            return len(self._index)

    def __len__(self) -> int:
        return self.num_devices()
