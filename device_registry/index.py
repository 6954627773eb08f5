"""
ordered index of device records.
keeps a MAC -> Device map plus a sorted projection that defines enumeration and file order.
not thread-safe on its own: DeviceRegistry guards every call with its lock.
"""

from typing import Iterator, Optional

from shared.device import Device, SortKey


class OrderedIndex:
    """MAC keyed device map with a sorted key sequence (enabled first, then by name)."""

    def __init__(self):
        self._devices: dict[str, Device] = {}
        self._keys: list[SortKey] = []

    def add(self, device: Device) -> bool:
        """Insert a device. Does nothing and returns False if its MAC is already present."""
        if device.mac in self._devices:
            return False

        self._devices[device.mac] = device
        self._keys.append(device.sort_key())
        self._keys.sort(key=SortKey.order)
        return True

    def remove(self, mac: str) -> bool:
        """Delete a device by MAC. Returns False when it was not present."""
        if self._devices.pop(mac, None) is None:
            return False

        for i, key in enumerate(self._keys):
            if key.mac == mac:
                del self._keys[i]
                break
        return True

    def get(self, mac: str) -> Optional[Device]:
        return self._devices.get(mac)

    def contains(self, mac: str) -> bool:
        return mac in self._devices

    def keys(self) -> list[SortKey]:
        """Copy of the sorted key projection."""
        return list(self._keys)

    def macs(self) -> set[str]:
        return set(self._devices)

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        for key in self._keys:
            yield self._devices[key.mac]
