import re
import string
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, computed_field


UNKNOWN_OWNER = "UNKNOWN"
NAME_SEPARATOR = "-"

# hardware addresses are EUI-48, EUI-64 or 20-octet InfiniBand addresses
_VALID_OCTET_COUNTS = (6, 8, 20)
_LABEL_DISALLOWED = re.compile(r"[^0-9a-zA-Z\-]")


def _mac_octets(mac: str) -> list[str]:
    """
    Split a hardware address into its hex octets.

    Accepts ``aa:bb:cc:dd:ee:ff``, ``aa-bb-cc-dd-ee-ff`` (one separator
    throughout) and the dotted ``aabb.ccdd.eeff`` form.
    Raises ValueError when the address is malformed.
    """
    if len(mac) < 14:
        raise ValueError(f"invalid MAC address: {mac!r}")

    if mac[2] in ":-":
        octets = mac.split(mac[2])
        if any(len(octet) != 2 for octet in octets):
            raise ValueError(f"invalid MAC address: {mac!r}")
    elif mac[4] == ".":
        groups = mac.split(".")
        if any(len(group) != 4 for group in groups):
            raise ValueError(f"invalid MAC address: {mac!r}")
        octets = [half for group in groups for half in (group[:2], group[2:])]
    else:
        raise ValueError(f"invalid MAC address: {mac!r}")

    if len(octets) not in _VALID_OCTET_COUNTS:
        raise ValueError(f"invalid MAC address: {mac!r}")
    if any(c not in string.hexdigits for octet in octets for c in octet):
        raise ValueError(f"invalid MAC address: {mac!r}")
    return octets


def is_valid_mac(mac: str) -> bool:
    try:
        _mac_octets(mac)
    except ValueError:
        return False
    return True


def normalize_mac(mac: str) -> str:
    """Return the canonical lower-case, colon separated form of a MAC address."""
    return ":".join(octet.lower() for octet in _mac_octets(mac.strip()))


def sanitize_label(label: str) -> str:
    """Drop every character that is not a letter, digit or dash."""
    return _LABEL_DISALLOWED.sub("", label or "")


def split_name(name: str) -> tuple[str, str]:
    """
    Split a host name into (owner, device) on the first dash.
    Names without a dash belong to the UNKNOWN owner.
    """
    owner, separator, device = name.partition(NAME_SEPARATOR)
    if not separator:
        return UNKNOWN_OWNER, name
    return owner, device


class Device(BaseModel):
    """
    One registered network client.

    The MAC address is the identity of a device; the name is always derived
    from owner and device label so both can never drift apart.
    """

    model_config = ConfigDict(frozen=True)

    owner: str
    device: str
    mac: str
    enabled: bool = True

    @computed_field
    @property
    def name(self) -> str:
        return f"{self.owner}{NAME_SEPARATOR}{self.device}"

    def __str__(self):
        return f"OWNER: {self.owner} DEVICE: {self.device} ({self.mac})"

    @classmethod
    def from_name(cls, name: str, mac: str, enabled: bool = True) -> "Device":
        owner, device = split_name(name)
        return cls(owner=owner, device=device, mac=mac, enabled=enabled)

    @classmethod
    def register(cls, owner: str, device: str, mac: str, enabled: bool = True) -> "Device":
        """
        Build a record from user supplied values.
        Raises ValueError if the MAC address does not parse.
        """
        return cls(owner=owner, device=sanitize_label(device), mac=normalize_mac(mac), enabled=enabled)

    def sort_key(self) -> "SortKey":
        return SortKey(name=self.name, mac=self.mac, enabled=self.enabled)


class SortKey(NamedTuple):
    """Projection of a device used to keep enumeration order stable."""

    name: str
    mac: str
    enabled: bool

    def order(self) -> tuple[bool, str]:
        # enabled devices first, then alphabetical by name
        return (not self.enabled, self.name)
