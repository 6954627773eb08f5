"""
codec for the line-oriented dhcpd host configuration.

parse:
    every line before the first record-shaped line is kept verbatim as the file head.
    after that, lines starting with ``host`` or ``#`` are parsed as enabled/disabled records;
    malformed ones are logged with their line number and skipped. any other line after the
    first record is dropped (it is not part of the head and is not written back).

serialize:
    head, then one line per device in index order, then a closing ``}`` line.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from device_registry.errors import ConfigParseError
from shared.device import Device, is_valid_mac


RECORD_PATTERN = re.compile(
    r"^(?P<disabled>#\s*)?host\s+(?P<name>\S+)\s+\{\s*hardware\s+ethernet\s+(?P<mac>\S+?)\s*\}"
)

ENABLED_LINE = "   host {name} {{ hardware ethernet {mac}; }}\n"
DISABLED_LINE = "#  host {name} {{ hardware ethernet {mac}; }}\n"
TAIL_LINE = "}\n"

_MIN_RECORD_LENGTH = 4


@dataclass
class ParsedConfig:
    head: str = ""
    devices: list[Device] = field(default_factory=list)
    malformed_lines: list[int] = field(default_factory=list)
    dropped_lines: list[int] = field(default_factory=list)


def is_record_line(line: str) -> bool:
    """True when the line has the shape of an enabled or disabled host record."""
    return RECORD_PATTERN.match(line.strip()) is not None


def _is_record_candidate(stripped: str) -> bool:
    if len(stripped) < _MIN_RECORD_LENGTH:
        return False
    return stripped.startswith("host") or stripped.startswith("#")


def parse_record(line: str, line_number: int | None = None) -> Device:
    """
    Parse a single host record line into a Device.

    Raises:
        ConfigParseError: if the line is not a host record or the MAC is invalid.
    """
    stripped = line.strip()
    match = RECORD_PATTERN.match(stripped)
    if match is None:
        kind = "disabled record" if stripped.startswith("#") else "record"
        raise ConfigParseError(f"failed to parse {kind}: {stripped!r}", line_number)

    mac = match.group("mac").rstrip(";")
    if not is_valid_mac(mac):
        raise ConfigParseError(f"failed to parse MAC address: {mac!r}", line_number)

    return Device.from_name(match.group("name"), mac, enabled=match.group("disabled") is None)


def parse(lines: Iterable[str]) -> ParsedConfig:
    """Parse config file lines (with their line endings) into head text and devices."""
    parsed = ParsedConfig()
    head_parts: list[str] = []
    reading_head = True

    for line_number, line in enumerate(lines, start=1):
        stripped = line.strip()

        if reading_head:
            if not is_record_line(stripped):
                head_parts.append(line)
                continue
            reading_head = False

        if not _is_record_candidate(stripped):
            parsed.dropped_lines.append(line_number)
            continue

        try:
            parsed.devices.append(parse_record(stripped, line_number))
        except ConfigParseError as e:
            parsed.malformed_lines.append(line_number)
            logging.warning(f"action: parse_record | result: fail | line: {line_number} | error: {e}")

    parsed.head = "".join(head_parts)
    if parsed.dropped_lines:
        logging.debug(
            f"action: parse_config | dropped_lines: {parsed.dropped_lines} | "
            f"reason: non-record lines after the first record"
        )
    return parsed


def format_record(device: Device) -> str:
    template = ENABLED_LINE if device.enabled else DISABLED_LINE
    return template.format(name=device.name, mac=device.mac)


def serialize(head: str, devices: Iterable[Device]) -> str:
    """Render head, records and the closing brace as config file text."""
    parts = [head]
    if head and not head.endswith("\n"):
        parts.append("\n")
    parts.extend(format_record(device) for device in devices)
    parts.append(TAIL_LINE)
    return "".join(parts)
