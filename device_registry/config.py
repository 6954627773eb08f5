import configparser
import logging
import os
from typing import Optional

import pydantic


class RegistryConfiguration(pydantic.BaseModel):
    """
    Runtime configuration for the device registry process.

    Attributes:
        dhcpd_conf_file: Config file holding the host records (read and rewritten by the registry).
        dhcpd_restart_cmd: Command line that restarts the DHCP service after saves.
        restart_interval: Minimum number of seconds between two service restarts.
        restart_queue_size: Capacity of the pending restart request queue.
        restart_timeout: Seconds before a restart command is abandoned, ``None`` to wait forever.
        restart_on_save_failure: Whether a failed save still schedules a restart.
        suppress_window: Seconds after a save during which file events are treated as our own write.
        settle_delay: Seconds to wait after the file is replaced before reloading it.
        watch_enabled: Whether to reload the registry when the file is edited externally.
        logging_level: Logging level to use (e.g. ``"DEBUG"``, ``"INFO"``).
    """

    dhcpd_conf_file: str
    dhcpd_restart_cmd: str
    restart_interval: float = pydantic.Field(gt=0)
    restart_queue_size: int = pydantic.Field(gt=0)
    restart_timeout: Optional[float] = None
    restart_on_save_failure: bool = True
    suppress_window: float = pydantic.Field(ge=0)
    settle_delay: float = pydantic.Field(ge=0)
    watch_enabled: bool = True
    logging_level: str = "INFO"


DEFAULTS = {
    "DHCPD_CONF_FILE": "/etc/dhcp/dhcpd.conf",
    "DHCPD_RESTART_CMD": "service dhcpd restart",
    "RESTART_INTERVAL": "60",
    "RESTART_QUEUE_SIZE": "256",
    "RESTART_TIMEOUT": "",
    "RESTART_ON_SAVE_FAILURE": "true",
    "SUPPRESS_WINDOW": "1",
    "SETTLE_DELAY": "1",
    "WATCH_ENABLED": "true",
    "LOGGING_LEVEL": "INFO",
}


def str_to_bool(value: str) -> bool:
    """Convert string to boolean."""
    return value.strip().lower() in ("true", "1", "yes")


def initialize_config(config_file: Optional[str] = None) -> RegistryConfiguration:
    """
    Load the registry configuration from ``config.ini`` and the environment.

    The ``[DEFAULT]`` section of the ini file provides values; any key can be
    overridden by an environment variable of the same name. Keys missing from both
    fall back to the built-in defaults. The ini path itself comes from the
    ``CONFIG_FILE`` environment variable when ``config_file`` is not given.

    Raises:
        pydantic.ValidationError: If a value has the wrong type or is out of range.
    """
    config_file = config_file or os.getenv("CONFIG_FILE", "config.ini")

    config = configparser.ConfigParser(interpolation=None)
    config.optionxform = str
    config.read_dict({"DEFAULT": DEFAULTS})
    config.read(config_file)
    section = config["DEFAULT"]

    def value(key: str) -> str:
        return os.getenv(key, section[key])

    timeout = value("RESTART_TIMEOUT").strip()

    configuration = RegistryConfiguration(
        dhcpd_conf_file=value("DHCPD_CONF_FILE"),
        dhcpd_restart_cmd=value("DHCPD_RESTART_CMD"),
        restart_interval=float(value("RESTART_INTERVAL")),
        restart_queue_size=int(value("RESTART_QUEUE_SIZE")),
        restart_timeout=float(timeout) if timeout else None,
        restart_on_save_failure=str_to_bool(value("RESTART_ON_SAVE_FAILURE")),
        suppress_window=float(value("SUPPRESS_WINDOW")),
        settle_delay=float(value("SETTLE_DELAY")),
        watch_enabled=str_to_bool(value("WATCH_ENABLED")),
        logging_level=value("LOGGING_LEVEL"),
    )

    logging.getLogger(__name__).debug("Device registry configuration loaded: %s", configuration)

    return configuration
