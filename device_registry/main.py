import logging
import sys

from device_registry.config import initialize_config
from device_registry.errors import FileAccessError
from device_registry.service import RegistryService
from shared.shutdown import ShutdownSignal


def initialize_log(logging_level):
    """
    Configure the root logger with a consistent format and level.

    Args:
        logging_level: Logging level name (e.g. ``"DEBUG"``, ``"INFO"``).
                       If the value is invalid, it defaults to ``DEBUG``.
    """
    level = getattr(logging, logging_level.upper(), logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="DEVICE_REGISTRY - %(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger(__name__).info("Logging initialized with level '%s'", logging.getLevelName(level))


def main():
    config = initialize_config()
    initialize_log(config.logging_level)

    logging.info(
        f"action: config | dhcpd_conf_file: {config.dhcpd_conf_file} | "
        f"dhcpd_restart_cmd: {config.dhcpd_restart_cmd} | restart_interval: {config.restart_interval} | "
        f"watch_enabled: {config.watch_enabled}"
    )

    shutdown_signal = ShutdownSignal()
    service = RegistryService(config, shutdown_signal)

    try:
        service.run()
    except FileAccessError as e:
        logging.critical(f"action: registry_service_start | result: fail | error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
