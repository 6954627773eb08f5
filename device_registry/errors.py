class RegistryError(Exception):
    """base class for device registry failures."""

    pass


class FileAccessError(RegistryError):
    """raised when the backing config file cannot be opened for loading."""

    pass


class ConfigParseError(RegistryError):
    """raised for a malformed record line; loading logs it and moves on."""

    def __init__(self, message: str, line_number: int | None = None):
        super().__init__(message)
        self.line_number = line_number


class SaveError(RegistryError):
    """raised when the config file cannot be written."""

    pass


class RestartCommandError(RegistryError):
    """raised when the external restart command is missing or exits non-zero."""

    pass


class WatcherError(RegistryError):
    """raised when the filesystem notification subsystem fails."""

    pass
