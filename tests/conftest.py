import pytest

from device_registry.registry import DeviceRegistry
from shared.shutdown import ShutdownSignal
from tests.base import SAMPLE_CONF, RecordingRestarter


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "dhcpd.conf"
    path.write_text(SAMPLE_CONF)
    return path


@pytest.fixture
def restarter():
    return RecordingRestarter()


@pytest.fixture
def registry(config_file, restarter):
    reg = DeviceRegistry(str(config_file))
    reg.set_restarter(restarter)
    reg.load()
    return reg


@pytest.fixture
def shutdown_signal():
    signal = ShutdownSignal(install_handlers=False)
    yield signal
    signal.trigger_shutdown()
