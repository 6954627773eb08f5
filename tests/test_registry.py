import logging
import os
import stat
import threading
import time

import pytest

from device_registry.errors import FileAccessError
from device_registry.registry import DeviceRegistry
from shared.device import Device
from tests.base import MALFORMED_CONF, SAMPLE_HEAD, RecordingRestarter


NEW_DEVICE = Device(owner="dfindley", device="iPhone", mac="00:00:00:00:00:00")


def _tuples(registry: DeviceRegistry) -> set[tuple]:
    return {(d.mac, d.owner, d.device, d.enabled) for d in registry.list_all()}


class TestLoad:
    def test_load_sample(self, registry):
        assert registry.num_devices() == 8
        assert len(registry) == 8
        assert sum(1 for d in registry.list_all() if not d.enabled) == 3
        assert registry.file_head == SAMPLE_HEAD

    def test_load_with_malformed_lines(self, tmp_path, caplog):
        path = tmp_path / "dhcpd.conf"
        path.write_text(MALFORMED_CONF)
        registry = DeviceRegistry(str(path))

        with caplog.at_level(logging.WARNING):
            registry.load()

        assert registry.num_devices() == 8
        assert not registry.contains("zz:11:22:33:44:06")
        assert "line: 9" in caplog.text and "line: 13" in caplog.text

    def test_missing_file_raises_and_keeps_state(self, registry, config_file):
        before = _tuples(registry)
        os.remove(config_file)

        with pytest.raises(FileAccessError):
            registry.load()

        assert _tuples(registry) == before
        assert registry.file_head == SAMPLE_HEAD

    def test_load_replaces_instead_of_merging(self, registry, config_file):
        registry.add(NEW_DEVICE)
        config_file.write_text("host solo-box { hardware ethernet 00:00:00:00:00:99; }\n")

        registry.load()

        assert [d.mac for d in registry.list_all()] == ["00:00:00:00:00:99"]
        assert registry.file_head == ""

    def test_duplicate_mac_keeps_first_record(self, tmp_path):
        path = tmp_path / "dhcpd.conf"
        path.write_text(
            "host a-one { hardware ethernet 00:00:00:00:00:01; }\n"
            "host b-two { hardware ethernet 00:00:00:00:00:01; }\n"
        )
        registry = DeviceRegistry(str(path))
        registry.load()

        assert registry.num_devices() == 1
        assert registry.get("00:00:00:00:00:01").owner == "a"

    def test_non_utf8_bytes_are_kept_and_skipped(self, tmp_path):
        path = tmp_path / "dhcpd.conf"
        head = b"# r\xe9seau du bureau\nddns-update-style none;\n"
        path.write_bytes(
            head
            + b"   host alice-phone { hardware ethernet 00:11:22:33:44:55; }\n"
            + b"# caf\xe9 printer, unplugged\n"
            + b"option domain-name \"b\xfcro.lan\";\n"
            + b"}\n"
        )
        registry = DeviceRegistry(str(path))

        registry.load()

        assert [d.name for d in registry.list_all()] == ["alice-phone"]

        registry.save()

        written = path.read_bytes()
        assert written.startswith(head)
        assert written == head + b"   host alice-phone { hardware ethernet 00:11:22:33:44:55; }\n}\n"


class TestMutations:
    def test_add(self, registry):
        assert registry.add(NEW_DEVICE)

        assert registry.num_devices() == 9
        assert registry.contains(NEW_DEVICE.mac)
        assert registry.get(NEW_DEVICE.mac) == NEW_DEVICE

    def test_add_is_idempotent_on_mac(self, registry):
        registry.add(NEW_DEVICE)
        before = registry.list_all()

        changed = registry.add(Device(owner="someone", device="else", mac=NEW_DEVICE.mac, enabled=False))

        assert not changed
        assert registry.list_all() == before

    def test_remove(self, registry):
        assert registry.remove("00:14:A5:89:AC:63")

        assert registry.num_devices() == 7
        assert not registry.contains("00:14:A5:89:AC:63")

    def test_remove_absent_mac_is_a_noop(self, registry):
        assert not registry.remove("ff:ff:ff:ff:ff:ff")
        assert registry.num_devices() == 8

    def test_set_replaces_all_fields(self, registry):
        updated = Device(owner="yli", device="ethernet", mac="00:14:22:A6:22:44", enabled=False)

        assert registry.set(updated)

        assert registry.get("00:14:22:A6:22:44") == updated
        assert registry.list_all()[-1].enabled is False
        assert registry.num_devices() == 8

    def test_set_unknown_mac_is_a_noop(self, registry):
        before = registry.list_all()

        assert not registry.set(NEW_DEVICE)

        assert registry.list_all() == before

    def test_replace_moves_record_to_new_mac(self, registry):
        moved = Device(owner="yli", device="eth", mac="00:00:00:00:00:aa")

        assert registry.replace("00:14:22:A6:22:44", moved)

        assert not registry.contains("00:14:22:A6:22:44")
        assert registry.get("00:00:00:00:00:aa") == moved
        assert registry.num_devices() == 8

    def test_replace_refuses_taken_mac(self, registry):
        taken = Device(owner="yli", device="eth", mac="e0:ca:94:d4:4c:9f")

        assert not registry.replace("00:14:22:A6:22:44", taken)

        assert registry.get("e0:ca:94:d4:4c:9f").owner == "ykim"
        assert registry.contains("00:14:22:A6:22:44")

    def test_replace_with_same_mac_updates(self, registry):
        updated = Device(owner="yli", device="eth", mac="00:14:22:A6:22:44")
        assert registry.replace("00:14:22:A6:22:44", updated)
        assert registry.get("00:14:22:A6:22:44").device == "eth"


class TestListing:
    def test_list_all_order(self, registry):
        devices = registry.list_all()
        enabled = [d for d in devices if d.enabled]
        disabled = [d for d in devices if not d.enabled]

        assert devices == enabled + disabled
        assert [d.name for d in enabled] == sorted(d.name for d in enabled)
        assert [d.name for d in disabled] == sorted(d.name for d in disabled)

    def test_list_for_user(self, registry):
        assert [d.device for d in registry.list_for_user("ykim")] == ["laptop", "phone"]
        assert registry.list_for_user("nobody") == []

    def test_list_for_new_user(self, tmp_path):
        registry = DeviceRegistry(str(tmp_path / "dhcpd.conf"))
        device = Device(owner="alice", device="phone", mac="00:00:00:00:00:00", enabled=True)

        registry.add(device)

        assert registry.list_for_user("alice") == [device]


class TestSave:
    def test_round_trip(self, registry, config_file, tmp_path):
        registry.add(NEW_DEVICE)
        registry.add(Device(owner="UNKNOWN", device="printer", mac="00:00:00:00:00:01", enabled=False))
        registry.save()

        reloaded = DeviceRegistry(str(config_file))
        reloaded.load()

        assert _tuples(reloaded) == _tuples(registry)
        assert reloaded.file_head == registry.file_head

    def test_written_text(self, registry, config_file):
        registry.save()

        text = config_file.read_text()
        assert text == registry.to_config_text()
        assert text.startswith(SAMPLE_HEAD)
        assert text.endswith("#  host kblee-roku3wifi { hardware ethernet B0:A7:37:96:CD:8F; }\n}\n")

    def test_file_mode(self, registry, config_file):
        registry.save()
        assert stat.S_IMODE(os.stat(config_file).st_mode) == 0o660

    def test_replacement_keeps_owner_and_group(self, registry, config_file, monkeypatch):
        current = os.stat(config_file)
        calls = []
        monkeypatch.setattr(os, "chown", lambda path, uid, gid: calls.append((uid, gid)))

        registry.save()

        assert calls == [(current.st_uid, current.st_gid)]

    def test_ownership_falls_back_to_group_when_unprivileged(self, registry, config_file, monkeypatch):
        current = os.stat(config_file)
        calls = []

        def chown(path, uid, gid):
            calls.append((uid, gid))
            if uid != -1:
                raise PermissionError("operation not permitted")

        monkeypatch.setattr(os, "chown", chown)

        registry.save()

        assert calls == [(current.st_uid, current.st_gid), (-1, current.st_gid)]
        assert config_file.read_text() == registry.to_config_text()

    def test_save_requests_a_restart(self, registry, restarter):
        registry.save()
        registry.save()
        assert restarter.requests == 2

    def test_save_sets_write_suppression_window(self, config_file):
        registry = DeviceRegistry(str(config_file), suppress_window=0.2)
        registry.load()
        assert not registry.is_ignoring_writes()

        registry.save()
        assert registry.is_ignoring_writes()

        time.sleep(0.3)
        assert not registry.is_ignoring_writes()

    def test_failed_write_is_logged_and_still_restarts(self, tmp_path, caplog):
        restarter = RecordingRestarter()
        registry = DeviceRegistry(str(tmp_path / "missing" / "dhcpd.conf"))
        registry.set_restarter(restarter)
        registry.add(NEW_DEVICE)

        with caplog.at_level(logging.ERROR):
            registry.save()

        assert "registry_save | result: fail" in caplog.text
        assert restarter.requests == 1

    def test_failed_write_can_skip_restart(self, tmp_path):
        restarter = RecordingRestarter()
        registry = DeviceRegistry(str(tmp_path / "missing" / "dhcpd.conf"), restart_on_save_failure=False)
        registry.set_restarter(restarter)

        registry.save()

        assert restarter.requests == 0

    def test_save_without_restarter(self, tmp_path):
        path = tmp_path / "dhcpd.conf"
        registry = DeviceRegistry(str(path))
        registry.add(NEW_DEVICE)

        registry.save()

        assert path.read_text() == "   host dfindley-iPhone { hardware ethernet 00:00:00:00:00:00; }\n}\n"


def test_concurrent_mutations_keep_index_consistent(registry):
    def worker(offset: int):
        for n in range(50):
            mac = f"02:00:00:00:{offset:02x}:{n:02x}"
            registry.add(Device(owner=f"user{offset}", device=f"d{n}", mac=mac))
            if n % 5 == 0:
                registry.remove(mac)
            if n % 7 == 0:
                registry.save()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    devices = registry.list_all()
    assert registry.num_devices() == len(devices) == 8 + 8 * 40
    assert len({d.mac for d in devices}) == len(devices)
