import pytest

from zfsrescue import keystore
from zfsrescue.model import ResourceKind, UnlockPlan
from zfsrescue.registry import ResourceRegistry
from zfsrescue.report import Reporter


def test_unlock_opens_mounts_and_loads(fake_host):
    fake_host.imported = {"rpool"}
    reg = ResourceRegistry()
    meta = keystore.unlock_keys(UnlockPlan(), reg, Reporter(color=False))

    assert fake_host.commands("cryptsetup") == [["cryptsetup", "open", "/dev/zvol/rpool/keystore", "keystore_plain"]]
    assert ["mkdir", "-p", "/run/keystore/rpool"] in fake_host.calls
    assert ["mount", "/dev/mapper/keystore_plain", "/run/keystore/rpool"] in fake_host.calls
    assert fake_host.commands("zfs", "load-key") == [["zfs", "load-key", "-a"]]
    assert fake_host.keystatus["rpool"] == "available"
    assert meta["opened"] and meta["mounted"]
    assert meta["key_dir"] == "/run/keystore/rpool"
    # success keeps the keystore available for the recovery run
    assert [r.kind for r in reg.acquired] == [ResourceKind.MAPPER_DEVICE, ResourceKind.MOUNT_POINT]
    assert "/run/keystore/rpool" in fake_host.mounts


def test_unlock_skips_what_is_already_open(fake_host):
    fake_host.mappers = {"ks"}
    fake_host.mounts = ["/run/keystore/tank"]
    reg = ResourceRegistry()
    meta = keystore.unlock_keys(UnlockPlan(pool="tank", mapper="ks"), reg, Reporter(color=False))
    assert not meta["opened"]
    assert not meta["mounted"]
    assert fake_host.commands("cryptsetup") == []
    assert len(reg) == 0


def test_load_key_failure_closes_keystore(fake_host):
    fake_host.fail_on("zfs", "load-key")
    reg = ResourceRegistry()
    with pytest.raises(Exception):
        keystore.unlock_keys(UnlockPlan(), reg, Reporter(color=False))
    assert fake_host.mappers == set()
    assert "/run/keystore/rpool" not in fake_host.mounts
    assert fake_host.calls[-2:] == [
        ["umount", "-R", "-l", "/run/keystore/rpool"],
        ["cryptsetup", "close", "keystore_plain"],
    ]


def test_mount_failure_closes_mapper(fake_host):
    fake_host.fail_on("mount", "/dev/mapper/keystore_plain")
    reg = ResourceRegistry()
    with pytest.raises(Exception):
        keystore.unlock_keys(UnlockPlan(), reg, Reporter(color=False))
    assert fake_host.mappers == set()
    assert fake_host.commands("zfs") == []
