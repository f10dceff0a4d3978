from zfsrescue import config, paths
from zfsrescue.model import RecoveryContext


def test_load_settings_defaults():
    s = config.load_settings({})
    assert s.recovery_root == "/mnt"
    assert s.bootloader_id == "ubuntu"
    assert s.grub_target == "x86_64-efi"
    assert not s.selection_complete


def test_load_settings_ignores_blank_values():
    s = config.load_settings(
        {
            "ROOT_POOL": "rpool",
            "BOOT_POOL": "  ",
            "EFI_PART": "/dev/sda1",
            "ZFSRESCUE_RECOVERY_ROOT": "/target",
            "ZFSRESCUE_BOOTLOADER_ID": "debian",
        }
    )
    assert s.boot_pool is None
    assert not s.selection_complete
    assert s.recovery_root == "/target"
    assert s.bootloader_id == "debian"


def test_base_path_override(tmp_path, monkeypatch):
    monkeypatch.setenv("ZFSRESCUE_BASE_PATH", str(tmp_path))
    assert paths.logs_dir() == str(tmp_path / "logs")


def test_path_helpers():
    assert paths.keystore_zvol("rpool") == "/dev/zvol/rpool/keystore"
    assert paths.keystore_dir("rpool") == "/run/keystore/rpool"
    assert paths.mapper_path("keystore_plain") == "/dev/mapper/keystore_plain"
    assert paths.under_root("/mnt", "/etc/resolv.conf") == "/mnt/etc/resolv.conf"


def test_context_is_immutable_and_dedupes_pools():
    ctx = RecoveryContext(root_pool="rpool", boot_pool="rpool", efi_partition="/dev/sda1")
    assert ctx.pools == ["rpool"]
    updated = ctx.with_updates(root_dataset="rpool/ROOT")
    assert ctx.root_dataset is None
    assert updated.root_dataset == "rpool/ROOT"
    try:
        ctx.root_pool = "x"
    except AttributeError:
        pass
    else:
        raise AssertionError("context must be frozen")
