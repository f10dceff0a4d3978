"""Boot repair executed inside the recovery chroot."""

from __future__ import annotations

import os
from pathlib import Path

from .config import DEFAULT_BOOTLOADER_ID, DEFAULT_GRUB_TARGET
from .executil import Result, run, trace
from .paths import under_root

SCRIPT_TARGET = "/var/tmp/zfsrescue-repair.sh"
PURGE_PACKAGES = ("dracut*", "zfs-dracut")
REINSTALL_PACKAGES = ("initramfs-tools", "zfs-initramfs", "grub-efi-amd64")
CHROOT_TIMEOUT = None


def render_script(bootloader_id: str = DEFAULT_BOOTLOADER_ID, grub_target: str = DEFAULT_GRUB_TARGET) -> str:
    lines = [
        "#!/bin/bash",
        "set -e",
        f"apt-get purge -y {' '.join(PURGE_PACKAGES)} || true",
        f"apt-get install -y --reinstall {' '.join(REINSTALL_PACKAGES)}",
        "update-initramfs -u -k all",
        (
            f"grub-install --target={grub_target} --efi-directory=/boot/efi "
            f"--bootloader-id={bootloader_id} --recheck"
        ),
        "update-grub",
        "",
    ]
    return "\n".join(lines)


def _write_file(path: Path, content: str, mode: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as fh:
        fh.write(content)
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp_path, path)
    os.chmod(path, mode)


def script_host_path(root: str) -> str:
    return under_root(root, SCRIPT_TARGET)


def materialize(root: str, bootloader_id: str = DEFAULT_BOOTLOADER_ID, grub_target: str = DEFAULT_GRUB_TARGET) -> str:
    host_path = script_host_path(root)
    _write_file(Path(host_path), render_script(bootloader_id, grub_target), 0o755)
    trace("repair.script_written", path=host_path)
    return host_path


def remove_script(root: str) -> bool:
    host_path = script_host_path(root)
    try:
        os.remove(host_path)
    except FileNotFoundError:
        return False
    trace("repair.script_removed", path=host_path)
    return True


def run_repair(
    root: str,
    bootloader_id: str = DEFAULT_BOOTLOADER_ID,
    grub_target: str = DEFAULT_GRUB_TARGET,
    dry_run: bool = False,
) -> Result:
    """Write the repair script into ``root`` and run it under chroot.

    The chroot run is one mandatory unit: a non-zero exit raises
    ``CalledProcessError`` and the script stays in place for inspection until
    the caller's compensation removes it.
    """

    if dry_run:
        trace("repair.dry_run", script=render_script(bootloader_id, grub_target))
        return run(["chroot", root, SCRIPT_TARGET], check=True, dry_run=True)
    materialize(root, bootloader_id, grub_target)
    result = run(["chroot", root, SCRIPT_TARGET], check=True, timeout=CHROOT_TIMEOUT, interactive=True)
    remove_script(root)
    return result
