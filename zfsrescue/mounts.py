"""Recovery-root mounts: datasets, ESP, chroot bind mounts."""

from __future__ import annotations

import os

from . import zfs
from .executil import run, trace
from .model import RecoveryContext, Resource, ResourceKind
from .paths import under_root
from .registry import ResourceRegistry
from .report import Reporter

BIND_DIRS = ("dev", "dev/pts", "proc", "sys", "run")
MOUNTINFO = "/proc/self/mountinfo"


def _unescape(field: str) -> str:
    return (
        field.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


def mounted_targets(mountinfo: str = MOUNTINFO) -> set[str]:
    targets: set[str] = set()
    try:
        with open(mountinfo, "r", encoding="utf-8") as fh:
            for line in fh:
                parts = line.split()
                if len(parts) < 5:
                    continue
                targets.add(os.path.normpath(_unescape(parts[4])))
    except FileNotFoundError:
        return set()
    except OSError as exc:
        trace("mounts.mountinfo_error", error=str(exc))
    return targets


def is_mountpoint(path: str) -> bool:
    return os.path.normpath(path) in mounted_targets()


def layout(root: str) -> dict[str, str]:
    return {
        "root": os.path.normpath(root),
        "boot": under_root(root, "boot"),
        "efi": under_root(root, "boot/efi"),
    }


def prepare_dirs(root: str, dry_run: bool = False) -> None:
    paths = layout(root)
    run(["mkdir", "-p", paths["root"], paths["boot"], paths["efi"]], check=True, dry_run=dry_run)


def retarget_mountpoints(ctx: RecoveryContext, registry: ResourceRegistry) -> RecoveryContext:
    """Point the root and boot datasets at the recovery root.

    Each previous value is noted on ``registry`` as soon as its change lands,
    so it is still known when a later command in the same step fails.  The
    values are also carried on the returned context.
    """

    dry_run = registry.dry_run
    paths = layout(ctx.recovery_root)
    originals = dict(ctx.original_mountpoints)
    for dataset, target in ((ctx.root_dataset, paths["root"]), (ctx.boot_dataset, paths["boot"])):
        current = zfs.get_property(dataset, "mountpoint", dry_run=dry_run)
        if current == target:
            trace("mounts.mountpoint_already_set", dataset=dataset, target=target)
            continue
        zfs.set_mountpoint(dataset, target, dry_run=dry_run)
        if current and dataset not in originals:
            originals[dataset] = current
            registry.note_mountpoint(dataset, current)
    return ctx.with_updates(original_mountpoints=originals)


def mount_dataset(dataset: str, target: str, registry: ResourceRegistry, reporter: Reporter) -> bool:
    """Mount ``dataset``; failure is reported as possibly-already-mounted."""

    dry_run = registry.dry_run
    if not dry_run and zfs.is_mounted(dataset):
        reporter.ok(f"{dataset} already mounted")
        return False
    res = zfs.mount_dataset(dataset, dry_run=dry_run)
    if res.rc != 0:
        reporter.notice(f"Note: {dataset} already mounted or failed to mount, continuing...")
        trace("mounts.zfs_mount_failed", dataset=dataset, rc=res.rc, err=(res.err or "").strip())
        return False
    registry.track(Resource(ResourceKind.MOUNT_POINT, target))
    return True


def mount_efi(device: str, target: str, registry: ResourceRegistry, reporter: Reporter) -> bool:
    dry_run = registry.dry_run
    if not dry_run and is_mountpoint(target):
        reporter.ok(f"EFI partition already mounted at {target}")
        return False
    res = run(["mount", device, target], check=False, dry_run=dry_run)
    if res.rc != 0:
        reporter.notice(f"Note: EFI partition {device} already mounted or failed to mount, continuing...")
        trace("mounts.efi_mount_failed", device=device, rc=res.rc, err=(res.err or "").strip())
        return False
    registry.track(Resource(ResourceKind.MOUNT_POINT, target))
    return True


def bind_mounts(root: str, registry: ResourceRegistry) -> list[str]:
    """Recursively bind the host pseudo filesystems into ``root`` as slave mounts."""

    dry_run = registry.dry_run
    bound: list[str] = []
    for d in BIND_DIRS:
        src = f"/{d}"
        dst = under_root(root, d)
        if not dry_run and is_mountpoint(dst):
            trace("mounts.bind_present", target=dst)
            continue
        run(["mkdir", "-p", dst], check=True, dry_run=dry_run)
        registry.acquire(
            Resource(ResourceKind.MOUNT_POINT, dst),
            lambda src=src, dst=dst: run(["mount", "--rbind", src, dst], check=True, dry_run=dry_run),
        )
        run(["mount", "--make-rslave", dst], check=True, dry_run=dry_run)
        bound.append(dst)
    return bound


def copy_resolv_conf(root: str, reporter: Reporter, dry_run: bool = False) -> bool:
    dst = under_root(root, "etc/resolv.conf")
    res = run(["cp", "-L", "/etc/resolv.conf", dst], check=False, dry_run=dry_run)
    if res.rc != 0:
        reporter.warn("resolv.conf copy skipped (already same or error)")
        return False
    return True


def mount_recovery_root(
    ctx: RecoveryContext,
    registry: ResourceRegistry,
    reporter: Reporter,
) -> RecoveryContext:
    dry_run = registry.dry_run
    paths = layout(ctx.recovery_root)
    prepare_dirs(ctx.recovery_root, dry_run=dry_run)
    ctx = retarget_mountpoints(ctx, registry)
    mount_dataset(ctx.root_dataset, paths["root"], registry, reporter)
    mount_dataset(ctx.boot_dataset, paths["boot"], registry, reporter)
    # boot/efi lives on the boot dataset, so it only exists once that is mounted
    run(["mkdir", "-p", paths["efi"]], check=True, dry_run=dry_run)
    mount_efi(ctx.efi_partition, paths["efi"], registry, reporter)
    bind_mounts(ctx.recovery_root, registry)
    copy_resolv_conf(ctx.recovery_root, reporter, dry_run=dry_run)
    return ctx


def unmount_recovery_root(root: str, dry_run: bool = False) -> None:
    run(["umount", "-R", os.path.normpath(root)], check=True, dry_run=dry_run)
