"""Keystore unlock: open the encrypted keystore zvol and load dataset keys."""

from __future__ import annotations

import os

from . import zfs
from .executil import run, trace
from .model import Resource, ResourceKind, UnlockPlan
from .mounts import is_mountpoint
from .paths import keystore_dir, keystore_zvol, mapper_path
from .registry import ResourceRegistry
from .report import Reporter

REQUIRED_TOOLS = ("cryptsetup", "zfs", "mount")


def mapper_open(name: str) -> bool:
    return os.path.exists(mapper_path(name))


def open_keystore(plan: UnlockPlan, registry: ResourceRegistry, reporter: Reporter) -> bool:
    """``cryptsetup open`` the keystore zvol unless the mapper already exists.

    cryptsetup prompts for the passphrase on the terminal.
    """

    zvol = keystore_zvol(plan.pool)
    if not registry.dry_run and mapper_open(plan.mapper):
        reporter.ok(f"Keystore mapper {plan.mapper} already open")
        return False
    reporter.step(f"Opening ZFS keystore volume: {zvol} -> {plan.mapper}...")
    registry.acquire(
        Resource(ResourceKind.MAPPER_DEVICE, plan.mapper),
        lambda: run(["cryptsetup", "open", zvol, plan.mapper], check=True, dry_run=registry.dry_run, interactive=True),
    )
    return True


def mount_keystore(plan: UnlockPlan, registry: ResourceRegistry, reporter: Reporter) -> bool:
    key_dir = keystore_dir(plan.pool)
    if not registry.dry_run and is_mountpoint(key_dir):
        reporter.ok(f"Keystore already mounted at {key_dir}")
        return False
    reporter.step(f"Mounting keystore at {key_dir}...")
    run(["mkdir", "-p", key_dir], check=True, dry_run=registry.dry_run)
    registry.acquire(
        Resource(ResourceKind.MOUNT_POINT, key_dir),
        lambda: run(["mount", mapper_path(plan.mapper), key_dir], check=True, dry_run=registry.dry_run),
    )
    return True


def unlock_keys(plan: UnlockPlan, registry: ResourceRegistry, reporter: Reporter) -> dict:
    """Open and mount the keystore, then load every dataset key.

    Runs inside ``registry.guard()`` so a failure closes what was opened.  On
    success the mapper and mount stay in place for the recovery run.
    """

    with registry.guard():
        opened = open_keystore(plan, registry, reporter)
        mounted = mount_keystore(plan, registry, reporter)
        reporter.step("Loading ZFS dataset keys...")
        zfs.load_all_keys(dry_run=registry.dry_run)
    trace("keystore.unlocked", pool=plan.pool, mapper=plan.mapper, opened=opened, mounted=mounted)
    return {
        "pool": plan.pool,
        "mapper": plan.mapper,
        "zvol": keystore_zvol(plan.pool),
        "key_dir": keystore_dir(plan.pool),
        "opened": opened,
        "mounted": mounted,
    }
