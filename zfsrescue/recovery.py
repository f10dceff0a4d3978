from __future__ import annotations

# Recovery workflow: the concrete steps driven by the sequencer
import os
from typing import List, Mapping, Optional

from . import mounts, repair, zfs
from .config import Settings
from .executil import trace
from .model import RecoveryContext, Resource, ResourceKind
from .registry import ResourceRegistry
from .report import Reporter
from .resolver import Resolver
from .sequencer import State, Step

NOT_ENCRYPTED = "-"


def import_pools(ctx: RecoveryContext, registry: ResourceRegistry, reporter: Reporter) -> RecoveryContext:
    reporter.step("\nImporting ZFS pools...")
    for pool in ctx.pools:
        if zfs.is_imported(pool, dry_run=registry.dry_run):
            reporter.ok(f"Pool {pool} already imported")
            continue
        reporter.step(f"Importing pool: {pool}")
        registry.acquire(
            Resource(ResourceKind.IMPORTED_POOL, pool),
            lambda pool=pool: zfs.import_pool(pool, dry_run=registry.dry_run),
        )
    return ctx


def unlock_root(ctx: RecoveryContext, registry: ResourceRegistry, reporter: Reporter) -> RecoveryContext:
    status = zfs.keystatus(ctx.root_pool, dry_run=registry.dry_run)
    trace("recovery.keystatus", pool=ctx.root_pool, status=status)
    if status == "available":
        reporter.ok("Root pool already unlocked")
        return ctx
    if status == NOT_ENCRYPTED:
        reporter.ok(f"Root pool {ctx.root_pool} is not encrypted")
        return ctx
    reporter.notice("\nRoot pool is encrypted. Unlocking...")
    zfs.load_key(ctx.root_pool, key_file=ctx.key_file, dry_run=registry.dry_run)
    return ctx


def cleanup(ctx: RecoveryContext, registry: ResourceRegistry, reporter: Reporter) -> RecoveryContext:
    reporter.step("\nCleaning up...")
    root = os.path.normpath(ctx.recovery_root)
    mounts.unmount_recovery_root(root, dry_run=registry.dry_run)
    # umount -R took everything below the root with it
    registry.release_kind(ResourceKind.MOUNT_POINT)
    exports = []
    for pool in (ctx.boot_pool, ctx.root_pool):
        if pool in exports:
            continue
        exports.append(pool)
        res = zfs.export_pool(pool, dry_run=registry.dry_run)
        if res.rc != 0:
            reporter.warn(f"could not export {pool} (pool busy), continuing...")
        registry.release(ResourceKind.IMPORTED_POOL, pool)
    return ctx


def _need_pools(ctx: RecoveryContext) -> Optional[str]:
    if not ctx.pools_selected:
        return "root pool, boot pool and EFI partition must be selected"
    return None


def _need_datasets(ctx: RecoveryContext) -> Optional[str]:
    reason = _need_pools(ctx)
    if reason:
        return reason
    if not ctx.datasets_identified:
        return "root and boot datasets must be identified"
    return None


def build_steps(
    settings: Settings,
    resolver: Resolver,
    registry: ResourceRegistry,
    reporter: Reporter,
) -> List[Step]:
    dry_run = registry.dry_run

    def _repair(ctx: RecoveryContext) -> RecoveryContext:
        reporter.step("\nRepairing boot configuration...")
        repair.run_repair(ctx.recovery_root, settings.bootloader_id, settings.grub_target, dry_run=dry_run)
        return ctx

    def _drop_script(ctx: RecoveryContext) -> None:
        if not dry_run:
            repair.remove_script(ctx.recovery_root)

    def _mount(ctx: RecoveryContext) -> RecoveryContext:
        reporter.step("\nMounting filesystems...")
        return mounts.mount_recovery_root(ctx, registry, reporter)

    return [
        Step("select", State.INIT, State.POOLS_SELECTED, resolver.select_pools),
        Step(
            "import",
            State.POOLS_SELECTED,
            State.POOLS_IMPORTED,
            lambda ctx: import_pools(ctx, registry, reporter),
            precondition=_need_pools,
        ),
        Step(
            "unlock",
            State.POOLS_IMPORTED,
            State.UNLOCKED,
            lambda ctx: unlock_root(ctx, registry, reporter),
            precondition=_need_pools,
        ),
        Step(
            "identify",
            State.UNLOCKED,
            State.DATASETS_IDENTIFIED,
            resolver.identify_datasets,
            precondition=_need_pools,
        ),
        Step("mount", State.DATASETS_IDENTIFIED, State.MOUNTED, _mount, precondition=_need_datasets),
        Step(
            "repair",
            State.MOUNTED,
            State.REPAIRED,
            _repair,
            precondition=_need_datasets,
            compensation=_drop_script,
        ),
        Step(
            "cleanup",
            State.REPAIRED,
            State.CLEANED_UP,
            lambda ctx: cleanup(ctx, registry, reporter),
        ),
    ]


def restore_commands(originals: Mapping[str, str]) -> list[str]:
    """``zfs set`` lines that put back the mountpoints the mount step changed."""

    return [f"zfs set mountpoint={value} {dataset}" for dataset, value in sorted(originals.items())]
