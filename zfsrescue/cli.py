"""CLI entrypoints: ``zfs-unlock-keys`` and ``zfs-recover``."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Dict, Optional

from .config import load_settings
from .errors import NoPoolsFound, PrerequisiteError
from .executil import require_root, require_tools, resolve_log_path, trace
from .keystore import REQUIRED_TOOLS as UNLOCK_TOOLS
from .keystore import unlock_keys
from .model import Flags, RecoveryContext, UnlockPlan
from .recovery import build_steps, restore_commands
from .registry import ResourceRegistry
from .report import Reporter, emit_result
from .resolver import Prompt, Resolver
from .sequencer import State, Sequencer, parse_state

RECOVER_TOOLS = ("zpool", "zfs", "mount", "umount", "chroot", "cp", "lsblk")


def _emit_result(kind: str, reporter: Reporter, extra: Optional[Dict[str, Any]] = None) -> None:
    raise SystemExit(emit_result(kind, extra, reporter))


def _add_output_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dry-run", action="store_true", help="print the commands instead of running them")
    parser.add_argument("--json", dest="json", action="store_true", default=True)
    parser.add_argument("--no-json", dest="json", action="store_false")
    parser.add_argument("--no-color", dest="color", action="store_false", default=True)


def build_unlock_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zfs-unlock-keys",
        description="Open the ZFS keystore volume and load all dataset keys.",
    )
    parser.add_argument("pool", nargs="?", default="rpool")
    parser.add_argument("mapper", nargs="?", default="keystore_plain")
    _add_output_flags(parser)
    return parser


def build_recover_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zfs-recover",
        description=(
            "Repair a broken ZFS-on-root boot configuration. "
            "ROOT_POOL, BOOT_POOL and EFI_PART skip the interactive selection."
        ),
    )
    parser.add_argument("key_file", nargs="?", default=None)
    parser.add_argument("--recovery-root", default=None)
    parser.add_argument(
        "--stop-after",
        default=None,
        help="stop once this state is reached (e.g. Mounted) and leave everything in place",
    )
    _add_output_flags(parser)
    return parser


def _flags(args: argparse.Namespace) -> Flags:
    return Flags(
        dry_run=args.dry_run,
        json=args.json,
        color=args.color,
        stop_after=getattr(args, "stop_after", None),
    )


def _check_prerequisites(flags: Flags, tools) -> None:
    if flags.dry_run:
        return
    require_root()
    require_tools(tools)


def _unlock_impl(argv: Optional[list[str]] = None) -> int:
    args = build_unlock_parser().parse_args(argv)
    flags = _flags(args)
    reporter = Reporter(color=flags.color, json_output=flags.json)
    trace("cli.unlock.args", pool=args.pool, mapper=args.mapper, dry_run=flags.dry_run)
    try:
        _check_prerequisites(flags, UNLOCK_TOOLS)
    except PrerequisiteError as exc:
        reporter.fail(f"Error: {exc}")
        _emit_result("FAIL_PREREQUISITE", reporter, {"reason": str(exc)})

    registry = ResourceRegistry(dry_run=flags.dry_run)
    plan = UnlockPlan(pool=args.pool, mapper=args.mapper)
    try:
        meta = unlock_keys(plan, registry, reporter)
    except KeyboardInterrupt:
        reporter.fail("Interrupted")
        _emit_result("FAIL_INTERRUPTED", reporter, {"pool": plan.pool, "compensated": _ids(registry.compensated)})
    except Exception as exc:  # noqa: BLE001
        reporter.fail(f"Unlock failed: {exc}")
        _emit_result(
            "FAIL_STEP",
            reporter,
            {"pool": plan.pool, "reason": str(exc), "compensated": _ids(registry.compensated)},
        )
    reporter.ok("All keys loaded successfully. You may now mount and access your pools.")
    _emit_result("UNLOCK_OK", reporter, meta)
    return 0


def _ids(resources) -> list[str]:
    return [f"{r.kind.value}:{r.identifier}" for r in resources]


def _restore_hint(registry: ResourceRegistry, reporter: Reporter) -> list[str]:
    """Print the commands that undo the mountpoint changes, whatever the outcome."""

    restore = restore_commands(registry.original_mountpoints)
    if restore:
        reporter.notice("Dataset mountpoints were changed for recovery. To restore them later run:")
        for line in restore:
            reporter.plain(f"  {line}")
    return restore


def _recover_impl(argv: Optional[list[str]] = None, prompt: Optional[Prompt] = None) -> int:
    args = build_recover_parser().parse_args(argv)
    flags = _flags(args)
    settings = load_settings()
    reporter = Reporter(color=flags.color, json_output=flags.json)
    trace(
        "cli.recover.args",
        key_file=args.key_file,
        recovery_root=args.recovery_root,
        stop_after=flags.stop_after,
        dry_run=flags.dry_run,
        log_path=resolve_log_path(),
    )

    until: Optional[State] = None
    try:
        if flags.stop_after:
            try:
                until = parse_state(flags.stop_after)
            except ValueError as exc:
                raise PrerequisiteError(str(exc)) from exc
        _check_prerequisites(flags, RECOVER_TOOLS)
        key_file = None
        if args.key_file:
            key_file = os.path.abspath(args.key_file)
            if not os.path.isfile(key_file):
                raise PrerequisiteError(f"Key file not found: {args.key_file}")
    except PrerequisiteError as exc:
        reporter.fail(str(exc))
        _emit_result("FAIL_PREREQUISITE", reporter, {"reason": str(exc)})

    reporter.banner("=== ZFS Recovery ===")
    reporter.banner("This will help you repair a broken ZFS boot configuration.\n")
    if key_file:
        reporter.ok(f"Using key file: {key_file}")

    ctx = RecoveryContext(
        key_file=key_file,
        recovery_root=args.recovery_root or settings.recovery_root,
    )
    registry = ResourceRegistry(dry_run=flags.dry_run)
    resolver = Resolver(settings, reporter, prompt=prompt, dry_run=flags.dry_run)
    sequencer = Sequencer(build_steps(settings, resolver, registry, reporter), registry)
    try:
        outcome = sequencer.run(ctx, until=until)
    except KeyboardInterrupt:
        reporter.fail("\nInterrupted; acquired resources were released.")
        _emit_result(
            "FAIL_INTERRUPTED",
            reporter,
            {
                "compensated": _ids(registry.compensated),
                "restore_mountpoints": _restore_hint(registry, reporter),
            },
        )

    extra: Dict[str, Any] = {
        "state": outcome.state.value,
        "steps": [t.step for t in outcome.history if t.target != State.FAILED],
        "root_pool": outcome.context.root_pool,
        "boot_pool": outcome.context.boot_pool,
        "efi_partition": outcome.context.efi_partition,
        "root_dataset": outcome.context.root_dataset,
        "boot_dataset": outcome.context.boot_dataset,
        "prompts": resolver.prompts_asked,
    }
    restore = _restore_hint(registry, reporter)
    if restore:
        extra["restore_mountpoints"] = restore
    if not outcome.ok:
        if registry.compensated:
            reporter.notice("\n[cleanup] Unmounted filesystems and exported pools acquired by this run.")
        reporter.fail(f"Recovery failed: {outcome.error}")
        extra["reason"] = str(outcome.error)
        extra["compensated"] = _ids(outcome.compensated)
        extra["compensation_failures"] = [str(f) for f in registry.failures]
        if isinstance(outcome.error, NoPoolsFound):
            kind = "FAIL_NO_POOLS"
        elif isinstance(outcome.error, PrerequisiteError):
            kind = "FAIL_PREREQUISITE"
        else:
            kind = "FAIL_STEP"
        _emit_result(kind, reporter, extra)

    if outcome.state != State.CLEANED_UP:
        reporter.ok(f"\nStopped at {outcome.state.value}; mounts and pools were left in place.")
        _emit_result("PARTIAL_OK", reporter, extra)
    reporter.ok("\n=================================================================")
    reporter.ok("Recovery complete! Remove the USB and reboot.")
    reporter.ok("=================================================================")
    _emit_result("RECOVERY_OK", reporter, extra)
    return 0


def unlock_main(argv: Optional[list[str]] = None) -> int:
    try:
        return _unlock_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        _emit_result("FAIL_UNHANDLED", Reporter(), {"error": str(exc)})


def recover_main(argv: Optional[list[str]] = None) -> int:
    try:
        return _recover_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        _emit_result("FAIL_UNHANDLED", Reporter(), {"error": str(exc)})


if __name__ == "__main__":
    sys.exit(recover_main())
