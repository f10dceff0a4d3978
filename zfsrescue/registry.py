"""Resource registry: ordered record of what this run acquired, for rollback."""

from __future__ import annotations

import contextlib
import subprocess
from typing import Callable, Dict, Iterator, List

from .errors import AcquisitionFailure, CompensationFailure
from .executil import Result, describe_failure, run, trace, warn
from .model import Resource, ResourceKind


def _unmount(identifier: str, dry_run: bool) -> Result:
    return run(["umount", "-R", "-l", identifier], check=False, dry_run=dry_run)


def _export(identifier: str, dry_run: bool) -> Result:
    return run(["zpool", "export", identifier], check=False, dry_run=dry_run)


def _close_mapper(identifier: str, dry_run: bool) -> Result:
    return run(["cryptsetup", "close", identifier], check=False, dry_run=dry_run)


COMPENSATIONS: Dict[ResourceKind, Callable[[str, bool], Result]] = {
    ResourceKind.MOUNT_POINT: _unmount,
    ResourceKind.IMPORTED_POOL: _export,
    ResourceKind.MAPPER_DEVICE: _close_mapper,
}


class ResourceRegistry:
    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.acquired: List[Resource] = []
        self.compensated: List[Resource] = []
        self.failures: List[CompensationFailure] = []
        self.rolled_back = False
        # dataset -> mountpoint value seen before this run retargeted it
        self.original_mountpoints: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self.acquired)

    def __contains__(self, item) -> bool:
        key = item.key() if isinstance(item, Resource) else tuple(item)
        return any(r.key() == key for r in self.acquired)

    def track(self, resource: Resource) -> Resource:
        """Record ``resource`` as acquired by a command the caller already ran."""

        resource.acquired = True
        self.acquired.append(resource)
        trace("registry.acquired", kind=resource.kind.value, identifier=resource.identifier)
        return resource

    def acquire(self, resource: Resource, action: Callable[[], Result]) -> Result:
        """Run ``action``; record ``resource`` only when it succeeds."""

        try:
            result = action()
        except subprocess.CalledProcessError as exc:
            trace("registry.acquire_failed", kind=resource.kind.value, identifier=resource.identifier, rc=exc.returncode)
            raise AcquisitionFailure(
                f"could not acquire {resource.kind.value} {resource.identifier}: {describe_failure(exc)}",
                resource=resource,
                rc=exc.returncode,
            ) from exc
        if result is not None and getattr(result, "rc", 0) != 0:
            trace("registry.acquire_failed", kind=resource.kind.value, identifier=resource.identifier, rc=result.rc)
            raise AcquisitionFailure(
                f"could not acquire {resource.kind.value} {resource.identifier}: rc={result.rc}",
                resource=resource,
                rc=result.rc,
            )
        self.track(resource)
        return result

    def note_mountpoint(self, dataset: str, value: str) -> None:
        """Remember the first mountpoint seen for ``dataset``.  Never compensated."""

        if dataset not in self.original_mountpoints:
            self.original_mountpoints[dataset] = value
            trace("registry.mountpoint_noted", dataset=dataset, value=value)

    def release(self, kind: ResourceKind, identifier: str) -> bool:
        """Forget a resource a forward step has already given back."""

        for idx in range(len(self.acquired) - 1, -1, -1):
            if self.acquired[idx].key() == (kind, identifier):
                res = self.acquired.pop(idx)
                res.acquired = False
                trace("registry.released", kind=kind.value, identifier=identifier)
                return True
        return False

    def release_kind(self, kind: ResourceKind) -> list[Resource]:
        released = [r for r in self.acquired if r.kind == kind]
        for res in released:
            self.release(res.kind, res.identifier)
        return released

    def rollback_all(self) -> list[Resource]:
        """Compensate everything acquired, newest first.

        Compensation failures are logged and collected in ``failures`` so the
        remaining resources are still released.  Only the first call acts.
        """

        if self.rolled_back:
            trace("registry.rollback_skipped")
            return []
        self.rolled_back = True
        done: list[Resource] = []
        trace("registry.rollback_start", count=len(self.acquired))
        while self.acquired:
            res = self.acquired.pop()
            compensate = COMPENSATIONS[res.kind]
            try:
                result = compensate(res.identifier, self.dry_run)
                failed = result is not None and result.rc != 0
                detail = (result.err or result.out or "").strip() if failed else ""
            except (OSError, subprocess.SubprocessError) as exc:
                failed, detail = True, str(exc)
            if failed:
                failure = CompensationFailure(
                    f"could not release {res.kind.value} {res.identifier}: {detail or 'non-zero exit'}",
                    resource=res,
                )
                self.failures.append(failure)
                warn("registry.compensation_failed", kind=res.kind.value, identifier=res.identifier, detail=detail)
            res.acquired = False
            done.append(res)
            self.compensated.append(res)
        trace("registry.rollback_done", compensated=[r.identifier for r in done], failures=len(self.failures))
        return done

    @contextlib.contextmanager
    def guard(self) -> Iterator["ResourceRegistry"]:
        """Roll back on any exception leaving the block, interrupts included."""

        try:
            yield self
        except BaseException:
            self.rollback_all()
            raise
