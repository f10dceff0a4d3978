import os
import subprocess
from typing import Dict, Set

import pytest

LSBLK_SAMPLE = (
    "NAME          SIZE TYPE  FSTYPE      MOUNTPOINT\n"
    "loop0         2.4G loop  squashfs    /rofs\n"
    "nvme0n1     476.9G disk\n"
    "├─nvme0n1p1   512M part  vfat\n"
    "├─nvme0n1p2     2G part  zfs_member\n"
    "└─nvme0n1p3   470G part  zfs_member\n"
)


class FakeHost:
    """In-memory stand-in for the pool table, key status and mount table."""

    def __init__(self):
        self.importable = {"rpool", "bpool"}
        self.imported: Set[str] = set()
        self.keystatus = {"rpool": "unavailable", "bpool": "-"}
        self.bootfs = {"rpool": "rpool/ROOT/ubuntu", "bpool": "bpool/BOOT/ubuntu"}
        self.datasets = {
            "rpool": ["rpool", "rpool/ROOT", "rpool/ROOT/ubuntu", "rpool/ROOT/ubuntu@install"],
            "bpool": ["bpool", "bpool/BOOT", "bpool/BOOT/ubuntu"],
        }
        self.mountpoints = {"rpool/ROOT/ubuntu": "/", "bpool/BOOT/ubuntu": "/boot"}
        self.mounted_datasets: Set[str] = set()
        self.mounts: list = []
        self.mappers: Set[str] = set()
        self.failures: Dict[tuple, int] = {}
        self.calls: list = []
        self.chroot_runs: list = []

    def fail_on(self, *prefix, rc=1):
        self.failures[tuple(prefix)] = rc

    def commands(self, *prefix):
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]

    def mounted_targets(self):
        return {os.path.normpath(m) for m in self.mounts}

    def mounts_under(self, root):
        root = os.path.normpath(root)
        return [m for m in self.mounts if m == root or m.startswith(root + "/")]

    def run(self, cmd, check=True, dry_run=False, timeout=None, env=None, interactive=False):
        from zfsrescue.executil import Result

        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        if dry_run:
            return Result(0, "DRY-RUN: " + " ".join(cmd), "", 0.0)
        rc = None
        for prefix, code in self.failures.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                rc, out, err = code, "", "injected failure"
                break
        if rc is None:
            rc, out, err = self._dispatch(cmd)
        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, cmd, out, err)
        return Result(rc, out, err, 0.0)

    def _dispatch(self, cmd):
        head, args = cmd[0], cmd[1:]
        handler = getattr(self, "_" + head.replace("-", "_"), None)
        if handler is None:
            return 0, "", ""
        return handler(args)

    def _zpool(self, args):
        if args == ["list", "-H", "-o", "name"]:
            return 0, "".join(f"{p}\n" for p in sorted(self.imported)), ""
        if args == ["import"]:
            pending = sorted(self.importable - self.imported)
            if not pending:
                return 1, "", "no pools available to import\n"
            text = "".join(f"   pool: {p}\n     id: 1234\n  state: ONLINE\n" for p in pending)
            return 0, text, ""
        if args[:3] == ["import", "-f", "-N"]:
            pool = args[3]
            if pool not in self.importable or pool in self.imported:
                return 1, "", f"cannot import '{pool}': no such pool available\n"
            self.imported.add(pool)
            return 0, "", ""
        if args[0] == "export":
            pool = args[1]
            if pool not in self.imported:
                return 1, "", f"cannot open '{pool}': no such pool\n"
            for ds in list(self.mounted_datasets):
                if ds.split("/")[0] == pool:
                    self._unmount_tree(self.mountpoints[ds])
            self.imported.discard(pool)
            return 0, "", ""
        if args[:4] == ["get", "-H", "-o", "name,property,value"] and args[4] == "bootfs":
            pool = args[5]
            if pool not in self.imported:
                return 1, "", f"cannot open '{pool}': no such pool\n"
            return 0, f"{pool}\tbootfs\t{self.bootfs.get(pool) or '-'}\n", ""
        return 0, "", ""

    def _zfs(self, args):
        if args[:4] == ["get", "-H", "-o", "name,property,value"]:
            prop, ds = args[4], args[5]
            if ds.split("/")[0] not in self.imported:
                return 1, "", f"cannot open '{ds}': dataset does not exist\n"
            if prop == "keystatus":
                value = self.keystatus.get(ds, "-")
            elif prop == "mountpoint":
                value = self.mountpoints.get(ds, "/" + ds)
            elif prop == "mounted":
                value = "yes" if ds in self.mounted_datasets else "no"
            else:
                value = "-"
            return 0, f"{ds}\t{prop}\t{value}\n", ""
        if args[0] == "load-key":
            if args[1] == "-a":
                for pool, status in self.keystatus.items():
                    if status == "unavailable" and pool in self.imported:
                        self.keystatus[pool] = "available"
                return 0, "", ""
            pool = args[-1]
            self.keystatus[pool] = "available"
            return 0, "", ""
        if args[:4] == ["list", "-H", "-o", "name"]:
            pool = args[-1]
            return 0, "".join(f"{d}\n" for d in self.datasets.get(pool, [])), ""
        if args[0] == "set":
            prop, value = args[1].split("=", 1)
            self.mountpoints[args[2]] = value
            return 0, "", ""
        if args[0] == "mount":
            ds = args[1]
            if ds in self.mounted_datasets:
                return 1, "", f"cannot mount '{ds}': filesystem already mounted\n"
            if self.keystatus.get(ds.split("/")[0]) == "unavailable":
                return 1, "", "encryption key not loaded\n"
            self.mounted_datasets.add(ds)
            self.mounts.append(os.path.normpath(self.mountpoints[ds]))
            return 0, "", ""
        return 0, "", ""

    def _mount(self, args):
        if args[0] == "--rbind":
            src, dst = args[1], os.path.normpath(args[2])
            self.mounts.append(dst)
            if src == "/dev":
                self.mounts.append(dst + "/pts")
            return 0, "", ""
        if args[0] == "--make-rslave":
            return 0, "", ""
        device, target = args[0], os.path.normpath(args[1])
        if target in self.mounts:
            return 32, "", f"mount: {target}: {device} already mounted\n"
        self.mounts.append(target)
        return 0, "", ""

    def _unmount_tree(self, path):
        removed = self.mounts_under(path)
        self.mounts = [m for m in self.mounts if m not in removed]
        for ds in list(self.mounted_datasets):
            if os.path.normpath(self.mountpoints[ds]) in removed:
                self.mounted_datasets.discard(ds)
        return removed

    def _umount(self, args):
        path = os.path.normpath(args[-1])
        if not self._unmount_tree(path) and "-l" not in args:
            return 32, "", f"umount: {path}: not mounted\n"
        return 0, "", ""

    def _chroot(self, args):
        root, script = args[0], args[1]
        host_path = os.path.join(root, script.lstrip("/"))
        self.chroot_runs.append((root, script, os.path.exists(host_path)))
        return 0, "", ""

    def _lsblk(self, args):
        return 0, LSBLK_SAMPLE, ""

    def _cryptsetup(self, args):
        if args[0] == "open":
            if args[2] in self.mappers:
                return 5, "", f"Device {args[2]} already exists.\n"
            self.mappers.add(args[2])
            return 0, "", ""
        if args[0] == "close":
            if args[1] not in self.mappers:
                return 4, "", f"Device {args[1]} is not active.\n"
            self.mappers.discard(args[1])
            return 0, "", ""
        return 0, "", ""


@pytest.fixture(autouse=True)
def _isolated_log(tmp_path, monkeypatch):
    from zfsrescue import executil

    monkeypatch.setattr(executil, "LOG_DIRS", [str(tmp_path / "logs")])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    for name in ("ROOT_POOL", "BOOT_POOL", "EFI_PART", "ROOT_DATASET", "BOOT_DATASET", "ZFSRESCUE_RECOVERY_ROOT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_host(monkeypatch):
    from zfsrescue import keystore, mounts, registry, repair, resolver, zfs

    host = FakeHost()
    for module in (zfs, registry, mounts, repair, keystore, resolver):
        monkeypatch.setattr(module, "run", host.run)
    monkeypatch.setattr(mounts, "mounted_targets", lambda mountinfo=None: host.mounted_targets())
    monkeypatch.setattr(keystore, "mapper_open", lambda name: name in host.mappers)
    return host


@pytest.fixture
def recovery_root(tmp_path):
    root = tmp_path / "mnt"
    (root / "var" / "tmp").mkdir(parents=True)
    return str(root)
