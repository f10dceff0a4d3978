"""Gather pool, EFI partition and dataset choices from the environment or the operator."""

from __future__ import annotations

from typing import Callable, Optional

from . import zfs
from .config import Settings
from .errors import NoPoolsFound, PrerequisiteError
from .executil import run, trace
from .model import RecoveryContext
from .report import Reporter

Prompt = Callable[[str], str]


class Resolver:
    def __init__(
        self,
        settings: Settings,
        reporter: Reporter,
        prompt: Optional[Prompt] = None,
        dry_run: bool = False,
    ):
        self.settings = settings
        self.reporter = reporter
        self.prompt = prompt or input
        self.dry_run = dry_run
        self.prompts_asked = 0

    def ask(self, question: str) -> str:
        """One prompt per field; an empty answer is refused."""

        self.prompts_asked += 1
        answer = (self.prompt(question) or "").strip()
        trace("resolver.answer", question=question, answer=answer)
        if not answer:
            raise PrerequisiteError(f"no value given for: {question.strip()}")
        return answer

    def select_pools(self, ctx: RecoveryContext) -> RecoveryContext:
        s = self.settings
        if s.selection_complete:
            self.reporter.ok("Using environment variables:")
            self.reporter.ok(f"  ROOT_POOL={s.root_pool}")
            self.reporter.ok(f"  BOOT_POOL={s.boot_pool}")
            self.reporter.ok(f"  EFI_PART={s.efi_partition}")
            return ctx.with_updates(
                root_pool=s.root_pool,
                boot_pool=s.boot_pool,
                efi_partition=s.efi_partition,
            )

        self.reporter.notice("\nStep 1: Select your ZFS pools")
        imported = zfs.imported_pools(dry_run=self.dry_run)
        if imported:
            self.reporter.banner(f"Already imported pools: {' '.join(imported)}")
        available = zfs.importable_pools(dry_run=self.dry_run)
        if available:
            self.reporter.banner(f"Available pools to import: {' '.join(available)}")
        if not imported and not available and not self.dry_run:
            raise NoPoolsFound("No ZFS pools found!")
        self.reporter.plain()
        root_pool = self.ask("Enter your ROOT pool name (e.g., 'rpool'): ")
        self.reporter.tip("This is usually the ZFS root pool created by the installer, commonly named 'rpool'.")
        self.reporter.plain()
        boot_pool = self.ask("Enter your BOOT pool name (e.g., 'bpool'): ")
        self.reporter.tip("This pool contains your boot and EFI datasets; on Ubuntu it's often 'bpool'.")

        self.reporter.plain()
        self.reporter.notice("Step 2: Select your EFI partition")
        self.reporter.banner("Your disk layout (look for FSTYPE 'vfat'):")
        for row in self.disk_layout():
            self.reporter.plain(row)
        self.reporter.plain()
        self.reporter.banner("Common EFI partitions are 100-550MB and formatted as vfat (FAT32).")
        efi = self.ask("Enter your EFI partition (vfat, e.g., /dev/nvme0n1p1): ")
        self.reporter.tip("Ensure the partition's FSTYPE column shows 'vfat' or 'FAT32'.")
        return ctx.with_updates(root_pool=root_pool, boot_pool=boot_pool, efi_partition=efi)

    def disk_layout(self) -> list[str]:
        res = run(["lsblk", "-o", "NAME,SIZE,TYPE,FSTYPE,MOUNTPOINT"], check=False, dry_run=self.dry_run)
        rows = []
        for line in (res.out or "").splitlines():
            fields = line.split()
            if len(fields) >= 3 and fields[2] in ("disk", "part"):
                rows.append(line)
        return rows

    def choose_dataset(self, pool: str, label: str) -> str:
        self.reporter.notice(f"No bootfs set for {pool}. Available:")
        for name in zfs.list_filesystems(pool, dry_run=self.dry_run):
            self.reporter.plain(f"  - {name}")
        return self.ask(f"Enter {label} dataset name: ")

    def identify_datasets(self, ctx: RecoveryContext) -> RecoveryContext:
        """Use the pools' bootfs property, then any override, else ask."""

        root_ds = ctx.root_dataset or self.settings.root_dataset or zfs.bootfs(ctx.root_pool, dry_run=self.dry_run)
        boot_ds = ctx.boot_dataset or self.settings.boot_dataset or zfs.bootfs(ctx.boot_pool, dry_run=self.dry_run)
        if not root_ds:
            root_ds = self.choose_dataset(ctx.root_pool, "root")
        if not boot_ds:
            boot_ds = self.choose_dataset(ctx.boot_pool, "boot")
        self.reporter.ok("\nUsing:")
        self.reporter.ok(f"  Root dataset: {root_ds}")
        self.reporter.ok(f"  Boot dataset: {boot_ds}")
        self.reporter.ok(f"  EFI partition: {ctx.efi_partition}")
        return ctx.with_updates(root_dataset=root_ds, boot_dataset=boot_ds)
