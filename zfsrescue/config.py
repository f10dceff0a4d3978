"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .paths import DEFAULT_RECOVERY_ROOT

DEFAULT_BOOTLOADER_ID = "ubuntu"
DEFAULT_GRUB_TARGET = "x86_64-efi"


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    value = (env.get(name) or "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    root_pool: Optional[str] = None
    boot_pool: Optional[str] = None
    efi_partition: Optional[str] = None
    root_dataset: Optional[str] = None
    boot_dataset: Optional[str] = None
    recovery_root: str = DEFAULT_RECOVERY_ROOT
    bootloader_id: str = DEFAULT_BOOTLOADER_ID
    grub_target: str = DEFAULT_GRUB_TARGET

    @property
    def selection_complete(self) -> bool:
        """All three selection overrides are present, so no prompt is needed."""

        return bool(self.root_pool and self.boot_pool and self.efi_partition)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env
    return Settings(
        root_pool=_get(env, "ROOT_POOL"),
        boot_pool=_get(env, "BOOT_POOL"),
        efi_partition=_get(env, "EFI_PART"),
        root_dataset=_get(env, "ROOT_DATASET"),
        boot_dataset=_get(env, "BOOT_DATASET"),
        recovery_root=_get(env, "ZFSRESCUE_RECOVERY_ROOT") or DEFAULT_RECOVERY_ROOT,
        bootloader_id=_get(env, "ZFSRESCUE_BOOTLOADER_ID") or DEFAULT_BOOTLOADER_ID,
        grub_target=_get(env, "ZFSRESCUE_GRUB_TARGET") or DEFAULT_GRUB_TARGET,
    )
