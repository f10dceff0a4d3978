from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional

from .paths import DEFAULT_RECOVERY_ROOT


class ResourceKind(str, Enum):
    MAPPER_DEVICE = "MapperDevice"
    MOUNT_POINT = "MountPoint"
    IMPORTED_POOL = "ImportedPool"


@dataclass
class Resource:
    kind: ResourceKind
    identifier: str
    acquired: bool = False

    def key(self) -> tuple:
        return (self.kind, self.identifier)


@dataclass(frozen=True)
class RecoveryContext:
    root_pool: Optional[str] = None
    boot_pool: Optional[str] = None
    efi_partition: Optional[str] = None
    root_dataset: Optional[str] = None
    boot_dataset: Optional[str] = None
    key_file: Optional[str] = None
    recovery_root: str = DEFAULT_RECOVERY_ROOT
    # dataset -> mountpoint value seen before it was retargeted
    original_mountpoints: Dict[str, str] = field(default_factory=dict, compare=False)

    def with_updates(self, **changes) -> "RecoveryContext":
        return replace(self, **changes)

    @property
    def pools(self) -> list[str]:
        seen: list[str] = []
        for pool in (self.root_pool, self.boot_pool):
            if pool and pool not in seen:
                seen.append(pool)
        return seen

    @property
    def pools_selected(self) -> bool:
        return bool(self.root_pool and self.boot_pool and self.efi_partition)

    @property
    def datasets_identified(self) -> bool:
        return bool(self.root_dataset and self.boot_dataset)


@dataclass
class Flags:
    dry_run: bool = False
    json: bool = True
    color: bool = True
    stop_after: Optional[str] = None


@dataclass
class UnlockPlan:
    pool: str = "rpool"
    mapper: str = "keystore_plain"
