"""
Configuration Module

This module holds the installer constants and the records that carry the
user's decisions (InstallationConfig) and the data derived while the
installation runs (InstallState).
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Target layout
MOUNT_POINT = "/mnt"
EFI_SIZE_MIB = 512
MIN_DISK_SIZE_BYTES = 20 * 1024**3
MIN_ROOT_SIZE_MIB = 8 * 1024

# Logging
LOG_FILE = "/tmp/archbase.log"

# Environment variable that switches on testing mode
TESTING_ENV_VAR = "ARCHBASE_TESTING"

# Partition table settling
PARTITION_WAIT_ATTEMPTS = 10
PARTITION_WAIT_INTERVAL = 1.0

# Choices offered to the user
FILESYSTEMS = ["ext4", "btrfs", "xfs"]
SHELLS = ["bash", "zsh", "fish"]
BOOTLOADERS = ["grub", "systemd-boot", "refind"]
BTRFS = "btrfs"


def testing_mode() -> bool:
    """Return True when the installer runs under the test harness."""
    return os.environ.get(TESTING_ENV_VAR, "") not in ("", "0")


@dataclass
class InstallationConfig:
    """
    Every decision the user makes before the disk is touched.

    Fields start empty and are filled one by one from validated input.
    Once freeze() is called (at the confirmation gate) the record is
    read-only for the rest of the run.
    """

    disk: str = ""
    filesystem: str = ""
    hostname: str = ""
    username: str = ""
    shell: str = "bash"
    enable_sudo: bool = False
    bootloader: str = ""
    cpu_vendor: str = ""
    enable_multilib: bool = False
    swap_size_mib: int = 0
    efi_size_mib: int = EFI_SIZE_MIB
    timezone: str = ""
    root_password: str = field(default="", repr=False)
    user_password: str = field(default="", repr=False)
    subvolumes: Optional[Any] = None
    mount_point: str = MOUNT_POINT
    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(
                f"InstallationConfig is read-only, cannot set '{name}'")
        super().__setattr__(name, value)

    def freeze(self) -> None:
        """Make the configuration read-only."""
        super().__setattr__("_frozen", True)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def uses_subvolumes(self) -> bool:
        return self.filesystem == BTRFS

    @property
    def efi_mount_point(self) -> str:
        return os.path.join(self.mount_point, "boot")

    def target_path(self, path: str) -> str:
        """Map an absolute path on the new system to its location under the mount point."""
        return os.path.join(self.mount_point, path.lstrip("/"))

    def summary(self) -> Dict[str, str]:
        """Human-readable view of the configuration, passwords excluded."""
        rows = {
            "Disk": self.disk,
            "Filesystem": self.filesystem,
            "EFI size": f"{self.efi_size_mib} MiB",
            "Swap size": f"{self.swap_size_mib} MiB",
            "Hostname": self.hostname,
            "Timezone": self.timezone,
            "Username": self.username,
            "Shell": self.shell,
            "Sudo": "yes" if self.enable_sudo else "no",
            "Bootloader": self.bootloader,
            "CPU microcode": self.cpu_vendor,
            "Multilib": "yes" if self.enable_multilib else "no",
        }
        if self.subvolumes is not None:
            rows["Subvolumes"] = ", ".join(
                f"{name} -> {mount}" for name, mount in self.subvolumes.items())
        return rows


@dataclass
class InstallState:
    """Data derived while the installation runs."""

    disk_model: str = ""
    disk_size_bytes: int = 0
    partition_plan: Optional[Any] = None
    base_packages: List[str] = field(default_factory=list)
    additional_packages: List[str] = field(default_factory=list)
    root_uuid: str = ""
    swap_enabled: bool = False
