"""
Cleanup Module

Best-effort unwind of the target mounts and swap. Safe to run any number of
times: every step checks the current state first and swallows its own
failure, so a later step still gets its chance.
"""

import logging
import os
import posixpath
from typing import List

from rich.console import Console

from archbase.command import run_command
from archbase.config import InstallationConfig
from archbase.errors import ExternalOperationFailure
from archbase.subvolume_operations import DEFAULT_SUBVOLUMES, ROOT_SUBVOLUME

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)


def is_mounted(path: str) -> bool:
    return os.path.ismount(path)


class CleanupHandler:
    """Unmounts everything below the installation mount point and disables swap."""

    def __init__(self, config: InstallationConfig):
        self.config = config
        self.runs = 0

    def _secondary_mount_points(self) -> List[str]:
        if self.config.subvolumes is not None:
            mounts = self.config.subvolumes.secondary_mount_points()
        else:
            mounts = [m for n, m in DEFAULT_SUBVOLUMES.items() if n != ROOT_SUBVOLUME]
        targets = [posixpath.join(self.config.mount_point, m.lstrip("/")) for m in mounts]
        # deepest first, in case a user-defined entry nests inside another
        return sorted(targets, key=lambda path: path.count("/"), reverse=True)

    def _unmount(self, path: str) -> None:
        try:
            if not is_mounted(path):
                return
            run_command(["umount", path])
            logger.info("Unmounted %s", path)
        except (ExternalOperationFailure, OSError) as e:
            logger.warning("Failed to unmount %s: %s", path, e)
            console.print(f"[yellow]Warning:[/yellow] Failed to unmount {path}: {e}")

    def _disable_swap(self) -> None:
        try:
            run_command(["swapoff", "-a"])
        except ExternalOperationFailure as e:
            logger.warning("Failed to disable swap: %s", e)

    def run(self) -> None:
        """Unmount EFI, then subvolumes, then root, then disable all swap."""
        self.runs += 1
        logger.info("Performing cleanup (run %d)", self.runs)
        console.print("Performing cleanup...")

        self._unmount(self.config.efi_mount_point)

        if self.config.uses_subvolumes:
            for path in self._secondary_mount_points():
                self._unmount(path)

        self._unmount(self.config.mount_point)
        self._disable_swap()
