"""
Disk Operations Module

This module contains functions for disk-related operations such as
selecting the target disk, planning the partition layout, and wiping,
partitioning, formatting and mounting it.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from archbase import prompts
from archbase.command import ensure_directory, run_command
from archbase.config import (BTRFS, MIN_ROOT_SIZE_MIB, PARTITION_WAIT_ATTEMPTS,
                             PARTITION_WAIT_INTERVAL, InstallationConfig,
                             InstallState, testing_mode)
from archbase.errors import ExternalOperationFailure, PreconditionFailure
from archbase.subvolume_operations import create_subvolumes, mount_subvolumes
from archbase.system_operations import check_disk_size, total_memory_mib
from archbase.validation import is_nvme_disk, validate_disk

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

# Constants
UNKNOWN_MODEL = "Unknown"
VIRTUAL_DISK_MARKERS = ("qemu", "vbox", "vmware", "virtual", "virtio", "msft virtual")

EFI_PARTITION_INDEX = 1
SWAP_PARTITION_INDEX = 2
ROOT_PARTITION_INDEX = 3

MKFS_COMMANDS = {
    "ext4": ["mkfs.ext4", "-F"],
    "btrfs": ["mkfs.btrfs", "-f"],
    "xfs": ["mkfs.xfs", "-f"],
}


def get_partition_name(disk: str, index: int) -> str:
    """
    Derive the device node of a partition.

    NVMe disks put a "p" between the disk name and the index
    (/dev/nvme0n1p1); every other disk takes the bare index (/dev/sda1).
    """
    if is_nvme_disk(disk):
        return f"{disk}p{index}"
    return f"{disk}{index}"


@dataclass(frozen=True)
class PartitionPlan:
    """EFI, swap and root partitions of the target disk, in on-disk order."""

    disk: str
    efi: str
    swap: str
    root: str
    efi_size_mib: int
    swap_size_mib: int

    @classmethod
    def for_disk(cls, disk: str, efi_size_mib: int, swap_size_mib: int) -> "PartitionPlan":
        return cls(
            disk=disk,
            efi=get_partition_name(disk, EFI_PARTITION_INDEX),
            swap=get_partition_name(disk, SWAP_PARTITION_INDEX),
            root=get_partition_name(disk, ROOT_PARTITION_INDEX),
            efi_size_mib=efi_size_mib,
            swap_size_mib=swap_size_mib,
        )

    @property
    def partitions(self) -> List[str]:
        return [self.efi, self.swap, self.root]


def calculate_swap_size(memory_mib: Optional[int] = None) -> int:
    """Half of physical memory in MiB, rounded down."""
    if memory_mib is None:
        memory_mib = total_memory_mib()
    return memory_mib // 2


def parse_size_mib(size: str) -> int:
    """Convert a validated size such as 512M or 4G into MiB."""
    number, unit = int(size[:-1]), size[-1]
    return number * 1024 if unit == "G" else number


def max_swap_size_mib(disk_size_bytes: int, efi_size_mib: int) -> int:
    """Largest swap partition that still leaves MIN_ROOT_SIZE_MIB for root."""
    return disk_size_bytes // (1024 * 1024) - efi_size_mib - MIN_ROOT_SIZE_MIB


def is_known_virtual_disk(model: str) -> bool:
    """
    Tell whether a disk model string belongs to a virtual machine disk.

    Virtual disks skip the minimum size check and the wipe confirmation.
    Matching on the model string is a heuristic; keep every such decision
    behind this one predicate.
    """
    if not model:
        return False
    lowered = model.lower()
    return any(marker in lowered for marker in VIRTUAL_DISK_MARKERS)


def get_available_disks() -> List[Dict[str, Any]]:
    """
    Get a list of whole disks with their details.

    Returns:
        List[Dict[str, Any]]: List of disk info dictionaries
    """
    try:
        output = run_command(
            ["lsblk", "-J", "-b", "-d", "-o", "NAME,PATH,SIZE,MODEL,TYPE"],
            readonly=True)
        device_data = json.loads(output or "{}")
    except (ExternalOperationFailure, json.JSONDecodeError) as e:
        console.print(f"[bold red]Error:[/bold red] Failed to list disks: {e}")
        return []

    disks = []
    for device in device_data.get("blockdevices", []):
        if device.get("type") != "disk":
            continue
        path = device.get("path") or f"/dev/{device.get('name')}"
        try:
            size = int(device.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        model = (device.get("model") or UNKNOWN_MODEL).strip()
        disks.append({
            "name": f"{path} ({size / (1024**3):.1f}G, {model})",
            "value": path,
            "size": size,
            "model": model,
        })
    return disks


def display_disk_info(disks: List[Dict[str, Any]]) -> None:
    """
    Display disk information in a formatted table.

    Args:
        disks: List of disk information dictionaries
    """
    table = Table(title="Available Disks")

    table.add_column("Device", style="cyan")
    table.add_column("Size", style="magenta")
    table.add_column("Model", style="green")

    for disk in disks:
        table.add_row(
            disk["value"],
            f"{disk['size'] / (1024**3):.1f}G",
            disk["model"],
        )

    console.print(table)


def select_disk(config: InstallationConfig, state: InstallState) -> str:
    """
    Prompt the user to pick the installation disk.

    A disk below the minimum size sends the user back to the list; a disk
    that is not a free block device stops the installation.

    Returns:
        str: The selected disk path

    Raises:
        PreconditionFailure: If no disk exists or the chosen disk is in use
    """
    available_disks = get_available_disks()
    if not available_disks:
        raise PreconditionFailure("No suitable disks found.")

    display_disk_info(available_disks)

    while True:
        disk_path = prompts.ask_select(
            "Select the disk to install to:",
            choices=[{"name": disk["name"], "value": disk["value"]}
                     for disk in available_disks]
        )
        disk = next(d for d in available_disks if d["value"] == disk_path)

        if not validate_disk(disk_path):
            raise PreconditionFailure(
                f"Disk {disk_path} does not exist, is not a block device, or has "
                "mounted partitions. Please unmount them before proceeding.")

        if check_disk_size(disk["size"], is_known_virtual_disk(disk["model"])):
            break

        console.print(
            f"[bold yellow]Warning:[/bold yellow] Disk {disk_path} is smaller than "
            "20 GiB. Please choose another disk.")

    config.disk = disk_path
    state.disk_model = disk["model"]
    state.disk_size_bytes = disk["size"]
    logger.info("Selected disk %s (%s, %d bytes)", disk_path, disk["model"], disk["size"])
    console.print(f"[bold green]Selected disk:[/bold green] {disk['name']}")
    return disk_path


def get_filesystem_info(disk_path: str) -> Dict[str, str]:
    """
    Get filesystem information for a disk and all its partitions.

    Args:
        disk_path: Path to the disk

    Returns:
        Dict[str, str]: Dictionary mapping partition paths to filesystem types
    """
    fs_info = {}

    try:
        lsblk_output = run_command(
            ["lsblk", "-o", "NAME,KNAME,FSTYPE", "-J", "-p", disk_path], readonly=True)
        device_data = json.loads(lsblk_output or "{}")
    except (ExternalOperationFailure, json.JSONDecodeError) as e:
        console.print(
            f"[bold yellow]Warning:[/bold yellow] Failed to get filesystem info for {disk_path}: {e}")
        return fs_info

    for device in device_data.get("blockdevices", []):
        if device.get("fstype"):
            fs_info[device["kname"]] = device["fstype"]
        for partition in device.get("children", []):
            if partition.get("fstype"):
                fs_info[partition["kname"]] = partition["fstype"]

    return fs_info


def confirm_disk_wipe(config: InstallationConfig, state: InstallState) -> bool:
    """
    Ask the user to confirm that the target disk may be destroyed.

    Returns:
        bool: True if the user agreed, or the disk is virtual and the
        confirmation was skipped
    """
    if is_known_virtual_disk(state.disk_model):
        logger.warning("Virtual disk %s (%s): wipe confirmation skipped",
                       config.disk, state.disk_model)
        console.print(
            f"[bold yellow]Warning:[/bold yellow] {config.disk} looks like a virtual "
            "disk, skipping the wipe confirmation.")
        return True

    fs_info = get_filesystem_info(config.disk)
    if fs_info:
        console.print(
            f"[bold yellow]Warning:[/bold yellow] {config.disk} has existing filesystems:")
        for part, fs_type in fs_info.items():
            console.print(f"    {part}: {fs_type}")

    return prompts.ask_confirm(
        f"All data on {config.disk} will be destroyed. Continue? [THIS WILL DESTROY ALL DATA]",
        default=False)


def wipe_disk(disk: str) -> None:
    """
    Remove all signatures and the partition table from a disk.

    Raises:
        ExternalOperationFailure: If a wipe command fails
    """
    console.print(f"Wiping disk {disk}...")
    run_command(["wipefs", "--all", "--force", disk])
    run_command(["sgdisk", "--zap-all", disk])
    run_command(["sync"])


def create_partitions(plan: PartitionPlan) -> None:
    """
    Create the EFI, swap and root partitions; root takes the rest of the disk.

    Raises:
        ExternalOperationFailure: If partitioning fails
    """
    disk = plan.disk
    console.print(f"Creating partitions on {disk}...")
    run_command([
        "sgdisk", f"--new={EFI_PARTITION_INDEX}:0:+{plan.efi_size_mib}M",
        f"--typecode={EFI_PARTITION_INDEX}:EF00",
        f"--change-name={EFI_PARTITION_INDEX}:EFI", disk
    ])
    run_command([
        "sgdisk", f"--new={SWAP_PARTITION_INDEX}:0:+{plan.swap_size_mib}M",
        f"--typecode={SWAP_PARTITION_INDEX}:8200",
        f"--change-name={SWAP_PARTITION_INDEX}:swap", disk
    ])
    run_command([
        "sgdisk", f"--new={ROOT_PARTITION_INDEX}:0:0",
        f"--typecode={ROOT_PARTITION_INDEX}:8300",
        f"--change-name={ROOT_PARTITION_INDEX}:root", disk
    ])

    # Force kernel to re-read partition table
    try:
        run_command(["partprobe", disk])
    except ExternalOperationFailure:
        # If partprobe fails, try the old-school method
        run_command(["blockdev", "--rereadpt", disk])

    run_command(["sync"])


def wait_for_partitions(plan: PartitionPlan,
                        attempts: int = PARTITION_WAIT_ATTEMPTS,
                        interval: float = PARTITION_WAIT_INTERVAL) -> None:
    """
    Wait until the kernel has created every partition node.

    Raises:
        ExternalOperationFailure: If a node is still missing after the last attempt
    """
    if testing_mode():
        return

    missing = plan.partitions
    for attempt in range(attempts):
        missing = [p for p in plan.partitions if not os.path.exists(p)]
        if not missing:
            return
        console.print(
            f"Waiting for partitions {', '.join(missing)} to appear "
            f"(attempt {attempt + 1}/{attempts})...")
        time.sleep(interval)

    raise ExternalOperationFailure(
        f"Partitions {', '.join(missing)} did not appear after {attempts} attempts")


def format_partitions(config: InstallationConfig, state: InstallState) -> None:
    """
    Format the EFI and root partitions and enable the swap partition.

    Raises:
        ExternalOperationFailure: If a format command fails
    """
    plan = state.partition_plan
    console.print("Formatting partitions...")

    run_command(["mkfs.fat", "-F32", "-n", "EFI", plan.efi])
    run_command(["mkswap", plan.swap])
    run_command(["swapon", plan.swap])
    state.swap_enabled = True
    run_command(MKFS_COMMANDS[config.filesystem] + [plan.root])


def mount_efi(config: InstallationConfig, state: InstallState) -> None:
    ensure_directory(config.efi_mount_point)
    run_command(["mount", state.partition_plan.efi, config.efi_mount_point])


def mount_filesystems(config: InstallationConfig, state: InstallState) -> None:
    """
    Mount the new root filesystem and the EFI partition under the mount point.

    Raises:
        ExternalOperationFailure: If a mount fails
    """
    console.print("Mounting filesystems...")
    plan = state.partition_plan

    if config.filesystem == BTRFS:
        create_subvolumes(plan.root, config.mount_point, config.subvolumes)
        mount_subvolumes(plan.root, config.mount_point, config.subvolumes)
    else:
        ensure_directory(config.mount_point)
        run_command(["mount", plan.root, config.mount_point])

    mount_efi(config, state)


def prepare_disk(config: InstallationConfig, state: InstallState) -> None:
    """Partition, format and mount the target disk in one go."""
    plan = state.partition_plan
    create_partitions(plan)
    wait_for_partitions(plan)
    format_partitions(config, state)
    mount_filesystems(config, state)
    console.print("[bold green]Disk prepared successfully.[/bold green]")
