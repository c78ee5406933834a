"""
System Operations Module

This module contains functions for system-level checks: the environment
check run before any work, the installation preconditions (boot mode,
network, disk size), and detection of CPU vendor, memory and timezone.
"""

import logging
import os
import platform
import urllib.error
import urllib.request
from typing import List, Optional, Sequence

import psutil
from rich.console import Console

from archbase.command import command_succeeds, run_command
from archbase.config import MIN_DISK_SIZE_BYTES
from archbase.errors import (EnvironmentCheckFailure, ExternalOperationFailure,
                             PreconditionFailure)

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

# Mapping of commands to their corresponding packages
COMMAND_TO_PACKAGE = {
    "lsblk": "util-linux",
    "wipefs": "util-linux",
    "blkid": "util-linux",
    "mkswap": "util-linux",
    "swapon": "util-linux",
    "swapoff": "util-linux",
    "sgdisk": "gptfdisk",
    "partprobe": "parted",
    "mkfs.fat": "dosfstools",
    "mkfs.ext4": "e2fsprogs",
    "mkfs.btrfs": "btrfs-progs",
    "btrfs": "btrfs-progs",
    "mkfs.xfs": "xfsprogs",
    "pacstrap": "arch-install-scripts",
    "arch-chroot": "arch-install-scripts",
    "genfstab": "arch-install-scripts",
}

# List of required commands
REQUIRED_COMMANDS = list(COMMAND_TO_PACKAGE)

EFI_FIRMWARE_PATH = "/sys/firmware/efi/efivars"
CPUINFO_PATH = "/proc/cpuinfo"
ZONEINFO_DIR = "/usr/share/zoneinfo"

# Hosts probed by the connectivity check; one reachable host is enough
NETWORK_HOSTS = ["archlinux.org", "geo.mirror.pkgbuild.com", "www.kernel.org"]
NETWORK_TIMEOUT = 5

MICROCODE_PACKAGES = {"intel": "intel-ucode", "amd": "amd-ucode"}


def check_system_compatibility() -> bool:
    """
    Check if the system is Linux.

    Raises:
        EnvironmentCheckFailure: On any other operating system
    """
    if platform.system() != "Linux":
        raise EnvironmentCheckFailure("This installer is only compatible with Linux.")
    return True


def check_root_privileges() -> bool:
    """
    Check if the installer is running with root privileges.

    Returns:
        bool: True if running as root, False otherwise
    """
    if os.geteuid() != 0:
        console.print("[bold red]Error:[/bold red] This installer must be run as root.")
        return False
    return True


def find_missing_commands(commands: Sequence[str] = REQUIRED_COMMANDS) -> List[str]:
    """
    Check which required commands are missing.

    Returns:
        List[str]: List of missing commands
    """
    missing_commands = []
    for cmd in commands:
        if not command_succeeds(["which", cmd]):
            console.print(
                f"[bold yellow]Warning:[/bold yellow] Required command '{cmd}' not found. Attempting to install...")
            missing_commands.append(cmd)
    return missing_commands


def install_packages(missing_commands: List[str]) -> bool:
    """
    Install packages for missing commands.

    Args:
        missing_commands: List of missing commands

    Returns:
        bool: True if installation was successful, False otherwise
    """
    # sorted set: one install per package, stable order
    packages_to_install = sorted(
        set(COMMAND_TO_PACKAGE[cmd] for cmd in missing_commands))
    try:
        console.print(f"Installing packages: {', '.join(packages_to_install)}")
        run_command(["pacman", "-S", "--needed", "--noconfirm"] + packages_to_install)
        return True
    except ExternalOperationFailure as e:
        console.print(
            f"[bold red]Error:[/bold red] Failed to install required packages: {e}")
        return False


def verify_installation(missing_commands: List[str]) -> bool:
    """
    Verify that all commands are now available after installation.

    Args:
        missing_commands: List of commands that were missing

    Returns:
        bool: True if all commands are now available, False otherwise
    """
    for cmd in missing_commands:
        if not command_succeeds(["which", cmd]):
            console.print(
                f"[bold red]Error:[/bold red] Failed to install command '{cmd}'.")
            return False
        console.print(
            f"[bold green]Success:[/bold green] Command '{cmd}' is now available.")
    return True


def check_environment() -> None:
    """
    Check privileges and tools before any work begins.
    If a required command is missing, attempt to install the associated package.

    Raises:
        EnvironmentCheckFailure: If the installer cannot run here
    """
    check_system_compatibility()

    if not check_root_privileges():
        raise EnvironmentCheckFailure("Root privileges are required.")

    missing_commands = find_missing_commands()
    if missing_commands:
        if not install_packages(missing_commands):
            raise EnvironmentCheckFailure(
                f"Could not install required commands: {', '.join(missing_commands)}")
        if not verify_installation(missing_commands):
            raise EnvironmentCheckFailure(
                f"Required commands still missing: {', '.join(missing_commands)}")

    logger.info("Environment check passed")


def check_boot_mode(allow_bios: bool = False) -> bool:
    """
    Require UEFI firmware unless the override flag was given.

    Args:
        allow_bios: Continue without UEFI firmware

    Returns:
        bool: True if the system booted in UEFI mode

    Raises:
        PreconditionFailure: If no UEFI interface exists and no override was given
    """
    if os.path.isdir(EFI_FIRMWARE_PATH):
        console.print("[bold green]UEFI boot mode detected.[/bold green]")
        return True

    if allow_bios:
        logger.warning("No UEFI firmware interface found; continuing because of override")
        console.print(
            "[bold yellow]Warning:[/bold yellow] UEFI boot mode not detected, continuing because of --allow-bios.")
        return False

    raise PreconditionFailure(
        "This installer requires UEFI boot mode. Legacy BIOS is not supported "
        "(use --allow-bios to override).")


def _head_request(host: str) -> bool:
    request = urllib.request.Request(f"https://{host}/", method="HEAD")
    try:
        with urllib.request.urlopen(request, timeout=NETWORK_TIMEOUT):
            return True
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.info("HEAD https://%s/ failed: %s", host, e)
        return False


def _ping(host: str) -> bool:
    return command_succeeds(["ping", "-c", "1", "-W", str(NETWORK_TIMEOUT), host])


def check_network(hosts: Sequence[str] = NETWORK_HOSTS) -> str:
    """
    Confirm internet connectivity.

    Each host is tried with an HTTPS HEAD request, then an ICMP echo. The
    first host that answers either way satisfies the check.

    Returns:
        str: The host that answered

    Raises:
        PreconditionFailure: If no host answered
    """
    console.print("Checking network connectivity...")
    for host in hosts:
        if _head_request(host) or _ping(host):
            logger.info("Network reachable via %s", host)
            console.print("[bold green]Network connectivity confirmed.[/bold green]")
            return host

    raise PreconditionFailure(
        "No internet connection. Please configure networking and try again.")


def check_prerequisites(allow_bios: bool = False) -> None:
    """Run the boot-mode and network preconditions in order."""
    check_boot_mode(allow_bios)
    check_network()


def check_disk_size(size_bytes: int, virtual: bool) -> bool:
    """
    Check a candidate disk against the minimum size.

    Virtual disks skip the size floor entirely.
    """
    if virtual:
        logger.info("Virtual disk, size check skipped (%d bytes)", size_bytes)
        return True
    return size_bytes >= MIN_DISK_SIZE_BYTES


def detect_cpu_vendor(cpuinfo_path: str = CPUINFO_PATH) -> str:
    """
    Detect the CPU vendor for microcode selection.

    Returns:
        str: "intel", "amd" or "unknown"
    """
    try:
        with open(cpuinfo_path, "r") as f:
            cpuinfo = f.read()
    except OSError as e:
        logger.warning("Cannot read %s: %s", cpuinfo_path, e)
        return "unknown"

    if "GenuineIntel" in cpuinfo:
        return "intel"
    if "AuthenticAMD" in cpuinfo:
        return "amd"
    return "unknown"


def total_memory_mib() -> int:
    return psutil.virtual_memory().total // (1024 * 1024)


def detect_timezone() -> Optional[str]:
    """Return the live system's timezone, if timedatectl knows one."""
    try:
        zone = run_command(["timedatectl", "show", "--value", "--property=Timezone"],
                           readonly=True).strip()
    except ExternalOperationFailure:
        return None
    return zone or None


def timezone_exists(zone: str, zoneinfo_dir: str = ZONEINFO_DIR) -> bool:
    if not zone or zone.startswith("/") or ".." in zone.split("/"):
        return False
    return os.path.isfile(os.path.join(zoneinfo_dir, zone))
