"""
Settings Operations Module

This module contains the interactive questions asked before the disk is
touched: filesystem, hostname, timezone, passwords, user account,
bootloader, multilib and swap size. Every answer is validated before it is
stored in the InstallationConfig.
"""

import logging

from rich.console import Console

from archbase import prompts
from archbase.config import (BOOTLOADERS, BTRFS, FILESYSTEMS, MIN_ROOT_SIZE_MIB,
                             SHELLS, InstallationConfig, InstallState)
from archbase.disk_operations import (PartitionPlan, calculate_swap_size,
                                      max_swap_size_mib, parse_size_mib)
from archbase.errors import PreconditionFailure
from archbase.subvolume_operations import configure_subvolumes
from archbase.system_operations import (detect_cpu_vendor, detect_timezone,
                                        timezone_exists)
from archbase.validation import (validate_hostname, validate_password,
                                 validate_swap_size, validate_username)

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

FILESYSTEM_DESCRIPTIONS = {
    "ext4": "ext4 (traditional, stable)",
    "btrfs": "btrfs (modern, with snapshots)",
    "xfs": "xfs (high performance)",
}
SHELL_DESCRIPTIONS = {
    "bash": "bash (default)",
    "zsh": "zsh (advanced features)",
    "fish": "fish (user friendly)",
}
BOOTLOADER_DESCRIPTIONS = {
    "grub": "GRUB (traditional, widely supported)",
    "systemd-boot": "systemd-boot (simple, UEFI only)",
    "refind": "rEFInd (graphical, advanced)",
}


def _choices(values, descriptions):
    return [{"name": descriptions[value], "value": value} for value in values]


def choose_swap_size(config: InstallationConfig, state: InstallState) -> None:
    """
    Ask for the swap size, defaulting to half of physical memory, and fix
    the partition plan for the selected disk.

    The swap partition must leave at least MIN_ROOT_SIZE_MIB for root.

    Raises:
        PreconditionFailure: If the disk cannot hold any swap next to root
    """
    limit_mib = max_swap_size_mib(state.disk_size_bytes, config.efi_size_mib)
    if limit_mib < 1:
        raise PreconditionFailure(
            f"Disk {config.disk} is too small for an EFI, swap and "
            f"{MIN_ROOT_SIZE_MIB} MiB root partition")

    default_mib = calculate_swap_size()

    def answer_mib(value: str) -> int:
        return parse_size_mib(value) if value else default_mib

    def fits(value: str) -> bool:
        if value and not validate_swap_size(value):
            return False
        return 0 < answer_mib(value) <= limit_mib

    answer = prompts.prompt_until_valid(
        f"Swap size, e.g. 2G or 512M (leave empty for {default_mib} MiB):",
        fits,
        f"Invalid swap size. Use a number above zero followed by M or G, "
        f"at most {limit_mib} MiB on this disk.")
    config.swap_size_mib = answer_mib(answer)

    state.partition_plan = PartitionPlan.for_disk(
        config.disk, config.efi_size_mib, config.swap_size_mib)
    logger.info("Partition plan: %s", state.partition_plan)


def choose_filesystem(config: InstallationConfig) -> None:
    config.filesystem = prompts.ask_select(
        "Select filesystem type:", choices=_choices(FILESYSTEMS, FILESYSTEM_DESCRIPTIONS))
    console.print(f"[bold green]Selected filesystem:[/bold green] {config.filesystem}")
    if config.filesystem == BTRFS:
        config.subvolumes = configure_subvolumes()


def ask_hostname(config: InstallationConfig) -> None:
    config.hostname = prompts.prompt_until_valid(
        "Enter hostname for this system:",
        validate_hostname,
        "Invalid hostname. Use letters, numbers and inner hyphens only (max 63 characters).",
        empty_message="Hostname cannot be empty")


def choose_timezone(config: InstallationConfig) -> None:
    """Offer the live system's timezone, otherwise ask until a known zone is given."""
    detected = detect_timezone()
    if detected and timezone_exists(detected):
        if prompts.ask_confirm(f"Use detected timezone ({detected})?", default=True):
            config.timezone = detected
            return

    config.timezone = prompts.prompt_until_valid(
        "Enter your timezone (e.g. America/Chicago):",
        timezone_exists,
        "Invalid timezone. Please choose a valid entry from /usr/share/zoneinfo.",
        default="UTC")


def ask_root_password(config: InstallationConfig) -> None:
    config.root_password = prompts.ask_new_password(
        "Enter root password:", validate_password,
        "Password must be at least 8 characters long")


def configure_user(config: InstallationConfig) -> None:
    config.username = prompts.prompt_until_valid(
        "Enter username for standard user:",
        validate_username,
        "Invalid username. Use lowercase letters, numbers, underscores and hyphens "
        "(max 32 characters, not starting with a digit or hyphen).",
        empty_message="Username cannot be empty")
    config.user_password = prompts.ask_new_password(
        f"Enter password for {config.username}:", validate_password,
        "Password must be at least 8 characters long")
    config.enable_sudo = prompts.ask_confirm(
        f"Grant sudo privileges to {config.username}?", default=True)
    config.shell = prompts.ask_select(
        f"Select shell for {config.username}:",
        choices=_choices(SHELLS, SHELL_DESCRIPTIONS))


def choose_bootloader(config: InstallationConfig) -> None:
    config.bootloader = prompts.ask_select(
        "Select bootloader:", choices=_choices(BOOTLOADERS, BOOTLOADER_DESCRIPTIONS))


def detect_microcode(config: InstallationConfig) -> None:
    config.cpu_vendor = detect_cpu_vendor()
    if config.cpu_vendor == "unknown":
        console.print(
            "[bold yellow]Warning:[/bold yellow] Unknown CPU vendor - no microcode will be installed")
    else:
        console.print(
            f"[bold green]{config.cpu_vendor.upper()} CPU detected[/bold green] - "
            f"will install {config.cpu_vendor}-ucode")


def ask_multilib(config: InstallationConfig) -> None:
    config.enable_multilib = prompts.ask_confirm(
        "Enable multilib repository? (32-bit support for gaming and Wine)", default=False)


def collect_settings(config: InstallationConfig, state: InstallState) -> None:
    """Ask every remaining question in order."""
    choose_filesystem(config)
    ask_hostname(config)
    choose_timezone(config)
    ask_root_password(config)
    configure_user(config)
    choose_bootloader(config)
    detect_microcode(config)
    ask_multilib(config)
    logger.info("Settings collected: %s", config)
