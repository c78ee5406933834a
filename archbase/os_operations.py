"""
OS Operations Module

This module contains functions that install and configure the new system
on the mounted target: package selection, pacstrap, fstab, pacman,
initramfs, services, locale/hostname/timezone and the bootloader.
"""

import logging
import os
import re

from rich.console import Console

from archbase.command import run_chroot, run_command
from archbase.config import BTRFS, InstallationConfig, InstallState, testing_mode
from archbase.errors import ExternalOperationFailure
from archbase.system_operations import MICROCODE_PACKAGES

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

BASE_PACKAGES = ["base", "linux", "linux-firmware"]
ADDITIONAL_PACKAGES = ["networkmanager", "sudo", "vim", "nano"]

FILESYSTEM_PACKAGES = {"btrfs": ["btrfs-progs"], "xfs": ["xfsprogs"]}
BOOTLOADER_PACKAGES = {"grub": ["grub", "efibootmgr"], "systemd-boot": [], "refind": ["refind"]}
SHELL_PACKAGES = {"bash": [], "zsh": ["zsh", "zsh-completions"], "fish": ["fish"]}

LOCALE = "en_US.UTF-8"
TESTING_ROOT_UUID = "00000000-0000-0000-0000-000000000000"

LOADER_CONF = """default arch.conf
timeout 3
console-mode max
editor no
"""

MULTILIB_BLOCK = re.compile(r"^#\[multilib\]\n#Include = (.*)$", re.MULTILINE)


def write_target_file(config: InstallationConfig, path: str, content: str,
                      mode: str = "w") -> str:
    """
    Write a file on the target system.

    Args:
        config: Installation configuration (for the mount point)
        path: Absolute path on the new system, e.g. /etc/hostname
        content: File content
        mode: "w" to replace, "a" to append

    Returns:
        str: The path written to under the mount point
    """
    target = config.target_path(path)
    try:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, mode) as f:
            f.write(content)
    except OSError as e:
        raise ExternalOperationFailure(f"Failed to write {path}: {e}") from e
    return target


def select_package_sets(config: InstallationConfig, state: InstallState) -> None:
    """Work out the pacstrap and in-chroot package lists from the configuration."""
    base = list(BASE_PACKAGES)
    if config.cpu_vendor in MICROCODE_PACKAGES:
        base.append(MICROCODE_PACKAGES[config.cpu_vendor])
    base.extend(FILESYSTEM_PACKAGES.get(config.filesystem, []))

    additional = list(ADDITIONAL_PACKAGES)
    additional.extend(BOOTLOADER_PACKAGES.get(config.bootloader, []))
    additional.extend(SHELL_PACKAGES.get(config.shell, []))

    state.base_packages = base
    state.additional_packages = additional
    logger.info("Base packages: %s", " ".join(base))
    logger.info("Additional packages: %s", " ".join(additional))


def _generate_fstab(config: InstallationConfig) -> None:
    """Append the mounted layout, by UUID, to the new system's fstab."""
    fstab = run_command(["genfstab", "-U", config.mount_point])
    write_target_file(config, "/etc/fstab", fstab, mode="a")


def enable_multilib(config: InstallationConfig) -> None:
    """
    Uncomment the [multilib] repository in the target's pacman.conf.

    Raises:
        ExternalOperationFailure: If pacman.conf is missing or has no multilib block
    """
    path = config.target_path("/etc/pacman.conf")
    if testing_mode() and not os.path.exists(path):
        logger.info("Testing mode: no target pacman.conf, skipping multilib")
        return
    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise ExternalOperationFailure(f"Cannot read {path}: {e}") from e

    updated, count = MULTILIB_BLOCK.subn(r"[multilib]\nInclude = \1", content)
    if count == 0 and "\n[multilib]" not in "\n" + content:
        raise ExternalOperationFailure(f"No [multilib] section found in {path}")
    write_target_file(config, "/etc/pacman.conf", updated)


def install_base_system(config: InstallationConfig, state: InstallState) -> None:
    """
    Bootstrap the new system and install the additional packages.

    Raises:
        ExternalOperationFailure: If any package operation fails
    """
    console.print("Installing base system...")
    run_command(["pacman", "-Sy", "--noconfirm"])
    run_command(["pacstrap", "-K", config.mount_point] + state.base_packages)
    _generate_fstab(config)

    if config.enable_multilib:
        console.print("Enabling multilib repository...")
        enable_multilib(config)

    run_chroot(config.mount_point, ["pacman", "-Sy", "--noconfirm"])
    run_chroot(config.mount_point,
               ["pacman", "-S", "--needed", "--noconfirm"] + state.additional_packages)
    console.print("[bold green]Base system installed successfully.[/bold green]")


def configure_initramfs(config: InstallationConfig, state: InstallState) -> None:
    """Regenerate every initramfs preset on the new system."""
    run_chroot(config.mount_point, ["mkinitcpio", "-P"])


def enable_network_service(config: InstallationConfig, state: InstallState) -> None:
    run_chroot(config.mount_point, ["systemctl", "enable", "NetworkManager"])


def configure_locale_and_time(config: InstallationConfig, state: InstallState) -> None:
    """
    Configure timezone, clock, locale, hostname and hosts file.

    Raises:
        ExternalOperationFailure: If a chroot command or file write fails
    """
    root = config.mount_point

    run_chroot(root, ["ln", "-sf", f"/usr/share/zoneinfo/{config.timezone}", "/etc/localtime"])
    run_chroot(root, ["hwclock", "--systohc"])

    write_target_file(config, "/etc/locale.gen", f"{LOCALE} UTF-8\n", mode="a")
    run_chroot(root, ["locale-gen"])
    write_target_file(config, "/etc/locale.conf", f"LANG={LOCALE}\n")

    write_target_file(config, "/etc/hostname", f"{config.hostname}\n")
    write_target_file(config, "/etc/hosts", f"""127.0.0.1   localhost
::1         localhost
127.0.1.1   {config.hostname}.localdomain {config.hostname}
""")
    console.print("[bold green]Locale, hostname and timezone configured.[/bold green]")


def resolve_root_uuid(state: InstallState) -> str:
    """Look up the filesystem UUID of the root partition."""
    uuid = run_command(["blkid", "-s", "UUID", "-o", "value", state.partition_plan.root]).strip()
    if not uuid and testing_mode():
        uuid = TESTING_ROOT_UUID
    if not uuid:
        raise ExternalOperationFailure(
            f"Unable to determine UUID for {state.partition_plan.root}")
    state.root_uuid = uuid
    return uuid


def _systemd_boot_entry(config: InstallationConfig, state: InstallState) -> str:
    lines = ["title   Arch Linux", "linux   /vmlinuz-linux"]
    if config.cpu_vendor in MICROCODE_PACKAGES:
        lines.append(f"initrd  /{config.cpu_vendor}-ucode.img")
    lines.append("initrd  /initramfs-linux.img")
    options = f"options root=UUID={state.root_uuid} rw"
    if config.filesystem == BTRFS:
        options += " rootflags=subvol=@"
    lines.append(options)
    return "\n".join(lines) + "\n"


def _install_grub(config: InstallationConfig, state: InstallState) -> None:
    run_chroot(config.mount_point, [
        "grub-install", "--target=x86_64-efi", "--efi-directory=/boot",
        "--bootloader-id=GRUB"
    ])
    run_chroot(config.mount_point, ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"])


def _install_systemd_boot(config: InstallationConfig, state: InstallState) -> None:
    run_chroot(config.mount_point, ["bootctl", "--esp-path=/boot", "install"])
    write_target_file(config, "/boot/loader/loader.conf", LOADER_CONF)
    write_target_file(config, "/boot/loader/entries/arch.conf",
                      _systemd_boot_entry(config, state))


def _install_refind(config: InstallationConfig, state: InstallState) -> None:
    run_chroot(config.mount_point, ["refind-install"])


BOOTLOADER_INSTALLERS = {
    "grub": _install_grub,
    "systemd-boot": _install_systemd_boot,
    "refind": _install_refind,
}


def install_bootloader(config: InstallationConfig, state: InstallState) -> None:
    """
    Install and configure the chosen bootloader.

    Raises:
        ExternalOperationFailure: If the bootloader installation fails
    """
    console.print(f"Installing bootloader: {config.bootloader}")
    BOOTLOADER_INSTALLERS[config.bootloader](config, state)
    console.print(
        f"[bold green]Bootloader ({config.bootloader}) configured successfully.[/bold green]")

