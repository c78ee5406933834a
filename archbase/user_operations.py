"""
User Operations Module

This module contains functions for user-related operations such as
setting passwords, creating the user account, the sudo drop-in and the
shell configuration.
"""

import logging
import os

from rich.console import Console

from archbase.command import run_chroot
from archbase.config import InstallationConfig, InstallState
from archbase.errors import ExternalOperationFailure
from archbase.os_operations import resolve_root_uuid, write_target_file

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

# Credential cache for the sudo drop-in, in minutes
SUDO_TIMESTAMP_TIMEOUT = 5

ZSHRC = """# Simple zsh configuration
autoload -Uz compinit && compinit
HISTSIZE=1000
SAVEHIST=1000
HISTFILE=~/.zsh_history
setopt appendhistory
PS1='%n@%m:%~$ '
"""

FISH_CONFIG = """# Basic fish configuration
set fish_greeting ""
"""

SHELL_DOTFILES = {
    "zsh": {".zshrc": ZSHRC},
    "fish": {".config/fish/config.fish": FISH_CONFIG},
}


def _set_password(config: InstallationConfig, username: str, password: str) -> None:
    # chpasswd reads "user:password" from stdin, keeping it off the command line
    run_chroot(config.mount_point, ["chpasswd"], input_text=f"{username}:{password}\n")


def prepare_boot_and_root(config: InstallationConfig, state: InstallState) -> None:
    """
    Set the root password and resolve the root filesystem UUID used by the
    bootloader entries.
    """
    _set_password(config, "root", config.root_password)
    console.print("[bold green]Root password set.[/bold green]")
    uuid = resolve_root_uuid(state)
    logger.info("Root filesystem UUID: %s", uuid)


def sudoers_content(username: str) -> str:
    return (f"Defaults:{username} timestamp_timeout={SUDO_TIMESTAMP_TIMEOUT}\n"
            f"{username} ALL=(ALL:ALL) ALL\n")


def _configure_sudo(config: InstallationConfig) -> None:
    """
    Configure sudo access for the user.

    Raises:
        ExternalOperationFailure: If the drop-in cannot be written
    """
    path = write_target_file(config, f"/etc/sudoers.d/{config.username}",
                             sudoers_content(config.username))
    try:
        os.chmod(path, 0o440)
    except OSError as e:
        raise ExternalOperationFailure(f"Cannot set permissions on {path}: {e}") from e
    run_chroot(config.mount_point,
               ["visudo", "-c", "-f", f"/etc/sudoers.d/{config.username}"])


def _configure_shell(config: InstallationConfig) -> None:
    """Write the starter dotfiles for zsh or fish."""
    dotfiles = SHELL_DOTFILES.get(config.shell, {})
    for relative_path, content in dotfiles.items():
        write_target_file(config, f"/home/{config.username}/{relative_path}", content)
    if dotfiles:
        run_chroot(config.mount_point,
                   ["chown", "-R", f"{config.username}:{config.username}",
                    f"/home/{config.username}"])


def setup_user(config: InstallationConfig, state: InstallState) -> None:
    """
    Set up the user account.

    Raises:
        ExternalOperationFailure: If any account command fails
    """
    console.print(f"Creating user {config.username}...")
    run_chroot(config.mount_point,
               ["useradd", "-m", "-s", f"/bin/{config.shell}", config.username])
    _set_password(config, config.username, config.user_password)

    if config.enable_sudo:
        _configure_sudo(config)

    _configure_shell(config)
    console.print("[bold green]User setup completed successfully.[/bold green]")
