"""
Command Module

Every external tool the installer drives (partitioners, formatters, mount,
pacstrap, arch-chroot, bootloader installers) goes through run_command so
that logging, failure handling and testing mode live in one place.
"""

import logging
import os
import shlex
import subprocess
from typing import List, Optional, Sequence

from archbase.config import testing_mode
from archbase.errors import ExternalOperationFailure

logger = logging.getLogger(__name__)

# Commands skipped in testing mode, in the order they were requested
DRY_RUN_LOG: List[List[str]] = []


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


def run_command(command: Sequence[str], input_text: Optional[str] = None,
                check: bool = True, readonly: bool = False) -> str:
    """
    Run an external command and return its output.

    Args:
        command: Command to run as a list of strings
        input_text: Text fed to the command's stdin (never logged)
        check: Raise on a non-zero exit status
        readonly: The command only queries state; it still runs in testing mode

    Returns:
        str: Command output

    Raises:
        ExternalOperationFailure: If the command cannot be started, or exits
            non-zero while check is set
    """
    command = list(command)
    logger.info("CMD %s", format_command(command))

    if testing_mode() and not readonly:
        DRY_RUN_LOG.append(command)
        logger.info("Testing mode: skipped %s", command[0])
        return ""

    try:
        result = subprocess.run(
            command,
            input=input_text,
            check=check,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True
        )
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        logger.error("Command %s failed (%s): %s", command[0], e.returncode, stderr)
        raise ExternalOperationFailure(
            f"Command {format_command(command)} failed with exit status "
            f"{e.returncode}: {stderr}",
            command=command, returncode=e.returncode, stderr=stderr) from e
    except OSError as e:
        logger.error("Command %s could not be started: %s", command[0], e)
        raise ExternalOperationFailure(
            f"Command {format_command(command)} could not be started: {e}",
            command=command) from e

    if result.stderr and result.stderr.strip():
        logger.debug("STDERR %s", result.stderr.strip())
    return result.stdout or ""


def command_succeeds(command: Sequence[str]) -> bool:
    """Run a read-only probe command and report whether it exited 0."""
    try:
        run_command(command, readonly=True)
    except ExternalOperationFailure:
        return False
    return True


def run_chroot(root_path: str, command: Sequence[str],
               input_text: Optional[str] = None) -> str:
    """Run a command inside the target system."""
    return run_command(["arch-chroot", root_path] + list(command),
                       input_text=input_text)


def ensure_directory(path: str) -> None:
    """
    Create a directory (and its parents) on the host.

    Raises:
        ExternalOperationFailure: If the path cannot be created, for example
            because a regular file is in the way
    """
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create directory %s: %s", path, e)
        raise ExternalOperationFailure(f"Cannot create directory {path}: {e}") from e
