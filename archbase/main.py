"""
Main Module

This module serves as the entry point for the Arch Linux base installer.
It parses the command line, checks the environment and hands over to the
Installer.
"""

import argparse
import logging
import sys
from typing import List, Optional

from rich.console import Console

from archbase import __version__, prompts
from archbase.command import run_command
from archbase.config import testing_mode
from archbase.errors import EnvironmentCheckFailure, ExternalOperationFailure, UserAbort
from archbase.installer import Installer, Outcome
from archbase.logging_setup import configure_logging
from archbase.selftest import run_self_test
from archbase.system_operations import check_environment

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

EXIT_ENVIRONMENT = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="archbase",
        description="Install a minimal Arch Linux system onto a single disk.")
    parser.add_argument("--allow-bios", action="store_true",
                        help="continue even if the system did not boot in UEFI mode")
    parser.add_argument("--self-test", action="store_true",
                        help="run the input validators against sample values and exit")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def offer_reboot() -> None:
    """Ask whether to reboot now; never in testing mode."""
    if testing_mode():
        return
    try:
        if prompts.ask_confirm("Reboot now?", default=False):
            run_command(["reboot"])
    except UserAbort:
        pass
    except ExternalOperationFailure as e:
        console.print(f"[bold yellow]Warning:[/bold yellow] Reboot failed: {e}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to run the installer.

    Returns:
        int: 0 on success or user abort, 1 on a failed step, 2 if the
        environment check failed before any work began
    """
    args = parse_args(argv)

    if args.self_test:
        return run_self_test()

    log_path = configure_logging()
    logger.info("archbase %s starting", __version__)

    console.print("[bold blue]Arch Linux Base Installer[/bold blue]")
    console.print("This script will install a minimal Arch Linux system on a single disk.")
    console.print(
        "Please make sure you have a backup of any important data before proceeding.")

    try:
        check_environment()
    except EnvironmentCheckFailure as e:
        logger.error("Environment check failed: %s", e)
        console.print(f"[bold red]Error:[/bold red] {e}")
        return EXIT_ENVIRONMENT

    result = Installer(allow_bios=args.allow_bios).run()
    if result.outcome is Outcome.SUCCESS:
        offer_reboot()

    logger.info("Finished with outcome %s", result.outcome.value)
    console.print(f"Log file: {log_path}")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
