"""
Self-Test Module

Runs every validator against a fixed set of sample values and prints the
accept/reject results. Touches no disk and asks no questions.
"""

import logging
from typing import Callable, List, NamedTuple

from rich.console import Console
from rich.table import Table

from archbase.validation import (validate_hostname, validate_mount_options,
                                 validate_mount_point, validate_password,
                                 validate_subvolume_name, validate_swap_size,
                                 validate_username)

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)


class Sample(NamedTuple):
    validator: str
    value: str
    expected: bool


VALIDATORS = {
    "username": validate_username,
    "hostname": validate_hostname,
    "mount point": validate_mount_point,
    "subvolume": validate_subvolume_name,
    "mount options": lambda value: bool(validate_mount_options(value)),
    "swap size": validate_swap_size,
    "password": validate_password,
}

SAMPLES = [
    Sample("username", "alice", True),
    Sample("username", "user-name", True),
    Sample("username", "user-", True),
    Sample("username", "_svc", True),
    Sample("username", "-user", False),
    Sample("username", "User1", False),
    Sample("username", "1user", False),
    Sample("username", "a" * 33, False),
    Sample("hostname", "archbox", True),
    Sample("hostname", "a", True),
    Sample("hostname", "arch-linux", True),
    Sample("hostname", "-arch", False),
    Sample("hostname", "arch-", False),
    Sample("hostname", "arch.box", False),
    Sample("mount point", "/", True),
    Sample("mount point", "/home", True),
    Sample("mount point", "/var/log", True),
    Sample("mount point", "/dev/foo", False),
    Sample("mount point", "relative", False),
    Sample("mount point", "/home/", False),
    Sample("subvolume", "@", True),
    Sample("subvolume", "@home", True),
    Sample("subvolume", "home", False),
    Sample("subvolume", "@my vol", False),
    Sample("mount options", "noatime,compress=zstd", True),
    Sample("mount options", "noatime,frobnicate", True),
    Sample("mount options", "noatime;rm -rf /", False),
    Sample("swap size", "512M", True),
    Sample("swap size", "4G", True),
    Sample("swap size", "4GB", False),
    Sample("swap size", "0M", False),
    Sample("swap size", "G", False),
    Sample("password", "correcthorse", True),
    Sample("password", "short", False),
]


def run_samples(samples: List[Sample] = SAMPLES,
                validators: dict = VALIDATORS) -> List[Sample]:
    """
    Check every sample and print a results table.

    Returns:
        List[Sample]: Samples whose result differed from the expected one
    """
    table = Table(title="Validator Self-Test")
    table.add_column("Validator", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_column("Result")
    table.add_column("Expected")

    mismatches = []
    for sample in samples:
        check: Callable[[str], bool] = validators[sample.validator]
        accepted = bool(check(sample.value))
        if accepted != sample.expected:
            mismatches.append(sample)
        table.add_row(
            sample.validator,
            repr(sample.value),
            "[green]accept[/green]" if accepted else "[red]reject[/red]",
            "accept" if sample.expected else "reject",
        )

    console.print(table)
    return mismatches


def run_self_test() -> int:
    mismatches = run_samples()
    if mismatches:
        for sample in mismatches:
            logger.error("Self-test mismatch: %s %r", sample.validator, sample.value)
        console.print(
            f"[bold red]Error:[/bold red] {len(mismatches)} validator result(s) differ "
            "from the expected outcome.")
        return 1
    console.print("[bold green]All validator checks passed.[/bold green]")
    return 0
