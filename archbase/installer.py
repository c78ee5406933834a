"""
Installer Module

This module runs the installation as an ordered list of steps. It shows
progress, stops at the first failure, and makes sure the target mounts and
swap are released whenever the disk has been touched.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from rich.console import Console
from rich.table import Table

from archbase.cleanup import CleanupHandler
from archbase.config import InstallationConfig, InstallState
from archbase.disk_operations import confirm_disk_wipe, prepare_disk, select_disk, wipe_disk
from archbase.errors import InstallerError, UserAbort
from archbase.os_operations import (configure_initramfs, configure_locale_and_time,
                                    enable_network_service, install_base_system,
                                    install_bootloader, select_package_sets)
from archbase.settings_operations import choose_swap_size, collect_settings
from archbase.system_operations import check_prerequisites
from archbase.user_operations import prepare_boot_and_root, setup_user

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

StepAction = Callable[[InstallationConfig, InstallState], None]


@dataclass
class ProgressState:
    """Position of the installer within its step list."""

    total: int
    current: int = 0

    def advance(self) -> None:
        self.current += 1

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return self.current * 100 // self.total

    def render(self, title: str) -> str:
        return f"[{self.current}/{self.total}] {self.percent}% {title}"


@dataclass
class Step:
    name: str
    title: str
    action: StepAction


class Outcome(Enum):
    SUCCESS = "success"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class InstallResult:
    outcome: Outcome
    failed_step: Optional[str] = None
    message: str = ""
    completed_steps: List[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.outcome is Outcome.FAILED else 0


def show_summary(config: InstallationConfig) -> None:
    """Display the collected configuration before the point of no return."""
    table = Table(title="Installation Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in config.summary().items():
        table.add_row(key, str(value))
    console.print(table)


class Installer:
    """
    Drive one installation from preconditions to completion.

    Every action receives the configuration and the run state. The wipe is
    the first step that changes the disk; from then on the cleanup handler
    runs exactly once when the run ends, whatever the outcome.
    """

    def __init__(self, config: Optional[InstallationConfig] = None,
                 allow_bios: bool = False):
        self.config = config if config is not None else InstallationConfig()
        self.state = InstallState()
        self.allow_bios = allow_bios
        self.cleanup = CleanupHandler(self.config)
        self.disk_touched = False
        self.steps = self._build_steps()
        self.progress = ProgressState(total=len(self.steps))

    def _build_steps(self) -> List[Step]:
        return [
            Step("preconditions", "Checking boot mode and network", self._check_preconditions),
            Step("disk_selection", "Selecting installation disk", self._select_disk),
            Step("settings", "Collecting system settings", collect_settings),
            Step("confirm_wipe", "Confirming and wiping disk", self._confirm_and_wipe),
            Step("partitioning", "Partitioning, formatting and mounting", prepare_disk),
            Step("package_selection", "Selecting packages", select_package_sets),
            Step("base_install", "Installing base system", install_base_system),
            Step("initramfs", "Generating initramfs", configure_initramfs),
            Step("network_service", "Enabling network service", enable_network_service),
            Step("locale", "Configuring locale, hostname and timezone", configure_locale_and_time),
            Step("boot_preparation", "Setting root password and root UUID", prepare_boot_and_root),
            Step("user_account", "Creating user account", setup_user),
            Step("bootloader", "Installing bootloader", install_bootloader),
            Step("completion", "Finishing installation", self._complete),
        ]

    def _check_preconditions(self, config: InstallationConfig, state: InstallState) -> None:
        check_prerequisites(self.allow_bios)

    def _select_disk(self, config: InstallationConfig, state: InstallState) -> None:
        select_disk(config, state)
        choose_swap_size(config, state)

    def _confirm_and_wipe(self, config: InstallationConfig, state: InstallState) -> None:
        show_summary(config)
        if not confirm_disk_wipe(config, state):
            raise UserAbort("Installation cancelled, the disk was not modified")

        config.freeze()
        logger.info("Configuration frozen: %s", config)
        self.disk_touched = True
        wipe_disk(config.disk)

    def _complete(self, config: InstallationConfig, state: InstallState) -> None:
        console.print("[bold green]Installation completed successfully![/bold green]")
        console.print(f"Hostname: {config.hostname}")
        console.print(f"Username: {config.username}")
        console.print("You can now reboot into your new Arch Linux system.")

    def _report_failure(self, step: Optional[Step], error: BaseException) -> None:
        title = step.title if step else "startup"
        logger.error("Step %s failed: %s", step.name if step else "-", error)
        console.print(f"[bold red]Error:[/bold red] {title} failed: {error}")
        if self.disk_touched:
            console.print(
                f"[bold yellow]The disk {self.config.disk} is in an unknown state.[/bold yellow]")

    def run(self) -> InstallResult:
        """
        Execute every step in order.

        Returns:
            InstallResult: The outcome, plus the failing step if there was one
        """
        completed: List[str] = []
        step: Optional[Step] = None
        try:
            for step in self.steps:
                self.progress.advance()
                console.print(f"[bold blue]{self.progress.render(step.title)}[/bold blue]")
                logger.info("Step %s started", step.name)
                step.action(self.config, self.state)
                completed.append(step.name)
                logger.info("Step %s completed", step.name)
        except UserAbort as e:
            logger.info("User aborted during %s: %s", step.name if step else "-", e)
            console.print(f"[bold yellow]Aborted:[/bold yellow] {e}")
            return InstallResult(Outcome.ABORTED, step.name if step else None, str(e), completed)
        except (InstallerError, OSError) as e:
            self._report_failure(step, e)
            return InstallResult(Outcome.FAILED, step.name if step else None, str(e), completed)
        except KeyboardInterrupt:
            self._report_failure(step, KeyboardInterrupt("interrupted by user"))
            return InstallResult(Outcome.FAILED, step.name if step else None,
                                 "Interrupted", completed)
        finally:
            if self.disk_touched:
                self.cleanup.run()

        return InstallResult(Outcome.SUCCESS, completed_steps=completed)
