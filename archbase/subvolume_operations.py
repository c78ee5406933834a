"""
Subvolume Operations Module

This module contains the btrfs subvolume layout, the interactive session
that edits it, and the functions that create and mount the subvolumes.
"""

import logging
import posixpath
from typing import Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from archbase import prompts
from archbase.command import ensure_directory, run_command
from archbase.errors import ExternalOperationFailure, ValidationRejection
from archbase.validation import (normalize_mount_options, validate_mount_options,
                                 validate_mount_point, validate_subvolume_name)

# Initialize a rich console for colored output
console = Console()
logger = logging.getLogger(__name__)

ROOT_SUBVOLUME = "@"
DEFAULT_SUBVOLUMES = {
    "@": "/",
    "@home": "/home",
    "@log": "/var/log",
    "@pkg": "/var/cache/pacman/pkg",
    "@snapshots": "/.snapshots",
}
DEFAULT_MOUNT_OPTIONS = "noatime,compress=zstd"


class MountOptionSet:
    """
    Global mount options shared by every subvolume, plus per-subvolume extras.

    Unknown option tokens are accepted with a warning; tokens carrying shell
    metacharacters or whitespace are refused.
    """

    def __init__(self, global_options: str = DEFAULT_MOUNT_OPTIONS):
        self.global_options = normalize_mount_options(global_options)
        self.overrides: Dict[str, str] = {}

    @staticmethod
    def _checked(options: str) -> Tuple[str, List[str]]:
        result = validate_mount_options(options)
        if not result:
            raise ValidationRejection("; ".join(result.warnings))
        return normalize_mount_options(options), result.warnings

    def set_global(self, options: str) -> List[str]:
        self.global_options, warnings = self._checked(options)
        return warnings

    def set_override(self, name: str, options: str) -> List[str]:
        options, warnings = self._checked(options)
        if options:
            self.overrides[name] = options
        else:
            self.overrides.pop(name, None)
        return warnings

    def compose(self, name: str) -> str:
        """Build subvol=<name>,<global options>[,<override>]."""
        parts = [f"subvol={name}"]
        if self.global_options:
            parts.append(self.global_options)
        if self.overrides.get(name):
            parts.append(self.overrides[name])
        return ",".join(parts)


class SubvolumeLayout:
    """
    Mapping of subvolume names to mount points, plus their mount options.

    The root subvolume "@" is always present, always mounted at "/", and
    cannot be modified or removed. Mount points are pairwise distinct.
    """

    def __init__(self, entries: Optional[Dict[str, str]] = None,
                 global_options: str = DEFAULT_MOUNT_OPTIONS):
        self._entries: Dict[str, str] = {ROOT_SUBVOLUME: "/"}
        self.options = MountOptionSet(global_options)
        for name, mount_point in (entries or {}).items():
            if name != ROOT_SUBVOLUME:
                self.add(name, mount_point)

    @classmethod
    def default(cls) -> "SubvolumeLayout":
        return cls(DEFAULT_SUBVOLUMES)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def items(self) -> List[Tuple[str, str]]:
        """Entries sorted by subvolume name."""
        return sorted(self._entries.items())

    def mount_point(self, name: str) -> str:
        return self._entries[name]

    def removable_names(self) -> List[str]:
        return sorted(name for name in self._entries if name != ROOT_SUBVOLUME)

    def secondary_mount_points(self) -> List[str]:
        return [mount for name, mount in self.items() if name != ROOT_SUBVOLUME]

    def _check_mount_point(self, mount_point: str, ignore: Optional[str] = None) -> None:
        if not validate_mount_point(mount_point):
            raise ValidationRejection(
                f"Invalid mount point '{mount_point}'. Use an absolute path outside "
                "/dev, /proc, /sys, /run and /tmp.")
        if posixpath.normpath(mount_point) != mount_point:
            raise ValidationRejection(
                f"Mount point '{mount_point}' must not contain '.' or '..' components.")
        if mount_point == "/":
            raise ValidationRejection("'/' belongs to the root subvolume.")
        for name, existing in self._entries.items():
            if name != ignore and existing == mount_point:
                raise ValidationRejection(
                    f"Mount point '{mount_point}' is already used by {name}.")

    def add(self, name: str, mount_point: str) -> None:
        """
        Add a subvolume.

        Raises:
            ValidationRejection: On an invalid or duplicate name or mount point
        """
        if not validate_subvolume_name(name):
            raise ValidationRejection(
                f"Invalid subvolume name '{name}'. Names start with '@' followed by "
                "letters, digits, '.', '_' or '-'.")
        if name in self._entries:
            raise ValidationRejection(f"Subvolume {name} already exists.")
        self._check_mount_point(mount_point)
        self._entries[name] = mount_point

    def modify(self, name: str, mount_point: str) -> None:
        """
        Move an existing subvolume to another mount point.

        Raises:
            ValidationRejection: For the root subvolume, unknown names, or an
                invalid or duplicate mount point
        """
        if name == ROOT_SUBVOLUME:
            raise ValidationRejection("The root subvolume cannot be modified.")
        if name not in self._entries:
            raise ValidationRejection(f"Unknown subvolume {name}.")
        self._check_mount_point(mount_point, ignore=name)
        self._entries[name] = mount_point

    def remove(self, name: str) -> bool:
        """
        Remove a subvolume.

        Returns:
            bool: False, with nothing changed, for the root subvolume, an
            unknown name, or when only one entry is left
        """
        if name == ROOT_SUBVOLUME:
            logger.warning("Refused to remove the root subvolume")
            return False
        if len(self._entries) <= 1 or name not in self._entries:
            logger.warning("Refused to remove subvolume %s", name)
            return False
        del self._entries[name]
        self.options.overrides.pop(name, None)
        return True

    @property
    def global_options(self) -> str:
        return self.options.global_options

    def set_global_options(self, options: str) -> List[str]:
        """
        Replace the options shared by every subvolume.

        Returns:
            List[str]: Advisory warnings for unrecognized options

        Raises:
            ValidationRejection: If the options contain forbidden characters
        """
        return self.options.set_global(options)

    def set_override(self, name: str, options: str) -> List[str]:
        """Set (or clear, with an empty string) the extra options of one subvolume."""
        if name not in self._entries:
            raise ValidationRejection(f"Unknown subvolume {name}.")
        return self.options.set_override(name, options)

    def override(self, name: str) -> str:
        return self.options.overrides.get(name, "")

    def compose_options(self, name: str) -> str:
        return self.options.compose(name)

    def preview(self) -> List[Tuple[str, str, str]]:
        """(name, mount point, composed options) for every entry, sorted by name."""
        return [(name, mount, self.compose_options(name)) for name, mount in self.items()]


def show_layout(layout: SubvolumeLayout) -> None:
    table = Table(title="Btrfs Subvolume Layout")
    table.add_column("Subvolume", style="cyan")
    table.add_column("Mount point", style="magenta")
    table.add_column("Mount options", style="green")
    for name, mount, options in layout.preview():
        table.add_row(name, mount, options)
    console.print(table)


def _print_warnings(warnings: List[str]) -> None:
    for warning in warnings:
        console.print(f"[bold yellow]Warning:[/bold yellow] {warning}")


def _add_subvolume(layout: SubvolumeLayout) -> None:
    while True:
        name = prompts.ask_text("Subvolume name (e.g. @data):").strip()
        if not validate_subvolume_name(name):
            console.print(
                "[bold yellow]Warning:[/bold yellow] Names start with '@' followed by "
                "letters, digits, '.', '_' or '-'.")
            continue
        if name in layout:
            console.print(f"[bold yellow]Warning:[/bold yellow] Subvolume {name} already exists.")
            continue
        break

    while True:
        mount_point = prompts.ask_text(f"Mount point for {name}:").strip()
        try:
            layout.add(name, mount_point)
        except ValidationRejection as e:
            console.print(f"[bold yellow]Warning:[/bold yellow] {e}")
            continue
        console.print(f"[bold green]Added {name} -> {mount_point}[/bold green]")
        return


def _choose_non_root(layout: SubvolumeLayout, message: str) -> Optional[str]:
    names = layout.removable_names()
    if not names:
        console.print("[bold yellow]Warning:[/bold yellow] Only the root subvolume is defined.")
        return None
    return prompts.ask_select(
        message,
        choices=[{"name": f"{name} -> {layout.mount_point(name)}", "value": name}
                 for name in names])


def _modify_subvolume(layout: SubvolumeLayout) -> None:
    name = _choose_non_root(layout, "Subvolume to modify:")
    if name is None:
        return
    while True:
        mount_point = prompts.ask_text(
            f"New mount point for {name}:", default=layout.mount_point(name)).strip()
        try:
            layout.modify(name, mount_point)
        except ValidationRejection as e:
            console.print(f"[bold yellow]Warning:[/bold yellow] {e}")
            continue
        console.print(f"[bold green]{name} now mounts at {mount_point}[/bold green]")
        return


def _remove_subvolume(layout: SubvolumeLayout) -> None:
    if len(layout) <= 1:
        console.print("[bold yellow]Warning:[/bold yellow] The root subvolume cannot be removed.")
        return
    name = _choose_non_root(layout, "Subvolume to remove:")
    if name is None:
        return
    if layout.remove(name):
        console.print(f"[bold green]Removed {name}[/bold green]")
    else:
        console.print(f"[bold yellow]Warning:[/bold yellow] {name} cannot be removed.")


def _edit_global_options(layout: SubvolumeLayout) -> None:
    while True:
        options = prompts.ask_text(
            "Mount options for all subvolumes:", default=layout.global_options)
        try:
            warnings = layout.set_global_options(options)
        except ValidationRejection as e:
            console.print(f"[bold yellow]Warning:[/bold yellow] {e}")
            continue
        _print_warnings(warnings)
        return


def _edit_subvolume_options(layout: SubvolumeLayout) -> None:
    name = prompts.ask_select(
        "Subvolume to set extra options for:",
        choices=[name for name, _ in layout.items()])
    while True:
        options = prompts.ask_text(
            f"Extra mount options for {name} (empty to clear):",
            default=layout.override(name))
        try:
            warnings = layout.set_override(name, options)
        except ValidationRejection as e:
            console.print(f"[bold yellow]Warning:[/bold yellow] {e}")
            continue
        _print_warnings(warnings)
        return


MENU_CHOICES = [
    {"name": "Keep the default layout", "value": "defaults"},
    {"name": "Add a subvolume", "value": "add"},
    {"name": "Modify a subvolume", "value": "modify"},
    {"name": "Remove a subvolume", "value": "remove"},
    {"name": "Set mount options for all subvolumes", "value": "global_options"},
    {"name": "Set extra mount options for one subvolume", "value": "subvolume_options"},
    {"name": "Preview mount options", "value": "preview"},
    {"name": "Confirm and continue", "value": "confirm"},
]


def configure_subvolumes(layout: Optional[SubvolumeLayout] = None) -> SubvolumeLayout:
    """
    Let the user edit the subvolume layout until they confirm it.

    Args:
        layout: Starting layout; the default layout when omitted

    Returns:
        SubvolumeLayout: The confirmed layout
    """
    layout = layout or SubvolumeLayout.default()
    show_layout(layout)

    actions = {
        "add": _add_subvolume,
        "modify": _modify_subvolume,
        "remove": _remove_subvolume,
        "global_options": _edit_global_options,
        "subvolume_options": _edit_subvolume_options,
        "preview": show_layout,
    }

    while True:
        action = prompts.ask_select("Btrfs subvolume layout:", choices=MENU_CHOICES)
        if action == "confirm":
            logger.info("Subvolume layout confirmed: %s", layout.items())
            return layout
        if action == "defaults":
            layout = SubvolumeLayout.default()
            console.print("Using the default subvolume layout.")
            show_layout(layout)
            continue
        actions[action](layout)


def create_subvolumes(device: str, mount_point: str, layout: SubvolumeLayout) -> None:
    """
    Create every subvolume of the layout on a freshly formatted device.

    Raises:
        ExternalOperationFailure: If mounting or subvolume creation fails
    """
    ensure_directory(mount_point)
    run_command(["mount", device, mount_point])
    for name, _ in layout.items():
        run_command(["btrfs", "subvolume", "create", posixpath.join(mount_point, name)])
    run_command(["umount", mount_point])


def mount_subvolumes(device: str, mount_point: str, layout: SubvolumeLayout) -> None:
    """
    Mount the root subvolume, then every other subvolume beneath it.

    Already mounted entries are left in place on failure; unwinding them is
    the cleanup handler's job.

    Raises:
        ExternalOperationFailure: Naming the subvolume that failed to mount
    """
    try:
        run_command(["mount", "-o", layout.compose_options(ROOT_SUBVOLUME),
                     device, mount_point])
    except ExternalOperationFailure as e:
        raise ExternalOperationFailure(
            f"Failed to mount subvolume {ROOT_SUBVOLUME}: {e}",
            command=e.command, returncode=e.returncode, stderr=e.stderr) from e

    entries = [(name, mount) for name, mount in layout.items() if name != ROOT_SUBVOLUME]
    # parents before children
    for name, mount in sorted(entries, key=lambda entry: entry[1].count("/")):
        target = posixpath.join(mount_point, mount.lstrip("/"))
        ensure_directory(target)
        try:
            run_command(["mount", "-o", layout.compose_options(name), device, target])
        except ExternalOperationFailure as e:
            raise ExternalOperationFailure(
                f"Failed to mount subvolume {name}: {e}",
                command=e.command, returncode=e.returncode, stderr=e.stderr) from e
