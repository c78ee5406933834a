"""
Validation Module

Pure accept/reject checks for every value the user supplies. None of these
functions raise, log, or touch global state; validate_disk only reads the
device node and the mount table.
"""

import os
import re
import stat
from dataclasses import dataclass, field
from typing import List, Optional, Set

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")
USERNAME_MAX_LENGTH = 32
HOSTNAME_PATTERN = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")
MOUNT_POINT_PATTERN = re.compile(r"^/([A-Za-z0-9._-]+(/[A-Za-z0-9._-]+)*)$")
SUBVOLUME_PATTERN = re.compile(r"^@[A-Za-z0-9._-]*$")
SWAP_SIZE_PATTERN = re.compile(r"^[1-9][0-9]*[MG]$")
NVME_PATTERN = re.compile(r"nvme[0-9]+n[0-9]+$")
PASSWORD_MIN_LENGTH = 8

RESERVED_MOUNT_PREFIXES = ("/dev", "/proc", "/sys", "/run", "/tmp")

PROC_MOUNTS = "/proc/mounts"

# Mount options known to be safe for the target filesystems
KNOWN_FLAG_OPTIONS = {
    "defaults", "rw", "ro", "atime", "noatime", "relatime", "strictatime",
    "nodiratime", "lazytime", "nolazytime", "sync", "async", "dev", "nodev",
    "exec", "noexec", "suid", "nosuid", "acl", "noacl", "user_xattr",
    "discard", "nodiscard", "ssd", "nossd", "ssd_spread", "autodefrag",
    "noautodefrag", "compress", "compress-force", "space_cache",
    "nospace_cache", "datacow", "nodatacow", "datasum", "nodatasum",
    "barrier", "nobarrier",
}
KNOWN_VALUE_OPTIONS = {
    "compress", "compress-force", "space_cache", "commit", "discard",
    "thread_pool", "max_inline", "inode64", "logbufs", "allocsize",
}
OPTION_VALUE_PATTERN = re.compile(r"^[A-Za-z0-9:._-]+$")
# Characters that can never be part of a mount option
FORBIDDEN_OPTION_CHARS = re.compile(r"[\s\"'`$;|&<>\\(){}]")


@dataclass
class MountOptionsResult:
    """
    Outcome of validate_mount_options.

    Unknown options only add advisory warnings; the string is rejected just
    when it contains characters no mount option can carry.
    """

    accepted: bool
    warnings: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.accepted


def validate_username(username: str) -> bool:
    """Lowercase POSIX-style account name, at most 32 characters."""
    if not isinstance(username, str) or len(username) > USERNAME_MAX_LENGTH:
        return False
    return USERNAME_PATTERN.fullmatch(username) is not None


def validate_hostname(hostname: str) -> bool:
    """Single DNS label: alphanumerics and inner hyphens, 1 to 63 characters."""
    if not isinstance(hostname, str):
        return False
    return HOSTNAME_PATTERN.fullmatch(hostname) is not None


def validate_mount_point(mount_point: str) -> bool:
    """Absolute path outside the reserved pseudo-filesystem trees."""
    if not isinstance(mount_point, str):
        return False
    if mount_point == "/":
        return True
    if MOUNT_POINT_PATTERN.fullmatch(mount_point) is None:
        return False
    return not mount_point.startswith(RESERVED_MOUNT_PREFIXES)


def validate_subvolume_name(name: str) -> bool:
    if not isinstance(name, str):
        return False
    return SUBVOLUME_PATTERN.fullmatch(name) is not None


def _check_option_token(token: str) -> str:
    """Return a warning for an unrecognized option token, or an empty string."""
    if "=" in token:
        key, _, value = token.partition("=")
        if key not in KNOWN_VALUE_OPTIONS:
            return f"Unknown mount option '{key}'"
        if not OPTION_VALUE_PATTERN.fullmatch(value):
            return f"Unusual value '{value}' for mount option '{key}'"
        return ""
    if token not in KNOWN_FLAG_OPTIONS:
        return f"Unknown mount option '{token}'"
    return ""


def validate_mount_options(options: str) -> MountOptionsResult:
    """
    Check a comma-separated mount option string.

    Options outside the allow-list produce warnings but the string is
    still accepted.

    Args:
        options: Comma-separated options, e.g. "noatime,compress=zstd"

    Returns:
        MountOptionsResult: accepted flag plus advisory warnings
    """
    if not isinstance(options, str):
        return MountOptionsResult(False, ["Mount options must be a string"])

    warnings = []
    for raw_token in options.split(","):
        token = raw_token.strip()
        if not token:
            continue
        if FORBIDDEN_OPTION_CHARS.search(token):
            return MountOptionsResult(
                False, [f"Mount option '{token}' contains forbidden characters"])
        if token.startswith("subvol=") or token.startswith("subvolid="):
            warnings.append(
                f"'{token}' is set per subvolume automatically and will be duplicated")
            continue
        warning = _check_option_token(token)
        if warning:
            warnings.append(warning)

    return MountOptionsResult(True, warnings)


def normalize_mount_options(options: str) -> str:
    """Strip whitespace and empty entries from an option string."""
    return ",".join(token.strip() for token in options.split(",") if token.strip())


def validate_swap_size(size: str) -> bool:
    """Non-zero sizes like 512M or 4G."""
    if not isinstance(size, str):
        return False
    return SWAP_SIZE_PATTERN.fullmatch(size) is not None


def validate_password(password: str) -> bool:
    return isinstance(password, str) and len(password) >= PASSWORD_MIN_LENGTH


def _mounted_sources(mounts_file: str) -> Optional[Set[str]]:
    sources = set()
    try:
        with open(mounts_file, "r") as f:
            for line in f:
                fields = line.split()
                if fields:
                    sources.add(fields[0])
    except OSError:
        return None
    return sources


def is_nvme_disk(disk: str) -> bool:
    return NVME_PATTERN.search(disk) is not None


def _is_same_or_partition(source: str, disk: str) -> bool:
    if source == disk:
        return True
    if not source.startswith(disk):
        return False
    # nvme0n1p2 is a partition of nvme0n1, nvme0n10 is another namespace
    suffix = r"p[0-9]+" if is_nvme_disk(disk) else r"[0-9]+"
    return re.fullmatch(suffix, source[len(disk):]) is not None


def validate_disk(path: str, mounts_file: str = PROC_MOUNTS) -> bool:
    """
    Accept an existing block device with nothing on it currently mounted.

    Args:
        path: Device path such as /dev/sda
        mounts_file: Mount table to consult

    Returns:
        bool: True if the device can be used as an installation target
    """
    if not isinstance(path, str) or not path.startswith("/dev/"):
        return False
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return False
    if not stat.S_ISBLK(mode):
        return False

    sources = _mounted_sources(mounts_file)
    if sources is None:
        # an unreadable mount table cannot prove the disk is free
        return False
    for source in sources:
        if _is_same_or_partition(source, path):
            return False
    return True
