"""
Arch Linux base installer.

Installs a minimal Arch Linux system on a single UEFI disk with ext4, btrfs
or xfs, swap, a user account and a bootloader.
"""

__version__ = "1.0.0"
