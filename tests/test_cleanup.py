"""Tests for the cleanup handler."""

from unittest.mock import patch

import pytest

from archbase.cleanup import CleanupHandler


@pytest.fixture
def everything_mounted():
    with patch("archbase.cleanup.is_mounted", return_value=True):
        yield


class TestCleanupHandler:
    def test_nothing_mounted_only_disables_swap(self, fake_run, target_config):
        CleanupHandler(target_config).run()
        assert fake_run.calls == [["swapoff", "-a"]]

    def test_second_run_is_harmless(self, fake_run, target_config):
        """Test that running twice in a row raises nothing the second time."""
        handler = CleanupHandler(target_config)
        handler.run()
        handler.run()
        assert handler.runs == 2
        assert fake_run.calls == [["swapoff", "-a"], ["swapoff", "-a"]]

    def test_unmount_order_ext4(self, fake_run, target_config, everything_mounted):
        CleanupHandler(target_config).run()
        assert fake_run.calls == [
            ["umount", target_config.efi_mount_point],
            ["umount", target_config.mount_point],
            ["swapoff", "-a"],
        ]

    def test_unmount_order_btrfs(self, fake_run, target_config, everything_mounted):
        """Test EFI first, then subvolumes deepest first, then root."""
        target_config.filesystem = "btrfs"
        CleanupHandler(target_config).run()

        targets = [cmd[1] for cmd in fake_run.find("umount")]
        root = target_config.mount_point
        assert targets[0] == target_config.efi_mount_point
        assert targets[1] == f"{root}/var/cache/pacman/pkg"
        assert set(targets[2:-1]) == {f"{root}/home", f"{root}/var/log", f"{root}/.snapshots"}
        assert targets[-1] == root
        assert fake_run.calls[-1] == ["swapoff", "-a"]

    def test_failures_do_not_stop_later_steps(self, fake_run, target_config, everything_mounted):
        fake_run.fail_on.update({"umount", "swapoff"})
        CleanupHandler(target_config).run()
        assert fake_run.programs == ["umount", "umount", "swapoff"]
