"""End-to-end tests for the installation orchestrator."""

from unittest.mock import patch

import pytest

from archbase.config import InstallationConfig
from archbase.errors import PreconditionFailure, UserAbort
from archbase.installer import Installer, Outcome, ProgressState

PASSWORD = "correcthorse"


@pytest.fixture
def answers():
    """Answers for an ext4 install of archbox with user alice."""
    return [
        ("Select the disk", "/dev/sda"),
        ("Swap size", ""),
        ("Select filesystem", "ext4"),
        ("hostname", "archbox"),
        ("Enter your timezone", "Europe/Berlin"),
        ("root password", PASSWORD),
        ("username", "alice"),
        ("password for alice", PASSWORD),
        ("Confirm password", PASSWORD),
        ("sudo", True),
        ("Select shell", "bash"),
        ("Select bootloader", "grub"),
        ("multilib", False),
        ("will be destroyed", True),
    ]


@pytest.fixture
def installer(tmp_path, fake_run, lsblk_disks):
    """An Installer with host probes patched and the target under tmp_path."""
    fake_run.outputs["lsblk"] = lsblk_disks
    fake_run.outputs["blkid"] = "1111-2222\n"
    config = InstallationConfig(mount_point=str(tmp_path / "mnt"))
    with patch("archbase.installer.check_prerequisites"), \
            patch("archbase.disk_operations.validate_disk", return_value=True), \
            patch("archbase.disk_operations.wait_for_partitions"), \
            patch("archbase.settings_operations.calculate_swap_size", return_value=2048), \
            patch("archbase.settings_operations.detect_timezone", return_value=None), \
            patch("archbase.settings_operations.timezone_exists", return_value=True), \
            patch("archbase.settings_operations.detect_cpu_vendor", return_value="intel"):
        yield Installer(config)


class TestProgressState:
    def test_render(self):
        progress = ProgressState(total=4)
        progress.advance()
        assert progress.render("Wiping") == "[1/4] 25% Wiping"

    def test_empty(self):
        assert ProgressState(total=0).percent == 0


class TestInstaller:
    def test_full_run_reaches_user_account(self, installer, fake_run, scripted_prompts, answers):
        """Test the ext4 scenario records the chosen values and passes the user step."""
        scripted_prompts(answers)
        result = installer.run()

        assert result.outcome is Outcome.SUCCESS
        assert result.exit_code == 0
        assert "user_account" in result.completed_steps
        assert result.completed_steps[-1] == "completion"

        config = installer.config
        assert config.disk == "/dev/sda"
        assert config.filesystem == "ext4"
        assert config.hostname == "archbox"
        assert config.username == "alice"
        assert config.frozen
        assert installer.state.partition_plan.root == "/dev/sda3"
        assert installer.state.root_uuid == "1111-2222"

        assert fake_run.index("wipefs") < fake_run.index("sgdisk") < fake_run.index("pacstrap")
        assert fake_run.index("useradd") < fake_run.index("grub-install")
        assert installer.cleanup.runs == 1
        assert fake_run.calls[-1] == ["swapoff", "-a"]

    def test_declined_wipe_is_a_clean_abort(self, installer, fake_run, scripted_prompts, answers):
        """Test that answering no at the gate stops before any disk command."""
        answers[-1] = ("will be destroyed", False)
        scripted_prompts(answers)
        result = installer.run()

        assert result.outcome is Outcome.ABORTED
        assert result.exit_code == 0
        assert result.failed_step == "confirm_wipe"
        for program in ("wipefs", "sgdisk", "mkfs.ext4", "mount", "pacstrap"):
            assert program not in fake_run.programs
        assert installer.cleanup.runs == 0
        assert not installer.config.frozen

    def test_cancelled_prompt_is_an_abort(self, installer, fake_run, scripted_prompts, answers):
        scripted_prompts(answers)
        with patch("archbase.prompts.ask_text", side_effect=UserAbort("cancelled")):
            result = installer.run()
        assert result.outcome is Outcome.ABORTED
        assert result.failed_step == "disk_selection"
        assert installer.cleanup.runs == 0

    def test_pacstrap_failure_runs_cleanup(self, installer, fake_run, scripted_prompts, answers):
        """Test that a failed base install unmounts and disables swap."""
        scripted_prompts(answers)
        fake_run.fail_on.add("pacstrap")
        with patch("archbase.cleanup.is_mounted", return_value=True):
            result = installer.run()

        assert result.outcome is Outcome.FAILED
        assert result.exit_code == 1
        assert result.failed_step == "base_install"
        assert "pacstrap" in result.message
        assert "partitioning" in result.completed_steps

        failed_at = fake_run.index("pacstrap")
        after = fake_run.calls[failed_at + 1:]
        assert ["umount", installer.config.efi_mount_point] in after
        assert ["umount", installer.config.mount_point] in after
        assert after[-1] == ["swapoff", "-a"]
        assert installer.cleanup.runs == 1
        assert "chpasswd" not in fake_run.programs

    def test_host_file_error_names_the_step(self, installer, fake_run, scripted_prompts,
                                            answers, tmp_path):
        """Test that a regular file at <mount>/boot fails the partitioning step cleanly."""
        mount = tmp_path / "mnt"
        mount.mkdir()
        (mount / "boot").write_text("")
        scripted_prompts(answers)
        with patch("archbase.cleanup.is_mounted", return_value=True):
            result = installer.run()

        assert result.outcome is Outcome.FAILED
        assert result.exit_code == 1
        assert result.failed_step == "partitioning"
        assert "boot" in result.message
        assert "pacstrap" not in fake_run.programs
        assert installer.cleanup.runs == 1
        assert fake_run.calls[-1] == ["swapoff", "-a"]

    def test_precondition_failure_before_disk(self, installer, fake_run):
        with patch("archbase.installer.check_prerequisites",
                   side_effect=PreconditionFailure("No internet connection.")):
            result = installer.run()
        assert result.outcome is Outcome.FAILED
        assert result.failed_step == "preconditions"
        assert installer.cleanup.runs == 0
        assert fake_run.calls == []

    def test_keyboard_interrupt_after_wipe(self, installer, fake_run, scripted_prompts, answers):
        scripted_prompts(answers)
        with patch("archbase.installer.prepare_disk", side_effect=KeyboardInterrupt):
            installer.steps = installer._build_steps()
            result = installer.run()
        assert result.outcome is Outcome.FAILED
        assert result.failed_step == "partitioning"
        assert installer.cleanup.runs == 1

    def test_virtual_disk_skips_gate(self, tmp_path, fake_run, scripted_prompts, answers):
        fake_run.outputs["lsblk"] = (
            '{"blockdevices": [{"name": "vda", "path": "/dev/vda", '
            '"size": 10737418240, "model": "QEMU HARDDISK", "type": "disk"}]}')
        answers[0] = ("Select the disk", "/dev/vda")
        answers.pop()
        script = scripted_prompts(answers)
        installer = Installer(InstallationConfig(mount_point=str(tmp_path / "mnt")))
        installer.steps = [step for step in installer.steps
                           if step.name in ("disk_selection", "settings", "confirm_wipe")]
        with patch("archbase.disk_operations.validate_disk", return_value=True), \
                patch("archbase.settings_operations.calculate_swap_size", return_value=1024), \
                patch("archbase.settings_operations.detect_timezone", return_value=None), \
                patch("archbase.settings_operations.timezone_exists", return_value=True), \
                patch("archbase.settings_operations.detect_cpu_vendor", return_value="amd"):
            result = installer.run()

        assert result.outcome is Outcome.SUCCESS
        assert not any("will be destroyed" in message for message in script.asked)
        assert ["wipefs", "--all", "--force", "/dev/vda"] in fake_run.calls
