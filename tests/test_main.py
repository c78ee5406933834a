"""Tests for the command line entry point and self-test mode."""

from unittest.mock import patch

import pytest

from archbase import __version__
from archbase.errors import EnvironmentCheckFailure
from archbase.installer import InstallResult, Outcome
from archbase.main import EXIT_ENVIRONMENT, main, offer_reboot, parse_args
from archbase.selftest import SAMPLES, VALIDATORS, Sample, run_samples, run_self_test


@pytest.fixture
def no_logging_setup():
    with patch("archbase.main.configure_logging", return_value="/tmp/test.log"):
        yield


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.allow_bios is False
        assert args.self_test is False

    def test_flags(self):
        args = parse_args(["--allow-bios", "--self-test"])
        assert args.allow_bios is True
        assert args.self_test is True

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            parse_args(["--version"])
        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestExitCodes:
    """Test the process exit code for each way a run can end."""

    def test_environment_failure_exits_2(self, no_logging_setup):
        with patch("archbase.main.check_environment",
                   side_effect=EnvironmentCheckFailure("Root privileges are required.")), \
                patch("archbase.main.Installer") as mock_installer:
            assert main([]) == EXIT_ENVIRONMENT
        mock_installer.assert_not_called()

    @pytest.mark.parametrize("outcome,code", [
        (Outcome.SUCCESS, 0),
        (Outcome.ABORTED, 0),
        (Outcome.FAILED, 1),
    ])
    def test_outcome_exit_code(self, no_logging_setup, outcome, code):
        with patch("archbase.main.check_environment"), \
                patch("archbase.main.offer_reboot") as mock_reboot, \
                patch("archbase.main.Installer") as mock_installer:
            mock_installer.return_value.run.return_value = InstallResult(outcome)
            assert main(["--allow-bios"]) == code
        mock_installer.assert_called_once_with(allow_bios=True)
        assert mock_reboot.called is (outcome is Outcome.SUCCESS)

    def test_self_test_skips_installer(self):
        with patch("archbase.main.check_environment") as mock_check, \
                patch("archbase.main.configure_logging") as mock_logging:
            assert main(["--self-test"]) == 0
        mock_check.assert_not_called()
        mock_logging.assert_not_called()


class TestReboot:
    def test_never_in_testing_mode(self, testing_env, scripted_prompts, fake_run):
        script = scripted_prompts([])
        offer_reboot()
        assert script.asked == []
        assert fake_run.calls == []

    def test_reboot_when_confirmed(self, scripted_prompts, fake_run):
        scripted_prompts([("Reboot now", True)])
        offer_reboot()
        assert fake_run.calls == [["reboot"]]

    def test_declined(self, scripted_prompts, fake_run):
        scripted_prompts([("Reboot now", False)])
        offer_reboot()
        assert fake_run.calls == []


class TestSelfTest:
    def test_all_samples_pass(self):
        assert run_samples() == []
        assert run_self_test() == 0

    def test_mismatch_is_reported(self):
        bad = Sample("username", "Root", True)
        assert run_samples([bad]) == [bad]

    def test_samples_cover_every_validator(self):
        assert {sample.validator for sample in SAMPLES} == set(VALIDATORS)

    def test_no_commands_run(self, fake_run):
        run_self_test()
        assert fake_run.calls == []
