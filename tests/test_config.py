"""Tests for the configuration records and logging setup."""

import logging

import pytest

from archbase import logging_setup
from archbase.config import InstallationConfig, testing_mode
from archbase.subvolume_operations import SubvolumeLayout


class TestInstallationConfig:
    def test_freeze_makes_read_only(self):
        config = InstallationConfig(hostname="archbox")
        config.hostname = "other"
        config.freeze()
        assert config.frozen
        with pytest.raises(AttributeError, match="read-only"):
            config.hostname = "changed"
        assert config.hostname == "other"

    def test_passwords_are_hidden(self):
        config = InstallationConfig(root_password="secret-root", user_password="secret-user")
        assert "secret" not in repr(config)
        assert "secret" not in str(config.summary())

    def test_paths(self, tmp_path):
        config = InstallationConfig(mount_point=str(tmp_path))
        assert config.efi_mount_point == str(tmp_path / "boot")
        assert config.target_path("/etc/hostname") == str(tmp_path / "etc" / "hostname")

    def test_summary_lists_subvolumes(self):
        config = InstallationConfig(filesystem="btrfs", subvolumes=SubvolumeLayout.default())
        assert config.uses_subvolumes
        assert "@home -> /home" in config.summary()["Subvolumes"]


class TestTestingMode:
    def test_flag(self, monkeypatch):
        assert testing_mode() is False
        monkeypatch.setenv("ARCHBASE_TESTING", "1")
        assert testing_mode() is True
        monkeypatch.setenv("ARCHBASE_TESTING", "0")
        assert testing_mode() is False


class TestConfigureLogging:
    """Test log destination selection."""

    @pytest.fixture(autouse=True)
    def isolated_root_logger(self, monkeypatch):
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        monkeypatch.setattr(logging_setup, "_configured_path", None)
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers = handlers
        root.setLevel(level)

    def test_file_handler(self, tmp_path):
        path = tmp_path / "logs" / "archbase.log"
        assert logging_setup.configure_logging(str(path)) == str(path)
        logging.getLogger("archbase.test").info("hello file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello file" in path.read_text()

    def test_idempotent(self, tmp_path):
        first = logging_setup.configure_logging(str(tmp_path / "a.log"))
        second = logging_setup.configure_logging(str(tmp_path / "b.log"))
        assert first == second

    def test_testing_mode_logs_to_stdout(self, testing_env, tmp_path, capsys):
        path = tmp_path / "never.log"
        assert logging_setup.configure_logging(str(path)) == "<stdout>"
        logging.getLogger("archbase.test").info("hello stdout")
        assert "hello stdout" in capsys.readouterr().out
        assert not path.exists()
