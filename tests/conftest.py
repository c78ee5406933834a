"""
Pytest configuration and shared fixtures for archbase tests.

Every external tool call is intercepted at archbase.command.subprocess.run
and every interactive question at the functions of archbase.prompts.
"""

import json
import subprocess
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import patch

import pytest

from archbase import command
from archbase.config import TESTING_ENV_VAR, InstallationConfig, InstallState
from archbase.disk_operations import PartitionPlan


# ==============================================================================
# Environment
# ==============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Run every test outside testing mode with an empty dry-run log."""
    monkeypatch.delenv(TESTING_ENV_VAR, raising=False)
    command.DRY_RUN_LOG.clear()
    yield
    command.DRY_RUN_LOG.clear()


@pytest.fixture
def testing_env(monkeypatch):
    monkeypatch.setenv(TESTING_ENV_VAR, "1")


# ==============================================================================
# Subprocess Fake
# ==============================================================================


class FakeRunner:
    """
    Stand-in for subprocess.run.

    Records every argv, answers from canned outputs keyed by program name,
    and fails the commands selected by fail_on (program names) or fail_if
    (a predicate over the argv).
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.outputs: Dict[str, str] = {}
        self.fail_on: set = set()
        self.fail_if: Optional[Callable[[List[str]], bool]] = None

    def __call__(self, cmd, input=None, check=True, **kwargs):
        cmd = list(cmd)
        self.calls.append(cmd)
        self.inputs.append(input)
        if cmd[0] in self.fail_on or (self.fail_if is not None and self.fail_if(cmd)):
            if check:
                raise subprocess.CalledProcessError(1, cmd, output="", stderr="mock failure")
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="mock failure")
        return subprocess.CompletedProcess(cmd, 0, stdout=self.outputs.get(cmd[0], ""), stderr="")

    @staticmethod
    def program(cmd: List[str]) -> str:
        """Program name, looking through arch-chroot."""
        if cmd[0] == "arch-chroot" and len(cmd) > 2:
            return cmd[2]
        return cmd[0]

    @property
    def programs(self) -> List[str]:
        return [self.program(cmd) for cmd in self.calls]

    def find(self, program: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if self.program(cmd) == program]

    def index(self, program: str) -> int:
        return self.programs.index(program)


@pytest.fixture
def fake_run():
    """Patch the single subprocess seam with a FakeRunner."""
    runner = FakeRunner()
    with patch("archbase.command.subprocess.run", side_effect=runner):
        yield runner


# ==============================================================================
# Prompt Script
# ==============================================================================


class ScriptedPrompts:
    """
    Answers questions by matching a substring of the prompt message.

    A list value is consumed one answer per question; any other value is
    returned every time. An unexpected question fails the test.
    """

    def __init__(self, answers: List[Tuple[str, Any]]):
        self.answers = [(key, list(value) if isinstance(value, list) else value)
                        for key, value in answers]
        self.asked: List[str] = []

    def answer(self, message: str, *args, **kwargs) -> Any:
        self.asked.append(message)
        for key, value in self.answers:
            if key in message:
                if isinstance(value, list):
                    if not value:
                        raise AssertionError(f"No answers left for prompt: {message}")
                    return value.pop(0)
                return value
        raise AssertionError(f"Unexpected prompt: {message}")


@pytest.fixture
def scripted_prompts():
    """
    Factory fixture; call it with (substring, answer) pairs to patch every
    prompt wrapper.
    """
    patchers = []

    def install(answers: List[Tuple[str, Any]]) -> ScriptedPrompts:
        script = ScriptedPrompts(answers)
        for name in ("ask_text", "ask_password", "ask_select", "ask_confirm"):
            patcher = patch(f"archbase.prompts.{name}", side_effect=script.answer)
            patcher.start()
            patchers.append(patcher)
        return script

    yield install

    for patcher in patchers:
        patcher.stop()


# ==============================================================================
# Disk Fixtures
# ==============================================================================


@pytest.fixture
def lsblk_disks() -> str:
    """lsblk JSON with one 100 GiB SATA disk, one small disk and a CD drive."""
    return json.dumps({
        "blockdevices": [
            {"name": "sda", "path": "/dev/sda", "size": 100 * 1024**3,
             "model": "Samsung SSD 860", "type": "disk"},
            {"name": "sdb", "path": "/dev/sdb", "size": 8 * 1024**3,
             "model": "USB Flash Drive", "type": "disk"},
            {"name": "sr0", "path": "/dev/sr0", "size": 1024**3,
             "model": "DVD-ROM", "type": "rom"},
        ]
    })


@pytest.fixture
def target_config(tmp_path) -> InstallationConfig:
    """A fully answered configuration that mounts under a temporary directory."""
    return InstallationConfig(
        disk="/dev/sda",
        filesystem="ext4",
        hostname="archbox",
        username="alice",
        shell="bash",
        enable_sudo=True,
        bootloader="grub",
        cpu_vendor="intel",
        swap_size_mib=2048,
        timezone="Europe/Berlin",
        root_password="rootpassword",
        user_password="userpassword",
        mount_point=str(tmp_path / "mnt"),
    )


@pytest.fixture
def target_state() -> InstallState:
    return InstallState(
        disk_model="Samsung SSD 860",
        disk_size_bytes=100 * 1024**3,
        partition_plan=PartitionPlan.for_disk("/dev/sda", 512, 2048),
    )
