from pathlib import Path
import subprocess
import time

import pytest

from dockhand_automation.executors import (
    Executor,
    LocalExecutor,
    SshExecutor,
    command_deadline,
    executor_for,
)
from dockhand_automation.types import HostConfig


def test_executor_for_picks_connection():
    assert isinstance(executor_for(HostConfig("local")), LocalExecutor)
    assert isinstance(executor_for(HostConfig("web1", connection="ssh")), SshExecutor)
    with pytest.raises(ValueError):
        executor_for(HostConfig("web1", connection="winrm"))


def test_dry_run_skips_mutable_commands(monkeypatch):
    def explode(*args, **kwargs):
        raise AssertionError("subprocess should not run")

    monkeypatch.setattr(subprocess, "run", explode)
    executor = LocalExecutor(HostConfig("local"), dry_run=True)

    result = executor.run(["useradd", "ansible"])

    assert result.returncode == 0
    assert result.stderr == "skipped (dry-run)"


def test_check_raises_called_process_error(monkeypatch):
    def fake_run(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 3, stdout="", stderr="nope")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(subprocess.CalledProcessError) as exc:
        LocalExecutor(HostConfig("local")).run(["false"])
    assert exc.value.returncode == 3


def test_become_wraps_with_sudo():
    executor = Executor(HostConfig("local", become=True))
    assert executor.wrap(["apt-get", "update"], env={"DEBIAN_FRONTEND": "noninteractive"}) == [
        "sudo",
        "-n",
        "--",
        "env",
        "DEBIAN_FRONTEND=noninteractive",
        "apt-get",
        "update",
    ]


def test_ssh_argv():
    host = HostConfig(
        "web1", connection="ssh", address="10.0.0.5", user="ubuntu", port=2222, identity_file="~/.ssh/id"
    )
    argv = SshExecutor(host).wrap(["systemctl", "is-active", "docker"], cwd="/srv")
    assert argv == [
        "ssh",
        "-o",
        "BatchMode=yes",
        "-o",
        "ConnectTimeout=10",
        "-p",
        "2222",
        "-i",
        "~/.ssh/id",
        "ubuntu@10.0.0.5",
        "--",
        "cd /srv && systemctl is-active docker",
    ]


def test_ssh_become_quotes_remote_command():
    host = HostConfig("web1", connection="ssh", become=True)
    argv = SshExecutor(host).wrap(["tee", "/etc/sudoers.d/ansible user"])
    assert argv[-2:] == ["--", "sudo -n -- tee '/etc/sudoers.d/ansible user'"]
    assert argv[-3] == "web1"


def test_ssh_passes_env_on_the_remote_side(monkeypatch):
    captured = {}

    def fake_run(argv, **kwargs):
        captured["argv"] = argv
        captured["env"] = kwargs.get("env")
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    host = HostConfig("web1", connection="ssh")

    SshExecutor(host).run(["apt-get", "update"], env={"DEBIAN_FRONTEND": "noninteractive"})

    assert captured["argv"][-1] == "env DEBIAN_FRONTEND=noninteractive apt-get update"
    assert captured["env"] is None


def test_local_write_file_is_idempotent(tmp_path: Path):
    executor = LocalExecutor(HostConfig("local"))
    target = tmp_path / "etc" / "sudoers.d" / "ansible"

    changed, detail = executor.write_file(target, content="ansible ALL=(ALL) NOPASSWD:ALL\n", mode=0o440)
    assert changed is True
    assert detail == "content, mode->0440"

    changed, detail = executor.write_file(target, content="ansible ALL=(ALL) NOPASSWD:ALL\n", mode=0o440)
    assert changed is False
    assert detail == "noop"


def test_local_dry_run_reports_without_writing(tmp_path: Path):
    executor = LocalExecutor(HostConfig("local"), dry_run=True)
    target = tmp_path / "daemon.json"

    changed, _ = executor.write_file(target, content="{}", mode=None)

    assert changed is True
    assert not target.exists()


def test_local_directory_and_removal(tmp_path: Path):
    executor = LocalExecutor(HostConfig("local"))
    keyrings = tmp_path / "keyrings"

    assert executor.ensure_directory(keyrings, mode=None) == (True, "created")
    assert executor.ensure_directory(keyrings, mode=None) == (False, "noop")
    assert executor.remove_path(keyrings) is True
    assert executor.remove_path(keyrings) is False


def test_missing_command_reports_not_found(monkeypatch):
    def fake_run(argv, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", argv[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    executor = LocalExecutor(HostConfig("local"))

    result = executor.run(["dpkg", "--print-architecture"], check=False, mutable=False)
    assert result.returncode == 127
    assert "dpkg" in result.stderr

    with pytest.raises(subprocess.CalledProcessError) as exc:
        executor.run(["dpkg", "--print-architecture"], mutable=False)
    assert exc.value.returncode == 127


def test_command_deadline_caps_timeouts(monkeypatch):
    seen = []

    def fake_run(argv, **kwargs):
        seen.append(kwargs["timeout"])
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    executor = LocalExecutor(HostConfig("local"))

    with command_deadline(2):
        executor.run(["apt-get", "install", "-y", "docker-ce"], timeout=600)
        executor.run(["apt-get", "update"])
    executor.run(["apt-get", "update"], timeout=600)
    executor.run(["true"])

    assert 0 < seen[0] <= 2
    assert 0 < seen[1] <= 2
    assert seen[2:] == [600, None]


def test_command_deadline_kills_a_running_command():
    executor = LocalExecutor(HostConfig("local"))
    started = time.monotonic()

    with command_deadline(0.2):
        with pytest.raises(subprocess.TimeoutExpired):
            executor.run(["sleep", "5"])

    assert time.monotonic() - started < 3
