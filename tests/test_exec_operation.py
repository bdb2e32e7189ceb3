from pathlib import Path

import pytest

from dockhand_automation.executors import LocalExecutor
from dockhand_automation.operations.exec import ExecOperation
from dockhand_automation.types import HostConfig, HostContext

from fakes import FakeHost, fail, ok

CTX = HostContext(host="web1")


def test_command_runs_and_reports_change():
    host = FakeHost()
    op = ExecOperation({"command": "usermod -aG docker ansible"})

    result = op.apply(CTX, host)

    assert result.changed is True
    assert result.details == "ran (rc=0)"
    assert host.commands == [["sh", "-c", "usermod -aG docker ansible"]]


def test_creates_guard_skips(tmp_path: Path):
    marker = tmp_path / "done"
    marker.write_text("")
    op = ExecOperation({"command": ["touch", str(marker)], "creates": str(marker)})

    result = op.apply(CTX, LocalExecutor(HostConfig("local")))

    assert result.changed is False
    assert result.details.startswith("skipped (creates")


def test_creates_is_relative_to_cwd():
    host = FakeHost(files={"/opt/app/installed": ""})
    op = ExecOperation({"command": "./install.sh", "creates": "installed", "cwd": "/opt/app"})

    assert op.apply(CTX, host).changed is False


def test_unless_guard_skips_when_it_succeeds():
    host = FakeHost(responses={("sh", "-c", "docker info"): ok()})
    op = ExecOperation({"command": "curl -fsSL https://get.docker.com | sh", "unless": "docker info"})

    result = op.apply(CTX, host)

    assert result.changed is False
    assert result.details == "skipped (unless rc=0)"


def test_only_if_guard_skips_when_it_fails():
    host = FakeHost(responses={("sh", "-c", "test -x /usr/bin/docker"): fail()})
    op = ExecOperation({"command": "docker system prune -f", "only_if": "test -x /usr/bin/docker"})

    assert op.apply(CTX, host).details == "skipped (only_if rc=1)"


def test_unexpected_return_code_fails():
    host = FakeHost(responses={("sh", "-c", "false"): fail(2, "permission denied\nmore")})
    op = ExecOperation({"command": "false"})

    result = op.apply(CTX, host)

    assert result.failed is True
    assert result.details == "rc=2: permission denied"


def test_allowed_return_codes():
    host = FakeHost(responses={("sh", "-c", "grep -q x f"): fail(1)})
    op = ExecOperation({"command": "grep -q x f", "returns": [0, 1]})

    assert op.apply(CTX, host).failed is False


def test_dry_run_does_not_execute():
    host = FakeHost(dry_run=True)
    op = ExecOperation({"command": "reboot", "name": "reboot"})

    result = op.apply(CTX, host)

    assert result.changed is True
    assert result.details == "dry-run"
    assert result.resource == "reboot"


def test_env_list_and_validation():
    op = ExecOperation({"command": "env", "env": ["A=1", "B=two"], "timeout": "5"})
    assert op.env == {"A": "1", "B": "two"}
    assert op.timeout == 5.0
    with pytest.raises(ValueError):
        ExecOperation({"command": "env", "env": ["broken"]})
    with pytest.raises(ValueError):
        ExecOperation({})
