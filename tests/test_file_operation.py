from pathlib import Path

import pytest

from dockhand_automation.executors import LocalExecutor
from dockhand_automation.operations.base import parse_mode
from dockhand_automation.operations.file import FileOperation
from dockhand_automation.types import HostConfig, HostContext

from fakes import FakeHost

CTX = HostContext(host="web1", variables={"docker_log_max_size": "10m"}, facts={"os_family": "Debian"})


def local() -> LocalExecutor:
    return LocalExecutor(HostConfig("local"))


def test_writes_content_and_mode(tmp_path: Path):
    target = tmp_path / "sudoers.d" / "ansible"
    op = FileOperation({"path": str(target), "content": "ansible ALL=(ALL) NOPASSWD:ALL\n", "mode": "0440"})

    result = op.apply(CTX, local())

    assert result.changed is True
    assert target.read_text() == "ansible ALL=(ALL) NOPASSWD:ALL\n"
    assert target.stat().st_mode & 0o777 == 0o440
    assert op.apply(CTX, local()).changed is False


def test_renders_template_relative_to_plan_dir(tmp_path: Path):
    (tmp_path / "files").mkdir()
    (tmp_path / "files" / "daemon.json.j2").write_text(
        '{"log-opts": {"max-size": "{{ docker_log_max_size }}"}, "family": "{{ os_family }}", "x": "{{ extra }}"}\n'
    )
    target = tmp_path / "daemon.json"
    op = FileOperation(
        {
            "path": str(target),
            "template": "files/daemon.json.j2",
            "variables": {"extra": "yes"},
            "_plan_dir": str(tmp_path),
        }
    )

    op.apply(CTX, local())

    assert target.read_text() == '{"log-opts": {"max-size": "10m"}, "family": "Debian", "x": "yes"}\n'


def test_directory_and_absent(tmp_path: Path):
    target = tmp_path / "keyrings"

    created = FileOperation({"path": str(target), "state": "directory"}).apply(CTX, local())
    assert created.changed is True
    assert target.is_dir()

    removed = FileOperation({"path": str(target), "state": "absent"}).apply(CTX, local())
    assert removed.changed is True
    assert removed.details == "removed"
    assert not target.exists()

    again = FileOperation({"path": str(target), "state": "absent"}).apply(CTX, local())
    assert again.changed is False


def test_ownership_through_commands():
    host = FakeHost(become=True)
    op = FileOperation(
        {"path": "/etc/sudoers.d/ansible", "content": "x\n", "mode": "0440", "owner": "root", "group": "adm"}
    )

    result = op.apply(CTX, host)

    assert result.details == "content, mode->0440, group->adm"
    assert host.files["/etc/sudoers.d/ansible"] == "x\n"
    assert host.owners["/etc/sudoers.d/ansible"] == "root:adm"
    assert op.apply(CTX, host).changed is False


def test_rejects_unknown_state():
    with pytest.raises(ValueError):
        FileOperation({"path": "/tmp/x", "state": "link"})
    with pytest.raises(ValueError):
        FileOperation({"content": "x"})


@pytest.mark.parametrize("raw", ["644", "0644", "0o644", 0o644])
def test_modes_are_octal(raw):
    assert parse_mode(raw) == 0o644


def test_mode_without_leading_zero_is_applied_as_octal(tmp_path: Path):
    target = tmp_path / "sudoers"
    op = FileOperation({"path": str(target), "content": "ansible ALL=(ALL) NOPASSWD:ALL\n", "mode": "440"})

    op.apply(CTX, local())

    assert (target.stat().st_mode & 0o777) == 0o440
