import pytest

from dockhand_automation.operations.service import ServiceOperation, SystemCtl
from dockhand_automation.types import HostContext

from fakes import FakeHost, fail

CTX = HostContext(host="web1")


class FakeSystemCtl:
    def __init__(self, enabled: bool = False, active: bool = False):
        self.enabled = enabled
        self.active = active
        self.actions: list[str] = []

    def available(self, executor) -> bool:  # noqa: ARG002
        return True

    def is_enabled(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.enabled

    def is_active(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.active

    def daemon_reload(self, executor) -> None:  # noqa: ARG002
        self.actions.append("daemon-reload")

    def enable(self, executor, service: str) -> None:  # noqa: ARG002
        self.enabled = True
        self.actions.append("enable")

    def disable(self, executor, service: str) -> None:  # noqa: ARG002
        self.enabled = False
        self.actions.append("disable")

    def start(self, executor, service: str) -> None:  # noqa: ARG002
        self.active = True
        self.actions.append("start")

    def stop(self, executor, service: str) -> None:  # noqa: ARG002
        self.active = False
        self.actions.append("stop")

    def restart(self, executor, service: str) -> None:  # noqa: ARG002
        self.actions.append("restart")


def test_service_enable_and_start():
    op = ServiceOperation({"name": "docker", "enabled": True, "state": "running"})
    fake = FakeSystemCtl(enabled=False, active=False)
    op.systemctl = fake

    result = op.apply(CTX, FakeHost())

    assert result.changed is True
    assert result.details == "enabled, started"
    assert fake.actions == ["enable", "start"]


def test_service_already_running_is_noop():
    op = ServiceOperation({"name": "docker", "enabled": True, "state": "started"})
    op.systemctl = FakeSystemCtl(enabled=True, active=True)

    result = op.apply(CTX, FakeHost())

    assert result.changed is False
    assert result.resource == "docker"


def test_restarted_state_always_restarts():
    op = ServiceOperation({"service": "docker", "state": "restarted"})
    fake = FakeSystemCtl(enabled=True, active=True)
    op.systemctl = fake

    result = op.apply(CTX, FakeHost())

    assert result.changed is True
    assert fake.actions == ["restart"]


def test_daemon_reload_without_a_service():
    op = ServiceOperation({"daemon_reload": True})
    fake = FakeSystemCtl()
    op.systemctl = fake

    result = op.apply(CTX, FakeHost())

    assert result.details == "daemon-reloaded"
    assert fake.actions == ["daemon-reload"]


def test_stop_and_disable():
    op = ServiceOperation({"name": "docker", "enabled": "no", "state": "stopped"})
    fake = FakeSystemCtl(enabled=True, active=True)
    op.systemctl = fake

    result = op.apply(CTX, FakeHost())

    assert result.details == "disabled, stopped"


@pytest.mark.parametrize(
    "spec",
    [{}, {"state": "running"}, {"name": "docker", "state": "reloaded"}],
)
def test_invalid_specs(spec):
    with pytest.raises(ValueError):
        ServiceOperation(spec)


def test_missing_systemctl_raises():
    host = FakeHost(responses={("sh", "-c", "command -v systemctl"): fail()})
    with pytest.raises(RuntimeError):
        ServiceOperation({"name": "docker", "state": "running"}).apply(CTX, host)


def test_systemctl_queries_are_read_only_in_dry_run():
    host = FakeHost(dry_run=True, responses={("systemctl", "is-active", "docker"): fail(3)})
    op = ServiceOperation({"name": "docker", "state": "running"})

    result = op.apply(CTX, host)

    assert result.details == "started"
    assert ["systemctl", "start", "docker"] in host.commands
    assert SystemCtl().is_active(host, "docker") is False
