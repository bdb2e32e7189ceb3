import subprocess

import pytest

from dockhand_automation.actions import OperationActionRunner
from dockhand_automation.operations.base import Operation
from dockhand_automation.types import ActionKind, ActionResult, ActionSpec, HostConfig, HostContext

HOSTS = {"web1": HostConfig("web1")}
CTX = HostContext(host="web1", variables={"user": "ansible"}, facts={"os_family": "Debian"})


class EchoOperation(Operation):
    kind = ActionKind.EXEC
    seen: list = []

    def apply(self, context, executor):
        EchoOperation.seen.append((dict(self.spec), executor))
        return self.result(context, ["ran"])


class BrokenOperation(Operation):
    kind = ActionKind.EXEC

    def apply(self, context, executor):
        cmd = ["apt-get", "install", "-y", "nope"]
        raise subprocess.CalledProcessError(100, cmd, "", "E: Unable to locate package nope\n")


class SlowOperation(Operation):
    kind = ActionKind.EXEC

    def apply(self, context, executor):
        raise subprocess.TimeoutExpired(["sleep", "60"], 1)


def runner_with(operation_cls, **kwargs):
    return OperationActionRunner(
        HOSTS,
        executor_factory=lambda host, dry_run=False: ("executor", host.name, dry_run),
        registry={ActionKind.EXEC: operation_cls},
        **kwargs,
    )


def test_renders_arguments_and_applies_operation():
    EchoOperation.seen = []
    runner = runner_with(EchoOperation, dry_run=True)

    result = runner(ActionSpec(ActionKind.EXEC, {"name": "hello {{ user }} on {{ os_family }}"}), CTX)

    assert result.changed is True
    assert result.resource == "hello ansible on Debian"
    spec, executor = EchoOperation.seen[0]
    assert spec == {"name": "hello ansible on Debian"}
    assert executor == ("executor", "web1", True)


def test_command_failures_become_failed_results():
    result = runner_with(BrokenOperation)(ActionSpec(ActionKind.EXEC, {"name": "nope"}), CTX)

    assert result.failed is True
    assert result.changed is False
    assert result.details == "'apt-get install -y nope' exited 100: E: Unable to locate package nope"


def test_undefined_template_variables_fail_the_action():
    result = runner_with(EchoOperation)(ActionSpec(ActionKind.EXEC, {"name": "{{ nope }}"}), CTX)

    assert result.failed is True
    assert "template error" in result.details


def test_invalid_arguments_fail_the_action():
    class Picky(Operation):
        kind = ActionKind.EXEC

        def __init__(self, spec):
            raise ValueError("exec operation requires a command")

        def apply(self, context, executor):
            raise AssertionError("never applied")

    result = runner_with(Picky)(ActionSpec(ActionKind.EXEC, {}), CTX)

    assert result == ActionResult(
        host="web1",
        action="exec",
        changed=False,
        details="exec operation requires a command",
        failed=True,
    )


def test_command_timeouts_propagate():
    with pytest.raises(subprocess.TimeoutExpired):
        runner_with(SlowOperation)(ActionSpec(ActionKind.EXEC, {}), CTX)
