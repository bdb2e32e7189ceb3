import threading

from dockhand_automation.handlers import HandlerDispatcher
from dockhand_automation.tracking import NotificationSet
from dockhand_automation.types import ActionKind, ActionResult, ActionSpec, HandlerSpec, HostContext

CTX = HostContext(host="web1")


def spec(name, role=None):
    return HandlerSpec(name=name, action=ActionSpec(ActionKind.SERVICE, {"id": name}), role=role)


class RecordingRunner:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls: list[str] = []

    def __call__(self, action, context):
        name = action.data["id"]
        self.calls.append(name)
        failed = name in self.failing
        return ActionResult(
            host=context.host,
            action=action.kind.value,
            changed=not failed,
            details="unit not found" if failed else "restarted",
            failed=failed,
        )


def test_dispatches_in_first_notified_order_once_each():
    handlers = {
        ("docker", "restart docker"): spec("restart docker", "docker"),
        (None, "reload systemd"): spec("reload systemd"),
    }
    notifications = NotificationSet()
    notifications.add(("docker", "restart docker"))
    notifications.add((None, "reload systemd"))
    notifications.add(("docker", "restart docker"))
    runner = RecordingRunner()

    outcomes = HandlerDispatcher(handlers).dispatch(notifications, CTX, runner)

    assert runner.calls == ["restart docker", "reload systemd"]
    assert [o.name for o in outcomes] == ["restart docker", "reload systemd"]
    assert all(o.changed for o in outcomes)
    assert len(notifications) == 0


def test_failed_handler_does_not_stop_the_rest():
    handlers = {
        (None, "restart docker"): spec("restart docker"),
        (None, "reload systemd"): spec("reload systemd"),
    }
    notifications = NotificationSet()
    notifications.add((None, "restart docker"))
    notifications.add((None, "reload systemd"))
    runner = RecordingRunner(failing={"restart docker"})

    outcomes = HandlerDispatcher(handlers).dispatch(notifications, CTX, runner)

    assert runner.calls == ["restart docker", "reload systemd"]
    assert outcomes[0].failed is True
    assert outcomes[0].error.handler == "restart docker"
    assert "unit not found" in str(outcomes[0].error)
    assert outcomes[1].failed is False


def test_handler_timeout_is_reported():
    release = threading.Event()

    def slow_runner(action, context):
        release.wait(5)
        return ActionResult(host=context.host, action="service", changed=True, details="late")

    notifications = NotificationSet()
    notifications.add((None, "restart docker"))
    dispatcher = HandlerDispatcher({(None, "restart docker"): spec("restart docker")}, timeout=0.05)
    try:
        outcomes = dispatcher.dispatch(notifications, CTX, slow_runner)
    finally:
        release.set()

    assert outcomes[0].failed is True
    assert "timed out" in outcomes[0].details


def test_nothing_notified_runs_nothing():
    runner = RecordingRunner()
    outcomes = HandlerDispatcher({(None, "x"): spec("x")}).dispatch(NotificationSet(), CTX, runner)
    assert outcomes == []
    assert runner.calls == []


def test_handler_that_raises_is_reported():
    def runner(action, context):
        if action.data["id"] == "restart docker":
            raise RuntimeError("handler exploded")
        return ActionResult(host=context.host, action="service", changed=True, details="reloaded")

    handlers = {
        (None, "restart docker"): spec("restart docker"),
        (None, "reload systemd"): spec("reload systemd"),
    }
    notifications = NotificationSet()
    notifications.add((None, "restart docker"))
    notifications.add((None, "reload systemd"))

    outcomes = HandlerDispatcher(handlers).dispatch(notifications, CTX, runner)

    assert outcomes[0].failed is True
    assert "handler exploded" in outcomes[0].details
    assert outcomes[0].error.host == "web1"
    assert outcomes[1].failed is False
    assert outcomes[1].changed is True
