from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .base import Operation, coerce_bool
from ..executors import Executor
from ..types import ActionKind, ActionResult, HostContext

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def available(self, executor: Executor) -> bool:
        probe = executor.run(
            ["sh", "-c", f"command -v {self.executable}"], check=False, mutable=False
        )
        return probe.returncode == 0

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def daemon_reload(self, executor: Executor) -> None:
        executor.run([self.executable, "daemon-reload"])

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])


class ServiceOperation(Operation):
    """Manage systemd services.

    ``restart`` and ``daemon_reload`` are unconditional and always report a
    change; they are meant for handlers.
    """

    kind = ActionKind.SERVICE

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name") or spec.get("service")
        self.name = str(raw_name) if raw_name else None
        self._enabled = coerce_bool(spec.get("enabled"))
        self._state = spec.get("state")
        self.restart = bool(coerce_bool(spec.get("restart"), False))
        self.daemon_reload = bool(coerce_bool(spec.get("daemon_reload"), False))
        if self._state not in {None, "running", "stopped", "started", "restarted"}:
            raise ValueError("service state must be 'running', 'stopped' or 'restarted'")
        if self._state == "started":
            self._state = "running"
        if self._state == "restarted":
            self._state = None
            self.restart = True
        if not self.name and (self._enabled is not None or self._state or self.restart):
            raise ValueError("service operation requires a name")
        if not self.name and not self.daemon_reload:
            raise ValueError("service operation requires a name or daemon_reload")
        self.systemctl = SystemCtl()

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        if not self.systemctl.available(executor):
            raise RuntimeError("systemctl is not available on this host")

        changes: list[str] = []

        if self.daemon_reload:
            logger.debug("Reloading systemd units on %s", context.host)
            self.systemctl.daemon_reload(executor)
            changes.append("daemon-reloaded")

        if self.name is None:
            return self.result(context, changes)

        if self._enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.name)
            if self._enabled and not enabled:
                logger.debug("Enabling service %s", self.name)
                self.systemctl.enable(executor, self.name)
                changes.append("enabled")
            elif not self._enabled and enabled:
                logger.debug("Disabling service %s", self.name)
                self.systemctl.disable(executor, self.name)
                changes.append("disabled")

        if self._state is not None:
            active = self.systemctl.is_active(executor, self.name)
            if self._state == "running" and not active:
                logger.debug("Starting service %s", self.name)
                self.systemctl.start(executor, self.name)
                changes.append("started")
            elif self._state == "stopped" and active:
                logger.debug("Stopping service %s", self.name)
                self.systemctl.stop(executor, self.name)
                changes.append("stopped")

        if self.restart:
            logger.debug("Restarting service %s", self.name)
            self.systemctl.restart(executor, self.name)
            changes.append("restarted")

        return self.result(context, changes, resource=self.name)
