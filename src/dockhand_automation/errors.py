from __future__ import annotations

from typing import Optional


class DockhandError(Exception):
    """Base class for engine errors."""


class PlanError(DockhandError, ValueError):
    """Raised when a plan cannot be built; nothing runs."""


class DuplicateHandlerError(PlanError):
    def __init__(self, role: Optional[str], handler: str):
        scope = f"role '{role}'" if role else "play"
        super().__init__(f"Handler '{handler}' is declared more than once in {scope}")
        self.role = role
        self.handler = handler


class DuplicateTaskError(PlanError):
    def __init__(self, role: Optional[str], task: str):
        scope = f"role '{role}'" if role else "play"
        super().__init__(f"Task '{task}' is declared more than once in {scope}")
        self.role = role
        self.task = task


class UnknownHandlerError(PlanError):
    def __init__(self, role: Optional[str], task: str, handler: str):
        scope = f"role '{role}'" if role else "play"
        super().__init__(f"Task '{task}' in {scope} notifies undefined handler '{handler}'")
        self.role = role
        self.task = task
        self.handler = handler


class UnknownActionError(PlanError):
    def __init__(self, kind: str, owner: str):
        super().__init__(f"{owner} uses unknown action kind '{kind}'")
        self.kind = kind


class ConditionError(DockhandError, ValueError):
    """Raised when a condition cannot be parsed or evaluated."""


class TaskExecutionError(DockhandError):
    """A task failed on a host; the rest of that host's tasks are abandoned."""

    def __init__(self, host: str, task: str, detail: str):
        super().__init__(f"{host}: task '{task}' failed: {detail}")
        self.host = host
        self.task = task
        self.detail = detail


class TaskTimeoutError(TaskExecutionError):
    def __init__(self, host: str, task: str, timeout: float):
        super().__init__(host, task, f"timed out after {timeout:g}s")
        self.timeout = timeout


class HandlerExecutionError(DockhandError):
    """A handler failed; already applied task changes stay in place."""

    def __init__(self, host: str, handler: str, detail: str):
        super().__init__(f"{host}: handler '{handler}' failed: {detail}")
        self.host = host
        self.handler = handler
        self.detail = detail
