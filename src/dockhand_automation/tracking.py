from __future__ import annotations

import logging
import subprocess
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Iterator, Optional

from .actions import ActionRunner
from .conditions import should_run
from .errors import ConditionError, TaskExecutionError, TaskTimeoutError
from .executors import command_deadline
from .plan import PlannedTask
from .types import ActionResult, ActionSpec, HandlerKey, HostContext, TaskResult

logger = logging.getLogger(__name__)

# Time allowed past a deadline for killed commands to be reaped.
_KILL_GRACE = 0.5


class NotificationSet:
    """Handler keys notified on one host, in first-notified order."""

    def __init__(self) -> None:
        self._keys: dict[HandlerKey, None] = {}

    def add(self, key: HandlerKey) -> bool:
        if key in self._keys:
            return False
        self._keys[key] = None
        return True

    def clear(self) -> None:
        self._keys.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[HandlerKey]:
        return iter(list(self._keys))

    def __len__(self) -> int:
        return len(self._keys)


def call_action(
    runner: ActionRunner,
    action: ActionSpec,
    context: HostContext,
    *,
    name: str,
    timeout: Optional[float],
) -> ActionResult:
    """Invoke ``runner`` and give up after ``timeout`` seconds.

    Commands started by the action share the same deadline and are killed
    when it passes. The daemon worker thread is only a backstop for actions
    that block outside a command; it is abandoned, never joined.
    """
    if not timeout:
        try:
            return runner(action, context)
        except subprocess.TimeoutExpired as exc:
            raise TaskTimeoutError(context.host, name, float(exc.timeout)) from None

    future: Future = Future()

    def work() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            with command_deadline(timeout):
                future.set_result(runner(action, context))
        except Exception as exc:  # noqa: BLE001
            future.set_exception(exc)

    worker = threading.Thread(target=work, name=f"{context.host}-action", daemon=True)
    started = time.monotonic()
    worker.start()
    try:
        return future.result(timeout=timeout + _KILL_GRACE)
    except FutureTimeout:
        raise TaskTimeoutError(context.host, name, timeout) from None
    except subprocess.TimeoutExpired as exc:
        if time.monotonic() - started < timeout:
            raise TaskTimeoutError(context.host, name, float(exc.timeout)) from None
        raise TaskTimeoutError(context.host, name, timeout) from None


class ChangeTracker:
    """Runs the tasks of one host and remembers what they changed.

    One tracker belongs to exactly one host run. ``results`` collects every
    task outcome, including skips and the failure that aborted the run;
    ``notifications`` collects handlers to dispatch afterwards.
    """

    def __init__(self, host: str, *, default_timeout: Optional[float] = None):
        self.host = host
        self.default_timeout = default_timeout
        self.notifications = NotificationSet()
        self.results: list[TaskResult] = []

    def run_task(self, planned: PlannedTask, context: HostContext, runner: ActionRunner) -> TaskResult:
        task = planned.task
        try:
            eligible = should_run(planned, context)
        except ConditionError as exc:
            result = self._record(planned, failed=True, details=f"condition error: {exc}")
            if task.ignore_errors:
                return result
            raise TaskExecutionError(self.host, task.name, str(exc)) from exc

        if not eligible:
            logger.debug("task=%s host=%s skipped", task.name, self.host)
            return self._record(planned, skipped=True, details="skipped")

        timeout = task.timeout if task.timeout is not None else self.default_timeout
        try:
            outcome = call_action(runner, task.action, context, name=task.name, timeout=timeout)
        except TaskTimeoutError as exc:
            self._record(planned, failed=True, details=exc.detail)
            raise

        result = self._record(
            planned,
            changed=outcome.changed and not outcome.failed,
            failed=outcome.failed,
            details=outcome.details,
            resource=outcome.resource,
            facts=outcome.facts,
        )
        logger.debug(
            "task=%s host=%s changed=%s failed=%s", task.name, self.host, result.changed, result.failed
        )

        if result.failed:
            if task.ignore_errors:
                logger.info("task=%s host=%s failed (ignored): %s", task.name, self.host, result.details)
                return result
            raise TaskExecutionError(self.host, task.name, result.details)

        if result.changed:
            for key in planned.handlers:
                if self.notifications.add(key):
                    logger.debug("task=%s host=%s notified=%s", task.name, self.host, key[1])
        return result

    def _record(self, planned: PlannedTask, **fields) -> TaskResult:
        result = TaskResult(
            host=self.host,
            task=planned.task.name,
            action=planned.task.action.kind.value,
            role=planned.task.role,
            **fields,
        )
        self.results.append(result)
        return result
