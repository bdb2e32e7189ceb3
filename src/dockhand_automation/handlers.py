from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from .actions import ActionRunner
from .errors import HandlerExecutionError, TaskTimeoutError
from .tracking import NotificationSet, call_action
from .types import HandlerKey, HandlerSpec, HostContext

logger = logging.getLogger(__name__)


@dataclass
class HandlerOutcome:
    name: str
    role: Optional[str]
    changed: bool = False
    details: str = ""
    error: Optional[HandlerExecutionError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class HandlerDispatcher:
    """Runs notified handlers once each, in the order they were first notified.

    Handlers cannot notify other handlers. A failing handler is reported and
    the remaining handlers still run; nothing is rolled back.
    """

    def __init__(self, handlers: Mapping[HandlerKey, HandlerSpec], *, timeout: Optional[float] = None):
        self.handlers = handlers
        self.timeout = timeout

    def dispatch(
        self,
        notifications: NotificationSet,
        context: HostContext,
        runner: ActionRunner,
    ) -> list[HandlerOutcome]:
        outcomes: list[HandlerOutcome] = []
        for key in notifications:
            handler = self.handlers[key]
            outcomes.append(self._run(handler, context, runner))
        notifications.clear()
        return outcomes

    def _run(self, handler: HandlerSpec, context: HostContext, runner: ActionRunner) -> HandlerOutcome:
        logger.debug("handler=%s role=%s host=%s", handler.name, handler.role, context.host)
        try:
            result = call_action(
                runner, handler.action, context, name=handler.name, timeout=self.timeout
            )
        except TaskTimeoutError as exc:
            error = HandlerExecutionError(context.host, handler.name, exc.detail)
            logger.error("%s", error)
            return HandlerOutcome(handler.name, handler.role, details=exc.detail, error=error)
        except Exception as exc:  # noqa: BLE001
            error = HandlerExecutionError(context.host, handler.name, str(exc))
            logger.error("%s", error, exc_info=True)
            return HandlerOutcome(handler.name, handler.role, details=str(exc), error=error)
        if result.failed:
            error = HandlerExecutionError(context.host, handler.name, result.details)
            logger.error("%s", error)
            return HandlerOutcome(handler.name, handler.role, details=result.details, error=error)
        return HandlerOutcome(handler.name, handler.role, changed=result.changed, details=result.details)
