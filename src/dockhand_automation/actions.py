from __future__ import annotations

import logging
import subprocess
from typing import Any, Callable, Mapping, Optional, Protocol

import jinja2

from .executors import Executor, executor_for
from .operations import OPERATION_REGISTRY, Operation
from .templating import TemplateRenderer
from .types import ActionResult, ActionSpec, HostConfig, HostContext

logger = logging.getLogger(__name__)


class ActionRunner(Protocol):
    """Runs one action against one host and reports what happened.

    Implementations never raise for ordinary failures; they return an
    :class:`ActionResult` with ``failed=True``. The only exception that escapes
    is :class:`subprocess.TimeoutExpired`.
    """

    def __call__(self, action: ActionSpec, context: HostContext) -> ActionResult: ...


class OperationActionRunner:
    """Default action runner: render arguments, build the operation, apply it."""

    def __init__(
        self,
        hosts: Mapping[str, HostConfig],
        *,
        dry_run: bool = False,
        executor_factory: Callable[..., Executor] = executor_for,
        registry: Optional[Mapping[Any, type[Operation]]] = None,
    ):
        self.hosts = hosts
        self.dry_run = dry_run
        self.executor_factory = executor_factory
        self.registry = registry if registry is not None else OPERATION_REGISTRY
        self.renderer = TemplateRenderer()

    def __call__(self, action: ActionSpec, context: HostContext) -> ActionResult:
        resource = _resource_name(action.data)
        try:
            data = self.renderer.render_value(dict(action.data), context.template_vars())
            resource = _resource_name(data)
            operation_cls = self.registry[action.kind]
            operation = operation_cls(data)
            executor = self.executor_factory(self.hosts[context.host], dry_run=self.dry_run)
            result = operation.apply(context, executor)
        except subprocess.TimeoutExpired:
            raise
        except (jinja2.TemplateError, subprocess.CalledProcessError) as exc:
            detail = _describe(exc)
            logger.error("action=%s host=%s failed: %s", action.kind.value, context.host, detail)
            return _failure(context, action, detail, resource)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "action=%s host=%s failed: %s", action.kind.value, context.host, exc, exc_info=True
            )
            return _failure(context, action, str(exc), resource)
        if result.resource is None:
            result.resource = resource
        return result


def _failure(context: HostContext, action: ActionSpec, detail: str, resource: Optional[str]) -> ActionResult:
    return ActionResult(
        host=context.host,
        action=action.kind.value,
        changed=False,
        details=detail,
        failed=True,
        resource=resource,
    )


def _describe(exc: Exception) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        output = (exc.stderr or exc.stdout or "").strip()
        first = output.splitlines()[0] if output else ""
        cmd = " ".join(exc.cmd) if isinstance(exc.cmd, list) else str(exc.cmd)
        return f"'{cmd}' exited {exc.returncode}" + (f": {first}" if first else "")
    return f"template error: {exc}"


def _resource_name(data: Mapping[str, Any]) -> Optional[str]:
    for key in ("resource", "name", "path", "dest", "user", "service"):
        value = data.get(key)
        if value:
            return str(value)
    pkgs = data.get("packages")
    if isinstance(pkgs, (list, tuple)) and pkgs:
        rendered = ", ".join(str(p) for p in pkgs[:3])
        if len(pkgs) > 3:
            rendered += ", ..."
        return rendered
    return None
