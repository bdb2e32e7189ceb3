from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..types import ActionKind, ActionResult, HostContext
from ..executors import Executor


class Operation(ABC):
    """Shared surface for runnable automation actions.

    ``apply`` must inspect the host before touching it and report
    ``changed=False`` when the host is already in the requested state.
    """

    kind: ActionKind

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    @abstractmethod
    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        """Perform the operation against ``context.host`` using ``executor``."""

    def result(self, context: HostContext, changes: list[str], **extra: Any) -> ActionResult:
        detail = ", ".join(changes) if changes else "noop"
        return ActionResult(
            host=context.host,
            action=self.kind.value,
            changed=bool(changes),
            details=detail,
            **extra,
        )


def coerce_bool(value: Any, default: Optional[bool] = None) -> Optional[bool]:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


def parse_mode(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return default
    return int(text, 8)


def parse_state(kind: str, value: Any, allowed: set[str], default: str = "present") -> str:
    state = str(value if value is not None else default)
    if state not in allowed:
        options = ", ".join(f"'{s}'" for s in sorted(allowed))
        raise ValueError(f"{kind} state must be one of {options}")
    return state


def as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]
