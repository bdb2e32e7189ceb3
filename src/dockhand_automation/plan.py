from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from .errors import (
    DuplicateHandlerError,
    DuplicateTaskError,
    PlanError,
    UnknownActionError,
    UnknownHandlerError,
)
from .types import ActionKind, HandlerKey, HandlerSpec, PlaySpec, TaskSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedTask:
    task: TaskSpec
    role_when: tuple = ()
    handlers: tuple[HandlerKey, ...] = ()

    @property
    def name(self) -> str:
        return self.task.name

    @property
    def role(self) -> Optional[str]:
        return self.task.role


@dataclass
class ExecutionPlan:
    """Flattened, ordered tasks for one play plus its handler index."""

    play: str
    hosts: list[str]
    tasks: list[PlannedTask] = field(default_factory=list)
    handlers: dict[HandlerKey, HandlerSpec] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    gather_facts: bool = False


class PlanBuilder:
    """Turns a play's role inclusions and tasks into an :class:`ExecutionPlan`.

    Play-level tasks run first, then each included role in declaration order,
    then the play's post tasks. Task names are unique across a play's own
    tasks. Handlers are namespaced by role; a task's ``notify`` resolves
    against its own role and falls back to play-level handlers. Building has
    no side effects, so the same play can be built any number of times.
    """

    def build(self, play: PlaySpec) -> ExecutionPlan:
        handlers: dict[HandlerKey, HandlerSpec] = {}
        self._index_handlers(handlers, None, play.handlers)

        seen_roles: set[str] = set()
        for inclusion in play.roles:
            role = inclusion.role
            if role.name in seen_roles:
                raise PlanError(f"Role '{role.name}' is included more than once in play '{play.name}'")
            seen_roles.add(role.name)
            self._index_handlers(handlers, role.name, role.handlers)

        variables: dict[str, Any] = {}
        play_tasks = self._plan_tasks(None, [*play.tasks, *play.post_tasks], (), handlers)
        split = len(play.tasks)
        tasks: list[PlannedTask] = play_tasks[:split]
        for inclusion in play.roles:
            role = inclusion.role
            for key, value in role.defaults.items():
                variables.setdefault(key, value)
            tasks.extend(self._plan_tasks(role.name, role.tasks, tuple(inclusion.when), handlers))
        tasks.extend(play_tasks[split:])
        variables.update(play.variables)

        logger.debug("play=%s tasks=%d handlers=%d", play.name, len(tasks), len(handlers))
        return ExecutionPlan(
            play=play.name,
            hosts=list(play.hosts),
            tasks=tasks,
            handlers=handlers,
            variables=variables,
            gather_facts=play.gather_facts,
        )

    @staticmethod
    def _index_handlers(
        index: dict[HandlerKey, HandlerSpec],
        role: Optional[str],
        handlers: list[HandlerSpec],
    ) -> None:
        for handler in handlers:
            _check_kind(handler.action.kind, f"Handler '{handler.name}'")
            key = (role, handler.name)
            if key in index:
                raise DuplicateHandlerError(role, handler.name)
            index[key] = HandlerSpec(name=handler.name, action=handler.action, role=role)

    @staticmethod
    def _plan_tasks(
        role: Optional[str],
        tasks: list[TaskSpec],
        role_when: tuple,
        handlers: dict[HandlerKey, HandlerSpec],
    ) -> list[PlannedTask]:
        names: set[str] = set()
        planned: list[PlannedTask] = []
        for task in tasks:
            if task.name in names:
                raise DuplicateTaskError(role, task.name)
            names.add(task.name)
            _check_kind(task.action.kind, f"Task '{task.name}'")
            keys: list[HandlerKey] = []
            for handler_name in task.notify:
                if (role, handler_name) in handlers:
                    keys.append((role, handler_name))
                elif (None, handler_name) in handlers:
                    keys.append((None, handler_name))
                else:
                    raise UnknownHandlerError(role, task.name, handler_name)
            if task.role != role:
                task = replace(task, role=role)
            planned.append(PlannedTask(task=task, role_when=role_when, handlers=tuple(keys)))
        return planned


def _check_kind(kind: Any, owner: str) -> None:
    if not isinstance(kind, ActionKind):
        raise UnknownActionError(str(kind), owner)
