from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional


class ActionKind(str, enum.Enum):
    USER = "user"
    AUTHORIZED_KEY = "authorized_key"
    PACKAGE = "package"
    APT_KEY = "apt_key"
    APT_REPOSITORY = "apt_repository"
    FILE = "file"
    SERVICE = "service"
    EXEC = "exec"
    FACTS = "facts"


@dataclass
class HostConfig:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    variables: dict[str, Any] = field(default_factory=dict)
    facts: dict[str, Any] = field(default_factory=dict)
    user: Optional[str] = None
    port: Optional[int] = None
    identity_file: Optional[str] = None
    become: bool = False


@dataclass(frozen=True)
class HostContext:
    """Read-only snapshot of one host's variables and facts."""

    host: str
    variables: Mapping[str, Any] = field(default_factory=dict)
    facts: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))
        object.__setattr__(self, "facts", MappingProxyType(dict(self.facts)))

    def lookup(self, name: str, default: Any = None) -> Any:
        if name in self.variables:
            return self.variables[name]
        return self.facts.get(name, default)

    def lookup_fact(self, name: str, default: Any = None) -> Any:
        if name in self.facts:
            return self.facts[name]
        return self.variables.get(name, default)

    def with_facts(self, facts: Mapping[str, Any]) -> "HostContext":
        merged = dict(self.facts)
        merged.update(facts)
        return HostContext(host=self.host, variables=self.variables, facts=merged)

    def template_vars(self) -> dict[str, Any]:
        values: dict[str, Any] = dict(self.facts)
        values.update(self.variables)
        values["inventory_hostname"] = self.host
        return values


@dataclass(frozen=True)
class ActionSpec:
    kind: ActionKind
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskSpec:
    name: str
    action: ActionSpec
    when: tuple = ()
    notify: tuple[str, ...] = ()
    role: Optional[str] = None
    ignore_errors: bool = False
    timeout: Optional[float] = None


@dataclass(frozen=True)
class HandlerSpec:
    name: str
    action: ActionSpec
    role: Optional[str] = None

    @property
    def key(self) -> "HandlerKey":
        return (self.role, self.name)


HandlerKey = tuple[Optional[str], str]


@dataclass
class RoleSpec:
    name: str
    tasks: list[TaskSpec] = field(default_factory=list)
    handlers: list[HandlerSpec] = field(default_factory=list)
    defaults: dict[str, Any] = field(default_factory=dict)


@dataclass
class RoleInclusion:
    role: RoleSpec
    when: tuple = ()


@dataclass
class PlaySpec:
    name: str
    hosts: list[str]
    roles: list[RoleInclusion] = field(default_factory=list)
    tasks: list[TaskSpec] = field(default_factory=list)
    post_tasks: list[TaskSpec] = field(default_factory=list)
    handlers: list[HandlerSpec] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    gather_facts: bool = False


@dataclass
class Plan:
    hosts: dict[str, HostConfig]
    plays: list[PlaySpec]


@dataclass
class ActionResult:
    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None
    facts: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskResult:
    host: str
    task: str
    action: str
    changed: bool = False
    failed: bool = False
    skipped: bool = False
    details: str = ""
    role: Optional[str] = None
    resource: Optional[str] = None
    facts: dict[str, Any] = field(default_factory=dict)
