from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .conditions import parse_conditions
from .errors import ConditionError, PlanError, UnknownActionError
from .types import (
    ActionKind,
    ActionSpec,
    HandlerSpec,
    HostConfig,
    Plan,
    PlaySpec,
    RoleInclusion,
    RoleSpec,
    TaskSpec,
)

TASK_KEYS = {"name", "kind", "when", "notify", "ignore_errors", "timeout"}


class InventoryLoader:
    """Loads plans, and the roles they include, from TOML files.

    Roles are looked up inline under ``[roles.<name>]`` first, then as
    ``<roles_path>/<name>.toml`` (``roles_path`` defaults to ``roles/`` next to
    the plan file).
    """

    def __init__(self, roles_path: Optional[Path] = None):
        self.roles_path = roles_path

    def load(self, path: Path) -> Plan:
        path = Path(path)
        data = self._read_toml(path)
        base_dir = path.parent
        roles_dir = self.roles_path or base_dir / "roles"

        hosts = self._parse_hosts(data.get("hosts", {}))
        inline_roles = data.get("roles", {})
        if not isinstance(inline_roles, dict):
            raise PlanError(f"{path}: 'roles' must be a table of role definitions")

        cache: dict[str, RoleSpec] = {}

        def resolve_role(name: str) -> RoleSpec:
            if name not in cache:
                if name in inline_roles:
                    cache[name] = self._parse_role(name, inline_roles[name], base_dir)
                else:
                    role_file = roles_dir / f"{name}.toml"
                    if not role_file.exists():
                        raise PlanError(f"Role '{name}' not found inline or at {role_file}")
                    cache[name] = self._parse_role(name, self._read_toml(role_file), role_file.parent)
            return cache[name]

        raw_plays = data.get("plays")
        if raw_plays is None:
            raw_plays = [
                {"name": "main", "tasks": data.get("tasks", []), "handlers": data.get("handlers", [])}
            ]
        plays = [
            self._parse_play(raw, index, resolve_role, base_dir)
            for index, raw in enumerate(raw_plays, start=1)
        ]
        return Plan(hosts=hosts, plays=plays)

    @staticmethod
    def _read_toml(path: Path) -> dict[str, Any]:
        try:
            return tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise PlanError(f"{path}: {exc}") from None

    @staticmethod
    def _parse_hosts(host_data: dict[str, Any]) -> dict[str, HostConfig]:
        if not host_data:
            host_data = {"local": {"connection": "local"}}
        hosts: dict[str, HostConfig] = {}
        for name, payload in host_data.items():
            port = payload.get("port")
            hosts[name] = HostConfig(
                name=name,
                connection=payload.get("connection", "local"),
                address=payload.get("address"),
                variables=dict(payload.get("variables", {})),
                facts=dict(payload.get("facts", {})),
                user=payload.get("user"),
                port=int(port) if port is not None else None,
                identity_file=payload.get("identity_file"),
                become=bool(payload.get("become", False)),
            )
        return hosts

    def _parse_play(self, raw: dict[str, Any], index: int, resolve_role, base_dir: Path) -> PlaySpec:
        name = raw.get("name", f"play-{index}")
        hosts = raw.get("hosts", [])
        if isinstance(hosts, str):
            hosts = [hosts]
        inclusions: list[RoleInclusion] = []
        for entry in raw.get("roles", []):
            if isinstance(entry, str):
                inclusions.append(RoleInclusion(role=resolve_role(entry)))
            elif isinstance(entry, dict) and entry.get("name"):
                inclusions.append(
                    RoleInclusion(
                        role=resolve_role(str(entry["name"])),
                        when=_conditions(entry.get("when"), f"Role '{entry['name']}'"),
                    )
                )
            else:
                raise PlanError(f"Play '{name}': role entries must be a name or a table with a name")
        where = f"play '{name}'"
        pre_tasks = [*raw.get("pre_tasks", []), *raw.get("tasks", [])]
        return PlaySpec(
            name=name,
            hosts=list(hosts),
            roles=inclusions,
            tasks=self._parse_tasks(pre_tasks, None, where, base_dir),
            post_tasks=self._parse_tasks(raw.get("post_tasks", []), None, f"{where} post", base_dir),
            handlers=self._parse_handlers(raw.get("handlers", []), None, where, base_dir),
            variables=dict(raw.get("vars", {})),
            gather_facts=bool(raw.get("gather_facts", False)),
        )

    def _parse_role(self, name: str, raw: dict[str, Any], base_dir: Path) -> RoleSpec:
        where = f"role '{name}'"
        return RoleSpec(
            name=name,
            tasks=self._parse_tasks(raw.get("tasks", []), name, where, base_dir),
            handlers=self._parse_handlers(raw.get("handlers", []), name, where, base_dir),
            defaults=dict(raw.get("defaults", {})),
        )

    def _parse_tasks(self, raw: list, role: Optional[str], where: str, base_dir: Path) -> list[TaskSpec]:
        return [
            self._parse_task(item, role, f"{where} task {index}", base_dir)
            for index, item in enumerate(raw, start=1)
        ]

    def _parse_handlers(
        self, raw: list, role: Optional[str], where: str, base_dir: Path
    ) -> list[HandlerSpec]:
        return [
            self._parse_handler(item, role, f"{where} handler {index}", base_dir)
            for index, item in enumerate(raw, start=1)
        ]

    def _parse_task(self, raw: dict[str, Any], role: Optional[str], where: str, base_dir: Path) -> TaskSpec:
        name = raw.get("name")
        if not name:
            raise PlanError(f"{where} is missing a name")
        notify = raw.get("notify", [])
        if isinstance(notify, str):
            notify = [notify]
        timeout = raw.get("timeout")
        return TaskSpec(
            name=str(name),
            action=self._parse_action(raw, f"Task '{name}'", base_dir),
            when=_conditions(raw.get("when"), f"Task '{name}'"),
            notify=tuple(str(n) for n in notify),
            role=role,
            ignore_errors=bool(raw.get("ignore_errors", False)),
            timeout=float(timeout) if timeout is not None else None,
        )

    def _parse_handler(self, raw: dict[str, Any], role: Optional[str], where: str, base_dir: Path) -> HandlerSpec:
        name = raw.get("name")
        if not name:
            raise PlanError(f"{where} is missing a name")
        action = self._parse_action(raw, f"Handler '{name}'", base_dir)
        return HandlerSpec(name=str(name), action=action, role=role)

    @staticmethod
    def _parse_action(raw: dict[str, Any], owner: str, base_dir: Path) -> ActionSpec:
        kind = raw.get("kind")
        if not kind:
            raise PlanError(f"{owner} is missing a kind")
        try:
            action_kind = ActionKind(str(kind))
        except ValueError:
            raise UnknownActionError(str(kind), owner) from None
        data = {k: v for k, v in raw.items() if k not in TASK_KEYS}
        args = raw.get("args")
        if isinstance(args, dict):
            data.pop("args")
            data.update(args)
        data.setdefault("_plan_dir", str(base_dir))
        return ActionSpec(kind=action_kind, data=data)


def _conditions(raw: Any, owner: str) -> tuple:
    try:
        return parse_conditions(raw)
    except ConditionError as exc:
        raise PlanError(f"{owner}: {exc}") from None
