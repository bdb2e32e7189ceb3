from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation, as_list, coerce_bool, parse_state
from ..executors import Executor
from ..types import ActionKind, ActionResult, HostContext

logger = logging.getLogger(__name__)


@dataclass
class UserInfo:
    name: str
    shell: str
    home: str
    groups: tuple[str, ...] = ()


class UserManager:
    def get(self, executor: Executor, username: str) -> Optional[UserInfo]:
        result = executor.run(["getent", "passwd", username], check=False, mutable=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        fields = result.stdout.strip().split(":")
        groups = executor.run(["id", "-nG", username], check=False, mutable=False)
        return UserInfo(
            name=fields[0],
            shell=fields[6] if len(fields) > 6 else "",
            home=fields[5] if len(fields) > 5 else "",
            groups=tuple(groups.stdout.split()),
        )

    def add(
        self,
        executor: Executor,
        name: str,
        *,
        shell: Optional[str],
        system: bool,
        create_home: bool,
        comment: Optional[str],
        groups: list[str],
    ) -> None:
        cmd = ["useradd"]
        if shell:
            cmd += ["--shell", shell]
        if create_home:
            cmd.append("--create-home")
        if system:
            cmd.append("--system")
        if comment:
            cmd += ["--comment", comment]
        if groups:
            cmd += ["--groups", ",".join(groups)]
        cmd.append(name)
        executor.run(cmd)

    def delete(self, executor: Executor, name: str, *, remove_home: bool) -> None:
        cmd = ["userdel"]
        if remove_home:
            cmd.append("--remove")
        cmd.append(name)
        executor.run(cmd)

    def set_shell(self, executor: Executor, name: str, shell: str) -> None:
        executor.run(["usermod", "--shell", shell, name])

    def add_groups(self, executor: Executor, name: str, groups: list[str]) -> None:
        executor.run(["usermod", "--append", "--groups", ",".join(groups), name])

    def set_groups(self, executor: Executor, name: str, groups: list[str]) -> None:
        executor.run(["usermod", "--groups", ",".join(groups), name])


class UserOperation(Operation):
    """Ensure a user account exists with the given shell and groups."""

    kind = ActionKind.USER

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name") or spec.get("user")
        if not raw_name:
            raise ValueError("user operation requires a name")
        self.name = str(raw_name)
        self.state = parse_state("user", spec.get("state"), {"present", "absent"})
        self.shell = spec.get("shell")
        self.system = bool(coerce_bool(spec.get("system"), False))
        self.create_home = bool(coerce_bool(spec.get("create_home"), True))
        self.remove_home = bool(coerce_bool(spec.get("remove_home"), False))
        self.comment = spec.get("comment")
        self.groups = as_list(spec.get("groups"))
        self.append = bool(coerce_bool(spec.get("append"), True))
        self.manager = UserManager()

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        info = self.manager.get(executor, self.name)
        changes: list[str] = []

        if self.state == "absent":
            if info:
                logger.debug("Removing user %s", self.name)
                self.manager.delete(executor, self.name, remove_home=self.remove_home)
                changes.append("removed")
            return self.result(context, changes, resource=self.name)

        if not info:
            logger.debug("Creating user %s", self.name)
            self.manager.add(
                executor,
                self.name,
                shell=str(self.shell) if self.shell else None,
                system=self.system,
                create_home=self.create_home,
                comment=str(self.comment) if self.comment else None,
                groups=self.groups,
            )
            changes.append("created")
            return self.result(context, changes, resource=self.name)

        if self.shell and info.shell != self.shell:
            logger.debug("Updating shell for %s", self.name)
            self.manager.set_shell(executor, self.name, str(self.shell))
            changes.append("shell")

        if self.groups:
            missing = [group for group in self.groups if group not in info.groups]
            if self.append and missing:
                logger.debug("Adding %s to groups %s", self.name, missing)
                self.manager.add_groups(executor, self.name, missing)
                changes.append(f"groups+={','.join(missing)}")
            elif not self.append:
                # The primary group is always reported by ``id -nG``.
                current = set(info.groups[1:])
                if missing or current - set(self.groups):
                    self.manager.set_groups(executor, self.name, self.groups)
                    changes.append(f"groups={','.join(self.groups)}")

        return self.result(context, changes, resource=self.name)
