from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Any

from .base import Operation, parse_state
from ..executors import Executor
from ..types import ActionKind, ActionResult, HostContext


class AuthorizedKeyOperation(Operation):
    """Ensure an SSH public key is listed in a user's ``authorized_keys``."""

    kind = ActionKind.AUTHORIZED_KEY

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_user = spec.get("user")
        if not raw_user:
            raise ValueError("authorized_key operation requires a user")
        self.user = str(raw_user)
        raw_key = spec.get("key")
        key_file = spec.get("key_file")
        if not raw_key and key_file:
            path = Path(str(key_file)).expanduser()
            plan_dir = spec.get("_plan_dir")
            if not path.is_absolute() and plan_dir:
                path = Path(str(plan_dir)) / path
            raw_key = path.read_text()
        if not raw_key:
            raise ValueError("authorized_key operation requires a key or key_file")
        self.key = self._normalize_key(str(raw_key))
        self.state = parse_state("authorized_key", spec.get("state"), {"present", "absent"})

    @staticmethod
    def _normalize_key(raw: str) -> str:
        text = raw.strip()
        if text.startswith(("ssh-", "ecdsa-", "sk-")):
            return text
        try:
            decoded = base64.b64decode(text, validate=True).decode().strip()
        except (binascii.Error, UnicodeDecodeError):
            return text
        return decoded or text

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        home = self._home_dir(executor)
        ssh_dir = home / ".ssh"
        auth_file = ssh_dir / "authorized_keys"

        keys = self._split_keys(executor.read_file(auth_file) or "")
        changes: list[str] = []

        if self.state == "present":
            if self.key not in keys:
                keys.append(self.key)
                changes.append("added")
        elif self.key in keys:
            keys.remove(self.key)
            changes.append("removed")

        if changes:
            content = "\n".join(keys) + ("\n" if keys else "")
            executor.ensure_directory(ssh_dir, mode=0o700)
            executor.write_file(auth_file, content=content, mode=0o600)
            executor.set_ownership(ssh_dir, owner=self.user, group=None)
            executor.set_ownership(auth_file, owner=self.user, group=None)
        return self.result(context, changes, resource=self.user)

    def _home_dir(self, executor: Executor) -> Path:
        result = executor.run(["getent", "passwd", self.user], check=False, mutable=False)
        fields = result.stdout.strip().split(":")
        if result.returncode != 0 or len(fields) < 6:
            if executor.dry_run:
                return Path("/home") / self.user
            raise ValueError(f"User '{self.user}' does not exist")
        return Path(fields[5])

    @staticmethod
    def _split_keys(content: str) -> list[str]:
        seen: list[str] = []
        for line in content.splitlines():
            line = line.strip()
            if line and line not in seen:
                seen.append(line)
        return seen
