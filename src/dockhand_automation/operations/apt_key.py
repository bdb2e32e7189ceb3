from __future__ import annotations

from pathlib import Path
from typing import Any

from .base import Operation, parse_mode, parse_state
from ..executors import Executor
from ..types import ActionKind, ActionResult, HostContext

KEYRING_DIR = Path("/etc/apt/keyrings")


class AptKeyOperation(Operation):
    """Download a repository signing key into ``/etc/apt/keyrings``.

    The key is fetched only when the keyring file is missing, so re-running
    against a host that already has it reports no change.
    """

    kind = ActionKind.APT_KEY

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.state = parse_state("apt_key", spec.get("state"), {"present", "absent"})
        self.url = spec.get("url")
        if self.state == "present" and not self.url:
            raise ValueError("apt_key requires a url when state=present")
        raw_path = spec.get("path") or spec.get("keyring")
        if raw_path:
            self.path = Path(str(raw_path))
        elif spec.get("name"):
            self.path = KEYRING_DIR / f"{spec['name']}.asc"
        else:
            raise ValueError("apt_key requires a path or a name")
        self.mode = parse_mode(spec.get("mode"), 0o644)

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        changes: list[str] = []
        if self.state == "absent":
            if executor.remove_path(self.path):
                changes.append("removed")
            return self.result(context, changes, resource=str(self.path))

        if not executor.path_exists(self.path):
            executor.ensure_directory(self.path.parent, mode=0o755)
            executor.run(["curl", "-fsSL", str(self.url), "-o", str(self.path)])
            executor.run(["chmod", f"{self.mode:04o}", str(self.path)])
            changes.append("downloaded")
        elif executor.file_mode(self.path) != self.mode:
            executor.run(["chmod", f"{self.mode:04o}", str(self.path)])
            changes.append(f"mode->{self.mode:04o}")
        return self.result(context, changes, resource=str(self.path))
