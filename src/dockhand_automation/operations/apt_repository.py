from __future__ import annotations

from pathlib import Path
from typing import Any

from .base import Operation, as_list, parse_mode, parse_state
from ..executors import Executor
from ..types import ActionKind, ActionResult, HostContext


class AptRepositoryOperation(Operation):
    """Manage one-line apt sources under /etc/apt/sources.list.d."""

    kind = ActionKind.APT_REPOSITORY

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name") or spec.get("filename")
        if not raw_name:
            raise ValueError("apt_repository requires a name")
        self.name = str(raw_name)
        self.state = parse_state("apt_repository", spec.get("state"), {"present", "absent"})

        self.repo = spec.get("repo")
        self.url = spec.get("url")
        self.suite = spec.get("suite")
        self.components = as_list(spec.get("components")) or ["main"]
        self.architectures = as_list(spec.get("arch") or spec.get("architectures"))
        self.signed_by = spec.get("signed_by")
        if self.state == "present" and not (self.repo or (self.url and self.suite)):
            raise ValueError("apt_repository requires repo, or url and suite, when state=present")

        self.path = Path(spec.get("path") or f"/etc/apt/sources.list.d/{self.name}.list")
        self.mode = parse_mode(spec.get("mode"), 0o644)

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        if self.state == "absent":
            removed = executor.remove_path(self.path)
            return self.result(context, ["removed"] if removed else [], resource=self.name)

        changed, detail = executor.write_file(self.path, content=self._render(), mode=self.mode)
        return ActionResult(
            host=context.host,
            action=self.kind.value,
            changed=changed,
            details=detail,
            resource=self.name,
        )

    def _render(self) -> str:
        if self.repo:
            return f"{str(self.repo).strip()}\n"
        options: list[str] = []
        if self.architectures:
            options.append(f"arch={','.join(self.architectures)}")
        if self.signed_by:
            options.append(f"signed-by={self.signed_by}")
        parts = ["deb"]
        if options:
            parts.append(f"[{' '.join(options)}]")
        parts += [str(self.url), str(self.suite), *self.components]
        return " ".join(parts) + "\n"
