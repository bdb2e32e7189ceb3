from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from .base import Operation, parse_mode, parse_state
from ..executors import Executor
from ..templating import TemplateRenderer
from ..types import ActionKind, ActionResult, HostContext


class FileOperation(Operation):
    """Ensure files exist with the requested contents."""

    kind = ActionKind.FILE
    renderer = TemplateRenderer()

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_path = spec.get("path") or spec.get("dest")
        if not raw_path:
            raise ValueError("file operation requires a path")
        self.path = Path(str(raw_path))
        self.state = parse_state("file", spec.get("state"), {"present", "absent", "directory"})
        raw_content = spec.get("content")
        self.content = "" if raw_content is None else str(raw_content)
        self.mode = parse_mode(spec.get("mode"))
        self.template: Optional[str] = None
        if spec.get("template") is not None:
            self.template = str(spec["template"])
        self.variables = spec.get("variables", {})
        if not isinstance(self.variables, dict):
            raise ValueError("file operation variables must be a mapping")
        plan_dir = spec.get("_plan_dir")
        self.plan_dir = Path(str(plan_dir)) if plan_dir is not None else None
        self.owner = str(spec["owner"]) if spec.get("owner") else None
        self.group = str(spec["group"]) if spec.get("group") else None

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        if self.state == "directory":
            changed, detail = executor.ensure_directory(self.path, mode=self.mode)
        elif self.state == "absent":
            removed = executor.remove_path(self.path)
            detail = "removed" if removed else "noop"
            return ActionResult(
                host=context.host,
                action=self.kind.value,
                changed=removed,
                details=detail,
                resource=str(self.path),
            )
        else:
            content = self._render_content(context)
            changed, detail = executor.write_file(self.path, content=content, mode=self.mode)
        changed, detail = self._apply_ownership(executor, changed, detail)
        return ActionResult(
            host=context.host,
            action=self.kind.value,
            changed=changed,
            details=detail,
            resource=str(self.path),
        )

    def _render_content(self, context: HostContext) -> str:
        if not self.template:
            return self.content
        template_path = Path(self.template).expanduser()
        if not template_path.is_absolute() and self.plan_dir is not None:
            template_path = self.plan_dir / template_path
        variables = context.template_vars()
        variables.update(self.variables)
        return self.renderer.render_text(template_path.read_text(), variables)

    def _apply_ownership(self, executor: Executor, changed: bool, detail: str) -> tuple[bool, str]:
        if self.owner is None and self.group is None:
            return changed, detail
        chown_changed, chown_detail = executor.set_ownership(
            self.path, owner=self.owner, group=self.group
        )
        if chown_changed:
            changed = True
            detail = f"{detail}, {chown_detail}" if detail and detail != "noop" else chown_detail
        return changed, detail
