from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional, Sequence
import logging

from .base import Operation
from ..executors import CommandResult, Executor
from ..types import ActionKind, ActionResult, HostContext

logger = logging.getLogger(__name__)


class ExecOperation(Operation):
    """Run a command guarded by ``creates``, ``only_if`` and ``unless``.

    Without a guard the command always runs and always reports a change, so
    idempotent plans should give every exec task a guard.
    """

    kind = ActionKind.EXEC

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_command = spec.get("command") or spec.get("cmd")
        if raw_command is None:
            raise ValueError("exec operation requires a command")
        self.command = self._normalize_command(raw_command)
        self.name = str(spec.get("name") or " ".join(self.command))

        self.only_if = self._normalize_command(spec["only_if"]) if spec.get("only_if") else None
        self.unless = self._normalize_command(spec["unless"]) if spec.get("unless") else None
        self.creates = Path(str(spec["creates"])) if spec.get("creates") else None
        self.cwd = Path(str(spec["cwd"])) if spec.get("cwd") else None

        self.env = self._normalize_env(spec.get("env") or spec.get("environment"))
        self.allowed_returns = self._normalize_returns(spec.get("returns", [0]))
        self.timeout = self._normalize_timeout(spec.get("timeout"))

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        if self.creates:
            creates_path = self._resolve_path(self.creates)
            if executor.path_exists(creates_path):
                detail = f"skipped (creates {creates_path})"
                return self._result(context, False, detail)

        if self.only_if:
            guard = self._run_guard(self.only_if, executor)
            if guard.returncode != 0:
                return self._result(context, False, f"skipped (only_if rc={guard.returncode})")

        if self.unless:
            guard = self._run_guard(self.unless, executor)
            if guard.returncode == 0:
                return self._result(context, False, f"skipped (unless rc={guard.returncode})")

        result = executor.run(
            self.command,
            check=False,
            mutable=True,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
        )

        if result.returncode not in self.allowed_returns:
            logger.debug(
                "exec failed name=%s rc=%s cmd=%s",
                self.name,
                result.returncode,
                " ".join(self.command),
            )
            return self._result(context, False, self._error_detail(result), failed=True)

        detail = "dry-run" if executor.dry_run else f"ran (rc={result.returncode})"
        return self._result(context, True, detail)

    def _result(self, context: HostContext, changed: bool, detail: str, failed: bool = False) -> ActionResult:
        return ActionResult(
            host=context.host,
            action=self.kind.value,
            changed=changed,
            details=detail,
            failed=failed,
            resource=self.name,
        )

    def _run_guard(self, command: Sequence[str], executor: Executor) -> CommandResult:
        return executor.run(
            command,
            check=False,
            mutable=False,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
        )

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute() or self.cwd is None:
            return path
        return self.cwd / path

    @staticmethod
    def _normalize_command(value: Any) -> list[str]:
        if isinstance(value, str):
            return ["sh", "-c", value]
        if isinstance(value, Sequence):
            return [str(v) for v in value]
        raise ValueError("exec command must be a string or list")

    @staticmethod
    def _normalize_env(value: Any) -> Optional[dict[str, str]]:
        if value is None:
            return None
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            env: dict[str, str] = {}
            for item in value:
                key, sep, val = str(item).partition("=")
                if not sep:
                    raise ValueError("env list entries must be KEY=VALUE")
                env[key] = val
            return env
        raise ValueError("exec env must be a mapping or list of KEY=VALUE strings")

    @staticmethod
    def _normalize_returns(value: Any) -> list[int]:
        if value is None:
            return [0]
        if isinstance(value, int):
            return [int(value)]
        if isinstance(value, Iterable):
            return [int(v) for v in value]
        raise ValueError("exec returns must be an int or list of ints")

    @staticmethod
    def _normalize_timeout(value: Any) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("exec timeout must be numeric") from exc

    @staticmethod
    def _error_detail(result: CommandResult) -> str:
        prefix = f"rc={result.returncode}"
        for text in (result.stderr, result.stdout):
            stripped = (text or "").strip()
            if not stripped:
                continue
            line = stripped.splitlines()[0]
            message = (line[:157] + "...") if len(line) > 160 else line
            return f"{prefix}: {message}"
        return prefix
