from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union
import logging
import os
import shlex
import shutil
import stat
import subprocess
import threading
import time

from .types import HostConfig

logger = logging.getLogger(__name__)

_deadline = threading.local()

# Exit status a shell reports for a command that is not installed.
COMMAND_NOT_FOUND = 127


@contextmanager
def command_deadline(seconds: Optional[float]) -> Iterator[None]:
    """Cap the timeout of every command run by this thread inside the block.

    A command still running at the deadline is killed by ``subprocess`` and
    surfaces as :class:`subprocess.TimeoutExpired`.
    """
    previous = getattr(_deadline, "at", None)
    _deadline.at = time.monotonic() + seconds if seconds else None
    try:
        yield
    finally:
        _deadline.at = previous


def _bounded_timeout(timeout: Optional[float]) -> Optional[float]:
    deadline = getattr(_deadline, "at", None)
    if deadline is None:
        return timeout
    remaining = max(deadline - time.monotonic(), 0.01)
    return remaining if timeout is None else min(timeout, remaining)


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by operations.

    File primitives are implemented with coreutils commands so they work over
    any channel that can run a command; :class:`LocalExecutor` overrides the
    ones it can do natively.
    """

    remote = False

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        argv = self.wrap(cmd_list, env=env, cwd=cwd)
        exec_env = None
        if env and not self.remote:
            exec_env = os.environ.copy()
            exec_env.update(env)

        logger.debug("host=%s run=%s", self.host.name, shlex.join(cmd_list))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None and not self.remote else None,
                timeout=_bounded_timeout(timeout),
                input=input,
            )
        except FileNotFoundError as exc:
            proc = subprocess.CompletedProcess(argv, COMMAND_NOT_FOUND, "", str(exc))
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    def wrap(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> list[str]:
        if self.host.become:
            if env:
                command = ["env", *(f"{k}={v}" for k, v in env.items()), *command]
            return ["sudo", "-n", "--", *command]
        return command

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        result = self.run(["cat", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def path_exists(self, path: Path) -> bool:
        result = self.run(["test", "-e", str(path)], check=False, mutable=False)
        return result.returncode == 0

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            self.run(["mkdir", "-p", str(path.parent)])
            self.run(["tee", str(path)], input=content)

        if mode is not None and self._apply_mode(path, mode):
            changed = True
            reasons.append(f"mode->{mode:04o}")
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []

        is_dir = self.run(["test", "-d", str(path)], check=False, mutable=False).returncode == 0
        if not is_dir:
            changed = True
            if self.path_exists(path):
                reasons.append("replaced-non-dir")
                self.run(["rm", "-f", str(path)])
            else:
                reasons.append("created")
            self.run(["mkdir", "-p", str(path)])

        if mode is not None and self._apply_mode(path, mode):
            changed = True
            reasons.append(f"mode->{mode:04o}")
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if not self.path_exists(path):
            return False
        self.run(["rm", "-rf", str(path)])
        return True

    def file_mode(self, path: Path) -> Optional[int]:
        result = self.run(["stat", "-c", "%a", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        return int(result.stdout.strip(), 8)

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str]
    ) -> tuple[bool, str]:
        result = self.run(["stat", "-c", "%U:%G", str(path)], check=False, mutable=False)
        current_owner, _, current_group = result.stdout.strip().partition(":")
        changes: list[str] = []
        if owner and owner != current_owner:
            changes.append(f"owner->{owner}")
        if group and group != current_group:
            changes.append(f"group->{group}")
        if not changes:
            return False, "noop"
        ownership = owner or ""
        if group:
            ownership = f"{ownership}:{group}"
        self.run(["chown", ownership, str(path)])
        return True, ", ".join(changes)

    def _apply_mode(self, path: Path, mode: int) -> bool:
        if self.file_mode(path) == mode:
            return False
        self.run(["chmod", f"{mode:04o}", str(path)])
        return True


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def read_file(self, path: Path) -> Optional[str]:
        if self.host.become:
            return super().read_file(path)
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def path_exists(self, path: Path) -> bool:
        if self.host.become:
            return super().path_exists(path)
        return path.exists() or path.is_symlink()

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        if self.host.become:
            return super().write_file(path, content=content, mode=mode)
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    # ``chmod`` fails if the file is absent, so guard it.
                    if path.exists():
                        os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        if self.host.become:
            return super().ensure_directory(path, mode=mode)
        changed = False
        reasons: list[str] = []

        if not path.exists():
            changed = True
            reasons.append("created")
            if not self.dry_run:
                path.mkdir(parents=True, exist_ok=True)
        elif not path.is_dir():
            changed = True
            reasons.append("replaced-non-dir")
            if not self.dry_run:
                self.remove_path(path)
                path.mkdir(parents=True, exist_ok=True)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run and path.exists():
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if self.host.become:
            return super().remove_path(path)
        if not path.exists() and not path.is_symlink():
            return False
        if self.dry_run:
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def file_mode(self, path: Path) -> Optional[int]:
        if self.host.become:
            return super().file_mode(path)
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None


class SshExecutor(Executor):
    """Runs commands on a remote host through the OpenSSH client."""

    remote = True

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        ssh_binary: str = "ssh",
        connect_timeout: int = 10,
    ):
        super().__init__(host, dry_run=dry_run)
        self.ssh_binary = ssh_binary
        self.connect_timeout = connect_timeout

    def wrap(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> list[str]:
        if env and not self.host.become:
            command = ["env", *(f"{k}={v}" for k, v in env.items()), *command]
        remote_cmd = super().wrap(command, env=env)
        script = shlex.join(remote_cmd)
        if cwd is not None:
            script = f"cd {shlex.quote(str(cwd))} && {script}"
        return [*self.ssh_base(), "--", script]

    def ssh_base(self) -> list[str]:
        target = self.host.address or self.host.name
        if self.host.user:
            target = f"{self.host.user}@{target}"
        argv = [
            self.ssh_binary,
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
        ]
        if self.host.port:
            argv += ["-p", str(self.host.port)]
        if self.host.identity_file:
            argv += ["-i", str(self.host.identity_file)]
        argv.append(target)
        return argv


def executor_for(host: HostConfig, *, dry_run: bool = False) -> Executor:
    if host.connection == "local":
        return LocalExecutor(host, dry_run=dry_run)
    if host.connection == "ssh":
        return SshExecutor(host, dry_run=dry_run)
    raise ValueError(f"Unknown connection type '{host.connection}'")
