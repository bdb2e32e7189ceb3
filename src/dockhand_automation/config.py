from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .types import Plan


DEFAULT_CONFIG = Path("/etc/dockhand/main.conf")
DEFAULT_PLAN = Path("/etc/dockhand/site.toml")
DEFAULT_FORKS = 5


@dataclass
class DockhandConfig:
    plan: Path = DEFAULT_PLAN
    roles_path: Optional[Path] = None
    forks: int = DEFAULT_FORKS
    task_timeout: Optional[float] = None
    ssh_user: Optional[str] = None
    ssh_port: Optional[int] = None
    ssh_identity_file: Optional[str] = None
    become: bool = False

    def apply_host_defaults(self, plan: Plan) -> None:
        """Fill SSH settings that hosts leave unset."""
        for host in plan.hosts.values():
            if host.connection != "ssh":
                continue
            if host.user is None:
                host.user = self.ssh_user
            if host.port is None:
                host.port = self.ssh_port
            if host.identity_file is None:
                host.identity_file = self.ssh_identity_file
            if self.become:
                host.become = True


def load_config(path: Path) -> DockhandConfig:
    if not path.exists():
        return DockhandConfig()
    data = tomllib.loads(path.read_text())
    defaults: dict[str, Any] = data.get("defaults", {})
    roles_path = defaults.get("roles_path")
    task_timeout = defaults.get("task_timeout")
    ssh_port = defaults.get("ssh_port")
    ssh_user = defaults.get("ssh_user")
    ssh_identity_file = defaults.get("ssh_identity_file")
    return DockhandConfig(
        plan=Path(defaults.get("plan", DEFAULT_PLAN)),
        roles_path=Path(roles_path) if roles_path else None,
        forks=int(defaults.get("forks", DEFAULT_FORKS)),
        task_timeout=float(task_timeout) if task_timeout else None,
        ssh_user=str(ssh_user) if ssh_user else None,
        ssh_port=int(ssh_port) if ssh_port else None,
        ssh_identity_file=str(ssh_identity_file) if ssh_identity_file else None,
        become=bool(defaults.get("become", False)),
    )
