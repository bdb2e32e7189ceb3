from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional
import logging

from .base import Operation, as_list, coerce_bool, parse_state
from ..executors import Executor
from ..types import ActionKind, ActionResult, HostContext

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install or remove packages using the detected package manager.

    Refreshing the package index (``update_cache``) happens before any
    install but on its own never counts as a change.
    """

    kind = ActionKind.PACKAGE

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        self.packages = as_list(spec.get("name") or spec.get("packages"))
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = parse_state("package", spec.get("state"), {"present", "absent"})
        self.update_cache = bool(coerce_bool(spec.get("update_cache"), False))
        self.preferred_manager = spec.get("manager")

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        manager = PackageManagerFactory.create(executor, self.preferred_manager)
        logger.debug(
            "package-manager=%s host=%s packages=%s", manager.name, context.host, self.packages
        )
        if self.update_cache:
            manager.refresh(executor)
        if self.state == "present":
            changed, details = manager.ensure_present(executor, self.packages)
        else:
            changed, details = manager.ensure_absent(executor, self.packages)
        return ActionResult(
            host=context.host,
            action=self.kind.value,
            changed=changed,
            details=f"manager={manager.name} {details}",
            resource=", ".join(self.packages),
        )


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda: AptPackageManager()),
        ("dnf", "dnf", lambda: DnfPackageManager()),
    ]

    @classmethod
    def create(cls, executor: Executor, preferred: Optional[object]) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            probe = executor.run(["sh", "-c", f"command -v {binary}"], check=False, mutable=False)
            if probe.returncode == 0:
                return factory()
        raise RuntimeError("No supported package manager found on PATH")


class PackageManager:
    name = "generic"

    def ensure_present(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        needed = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        if not needed:
            return False, "already-installed"
        self.install(executor, needed)
        return True, f"installed={','.join(needed)}"

    def ensure_absent(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        removable = [pkg for pkg in packages if self.is_installed(executor, pkg)]
        if not removable:
            return False, "already-removed"
        self.remove(executor, removable)
        return True, f"removed={','.join(removable)}"

    def refresh(self, executor: Executor) -> None:
        raise NotImplementedError

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


@dataclass
class DpkgQuery:
    executable: str = "dpkg-query"

    def check(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            [self.executable, "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and result.stdout.strip().endswith(" installed")


APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptPackageManager(PackageManager):
    name = "apt"

    def __init__(self) -> None:
        self.query = DpkgQuery()

    def refresh(self, executor: Executor) -> None:
        # Runs during dry-runs as well; is_installed reads the refreshed index.
        executor.run(["apt-get", "update"], mutable=False, env=APT_ENV)

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env=APT_ENV)

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env=APT_ENV)

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query.check(executor, package)


class DnfPackageManager(PackageManager):
    name = "dnf"

    def refresh(self, executor: Executor) -> None:
        executor.run(["dnf", "makecache"], mutable=False)

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["dnf", "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["dnf", "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0
