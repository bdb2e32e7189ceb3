from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Any

from .base import Operation
from ..executors import Executor
from ..types import ActionKind, ActionResult, HostContext

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")

OS_FAMILIES = {
    "debian": "Debian",
    "ubuntu": "Debian",
    "rhel": "RedHat",
    "fedora": "RedHat",
    "centos": "RedHat",
    "rocky": "RedHat",
    "almalinux": "RedHat",
    "arch": "Archlinux",
    "alpine": "Alpine",
}


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw]
        values[key.strip()] = parts[0] if parts else ""
    return values


def os_family(release: dict[str, str]) -> str:
    candidates = [release.get("ID", "")] + release.get("ID_LIKE", "").split()
    for candidate in candidates:
        family = OS_FAMILIES.get(candidate.lower())
        if family:
            return family
    return release.get("ID", "").capitalize() or "Unknown"


class FactsOperation(Operation):
    """Collect host facts; never changes the host."""

    kind = ActionKind.FACTS

    def apply(self, context: HostContext, executor: Executor) -> ActionResult:
        facts: dict[str, Any] = {}
        release_text = executor.read_file(OS_RELEASE)
        if release_text:
            release = parse_os_release(release_text)
            facts["distribution"] = release.get("NAME", "")
            facts["distribution_id"] = release.get("ID", "")
            facts["distribution_version"] = release.get("VERSION_ID", "")
            facts["distribution_release"] = release.get("VERSION_CODENAME", "")
            facts["os_family"] = os_family(release)

        uname = executor.run(["uname", "-m"], check=False, mutable=False)
        if uname.returncode == 0:
            facts["machine"] = uname.stdout.strip()

        dpkg = executor.run(["dpkg", "--print-architecture"], check=False, mutable=False)
        if dpkg.returncode == 0:
            facts["architecture"] = dpkg.stdout.strip()
        elif "machine" in facts:
            facts["architecture"] = facts["machine"]

        logger.debug("host=%s facts=%s", context.host, sorted(facts))
        return ActionResult(
            host=context.host,
            action=self.kind.value,
            changed=False,
            details=f"gathered {len(facts)} facts",
            facts=facts,
        )
