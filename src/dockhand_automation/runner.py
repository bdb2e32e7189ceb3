from __future__ import annotations

import fnmatch
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .actions import ActionRunner, OperationActionRunner
from .config import DEFAULT_FORKS
from .errors import HandlerExecutionError, TaskExecutionError
from .handlers import HandlerDispatcher, HandlerOutcome
from .plan import ExecutionPlan, PlanBuilder, PlannedTask
from .secrets import SecretResolver
from .tracking import ChangeTracker
from .types import ActionKind, ActionSpec, HostConfig, HostContext, Plan, TaskResult, TaskSpec

logger = logging.getLogger(__name__)

GATHER_FACTS = PlannedTask(TaskSpec(name="gather facts", action=ActionSpec(ActionKind.FACTS)))


@dataclass
class HostReport:
    host: str
    results: list[TaskResult] = field(default_factory=list)
    handlers: list[HandlerOutcome] = field(default_factory=list)
    failure: Optional[str] = None
    facts: dict[str, Any] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return sum(1 for r in self.results if not r.skipped)

    @property
    def changed(self) -> int:
        return sum(1 for r in self.results if r.changed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def handlers_run(self) -> list[str]:
        return [h.name for h in self.handlers]

    @property
    def handler_errors(self) -> list[HandlerExecutionError]:
        return [h.error for h in self.handlers if h.error is not None]

    @property
    def ok(self) -> bool:
        return self.failure is None and not self.handler_errors

    def merge(self, other: "HostReport") -> None:
        self.results.extend(other.results)
        self.handlers.extend(other.handlers)
        self.facts.update(other.facts)
        if self.failure is None:
            self.failure = other.failure


@dataclass
class RunReport:
    hosts: dict[str, HostReport] = field(default_factory=dict)

    @property
    def failed_hosts(self) -> list[str]:
        return [name for name, report in self.hosts.items() if not report.ok]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed_hosts else 0


class PlaybookRunner:
    """Runs every play of a plan against its hosts.

    All plays are built before anything runs, so plan errors surface without
    touching a host. Within a play each host runs in its own worker (at most
    ``forks`` at once); a host that fails is left out of later plays.
    """

    def __init__(
        self,
        plan: Plan,
        *,
        dry_run: bool = False,
        forks: int = DEFAULT_FORKS,
        task_timeout: Optional[float] = None,
        extra_vars: Optional[dict[str, Any]] = None,
        limit: Optional[str] = None,
        action_runner: Optional[ActionRunner] = None,
        secret_resolver: Optional[SecretResolver] = None,
        progress_callback: Optional[Callable[[TaskResult], None]] = None,
    ):
        self.plan = plan
        self.dry_run = dry_run
        self.forks = max(1, int(forks))
        self.task_timeout = task_timeout
        self.extra_vars = dict(extra_vars or {})
        self.limit = limit
        self.action_runner = action_runner or OperationActionRunner(plan.hosts, dry_run=dry_run)
        self.secret_resolver = secret_resolver or SecretResolver()
        self.progress_callback = progress_callback
        builder = PlanBuilder()
        self.executions: list[ExecutionPlan] = [builder.build(play) for play in plan.plays]

    def run(self) -> RunReport:
        report = RunReport()
        for name in self.plan.hosts:
            if self._selected(name):
                report.hosts[name] = HostReport(host=name)

        for execution in self.executions:
            targets = [
                self.plan.hosts[name]
                for name in self._resolve_hosts(execution.hosts)
                if name in report.hosts and report.hosts[name].ok
            ]
            if not targets:
                logger.info("play=%s has no hosts left to run", execution.play)
                continue
            logger.info("play=%s hosts=%s", execution.play, ",".join(h.name for h in targets))
            for host_report in self._run_play(execution, targets, report):
                report.hosts[host_report.host].merge(host_report)
        return report

    def _run_play(
        self, execution: ExecutionPlan, targets: list[HostConfig], report: RunReport
    ) -> list[HostReport]:
        if len(targets) == 1 or self.forks == 1:
            return [self.run_host(execution, host, report.hosts[host.name].facts) for host in targets]

        results: list[HostReport] = []
        with ThreadPoolExecutor(max_workers=self.forks, thread_name_prefix="host") as pool:
            futures = {
                pool.submit(self.run_host, execution, host, dict(report.hosts[host.name].facts)): host
                for host in targets
            }
            for future in as_completed(futures):
                results.append(future.result())
        return results

    def run_host(
        self,
        execution: ExecutionPlan,
        host: HostConfig,
        known_facts: Optional[dict[str, Any]] = None,
    ) -> HostReport:
        """Run one play against one host; never raises for task failures."""
        report = HostReport(host=host.name)
        tracker = ChangeTracker(host.name, default_timeout=self.task_timeout)
        dispatcher = HandlerDispatcher(execution.handlers, timeout=self.task_timeout)
        try:
            context = self.host_context(execution, host, known_facts or {})
        except Exception as exc:  # noqa: BLE001
            logger.error("host=%s context failed: %s", host.name, exc)
            report.failure = f"could not build host context: {exc}"
            return report

        try:
            tasks: Iterable[PlannedTask] = execution.tasks
            if execution.gather_facts:
                tasks = [GATHER_FACTS, *execution.tasks]
            for planned in tasks:
                result = tracker.run_task(planned, context, self.action_runner)
                self._progress(result)
                if result.facts:
                    context = context.with_facts(result.facts)
                    report.facts.update(result.facts)
        except TaskExecutionError as exc:
            self._progress(tracker.results[-1])
            logger.warning("host=%s aborted: %s", host.name, exc)
            report.failure = str(exc)
        except Exception as exc:  # noqa: BLE001
            logger.error("host=%s crashed: %s", host.name, exc, exc_info=True)
            report.failure = f"{host.name}: {exc}"

        report.results = tracker.results
        report.handlers = dispatcher.dispatch(tracker.notifications, context, self.action_runner)
        return report

    def host_context(
        self, execution: ExecutionPlan, host: HostConfig, known_facts: dict[str, Any]
    ) -> HostContext:
        variables: dict[str, Any] = dict(execution.variables)
        variables.update(host.variables)
        variables.update(self.extra_vars)
        facts = dict(host.facts)
        facts.update(known_facts)
        return HostContext(
            host=host.name,
            variables=self.secret_resolver.resolve(variables),
            facts=facts,
        )

    def _resolve_hosts(self, patterns: list[str]) -> list[str]:
        if not patterns or "all" in patterns:
            return list(self.plan.hosts)
        names: list[str] = []
        for name in self.plan.hosts:
            if any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns):
                names.append(name)
        return names

    def _selected(self, name: str) -> bool:
        if not self.limit:
            return True
        patterns = [p.strip() for p in self.limit.split(",") if p.strip()]
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)

    def _progress(self, result: TaskResult) -> None:
        if self.progress_callback is not None:
            self.progress_callback(result)
