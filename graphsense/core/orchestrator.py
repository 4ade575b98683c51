"""Lifecycle orchestration for GraphSense instances.

Per instance the lifecycle is ``absent -> deployed <-> stopped -> absent``.
Only precondition and port-exhaustion failures abort before the executor is
invoked. Once containers have been touched, bookkeeping and best-effort steps
(health check, registry writes, manual sweeps) degrade to warnings: the
containers are the truth and the registry is advisory.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from loguru import logger
from rich.console import Console
from rich.prompt import Confirm
from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from graphsense.config import Settings, get_settings
from graphsense.core.artifacts import deployment_artifacts
from graphsense.core.executor import ComposeExecutor, LiveContainer
from graphsense.core.instance import InstanceConfig, resolve_repository_path
from graphsense.core.locking import deploy_lock
from graphsense.core.ports import PortAllocator, PortTriple
from graphsense.core.registry import InstanceRegistry
from graphsense.core.secrets import load_api_keys
from graphsense.errors import (
    BookkeepingError,
    ExecutorError,
    HealthCheckTimeout,
    PreconditionError,
)
from graphsense.naming import (
    SERVICE_NAMES,
    generate_instance_name,
    instance_names,
    sanitize_instance_name,
)

__all__ = [
    "DEBUG_BASE_PORTS",
    "DeployResult",
    "InstanceStatus",
    "InstanceSummary",
    "LifecycleOrchestrator",
    "PortReport",
    "PortReportRow",
    "RemovalReport",
    "confirm_interactively",
]

DEBUG_BASE_PORTS: tuple[int, ...] = (8080, 8090, 8100, 8110, 8120)

ConfirmFn = Callable[[str], bool]


@dataclass(slots=True, frozen=True)
class DeployResult:
    instance_name: str
    repository_path: Path
    ports: PortTriple
    healthy: bool
    recorded: bool


@dataclass(slots=True)
class RemovalReport:
    instance_name: str
    down_succeeded: bool
    swept_containers: list[str] = field(default_factory=list)
    removed_volumes: list[str] = field(default_factory=list)
    registry_removed: int | None = None


@dataclass(slots=True)
class InstanceStatus:
    instance_name: str
    containers: list[LiveContainer]
    ports: PortTriple | None = None
    repository_path: str | None = None


@dataclass(slots=True)
class InstanceSummary:
    instance_name: str
    repository_path: str | None = None
    ports: PortTriple | None = None
    created_at: datetime | None = None
    containers: list[LiveContainer] = field(default_factory=list)

    @property
    def state(self) -> str:
        if not self.containers:
            return "missing"
        if all(container.running for container in self.containers):
            return "running"
        if any(container.running for container in self.containers):
            return "partial"
        return "stopped"


@dataclass(slots=True, frozen=True)
class PortReportRow:
    base: int
    ports: PortTriple
    conflicts: tuple[tuple[str, int], ...]

    @property
    def available(self) -> bool:
        return not self.conflicts


@dataclass(slots=True, frozen=True)
class PortReport:
    rows: tuple[PortReportRow, ...]
    next_available: PortTriple


def confirm_interactively(question: str, *, console: Console | None = None) -> bool:
    """Ask a y/N question on the terminal; end of input counts as no."""
    try:
        return bool(Confirm.ask(question, default=False, console=console or Console()))
    except EOFError:
        return False


class LifecycleOrchestrator:
    """Deploy, stop, start and remove isolated instances."""

    def __init__(
        self,
        *,
        settings: Settings,
        executor: ComposeExecutor,
        registry: InstanceRegistry,
        allocator: PortAllocator | None = None,
        confirm: ConfirmFn | None = None,
        sleep: Callable[[float], None] = time.sleep,
        log=None,
    ) -> None:
        self.settings = settings
        self.executor = executor
        self.registry = registry
        self.log = log or logger.bind(module="core.orchestrator")
        self.allocator = allocator or PortAllocator(
            default_base=settings.default_base_port,
            step=settings.port_step,
            limit=settings.port_limit,
            log=self.log,
        )
        self.confirm = confirm or confirm_interactively
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        confirm: ConfirmFn | None = None,
        log=None,
    ) -> "LifecycleOrchestrator":
        settings = settings or get_settings()
        executor = ComposeExecutor(
            compose_bin=settings.compose_bin,
            docker_bin=settings.docker_bin,
            log=log,
        )
        registry = InstanceRegistry.from_settings(settings, executor=executor, log=log)
        return cls(
            settings=settings,
            executor=executor,
            registry=registry,
            confirm=confirm,
            log=log,
        )

    # Preconditions ---------------------------------------------------------

    def _require_existing(self, instance_name: str) -> str:
        name = sanitize_instance_name(instance_name)
        if not self.registry.exists(name):
            raise PreconditionError(f"Instance '{name}' does not exist.")
        return name

    def _require_compose_file(self) -> Path:
        compose_file = Path(self.settings.compose_file).expanduser()
        if not compose_file.is_file():
            raise PreconditionError(f"docker-compose.yml not found at: {compose_file}")
        return compose_file

    # Deploy ----------------------------------------------------------------

    def deploy(
        self,
        repo_path: Path | str,
        instance_name: str | None = None,
        *,
        base_port: int | None = None,
    ) -> DeployResult:
        """Deploy a new instance for ``repo_path`` and return its ports."""
        repository = resolve_repository_path(repo_path)
        if instance_name:
            name = sanitize_instance_name(instance_name)
        else:
            name = generate_instance_name(repository)

        self.log.info("Deploying instance: {} for repository: {}", name, repository)

        if self.registry.exists(name):
            raise PreconditionError(
                f"Instance '{name}' already exists. Use 'remove' command first.",
            )
        compose_file = self._require_compose_file()
        secrets = load_api_keys(self.settings.secrets_path)

        with deploy_lock(self.settings.lock_path):
            # Another deploy may have claimed the name while we waited.
            if self.registry.exists(name):
                raise PreconditionError(
                    f"Instance '{name}' already exists. Use 'remove' command first.",
                )
            ports = self.allocator.allocate(base_port)
            config = InstanceConfig(
                repository_path=repository,
                instance_name=name,
                ports=ports,
                secrets=secrets,
            )
            self.log.info("Starting services for instance: {}", name)
            with deployment_artifacts(config) as artifacts:
                try:
                    self.executor.up(
                        name,
                        files=[compose_file, artifacts.overlay_file],
                        env_file=artifacts.env_file,
                    )
                except ExecutorError as exc:
                    raise ExecutorError(
                        f"Failed to deploy instance {name}: {exc}",
                        cmd=exc.cmd,
                        returncode=exc.returncode,
                        stdout=exc.stdout,
                        stderr=exc.stderr,
                    ) from exc

        healthy = True
        try:
            self.wait_for_healthy(name)
        except HealthCheckTimeout as exc:
            healthy = False
            self.log.warning("{} Continuing anyway.", exc)

        recorded = True
        try:
            self.registry.store(config)
        except BookkeepingError as exc:
            recorded = False
            self.log.warning("Failed to store container information: {}", exc)

        self.log.success("Instance '{}' deployed successfully!", name)
        self.log.info("Access URLs:")
        self.log.info("  MCP Server: http://localhost:{}", ports.app)
        self.log.info("  PostgreSQL: localhost:{}", ports.data)
        self.log.info("  Neo4j Bolt: bolt://localhost:{}", ports.graph)

        return DeployResult(
            instance_name=name,
            repository_path=repository,
            ports=ports,
            healthy=healthy,
            recorded=recorded,
        )

    def _services_up(self, instance_name: str) -> bool:
        try:
            result = self.executor.ps(instance_name)
        except ExecutorError as exc:
            self.log.debug("Health check could not run compose ps: {}", exc)
            return False
        return result.ok and "Up" in result.stdout

    def wait_for_healthy(self, instance_name: str) -> None:
        """Poll ``compose ps`` until services report up.

        Raises ``HealthCheckTimeout`` after the configured number of attempts.
        """
        attempts = max(1, int(self.settings.health_max_attempts))
        interval = max(0.0, float(self.settings.health_interval_seconds))
        self.log.info("Waiting for services to be healthy...")

        def _before_sleep(retry_state) -> None:  # type: ignore[no-untyped-def]
            self.log.info(
                "Waiting for health checks... ({}/{})",
                retry_state.attempt_number,
                attempts,
            )

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(interval),
            retry=retry_if_result(lambda up: not up),
            before_sleep=_before_sleep,
            sleep=self._sleep,
        )
        try:
            retrying(self._services_up, instance_name)
        except RetryError as exc:
            raise HealthCheckTimeout(
                f"Not all services of '{instance_name}' became healthy "
                f"within {attempts} attempts.",
            ) from exc

    # Stop / start ----------------------------------------------------------

    def stop(self, instance_name: str) -> None:
        name = self._require_existing(instance_name)
        self.log.info("Stopping instance: {}", name)
        try:
            self.executor.stop(name)
        except ExecutorError as exc:
            raise ExecutorError(
                f"Failed to stop instance {name}: {exc}",
                cmd=exc.cmd,
                returncode=exc.returncode,
                stdout=exc.stdout,
                stderr=exc.stderr,
            ) from exc
        self.log.success("Instance '{}' stopped.", name)

    def start(self, instance_name: str) -> None:
        name = self._require_existing(instance_name)
        self.log.info("Starting instance: {}", name)
        try:
            self.executor.start(name)
        except ExecutorError as exc:
            raise ExecutorError(
                f"Failed to start instance {name}: {exc}",
                cmd=exc.cmd,
                returncode=exc.returncode,
                stdout=exc.stdout,
                stderr=exc.stderr,
            ) from exc
        self.log.success("Instance '{}' started.", name)

    # Remove ----------------------------------------------------------------

    def remove(self, instance_name: str, *, assume_yes: bool = False) -> RemovalReport | None:
        """Permanently remove an instance, its volumes and its records.

        Returns ``None`` when the operator declines the confirmation.
        """
        name = self._require_existing(instance_name)

        if not assume_yes:
            self.log.warning(
                "This will permanently remove instance '{}' and all its data.",
                name,
            )
            if not self.confirm("Are you sure?"):
                self.log.info("Cancelled.")
                return None

        self.log.info("Removing instance: {}", name)
        report = RemovalReport(instance_name=name, down_succeeded=True)
        try:
            self.executor.down(name)
        except ExecutorError as exc:
            report.down_succeeded = False
            self.log.warning(
                "Failed to cleanly remove instance with docker compose ({}), trying manual cleanup...",
                exc,
            )
            report.swept_containers = self._sweep_containers(name)

        self.log.info("Removing associated volumes...")
        report.removed_volumes = self._sweep_volumes(name)

        try:
            report.registry_removed = self.registry.remove_all(name)
        except BookkeepingError as exc:
            self.log.warning("Failed to remove registry records for {}: {}", name, exc)

        self.log.success("Instance '{}' removed.", name)
        return report

    def _sweep_containers(self, name: str) -> list[str]:
        # Matches on the exact project label only.
        try:
            container_ids = self.executor.project_container_ids(name)
            self.executor.remove_containers(container_ids)
        except ExecutorError as exc:
            self.log.warning("Manual container cleanup for {} failed: {}", name, exc)
            return []
        return container_ids

    def _sweep_volumes(self, name: str) -> list[str]:
        prefix = instance_names(name).volume_prefix
        try:
            volumes = self.executor.volumes_with_prefix(prefix)
            self.executor.remove_volumes(volumes)
        except ExecutorError as exc:
            self.log.warning("Volume cleanup for {} failed: {}", name, exc)
            return []
        return volumes

    # Housekeeping ----------------------------------------------------------

    def cleanup(self) -> None:
        """Prune stopped containers and unused volumes host-wide."""
        self.log.info("Cleaning up stopped containers and unused volumes...")
        try:
            self.executor.prune_containers()
        except ExecutorError as exc:
            self.log.warning("Failed to clean up containers, continuing... ({})", exc)
        try:
            self.executor.prune_volumes()
        except ExecutorError as exc:
            self.log.warning("Failed to clean up volumes, continuing... ({})", exc)
        self.log.success("Cleanup completed.")

    # Inspection ------------------------------------------------------------

    def logs(self, instance_name: str, service: str | None = None, *, follow: bool = True) -> None:
        name = self._require_existing(instance_name)
        if service and service not in SERVICE_NAMES:
            raise PreconditionError(
                f"Unknown service {service!r}; expected one of {', '.join(SERVICE_NAMES)}.",
            )
        self.executor.logs(name, service=service, follow=follow)

    def status(self, instance_name: str) -> InstanceStatus:
        name = self._require_existing(instance_name)
        status = InstanceStatus(
            instance_name=name,
            containers=self.registry.live_containers(name),
        )
        try:
            records = self.registry.list_containers(name)
        except BookkeepingError as exc:
            self.log.warning("Failed to read registry records for {}: {}", name, exc)
            records = []
        if records:
            first = records[0]
            status.ports = PortTriple(
                app=first.app_port,
                data=first.postgres_port,
                graph=first.neo4j_bolt_port,
            )
            status.repository_path = first.repo_path
        return status

    def list_instances(self) -> list[InstanceSummary]:
        """Join registry records with the executor's live container view.

        Live projects without records are listed too, with unknown ports, as
        long as their containers follow the instance naming.
        """
        summaries: dict[str, InstanceSummary] = {}
        try:
            records = self.registry.list_all()
        except BookkeepingError as exc:
            self.log.warning("Failed to read registry records: {}", exc)
            records = []
        for record in records:
            if record.instance_name in summaries:
                continue
            summaries[record.instance_name] = InstanceSummary(
                instance_name=record.instance_name,
                repository_path=record.repo_path,
                ports=PortTriple(
                    app=record.app_port,
                    data=record.postgres_port,
                    graph=record.neo4j_bolt_port,
                ),
                created_at=record.created_at,
            )

        try:
            live = self.registry.live_instances()
        except ExecutorError as exc:
            self.log.warning("Failed to query live containers: {}", exc)
            return list(summaries.values())

        for name, summary in summaries.items():
            summary.containers = live.get(name, [])
        for project, containers in sorted(live.items()):
            if project in summaries:
                continue
            names = {container.name for container in containers}
            if instance_names(project).container("app") not in names:
                continue
            summaries[project] = InstanceSummary(instance_name=project, containers=containers)
        return list(summaries.values())

    def debug_ports(self, bases: Sequence[int] = DEBUG_BASE_PORTS) -> PortReport:
        rows = tuple(
            PortReportRow(
                base=base,
                ports=PortTriple.from_base(base),
                conflicts=tuple(self.allocator.conflicts(base)),
            )
            for base in bases
        )
        return PortReport(
            rows=rows,
            next_available=self.allocator.allocate(self.settings.default_base_port),
        )
