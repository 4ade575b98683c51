from __future__ import annotations

from pathlib import Path
from typing import Generator, Sequence

import pytest

import sys


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from graphsense.config import Settings
from graphsense.core.executor import CommandResult, ComposeExecutor, LiveContainer
from graphsense.core.orchestrator import LifecycleOrchestrator
from graphsense.core.ports import PortAllocator
from graphsense.core.registry import InstanceRegistry
from graphsense.errors import ExecutorError
from graphsense.naming import SERVICE_NAMES, VOLUME_SUFFIXES


class FakeExecutor(ComposeExecutor):
    """In-memory stand-in for docker/compose.

    Containers are tracked per project as ``{name: status}``. Verbs listed in
    ``failing`` raise ``ExecutorError``. Artifact contents are captured during
    ``up`` because the files are deleted right after.
    """

    def __init__(self) -> None:
        super().__init__(compose_bin="docker compose", docker_bin="docker")
        self.calls: list[tuple[str, ...]] = []
        self.projects: dict[str, dict[str, str]] = {}
        self.volumes: set[str] = set()
        self.failing: set[str] = set()
        self.ps_reports_up = True
        self.up_files: list[Path] = []
        self.up_overlay: str = ""
        self.up_env: str = ""

    def _result(self, *command: str, stdout: str = "") -> CommandResult:
        return CommandResult(
            command=tuple(command),
            returncode=0,
            stdout=stdout,
            stderr="",
            duration_seconds=0.0,
        )

    def _record(self, verb: str, *args: str) -> None:
        self.calls.append((verb, *args))
        if verb in self.failing:
            raise ExecutorError(f"{verb} failed", cmd=["docker", verb], returncode=1)

    def verbs(self) -> list[str]:
        return [call[0] for call in self.calls]

    def up(self, project: str, *, files: Sequence[Path], env_file: Path) -> CommandResult:
        self.up_files = list(files)
        self.up_overlay = Path(files[-1]).read_text(encoding="utf-8")
        self.up_env = Path(env_file).read_text(encoding="utf-8")
        self._record("up", project)
        self.projects[project] = {f"{project}-{service}": "Up 2 seconds" for service in SERVICE_NAMES}
        self.volumes.update(f"{project}_{suffix}" for suffix in VOLUME_SUFFIXES)
        return self._result("up", project)

    def stop(self, project: str) -> CommandResult:
        self._record("stop", project)
        for name in self.projects.get(project, {}):
            self.projects[project][name] = "Exited (0) 1 second ago"
        return self._result("stop", project)

    def start(self, project: str) -> CommandResult:
        self._record("start", project)
        for name in self.projects.get(project, {}):
            self.projects[project][name] = "Up 1 second"
        return self._result("start", project)

    def down(self, project: str) -> CommandResult:
        self._record("down", project)
        self.projects.pop(project, None)
        self.volumes.difference_update(f"{project}_{suffix}" for suffix in VOLUME_SUFFIXES)
        return self._result("down", project)

    def logs(self, project: str, *, service: str | None = None, follow: bool = True) -> CommandResult:
        self._record("logs", project, service or "")
        return self._result("logs", project)

    def ps(self, project: str) -> CommandResult:
        self.calls.append(("ps", project))
        running = self.ps_reports_up and any(
            status.startswith("Up") for status in self.projects.get(project, {}).values()
        )
        return self._result("ps", project, stdout="NAME STATUS\napp Up 2 seconds\n" if running else "")

    def project_containers(self, project: str, *, include_stopped: bool = True) -> list[LiveContainer]:
        self._record("list", project)
        return [
            LiveContainer(name=name, status=status)
            for name, status in sorted(self.projects.get(project, {}).items())
        ]

    def compose_projects(self) -> dict[str, list[LiveContainer]]:
        self._record("projects")
        return {
            project: [LiveContainer(name=name, status=status) for name, status in sorted(containers.items())]
            for project, containers in self.projects.items()
            if containers
        }

    def project_container_ids(self, project: str) -> list[str]:
        self.calls.append(("ids", project))
        if "ids" in self.failing:
            raise ExecutorError("ids failed", returncode=1)
        return sorted(self.projects.get(project, {}))

    def remove_containers(self, container_ids: Sequence[str]) -> CommandResult | None:
        self._record("rm", *container_ids)
        for containers in self.projects.values():
            for container_id in container_ids:
                containers.pop(container_id, None)
        self.projects = {name: c for name, c in self.projects.items() if c}
        return self._result("rm")

    def volumes_with_prefix(self, prefix: str) -> list[str]:
        self._record("volume-ls", prefix)
        return sorted(v for v in self.volumes if v.startswith(prefix))

    def remove_volumes(self, volumes: Sequence[str]) -> CommandResult | None:
        self._record("volume-rm", *volumes)
        self.volumes.difference_update(volumes)
        return self._result("volume-rm")

    def prune_containers(self) -> CommandResult:
        self._record("container-prune")
        return self._result("container-prune")

    def prune_volumes(self) -> CommandResult:
        self._record("volume-prune")
        return self._result("volume-prune")


class RecordingPortCheck:
    """Port check that reports a fixed set of ports as busy."""

    def __init__(self, busy: set[int] | None = None) -> None:
        self.busy = set(busy or ())
        self.checked: list[int] = []

    def __call__(self, port: int) -> bool:
        self.checked.append(port)
        return port in self.busy


@pytest.fixture
def settings(tmp_path: Path) -> Generator[Settings, None, None]:
    """Return Settings rooted in a temporary home with a compose file and secrets."""

    home = tmp_path / "home"
    home.mkdir()
    (home / ".env").write_text("CO_API_KEY=co-test-key\n", encoding="utf-8")
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text("services: {}\n", encoding="utf-8")

    yield Settings(
        _env_file=None,
        home_dir=home,
        compose_file=compose_file,
        health_max_attempts=3,
        health_interval_seconds=0.0,
    )


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    path = tmp_path / "My_Repo"
    path.mkdir()
    return path


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def port_check() -> RecordingPortCheck:
    return RecordingPortCheck()


@pytest.fixture
def registry(settings: Settings, executor: FakeExecutor) -> InstanceRegistry:
    return InstanceRegistry.from_settings(settings, executor=executor)


@pytest.fixture
def orchestrator(
    settings: Settings,
    executor: FakeExecutor,
    registry: InstanceRegistry,
    port_check: RecordingPortCheck,
) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(
        settings=settings,
        executor=executor,
        registry=registry,
        allocator=PortAllocator(default_base=8080, step=10, in_use=port_check),
        confirm=lambda _question: True,
        sleep=lambda _seconds: None,
    )
