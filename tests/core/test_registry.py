from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from graphsense.core.instance import InstanceConfig
from graphsense.core.ports import PortTriple
from graphsense.core.registry import InstanceRegistry
from graphsense.errors import BookkeepingError, ExecutorError


def _config(name: str, base: int = 8080) -> InstanceConfig:
    return InstanceConfig(
        repository_path=Path(f"/srv/{name}"),
        instance_name=name,
        ports=PortTriple.from_base(base),
    )


def test_store_writes_one_record_per_container(registry: InstanceRegistry) -> None:
    stored = registry.store(_config("demo"))
    assert stored == ["demo-app", "demo-postgres", "demo-neo4j"]

    records = registry.list_containers("demo")
    assert [r.container_name for r in records] == ["demo-app", "demo-neo4j", "demo-postgres"]
    for record in records:
        assert record.repo_path == "/srv/demo"
        assert (record.app_port, record.postgres_port, record.neo4j_bolt_port) == (8080, 8180, 8280)
        assert record.created_at is not None


def test_store_twice_updates_in_place(registry: InstanceRegistry) -> None:
    registry.store(_config("demo", 8080))
    registry.store(_config("demo", 9000))
    records = registry.list_containers("demo")
    assert len(records) == 3
    assert {r.app_port for r in records} == {9000}


def test_list_all_orders_by_instance_then_container(registry: InstanceRegistry) -> None:
    registry.store(_config("beta", 8090))
    registry.store(_config("alpha", 8080))
    rows = [(r.instance_name, r.container_name) for r in registry.list_all()]
    assert rows == sorted(rows)
    assert len(rows) == 6


def test_remove_all_is_idempotent(registry: InstanceRegistry) -> None:
    registry.store(_config("demo"))
    registry.store(_config("other", 8090))
    assert registry.remove_all("demo") == 3
    assert registry.remove_all("demo") == 0
    assert registry.list_containers("demo") == []
    assert len(registry.list_containers("other")) == 3


def test_list_on_fresh_database_is_empty(registry: InstanceRegistry) -> None:
    assert registry.list_all() == []
    assert registry.list_containers("nothing") == []


def test_exists_follows_executor_not_store(registry: InstanceRegistry, executor) -> None:
    registry.store(_config("demo"))
    assert registry.exists("demo") is False

    executor.projects["demo"] = {"demo-app": "Up 1 minute"}
    assert registry.exists("demo") is True
    assert registry.exists("dem") is False


def test_exists_propagates_executor_failure(registry: InstanceRegistry, executor) -> None:
    executor.failing.add("ids")
    with pytest.raises(ExecutorError):
        registry.exists("demo")


def test_database_errors_become_bookkeeping_errors(
    registry: InstanceRegistry,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _broken(_engine):
        raise OperationalError("CREATE TABLE", {}, Exception("disk I/O error"))

    monkeypatch.setattr("graphsense.core.registry.ensure_database_schema", _broken)
    with pytest.raises(BookkeepingError, match="store instance demo"):
        registry.store(_config("demo"))


def test_from_settings_creates_database_under_home(settings, executor) -> None:
    registry = InstanceRegistry.from_settings(settings, executor=executor)
    registry.store(_config("demo"))
    assert settings.database_path.is_file()
    assert settings.database_path.parent == settings.home_dir


def test_unusable_database_path_fails_only_bookkeeping_calls(settings, executor, tmp_path: Path) -> None:
    blocker = tmp_path / "plain-file"
    blocker.write_text("", encoding="utf-8")
    broken = settings.model_copy(update={"db_path": blocker / "sub" / "instances.db"})

    registry = InstanceRegistry.from_settings(broken, executor=executor)

    executor.projects["demo"] = {"demo-app": "Up 1 minute"}
    assert registry.exists("demo") is True
    with pytest.raises(BookkeepingError, match="store instance demo"):
        registry.store(_config("demo"))
    with pytest.raises(BookkeepingError):
        registry.list_all()
    with pytest.raises(BookkeepingError):
        registry.remove_all("demo")


def test_live_instances_groups_by_project(registry: InstanceRegistry, executor) -> None:
    executor.projects["demo"] = {"demo-app": "Up 1 minute", "demo-neo4j": "Exited (1)"}
    live = registry.live_instances()
    assert [c.name for c in live["demo"]] == ["demo-app", "demo-neo4j"]
