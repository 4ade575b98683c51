from __future__ import annotations

import threading
import time
from pathlib import Path

from graphsense.core.locking import deploy_lock


def test_lock_creates_parent_directory(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "deploy.lock"
    with deploy_lock(target) as held:
        assert held == target
        assert target.exists()


def test_lock_can_be_reacquired_after_release(tmp_path: Path) -> None:
    target = tmp_path / "deploy.lock"
    with deploy_lock(target):
        pass
    with deploy_lock(target):
        pass


def test_second_holder_waits_for_release(tmp_path: Path) -> None:
    target = tmp_path / "deploy.lock"
    order: list[str] = []
    entered = threading.Event()

    def _second() -> None:
        entered.set()
        with deploy_lock(target):
            order.append("second")

    with deploy_lock(target):
        worker = threading.Thread(target=_second)
        worker.start()
        entered.wait(timeout=5)
        time.sleep(0.2)
        order.append("first")
    worker.join(timeout=5)

    assert order == ["first", "second"]
