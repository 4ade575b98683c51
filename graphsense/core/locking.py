"""Exclusive advisory lock serialising port allocation and container launch.

Only processes of this tool are coordinated. Other programs on the host may
still bind a port between the availability check and ``compose up``.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from loguru import logger

log = logger.bind(module="core.locking")

__all__ = ["deploy_lock"]


def _acquire(handle: IO[str]) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _release(handle: IO[str]) -> None:
    try:
        if os.name == "nt":
            import msvcrt

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()


@contextmanager
def deploy_lock(path: Path) -> Iterator[Path]:
    """Block until the lock file at ``path`` is held exclusively."""
    lock_path = Path(path).expanduser()
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+", encoding="utf-8")
    try:
        log.debug("Waiting for deploy lock {}", lock_path)
        _acquire(handle)
    except OSError:
        handle.close()
        raise
    log.debug("Deploy lock acquired {}", lock_path)
    try:
        yield lock_path
    finally:
        _release(handle)
        log.debug("Deploy lock released {}", lock_path)
