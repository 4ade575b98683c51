from __future__ import annotations

import socket

import pytest

from graphsense.core.ports import PortAllocator, PortTriple, is_port_in_use
from graphsense.errors import ResourceExhaustionError


def _busy_ports(busy: set[int]):
    return lambda port: port in busy


def test_triple_offsets() -> None:
    triple = PortTriple.from_base(9000)
    assert triple.as_tuple() == (9000, 9100, 9200)
    assert len(set(triple.as_tuple())) == 3
    assert triple.data == triple.app + 100
    assert triple.graph == triple.app + 200


def test_allocate_returns_requested_base_when_free() -> None:
    allocator = PortAllocator(in_use=_busy_ports(set()))
    assert allocator.allocate(8080).as_tuple() == (8080, 8180, 8280)


def test_allocate_uses_default_base_when_absent() -> None:
    allocator = PortAllocator(default_base=8500, in_use=_busy_ports(set()))
    assert allocator.allocate().app == 8500
    assert allocator.allocate(None).app == 8500


def test_allocate_advances_by_step_when_app_port_busy() -> None:
    allocator = PortAllocator(step=10, in_use=_busy_ports({8080}))
    assert allocator.allocate(8080).as_tuple() == (8090, 8190, 8290)


@pytest.mark.parametrize("busy", [{8180}, {8280}, {8080, 8280}])
def test_any_busy_member_rejects_the_whole_triple(busy: set[int]) -> None:
    allocator = PortAllocator(step=10, in_use=_busy_ports(busy))
    assert allocator.allocate(8080).app == 8090


def test_allocate_skips_several_busy_candidates() -> None:
    allocator = PortAllocator(step=10, in_use=_busy_ports({8080, 8190, 8300}))
    assert allocator.allocate(8080).app == 8110


def test_allocate_raises_when_range_exhausted() -> None:
    allocator = PortAllocator(step=10, limit=8120, in_use=lambda _port: True)
    with pytest.raises(ResourceExhaustionError, match="starting from 8080"):
        allocator.allocate(8080)


def test_allocate_never_exceeds_tcp_range() -> None:
    allocator = PortAllocator(step=10, limit=65000, in_use=_busy_ports(set()))
    with pytest.raises(ResourceExhaustionError):
        allocator.allocate(65400)


def test_step_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PortAllocator(step=0)


def test_conflicts_reports_labels() -> None:
    allocator = PortAllocator(in_use=_busy_ports({8180, 8280}))
    assert allocator.conflicts(8080) == [("postgres", 8180), ("neo4j", 8280)]
    assert allocator.is_free(8090)


def test_is_port_in_use_detects_listener() -> None:
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        holder.bind(("", 0))
        holder.listen(1)
        port = holder.getsockname()[1]
        assert is_port_in_use(port)
    finally:
        holder.close()
