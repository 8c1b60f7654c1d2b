from __future__ import annotations

from typing import Any

import pytest

from shikoku_router.routing_graph import InMemoryGraphEngine, RouteGraph, build_route_graph

# Small network near Matsuyama. Between 1 and 3 the residential road is
# shorter but the motorway via 2 is faster. Edge 14 has no travel time, and
# 5-6 is an island joined by a single edge.
NODES: list[dict[str, Any]] = [
    {"id": 1, "lat": 33.84, "lon": 132.70},
    {"id": 2, "lat": 33.85, "lon": 132.71},
    {"id": 3, "lat": 33.84, "lon": 132.72},
    {"id": 4, "lat": 33.84, "lon": 132.74},
    {"id": 7, "lat": 33.84, "lon": 132.76},
    {"id": 5, "lat": 33.90, "lon": 132.80},
    {"id": 6, "lat": 33.90, "lon": 132.81},
]

EDGES: list[dict[str, Any]] = [
    {"id": 10, "source": 1, "target": 3, "length_m": 1850.0, "cost_s": 300.0, "road_type": "residential", "name": "市道"},
    {"id": 11, "source": 1, "target": 2, "length_m": 1300.0, "cost_s": 50.0, "road_type": "motorway", "name": "松山自動車道"},
    {"id": 12, "source": 2, "target": 3, "length_m": 1300.0, "cost_s": 50.0, "road_type": "motorway_link"},
    {"id": 13, "source": 3, "target": 4, "length_m": 1850.0, "cost_s": 90.0, "road_type": "primary", "name": "国道33号"},
    {"id": 14, "source": 4, "target": 7, "length_m": 1850.0, "cost_s": None, "road_type": "track"},
    {"id": 15, "source": 5, "target": 6, "length_m": 925.0, "cost_s": 60.0, "road_type": "primary"},
]


def _node_coords(node_id: int) -> dict[str, float]:
    for node in NODES:
        if node["id"] == node_id:
            return {"lat": node["lat"], "lon": node["lon"]}
    raise KeyError(node_id)


@pytest.fixture
def network_rows() -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    return NODES, EDGES


@pytest.fixture
def node_coords():
    return _node_coords


@pytest.fixture
def detour_graph() -> RouteGraph:
    return build_route_graph(NODES, EDGES, version="test")


@pytest.fixture
def memory_engine(detour_graph: RouteGraph) -> InMemoryGraphEngine:
    return InMemoryGraphEngine(detour_graph)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
