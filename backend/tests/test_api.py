from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

import shikoku_router.main as main_module
from shikoku_router.errors import GraphEngineError
from shikoku_router.main import app, graph_engine
from shikoku_router.settings import settings


class BrokenEngine:
    async def nearest_vertex(self, point: Any) -> None:
        raise GraphEngineError("could not connect to server")

    async def nearest_vertices(self, point: Any, *, limit: int) -> list[Any]:
        raise GraphEngineError("could not connect to server")

    async def shortest_path(self, source: int, target: int, **_: Any) -> list[Any]:
        raise GraphEngineError("could not connect to server")

    async def ping(self) -> None:
        raise GraphEngineError("could not connect to server")

    async def aclose(self) -> None:
        return None


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, memory_engine):
    monkeypatch.setattr(main_module, "build_graph_engine", lambda _config: memory_engine)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _body(node_coords, *node_ids: int, **extra: Any) -> dict[str, Any]:
    return {"points": [node_coords(node_id) for node_id in node_ids], **extra}


def test_search_returns_both_variants(client: TestClient, node_coords) -> None:
    resp = client.post("/api/routing/search", json=_body(node_coords, 1, 3, 4))
    assert resp.status_code == 200
    data = resp.json()

    shortest = data["distance_variant"]
    fastest = data["time_variant"]
    assert shortest["label"] == "shortest" and fastest["label"] == "fastest"
    assert shortest["total_distance_m"] == 3700.0
    assert fastest["total_duration_s"] == 190.0
    assert [seg["edge"] for seg in fastest["segments"]] == [11, 12, 13]
    assert [seg["leg_index"] for seg in fastest["segments"]] == [0, 0, 1]
    assert shortest["start_node"] == 1 and shortest["end_node"] == 4
    assert [leg["segment_count"] for leg in shortest["legs"]] == [1, 1]
    assert [route["metric"] for route in data["routes"]] == ["distance", "time"]
    assert [wp["node_id"] for wp in data["waypoints"]] == [3]
    assert data["waypoints"][0]["label"] == "waypoint-0"
    assert data["warnings"] == []


def test_legacy_camel_case_body(client: TestClient, node_coords) -> None:
    start, end = node_coords(1), node_coords(3)
    resp = client.post(
        "/api/routing/search",
        json={
            "startLat": start["lat"],
            "startLon": start["lon"],
            "endLat": end["lat"],
            "endLon": end["lon"],
            "avoidMotorways": True,
            "vehicleHeight": 4.1,
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["time_variant"]["total_cost"] == 300.0
    assert data["constraints"]["avoid_motorways"] is True
    assert data["constraints"]["vehicle_height_m"] == 4.1
    assert [clause["reason"] for clause in data["constraints"]["clauses"]] == ["avoid_motorways", "vehicle_height"]


def test_avoid_zone_is_echoed_with_its_buffer(client: TestClient, node_coords) -> None:
    resp = client.post(
        "/api/routing/search",
        json=_body(node_coords, 1, 4, avoid_zones=[{"lat": 33.85, "lon": 132.71, "radius": 300}]),
    )
    assert resp.status_code == 200
    data = resp.json()
    zone = data["avoid_zones"][0]
    assert zone["radius_m"] == 300.0
    assert zone["geometry"]["type"] == "Polygon"
    assert 11 not in [seg["edge"] for seg in data["time_variant"]["segments"]]


def test_partial_success_lists_warning(client: TestClient, node_coords) -> None:
    resp = client.post("/api/routing/search", json=_body(node_coords, 1, 7))
    assert resp.status_code == 200
    data = resp.json()
    assert data["time_variant"] is None
    assert len(data["routes"]) == 1
    assert "time: leg 0 unreachable" in data["warnings"]


def test_single_point_is_rejected(client: TestClient, node_coords) -> None:
    resp = client.post("/api/routing/search", json=_body(node_coords, 1))
    assert resp.status_code == 400
    assert resp.json()["error"]["reason_code"] == "invalid_input"


def test_too_many_waypoints_is_rejected(client: TestClient, node_coords, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "max_waypoints", 1)
    resp = client.post("/api/routing/search", json=_body(node_coords, 1, 2, 3, 4))
    assert resp.status_code == 400
    assert resp.json()["error"]["reason_code"] == "invalid_input"


def test_unresolved_point_is_404(client: TestClient, node_coords, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "snap_max_distance_m", 1_000.0)
    resp = client.post(
        "/api/routing/search",
        json={"points": [node_coords(1), {"lat": 34.5, "lon": 134.0}]},
    )
    assert resp.status_code == 404
    error = resp.json()["error"]
    assert error["reason_code"] == "points_not_resolved"
    assert error["details"]["missing_points"] == ["end"]


def test_unroutable_request_is_404(client: TestClient, node_coords) -> None:
    resp = client.post(
        "/api/routing/search",
        json=_body(node_coords, 5, 6, avoid_zones=[{"lat": 33.90, "lon": 132.805, "radius_m": 500}]),
    )
    assert resp.status_code == 404
    assert resp.json()["error"]["reason_code"] == "no_route_found"


def test_engine_outage_is_500(client: TestClient, node_coords) -> None:
    app.dependency_overrides[graph_engine] = lambda: BrokenEngine()
    resp = client.post("/api/routing/search", json=_body(node_coords, 1, 3))
    assert resp.status_code == 500
    assert resp.json()["error"]["reason_code"] == "upstream_failure"

    resp = client.post("/api/routing/nearest-node", json=node_coords(1))
    assert resp.status_code == 500


def test_nearest_node_lists_ranked_vertices(client: TestClient) -> None:
    resp = client.post("/api/routing/nearest-node", json={"lat": 33.84, "lon": 132.741})
    assert resp.status_code == 200
    nodes = resp.json()["nodes"]
    assert len(nodes) == settings.nearest_nodes_limit
    assert nodes[0]["id"] == 4
    distances = [node["distance_m"] for node in nodes]
    assert distances == sorted(distances)


def test_health_reports_backend_state(client: TestClient) -> None:
    resp = client.get("/api/routing")
    assert resp.status_code == 200
    assert resp.json()["database"] == "connected"

    app.dependency_overrides[graph_engine] = lambda: BrokenEngine()
    resp = client.get("/health")
    assert resp.status_code == 500
    assert resp.json() == {"status": "error", "database": "disconnected", "backend": settings.graph_backend}


def test_start_and_end_on_one_vertex_is_404(client: TestClient, node_coords) -> None:
    start = node_coords(1)
    resp = client.post(
        "/api/routing/search",
        json={"points": [start, {"latitude": start["lat"] + 0.0001, "longitude": start["lon"]}]},
    )
    assert resp.status_code == 404
    error = resp.json()["error"]
    assert error["reason_code"] == "no_route_found"
    assert error["details"]["cause"] == "leg_unreachable"
