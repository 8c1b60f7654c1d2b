from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from shikoku_router.constraints import EdgePredicate, ExcludeCategories, compile_constraints
from shikoku_router.errors import GraphEngineError
from shikoku_router.graph_engine import TERMINAL_EDGE
from shikoku_router.pgrouting import PgRoutingEngine, render_edges_query
from shikoku_router.route_types import AvoidZone, CostMetric, GeoPoint, VehicleProfile


class _FakeResult:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self._rows = rows

    def mappings(self) -> "_FakeResult":
        return self

    def all(self) -> list[dict[str, Any]]:
        return list(self._rows)


class _FakeConnection:
    def __init__(self, owner: "FakeAsyncEngine") -> None:
        self.owner = owner

    async def __aenter__(self) -> "_FakeConnection":
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    async def execute(self, statement: Any, params: dict[str, Any]) -> _FakeResult:
        self.owner.executed.append((str(statement), dict(params)))
        if self.owner.error is not None:
            raise self.owner.error
        return _FakeResult(self.owner.rows)


class FakeAsyncEngine:
    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.error = error
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.disposed = False

    def connect(self) -> _FakeConnection:
        return _FakeConnection(self)

    async def dispose(self) -> None:
        self.disposed = True


def test_unconstrained_edge_query_has_no_filter() -> None:
    predicate = compile_constraints(avoid_motorways=False, vehicle=None, avoid_zones=())

    template, args = render_edges_query(CostMetric.DISTANCE, predicate)
    assert template == "SELECT gid AS id, source, target, length_m AS cost, length_m AS reverse_cost FROM ways"
    assert args == []

    template, _ = render_edges_query(CostMetric.TIME, predicate.for_metric(CostMetric.TIME))
    assert "cost_s AS cost" in template
    assert template.endswith("WHERE ways.cost_s IS NOT NULL")


def test_clause_values_are_passed_as_arguments_not_inlined() -> None:
    zone = AvoidZone(center_latitude=33.8416, center_longitude=132.7657, radius_meters=750.0)
    predicate = compile_constraints(
        avoid_motorways=True,
        vehicle=VehicleProfile(width_meters=2.6, height_meters=3.8),
        avoid_zones=(zone,),
    )

    template, args = render_edges_query(CostMetric.DISTANCE, predicate)

    assert "motorway" not in template
    assert "132.7657" not in template
    assert "750" not in template
    assert template.count("%L") == len(args)
    assert args[:2] == ["motorway", "motorway_link"]
    assert "tunnel" in args
    assert args[-3:] == ["132.7657", "33.8416", "750.0"]
    assert "NOT ST_DWithin(ways.the_geom::geography" in template


def test_hostile_category_text_stays_an_argument() -> None:
    hostile = "x'); DROP TABLE ways; --"
    predicate = EdgePredicate(clauses=(ExcludeCategories(reason="test", categories=frozenset({hostile})),))

    template, args = render_edges_query(CostMetric.DISTANCE, predicate)

    assert hostile not in template
    assert args == [hostile]


@pytest.mark.anyio
async def test_shortest_path_maps_rows_and_binds_parameters() -> None:
    fake = FakeAsyncEngine(
        rows=[
            {
                "seq": 1, "path_seq": 1, "node": 12, "edge": 501, "cost": 410.5, "agg_cost": 0.0,
                "geom": '{"type": "LineString", "coordinates": [[132.76, 33.84], [132.765, 33.842]]}',
                "name": "Ichibancho-dori", "length_m": 410.5, "cost_s": 37.0, "road_type": "secondary",
            },
            {
                "seq": 2, "path_seq": 2, "node": 13, "edge": TERMINAL_EDGE, "cost": 0.0, "agg_cost": 410.5,
                "geom": None, "name": None, "length_m": None, "cost_s": None, "road_type": None,
            },
        ]
    )
    engine = PgRoutingEngine(fake)  # type: ignore[arg-type]
    predicate = compile_constraints(avoid_motorways=True, vehicle=None, avoid_zones=())

    rows = await engine.shortest_path(12, 13, metric=CostMetric.DISTANCE, predicate=predicate)

    assert [row.edge for row in rows] == [501, TERMINAL_EDGE]
    assert rows[0].geometry == {"type": "LineString", "coordinates": [[132.76, 33.84], [132.765, 33.842]]}
    assert rows[0].road_name == "Ichibancho-dori"
    assert rows[0].duration_s == 37.0
    assert rows[0].road_category == "secondary"
    assert rows[1].traverses_edge is False

    statement, params = fake.executed[0]
    assert "pgr_dijkstra" in statement
    assert params["source"] == 12 and params["target"] == 13
    assert params["edges_args"] == ["motorway", "motorway_link"]
    assert "%L" in params["edges_template"]


@pytest.mark.anyio
async def test_nearest_vertices_maps_rows() -> None:
    fake = FakeAsyncEngine(
        rows=[
            {"id": 7, "lon": 132.7657, "lat": 33.8416, "distance": 12.4},
            {"id": 9, "lon": 132.7662, "lat": 33.8421, "distance": 80.0},
        ]
    )
    engine = PgRoutingEngine(fake)  # type: ignore[arg-type]
    point = GeoPoint(latitude=33.8417, longitude=132.7656, label="start")

    nearest = await engine.nearest_vertex(point)
    assert nearest is not None and nearest.vertex_id == 7 and nearest.distance_m == 12.4
    assert fake.executed[0][1]["limit"] == 1

    ranked = await engine.nearest_vertices(point, limit=0)
    assert [row.vertex_id for row in ranked] == [7, 9]
    assert fake.executed[1][1]["limit"] == 1


@pytest.mark.anyio
async def test_nearest_vertex_on_empty_table_is_none() -> None:
    engine = PgRoutingEngine(FakeAsyncEngine(rows=[]))  # type: ignore[arg-type]
    assert await engine.nearest_vertex(GeoPoint(latitude=0.0, longitude=0.0, label="start")) is None


@pytest.mark.anyio
async def test_driver_errors_become_graph_engine_errors() -> None:
    fake = FakeAsyncEngine(error=OperationalError("SELECT 1", {}, ConnectionRefusedError("refused")))
    engine = PgRoutingEngine(fake)  # type: ignore[arg-type]

    with pytest.raises(GraphEngineError):
        await engine.ping()

    fake.error = ConnectionResetError("reset by peer")
    with pytest.raises(GraphEngineError):
        await engine.nearest_vertex(GeoPoint(latitude=33.84, longitude=132.76, label="start"))

    await engine.aclose()
    assert fake.disposed
