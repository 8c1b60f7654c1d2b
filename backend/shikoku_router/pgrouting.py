from __future__ import annotations

import json
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .constraints import EdgeClause, EdgePredicate, ExcludeAvoidZone, ExcludeCategories, RequireTravelTime
from .errors import GraphEngineError
from .graph_engine import NearestVertex, PathRow
from .route_types import CostMetric, GeoPoint
from .settings import Settings

_NEAREST_VERTICES_SQL = text(
    """
    SELECT
        id,
        ST_X(the_geom) AS lon,
        ST_Y(the_geom) AS lat,
        ST_Distance(
            the_geom::geography,
            ST_SetSRID(ST_MakePoint(:lon, :lat), 4326)::geography
        ) AS distance
    FROM ways_vertices_pgr
    ORDER BY the_geom <-> ST_SetSRID(ST_MakePoint(:lon, :lat), 4326)
    LIMIT :limit
    """
)

# The edge query is handed to pgr_dijkstra as a string. It is assembled
# server-side by format(), which quotes every caller-derived value with %L.
_SHORTEST_PATH_SQL = text(
    """
    SELECT
        r.seq,
        r.path_seq,
        r.node,
        r.edge,
        r.cost,
        r.agg_cost,
        ST_AsGeoJSON(w.the_geom) AS geom,
        w.name,
        w.length_m,
        w.cost_s,
        c.tag_value AS road_type
    FROM pgr_dijkstra(
        format(CAST(:edges_template AS text), VARIADIC CAST(:edges_args AS text[])),
        CAST(:source AS bigint),
        CAST(:target AS bigint),
        directed := true
    ) AS r
    LEFT JOIN ways w ON r.edge = w.gid
    LEFT JOIN configuration c ON w.tag_id = c.tag_id
    ORDER BY r.seq
    """
)

_PING_SQL = text("SELECT 1")

# Both directions carry the same weight, as the network is costed as bidirectional.
_EDGE_SELECT: dict[CostMetric, str] = {
    CostMetric.DISTANCE: "SELECT gid AS id, source, target, length_m AS cost, length_m AS reverse_cost FROM ways",
    CostMetric.TIME: "SELECT gid AS id, source, target, cost_s AS cost, cost_s AS reverse_cost FROM ways",
}


def _render_clause(clause: EdgeClause) -> tuple[str, list[str]]:
    if isinstance(clause, ExcludeCategories):
        categories = sorted(clause.categories)
        placeholders = ", ".join("%L" for _ in categories)
        return (
            "NOT EXISTS (SELECT 1 FROM configuration c "
            f"WHERE c.tag_id = ways.tag_id AND c.tag_value IN ({placeholders}))",
            categories,
        )
    if isinstance(clause, ExcludeAvoidZone):
        zone = clause.zone
        return (
            "NOT ST_DWithin(ways.the_geom::geography, "
            "ST_SetSRID(ST_MakePoint(%L::float8, %L::float8), 4326)::geography, %L::float8)",
            [repr(float(zone.center_longitude)), repr(float(zone.center_latitude)), repr(float(zone.radius_meters))],
        )
    if isinstance(clause, RequireTravelTime):
        return ("ways.cost_s IS NOT NULL", [])
    raise TypeError(f"unsupported edge clause: {type(clause).__name__}")


def render_edges_query(metric: CostMetric, predicate: EdgePredicate) -> tuple[str, list[str]]:
    """Edge-set query template for pgr_dijkstra and its %L arguments, in order."""
    if predicate.is_unconstrained:
        return _EDGE_SELECT[metric], []
    conditions: list[str] = []
    args: list[str] = []
    for clause in predicate.clauses:
        fragment, clause_args = _render_clause(clause)
        conditions.append(fragment)
        args.extend(clause_args)
    return _EDGE_SELECT[metric] + " WHERE " + " AND ".join(conditions), args


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None


def _path_row(row: Mapping[str, Any]) -> PathRow:
    geom = row.get("geom")
    return PathRow(
        sequence=int(row["seq"]),
        path_sequence=int(row["path_seq"]),
        node=int(row["node"]),
        edge=int(row["edge"]) if row.get("edge") is not None else None,
        cost=float(row["cost"]),
        cumulative_cost=float(row["agg_cost"]),
        geometry=json.loads(geom) if geom else None,
        road_name=row.get("name"),
        length_m=_optional_float(row.get("length_m")),
        duration_s=_optional_float(row.get("cost_s")),
        road_category=row.get("road_type"),
    )


class PgRoutingEngine:
    """Graph engine backed by PostGIS + pgRouting (osm2pgrouting schema)."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @classmethod
    def from_settings(cls, config: Settings) -> "PgRoutingEngine":
        engine = create_async_engine(
            config.database_url,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout_s,
            pool_pre_ping=True,
        )
        return cls(engine)

    async def _fetch(self, statement: Any, params: dict[str, Any]) -> list[Mapping[str, Any]]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(statement, params)
                return list(result.mappings().all())
        except (SQLAlchemyError, OSError) as e:
            raise GraphEngineError(f"{type(e).__name__}: {e}") from e

    async def nearest_vertices(self, point: GeoPoint, *, limit: int) -> list[NearestVertex]:
        rows = await self._fetch(
            _NEAREST_VERTICES_SQL,
            {"lon": float(point.longitude), "lat": float(point.latitude), "limit": max(1, int(limit))},
        )
        return [
            NearestVertex(
                vertex_id=int(row["id"]),
                distance_m=float(row["distance"]),
                latitude=_optional_float(row.get("lat")),
                longitude=_optional_float(row.get("lon")),
            )
            for row in rows
        ]

    async def nearest_vertex(self, point: GeoPoint) -> NearestVertex | None:
        rows = await self.nearest_vertices(point, limit=1)
        return rows[0] if rows else None

    async def shortest_path(
        self,
        source: int,
        target: int,
        *,
        metric: CostMetric,
        predicate: EdgePredicate,
    ) -> list[PathRow]:
        template, args = render_edges_query(metric, predicate)
        rows = await self._fetch(
            _SHORTEST_PATH_SQL,
            {"edges_template": template, "edges_args": args, "source": int(source), "target": int(target)},
        )
        return [_path_row(row) for row in rows]

    async def ping(self) -> None:
        await self._fetch(_PING_SQL, {})

    async def aclose(self) -> None:
        await self._engine.dispose()
