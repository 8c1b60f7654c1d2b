from __future__ import annotations

import asyncio
import heapq
import json
import math
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable

from .constraints import EdgePredicate
from .errors import GraphEngineError
from .geodesy import geodesic_distance_m, haversine_m
from .graph_engine import TERMINAL_EDGE, NearestVertex, PathRow
from .logging_utils import log_event
from .route_types import CostMetric, EdgeRecord, GeoPoint

GRID_BUCKET_DEG = 0.05
METRES_PER_DEGREE = 111_195.0


def _grid_key(lat: float, lon: float, bucket_deg: float = GRID_BUCKET_DEG) -> tuple[int, int]:
    return (int(math.floor(lat / bucket_deg)), int(math.floor(lon / bucket_deg)))


@dataclass(frozen=True)
class GraphEdge:
    edge_id: int
    source: int
    target: int
    length_m: float
    cost_s: float | None
    road_category: str
    road_name: str | None = None
    tunnel: bool = False
    bridge: bool = False
    coordinates: tuple[tuple[float, float], ...] = ()  # [lon, lat]

    def record(self) -> EdgeRecord:
        return EdgeRecord(
            edge_id=self.edge_id,
            road_category=self.road_category,
            length_m=self.length_m,
            cost_s=self.cost_s,
            tunnel=self.tunnel,
            bridge=self.bridge,
            coordinates=self.coordinates,
        )

    def cost_for(self, metric: CostMetric) -> float | None:
        if metric is CostMetric.DISTANCE:
            return self.length_m
        return self.cost_s

    def geojson(self) -> dict[str, Any] | None:
        if len(self.coordinates) < 2:
            return None
        return {"type": "LineString", "coordinates": [[lon, lat] for lon, lat in self.coordinates]}


@dataclass(frozen=True)
class RouteGraph:
    version: str
    nodes: dict[int, tuple[float, float]]  # id -> (lat, lon)
    edges: dict[int, GraphEdge]
    adjacency: dict[int, tuple[tuple[int, int], ...]]  # node -> ((neighbour, edge_id), ...)
    grid_index: dict[tuple[int, int], tuple[int, ...]] = field(default_factory=dict)


def _as_float(raw: object) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    if not isinstance(raw, (int, float, str, Decimal)):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def _parse_node(raw: dict[str, object]) -> tuple[int, float, float] | None:
    node_id = raw.get("id")
    lat = _as_float(raw.get("lat"))
    lon = _as_float(raw.get("lon"))
    if node_id is None or lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    try:
        return (int(node_id), lat, lon)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None


def _parse_edge(raw: object, nodes: dict[int, tuple[float, float]]) -> GraphEdge | None:
    if not isinstance(raw, dict):
        return None
    try:
        edge_id = int(raw["id"])
        source = int(raw["source"])
        target = int(raw["target"])
    except (KeyError, TypeError, ValueError):
        return None
    if source not in nodes or target not in nodes:
        return None

    coords_raw = raw.get("coordinates")
    coordinates: tuple[tuple[float, float], ...]
    if isinstance(coords_raw, list) and len(coords_raw) >= 2:
        parsed = []
        for pt in coords_raw:
            if isinstance(pt, (list, tuple)) and len(pt) == 2:
                lon, lat = _as_float(pt[0]), _as_float(pt[1])
                if lon is not None and lat is not None:
                    parsed.append((lon, lat))
        coordinates = tuple(parsed)
    else:
        coordinates = ()
    if len(coordinates) < 2:
        src_lat, src_lon = nodes[source]
        dst_lat, dst_lon = nodes[target]
        coordinates = ((src_lon, src_lat), (dst_lon, dst_lat))

    length_m = _as_float(raw.get("length_m"))
    if length_m is None or length_m < 0.0:
        length_m = sum(
            haversine_m(a[1], a[0], b[1], b[0]) for a, b in zip(coordinates, coordinates[1:])
        )
    cost_s = _as_float(raw.get("cost_s"))
    if cost_s is not None and cost_s < 0.0:
        cost_s = None

    category = str(raw.get("road_type") or raw.get("highway") or "unclassified").strip().lower()
    name = raw.get("name")
    return GraphEdge(
        edge_id=edge_id,
        source=source,
        target=target,
        length_m=float(length_m),
        cost_s=cost_s,
        road_category=category or "unclassified",
        road_name=str(name) if name is not None else None,
        tunnel=bool(raw.get("tunnel", False)),
        bridge=bool(raw.get("bridge", False)),
        coordinates=coordinates,
    )


def build_route_graph(
    nodes_raw: Iterable[dict[str, object]],
    edges_raw: Iterable[object],
    *,
    version: str = "unknown",
) -> RouteGraph:
    nodes: dict[int, tuple[float, float]] = {}
    for raw in nodes_raw:
        parsed = _parse_node(raw)
        if parsed is not None:
            node_id, lat, lon = parsed
            nodes[node_id] = (lat, lon)

    edges: dict[int, GraphEdge] = {}
    adjacency_lists: dict[int, list[tuple[int, int]]] = {node_id: [] for node_id in nodes}
    for raw in edges_raw:
        edge = _parse_edge(raw, nodes)
        if edge is None or edge.edge_id in edges:
            continue
        edges[edge.edge_id] = edge
        # cost and reverse_cost are the same column, so every edge is traversable both ways.
        adjacency_lists[edge.source].append((edge.target, edge.edge_id))
        if edge.target != edge.source:
            adjacency_lists[edge.target].append((edge.source, edge.edge_id))

    grid: dict[tuple[int, int], list[int]] = {}
    for node_id, (lat, lon) in nodes.items():
        grid.setdefault(_grid_key(lat, lon), []).append(node_id)

    return RouteGraph(
        version=version,
        nodes=nodes,
        edges=edges,
        adjacency={node_id: tuple(items) for node_id, items in adjacency_lists.items()},
        grid_index={key: tuple(values) for key, values in grid.items()},
    )


def load_route_graph(path: str | Path) -> RouteGraph:
    asset = Path(path)
    try:
        payload = json.loads(asset.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise GraphEngineError(f"routing graph asset unreadable: {asset}: {e}") from e
    if not isinstance(payload, dict):
        raise GraphEngineError(f"routing graph asset malformed: {asset}")
    graph = build_route_graph(
        payload.get("nodes", []) or [],
        payload.get("edges", []) or [],
        version=str(payload.get("version", "unknown")),
    )
    log_event(
        "route_graph_loaded",
        graph_path=str(asset),
        graph_version=graph.version,
        node_count=len(graph.nodes),
        edge_count=len(graph.edges),
    )
    return graph


def _dijkstra(
    graph: RouteGraph,
    *,
    source: int,
    target: int,
    metric: CostMetric,
    predicate: EdgePredicate,
) -> list[PathRow]:
    if source not in graph.nodes or target not in graph.nodes or source == target:
        return []

    admissible: dict[int, bool] = {}

    def _usable(edge: GraphEdge) -> float | None:
        ok = admissible.get(edge.edge_id)
        if ok is None:
            ok = predicate.admits(edge.record())
            admissible[edge.edge_id] = ok
        if not ok:
            return None
        cost = edge.cost_for(metric)
        if cost is None or not math.isfinite(cost) or cost < 0.0:
            return None
        return cost

    best: dict[int, float] = {source: 0.0}
    previous: dict[int, tuple[int, int]] = {}
    settled: set[int] = set()
    counter = 0
    heap: list[tuple[float, int, int]] = [(0.0, counter, source)]
    while heap:
        cost, _, node = heapq.heappop(heap)
        if node in settled:
            continue
        settled.add(node)
        if node == target:
            break
        for neighbour, edge_id in graph.adjacency.get(node, ()):
            if neighbour in settled:
                continue
            edge_cost = _usable(graph.edges[edge_id])
            if edge_cost is None:
                continue
            new_cost = cost + edge_cost
            prev_best = best.get(neighbour)
            if prev_best is not None and new_cost >= prev_best:
                continue
            best[neighbour] = new_cost
            previous[neighbour] = (node, edge_id)
            counter += 1
            heapq.heappush(heap, (new_cost, counter, neighbour))

    if target not in settled:
        return []

    steps: list[tuple[int, int]] = []
    node = target
    while node != source:
        prev_node, edge_id = previous[node]
        steps.append((prev_node, edge_id))
        node = prev_node
    steps.reverse()

    rows: list[PathRow] = []
    agg_cost = 0.0
    for index, (from_node, edge_id) in enumerate(steps, start=1):
        edge = graph.edges[edge_id]
        step_cost = float(edge.cost_for(metric) or 0.0)
        rows.append(
            PathRow(
                sequence=index,
                path_sequence=index,
                node=from_node,
                edge=edge_id,
                cost=step_cost,
                cumulative_cost=agg_cost,
                geometry=edge.geojson(),
                road_name=edge.road_name,
                length_m=edge.length_m,
                duration_s=edge.cost_s,
                road_category=edge.road_category,
            )
        )
        agg_cost += step_cost
    rows.append(
        PathRow(
            sequence=len(steps) + 1,
            path_sequence=len(steps) + 1,
            node=target,
            edge=TERMINAL_EDGE,
            cost=0.0,
            cumulative_cost=agg_cost,
        )
    )
    return rows


def _ring_offsets(radius: int) -> tuple[tuple[int, int], ...]:
    if radius <= 0:
        return ((0, 0),)
    offsets: list[tuple[int, int]] = []
    for dx in range(-radius, radius + 1):
        offsets.append((-radius, dx))
        offsets.append((radius, dx))
    for dy in range(-radius + 1, radius):
        offsets.append((dy, -radius))
        offsets.append((dy, radius))
    return tuple(offsets)


def _ring_clearance_m(lat: float, radius: int) -> float:
    """Lower bound on the distance to any vertex outside rings 0..radius."""
    widest_lat = min(89.9, abs(lat) + (radius + 1) * GRID_BUCKET_DEG)
    return 0.98 * radius * GRID_BUCKET_DEG * METRES_PER_DEGREE * math.cos(math.radians(widest_lat))


def _nearest_vertices(graph: RouteGraph, *, lat: float, lon: float, limit: int) -> list[NearestVertex]:
    wanted = max(1, int(limit))

    def _measure(node_ids: Iterable[int]) -> list[NearestVertex]:
        out = []
        for node_id in node_ids:
            n_lat, n_lon = graph.nodes[node_id]
            out.append(
                NearestVertex(
                    vertex_id=node_id,
                    distance_m=geodesic_distance_m(lat, lon, n_lat, n_lon),
                    latitude=n_lat,
                    longitude=n_lon,
                )
            )
        return out

    def _ranked(items: list[NearestVertex]) -> list[NearestVertex]:
        items.sort(key=lambda item: (item.distance_m, item.vertex_id))
        return items[:wanted]

    if not graph.nodes:
        return []
    if not graph.grid_index:
        return _ranked(_measure(graph.nodes))

    center = _grid_key(lat, lon)
    max_radius = max(
        max(abs(key[0] - center[0]), abs(key[1] - center[1])) for key in graph.grid_index
    )
    found: list[NearestVertex] = []
    cells_seen = 0
    for radius in range(max_radius + 1):
        offsets = _ring_offsets(radius)
        cells_seen += len(offsets)
        if cells_seen > len(graph.nodes):
            # More empty cells than vertices: scan every vertex instead.
            return _ranked(_measure(graph.nodes))
        for dy, dx in offsets:
            found.extend(_measure(graph.grid_index.get((center[0] + dy, center[1] + dx), ())))
        if len(found) >= wanted:
            found = _ranked(found)
            if found[-1].distance_m <= _ring_clearance_m(lat, radius):
                return found
    return _ranked(found)


class InMemoryGraphEngine:
    """Graph engine over a RouteGraph held in process memory.

    Mirrors the row shape pgr_dijkstra returns, including the terminal row.
    """

    def __init__(self, graph: RouteGraph) -> None:
        self.graph = graph

    @classmethod
    def from_asset(cls, path: str | Path) -> "InMemoryGraphEngine":
        return cls(load_route_graph(path))

    async def nearest_vertex(self, point: GeoPoint) -> NearestVertex | None:
        ranked = await self.nearest_vertices(point, limit=1)
        return ranked[0] if ranked else None

    async def nearest_vertices(self, point: GeoPoint, *, limit: int) -> list[NearestVertex]:
        return await asyncio.to_thread(
            _nearest_vertices,
            self.graph,
            lat=point.latitude,
            lon=point.longitude,
            limit=limit,
        )

    async def shortest_path(
        self,
        source: int,
        target: int,
        *,
        metric: CostMetric,
        predicate: EdgePredicate,
    ) -> list[PathRow]:
        return await asyncio.to_thread(
            _dijkstra,
            self.graph,
            source=source,
            target=target,
            metric=metric,
            predicate=predicate,
        )

    async def ping(self) -> None:
        if not self.graph.nodes:
            raise GraphEngineError("routing graph has no vertices")

    async def aclose(self) -> None:
        return None
