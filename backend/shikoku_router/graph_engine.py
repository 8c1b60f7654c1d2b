from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from .constraints import EdgePredicate
from .route_types import CostMetric, GeoPoint

# pgRouting marks the row for the path's final vertex with edge -1.
TERMINAL_EDGE = -1


@dataclass(frozen=True)
class NearestVertex:
    vertex_id: int
    distance_m: float
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class PathRow:
    """One row of a shortest-path answer, enriched with the traversed edge's attributes."""

    sequence: int
    path_sequence: int
    node: int
    edge: int | None
    cost: float
    cumulative_cost: float
    geometry: dict[str, Any] | None = None
    road_name: str | None = None
    length_m: float | None = None
    duration_s: float | None = None
    road_category: str | None = None

    @property
    def traverses_edge(self) -> bool:
        return self.edge is not None and self.edge != TERMINAL_EDGE


class GraphEngine(Protocol):
    async def nearest_vertex(self, point: GeoPoint) -> NearestVertex | None: ...

    async def nearest_vertices(self, point: GeoPoint, *, limit: int) -> list[NearestVertex]: ...

    async def shortest_path(
        self,
        source: int,
        target: int,
        *,
        metric: CostMetric,
        predicate: EdgePredicate,
    ) -> list[PathRow]: ...

    async def ping(self) -> None: ...

    async def aclose(self) -> None: ...
