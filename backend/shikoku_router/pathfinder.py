from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Literal

from .constraints import EdgePredicate
from .errors import GraphEngineTimeout
from .graph_engine import GraphEngine, PathRow
from .logging_utils import log_event
from .route_types import CostMetric, PathSegment

LegStatus = Literal["found", "same_vertex", "no_path", "timeout"]


@dataclass(frozen=True)
class LegSearch:
    leg_index: int
    from_vertex: int
    to_vertex: int
    metric: CostMetric
    status: LegStatus
    segments: tuple[PathSegment, ...] = ()

    @property
    def reachable(self) -> bool:
        return self.status == "found" and bool(self.segments)


def _segment_from_row(row: PathRow, *, leg_index: int) -> PathSegment:
    return PathSegment(
        sequence=int(row.sequence),
        path_sequence=int(row.path_sequence),
        node=int(row.node),
        edge=int(row.edge),  # type: ignore[arg-type]
        step_cost=float(row.cost),
        cumulative_cost=float(row.cumulative_cost),
        geometry=row.geometry,
        road_name=row.road_name,
        length_meters=float(row.length_m or 0.0),
        road_category=row.road_category,
        duration_seconds=float(row.duration_s) if row.duration_s is not None else None,
        leg_index=leg_index,
    )


async def find_leg_path(
    engine: GraphEngine,
    *,
    leg_index: int,
    from_vertex: int,
    to_vertex: int,
    metric: CostMetric,
    predicate: EdgePredicate,
    timeout_s: float,
) -> LegSearch:
    """Minimum-cost path for one leg and one metric.

    An empty answer is a normal "no path" outcome. A timeout is reported the
    same way with its own status so callers can flag the result as retryable.
    Other graph engine errors propagate.

    Endpoints on the same vertex have no edge to traverse, so the leg has no
    path and the engine is not asked.
    """
    if from_vertex == to_vertex:
        return LegSearch(
            leg_index=leg_index,
            from_vertex=from_vertex,
            to_vertex=to_vertex,
            metric=metric,
            status="same_vertex",
        )

    try:
        rows = await asyncio.wait_for(
            engine.shortest_path(from_vertex, to_vertex, metric=metric, predicate=predicate),
            timeout=timeout_s,
        )
    except (asyncio.TimeoutError, GraphEngineTimeout):
        log_event(
            "leg_search_timeout",
            leg_index=leg_index,
            metric=metric.value,
            from_vertex=from_vertex,
            to_vertex=to_vertex,
            timeout_s=timeout_s,
        )
        return LegSearch(
            leg_index=leg_index,
            from_vertex=from_vertex,
            to_vertex=to_vertex,
            metric=metric,
            status="timeout",
        )

    segments = tuple(_segment_from_row(row, leg_index=leg_index) for row in rows if row.traverses_edge)
    return LegSearch(
        leg_index=leg_index,
        from_vertex=from_vertex,
        to_vertex=to_vertex,
        metric=metric,
        status="found" if segments else "no_path",
        segments=segments,
    )
