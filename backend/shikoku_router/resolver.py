from __future__ import annotations

import asyncio
from typing import Sequence

from .errors import GraphEngineTimeout, PointsNotResolved
from .graph_engine import GraphEngine
from .route_types import GeoPoint, ResolvedVertex


async def resolve_point(
    engine: GraphEngine,
    point: GeoPoint,
    *,
    timeout_s: float,
    max_distance_m: float | None = None,
) -> ResolvedVertex:
    # Nearest-vertex lookup ignores the edge predicate.
    try:
        nearest = await asyncio.wait_for(engine.nearest_vertex(point), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise GraphEngineTimeout(f"nearest vertex lookup for {point.label} timed out after {timeout_s}s") from e

    if nearest is None:
        return ResolvedVertex(point=point, vertex_id=None, found=False)
    if max_distance_m is not None and nearest.distance_m > max_distance_m:
        return ResolvedVertex(point=point, vertex_id=None, found=False, distance_m=nearest.distance_m)
    return ResolvedVertex(
        point=point,
        vertex_id=int(nearest.vertex_id),
        found=True,
        distance_m=float(nearest.distance_m),
    )


async def resolve_points(
    engine: GraphEngine,
    points: Sequence[GeoPoint],
    *,
    timeout_s: float,
    max_distance_m: float | None = None,
) -> list[ResolvedVertex]:
    """Resolve every point concurrently; results keep input order.

    Raises PointsNotResolved naming every point without a nearby vertex.
    """
    resolved = await asyncio.gather(
        *[
            resolve_point(engine, point, timeout_s=timeout_s, max_distance_m=max_distance_m)
            for point in points
        ]
    )
    missing = [item.point.label for item in resolved if not item.found]
    if missing:
        raise PointsNotResolved.for_labels(missing)
    return list(resolved)
