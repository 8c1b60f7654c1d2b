from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from .route_types import CostMetric, Leg, PathSegment, RouteVariant


def stitch_route(metric: CostMetric, legs: Sequence[Leg | None]) -> RouteVariant | None:
    """Concatenate per-leg paths into one route for a single metric.

    Each leg's segments carry sequence numbers and cumulative cost local to
    that leg. Stitched segments are shifted by the running segment count and
    by the total cost of every earlier leg, so cumulative cost never resets at
    a waypoint. A leg that is None or has no segments is unreachable and
    leaves the route undefined.
    """
    present = [leg for leg in legs if leg is not None and leg.segments]
    if not present or len(present) != len(legs):
        return None

    stitched: list[PathSegment] = []
    cost_offset = 0.0
    sequence_offset = 0
    for leg in present:
        for segment in leg.segments:
            stitched.append(
                replace(
                    segment,
                    sequence=sequence_offset + segment.sequence,
                    cumulative_cost=cost_offset + segment.cumulative_cost,
                )
            )
        cost_offset += leg.total_cost
        sequence_offset += len(leg.segments)

    # Totals come from edge attributes, not from the engine's cost column,
    # since cost is in the unit of whichever metric was searched.
    total_distance = sum(float(segment.length_meters or 0.0) for segment in stitched)
    total_duration = sum(float(segment.duration_seconds or 0.0) for segment in stitched)

    return RouteVariant(
        metric=metric,
        total_distance_meters=total_distance,
        total_duration_seconds=total_duration,
        total_cost=cost_offset,
        legs=tuple(present),
        segments=tuple(stitched),
    )
