from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Sequence

from .constraints import EdgePredicate, compile_constraints
from .errors import GraphEngineError, GraphEngineTimeout, InvalidInput, NoRouteFound, UpstreamFailure
from .graph_engine import GraphEngine
from .logging_utils import log_event
from .pathfinder import LegSearch, find_leg_path
from .resolver import resolve_points
from .route_types import (
    AppliedConstraints,
    AvoidZone,
    CostMetric,
    GeoPoint,
    Leg,
    ResolvedVertex,
    RouteResult,
    RouteVariant,
    VehicleProfile,
)
from .settings import settings
from .stitcher import stitch_route


@dataclass(frozen=True)
class RouteQuery:
    points: tuple[GeoPoint, ...]
    avoid_motorways: bool = False
    vehicle: VehicleProfile | None = None
    avoid_zones: tuple[AvoidZone, ...] = ()


@dataclass(frozen=True)
class _MetricOutcome:
    metric: CostMetric
    variant: RouteVariant | None
    warnings: list[str] = field(default_factory=list)
    upstream_error: str | None = None
    timed_out: bool = False


def _leg_from_search(search: LegSearch, vertices: Sequence[ResolvedVertex]) -> Leg | None:
    if not search.reachable:
        return None
    origin = vertices[search.leg_index]
    destination = vertices[search.leg_index + 1]
    return Leg(
        from_point=origin.point,
        to_point=destination.point,
        segments=search.segments,
        from_vertex_id=origin.vertex_id,
        to_vertex_id=destination.vertex_id,
    )


async def _run_metric_pipeline(
    engine: GraphEngine,
    *,
    metric: CostMetric,
    vertices: Sequence[ResolvedVertex],
    predicate: EdgePredicate,
    timeout_s: float,
) -> _MetricOutcome:
    # Legs only depend on already-resolved vertices, so they fan out together.
    results = await asyncio.gather(
        *[
            find_leg_path(
                engine,
                leg_index=index,
                from_vertex=int(vertices[index].vertex_id),  # type: ignore[arg-type]
                to_vertex=int(vertices[index + 1].vertex_id),  # type: ignore[arg-type]
                metric=metric,
                predicate=predicate,
                timeout_s=timeout_s,
            )
            for index in range(len(vertices) - 1)
        ],
        return_exceptions=True,
    )

    warnings: list[str] = []
    upstream_error: str | None = None
    timed_out = False
    legs: list[Leg | None] = []
    for index, result in enumerate(results):
        if isinstance(result, GraphEngineError):
            upstream_error = upstream_error or str(result)
            warnings.append(f"{metric.value}: leg {index} failed: graph engine error")
            legs.append(None)
            continue
        if isinstance(result, BaseException):
            raise result
        if result.status == "timeout":
            timed_out = True
            warnings.append(f"{metric.value}: leg {index} timed out")
        elif result.status == "same_vertex":
            warnings.append(f"{metric.value}: leg {index} starts and ends at vertex {result.from_vertex}")
        elif result.status == "no_path":
            warnings.append(f"{metric.value}: leg {index} unreachable")
        legs.append(_leg_from_search(result, vertices))

    return _MetricOutcome(
        metric=metric,
        variant=stitch_route(metric, legs),
        warnings=warnings,
        upstream_error=upstream_error,
        timed_out=timed_out,
    )


async def compose_routes(
    engine: GraphEngine,
    query: RouteQuery,
    *,
    timeout_s: float | None = None,
    snap_max_distance_m: float | None = None,
) -> RouteResult:
    """Distance-optimal and time-optimal routes through every point in order.

    Raises InvalidInput for fewer than two points, PointsNotResolved when any
    point has no nearby vertex (before any path search), NoRouteFound when
    neither metric yields a route or a lookup times out (retryable), and
    UpstreamFailure when the graph engine errors and no route could be
    produced.
    """
    if len(query.points) < 2:
        raise InvalidInput("A route needs at least a start and an end point")

    call_timeout = settings.engine_call_timeout_s if timeout_s is None else timeout_s
    snap_limit = settings.snap_max_distance_m if snap_max_distance_m is None else snap_max_distance_m

    try:
        vertices = await resolve_points(
            engine,
            query.points,
            timeout_s=call_timeout,
            max_distance_m=snap_limit,
        )
    except GraphEngineTimeout as e:
        log_event("point_resolution_timeout", timeout_s=call_timeout, error=str(e))
        raise NoRouteFound(
            "Road network lookup timed out",
            details={"stage": "resolve_points", "cause": "graph_engine_timeout", "retryable": True},
        ) from e
    except GraphEngineError as e:
        log_event("graph_engine_error", stage="resolve_points", error=str(e))
        raise UpstreamFailure(
            "Road network lookup failed",
            details={"stage": "resolve_points", "cause": "graph_engine_unavailable"},
        ) from e

    predicate = compile_constraints(
        avoid_motorways=query.avoid_motorways,
        vehicle=query.vehicle,
        avoid_zones=query.avoid_zones,
    )

    distance_outcome, time_outcome = await asyncio.gather(
        _run_metric_pipeline(
            engine,
            metric=CostMetric.DISTANCE,
            vertices=vertices,
            predicate=predicate.for_metric(CostMetric.DISTANCE),
            timeout_s=call_timeout,
        ),
        _run_metric_pipeline(
            engine,
            metric=CostMetric.TIME,
            vertices=vertices,
            predicate=predicate.for_metric(CostMetric.TIME),
            timeout_s=call_timeout,
        ),
    )

    warnings = [*distance_outcome.warnings, *time_outcome.warnings]
    if distance_outcome.variant is None and time_outcome.variant is None:
        upstream_error = distance_outcome.upstream_error or time_outcome.upstream_error
        if upstream_error is not None:
            log_event("graph_engine_error", stage="shortest_path", error=upstream_error)
            raise UpstreamFailure(
                "Road network path search failed",
                details={"stage": "shortest_path", "cause": "graph_engine_unavailable", "warnings": warnings},
            )
        retryable = distance_outcome.timed_out or time_outcome.timed_out
        raise NoRouteFound(
            "No route found between the requested points",
            details={
                "stage": "shortest_path",
                "cause": "graph_engine_timeout" if retryable else "leg_unreachable",
                "warnings": warnings,
                "retryable": retryable,
            },
        )

    return RouteResult(
        distance_variant=distance_outcome.variant,
        time_variant=time_outcome.variant,
        points=tuple(vertices),
        constraints=AppliedConstraints(
            avoid_motorways=query.avoid_motorways,
            vehicle=query.vehicle,
            avoid_zones=tuple(query.avoid_zones),
            clauses=tuple(predicate.describe()),
        ),
        warnings=tuple(warnings),
    )
