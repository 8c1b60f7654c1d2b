from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .composer import compose_routes
from .errors import GraphEngineError, InvalidInput, RoutingError, UpstreamFailure, normalize_reason_code
from .geodesy import geodesic_buffer_geojson
from .graph_engine import GraphEngine
from .logging_utils import log_event
from .models import (
    AvoidZoneOut,
    ConstraintsOut,
    HealthResponse,
    LatLng,
    LegOut,
    NearestNodeOut,
    NearestNodeResponse,
    PointOut,
    RouteSearchRequest,
    RouteSearchResponse,
    RouteVariantOut,
    SegmentOut,
)
from .pgrouting import PgRoutingEngine
from .route_types import CostMetric, GeoPoint, Leg, ResolvedVertex, RouteResult, RouteVariant
from .routing_graph import InMemoryGraphEngine
from .settings import Settings, settings


def build_graph_engine(config: Settings) -> GraphEngine:
    if config.graph_backend == "memory":
        return InMemoryGraphEngine.from_asset(config.route_graph_asset_path)
    return PgRoutingEngine.from_settings(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One pooled handle per process, released deterministically on shutdown.
    app.state.graph_engine = build_graph_engine(settings)
    yield
    await app.state.graph_engine.aclose()


app = FastAPI(title="Shikoku Route Composer", version="0.3.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def graph_engine(request: Request) -> GraphEngine:
    engine: GraphEngine | None = getattr(request.app.state, "graph_engine", None)  # type: ignore[attr-defined]
    if engine is None:
        raise HTTPException(status_code=503, detail="graph engine not initialised")
    return engine


GraphEngineDep = Annotated[GraphEngine, Depends(graph_engine)]


@app.exception_handler(RoutingError)
async def routing_error_handler(_: Request, exc: RoutingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    err = InvalidInput(
        "Request body is invalid",
        details={
            "errors": [
                {"loc": [str(part) for part in item.get("loc", ())], "msg": str(item.get("msg", ""))}
                for item in exc.errors()
            ]
        },
    )
    return JSONResponse(status_code=err.status_code, content=err.to_payload())


def _point_out(vertex: ResolvedVertex) -> PointOut:
    return PointOut(
        label=vertex.point.label,
        lat=vertex.point.latitude,
        lon=vertex.point.longitude,
        node_id=vertex.vertex_id,
        snap_distance_m=round(vertex.distance_m, 2) if vertex.distance_m is not None else None,
    )


def _leg_out(index: int, leg: Leg, vertices: list[ResolvedVertex]) -> LegOut:
    duration_s = leg.duration_seconds
    return LegOut(
        leg_index=index,
        from_point=_point_out(vertices[index]),
        to_point=_point_out(vertices[index + 1]),
        distance_m=round(leg.distance_meters, 3),
        duration_s=round(duration_s, 2),
        minutes=round(duration_s / 60.0, 3),
        cost=round(leg.total_cost, 6),
        segment_count=len(leg.segments),
    )


def _variant_out(variant: RouteVariant, vertices: list[ResolvedVertex]) -> RouteVariantOut:
    label = "shortest" if variant.metric is CostMetric.DISTANCE else "fastest"
    return RouteVariantOut(
        metric=variant.metric.value,
        label=label,
        start_node=vertices[0].vertex_id,
        end_node=vertices[-1].vertex_id,
        waypoints=[_point_out(vertex) for vertex in vertices[1:-1]],
        total_cost=round(variant.total_cost, 6),
        total_distance_m=round(variant.total_distance_meters, 3),
        total_duration_s=round(variant.total_duration_seconds, 2),
        total_minutes=round(variant.total_duration_seconds / 60.0, 3),
        legs=[_leg_out(index, leg, vertices) for index, leg in enumerate(variant.legs)],
        segments=[
            SegmentOut(
                sequence=segment.sequence,
                path_sequence=segment.path_sequence,
                node=segment.node,
                edge=segment.edge,
                cost=segment.step_cost,
                cumulative_cost=segment.cumulative_cost,
                duration_seconds=segment.duration_seconds,
                cost_minutes=(segment.duration_seconds / 60.0) if segment.duration_seconds is not None else None,
                geometry=segment.geometry,
                name=segment.road_name,
                length_m=segment.length_meters,
                road_type=segment.road_category,
                leg_index=segment.leg_index,
            )
            for segment in variant.segments
        ],
    )


def route_search_response(result: RouteResult) -> RouteSearchResponse:
    vertices = list(result.points)
    distance_out = _variant_out(result.distance_variant, vertices) if result.distance_variant else None
    time_out = _variant_out(result.time_variant, vertices) if result.time_variant else None
    vehicle = result.constraints.vehicle
    return RouteSearchResponse(
        distance_variant=distance_out,
        time_variant=time_out,
        routes=[variant for variant in (distance_out, time_out) if variant is not None],
        waypoints=[_point_out(vertex) for vertex in vertices[1:-1]],
        avoid_zones=[
            AvoidZoneOut(
                lat=zone.center_latitude,
                lon=zone.center_longitude,
                radius_m=zone.radius_meters,
                geometry=geodesic_buffer_geojson(zone),
            )
            for zone in result.constraints.avoid_zones
        ],
        constraints=ConstraintsOut(
            avoid_motorways=result.constraints.avoid_motorways,
            vehicle_width_m=vehicle.width_meters if vehicle else None,
            vehicle_height_m=vehicle.height_meters if vehicle else None,
            avoid_zone_count=len(result.constraints.avoid_zones),
            clauses=list(result.constraints.clauses),
        ),
        warnings=list(result.warnings),
    )


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Backend is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/api/routing", response_model=HealthResponse)
@app.get("/health", response_model=HealthResponse)
async def health(engine: GraphEngineDep) -> JSONResponse:
    try:
        await engine.ping()
    except GraphEngineError as e:
        log_event("health_check_failed", error=str(e))
        body = HealthResponse(status="error", database="disconnected", backend=settings.graph_backend)
        return JSONResponse(status_code=500, content=body.model_dump())
    body = HealthResponse(status="ok", database="connected", backend=settings.graph_backend)
    return JSONResponse(status_code=200, content=body.model_dump())


@app.post("/api/routing/search", response_model=RouteSearchResponse)
async def search_route(req: RouteSearchRequest, engine: GraphEngineDep) -> RouteSearchResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    query = req.to_query()

    try:
        result = await compose_routes(engine, query)
    except RoutingError as e:
        log_event(
            "route_search_failed",
            request_id=request_id,
            reason_code=normalize_reason_code(e.reason_code),
            point_count=len(query.points),
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )
        raise

    response = route_search_response(result)
    log_event(
        "route_search_request",
        request_id=request_id,
        point_count=len(query.points),
        avoid_motorways=query.avoid_motorways,
        vehicle=response.constraints.model_dump(include={"vehicle_width_m", "vehicle_height_m"}),
        avoid_zone_count=len(query.avoid_zones),
        distance_ok=result.distance_variant is not None,
        time_ok=result.time_variant is not None,
        warning_count=len(result.warnings),
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return response


@app.post("/api/routing/nearest-node", response_model=NearestNodeResponse)
async def nearest_nodes(req: LatLng, engine: GraphEngineDep) -> NearestNodeResponse:
    point = GeoPoint(latitude=req.lat, longitude=req.lon, label="query")
    try:
        rows = await engine.nearest_vertices(point, limit=settings.nearest_nodes_limit)
    except GraphEngineError as e:
        log_event("graph_engine_error", stage="nearest_node", error=str(e))
        raise UpstreamFailure("Nearest node lookup failed", details={"stage": "nearest_node"}) from e

    log_event("nearest_node_request", lat=req.lat, lon=req.lon, node_count=len(rows))
    return NearestNodeResponse(
        nodes=[
            NearestNodeOut(id=row.vertex_id, lat=row.latitude, lon=row.longitude, distance_m=round(row.distance_m, 2))
            for row in rows
        ]
    )
