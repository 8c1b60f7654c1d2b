from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, model_validator

from .composer import RouteQuery
from .route_types import (
    END_LABEL,
    START_LABEL,
    AvoidZone,
    GeoPoint,
    VehicleProfile,
    waypoint_label,
)
from .settings import settings


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lon: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lon", "longitude"))


class AvoidZoneIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lon: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lon", "longitude"))
    radius_m: float | None = Field(
        default=None,
        gt=0,
        le=100_000,
        validation_alias=AliasChoices("radius_m", "radius", "radiusMeters"),
    )

    def to_zone(self) -> AvoidZone:
        radius = self.radius_m if self.radius_m is not None else settings.default_avoid_radius_m
        return AvoidZone(center_latitude=self.lat, center_longitude=self.lon, radius_meters=radius)


class VehicleIn(BaseModel):
    width_m: float | None = Field(default=None, gt=0, le=10)
    height_m: float | None = Field(default=None, gt=0, le=10)

    def to_profile(self) -> VehicleProfile:
        return VehicleProfile(width_meters=self.width_m, height_meters=self.height_m)


class RouteSearchRequest(BaseModel):
    """Ordered points (start, waypoints..., end) plus optional constraints."""

    points: list[LatLng] = Field(..., min_length=2)
    avoid_motorways: bool = False
    vehicle: VehicleIn | None = None
    avoid_zones: list[AvoidZoneIn] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_shape(cls, value: object) -> object:
        """Map the flat camelCase body used by the map client onto the typed shape."""
        if not isinstance(value, dict) or "points" in value:
            return value
        legacy_keys = ("startLat", "startLon", "endLat", "endLon")
        if not any(key in value for key in legacy_keys):
            return value
        data = dict(value)
        start = {"lat": data.pop("startLat", None), "lon": data.pop("startLon", None)}
        end = {"lat": data.pop("endLat", None), "lon": data.pop("endLon", None)}
        waypoints = data.pop("waypoints", None) or []
        data["points"] = [start, *waypoints, end]
        if "avoidMotorways" in data:
            data["avoid_motorways"] = bool(data.pop("avoidMotorways"))
        width = data.pop("vehicleWidth", None)
        height = data.pop("vehicleHeight", None)
        if width is not None or height is not None:
            data["vehicle"] = {"width_m": width, "height_m": height}
        if "avoidAreas" in data:
            data["avoid_zones"] = data.pop("avoidAreas") or []
        return data

    @model_validator(mode="after")
    def within_limits(self) -> "RouteSearchRequest":
        if len(self.points) - 2 > settings.max_waypoints:
            raise ValueError(f"at most {settings.max_waypoints} waypoints are supported")
        if len(self.avoid_zones) > settings.max_avoid_zones:
            raise ValueError(f"at most {settings.max_avoid_zones} avoid zones are supported")
        return self

    def labelled_points(self) -> tuple[GeoPoint, ...]:
        last = len(self.points) - 1
        out: list[GeoPoint] = []
        for index, point in enumerate(self.points):
            if index == 0:
                label = START_LABEL
            elif index == last:
                label = END_LABEL
            else:
                label = waypoint_label(index - 1)
            out.append(GeoPoint(latitude=point.lat, longitude=point.lon, label=label))
        return tuple(out)

    def to_query(self) -> RouteQuery:
        return RouteQuery(
            points=self.labelled_points(),
            avoid_motorways=self.avoid_motorways,
            vehicle=self.vehicle.to_profile() if self.vehicle is not None else None,
            avoid_zones=tuple(zone.to_zone() for zone in self.avoid_zones),
        )


class PointOut(BaseModel):
    label: str
    lat: float
    lon: float
    node_id: int | None = None
    snap_distance_m: float | None = None


class SegmentOut(BaseModel):
    sequence: int
    path_sequence: int
    node: int
    edge: int
    cost: float
    cumulative_cost: float
    duration_seconds: float | None = None
    cost_minutes: float | None = None
    geometry: dict[str, Any] | None = None
    name: str | None = None
    length_m: float
    road_type: str | None = None
    leg_index: int


class LegOut(BaseModel):
    leg_index: int
    from_point: PointOut
    to_point: PointOut
    distance_m: float
    duration_s: float
    minutes: float
    cost: float
    segment_count: int


class RouteVariantOut(BaseModel):
    metric: Literal["distance", "time"]
    label: Literal["shortest", "fastest"]
    start_node: int | None
    end_node: int | None
    waypoints: list[PointOut] = Field(default_factory=list)
    total_cost: float
    total_distance_m: float
    total_duration_s: float
    total_minutes: float
    legs: list[LegOut]
    segments: list[SegmentOut]


class AvoidZoneOut(BaseModel):
    lat: float
    lon: float
    radius_m: float
    geometry: dict[str, Any]


class ConstraintsOut(BaseModel):
    avoid_motorways: bool
    vehicle_width_m: float | None = None
    vehicle_height_m: float | None = None
    avoid_zone_count: int
    clauses: list[dict[str, Any]] = Field(default_factory=list)


class RouteSearchResponse(BaseModel):
    distance_variant: RouteVariantOut | None = None
    time_variant: RouteVariantOut | None = None
    routes: list[RouteVariantOut] = Field(default_factory=list)
    waypoints: list[PointOut] = Field(default_factory=list)
    avoid_zones: list[AvoidZoneOut] = Field(default_factory=list)
    constraints: ConstraintsOut
    warnings: list[str] = Field(default_factory=list)


class NearestNodeOut(BaseModel):
    id: int
    lat: float | None = None
    lon: float | None = None
    distance_m: float


class NearestNodeResponse(BaseModel):
    nodes: list[NearestNodeOut]


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    database: Literal["connected", "disconnected"]
    backend: str
