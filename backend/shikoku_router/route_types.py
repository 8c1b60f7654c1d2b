from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CostMetric(str, Enum):
    DISTANCE = "distance"
    TIME = "time"


START_LABEL = "start"
END_LABEL = "end"


def waypoint_label(index: int) -> str:
    return f"waypoint-{index}"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    label: str


@dataclass(frozen=True)
class ResolvedVertex:
    point: GeoPoint
    vertex_id: int | None
    found: bool
    distance_m: float | None = None


@dataclass(frozen=True)
class AvoidZone:
    center_latitude: float
    center_longitude: float
    radius_meters: float = 500.0


@dataclass(frozen=True)
class VehicleProfile:
    width_meters: float | None = None
    height_meters: float | None = None


@dataclass(frozen=True)
class PathSegment:
    sequence: int
    path_sequence: int
    node: int
    edge: int
    step_cost: float
    cumulative_cost: float
    geometry: dict[str, Any] | None = None
    road_name: str | None = None
    length_meters: float = 0.0
    road_category: str | None = None
    duration_seconds: float | None = None
    leg_index: int = 0


@dataclass(frozen=True)
class Leg:
    from_point: GeoPoint
    to_point: GeoPoint
    segments: tuple[PathSegment, ...]
    from_vertex_id: int | None = None
    to_vertex_id: int | None = None

    @property
    def total_cost(self) -> float:
        if not self.segments:
            return 0.0
        last = self.segments[-1]
        return float(last.cumulative_cost) + float(last.step_cost)

    @property
    def distance_meters(self) -> float:
        return sum(float(segment.length_meters or 0.0) for segment in self.segments)

    @property
    def duration_seconds(self) -> float:
        return sum(float(segment.duration_seconds or 0.0) for segment in self.segments)


@dataclass(frozen=True)
class RouteVariant:
    metric: CostMetric
    total_distance_meters: float
    total_duration_seconds: float
    total_cost: float
    legs: tuple[Leg, ...]
    segments: tuple[PathSegment, ...]


@dataclass(frozen=True)
class AppliedConstraints:
    avoid_motorways: bool = False
    vehicle: VehicleProfile | None = None
    avoid_zones: tuple[AvoidZone, ...] = ()
    clauses: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class RouteResult:
    distance_variant: RouteVariant | None
    time_variant: RouteVariant | None
    points: tuple[ResolvedVertex, ...]
    constraints: AppliedConstraints
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class EdgeRecord:
    """Attributes of one network edge that admissibility is decided on."""

    edge_id: int
    road_category: str | None = None
    length_m: float | None = None
    cost_s: float | None = None
    tunnel: bool = False
    bridge: bool = False
    geometry: dict[str, Any] | None = None
    coordinates: tuple[tuple[float, float], ...] = ()

    @property
    def tags(self) -> frozenset[str]:
        tags: set[str] = set()
        if self.road_category:
            tags.add(self.road_category.strip().lower())
        if self.tunnel:
            tags.add("tunnel")
        if self.bridge:
            tags.add("bridge")
        return frozenset(tags)
