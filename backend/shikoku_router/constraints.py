from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence, Union

from .geodesy import edge_geometry, geometry_within_zone
from .route_types import AvoidZone, CostMetric, EdgeRecord, VehicleProfile
from .settings import settings

MOTORWAY_CATEGORIES: frozenset[str] = frozenset({"motorway", "motorway_link"})
# The network store carries no width attribute; narrow roads are approximated by category.
NARROW_ROAD_CATEGORIES: frozenset[str] = frozenset({"service", "residential", "living_street", "track"})
# Likewise no clearance attribute; tunnels stand in for height-restricted roads.
LOW_CLEARANCE_CATEGORIES: frozenset[str] = frozenset({"tunnel"})


@dataclass(frozen=True)
class ExcludeCategories:
    reason: str
    categories: frozenset[str]

    def admits(self, edge: EdgeRecord) -> bool:
        return not (edge.tags & self.categories)

    def describe(self) -> dict[str, Any]:
        return {"clause": "exclude_categories", "reason": self.reason, "categories": sorted(self.categories)}


@dataclass(frozen=True)
class ExcludeAvoidZone:
    zone: AvoidZone

    def admits(self, edge: EdgeRecord) -> bool:
        geom = edge_geometry(edge.geometry, edge.coordinates)
        return not geometry_within_zone(geom, self.zone)

    def describe(self) -> dict[str, Any]:
        return {
            "clause": "exclude_avoid_zone",
            "lat": self.zone.center_latitude,
            "lon": self.zone.center_longitude,
            "radius_m": self.zone.radius_meters,
        }


@dataclass(frozen=True)
class RequireTravelTime:
    def admits(self, edge: EdgeRecord) -> bool:
        return edge.cost_s is not None and math.isfinite(float(edge.cost_s)) and float(edge.cost_s) >= 0.0

    def describe(self) -> dict[str, Any]:
        return {"clause": "require_travel_time"}


EdgeClause = Union[ExcludeCategories, ExcludeAvoidZone, RequireTravelTime]


@dataclass(frozen=True)
class EdgePredicate:
    """Conjunction of exclusion clauses over edge attributes.

    Clauses are only ever added, so every derived predicate admits a subset of
    the edges its parent admits.
    """

    clauses: tuple[EdgeClause, ...] = field(default_factory=tuple)

    def admits(self, edge: EdgeRecord) -> bool:
        return all(clause.admits(edge) for clause in self.clauses)

    def conjoin(self, *clauses: EdgeClause) -> "EdgePredicate":
        merged = list(self.clauses)
        for clause in clauses:
            if clause not in merged:
                merged.append(clause)
        return EdgePredicate(clauses=tuple(merged))

    def for_metric(self, metric: CostMetric) -> "EdgePredicate":
        if metric is CostMetric.TIME:
            return self.conjoin(RequireTravelTime())
        return self

    @property
    def is_unconstrained(self) -> bool:
        return not self.clauses

    def describe(self) -> list[dict[str, Any]]:
        return [clause.describe() for clause in self.clauses]


def compile_constraints(
    *,
    avoid_motorways: bool,
    vehicle: VehicleProfile | None,
    avoid_zones: Sequence[AvoidZone],
    wide_vehicle_threshold_m: float | None = None,
    tall_vehicle_threshold_m: float | None = None,
) -> EdgePredicate:
    wide_threshold = (
        settings.wide_vehicle_threshold_m if wide_vehicle_threshold_m is None else wide_vehicle_threshold_m
    )
    tall_threshold = (
        settings.tall_vehicle_threshold_m if tall_vehicle_threshold_m is None else tall_vehicle_threshold_m
    )

    clauses: list[EdgeClause] = []
    if avoid_motorways:
        clauses.append(ExcludeCategories(reason="avoid_motorways", categories=MOTORWAY_CATEGORIES))
    if vehicle is not None:
        if vehicle.width_meters is not None and vehicle.width_meters > wide_threshold:
            clauses.append(ExcludeCategories(reason="vehicle_width", categories=NARROW_ROAD_CATEGORIES))
        if vehicle.height_meters is not None and vehicle.height_meters > tall_threshold:
            clauses.append(ExcludeCategories(reason="vehicle_height", categories=LOW_CLEARANCE_CATEGORIES))
    for zone in avoid_zones:
        clauses.append(ExcludeAvoidZone(zone=zone))
    return EdgePredicate().conjoin(*clauses)
