from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "invalid_input",
        "points_not_resolved",
        "no_route_found",
        "upstream_failure",
        "graph_engine_timeout",
        "graph_engine_unavailable",
        "leg_unreachable",
    }
)


def normalize_reason_code(reason_code: str, *, default: str = "upstream_failure") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default


@dataclass
class RoutingError(Exception):
    """Base for every failure the composer surfaces to its caller."""

    message: str
    details: dict[str, Any] = field(default_factory=dict)

    status_code: ClassVar[int] = 500
    reason_code: ClassVar[str] = "upstream_failure"

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "reason_code": self.reason_code,
                "message": self.message,
                "details": dict(self.details),
            }
        }


@dataclass
class InvalidInput(RoutingError):
    status_code: ClassVar[int] = 400
    reason_code: ClassVar[str] = "invalid_input"


@dataclass
class PointsNotResolved(RoutingError):
    status_code: ClassVar[int] = 404
    reason_code: ClassVar[str] = "points_not_resolved"

    @classmethod
    def for_labels(cls, labels: list[str]) -> "PointsNotResolved":
        return cls(
            message="No road network vertex found near: " + ", ".join(labels),
            details={"missing_points": list(labels)},
        )

    @property
    def missing_points(self) -> list[str]:
        return list(self.details.get("missing_points", []))


@dataclass
class NoRouteFound(RoutingError):
    status_code: ClassVar[int] = 404
    reason_code: ClassVar[str] = "no_route_found"


@dataclass
class UpstreamFailure(RoutingError):
    status_code: ClassVar[int] = 500
    reason_code: ClassVar[str] = "upstream_failure"


class GraphEngineError(RuntimeError):
    """Raised by graph engine backends when the store is unreachable or errors."""


class GraphEngineTimeout(GraphEngineError):
    """A graph engine call exceeded its timeout. Safe to retry."""
