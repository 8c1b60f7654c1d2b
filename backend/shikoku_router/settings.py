from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_database_url() -> str:
    # In docker-compose, PostGIS is reachable by service name "db".
    host = "db" if _running_in_docker() else "localhost"
    return f"postgresql+asyncpg://user:password@{host}:5432/shikoku_routing"


def _default_route_graph_asset_path() -> str:
    return str(Path(__file__).resolve().parents[1] / "out" / "model_assets" / "routing_graph.json")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping config out of code for easy extension."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" (docker compose) and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(default_factory=_default_database_url, alias="DATABASE_URL")
    db_pool_size: int = Field(default=5, ge=1, le=100, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, ge=0, le=100, alias="DB_MAX_OVERFLOW")
    db_pool_timeout_s: float = Field(default=30.0, gt=0.0, alias="DB_POOL_TIMEOUT_S")

    graph_backend: Literal["pgrouting", "memory"] = Field(default="pgrouting", alias="GRAPH_BACKEND")
    route_graph_asset_path: str = Field(
        default_factory=_default_route_graph_asset_path,
        alias="ROUTE_GRAPH_ASSET_PATH",
    )

    # Per graph-engine call. A timed-out leg is reported as "no route" for its metric.
    engine_call_timeout_s: float = Field(default=20.0, gt=0.0, le=300.0, alias="ENGINE_CALL_TIMEOUT_S")
    snap_max_distance_m: float | None = Field(default=None, gt=0.0, alias="SNAP_MAX_DISTANCE_M")
    nearest_nodes_limit: int = Field(default=5, ge=1, le=50, alias="NEAREST_NODES_LIMIT")

    default_avoid_radius_m: float = Field(default=500.0, gt=0.0, alias="DEFAULT_AVOID_RADIUS_M")
    wide_vehicle_threshold_m: float = Field(default=2.5, gt=0.0, alias="WIDE_VEHICLE_THRESHOLD_M")
    tall_vehicle_threshold_m: float = Field(default=3.5, gt=0.0, alias="TALL_VEHICLE_THRESHOLD_M")
    max_waypoints: int = Field(default=25, ge=0, le=200, alias="MAX_WAYPOINTS")
    max_avoid_zones: int = Field(default=20, ge=0, le=200, alias="MAX_AVOID_ZONES")

    out_dir: str = Field(default="/app/out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_allow_origins: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")

    @model_validator(mode="after")
    def _normalise(self) -> "Settings":
        self.log_level = str(self.log_level or "INFO").strip().upper() or "INFO"
        self.cors_allow_origins = str(self.cors_allow_origins or "").strip() or "*"
        return self

    def cors_origins(self) -> list[str]:
        return [item.strip() for item in self.cors_allow_origins.split(",") if item.strip()]


settings = Settings()
