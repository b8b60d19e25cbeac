"""
Configuration models for the candle engine.

This module defines Pydantic models for type-safe configuration management.
YAML files are loaded through OmegaConf so interpolations resolve before
validation; the models then convert into the plain dataclass configs the core
engine consumes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from omegaconf import OmegaConf
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.chart.viewport import ZoomConfig
from core.periods import PeriodCatalogue

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ViewportSettings(BaseModel):
    """Zoom, pan and navigation limits for a chart."""

    visible_count: int = Field(default=50, ge=1, description="Candles shown after reset")
    min_count: int = Field(default=10, ge=1, description="Deepest zoom")
    max_count: int = Field(default=1000, ge=1, description="Widest zoom")
    render_cap: int = Field(
        default=800, ge=1, description="Max candles handed to the renderer"
    )
    zoom_in_factor: float = Field(default=0.7, gt=0, lt=1)
    zoom_out_factor: float = Field(default=1.4, gt=1)
    pan_reference_pixels: int = Field(
        default=800, ge=1, description="Drag width that moves one screenful"
    )
    min_candles_per_pixel: float = Field(default=0.02, gt=0)
    navigation_step: int = Field(default=5, ge=1, description="Candles per arrow press")

    @model_validator(mode="after")
    def validate_bounds(self) -> ViewportSettings:
        if self.max_count < self.min_count:
            raise ValueError(
                f"max_count ({self.max_count}) must be >= min_count ({self.min_count})"
            )
        if not self.min_count <= self.visible_count <= self.max_count:
            raise ValueError(
                f"visible_count ({self.visible_count}) must be within "
                f"[{self.min_count}, {self.max_count}]"
            )
        return self

    def to_zoom_config(self) -> ZoomConfig:
        return ZoomConfig(**self.model_dump())


class CacheSettings(BaseModel):
    """Interval cache configuration."""

    max_entries: int = Field(default=512, ge=1, description="Maximum cached series")


class SchedulerSettings(BaseModel):
    """Refresh scheduler configuration."""

    tick_interval_ms: int = Field(
        default=500, ge=10, description="Rollover polling interval"
    )
    default_period: str = Field(default="1m", description="Period shown at startup")

    @field_validator("default_period")
    @classmethod
    def validate_period(cls, v: str) -> str:
        if PeriodCatalogue.resolve(v) is None:
            raise ValueError(
                f"Invalid period: {v}. Valid: {PeriodCatalogue.codes()}"
            )
        return v


class LoggingSettings(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Valid: {list(_LOG_LEVELS)}")
        return level


class EngineConfig(BaseModel):
    """Complete candle engine configuration."""

    model_config = ConfigDict(extra="allow")  # Allow extra fields from YAML

    viewport: ViewportSettings = Field(default_factory=ViewportSettings)
    aggregate_viewport: ViewportSettings | None = Field(
        default=None, description="Aggregate chart limits (defaults to viewport)"
    )
    cache: CacheSettings = Field(default_factory=CacheSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist.
            pydantic.ValidationError: If a value is out of range.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        cfg = OmegaConf.load(path)
        container = OmegaConf.to_container(cfg, resolve=True) or {}
        if not isinstance(container, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        logger.debug(f"Loaded engine config from {path}")
        return cls.from_dict(container)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        return cls.model_validate(data)

    def to_zoom_config(self) -> ZoomConfig:
        return self.viewport.to_zoom_config()

    def to_aggregate_zoom_config(self) -> ZoomConfig:
        settings = self.aggregate_viewport or self.viewport
        return settings.to_zoom_config()

    def to_scheduler_interval(self) -> int:
        return self.scheduler.tick_interval_ms
