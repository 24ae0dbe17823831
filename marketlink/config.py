"""Configuration management for marketlink."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from marketlink.analysis.entities import Entity


class AnalysisSettings(BaseSettings):
    """Tunable constants of the relationship engine, overridable from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="MARKETLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Correlation
    significance_level: float = Field(default=0.05, gt=0.0, lt=1.0)
    mutual_information_bins: int = Field(default=10, ge=1)
    time_window: int | None = Field(default=30, ge=2)

    # Graph construction
    edge_min_coefficient: float = Field(default=0.3, ge=0.0, le=1.0)
    strict_nodes: bool = False
    eigenvector_iterations: int = Field(default=10, ge=1)
    community_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # Insights
    high_correlation_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    central_node_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    central_node_top_n: int = Field(default=3, ge=0)
    causality_confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}")
    return data


def load_analysis_settings(config_path: Path | None = None) -> AnalysisSettings:
    """Load settings, overlaying the ``analysis`` section of a YAML file if given."""
    if config_path is None:
        return AnalysisSettings()
    section = _load_yaml(config_path).get("analysis") or {}
    return AnalysisSettings(**section)


def load_entities_config(config_path: Path) -> list[Entity]:
    """
    Load entities from a YAML (or JSON) file.

    Each item under ``entities`` is an Entity mapping (``type`` and
    ``timeSeries`` are accepted as keys). A plain ``values`` list may stand
    in for the series; it becomes a daily series.
    """
    from marketlink.analysis.entities import Entity, series_from_values

    entities = []
    for item in _load_yaml(config_path).get("entities") or []:
        item = dict(item)
        values = item.pop("values", None)
        if values is not None and not {"time_series", "timeSeries"} & item.keys():
            item["time_series"] = series_from_values([float(v) for v in values])
        entities.append(Entity.model_validate(item))
    return entities
