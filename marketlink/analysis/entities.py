"""Entity models analyzed by the relationship engine."""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from marketlink.analysis.errors import ValidationError


class EntityType(str, Enum):
    """Types of entities that can take part in a relationship analysis."""

    STOCK = "stock"
    SECTOR = "sector"
    POLICY = "policy"
    NEWS_EVENT = "news_event"
    THEME = "theme"
    INDICATOR = "indicator"


class TimeSeriesPoint(BaseModel):
    """A single observation of an entity's numeric series."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    value: float


class Entity(BaseModel):
    """
    A typed node of interest, optionally carrying a time series.

    Entities are immutable once created; identity is the ``id``. Payloads
    may use ``type``/``timeSeries`` in place of the field names; unknown
    keys are rejected.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    entity_type: EntityType = Field(
        default=EntityType.STOCK,
        validation_alias=AliasChoices("entity_type", "type"),
    )
    attributes: dict[str, Any] = Field(default_factory=dict)
    time_series: list[TimeSeriesPoint] | None = Field(
        default=None,
        validation_alias=AliasChoices("time_series", "timeSeries"),
    )

    @field_validator("time_series")
    @classmethod
    def _check_ordered(
        cls, series: list[TimeSeriesPoint] | None
    ) -> list[TimeSeriesPoint] | None:
        if series is None:
            return None
        for prev, curr in zip(series, series[1:]):
            if curr.timestamp < prev.timestamp:
                raise ValueError(
                    f"time_series must be ordered by timestamp "
                    f"({curr.timestamp.isoformat()} after {prev.timestamp.isoformat()})"
                )
        return series

    @property
    def name(self) -> str:
        """Display name: the ``name`` attribute, falling back to the id."""
        return str(self.attributes.get("name") or self.id)

    @property
    def has_time_series(self) -> bool:
        return self.time_series is not None

    def values(self, window: int | None = None) -> list[float]:
        """
        Series values in order, optionally limited to the last ``window`` points.

        Raises:
            ValidationError: If ``window`` is less than 1
        """
        if window is not None and window < 1:
            raise ValidationError(f"window must be >= 1, got {window}")
        if not self.time_series:
            return []
        values = [point.value for point in self.time_series]
        if window is not None:
            return values[-window:]
        return values


def series_from_values(
    values: list[float],
    start: datetime | None = None,
    step: timedelta = timedelta(days=1),
) -> list[TimeSeriesPoint]:
    """Build an evenly spaced series from raw values."""
    if start is None:
        start = datetime(2024, 1, 1, tzinfo=UTC)
    return [
        TimeSeriesPoint(timestamp=start + step * i, value=value)
        for i, value in enumerate(values)
    ]


def create_entity(
    entity_id: str,
    entity_type: EntityType = EntityType.STOCK,
    values: list[float] | None = None,
    **attributes: Any,
) -> Entity:
    """Factory for an entity with a daily series built from ``values``."""
    return Entity(
        id=entity_id,
        entity_type=entity_type,
        attributes=attributes,
        time_series=series_from_values(values) if values is not None else None,
    )
