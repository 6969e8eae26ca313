"""Domain models shared across pipeline modules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from .errors import ParseError, ValidationError

DEFAULT_TILE_URL = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
DEFAULT_USER_AGENT = "GeoJsonRenderer/1.0"

_WORLD_BOUNDS = (-180.0, -90.0, 180.0, 90.0)


@dataclass(slots=True)
class Feature:
    """One GeoJSON feature; `selected` is the only field mutated after loading."""

    id: str
    geometry: Any
    properties: dict[str, Any] = field(default_factory=dict)
    selected: bool = False

    def property_text(self, name: str) -> str | None:
        value = self.properties.get(name)
        if value is None:
            return None
        if isinstance(value, (Mapping, list, tuple)):
            raise ParseError(f"Property '{name}' of feature {self.id} is not a scalar value")
        if isinstance(value, bool):
            text = "true" if value else "false"
        else:
            text = str(value).strip()
        return text or None


@dataclass(frozen=True, slots=True)
class BoundingBox:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @classmethod
    def empty(cls) -> BoundingBox:
        return cls(math.inf, math.inf, -math.inf, -math.inf)

    @classmethod
    def world(cls) -> BoundingBox:
        return cls(*_WORLD_BOUNDS)

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> tuple[float, float]:
        return ((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)

    def is_valid(self) -> bool:
        values = (self.min_x, self.min_y, self.max_x, self.max_y)
        if not all(math.isfinite(v) for v in values):
            return False
        return self.max_x >= self.min_x and self.max_y >= self.min_y

    def require_valid(self, field_name: str = "bbox") -> BoundingBox:
        if not self.is_valid():
            raise ValidationError(
                f"Invalid bounding box for '{field_name}': "
                f"({self.min_x}, {self.min_y}, {self.max_x}, {self.max_y})"
            )
        return self

    def union(self, other: BoundingBox | None) -> BoundingBox:
        if other is None:
            return self
        return BoundingBox(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
        )

    def buffer(self, percentage: float) -> BoundingBox:
        """Grow each side by `percentage` of the box width/height."""
        dx = self.width * percentage
        dy = self.height * percentage
        return BoundingBox(self.min_x - dx, self.min_y - dy, self.max_x + dx, self.max_y + dy)


@dataclass(frozen=True, slots=True)
class FeatureStyle:
    fill_color: str | None = None
    stroke_color: str | None = None
    stroke_width: float = 1.0


def _default_highlight() -> FeatureStyle:
    return FeatureStyle(fill_color="#FF0000", stroke_color="#000000", stroke_width=2.0)


def _default_base_style() -> FeatureStyle:
    return FeatureStyle(fill_color="#FFFFFF33", stroke_color="#888888", stroke_width=0.8)


@dataclass(frozen=True, slots=True)
class LabelConfig:
    enabled: bool = True
    property_name: str = "nome_local"
    font_size: int = 12
    font_color: str = "#000000"
    halo: bool = True
    halo_color: str = "#FFFFFF"
    halo_width: float = 2.0


@dataclass(frozen=True, slots=True)
class StyleConfig:
    highlight: FeatureStyle = field(default_factory=_default_highlight)
    default: FeatureStyle = field(default_factory=_default_base_style)
    label: LabelConfig = field(default_factory=LabelConfig)


class ImageFormat(Enum):
    PNG = "png"
    JPEG = "jpeg"

    @property
    def extension(self) -> str:
        return ".png" if self is ImageFormat.PNG else ".jpg"

    @property
    def pillow_format(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class RenderOptions:
    width: int = 1920
    height: int = 1080
    image_format: ImageFormat = ImageFormat.JPEG
    quality: int = 90
    zoom_level: int | None = None
    buffer_percentage: float = 0.1
    show_map_background: bool = True
    tile_url_template: str = DEFAULT_TILE_URL
    input_path: Path | None = None
    output_path: Path | None = None
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout_s: float = 30.0
    max_concurrent_requests: int = 4
    min_request_interval_s: float = 0.1
    max_attempts: int = 3
    retry_backoff_s: float = 1.0

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValidationError(
                f"Image size must be positive, got {self.width}x{self.height}"
            )
        if not 0 <= self.quality <= 100:
            raise ValidationError(f"JPEG quality must be within 0..100, got {self.quality}")
        if self.zoom_level is not None and not 0 <= self.zoom_level <= 19:
            raise ValidationError(f"Zoom level must be within 0..19, got {self.zoom_level}")
        if self.buffer_percentage < 0:
            raise ValidationError("bufferPercentage must be >= 0")
        if self.max_concurrent_requests < 1:
            raise ValidationError("maxConcurrentRequests must be >= 1")
        if self.max_attempts < 1:
            raise ValidationError("maxAttempts must be >= 1")


class FilterOperator(Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"

    @classmethod
    def parse(cls, raw: str) -> FilterOperator:
        key = raw.strip().replace("-", "_").casefold()
        aliases = {
            "notequals": "not_equals",
            "startswith": "starts_with",
            "endswith": "ends_with",
        }
        key = aliases.get(key, key)
        try:
            return cls(key)
        except ValueError as exc:
            raise ValidationError(f"Unknown filter operator '{raw}'") from exc


@dataclass(frozen=True, slots=True)
class FilterCondition:
    property: str
    value: str
    operator: FilterOperator = FilterOperator.EQUALS

    def matches(self, feature: Feature) -> bool:
        raw = feature.properties.get(self.property)
        if raw is None:
            return False
        actual = str(raw).casefold()
        expected = self.value.casefold()
        if self.operator is FilterOperator.EQUALS:
            return actual == expected
        if self.operator is FilterOperator.NOT_EQUALS:
            return actual != expected
        if self.operator is FilterOperator.CONTAINS:
            return expected in actual
        if self.operator is FilterOperator.STARTS_WITH:
            return actual.startswith(expected)
        return actual.endswith(expected)


@dataclass(frozen=True, slots=True)
class GeoFilter:
    conditions: tuple[FilterCondition, ...] = ()

    @classmethod
    def of(cls, conditions: Iterable[FilterCondition]) -> GeoFilter:
        return cls(conditions=tuple(conditions))

    def matches(self, feature: Feature) -> bool:
        return all(condition.matches(feature) for condition in self.conditions)
