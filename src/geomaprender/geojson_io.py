"""GeoJSON loading, feature selection, and bounding box computation."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Mapping, Sequence

from shapely.errors import GeometryTypeError
from shapely.geometry import shape

from .errors import NotFoundError, ParseError, ValidationError
from .models import BoundingBox, Feature, GeoFilter

_LOGGER = logging.getLogger("geomaprender.geojson")


def load_features(path: Path) -> list[Feature]:
    """Load features from a GeoJSON `FeatureCollection` (or single `Feature`) file."""
    if not str(path).strip():
        raise ValidationError("GeoJSON input path is required")
    path = Path(path)
    if not path.exists():
        raise NotFoundError(f"GeoJSON file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON in {path}: {exc}") from exc
    features = parse_feature_collection(raw)
    _LOGGER.info("Loaded %d features from %s", len(features), path)
    return features


def parse_feature_collection(raw: Any) -> list[Feature]:
    if not isinstance(raw, Mapping):
        raise ParseError("GeoJSON root must be an object")
    kind = raw.get("type")
    if kind == "Feature":
        items: Sequence[Any] = [raw]
    elif kind == "FeatureCollection":
        items = raw.get("features") or []
        if not isinstance(items, list):
            raise ParseError("Expected list for 'features'")
    else:
        raise ParseError(f"Unsupported GeoJSON type '{kind}'")

    features: list[Feature] = []
    for idx, item in enumerate(items):
        feature = _feature_from_mapping(item, idx)
        if feature is not None:
            features.append(feature)
    return features


def apply_filter(features: list[Feature], geo_filter: GeoFilter) -> list[Feature]:
    """Set `selected` on every feature; a filter without conditions selects all."""
    for feature in features:
        feature.selected = geo_filter.matches(feature)
    selected = sum(1 for feature in features if feature.selected)
    _LOGGER.info("Filter selected %d of %d features", selected, len(features))
    return features


def calculate_bounding_box(features: Sequence[Feature]) -> BoundingBox:
    """Bounds of the selected features, or of all features when none is selected."""
    if not features:
        raise ValidationError("Feature list must not be empty")
    chosen = [feature for feature in features if feature.selected]
    scope = "selected"
    if not chosen:
        chosen = list(features)
        scope = "all"

    bbox = BoundingBox.empty()
    for feature in chosen:
        geometry = feature.geometry
        if geometry is None or geometry.is_empty:
            continue
        min_x, min_y, max_x, max_y = geometry.bounds
        bbox = bbox.union(BoundingBox(min_x, min_y, max_x, max_y))

    if not bbox.is_valid():
        _LOGGER.warning("Bounding box of %s features is not valid; using world bounds", scope)
        return BoundingBox.world()
    _LOGGER.info(
        "Bounding box over %s features (%d): [%.6f, %.6f, %.6f, %.6f]",
        scope,
        len(chosen),
        bbox.min_x,
        bbox.min_y,
        bbox.max_x,
        bbox.max_y,
    )
    return bbox


def _feature_from_mapping(item: Any, idx: int) -> Feature | None:
    if not isinstance(item, Mapping):
        raise ParseError(f"Expected object for 'features[{idx}]'")
    properties_raw = item.get("properties") or {}
    if not isinstance(properties_raw, Mapping):
        raise ParseError(f"Expected object for 'features[{idx}].properties'")
    properties = dict(properties_raw)

    geometry_raw = item.get("geometry")
    if geometry_raw is None:
        _LOGGER.warning("Skipping features[%d]: geometry is null", idx)
        return None
    try:
        geometry = shape(geometry_raw)
    except (GeometryTypeError, ValueError, TypeError, KeyError, IndexError) as exc:
        _LOGGER.warning("Skipping features[%d]: unreadable geometry (%s)", idx, exc)
        return None

    return Feature(
        id=_feature_id(item, properties),
        geometry=geometry,
        properties=properties,
    )


def _feature_id(item: Mapping[str, Any], properties: Mapping[str, Any]) -> str:
    for candidate in (properties.get("id"), item.get("id")):
        if candidate is not None and str(candidate).strip():
            return str(candidate).strip()
    return str(uuid.uuid4())
