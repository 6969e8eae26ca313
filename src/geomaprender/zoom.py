"""Zoom level heuristic fitting a bounding box into a target image."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import ValidationError
from .models import BoundingBox
from .projection import geo_to_world

MIN_ZOOM = 0
MAX_ZOOM = 19

_LOGGER = logging.getLogger("geomaprender.zoom")


@dataclass(frozen=True, slots=True)
class _ZoomPolicy:
    # (max dimension in degrees, zoom) checked in order
    small_area_tiers: tuple[tuple[float, int], ...]
    context_buffer: float
    fit_ratio: float
    fallback_zoom: int


_ZOOM_POLICY = _ZoomPolicy(
    small_area_tiers=((0.01, MAX_ZOOM), (0.05, 17), (0.2, 16)),
    context_buffer=0.1,
    fit_ratio=0.5,
    fallback_zoom=10,
)


def select_zoom(
    bbox: BoundingBox,
    width: int,
    height: int,
    override: int | None = None,
) -> int:
    """Pick the highest zoom at which the buffered bbox covers under half the image."""
    if override is not None:
        return override
    if width <= 0 or height <= 0:
        raise ValidationError(f"Image size must be positive, got {width}x{height}")
    bbox.require_valid()

    max_dim = max(bbox.width, bbox.height)
    _LOGGER.debug("Bounding box max dimension: %.6f deg", max_dim)
    for limit, zoom in _ZOOM_POLICY.small_area_tiers:
        if max_dim < limit:
            _LOGGER.debug("Small area (max_dim=%.6f < %s); using zoom %d", max_dim, limit, zoom)
            return zoom

    buffered = bbox.buffer(_ZOOM_POLICY.context_buffer)
    for zoom in range(MAX_ZOOM, MIN_ZOOM - 1, -1):
        west_px, south_px = geo_to_world(buffered.min_x, buffered.min_y, zoom)
        east_px, north_px = geo_to_world(buffered.max_x, buffered.max_y, zoom)
        pixel_width = abs(east_px - west_px)
        pixel_height = abs(south_px - north_px)
        ratio = max(pixel_width / width, pixel_height / height)
        if ratio < _ZOOM_POLICY.fit_ratio:
            _LOGGER.debug(
                "Selected zoom %d (ratio=%.3f, extent=%.1fx%.1f px)",
                zoom,
                ratio,
                pixel_width,
                pixel_height,
            )
            return zoom

    _LOGGER.debug("No zoom fits bbox; defaulting to %d", _ZOOM_POLICY.fallback_zoom)
    return _ZOOM_POLICY.fallback_zoom
