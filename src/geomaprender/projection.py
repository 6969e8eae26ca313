"""Web Mercator world-pixel math and the per-render image transform."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator

from .models import BoundingBox

TILE_SIZE_PX = 256
MAX_LATITUDE = 85.0511


def world_size_px(zoom: int) -> float:
    return float((1 << zoom) * TILE_SIZE_PX)


def geo_to_world(lon: float, lat: float, zoom: int) -> tuple[float, float]:
    """Project lon/lat degrees to world-pixel coordinates at `zoom`.

    Latitude is clamped to the Web Mercator range first so the log-tangent
    term stays finite at the poles.
    """
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    lat_rad = math.radians(lat)
    size = world_size_px(zoom)
    world_x = (lon + 180.0) / 360.0 * size
    merc = math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad))
    world_y = (1.0 - merc / math.pi) / 2.0 * size
    return (world_x, world_y)


@dataclass(frozen=True, slots=True)
class TransformParameters:
    """Uniform scale plus centering offsets from world pixels into one image."""

    zoom: int
    width: int
    height: int
    min_world_x: float
    min_world_y: float
    max_world_x: float
    max_world_y: float
    scale: float
    offset_x: float
    offset_y: float

    @property
    def world_width(self) -> float:
        return self.max_world_x - self.min_world_x

    @property
    def world_height(self) -> float:
        return self.max_world_y - self.min_world_y

    def project(self, lon: float, lat: float) -> tuple[float, float]:
        world_x, world_y = geo_to_world(lon, lat, self.zoom)
        return world_to_pixel(world_x, world_y, self)


def derive_transform(bbox: BoundingBox, zoom: int, width: int, height: int) -> TransformParameters:
    bbox.require_valid()
    x0, y_bottom = geo_to_world(bbox.min_x, bbox.min_y, zoom)
    x1, y_top = geo_to_world(bbox.max_x, bbox.max_y, zoom)
    # world Y grows southward, so the geographic min-Y corner is the larger value
    min_wx, max_wx = min(x0, x1), max(x0, x1)
    min_wy, max_wy = min(y_bottom, y_top), max(y_bottom, y_top)
    bbox_w = max_wx - min_wx
    bbox_h = max_wy - min_wy

    candidates = [r for r in (_ratio(width, bbox_w), _ratio(height, bbox_h)) if r]
    scale = min(candidates) if candidates else 1.0
    offset_x = (width - bbox_w * scale) / 2.0
    offset_y = (height - bbox_h * scale) / 2.0
    return TransformParameters(
        zoom=zoom,
        width=width,
        height=height,
        min_world_x=min_wx,
        min_world_y=min_wy,
        max_world_x=max_wx,
        max_world_y=max_wy,
        scale=scale,
        offset_x=offset_x,
        offset_y=offset_y,
    )


def world_to_pixel(world_x: float, world_y: float, transform: TransformParameters) -> tuple[float, float]:
    pixel_x = (world_x - transform.min_world_x) * transform.scale + transform.offset_x
    pixel_y = (world_y - transform.min_world_y) * transform.scale + transform.offset_y
    return (pixel_x, pixel_y)


def _ratio(target_px: int, world_extent: float) -> float | None:
    if world_extent <= 0:
        return None
    return target_px / world_extent


@dataclass(frozen=True, slots=True)
class TileRange:
    zoom: int
    min_x: int
    max_x: int
    min_y: int
    max_y: int

    @property
    def count(self) -> int:
        if self.max_x < self.min_x or self.max_y < self.min_y:
            return 0
        return (self.max_x - self.min_x + 1) * (self.max_y - self.min_y + 1)

    def __iter__(self) -> Iterator[tuple[int, int]]:
        for ty in range(self.min_y, self.max_y + 1):
            for tx in range(self.min_x, self.max_x + 1):
                yield (tx, ty)


def covering_tile_range(transform: TransformParameters, margin_tiles: int = 1) -> TileRange:
    """Tiles covering the whole image rectangle, plus a margin against edge gaps."""
    view_min_x = transform.min_world_x - transform.offset_x / transform.scale
    view_max_x = transform.min_world_x + (transform.width - transform.offset_x) / transform.scale
    view_min_y = transform.min_world_y - transform.offset_y / transform.scale
    view_max_y = transform.min_world_y + (transform.height - transform.offset_y) / transform.scale

    last = (1 << transform.zoom) - 1
    return TileRange(
        zoom=transform.zoom,
        min_x=max(0, math.floor(view_min_x / TILE_SIZE_PX) - margin_tiles),
        max_x=min(last, math.floor(view_max_x / TILE_SIZE_PX) + margin_tiles),
        min_y=max(0, math.floor(view_min_y / TILE_SIZE_PX) - margin_tiles),
        max_y=min(last, math.floor(view_max_y / TILE_SIZE_PX) + margin_tiles),
    )
