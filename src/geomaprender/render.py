"""Rasterize GeoJSON features over an optional tile basemap into one image."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

from PIL import Image, ImageChops, ImageDraw, ImageFont

from .colors import Rgba, parse_hex_color
from .errors import ParseError, ValidationError
from .models import (
    BoundingBox,
    Feature,
    FeatureStyle,
    ImageFormat,
    LabelConfig,
    RenderOptions,
    StyleConfig,
)
from .projection import TransformParameters, covering_tile_range, derive_transform, world_to_pixel
from .tiles import TileResult, TileSource, tile_summary
from .util import ensure_parent_dir, format_item_list
from .zoom import select_zoom

_LOGGER = logging.getLogger("geomaprender.render")

_BACKGROUND_RGB = (255, 255, 255)
_MULTI_PART_TYPES = frozenset({"MultiPoint", "MultiLineString", "MultiPolygon", "GeometryCollection"})


@dataclass(frozen=True, slots=True)
class _MarkerPolicy:
    fill_radius_px: float
    stroke_radius_px: float


@dataclass(frozen=True, slots=True)
class _LabelFontPolicy:
    truetype_candidates: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class _BasemapPolicy:
    margin_tiles: int


_MARKER_POLICY = _MarkerPolicy(fill_radius_px=4.0, stroke_radius_px=5.0)
_LABEL_FONT_POLICY = _LabelFontPolicy(truetype_candidates=("DejaVuSans.ttf", "Arial.ttf"))
_BASEMAP_POLICY = _BasemapPolicy(margin_tiles=1)


@dataclass(frozen=True, slots=True)
class RenderRequest:
    features: Sequence[Feature]
    bbox: BoundingBox
    style: StyleConfig
    options: RenderOptions
    output_path: Path


@dataclass(slots=True)
class RenderReport:
    output_path: Path | None = None
    zoom: int | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)

    def bump(self, key: str, amount: int = 1) -> None:
        self.summary[key] = self.summary.get(key, 0) + amount


@dataclass(frozen=True, slots=True)
class _Primitive:
    """One drawable part after flattening multi-geometries and collections."""

    kind: str
    rings: tuple[tuple[tuple[float, float], ...], ...]


class _UnsupportedGeometry(ParseError):
    pass


class MapRenderer:
    """Deterministic renderer producing one PNG/JPEG per request.

    Vector drawing is aliased, so identical inputs without a basemap encode to
    identical bytes. When `tile_source` is None and the basemap is enabled, a
    source is built from the request options for the duration of the call.
    """

    def __init__(self, tile_source: TileSource | None = None, *, font_path: str | None = None) -> None:
        self.tile_source = tile_source
        self.font_path = font_path

    def render(self, req: RenderRequest, report: RenderReport | None = None) -> Path:
        report = report if report is not None else RenderReport()
        _validate_request(req)
        options = req.options

        zoom = select_zoom(req.bbox, options.width, options.height, options.zoom_level)
        transform = derive_transform(req.bbox, zoom, options.width, options.height)
        report.zoom = zoom
        _LOGGER.info(
            "Rendering %d features at zoom %d (%dx%d, scale=%.4f)",
            len(req.features),
            zoom,
            options.width,
            options.height,
            transform.scale,
        )

        canvas = Image.new("RGB", (options.width, options.height), _BACKGROUND_RGB)
        try:
            if options.show_map_background:
                self._draw_basemap(canvas=canvas, transform=transform, options=options, report=report)

            painter = _FeaturePainter(canvas, transform, report)
            for feature in req.features:
                if not feature.selected:
                    painter.paint(feature, req.style.default)
            label_font = None
            for feature in req.features:
                if not feature.selected:
                    continue
                painter.paint(feature, req.style.highlight)
                if req.style.label.enabled:
                    if label_font is None:
                        label_font = _load_font(req.style.label.font_size, self.font_path)
                    painter.label(feature, req.style.label, label_font)

            ensure_parent_dir(req.output_path)
            _encode(canvas, req.output_path, options)
        finally:
            canvas.close()

        report.output_path = req.output_path
        report.add_info(f"Wrote {req.output_path}")
        return req.output_path

    def _draw_basemap(
        self,
        *,
        canvas: Image.Image,
        transform: TransformParameters,
        options: RenderOptions,
        report: RenderReport,
    ) -> None:
        source = self.tile_source
        owned = source is None
        if source is None:
            source = TileSource.from_options(options)
        try:
            tile_range = covering_tile_range(transform, margin_tiles=_BASEMAP_POLICY.margin_tiles)
            _LOGGER.debug(
                "Basemap tiles z=%d x=[%d, %d] y=[%d, %d] (%d tiles)",
                tile_range.zoom,
                tile_range.min_x,
                tile_range.max_x,
                tile_range.min_y,
                tile_range.max_y,
                tile_range.count,
            )
            results = source.fetch_tiles(tile_range, tile_range.zoom)
        finally:
            if owned:
                source.close()

        fetched, failed = tile_summary(results)
        report.bump("tiles_requested", len(results))
        report.bump("tiles_drawn", fetched)
        report.bump("tiles_skipped", failed)
        for result in results:
            if result.ok:
                _paste_tile(canvas, result, transform, source.tile_size_px)
            else:
                report.add_warning(f"Tile {result.zoom}/{result.x}/{result.y} skipped: {result.error}")
        if failed:
            missing = [f"{r.zoom}/{r.x}/{r.y}" for r in results if not r.ok]
            _LOGGER.warning(
                "Basemap drawn with %d of %d tiles missing: %s",
                failed,
                len(results),
                format_item_list(missing),
            )


def format_render_lines(report: RenderReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Map rendering completed with no errors.")
    return lines


class _FeaturePainter:
    """Single-threaded drawing against one canvas owned by the current render."""

    def __init__(self, canvas: Image.Image, transform: TransformParameters, report: RenderReport) -> None:
        self.canvas = canvas
        self.transform = transform
        self.report = report
        self.draw = ImageDraw.Draw(canvas, "RGBA")

    def paint(self, feature: Feature, style: FeatureStyle) -> None:
        try:
            primitives = _flatten_geometry(feature.geometry, self.transform)
        except _UnsupportedGeometry as exc:
            self._skip("features_skipped", f"Feature {feature.id} not drawn: {exc}")
            return

        fill = self._resolve_color(style.fill_color, feature, "fill")
        if fill is not None:
            for primitive in primitives:
                self._fill(primitive, fill)
        stroke = self._resolve_color(style.stroke_color, feature, "stroke")
        if stroke is not None:
            width = max(1, round(style.stroke_width))
            for primitive in primitives:
                self._stroke(primitive, stroke, width)
        self.report.bump("features_drawn")

    def label(self, feature: Feature, cfg: LabelConfig, font: Any) -> None:
        try:
            text = feature.property_text(cfg.property_name)
        except ParseError as exc:
            self._skip("labels_skipped", f"Label for feature {feature.id} skipped: {exc}")
            return
        if text is None:
            return
        geometry = feature.geometry
        if geometry is None or getattr(geometry, "is_empty", True):
            return
        color = self._resolve_color(cfg.font_color, feature, "label")
        if color is None:
            return
        centroid = geometry.centroid
        anchor_x, anchor_y = self.transform.project(float(centroid.x), float(centroid.y))

        origin = (anchor_x, anchor_y)
        if cfg.halo and cfg.halo_width > 0:
            halo = self._resolve_color(cfg.halo_color, feature, "halo")
            if halo is not None:
                self.draw.text(
                    origin,
                    text,
                    font=font,
                    fill=halo,
                    anchor="ms",
                    stroke_width=max(1, round(cfg.halo_width)),
                    stroke_fill=halo,
                )
        self.draw.text(origin, text, font=font, fill=color, anchor="ms")
        self.report.bump("labels_drawn")

    def _resolve_color(self, raw: str | None, feature: Feature, channel: str) -> Rgba | None:
        try:
            return parse_hex_color(raw)
        except ParseError as exc:
            self._skip("paints_skipped", f"{channel} paint for feature {feature.id} skipped: {exc}")
            return None

    def _skip(self, counter: str, msg: str) -> None:
        _LOGGER.warning(msg)
        self.report.add_warning(msg)
        self.report.bump(counter)

    def _fill(self, primitive: _Primitive, color: Rgba) -> None:
        if primitive.kind == "Point":
            x, y = primitive.rings[0][0]
            r = _MARKER_POLICY.fill_radius_px
            self.draw.ellipse((x - r, y - r, x + r, y + r), fill=color)
        elif primitive.kind == "Polygon":
            _fill_even_odd(self.canvas, primitive.rings, color)

    def _stroke(self, primitive: _Primitive, color: Rgba, width: int) -> None:
        if primitive.kind == "Point":
            x, y = primitive.rings[0][0]
            r = _MARKER_POLICY.stroke_radius_px
            self.draw.ellipse((x - r, y - r, x + r, y + r), outline=color, width=width)
        elif primitive.kind == "LineString":
            path = primitive.rings[0]
            if len(path) >= 2:
                self.draw.line(path, fill=color, width=width, joint="curve")
        else:
            for ring in primitive.rings:
                if len(ring) >= 2:
                    closed = ring if ring[0] == ring[-1] else ring + (ring[0],)
                    self.draw.line(closed, fill=color, width=width, joint="curve")


def _flatten_geometry(geometry: Any, transform: TransformParameters) -> list[_Primitive]:
    out: list[_Primitive] = []
    _visit_geometry(geometry, transform, out)
    return out


def _visit_geometry(geometry: Any, transform: TransformParameters, out: list[_Primitive]) -> None:
    geom_type = getattr(geometry, "geom_type", None)
    if geom_type is None:
        raise _UnsupportedGeometry(f"unrecognized geometry {type(geometry).__name__}")
    if geometry.is_empty:
        return

    if geom_type == "Point":
        out.append(_Primitive("Point", (_project_coords(geometry.coords, transform),)))
        return
    if geom_type in ("LineString", "LinearRing"):
        out.append(_Primitive("LineString", (_project_coords(geometry.coords, transform),)))
        return
    if geom_type == "Polygon":
        rings = [_project_coords(geometry.exterior.coords, transform)]
        rings.extend(_project_coords(interior.coords, transform) for interior in geometry.interiors)
        out.append(_Primitive("Polygon", tuple(rings)))
        return
    if geom_type in _MULTI_PART_TYPES:
        for part in geometry.geoms:
            _visit_geometry(part, transform, out)
        return
    raise _UnsupportedGeometry(f"unrecognized geometry type '{geom_type}'")


def _project_coords(coords: Any, transform: TransformParameters) -> tuple[tuple[float, float], ...]:
    return tuple(transform.project(float(c[0]), float(c[1])) for c in coords)


def _fill_even_odd(
    canvas: Image.Image,
    rings: Sequence[Sequence[tuple[float, float]]],
    color: Rgba,
) -> None:
    """Fill all rings as one path; overlapping coverage cancels pairwise (even-odd)."""
    drawable = [ring for ring in rings if len(ring) >= 3]
    if not drawable:
        return
    xs = [x for ring in drawable for x, _ in ring]
    ys = [y for ring in drawable for _, y in ring]
    left = max(0, int(min(xs)) - 1)
    top = max(0, int(min(ys)) - 1)
    right = min(canvas.width, int(max(xs)) + 2)
    bottom = min(canvas.height, int(max(ys)) + 2)
    if right <= left or bottom <= top:
        return

    size = (right - left, bottom - top)
    mask = Image.new("L", size, 0)
    for ring in drawable:
        ring_mask = Image.new("L", size, 0)
        shifted = [(x - left, y - top) for x, y in ring]
        ImageDraw.Draw(ring_mask).polygon(shifted, fill=255)
        mask = ImageChops.difference(mask, ring_mask)

    alpha = color[3]
    if alpha < 255:
        mask = mask.point(lambda v: v * alpha // 255)
    canvas.paste(color[:3], (left, top, right, bottom), mask)


def _paste_tile(
    canvas: Image.Image,
    result: TileResult,
    transform: TransformParameters,
    tile_size_px: int,
) -> None:
    tile = result.image
    if tile is None:
        return
    # snap both edges so neighbouring tiles share a boundary without seams
    left, top = world_to_pixel(result.x * tile_size_px, result.y * tile_size_px, transform)
    right, bottom = world_to_pixel((result.x + 1) * tile_size_px, (result.y + 1) * tile_size_px, transform)
    x0, y0, x1, y1 = round(left), round(top), round(right), round(bottom)
    try:
        if x1 <= x0 or y1 <= y0:
            return
        rgba = tile.convert("RGBA")
        if rgba.size != (x1 - x0, y1 - y0):
            rgba = rgba.resize((x1 - x0, y1 - y0), Image.Resampling.LANCZOS)
        canvas.paste(rgba, (x0, y0), rgba)
        rgba.close()
    finally:
        tile.close()


def _encode(canvas: Image.Image, path: Path, options: RenderOptions) -> None:
    fmt = options.image_format
    if fmt is ImageFormat.JPEG:
        canvas.save(path, format=fmt.pillow_format, quality=options.quality)
    else:
        canvas.save(path, format=fmt.pillow_format)


@lru_cache(maxsize=16)
def _load_font(size: int, font_path: str | None = None) -> Any:
    candidates = (font_path,) if font_path else _LABEL_FONT_POLICY.truetype_candidates
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            _LOGGER.debug("Font %s unavailable", candidate)
    _LOGGER.debug("No TrueType font found; using Pillow default font")
    return ImageFont.load_default(size=size)


def _validate_request(req: RenderRequest) -> None:
    if not req.features:
        raise ValidationError("Feature list must not be empty")
    if req.style is None:
        raise ValidationError("Style configuration is required")
    if req.options is None:
        raise ValidationError("Render options are required")
    if not str(req.output_path).strip():
        raise ValidationError("Output path is required")
    req.bbox.require_valid()
    req.options.validate()
