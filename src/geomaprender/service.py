"""End-to-end pipeline: load, filter, frame, and render one GeoJSON file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Sequence

from .config import AppConfig
from .errors import ValidationError
from .geojson_io import apply_filter, calculate_bounding_box, load_features
from .models import BoundingBox
from .render import MapRenderer, RenderReport, RenderRequest, format_render_lines
from .tiles import TileSource

_LOGGER = logging.getLogger("geomaprender.service")


@dataclass(slots=True)
class RunReport:
    input_path: Path | None = None
    output_path: Path | None = None
    feature_count: int = 0
    selected_count: int = 0
    bbox: BoundingBox | None = None
    render: RenderReport = field(default_factory=RenderReport)

    @property
    def ok(self) -> bool:
        return self.render.ok


def process_and_render(
    cfg: AppConfig,
    *,
    tile_source: TileSource | None = None,
    show_map_background: bool | None = None,
    output_path: Path | None = None,
) -> RunReport:
    """Run the full pipeline for `cfg` and return what happened."""
    options = cfg.options
    if show_map_background is not None:
        options = replace(options, show_map_background=show_map_background)
    if output_path is not None:
        options = replace(options, output_path=output_path)
    if options.input_path is None:
        raise ValidationError("inputFilePath is required")
    if options.output_path is None:
        raise ValidationError("outputFilePath is required")
    options.validate()

    report = RunReport(input_path=options.input_path, output_path=options.output_path)
    features = load_features(options.input_path)
    if not features:
        raise ValidationError(f"No drawable features in {options.input_path}")
    apply_filter(features, cfg.geo_filter)
    report.feature_count = len(features)
    report.selected_count = sum(1 for feature in features if feature.selected)

    bbox = calculate_bounding_box(features)
    if options.buffer_percentage > 0:
        bbox = bbox.buffer(options.buffer_percentage)
    report.bbox = bbox

    renderer = MapRenderer(tile_source=tile_source)
    request = RenderRequest(
        features=features,
        bbox=bbox,
        style=cfg.style,
        options=options,
        output_path=options.output_path,
    )
    renderer.render(request, report.render)
    _LOGGER.info("Rendered %s", options.output_path)
    return report


def format_run_lines(report: RunReport) -> Sequence[str]:
    lines = [
        f"[INFO] Input: {report.input_path}",
        f"[INFO] Features: {report.feature_count} loaded, {report.selected_count} selected",
    ]
    if report.bbox is not None:
        b = report.bbox
        lines.append(
            f"[INFO] Bounding box: [{b.min_x:.6f}, {b.min_y:.6f}, {b.max_x:.6f}, {b.max_y:.6f}]"
        )
    if report.render.zoom is not None:
        lines.append(f"[INFO] Zoom: {report.render.zoom}")
    if report.render.summary:
        counts = ", ".join(f"{key}={value}" for key, value in sorted(report.render.summary.items()))
        lines.append(f"[INFO] Counts: {counts}")
    lines.extend(format_render_lines(report.render))
    return lines
