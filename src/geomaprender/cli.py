"""CLI entrypoint for the GeoJSON map renderer."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .config import AppConfig, load_config
from .errors import MapRenderError, ValidationError
from .geojson_io import apply_filter, calculate_bounding_box, load_features
from .service import format_run_lines, process_and_render
from .util import setup_logging
from .zoom import select_zoom

LOGGER = logging.getLogger("geomaprender.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="geomaprender",
        description="Render GeoJSON features over a web map basemap into an image.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", required=True, help="Path to JSON/YAML render config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")
        p.add_argument("--log-file", default=None, help="Also write logs to this file.")

    render_p = subparsers.add_parser("render", help="Load, filter, and render to an image.")
    add_common(render_p)
    render_p.add_argument(
        "--output",
        default=None,
        help="Override outputFilePath from the config.",
    )
    render_p.add_argument(
        "--no-basemap",
        action="store_true",
        help="Skip tile fetching and draw on a plain white canvas.",
    )

    inspect_p = subparsers.add_parser(
        "inspect",
        help="Report feature counts, bounding box, and zoom without rendering.",
    )
    add_common(inspect_p)

    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    log_file = Path(args.log_file) if args.log_file else None
    setup_logging(log_file, verbose=args.verbose)
    return load_config(args.config)


def _run_render(cfg: AppConfig, *, output: str | None, no_basemap: bool) -> int:
    report = process_and_render(
        cfg,
        show_map_background=False if no_basemap else None,
        output_path=Path(output) if output else None,
    )
    for line in format_run_lines(report):
        print(line)
    return 0 if report.ok else 1


def _run_inspect(cfg: AppConfig) -> int:
    options = cfg.options
    if options.input_path is None:
        raise ValidationError("inputFilePath is required")
    features = apply_filter(load_features(options.input_path), cfg.geo_filter)
    if not features:
        print(f"[WARN] No drawable features in {options.input_path}")
        return 1
    bbox = calculate_bounding_box(features)
    if options.buffer_percentage > 0:
        bbox = bbox.buffer(options.buffer_percentage)
    zoom = select_zoom(bbox, options.width, options.height, options.zoom_level)
    selected = sum(1 for feature in features if feature.selected)
    print(f"[INFO] Input: {options.input_path}")
    print(f"[INFO] Features: {len(features)} loaded, {selected} selected")
    print(
        f"[INFO] Bounding box: [{bbox.min_x:.6f}, {bbox.min_y:.6f}, "
        f"{bbox.max_x:.6f}, {bbox.max_y:.6f}]"
    )
    center_lon, center_lat = bbox.center
    print(f"[INFO] Center: {center_lon:.6f}, {center_lat:.6f}")
    print(f"[INFO] Zoom: {zoom} for {options.width}x{options.height}")
    print(f"[INFO] Output: {options.output_path}")
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    command = args.command
    try:
        cfg = _load_and_setup(args)
        if command == "render":
            return _run_render(cfg, output=args.output, no_basemap=bool(args.no_basemap))
        if command == "inspect":
            return _run_inspect(cfg)
    except (MapRenderError, OSError) as exc:
        LOGGER.error("%s failed: %s", command, exc)
        return 1
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
