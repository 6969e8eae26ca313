"""Typed configuration loader for render job files (YAML or JSON)."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .errors import NotFoundError, ValidationError
from .models import (
    FeatureStyle,
    FilterCondition,
    FilterOperator,
    GeoFilter,
    ImageFormat,
    LabelConfig,
    RenderOptions,
    StyleConfig,
)
from .tiles import resolve_tile_url_template


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Expected integer for '{field_name}'")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValidationError(f"Expected integer for '{field_name}'")


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValidationError(f"Expected number for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"Expected bool for '{field_name}'")
    return value


def _optional_color(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Expected colour string for '{field_name}'")
    return value.strip() or None


def _scalar_text(value: Any, field_name: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValidationError(f"Expected scalar value for '{field_name}'")


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw).expanduser()
    return p if p.is_absolute() else root_dir / p


def _parse_filter(raw: Any) -> GeoFilter:
    if raw is None:
        return GeoFilter()
    if not isinstance(raw, list):
        raise ValidationError("Expected list for 'filters'")
    conditions: list[FilterCondition] = []
    for idx, item in enumerate(raw):
        entry = _mapping(item, f"filters[{idx}]")
        operator_raw = entry.get("operator")
        conditions.append(
            FilterCondition(
                property=_str(entry.get("property"), f"filters[{idx}].property"),
                value=_scalar_text(entry.get("value"), f"filters[{idx}].value"),
                operator=(
                    FilterOperator.EQUALS
                    if operator_raw is None
                    else FilterOperator.parse(_str(operator_raw, f"filters[{idx}].operator"))
                ),
            )
        )
    return GeoFilter.of(conditions)


def _parse_feature_style(raw: Any, field_name: str, base: FeatureStyle) -> FeatureStyle:
    """Overlay only the keys present in `raw` on top of `base`."""
    if raw is None:
        return base
    data = _mapping(raw, field_name)
    style = base
    if "fillColor" in data:
        style = replace(style, fill_color=_optional_color(data["fillColor"], f"{field_name}.fillColor"))
    if "strokeColor" in data:
        style = replace(
            style, stroke_color=_optional_color(data["strokeColor"], f"{field_name}.strokeColor")
        )
    if "strokeWidth" in data:
        width = _float(data["strokeWidth"], f"{field_name}.strokeWidth")
        if width < 0:
            raise ValidationError(f"'{field_name}.strokeWidth' must be >= 0")
        style = replace(style, stroke_width=width)
    return style


def _parse_label_config(root: Mapping[str, Any]) -> LabelConfig:
    label = LabelConfig()
    if "labelProperty" in root:
        label = replace(
            label,
            property_name=_str(root["labelProperty"], "labelProperty"),
            enabled=True,
        )
    raw = root.get("labelConfig")
    if raw is None:
        return label
    data = _mapping(raw, "labelConfig")
    if "enabled" in data and not _bool(data["enabled"], "labelConfig.enabled"):
        return replace(label, enabled=False)
    if "fontSize" in data:
        size = _int(data["fontSize"], "labelConfig.fontSize")
        if size < 1:
            raise ValidationError("'labelConfig.fontSize' must be >= 1")
        label = replace(label, font_size=size)
    if "fontColor" in data:
        label = replace(label, font_color=_str(data["fontColor"], "labelConfig.fontColor"))
    if "halo" in data:
        label = replace(label, halo=_bool(data["halo"], "labelConfig.halo"))
    if "haloColor" in data:
        label = replace(label, halo_color=_str(data["haloColor"], "labelConfig.haloColor"))
    if "haloWidth" in data:
        label = replace(label, halo_width=_float(data["haloWidth"], "labelConfig.haloWidth"))
    return label


def _parse_style(root: Mapping[str, Any]) -> StyleConfig:
    base = StyleConfig()
    return StyleConfig(
        highlight=_parse_feature_style(root.get("highlightStyle"), "highlightStyle", base.highlight),
        default=_parse_feature_style(root.get("defaultStyle"), "defaultStyle", base.default),
        label=_parse_label_config(root),
    )


def _parse_render_options(root: Mapping[str, Any], root_dir: Path) -> RenderOptions:
    raw = root.get("renderOptions")
    data = _mapping(raw, "renderOptions") if raw is not None else {}
    defaults = RenderOptions()

    def opt(key: str, parse: Any, default: Any) -> Any:
        if key not in data or data[key] is None:
            return default
        return parse(data[key], f"renderOptions.{key}")

    fmt_raw = opt("format", _str, None)
    image_format = defaults.image_format
    if fmt_raw is not None:
        image_format = ImageFormat.PNG if fmt_raw.casefold() == "png" else ImageFormat.JPEG
    quality = opt("quality", _int, defaults.quality)
    zoom_level = opt("zoomLevel", _int, None)

    input_path = None
    if root.get("inputFilePath") is not None:
        input_path = _path_from_cfg(root["inputFilePath"], "inputFilePath", root_dir)
    output_path = None
    if root.get("outputFilePath") is not None:
        output_path = _path_from_cfg(root["outputFilePath"], "outputFilePath", root_dir)
    if output_path is None and input_path is not None:
        output_path = input_path.with_suffix(image_format.extension)

    options = RenderOptions(
        width=opt("width", _int, defaults.width),
        height=opt("height", _int, defaults.height),
        image_format=image_format,
        quality=max(0, min(100, quality)),
        zoom_level=zoom_level,
        buffer_percentage=opt("bufferPercentage", _float, defaults.buffer_percentage),
        show_map_background=opt("showMapBackground", _bool, defaults.show_map_background),
        tile_url_template=resolve_tile_url_template(
            url=opt("tileServerUrl", _str, None),
            provider=opt("tileProvider", _str, None),
        ),
        input_path=input_path,
        output_path=output_path,
        user_agent=opt("userAgent", _str, defaults.user_agent),
        request_timeout_s=opt("requestTimeoutSeconds", _float, defaults.request_timeout_s),
        max_concurrent_requests=opt(
            "maxConcurrentRequests", _int, defaults.max_concurrent_requests
        ),
        min_request_interval_s=opt(
            "minRequestIntervalSeconds", _float, defaults.min_request_interval_s
        ),
        max_attempts=opt("maxAttempts", _int, defaults.max_attempts),
        retry_backoff_s=opt("retryBackoffSeconds", _float, defaults.retry_backoff_s),
    )
    options.validate()
    return options


@dataclass(frozen=True, slots=True)
class AppConfig:
    geo_filter: GeoFilter
    style: StyleConfig
    options: RenderOptions
    config_path: Path | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path, config_path: Path | None = None) -> AppConfig:
        return cls(
            geo_filter=_parse_filter(raw.get("filters")),
            style=_parse_style(raw),
            options=_parse_render_options(raw, root_dir),
            config_path=config_path,
        )


def load_config(path: str | Path) -> AppConfig:
    cfg_path = Path(path).expanduser().resolve()
    if not cfg_path.exists():
        raise NotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        try:
            if cfg_path.suffix.casefold() == ".json":
                raw = json.load(fh)
            else:
                raw = yaml.safe_load(fh)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ValidationError(f"Config file {cfg_path} could not be parsed: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ValidationError("Config root must be a mapping")
    return AppConfig.from_mapping(raw, root_dir=cfg_path.parent, config_path=cfg_path)
