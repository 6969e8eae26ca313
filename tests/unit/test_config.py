"""
Unit tests for render config loading
"""

import json

import pytest

from geomaprender.config import load_config
from geomaprender.errors import NotFoundError, ValidationError
from geomaprender.models import FilterOperator, ImageFormat, StyleConfig
from geomaprender.tiles import DEFAULT_TILE_URL


def _write(tmp_path, payload, name="config.json"):
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestLoadConfig:
    """Test cases for load_config"""

    def test_full_config(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "filters": [
                    {"property": "nome", "value": "Campinas"},
                    {"property": "code", "value": 35, "operator": "StartsWith"},
                ],
                "highlightStyle": {"fillColor": "#00FF00", "strokeWidth": 3},
                "defaultStyle": {"fillColor": "", "strokeColor": "#333333"},
                "labelProperty": "nome",
                "labelConfig": {"fontSize": 16, "halo": False, "haloWidth": 1.5},
                "renderOptions": {
                    "width": 800,
                    "height": 600,
                    "format": "PNG",
                    "quality": 150,
                    "zoomLevel": 12,
                    "bufferPercentage": 0.2,
                    "showMapBackground": False,
                    "tileServerUrl": "https://tiles.test/{z}/{x}/{y}.png",
                    "maxConcurrentRequests": 2,
                },
                "inputFilePath": "data/input.geojson",
                "outputFilePath": "out/map.png",
            },
        )

        cfg = load_config(path)

        conditions = cfg.geo_filter.conditions
        assert [(c.property, c.value, c.operator) for c in conditions] == [
            ("nome", "Campinas", FilterOperator.EQUALS),
            ("code", "35", FilterOperator.STARTS_WITH),
        ]
        assert cfg.style.highlight.fill_color == "#00FF00"
        assert cfg.style.highlight.stroke_color == "#000000"
        assert cfg.style.highlight.stroke_width == 3.0
        assert cfg.style.default.fill_color is None
        assert cfg.style.default.stroke_color == "#333333"
        assert cfg.style.label.enabled
        assert cfg.style.label.property_name == "nome"
        assert cfg.style.label.font_size == 16
        assert cfg.style.label.halo is False
        assert cfg.style.label.halo_width == 1.5

        options = cfg.options
        assert (options.width, options.height) == (800, 600)
        assert options.image_format is ImageFormat.PNG
        assert options.quality == 100
        assert options.zoom_level == 12
        assert options.buffer_percentage == 0.2
        assert options.show_map_background is False
        assert options.tile_url_template == "https://tiles.test/{z}/{x}/{y}.png"
        assert options.max_concurrent_requests == 2
        assert options.input_path == tmp_path / "data" / "input.geojson"
        assert options.output_path == tmp_path / "out" / "map.png"

    def test_defaults_for_minimal_config(self, tmp_path):
        cfg = load_config(_write(tmp_path, {"inputFilePath": "in.geojson"}))
        assert cfg.geo_filter.conditions == ()
        assert cfg.style == StyleConfig()
        assert cfg.options.image_format is ImageFormat.JPEG
        assert cfg.options.tile_url_template == DEFAULT_TILE_URL
        assert cfg.options.output_path == tmp_path / "in.jpg"

    def test_output_extension_follows_format(self, tmp_path):
        cfg = load_config(
            _write(tmp_path, {"inputFilePath": "in.geojson", "renderOptions": {"format": "png"}})
        )
        assert cfg.options.output_path == tmp_path / "in.png"

    def test_label_config_can_disable_labels(self, tmp_path):
        cfg = load_config(
            _write(tmp_path, {"labelProperty": "name", "labelConfig": {"enabled": False}})
        )
        assert cfg.style.label.enabled is False
        assert cfg.style.label.property_name == "name"

    def test_negative_quality_is_clamped(self, tmp_path):
        cfg = load_config(_write(tmp_path, {"renderOptions": {"quality": -4}}))
        assert cfg.options.quality == 0

    def test_tile_provider_name(self, tmp_path):
        cfg = load_config(
            _write(tmp_path, {"renderOptions": {"tileProvider": "OpenStreetMap.Mapnik"}})
        )
        assert "{z}" in cfg.options.tile_url_template

    def test_yaml_config(self, tmp_path):
        path = tmp_path / "job.yaml"
        path.write_text(
            "inputFilePath: in.geojson\nrenderOptions:\n  width: 640\n  height: 480\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert (cfg.options.width, cfg.options.height) == (640, 480)

    def test_missing_file(self, tmp_path):
        with pytest.raises(NotFoundError):
            load_config(tmp_path / "nope.json")

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({"renderOptions": {"width": "wide"}}, "renderOptions.width"),
            ({"filters": {"property": "x"}}, "filters"),
            ({"filters": [{"value": "x"}]}, "filters[0].property"),
            ({"highlightStyle": {"strokeWidth": "thick"}}, "highlightStyle.strokeWidth"),
            ({"renderOptions": {"showMapBackground": "yes"}}, "renderOptions.showMapBackground"),
        ],
    )
    def test_wrong_types_name_the_field(self, tmp_path, payload, field):
        with pytest.raises(ValidationError, match=field.replace("[", r"\[").replace("]", r"\]")):
            load_config(_write(tmp_path, payload))

    def test_invalid_zoom_rejected(self, tmp_path):
        with pytest.raises(ValidationError, match="Zoom level"):
            load_config(_write(tmp_path, {"renderOptions": {"zoomLevel": 25}}))

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ValidationError, match="mapping"):
            load_config(_write(tmp_path, [1, 2, 3]))
