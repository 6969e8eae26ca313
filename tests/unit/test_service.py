"""
Unit tests for pipeline orchestration and the CLI
"""

import json

import pytest
from PIL import Image

from geomaprender import cli
from geomaprender.config import load_config
from geomaprender.errors import NotFoundError, ValidationError
from geomaprender.service import format_run_lines, process_and_render


def _write_inputs(tmp_path, *, show_background=False, extra=None):
    geojson = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
                },
                "properties": {"nome_local": "Alpha", "uf": "SP"},
            },
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [5, 5]},
                "properties": {"nome_local": "Beta", "uf": "RJ"},
            },
        ],
    }
    (tmp_path / "input.geojson").write_text(json.dumps(geojson), encoding="utf-8")
    config = {
        "filters": [{"property": "uf", "value": "sp"}],
        "renderOptions": {
            "width": 320,
            "height": 240,
            "format": "png",
            "showMapBackground": show_background,
        },
        "inputFilePath": "input.geojson",
        "outputFilePath": "out/map.png",
    }
    config.update(extra or {})
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return path


class TestProcessAndRender:
    """Test cases for process_and_render"""

    def test_pipeline_renders_selected_area(self, tmp_path):
        cfg = load_config(_write_inputs(tmp_path))
        report = process_and_render(cfg)

        assert report.ok
        assert report.output_path == tmp_path / "out" / "map.png"
        assert report.feature_count == 2
        assert report.selected_count == 1
        # framed on the selected polygon plus the 10% buffer
        assert report.bbox.min_x == pytest.approx(-0.1)
        assert report.bbox.max_y == pytest.approx(1.1)
        with Image.open(report.output_path) as img:
            assert img.size == (320, 240)
        lines = format_run_lines(report)
        assert "[INFO] Features: 2 loaded, 1 selected" in lines

    def test_output_override_and_basemap_toggle(self, tmp_path, monkeypatch):
        cfg = load_config(_write_inputs(tmp_path, show_background=True))

        def _no_network(*args, **kwargs):
            raise AssertionError("tile fetch attempted")

        monkeypatch.setattr("geomaprender.tiles.TileSource.fetch_tiles", _no_network)
        report = process_and_render(
            cfg, show_map_background=False, output_path=tmp_path / "other.png"
        )
        assert (tmp_path / "other.png").exists()
        assert report.render.summary.get("tiles_requested") is None

    def test_missing_input_path(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"renderOptions": {"showMapBackground": False}}), encoding="utf-8")
        with pytest.raises(ValidationError, match="inputFilePath"):
            process_and_render(load_config(path))

    def test_missing_geojson(self, tmp_path):
        cfg = load_config(_write_inputs(tmp_path, extra={"inputFilePath": "absent.geojson"}))
        with pytest.raises(NotFoundError):
            process_and_render(cfg)


class TestCli:
    """Test cases for the command line entrypoint"""

    def test_render_command(self, tmp_path, capsys):
        config = _write_inputs(tmp_path)
        code = cli.main(["render", "--config", str(config), "--no-basemap"])
        assert code == 0
        assert (tmp_path / "out" / "map.png").exists()
        assert "[OK] Map rendering completed with no errors." in capsys.readouterr().out

    def test_inspect_command(self, tmp_path, capsys):
        config = _write_inputs(tmp_path)
        assert cli.main(["inspect", "--config", str(config)]) == 0
        out = capsys.readouterr().out
        assert "1 selected" in out
        assert "[INFO] Zoom:" in out
        assert "[INFO] Center:" in out
        assert not (tmp_path / "out" / "map.png").exists()

    def test_missing_config_returns_one(self, tmp_path):
        assert cli.main(["render", "--config", str(tmp_path / "nope.json")]) == 1

    def test_invalid_config_returns_one(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"renderOptions": {"width": "x"}}), encoding="utf-8")
        assert cli.main(["inspect", "--config", str(path)]) == 1

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.main([])
