"""
Unit tests for GeoJSON loading, filtering, and bounding boxes
"""

import json
import uuid

import pytest
from shapely.geometry import GeometryCollection, Point, box

from geomaprender.errors import NotFoundError, ParseError, ValidationError
from geomaprender.geojson_io import (
    apply_filter,
    calculate_bounding_box,
    load_features,
    parse_feature_collection,
)
from geomaprender.models import BoundingBox, Feature, FilterCondition, GeoFilter


def _collection(*features):
    return {"type": "FeatureCollection", "features": list(features)}


def _point_feature(lon, lat, properties=None, feature_id=None):
    item = {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": properties or {},
    }
    if feature_id is not None:
        item["id"] = feature_id
    return item


class TestLoadFeatures:
    """Test cases for load_features"""

    def test_loads_feature_collection(self, tmp_path):
        path = tmp_path / "input.geojson"
        payload = _collection(
            _point_feature(1.0, 2.0, {"id": "from-props", "name": "A"}, feature_id="ignored"),
            _point_feature(3.0, 4.0, {"name": "B"}, feature_id=42),
            _point_feature(5.0, 6.0, {"name": "C"}),
            {
                "type": "Feature",
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
                },
                "properties": None,
            },
        )
        path.write_text(json.dumps(payload), encoding="utf-8")

        features = load_features(path)

        assert [f.id for f in features[:2]] == ["from-props", "42"]
        uuid.UUID(features[2].id)
        assert features[0].properties["name"] == "A"
        assert features[3].geometry.geom_type == "Polygon"
        assert features[3].properties == {}
        assert not any(f.selected for f in features)

    def test_null_geometry_is_skipped(self):
        payload = _collection(
            {"type": "Feature", "geometry": None, "properties": {}},
            _point_feature(0.0, 0.0),
        )
        assert len(parse_feature_collection(payload)) == 1

    def test_unreadable_geometry_is_skipped(self):
        payload = _collection(
            {"type": "Feature", "geometry": {"type": "Hexagon", "coordinates": []}, "properties": {}},
            _point_feature(0.0, 0.0),
        )
        assert len(parse_feature_collection(payload)) == 1

    def test_single_feature_document(self):
        assert len(parse_feature_collection(_point_feature(1.0, 1.0))) == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(NotFoundError):
            load_features(tmp_path / "missing.geojson")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.geojson"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ParseError, match="Invalid JSON"):
            load_features(path)

    def test_unsupported_root_type(self):
        with pytest.raises(ParseError, match="Unsupported GeoJSON type"):
            parse_feature_collection({"type": "Point", "coordinates": [0, 0]})


class TestApplyFilter:
    """Test cases for apply_filter"""

    def test_empty_filter_selects_all(self):
        features = [Feature("a", Point(0, 0)), Feature("b", Point(1, 1))]
        apply_filter(features, GeoFilter())
        assert all(f.selected for f in features)

    def test_condition_sets_selected_flag(self):
        features = [
            Feature("a", Point(0, 0), {"uf": "SP"}),
            Feature("b", Point(1, 1), {"uf": "RJ"}),
        ]
        result = apply_filter(features, GeoFilter.of([FilterCondition("uf", "sp")]))
        assert result is features
        assert [f.selected for f in features] == [True, False]


class TestCalculateBoundingBox:
    """Test cases for calculate_bounding_box"""

    def test_uses_selected_features_only(self):
        features = [
            Feature("a", box(0, 0, 1, 1), selected=True),
            Feature("b", box(10, 10, 20, 20)),
        ]
        assert calculate_bounding_box(features) == BoundingBox(0, 0, 1, 1)

    def test_falls_back_to_all_features(self):
        features = [Feature("a", box(0, 0, 1, 1)), Feature("b", Point(5, -3))]
        assert calculate_bounding_box(features) == BoundingBox(0, -3, 5, 1)

    def test_empty_geometries_give_world_bounds(self):
        features = [Feature("a", GeometryCollection())]
        assert calculate_bounding_box(features) == BoundingBox(-180, -90, 180, 90)

    def test_empty_list_rejected(self):
        with pytest.raises(ValidationError):
            calculate_bounding_box([])
