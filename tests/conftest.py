"""Shared pytest fixtures for tile server tests."""

import copy
import json
from pathlib import Path

import pytest
import yaml

from tile_server.config import DEFAULTS


def square(lon0, lat0, lon1, lat1):
    return [[lon0, lat0], [lon1, lat0], [lon1, lat1], [lon0, lat1], [lon0, lat0]]


@pytest.fixture
def world_polygon_doc():
    """Blue background, one red polygon spanning lon [-90, 90] / lat [-60, 60]."""
    return {
        "name": "test",
        "background": "#0000ff",
        "layers": [
            {
                "name": "land",
                "datasource": {
                    "type": "geojson",
                    "data": {
                        "type": "Feature",
                        "properties": {"name": "block"},
                        "geometry": {"type": "Polygon", "coordinates": [square(-90, -60, 90, 60)]},
                    },
                },
                "style": {"fill": "#ff0000"},
            }
        ],
    }


@pytest.fixture
def style_file(tmp_path):
    """A YAML style on disk with a file-based GeoJSON layer."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "land.geojson").write_text(json.dumps({
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"name": "A"},
             "geometry": {"type": "Polygon", "coordinates": [square(-90, -60, 90, 60)]}},
            {"type": "Feature", "properties": {"name": "P"},
             "geometry": {"type": "Point", "coordinates": [120, 30]}},
        ],
    }))
    style = {
        "name": "file-style",
        "background": "#0000ff",
        "layers": [
            {"name": "land", "datasource": {"type": "geojson", "file": "data/land.geojson"},
             "style": {"fill": "#ff0000", "stroke": "#000000", "marker": "#00ff00", "marker_size": 4, "label": "name"}},
        ],
    }
    path = tmp_path / "style.yaml"
    path.write_text(yaml.safe_dump(style))
    return path


@pytest.fixture
def app_config(style_file):
    cfg = copy.deepcopy(DEFAULTS)
    cfg["style"]["path"] = str(style_file)
    return cfg


@pytest.fixture
def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]
