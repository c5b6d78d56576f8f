"""
Integration tests for the HTTP app (FastAPI TestClient)
"""

import copy
import io
import json
import threading
import time

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from common.geo import tile_extent
from tests.fakes import FakeFactory
from tile_server.config import DEFAULTS
from tile_server.engine import EngineState, RenderEngine
from tile_server.server import create_app


def _wait_until_loaded(app, timeout=10.0):
    engine = app.state.service.engine
    deadline = time.monotonic() + timeout
    while engine.state in (EngineState.UNINITIALIZED, EngineState.LOADING):
        if time.monotonic() > deadline:
            raise AssertionError("engine did not finish loading")
        time.sleep(0.01)
    return engine.state


@pytest.fixture
def client(app_config):
    app = create_app(app_config)
    with TestClient(app) as c:
        assert _wait_until_loaded(app) is EngineState.READY
        yield c


class TestTiles:
    """Tile route end to end with the built-in renderer"""

    def test_world_tile(self, client):
        r = client.get("/0/0/0.png")
        assert r.status_code == 200
        assert r.headers["content-type"] == "image/png"
        assert r.headers["cache-control"] == "public, max-age=60"
        assert (r.headers["x-tile-z"], r.headers["x-tile-x"], r.headers["x-tile-y"]) == ("0", "0", "0")
        extent = [float(v) for v in r.headers["x-tile-extent"].split(",")]
        assert extent == list(tile_extent(0, 0, 0).as_tuple())

        img = Image.open(io.BytesIO(r.content))
        assert img.size == (256, 256)
        assert img.convert("RGBA").getpixel((128, 128)) == (255, 0, 0, 255)

    def test_quadrant_extent_header(self, client):
        r = client.get("/1/1/1.png")
        assert r.status_code == 200
        extent = [float(v) for v in r.headers["x-tile-extent"].split(",")]
        assert extent == [0.0, -20037508.342789244, 20037508.342789244, 0.0]

    @pytest.mark.parametrize("path", [
        "/1/abc/abc.png",
        "/abc/0/0.png",
        "/1/2/0.png",
        "/1/0/2.png",
        "/99/0/0.png",
        "/" + "9" * 5000 + "/0/0.png",
    ])
    def test_bad_request(self, client, path):
        r = client.get(path)
        assert r.status_code == 400
        assert r.headers["content-type"].startswith("text/plain")
        assert not r.content.startswith(b"\x89PNG")

    def test_unknown_route(self, client):
        assert client.get("/0/0/0.jpg").status_code == 404

    def test_root_is_plain_health(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/plain")
        assert r.text == "OK"

    def test_health_and_stats(self, client):
        client.get("/0/0/0.png")
        h = client.get("/health").json()
        assert h["status"] == "ok"
        assert h["engine"]["state"] == "ready"
        assert "started_at" in h
        s = client.get("/stats").json()["engine"]
        assert s["rendered"] >= 1
        assert s["failures"] == 0

    def test_concurrent_requests(self, client):
        tiles = [(2, x, y) for x in range(4) for y in range(4)]
        results = {}

        def fetch(t):
            results[t] = client.get("/%d/%d/%d.png" % t)

        threads = [threading.Thread(target=fetch, args=(t,)) for t in tiles]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        for t, r in results.items():
            assert r.status_code == 200
            assert r.headers["x-tile-extent"] == ",".join(repr(v) for v in tile_extent(*t).as_tuple())


class TestEngineStates:
    """Startup and failure behaviour"""

    def test_not_ready_returns_503(self):
        gate = threading.Event()
        engine = RenderEngine(context_factory=FakeFactory(gate=gate))
        app = create_app(copy.deepcopy(DEFAULTS), engine=engine)
        try:
            with TestClient(app) as c:
                r = c.get("/0/0/0.png")
                assert r.status_code == 503
                assert not r.content.startswith(b"\x89PNG")
                assert c.get("/health").json()["status"] == "loading"
                assert c.get("/").text == "LOADING"
                gate.set()
                assert _wait_until_loaded(app) is EngineState.READY
                assert c.get("/0/0/0.png").status_code == 200
        finally:
            gate.set()

    def test_failed_load_keeps_serving_health(self, tmp_path):
        cfg = copy.deepcopy(DEFAULTS)
        cfg["style"]["path"] = str(tmp_path / "missing.yaml")
        app = create_app(cfg)
        with TestClient(app) as c:
            assert _wait_until_loaded(app) is EngineState.LOAD_FAILED
            r = c.get("/health")
            assert r.status_code == 200
            assert r.json()["status"] == "error"
            assert c.get("/").text == "ERROR"
            assert str(tmp_path) not in r.text
            assert c.get("/0/0/0.png").status_code == 503

    def test_render_failure_is_500_without_detail(self):
        engine = RenderEngine(context_factory=FakeFactory(render_error=RuntimeError("/srv/secret.xml broke")))
        engine.initialize("style.yaml")
        app = create_app(copy.deepcopy(DEFAULTS), engine=engine)
        with TestClient(app) as c:
            r = c.get("/0/0/0.png")
            assert r.status_code == 500
            assert r.text == "Tile rendering failed"

    def test_render_failure_detail_in_debug(self):
        engine = RenderEngine(context_factory=FakeFactory(render_error=RuntimeError("/srv/secret.xml broke")))
        engine.initialize("style.yaml")
        cfg = copy.deepcopy(DEFAULTS)
        cfg["server"]["debug"] = True
        app = create_app(cfg, engine=engine)
        with TestClient(app) as c:
            r = c.get("/0/0/0.png")
            assert r.status_code == 500
            assert "secret.xml" in r.text


class TestConfiguredOutput:
    """Encoding and data file taken from the config"""

    def test_jpeg_format_uses_jpg_suffix(self, app_config):
        app_config["tiles"]["format"] = "jpeg"
        app = create_app(app_config)
        with TestClient(app) as c:
            assert _wait_until_loaded(app) is EngineState.READY
            for path in ("/0/0/0.jpg", "/0/0/0.jpeg"):
                r = c.get(path)
                assert r.status_code == 200
                assert r.headers["content-type"] == "image/jpeg"
                assert r.content.startswith(b"\xff\xd8")
            assert c.get("/0/0/0.png").status_code == 404

    def test_unsupported_format_rejected_at_startup(self, app_config):
        app_config["tiles"]["format"] = "tiff"
        with pytest.raises(ValueError, match="format"):
            create_app(app_config)

    def test_data_file_replaces_first_layer(self, app_config, tmp_path):
        # Same style, different data: a polygon only over the southern hemisphere.
        other = tmp_path / "south.geojson"
        other.write_text(json.dumps({
            "type": "Polygon",
            "coordinates": [[[-170, -80], [170, -80], [170, -1], [-170, -1], [-170, -80]]],
        }))
        app_config["style"]["data"] = str(other)
        app = create_app(app_config)
        with TestClient(app) as c:
            assert _wait_until_loaded(app) is EngineState.READY
            img = Image.open(io.BytesIO(c.get("/0/0/0.png").content)).convert("RGBA")
        assert img.getpixel((128, 60)) == (0, 0, 255, 255)    # north: background only
        assert img.getpixel((128, 200)) == (255, 0, 0, 255)   # south: replacement polygon
