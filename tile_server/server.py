from __future__ import annotations

import argparse
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response

from common.logging_setup import get_logger, setup_logging
from common.utils import iso_now_ms
from tile_server.config import load_config
from tile_server.engine import EngineState, RenderEngine
from tile_server.errors import ServiceError
from tile_server.service import IMAGE_FORMATS, TileService


log = get_logger(__name__)

_MEDIA_TYPES = {"png": "image/png", "jpeg": "image/jpeg", "jpg": "image/jpeg"}
_PLAIN_HEALTH = {"ok": "OK", "loading": "LOADING", "error": "ERROR"}


def build_service(cfg: Dict[str, Any], engine: Optional[RenderEngine] = None) -> TileService:
    tiles = cfg["tiles"]
    engine = engine or RenderEngine(
        pool_size=int(cfg["engine"]["pool_size"]),
        tile_size=int(tiles["size"]),
        data_file=cfg["style"].get("data"),
    )
    return TileService(
        engine,
        tile_size=int(tiles["size"]),
        image_format=str(tiles["format"]),
        scheme=str(tiles["scheme"]),
        max_zoom=int(tiles["max_zoom"]),
        debug=bool(cfg["server"]["debug"]),
    )


def create_app(cfg: Optional[Dict[str, Any]] = None, engine: Optional[RenderEngine] = None) -> FastAPI:
    """
    Build the HTTP app. The engine starts loading the configured style in the
    background at startup (unless it was already initialized); until it is
    READY tile requests answer 503.
    """
    cfg = cfg or load_config()
    service = build_service(cfg, engine)
    started_at = iso_now_ms()
    cache_control = f"public, max-age={int(cfg['tiles']['cache_max_age'])}"
    media_type = _MEDIA_TYPES[service.image_format]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service.engine.state is EngineState.UNINITIALIZED:
            log.info("loading style", extra={"extra": {"style": cfg["style"]["path"]}})
            service.engine.start(cfg["style"]["path"])
        yield

    app = FastAPI(title="Raster Tile Server", version="1.0.0", lifespan=lifespan)
    app.state.service = service

    # (Optional) CORS so browser map clients can fetch tiles
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            log.warning(
                "tile request failed",
                extra={"extra": {"path": request.url.path, "status": exc.status_code, "detail": exc.detail}},
            )
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return _PLAIN_HEALTH[service.health()["status"]]

    @app.get("/health")
    def health():
        # Always 200 so the process stays observable after a failed load.
        out = service.health()
        out["started_at"] = started_at
        return out

    @app.get("/stats")
    def stats():
        return {"engine": service.engine.stats()}

    # Sync endpoint: FastAPI runs it on its worker thread pool, off the event loop.
    def tile(z: str, x: str, y: str):
        address = service.parse_address(z, x, y)
        body = service.render_tile(address)
        extent = service.extent_for(address)
        headers = {
            "Cache-Control": cache_control,
            "X-Tile-Z": str(address.zoom),
            "X-Tile-X": str(address.column),
            "X-Tile-Y": str(address.row),
            "X-Tile-Extent": ",".join(repr(v) for v in extent.as_tuple()),
        }
        return Response(content=body, media_type=media_type, headers=headers)

    # Only the suffixes of the configured encoding; a .png URL never serves JPEG.
    for suffix in IMAGE_FORMATS[service.image_format]:
        app.add_api_route("/{z}/{x}/{y}." + suffix, tile, methods=["GET"], name=f"tile_{suffix}")

    return app


# -------- local dev entrypoint --------
def main(argv=None) -> None:
    ap = argparse.ArgumentParser(description="Serve rendered raster map tiles over HTTP.")
    ap.add_argument("--config", default=None, help="YAML config (default: $TILE_SERVER_CONFIG or config/params.yaml)")
    ap.add_argument("--style", default=None, help="Style document (.yaml/.json) or Mapnik XML stylesheet")
    ap.add_argument("--data", default=None, help="GeoJSON (or Mapnik datasource) file replacing the first layer's data")
    ap.add_argument("--host", default=None, help="Address to bind to")
    ap.add_argument("--port", type=int, default=None, help="Port to listen on")
    ap.add_argument("--pool-size", type=int, default=None, help="Number of independent rendering contexts")
    ap.add_argument("--debug", action="store_true", help="Include render error detail in responses")
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    if args.style:
        cfg["style"]["path"] = args.style
    if args.data:
        cfg["style"]["data"] = args.data
    if args.host:
        cfg["server"]["host"] = args.host
    if args.port is not None:
        cfg["server"]["port"] = args.port
    if args.pool_size is not None:
        cfg["engine"]["pool_size"] = max(1, args.pool_size)
    if args.debug:
        cfg["server"]["debug"] = True

    setup_logging(cfg["logging"]["level"], force=True)
    log.info(
        "starting tile server",
        extra={
            "extra": {
                "style": cfg["style"]["path"],
                "data": cfg["style"]["data"],
                "host": cfg["server"]["host"],
                "port": cfg["server"]["port"],
                "pool_size": cfg["engine"]["pool_size"],
            }
        },
    )
    uvicorn.run(create_app(cfg), host=cfg["server"]["host"], port=int(cfg["server"]["port"]), log_config=None)


if __name__ == "__main__":
    main()
