from __future__ import annotations

import re
from typing import Any, Dict

from common.geo import MAX_ZOOM, TILE_SCHEMES, WEB_MERCATOR_EXTENT, tile_extent
from common.logging_setup import get_logger
from common.types import Extent, TileAddress
from tile_server.engine import RenderEngine
from tile_server.errors import (
    BadRequest,
    EncodeFailed,
    EngineNotLoaded,
    InternalError,
    RenderFailed,
    ServiceUnavailable,
)


log = get_logger(__name__)

_UINT = re.compile(r"[0-9]+")
# 2^30 - 1 has 10 digits; longer strings are rejected before int().
_MAX_DIGITS = 10

# format -> URL suffixes the tile route answers on
IMAGE_FORMATS = {"png": ("png",), "jpeg": ("jpg", "jpeg"), "jpg": ("jpg", "jpeg")}


def _parse_uint(name: str, value: Any) -> int:
    s = str(value)
    if len(s) > _MAX_DIGITS or not _UINT.fullmatch(s):
        raise BadRequest(f"Invalid tile coordinates format: {name}={s[:_MAX_DIGITS + 2]!r}")
    return int(s)


class TileService:
    """
    z/x/y -> encoded tile.

    Safe to call from many threads: all engine access goes through
    RenderEngine.render_and_encode, which gives each render exclusive use of
    one rendering context. No retries; failures are raised as ServiceError.
    """

    def __init__(
        self,
        engine: RenderEngine,
        *,
        tile_size: int = 256,
        image_format: str = "png",
        scheme: str = "xyz",
        max_zoom: int = MAX_ZOOM,
        world: Extent = WEB_MERCATOR_EXTENT,
        debug: bool = False,
    ):
        if scheme not in TILE_SCHEMES:
            raise ValueError(f"unknown tile scheme: {scheme!r}")
        if not (0 <= max_zoom <= MAX_ZOOM):
            raise ValueError(f"max_zoom must be in [0, {MAX_ZOOM}]")
        if image_format.lower() not in IMAGE_FORMATS:
            raise ValueError(f"unsupported image format: {image_format!r}")
        self.engine = engine
        self.tile_size = int(tile_size)
        self.image_format = image_format.lower()
        self.scheme = scheme
        self.max_zoom = int(max_zoom)
        self.world = world
        self.debug = debug

    def parse_address(self, zoom: Any, column: Any, row: Any) -> TileAddress:
        z = _parse_uint("z", zoom)
        x = _parse_uint("x", column)
        y = _parse_uint("y", row)
        if z > self.max_zoom:
            raise BadRequest(f"Invalid zoom level: {z} (max {self.max_zoom})")
        n = 1 << z
        if x >= n or y >= n:
            raise BadRequest(f"Invalid tile coordinates for zoom level {z}: x={x}, y={y}")
        return TileAddress(z, x, y)

    def extent_for(self, address: TileAddress) -> Extent:
        return tile_extent(address.zoom, address.column, address.row, self.world, self.scheme)

    def handle_tile_request(self, zoom: Any, column: Any, row: Any) -> bytes:
        return self.render_tile(self.parse_address(zoom, column, row))

    def render_tile(self, address: TileAddress) -> bytes:
        if not self.engine.is_ready():
            raise ServiceUnavailable(detail=self.engine.load_error)

        extent = self.extent_for(address)
        log.debug("rendering tile", extra={"extra": {"zxy": address.zxy, "extent": extent.as_tuple()}})
        try:
            return self.engine.render_and_encode(extent, self.tile_size, self.tile_size, self.image_format)
        except EngineNotLoaded as e:
            raise ServiceUnavailable(detail=str(e)) from e
        except (RenderFailed, EncodeFailed) as e:
            log.error(
                "tile rendering failed",
                exc_info=True,
                extra={"extra": {"zxy": address.zxy, "error": str(e)}},
            )
            message = f"{InternalError.public_message}: {e}" if self.debug else None
            raise InternalError(message, detail=str(e)) from e

    def health(self) -> Dict[str, Any]:
        state = self.engine.state.value
        status = {"ready": "ok", "load_failed": "error"}.get(state, "loading")
        engine: Dict[str, Any] = {"state": state, "pool_size": self.engine.pool_size}
        if self.engine.load_error is not None:
            # Paths and style internals only in development mode.
            engine["error"] = self.engine.load_error if self.debug else "engine failed to load"
        return {"status": status, "engine": engine}
