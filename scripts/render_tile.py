#!/usr/bin/env python3
"""
Render a single tile to a file to verify a style setup, without the HTTP server.

Examples:
  python scripts/render_tile.py --style styles/basic_style.yaml --z 2 --x 1 --y 1 --out tile.png
  python scripts/render_tile.py --style osm.xml --z 13 --x 1320 --y 2860 --size 512 --scheme tms
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Allow running from a checkout without installing.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from common.geo import tile_bounds_lonlat  # noqa: E402
from common.logging_setup import get_logger  # noqa: E402
from tile_server.engine import EngineState, RenderEngine  # noqa: E402
from tile_server.errors import ServiceError  # noqa: E402
from tile_server.service import TileService  # noqa: E402


log = get_logger("render_tile")


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Render one z/x/y tile to an image file.")
    ap.add_argument("--style", "-s", default="styles/basic_style.yaml", help="Style document or Mapnik XML")
    ap.add_argument("--data", default=None, help="File replacing the first layer's datasource")
    ap.add_argument("--out", "-o", default="tile.png", help="Output path")
    ap.add_argument("--z", type=int, default=0, help="Zoom")
    ap.add_argument("--x", type=int, default=0, help="Tile column")
    ap.add_argument("--y", type=int, default=0, help="Tile row")
    ap.add_argument("--size", type=int, default=256, help="Tile size in pixels")
    ap.add_argument("--format", default="png", choices=["png", "jpeg"], help="Output encoding")
    ap.add_argument("--scheme", default="xyz", choices=["xyz", "tms"], help="Row convention")
    args = ap.parse_args(argv)

    engine = RenderEngine(tile_size=args.size, data_file=args.data)
    if engine.initialize(args.style) is not EngineState.READY:
        log.error("style failed to load", extra={"extra": {"style": args.style, "error": engine.load_error}})
        return 1

    service = TileService(engine, tile_size=args.size, image_format=args.format, scheme=args.scheme, debug=True)
    try:
        address = service.parse_address(args.z, args.x, args.y)
        data = service.render_tile(address)
    except ServiceError as e:
        log.error("render failed", extra={"extra": {"status": e.status_code, "error": e.message}})
        return 1

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    log.info(
        "tile written",
        extra={
            "extra": {
                "out": str(out),
                "bytes": len(data),
                "extent": service.extent_for(address).as_tuple(),
                "lonlat_bounds": tile_bounds_lonlat(args.z, args.x, args.y, args.scheme),
            }
        },
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
