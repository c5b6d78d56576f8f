"""
Optional Mapnik rendering context for Mapnik XML stylesheets.

Requires the `mapnik` Python bindings (python-mapnik), which are not on PyPI
for every platform; install them from your distribution. Without them,
loading an `.xml` style fails the engine with a clear reason.
"""
from __future__ import annotations

import os
from typing import Optional, Sequence

from common.logging_setup import get_logger
from common.types import Extent


log = get_logger(__name__)

_FONT_DIRS = ("/usr/share/fonts", "/usr/local/share/fonts", os.path.expanduser("~/.local/share/fonts"))


def _import_mapnik():
    try:
        import mapnik  # type: ignore
    except ImportError as e:
        raise RuntimeError("Mapnik stylesheet requested but the mapnik Python bindings are not installed") from e
    return mapnik


def register_fonts(mapnik, extra_dirs: Sequence[str] = ()) -> None:
    """Register system fonts plus any extra directories with Mapnik's font engine."""
    if hasattr(mapnik, "register_system_fonts"):
        mapnik.register_system_fonts()
    for d in (*_FONT_DIRS, *extra_dirs):
        if os.path.isdir(d):
            mapnik.register_fonts(d, True)


class MapnikContext:
    """
    Wraps one `mapnik.Map`. Each context loads its own copy of the stylesheet,
    so contexts in a pool never share Map state.
    """

    def __init__(
        self,
        stylesheet: str,
        width: int = 256,
        height: int = 256,
        font_dirs: Sequence[str] = (),
        data_file: Optional[str] = None,
    ):
        mapnik = _import_mapnik()
        register_fonts(mapnik, font_dirs)
        if hasattr(mapnik, "register_default_input_plugins"):
            mapnik.register_default_input_plugins()
        self._mapnik = mapnik
        self._map = mapnik.Map(width, height)
        mapnik.load_map(self._map, str(stylesheet), True)  # strict
        if data_file:
            self._set_data_file(data_file)
        self._extent: Optional[Extent] = None
        log.info("mapnik stylesheet loaded", extra={"extra": {"stylesheet": str(stylesheet)}})

    def _set_data_file(self, data_file: str) -> None:
        if not len(self._map.layers):
            raise RuntimeError("a data file was given but the stylesheet has no layers")
        layer = self._map.layers[0]
        params = dict(layer.datasource.params())
        params["file"] = os.path.abspath(data_file)
        layer.datasource = self._mapnik.CreateDatasource(params)
        log.info("first layer datasource replaced", extra={"extra": {"layer": layer.name, "file": params["file"]}})

    @property
    def extent(self) -> Optional[Extent]:
        return self._extent

    @extent.setter
    def extent(self, value: Extent) -> None:
        self._extent = value

    def render(self, width: int, height: int):
        if self._extent is None:
            raise RuntimeError("extent not set")
        m = self._map
        if m.width != width or m.height != height:
            m.resize(width, height)
        m.zoom_to_box(self._mapnik.Box2d(*self._extent.as_tuple()))
        img = self._mapnik.Image(width, height)
        self._mapnik.render(m, img)
        return img

    def encode(self, image, fmt: str = "png") -> bytes:
        fmt = fmt.lower()
        if fmt not in ("png", "jpeg", "jpg"):
            raise ValueError(f"unsupported image format: {fmt!r}")
        return image.tostring("jpeg" if fmt == "jpg" else fmt)
