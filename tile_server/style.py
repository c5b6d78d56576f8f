"""
Built-in cartographic style: a small YAML/JSON document rendered with Pillow.

    name: basic
    background: "#aad3df"
    fonts: [fonts/DejaVuSans.ttf]
    layers:
      - name: land
        datasource: {type: geojson, file: data/land.geojson}
        style: {fill: "#f2efe9", stroke: "#b0a99f", stroke_width: 1}
      - name: graticule
        datasource: {type: graticule, step: 30}
        style: {stroke: "#ffffff80"}

GeoJSON is WGS84 lon/lat and is projected to Web Mercator once, at load.
Relative paths resolve against the style document's directory.
"""
from __future__ import annotations

import io
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import shapely
import yaml
from PIL import Image, ImageColor, ImageDraw, ImageFont
from shapely.geometry import LineString, shape
from shapely.strtree import STRtree

from common.geo import MAX_MERCATOR_LAT, lonlat_to_mercator
from common.logging_setup import get_logger
from common.types import Extent
from tile_server.errors import StyleError


log = get_logger(__name__)

RGBA = Tuple[int, int, int, int]

# Geometry is clipped this many pixels outside the tile so strokes and markers
# on the edge are drawn whole.
_CLIP_PAD_PX = 16


def parse_color(value: Any) -> RGBA:
    """CSS-ish colour ('#rgb', '#rrggbbaa', 'red', 'rgb(...)') to an RGBA tuple."""
    try:
        c = ImageColor.getrgb(str(value))
    except ValueError as e:
        raise StyleError(f"invalid colour {value!r}") from e
    if len(c) == 3:
        return (c[0], c[1], c[2], 255)
    return c  # type: ignore[return-value]


@dataclass(slots=True)
class Symbolizer:
    fill: Optional[RGBA] = None
    stroke: Optional[RGBA] = None
    stroke_width: int = 1
    marker: Optional[RGBA] = None
    marker_size: int = 3
    label: Optional[str] = None          # property name to draw as text
    text_fill: RGBA = (0, 0, 0, 255)
    font_size: int = 11

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Symbolizer":
        d = d or {}
        known = {"fill", "stroke", "stroke_width", "marker", "marker_size", "label", "text_fill", "font_size"}
        unknown = set(d) - known
        if unknown:
            raise StyleError(f"unknown style keys: {sorted(unknown)}")
        return cls(
            fill=parse_color(d["fill"]) if d.get("fill") else None,
            stroke=parse_color(d["stroke"]) if d.get("stroke") else None,
            stroke_width=int(d.get("stroke_width", 1)),
            marker=parse_color(d["marker"]) if d.get("marker") else None,
            marker_size=int(d.get("marker_size", 3)),
            label=d.get("label"),
            text_fill=parse_color(d.get("text_fill", "#000000")),
            font_size=int(d.get("font_size", 11)),
        )


@dataclass
class Layer:
    name: str
    geometries: List[Any]
    labels: List[Optional[str]]
    symbolizer: Symbolizer
    tree: STRtree = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.tree = STRtree(self.geometries)

    def query(self, extent: Extent) -> Iterator[int]:
        """Indices of geometries whose envelope touches `extent`."""
        if not self.geometries:
            return iter(())
        idx = self.tree.query(shapely.box(*extent.as_tuple()))
        return iter(sorted(int(i) for i in idx))


@dataclass
class Style:
    name: str
    background: RGBA
    layers: List[Layer]
    fonts: List[Path]
    source: Optional[Path] = None

    def font(self, size: int):
        if self.fonts:
            return ImageFont.truetype(str(self.fonts[0]), size)
        return ImageFont.load_default()


# -------------------------
# Loading
# -------------------------
def _project(geom):
    def fwd(coords: np.ndarray) -> np.ndarray:
        x, y = lonlat_to_mercator(coords[:, 0], coords[:, 1])
        return np.column_stack([x, y])

    return shapely.transform(geom, fwd)


def _geojson_features(doc: Dict[str, Any]) -> List[Dict[str, Any]]:
    kind = doc.get("type")
    if kind == "FeatureCollection":
        return list(doc.get("features") or [])
    if kind == "Feature":
        return [doc]
    return [{"type": "Feature", "geometry": doc, "properties": {}}]


def _load_geojson(ds: Dict[str, Any], base: Path, sym: Symbolizer) -> Tuple[List[Any], List[Optional[str]]]:
    if "data" in ds:
        doc = ds["data"]
    elif "file" in ds:
        path = base / ds["file"]
        try:
            doc = json.loads(path.read_text())
        except OSError as e:
            raise StyleError(f"cannot read datasource {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StyleError(f"invalid GeoJSON in {path}: {e}") from e
    else:
        raise StyleError("geojson datasource needs 'file' or 'data'")

    geoms: List[Any] = []
    labels: List[Optional[str]] = []
    for feat in _geojson_features(doc):
        if not feat.get("geometry"):
            continue
        try:
            g = shape(feat["geometry"])
        except Exception as e:
            raise StyleError(f"unsupported geometry: {e}") from e
        if g.is_empty:
            continue
        geoms.append(_project(g))
        props = feat.get("properties") or {}
        labels.append(str(props[sym.label]) if sym.label and props.get(sym.label) is not None else None)
    return geoms, labels


def _graticule(step: float) -> List[Any]:
    if step <= 0:
        raise StyleError("graticule step must be > 0")
    lines = []
    for lon in np.arange(-180.0, 180.0 + 1e-9, step):
        lines.append(LineString([(lon, -MAX_MERCATOR_LAT), (lon, MAX_MERCATOR_LAT)]))
    for lat in np.arange(-90.0 + step, 90.0, step):
        if abs(lat) <= MAX_MERCATOR_LAT:
            lines.append(LineString([(-180.0, lat), (180.0, lat)]))
    return [_project(g) for g in lines]


def _load_layer(d: Dict[str, Any], base: Path) -> Layer:
    name = str(d.get("name") or "layer")
    sym = Symbolizer.from_dict(d.get("style") or {})
    ds = d.get("datasource") or {}
    kind = ds.get("type")
    if kind == "geojson":
        geoms, labels = _load_geojson(ds, base, sym)
    elif kind == "graticule":
        geoms = _graticule(float(ds.get("step", 30)))
        labels = [None] * len(geoms)
    else:
        raise StyleError(f"layer {name!r}: unknown datasource type {kind!r}")
    return Layer(name=name, geometries=geoms, labels=labels, symbolizer=sym)


def _with_data_file(layer_docs: List[Any], data_file: str | Path) -> List[Any]:
    if not layer_docs or not isinstance(layer_docs[0], dict):
        raise StyleError("a data file was given but the style has no layers")
    first = dict(layer_docs[0])
    ds = {k: v for k, v in (first.get("datasource") or {}).items() if k != "data"}
    if ds.get("type") != "geojson":
        raise StyleError(f"data file needs a geojson first layer, got {ds.get('type')!r}")
    ds["file"] = str(Path(data_file).resolve())
    first["datasource"] = ds
    log.info("first layer datasource replaced", extra={"extra": {"layer": first.get("name"), "file": ds["file"]}})
    return [first, *layer_docs[1:]]


def load_style(path: str | Path, data_file: str | Path | None = None) -> Style:
    """
    Parse a style document and load everything it references.
    Raises StyleError on malformed input.

    `data_file` replaces the first layer's GeoJSON source, so one style can be
    pointed at different data at startup.
    """
    p = Path(path)
    try:
        text = p.read_text()
    except OSError as e:
        raise StyleError(f"cannot read style {p}: {e}") from e
    try:
        doc = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise StyleError(f"cannot parse style {p}: {e}") from e
    return style_from_dict(doc, base=p.parent, source=p, data_file=data_file)


def style_from_dict(
    doc: Any,
    base: Path = Path("."),
    source: Optional[Path] = None,
    data_file: str | Path | None = None,
) -> Style:
    if not isinstance(doc, dict) or not isinstance(doc.get("layers"), list):
        raise StyleError("style document must be a mapping with a 'layers' list")

    fonts: List[Path] = []
    for f in doc.get("fonts") or []:
        fp = base / f
        try:
            ImageFont.truetype(str(fp), 10)
        except OSError as e:
            raise StyleError(f"cannot register font {fp}: {e}") from e
        fonts.append(fp)

    layer_docs = list(doc["layers"])
    if data_file is not None:
        layer_docs = _with_data_file(layer_docs, data_file)
    layers = [_load_layer(d, base) for d in layer_docs]
    style = Style(
        name=str(doc.get("name") or (source.stem if source else "style")),
        background=parse_color(doc.get("background", "#00000000")),
        layers=layers,
        fonts=fonts,
        source=source,
    )
    log.info(
        "style loaded",
        extra={"extra": {"style": style.name, "layers": [(l.name, len(l.geometries)) for l in layers], "fonts": len(fonts)}},
    )
    return style


# -------------------------
# Rendering context
# -------------------------
class StyleContext:
    """
    One rendering context over a loaded Style.

    `extent` is the context's mutable view state: set it, then call render().
    A context is not safe for concurrent use; the engine hands each one to a
    single render at a time.
    """

    def __init__(self, style: Style):
        self.style = style
        self.extent: Optional[Extent] = None
        self._fonts: Dict[int, Any] = {}

    def _font(self, size: int):
        if size not in self._fonts:
            self._fonts[size] = self.style.font(size)
        return self._fonts[size]

    def render(self, width: int, height: int) -> Image.Image:
        if self.extent is None:
            raise RuntimeError("extent not set")
        e = self.extent
        sx = width / e.width
        sy = height / e.height
        pad_x = _CLIP_PAD_PX / sx
        pad_y = _CLIP_PAD_PX / sy
        clip = Extent(e.min_x - pad_x, e.min_y - pad_y, e.max_x + pad_x, e.max_y + pad_y)

        def to_px(coords: np.ndarray) -> np.ndarray:
            return np.column_stack([(coords[:, 0] - e.min_x) * sx, (e.max_y - coords[:, 1]) * sy])

        img = Image.new("RGBA", (width, height), self.style.background)
        for layer in self.style.layers:
            overlay = Image.new("RGBA", (width, height), (0, 0, 0, 0))
            draw = ImageDraw.Draw(overlay)
            sym = layer.symbolizer
            for i in layer.query(clip):
                g = shapely.clip_by_rect(layer.geometries[i], *clip.as_tuple())
                if g.is_empty:
                    continue
                g = shapely.transform(g, to_px)
                for part in _parts(g):
                    self._draw_part(overlay, draw, part, sym)
                label = layer.labels[i]
                if label:
                    anchor = g if g.geom_type == "Point" else g.representative_point()
                    draw.text(
                        (anchor.x + sym.marker_size + 2, anchor.y - sym.font_size / 2.0),
                        label,
                        fill=sym.text_fill,
                        font=self._font(sym.font_size),
                    )
            img.alpha_composite(overlay)
        return img

    @staticmethod
    def _draw_part(overlay: Image.Image, draw: ImageDraw.ImageDraw, part, sym: Symbolizer) -> None:
        kind = part.geom_type
        if kind == "Polygon":
            exterior = list(part.exterior.coords)
            if sym.fill:
                # Mask so holes stay transparent.
                mask = Image.new("L", overlay.size, 0)
                md = ImageDraw.Draw(mask)
                md.polygon(exterior, fill=255)
                for ring in part.interiors:
                    md.polygon(list(ring.coords), fill=0)
                overlay.paste(sym.fill, (0, 0, overlay.size[0], overlay.size[1]), mask)
            if sym.stroke:
                draw.line(exterior, fill=sym.stroke, width=sym.stroke_width)
                for ring in part.interiors:
                    draw.line(list(ring.coords), fill=sym.stroke, width=sym.stroke_width)
        elif kind in ("LineString", "LinearRing"):
            if sym.stroke:
                draw.line(list(part.coords), fill=sym.stroke, width=sym.stroke_width, joint="curve")
        elif kind == "Point":
            if sym.marker:
                r = sym.marker_size
                draw.ellipse([part.x - r, part.y - r, part.x + r, part.y + r], fill=sym.marker)

    def encode(self, image: Image.Image, fmt: str = "png") -> bytes:
        fmt = fmt.lower()
        buf = io.BytesIO()
        if fmt == "png":
            image.save(buf, format="PNG")
        elif fmt in ("jpeg", "jpg"):
            image.convert("RGB").save(buf, format="JPEG", quality=90)
        else:
            raise ValueError(f"unsupported image format: {fmt!r}")
        return buf.getvalue()


def _parts(g) -> Iterator[Any]:
    """Flatten Multi*/GeometryCollection into simple parts."""
    if hasattr(g, "geoms"):
        for sub in g.geoms:
            yield from _parts(sub)
    elif not g.is_empty:
        yield g
