"""Parsed KiCad document model consumed by the conversion stages.

Python dataclasses mirroring the parts of the .kicad_pcb / .kicad_sch trees
the converter reads. All coordinates are in KiCad mm with Y+ down. Geometry
fields are Optional: a value of None means the source file did not declare
it, and the DEFAULTS table decides what the emitters use instead.
"""

from dataclasses import dataclass, field
from typing import Optional


# Missing -> default policy, one table per entity kind.
DEFAULTS = {
    "pad": {
        "size": (1.0, 1.0),
        "shape": "circle",
        "type": "thru_hole",
        "drill": 0.8,
    },
    "np_hole": {
        "drill": 1.0,
    },
    "segment": {
        "width": 0.2,
    },
    "via": {
        "size": 0.8,
        "drill": 0.4,
        "layers": ("F.Cu", "B.Cu"),
    },
    "fp_graphic": {
        "width": 0.12,
    },
    "gr_graphic": {
        "width": 0.15,
    },
    "text": {
        "size": 1.0,
        "text": "",
    },
    "board": {
        "thickness": 1.6,
        "num_layers": 2,
    },
    "symbol": {
        "reference": "U?",
        "value": "",
        "size": (1.0, 1.0),
        "orientation": "R",
    },
}


def default_for(kind: str, name: str):
    """Return the documented fallback for field `name` of entity `kind`."""
    return DEFAULTS[kind][name]


def or_default(value, kind: str, name: str):
    """Return `value` unless it is missing (None, zero or empty), else the default."""
    if value is None or (not value and not isinstance(value, bool)):
        return default_for(kind, name)
    return value


@dataclass
class Point:
    x: float = 0.0
    y: float = 0.0


@dataclass
class Position:
    """An `(at x y [angle])` placement."""
    x: float = 0.0
    y: float = 0.0
    angle: float = 0.0


@dataclass
class Drill:
    diameter: Optional[float] = None
    # Set for `(drill oval w h)`
    oval: bool = False
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass
class TextItem:
    """fp_text, footprint property or gr_text."""
    text: str = ""
    # "reference", "value", "user" for fp_text; property key for properties
    kind: str = "user"
    at: Optional[Position] = None
    layer: str = ""
    size: Optional[float] = None
    hidden: bool = False


# ── Board ────────────────────────────────────────────────────────────


@dataclass
class Pad:
    number: str = ""
    pad_type: Optional[str] = None  # "smd", "thru_hole", "np_thru_hole", "connect"
    shape: Optional[str] = None  # "circle", "rect", "oval", "roundrect", ...
    at: Optional[Position] = None
    size: Optional[Point] = None
    drill: Optional[Drill] = None
    layers: list = field(default_factory=list)
    net: Optional[int] = None
    net_name: str = ""


@dataclass
class GraphicItem:
    """fp_* or gr_* drawing primitive.

    item_type is one of "line", "arc", "circle", "rect". Circles use `start`
    as the centre and `end` as a point on the circumference.
    """
    item_type: str = "line"
    layer: str = ""
    start: Optional[Point] = None
    end: Optional[Point] = None
    mid: Optional[Point] = None
    width: Optional[float] = None


@dataclass
class Footprint:
    uuid: str = ""
    library_link: str = ""
    layer: str = ""
    at: Optional[Position] = None
    properties: dict = field(default_factory=dict)  # key -> TextItem
    texts: list = field(default_factory=list)  # list of TextItem (fp_text)
    pads: list = field(default_factory=list)  # list of Pad
    graphics: list = field(default_factory=list)  # list of GraphicItem

    def property_value(self, key: str) -> Optional[str]:
        prop = self.properties.get(key)
        if prop is not None and prop.text:
            return prop.text
        return None

    def text_value(self, kind: str) -> Optional[str]:
        for text in self.texts:
            if text.kind == kind and text.text:
                return text.text
        return None


@dataclass
class Segment:
    start: Optional[Point] = None
    end: Optional[Point] = None
    width: Optional[float] = None
    layer: str = ""
    net: Optional[int] = None


@dataclass
class TrackArc:
    start: Optional[Point] = None
    mid: Optional[Point] = None
    end: Optional[Point] = None
    width: Optional[float] = None
    layer: str = ""
    net: Optional[int] = None


@dataclass
class Via:
    at: Optional[Point] = None
    size: Optional[float] = None
    drill: Optional[float] = None
    layers: list = field(default_factory=list)
    net: Optional[int] = None


@dataclass
class NetDef:
    number: int = 0
    name: str = ""


@dataclass
class KicadPcb:
    version: str = ""
    thickness: Optional[float] = None
    copper_layers: list = field(default_factory=list)  # list of layer names
    nets: list = field(default_factory=list)  # list of NetDef
    footprints: list = field(default_factory=list)  # list of Footprint
    segments: list = field(default_factory=list)  # list of Segment
    arcs: list = field(default_factory=list)  # list of TrackArc
    vias: list = field(default_factory=list)  # list of Via
    graphics: list = field(default_factory=list)  # list of GraphicItem (gr_*)
    texts: list = field(default_factory=list)  # list of TextItem (gr_text)


# ── Schematic ────────────────────────────────────────────────────────


@dataclass
class SchPin:
    number: str = ""
    name: str = ""
    at: Optional[Position] = None
    # "R", "L", "U", "D"
    orientation: Optional[str] = None
    # Unit / body style of the sub-symbol that declared the pin (0 = common)
    unit: int = 0
    style: int = 0


@dataclass
class LibSymbol:
    lib_id: str = ""
    pins: list = field(default_factory=list)  # list of SchPin


@dataclass
class SchSymbol:
    uuid: str = ""
    lib_id: str = ""
    lib_name: str = ""
    at: Optional[Position] = None
    unit: int = 1
    properties: dict = field(default_factory=dict)  # key -> value string

    @property
    def library_key(self) -> str:
        return self.lib_name or self.lib_id


@dataclass
class Wire:
    points: list = field(default_factory=list)  # list of Point


@dataclass
class Junction:
    at: Optional[Point] = None


@dataclass
class NetLabel:
    text: str = ""
    # "label", "global_label", "hierarchical_label"
    kind: str = "label"
    at: Optional[Position] = None


@dataclass
class KicadSch:
    version: str = ""
    paper: str = ""
    portrait: bool = False
    lib_symbols: dict = field(default_factory=dict)  # lib_id -> LibSymbol
    symbols: list = field(default_factory=list)  # list of SchSymbol
    wires: list = field(default_factory=list)  # list of Wire
    junctions: list = field(default_factory=list)  # list of Junction
    labels: list = field(default_factory=list)  # list of NetLabel
