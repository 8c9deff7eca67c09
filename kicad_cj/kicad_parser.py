"""KiCad S-expression file parser.

Reads .kicad_pcb and .kicad_sch text and produces the KicadPcb / KicadSch
model. Both the current syntax (footprint, property, uuid, stroke) and the
older one (module, fp_text reference/value, tstamp, bare width) are read.

File structure reference:
  (kicad_pcb (general (thickness ..)) (layers ..) (net N "name")
             (footprint "lib:name" (at x y a) (pad ..) (fp_line ..) ..)
             (segment ..) (arc ..) (via ..) (gr_line ..) (gr_text ..))
  (kicad_sch (paper "A4") (lib_symbols (symbol "lib:id" (symbol "id_U_S" (pin ..))))
             (symbol (lib_id ..) (at ..) (property ..)) (wire (pts ..)) (junction ..))
"""

import logging
import re
from typing import Optional

import sexpdata

from .kicad_model import (
    Drill, Footprint, GraphicItem, Junction, KicadPcb, KicadSch, LibSymbol,
    NetDef, NetLabel, Pad, Point, Position, SchPin, SchSymbol, Segment,
    TextItem, TrackArc, Via, Wire,
)
from .utils import parse_float, parse_int, rotate_point

log = logging.getLogger(__name__)

_UNIT_SUFFIX_RE = re.compile(r"_(\d+)_(\d+)$")

_PIN_ORIENTATIONS = {0: "R", 90: "U", 180: "L", 270: "D"}


class KicadParseError(ValueError):
    """Raised when text is not a KiCad document of the expected kind."""


# ── S-expression helpers ─────────────────────────────────────────────


def _text(atom) -> str:
    if isinstance(atom, sexpdata.Symbol):
        return atom.value()
    if isinstance(atom, str):
        return atom
    if isinstance(atom, float) and atom.is_integer():
        return str(int(atom))
    return str(atom)


def _head(node) -> Optional[str]:
    if isinstance(node, list) and node and not isinstance(node[0], list):
        return _text(node[0])
    return None


def _children(node, name: str):
    return [c for c in node[1:] if _head(c) == name]


def _find(node, name: str):
    for c in node[1:]:
        if _head(c) == name:
            return c
    return None


def _atoms(node):
    """Non-list items after the head."""
    return [c for c in node[1:] if not isinstance(c, list)]


def _value(node, name: str, index: int = 1):
    child = _find(node, name)
    if child is None or len(child) <= index or isinstance(child[index], list):
        return None
    return child[index]


def _float(node, name: str) -> Optional[float]:
    v = _value(node, name)
    return None if v is None else parse_float(v)


def _point(node, name: str) -> Optional[Point]:
    child = _find(node, name)
    if child is None or len(child) < 3:
        return None
    return Point(parse_float(child[1]), parse_float(child[2]))


def _position(node, name: str = "at") -> Optional[Position]:
    child = _find(node, name)
    if child is None or len(child) < 3:
        return None
    angle = parse_float(child[3]) if len(child) > 3 and not isinstance(child[3], list) else 0.0
    return Position(parse_float(child[1]), parse_float(child[2]), angle)


def _uuid(node) -> str:
    v = _value(node, "uuid")
    if v is None:
        v = _value(node, "tstamp")
    return "" if v is None else _text(v)


def _layer(node) -> str:
    v = _value(node, "layer")
    return "" if v is None else _text(v)


def _stroke_width(node) -> Optional[float]:
    stroke = _find(node, "stroke")
    if stroke is not None:
        w = _float(stroke, "width")
        if w is not None:
            return w
    return _float(node, "width")


def _is_hidden(node) -> bool:
    """`hide` flag, either bare or `(hide yes)`, on the node or its effects."""
    for target in (node, _find(node, "effects")):
        if target is None:
            continue
        if any(_text(a) == "hide" for a in _atoms(target)):
            return True
        hide = _find(target, "hide")
        if hide is not None:
            return len(hide) < 2 or _text(hide[1]) != "no"
    return False


def _font_size(node) -> Optional[float]:
    effects = _find(node, "effects")
    if effects is None:
        return None
    font = _find(effects, "font")
    if font is None:
        return None
    size = _find(font, "size")
    if size is None or len(size) < 2:
        return None
    return parse_float(size[1])


def load_sexp(text: str, root: str) -> list:
    """Parse text into a nested list and check the root node name."""
    try:
        tree = sexpdata.loads(text)
    except Exception as e:
        raise KicadParseError(f"Invalid S-expression: {e}") from e
    if _head(tree) != root:
        raise KicadParseError(f"Expected a ({root} ...) document, got {_head(tree)!r}")
    return tree


def parse_kicad_pcb(text: str) -> KicadPcb:
    """Parse .kicad_pcb text and return a KicadPcb."""
    return PcbParser().parse(text)


def parse_kicad_sch(text: str) -> KicadSch:
    """Parse .kicad_sch text and return a KicadSch."""
    return SchParser().parse(text)


# ── Board ────────────────────────────────────────────────────────────


class PcbParser:
    def __init__(self):
        self.model = KicadPcb()
        # Net name -> number, for files that reference nets by name
        self._net_numbers = {}

    def parse(self, text: str) -> KicadPcb:
        tree = load_sexp(text, "kicad_pcb")

        for node in tree[1:]:
            head = _head(node)
            if head == "version":
                self.model.version = _text(node[1]) if len(node) > 1 else ""
            elif head == "general":
                self.model.thickness = _float(node, "thickness")
            elif head == "layers":
                self._parse_layers(node)
            elif head == "net":
                self._parse_net(node)
            elif head in ("footprint", "module"):
                self.model.footprints.append(self._parse_footprint(node))
            elif head == "segment":
                self.model.segments.append(Segment(
                    start=_point(node, "start"),
                    end=_point(node, "end"),
                    width=_float(node, "width"),
                    layer=_layer(node),
                    net=self._net_ref(node),
                ))
            elif head == "arc":
                self.model.arcs.append(TrackArc(
                    start=_point(node, "start"),
                    mid=_point(node, "mid"),
                    end=_point(node, "end"),
                    width=_float(node, "width"),
                    layer=_layer(node),
                    net=self._net_ref(node),
                ))
            elif head == "via":
                self.model.vias.append(self._parse_via(node))
            elif head in ("gr_line", "gr_arc", "gr_circle", "gr_rect"):
                self.model.graphics.append(_parse_graphic(node, head[3:]))
            elif head == "gr_text":
                self.model.texts.append(_parse_text(node, "user", text_index=1))

        log.info("Parsed board: %d nets, %d footprints, %d segments, %d vias, %d graphics",
                 len(self.model.nets), len(self.model.footprints),
                 len(self.model.segments), len(self.model.vias),
                 len(self.model.graphics))
        return self.model

    def _parse_layers(self, node):
        for entry in node[1:]:
            if isinstance(entry, list) and len(entry) >= 2:
                name = _text(entry[1])
                if name.endswith(".Cu"):
                    self.model.copper_layers.append(name)

    def _parse_net(self, node):
        if len(node) < 2:
            return
        number = parse_int(node[1])
        name = _text(node[2]) if len(node) > 2 else ""
        self.model.nets.append(NetDef(number=number, name=name))
        if name:
            self._net_numbers[name] = number

    def _net_ref(self, node) -> Optional[int]:
        v = _value(node, "net")
        if v is None:
            return None
        if isinstance(v, (int, float)):
            return int(v)
        return self._net_numbers.get(_text(v))

    def _parse_via(self, node) -> Via:
        layers_node = _find(node, "layers")
        layers = [_text(a) for a in _atoms(layers_node)] if layers_node is not None else []
        return Via(
            at=_point(node, "at"),
            size=_float(node, "size"),
            drill=_float(node, "drill"),
            layers=layers,
            net=self._net_ref(node),
        )

    def _parse_footprint(self, node) -> Footprint:
        fp = Footprint(
            uuid=_uuid(node),
            library_link=_text(node[1]) if len(node) > 1 and not isinstance(node[1], list) else "",
            layer=_layer(node),
            at=_position(node),
        )

        for child in node[1:]:
            head = _head(child)
            if head == "property" and len(child) >= 3:
                key = _text(child[1])
                prop = _parse_text(child, key, text_index=2)
                fp.properties[key] = prop
            elif head == "fp_text" and len(child) >= 3:
                fp.texts.append(_parse_text(child, _text(child[1]), text_index=2))
            elif head in ("fp_line", "fp_arc", "fp_circle", "fp_rect"):
                fp.graphics.append(_parse_graphic(child, head[3:]))
            elif head == "pad":
                fp.pads.append(self._parse_pad(child))

        log.debug("Footprint %s: %d pads, %d graphics",
                  fp.library_link, len(fp.pads), len(fp.graphics))
        return fp

    def _parse_pad(self, node) -> Pad:
        atoms = _atoms(node)
        pad = Pad(
            number=_text(atoms[0]) if atoms else "",
            pad_type=_text(atoms[1]) if len(atoms) > 1 else None,
            shape=_text(atoms[2]) if len(atoms) > 2 else None,
            at=_position(node),
            size=_point(node, "size"),
        )

        drill = _find(node, "drill")
        if drill is not None:
            values = [a for a in _atoms(drill)]
            if values and _text(values[0]) == "oval":
                nums = [parse_float(v) for v in values[1:]]
                width = nums[0] if nums else None
                height = nums[1] if len(nums) > 1 else width
                pad.drill = Drill(diameter=width, oval=True, width=width, height=height)
            elif values:
                pad.drill = Drill(diameter=parse_float(values[0]))

        layers_node = _find(node, "layers")
        if layers_node is not None:
            pad.layers = [_text(a) for a in _atoms(layers_node)]

        net = _find(node, "net")
        if net is not None and len(net) >= 2:
            if isinstance(net[1], (int, float)):
                pad.net = int(net[1])
                pad.net_name = _text(net[2]) if len(net) > 2 else ""
            else:
                pad.net_name = _text(net[1])
                pad.net = self._net_numbers.get(pad.net_name)
        return pad


def _parse_graphic(node, item_type: str) -> GraphicItem:
    item = GraphicItem(item_type=item_type, layer=_layer(node), width=_stroke_width(node))

    if item_type == "circle":
        item.start = _point(node, "center")
        item.end = _point(node, "end")
    elif item_type == "arc" and _find(node, "mid") is None and _find(node, "angle") is not None:
        # Legacy arc: (start <centre>) (end <arc start>) (angle <sweep>)
        center = _point(node, "start") or Point()
        first = _point(node, "end") or Point()
        sweep = _float(node, "angle") or 0.0
        rx, ry = first.x - center.x, first.y - center.y
        mx, my = rotate_point(rx, ry, sweep / 2)
        ex, ey = rotate_point(rx, ry, sweep)
        item.start = first
        item.mid = Point(center.x + mx, center.y + my)
        item.end = Point(center.x + ex, center.y + ey)
    else:
        item.start = _point(node, "start")
        item.end = _point(node, "end")
        item.mid = _point(node, "mid")
    return item


def _parse_text(node, kind: str, text_index: int) -> TextItem:
    raw = node[text_index] if len(node) > text_index else ""
    return TextItem(
        text="" if isinstance(raw, list) else _text(raw),
        kind=kind,
        at=_position(node),
        layer=_layer(node),
        size=_font_size(node),
        hidden=_is_hidden(node),
    )


# ── Schematic ────────────────────────────────────────────────────────


class SchParser:
    def __init__(self):
        self.model = KicadSch()

    def parse(self, text: str) -> KicadSch:
        tree = load_sexp(text, "kicad_sch")

        for node in tree[1:]:
            head = _head(node)
            if head == "version":
                self.model.version = _text(node[1]) if len(node) > 1 else ""
            elif head == "paper":
                self._parse_paper(node)
            elif head == "lib_symbols":
                self._parse_lib_symbols(node)
            elif head == "symbol":
                self.model.symbols.append(self._parse_symbol(node))
            elif head == "wire":
                pts = _find(node, "pts")
                points = []
                if pts is not None:
                    for xy in _children(pts, "xy"):
                        if len(xy) >= 3:
                            points.append(Point(parse_float(xy[1]), parse_float(xy[2])))
                self.model.wires.append(Wire(points=points))
            elif head == "junction":
                self.model.junctions.append(Junction(at=_point(node, "at")))
            elif head in ("label", "global_label", "hierarchical_label"):
                self.model.labels.append(NetLabel(
                    text=_text(node[1]) if len(node) > 1 and not isinstance(node[1], list) else "",
                    kind=head,
                    at=_position(node),
                ))

        log.info("Parsed schematic: %d library symbols, %d symbols, %d wires, %d junctions",
                 len(self.model.lib_symbols), len(self.model.symbols),
                 len(self.model.wires), len(self.model.junctions))
        return self.model

    def _parse_paper(self, node):
        atoms = [_text(a) for a in _atoms(node)]
        if atoms:
            self.model.paper = atoms[0]
        self.model.portrait = "portrait" in atoms[1:]

    def _parse_lib_symbols(self, node):
        parents = {}
        for sym in _children(node, "symbol"):
            if len(sym) < 2:
                continue
            lib_id = _text(sym[1])
            lib = LibSymbol(lib_id=lib_id)
            lib.pins.extend(_collect_pins(sym, unit=0, style=0))
            for sub in _children(sym, "symbol"):
                unit, style = 0, 0
                m = _UNIT_SUFFIX_RE.search(_text(sub[1]) if len(sub) > 1 else "")
                if m:
                    unit, style = int(m.group(1)), int(m.group(2))
                lib.pins.extend(_collect_pins(sub, unit=unit, style=style))
            extends = _value(sym, "extends")
            if extends is not None:
                parents[lib_id] = _text(extends)
            self.model.lib_symbols[lib_id] = lib

        # Derived symbols inherit the pins of their parent
        for lib_id, parent in parents.items():
            lib = self.model.lib_symbols[lib_id]
            base = self.model.lib_symbols.get(_sibling_id(lib_id, parent))
            if not lib.pins and base is not None:
                lib.pins = list(base.pins)

    def _parse_symbol(self, node) -> SchSymbol:
        lib_id = _value(node, "lib_id")
        lib_name = _value(node, "lib_name")
        unit = _value(node, "unit")
        sym = SchSymbol(
            uuid=_uuid(node),
            lib_id="" if lib_id is None else _text(lib_id),
            lib_name="" if lib_name is None else _text(lib_name),
            at=_position(node),
            unit=parse_int(unit) if unit is not None else 1,
        )
        for prop in _children(node, "property"):
            if len(prop) >= 3:
                sym.properties[_text(prop[1])] = _text(prop[2])
        return sym


def _sibling_id(lib_id: str, name: str) -> str:
    """`extends` names a symbol in the same library as lib_id."""
    if ":" in lib_id and ":" not in name:
        return lib_id.split(":", 1)[0] + ":" + name
    return name


def _collect_pins(node, unit: int, style: int):
    pins = []
    for pin in _children(node, "pin"):
        at = _position(pin)
        orientation = None
        if at is not None:
            angle = int(round(at.angle)) % 360
            orientation = _PIN_ORIENTATIONS.get(angle)
        number = _value(pin, "number")
        name = _value(pin, "name")
        pins.append(SchPin(
            number="" if number is None else _text(number),
            name="" if name is None else _text(name),
            at=at,
            orientation=orientation,
            unit=unit,
            style=style,
        ))
    return pins
