"""Schematic conversion stages, in pipeline order."""

import logging
import re

from .kicad_model import default_for
from .stage import ConverterStage
from .transform import SCH_SCALE, build_sch_transform
from .utils import normalize_angle, num, rotate_point, xy

log = logging.getLogger(__name__)

# Library symbol name prefixes, checked in order ("LED_Small" before "L")
_LIB_NAME_TYPES = (
    ("led", "led"),
    ("r", "resistor"),
    ("c", "capacitor"),
    ("l", "inductor"),
    ("d", "diode"),
    ("q", "transistor"),
)

_REFERENCE_TYPES = {
    "R": "resistor",
    "C": "capacitor",
    "L": "inductor",
    "D": "diode",
    "LED": "led",
    "Q": "transistor",
}

_FACING = {"R": "right", "L": "left", "U": "up", "D": "down"}

# Label rotation -> side of the text its connection point sits on
_LABEL_ANCHOR_SIDES = {0: "left", 90: "bottom", 180: "right", 270: "top"}

_REF_PREFIX_RE = re.compile(r"^[A-Za-z]+")


def infer_ftype(lib_id: str, reference: str) -> str:
    """Guess the electrical type from the library symbol name or reference."""
    name = (lib_id or "").rsplit(":", 1)[-1].lower()
    for prefix, ftype in _LIB_NAME_TYPES:
        if name == prefix or name.startswith(prefix + "_"):
            return ftype
    m = _REF_PREFIX_RE.match(reference or "")
    if m:
        return _REFERENCE_TYPES.get(m.group(0).upper(), "chip")
    return "chip"


def facing_direction(orientation) -> str:
    return _FACING.get(orientation or default_for("symbol", "orientation"), "right")


def _pin_number(number: str):
    return int(number) if number.isdigit() else number


class InitializeSchematicContextStage(ConverterStage):
    def step(self) -> bool:
        sch = self.ctx.kicad_sch
        if sch is None:
            return self.skip()

        self.ctx.k2c_mat_sch = build_sch_transform(sch)
        self.ctx.symbol_uuid_to_component_id = {}
        self.ctx.lib_id_to_source_component_id = {}
        log.info("Schematic transform (paper %s): %s", sch.paper or "default",
                 self.ctx.k2c_mat_sch)

        self.finished = True
        return False


class CollectLibrarySymbolsStage(ConverterStage):
    """Placed symbols -> source_component, schematic_component and ports."""

    def __init__(self, ctx):
        super().__init__(ctx)
        self._processed = set()

    def step(self) -> bool:
        sch = self.ctx.kicad_sch
        if sch is None or self.ctx.k2c_mat_sch is None:
            return self.skip()

        emitted = sum(1 for sym in sch.symbols if self.process(sym))
        log.info("Emitted %d schematic components", emitted)

        self.finished = True
        return False

    def process(self, sym) -> bool:
        """Emit one placed symbol unless its uuid was already seen."""
        if not sym.uuid:
            self.ctx.warn(f"Symbol {sym.lib_id or '?'} has no uuid and was skipped")
            return False
        if sym.uuid in self._processed:
            return False

        reference = sym.properties.get("Reference") or default_for("symbol", "reference")
        value = sym.properties.get("Value") or default_for("symbol", "value")
        source_id = self._source_component(sym.lib_id, reference, value)

        at = sym.at
        x, y = self.ctx.k2c_mat_sch.apply_point(at)
        width, height = default_for("symbol", "size")
        component = self.ctx.db.insert("schematic_component", {
            "source_component_id": source_id,
            "center": xy(x, y),
            "rotation": num(normalize_angle(at.angle if at else 0.0)),
            "size": {"width": width, "height": height},
        })
        component_id = component["schematic_component_id"]
        self.ctx.symbol_uuid_to_component_id[sym.uuid] = component_id

        self._create_ports(sym, component_id)
        self._processed.add(sym.uuid)
        self.ctx.bump("components")
        return True

    def _source_component(self, lib_id, reference, value) -> str:
        known = self.ctx.lib_id_to_source_component_id.get(lib_id)
        if known is not None:
            return known
        record = {
            "name": lib_id or reference,
            "ftype": infer_ftype(lib_id, reference),
        }
        if value:
            record["manufacturer_part_number"] = value
        inserted = self.ctx.db.insert("source_component", record)
        source_id = inserted["source_component_id"]
        self.ctx.lib_id_to_source_component_id[lib_id] = source_id
        return source_id

    def _create_ports(self, sym, component_id):
        libs = self.ctx.kicad_sch.lib_symbols
        lib = libs.get(sym.library_key) or libs.get(sym.lib_id)
        if lib is None:
            self.ctx.warn(f"Library symbol {sym.library_key} not found for {sym.uuid}")
            return

        angle = sym.at.angle if sym.at else 0.0
        for pin in lib.pins:
            if pin.unit not in (0, sym.unit) or pin.style not in (0, 1):
                continue
            # Library coordinates are Y-up, like Circuit JSON
            px, py = (pin.at.x, pin.at.y) if pin.at else (0.0, 0.0)
            rx, ry = rotate_point(px, py, angle)
            port = {
                "schematic_component_id": component_id,
                "center": xy(rx / SCH_SCALE, ry / SCH_SCALE),
                "facing_direction": facing_direction(pin.orientation),
                "pin_number": _pin_number(pin.number),
            }
            if pin.name and pin.name != "~":
                port["display_pin_label"] = pin.name
            self.ctx.db.insert("schematic_port", port)


class CollectSchematicTracesStage(ConverterStage):
    """Wires, junctions and net labels."""

    def step(self) -> bool:
        sch = self.ctx.kicad_sch
        transform = self.ctx.k2c_mat_sch
        if sch is None or transform is None:
            return self.skip()

        for wire in sch.wires:
            if len(wire.points) < 2:
                log.debug("Skipping wire with %d points", len(wire.points))
                continue
            pts = [xy(*transform.apply_point(p)) for p in wire.points]
            self.ctx.db.insert("schematic_trace", {
                "edges": [{"from": a, "to": b} for a, b in zip(pts, pts[1:])],
            })
            self.ctx.bump("traces")

        for junction in sch.junctions:
            if junction.at is None:
                continue
            self.ctx.db.insert("schematic_trace", {
                "edges": [],
                "junctions": [xy(*transform.apply_point(junction.at))],
            })

        for label in sch.labels:
            center = xy(*transform.apply_point(label.at))
            angle = int(round(label.at.angle)) % 360 if label.at else 0
            self.ctx.db.insert("schematic_net_label", {
                "text": label.text,
                "label_kind": label.kind,
                "center": center,
                "anchor_position": dict(center),
                "anchor_side": _LABEL_ANCHOR_SIDES.get(angle, "left"),
            })
            self.ctx.bump("labels")

        log.info("Schematic: %d wires, %d junctions, %d labels",
                 len(sch.wires), len(sch.junctions), len(sch.labels))
        self.finished = True
        return False
