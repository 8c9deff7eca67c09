"""Footprint emitter: one pcb_component plus its pads, text and graphics.

Every child position is computed in KiCad board space first (local offset
rotated by the negated footprint angle, then added to the footprint anchor)
and only then mapped through the board transform.
"""

import logging
import math
from typing import Optional

from .context import ConverterContext
from .kicad_model import Footprint, Pad, Point, Position, default_for, or_default
from .layers import is_back, is_silkscreen, map_pad_layer, map_side
from .utils import (
    arc_points_from_3pt, bounds, circle_points, normalize_angle, num,
    rotate_point, xy,
)

log = logging.getLogger(__name__)

# Circuit JSON text renders smaller than KiCad's at the same nominal size
TEXT_SCALE = 1.5
FONT = "tscircuit2024"

RECT_PAD_SHAPES = ("rect", "square", "roundrect", "trapezoid")

# fp_text kinds shadowed by a footprint property of the same meaning
_LEGACY_TEXT_KEYS = {"reference": "Reference", "value": "Value"}


class Placement:
    """Maps footprint-local coordinates to Circuit JSON board space."""

    def __init__(self, ctx: ConverterContext, at: Optional[Position]):
        at = at or Position()
        self.transform = ctx.k2c_mat_pcb
        self.x = at.x
        self.y = at.y
        self.rotation = at.angle

    def to_board(self, lx: float, ly: float):
        rx, ry = rotate_point(lx, ly, -self.rotation)
        return self.transform.apply(self.x + rx, self.y + ry)

    def point(self, lx: float, ly: float) -> dict:
        return xy(*self.to_board(lx, ly))

    def route(self, points) -> list:
        return [self.point(px, py) for px, py in points]


def substitute_variables(text: str, fp: Footprint) -> str:
    """Replace ${REFERENCE} and ${VALUE} with the footprint's own values."""
    reference = fp.property_value("Reference") or fp.text_value("reference") or "?"
    value = fp.property_value("Value") or fp.text_value("value") or ""
    return text.replace("${REFERENCE}", reference).replace("${VALUE}", value)


def _is_quarter_turn(angle_deg: float) -> bool:
    a = normalize_angle(angle_deg)
    return 45 <= a < 135 or 225 <= a < 315


def _pad_size(pad: Pad):
    dw, dh = default_for("pad", "size")
    if pad.size is None:
        return dw, dh
    return pad.size.x or dw, pad.size.y or dh


def _component_size(fp: Footprint):
    """Width/height of the pad extents in footprint-local coordinates."""
    corners = []
    for pad in fp.pads:
        at = pad.at or Position()
        w, h = _pad_size(pad)
        corners.append((at.x - w / 2, at.y - h / 2))
        corners.append((at.x + w / 2, at.y + h / 2))
    box = bounds(corners)
    if box is None:
        return 0.0, 0.0
    return box[2] - box[0], box[3] - box[1]


def process_footprint(ctx: ConverterContext, fp: Footprint) -> Optional[str]:
    """Emit a footprint and its children. Returns the pcb_component_id."""
    if ctx.k2c_mat_pcb is None:
        return None

    placement = Placement(ctx, fp.at)
    width, height = _component_size(fp)
    component = ctx.db.insert("pcb_component", {
        "center": placement.point(0, 0),
        "layer": "bottom" if is_back(fp.layer) else "top",
        "rotation": num(normalize_angle(placement.rotation)),
        "width": num(width),
        "height": num(height),
    })
    component_id = component["pcb_component_id"]
    if fp.uuid:
        ctx.footprint_uuid_to_component_id[fp.uuid] = component_id

    for pad in fp.pads:
        emit_pad(ctx, placement, pad, component_id)
    emit_footprint_texts(ctx, placement, fp, component_id)
    emit_footprint_graphics(ctx, placement, fp, component_id)

    ctx.bump("components")
    return component_id


# ── Pads ─────────────────────────────────────────────────────────────


def emit_pad(ctx: ConverterContext, placement: Placement, pad: Pad,
             component_id: str) -> Optional[dict]:
    at = pad.at or Position()
    x, y = placement.to_board(at.x, at.y)
    pad_type = or_default(pad.pad_type, "pad", "type")
    shape = or_default(pad.shape, "pad", "shape")
    width, height = _pad_size(pad)
    swap = _is_quarter_turn(at.angle + placement.rotation)

    base = {
        "pcb_component_id": component_id,
        "x": num(x),
        "y": num(y),
        "port_hints": [pad.number] if pad.number else [],
    }

    if pad_type == "smd":
        return _emit_smd_pad(ctx, pad, base, shape, width, height)
    if pad_type == "np_thru_hole":
        return _emit_unplated_hole(ctx, pad, base)
    return _emit_plated_hole(ctx, pad, base, shape, width, height, swap)


def _emit_smd_pad(ctx, pad, base, shape, width, height):
    record = dict(base)
    record["layer"] = map_pad_layer(pad.layers)
    record["width"] = num(width)
    record["height"] = num(height)
    if shape == "circle":
        record["shape"] = "circle"
        record["radius"] = num(min(width, height) / 2)
    else:
        record["shape"] = "rect"
    inserted = ctx.db.insert("pcb_smtpad", record)
    ctx.bump("pads")
    return inserted


def _emit_unplated_hole(ctx, pad, base):
    record = dict(base)
    del record["port_hints"]
    drill = pad.drill
    if drill is not None and drill.oval and drill.width and drill.height:
        record["hole_shape"] = "oval"
        record["hole_width"] = num(drill.width)
        record["hole_height"] = num(drill.height)
    else:
        diameter = drill.diameter if drill is not None else None
        record["hole_shape"] = "circle"
        record["hole_diameter"] = num(or_default(diameter, "np_hole", "drill"))
    return ctx.db.insert("pcb_hole", record)


def _emit_plated_hole(ctx, pad, base, shape, width, height, swap):
    if swap:
        width, height = height, width
    drill = pad.drill
    oval_drill = drill is not None and drill.oval
    hole = or_default(drill.diameter if drill is not None else None, "pad", "drill")
    hole_w, hole_h = hole, hole
    if oval_drill:
        hole_w = drill.width or hole
        hole_h = drill.height or hole_w
        if swap:
            hole_w, hole_h = hole_h, hole_w

    record = dict(base)
    record["layers"] = ["top", "bottom"]

    if shape == "oval" or (shape == "circle" and oval_drill):
        record.update({
            "shape": "pill",
            "outer_width": num(width),
            "outer_height": num(height),
            "hole_width": num(hole_w),
            "hole_height": num(hole_h),
        })
    elif shape in RECT_PAD_SHAPES and oval_drill:
        record.update({
            "shape": "pill_hole_with_rect_pad",
            "hole_shape": "pill",
            "pad_shape": "rect",
            "hole_width": num(hole_w),
            "hole_height": num(hole_h),
            "rect_pad_width": num(width),
            "rect_pad_height": num(height),
        })
    elif shape in RECT_PAD_SHAPES:
        record.update({
            "shape": "circular_hole_with_rect_pad",
            "hole_shape": "circle",
            "pad_shape": "rect",
            "hole_diameter": num(hole),
            "rect_pad_width": num(width),
            "rect_pad_height": num(height),
        })
    else:
        if shape != "circle":
            log.debug("Pad %s: shape %s emitted as a circular plated hole", pad.number, shape)
        record.update({
            "shape": "circle",
            "hole_diameter": num(hole),
            "outer_diameter": num(max(width, height)),
        })

    inserted = ctx.db.insert("pcb_plated_hole", record)
    ctx.bump("pads")
    return inserted


# ── Text ─────────────────────────────────────────────────────────────


def _footprint_texts(fp: Footprint):
    items = list(fp.properties.values())
    for text in fp.texts:
        key = _LEGACY_TEXT_KEYS.get(text.kind)
        if key is not None and key in fp.properties:
            continue
        items.append(text)
    return items


def emit_footprint_texts(ctx: ConverterContext, placement: Placement,
                         fp: Footprint, component_id: str) -> int:
    """Emit silkscreen-layer properties and fp_text. Returns the count."""
    count = 0
    for item in _footprint_texts(fp):
        if not item.layer or item.hidden:
            continue
        if not is_silkscreen(item.layer):
            log.debug("Skipping %s text on %s", item.kind, item.layer)
            continue
        at = item.at or Position()
        size = or_default(item.size, "text", "size")
        ctx.db.insert("pcb_silkscreen_text", {
            "pcb_component_id": component_id,
            "font": FONT,
            "font_size": num(size * TEXT_SCALE),
            "text": substitute_variables(item.text, fp),
            "anchor_position": placement.point(at.x, at.y),
            "layer": map_side(item.layer),
        })
        count += 1
    return count


# ── Graphics ─────────────────────────────────────────────────────────


def graphic_points(g) -> list:
    """Polyline of a graphic primitive in its own coordinate space."""
    start = g.start or Point()
    end = g.end or Point()
    if g.item_type == "circle":
        radius = math.hypot(end.x - start.x, end.y - start.y)
        return circle_points(start.x, start.y, radius)
    if g.item_type == "arc":
        if g.mid is None:
            return [(start.x, start.y), (end.x, end.y)]
        return arc_points_from_3pt((start.x, start.y), (g.mid.x, g.mid.y), (end.x, end.y))
    if g.item_type == "rect":
        return [(start.x, start.y), (end.x, start.y), (end.x, end.y),
                (start.x, end.y), (start.x, start.y)]
    return [(start.x, start.y), (end.x, end.y)]


def emit_footprint_graphics(ctx: ConverterContext, placement: Placement,
                            fp: Footprint, component_id: str) -> int:
    """Emit every footprint drawing primitive as a silkscreen path."""
    for g in fp.graphics:
        ctx.db.insert("pcb_silkscreen_path", {
            "pcb_component_id": component_id,
            "layer": map_side(g.layer),
            "route": placement.route(graphic_points(g)),
            "stroke_width": num(or_default(g.width, "fp_graphic", "width")),
        })
    return len(fp.graphics)
