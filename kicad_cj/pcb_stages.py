"""Board conversion stages, in pipeline order.

Each stage finishes in a single step(); a stage whose document or
prerequisite (transform, net table) is missing finishes without output.
"""

import logging

from .footprints import FONT, TEXT_SCALE, graphic_points, process_footprint
from .kicad_model import Point, default_for, or_default
from .layers import (
    is_copper, is_edge_cuts, is_fabrication, is_silkscreen, map_copper_layer,
    map_side,
)
from .stage import ConverterStage
from .transform import build_pcb_transform
from .utils import arc_points_from_3pt, assemble_outline, bounds, num, points_equal, xy

log = logging.getLogger(__name__)


class InitializePcbContextStage(ConverterStage):
    """Build the board transform and reset the per-board lookup tables."""

    def step(self) -> bool:
        pcb = self.ctx.kicad_pcb
        if pcb is None:
            return self.skip()

        self.ctx.k2c_mat_pcb = build_pcb_transform(pcb)
        self.ctx.net_num_to_name = {}
        self.ctx.footprint_uuid_to_component_id = {}
        log.info("Board transform: %s", self.ctx.k2c_mat_pcb)

        self.finished = True
        return False


class CollectNetsStage(ConverterStage):
    """Fill the net number -> net name table."""

    def step(self) -> bool:
        pcb = self.ctx.kicad_pcb
        table = self.ctx.net_num_to_name
        if pcb is None or table is None:
            return self.skip()

        for net in pcb.nets:
            if net.name or net.number != 0:
                table[net.number] = net.name or f"Net-{net.number}"
        table.setdefault(0, "")
        log.info("Resolved %d nets", len(table))

        self.finished = True
        return False


class CollectFootprintsStage(ConverterStage):
    def __init__(self, ctx):
        super().__init__(ctx)
        self._processed = set()

    def process(self, fp) -> bool:
        """Emit one footprint unless its uuid was already seen."""
        if not fp.uuid:
            self.ctx.warn(f"Footprint {fp.library_link or '?'} has no uuid and was skipped")
            return False
        if fp.uuid in self._processed:
            log.debug("Footprint %s already emitted", fp.uuid)
            return False
        process_footprint(self.ctx, fp)
        self._processed.add(fp.uuid)
        return True

    def step(self) -> bool:
        pcb = self.ctx.kicad_pcb
        if pcb is None or self.ctx.k2c_mat_pcb is None:
            return self.skip()

        emitted = sum(1 for fp in pcb.footprints if self.process(fp))
        log.info("Emitted %d footprints", emitted)

        self.finished = True
        return False


class CollectTracesStage(ConverterStage):
    """Merge copper segments and track arcs into one pcb_trace per (net, layer)."""

    def step(self) -> bool:
        pcb = self.ctx.kicad_pcb
        if pcb is None or self.ctx.k2c_mat_pcb is None or self.ctx.net_num_to_name is None:
            return self.skip()

        groups = {}  # (net, layer) -> route, in order of first appearance
        for seg in pcb.segments:
            start = seg.start or Point()
            end = seg.end or Point()
            self._extend(groups, seg, [(start.x, start.y), (end.x, end.y)])
        for arc in pcb.arcs:
            start = arc.start or Point()
            end = arc.end or Point()
            if arc.mid is None:
                points = [(start.x, start.y), (end.x, end.y)]
            else:
                points = arc_points_from_3pt((start.x, start.y), (arc.mid.x, arc.mid.y),
                                             (end.x, end.y))
            self._extend(groups, arc, points)

        for (net, _layer), route in groups.items():
            self.ctx.db.insert("pcb_trace", {
                "route": route,
                "net_name": self.ctx.net_name(net),
            })
            self.ctx.bump("traces")
        log.info("Emitted %d traces from %d segments and %d arcs",
                 len(groups), len(pcb.segments), len(pcb.arcs))

        self.finished = True
        return False

    def _extend(self, groups, track, points):
        layer = map_copper_layer(track.layer)
        width = num(or_default(track.width, "segment", "width"))
        key = (track.net or 0, layer)
        route = groups.setdefault(key, [])
        transform = self.ctx.k2c_mat_pcb

        mapped = [transform.apply(x, y) for x, y in points]
        first = mapped[0]
        # A segment that starts away from the route tail keeps its start point
        if route and points_equal((route[-1]["x"], route[-1]["y"]), first):
            mapped = mapped[1:]
        for x, y in mapped:
            route.append({
                "route_type": "wire",
                "x": num(x),
                "y": num(y),
                "width": width,
                "layer": layer,
            })


class CollectViasStage(ConverterStage):
    def step(self) -> bool:
        pcb = self.ctx.kicad_pcb
        if pcb is None or self.ctx.k2c_mat_pcb is None or self.ctx.net_num_to_name is None:
            return self.skip()

        for via in pcb.vias:
            x, y = self.ctx.k2c_mat_pcb.apply_point(via.at)
            layers = via.layers or list(default_for("via", "layers"))
            from_layer = map_copper_layer(layers[0])
            to_layer = map_copper_layer(layers[-1])
            self.ctx.db.insert("pcb_via", {
                "x": num(x),
                "y": num(y),
                "outer_diameter": num(or_default(via.size, "via", "size")),
                "hole_diameter": num(or_default(via.drill, "via", "drill")),
                "from_layer": from_layer,
                "to_layer": to_layer,
                "layers": [from_layer, to_layer],
                "net_name": self.ctx.net_name(via.net),
            })
            self.ctx.bump("vias")
        log.info("Emitted %d vias", len(pcb.vias))

        self.finished = True
        return False


class CollectGraphicsStage(ConverterStage):
    """Board outline from Edge.Cuts, plus board-level silkscreen paths and text."""

    def step(self) -> bool:
        pcb = self.ctx.kicad_pcb
        if pcb is None or self.ctx.k2c_mat_pcb is None:
            return self.skip()

        edge_items = [g for g in pcb.graphics if is_edge_cuts(g.layer)]
        if edge_items:
            self._emit_outline(edge_items)

        paths = 0
        for g in pcb.graphics:
            if is_silkscreen(g.layer):
                self._emit_path(g)
                paths += 1

        texts = 0
        for text in pcb.texts:
            if text.hidden:
                continue
            if is_silkscreen(text.layer) or is_copper(text.layer) or is_fabrication(text.layer):
                self._emit_text(text)
                texts += 1
            else:
                log.debug("Skipping board text %r on %s", text.text, text.layer)

        log.info("Board graphics: %d outline items, %d silkscreen paths, %d texts",
                 len(edge_items), paths, texts)
        self.finished = True
        return False

    def _emit_outline(self, items):
        transform = self.ctx.k2c_mat_pcb
        segments = []
        for g in items:
            pts = [transform.apply(x, y) for x, y in graphic_points(g)]
            segments.extend(zip(pts, pts[1:]))

        outline = assemble_outline(segments)
        box = bounds(outline)
        width = height = 0.0
        center = (0.0, 0.0)
        if box is not None:
            width = box[2] - box[0]
            height = box[3] - box[1]
            center = ((box[0] + box[2]) / 2, (box[1] + box[3]) / 2)

        pcb = self.ctx.kicad_pcb
        self.ctx.db.upsert_board({
            "outline": [xy(x, y) for x, y in outline],
            "width": num(width),
            "height": num(height),
            "center": xy(*center),
            "thickness": num(or_default(pcb.thickness, "board", "thickness")),
            "num_layers": len(pcb.copper_layers) or default_for("board", "num_layers"),
        })

    def _emit_path(self, g):
        transform = self.ctx.k2c_mat_pcb
        self.ctx.db.insert("pcb_silkscreen_path", {
            "pcb_component_id": "",
            "layer": map_side(g.layer),
            "route": [xy(*transform.apply(x, y)) for x, y in graphic_points(g)],
            "stroke_width": num(or_default(g.width, "gr_graphic", "width")),
        })

    def _emit_text(self, text):
        x, y = self.ctx.k2c_mat_pcb.apply_point(text.at)
        size = or_default(text.size, "text", "size")
        self.ctx.db.insert("pcb_silkscreen_text", {
            "pcb_component_id": "",
            "font": FONT,
            "font_size": num(size * TEXT_SCALE),
            "text": text.text or default_for("text", "text"),
            "anchor_position": xy(x, y),
            "layer": map_side(text.layer),
        })
