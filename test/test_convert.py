#!/usr/bin/env python3
"""Tests for the conversion stages and the pipeline controller."""

import math
import sys
import unittest
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from kicad_cj.context import ConverterContext
from kicad_cj.converter import (
    ConfigurationError, ConverterState, KicadToCircuitJsonConverter, convert_files,
)
from kicad_cj.footprints import Placement, emit_pad, substitute_variables
from kicad_cj.kicad_model import (
    Drill, Footprint, GraphicItem, KicadPcb, KicadSch, LibSymbol, NetDef, Pad,
    Point, Position, SchPin, SchSymbol, Segment, TextItem,
)
from kicad_cj.pcb_stages import (
    CollectFootprintsStage, CollectGraphicsStage, CollectNetsStage,
    CollectTracesStage, InitializePcbContextStage,
)
from kicad_cj.sch_stages import (
    CollectLibrarySymbolsStage, InitializeSchematicContextStage, infer_ftype,
)
from kicad_cj.stage import ConverterStage
from kicad_cj.transform import Transform

from samples import BOARD, LEGACY_BOARD, SCHEMATIC


def records(output, record_type):
    return [r for r in output if r["type"] == record_type]


def run_stages(ctx, *stage_classes):
    for cls in stage_classes:
        cls(ctx).run_until_finished()


def pcb_context(pcb):
    ctx = ConverterContext(kicad_pcb=pcb)
    run_stages(ctx, InitializePcbContextStage, CollectNetsStage)
    return ctx


class NeverFinishes(ConverterStage):
    def step(self) -> bool:
        return True


class TestBoardConversion(unittest.TestCase):
    """End-to-end conversion of the KiCad 7 sample board."""

    @classmethod
    def setUpClass(cls):
        conv = KicadToCircuitJsonConverter()
        conv.add_file("demo/demo.kicad_pcb", BOARD)
        conv.run_until_finished()
        cls.conv = conv
        cls.output = conv.get_output()

    def test_stats(self):
        stats = self.conv.get_stats()
        self.assertEqual(stats["components"], 1)
        self.assertEqual(stats["pads"], 2)
        self.assertEqual(stats["traces"], 2)
        self.assertEqual(stats["vias"], 1)
        self.assertEqual(stats["labels"], 0)
        self.assertEqual(self.conv.get_warnings(), [])

    def test_board_outline(self):
        boards = records(self.output, "pcb_board")
        self.assertEqual(len(boards), 1)
        board = boards[0]
        self.assertEqual(board["width"], 10)
        self.assertEqual(board["height"], 5)
        self.assertEqual(board["center"], {"x": 0, "y": 0})
        self.assertEqual(board["outline"], [
            {"x": -5, "y": 2.5}, {"x": 5, "y": 2.5},
            {"x": 5, "y": -2.5}, {"x": -5, "y": -2.5},
        ])
        self.assertEqual(board["thickness"], 1.6)
        self.assertEqual(board["num_layers"], 2)

    def test_component(self):
        comp = records(self.output, "pcb_component")[0]
        self.assertEqual(comp["pcb_component_id"], "pcb_component_0")
        self.assertEqual(comp["center"], {"x": 0, "y": 0.5})
        self.assertEqual(comp["layer"], "top")
        self.assertEqual(comp["rotation"], 90)

    def test_smd_pads(self):
        pads = records(self.output, "pcb_smtpad")
        self.assertEqual(len(pads), 2)
        rect, circle = pads
        self.assertEqual(rect["shape"], "rect")
        self.assertEqual((rect["x"], rect["y"]), (0, -0.3))
        self.assertEqual((rect["width"], rect["height"]), (0.8, 0.95))
        self.assertEqual(rect["port_hints"], ["1"])
        self.assertEqual(rect["layer"], "top")
        self.assertEqual(circle["shape"], "circle")
        self.assertEqual((circle["x"], circle["y"]), (0, 1.3))
        self.assertEqual(circle["radius"], 0.4)
        for pad in pads:
            self.assertEqual(pad["pcb_component_id"], "pcb_component_0")

    def test_silkscreen_text(self):
        texts = records(self.output, "pcb_silkscreen_text")
        self.assertEqual([t["text"] for t in texts], ["R1", "R1", "REV A", "fab note"])
        ref = texts[0]
        self.assertEqual(ref["pcb_component_id"], "pcb_component_0")
        self.assertEqual(ref["anchor_position"], {"x": -1.43, "y": 0.5})
        self.assertEqual(ref["font_size"], 1.5)
        self.assertEqual(ref["font"], "tscircuit2024")
        self.assertEqual(texts[1]["font_size"], 0.75)
        self.assertEqual(texts[2]["pcb_component_id"], "")
        self.assertEqual(texts[3]["font_size"], 3)

    def test_silkscreen_paths(self):
        paths = records(self.output, "pcb_silkscreen_path")
        self.assertEqual(len(paths), 2)
        line, circle = paths
        self.assertEqual(len(line["route"]), 2)
        self.assertEqual(line["stroke_width"], 0.12)
        self.assertEqual(circle["route"][0], circle["route"][-1])
        centre = records(self.output, "pcb_component")[0]["center"]
        for p in circle["route"]:
            r = math.hypot(p["x"] - centre["x"], p["y"] - centre["y"])
            self.assertAlmostEqual(r, 1, places=5)

    def test_traces_grouped_by_net_and_layer(self):
        traces = records(self.output, "pcb_trace")
        self.assertEqual(len(traces), 2)
        gnd, vcc = traces
        self.assertEqual(gnd["net_name"], "GND")
        self.assertEqual([(p["x"], p["y"]) for p in gnd["route"]],
                         [(-5, 2.5), (0, 2.5), (0, -1.5)])
        self.assertTrue(all(p["width"] == 0.25 for p in gnd["route"]))
        self.assertTrue(all(p["layer"] == "top" for p in gnd["route"]))
        self.assertTrue(all(p["route_type"] == "wire" for p in gnd["route"]))
        self.assertEqual(vcc["net_name"], "VCC")
        self.assertEqual(len(vcc["route"]), 2)
        self.assertEqual(vcc["route"][0]["width"], 0.2)
        self.assertEqual(vcc["route"][0]["layer"], "bottom")

    def test_via(self):
        via = records(self.output, "pcb_via")[0]
        self.assertEqual((via["x"], via["y"]), (0, -1.5))
        self.assertEqual(via["outer_diameter"], 0.6)
        self.assertEqual(via["hole_diameter"], 0.3)
        self.assertEqual(via["layers"], ["top", "bottom"])
        self.assertEqual(via["net_name"], "GND")

    def test_output_order(self):
        types = [r["type"] for r in self.output]
        self.assertEqual(types.index("pcb_board"), 0)
        self.assertLess(types.index("pcb_component"), types.index("pcb_smtpad"))
        self.assertLess(types.index("pcb_via"), types.index("pcb_trace"))

    def test_deterministic(self):
        self.assertEqual(convert_files({"x.kicad_pcb": BOARD}), self.output)


class TestLegacyBoardConversion(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        conv = KicadToCircuitJsonConverter()
        conv.add_file("old.kicad_pcb", LEGACY_BOARD)
        conv.run_until_finished()
        cls.conv = conv
        cls.output = conv.get_output()

    def test_component_on_back(self):
        comp = records(self.output, "pcb_component")[0]
        self.assertEqual(comp["layer"], "bottom")
        self.assertEqual(comp["center"], {"x": 10, "y": -20})

    def test_plated_rect_pad(self):
        hole = records(self.output, "pcb_plated_hole")[0]
        self.assertEqual(hole["shape"], "circular_hole_with_rect_pad")
        self.assertEqual(hole["hole_diameter"], 1)
        self.assertEqual((hole["rect_pad_width"], hole["rect_pad_height"]), (1.7, 1.7))
        self.assertEqual(hole["port_hints"], ["1"])
        self.assertEqual(hole["layers"], ["top", "bottom"])

    def test_unplated_hole(self):
        holes = records(self.output, "pcb_hole")
        self.assertEqual(len(holes), 1)
        self.assertEqual(holes[0]["hole_diameter"], 1.2)
        self.assertEqual((holes[0]["x"], holes[0]["y"]), (8, -20))
        self.assertEqual(holes[0]["pcb_component_id"], "pcb_component_0")
        self.assertEqual(self.conv.get_stats()["pads"], 1)

    def test_legacy_reference_text(self):
        texts = records(self.output, "pcb_silkscreen_text")
        self.assertEqual([t["text"] for t in texts], ["J1"])
        self.assertEqual(texts[0]["layer"], "bottom")

    def test_graphics(self):
        paths = records(self.output, "pcb_silkscreen_path")
        self.assertEqual(len(paths), 2)
        self.assertEqual(paths[0]["stroke_width"], 0.15)
        self.assertEqual(len(paths[1]["route"]), math.ceil((math.pi / 2) / 0.1))
        self.assertTrue(all(p["layer"] == "bottom" for p in paths))

    def test_inner_layer_trace_with_arc(self):
        traces = records(self.output, "pcb_trace")
        self.assertEqual(len(traces), 1)
        route = traces[0]["route"]
        self.assertTrue(all(p["layer"] == "inner1" for p in route))
        self.assertEqual(len(route), 2 + math.ceil(5 * math.pi / 2 / 0.1) - 1)
        self.assertAlmostEqual(route[-1]["x"], 10, places=3)
        self.assertAlmostEqual(route[-1]["y"], -5, places=3)
        self.assertEqual(traces[0]["net_name"], "GND")

    def test_no_outline_no_board(self):
        self.assertEqual(records(self.output, "pcb_board"), [])


class TestSchematicConversion(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        conv = KicadToCircuitJsonConverter()
        conv.add_file("demo.kicad_sch", SCHEMATIC)
        conv.run_until_finished()
        cls.conv = conv
        cls.output = conv.get_output()

    def test_source_component_deduplicated(self):
        sources = records(self.output, "source_component")
        self.assertEqual(len(sources), 1)
        self.assertEqual(sources[0]["ftype"], "resistor")
        self.assertEqual(sources[0]["name"], "Device:R")
        comps = records(self.output, "schematic_component")
        self.assertEqual(len(comps), 2)
        for comp in comps:
            self.assertEqual(comp["source_component_id"], sources[0]["source_component_id"])

    def test_component_positions(self):
        comps = records(self.output, "schematic_component")
        self.assertEqual(comps[0]["center"], {"x": 0, "y": 0})
        self.assertEqual(comps[1]["center"], {"x": 2, "y": 0})
        self.assertEqual(comps[0]["size"], {"width": 1.0, "height": 1.0})

    def test_ports(self):
        ports = records(self.output, "schematic_port")
        self.assertEqual(len(ports), 4)
        first = ports[0]
        self.assertEqual(first["schematic_component_id"], "schematic_component_0")
        self.assertEqual(first["pin_number"], 1)
        self.assertEqual(first["facing_direction"], "down")
        self.assertEqual(first["center"], {"x": -0.254, "y": 0})
        self.assertEqual(ports[1]["facing_direction"], "up")
        self.assertNotIn("display_pin_label", first)
        # Second symbol is unrotated
        self.assertEqual(ports[2]["center"], {"x": 0, "y": 0.254})

    def test_wire_and_junction(self):
        traces = records(self.output, "schematic_trace")
        self.assertEqual(len(traces), 2)
        wire, junction = traces
        self.assertEqual(wire["edges"], [
            {"from": {"x": 0, "y": 0}, "to": {"x": 1, "y": 0}},
            {"from": {"x": 1, "y": 0}, "to": {"x": 1, "y": -1}},
        ])
        self.assertEqual(junction["edges"], [])
        self.assertEqual(junction["junctions"], [{"x": 1, "y": -1}])

    def test_net_labels(self):
        labels = records(self.output, "schematic_net_label")
        self.assertEqual([l["text"] for l in labels], ["SIG", "VBUS"])
        self.assertEqual(labels[0]["center"], {"x": 1, "y": 0})
        self.assertEqual(labels[0]["anchor_side"], "left")
        self.assertEqual(labels[1]["anchor_side"], "right")

    def test_stats(self):
        stats = self.conv.get_stats()
        self.assertEqual(stats["components"], 2)
        self.assertEqual(stats["traces"], 1)
        self.assertEqual(stats["labels"], 2)
        self.assertEqual(stats["pads"], 0)


class TestController(unittest.TestCase):

    def test_no_documents(self):
        conv = KicadToCircuitJsonConverter()
        self.assertEqual(conv.state, ConverterState.NOT_STARTED)
        conv.run_until_finished()
        self.assertEqual(conv.state, ConverterState.FINISHED)
        self.assertEqual(conv.get_output(), [])
        self.assertTrue(all(v == 0 for v in conv.get_stats().values()))

    def test_unrelated_files_ignored(self):
        self.assertEqual(convert_files({"readme.txt": "hello"}), [])

    def test_duplicate_extension(self):
        conv = KicadToCircuitJsonConverter()
        conv.add_file("a/first.kicad_pcb", BOARD)
        conv.add_file("b/second.kicad_pcb", BOARD)
        with self.assertRaises(ConfigurationError) as cm:
            conv.step()
        self.assertIn("a/first.kicad_pcb", str(cm.exception))
        self.assertIn("b/second.kicad_pcb", str(cm.exception))

    def test_stage_order_and_stepping(self):
        conv = KicadToCircuitJsonConverter()
        conv.add_file("x.kicad_pcb", BOARD)
        conv.add_file("x.kicad_sch", SCHEMATIC)
        conv.initialize_pipeline()
        names = [s.name for s in conv.pipeline]
        self.assertEqual(names, [
            "InitializeSchematicContextStage",
            "CollectLibrarySymbolsStage",
            "CollectSchematicTracesStage",
            "InitializePcbContextStage",
            "CollectNetsStage",
            "CollectFootprintsStage",
            "CollectTracesStage",
            "CollectViasStage",
            "CollectGraphicsStage",
        ])
        steps = 0
        while conv.step():
            steps += 1
            self.assertEqual(conv.state, ConverterState.RUNNING)
        self.assertEqual(steps, len(names) - 1)
        self.assertEqual(conv.state, ConverterState.FINISHED)
        types = [r["type"] for r in conv.get_output()]
        self.assertLess(types.index("schematic_component"), types.index("pcb_component"))

    def test_parse_failure_becomes_warning(self):
        conv = KicadToCircuitJsonConverter()
        conv.add_file("bad.kicad_pcb", "(not_a_board (version 1))")
        conv.run_until_finished()
        self.assertEqual(conv.get_output(), [])
        warnings = conv.get_warnings()
        self.assertEqual(len(warnings), 1)
        self.assertIn("bad.kicad_pcb", warnings[0])

    def test_runaway_stage_is_force_finished(self):
        conv = KicadToCircuitJsonConverter(max_stage_iterations=3)
        conv.initialize_pipeline()
        stage = NeverFinishes(conv.ctx)
        conv.pipeline.append(stage)
        conv.run_until_finished()
        self.assertTrue(stage.finished)
        self.assertEqual(stage.iterations, 3)
        self.assertEqual(len(conv.get_warnings()), 1)
        self.assertIn("NeverFinishes", conv.get_warnings()[0])

    def test_stage_run_until_finished_ceiling(self):
        ctx = ConverterContext()
        stage = NeverFinishes(ctx)
        stage.run_until_finished(max_iterations=5)
        self.assertTrue(stage.finished)
        self.assertEqual(stage.iterations, 5)
        self.assertIn("NeverFinishes", ctx.warnings[0])


class TestStagePreconditions(unittest.TestCase):

    def test_missing_transform_is_a_noop(self):
        ctx = ConverterContext(kicad_pcb=KicadPcb(segments=[
            Segment(start=Point(0, 0), end=Point(1, 0), layer="F.Cu"),
        ]))
        ctx.net_num_to_name = {0: ""}
        stage = CollectTracesStage(ctx)
        stage.run_until_finished()
        self.assertTrue(stage.finished)
        self.assertEqual(stage.iterations, 1)
        self.assertEqual(len(ctx.db), 0)

    def test_missing_net_table_is_a_noop(self):
        ctx = ConverterContext(kicad_pcb=KicadPcb())
        ctx.k2c_mat_pcb = Transform()
        stage = CollectTracesStage(ctx)
        stage.run_until_finished()
        self.assertTrue(stage.finished)

    def test_missing_schematic(self):
        ctx = ConverterContext()
        run_stages(ctx, InitializeSchematicContextStage, CollectLibrarySymbolsStage)
        self.assertIsNone(ctx.k2c_mat_sch)
        self.assertEqual(len(ctx.db), 0)


class TestNetResolution(unittest.TestCase):

    def test_names(self):
        ctx = pcb_context(KicadPcb(nets=[NetDef(3, "VCC"), NetDef(5, "")]))
        self.assertEqual(ctx.net_name(3), "VCC")
        self.assertEqual(ctx.net_name(5), "Net-5")
        self.assertEqual(ctx.net_name(7), "Net-7")
        self.assertEqual(ctx.net_name(0), "")
        self.assertEqual(ctx.net_num_to_name[0], "")

    def test_declared_net_zero_kept(self):
        ctx = pcb_context(KicadPcb(nets=[NetDef(0, "unconnected")]))
        self.assertEqual(ctx.net_name(0), "unconnected")

    def test_unnamed_net_zero_is_empty(self):
        ctx = pcb_context(KicadPcb(nets=[NetDef(0, ""), NetDef(1, "GND"), NetDef(2, "")]))
        self.assertEqual(ctx.net_num_to_name, {0: "", 1: "GND", 2: "Net-2"})

    def test_unconnected_copper_has_empty_net_name(self):
        output = convert_files({"b.kicad_pcb": """
            (kicad_pcb (version 20221018)
              (net 0 "")
              (net 1 "GND")
              (segment (start 0 0) (end 1 0) (width 0.2) (layer "F.Cu") (net 0) (uuid "s"))
              (via (at 1 0) (size 0.6) (drill 0.3) (layers "F.Cu" "B.Cu") (net 0) (uuid "v")))
        """})
        self.assertEqual(records(output, "pcb_trace")[0]["net_name"], "")
        self.assertEqual(records(output, "pcb_via")[0]["net_name"], "")


class TestFootprints(unittest.TestCase):

    def _ctx(self, *footprints):
        ctx = pcb_context(KicadPcb(footprints=list(footprints)))
        return ctx

    def test_duplicate_uuid_emitted_once(self):
        fp = Footprint(uuid="same", at=Position(1, 1))
        ctx = self._ctx(fp, Footprint(uuid="same", at=Position(5, 5)))
        stage = CollectFootprintsStage(ctx)
        stage.run_until_finished()
        self.assertEqual(len(ctx.db.list("pcb_component")), 1)
        self.assertFalse(stage.process(fp))
        self.assertEqual(len(ctx.db.list("pcb_component")), 1)
        self.assertEqual(ctx.footprint_uuid_to_component_id, {"same": "pcb_component_0"})

    def test_footprint_without_uuid_skipped(self):
        ctx = self._ctx(Footprint(library_link="Lib:X"))
        run_stages(ctx, CollectFootprintsStage)
        self.assertEqual(len(ctx.db.list("pcb_component")), 0)
        self.assertIn("Lib:X", ctx.warnings[0])

    def _pad(self, pad, angle=0.0):
        ctx = self._ctx()
        placement = Placement(ctx, Position(0, 0, angle))
        return emit_pad(ctx, placement, pad, "pcb_component_0"), ctx

    def test_smd_non_circle_is_rect(self):
        for shape in ("oval", "roundrect", "trapezoid", "custom"):
            rec, _ = self._pad(Pad(number="1", pad_type="smd", shape=shape, size=Point(1, 2)))
            self.assertEqual(rec["shape"], "rect")

    def test_plated_circle(self):
        rec, ctx = self._pad(Pad(number="1", pad_type="thru_hole", shape="circle",
                                 size=Point(1.6, 1.6), drill=Drill(diameter=0.9)))
        self.assertEqual(rec["shape"], "circle")
        self.assertEqual(rec["hole_diameter"], 0.9)
        self.assertEqual(rec["outer_diameter"], 1.6)
        self.assertEqual(ctx.stats["pads"], 1)

    def test_plated_missing_drill_default(self):
        rec, _ = self._pad(Pad(number="1", pad_type="thru_hole", shape="circle"))
        self.assertEqual(rec["hole_diameter"], 0.8)
        self.assertEqual(rec["outer_diameter"], 1)

    def test_missing_type_is_plated(self):
        rec, _ = self._pad(Pad(number="1"))
        self.assertEqual(rec["type"], "pcb_plated_hole")

    def test_pill_swaps_when_rotated(self):
        pad = Pad(number="1", pad_type="thru_hole", shape="oval",
                  at=Position(0, 0, 0), size=Point(1, 2), drill=Drill(diameter=0.6))
        rec, _ = self._pad(pad)
        self.assertEqual(rec["shape"], "pill")
        self.assertEqual((rec["outer_width"], rec["outer_height"]), (1, 2))
        rec, _ = self._pad(pad, angle=90)
        self.assertEqual((rec["outer_width"], rec["outer_height"]), (2, 1))
        rec, _ = self._pad(pad, angle=180)
        self.assertEqual((rec["outer_width"], rec["outer_height"]), (1, 2))
        pad.at = Position(0, 0, 200)
        rec, _ = self._pad(pad, angle=70)
        self.assertEqual((rec["outer_width"], rec["outer_height"]), (2, 1))

    def test_smd_keeps_declared_size_when_rotated(self):
        pad = Pad(number="1", pad_type="smd", shape="rect", size=Point(1, 2))
        for angle in (90, 270):
            rec, _ = self._pad(pad, angle=angle)
            self.assertEqual((rec["width"], rec["height"]), (1, 2))

    def test_rect_plated_pad_swaps_when_rotated(self):
        pad = Pad(number="1", pad_type="thru_hole", shape="rect", size=Point(1, 2),
                  drill=Drill(diameter=0.6))
        rec, _ = self._pad(pad, angle=90)
        self.assertEqual(rec["shape"], "circular_hole_with_rect_pad")
        self.assertEqual((rec["rect_pad_width"], rec["rect_pad_height"]), (2, 1))

    def test_rect_pad_with_oval_drill(self):
        rec, _ = self._pad(Pad(number="1", pad_type="thru_hole", shape="rect", size=Point(2, 3),
                               drill=Drill(diameter=1, oval=True, width=1, height=2)))
        self.assertEqual(rec["shape"], "pill_hole_with_rect_pad")
        self.assertEqual((rec["hole_width"], rec["hole_height"]), (1, 2))

    def test_unplated_default(self):
        rec, ctx = self._pad(Pad(pad_type="np_thru_hole"))
        self.assertEqual(rec["type"], "pcb_hole")
        self.assertEqual(rec["hole_diameter"], 1.0)
        self.assertNotIn("pads", ctx.stats)

    def test_pad_rotation(self):
        # KiCad footprint rotation is counter-clockwise on screen (Y down)
        rec, _ = self._pad(Pad(number="1", pad_type="smd", at=Position(1, 0)), angle=90)
        self.assertEqual((rec["x"], rec["y"]), (0, 1))

    def test_substitute_variables(self):
        fp = Footprint(properties={"Reference": TextItem(text="U3", kind="Reference")})
        self.assertEqual(substitute_variables("${REFERENCE}/${VALUE}", fp), "U3/")
        self.assertEqual(substitute_variables("${REFERENCE}", Footprint()), "?")

    def test_fab_text_dropped_but_fab_graphics_kept(self):
        fp = Footprint(
            uuid="f",
            texts=[TextItem(text="fab", kind="user", layer="F.Fab")],
            graphics=[GraphicItem("line", "F.Fab", start=Point(0, 0), end=Point(1, 0))],
        )
        ctx = self._ctx(fp)
        run_stages(ctx, CollectFootprintsStage)
        self.assertEqual(ctx.db.list("pcb_silkscreen_text"), [])
        self.assertEqual(len(ctx.db.list("pcb_silkscreen_path")), 1)


class TestBoardGraphics(unittest.TestCase):

    def test_rectangle_outline_size(self):
        pcb = KicadPcb(graphics=[
            GraphicItem("line", "Edge.Cuts", start=Point(0, 0), end=Point(30, 0)),
            GraphicItem("line", "Edge.Cuts", start=Point(30, 0), end=Point(30, 20)),
            GraphicItem("line", "Edge.Cuts", start=Point(30, 20), end=Point(0, 20)),
            GraphicItem("line", "Edge.Cuts", start=Point(0, 20), end=Point(0, 0)),
        ])
        ctx = pcb_context(pcb)
        run_stages(ctx, CollectGraphicsStage)
        boards = ctx.db.list("pcb_board")
        self.assertEqual(len(boards), 1)
        self.assertEqual((boards[0]["width"], boards[0]["height"]), (30, 20))
        self.assertEqual(len(boards[0]["outline"]), 4)

    def test_gr_rect_outline_updates_existing_board(self):
        pcb = KicadPcb(graphics=[
            GraphicItem("rect", "Edge.Cuts", start=Point(0, 0), end=Point(8, 4)),
        ])
        ctx = pcb_context(pcb)
        ctx.db.upsert_board({"material": "fr4"})
        run_stages(ctx, CollectGraphicsStage)
        boards = ctx.db.list("pcb_board")
        self.assertEqual(len(boards), 1)
        self.assertEqual(boards[0]["material"], "fr4")
        self.assertEqual((boards[0]["width"], boards[0]["height"]), (8, 4))
        self.assertEqual(len(boards[0]["outline"]), 4)

    def test_circular_outline(self):
        pcb = KicadPcb(graphics=[
            GraphicItem("circle", "Edge.Cuts", start=Point(50, 50), end=Point(60, 50)),
        ])
        ctx = pcb_context(pcb)
        run_stages(ctx, CollectGraphicsStage)
        board = ctx.db.list("pcb_board")[0]
        self.assertAlmostEqual(board["width"], 20, places=2)
        for p in board["outline"]:
            self.assertAlmostEqual(math.hypot(p["x"], p["y"]), 10, places=4)

    def test_board_silkscreen_line(self):
        pcb = KicadPcb(graphics=[
            GraphicItem("line", "B.SilkS", start=Point(0, 0), end=Point(1, 0)),
            GraphicItem("line", "Dwgs.User", start=Point(0, 0), end=Point(1, 0)),
        ])
        ctx = pcb_context(pcb)
        run_stages(ctx, CollectGraphicsStage)
        paths = ctx.db.list("pcb_silkscreen_path")
        self.assertEqual(len(paths), 1)
        self.assertEqual(paths[0]["layer"], "bottom")
        self.assertEqual(paths[0]["stroke_width"], 0.15)
        self.assertEqual(paths[0]["pcb_component_id"], "")

    def test_discontinuous_segments_share_one_trace(self):
        pcb = KicadPcb(segments=[
            Segment(start=Point(0, 0), end=Point(1, 0), layer="F.Cu", net=4),
            Segment(start=Point(5, 0), end=Point(6, 0), layer="F.Cu", net=4),
            Segment(start=Point(0, 0), end=Point(1, 0), layer="In3.Cu", net=4),
        ])
        ctx = pcb_context(pcb)
        run_stages(ctx, CollectTracesStage)
        traces = ctx.db.list("pcb_trace")
        self.assertEqual(len(traces), 2)
        self.assertEqual(len(traces[0]["route"]), 4)
        self.assertEqual(traces[0]["net_name"], "Net-4")
        self.assertEqual(traces[1]["route"][0]["layer"], "inner3")


class TestSymbols(unittest.TestCase):

    def test_infer_ftype(self):
        self.assertEqual(infer_ftype("Device:R_Small", "R5"), "resistor")
        self.assertEqual(infer_ftype("Device:LED", "D1"), "led")
        self.assertEqual(infer_ftype("Device:C_Polarized", "C1"), "capacitor")
        self.assertEqual(infer_ftype("Device:L", "L2"), "inductor")
        self.assertEqual(infer_ftype("Device:D_Schottky", "D9"), "diode")
        self.assertEqual(infer_ftype("Device:Q_NPN_BCE", "Q1"), "transistor")
        self.assertEqual(infer_ftype("MCU:ATmega328P", "U1"), "chip")
        self.assertEqual(infer_ftype("Custom:Thing", "LED4"), "led")
        self.assertEqual(infer_ftype("Custom:Thing", "RN1"), "chip")

    def _sch(self, unit):
        lib = LibSymbol(lib_id="Lib:Dual", pins=[
            SchPin(number="1", at=Position(-15, 0, 0), orientation="R", unit=1, style=1),
            SchPin(number="2", at=Position(15, 0, 180), orientation="L", unit=2, style=1),
            SchPin(number="8", name="V+", at=Position(0, 15, 270), orientation="D", unit=0, style=0),
            SchPin(number="9", at=Position(0, 0, 0), orientation="R", unit=1, style=2),
        ])
        sym = SchSymbol(uuid="u1", lib_id="Lib:Dual", at=Position(148.5, 105, 0), unit=unit,
                        properties={"Reference": "U1"})
        return KicadSch(lib_symbols={"Lib:Dual": lib}, symbols=[sym])

    def test_multi_unit_pins(self):
        ctx = ConverterContext(kicad_sch=self._sch(unit=2))
        run_stages(ctx, InitializeSchematicContextStage, CollectLibrarySymbolsStage)
        ports = ctx.db.list("schematic_port")
        self.assertEqual([p["pin_number"] for p in ports], [2, 8])
        self.assertEqual(ports[0]["center"], {"x": 1, "y": 0})
        self.assertEqual(ports[0]["facing_direction"], "left")
        self.assertEqual(ports[1]["display_pin_label"], "V+")
        self.assertEqual(ports[1]["center"], {"x": 0, "y": 1})

    def test_symbol_dedup_and_map(self):
        ctx = ConverterContext(kicad_sch=self._sch(unit=1))
        ctx.kicad_sch.symbols.append(ctx.kicad_sch.symbols[0])
        run_stages(ctx, InitializeSchematicContextStage, CollectLibrarySymbolsStage)
        self.assertEqual(len(ctx.db.list("schematic_component")), 1)
        self.assertEqual(ctx.symbol_uuid_to_component_id, {"u1": "schematic_component_0"})
        self.assertEqual(ctx.db.list("source_component")[0]["ftype"], "chip")

    def test_unknown_orientation_faces_right(self):
        sch = self._sch(unit=1)
        sch.lib_symbols["Lib:Dual"].pins[0].orientation = None
        ctx = ConverterContext(kicad_sch=sch)
        run_stages(ctx, InitializeSchematicContextStage, CollectLibrarySymbolsStage)
        self.assertEqual(ctx.db.list("schematic_port")[0]["facing_direction"], "right")

    def test_missing_library_symbol_warns(self):
        sch = KicadSch(symbols=[SchSymbol(uuid="u", lib_id="Lib:Gone")])
        ctx = ConverterContext(kicad_sch=sch)
        run_stages(ctx, InitializeSchematicContextStage, CollectLibrarySymbolsStage)
        self.assertEqual(len(ctx.db.list("schematic_component")), 1)
        self.assertIn("Lib:Gone", ctx.warnings[0])


if __name__ == "__main__":
    unittest.main()
