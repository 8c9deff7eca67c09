#!/usr/bin/env python3
"""KiCad to Circuit JSON converter.

Collects .kicad_pcb / .kicad_sch text, parses it and drives the conversion
stages one step at a time. The output is a flat list of Circuit JSON records.

Usage:
    python3 -m kicad_cj.converter board.kicad_pcb [schematic.kicad_sch] [-o out.json] [-v]
"""

import argparse
import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .context import ConverterContext
from .kicad_parser import KicadParseError, parse_kicad_pcb, parse_kicad_sch
from .pcb_stages import (
    CollectFootprintsStage, CollectGraphicsStage, CollectNetsStage,
    CollectTracesStage, CollectViasStage, InitializePcbContextStage,
)
from .sch_stages import (
    CollectLibrarySymbolsStage, CollectSchematicTracesStage,
    InitializeSchematicContextStage,
)
from .stage import MAX_STAGE_ITERATIONS, ConverterStage

log = logging.getLogger(__name__)

PCB_EXTENSION = ".kicad_pcb"
SCH_EXTENSION = ".kicad_sch"

STAT_COUNTERS = ("components", "pads", "vias", "traces", "labels")

SCHEMATIC_STAGES = (
    InitializeSchematicContextStage,
    CollectLibrarySymbolsStage,
    CollectSchematicTracesStage,
)

PCB_STAGES = (
    InitializePcbContextStage,
    CollectNetsStage,
    CollectFootprintsStage,
    CollectTracesStage,
    CollectViasStage,
    CollectGraphicsStage,
)


class ConfigurationError(ValueError):
    """Raised when the input files cannot be assigned to one board and one schematic."""


class ConverterState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    FINISHED = "finished"


class KicadToCircuitJsonConverter:
    """Step-able conversion of one board and/or one schematic.

    add_file() the inputs, then either call step() repeatedly (each call
    advances the current stage by one step) or run_until_finished().
    A converter instance performs a single run.
    """

    def __init__(self, max_stage_iterations: int = MAX_STAGE_ITERATIONS):
        self.fs_map: Dict[str, str] = {}
        self.ctx: Optional[ConverterContext] = None
        self.pipeline: Optional[List[ConverterStage]] = None
        self.current_stage_index = 0
        self.max_stage_iterations = max_stage_iterations

    def add_file(self, file_path: str, content: str) -> None:
        self.fs_map[file_path] = content

    @property
    def current_stage(self) -> Optional[ConverterStage]:
        if self.pipeline is None or self.current_stage_index >= len(self.pipeline):
            return None
        return self.pipeline[self.current_stage_index]

    @property
    def state(self) -> ConverterState:
        if self.pipeline is None:
            return ConverterState.NOT_STARTED
        if self.current_stage is None:
            return ConverterState.FINISHED
        return ConverterState.RUNNING

    def _select_file(self, extension: str) -> Optional[str]:
        matches = [path for path in self.fs_map if path.endswith(extension)]
        if len(matches) > 1:
            raise ConfigurationError(
                f"Multiple {extension} files provided: {matches[0]} and {matches[1]}"
            )
        return matches[0] if matches else None

    def _parse(self, path: str, parse):
        try:
            return parse(self.fs_map[path])
        except KicadParseError as e:
            self.ctx.warn(f"Failed to parse {path}: {e}")
            return None

    def initialize_pipeline(self) -> None:
        """Pick the input documents, parse them and build the stage list."""
        pcb_path = self._select_file(PCB_EXTENSION)
        sch_path = self._select_file(SCH_EXTENSION)
        for path in self.fs_map:
            if path not in (pcb_path, sch_path):
                log.debug("Ignoring %s: unrecognised extension", path)

        self.ctx = ConverterContext()
        if sch_path is not None:
            self.ctx.kicad_sch = self._parse(sch_path, parse_kicad_sch)
        if pcb_path is not None:
            self.ctx.kicad_pcb = self._parse(pcb_path, parse_kicad_pcb)

        self.pipeline = []
        if self.ctx.kicad_sch is not None:
            self.pipeline.extend(cls(self.ctx) for cls in SCHEMATIC_STAGES)
        if self.ctx.kicad_pcb is not None:
            self.pipeline.extend(cls(self.ctx) for cls in PCB_STAGES)
        self.current_stage_index = 0
        log.info("Pipeline: %s", ", ".join(s.name for s in self.pipeline) or "(empty)")

    def step(self) -> bool:
        """Advance the current stage once. Returns True while work remains."""
        if self.pipeline is None:
            self.initialize_pipeline()

        stage = self.current_stage
        if stage is None:
            return False

        if stage.iterations >= self.max_stage_iterations:
            stage.force_finish(self.max_stage_iterations)
        else:
            stage.iterations += 1
            stage.step()

        if stage.finished:
            log.debug("%s finished after %d step(s)", stage.name, stage.iterations)
            self.current_stage_index += 1
        return self.current_stage is not None

    def run_until_finished(self) -> None:
        while self.step():
            pass

    def get_output(self) -> List[dict]:
        if self.ctx is None:
            return []
        return self.ctx.db.to_list()

    def get_warnings(self) -> List[str]:
        if self.ctx is None:
            return []
        return list(self.ctx.warnings)

    def get_stats(self) -> Dict[str, int]:
        stats = dict.fromkeys(STAT_COUNTERS, 0)
        if self.ctx is not None:
            stats.update(self.ctx.stats)
        return stats


def convert_files(files: Dict[str, str]) -> List[dict]:
    """Convert a {path: text} mapping and return the Circuit JSON records."""
    converter = KicadToCircuitJsonConverter()
    for path, content in files.items():
        converter.add_file(path, content)
    converter.run_until_finished()
    return converter.get_output()


def main():
    parser = argparse.ArgumentParser(
        description="Convert KiCad board/schematic files to Circuit JSON"
    )
    parser.add_argument("inputs", nargs="+",
                        help="At most one .kicad_pcb and one .kicad_sch file")
    parser.add_argument("-o", "--output", default=None,
                        help="Output JSON file (default: stdout)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose logging")
    parser.add_argument("--stats", action="store_true",
                        help="Print conversion counters to stderr")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    converter = KicadToCircuitJsonConverter()
    for name in args.inputs:
        path = Path(name)
        if not path.exists():
            print(f"Error: {path} not found", file=sys.stderr)
            sys.exit(1)
        converter.add_file(str(path), path.read_text(encoding="utf-8"))

    try:
        converter.run_until_finished()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output = converter.get_output()
    if args.stats:
        for key, value in converter.get_stats().items():
            print(f"{key}: {value}", file=sys.stderr)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(output, f, indent=2)
        log.info("Wrote %d records to %s", len(output), args.output)
    else:
        json.dump(output, sys.stdout, separators=(",", ":"))
        print()


if __name__ == "__main__":
    main()
