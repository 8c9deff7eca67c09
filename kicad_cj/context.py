"""Per-run conversion state shared by every stage."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .kicad_model import KicadPcb, KicadSch
from .store import CircuitJsonStore
from .transform import Transform

log = logging.getLogger(__name__)


@dataclass
class ConverterContext:
    db: CircuitJsonStore = field(default_factory=CircuitJsonStore)
    kicad_pcb: Optional[KicadPcb] = None
    kicad_sch: Optional[KicadSch] = None

    # Set by the Initialize*ContextStage of each document
    k2c_mat_pcb: Optional[Transform] = None
    k2c_mat_sch: Optional[Transform] = None

    # net number -> net name, filled once by CollectNetsStage
    net_num_to_name: Optional[dict] = None
    footprint_uuid_to_component_id: dict = field(default_factory=dict)
    symbol_uuid_to_component_id: dict = field(default_factory=dict)
    # library id -> source_component_id
    lib_id_to_source_component_id: dict = field(default_factory=dict)

    warnings: list = field(default_factory=list)
    stats: dict = field(default_factory=dict)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        log.warning(message)

    def bump(self, counter: str, amount: int = 1) -> None:
        self.stats[counter] = self.stats.get(counter, 0) + amount

    def net_name(self, net) -> str:
        """Resolve a net number; unknown numbers get the Net-<n> name."""
        if net is None:
            net = 0
        table = self.net_num_to_name or {}
        if net in table:
            return table[net]
        return "" if net == 0 else f"Net-{net}"
