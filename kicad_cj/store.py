"""Append-only Circuit JSON record store.

One table per Circuit JSON element type. Records are plain dicts; insert()
stamps the `type` and a generated `<table>_id` (e.g. "pcb_component_0") and
returns the stored record. The only in-place edit allowed is on the single
pcb_board record.
"""

import copy
from typing import Dict, List

# Fixed enumeration order of the flattened output
TABLE_ORDER = (
    "source_component",
    "schematic_component",
    "schematic_port",
    "schematic_trace",
    "schematic_net_label",
    "pcb_board",
    "pcb_component",
    "pcb_smtpad",
    "pcb_plated_hole",
    "pcb_hole",
    "pcb_via",
    "pcb_trace",
    "pcb_silkscreen_path",
    "pcb_silkscreen_text",
)


class CircuitJsonStore:
    def __init__(self):
        self._tables: Dict[str, List[dict]] = {name: [] for name in TABLE_ORDER}
        self._counters: Dict[str, int] = {name: 0 for name in TABLE_ORDER}

    def _table(self, table: str) -> List[dict]:
        if table not in self._tables:
            raise KeyError(f"Unknown Circuit JSON table: {table}")
        return self._tables[table]

    def insert(self, table: str, record: dict) -> dict:
        """Append a record and return it with its assigned id."""
        rows = self._table(table)
        id_key = f"{table}_id"
        stored = {"type": table, id_key: f"{table}_{self._counters[table]}"}
        self._counters[table] += 1
        stored.update(copy.deepcopy(record))
        rows.append(stored)
        return stored

    def list(self, table: str) -> List[dict]:
        return list(self._table(table))

    def upsert_board(self, fields: dict) -> dict:
        """Update the pcb_board record in place, creating it on first use."""
        boards = self._table("pcb_board")
        if boards:
            boards[0].update(copy.deepcopy(fields))
            return boards[0]
        return self.insert("pcb_board", fields)

    def to_list(self) -> List[dict]:
        """All records, tables in TABLE_ORDER, rows in insertion order."""
        out = []
        for name in TABLE_ORDER:
            out.extend(copy.deepcopy(self._tables[name]))
        return out

    def __len__(self) -> int:
        return sum(len(rows) for rows in self._tables.values())
