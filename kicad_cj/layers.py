"""KiCad layer name classification.

Circuit JSON only knows "top", "bottom" and "inner<n>"; everything here
reduces KiCad layer names (or lists of them) to those.
"""

import re

EDGE_CUTS = "Edge.Cuts"

_INNER_RE = re.compile(r"^In(\d+)\.Cu$")


def _joined(layer) -> str:
    if layer is None:
        return ""
    if isinstance(layer, str):
        return layer
    return " ".join(str(name) for name in layer)


def is_back(layer) -> bool:
    """True for back-side copper, e.g. "B.Cu" or a "Back" user name."""
    s = _joined(layer)
    return "B.Cu" in s or "Back" in s


def map_side(layer) -> str:
    """Map any KiCad layer (silk, fab, copper) to "top" or "bottom"."""
    s = _joined(layer)
    if "B." in s or "Back" in s:
        return "bottom"
    return "top"


def map_copper_layer(layer) -> str:
    """Map a copper layer name to "top", "bottom" or "inner<n>"."""
    s = _joined(layer)
    if is_back(s):
        return "bottom"
    m = _INNER_RE.match(s.strip())
    if m:
        return f"inner{int(m.group(1))}"
    return "top"


def map_pad_layer(layers) -> str:
    """SMD pads sit on whichever outer copper layer they list."""
    if isinstance(layers, str):
        layers = [layers]
    for name in layers or []:
        if name in ("B.Cu", "Back"):
            return "bottom"
    return "top"


def is_silkscreen(layer) -> bool:
    s = _joined(layer)
    return "SilkS" in s or "Silk" in s


def is_edge_cuts(layer) -> bool:
    return EDGE_CUTS in _joined(layer)


def is_copper(layer) -> bool:
    return ".Cu" in _joined(layer)


def is_fabrication(layer) -> bool:
    return "Fab" in _joined(layer)
