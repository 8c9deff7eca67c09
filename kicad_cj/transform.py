"""Coordinate transforms from KiCad space to Circuit JSON space.

KiCad uses Y+ down, Circuit JSON uses Y+ up. Boards keep their mm scale and
are re-centred on the middle of the Edge.Cuts bounding box. Schematics are
divided by SCH_SCALE and re-centred on the middle of the drawing sheet.
"""

from dataclasses import dataclass

from .kicad_model import KicadPcb, KicadSch
from .layers import is_edge_cuts
from .utils import bounds

SCH_SCALE = 15.0
DEFAULT_PAPER = "A4"

# Landscape sheet sizes in mm, as KiCad defines them
PAPER_SIZES = {
    "A5": (210.0, 148.0),
    "A4": (297.0, 210.0),
    "A3": (420.0, 297.0),
    "A2": (594.0, 420.0),
    "A1": (841.0, 594.0),
    "A0": (1189.0, 841.0),
    "A": (279.4, 215.9),
    "B": (431.8, 279.4),
    "C": (558.8, 431.8),
    "D": (863.6, 558.8),
    "E": (1117.6, 863.6),
    "USLetter": (279.4, 215.9),
    "USLegal": (355.6, 215.9),
    "USLedger": (431.8, 279.4),
}


@dataclass(frozen=True)
class Transform:
    """2D affine map  x' = a*x + c*y + e,  y' = b*x + d*y + f."""
    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    e: float = 0.0
    f: float = 0.0

    @classmethod
    def translate(cls, tx: float, ty: float) -> "Transform":
        return cls(e=tx, f=ty)

    @classmethod
    def scale(cls, sx: float, sy: float) -> "Transform":
        return cls(a=sx, d=sy)

    def __matmul__(self, other: "Transform") -> "Transform":
        """self @ other applies `other` first, then `self`."""
        return Transform(
            a=self.a * other.a + self.c * other.b,
            b=self.b * other.a + self.d * other.b,
            c=self.a * other.c + self.c * other.d,
            d=self.b * other.c + self.d * other.d,
            e=self.a * other.e + self.c * other.f + self.e,
            f=self.b * other.e + self.d * other.f + self.f,
        )

    def apply(self, x: float, y: float):
        return (self.a * x + self.c * y + self.e,
                self.b * x + self.d * y + self.f)

    def apply_point(self, p):
        """Apply to anything with .x/.y (None maps the origin)."""
        if p is None:
            return self.apply(0.0, 0.0)
        return self.apply(p.x, p.y)


def compose(*transforms: Transform) -> Transform:
    """Compose right-to-left: compose(A, B)(p) == A(B(p))."""
    result = Transform()
    for t in transforms:
        result = result @ t
    return result


def edge_cuts_points(pcb: KicadPcb):
    """All declared vertices of board-level Edge.Cuts primitives."""
    points = []
    for g in pcb.graphics:
        if not is_edge_cuts(g.layer):
            continue
        if g.item_type == "circle" and g.start is not None and g.end is not None:
            r = ((g.end.x - g.start.x) ** 2 + (g.end.y - g.start.y) ** 2) ** 0.5
            points.append((g.start.x - r, g.start.y - r))
            points.append((g.start.x + r, g.start.y + r))
            continue
        for p in (g.start, g.mid, g.end):
            if p is not None:
                points.append((p.x, p.y))
    return points


def build_pcb_transform(pcb: KicadPcb) -> Transform:
    """Flip Y and move the Edge.Cuts bounding box centre to the origin."""
    cx, cy = 0.0, 0.0
    box = bounds(edge_cuts_points(pcb))
    if box is not None:
        cx = (box[0] + box[2]) / 2
        cy = (box[1] + box[3]) / 2
    return compose(Transform.scale(1, -1), Transform.translate(-cx, -cy))


def paper_center(sch: KicadSch):
    width, height = PAPER_SIZES.get(sch.paper or DEFAULT_PAPER,
                                    PAPER_SIZES[DEFAULT_PAPER])
    if sch.portrait:
        width, height = height, width
    return width / 2, height / 2


def build_sch_transform(sch: KicadSch) -> Transform:
    """Move the sheet centre to the origin, flip Y and shrink by SCH_SCALE."""
    kx, ky = paper_center(sch)
    return compose(
        Transform.scale(1 / SCH_SCALE, -1 / SCH_SCALE),
        Transform.translate(-kx, -ky),
    )
