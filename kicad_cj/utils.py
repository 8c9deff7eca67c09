"""Utility functions for KiCad to Circuit JSON conversion.

Handles number parsing, output formatting and the geometry reconstruction
used by the emitters: point rotation, three-point arc fitting, arc and
circle discretisation, and board outline assembly.
"""

import math
from typing import Optional

# Target length units per polyline segment when discretising arcs
ARC_RESOLUTION = 0.1
MIN_ARC_SEGMENTS = 2
# |denominator| below this means the three arc points are collinear
COLLINEAR_EPSILON = 1e-10
# Two outline vertices closer than this are the same vertex
POINT_EPSILON = 1e-3


def fmt(value: float) -> str:
    """Format a float for output: 6 decimal places, strip trailing zeros."""
    s = f"{value:.6f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s == "-0":
        s = "0"
    return s


def num(value: float) -> float:
    """Round an output number the way fmt() prints it."""
    return float(fmt(value))


def xy(x: float, y: float) -> dict:
    """Build an output `{x, y}` point."""
    return {"x": num(x), "y": num(y)}


def parse_float(s) -> float:
    """Parse a float atom, handling edge cases."""
    try:
        return float(s)
    except (ValueError, TypeError):
        return 0.0


def parse_int(s) -> int:
    """Parse an int atom, handling edge cases."""
    try:
        return int(s)
    except (ValueError, TypeError):
        try:
            return int(float(s))
        except (ValueError, TypeError):
            return 0


def normalize_angle(angle_deg: float) -> float:
    """Map an angle in degrees onto [0, 360)."""
    a = math.fmod(angle_deg, 360.0)
    if a < 0:
        a += 360.0
    return a


def rotate_point(x: float, y: float, angle_deg: float):
    """Rotate point (x,y) around origin by angle_deg (counter-clockwise)."""
    if abs(angle_deg) < 1e-9:
        return x, y
    rad = math.radians(angle_deg)
    cos_a = math.cos(rad)
    sin_a = math.sin(rad)
    return x * cos_a - y * sin_a, x * sin_a + y * cos_a


def points_equal(p1, p2, epsilon: float = POINT_EPSILON) -> bool:
    return abs(p1[0] - p2[0]) < epsilon and abs(p1[1] - p2[1]) < epsilon


def fit_circle_3pt(start, mid, end) -> Optional[tuple]:
    """Find the circle through three points.

    Returns (cx, cy, radius), or None when the points are collinear.
    """
    ax, ay = start
    bx, by = mid
    cx, cy = end

    d = 2.0 * (ax * (by - cy) + bx * (cy - ay) + cx * (ay - by))
    if abs(d) < COLLINEAR_EPSILON:
        return None

    ux = ((ax * ax + ay * ay) * (by - cy) +
          (bx * bx + by * by) * (cy - ay) +
          (cx * cx + cy * cy) * (ay - by)) / d
    uy = ((ax * ax + ay * ay) * (cx - bx) +
          (bx * bx + by * by) * (ax - cx) +
          (cx * cx + cy * cy) * (bx - ax)) / d

    return ux, uy, math.hypot(ax - ux, ay - uy)


def arc_sweep(center, start, mid, end) -> float:
    """Signed sweep in radians from start to end passing through mid.

    Positive sweeps run counter-clockwise.
    """
    ux, uy = center
    two_pi = 2 * math.pi
    a_start = math.atan2(start[1] - uy, start[0] - ux)
    a_mid = math.atan2(mid[1] - uy, mid[0] - ux)
    a_end = math.atan2(end[1] - uy, end[0] - ux)

    ccw_to_end = (a_end - a_start) % two_pi
    ccw_to_mid = (a_mid - a_start) % two_pi

    if ccw_to_mid <= ccw_to_end:
        return ccw_to_end
    # Mid is outside the counter-clockwise arc: go the other way around
    return ccw_to_end - two_pi


def segment_count(length: float, resolution: float = ARC_RESOLUTION) -> int:
    return max(MIN_ARC_SEGMENTS, math.ceil(length / resolution))


def arc_points_from_3pt(start, mid, end, resolution: float = ARC_RESOLUTION):
    """Discretise the arc start -> mid -> end into a polyline.

    The number of points is max(2, ceil(arc_length / resolution)). Collinear
    input degrades to the straight segment [start, end].
    Returns list of (x, y) tuples.
    """
    circle = fit_circle_3pt(start, mid, end)
    if circle is None:
        return [tuple(start), tuple(end)]

    ux, uy, r = circle
    sweep = arc_sweep((ux, uy), start, mid, end)
    a_start = math.atan2(start[1] - uy, start[0] - ux)

    n = segment_count(abs(sweep) * r, resolution)
    pts = []
    for i in range(n):
        a = a_start + sweep * i / (n - 1)
        pts.append((ux + r * math.cos(a), uy + r * math.sin(a)))
    return pts


def circle_points(cx: float, cy: float, radius: float,
                  resolution: float = ARC_RESOLUTION):
    """Discretise a full circle into a closed polyline (last point == first)."""
    n = segment_count(2 * math.pi * radius, resolution)
    pts = []
    for i in range(n + 1):
        a = 2 * math.pi * i / n
        pts.append((cx + radius * math.cos(a), cy + radius * math.sin(a)))
    return pts


def assemble_outline(segments):
    """Chain line segments, in the given order, into a polygon.

    Consecutive duplicate vertices are merged and the closing vertex is
    dropped when it repeats the first one.

    Args:
        segments: iterable of ((x1, y1), (x2, y2))

    Returns:
        list of (x, y) tuples
    """
    points = []
    for start, end in segments:
        if not points or not points_equal(points[-1], start):
            points.append(tuple(start))
        if not points_equal(points[-1], end):
            points.append(tuple(end))

    if len(points) > 2 and points_equal(points[0], points[-1]):
        points.pop()
    return points


def bounds(points) -> Optional[tuple]:
    """Return (min_x, min_y, max_x, max_y) of a point list, or None if empty."""
    if not points:
        return None
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return min(xs), min(ys), max(xs), max(ys)
