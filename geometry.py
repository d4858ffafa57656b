"""
geometry.py

Pure coordinate math for the executor: rectangles, window-relative and
square-relative point resolution, the execution grid and drag interpolation.
Nothing here touches the desktop.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

Point = Tuple[int, int]

DEFAULT_DRAG_STEPS = 24
DEFAULT_DRAG_DELAY_MS = 5
DEFAULT_MOVE_DELAY_MS = 3

MAX_DRAG_STEPS = 200
MAX_DRAG_DELAY_MS = 50


def _clamp01(v: float) -> float:
    return max(0.0, min(1.0, float(v)))


def as_number(v: Any) -> Optional[float]:
    # bool is an int subclass; a JSON true is not a coordinate
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    f = float(v)
    if math.isnan(f) or math.isinf(f):
        return None
    return f


@dataclass(frozen=True)
class Rect:
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return max(1, self.right - self.left)

    @property
    def height(self) -> int:
        return max(1, self.bottom - self.top)

    def resolve_relative(self, rx: float, ry: float) -> Point:
        x = self.left + int(round(_clamp01(rx) * self.width))
        y = self.top + int(round(_clamp01(ry) * self.height))
        return x, y

    def resolve_square_relative(self, mrx: float, mry: float) -> Point:
        """Map (mrx, mry) into the largest square centered in the rectangle."""
        w, h = self.width, self.height
        size = max(1, min(w, h))
        offset_x = self.left + (w - size) // 2
        offset_y = self.top + (h - size) // 2
        x = offset_x + int(round(_clamp01(mrx) * size))
        y = offset_y + int(round(_clamp01(mry) * size))
        return x, y

    def contains(self, x: int, y: int) -> bool:
        return self.left <= x <= self.left + self.width and self.top <= y <= self.top + self.height

    def to_dict(self) -> dict:
        return {"left": self.left, "top": self.top, "right": self.right, "bottom": self.bottom}


def resolve_point(point: Mapping[str, Any], rect: Rect) -> Optional[Point]:
    """
    Resolve one path point.

    Priority: square-relative (mrx/mry), then window-relative (rx/ry), then
    absolute (x/y). Returns None when no complete numeric pair is present.
    """
    if not isinstance(point, Mapping):
        return None

    mrx, mry = as_number(point.get("mrx")), as_number(point.get("mry"))
    if mrx is not None and mry is not None:
        return rect.resolve_square_relative(mrx, mry)

    rx, ry = as_number(point.get("rx")), as_number(point.get("ry"))
    if rx is not None and ry is not None:
        return rect.resolve_relative(rx, ry)

    x, y = as_number(point.get("x")), as_number(point.get("y"))
    if x is not None and y is not None and x == int(x) and y == int(y):
        return int(x), int(y)

    return None


# -----------------------------
# Grid
# -----------------------------
@dataclass(frozen=True)
class GridSpec:
    rows: int
    cols: int

    @property
    def total_cells(self) -> int:
        return self.rows * self.cols

    def contains(self, cell: int) -> bool:
        return 1 <= cell <= self.total_cells

    def cell_position(self, cell: int) -> Tuple[int, int]:
        """1-based row-major cell -> zero-based (row, col)."""
        if not self.contains(cell):
            raise ValueError(f"cell {cell} outside 1..{self.total_cells}")
        return divmod(cell - 1, self.cols)

    def cell_center(self, cell: int, rect: Rect) -> Point:
        row, col = self.cell_position(cell)
        cw = rect.width / self.cols
        ch = rect.height / self.rows
        x = rect.left + int(col * cw + cw / 2)
        y = rect.top + int(row * ch + ch / 2)
        return x, y


# 12 rows x 16 columns = 192 cells, numbered left to right, top to bottom.
EXECUTION_GRID = GridSpec(rows=12, cols=16)


# -----------------------------
# Drag
# -----------------------------
def clamp_drag_steps(steps: int) -> int:
    if steps <= 0:
        steps = DEFAULT_DRAG_STEPS
    return max(1, min(MAX_DRAG_STEPS, steps))


def clamp_drag_delay(delay_ms: int) -> int:
    if delay_ms <= 0:
        delay_ms = DEFAULT_DRAG_DELAY_MS
    return max(0, min(MAX_DRAG_DELAY_MS, delay_ms))


def clamp_move_delay(delay_ms: int) -> int:
    if delay_ms <= 0:
        delay_ms = DEFAULT_MOVE_DELAY_MS
    return max(0, min(MAX_DRAG_DELAY_MS, delay_ms))


def interpolate_line(start: Point, end: Point, steps: int) -> List[Point]:
    """Points 1..steps of a straight line; the last one is exactly `end`."""
    steps = max(1, int(steps))
    (x0, y0), (x1, y1) = start, end
    out: List[Point] = []
    for i in range(1, steps + 1):
        t = i / float(steps)
        out.append((int(round(x0 + (x1 - x0) * t)), int(round(y0 + (y1 - y0) * t))))
    return out
