from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Mapping

DEFAULT_GRID_SIZE = 64
MIN_GRID_SIZE = 8
MAX_GRID_SIZE = 320

_CELL_PART = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class Cell:
    col: int
    row: int

    @property
    def key(self) -> str:
        return cell_key(self.col, self.row)


@dataclass(frozen=True)
class CellRect:
    x: float
    y: float
    w: float
    h: float


@dataclass
class GridConfig:
    size: int = DEFAULT_GRID_SIZE
    locked: bool = False
    visible: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"size": int(self.size), "locked": bool(self.locked), "visible": bool(self.visible)}


@dataclass
class ViewState:
    """
    Per-frame view transform.

    translation/scale map world (map) pixels to screen pixels:
      screen = map * scale + translation
    """
    scale: float = 1.0
    translate_x: float = 0.0
    translate_y: float = 0.0
    grid_size: int = DEFAULT_GRID_SIZE
    offset_left: float = 0.0
    offset_top: float = 0.0
    map_width: float = 0.0
    map_height: float = 0.0

    @staticmethod
    def from_dict(d: Mapping[str, Any] | None) -> "ViewState":
        d = d if isinstance(d, Mapping) else {}
        translation = d.get("translation") if isinstance(d.get("translation"), Mapping) else {}
        offsets = d.get("gridOffsets") if isinstance(d.get("gridOffsets"), Mapping) else {}
        size = d.get("mapPixelSize") if isinstance(d.get("mapPixelSize"), Mapping) else {}
        return ViewState(
            scale=_finite(d.get("scale"), 1.0),
            translate_x=_finite(translation.get("x"), 0.0),
            translate_y=_finite(translation.get("y"), 0.0),
            grid_size=int(_finite(d.get("gridSize"), DEFAULT_GRID_SIZE)),
            offset_left=_finite(offsets.get("left"), 0.0),
            offset_top=_finite(offsets.get("top"), 0.0),
            map_width=_finite(size.get("width"), 0.0),
            map_height=_finite(size.get("height"), 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "scale": self.scale,
            "translation": {"x": self.translate_x, "y": self.translate_y},
            "gridSize": self.grid_size,
            "gridOffsets": {"left": self.offset_left, "top": self.offset_top},
            "mapPixelSize": {"width": self.map_width, "height": self.map_height},
        }

    @property
    def cell_size(self) -> int:
        return effective_grid_size(self.grid_size)

    @property
    def has_map(self) -> bool:
        return _is_finite(self.map_width) and _is_finite(self.map_height) \
            and self.map_width > 0 and self.map_height > 0


# ---------------- Helpers ----------------

def _is_finite(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def _finite(v: Any, fallback: float) -> float:
    return float(v) if _is_finite(v) else float(fallback)


def effective_grid_size(size: Any) -> int:
    """Grid cell size used for any pixel<->cell conversion (never below 8)."""
    if not _is_finite(size):
        return DEFAULT_GRID_SIZE
    return max(MIN_GRID_SIZE, int(size))


def cell_key(col: int, row: int) -> str:
    return f"{int(col)},{int(row)}"


def parse_cell_key(key: Any) -> Cell | None:
    """
    Parse a "col,row" key.

    Each part is read up to its first non-digit, so "2.7,3" becomes 2,3.
    Returns None when a part has no leading integer or is negative.
    """
    if not isinstance(key, str):
        return None
    parts = key.split(",")
    if len(parts) != 2:
        return None
    m_col = _CELL_PART.match(parts[0])
    m_row = _CELL_PART.match(parts[1])
    if not m_col or not m_row:
        return None
    col, row = int(m_col.group(1)), int(m_row.group(1))
    if col < 0 or row < 0:
        return None
    return Cell(col, row)


def normalize_grid_config(raw: Any) -> GridConfig:
    grid = GridConfig()
    if not isinstance(raw, Mapping):
        return grid
    size = raw.get("size")
    if isinstance(size, str):
        try:
            size = float(size.strip())
        except ValueError:
            size = None
    if _is_finite(size):
        grid.size = max(MIN_GRID_SIZE, min(MAX_GRID_SIZE, int(round(float(size)))))
    if "locked" in raw:
        grid.locked = bool(raw.get("locked"))
    if "visible" in raw:
        grid.visible = bool(raw.get("visible"))
    return grid


# ---------------- Pixel <-> cell ----------------

def pixel_to_cell(x: float, y: float, view: ViewState) -> Cell | None:
    """
    Convert a pointer position (surface pixels) to the grid cell under it.

    Returns None when the transform cannot be inverted (scale 0 / non-finite),
    when the map has no size yet, or when the point lies above/left of the
    grid origin.
    """
    scale = view.scale
    if not _is_finite(scale) or scale == 0:
        return None
    if not view.has_map:
        return None
    if not _is_finite(x) or not _is_finite(y):
        return None

    local_x = (float(x) - view.translate_x) / scale
    local_y = (float(y) - view.translate_y) / scale

    size = view.cell_size
    col = math.floor((local_x - view.offset_left) / size)
    row = math.floor((local_y - view.offset_top) / size)
    if col < 0 or row < 0:
        return None
    return Cell(int(col), int(row))


def cell_to_rect(cell: Cell, view: ViewState) -> CellRect:
    """Map-pixel rectangle covered by a cell (inverse of pixel_to_cell at scale 1)."""
    size = view.cell_size
    return CellRect(
        x=view.offset_left + cell.col * size,
        y=view.offset_top + cell.row * size,
        w=float(size),
        h=float(size),
    )


def grid_dimensions(view: ViewState) -> tuple[int, int]:
    """Number of (cols, rows) needed to cover the map from the grid origin."""
    if not view.has_map:
        return 0, 0
    size = view.cell_size
    cols = math.ceil((view.map_width - view.offset_left) / size)
    rows = math.ceil((view.map_height - view.offset_top) / size)
    return max(0, cols), max(0, rows)


def rect_cells(anchor: Cell, cursor: Cell) -> set[str]:
    """Inclusive rectangle of cell keys between two corners, clipped to col,row >= 0."""
    min_col, max_col = sorted((anchor.col, cursor.col))
    min_row, max_row = sorted((anchor.row, cursor.row))
    return {
        cell_key(c, r)
        for c in range(max(0, min_col), max_col + 1)
        for r in range(max(0, min_row), max_row + 1)
    }
