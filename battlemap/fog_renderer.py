"""
Per-frame fog and selection drawing.

`render_fog_cells` / `render_selection_cells` decide *which* cells to paint;
`paint_fog` / `paint_selection` turn those cells into QPainter calls in map
pixel space. Callers set up the painter transform (map -> widget) first.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from PyQt6.QtCore import QRectF, Qt
from PyQt6.QtGui import QColor, QImage, QPainter, QPen

from .fog import PLAYER_VISIBLE_TOKEN_FOLDER, get_fog_state, scene_auto_revealed
from .grid import ViewState, cell_key, cell_to_rect, grid_dimensions, parse_cell_key
from .selection import SelectionController
from .settings import DEFAULT_GM_FOG_ALPHA, DEFAULT_PLAYER_FOG_ALPHA

logger = logging.getLogger(__name__)

FOG_RGB = (0, 0, 0)
SELECTION_FILL = QColor(80, 170, 255, 90)
SELECTION_OUTLINE = QColor(80, 170, 255, 230)


def render_fog_cells(
    board: Mapping[str, Any] | None,
    tokens: Mapping[str, Any] | None,
    scene_id: str | None,
    view: ViewState,
    folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER,
) -> set[str]:
    """Every grid cell covering the map that is neither revealed nor auto-revealed."""
    if not scene_id:
        return set()
    fog = get_fog_state(board, scene_id)
    if fog is None or not fog.enabled:
        return set()
    if not view.has_map:
        logger.debug("render_fog_cells: no map size for scene %s", scene_id)
        return set()

    cols, rows = grid_dimensions(view)
    revealed = fog.revealed.keys()
    auto = scene_auto_revealed(board, tokens, scene_id, folder_name).keys()
    cells = set()
    for col in range(cols):
        for row in range(rows):
            key = cell_key(col, row)
            if key not in revealed and key not in auto:
                cells.add(key)
    return cells


def render_selection_cells(selection: SelectionController | None) -> set[str]:
    if selection is None or not selection.active:
        return set()
    return set(selection.cells)


def fog_alpha(is_gm: bool, settings=None) -> int:
    """GM sees through the fog (translucent); everyone else gets it opaque."""
    if settings is None:
        return DEFAULT_GM_FOG_ALPHA if is_gm else DEFAULT_PLAYER_FOG_ALPHA
    return settings.gm_fog_alpha if is_gm else settings.player_fog_alpha


def _cell_rects(cells: Iterable[str], view: ViewState) -> list[QRectF]:
    rects = []
    for key in cells:
        cell = parse_cell_key(key)
        if cell is None:
            continue
        r = cell_to_rect(cell, view)
        rects.append(QRectF(r.x, r.y, r.w, r.h))
    return rects


def paint_fog(p: QPainter, cells: Iterable[str], view: ViewState, is_gm: bool, alpha: int | None = None):
    if alpha is None:
        alpha = fog_alpha(is_gm)
    rects = _cell_rects(cells, view)
    if not rects:
        return
    p.save()
    try:
        p.setPen(Qt.PenStyle.NoPen)
        p.setBrush(QColor(*FOG_RGB, max(0, min(255, int(alpha)))))
        # cells share edges; no antialiasing so seams don't show
        p.setRenderHint(QPainter.RenderHint.Antialiasing, False)
        for r in rects:
            p.drawRect(r)
    finally:
        p.restore()


def paint_selection(p: QPainter, cells: Iterable[str], view: ViewState):
    rects = _cell_rects(cells, view)
    if not rects:
        return
    p.save()
    try:
        p.setPen(Qt.PenStyle.NoPen)
        p.setBrush(SELECTION_FILL)
        for r in rects:
            p.drawRect(r)

        bounds = rects[0]
        for r in rects[1:]:
            bounds = bounds.united(r)
        pen = QPen(SELECTION_OUTLINE)
        pen.setWidth(2)
        pen.setCosmetic(True)
        p.setPen(pen)
        p.setBrush(Qt.BrushStyle.NoBrush)
        p.drawRect(bounds)
    finally:
        p.restore()


def render_fog_image(
    board: Mapping[str, Any] | None,
    tokens: Mapping[str, Any] | None,
    scene_id: str | None,
    view: ViewState,
    is_gm: bool,
    alpha: int | None = None,
    folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER,
) -> QImage:
    """Fog layer as a map-sized transparent image, drawn offscreen in map pixels."""
    w, h = int(view.map_width), int(view.map_height)
    img = QImage(max(1, w), max(1, h), QImage.Format.Format_ARGB32_Premultiplied)
    img.fill(QColor(0, 0, 0, 0))
    if not view.has_map:
        return img
    cells = render_fog_cells(board, tokens, scene_id, view, folder_name)
    p = QPainter(img)
    try:
        paint_fog(p, cells, view, is_gm, alpha)
    finally:
        p.end()
    return img
