from __future__ import annotations

import logging

from PyQt6.QtCore import Qt, QRectF, QPoint, QPointF, pyqtSignal
from PyQt6.QtGui import QPainter, QImage, QPen, QColor, QPainterPath
from PyQt6.QtWidgets import QWidget

from .context import BoardContext
from .grid import Cell, ViewState, grid_dimensions, normalize_grid_config, pixel_to_cell
from .fog_renderer import paint_fog, paint_selection
from .overlay import OverlayMask
from .selection import PRIMARY_BUTTON

logger = logging.getLogger(__name__)

MOUSE_POINTER_ID = 1


class BoardCanvas(QWidget):
    """
    Map view for one role.

    The GM canvas draws fog translucent and accepts drag-to-select while the
    fog selection mode is on; the player canvas draws fog opaque and takes no
    fog input. Both fit the map to the widget, zoom with the wheel and pan
    with the middle button.
    """
    cellHovered = pyqtSignal(str)

    def __init__(self, context: BoardContext, parent=None):
        super().__init__(parent)
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)

        self.context = context
        self._map: QImage | None = None
        self._overlay_img: QImage | None = None
        self._fit_rect = QRectF()

        self._zoom = 1.0
        self._zoom_min = 1.0
        self._zoom_max = 8.0
        self._view_center = QPointF(0.0, 0.0)   # map coords

        self._panning = False
        self._pan_last_pos: QPoint | None = None

        self.grid_alpha = 130

        unsubscribe = context.store.subscribe(lambda _state: self.update())
        unwatch = context.selection.on_change(lambda _sel: self.update())
        self.destroyed.connect(lambda *_: (unsubscribe(), unwatch()))

    # ---------------- Public API ----------------

    @property
    def view(self) -> ViewState:
        return self.context.view

    def set_map(self, map_img: QImage | None):
        self._map = map_img if map_img is not None and not map_img.isNull() else None
        self._zoom = 1.0
        if self._map:
            self._view_center = QPointF(self._map.width() / 2.0, self._map.height() / 2.0)
        else:
            self._view_center = QPointF(0.0, 0.0)
        self.context.selection.clear()
        self._sync_view()
        self.update()

    def set_overlay_image(self, img: QImage | None):
        self._overlay_img = img if img is not None and not img.isNull() else None
        self.update()

    def reset_zoom(self):
        self._zoom = 1.0
        if self._map:
            self._view_center = QPointF(self._map.width() / 2.0, self._map.height() / 2.0)
        self._sync_view()
        self.update()

    # ---------------- View transform ----------------

    def _layout_fit_rect(self):
        if not self._map:
            self._fit_rect = QRectF()
            return
        w, h = self.width(), self.height()
        mw, mh = self._map.width(), self._map.height()
        fit_scale = min(w / mw, h / mh) if mw and mh else 1.0
        dw, dh = mw * fit_scale, mh * fit_scale
        self._fit_rect = QRectF((w - dw) / 2.0, (h - dh) / 2.0, dw, dh)

    def _current_view_src(self) -> QRectF:
        """Visible rect in MAP coordinates."""
        if not self._map:
            return QRectF()
        mw = float(self._map.width())
        mh = float(self._map.height())
        if self._fit_rect.width() <= 0 or self._fit_rect.height() <= 0:
            return QRectF(0.0, 0.0, mw, mh)

        fit = min(self._fit_rect.width() / mw, self._fit_rect.height() / mh)
        denom = max(1e-6, fit * float(self._zoom))
        vis_w = self._fit_rect.width() / denom
        vis_h = self._fit_rect.height() / denom

        left = float(self._view_center.x()) - vis_w / 2.0
        top = float(self._view_center.y()) - vis_h / 2.0
        left = max(0.0, min(left, mw - vis_w))
        top = max(0.0, min(top, mh - vis_h))
        return QRectF(left, top, vis_w, vis_h)

    def _sync_view(self):
        """Push the current fit/zoom/pan into the context's ViewState."""
        self._layout_fit_rect()
        view = self.view
        scene = self._scene_entry()
        view.grid_size = normalize_grid_config(scene.get("grid")).size
        view.offset_left = 0.0
        view.offset_top = 0.0
        if not self._map:
            view.map_width = view.map_height = 0.0
            view.scale, view.translate_x, view.translate_y = 1.0, 0.0, 0.0
            return
        view.map_width = float(self._map.width())
        view.map_height = float(self._map.height())
        src = self._current_view_src()
        if src.width() <= 0 or self._fit_rect.width() <= 0:
            view.scale = 0.0
            return
        scale = self._fit_rect.width() / src.width()
        view.scale = scale
        view.translate_x = self._fit_rect.left() - src.left() * scale
        view.translate_y = self._fit_rect.top() - src.top() * scale

    def _scene_entry(self) -> dict:
        scene_id = self.context.active_scene_id
        entry = self.context.store.board.get("sceneState", {}).get(scene_id) if scene_id else None
        return entry if isinstance(entry, dict) else {}

    def _cell_at(self, pos: QPointF) -> Cell | None:
        cell = pixel_to_cell(float(pos.x()), float(pos.y()), self.view)
        if cell is None:
            return None
        cols, rows = grid_dimensions(self.view)
        if cols <= 0 or rows <= 0:
            return None
        return Cell(min(cell.col, cols - 1), min(cell.row, rows - 1))

    # ---------------- Mouse events ----------------

    def mouseDoubleClickEvent(self, e):
        if e.button() == Qt.MouseButton.MiddleButton:
            self.reset_zoom()
            e.accept()
            return
        super().mouseDoubleClickEvent(e)

    def wheelEvent(self, e):
        if not self._map:
            return
        pos = e.position()
        if not self._fit_rect.contains(pos):
            return
        delta = e.angleDelta().y()
        if delta == 0:
            return

        before = self._widget_to_map(pos)
        step = 1.15 if delta > 0 else (1.0 / 1.15)
        new_zoom = max(self._zoom_min, min(self._zoom_max, self._zoom * step))
        if abs(new_zoom - self._zoom) < 1e-9:
            return
        self._zoom = new_zoom
        self._sync_view()

        # keep the point under the cursor fixed
        after = self._widget_to_map(pos)
        self._view_center = QPointF(
            self._view_center.x() + before.x() - after.x(),
            self._view_center.y() + before.y() - after.y(),
        )
        self._sync_view()
        self.update()

    def _widget_to_map(self, pos: QPointF) -> QPointF:
        view = self.view
        if not view.scale:
            return QPointF(0.0, 0.0)
        return QPointF((pos.x() - view.translate_x) / view.scale, (pos.y() - view.translate_y) / view.scale)

    def mousePressEvent(self, e):
        if not self._map:
            return

        if e.button() == Qt.MouseButton.MiddleButton:
            self._panning = True
            self._pan_last_pos = e.position().toPoint()
            e.accept()
            return

        if not self.context.is_gm:
            return
        button = PRIMARY_BUTTON if e.button() == Qt.MouseButton.LeftButton else int(e.button().value)
        if self.context.selection.pointer_down(self._cell_at(e.position()), button, MOUSE_POINTER_ID):
            e.accept()

    def mouseMoveEvent(self, e):
        pos = e.position().toPoint()

        if self._panning:
            if not self._map or self._pan_last_pos is None:
                return
            dp = pos - self._pan_last_pos
            self._pan_last_pos = pos
            scale = self.view.scale
            if scale > 1e-6:
                # drag right => move view center left
                self._view_center = QPointF(
                    self._view_center.x() - dp.x() / scale,
                    self._view_center.y() - dp.y() / scale,
                )
                self._sync_view()
                self.update()
            e.accept()
            return

        cell = self._cell_at(e.position())
        if cell is not None:
            self.cellHovered.emit(cell.key)
        if self.context.is_gm:
            self.context.selection.pointer_move(cell, MOUSE_POINTER_ID)

    def mouseReleaseEvent(self, e):
        if e.button() == Qt.MouseButton.MiddleButton and self._panning:
            self._panning = False
            e.accept()
            return
        if e.button() == Qt.MouseButton.LeftButton:
            self.context.selection.pointer_up(MOUSE_POINTER_ID)

    def keyPressEvent(self, e):
        if e.key() == Qt.Key.Key_Escape and self.context.selection.dragging:
            self.context.selection.pointer_cancel()
            e.accept()
            return
        super().keyPressEvent(e)

    def hideEvent(self, e):
        self.context.selection.pointer_cancel()
        super().hideEvent(e)

    def resizeEvent(self, e):
        super().resizeEvent(e)
        self._sync_view()

    # ---------------- Rendering ----------------

    def paintEvent(self, _e):
        p = QPainter(self)
        p.fillRect(self.rect(), Qt.GlobalColor.black)

        if not self._map:
            p.end()
            return

        self._sync_view()
        view = self.view
        target = self._fit_rect
        src = self._current_view_src()

        p.setRenderHint(QPainter.RenderHint.Antialiasing, True)
        p.drawImage(target, self._map, src)

        p.save()
        p.setClipRect(target)
        p.translate(view.translate_x, view.translate_y)
        p.scale(view.scale, view.scale)

        self._draw_overlay(p, self.context.get_overlay_config().mask)
        paint_fog(p, self.context.fog_cells(), view, self.context.is_gm, self.context.fog_alpha())

        grid = normalize_grid_config(self._scene_entry().get("grid"))
        if grid.visible:
            self._draw_grid(p, view)

        if self.context.is_gm:
            paint_selection(p, self.context.selection_cells(), view)
        p.restore()

        p.end()

    def _mask_path(self, mask: OverlayMask, view: ViewState) -> QPainterPath:
        size = float(view.cell_size)
        path = QPainterPath()
        for poly in mask.polygons:
            pts = [QPointF(view.offset_left + c * size, view.offset_top + r * size) for c, r in poly]
            path.moveTo(pts[0])
            for pt in pts[1:]:
                path.lineTo(pt)
            path.closeSubpath()
        return path

    def _draw_overlay(self, p: QPainter, mask: OverlayMask):
        if not mask.visible or self._overlay_img is None:
            return
        dest = QRectF(0.0, 0.0, self.view.map_width, self.view.map_height)
        p.save()
        try:
            if mask.polygons:
                p.setClipPath(self._mask_path(mask, self.view), Qt.ClipOperation.IntersectClip)
            p.drawImage(dest, self._overlay_img)
        finally:
            p.restore()

    def _draw_grid(self, p: QPainter, view: ViewState):
        cols, rows = grid_dimensions(view)
        size = float(view.cell_size)
        pen = QPen(QColor(255, 255, 255, self.grid_alpha))
        pen.setWidth(1)
        pen.setCosmetic(True)
        p.save()
        try:
            p.setPen(pen)
            right = view.offset_left + cols * size
            bottom = view.offset_top + rows * size
            for c in range(cols + 1):
                x = view.offset_left + c * size
                p.drawLine(QPointF(x, view.offset_top), QPointF(x, bottom))
            for r in range(rows + 1):
                y = view.offset_top + r * size
                p.drawLine(QPointF(view.offset_left, y), QPointF(right, y))
        finally:
            p.restore()
