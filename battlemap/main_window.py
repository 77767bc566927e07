from __future__ import annotations

import logging
from pathlib import Path

from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtGui import QGuiApplication, QImage
from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QPushButton, QFileDialog,
    QLabel, QMessageBox, QComboBox, QCheckBox, QFrame, QGroupBox, QInputDialog,
    QListWidget, QListWidgetItem,
)

from . import __version__
from .board_canvas import BoardCanvas
from .board_state import BoardStateError, BoardStore
from .context import BoardContext
from .map_loader import MapLoadError, load_map, resolve_map_path
from .settings import AppSettings

logger = logging.getLogger(__name__)

APP_TITLE = "Battlemap"

HELP_TEXT = (
    "Battlemap – Fog of War & Overlays\n\n"
    "FOG\n"
    "- Enabled: turn fog on/off for the current scene (revealed squares are kept)\n"
    "- Select Area: click and drag on the map to select squares\n"
    "- Clear Fog: reveal the selected squares\n"
    "- Add Fog: cover the selected squares again\n"
    "- Squares under PC's-folder tokens and allies are always visible to players\n\n"
    "OVERLAYS\n"
    "- Add / Rename / Delete layers; tick a layer to show it\n"
    "- Click a layer to make it active; Image… sets the active layer's picture\n\n"
    "VIEW\n"
    "- Mouse wheel: zoom, middle drag: pan, middle double click: reset zoom\n"
    "- Player Screen: opens the player view (opaque fog) in a second window\n"
)

LAYER_ID_ROLE = Qt.ItemDataRole.UserRole


class PlayerWindow(QWidget):
    """Second screen: the same board seen with the player role."""

    def __init__(self, context: BoardContext):
        super().__init__()
        self.setWindowTitle(f"{APP_TITLE} – Player")
        self.canvas = BoardCanvas(context)
        lay = QVBoxLayout(self)
        lay.setContentsMargins(0, 0, 0, 0)
        lay.addWidget(self.canvas)
        self.setStyleSheet("background: black;")


class MainWindow(QMainWindow):
    def __init__(self, settings: AppSettings | None = None, store: BoardStore | None = None,
                 prompt_restore: bool = True):
        super().__init__()
        self.settings = settings if settings is not None else AppSettings()
        self.store = store if store is not None else BoardStore(persist_delay_ms=self.settings.persist_delay_ms)
        self._restore_prompt_shown = not prompt_restore

        self.context = BoardContext(self.store, is_gm=self.settings.is_gm, settings=self.settings)
        self.player_context = BoardContext(self.store, is_gm=False, settings=self.settings)

        self._map_path: Path | None = None
        self._overlay_path: Path | None = None
        self._syncing = False

        self.canvas = BoardCanvas(self.context)
        self.player = PlayerWindow(self.player_context)
        self.player_enabled = False

        self.statusBar().showMessage("Ready")

        # ---------- UI ----------
        root = QWidget()
        self.setCentralWidget(root)
        v = QVBoxLayout(root)

        row1 = QHBoxLayout()
        v.addLayout(row1)
        self.btn_open_board = QPushButton("Open Board")
        self.btn_open_map = QPushButton("Set Scene Map")
        self.btn_save = QPushButton("Save")
        self.btn_zoom_reset = QPushButton("Reset zoom")
        self.btn_help = QPushButton("Help")
        row1.addWidget(self.btn_open_board)
        row1.addWidget(self.btn_open_map)
        row1.addWidget(self.btn_save)
        row1.addWidget(self.btn_zoom_reset)
        row1.addWidget(self.btn_help)
        row1.addStretch(1)
        row1.addWidget(QLabel("Scene"))
        self.cmb_scene = QComboBox()
        self.cmb_scene.setMinimumWidth(160)
        row1.addWidget(self.cmb_scene)
        self.btn_player = QPushButton("Player Screen: OFF")
        self.btn_player.setCheckable(True)
        row1.addWidget(self.btn_player)

        body = QHBoxLayout()
        v.addLayout(body, 1)

        # Canvas frame
        self.canvas_frame = QFrame()
        self.canvas_frame.setFrameShape(QFrame.Shape.StyledPanel)
        frame_layout = QVBoxLayout(self.canvas_frame)
        frame_layout.setContentsMargins(0, 0, 0, 0)
        frame_layout.addWidget(self.canvas)
        body.addWidget(self.canvas_frame, 1)

        side = QVBoxLayout()
        body.addLayout(side)

        # Fog panel
        fog_box = QGroupBox("Fog of War")
        fl = QVBoxLayout(fog_box)
        self.chk_fog = QCheckBox("Enabled")
        self.btn_select = QPushButton("Select Area")
        self.btn_select.setCheckable(True)
        fog_btns = QHBoxLayout()
        self.btn_clear_fog = QPushButton("Clear Fog")
        self.btn_add_fog = QPushButton("Add Fog")
        fog_btns.addWidget(self.btn_clear_fog)
        fog_btns.addWidget(self.btn_add_fog)
        self.lbl_fog_status = QLabel("")
        self.lbl_fog_status.setWordWrap(True)
        fl.addWidget(self.chk_fog)
        fl.addWidget(self.btn_select)
        fl.addLayout(fog_btns)
        fl.addWidget(self.lbl_fog_status)
        side.addWidget(fog_box)

        # Overlay panel
        ov_box = QGroupBox("Overlays")
        ol = QVBoxLayout(ov_box)
        self.lst_layers = QListWidget()
        ol.addWidget(self.lst_layers)
        ov_btns = QHBoxLayout()
        self.btn_layer_add = QPushButton("Add")
        self.btn_layer_rename = QPushButton("Rename")
        self.btn_layer_delete = QPushButton("Delete")
        self.btn_layer_image = QPushButton("Image…")
        for b in (self.btn_layer_add, self.btn_layer_rename, self.btn_layer_delete, self.btn_layer_image):
            ov_btns.addWidget(b)
        ol.addLayout(ov_btns)
        side.addWidget(ov_box, 1)

        self.lbl_cell = QLabel("")
        side.addWidget(self.lbl_cell)

        # ---------- Signals ----------
        self.btn_open_board.clicked.connect(self.open_board_dialog)
        self.btn_open_map.clicked.connect(self.open_map)
        self.btn_save.clicked.connect(self.save_now)
        self.btn_zoom_reset.clicked.connect(self.canvas.reset_zoom)
        self.btn_help.clicked.connect(self.show_help)
        self.btn_player.toggled.connect(self.toggle_player_screen)
        self.cmb_scene.currentIndexChanged.connect(self.on_scene_picked)

        self.chk_fog.toggled.connect(self.on_fog_toggled)
        self.btn_select.toggled.connect(self.on_select_toggled)
        self.btn_clear_fog.clicked.connect(lambda: self.apply_fog_selection(reveal=True))
        self.btn_add_fog.clicked.connect(lambda: self.apply_fog_selection(reveal=False))
        self.context.selection.on_change(lambda _sel: self._update_fog_status())

        self.btn_layer_add.clicked.connect(self.add_layer)
        self.btn_layer_rename.clicked.connect(self.rename_layer)
        self.btn_layer_delete.clicked.connect(self.delete_layer)
        self.btn_layer_image.clicked.connect(self.set_layer_image)
        self.lst_layers.itemClicked.connect(self.on_layer_clicked)
        self.lst_layers.itemChanged.connect(self.on_layer_check_changed)

        self.canvas.cellHovered.connect(lambda key: self.lbl_cell.setText(f"Square {key}"))

        self.store.stateChanged.connect(self.on_state_changed)
        self.store.persisted.connect(lambda path: self.statusBar().showMessage(f"Saved: {Path(path).name}", 2000))
        self.store.persistFailed.connect(lambda msg: self.statusBar().showMessage(msg, 6000))

        self.btn_open_map.setEnabled(self.context.is_gm)

        self.resize(1340, 920)
        self._update_window_title()
        self.on_state_changed(self.store.get_state())

    # ---------- Window ----------

    def showEvent(self, e):
        super().showEvent(e)
        if not self._restore_prompt_shown:
            self._restore_prompt_shown = True
            QTimer.singleShot(50, self._prompt_autoload_recent)

    def _update_window_title(self):
        base = f"{APP_TITLE} {__version__}"
        if self.store.path is not None:
            self.setWindowTitle(f"{base}  |  {self.store.path.name}")
        else:
            self.setWindowTitle(base)

    def show_help(self):
        QMessageBox.information(self, "Help", HELP_TEXT)

    # ---------- Recent boards / Auto-restore ----------

    def _prompt_autoload_recent(self) -> None:
        if self.store.path is not None:
            return
        last = next((s for s in self.settings.recent_boards() if Path(s).exists()), None)
        if not last:
            return

        box = QMessageBox(self)
        box.setWindowTitle("Restore board?")
        box.setIcon(QMessageBox.Icon.Question)
        box.setText("Open the last board again?")
        box.setInformativeText(f"Last board:\n{Path(last).name}")
        btn_last = box.addButton("Open last", QMessageBox.ButtonRole.AcceptRole)
        box.addButton("Not now", QMessageBox.ButtonRole.RejectRole)
        box.setDefaultButton(btn_last)
        box.exec()
        if box.clickedButton() == btn_last:
            self.load_board(last)

    # ---------- Board ----------

    def load_board(self, path: str | Path) -> bool:
        if self.store.persist_pending:
            self.store.flush()
        try:
            self.store.load(path)
        except BoardStateError as e:
            logger.warning("%s", e)
            QMessageBox.critical(self, "Load error", f"Couldn't load board:\n{e}")
            return False
        self.settings.add_recent_board(path)
        self._update_window_title()
        self.statusBar().showMessage(f"Board loaded: {Path(path).name}", 2600)
        return True

    def open_board_dialog(self):
        path, _ = QFileDialog.getOpenFileName(self, "Open Board", "", "Board (*.json)")
        if path:
            self.load_board(path)

    def save_now(self):
        if self.store.path is None:
            path, _ = QFileDialog.getSaveFileName(self, "Save Board As", "", "Board (*.json)")
            if not path:
                return
            self.store.path = Path(path).with_suffix(".json")
            self.settings.add_recent_board(self.store.path)
            self._update_window_title()
        self.store.flush()

    def _base_dir(self) -> Path | None:
        return self.store.path.parent if self.store.path is not None else None

    def _stored_url(self, path: str) -> str:
        p = Path(path).resolve()
        base = self._base_dir()
        if base is not None:
            try:
                return p.relative_to(base.resolve()).as_posix()
            except ValueError:
                pass
        return str(p)

    def open_map(self):
        if not self.context.is_gm:
            return
        path, _ = QFileDialog.getOpenFileName(
            self, "Scene Map", "", "Maps (*.png *.jpg *.jpeg *.webp *.tif *.tiff *.pdf);;All files (*.*)"
        )
        if not path:
            return
        url = self._stored_url(path)
        self.store.update_state(lambda draft: draft.__setitem__("mapUrl", url))
        self.store.persist_board_state()

    def _load_image(self, url: str | None) -> tuple[Path | None, QImage | None]:
        path = resolve_map_path(url, self._base_dir())
        if path is None:
            return None, None
        try:
            return path, load_map(path).qimage
        except MapLoadError as e:
            logger.warning("%s", e)
            self.statusBar().showMessage(str(e), 6000)
            return path, None

    def _sync_images(self, board: dict):
        path = resolve_map_path(board.get("mapUrl"), self._base_dir())
        if path != self._map_path:
            self._map_path, img = self._load_image(board.get("mapUrl"))
            self.canvas.set_map(img)
            self.player.canvas.set_map(img)

        overlay_url = self.context.get_overlay_config().map_url
        path = resolve_map_path(overlay_url, self._base_dir())
        if path != self._overlay_path:
            self._overlay_path, img = self._load_image(overlay_url)
            self.canvas.set_overlay_image(img)
            self.player.canvas.set_overlay_image(img)

    # ---------- State -> UI ----------

    def on_state_changed(self, state: dict):
        board = state.get("boardState", {})
        self._syncing = True
        try:
            self._refresh_scenes(board)
            self._refresh_fog_panel()
            self._refresh_layers()
        finally:
            self._syncing = False
        self._sync_images(board)

    def _refresh_scenes(self, board: dict):
        ids = self.store.scene_ids()
        active = board.get("activeSceneId")
        if active and active not in ids:
            ids.append(active)
        self.cmb_scene.blockSignals(True)
        try:
            self.cmb_scene.clear()
            for scene_id in ids:
                self.cmb_scene.addItem(scene_id, scene_id)
            idx = self.cmb_scene.findData(active)
            self.cmb_scene.setCurrentIndex(idx)
        finally:
            self.cmb_scene.blockSignals(False)

    def _refresh_fog_panel(self):
        has_scene = self.context.active_scene_id is not None
        self.chk_fog.setEnabled(has_scene and self.context.is_gm)
        self.chk_fog.setChecked(self.context.is_fog_enabled())
        self.btn_select.setEnabled(has_scene and self.context.is_gm)
        self._update_fog_status()

    def _update_fog_status(self):
        sel = self.context.selection
        self.btn_clear_fog.setEnabled(sel.has_selection)
        self.btn_add_fog.setEnabled(sel.has_selection)
        if self.btn_select.isChecked() != sel.active:
            self.btn_select.blockSignals(True)
            self.btn_select.setChecked(sel.active)
            self.btn_select.blockSignals(False)
        self.lbl_fog_status.setText(sel.status_text())

    def _refresh_layers(self):
        config = self.context.get_overlay_config()
        can_edit = self.context.is_gm and self.context.active_scene_id is not None
        self.lst_layers.clear()
        for layer in config.layers:
            label = layer.name + ("  ★" if layer.id == config.active_layer_id else "")
            item = QListWidgetItem(label)
            item.setData(LAYER_ID_ROLE, layer.id)
            if can_edit:
                item.setFlags(item.flags() | Qt.ItemFlag.ItemIsUserCheckable)
            else:
                item.setFlags(item.flags() & ~Qt.ItemFlag.ItemIsUserCheckable)
            item.setCheckState(Qt.CheckState.Checked if layer.visible else Qt.CheckState.Unchecked)
            self.lst_layers.addItem(item)
            if layer.id == config.active_layer_id:
                self.lst_layers.setCurrentItem(item)
        self.btn_layer_add.setEnabled(can_edit)
        for b in (self.btn_layer_rename, self.btn_layer_delete, self.btn_layer_image):
            b.setEnabled(can_edit and bool(config.layers))

    # ---------- Scene / fog commands ----------

    def on_scene_picked(self, index: int):
        scene_id = self.cmb_scene.itemData(index)
        if scene_id and scene_id != self.context.active_scene_id:
            self.context.selection.deactivate()
            self.store.set_active_scene(scene_id)
            self.store.persist_board_state()

    def on_fog_toggled(self, enabled: bool):
        if self._syncing:
            return
        self.context.set_fog_enabled(enabled)

    def on_select_toggled(self, on: bool):
        if on:
            self.context.selection.activate()
        else:
            self.context.selection.deactivate()

    def apply_fog_selection(self, reveal: bool):
        count = self.context.apply_selection(reveal)
        if count:
            verb = "Revealed" if reveal else "Covered"
            self.statusBar().showMessage(f"{verb} {count} square{'' if count == 1 else 's'}", 2000)

    # ---------- Overlay commands ----------

    def _selected_layer_id(self) -> str | None:
        item = self.lst_layers.currentItem()
        if item is not None:
            return item.data(LAYER_ID_ROLE)
        return self.context.get_overlay_config().active_layer_id

    def add_layer(self):
        name, ok = QInputDialog.getText(self, "Add Overlay", "Name:")
        if not ok:
            return
        self.context.add_overlay_layer(name or None)

    def rename_layer(self):
        layer_id = self._selected_layer_id()
        layer = self.context.get_overlay_config().layer(layer_id)
        if layer is None:
            return
        name, ok = QInputDialog.getText(self, "Rename Overlay", "Name:", text=layer.name)
        if ok and name.strip():
            self.context.rename_overlay_layer(layer_id, name)

    def delete_layer(self):
        layer_id = self._selected_layer_id()
        layer = self.context.get_overlay_config().layer(layer_id)
        if layer is None:
            return
        res = QMessageBox.question(self, "Delete Overlay", f"Delete overlay \"{layer.name}\"?")
        if res == QMessageBox.StandardButton.Yes:
            self.context.delete_overlay_layer(layer_id)

    def set_layer_image(self):
        layer_id = self._selected_layer_id()
        if layer_id is None:
            return
        path, _ = QFileDialog.getOpenFileName(
            self, "Overlay Image", "", "Images (*.png *.jpg *.jpeg *.webp);;All files (*.*)"
        )
        if path:
            self.context.set_overlay_layer_image(layer_id, self._stored_url(path))

    def on_layer_clicked(self, item: QListWidgetItem):
        layer_id = item.data(LAYER_ID_ROLE)
        if layer_id and layer_id != self.context.get_overlay_config().active_layer_id:
            self.context.set_active_overlay_layer(layer_id)

    def on_layer_check_changed(self, item: QListWidgetItem):
        if self._syncing:
            return
        visible = item.checkState() == Qt.CheckState.Checked
        layer_id = item.data(LAYER_ID_ROLE)
        # deferred: the list is rebuilt by the state change this causes
        QTimer.singleShot(0, lambda: self.context.toggle_overlay_layer(layer_id, visible))

    # ---------- Player screen ----------

    def toggle_player_screen(self, enabled: bool):
        self.player_enabled = enabled
        self.btn_player.setText(f"Player Screen: {'ON' if enabled else 'OFF'}")
        if not enabled:
            self.player.hide()
            return

        screens = QGuiApplication.screens()
        screen = screens[1] if len(screens) > 1 else self.screen()
        geo = screen.geometry()
        w = int(geo.width() * 0.8)
        h = int(geo.height() * 0.8)
        self.player.setGeometry(geo.left() + (geo.width() - w) // 2, geo.top() + (geo.height() - h) // 2, w, h)
        self.player.show()

    def closeEvent(self, e):
        if self.store.persist_pending:
            self.store.flush()
        self.player.close()
        self.settings.sync()
        super().closeEvent(e)
