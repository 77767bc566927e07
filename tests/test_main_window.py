"""
Tests for the GM window wiring: board loading, panels and commands.
"""

import json

import pytest
from PIL import Image
from PyQt6.QtCore import Qt

from battlemap.grid import Cell
from battlemap.main_window import LAYER_ID_ROLE, MainWindow
from battlemap.settings import AppSettings


@pytest.fixture
def board_file(tmp_path, scenario_a_board):
    Image.new("RGB", (640, 640), (255, 255, 255)).save(tmp_path / "map.png")
    scenario_a_board["mapUrl"] = "map.png"
    scenario_a_board["sceneState"]["scene-2"] = {"grid": {"size": 32}}
    path = tmp_path / "board.json"
    path.write_text(json.dumps({"boardState": scenario_a_board, "tokens": {}}), encoding="utf-8")
    return path


@pytest.fixture
def window(qapp, qsettings):
    win = MainWindow(settings=AppSettings(qsettings), prompt_restore=False)
    yield win
    win.store.flush()
    win.deleteLater()


@pytest.mark.qt
class TestMainWindow:
    """Tests for MainWindow."""

    def test_empty_window(self, window):
        assert window.cmb_scene.count() == 0
        assert not window.chk_fog.isEnabled()
        assert not window.btn_layer_add.isEnabled()

    def test_load_board(self, window, board_file):
        assert window.load_board(board_file)
        assert [window.cmb_scene.itemText(i) for i in range(window.cmb_scene.count())] == ["scene-1", "scene-2"]
        assert window.cmb_scene.currentText() == "scene-1"
        assert window.chk_fog.isChecked()
        assert window.canvas._map is not None
        assert window.settings.last_board_path == str(board_file.resolve())
        assert board_file.name in window.windowTitle()

    def test_load_missing_board(self, window, tmp_path, monkeypatch):
        shown = []
        monkeypatch.setattr(
            "battlemap.main_window.QMessageBox.critical",
            lambda *args, **kwargs: shown.append(args[1]),
        )
        assert not window.load_board(tmp_path / "nope.json")
        assert shown == ["Load error"]

    def test_fog_checkbox_toggles_scene(self, window, board_file):
        window.load_board(board_file)
        window.chk_fog.setChecked(False)
        fog = window.context.get_fog_state()
        assert fog.enabled is False
        assert "2,3" in fog.revealed
        assert window.store.persist_pending

    def test_select_and_clear_fog(self, window, board_file):
        window.load_board(board_file)
        window.btn_select.setChecked(True)
        assert window.context.selection.active
        window.context.selection.pointer_down(Cell(4, 4))
        window.context.selection.pointer_up()
        assert window.btn_clear_fog.isEnabled()
        window.apply_fog_selection(reveal=True)
        assert not window.btn_clear_fog.isEnabled()
        assert len(window.context.get_fog_state().revealed) == 2

    def test_scene_picker(self, window, board_file):
        window.load_board(board_file)
        window.btn_select.setChecked(True)
        window.cmb_scene.setCurrentIndex(1)
        assert window.store.active_scene_id == "scene-2"
        assert not window.context.selection.active
        assert not window.btn_select.isChecked()
        assert not window.chk_fog.isChecked()

    def test_layers_listed(self, window, board_file):
        window.load_board(board_file)
        first = window.context.add_overlay_layer("Roof")
        window.context.add_overlay_layer("Cellar")
        assert window.lst_layers.count() == 2
        assert window.lst_layers.item(1).text().endswith("★")
        window.on_layer_clicked(window.lst_layers.item(0))
        assert window.context.get_overlay_config().active_layer_id == first.id
        assert window.lst_layers.item(0).data(LAYER_ID_ROLE) == first.id
        assert window.lst_layers.item(0).checkState() == Qt.CheckState.Checked

    def test_player_profile_cannot_edit(self, qapp, qsettings, board_file):
        settings = AppSettings(qsettings)
        settings.is_gm = False
        win = MainWindow(settings=settings, prompt_restore=False)
        try:
            win.load_board(board_file)
            assert not win.chk_fog.isEnabled()
            assert not win.btn_open_map.isEnabled()
            assert not win.btn_layer_add.isEnabled()
            assert win.context.add_overlay_layer("Graffiti") is None
            assert win.lst_layers.count() == 0
        finally:
            win.deleteLater()
