"""
Unit tests for the drag-to-select controller.
"""

import pytest

from battlemap.grid import Cell
from battlemap.selection import SelectionController, SelectionPhase


@pytest.fixture
def selection():
    sel = SelectionController()
    sel.activate()
    return sel


class TestSelectionDrag:
    """Tests for the Idle -> Dragging -> Idle cycle."""

    @pytest.mark.unit
    def test_drag_selects_inclusive_rectangle(self, selection):
        assert selection.pointer_down(Cell(1, 1)) is True
        selection.pointer_move(Cell(3, 2))
        assert selection.cells == {"1,1", "2,1", "3,1", "1,2", "2,2", "3,2"}

    @pytest.mark.unit
    def test_reverse_drag_gives_same_cells(self, selection):
        selection.pointer_down(Cell(3, 2))
        selection.pointer_move(Cell(1, 1))
        assert len(selection.cells) == 6

    @pytest.mark.unit
    def test_pointer_up_keeps_cells(self, selection):
        selection.pointer_down(Cell(0, 0))
        selection.pointer_move(Cell(1, 1))
        assert selection.pointer_up() is True
        assert selection.phase is SelectionPhase.IDLE
        assert selection.has_selection
        assert selection.status_text() == "4 squares selected"

    @pytest.mark.unit
    def test_single_square_status(self, selection):
        selection.pointer_down(Cell(2, 2))
        selection.pointer_up()
        assert selection.status_text() == "1 square selected"

    @pytest.mark.unit
    def test_cancel_clears_everything(self, selection):
        selection.pointer_down(Cell(0, 0))
        selection.pointer_move(Cell(4, 4))
        assert selection.pointer_cancel() is True
        assert selection.cells == frozenset()
        assert selection.anchor is None and selection.cursor is None
        assert not selection.dragging

    @pytest.mark.unit
    def test_deactivate_clears_selection(self, selection):
        selection.pointer_down(Cell(0, 0))
        selection.pointer_up()
        selection.deactivate()
        assert not selection.active
        assert selection.cells == frozenset()
        assert selection.status_text() == ""


class TestSelectionGuards:
    """Tests for ignored input."""

    @pytest.mark.unit
    def test_inactive_ignores_pointer_down(self):
        sel = SelectionController()
        assert sel.pointer_down(Cell(1, 1)) is False
        assert sel.cells == frozenset()

    @pytest.mark.unit
    def test_secondary_button_ignored(self, selection):
        assert selection.pointer_down(Cell(1, 1), button=2) is False
        assert not selection.dragging

    @pytest.mark.unit
    def test_pointer_down_outside_grid_ignored(self, selection):
        assert selection.pointer_down(None) is False

    @pytest.mark.unit
    def test_second_pointer_ignored(self, selection):
        selection.pointer_down(Cell(0, 0), pointer_id=1)
        assert selection.pointer_down(Cell(5, 5), pointer_id=2) is False
        assert selection.pointer_move(Cell(5, 5), pointer_id=2) is False
        assert selection.pointer_up(pointer_id=2) is False
        assert selection.pointer_cancel(pointer_id=2) is False
        assert selection.cells == {"0,0"}

    @pytest.mark.unit
    def test_move_without_drag_ignored(self, selection):
        assert selection.pointer_move(Cell(2, 2)) is False


class TestSelectionListeners:
    """Tests for change notification."""

    @pytest.mark.unit
    def test_listeners_notified_and_unsubscribed(self, selection):
        seen = []
        unsubscribe = selection.on_change(lambda sel: seen.append(len(sel.cells)))
        selection.pointer_down(Cell(0, 0))
        selection.pointer_move(Cell(1, 0))
        unsubscribe()
        selection.pointer_up()
        assert seen == [1, 2]

    @pytest.mark.unit
    def test_toggle(self):
        sel = SelectionController()
        assert sel.toggle() is True
        assert sel.status_text() == "Click and drag to select"
        assert sel.toggle() is False
