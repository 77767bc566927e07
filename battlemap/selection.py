from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from .grid import Cell, rect_cells

logger = logging.getLogger(__name__)

PRIMARY_BUTTON = 0


class SelectionPhase(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


class SelectionController:
    """
    GM drag-to-select for fog commands.

    A drag fills `cells` with the inclusive rectangle between the anchor cell
    and the cursor cell. Releasing keeps the cells so a reveal/conceal command
    can be issued; cancelling or leaving select mode clears everything.
    Only the pointer that started the drag is tracked.
    """

    def __init__(self):
        self.active = False
        self.phase = SelectionPhase.IDLE
        self.anchor: Cell | None = None
        self.cursor: Cell | None = None
        self._cells: frozenset[str] = frozenset()
        self._pointer_id: int | None = None
        self._listeners: list[Callable[["SelectionController"], None]] = []

    # ---------------- Public API ----------------

    @property
    def cells(self) -> frozenset[str]:
        return self._cells

    @property
    def dragging(self) -> bool:
        return self.phase is SelectionPhase.DRAGGING

    @property
    def has_selection(self) -> bool:
        return bool(self._cells)

    def on_change(self, callback: Callable[["SelectionController"], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def activate(self):
        if self.active:
            return
        self.active = True
        logger.debug("Fog select mode on")
        self._notify()

    def deactivate(self):
        if not self.active:
            return
        self.active = False
        self._reset()
        logger.debug("Fog select mode off")
        self._notify()

    def toggle(self) -> bool:
        if self.active:
            self.deactivate()
        else:
            self.activate()
        return self.active

    def pointer_down(self, cell: Cell | None, button: int = PRIMARY_BUTTON, pointer_id: int = 1) -> bool:
        """Start a drag. Returns True when the event was consumed by the selection."""
        if not self.active or self.dragging:
            return False
        if button != PRIMARY_BUTTON or cell is None:
            return False
        self.phase = SelectionPhase.DRAGGING
        self._pointer_id = pointer_id
        self.anchor = cell
        self.cursor = cell
        self._recompute()
        self._notify()
        return True

    def pointer_move(self, cell: Cell | None, pointer_id: int = 1) -> bool:
        if not self.active or not self.dragging or pointer_id != self._pointer_id:
            return False
        if cell is None or cell == self.cursor:
            return False
        self.cursor = cell
        self._recompute()
        self._notify()
        return True

    def pointer_up(self, pointer_id: int = 1) -> bool:
        if not self.dragging or pointer_id != self._pointer_id:
            return False
        # keep the cells so the GM can apply a command afterwards
        self.phase = SelectionPhase.IDLE
        self._pointer_id = None
        logger.debug("Selection finished: %d cells", len(self._cells))
        self._notify()
        return True

    def pointer_cancel(self, pointer_id: int | None = None) -> bool:
        if not self.dragging:
            return False
        if pointer_id is not None and pointer_id != self._pointer_id:
            return False
        self._reset()
        logger.debug("Selection cancelled")
        self._notify()
        return True

    def clear(self):
        if not self._cells and not self.dragging and self.anchor is None:
            return
        self._reset()
        self._notify()

    def status_text(self) -> str:
        n = len(self._cells)
        if n:
            return f"{n} square{'' if n == 1 else 's'} selected"
        return "Click and drag to select" if self.active else ""

    # ---------------- Internal helpers ----------------

    def _recompute(self):
        if self.anchor is None or self.cursor is None:
            self._cells = frozenset()
            return
        self._cells = frozenset(rect_cells(self.anchor, self.cursor))

    def _reset(self):
        self.phase = SelectionPhase.IDLE
        self._pointer_id = None
        self.anchor = None
        self.cursor = None
        self._cells = frozenset()

    def _notify(self):
        for cb in list(self._listeners):
            cb(self)
