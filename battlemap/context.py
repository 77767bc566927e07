from __future__ import annotations

import logging
from typing import Any, Callable

from . import fog, overlay
from .board_state import BoardStore
from .fog import PLAYER_VISIBLE_TOKEN_FOLDER, FogChecker, FogState
from .fog_renderer import fog_alpha, render_fog_cells, render_selection_cells
from .grid import ViewState
from .overlay import OverlayConfig, OverlayLayer
from .selection import SelectionController

logger = logging.getLogger(__name__)


class BoardContext:
    """
    One board session: the store, who is looking (GM or player), the live
    view transform and the GM's selection.

    Scene-scoped calls default to the store's active scene.
    """

    def __init__(
        self,
        store: BoardStore,
        is_gm: bool = True,
        settings=None,
        selection: SelectionController | None = None,
        folder_name: str | None = None,
    ):
        self.store = store
        self.is_gm = bool(is_gm)
        self.settings = settings
        self.view = ViewState()
        self.selection = selection if selection is not None else SelectionController()
        if folder_name is None:
            folder_name = settings.player_folder_name if settings is not None else PLAYER_VISIBLE_TOKEN_FOLDER
        self.folder_name = folder_name

    @property
    def active_scene_id(self) -> str | None:
        return self.store.active_scene_id

    def _scene(self, scene_id: str | None) -> str | None:
        return scene_id if scene_id is not None else self.active_scene_id

    # ---------------- Queries ----------------

    def get_fog_state(self, scene_id: str | None = None) -> FogState | None:
        return fog.get_fog_state(self.store.board, self._scene(scene_id))

    def is_fog_enabled(self, scene_id: str | None = None) -> bool:
        return fog.is_enabled(self.store.board, self._scene(scene_id))

    def create_fog_checker(self, scene_id: str | None = None) -> FogChecker | None:
        return fog.create_fog_checker(
            self.store.board, self.store.tokens, self._scene(scene_id), self.is_gm, self.folder_name
        )

    def is_position_fogged(self, col: float, row: float, scene_id: str | None = None) -> bool:
        return fog.is_position_fogged(
            self.store.board, self.store.tokens, self._scene(scene_id), col, row, self.is_gm, self.folder_name
        )

    def is_revealed(self, col: float, row: float, scene_id: str | None = None) -> bool:
        return fog.is_revealed(self.store.board, self.store.tokens, self._scene(scene_id), col, row, self.folder_name)

    def get_overlay_config(self, scene_id: str | None = None) -> OverlayConfig:
        return overlay.get_overlay_config(self.store.board, self._scene(scene_id))

    def fog_cells(self, scene_id: str | None = None) -> set[str]:
        return render_fog_cells(self.store.board, self.store.tokens, self._scene(scene_id), self.view, self.folder_name)

    def selection_cells(self) -> set[str]:
        return render_selection_cells(self.selection)

    def fog_alpha(self) -> int:
        return fog_alpha(self.is_gm, self.settings)

    # ---------------- Commands ----------------

    def _commit(self, scene_id: str, mutate: Callable[[dict[str, Any]], Any]) -> Any:
        """Run `mutate` through the store; only a truthy result marks the scene dirty and schedules a write."""
        result = []
        self.store.update_state(lambda draft: result.append(mutate(draft)))
        changed = result[0] if result else None
        if changed:
            self.store.mark_scene_state_dirty(scene_id)
            self.store.persist_board_state()
        return changed

    def _gm_scene(self, scene_id: str | None, action: str) -> str | None:
        scene_id = self._scene(scene_id)
        if not self.is_gm or not scene_id:
            logger.debug("%s ignored (gm=%s, scene=%s)", action, self.is_gm, scene_id)
            return None
        return scene_id

    def set_fog_enabled(self, enabled: bool, scene_id: str | None = None) -> bool:
        scene_id = self._gm_scene(scene_id, "set_fog_enabled")
        if not scene_id:
            return False
        return bool(self._commit(scene_id, lambda draft: fog.set_enabled(draft, scene_id, enabled)))

    def toggle_fog(self, scene_id: str | None = None) -> bool:
        """Flip fog for the scene. Returns the new enabled flag."""
        current = self.is_fog_enabled(scene_id)
        if not self.set_fog_enabled(not current, scene_id):
            return current
        return not current

    def apply_selection(self, reveal: bool, scene_id: str | None = None) -> int:
        """Reveal (Clear Fog) or conceal (Add Fog) the selected cells, then clear the selection."""
        scene_id = self._gm_scene(scene_id, "apply_selection")
        cells = set(self.selection.cells)
        if not scene_id or not cells:
            return 0
        count = self._commit(scene_id, lambda draft: fog.apply_cell_change(draft, scene_id, cells, reveal))
        self.selection.clear()
        return count or 0

    # ---------------- Overlay commands ----------------

    def add_overlay_layer(self, name: Any = None, scene_id: str | None = None) -> OverlayLayer | None:
        scene_id = self._gm_scene(scene_id, "add_overlay_layer")
        if not scene_id:
            return None
        return self._commit(scene_id, lambda draft: overlay.add_layer(draft, scene_id, name))

    def rename_overlay_layer(self, layer_id: str, name: Any, scene_id: str | None = None) -> bool:
        scene_id = self._gm_scene(scene_id, "rename_overlay_layer")
        if not scene_id:
            return False
        return bool(self._commit(scene_id, lambda draft: overlay.rename_layer(draft, scene_id, layer_id, name)))

    def delete_overlay_layer(self, layer_id: str, scene_id: str | None = None) -> bool:
        scene_id = self._gm_scene(scene_id, "delete_overlay_layer")
        if not scene_id:
            return False
        return bool(self._commit(scene_id, lambda draft: overlay.delete_layer(draft, scene_id, layer_id)))

    def toggle_overlay_layer(self, layer_id: str, visible: bool | None = None, scene_id: str | None = None) -> bool:
        scene_id = self._gm_scene(scene_id, "toggle_overlay_layer")
        if not scene_id:
            return False
        return bool(self._commit(
            scene_id, lambda draft: overlay.toggle_layer_visibility(draft, scene_id, layer_id, visible)
        ))

    def set_active_overlay_layer(self, layer_id: str, scene_id: str | None = None) -> bool:
        scene_id = self._gm_scene(scene_id, "set_active_overlay_layer")
        if not scene_id:
            return False
        return bool(self._commit(scene_id, lambda draft: overlay.set_active_layer(draft, scene_id, layer_id)))

    def set_overlay_layer_image(self, layer_id: str, url: Any, scene_id: str | None = None) -> bool:
        scene_id = self._gm_scene(scene_id, "set_overlay_layer_image")
        if not scene_id:
            return False
        return bool(self._commit(scene_id, lambda draft: overlay.set_layer_map_url(draft, scene_id, layer_id, url)))

    def set_overlay_layer_mask(self, layer_id: str, mask: Any, scene_id: str | None = None) -> bool:
        scene_id = self._gm_scene(scene_id, "set_overlay_layer_mask")
        if not scene_id:
            return False
        return bool(self._commit(scene_id, lambda draft: overlay.set_layer_mask(draft, scene_id, layer_id, mask)))
