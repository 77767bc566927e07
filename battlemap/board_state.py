"""
Shared board-state document.

BoardStore owns the document, hands out draft copies for mutation, notifies
subscribers after every commit and writes the document to disk on a short
debounce. Normalization runs on load and on every commit, so readers can
rely on the shapes documented in fog.py and overlay.py.
"""
from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Callable, Mapping

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from .fog import normalize_fog_state
from .grid import normalize_grid_config
from .overlay import normalize_overlay, sync_board_overlay
from .session import BoardSession, load_session, save_session

logger = logging.getLogger(__name__)

DEFAULT_PERSIST_DELAY_MS = 250

BoardMutator = Callable[[dict[str, Any]], None]
StateListener = Callable[[dict[str, Any]], None]


class BoardStateError(Exception):
    """A board file could not be read."""


# ---------------- Normalization ----------------

def _trimmed_id(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _scene_key(value: Any) -> str:
    return value.strip() if isinstance(value, str) else str(value if value is not None else "")


def normalize_placements(raw: Any) -> dict[str, list[dict[str, Any]]]:
    out: dict[str, list[dict[str, Any]]] = {}
    if not isinstance(raw, Mapping):
        return out
    for scene_id, placements in raw.items():
        key = _scene_key(scene_id)
        if not key or not isinstance(placements, list):
            continue
        out[key] = [dict(p) for p in placements if isinstance(p, Mapping)]
    return out


def normalize_scene_state(raw: Any) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    if not isinstance(raw, Mapping):
        return out
    for scene_id, config in raw.items():
        key = _scene_key(scene_id)
        if not key or not isinstance(config, Mapping):
            continue
        consumed = {"grid", "fogOfWar", "overlay"}
        if "grid" not in config:
            # flat grid fields from older boards
            consumed |= {"size", "locked", "visible"}
        entry = {k: v for k, v in config.items() if k not in consumed}
        entry["grid"] = normalize_grid_config(config.get("grid", config)).to_dict()
        if "fogOfWar" in config:
            fog = normalize_fog_state(config["fogOfWar"])
            if fog is not None:
                entry["fogOfWar"] = fog.to_dict()
        if "overlay" in config:
            entry["overlay"] = normalize_overlay(config["overlay"]).to_dict()
        out[key] = entry
    return out


def normalize_board_state(raw: Any) -> dict[str, Any]:
    raw = raw if isinstance(raw, Mapping) else {}
    state = {k: copy.deepcopy(v) for k, v in raw.items()
             if k not in ("activeSceneId", "mapUrl", "placements", "sceneState", "overlay")}
    state["activeSceneId"] = _trimmed_id(raw.get("activeSceneId"))
    state["mapUrl"] = _trimmed_id(raw.get("mapUrl"))
    state["placements"] = normalize_placements(raw.get("placements"))
    state["sceneState"] = normalize_scene_state(raw.get("sceneState"))
    if "overlay" in raw:
        state["overlay"] = normalize_overlay(raw["overlay"]).to_dict()
    return state


def normalize_tokens(raw: Any) -> dict[str, list[dict[str, Any]]]:
    raw = raw if isinstance(raw, Mapping) else {}
    folders = raw.get("folders") if isinstance(raw.get("folders"), list) else []
    items = raw.get("items") if isinstance(raw.get("items"), list) else []
    return {
        "folders": [dict(f) for f in folders if isinstance(f, Mapping)],
        "items": [dict(t) for t in items if isinstance(t, Mapping)],
    }


# ---------------- Store ----------------

class BoardStore(QObject):
    stateChanged = pyqtSignal(object)  # snapshot dict from get_state()
    persisted = pyqtSignal(str)
    persistFailed = pyqtSignal(str)

    def __init__(self, path: str | Path | None = None, persist_delay_ms: int = DEFAULT_PERSIST_DELAY_MS, parent=None):
        super().__init__(parent)
        self.path: Path | None = Path(path) if path else None
        self._board: dict[str, Any] = normalize_board_state({})
        self._tokens: dict[str, Any] = normalize_tokens({})
        self._dirty_scenes: set[str] = set()

        self._persist_timer = QTimer(self)
        self._persist_timer.setSingleShot(True)
        self._persist_timer.setInterval(max(0, int(persist_delay_ms)))
        self._persist_timer.timeout.connect(self.flush)

    # ---------------- Reading ----------------

    def get_state(self) -> dict[str, Any]:
        """Snapshot of the document: {"boardState": ..., "tokens": ...}."""
        return {"boardState": copy.deepcopy(self._board), "tokens": copy.deepcopy(self._tokens)}

    @property
    def board(self) -> Mapping[str, Any]:
        return self._board

    @property
    def tokens(self) -> Mapping[str, Any]:
        return self._tokens

    @property
    def active_scene_id(self) -> str | None:
        return self._board.get("activeSceneId")

    def scene_ids(self) -> list[str]:
        ids = list(self._board.get("sceneState", {}).keys())
        for scene_id in self._board.get("placements", {}):
            if scene_id not in ids:
                ids.append(scene_id)
        return ids

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self.stateChanged.connect(listener)

        def unsubscribe():
            try:
                self.stateChanged.disconnect(listener)
            except TypeError:
                pass

        return unsubscribe

    # ---------------- Writing ----------------

    def replace_state(self, board_state: Any = None, tokens: Any = None) -> None:
        self._board = normalize_board_state(board_state)
        if tokens is not None:
            self._tokens = normalize_tokens(tokens)
        self._dirty_scenes.clear()
        self.stateChanged.emit(self.get_state())

    def update_state(self, mutator: BoardMutator) -> None:
        """
        Run `mutator` on a draft copy of boardState and commit it.

        If the mutator raises, the committed state is left untouched and the
        exception propagates.
        """
        draft = copy.deepcopy(self._board)
        mutator(draft)
        self._board = normalize_board_state(draft)
        self.stateChanged.emit(self.get_state())

    def set_active_scene(self, scene_id: str | None) -> None:
        def mutate(draft):
            draft["activeSceneId"] = scene_id
            sync_board_overlay(draft)

        self.update_state(mutate)

    def mark_scene_state_dirty(self, scene_id: str | None) -> None:
        if scene_id:
            self._dirty_scenes.add(scene_id)

    def dirty_scenes(self) -> frozenset[str]:
        return frozenset(self._dirty_scenes)

    # ---------------- Persistence ----------------

    def load(self, path: str | Path) -> None:
        try:
            data = load_session(path)
        except (OSError, ValueError) as e:
            raise BoardStateError(f"Couldn't load board file {path}: {e}") from e
        self.path = Path(path)
        logger.info("Loaded board state from %s", self.path)
        self.replace_state(data.board_state, data.tokens)

    def persist_board_state(self) -> None:
        """Schedule a write of the whole document. Does not block."""
        if self.path is None:
            logger.debug("persist_board_state: no board file, keeping state in memory")
            return
        if not self._persist_timer.isActive():
            self._persist_timer.start()

    def flush(self) -> bool:
        self._persist_timer.stop()
        if self.path is None:
            return False
        try:
            save_session(self.path, BoardSession(board_state=self._board, tokens=self._tokens))
        except (OSError, TypeError, ValueError) as e:
            logger.exception("Couldn't save board state to %s", self.path)
            self.persistFailed.emit(f"Couldn't save board: {e}")
            return False
        logger.info("Saved board state to %s (dirty scenes: %s)",
                    self.path, ", ".join(sorted(self._dirty_scenes)) or "none")
        self._dirty_scenes.clear()
        self.persisted.emit(str(self.path))
        return True

    @property
    def persist_pending(self) -> bool:
        return self._persist_timer.isActive()
