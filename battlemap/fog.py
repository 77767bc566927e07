"""
Fog of war state.

Fog data lives per scene in boardState["sceneState"][scene_id]["fogOfWar"]:
    {"enabled": bool, "revealedCells": {"col,row": true, ...}}

Revealed cells are the explicit exceptions to the darkness. Cells occupied by
player-folder tokens or ally placements are revealed automatically without
being stored.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping

from .grid import Cell, GridConfig, cell_key, parse_cell_key

logger = logging.getLogger(__name__)

PLAYER_VISIBLE_TOKEN_FOLDER = "PC's"
ALLY_TEAM = "ally"

_NON_ALNUM = re.compile(r"[^0-9a-z]+")

FogChecker = Callable[[float, float], bool]


class CellSet:
    """Set of grid cells. The "col,row" string form is only used for persistence."""

    def __init__(self, cells: Iterable[Cell | str] = ()):
        self._keys: set[str] = set()
        for c in cells:
            self.add(c)

    @staticmethod
    def _key(cell: Cell | str) -> str | None:
        if isinstance(cell, Cell):
            if cell.col < 0 or cell.row < 0:
                return None
            return cell.key
        parsed = parse_cell_key(cell)
        return parsed.key if parsed else None

    def has(self, cell: Cell | str) -> bool:
        k = self._key(cell)
        return k is not None and k in self._keys

    def add(self, cell: Cell | str) -> bool:
        k = self._key(cell)
        if k is None:
            return False
        self._keys.add(k)
        return True

    def remove(self, cell: Cell | str) -> bool:
        k = self._key(cell)
        if k is None or k not in self._keys:
            return False
        self._keys.discard(k)
        return True

    def keys(self) -> frozenset[str]:
        return frozenset(self._keys)

    def __contains__(self, cell: object) -> bool:
        return isinstance(cell, (Cell, str)) and self.has(cell)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._keys))

    def __len__(self) -> int:
        return len(self._keys)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CellSet):
            return self._keys == other._keys
        return NotImplemented

    def __repr__(self) -> str:
        return f"CellSet({sorted(self._keys)!r})"


@dataclass
class FogState:
    enabled: bool = False
    revealed: CellSet = field(default_factory=CellSet)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": bool(self.enabled),
            "revealedCells": {k: True for k in self.revealed},
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "FogState":
        revealed = CellSet()
        raw_cells = d.get("revealedCells")
        # a JSON list here is an empty mapping that went through an array encoder
        if isinstance(raw_cells, Mapping):
            for key in raw_cells:
                revealed.add(key)
        return FogState(enabled=bool(d.get("enabled")), revealed=revealed)


def normalize_fog_state(raw: Any) -> FogState | None:
    if not isinstance(raw, Mapping):
        return None
    return FogState.from_dict(raw)


def normalize_player_folder_name(name: Any) -> str:
    """Folder-name key: lowercase letters and digits only ("PC's" -> "pcs")."""
    if not isinstance(name, str):
        return ""
    return _NON_ALNUM.sub("", name.strip().lower())


# ---------------- Board-state access ----------------

def _scene_entry(board: Mapping[str, Any] | None, scene_id: str | None) -> Mapping[str, Any] | None:
    if not scene_id or not isinstance(board, Mapping):
        return None
    scene_state = board.get("sceneState")
    if not isinstance(scene_state, Mapping):
        return None
    entry = scene_state.get(scene_id)
    return entry if isinstance(entry, Mapping) else None


def ensure_scene_entry(board: dict[str, Any], scene_id: str) -> dict[str, Any]:
    """Create sceneState[scene_id] with a default grid the first time a scene is mutated."""
    scene_state = board.get("sceneState")
    if not isinstance(scene_state, dict):
        scene_state = {}
        board["sceneState"] = scene_state
    entry = scene_state.get(scene_id)
    if not isinstance(entry, dict):
        entry = {"grid": GridConfig().to_dict()}
        scene_state[scene_id] = entry
    return entry


def get_fog_state(board: Mapping[str, Any] | None, scene_id: str | None) -> FogState | None:
    entry = _scene_entry(board, scene_id)
    if entry is None:
        return None
    return normalize_fog_state(entry.get("fogOfWar"))


def is_enabled(board: Mapping[str, Any] | None, scene_id: str | None) -> bool:
    fog = get_fog_state(board, scene_id)
    return bool(fog and fog.enabled)


# ---------------- PC auto-reveal ----------------

def _int_or(value: Any, fallback: int) -> int:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(f):
        return fallback
    return math.floor(f)


def player_token_ids(tokens: Mapping[str, Any] | None, folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER) -> set[str]:
    folder_key = normalize_player_folder_name(folder_name)
    if not folder_key or not isinstance(tokens, Mapping):
        return set()

    folder_ids = set()
    for folder in tokens.get("folders") or []:
        if not isinstance(folder, Mapping):
            continue
        if folder.get("id") and normalize_player_folder_name(folder.get("name")) == folder_key:
            folder_ids.add(folder["id"])

    token_ids = set()
    for token in tokens.get("items") or []:
        if not isinstance(token, Mapping):
            continue
        token_id = token.get("id")
        if token.get("folderId") and token.get("folderId") in folder_ids:
            token_ids.add(token_id)
        inline = token.get("folder")
        if isinstance(inline, Mapping) and isinstance(inline.get("name"), str):
            if normalize_player_folder_name(inline["name"]) == folder_key:
                token_ids.add(token_id)
    return token_ids


def pc_auto_revealed(
    placements: Iterable[Any] | None,
    tokens: Mapping[str, Any] | None,
    folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER,
) -> CellSet:
    """Cells covered by placements of player-folder tokens or ally combatants."""
    cells = CellSet()
    if not isinstance(placements, (list, tuple)):
        return cells

    pc_ids = player_token_ids(tokens, folder_name)
    for placement in placements:
        if not isinstance(placement, Mapping):
            continue
        token_id = placement.get("tokenId") if isinstance(placement.get("tokenId"), str) else ""
        if token_id not in pc_ids and placement.get("combatTeam") != ALLY_TEAM:
            continue

        col = _int_or(placement.get("column"), 0)
        row = _int_or(placement.get("row"), 0)
        w = max(1, _int_or(placement.get("width"), 1))
        h = max(1, _int_or(placement.get("height"), 1))
        for dc in range(w):
            for dr in range(h):
                cells.add(Cell(col + dc, row + dr))
    return cells


def scene_placements(board: Mapping[str, Any] | None, scene_id: str | None) -> list[Any]:
    if not scene_id or not isinstance(board, Mapping):
        return []
    placements = board.get("placements")
    if not isinstance(placements, Mapping):
        return []
    found = placements.get(scene_id)
    return found if isinstance(found, list) else []


def scene_auto_revealed(
    board: Mapping[str, Any] | None,
    tokens: Mapping[str, Any] | None,
    scene_id: str | None,
    folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER,
) -> CellSet:
    return pc_auto_revealed(scene_placements(board, scene_id), tokens, folder_name)


# ---------------- Queries ----------------

def _position_key(col: Any, row: Any) -> str | None:
    """Cell key for a fractional position; None when either coordinate is not a finite number."""
    try:
        c, r = float(col), float(row)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(c) and math.isfinite(r)):
        return None
    return cell_key(math.floor(c), math.floor(r))


def is_revealed(
    board: Mapping[str, Any] | None,
    tokens: Mapping[str, Any] | None,
    scene_id: str | None,
    col: float,
    row: float,
    folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER,
) -> bool:
    key = _position_key(col, row)
    if key is None:
        return False
    fog = get_fog_state(board, scene_id)
    if fog is not None and fog.revealed.has(key):
        return True
    return scene_auto_revealed(board, tokens, scene_id, folder_name).has(key)


def create_fog_checker(
    board: Mapping[str, Any] | None,
    tokens: Mapping[str, Any] | None,
    scene_id: str | None,
    is_gm: bool,
    folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER,
) -> FogChecker | None:
    """
    Snapshot the revealed and auto-revealed cells once and return a
    (col, row) -> fogged? function for batch checks.

    Returns None for the GM or when fog is off for the scene.
    """
    if is_gm:
        return None
    fog = get_fog_state(board, scene_id)
    if fog is None or not fog.enabled:
        return None

    revealed = fog.revealed.keys()
    auto = scene_auto_revealed(board, tokens, scene_id, folder_name).keys()

    def fogged(col: float, row: float) -> bool:
        key = _position_key(col, row)
        return key is None or (key not in revealed and key not in auto)

    return fogged


def is_position_fogged(
    board: Mapping[str, Any] | None,
    tokens: Mapping[str, Any] | None,
    scene_id: str | None,
    col: float,
    row: float,
    is_gm: bool,
    folder_name: str = PLAYER_VISIBLE_TOKEN_FOLDER,
) -> bool:
    checker = create_fog_checker(board, tokens, scene_id, is_gm, folder_name)
    if checker is None:
        return False
    return checker(col, row)


# ---------------- Mutations (run inside BoardStore.update_state) ----------------

def _ensure_fog_record(board: dict[str, Any], scene_id: str, enabled: bool) -> dict[str, Any]:
    entry = ensure_scene_entry(board, scene_id)
    fog = entry.get("fogOfWar")
    if not isinstance(fog, dict):
        fog = {"enabled": enabled, "revealedCells": {}}
        entry["fogOfWar"] = fog
    if not isinstance(fog.get("revealedCells"), dict):
        fog["revealedCells"] = {}
    return fog


def set_enabled(board: dict[str, Any], scene_id: str | None, enabled: bool) -> bool:
    if not scene_id:
        logger.debug("set_enabled: no scene id, ignoring")
        return False
    fog = _ensure_fog_record(board, scene_id, enabled=False)
    fog["enabled"] = bool(enabled)
    logger.debug("Fog %s for scene %s (%d revealed cells kept)",
                 "enabled" if enabled else "disabled", scene_id, len(fog["revealedCells"]))
    return True


def apply_cell_change(board: dict[str, Any], scene_id: str | None, cells: Iterable[Cell | str], reveal: bool) -> int:
    """
    Reveal or conceal a batch of cells. Returns the number of valid cells applied.

    Revealing stores the cell as an explicit exception to the fog; concealing
    removes it again.
    """
    if not scene_id:
        logger.debug("apply_cell_change: no scene id, ignoring")
        return 0
    keys = CellSet(cells)
    if not keys:
        return 0

    fog = _ensure_fog_record(board, scene_id, enabled=True)
    revealed = fog["revealedCells"]
    for key in keys:
        if reveal:
            revealed[key] = True
        else:
            revealed.pop(key, None)

    logger.debug("%s %d cells on scene %s; %d revealed now",
                 "Revealed" if reveal else "Concealed", len(keys), scene_id, len(revealed))
    return len(keys)
