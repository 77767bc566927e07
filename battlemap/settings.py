from __future__ import annotations

import json
import logging
from pathlib import Path

from PyQt6.QtCore import QSettings

from .board_state import DEFAULT_PERSIST_DELAY_MS
from .fog import PLAYER_VISIBLE_TOKEN_FOLDER

logger = logging.getLogger(__name__)

ORGANIZATION = "HELP3D"
APPLICATION = "Battlemap"

DEFAULT_GM_FOG_ALPHA = 178  # ~0.7 opacity
DEFAULT_PLAYER_FOG_ALPHA = 255
RECENT_MAX = 8


def _clamp_alpha(value, fallback: int) -> int:
    try:
        return max(0, min(255, int(value)))
    except (TypeError, ValueError):
        return fallback


class AppSettings:
    """Persisted user preferences (QSettings)."""

    RECENT_BOARDS_KEY = "recent_boards"

    def __init__(self, qsettings: QSettings | None = None):
        self.qsettings = qsettings if qsettings is not None else QSettings(ORGANIZATION, APPLICATION)

    # ---------------- Fog ----------------

    @property
    def gm_fog_alpha(self) -> int:
        return _clamp_alpha(self.qsettings.value("gm_fog_alpha", DEFAULT_GM_FOG_ALPHA), DEFAULT_GM_FOG_ALPHA)

    @gm_fog_alpha.setter
    def gm_fog_alpha(self, value: int):
        self.qsettings.setValue("gm_fog_alpha", _clamp_alpha(value, DEFAULT_GM_FOG_ALPHA))

    @property
    def player_fog_alpha(self) -> int:
        return _clamp_alpha(self.qsettings.value("player_fog_alpha", DEFAULT_PLAYER_FOG_ALPHA),
                            DEFAULT_PLAYER_FOG_ALPHA)

    @player_fog_alpha.setter
    def player_fog_alpha(self, value: int):
        self.qsettings.setValue("player_fog_alpha", _clamp_alpha(value, DEFAULT_PLAYER_FOG_ALPHA))

    @property
    def player_folder_name(self) -> str:
        v = self.qsettings.value("player_folder_name", PLAYER_VISIBLE_TOKEN_FOLDER)
        return v.strip() if isinstance(v, str) and v.strip() else PLAYER_VISIBLE_TOKEN_FOLDER

    @player_folder_name.setter
    def player_folder_name(self, value: str):
        self.qsettings.setValue("player_folder_name", str(value))

    # ---------------- Board ----------------

    @property
    def persist_delay_ms(self) -> int:
        try:
            return max(0, int(self.qsettings.value("persist_delay_ms", DEFAULT_PERSIST_DELAY_MS)))
        except (TypeError, ValueError):
            return DEFAULT_PERSIST_DELAY_MS

    @persist_delay_ms.setter
    def persist_delay_ms(self, value: int):
        self.qsettings.setValue("persist_delay_ms", max(0, int(value)))

    @property
    def is_gm(self) -> bool:
        return self.qsettings.value("is_gm", True, type=bool)

    @is_gm.setter
    def is_gm(self, value: bool):
        self.qsettings.setValue("is_gm", bool(value))

    @property
    def last_board_path(self) -> str | None:
        v = self.qsettings.value("last_board_path", "")
        return v if isinstance(v, str) and v else None

    @last_board_path.setter
    def last_board_path(self, value: str | None):
        self.qsettings.setValue("last_board_path", str(value or ""))

    # ---------------- Recent boards ----------------

    def recent_boards(self) -> list[str]:
        v = self.qsettings.value(self.RECENT_BOARDS_KEY, [])
        # QSettings may hand back a list, a single string or a JSON array string
        if v is None:
            return []
        if isinstance(v, (list, tuple)):
            return [str(x) for x in v if x]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("[") and s.endswith("]"):
                try:
                    arr = json.loads(s)
                except ValueError:
                    logger.warning("Ignoring malformed recent boards list in settings")
                    return []
                if isinstance(arr, list):
                    return [str(x) for x in arr if x]
            return [s]
        return [str(v)]

    def add_recent_board(self, path: str | Path) -> list[str]:
        p = str(Path(path).resolve())
        items = [x for x in self.recent_boards() if x != p]
        items.insert(0, p)
        items = items[:RECENT_MAX]
        self.qsettings.setValue(self.RECENT_BOARDS_KEY, items)
        self.last_board_path = p
        return items

    def sync(self):
        self.qsettings.sync()
