"""
Shared fixtures.

Qt tests run headless (offscreen platform) against one QApplication per
session. Board-state fixtures build the documents the fog and overlay tests
work on.
"""

import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture(scope="session")
def qapp():
    from PyQt6.QtWidgets import QApplication

    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def qsettings(tmp_path):
    """QSettings backed by a throwaway ini file."""
    from PyQt6.QtCore import QSettings

    return QSettings(str(tmp_path / "settings.ini"), QSettings.Format.IniFormat)


@pytest.fixture
def scenario_a_board():
    """10x10 grid, one revealed cell, one 2x2 ally placement."""
    return {
        "activeSceneId": "scene-1",
        "mapUrl": None,
        "placements": {
            "scene-1": [
                {"id": "p1", "tokenId": "goblin", "column": 5, "row": 5,
                 "width": 2, "height": 2, "combatTeam": "ally"},
            ],
        },
        "sceneState": {
            "scene-1": {
                "grid": {"size": 64, "locked": False, "visible": True},
                "fogOfWar": {"enabled": True, "revealedCells": {"2,3": True}},
            },
        },
    }


@pytest.fixture
def pc_tokens():
    return {
        "folders": [{"id": "f-pc", "name": "PC's"}, {"id": "f-npc", "name": "Monsters"}],
        "items": [
            {"id": "hero", "folderId": "f-pc"},
            {"id": "bard", "folder": {"name": " pcs "}},
            {"id": "orc", "folderId": "f-npc"},
        ],
    }
