from __future__ import annotations
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class BoardSession:
    board_state: dict[str, Any] = field(default_factory=dict)
    tokens: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"boardState": self.board_state, "tokens": self.tokens}


def save_session(path: str | Path, data: BoardSession) -> None:
    """Write the board file atomically (temp file + replace)."""
    target = Path(path)
    tmp = target.with_name(target.name + ".tmp")
    tmp.write_text(json.dumps(data.to_dict(), indent=2), encoding="utf-8")
    os.replace(tmp, target)


def load_session(path: str | Path) -> BoardSession:
    obj = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("Board file must contain a JSON object")
    board = obj.get("boardState")
    tokens = obj.get("tokens")
    return BoardSession(
        board_state=board if isinstance(board, dict) else {},
        tokens=tokens if isinstance(tokens, dict) else {},
    )
