"""
Scene image overlays.

A scene carries an ordered list of overlay layers. Each layer has its own
image and polygon mask; the config also exposes an aggregate (`map_url`,
`mask`) that renderers use. The aggregate is always rebuilt from the layers
and is never edited directly.

Three stored shapes are accepted:
  - {"layers": [...], "activeLayerId": ...}
  - {"items": [...]}                            (older alias of "layers")
  - {"mapUrl": ..., "mask": {"url", "polygons"}} (single flat overlay)
"""
from __future__ import annotations

import logging
import math
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from .fog import ensure_scene_entry

logger = logging.getLogger(__name__)

POINT_PRECISION = 4
DEFAULT_LAYER_PREFIX = "Overlay"

_FALSE_WORDS = frozenset({"false", "0", "off", "no"})
_TRUE_WORDS = frozenset({"true", "1", "on", "yes"})
_NUMBERED_NAME = re.compile(r"^(.*\S)\s+(\d+)$")

Point = tuple[float, float]


def parse_visibility(value: Any, default: bool = True) -> bool:
    """
    Parse a stored visibility flag.

      bool            -> itself
      int / float     -> non-zero (NaN is False)
      str             -> "false", "0", "off", "no" are False;
                         "true", "1", "on", "yes" are True;
                         "" is False, any other text is True
      None            -> default
      anything else   -> truthiness
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return not (isinstance(value, float) and math.isnan(value)) and value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _FALSE_WORDS:
            return False
        if word in _TRUE_WORDS:
            return True
        return word != ""
    return bool(value)


def _trimmed(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _coord(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return round(float(value), POINT_PRECISION) + 0.0


def _new_layer_id() -> str:
    return f"overlay-{uuid.uuid4().hex[:12]}"


@dataclass
class OverlayMask:
    visible: bool = True
    url: str | None = None
    polygons: list[list[Point]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"visible": bool(self.visible)}
        if self.url:
            d["url"] = self.url
        d["polygons"] = [
            {"points": [{"column": c, "row": r} for c, r in poly]}
            for poly in self.polygons
        ]
        return d

    @property
    def has_content(self) -> bool:
        return bool(self.url) or bool(self.polygons)


def _normalize_point(raw: Any) -> Point | None:
    if isinstance(raw, Mapping):
        col = _coord(raw["column"] if "column" in raw else raw.get("x"))
        row = _coord(raw["row"] if "row" in raw else raw.get("y"))
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        col, row = _coord(raw[0]), _coord(raw[1])
    else:
        return None
    if col is None or row is None:
        return None
    return col, row


def normalize_mask(raw: Any) -> OverlayMask:
    mask = OverlayMask()
    if not isinstance(raw, Mapping):
        return mask

    if "visible" in raw:
        mask.visible = parse_visibility(raw.get("visible"))
    mask.url = _trimmed(raw.get("url"))

    polygons = raw.get("polygons")
    if not isinstance(polygons, (list, tuple)):
        return mask
    for polygon in polygons:
        if isinstance(polygon, Mapping):
            source = polygon.get("points")
        else:
            source = polygon
        if not isinstance(source, (list, tuple)):
            continue
        points = [p for p in (_normalize_point(pt) for pt in source) if p is not None]
        if len(points) >= 3:
            mask.polygons.append(points)
    return mask


@dataclass
class OverlayLayer:
    id: str
    name: str
    visible: bool = True
    map_url: str | None = None
    mask: OverlayMask = field(default_factory=OverlayMask)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "visible": bool(self.visible),
            "mapUrl": self.map_url,
            "mask": self.mask.to_dict(),
        }

    @property
    def contributes(self) -> bool:
        return self.visible is not False and self.mask.visible is not False


def normalize_layer(raw: Any, index: int) -> OverlayLayer | None:
    if not isinstance(raw, Mapping):
        return None
    return OverlayLayer(
        id=_trimmed(raw.get("id")) or _new_layer_id(),
        name=_trimmed(raw.get("name")) or f"{DEFAULT_LAYER_PREFIX} {index + 1}",
        visible=parse_visibility(raw.get("visible"), default=True),
        map_url=_trimmed(raw.get("mapUrl")),
        mask=normalize_mask(raw.get("mask")),
    )


# ---------------- Aggregate resolution ----------------

def resolve_active_layer_id(preferred: str | None, layers: Sequence[OverlayLayer]) -> str | None:
    if preferred and any(l.id == preferred and l.visible for l in layers):
        return preferred
    for layer in layers:
        if layer.visible and layer.id:
            return layer.id
    for layer in layers:
        if layer.id:
            return layer.id
    return None


def resolve_overlay_map_url(layers: Sequence[OverlayLayer], active_layer_id: str | None) -> str | None:
    if active_layer_id:
        for layer in layers:
            if layer.id == active_layer_id and layer.map_url:
                return layer.map_url
    for layer in layers:
        if layer.visible and layer.map_url:
            return layer.map_url
    for layer in layers:
        if layer.map_url:
            return layer.map_url
    return None


def rebuild_aggregate_mask(layers: Sequence[OverlayLayer]) -> OverlayMask:
    """Concatenate the masks of every shown layer (no geometric union)."""
    aggregate = OverlayMask(visible=False)
    for layer in layers:
        if not layer.contributes:
            continue
        aggregate.visible = True
        if aggregate.url is None and layer.mask.url:
            aggregate.url = layer.mask.url
        aggregate.polygons.extend(list(poly) for poly in layer.mask.polygons)
    return aggregate


def ensure_unique_name(requested: Any, existing: Iterable[str]) -> str:
    """
    Return `requested` unless it clashes (case-insensitively) with an existing
    name; then number it: "Overlay" -> "Overlay 2", "Overlay 2" -> "Overlay 3".
    """
    name = _trimmed(requested) or DEFAULT_LAYER_PREFIX
    taken = {n.strip().casefold() for n in existing if isinstance(n, str)}
    if name.casefold() not in taken:
        return name

    m = _NUMBERED_NAME.match(name)
    if m:
        prefix, n = m.group(1), int(m.group(2)) + 1
    else:
        prefix, n = name, 2
    while f"{prefix} {n}".casefold() in taken:
        n += 1
    return f"{prefix} {n}"


@dataclass
class OverlayConfig:
    map_url: str | None = None
    mask: OverlayMask = field(default_factory=lambda: OverlayMask(visible=False))
    layers: list[OverlayLayer] = field(default_factory=list)
    active_layer_id: str | None = None

    def rebuild(self, preferred: str | None = None) -> "OverlayConfig":
        """Recompute active layer and aggregate from `layers`."""
        self.active_layer_id = resolve_active_layer_id(preferred or self.active_layer_id, self.layers)
        self.map_url = resolve_overlay_map_url(self.layers, self.active_layer_id)
        self.mask = rebuild_aggregate_mask(self.layers)
        return self

    def layer(self, layer_id: str | None) -> OverlayLayer | None:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mapUrl": self.map_url,
            "mask": self.mask.to_dict(),
            "layers": [l.to_dict() for l in self.layers],
            "activeLayerId": self.active_layer_id,
        }


def normalize_overlay(raw: Any, preferred_layer_id: str | None = None) -> OverlayConfig:
    config = OverlayConfig()
    if not isinstance(raw, Mapping):
        return config

    base_map_url = _trimmed(raw.get("mapUrl"))
    preferred = preferred_layer_id or _trimmed(raw.get("activeLayerId"))

    source = raw.get("layers")
    if not isinstance(source, (list, tuple)):
        source = raw.get("items")
    if isinstance(source, (list, tuple)):
        seen: set[str] = set()
        for index, entry in enumerate(source):
            layer = normalize_layer(entry, index)
            if layer is None:
                continue
            if layer.id in seen:
                layer.id = _new_layer_id()
            seen.add(layer.id)
            config.layers.append(layer)

    if base_map_url and config.layers and not any(l.map_url == base_map_url for l in config.layers):
        target = config.layer(preferred) or config.layers[0]
        if not target.map_url:
            target.map_url = base_map_url

    if not config.layers:
        legacy_mask = normalize_mask(raw.get("mask"))
        if legacy_mask.has_content or base_map_url or "name" in raw or "visible" in raw:
            legacy = normalize_layer(
                {
                    "name": raw.get("name"),
                    "visible": raw.get("visible"),
                    "mapUrl": base_map_url,
                },
                0,
            )
            legacy.mask = legacy_mask
            config.layers.append(legacy)
            logger.debug("Migrated flat overlay into layer %s", legacy.id)

    return config.rebuild(preferred)


# ---------------- Scene access and mutations ----------------

def get_overlay_config(board: Mapping[str, Any] | None, scene_id: str | None) -> OverlayConfig:
    if not scene_id or not isinstance(board, Mapping):
        return OverlayConfig()
    scene_state = board.get("sceneState")
    entry = scene_state.get(scene_id) if isinstance(scene_state, Mapping) else None
    if not isinstance(entry, Mapping):
        return OverlayConfig()
    return normalize_overlay(entry.get("overlay"))


def _store(board: dict[str, Any], scene_id: str, config: OverlayConfig, preferred: str | None = None) -> None:
    config.rebuild(preferred)
    entry = ensure_scene_entry(board, scene_id)
    entry["overlay"] = config.to_dict()
    # the board-level overlay mirrors the active scene
    if board.get("activeSceneId") == scene_id:
        board["overlay"] = config.to_dict()


def _edit(board: dict[str, Any], scene_id: str | None) -> OverlayConfig | None:
    if not scene_id:
        logger.debug("overlay edit without scene id ignored")
        return None
    return get_overlay_config(board, scene_id)


def add_layer(board: dict[str, Any], scene_id: str | None, requested_name: Any = None) -> OverlayLayer | None:
    config = _edit(board, scene_id)
    if config is None:
        return None
    name = ensure_unique_name(
        requested_name or f"{DEFAULT_LAYER_PREFIX} {len(config.layers) + 1}",
        (l.name for l in config.layers),
    )
    layer = OverlayLayer(id=_new_layer_id(), name=name)
    config.layers.append(layer)
    _store(board, scene_id, config, preferred=layer.id)
    logger.debug("Added overlay layer %r (%s) to scene %s", layer.name, layer.id, scene_id)
    return layer


def rename_layer(board: dict[str, Any], scene_id: str | None, layer_id: str, name: Any) -> bool:
    config = _edit(board, scene_id)
    layer = config.layer(layer_id) if config else None
    if layer is None or _trimmed(name) is None:
        return False
    layer.name = ensure_unique_name(name, (l.name for l in config.layers if l.id != layer_id))
    _store(board, scene_id, config)
    return True


def delete_layer(board: dict[str, Any], scene_id: str | None, layer_id: str) -> bool:
    config = _edit(board, scene_id)
    if config is None or config.layer(layer_id) is None:
        return False
    config.layers = [l for l in config.layers if l.id != layer_id]
    if config.active_layer_id == layer_id:
        config.active_layer_id = None
    _store(board, scene_id, config)
    logger.debug("Deleted overlay layer %s from scene %s", layer_id, scene_id)
    return True


def toggle_layer_visibility(
    board: dict[str, Any], scene_id: str | None, layer_id: str, visible: bool | None = None
) -> bool:
    config = _edit(board, scene_id)
    layer = config.layer(layer_id) if config else None
    if layer is None:
        return False
    layer.visible = (not layer.visible) if visible is None else bool(visible)
    _store(board, scene_id, config)
    return True


def set_active_layer(board: dict[str, Any], scene_id: str | None, layer_id: str) -> bool:
    config = _edit(board, scene_id)
    if config is None or config.layer(layer_id) is None:
        return False
    _store(board, scene_id, config, preferred=layer_id)
    return board["sceneState"][scene_id]["overlay"]["activeLayerId"] == layer_id


def set_layer_map_url(board: dict[str, Any], scene_id: str | None, layer_id: str, url: Any) -> bool:
    """Attach an already-uploaded image to one layer; other layers are left untouched."""
    config = _edit(board, scene_id)
    layer = config.layer(layer_id) if config else None
    if layer is None:
        return False
    layer.map_url = _trimmed(url)
    _store(board, scene_id, config, preferred=layer_id)
    return True


def set_layer_mask(board: dict[str, Any], scene_id: str | None, layer_id: str, mask: Any) -> bool:
    config = _edit(board, scene_id)
    layer = config.layer(layer_id) if config else None
    if layer is None:
        return False
    layer.mask = normalize_mask(mask)
    _store(board, scene_id, config)
    return True


def sync_board_overlay(board: dict[str, Any]) -> None:
    """Point the board-level overlay at the active scene's overlay; a scene without one clears it."""
    config = get_overlay_config(board, board.get("activeSceneId"))
    if "overlay" in board or config.layers:
        board["overlay"] = config.to_dict()
