"""
Unit tests for the overlay compositing engine.

Covers the three stored shapes, legacy migration, aggregate rebuild,
active-layer resolution, unique naming and the layer commands.
"""

import math

import pytest

from battlemap import overlay
from battlemap.overlay import (
    OverlayLayer,
    OverlayMask,
    ensure_unique_name,
    get_overlay_config,
    normalize_mask,
    normalize_overlay,
    parse_visibility,
    rebuild_aggregate_mask,
    resolve_active_layer_id,
    resolve_overlay_map_url,
)

TRIANGLE = [{"x": 0, "y": 0}, {"x": 2, "y": 0}, {"x": 0, "y": 2}]


def _layer(layer_id, visible=True, map_url=None, mask=None):
    return OverlayLayer(id=layer_id, name=layer_id, visible=visible, map_url=map_url,
                        mask=mask or OverlayMask())


@pytest.fixture
def board():
    return {"activeSceneId": "s1", "sceneState": {"s1": {"grid": {"size": 64}}}}


class TestParseVisibility:
    """Tests for parse_visibility."""

    @pytest.mark.unit
    @pytest.mark.parametrize("value,expected", [
        (True, True), (False, False),
        ("false", False), ("0", False), ("off", False), ("No", False),
        ("true", True), ("1", True), ("on", True), (" YES ", True),
        ("", False), ("maybe", True),
        (0, False), (2, True), (math.nan, False),
        ([], False), ({"a": 1}, True),
    ])
    def test_table(self, value, expected):
        assert parse_visibility(value) is expected

    @pytest.mark.unit
    def test_none_uses_default(self):
        assert parse_visibility(None) is True
        assert parse_visibility(None, default=False) is False


class TestNormalizeMask:
    """Tests for normalize_mask."""

    @pytest.mark.unit
    def test_point_shapes_and_rounding(self):
        mask = normalize_mask({"polygons": [
            {"points": [{"column": 1.234567, "row": 2}, {"x": 3, "y": 4}, [5, "6"]]},
        ]})
        assert mask.polygons == [[(1.2346, 2.0), (3.0, 4.0), (5.0, 6.0)]]

    @pytest.mark.unit
    def test_short_polygons_dropped(self):
        mask = normalize_mask({"polygons": [[{"x": 1, "y": 1}, {"x": 2, "y": 2}], TRIANGLE]})
        assert len(mask.polygons) == 1

    @pytest.mark.unit
    def test_invalid_points_skipped(self):
        mask = normalize_mask({"polygons": [[{"x": "a", "y": 1}, {"x": True, "y": 1}, *TRIANGLE]]})
        assert mask.polygons == [[(0.0, 0.0), (2.0, 0.0), (0.0, 2.0)]]

    @pytest.mark.unit
    def test_non_mapping(self):
        mask = normalize_mask("junk")
        assert mask.visible is True and mask.url is None and mask.polygons == []


class TestNormalizeOverlay:
    """Tests for normalize_overlay."""

    @pytest.mark.unit
    def test_legacy_flat_overlay(self):
        """A flat overlay becomes one layer; the 2-point polygon is dropped."""
        raw = {"mapUrl": "a.png", "mask": {"url": "m.png", "polygons": [{"points": [{"x": 1, "y": 1}, {"x": 2, "y": 2}]}]}}
        config = normalize_overlay(raw)
        assert len(config.layers) == 1
        layer = config.layers[0]
        assert layer.mask.polygons == []
        assert layer.mask.url == "m.png"
        assert resolve_overlay_map_url(config.layers, config.active_layer_id) == "a.png"
        assert config.active_layer_id == layer.id

    @pytest.mark.unit
    def test_items_alias(self):
        config = normalize_overlay({"items": [{"id": "a", "name": "Roof"}, {"id": "b"}]})
        assert [l.id for l in config.layers] == ["a", "b"]
        assert config.layers[1].name == "Overlay 2"

    @pytest.mark.unit
    def test_empty_input_has_no_layers(self):
        config = normalize_overlay({})
        assert config.layers == []
        assert config.active_layer_id is None
        assert config.mask.visible is False

    @pytest.mark.unit
    def test_duplicate_ids_reassigned(self):
        config = normalize_overlay({"layers": [{"id": "x"}, {"id": "x"}]})
        ids = [l.id for l in config.layers]
        assert ids[0] == "x" and ids[1] != "x"

    @pytest.mark.unit
    def test_base_map_url_attached_to_preferred_layer(self):
        raw = {"mapUrl": "base.png", "activeLayerId": "b", "layers": [{"id": "a"}, {"id": "b"}]}
        config = normalize_overlay(raw)
        assert config.layer("b").map_url == "base.png"
        assert config.layer("a").map_url is None

    @pytest.mark.unit
    def test_base_map_url_not_duplicated(self):
        raw = {"mapUrl": "a.png", "layers": [{"id": "a"}, {"id": "b", "mapUrl": "a.png"}]}
        config = normalize_overlay(raw)
        assert config.layer("a").map_url is None

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        {"mapUrl": "a.png", "mask": {"url": "m.png", "polygons": [{"points": TRIANGLE}]}},
        {"items": [{"name": "One", "visible": "off", "mask": {"visible": "no", "polygons": [TRIANGLE]}}]},
        {"layers": [{"id": "a", "mapUrl": " x.png "}, {"id": "b", "visible": False}], "activeLayerId": "b"},
        {"name": "Legacy", "visible": "0"},
        {"mapUrl": "only.png"},
        {},
    ])
    def test_idempotent(self, raw):
        once = normalize_overlay(raw).to_dict()
        twice = normalize_overlay(once).to_dict()
        assert once == twice


class TestAggregate:
    """Tests for the aggregate rebuild and active-layer resolution."""

    @pytest.mark.unit
    def test_polygons_concatenated_from_contributing_layers(self):
        tri = [(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)]
        layers = [
            _layer("a", mask=OverlayMask(url="a-mask.png", polygons=[tri])),
            _layer("b", visible=False, mask=OverlayMask(polygons=[tri])),
            _layer("c", mask=OverlayMask(visible=False, polygons=[tri])),
            _layer("d", mask=OverlayMask(url="d-mask.png", polygons=[tri, tri])),
        ]
        mask = rebuild_aggregate_mask(layers)
        assert mask.visible is True
        assert mask.url == "a-mask.png"
        assert len(mask.polygons) == 3

    @pytest.mark.unit
    def test_nothing_contributes(self):
        assert rebuild_aggregate_mask([_layer("a", visible=False)]).visible is False

    @pytest.mark.unit
    def test_active_prefers_visible_preferred(self):
        layers = [_layer("a"), _layer("b")]
        assert resolve_active_layer_id("b", layers) == "b"

    @pytest.mark.unit
    def test_active_skips_hidden_preferred(self):
        layers = [_layer("a", visible=False), _layer("b")]
        assert resolve_active_layer_id("a", layers) == "b"

    @pytest.mark.unit
    def test_active_falls_back_to_any_layer(self):
        layers = [_layer("a", visible=False)]
        assert resolve_active_layer_id("missing", layers) == "a"
        assert resolve_active_layer_id("a", []) is None

    @pytest.mark.unit
    def test_map_url_precedence(self):
        layers = [_layer("a", visible=False, map_url="hidden.png"), _layer("b", map_url="b.png"), _layer("c")]
        assert resolve_overlay_map_url(layers, "a") == "hidden.png"
        assert resolve_overlay_map_url(layers, "c") == "b.png"
        assert resolve_overlay_map_url([layers[0]], None) == "hidden.png"
        assert resolve_overlay_map_url([layers[2]], "c") is None


class TestEnsureUniqueName:
    """Tests for ensure_unique_name."""

    @pytest.mark.unit
    def test_continues_numbering(self):
        assert ensure_unique_name("Overlay", ["Overlay", "Overlay 2"]) == "Overlay 3"

    @pytest.mark.unit
    def test_case_insensitive(self):
        assert ensure_unique_name("roof", ["Roof"]) == "roof 2"

    @pytest.mark.unit
    def test_continues_from_requested_suffix(self):
        assert ensure_unique_name("Cave 4", ["Cave 4", "Cave 5"]) == "Cave 6"

    @pytest.mark.unit
    def test_free_name_kept(self):
        assert ensure_unique_name("  Bridge ", ["Roof"]) == "Bridge"


class TestLayerCommands:
    """Tests for the scene-level layer mutations."""

    @staticmethod
    def _assert_active_safe(board):
        config = get_overlay_config(board, "s1")
        assert config.active_layer_id is None or config.layer(config.active_layer_id) is not None

    @pytest.mark.unit
    def test_add_layers_unique_and_active(self, board):
        first = overlay.add_layer(board, "s1")
        second = overlay.add_layer(board, "s1", "overlay 1")
        config = get_overlay_config(board, "s1")
        assert [l.name for l in config.layers] == ["Overlay 1", "overlay 2"]
        assert config.active_layer_id == second.id
        assert first.id != second.id

    @pytest.mark.unit
    def test_board_level_mirror_for_active_scene(self, board):
        layer = overlay.add_layer(board, "s1", "Roof")
        assert board["overlay"]["activeLayerId"] == layer.id
        overlay.add_layer(board, "s2", "Elsewhere")
        assert board["overlay"]["layers"][0]["name"] == "Roof"

    @pytest.mark.unit
    def test_rename_dedupes(self, board):
        a = overlay.add_layer(board, "s1", "A")
        overlay.add_layer(board, "s1", "B")
        assert overlay.rename_layer(board, "s1", a.id, "b") is True
        names = {l.name.casefold() for l in get_overlay_config(board, "s1").layers}
        assert len(names) == 2
        assert overlay.rename_layer(board, "s1", a.id, "   ") is False

    @pytest.mark.unit
    def test_delete_active_layer(self, board):
        a = overlay.add_layer(board, "s1", "A")
        b = overlay.add_layer(board, "s1", "B")
        assert overlay.delete_layer(board, "s1", b.id) is True
        config = get_overlay_config(board, "s1")
        assert config.active_layer_id == a.id
        overlay.delete_layer(board, "s1", a.id)
        self._assert_active_safe(board)
        assert get_overlay_config(board, "s1").active_layer_id is None

    @pytest.mark.unit
    def test_hiding_active_layer_moves_active(self, board):
        a = overlay.add_layer(board, "s1", "A")
        b = overlay.add_layer(board, "s1", "B")
        overlay.toggle_layer_visibility(board, "s1", b.id)
        config = get_overlay_config(board, "s1")
        assert config.layer(b.id).visible is False
        assert config.active_layer_id == a.id

    @pytest.mark.unit
    def test_set_active_layer(self, board):
        a = overlay.add_layer(board, "s1", "A")
        overlay.add_layer(board, "s1", "B")
        assert overlay.set_active_layer(board, "s1", a.id) is True
        assert overlay.set_active_layer(board, "s1", "missing") is False
        assert get_overlay_config(board, "s1").active_layer_id == a.id

    @pytest.mark.unit
    def test_image_upload_leaves_other_masks(self, board):
        a = overlay.add_layer(board, "s1", "A")
        b = overlay.add_layer(board, "s1", "B")
        overlay.set_layer_mask(board, "s1", a.id, {"polygons": [TRIANGLE]})
        overlay.set_layer_map_url(board, "s1", b.id, " roof.png ")
        config = get_overlay_config(board, "s1")
        assert config.layer(a.id).mask.polygons
        assert config.layer(b.id).map_url == "roof.png"
        assert config.map_url == "roof.png"
        assert len(config.mask.polygons) == 1

    @pytest.mark.unit
    def test_commands_without_scene(self, board):
        assert overlay.add_layer(board, None) is None
        assert overlay.delete_layer(board, "", "x") is False
