"""
Tests for scene map loading (Pillow images and PyMuPDF pages).
"""

import fitz
import pytest
from PIL import Image

from battlemap.map_loader import MapLoadError, load_map, resolve_map_path


@pytest.fixture
def png_map(tmp_path):
    path = tmp_path / "map.png"
    Image.new("RGB", (320, 200), (200, 10, 10)).save(path)
    return path


@pytest.fixture
def pdf_map(tmp_path):
    path = tmp_path / "map.pdf"
    doc = fitz.open()
    doc.new_page(width=200, height=100)
    doc.save(str(path))
    doc.close()
    return path


class TestResolveMapPath:
    """Tests for resolve_map_path."""

    @pytest.mark.unit
    def test_relative_to_board(self, tmp_path):
        assert resolve_map_path("maps/a.png", tmp_path) == (tmp_path / "maps" / "a.png").resolve()

    @pytest.mark.unit
    def test_absolute_and_file_url(self, tmp_path):
        target = tmp_path / "a.png"
        assert resolve_map_path(str(target)) == target
        assert resolve_map_path(f"file://{target}") == target

    @pytest.mark.unit
    @pytest.mark.parametrize("url", [None, "", "https://example.com/a.png", 5])
    def test_unusable(self, url):
        assert resolve_map_path(url) is None


@pytest.mark.qt
class TestLoadMap:
    """Tests for load_map."""

    def test_png(self, qapp, png_map):
        loaded = load_map(png_map)
        assert loaded.pixel_size == (320, 200)
        assert not loaded.is_pdf
        assert loaded.qimage.pixelColor(5, 5).red() == 200

    def test_pdf_page(self, qapp, pdf_map):
        loaded = load_map(pdf_map, pdf_dpi=72)
        assert loaded.is_pdf
        assert loaded.pixel_size == (200, 100)
        assert load_map(pdf_map, pdf_dpi=144).pixel_size == (400, 200)

    def test_bad_file(self, qapp, tmp_path):
        bogus = tmp_path / "bogus.png"
        bogus.write_bytes(b"not an image")
        with pytest.raises(MapLoadError):
            load_map(bogus)
        with pytest.raises(MapLoadError):
            load_map(tmp_path / "missing.png")
