from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError
import fitz  # PyMuPDF
from PyQt6.QtGui import QImage

logger = logging.getLogger(__name__)

PDF_DPI = 150


class MapLoadError(Exception):
    """A scene map image could not be read."""


@dataclass
class LoadedMap:
    qimage: QImage
    source_path: str
    is_pdf: bool = False
    pdf_page: int = 0
    dpi: int = PDF_DPI

    @property
    def pixel_size(self) -> tuple[int, int]:
        return self.qimage.width(), self.qimage.height()


def pil_to_qimage(im: Image.Image) -> QImage:
    if im.mode not in ("RGBA", "RGB"):
        im = im.convert("RGBA")
    w, h = im.size
    if im.mode == "RGB":
        data = im.tobytes("raw", "RGB")
        return QImage(data, w, h, 3 * w, QImage.Format.Format_RGB888).copy()
    data = im.tobytes("raw", "RGBA")
    return QImage(data, w, h, 4 * w, QImage.Format.Format_RGBA8888).copy()


def load_image(path: str) -> QImage:
    with Image.open(path) as im:
        return pil_to_qimage(ImageOps.exif_transpose(im))


def render_pdf_page(path: str, page_index: int = 0, dpi: int = PDF_DPI) -> QImage:
    with fitz.open(path) as doc:
        page_index = max(0, min(page_index, len(doc) - 1))
        page = doc.load_page(page_index)
        zoom = dpi / 72.0
        pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=True)
        return QImage(pix.samples, pix.width, pix.height, pix.stride, QImage.Format.Format_RGBA8888).copy()


def resolve_map_path(url: str | None, base_dir: str | Path | None = None) -> Path | None:
    """
    Turn a stored mapUrl into a local path.

    Absolute paths and file:// URLs are kept; relative paths resolve against
    the board file's directory (or the working directory).
    """
    if not url or not isinstance(url, str):
        return None
    url = url.strip()
    if url.startswith("file://"):
        url = url[len("file://"):]
    if "://" in url:
        logger.debug("resolve_map_path: remote url %s not supported", url)
        return None
    p = Path(url)
    if p.is_absolute():
        return p
    return (Path(base_dir) if base_dir else Path.cwd()).joinpath(p).resolve()


def load_map(path: str | Path, pdf_page: int = 0, pdf_dpi: int = PDF_DPI) -> LoadedMap:
    path = Path(path)
    source = str(path.resolve())
    try:
        if path.suffix.lower() == ".pdf":
            qimg = render_pdf_page(str(path), pdf_page, pdf_dpi)
            loaded = LoadedMap(qimage=qimg, source_path=source, is_pdf=True, pdf_page=pdf_page, dpi=pdf_dpi)
        else:
            loaded = LoadedMap(qimage=load_image(str(path)), source_path=source)
    except (OSError, UnidentifiedImageError, RuntimeError) as e:
        raise MapLoadError(f"Couldn't load map {path}: {e}") from e
    logger.info("Loaded map %s (%dx%d)", path.name, *loaded.pixel_size)
    return loaded
