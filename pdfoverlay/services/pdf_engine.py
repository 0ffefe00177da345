"""PDF engine capability and its PyMuPDF implementation.

The compositor talks to :class:`PdfEngine` only. Rects passed to the draw
calls are in PDF space (points, bottom-left origin); every draw call reads
``input_path`` and writes a new file at ``output_path``, never touching the
input.
"""

import math
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

import fitz

from pdfoverlay.core.geometry import Rect, Size, normalize_rotation, rotated_bounds
from pdfoverlay.services.image_processing import prepare_raster
from pdfoverlay.utils.logger import get_logger

logger = get_logger("engine")

RGB = tuple[float, float, float]


class PdfEngineError(Exception):
    """Raised when the PDF engine cannot read, draw on or write a document."""

    pass


@dataclass
class TextStyle:
    font_size: float
    font_family: str = "Helvetica"
    bold: bool = False
    italic: bool = False
    underline: bool = False
    color: RGB = (0.0, 0.0, 0.0)
    bg_color: Optional[RGB] = None
    highlight_color: Optional[RGB] = None
    highlight_alpha: float = 1.0
    letter_spacing: float = 0.0


@dataclass
class RectangleStyle:
    fill_color: RGB = (0.0, 0.0, 0.0)
    fill_alpha: float = 0.5
    border_fade: float = 0.0


@dataclass(frozen=True)
class PagePick:
    """One page of an assembled document.

    ``document`` is None for the input document. ``rotation`` is added,
    clockwise, to the page's own rotation.
    """

    page_num: int
    document: Optional[Path] = None
    rotation: int = 0


class PdfEngine(ABC):
    """Abstract PDF reading/stamping capability."""

    @abstractmethod
    def get_page_count(self, pdf_path: Path) -> int:
        pass

    @abstractmethod
    def get_page_size(self, pdf_path: Path, page_index: int) -> Size:
        """Visible page size in points."""
        pass

    def get_page_sizes(self, pdf_path: Path) -> list[Size]:
        return [self.get_page_size(pdf_path, i) for i in range(self.get_page_count(pdf_path))]

    @abstractmethod
    def reorder_pages(self, input_path: Path, output_path: Path, pages: Sequence[PagePick]) -> bool:
        """Write a document made of ``pages`` in order, picked from the input or other documents."""
        pass

    @abstractmethod
    def draw_text(
        self,
        input_path: Path,
        output_path: Path,
        page_index: int,
        rect: Rect,
        rotation: float,
        opacity: float,
        text: str,
        style: TextStyle,
    ) -> bool:
        pass

    @abstractmethod
    def draw_image(
        self,
        input_path: Path,
        output_path: Path,
        page_index: int,
        rect: Rect,
        rotation: float,
        opacity: float,
        image_path: Path,
    ) -> bool:
        pass

    @abstractmethod
    def draw_rectangle(
        self,
        input_path: Path,
        output_path: Path,
        page_index: int,
        rect: Rect,
        rotation: float,
        opacity: float,
        style: RectangleStyle,
    ) -> bool:
        pass


# Base-14 font names by (family, bold, italic)
_BASE14 = {
    ("Helvetica", False, False): "helv",
    ("Helvetica", True, False): "hebo",
    ("Helvetica", False, True): "heit",
    ("Helvetica", True, True): "hebi",
    ("Times", False, False): "tiro",
    ("Times", True, False): "tibo",
    ("Times", False, True): "tiit",
    ("Times", True, True): "tibi",
    ("Courier", False, False): "cour",
    ("Courier", True, False): "cobo",
    ("Courier", False, True): "coit",
    ("Courier", True, True): "cobi",
}


def base14_font_name(family: str, bold: bool = False, italic: bool = False) -> str:
    return _BASE14.get((family, bold, italic), "helv")


def text_width(text: str, font_size: float, family: str = "Helvetica", bold: bool = False,
               italic: bool = False, letter_spacing: float = 0.0) -> float:
    """Advance width of ``text`` in the same units as ``font_size``."""
    font = fitz.Font(base14_font_name(family, bold, italic))
    width = font.text_length(text, fontsize=font_size)
    if letter_spacing and len(text) > 1:
        width += letter_spacing * (len(text) - 1)
    return width


class FitzPdfEngine(PdfEngine):
    """PdfEngine backed by PyMuPDF."""

    def _open(self, pdf_path: Path) -> fitz.Document:
        try:
            return fitz.open(str(pdf_path))
        except Exception as e:
            raise PdfEngineError(f"Cannot open PDF {pdf_path}: {e}") from e

    def _page(self, doc: fitz.Document, page_index: int) -> fitz.Page:
        if not 0 <= page_index < doc.page_count:
            raise PdfEngineError(f"Page index {page_index} out of range (0..{doc.page_count - 1})")
        return doc[page_index]

    def _save(self, doc: fitz.Document, output_path: Path) -> None:
        try:
            doc.save(str(output_path), garbage=3, deflate=True)
        except Exception as e:
            raise PdfEngineError(f"Cannot write PDF {output_path}: {e}") from e

    @staticmethod
    def _to_fitz_rect(page: fitz.Page, rect: Rect) -> fitz.Rect:
        """PDF-space (bottom-left origin) rect to PyMuPDF page rect (top-left origin)."""
        top = page.rect.height - rect.y - rect.height
        return fitz.Rect(rect.x, top, rect.x + rect.width, top + rect.height)

    @classmethod
    def _layout(cls, page: fitz.Page, rect: Rect, rotation: float) -> tuple[fitz.Rect, float]:
        """Box and clockwise angle in the unrotated page frame for ``rect`` on the visible page.

        Visible geometry is what the canvas shows. On a page with ``/Rotate``
        the box center is carried through the derotation matrix and the
        page's own rotation is taken off the overlay's angle.
        """
        box = cls._to_fitz_rect(page, rect)
        if not page.rotation:
            return box, rotation
        center = fitz.Point((box.x0 + box.x1) / 2, (box.y0 + box.y1) / 2) * page.derotation_matrix
        half_w, half_h = box.width / 2, box.height / 2
        unrotated = fitz.Rect(center.x - half_w, center.y - half_h, center.x + half_w, center.y + half_h)
        return unrotated, rotation - page.rotation

    @staticmethod
    @contextmanager
    def _unrotated(page: fitz.Page) -> Iterator[fitz.Page]:
        """Draw with ``/Rotate`` cleared so every drawing call shares one frame."""
        rotation = page.rotation
        if rotation:
            page.set_rotation(0)
        try:
            yield page
        finally:
            if rotation:
                page.set_rotation(rotation)

    @staticmethod
    def _morph(box: fitz.Rect, rotation: float):
        """Rotation about the box center, clockwise as on the canvas."""
        if not normalize_rotation(rotation):
            return None
        center = fitz.Point((box.x0 + box.x1) / 2, (box.y0 + box.y1) / 2)
        # Morph matrices act in PDF (Y-up) space, where positive angles turn counter-clockwise
        return (center, fitz.Matrix(1, 0, 0, 1, 0, 0).prerotate(-rotation))

    def get_page_count(self, pdf_path: Path) -> int:
        doc = self._open(pdf_path)
        try:
            return doc.page_count
        finally:
            doc.close()

    def get_page_size(self, pdf_path: Path, page_index: int) -> Size:
        doc = self._open(pdf_path)
        try:
            page_rect = self._page(doc, page_index).rect
            return Size(page_rect.width, page_rect.height)
        finally:
            doc.close()

    def get_page_sizes(self, pdf_path: Path) -> list[Size]:
        doc = self._open(pdf_path)
        try:
            return [Size(page.rect.width, page.rect.height) for page in doc]
        finally:
            doc.close()

    def reorder_pages(self, input_path: Path, output_path: Path, pages: Sequence[PagePick]) -> bool:
        if not pages:
            raise PdfEngineError("Page order is empty")

        sources: dict[Path, fitz.Document] = {}
        doc = fitz.open()
        try:
            for pick in pages:
                path = Path(pick.document or input_path)
                if path not in sources:
                    sources[path] = self._open(path)
                source = sources[path]
                if not 1 <= pick.page_num <= source.page_count:
                    raise PdfEngineError(
                        f"Page {pick.page_num} out of range for {path.name} ({source.page_count} pages)"
                    )
                doc.insert_pdf(source, from_page=pick.page_num - 1, to_page=pick.page_num - 1)
                if pick.rotation % 360:
                    page = doc[doc.page_count - 1]
                    page.set_rotation((page.rotation + pick.rotation) % 360)
            self._save(doc, output_path)
            logger.info(
                f"Assembled {len(pages)} pages from {len(sources)} documents into {Path(output_path).name}"
            )
            return True
        finally:
            doc.close()
            for source in sources.values():
                source.close()

    def draw_text(
        self,
        input_path: Path,
        output_path: Path,
        page_index: int,
        rect: Rect,
        rotation: float,
        opacity: float,
        text: str,
        style: TextStyle,
    ) -> bool:
        doc = self._open(input_path)
        try:
            page = self._page(doc, page_index)
            box, angle = self._layout(page, rect, rotation)
            with self._unrotated(page):
                self._write_text(page, box, self._morph(box, angle), opacity, text, style)
            self._save(doc, output_path)
            return True
        except PdfEngineError:
            raise
        except Exception as e:
            raise PdfEngineError(f"Text drawing failed: {e}") from e
        finally:
            doc.close()

    @staticmethod
    def _write_text(page: fitz.Page, box: fitz.Rect, morph, opacity: float, text: str, style: TextStyle) -> None:
        if style.bg_color is not None:
            page.draw_rect(box, color=None, fill=style.bg_color, fill_opacity=opacity, morph=morph)
        if style.highlight_color is not None:
            page.draw_rect(
                box,
                color=None,
                fill=style.highlight_color,
                fill_opacity=style.highlight_alpha * opacity,
                morph=morph,
            )

        font = fitz.Font(base14_font_name(style.font_family, style.bold, style.italic))
        baseline = box.y0 + font.ascender * style.font_size
        writer = fitz.TextWriter(page.rect)
        if style.letter_spacing:
            x = box.x0
            for char in text:
                writer.append(fitz.Point(x, baseline), char, font=font, fontsize=style.font_size)
                x += font.text_length(char, fontsize=style.font_size) + style.letter_spacing
            end_x = x - style.letter_spacing
        else:
            writer.append(fitz.Point(box.x0, baseline), text, font=font, fontsize=style.font_size)
            end_x = box.x0 + font.text_length(text, fontsize=style.font_size)
        writer.write_text(page, color=style.color, opacity=opacity, morph=morph)

        if style.underline and text:
            underline_y = baseline + style.font_size * 0.1
            page.draw_line(
                fitz.Point(box.x0, underline_y),
                fitz.Point(end_x, underline_y),
                color=style.color,
                width=max(0.5, style.font_size / 18),
                stroke_opacity=opacity,
                morph=morph,
            )

    def draw_image(
        self,
        input_path: Path,
        output_path: Path,
        page_index: int,
        rect: Rect,
        rotation: float,
        opacity: float,
        image_path: Path,
    ) -> bool:
        """Insert an image into ``rect``, rotated about its center.

        The raster is rotated and faded before insertion, so it lands inside
        the axis-aligned bounds of the rotated box.
        """
        doc = self._open(input_path)
        try:
            page = self._page(doc, page_index)
            box, angle = self._layout(page, rect, rotation)
            bounds = rotated_bounds(Rect(box.x0, box.y0, box.width, box.height), angle)
            stream = prepare_raster(image_path, rotation=angle, opacity=opacity)
            with self._unrotated(page):
                page.insert_image(
                    fitz.Rect(bounds.x, bounds.y, bounds.x + bounds.width, bounds.y + bounds.height),
                    stream=stream,
                    keep_proportion=False,
                    overlay=True,
                )
            self._save(doc, output_path)
            return True
        except PdfEngineError:
            raise
        except Exception as e:
            raise PdfEngineError(f"Image drawing failed: {e}") from e
        finally:
            doc.close()

    def draw_rectangle(
        self,
        input_path: Path,
        output_path: Path,
        page_index: int,
        rect: Rect,
        rotation: float,
        opacity: float,
        style: RectangleStyle,
    ) -> bool:
        """Filled rectangle; a border fade draws widening layers of decreasing alpha underneath."""
        doc = self._open(input_path)
        try:
            page = self._page(doc, page_index)
            box, angle = self._layout(page, rect, rotation)
            with self._unrotated(page):
                self._fill_rect(page, box, self._morph(box, angle), opacity, style)
            self._save(doc, output_path)
            return True
        except PdfEngineError:
            raise
        except Exception as e:
            raise PdfEngineError(f"Rectangle drawing failed: {e}") from e
        finally:
            doc.close()

    @staticmethod
    def _fill_rect(page: fitz.Page, box: fitz.Rect, morph, opacity: float, style: RectangleStyle) -> None:
        if style.border_fade > 0:
            steps = math.ceil(style.border_fade / 2)
            for step in range(steps, 0, -1):
                offset = style.border_fade / steps * step
                layer = fitz.Rect(box.x0 - offset, box.y0 - offset, box.x1 + offset, box.y1 + offset)
                page.draw_rect(
                    layer,
                    color=None,
                    fill=style.fill_color,
                    fill_opacity=style.fill_alpha * (1 - step / (steps + 1)) * opacity,
                    radius=min(0.5, offset * 0.2 / min(layer.width, layer.height)),
                    morph=morph,
                )

        page.draw_rect(
            box,
            color=None,
            fill=style.fill_color,
            fill_opacity=style.fill_alpha * opacity,
            morph=morph,
        )
