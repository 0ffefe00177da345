"""Sequential overlay compositor.

Applies an ordered overlay list to a PDF, one engine call per overlay. Each
step reads the current working file and writes a new temp file, so the source
document is never modified and a failed step leaves earlier output intact.
"""

import shutil
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional, Sequence

from pdfoverlay.config import settings
from pdfoverlay.core.geometry import (
    InvalidGeometry,
    Rect,
    Size,
    scale_factors,
    to_pdf_space,
    to_pdf_space_clamped,
)
from pdfoverlay.models.overlay import DEFAULT_SIZES, ORIGINAL_SOURCE, Overlay, OverlayKind, PageOrderEntry
from pdfoverlay.services.image_processing import (
    ImageProcessingError,
    decode_data_url_to_file,
    normalize_image,
    remove_white_background,
)
from pdfoverlay.services.pdf_engine import (
    FitzPdfEngine,
    PagePick,
    PdfEngine,
    PdfEngineError,
    RectangleStyle,
    TextStyle,
    text_width,
)
from pdfoverlay.utils.logger import get_logger
from pdfoverlay.utils.validators import ValidationError, parse_color

logger = get_logger("compositor")


class CompositeError(Exception):
    """Base class for compositing failures."""

    pass


class OverlayApplyFailed(CompositeError):
    """Raised when one overlay could not be applied. Aborts the whole chain."""

    def __init__(self, index: int, kind: OverlayKind | str, reason: str):
        self.index = index
        self.kind = kind.value if isinstance(kind, OverlayKind) else kind
        self.reason = reason
        super().__init__(f"Overlay {index} ({self.kind}) failed: {reason}")

    def to_dict(self) -> dict:
        return {"index": self.index, "kind": self.kind, "reason": self.reason}


class PagesOutOfRange(CompositeError):
    """Raised when an overlay targets a page the document does not have."""

    pass


class CompositeCancelled(CompositeError):
    """Raised when compositing is cancelled between steps."""

    pass


class TempFileError(CompositeError):
    """Raised (and logged, never propagated) when a temp file cannot be deleted."""

    pass


@dataclass
class SkippedOverlay:
    index: int
    kind: str
    reason: str


@dataclass
class CompositeResult:
    """Outcome of a successful compose.

    ``temp_files`` holds every intermediate PDF and decoded payload that still
    exists; the caller deletes them (see :meth:`cleanup`) once ``final_path``
    has been consumed.
    """

    final_path: Path
    temp_files: list[Path] = field(default_factory=list)
    applied: int = 0
    skipped: list[SkippedOverlay] = field(default_factory=list)

    def cleanup(self) -> list[Path]:
        failed = cleanup_temp_files(self.temp_files)
        self.temp_files = failed
        return failed


def cleanup_temp_files(paths: Iterable[Path]) -> list[Path]:
    """Best-effort deletion. Returns the paths that could not be removed."""
    failed = []
    for path in paths:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(str(TempFileError(f"Could not delete temp file {path}: {e}")))
            failed.append(Path(path))
    return failed


class Compositor:
    """Burns overlays into a PDF through a :class:`PdfEngine`."""

    def __init__(
        self,
        engine: Optional[PdfEngine] = None,
        temp_dir: Optional[Path] = None,
        min_size_pt: Optional[float] = None,
        clamp_degenerate: bool = True,
    ):
        self.engine = engine or FitzPdfEngine()
        self.temp_dir = Path(temp_dir) if temp_dir else settings.get_temp_dir()
        self.min_size_pt = min_size_pt or settings.min_pdf_size_pt
        self.clamp_degenerate = clamp_degenerate

    def compose(
        self,
        source_pdf: Path,
        overlays: Sequence[Overlay],
        output_path: Path,
        page_order: Optional[Sequence[PageOrderEntry]] = None,
        has_reordering: bool = False,
        cancel_event: Optional[threading.Event] = None,
        sources: Optional[Mapping[str, Path]] = None,
    ) -> CompositeResult:
        """Apply ``overlays`` in order (later ones on top) and write ``output_path``.

        ``sources`` maps page-order source keys other than ``"original"``
        (merged documents, ``"merged:0"`` and on) to their PDF files.

        Raises:
            OverlayApplyFailed: If any overlay fails; nothing is written to ``output_path``.
            CompositeCancelled: If ``cancel_event`` is set between steps.
            CompositeError: If the page reorder pre-step fails.
        """
        source = Path(source_pdf)
        output = Path(output_path)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        temp_files: list[Path] = []
        skipped: list[SkippedOverlay] = []
        applied = 0
        working = source

        try:
            if has_reordering and page_order:
                self._check_cancel(cancel_event, "page reorder")
                working = self._reorder(source, page_order, sources or {}, temp_files)

            page_sizes = self.engine.get_page_sizes(working)
            logger.info(f"Compositing {len(overlays)} overlays onto {len(page_sizes)} pages")

            for index, overlay in enumerate(overlays):
                self._check_cancel(cancel_event, f"overlay {index}")
                try:
                    page_size = self._page_size(index, overlay, page_sizes)
                except PagesOutOfRange as e:
                    logger.warning(str(e))
                    skipped.append(SkippedOverlay(index, overlay.kind.value, str(e)))
                    continue

                step_output = self._new_temp(temp_files, ".pdf")
                self._apply(index, overlay, working, step_output, page_size, temp_files)
                # Intermediate files stay in temp_files until the caller cleans up
                working = step_output
                applied += 1
                logger.debug(f"Applied overlay {index} ({overlay.kind.value}) on page {overlay.page_index}")

            output.parent.mkdir(parents=True, exist_ok=True)
            if working == source:
                shutil.copyfile(source, output)
            else:
                shutil.move(str(working), str(output))
                temp_files.remove(working)
        except BaseException:
            cleanup_temp_files(temp_files)
            raise

        logger.info(f"Composite written to {output} ({applied} applied, {len(skipped)} skipped)")
        return CompositeResult(final_path=output, temp_files=temp_files, applied=applied, skipped=skipped)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _reorder(
        self,
        source: Path,
        page_order: Sequence[PageOrderEntry],
        sources: Mapping[str, Path],
        temp_files: list[Path],
    ) -> Path:
        known = {ORIGINAL_SOURCE, *sources}
        unknown = {entry.source for entry in page_order if entry.source not in known}
        if unknown:
            raise CompositeError(f"Unknown page sources: {sorted(unknown)}")

        picks = [
            PagePick(
                page_num=entry.page_num,
                document=None if entry.source == ORIGINAL_SOURCE else Path(sources[entry.source]),
                rotation=entry.rotation,
            )
            for entry in page_order
        ]
        reordered = self._new_temp(temp_files, ".pdf")
        try:
            ok = self.engine.reorder_pages(source, reordered, picks)
        except PdfEngineError as e:
            raise CompositeError(f"Page reorder failed: {e}") from e
        if not ok:
            raise CompositeError("Page reorder failed")
        return reordered

    def _apply(
        self,
        index: int,
        overlay: Overlay,
        working: Path,
        output: Path,
        page_size: Size,
        temp_files: list[Path],
    ) -> None:
        try:
            rect = self._pdf_rect(index, overlay, page_size)
            scale_x, _ = scale_factors(overlay.reference_canvas_size.to_size(), page_size)
            opacity = overlay.opacity / 100

            if overlay.kind.is_text_like:
                ok = self.engine.draw_text(
                    working, output, overlay.page_index, rect, overlay.rotation, opacity,
                    overlay.text, self._text_style(overlay, scale_x),
                )
            elif overlay.kind.is_image_like:
                image_path = self._materialize_image(overlay, temp_files)
                ok = self.engine.draw_image(
                    working, output, overlay.page_index, rect, overlay.rotation, opacity, image_path
                )
            else:
                style = RectangleStyle(
                    fill_color=parse_color(overlay.fill_color),
                    fill_alpha=overlay.fill_alpha,
                    border_fade=overlay.border_fade * scale_x,
                )
                ok = self.engine.draw_rectangle(
                    working, output, overlay.page_index, rect, overlay.rotation, opacity, style
                )
        except (InvalidGeometry, PdfEngineError, ImageProcessingError, ValidationError) as e:
            logger.error(f"Overlay {index} ({overlay.kind.value}) failed: {e}")
            raise OverlayApplyFailed(index, overlay.kind, f"{overlay.kind.label}OverlayFailed: {e}") from e

        if not ok:
            raise OverlayApplyFailed(index, overlay.kind, f"{overlay.kind.label}OverlayFailed: engine reported failure")

    def _pdf_rect(self, index: int, overlay: Overlay, page_size: Size) -> Rect:
        canvas_rect = overlay.canvas_rect()
        if canvas_rect is None:
            canvas_rect = self._implicit_rect(overlay)

        reference = overlay.reference_canvas_size.to_size()
        if not self.clamp_degenerate:
            return to_pdf_space(canvas_rect, reference, page_size)

        rect, clamped = to_pdf_space_clamped(canvas_rect, reference, page_size, self.min_size_pt)
        if clamped:
            logger.warning(
                f"Overlay {index} has degenerate size {canvas_rect.width}x{canvas_rect.height}; "
                f"clamped to {rect.width:g}x{rect.height:g}pt"
            )
        return rect

    @staticmethod
    def _implicit_rect(overlay: Overlay) -> Rect:
        """Box for an overlay stored without a size, in reference-canvas pixels."""
        x, y = overlay.position.x, overlay.position.y
        if overlay.kind.is_text_like:
            width = text_width(
                overlay.text, overlay.font_size, overlay.font_family,
                overlay.bold, overlay.italic, overlay.letter_spacing,
            )
            return Rect(x, y, width, overlay.font_size)
        width, height = DEFAULT_SIZES[overlay.kind]
        return Rect(x, y, width, height)

    @staticmethod
    def _text_style(overlay: Overlay, scale_x: float) -> TextStyle:
        return TextStyle(
            font_size=overlay.font_size * scale_x,
            font_family=overlay.font_family,
            bold=overlay.bold,
            italic=overlay.italic,
            underline=overlay.underline,
            color=parse_color(overlay.text_color),
            bg_color=parse_color(overlay.bg_color),
            highlight_color=parse_color(overlay.highlight_color),
            highlight_alpha=overlay.highlight_alpha,
            letter_spacing=overlay.letter_spacing * scale_x,
        )

    def _materialize_image(self, overlay: Overlay, temp_files: list[Path]) -> Path:
        """Decode, normalize and optionally clean the payload; every file made is recorded."""
        decoded = decode_data_url_to_file(overlay.image_data, self.temp_dir)
        temp_files.append(decoded)

        image_path = normalize_image(decoded, self.temp_dir)
        if image_path != decoded:
            temp_files.append(image_path)

        if overlay.removes_background:
            cleaned = self._new_temp(temp_files, ".png")
            image_path = remove_white_background(image_path, cleaned)
        return image_path

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_temp(self, temp_files: list[Path], suffix: str) -> Path:
        with tempfile.NamedTemporaryFile(dir=self.temp_dir, prefix="compose-", suffix=suffix, delete=False) as f:
            path = Path(f.name)
        temp_files.append(path)
        return path

    @staticmethod
    def _page_size(index: int, overlay: Overlay, page_sizes: list[Size]) -> Size:
        if overlay.page_index >= len(page_sizes):
            raise PagesOutOfRange(
                f"Overlay {index} targets page {overlay.page_index + 1} but the document has {len(page_sizes)} pages"
            )
        return page_sizes[overlay.page_index]

    @staticmethod
    def _check_cancel(cancel_event: Optional[threading.Event], step: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CompositeCancelled(f"Compositing cancelled before {step}")


@contextmanager
def composing(
    source_pdf: Path,
    overlays: Sequence[Overlay],
    output_path: Optional[Path] = None,
    compositor: Optional[Compositor] = None,
    **kwargs,
) -> Iterator[CompositeResult]:
    """Compose and yield the result; temp files are deleted on exit either way.

    Without ``output_path`` the final PDF is itself a temp file and is deleted
    on exit too.
    """
    compositor = compositor or Compositor()
    owned_output: Optional[Path] = None
    if output_path is None:
        compositor.temp_dir.mkdir(parents=True, exist_ok=True)
        owned_output = compositor._new_temp([], ".pdf")
        output_path = owned_output

    result: Optional[CompositeResult] = None
    try:
        result = compositor.compose(source_pdf, overlays, output_path, **kwargs)
        yield result
    finally:
        if result is not None:
            result.cleanup()
        if owned_output is not None:
            cleanup_temp_files([owned_output])
