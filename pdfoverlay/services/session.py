"""Editing session: the per-document owner of overlays, pages and gizmos."""

from datetime import date
from typing import Optional

from pdfoverlay.config import settings
from pdfoverlay.core.dates import DEFAULT_DATE_FORMAT, format_date, next_format, reformat
from pdfoverlay.core.geometry import Point, Size
from pdfoverlay.models.overlay import (
    DEFAULT_SIZES,
    CanvasPoint,
    CanvasSize,
    ComposeRequest,
    Overlay,
    OverlayKind,
    OverlaySize,
)
from pdfoverlay.services.gizmo import ConfirmCallback, GizmoController
from pdfoverlay.services.image_processing import image_aspect_ratio
from pdfoverlay.services.overlay_store import OverlayStore, OverlayStoreError
from pdfoverlay.services.page_remapper import PageList, PageOrderMap
from pdfoverlay.services.render_scheduler import RenderFunc, RenderScheduler
from pdfoverlay.utils.logger import get_logger

logger = get_logger("session")


class EditingSession:
    """One open document in the editor.

    Owns the overlay store, the page list, the gizmo controller for the canvas
    and the preview render scheduler. Components get the session (or the parts
    they need) passed in; nothing here is global.
    """

    def __init__(
        self,
        page_count: int,
        canvas_size: Size,
        render: Optional[RenderFunc] = None,
        confirm: Optional[ConfirmCallback] = None,
        history_limit: Optional[int] = None,
    ):
        self.store = OverlayStore(history_limit=history_limit)
        self.pages = PageList(page_count, self.store)
        self.gizmos = GizmoController(self.store, canvas_size, confirm=confirm)
        self.renderer = RenderScheduler(render) if render is not None else None
        self.current_page = 0

    @property
    def canvas_size(self) -> Size:
        return self.gizmos.canvas_size

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    async def show_page(self, page_index: int) -> None:
        if not 0 <= page_index < len(self.pages):
            raise ValueError(f"Page index {page_index} out of range")
        self.current_page = page_index
        self.gizmos.show_page(page_index)
        if self.renderer is not None:
            await self.renderer.request(page_index)

    def set_canvas_size(self, canvas_size: Size) -> None:
        """Zoom or window resize. Stored overlay geometry is untouched."""
        self.gizmos.set_canvas_size(canvas_size)

    # ------------------------------------------------------------------
    # Adding overlays
    # ------------------------------------------------------------------

    def _add(
        self,
        kind: OverlayKind,
        position: Point,
        size: Optional[tuple[float, float]],
        page_index: Optional[int] = None,
        **fields,
    ) -> int:
        canvas = self.canvas_size
        overlay = Overlay(
            kind=kind,
            page_index=self.current_page if page_index is None else page_index,
            position=CanvasPoint(x=position.x, y=position.y),
            reference_canvas_size=CanvasSize(w=canvas.width, h=canvas.height),
            size=OverlaySize(width=size[0], height=size[1]) if size else None,
            **fields,
        )
        index = self.store.add(overlay)
        self.store.select(index)
        return index

    def add_text(
        self,
        text: str,
        position: Point,
        size: Optional[tuple[float, float]] = None,
        page_index: Optional[int] = None,
        **style,
    ) -> int:
        """Add a text annotation. Without ``size`` it is a point annotation."""
        style.setdefault("font_size", settings.default_font_size)
        style.setdefault("font_family", settings.default_font_family)
        return self._add(OverlayKind.TEXT, position, size, page_index, text=text, **style)

    def add_date(
        self,
        position: Point,
        value: Optional[date] = None,
        date_format: str = DEFAULT_DATE_FORMAT,
        page_index: Optional[int] = None,
        **style,
    ) -> int:
        style.setdefault("font_size", settings.default_font_size)
        style.setdefault("font_family", settings.default_font_family)
        text = format_date(value or date.today(), date_format)
        return self._add(
            OverlayKind.DATE, position, None, page_index, text=text, date_format=date_format, **style
        )

    def add_image(
        self,
        image_data: str,
        position: Point,
        signature: bool = False,
        page_index: Optional[int] = None,
        **fields,
    ) -> int:
        """Add an image or signature sized to the default width at its own aspect ratio."""
        kind = OverlayKind.SIGNATURE if signature else OverlayKind.IMAGE
        aspect = fields.pop("aspect_ratio", None) or image_aspect_ratio(image_data)
        width, height = DEFAULT_SIZES[kind]
        if aspect:
            height = width / aspect
        return self._add(
            kind, position, (width, height), page_index, image_data=image_data, aspect_ratio=aspect, **fields
        )

    def add_rectangle(self, position: Point, page_index: Optional[int] = None, **fields) -> int:
        return self._add(
            OverlayKind.RECTANGLE, position, DEFAULT_SIZES[OverlayKind.RECTANGLE], page_index, **fields
        )

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def cycle_date_format(self, index: int) -> str:
        """Move a date overlay to the next format, re-rendering its text when it parses."""
        overlay = self.store.get(index)
        if overlay is None:
            raise OverlayStoreError(f"No overlay at index {index}")
        if overlay.kind != OverlayKind.DATE:
            raise ValueError(f"Overlay {index} is a {overlay.kind.value}, not a date")

        current = overlay.date_format or DEFAULT_DATE_FORMAT
        new_format = next_format(current)
        fields = {"date_format": new_format}
        new_text = reformat(overlay.text, current, new_format)
        if new_text is not None:
            fields["text"] = new_text
        else:
            logger.debug(f"Date text {overlay.text!r} does not parse as {current}; keeping it")
        self.store.update(index, **fields)
        self.store.commit()
        return new_format

    def undo(self) -> bool:
        return self._after_history(self.store.undo())

    def redo(self) -> bool:
        return self._after_history(self.store.redo())

    def _after_history(self, moved: bool) -> bool:
        """Undo/redo can restore a shorter page list; keep the view on a real page."""
        if moved:
            self.current_page = min(self.current_page, len(self.pages) - 1)
            self.gizmos.show_page(self.current_page)
        return moved

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def move_pages_up(self, pages=None) -> Optional[PageOrderMap]:
        return self._follow(self.pages.move_up(pages))

    def move_pages_down(self, pages=None) -> Optional[PageOrderMap]:
        return self._follow(self.pages.move_down(pages))

    def move_page(self, page_num: int, target: int) -> Optional[PageOrderMap]:
        return self._follow(self.pages.move(page_num, target))

    def delete_pages(self, pages=None) -> Optional[PageOrderMap]:
        return self._follow(self.pages.delete(pages))

    def rotate_pages(self, pages=None, degrees: int = 90) -> list[int]:
        return self.pages.rotate(pages, degrees)

    def insert_pages(self, source: str, page_count: int, position: Optional[int] = None) -> PageOrderMap:
        """Splice in a merged document's pages, referenced on export by ``source``."""
        return self._follow(self.pages.insert_pages(source, page_count, position))

    def _follow(self, page_map: Optional[PageOrderMap]) -> Optional[PageOrderMap]:
        """Keep the visible page on the same physical page after a reorder."""
        if page_map is None:
            return None
        new_num = page_map.get(self.current_page + 1)
        if new_num is None:
            new_num = min(self.current_page + 1, len(self.pages))
        self.current_page = new_num - 1
        self.gizmos.show_page(self.current_page)
        return page_map

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def compose_request(self) -> ComposeRequest:
        """Wire payload for the compose endpoint, built from the store."""
        return ComposeRequest(
            overlays=[overlay.snapshot() for overlay in self.store.overlays],
            page_order=self.pages.page_order(),
            has_reordering=self.pages.has_reordering,
        )

    def close(self) -> None:
        self.gizmos.close()
