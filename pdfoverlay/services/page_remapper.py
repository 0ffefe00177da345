"""Page reordering and overlay page-index remapping.

Page numbers here are 1-based positions in the current page list; overlay
``page_index`` values are 0-based. Every structural page change produces one
:class:`PageOrderMap` (old number -> new number) that is applied to the overlay
store exactly once, in the same call that mutates the page list.
"""

from dataclasses import dataclass, replace
from typing import Iterable, Optional

from pdfoverlay.models.overlay import ORIGINAL_SOURCE, PageOrderEntry
from pdfoverlay.services.overlay_store import OverlayStore
from pdfoverlay.utils.logger import get_logger

logger = get_logger("pages")


class PageRemapError(Exception):
    """Raised for invalid page operations."""

    pass


class PageOrderMapConsumed(PageRemapError):
    """Raised when a page order map is applied a second time."""

    pass


class PageOrderMap:
    """Ephemeral old -> new page number mapping, consumed by a single apply."""

    def __init__(self, mapping: dict[int, int]):
        self._mapping = dict(mapping)
        self._applied = False

    def __contains__(self, page_num: int) -> bool:
        return page_num in self._mapping

    def __getitem__(self, page_num: int) -> int:
        return self._mapping[page_num]

    def __len__(self) -> int:
        return len(self._mapping)

    def get(self, page_num: int) -> Optional[int]:
        return self._mapping.get(page_num)

    @property
    def applied(self) -> bool:
        return self._applied

    @property
    def is_identity(self) -> bool:
        return all(old == new for old, new in self._mapping.items())

    def remap_index(self, page_index: int) -> int:
        """New 0-based index for ``page_index``; unmapped pages keep their index."""
        new_num = self._mapping.get(page_index + 1)
        return new_num - 1 if new_num is not None else page_index

    def apply(self, store: OverlayStore) -> int:
        """Rewrite overlay page indices in ``store``. Returns how many changed.

        Raises:
            PageOrderMapConsumed: If this map was already applied.
        """
        if self._applied:
            raise PageOrderMapConsumed("Page order map has already been applied")
        self._applied = True

        changed = 0
        for index, overlay in enumerate(store.overlays):
            new_index = self.remap_index(overlay.page_index)
            if new_index != overlay.page_index:
                store.update(index, page_index=new_index)
                changed += 1
        if changed:
            store.commit()
            logger.debug(f"Remapped {changed} overlay page indices")
        return changed


def build_page_order_map(old_numbers_in_new_order: Iterable[int]) -> PageOrderMap:
    """Map each old page number to its new 1-based position.

    ``[3, 1, 2]`` means the page formerly numbered 3 now comes first.
    """
    return PageOrderMap({old: position for position, old in enumerate(old_numbers_in_new_order, start=1)})


@dataclass(frozen=True)
class PageSlot:
    """One page position in the working document.

    ``source_page`` is 1-based in ``source``; ``rotation`` is the clockwise
    quarter-turn added on export.
    """

    source_page: int
    source: str = ORIGINAL_SOURCE
    rotation: int = 0


class PageList:
    """Ordered page list of the working document plus page selection.

    All mutations settle in one call: the list changes, overlays on removed
    pages are dropped, remaining overlay indices are remapped and the page
    selection follows its pages. The slot list is recorded in the overlay
    store's history, so every page operation is one undo step together with
    the overlay changes it caused.
    """

    def __init__(self, page_count: int, store: OverlayStore):
        if page_count < 1:
            raise PageRemapError("A document needs at least one page")
        self.store = store
        self.source_page_count = page_count
        self.slots = [PageSlot(source_page=n) for n in range(1, page_count + 1)]
        self.selected: set[int] = set()
        self.last_selected: int | None = None
        store.link(self)

    def __len__(self) -> int:
        return len(self.slots)

    @property
    def has_reordering(self) -> bool:
        """True when the working page list differs from the source document."""
        if len(self.slots) != self.source_page_count:
            return True
        return any(
            slot.source != ORIGINAL_SOURCE or slot.source_page != position or slot.rotation
            for position, slot in enumerate(self.slots, start=1)
        )

    def page_order(self) -> list[PageOrderEntry]:
        return [
            PageOrderEntry(page_num=slot.source_page, source=slot.source, rotation=slot.rotation)
            for slot in self.slots
        ]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history_state(self) -> tuple[PageSlot, ...]:
        return tuple(self.slots)

    def restore_history_state(self, state: tuple[PageSlot, ...]) -> None:
        self.slots = list(state)
        self.clear_selection()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, page_num: int, selected: bool = True) -> None:
        self._check(page_num)
        if selected:
            self.selected.add(page_num)
            self.last_selected = page_num
        else:
            self.selected.discard(page_num)
            self.last_selected = min(self.selected) if self.selected else None

    def clear_selection(self) -> None:
        self.selected.clear()
        self.last_selected = None

    @property
    def can_move_up(self) -> bool:
        return bool(self.selected) and min(self.selected) > 1

    @property
    def can_move_down(self) -> bool:
        return bool(self.selected) and max(self.selected) < len(self.slots)

    # ------------------------------------------------------------------
    # Page operations
    # ------------------------------------------------------------------

    def move_up(self, pages: Iterable[int] | None = None) -> PageOrderMap | None:
        """Swap each page with the unselected page above it."""
        chosen = self._resolve(pages)
        if not chosen or min(chosen) == 1:
            return None
        order = list(range(1, len(self.slots) + 1))
        for page_num in sorted(chosen):
            i = page_num - 1
            if order[i - 1] not in chosen:
                order[i - 1], order[i] = order[i], order[i - 1]
        return self._reorder(order, chosen)

    def move_down(self, pages: Iterable[int] | None = None) -> PageOrderMap | None:
        """Swap each page with the unselected page below it."""
        chosen = self._resolve(pages)
        if not chosen or max(chosen) == len(self.slots):
            return None
        order = list(range(1, len(self.slots) + 1))
        for page_num in sorted(chosen, reverse=True):
            i = page_num - 1
            if order[i + 1] not in chosen:
                order[i + 1], order[i] = order[i], order[i + 1]
        return self._reorder(order, chosen)

    def move(self, page_num: int, target: int) -> PageOrderMap | None:
        """Drag ``page_num`` so it lands at position ``target``."""
        self._check(page_num)
        self._check(target)
        if page_num == target:
            return None
        order = list(range(1, len(self.slots) + 1))
        order.insert(target - 1, order.pop(page_num - 1))
        return self._reorder(order, self.selected)

    def delete(self, pages: Iterable[int] | None = None) -> PageOrderMap | None:
        """Remove pages and every overlay placed on them, as one undo step."""
        chosen = self._resolve(pages)
        if not chosen:
            return None
        if len(chosen) >= len(self.slots):
            raise PageRemapError("Cannot delete every page")

        with self.store.batch():
            # Descending so earlier store indices stay valid while removing
            doomed = [i for i, o in enumerate(self.store.overlays) if o.page_index + 1 in chosen]
            for index in reversed(doomed):
                self.store.remove(index)
            if doomed:
                logger.info(f"Removed {len(doomed)} overlays on deleted pages {sorted(chosen)}")

            order = [n for n in range(1, len(self.slots) + 1) if n not in chosen]
            return self._reorder(order, set())

    def rotate(self, pages: Iterable[int] | None = None, degrees: int = 90) -> list[int]:
        """Turn pages clockwise by a multiple of 90 degrees. Returns the pages turned.

        Overlays stay where they are on the canvas; they are placed against
        the page as it is shown, rotation included.
        """
        if degrees % 90:
            raise PageRemapError(f"Page rotation must be a multiple of 90, got {degrees}")
        chosen = sorted(self._resolve(pages))
        if not chosen or not degrees % 360:
            return []

        with self.store.batch():
            for page_num in chosen:
                slot = self.slots[page_num - 1]
                self.slots[page_num - 1] = replace(slot, rotation=(slot.rotation + degrees) % 360)
        logger.debug(f"Rotated pages {chosen} by {degrees} degrees")
        return chosen

    def insert_pages(self, source: str, page_count: int, position: int | None = None) -> PageOrderMap:
        """Insert every page of a merged document so its first page lands at ``position``.

        Without ``position`` the pages are appended. Existing pages at or after
        ``position`` shift down and their overlays follow them.
        """
        if source == ORIGINAL_SOURCE:
            raise PageRemapError("Merged pages need a source other than the original document")
        if page_count < 1:
            raise PageRemapError("A merged document needs at least one page")
        position = len(self.slots) + 1 if position is None else position
        if not 1 <= position <= len(self.slots) + 1:
            raise PageRemapError(f"Insert position {position} out of range 1..{len(self.slots) + 1}")

        inserted = [PageSlot(source_page=n, source=source) for n in range(1, page_count + 1)]
        page_map = PageOrderMap({
            old: old if old < position else old + page_count for old in range(1, len(self.slots) + 1)
        })
        with self.store.batch():
            self.slots[position - 1:position - 1] = inserted
            self._settle(page_map, self.selected)
        logger.info(f"Inserted {page_count} pages from {source} at position {position}")
        return page_map

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reorder(self, order: list[int], carried_selection: Iterable[int]) -> PageOrderMap:
        """Rebuild slots from ``order`` (old numbers in new order) and remap everything."""
        page_map = build_page_order_map(order)
        with self.store.batch():
            self.slots = [self.slots[old - 1] for old in order]
            self._settle(page_map, carried_selection)
        return page_map

    def _settle(self, page_map: PageOrderMap, carried_selection: Iterable[int]) -> None:
        page_map.apply(self.store)
        self.selected = {page_map[n] for n in carried_selection if n in page_map}
        if self.last_selected is not None:
            self.last_selected = page_map.get(self.last_selected)
        if self.last_selected not in self.selected:
            self.last_selected = min(self.selected) if self.selected else None

    def _resolve(self, pages: Iterable[int] | None) -> set[int]:
        chosen = set(self.selected if pages is None else pages)
        for page_num in chosen:
            self._check(page_num)
        return chosen

    def _check(self, page_num: int) -> None:
        if not 1 <= page_num <= len(self.slots):
            raise PageRemapError(f"Page {page_num} out of range 1..{len(self.slots)}")
