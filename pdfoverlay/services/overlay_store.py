"""Ordered overlay collection with a selection cursor and bounded undo/redo history."""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol

from pdfoverlay.config import settings
from pdfoverlay.models.overlay import Overlay
from pdfoverlay.utils.logger import get_logger

logger = get_logger("store")

ChangeListener = Callable[[str, int | None], None]


class OverlayStoreError(Exception):
    """Raised when a store operation references a missing overlay."""

    pass


class HistoryCompanion(Protocol):
    """State recorded next to every overlay snapshot (the page list, for one)."""

    def history_state(self) -> Any:
        ...

    def restore_history_state(self, state: Any) -> None:
        ...


@dataclass(frozen=True)
class Snapshot:
    overlays: tuple[Overlay, ...]
    companion: Any = None


def _copy_overlays(overlays) -> list[Overlay]:
    return [overlay.snapshot() for overlay in overlays]


def _dump(overlays) -> list[dict[str, Any]]:
    return [o.model_dump() for o in overlays]


class OverlayStore:
    """Authoritative overlay list for one editing session.

    Structural mutations (add/remove/clear) push a snapshot. In-place edits via
    :meth:`update` do not; a caller performing a continuous edit calls
    :meth:`commit` once when the gesture ends. Mutations made inside
    :meth:`batch` are recorded as a single snapshot when the batch ends.
    """

    def __init__(self, history_limit: int | None = None):
        self.history_limit = history_limit or settings.history_limit
        self._overlays: list[Overlay] = []
        self._selected: int | None = None
        self._history: list[Snapshot] = [Snapshot(overlays=())]
        self._cursor = 0
        self._batch_depth = 0
        self._companion: HistoryCompanion | None = None
        self._listeners: list[ChangeListener] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._overlays)

    @property
    def overlays(self) -> tuple[Overlay, ...]:
        return tuple(self._overlays)

    @property
    def selected_index(self) -> int | None:
        return self._selected

    @property
    def selected(self) -> Overlay | None:
        return self.get(self._selected) if self._selected is not None else None

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._history) - 1

    @property
    def in_batch(self) -> bool:
        return self._batch_depth > 0

    def get(self, index: int) -> Overlay | None:
        if 0 <= index < len(self._overlays):
            return self._overlays[index]
        return None

    def for_page(self, page_index: int) -> list[tuple[int, Overlay]]:
        """Overlays targeting ``page_index`` with their store indices, in z-order."""
        return [(i, o) for i, o in enumerate(self._overlays) if o.page_index == page_index]

    def to_wire(self) -> list[dict[str, Any]]:
        """Serializable overlay list for export (transient fields excluded)."""
        return [o.model_dump(by_alias=True, mode="json") for o in self._overlays]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, overlay: Overlay) -> int:
        self._overlays.append(overlay)
        index = len(self._overlays) - 1
        self._push()
        logger.debug(f"Added {overlay.kind.value} overlay at index {index}")
        self._notify("add", index)
        return index

    def update(self, index: int, **fields: Any) -> Overlay:
        """Edit fields in place. Does not push a snapshot."""
        overlay = self.get(index)
        if overlay is None:
            raise OverlayStoreError(f"No overlay at index {index}")
        for name, value in fields.items():
            setattr(overlay, name, value)
        self._notify("update", index)
        return overlay

    def remove(self, index: int) -> Overlay:
        overlay = self.get(index)
        if overlay is None:
            raise OverlayStoreError(f"No overlay at index {index}")
        del self._overlays[index]

        if self._selected is not None:
            if self._selected == index:
                self._selected = None
            elif self._selected > index:
                self._selected -= 1

        self._push()
        logger.debug(f"Removed {overlay.kind.value} overlay at index {index}")
        self._notify("remove", index)
        return overlay

    def clear(self) -> None:
        self._overlays = []
        self._selected = None
        self._push()
        self._notify("clear", None)

    def select(self, index: int | None) -> None:
        """Select one overlay (deselecting any other), or clear with None."""
        if index is not None and self.get(index) is None:
            raise OverlayStoreError(f"No overlay at index {index}")
        if index == self._selected:
            return
        self._selected = index
        self._notify("select", index)

    def commit(self) -> bool:
        """Record in-place edits as one history entry. No-op if nothing changed.

        Inside a batch the entry is deferred to the end of the batch.
        """
        if self.in_batch:
            return False
        if self._matches(self._history[self._cursor]):
            return False
        self._push()
        return True

    @contextmanager
    def batch(self) -> Iterator["OverlayStore"]:
        """Group mutations into one history entry, recorded when the outermost batch exits."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if not self._batch_depth:
                self.commit()

    def undo(self) -> bool:
        if not self.can_undo:
            return False
        self._cursor -= 1
        self._restore()
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        self._cursor += 1
        self._restore()
        return True

    def link(self, companion: HistoryCompanion) -> None:
        """Record ``companion``'s state with every snapshot and restore it on undo/redo.

        Entries recorded before the link are re-based on the companion's present state.
        """
        self._companion = companion
        state = companion.history_state()
        self._history = [Snapshot(entry.overlays, state) for entry in self._history]

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener ``(event, index)``. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _take(self) -> Snapshot:
        companion = self._companion.history_state() if self._companion is not None else None
        return Snapshot(tuple(_copy_overlays(self._overlays)), companion)

    def _matches(self, snapshot: Snapshot) -> bool:
        if _dump(snapshot.overlays) != _dump(self._overlays):
            return False
        if self._companion is None:
            return True
        return snapshot.companion == self._companion.history_state()

    def _push(self) -> None:
        if self.in_batch:
            return
        # A new mutation after undo discards the redo branch
        del self._history[self._cursor + 1 :]
        self._history.append(self._take())
        if len(self._history) > self.history_limit:
            del self._history[0]
        self._cursor = len(self._history) - 1

    def _restore(self) -> None:
        snapshot = self._history[self._cursor]
        self._overlays = _copy_overlays(snapshot.overlays)
        self._selected = None
        if self._companion is not None and snapshot.companion is not None:
            self._companion.restore_history_state(snapshot.companion)
        self._notify("restore", None)

    def _notify(self, event: str, index: int | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, index)
            except Exception as e:
                logger.error(f"Overlay store listener failed on {event}: {e}", exc_info=True)
