"""Unit tests for the overlay store and its undo/redo history."""

from unittest.mock import MagicMock

import pytest

from pdfoverlay.models.overlay import CanvasPoint, Overlay
from pdfoverlay.services.overlay_store import OverlayStore, OverlayStoreError


def text_overlay(label: str = "A", page_index: int = 0) -> Overlay:
    return Overlay(
        kind="text",
        text=label,
        page_index=page_index,
        position=CanvasPoint(x=10, y=10),
        reference_canvas_size={"w": 800, "h": 1000},
    )


def texts(store: OverlayStore) -> list[str]:
    return [o.text for o in store.overlays]


class TestOverlayStore:
    """Test cases for OverlayStore."""

    def test_add_and_get(self):
        store = OverlayStore()
        assert store.add(text_overlay("A")) == 0
        assert store.add(text_overlay("B")) == 1
        assert store.get(1).text == "B"
        assert store.get(5) is None
        assert len(store) == 2

    def test_undo_redo_laws(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        store.add(text_overlay("B"))

        assert store.undo() is True
        assert texts(store) == ["A"]
        assert store.redo() is True
        assert texts(store) == ["A", "B"]

        assert store.undo() is True
        assert store.undo() is True
        assert texts(store) == []
        assert store.undo() is False
        assert texts(store) == []

    def test_redo_at_boundary_is_noop(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        assert store.redo() is False
        assert texts(store) == ["A"]

    def test_structural_mutation_after_undo_discards_redo(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        store.add(text_overlay("B"))
        store.undo()
        store.add(text_overlay("C"))
        assert store.can_redo is False
        assert store.redo() is False
        assert texts(store) == ["A", "C"]

    def test_undo_clears_selection(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        store.add(text_overlay("B"))
        store.select(0)
        store.undo()
        assert store.selected_index is None

    def test_update_does_not_push_history(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        store.update(0, position=CanvasPoint(x=50, y=60))
        store.update(0, position=CanvasPoint(x=70, y=80))
        assert store.commit() is True

        store.undo()
        assert store.get(0).position.x == 10
        store.redo()
        assert store.get(0).position.x == 70

    def test_commit_without_change_is_noop(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        assert store.commit() is False
        store.undo()
        assert texts(store) == []

    def test_snapshots_are_independent(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        store.update(0, text="changed")
        store.commit()
        store.undo()
        assert store.get(0).text == "A"
        store.get(0).text = "mutated after undo"
        store.redo()
        store.undo()
        assert store.get(0).text == "A"

    def test_remove_selected_clears_selection(self):
        store = OverlayStore()
        for label in "ABC":
            store.add(text_overlay(label))
        store.select(1)
        store.remove(1)
        assert store.selected_index is None
        assert texts(store) == ["A", "C"]

    def test_remove_earlier_decrements_selection(self):
        store = OverlayStore()
        for label in "ABC":
            store.add(text_overlay(label))
        store.select(2)
        store.remove(0)
        assert store.selected_index == 1
        assert store.selected.text == "C"

    def test_remove_later_keeps_selection(self):
        store = OverlayStore()
        for label in "ABC":
            store.add(text_overlay(label))
        store.select(0)
        store.remove(2)
        assert store.selected_index == 0

    def test_missing_index_raises(self):
        store = OverlayStore()
        with pytest.raises(OverlayStoreError):
            store.remove(0)
        with pytest.raises(OverlayStoreError):
            store.update(3, text="x")
        with pytest.raises(OverlayStoreError):
            store.select(0)

    def test_clear(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        store.select(0)
        store.clear()
        assert len(store) == 0
        assert store.selected_index is None
        store.undo()
        assert texts(store) == ["A"]

    def test_history_limit_evicts_oldest(self):
        store = OverlayStore(history_limit=3)
        for label in "ABCDE":
            store.add(text_overlay(label))
        undone = 0
        while store.undo():
            undone += 1
        assert undone == 2
        assert texts(store) == ["A", "B", "C"]

    def test_for_page(self):
        store = OverlayStore()
        store.add(text_overlay("A", page_index=0))
        store.add(text_overlay("B", page_index=1))
        store.add(text_overlay("C", page_index=0))
        assert [i for i, _ in store.for_page(0)] == [0, 2]

    def test_to_wire_uses_aliases_and_skips_preview(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        store.get(0).preview_image = b"png"
        wire = store.to_wire()
        assert wire[0]["pageIndex"] == 0
        assert "previewImage" not in wire[0]

    def test_subscribe_and_unsubscribe(self):
        store = OverlayStore()
        listener = MagicMock()
        unsubscribe = store.subscribe(listener)
        store.add(text_overlay("A"))
        listener.assert_called_once_with("add", 0)
        unsubscribe()
        store.add(text_overlay("B"))
        listener.assert_called_once()

    def test_failing_listener_does_not_break_mutation(self):
        store = OverlayStore()
        store.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        store.add(text_overlay("A"))
        assert len(store) == 1


class Pages:
    """Minimal history companion holding a list of page labels."""

    def __init__(self, *labels: str):
        self.labels = list(labels)

    def history_state(self):
        return tuple(self.labels)

    def restore_history_state(self, state):
        self.labels = list(state)


class TestBatch:
    """Test cases for batched mutations and linked history state."""

    def test_batch_records_one_entry(self):
        store = OverlayStore()
        store.add(text_overlay("A"))
        with store.batch():
            store.add(text_overlay("B"))
            store.add(text_overlay("C"))
            store.remove(0)
            assert store.in_batch
        assert texts(store) == ["B", "C"]

        store.undo()
        assert texts(store) == ["A"]

    def test_nested_batch_commits_once(self):
        store = OverlayStore()
        with store.batch():
            store.add(text_overlay("A"))
            with store.batch():
                store.add(text_overlay("B"))
            assert store.can_undo is False
        store.undo()
        assert texts(store) == []

    def test_empty_batch_adds_nothing(self):
        store = OverlayStore()
        with store.batch():
            pass
        assert store.can_undo is False

    def test_batch_commits_when_body_raises(self):
        store = OverlayStore()
        with pytest.raises(RuntimeError):
            with store.batch():
                store.add(text_overlay("A"))
                raise RuntimeError("boom")
        assert not store.in_batch
        assert store.can_undo

    def test_linked_state_is_restored(self):
        store = OverlayStore()
        pages = Pages("1", "2", "3")
        store.link(pages)
        with store.batch():
            pages.labels.remove("2")
            store.add(text_overlay("A"))

        store.undo()
        assert pages.labels == ["1", "2", "3"]
        assert texts(store) == []
        store.redo()
        assert pages.labels == ["1", "3"]
        assert texts(store) == ["A"]

    def test_linked_state_change_alone_commits(self):
        store = OverlayStore()
        pages = Pages("1", "2")
        store.link(pages)
        pages.labels.reverse()
        assert store.commit() is True
        store.undo()
        assert pages.labels == ["1", "2"]
