"""Unit tests for page reordering and overlay page remapping."""

import pytest

from pdfoverlay.models.overlay import Overlay
from pdfoverlay.services.overlay_store import OverlayStore
from pdfoverlay.services.page_remapper import (
    PageList,
    PageOrderMap,
    PageOrderMapConsumed,
    PageRemapError,
    build_page_order_map,
)


def on_page(page_index: int, label: str = "") -> Overlay:
    return Overlay(
        kind="text",
        text=label or f"p{page_index}",
        page_index=page_index,
        position={"x": 0, "y": 0},
        reference_canvas_size={"w": 100, "h": 100},
    )


def store_with_pages(*page_indices: int) -> OverlayStore:
    store = OverlayStore()
    for page_index in page_indices:
        store.add(on_page(page_index))
    return store


def page_indices(store: OverlayStore) -> list[int]:
    return [o.page_index for o in store.overlays]


class TestPageOrderMap:
    """Test cases for PageOrderMap."""

    def test_remap_index(self):
        page_map = PageOrderMap({1: 3, 2: 1, 3: 2})
        assert page_map.remap_index(0) == 2
        assert page_map.remap_index(1) == 0
        assert page_map.remap_index(7) == 7

    def test_build_from_new_order(self):
        page_map = build_page_order_map([2, 3, 1])
        assert page_map[1] == 3
        assert page_map[2] == 1
        assert page_map[3] == 2
        assert not page_map.is_identity
        assert build_page_order_map([1, 2, 3]).is_identity

    def test_apply_updates_store(self):
        store = store_with_pages(0, 1, 2)
        changed = PageOrderMap({1: 3, 2: 1, 3: 2}).apply(store)
        assert changed == 3
        assert page_indices(store) == [2, 0, 1]

    def test_apply_is_single_use(self):
        store = store_with_pages(0)
        page_map = PageOrderMap({1: 2, 2: 1})
        page_map.apply(store)
        with pytest.raises(PageOrderMapConsumed):
            page_map.apply(store)
        assert page_indices(store) == [1]

    def test_apply_is_one_undo_step(self):
        store = store_with_pages(0, 1)
        PageOrderMap({1: 2, 2: 1}).apply(store)
        store.undo()
        assert page_indices(store) == [0, 1]


class TestPageList:
    """Test cases for PageList operations."""

    def test_initial_state(self):
        pages = PageList(3, OverlayStore())
        assert [e.page_num for e in pages.page_order()] == [1, 2, 3]
        assert pages.has_reordering is False

    def test_move_up(self):
        store = store_with_pages(0, 1, 2)
        pages = PageList(3, store)
        pages.select(2)
        page_map = pages.move_up()

        assert page_map is not None and page_map.applied
        assert [e.page_num for e in pages.page_order()] == [2, 1, 3]
        assert page_indices(store) == [1, 0, 2]
        assert pages.selected == {1}
        assert pages.has_reordering is True

    def test_move_up_blocked_at_top(self):
        pages = PageList(3, store_with_pages(0))
        pages.select(1)
        assert pages.can_move_up is False
        assert pages.move_up() is None

    def test_move_down_keeps_block_together(self):
        store = store_with_pages(0, 1, 2, 3)
        pages = PageList(4, store)
        pages.select(1)
        pages.select(2)
        pages.move_down()
        assert [e.page_num for e in pages.page_order()] == [3, 1, 2, 4]
        assert pages.selected == {2, 3}
        assert page_indices(store) == [1, 2, 0, 3]

    def test_drag_move(self):
        store = store_with_pages(0, 1, 2)
        pages = PageList(3, store)
        pages.move(3, 1)
        assert [e.page_num for e in pages.page_order()] == [3, 1, 2]
        assert page_indices(store) == [1, 2, 0]

    def test_move_to_same_place_is_noop(self):
        pages = PageList(3, OverlayStore())
        assert pages.move(2, 2) is None

    def test_delete_removes_overlays_on_deleted_pages(self):
        store = store_with_pages(0, 1, 2, 1)
        pages = PageList(3, store)
        pages.delete([2])
        assert [e.page_num for e in pages.page_order()] == [1, 3]
        assert page_indices(store) == [0, 1]
        assert [o.text for o in store.overlays] == ["p0", "p2"]
        assert pages.has_reordering is True

    def test_delete_last_page_is_reordering(self):
        pages = PageList(3, OverlayStore())
        pages.delete([3])
        assert [e.page_num for e in pages.page_order()] == [1, 2]
        assert pages.has_reordering is True

    def test_cannot_delete_every_page(self):
        pages = PageList(2, OverlayStore())
        with pytest.raises(PageRemapError):
            pages.delete([1, 2])

    def test_out_of_range_page(self):
        pages = PageList(2, OverlayStore())
        with pytest.raises(PageRemapError):
            pages.select(3)
        with pytest.raises(PageRemapError):
            pages.move(1, 5)

    def test_successive_reorders_track_source_pages(self):
        pages = PageList(3, OverlayStore())
        pages.move(3, 1)
        pages.move(3, 1)
        assert [e.page_num for e in pages.page_order()] == [2, 3, 1]


class TestPageHistory:
    """Page operations are single undo steps that restore pages and overlays together."""

    def test_delete_then_undo_keeps_overlays_in_range(self):
        store = OverlayStore()
        pages = PageList(3, store)
        store.add(on_page(1, "A"))
        store.add(on_page(2, "B"))

        pages.delete([2])
        assert store.undo() is True

        assert len(pages) == 3
        assert all(o.page_index < len(pages) for o in store.overlays)
        assert [(o.text, o.page_index) for o in store.overlays] == [("A", 1), ("B", 2)]

    def test_delete_is_one_undo_step(self):
        store = OverlayStore()
        pages = PageList(3, store)
        store.add(on_page(0, "keep"))
        store.add(on_page(1, "drop"))
        store.add(on_page(1, "drop too"))
        store.add(on_page(2, "moves"))

        pages.delete([2])
        assert [o.text for o in store.overlays] == ["keep", "moves"]
        store.undo()

        assert [o.text for o in store.overlays] == ["keep", "drop", "drop too", "moves"]
        assert [e.page_num for e in pages.page_order()] == [1, 2, 3]
        # The state before the delete is the last add, one more undo removes it
        store.undo()
        assert [o.text for o in store.overlays] == ["keep", "drop", "drop too"]

    def test_redo_reapplies_delete(self):
        store = OverlayStore()
        pages = PageList(3, store)
        store.add(on_page(2, "B"))
        pages.delete([1])
        store.undo()
        assert store.redo() is True
        assert [e.page_num for e in pages.page_order()] == [2, 3]
        assert page_indices(store) == [1]

    def test_move_without_overlays_is_undoable(self):
        store = OverlayStore()
        pages = PageList(3, store)
        pages.move(3, 1)
        assert store.can_undo
        store.undo()
        assert [e.page_num for e in pages.page_order()] == [1, 2, 3]
        assert pages.has_reordering is False

    def test_undo_clears_page_selection(self):
        store = OverlayStore()
        pages = PageList(3, store)
        pages.select(3)
        pages.move_up()
        store.undo()
        assert pages.selected == set()
        assert pages.last_selected is None

    def test_selection_alone_is_not_history(self):
        store = OverlayStore()
        pages = PageList(3, store)
        pages.select(2)
        assert store.commit() is False
        assert store.can_undo is False


class TestRotate:
    """Test cases for PageList.rotate."""

    def test_rotate_selected_pages(self):
        pages = PageList(3, OverlayStore())
        pages.select(2)
        assert pages.rotate(degrees=90) == [2]
        assert [e.rotation for e in pages.page_order()] == [0, 90, 0]
        assert pages.has_reordering is True

    def test_rotation_wraps(self):
        pages = PageList(2, OverlayStore())
        pages.rotate([1], 270)
        pages.rotate([1], 180)
        assert pages.page_order()[0].rotation == 90

    def test_counter_clockwise(self):
        pages = PageList(1, OverlayStore())
        pages.rotate([1], -90)
        assert pages.page_order()[0].rotation == 270

    def test_rotation_follows_page_on_move(self):
        pages = PageList(3, OverlayStore())
        pages.rotate([3], 90)
        pages.move(3, 1)
        assert [(e.page_num, e.rotation) for e in pages.page_order()] == [(3, 90), (1, 0), (2, 0)]

    def test_rotate_is_undoable(self):
        store = OverlayStore()
        pages = PageList(2, store)
        pages.rotate([1, 2], 90)
        store.undo()
        assert [e.rotation for e in pages.page_order()] == [0, 0]
        assert pages.has_reordering is False

    def test_full_turn_is_noop(self):
        store = OverlayStore()
        pages = PageList(2, store)
        assert pages.rotate([1], 360) == []
        assert store.can_undo is False

    def test_rejects_partial_turn(self):
        pages = PageList(2, OverlayStore())
        with pytest.raises(PageRemapError, match="multiple of 90"):
            pages.rotate([1], 45)

    def test_overlays_keep_their_page(self):
        store = store_with_pages(0, 1)
        pages = PageList(2, store)
        pages.rotate([1], 90)
        assert page_indices(store) == [0, 1]


class TestInsertPages:
    """Test cases for inserting pages of a merged document."""

    def test_append(self):
        pages = PageList(2, OverlayStore())
        pages.insert_pages("merged:0", 2)
        assert [(e.source, e.page_num) for e in pages.page_order()] == [
            ("original", 1), ("original", 2), ("merged:0", 1), ("merged:0", 2),
        ]
        assert pages.has_reordering is True

    def test_insert_shifts_later_overlays(self):
        store = store_with_pages(0, 1, 2)
        pages = PageList(3, store)
        pages.select(3)
        page_map = pages.insert_pages("merged:0", 2, position=2)

        assert page_map.applied
        assert [(e.source, e.page_num) for e in pages.page_order()] == [
            ("original", 1), ("merged:0", 1), ("merged:0", 2), ("original", 2), ("original", 3),
        ]
        assert page_indices(store) == [0, 3, 4]
        assert pages.selected == {5}

    def test_merged_pages_can_be_moved_and_deleted(self):
        pages = PageList(2, OverlayStore())
        pages.insert_pages("merged:0", 1)
        pages.move(3, 1)
        pages.delete([3])
        assert [(e.source, e.page_num) for e in pages.page_order()] == [("merged:0", 1), ("original", 1)]

    def test_insert_is_one_undo_step(self):
        store = store_with_pages(1)
        pages = PageList(2, store)
        pages.insert_pages("merged:0", 3, position=1)
        assert page_indices(store) == [4]
        store.undo()
        assert len(pages) == 2
        assert page_indices(store) == [1]

    def test_invalid_insert(self):
        pages = PageList(2, OverlayStore())
        with pytest.raises(PageRemapError):
            pages.insert_pages("original", 1)
        with pytest.raises(PageRemapError):
            pages.insert_pages("merged:0", 0)
        with pytest.raises(PageRemapError):
            pages.insert_pages("merged:0", 1, position=4)
