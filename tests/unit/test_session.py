"""Unit tests for the editing session."""

import base64
import io
from datetime import date
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from pdfoverlay.core.geometry import Point, Size
from pdfoverlay.models.overlay import OverlayKind
from pdfoverlay.services.session import EditingSession


@pytest.fixture
def session():
    return EditingSession(page_count=3, canvas_size=Size(800, 1000))


def png_data_url(width: int, height: int) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (0, 0, 0)).save(buffer, "PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


class TestAdding:
    """Test cases for adding overlays."""

    def test_add_text_is_point_annotation(self, session):
        index = session.add_text("Approved", Point(100, 100))
        overlay = session.store.get(index)
        assert overlay.kind == OverlayKind.TEXT
        assert overlay.size is None
        assert overlay.font_size == 12.0
        assert overlay.reference_canvas_size.w == 800
        assert session.store.selected_index == index

    def test_add_uses_current_page(self, session):
        session.current_page = 2
        index = session.add_rectangle(Point(0, 0))
        assert session.store.get(index).page_index == 2

    def test_add_rectangle_default_size(self, session):
        overlay = session.store.get(session.add_rectangle(Point(5, 5)))
        assert (overlay.size.width, overlay.size.height) == (200.0, 150.0)

    def test_add_image_keeps_aspect(self, session):
        index = session.add_image(png_data_url(300, 100), Point(0, 0))
        overlay = session.store.get(index)
        assert overlay.kind == OverlayKind.IMAGE
        assert overlay.aspect_ratio == 3.0
        assert (overlay.size.width, overlay.size.height) == (150.0, 50.0)

    def test_add_signature(self, session):
        overlay = session.store.get(session.add_image(png_data_url(10, 10), Point(0, 0), signature=True))
        assert overlay.kind == OverlayKind.SIGNATURE
        assert overlay.removes_background is True

    def test_add_date(self, session):
        overlay = session.store.get(session.add_date(Point(0, 0), value=date(2024, 3, 9)))
        assert overlay.kind == OverlayKind.DATE
        assert overlay.text == "03/09/2024"
        assert overlay.date_format == "MM/DD/YYYY"


class TestDateCycling:
    """Test cases for cycle_date_format."""

    def test_cycles_and_reformats(self, session):
        index = session.add_date(Point(0, 0), value=date(2024, 3, 9))
        assert session.cycle_date_format(index) == "DD/MM/YYYY"
        assert session.store.get(index).text == "09/03/2024"
        session.cycle_date_format(index)
        session.cycle_date_format(index)
        assert session.store.get(index).text == "March 9, 2024"
        session.cycle_date_format(index)
        assert session.store.get(index).text == "03/09/2024"

    def test_unparseable_text_keeps_text(self, session):
        index = session.add_date(Point(0, 0), value=date(2024, 3, 9))
        session.store.update(index, text="sometime soon")
        session.cycle_date_format(index)
        overlay = session.store.get(index)
        assert overlay.text == "sometime soon"
        assert overlay.date_format == "DD/MM/YYYY"

    def test_cycle_is_undoable(self, session):
        index = session.add_date(Point(0, 0), value=date(2024, 3, 9))
        session.cycle_date_format(index)
        session.undo()
        assert session.store.get(index).text == "03/09/2024"

    def test_rejects_non_date(self, session):
        index = session.add_text("hi", Point(0, 0))
        with pytest.raises(ValueError):
            session.cycle_date_format(index)


class TestPages:
    """Test cases for page operations from the session."""

    def test_move_follows_current_page(self, session):
        session.current_page = 0
        session.move_page(1, 3)
        assert session.current_page == 2

    def test_delete_current_page_clamps(self, session):
        session.current_page = 2
        session.delete_pages([3])
        assert session.current_page == 1

    def test_delete_drops_overlays(self, session):
        session.add_text("keep", Point(0, 0), page_index=0)
        session.add_text("drop", Point(0, 0), page_index=1)
        session.add_text("shift", Point(0, 0), page_index=2)
        session.delete_pages([2])
        assert [(o.text, o.page_index) for o in session.store.overlays] == [("keep", 0), ("shift", 1)]

    def test_undo_delete_restores_pages(self, session):
        session.add_text("A", Point(0, 0), page_index=1)
        session.add_text("B", Point(0, 0), page_index=2)
        session.delete_pages([2])
        assert len(session.pages) == 2

        assert session.undo() is True
        assert len(session.pages) == 3
        assert all(o.page_index < len(session.pages) for o in session.store.overlays)
        assert [o.text for o in session.store.overlays] == ["A", "B"]

    def test_undo_insert_clamps_current_page(self, session):
        session.insert_pages("merged:0", 2)
        session.current_page = 4
        session.undo()
        assert len(session.pages) == 3
        assert session.current_page == 2
        assert session.gizmos.current_page == 2

    def test_insert_follows_current_page(self, session):
        session.current_page = 1
        session.insert_pages("merged:0", 2, position=1)
        assert session.current_page == 3

    def test_rotate_pages_reaches_request(self, session):
        session.rotate_pages([2], 90)
        request = session.compose_request()
        assert request.has_reordering is True
        assert [e.rotation for e in request.page_order] == [0, 90, 0]

    async def test_show_page_requests_render(self):
        render = AsyncMock()
        session = EditingSession(page_count=2, canvas_size=Size(800, 1000), render=render)
        await session.show_page(1)
        render.assert_awaited_once_with(1)
        assert session.current_page == 1

    async def test_show_page_out_of_range(self, session):
        with pytest.raises(ValueError):
            await session.show_page(3)


class TestComposeRequest:
    """Test cases for building the compose payload."""

    def test_request_reflects_store_and_pages(self, session):
        session.add_text("Hello", Point(10, 10))
        session.move_page(2, 1)
        request = session.compose_request()

        assert request.has_reordering is True
        assert [e.page_num for e in request.page_order] == [2, 1, 3]
        assert len(request.overlays) == 1
        assert request.overlays[0].page_index == 1

    def test_request_is_detached_from_store(self, session):
        index = session.add_text("Hello", Point(10, 10))
        request = session.compose_request()
        session.store.update(index, text="Changed")
        assert request.overlays[0].text == "Hello"

    def test_wire_form_is_camel_case(self, session):
        session.add_rectangle(Point(1, 2))
        wire = session.compose_request().model_dump(by_alias=True, mode="json")
        assert wire["hasReordering"] is False
        assert wire["overlays"][0]["referenceCanvasSize"] == {"w": 800.0, "h": 1000.0}
        assert "previewImage" not in wire["overlays"][0]
