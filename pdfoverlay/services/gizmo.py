"""Interactive gizmos: drag, resize, rotate and keyboard handling for overlays.

Each overlay on the visible page gets a :class:`Gizmo` with its own gesture
state machine (idle -> dragging | resizing | rotating -> idle). The
:class:`GizmoController` owns the gizmos for one canvas, routes pointer and key
events to them, and makes sure at most one gizmo is in a gesture at a time.

Geometry is handled in *display* space (the current canvas pixels). Every
explicit edit writes the overlay back re-stamped with the current canvas size
as its reference size; merely zooming never touches stored geometry.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from pdfoverlay.config import settings
from pdfoverlay.core.geometry import (
    ChromeInsets,
    InvalidGeometry,
    Point,
    Rect,
    Size,
    chrome_rect,
    normalize_rotation,
    rotate_point,
    to_display_space,
    unwrap_rotation,
)
from pdfoverlay.models.overlay import DEFAULT_SIZES, CanvasPoint, CanvasSize, Overlay, OverlaySize
from pdfoverlay.services.overlay_store import OverlayStore
from pdfoverlay.utils.logger import get_logger

logger = get_logger("gizmo")


class GestureState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    RESIZING = "resizing"
    ROTATING = "rotating"


class Handle(str, Enum):
    N = "n"
    S = "s"
    E = "e"
    W = "w"
    NE = "ne"
    NW = "nw"
    SE = "se"
    SW = "sw"

    @property
    def is_corner(self) -> bool:
        return len(self.value) == 2

    @property
    def moves_west_edge(self) -> bool:
        return "w" in self.value

    @property
    def moves_north_edge(self) -> bool:
        return "n" in self.value


# Handles the gizmo actually draws: aspect-locked bottom corners and free edges
ACTIVE_HANDLES = (Handle.SE, Handle.SW, Handle.N, Handle.S, Handle.E, Handle.W)


class HitTarget(str, Enum):
    BODY = "body"
    RESIZE = "resize"
    ROTATE = "rotate"
    DELETE = "delete"


@dataclass(frozen=True)
class Hit:
    index: int
    target: HitTarget
    handle: Handle | None = None


@dataclass(frozen=True)
class GizmoView:
    """What the canvas needs to draw one gizmo."""

    index: int
    content: Rect
    frame: Rect
    rotation: float
    font_size: float | None
    opacity: int
    selected: bool
    state: GestureState


@dataclass
class _Gesture:
    state: GestureState
    start_pointer: Point
    start_rect: Rect
    start_font_size: float | None
    handle: Handle | None = None
    aspect_ratio: float = 1.0
    pivot: Point | None = None
    angle_offset: float = 0.0
    last_rotation: float = 0.0


ConfirmCallback = Callable[[str, str], bool]
RenderListener = Callable[[dict[int, GizmoView]], None]


def _pointer_angle(pointer: Point, pivot: Point) -> float:
    return math.degrees(math.atan2(pointer.y - pivot.y, pointer.x - pivot.x))


class Gizmo:
    """Gesture state machine bound to one overlay index."""

    def __init__(self, controller: "GizmoController", index: int):
        self.controller = controller
        self.index = index
        self._gesture: _Gesture | None = None

    @property
    def state(self) -> GestureState:
        return self._gesture.state if self._gesture else GestureState.IDLE

    @property
    def overlay(self) -> Overlay | None:
        return self.controller.store.get(self.index)

    def begin(self, target: HitTarget, pointer: Point, handle: Handle | None = None) -> bool:
        """Start a gesture. Returns False if the overlay no longer exists."""
        overlay = self.overlay
        if overlay is None:
            return False

        rect = self.controller.display_rect(overlay)
        scale_x = self.controller.canvas_size.width / overlay.reference_canvas_size.w
        font_size = overlay.font_size * scale_x if overlay.kind.is_text_like else None
        gesture = _Gesture(
            state=GestureState.DRAGGING,
            start_pointer=pointer,
            start_rect=rect,
            start_font_size=font_size,
        )

        if target == HitTarget.RESIZE:
            if handle is None:
                raise ValueError("resize gesture requires a handle")
            gesture.state = GestureState.RESIZING
            gesture.handle = handle
            gesture.aspect_ratio = overlay.aspect_ratio or (rect.width / rect.height)
        elif target == HitTarget.ROTATE:
            gesture.state = GestureState.ROTATING
            gesture.pivot = rect.center
            # Offset keeps rotation continuous instead of snapping to the pointer vector
            gesture.angle_offset = _pointer_angle(pointer, rect.center) - overlay.rotation
            gesture.last_rotation = overlay.rotation

        self._gesture = gesture
        return True

    def move(self, pointer: Point, coarse: bool = False) -> None:
        gesture = self._gesture
        if gesture is None:
            return
        if gesture.state == GestureState.DRAGGING:
            self._drag(gesture, pointer)
        elif gesture.state == GestureState.RESIZING:
            self._resize(gesture, pointer)
        elif gesture.state == GestureState.ROTATING:
            self._rotate(gesture, pointer, coarse)

    def end(self) -> bool:
        """Finish the gesture and commit it as one history entry."""
        if self._gesture is None:
            return False
        self._gesture = None
        return self.controller.store.commit()

    def _drag(self, gesture: _Gesture, pointer: Point) -> None:
        dx = pointer.x - gesture.start_pointer.x
        dy = pointer.y - gesture.start_pointer.y
        self.controller.write_geometry(
            self.index,
            gesture.start_rect.translated(dx, dy),
            font_size=gesture.start_font_size,
            keep_size=self.overlay.size is not None,
        )

    def _resize(self, gesture: _Gesture, pointer: Point) -> None:
        rect = resize_rect(
            gesture.start_rect,
            gesture.handle,
            pointer.x - gesture.start_pointer.x,
            pointer.y - gesture.start_pointer.y,
            aspect_ratio=gesture.aspect_ratio,
            min_width=self.controller.min_width,
            min_height=self.controller.min_height,
        )
        font_size = None
        if gesture.start_font_size is not None:
            font_size = gesture.start_font_size * (rect.width / gesture.start_rect.width)
        self.controller.write_geometry(self.index, rect, font_size=font_size)

    def _rotate(self, gesture: _Gesture, pointer: Point, coarse: bool) -> None:
        angle = _pointer_angle(pointer, gesture.pivot) - gesture.angle_offset
        if coarse:
            step = self.controller.snap_degrees
            angle = round(angle / step) * step
        angle = unwrap_rotation(angle, gesture.last_rotation)
        gesture.last_rotation = angle
        self.controller.store.update(self.index, rotation=angle)


def resize_rect(
    start: Rect,
    handle: Handle,
    dx: float,
    dy: float,
    aspect_ratio: float,
    min_width: float,
    min_height: float,
) -> Rect:
    """Apply a handle drag of ``(dx, dy)`` to ``start``.

    Corner handles scale both dimensions by the dominant axis and keep
    ``aspect_ratio``; edge handles change one dimension. West/north handles
    move the origin so the opposite edge stays anchored.
    """
    width, height = start.width, start.height
    sign_x = -1.0 if handle.moves_west_edge else 1.0
    sign_y = -1.0 if handle.moves_north_edge else 1.0

    if handle.is_corner:
        scale = max((start.width + sign_x * dx) / start.width, (start.height + sign_y * dy) / start.height)
        width = max(min_width, start.width * scale)
        height = max(min_height, width / aspect_ratio)
    else:
        if handle in (Handle.E, Handle.W):
            width = max(min_width, start.width + sign_x * dx)
        if handle in (Handle.N, Handle.S):
            height = max(min_height, start.height + sign_y * dy)

    x = start.x + (start.width - width) if handle.moves_west_edge else start.x
    y = start.y + (start.height - height) if handle.moves_north_edge else start.y
    return Rect(x, y, width, height)


@dataclass
class KeyResult:
    handled: bool
    action: str | None = None
    extra: dict = field(default_factory=dict)


class GizmoController:
    """Owns the gizmos of the visible page and routes input to them."""

    ARROW_KEYS = {
        "ArrowUp": (0.0, -1.0),
        "ArrowDown": (0.0, 1.0),
        "ArrowLeft": (-1.0, 0.0),
        "ArrowRight": (1.0, 0.0),
    }

    def __init__(
        self,
        store: OverlayStore,
        canvas_size: Size,
        confirm: ConfirmCallback | None = None,
        insets: ChromeInsets | None = None,
    ):
        self.store = store
        self.canvas_size = canvas_size
        self.confirm = confirm or (lambda title, message: True)
        self.insets = insets or ChromeInsets.symmetric(settings.chrome_inset_x, settings.chrome_inset_y)
        self.min_width = settings.min_gizmo_width_px
        self.min_height = settings.min_gizmo_height_px
        self.snap_degrees = settings.rotation_snap_degrees
        self.handle_size = settings.handle_size_px
        self.current_page = 0
        self.pointer_over_canvas = False
        self.views: dict[int, GizmoView] = {}
        self._gizmos: dict[int, Gizmo] = {}
        self._active: Gizmo | None = None
        self._render_listeners: list[RenderListener] = []
        self._unsubscribe = store.subscribe(self._on_store_change)
        self.rebuild()

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    @property
    def active(self) -> Gizmo | None:
        return self._active

    def gizmo(self, index: int) -> Gizmo | None:
        return self._gizmos.get(index)

    def on_render(self, listener: RenderListener) -> None:
        self._render_listeners.append(listener)

    def display_rect(self, overlay: Overlay) -> Rect:
        """Overlay content box on the current canvas."""
        rect = overlay.canvas_rect()
        if rect is None:
            width, height = DEFAULT_SIZES[overlay.kind]
            rect = Rect(overlay.position.x, overlay.position.y, width, height)
        return to_display_space(rect, overlay.reference_canvas_size.to_size(), self.canvas_size)

    def set_canvas_size(self, canvas_size: Size) -> None:
        """Zoom/resize: re-derive display geometry only."""
        if self._active is not None:
            self.cancel()
        self.canvas_size = canvas_size
        self.rebuild()

    def show_page(self, page_index: int) -> None:
        if self._active is not None:
            self.cancel()
        self.current_page = page_index
        self.rebuild()

    def rebuild(self) -> None:
        """Recreate gizmos for the overlays on the current page."""
        indices = [i for i, _ in self.store.for_page(self.current_page)]
        if self._active is not None and self._active.index not in indices:
            self._active = None
        gizmos = {i: Gizmo(self, i) for i in indices}
        if self._active is not None:
            gizmos[self._active.index] = self._active
        self._gizmos = gizmos
        self.views = {i: self.view(i) for i in indices}
        self._emit()

    def view(self, index: int) -> GizmoView:
        """Render model for gizmo ``index``, derived from the store."""
        overlay = self.store.get(index)
        content = self.display_rect(overlay)
        font_size = None
        if overlay.kind.is_text_like:
            font_size = overlay.font_size * self.canvas_size.width / overlay.reference_canvas_size.w
        return GizmoView(
            index=index,
            content=content,
            frame=chrome_rect(content, self.insets),
            rotation=normalize_rotation(overlay.rotation),
            font_size=font_size,
            opacity=overlay.opacity,
            selected=self.store.selected_index == index,
            state=self._gizmos[index].state if index in self._gizmos else GestureState.IDLE,
        )

    def _emit(self) -> None:
        for listener in self._render_listeners:
            listener(dict(self.views))

    def _on_store_change(self, event: str, index: int | None) -> None:
        if event == "update" and index in self._gizmos and self.store.get(index).page_index == self.current_page:
            self.views[index] = self.view(index)
            self._emit()
        else:
            self.rebuild()

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def write_geometry(
        self, index: int, rect: Rect, font_size: float | None = None, keep_size: bool = True
    ) -> None:
        """Store a display-space rect, re-stamping the reference canvas size."""
        fields = {
            "position": CanvasPoint(x=rect.x, y=rect.y),
            "reference_canvas_size": CanvasSize(w=self.canvas_size.width, h=self.canvas_size.height),
        }
        if keep_size:
            fields["size"] = OverlaySize(width=rect.width, height=rect.height)
        if font_size is not None:
            fields["font_size"] = font_size
        self.store.update(index, **fields)

    def hit_test(self, point: Point) -> Hit | None:
        """Find the top-most gizmo part under ``point``."""
        half = self.handle_size / 2
        for index in sorted(self._gizmos, reverse=True):
            view = self.views[index]
            frame = view.frame
            local = rotate_point(point, frame.center, -view.rotation)

            def near(anchor: Point) -> bool:
                return abs(local.x - anchor.x) <= half and abs(local.y - anchor.y) <= half

            if near(Point(frame.right, frame.y)):
                return Hit(index, HitTarget.DELETE)
            if near(Point(frame.center.x, frame.y - self.handle_size * 1.5)):
                return Hit(index, HitTarget.ROTATE)
            for handle in ACTIVE_HANDLES:
                if near(self._handle_anchor(frame, handle)):
                    return Hit(index, HitTarget.RESIZE, handle)
            if frame.contains(local):
                return Hit(index, HitTarget.BODY)
        return None

    @staticmethod
    def _handle_anchor(frame: Rect, handle: Handle) -> Point:
        x = frame.center.x
        y = frame.center.y
        if "w" in handle.value:
            x = frame.x
        elif "e" in handle.value:
            x = frame.right
        if "n" in handle.value:
            y = frame.y
        elif "s" in handle.value:
            y = frame.bottom
        return Point(x, y)

    # ------------------------------------------------------------------
    # Pointer input
    # ------------------------------------------------------------------

    def pointer_down(
        self, index: int, target: HitTarget, pointer: Point, handle: Handle | None = None
    ) -> bool:
        """Begin a gesture on gizmo ``index``. Refused while another gesture holds capture."""
        if self._active is not None:
            return False
        if index not in self._gizmos:
            return False

        if target == HitTarget.DELETE:
            self.request_delete(index)
            return True

        # Selecting rebuilds the gizmos, so look the gizmo up afterwards
        self.store.select(index)
        gizmo = self._gizmos[index]
        if not gizmo.begin(target, pointer, handle):
            return False
        self._active = gizmo
        self.views[index] = self.view(index)
        self._emit()
        return True

    def pointer_down_at(self, pointer: Point) -> Hit | None:
        """Hit-test and dispatch a pointer-down; empty canvas clears the selection."""
        if self._active is not None:
            return None
        hit = self.hit_test(pointer)
        if hit is None:
            self.store.select(None)
            return None
        self.pointer_down(hit.index, hit.target, pointer, hit.handle)
        return hit

    def pointer_move(self, pointer: Point, coarse: bool = False) -> None:
        if self._active is None:
            return
        try:
            self._active.move(pointer, coarse=coarse)
        except (InvalidGeometry, ValueError, ZeroDivisionError) as e:
            logger.warning(f"Gesture on overlay {self._active.index} ended early: {e}")
            self.cancel()

    def pointer_up(self) -> bool:
        """End the active gesture. Returns True if it produced a history entry."""
        gizmo = self._active
        if gizmo is None:
            return False
        self._active = None
        committed = gizmo.end()
        if gizmo.index in self._gizmos:
            self.views[gizmo.index] = self.view(gizmo.index)
            self._emit()
        return committed

    def cancel(self) -> bool:
        """Lost pointer capture: keep the last valid state and end the gesture."""
        return self.pointer_up()

    def pointer_enter(self) -> None:
        self.pointer_over_canvas = True

    def pointer_leave(self) -> None:
        self.pointer_over_canvas = False

    # ------------------------------------------------------------------
    # Keyboard input
    # ------------------------------------------------------------------

    def key_down(self, key: str, precision: bool = False, in_form_field: bool = False) -> KeyResult:
        """Arrow nudge, Delete/Backspace removal and Escape deselect."""
        selected = self.store.selected_index
        if selected is None or self._active is not None:
            return KeyResult(False)

        if key == "Escape":
            self.store.select(None)
            return KeyResult(True, "deselect")

        if in_form_field:
            return KeyResult(False)

        if key in ("Delete", "Backspace"):
            removed = self.request_delete(selected)
            return KeyResult(True, "delete", {"removed": removed})

        if key in self.ARROW_KEYS and self.pointer_over_canvas:
            step = settings.nudge_fine_step_px if precision else settings.nudge_step_px
            ux, uy = self.ARROW_KEYS[key]
            self.nudge(selected, ux * step, uy * step)
            return KeyResult(True, "nudge")

        return KeyResult(False)

    def nudge(self, index: int, dx: float, dy: float) -> None:
        overlay = self.store.get(index)
        if overlay is None:
            return
        scale_x = self.canvas_size.width / overlay.reference_canvas_size.w
        font_size = overlay.font_size * scale_x if overlay.kind.is_text_like else None
        rect = self.display_rect(overlay).translated(dx, dy)
        self.write_geometry(index, rect, font_size=font_size, keep_size=overlay.size is not None)
        self.store.commit()

    def request_delete(self, index: int) -> bool:
        """Remove an overlay after the confirmation collaborator agrees."""
        overlay = self.store.get(index)
        if overlay is None:
            return False
        if not self.confirm("Remove?", f"Remove this {overlay.kind.value}?"):
            return False
        self.store.remove(index)
        return True

    def close(self) -> None:
        self._unsubscribe()
