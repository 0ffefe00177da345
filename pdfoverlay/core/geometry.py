"""Canvas-pixel <-> PDF-point coordinate transforms.

Canvas space has a top-left origin with Y growing downward and a mutable
pixel scale. PDF space has a bottom-left origin with Y growing upward, in
resolution-independent points. An overlay's canvas geometry is only meaningful
together with the canvas size it was captured against (its reference size).
"""

import math
from dataclasses import dataclass


class InvalidGeometry(ValueError):
    """Raised when a computed rectangle is non-finite or has a non-positive size."""

    pass


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Size:
    width: float
    height: float


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle; ``(x, y)`` is the origin corner of its space."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def contains(self, point: Point) -> bool:
        return self.x <= point.x <= self.right and self.y <= point.y <= self.bottom

    def translated(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)


@dataclass(frozen=True)
class ChromeInsets:
    """Padding/border the gizmo draws around an overlay's content.

    Gizmo-displayed bounds include this chrome; content bounds do not.
    """

    left: float = 0.0
    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0

    @classmethod
    def symmetric(cls, horizontal: float, vertical: float) -> "ChromeInsets":
        return cls(horizontal, vertical, horizontal, vertical)


def _is_finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


def _check_size(size: Size, label: str) -> None:
    if not _is_finite(size.width, size.height) or size.width <= 0 or size.height <= 0:
        raise InvalidGeometry(f"{label} must be positive and finite: {size.width}x{size.height}")


def _check_rect(rect: Rect) -> Rect:
    if not _is_finite(rect.x, rect.y, rect.width, rect.height):
        raise InvalidGeometry(
            f"non-finite rect: x={rect.x}, y={rect.y}, w={rect.width}, h={rect.height}"
        )
    if rect.width <= 0 or rect.height <= 0:
        raise InvalidGeometry(f"w={rect.width:g},h={rect.height:g}")
    return rect


def scale_factors(reference_canvas: Size, page: Size) -> tuple[float, float]:
    """Return ``(scale_x, scale_y)`` in points per canvas pixel."""
    _check_size(reference_canvas, "reference canvas size")
    _check_size(page, "page size")
    return page.width / reference_canvas.width, page.height / reference_canvas.height


def to_pdf_space(canvas_rect: Rect, reference_canvas: Size, page: Size) -> Rect:
    """Map a canvas-pixel rect to a PDF-point rect (bottom-left origin).

    Raises:
        InvalidGeometry: If the resulting rect is degenerate or non-finite.
    """
    scale_x, scale_y = scale_factors(reference_canvas, page)
    pdf_width = canvas_rect.width * scale_x
    pdf_height = canvas_rect.height * scale_y
    pdf_x = canvas_rect.x * scale_x
    pdf_y = page.height - canvas_rect.y * scale_y - pdf_height
    return _check_rect(Rect(pdf_x, pdf_y, pdf_width, pdf_height))


def to_canvas_space(pdf_rect: Rect, reference_canvas: Size, page: Size) -> Rect:
    """Inverse of :func:`to_pdf_space`."""
    scale_x, scale_y = scale_factors(reference_canvas, page)
    canvas_width = pdf_rect.width / scale_x
    canvas_height = pdf_rect.height / scale_y
    canvas_x = pdf_rect.x / scale_x
    canvas_y = (page.height - pdf_rect.y - pdf_rect.height) / scale_y
    return _check_rect(Rect(canvas_x, canvas_y, canvas_width, canvas_height))


def point_to_pdf_space(point: Point, reference_canvas: Size, page: Size) -> Point:
    scale_x, scale_y = scale_factors(reference_canvas, page)
    result = Point(point.x * scale_x, page.height - point.y * scale_y)
    if not _is_finite(result.x, result.y):
        raise InvalidGeometry(f"non-finite point: {result}")
    return result


def point_to_canvas_space(point: Point, reference_canvas: Size, page: Size) -> Point:
    scale_x, scale_y = scale_factors(reference_canvas, page)
    result = Point(point.x / scale_x, (page.height - point.y) / scale_y)
    if not _is_finite(result.x, result.y):
        raise InvalidGeometry(f"non-finite point: {result}")
    return result


def ensure_minimum_size(rect: Rect, minimum: float) -> Rect:
    """Substitute ``minimum`` for any degenerate dimension of ``rect``.

    The position must still be finite; otherwise there is nothing to recover.
    """
    if not _is_finite(rect.x, rect.y):
        raise InvalidGeometry(f"non-finite position: x={rect.x}, y={rect.y}")
    width = rect.width if _is_finite(rect.width) and rect.width > 0 else minimum
    height = rect.height if _is_finite(rect.height) and rect.height > 0 else minimum
    return Rect(rect.x, rect.y, width, height)


def to_pdf_space_clamped(
    canvas_rect: Rect, reference_canvas: Size, page: Size, minimum: float
) -> tuple[Rect, bool]:
    """Like :func:`to_pdf_space`, but substitute ``minimum`` points for a degenerate size.

    The top edge stays where the canvas put it. Returns ``(rect, clamped)``.
    Still raises InvalidGeometry for a non-finite position or bad reference/page sizes.
    """
    try:
        return to_pdf_space(canvas_rect, reference_canvas, page), False
    except InvalidGeometry:
        scale_x, scale_y = scale_factors(reference_canvas, page)
        raw = Rect(
            canvas_rect.x * scale_x,
            canvas_rect.y * scale_y,
            canvas_rect.width * scale_x,
            canvas_rect.height * scale_y,
        )
        fixed = ensure_minimum_size(raw, minimum)
        return Rect(fixed.x, page.height - fixed.y - fixed.height, fixed.width, fixed.height), True


def display_scale(current_canvas: Size, reference_canvas: Size) -> tuple[float, float]:
    """Per-axis factor for redisplaying reference geometry on the current canvas."""
    _check_size(current_canvas, "current canvas size")
    _check_size(reference_canvas, "reference canvas size")
    return (
        current_canvas.width / reference_canvas.width,
        current_canvas.height / reference_canvas.height,
    )


def to_display_space(canvas_rect: Rect, reference_canvas: Size, current_canvas: Size) -> Rect:
    """Rescale reference geometry for display. Never touches the reference itself."""
    sx, sy = display_scale(current_canvas, reference_canvas)
    return Rect(canvas_rect.x * sx, canvas_rect.y * sy, canvas_rect.width * sx, canvas_rect.height * sy)


def normalize_rotation(degrees: float) -> float:
    """Fold an unnormalized rotation into [0, 360) for rendering."""
    result = math.fmod(degrees, 360.0)
    if result < 0:
        result += 360.0
    # fmod(-1e-15) + 360 rounds to 360.0
    return 0.0 if result >= 360.0 else result


def unwrap_rotation(angle: float, previous: float) -> float:
    """Pick the representative of ``angle`` (mod 360) closest to ``previous``.

    Keeps a continuous gesture continuous across the atan2 seam, so two full
    turns accumulate to 720 rather than snapping back to 0.
    """
    return angle + 360.0 * round((previous - angle) / 360.0)


def rotate_point(point: Point, pivot: Point, degrees: float) -> Point:
    """Rotate ``point`` about ``pivot`` clockwise on a Y-down canvas."""
    rad = math.radians(degrees)
    cos_a, sin_a = math.cos(rad), math.sin(rad)
    dx, dy = point.x - pivot.x, point.y - pivot.y
    return Point(pivot.x + dx * cos_a - dy * sin_a, pivot.y + dx * sin_a + dy * cos_a)


def rotated_bounds(rect: Rect, degrees: float) -> Rect:
    """Axis-aligned bounding box of ``rect`` rotated about its center."""
    rad = math.radians(normalize_rotation(degrees))
    cos_a, sin_a = abs(math.cos(rad)), abs(math.sin(rad))
    width = rect.width * cos_a + rect.height * sin_a
    height = rect.width * sin_a + rect.height * cos_a
    center = rect.center
    return Rect(center.x - width / 2, center.y - height / 2, width, height)


def content_rect(gizmo_rect: Rect, insets: ChromeInsets) -> Rect:
    """Strip gizmo chrome from displayed bounds."""
    return Rect(
        gizmo_rect.x + insets.left,
        gizmo_rect.y + insets.top,
        max(gizmo_rect.width - insets.left - insets.right, 0.0),
        max(gizmo_rect.height - insets.top - insets.bottom, 0.0),
    )


def chrome_rect(content: Rect, insets: ChromeInsets) -> Rect:
    """Inverse of :func:`content_rect`."""
    return Rect(
        content.x - insets.left,
        content.y - insets.top,
        content.width + insets.left + insets.right,
        content.height + insets.top + insets.bottom,
    )
