"""Overlay record schema shared by the editing session and the compositor."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from pdfoverlay.config import SUPPORTED_FONT_FAMILIES
from pdfoverlay.core.dates import DATE_FORMATS
from pdfoverlay.core.geometry import Rect, Size
from pdfoverlay.utils.validators import validate_hex_color


class OverlayKind(str, Enum):
    """Overlay variants. Date is text with a reformattable date payload."""

    TEXT = "text"
    DATE = "date"
    IMAGE = "image"
    SIGNATURE = "signature"
    RECTANGLE = "rectangle"

    @property
    def is_text_like(self) -> bool:
        return self in (OverlayKind.TEXT, OverlayKind.DATE)

    @property
    def is_image_like(self) -> bool:
        return self in (OverlayKind.IMAGE, OverlayKind.SIGNATURE)

    @property
    def label(self) -> str:
        return self.value.capitalize()


# Initial gizmo box per kind, in canvas pixels
DEFAULT_SIZES = {
    OverlayKind.TEXT: (150.0, 50.0),
    OverlayKind.DATE: (150.0, 50.0),
    OverlayKind.IMAGE: (150.0, 150.0),
    OverlayKind.SIGNATURE: (150.0, 150.0),
    OverlayKind.RECTANGLE: (200.0, 150.0),
}


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class CanvasPoint(WireModel):
    """Canvas pixel position, top-left origin."""

    x: float
    y: float


class CanvasSize(WireModel):
    """Canvas pixel dimensions an overlay's geometry was captured against."""

    w: float = Field(..., gt=0)
    h: float = Field(..., gt=0)

    def to_size(self) -> Size:
        return Size(self.w, self.h)


class OverlaySize(WireModel):
    """Overlay box in canvas pixels. Degenerate values are handled by the transform."""

    width: float
    height: float


class Overlay(WireModel):
    """One annotation placed on a PDF page."""

    kind: OverlayKind
    page_index: int = Field(default=0, ge=0)
    position: CanvasPoint
    reference_canvas_size: CanvasSize
    size: Optional[OverlaySize] = None
    rotation: float = Field(default=0.0, description="Degrees, unnormalized")
    opacity: int = Field(default=100, ge=0, le=100)
    aspect_ratio: Optional[float] = Field(default=None, gt=0)

    # Text / Date
    text: Optional[str] = None
    date_format: Optional[str] = None
    font_size: float = Field(default=12.0, gt=0)
    font_family: str = Field(default="Helvetica")
    bold: bool = False
    italic: bool = False
    underline: bool = False
    text_color: str = Field(default="#000000")
    bg_color: Optional[str] = None
    highlight_color: Optional[str] = None
    highlight_alpha: float = Field(default=1.0, ge=0, le=1)
    letter_spacing: float = Field(default=0.0)

    # Image / Signature
    image_data: Optional[str] = Field(default=None, description="base64 data URL")
    remove_background: Optional[bool] = None

    # Rectangle
    fill_color: str = Field(default="#000000")
    fill_alpha: float = Field(default=0.5, ge=0, le=1)
    border_fade: float = Field(default=0.0, ge=0)

    # UI-only cache; never part of snapshots or exports
    preview_image: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @field_validator("text_color", "fill_color")
    @classmethod
    def validate_required_color(cls, v: str) -> str:
        """Validate mandatory hex colors."""
        if not validate_hex_color(v):
            raise ValueError(f"Invalid hex color: {v!r}")
        return v

    @field_validator("bg_color", "highlight_color")
    @classmethod
    def validate_optional_color(cls, v: Optional[str]) -> Optional[str]:
        """Validate optional hex colors; blank means unset."""
        if v is None or not v.strip():
            return None
        if not validate_hex_color(v):
            raise ValueError(f"Invalid hex color: {v!r}")
        return v

    @field_validator("font_family")
    @classmethod
    def validate_font_family(cls, v: str) -> str:
        """Validate font family against the base-14 families we can embed."""
        if v not in SUPPORTED_FONT_FAMILIES:
            raise ValueError(f"Font family must be one of {list(SUPPORTED_FONT_FAMILIES)}")
        return v

    @field_validator("date_format")
    @classmethod
    def validate_date_format(cls, v: Optional[str]) -> Optional[str]:
        """Validate the date format name."""
        if v is not None and v not in DATE_FORMATS:
            raise ValueError(f"Date format must be one of {list(DATE_FORMATS)}")
        return v

    @model_validator(mode="after")
    def check_payload(self) -> "Overlay":
        """Each kind must carry its payload."""
        if self.kind.is_text_like and self.text is None:
            raise ValueError(f"{self.kind.value} overlay requires text")
        if self.kind.is_image_like and not self.image_data:
            raise ValueError(f"{self.kind.value} overlay requires image data")
        return self

    @property
    def removes_background(self) -> bool:
        """Signatures strip their background unless told otherwise; images only on request."""
        if self.remove_background is None:
            return self.kind == OverlayKind.SIGNATURE
        return self.remove_background

    def canvas_rect(self) -> Optional[Rect]:
        """Overlay box in reference-canvas pixels, or None for a point annotation."""
        if self.size is None:
            return None
        return Rect(self.position.x, self.position.y, self.size.width, self.size.height)

    def snapshot(self) -> "Overlay":
        """Deep, reference-free copy without transient UI fields."""
        return Overlay.model_validate(self.model_dump())


ORIGINAL_SOURCE = "original"


def merged_source(index: int) -> str:
    """Page-order source key of the ``index``-th merged document."""
    return f"merged:{index}"


class PageOrderEntry(WireModel):
    """One page slot of the exported document, by its page number in its source document."""

    page_num: int = Field(..., ge=1)
    source: str = Field(default=ORIGINAL_SOURCE)
    rotation: int = Field(default=0, description="Clockwise degrees added to the page, multiple of 90")

    @field_validator("rotation")
    @classmethod
    def validate_rotation(cls, v: int) -> int:
        """Normalize quarter turns to 0..270."""
        if v % 90:
            raise ValueError(f"Page rotation must be a multiple of 90, got {v}")
        return v % 360


class ComposeRequest(WireModel):
    """Body of the compose endpoint."""

    overlays: list[Overlay] = Field(default_factory=list)
    page_order: list[PageOrderEntry] = Field(default_factory=list)
    has_reordering: bool = False


class PageInfo(WireModel):
    """Point size of one page."""

    width_pt: float
    height_pt: float


class PdfInfo(WireModel):
    """Page count and sizes of an uploaded PDF."""

    page_count: int
    pages: list[PageInfo]
