"""Overlay data models."""

from pdfoverlay.models.overlay import (
    CanvasPoint,
    CanvasSize,
    ComposeRequest,
    Overlay,
    OverlayKind,
    OverlaySize,
    PageInfo,
    PageOrderEntry,
    PdfInfo,
)

__all__ = [
    "Overlay",
    "OverlayKind",
    "CanvasPoint",
    "CanvasSize",
    "OverlaySize",
    "ComposeRequest",
    "PageOrderEntry",
    "PageInfo",
    "PdfInfo",
]
