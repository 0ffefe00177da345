"""Validation and parsing utilities for overlay payloads."""

import base64
import binascii
import re

HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$")
DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w-]+=[^;,]+)*)(?P<b64>;base64)?,")

PDF_MAGIC = b"%PDF-"

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "image/svg+xml": "svg",
}


class ValidationError(Exception):
    """Raised when validation fails."""

    pass


def validate_hex_color(color: str) -> bool:
    """Validate a ``#rrggbb`` or ``#rgb`` color string."""
    if not color or not isinstance(color, str):
        return False
    return bool(HEX_COLOR_RE.match(color.strip()))


def parse_color(color: str | None, default: tuple[float, float, float] | None = None):
    """Convert a hex color to an ``(r, g, b)`` tuple of floats in 0..1.

    Returns ``default`` for empty input. Raises ValidationError for malformed input.
    """
    if color is None or not str(color).strip():
        return default
    match = HEX_COLOR_RE.match(color.strip())
    if not match:
        raise ValidationError(f"Invalid color: {color!r}")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return tuple(int(digits[i : i + 2], 16) / 255 for i in (0, 2, 4))


def parse_data_url(data_url: str) -> tuple[str, bytes]:
    """Decode a ``data:<mime>;base64,<payload>`` URL into ``(mime_type, bytes)``.

    Raises:
        ValidationError: If the URL is not a base64 data URL or the payload is empty.
    """
    if not data_url or not isinstance(data_url, str):
        raise ValidationError("Image data is empty")

    match = DATA_URL_RE.match(data_url)
    if not match or not match.group("b64"):
        raise ValidationError("Invalid image data format (expected data:type;base64,data)")

    mime_type = (match.group("mime") or "image/png").lower()
    payload = data_url[match.end():]
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 image payload: {e}") from e

    if not raw:
        raise ValidationError("Image payload decoded to zero bytes")
    return mime_type, raw


def extension_for_mime(mime_type: str) -> str:
    """Return a file extension (without dot) for an image MIME type."""
    if mime_type in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime_type]
    subtype = mime_type.split("/")[-1]
    return re.sub(r"[^a-z0-9]", "", subtype.lower()) or "png"


def is_pdf(content: bytes) -> bool:
    """Check the PDF magic bytes (allowing leading whitespace/garbage up to 1KB)."""
    return bool(content) and PDF_MAGIC in content[:1024]


def sanitize_filename(filename: str | None, fallback: str = "document.pdf") -> str:
    """Return a filesystem-safe PDF filename."""
    cleaned = re.sub(r'[\\/:*?"<>|]', "_", (filename or "").strip()).strip()
    if not cleaned or cleaned.lower() in ("noname", "unnamed"):
        return fallback
    base = cleaned.rsplit(".", 1)[0] if "." in cleaned else cleaned
    return f"{base}.pdf" if base else fallback
