"""Unit tests for validators."""

import base64

import pytest

from pdfoverlay.utils.validators import (
    ValidationError,
    extension_for_mime,
    is_pdf,
    parse_color,
    parse_data_url,
    sanitize_filename,
    validate_hex_color,
)


def test_validate_hex_color():
    """Test hex color validation."""
    assert validate_hex_color("#ff0000")
    assert validate_hex_color("#F00")
    assert not validate_hex_color("red")
    assert not validate_hex_color("#12345")
    assert not validate_hex_color("")


def test_parse_color():
    """Test hex color conversion to RGB floats."""
    assert parse_color("#ff0000") == (1.0, 0.0, 0.0)
    assert parse_color("#fff") == (1.0, 1.0, 1.0)
    assert parse_color(None) is None
    assert parse_color("", default=(0.0, 0.0, 0.0)) == (0.0, 0.0, 0.0)
    with pytest.raises(ValidationError):
        parse_color("blue")


def test_parse_data_url():
    """Test data URL decoding."""
    payload = b"\x89PNG fake"
    url = "data:image/png;base64," + base64.b64encode(payload).decode()
    mime, raw = parse_data_url(url)
    assert mime == "image/png"
    assert raw == payload


@pytest.mark.parametrize(
    "url",
    ["", "not a data url", "data:image/png,plain", "data:image/png;base64,@@@", "data:image/png;base64,"],
)
def test_parse_data_url_invalid(url):
    """Test rejected data URLs."""
    with pytest.raises(ValidationError):
        parse_data_url(url)


def test_extension_for_mime():
    """Test extension lookup."""
    assert extension_for_mime("image/jpeg") == "jpg"
    assert extension_for_mime("image/svg+xml") == "svg"
    assert extension_for_mime("image/x-icon") == "xicon"


def test_is_pdf():
    """Test PDF magic check."""
    assert is_pdf(b"%PDF-1.7\n...")
    assert not is_pdf(b"PK\x03\x04")
    assert not is_pdf(b"")


def test_sanitize_filename():
    """Test filename cleanup."""
    assert sanitize_filename("report.docx") == "report.pdf"
    assert sanitize_filename("a/b:c.pdf") == "a_b_c.pdf"
    assert sanitize_filename("noname") == "document.pdf"
    assert sanitize_filename(None) == "document.pdf"
