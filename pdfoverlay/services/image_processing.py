"""Raster payload handling for image and signature overlays."""

import io
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from PIL import Image, ImageFilter, UnidentifiedImageError

from pdfoverlay.config import settings
from pdfoverlay.core.geometry import normalize_rotation
from pdfoverlay.utils.logger import get_logger
from pdfoverlay.utils.validators import ValidationError, extension_for_mime, parse_data_url

logger = get_logger("images")

# Formats the PDF engine embeds without conversion
NATIVE_FORMATS = {"PNG", "JPEG"}


class ImageProcessingError(Exception):
    """Raised when an image payload cannot be decoded or converted."""

    pass


def decode_data_url_to_file(data_url: str, temp_dir: Optional[Path] = None) -> Path:
    """Write a base64 data URL to a temp file named for its MIME type.

    The caller owns the returned file and must delete it.
    """
    try:
        mime, payload = parse_data_url(data_url)
    except ValidationError as e:
        raise ImageProcessingError(f"Invalid image data: {e}") from e

    directory = temp_dir or settings.get_temp_dir()
    directory.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        dir=directory, prefix="overlay-img-", suffix=f".{extension_for_mime(mime)}", delete=False
    ) as f:
        f.write(payload)
        path = Path(f.name)
    logger.debug(f"Decoded {len(payload)} bytes of {mime} to {path.name}")
    return path


def image_aspect_ratio(data_url: str) -> Optional[float]:
    """Width/height of the image in a data URL, or None if Pillow cannot read it."""
    try:
        _, payload = parse_data_url(data_url)
        with Image.open(io.BytesIO(payload)) as img:
            width, height = img.size
    except (ValidationError, UnidentifiedImageError, OSError) as e:
        logger.debug(f"Cannot read image dimensions: {e}")
        return None
    return width / height if height else None


def _magick_command() -> Optional[str]:
    if settings.magick_binary:
        return settings.magick_binary
    return shutil.which("magick") or shutil.which("convert")


def convert(input_path: Path, output_path: Path, args: Optional[list[str]] = None) -> bool:
    """Run the external ImageMagick converter. Returns False on any failure."""
    command = _magick_command()
    if command is None:
        logger.warning("ImageMagick not found; cannot convert image")
        return False

    cmd = [command, str(input_path), *(args or []), str(output_path)]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=60)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error(f"ImageMagick failed to run: {e}")
        return False

    if result.returncode != 0:
        logger.error(f"ImageMagick exited with {result.returncode}: {result.stderr.decode(errors='replace')}")
        return False
    return output_path.exists()


def normalize_image(input_path: Path, temp_dir: Optional[Path] = None) -> Path:
    """Return a PNG/JPEG version of ``input_path``.

    Native files are returned unchanged. Anything else is converted to a new
    PNG temp file, by Pillow when it can read the format, else by ImageMagick.
    """
    directory = temp_dir or settings.get_temp_dir()
    output_path = directory / f"{input_path.stem}-normalized.png"

    try:
        with Image.open(input_path) as img:
            if img.format in NATIVE_FORMATS:
                return input_path
            img.convert("RGBA").save(output_path, "PNG")
            logger.debug(f"Converted {img.format} image {input_path.name} to PNG")
            return output_path
    except UnidentifiedImageError:
        logger.info(f"Pillow cannot read {input_path.name}; trying ImageMagick")
    except OSError as e:
        raise ImageProcessingError(f"Cannot read image {input_path.name}: {e}") from e

    if not convert(input_path, output_path):
        raise ImageProcessingError(f"Unsupported image format: {input_path.suffix or 'unknown'}")
    return output_path


def remove_white_background(
    input_path: Path,
    output_path: Path,
    threshold: Optional[int] = None,
    feather: Optional[float] = None,
) -> Path:
    """Make near-white pixels transparent and save as PNG.

    Args:
        input_path: Source image
        output_path: Where to write the PNG
        threshold: Pixels with R, G and B all at or above this value become transparent
        feather: Blur radius applied to the alpha mask to soften the cut edge
    """
    threshold = settings.background_threshold if threshold is None else threshold
    feather = settings.background_feather if feather is None else feather

    try:
        with Image.open(input_path) as source:
            img = source.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError(f"Cannot read image {input_path.name}: {e}") from e

    new_pixels = []
    for r, g, b, a in img.getdata():
        if r >= threshold and g >= threshold and b >= threshold:
            new_pixels.append((255, 255, 255, 0))
        else:
            new_pixels.append((r, g, b, a))
    img.putdata(new_pixels)

    if feather:
        alpha = img.getchannel("A").filter(ImageFilter.GaussianBlur(radius=feather))
        img.putalpha(alpha)

    img.save(output_path, "PNG")
    logger.debug(f"Removed white background from {input_path.name}")
    return output_path


def prepare_raster(image_path: Path, rotation: float = 0.0, opacity: float = 1.0) -> bytes:
    """PNG bytes of the image with opacity applied and rotated clockwise by ``rotation``.

    Rotation expands the canvas so the result fills the rotated box's bounds.
    """
    try:
        with Image.open(image_path) as source:
            image_format = source.format
            img = source.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError(f"Cannot read image {image_path.name}: {e}") from e

    angle = normalize_rotation(rotation)
    if opacity >= 1.0 and not angle and image_format in NATIVE_FORMATS:
        return image_path.read_bytes()

    if opacity < 1.0:
        alpha = img.getchannel("A").point(lambda value: int(value * max(opacity, 0.0)))
        img.putalpha(alpha)
    if angle:
        # PIL turns counter-clockwise for positive angles
        img = img.rotate(-angle, resample=Image.Resampling.BICUBIC, expand=True)

    buffer = io.BytesIO()
    img.save(buffer, "PNG")
    return buffer.getvalue()
