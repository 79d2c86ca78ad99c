"""Image preparation for event uploads."""
import io
import logging
import os
import re
import time
from typing import Optional, Tuple

from PIL import Image, ImageOps

from processor.models import CropBox, ImageUpload

logger = logging.getLogger(__name__)

MAX_EDGE = 1200
RESIZE_QUALITY = 70
CROP_QUALITY = 95
OUTPUT_CONTENT_TYPE = 'image/jpeg'
OUTPUT_SUFFIX = '.jpg'


def sanitize_filename(filename: str) -> str:
    """
    Make a filename safe for use as a storage key.

    Every character other than letters, digits and dots becomes an underscore
    and runs of underscores are collapsed.
    """
    sanitized = re.sub(r'[^a-zA-Z0-9.]', '_', filename)
    return re.sub(r'__+', '_', sanitized)


def jpeg_filename(filename: str) -> str:
    """Replace the extension of filename with .jpg."""
    stem = os.path.splitext(filename)[0]
    return f"{stem or 'image'}{OUTPUT_SUFFIX}"


def build_image_name(filename: str, timestamp_ms: Optional[int] = None) -> str:
    """
    Build the storage key for an upload: "<epoch-ms>-<sanitized name>".

    Args:
        filename: Original filename
        timestamp_ms: Creation time in milliseconds, defaults to now

    Returns:
        Storage key
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{timestamp_ms}-{sanitize_filename(filename)}"


def fit_within(width: int, height: int, max_edge: int = MAX_EDGE) -> Tuple[int, int]:
    """Scale (width, height) so the long edge is at most max_edge."""
    long_edge = max(width, height)
    if long_edge <= max_edge:
        return width, height
    scale = max_edge / long_edge
    return max(1, round(width * scale)), max(1, round(height * scale))


def _crop(image: Image.Image, box: CropBox) -> Image.Image:
    left = max(0, box.x)
    top = max(0, box.y)
    right = min(image.width, box.x + box.width)
    bottom = min(image.height, box.y + box.height)
    if right <= left or bottom <= top:
        raise ValueError(f"Crop box {box} lies outside the image")
    return image.crop((left, top, right, bottom))


def prepare_image(upload: ImageUpload) -> ImageUpload:
    """
    Crop, downscale and re-encode an uploaded image as JPEG.

    Cropped images keep a higher quality factor; everything is scaled so its
    long edge fits MAX_EDGE.

    Args:
        upload: Image as received from the form

    Returns:
        New ImageUpload holding the JPEG payload
    """
    with Image.open(io.BytesIO(upload.data)) as source:
        image = ImageOps.exif_transpose(source)
        original_size = image.size

        quality = RESIZE_QUALITY
        if upload.crop is not None:
            image = _crop(image, upload.crop)
            quality = CROP_QUALITY

        target = fit_within(*image.size)
        if target != image.size:
            image = image.resize(target, Image.LANCZOS)

        if image.mode != 'RGB':
            image = image.convert('RGB')

        output = io.BytesIO()
        image.save(output, format='JPEG', quality=quality)

    logger.info(
        f"Prepared image '{upload.filename}': {original_size} -> {image.size}, "
        f"quality {quality}"
    )

    return ImageUpload(
        filename=jpeg_filename(upload.filename),
        data=output.getvalue(),
        content_type=OUTPUT_CONTENT_TYPE
    )
