"""Image preprocessing: uploaded bytes to a grayscale PixelBuffer.

Handles format detection and decoding, EXIF orientation, the pixel-count
limit, and conversion to 8-bit luminance.
"""

from __future__ import annotations

import io
import logging

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from haarscan.errors import InputError
from haarscan.ml.integral import PixelBuffer

logger = logging.getLogger(__name__)


def decode_image(image_bytes: bytes, max_pixels: int) -> PixelBuffer:
    """Decode raw image bytes into a grayscale pixel buffer.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Upper bound on width * height.

    Raises:
        InputError: If the image cannot be decoded, is empty, or is too large.
    """
    if not image_bytes:
        raise InputError("Empty image upload")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            width, height = image.size
            if width * height > max_pixels:
                raise InputError(f"Image has {width * height} pixels, limit is {max_pixels}")
            oriented = ImageOps.exif_transpose(image)
            gray = np.asarray(oriented.convert("L"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise InputError(f"Could not decode image: {exc}") from exc

    logger.debug("Decoded %dx%d image (%d bytes)", gray.shape[1], gray.shape[0], len(image_bytes))
    return PixelBuffer.from_array(gray)
