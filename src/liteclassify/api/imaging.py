"""Decoding of uploaded image files into RGB images."""

from __future__ import annotations

import io

from PIL import Image, ImageOps, UnidentifiedImageError


def decode_image(data: bytes, max_pixels: int) -> Image.Image:
    """Decode image bytes, apply EXIF orientation and convert to RGB.

    Raises:
        ValueError: If the data is not a decodable image or exceeds max_pixels.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise ValueError(f"Image has {width * height} pixels, limit is {max_pixels}")
            img.load()
            upright = ImageOps.exif_transpose(img)
            return upright.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ValueError(f"Cannot decode image: {exc}") from exc
