"""Raster image ingestion into RGBA buffers."""
import io
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image
from PIL import ImageOps

from cutcontour.types import RasterImage, EncodingError


def _from_pil(img: Image.Image) -> RasterImage:
    # Apply EXIF orientation transformation to handle rotation
    img = ImageOps.exif_transpose(img)
    if img.mode != 'RGBA':
        img = img.convert('RGBA')
    return RasterImage(pixels=np.array(img, dtype=np.uint8))


def ingest(path: Union[str, Path]) -> RasterImage:
    """
    Ingest a raster image file.

    Args:
        path: Path to image file

    Returns:
        RasterImage with RGBA pixels (opaque alpha when the file has none)

    Raises:
        FileNotFoundError: If file doesn't exist
        EncodingError: If file cannot be decoded
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    if not path.is_file():
        raise EncodingError(f"Path is not a file: {path}")

    try:
        with Image.open(path) as img:
            return _from_pil(img)
    except (IOError, OSError) as e:
        raise EncodingError(f"Failed to load image {path}: {e}") from e


def ingest_bytes(data: bytes) -> RasterImage:
    """
    Decode an encoded image (PNG, JPEG, ...) held in memory.

    Raises:
        EncodingError: If the bytes cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _from_pil(img)
    except (IOError, OSError) as e:
        raise EncodingError(f"Failed to decode image bytes: {e}") from e


def ingest_from_array(image: np.ndarray) -> RasterImage:
    """
    Create a RasterImage from a numpy array.

    Args:
        image: (H, W), (H, W, 3) or (H, W, 4) array, either uint8 or
            float in [0, 1]

    Returns:
        RasterImage
    """
    image = np.asarray(image)

    if image.ndim == 2:
        # Grayscale - convert to RGB
        image = np.stack([image] * 3, axis=-1)

    if image.ndim != 3:
        raise EncodingError(f"Expected 3D array, got {image.ndim}D")

    if image.dtype != np.uint8:
        scaled = image.astype(np.float64)
        if scaled.max(initial=0.0) <= 1.0:
            scaled = scaled * 255.0
        image = np.clip(np.round(scaled), 0, 255).astype(np.uint8)

    if image.shape[2] == 3:
        alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
        image = np.concatenate([image, alpha], axis=-1)
    elif image.shape[2] != 4:
        raise EncodingError(f"Expected 3 or 4 channels, got {image.shape[2]}")

    return RasterImage(pixels=np.ascontiguousarray(image))


def to_pil(image: RasterImage) -> Image.Image:
    """Wrap a RasterImage as a PIL RGBA image."""
    return Image.fromarray(image.pixels)


def resample(image: RasterImage, width: int, height: int, nearest: bool = False) -> RasterImage:
    """
    Resize an image.

    Args:
        image: Source image
        width: Target width in pixels
        height: Target height in pixels
        nearest: Use nearest-neighbor instead of bilinear filtering

    Returns:
        Resized RasterImage
    """
    width = max(1, int(width))
    height = max(1, int(height))
    if (width, height) == (image.width, image.height):
        return image
    method = Image.Resampling.NEAREST if nearest else Image.Resampling.BILINEAR
    resized = to_pil(image).resize((width, height), method)
    return RasterImage(pixels=np.array(resized, dtype=np.uint8))
