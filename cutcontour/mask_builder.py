"""Occupancy mask construction from an image's alpha channel."""
import logging
from typing import Iterable

import numpy as np
from PIL import Image

from cutcontour.types import RasterImage, OccupancyMask, RGB

logger = logging.getLogger(__name__)

# Artifact heuristic: background-removal halos are faint and dark/grey
ARTIFACT_MAX_ALPHA = 128
ARTIFACT_DARK_LEVEL = 64
ARTIFACT_GREY_CHROMA = 24
ARTIFACT_GREY_LEVEL = 160


def classify_artifacts(pixels: np.ndarray) -> np.ndarray:
    """
    Flag pixels that look like background-removal residue.

    A pixel is an artifact when it is mostly transparent (alpha < 128) and
    its color is either dark or a low-saturation grey.

    Args:
        pixels: (H, W, 4) uint8 RGBA array

    Returns:
        (H, W) bool array, True for artifacts
    """
    rgb = pixels[..., :3].astype(np.int16)
    alpha = pixels[..., 3]
    max_c = rgb.max(axis=-1)
    chroma = max_c - rgb.min(axis=-1)

    dark = max_c < ARTIFACT_DARK_LEVEL
    grey = (chroma < ARTIFACT_GREY_CHROMA) & (max_c < ARTIFACT_GREY_LEVEL)
    return (alpha < ARTIFACT_MAX_ALPHA) & (dark | grey)


def _threshold(pixels: np.ndarray, alpha_threshold: int, filter_artifacts: bool) -> np.ndarray:
    occupied = pixels[..., 3] >= alpha_threshold
    if filter_artifacts:
        occupied &= ~classify_artifacts(pixels)
    return occupied


def build_occupancy_mask(
    image: RasterImage,
    alpha_threshold: int = 10,
    filter_artifacts: bool = False,
    max_dimension: int = 2000,
    dpi: float = 0.0,
) -> OccupancyMask:
    """
    Build the binary occupancy mask of an image.

    A pixel is occupied iff its alpha is >= ``alpha_threshold`` and, when
    filtering is enabled, it is not classified as an artifact. Images whose
    longer side exceeds ``max_dimension`` are thresholded on a
    nearest-neighbor downsample and the mask is mapped back to native
    resolution with nearest-neighbor upscaling.

    Args:
        image: Source image
        alpha_threshold: Minimum alpha (0-255) for an occupied pixel
        filter_artifacts: Reject faint dark/grey halo pixels
        max_dimension: Longer-side cap for processing (0 disables)
        dpi: Effective DPI to record on the mask

    Returns:
        OccupancyMask at the image's native resolution
    """
    width, height = image.width, image.height
    longer = max(width, height)

    if max_dimension and longer > max_dimension:
        scale = max_dimension / longer
        small_w = max(1, int(round(width * scale)))
        small_h = max(1, int(round(height * scale)))
        logger.debug(f"Mask downsample {width}x{height} -> {small_w}x{small_h}")

        small = Image.fromarray(image.pixels).resize((small_w, small_h), Image.Resampling.NEAREST)
        occupied = _threshold(np.asarray(small), alpha_threshold, filter_artifacts)

        upscaled = Image.fromarray(occupied.astype(np.uint8) * 255).resize((width, height), Image.Resampling.NEAREST)
        data = np.asarray(upscaled) > 0
    else:
        data = _threshold(image.pixels, alpha_threshold, filter_artifacts)

    return OccupancyMask(data=data, dpi=dpi, offset=0)


def build_color_mask(
    image: RasterImage,
    colors: Iterable[RGB],
    tolerance: float = 50.0,
    min_alpha: int = 128,
) -> np.ndarray:
    """
    Mask of pixels close to any of the given colors.

    Args:
        image: Source image
        colors: Target RGB colors
        tolerance: Maximum Euclidean RGB distance
        min_alpha: Pixels below this alpha never match

    Returns:
        (H, W) bool array
    """
    rgb = image.rgb.astype(np.float32)
    mask = np.zeros((image.height, image.width), dtype=bool)
    tol_sq = float(tolerance) ** 2

    for color in colors:
        target = np.asarray(color, dtype=np.float32)
        dist_sq = np.sum((rgb - target) ** 2, axis=-1)
        mask |= dist_sq <= tol_sq

    return mask & (image.alpha >= min_alpha)
