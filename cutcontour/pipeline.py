"""Contour pipeline: image -> mask -> silhouette -> traced, refined, snapped cut line."""
import logging
import time
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from cutcontour.cache import MaskCache, image_hash, settings_hash
from cutcontour.mask_builder import build_occupancy_mask
from cutcontour.morphology import OffsetPlan, build_silhouette
from cutcontour.pdf_export import contour_pdf, shape_pdf
from cutcontour.preview import render_contour_preview
from cutcontour.raster_ingest import resample
from cutcontour.refine import finish_path, prepare_path
from cutcontour.snap import primitive_to_inches, snap_primitive
from cutcontour.tracer import trace_boundary
from cutcontour.types import (
    ContourConfig,
    ContourResult,
    OccupancyMask,
    PhysicalSize,
    RasterImage,
    ShapeSettings,
    SpotColorEntry,
    StrokeSettings,
)

logger = logging.getLogger(__name__)


class ContourPipeline:
    """Single parameterized contour pipeline."""

    def __init__(self, config: Optional[ContourConfig] = None, cache: Optional[MaskCache] = None):
        """
        Initialize the pipeline.

        Args:
            config: Pipeline flags (uses defaults if None)
            cache: Optional caller-owned cache for silhouettes
        """
        self.config = config or ContourConfig()
        self.cache = cache

    def _working_image(self, image: RasterImage, preview: bool) -> RasterImage:
        """Interactive previews run on a bilinear downsample capped at ``preview_max_dimension``."""
        cap = self.config.preview_max_dimension
        longer = max(image.width, image.height)
        if not preview or not cap or longer <= cap:
            return image
        scale = cap / longer
        return resample(image, round(image.width * scale), round(image.height * scale))

    def _plan(self, image: RasterImage, stroke: StrokeSettings, size: PhysicalSize) -> Tuple[float, OffsetPlan]:
        dpi = size.effective_dpi(image)
        return dpi, OffsetPlan.from_settings(dpi, stroke, self.config)

    def build_mask(
        self,
        image: RasterImage,
        stroke: StrokeSettings,
        size: PhysicalSize,
        preview: bool = False,
    ) -> OccupancyMask:
        """
        Build the offset, hole-free silhouette of an image.

        Args:
            image: Source image
            stroke: Stroke settings
            size: Physical size of the image
            preview: Work on the preview-sized downsample

        Returns:
            Silhouette mask (empty when nothing in the image is occupied)
        """
        image = self._working_image(image, preview)

        key = None
        if self.cache is not None:
            key = (image_hash(image), settings_hash(stroke, size, self.config))
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Silhouette cache hit")
                return cached

        dpi, plan = self._plan(image, stroke, size)
        mask = build_occupancy_mask(
            image,
            alpha_threshold=stroke.alpha_threshold,
            filter_artifacts=stroke.filter_artifacts,
            max_dimension=self.config.max_dimension,
            dpi=dpi,
        )
        if not mask.is_empty:
            mask = build_silhouette(mask, plan, unify_objects=self.config.unify)

        if key is not None:
            self.cache.put(key, mask)
        return mask

    def trace(
        self,
        image: RasterImage,
        stroke: StrokeSettings,
        size: PhysicalSize,
        preview: bool = False,
    ) -> Optional[ContourResult]:
        """
        Produce the cut line of an image.

        Args:
            image: Source image
            stroke: Stroke settings
            size: Physical size of the image
            preview: Work on the preview-sized downsample

        Returns:
            ContourResult, or None when the image has no occupied pixels or
            the traced boundary is degenerate
        """
        start_time = time.time()
        image = self._working_image(image, preview)
        dpi, plan = self._plan(image, stroke, size)

        logger.info(f"Step 1/4: Building silhouette ({image.width}x{image.height} px at {dpi:.1f} dpi)")
        mask = self.build_mask(image, stroke, size)
        if mask.is_empty:
            logger.info("No occupied pixels, nothing to trace")
            return None

        logger.info("Step 2/4: Tracing boundary")
        boundary = trace_boundary(mask)
        if len(boundary) < 3:
            logger.info(f"Degenerate boundary ({len(boundary)} points)")
            return None

        logger.info("Step 3/4: Refining path")
        dense = prepare_path(boundary, self.config.smoothing)
        if len(dense) < 3:
            return None

        primitive = None
        if self.config.snap_primitives:
            primitive = snap_primitive(dense, mask.width, mask.height)

        polygon = finish_path(dense, self.config, gap_threshold=plan.gap_close)
        if len(polygon) < 3:
            return None

        logger.info("Step 4/4: Converting to physical units")
        width_inches = mask.width / dpi
        height_inches = mask.height / dpi
        path_inches = polygon / dpi
        path_inches[:, 1] = height_inches - path_inches[:, 1]
        offset_inches = mask.offset / dpi

        elapsed = time.time() - start_time
        kind = type(primitive).__name__ if primitive is not None else "polygon"
        logger.info(f"Contour ready in {elapsed:.2f}s: {kind}, {len(polygon)} points, "
                    f"{width_inches:.3f}x{height_inches:.3f} in")

        return ContourResult(
            polygon=polygon,
            path_inches=path_inches,
            primitive=primitive,
            primitive_inches=primitive_to_inches(primitive, dpi, height_inches),
            width_inches=width_inches,
            height_inches=height_inches,
            image_offset_x=offset_inches,
            image_offset_y=offset_inches,
            effective_dpi=dpi,
            mask=mask,
        )

    def preview(self, image: RasterImage, stroke: StrokeSettings, size: PhysicalSize) -> Optional[np.ndarray]:
        """
        Render an interactive preview on the downsampled image.

        Returns:
            RGBA array, or None when there is nothing to trace
        """
        image = self._working_image(image, preview=True)
        result = self.trace(image, stroke, size)
        if result is None:
            return None
        return render_contour_preview(image, result, stroke)

    def export_pdf(
        self,
        image: RasterImage,
        stroke: StrokeSettings,
        size: PhysicalSize,
        spot_colors: Optional[Sequence[SpotColorEntry]] = None,
        single_artboard: bool = True,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Optional[bytes]:
        """
        Trace at full resolution and render the contour document.

        Returns:
            PDF bytes, or None when there is nothing to trace

        Raises:
            EncodingError: If the document cannot be produced
        """
        result = self.trace(image, stroke, size)
        if result is None:
            return None
        return contour_pdf(
            image,
            result,
            size,
            stroke,
            spot_colors=spot_colors,
            single_artboard=single_artboard,
            metadata=metadata,
        )

    def export_shape_pdf(
        self,
        image: RasterImage,
        shape: ShapeSettings,
        size: PhysicalSize,
        spot_colors: Optional[Sequence[SpotColorEntry]] = None,
        single_artboard: bool = True,
        metadata: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """
        Render the design centered inside a cut shape.

        Raises:
            EncodingError: If the document cannot be produced
        """
        return shape_pdf(
            image,
            shape,
            size,
            spot_colors=spot_colors,
            single_artboard=single_artboard,
            metadata=metadata,
        )


def get_contour_path(
    image: RasterImage,
    stroke: StrokeSettings,
    size: PhysicalSize,
    config: Optional[ContourConfig] = None,
    cache: Optional[MaskCache] = None,
) -> Optional[ContourResult]:
    """
    Trace the cut line of an image with a one-off pipeline.

    Args:
        image: Source image
        stroke: Stroke settings
        size: Physical size of the image
        config: Pipeline flags
        cache: Optional caller-owned silhouette cache

    Returns:
        ContourResult or None
    """
    return ContourPipeline(config, cache).trace(image, stroke, size)
