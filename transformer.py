"""
Coordinate transformation module for redaction overlays.
Converts rectangles and points between PDF page space (bottom-left origin),
canvas pixel space (top-left origin) and on-screen client space, and provides
the rectangle geometry used for overlap detection.
"""

import logging
import math
from typing import Protocol, Sequence, Union

import numpy as np

from models import (
    CoordinatePoint, CoordinateRect, PDFPageDimensions, CanvasDimensions,
    CanvasElement, ViewportTransform, FitMode, SUPPORTED_ROTATIONS
)

logger = logging.getLogger(__name__)


class Bounds(Protocol):
    """Anything with a width and a height."""
    width: float
    height: float


def _divide(numerator: float, denominator: float) -> float:
    """Float division that yields inf/nan on a zero denominator instead of raising."""
    with np.errstate(divide='ignore', invalid='ignore'):
        return float(np.divide(np.float64(numerator), np.float64(denominator)))


def _round_half_up(value: float) -> float:
    """Round to the nearest integer, halves toward +inf. Non-finite values pass through."""
    if not math.isfinite(value):
        return value
    return float(math.floor(value + 0.5))


class CoordinateTransformer:
    """Stateless coordinate conversions and rectangle geometry."""

    @staticmethod
    def pdf_to_canvas(
        rect: CoordinateRect,
        pdf_dims: PDFPageDimensions,
        canvas_dims: CanvasDimensions
    ) -> CoordinateRect:
        """
        Convert a rectangle from PDF space to canvas space.

        PDF space is measured in points with the origin at the bottom-left;
        canvas space is measured in pixels with the origin at the top-left.
        The page rotation is applied in PDF space before the Y axis is flipped
        and both axes are scaled.

        Args:
            rect: Rectangle in PDF space
            pdf_dims: Page geometry (size, scale, rotation)
            canvas_dims: Target canvas size

        Returns:
            Rectangle in canvas space
        """
        scale_x = _divide(canvas_dims.width * pdf_dims.scale, pdf_dims.width)
        scale_y = _divide(canvas_dims.height * pdf_dims.scale, pdf_dims.height)

        rotated = CoordinateTransformer.apply_rotation_transform(
            rect, pdf_dims.rotation, pdf_dims.width, pdf_dims.height
        )

        return CoordinateRect(
            x=rotated.x * scale_x,
            y=(pdf_dims.height - rotated.y - rotated.height) * scale_y,
            width=rotated.width * scale_x,
            height=rotated.height * scale_y
        )

    @staticmethod
    def canvas_to_pdf(
        rect: CoordinateRect,
        pdf_dims: PDFPageDimensions,
        canvas_dims: CanvasDimensions
    ) -> CoordinateRect:
        """
        Convert a rectangle from canvas space back to PDF space.
        Exact inverse of pdf_to_canvas for every supported rotation.
        """
        scale_x = _divide(pdf_dims.width, canvas_dims.width * pdf_dims.scale)
        scale_y = _divide(pdf_dims.height, canvas_dims.height * pdf_dims.scale)

        unflipped = CoordinateRect(
            x=rect.x * scale_x,
            y=pdf_dims.height - rect.y * scale_y - rect.height * scale_y,
            width=rect.width * scale_x,
            height=rect.height * scale_y
        )

        return CoordinateTransformer.apply_inverse_rotation_transform(
            unflipped, pdf_dims.rotation, pdf_dims.width, pdf_dims.height
        )

    @staticmethod
    def apply_rotation_transform(
        rect: CoordinateRect,
        rotation: int,
        page_width: float,
        page_height: float
    ) -> CoordinateRect:
        """
        Rotate a rectangle on a page_width x page_height page.
        Unsupported rotations are treated as 0 degrees.
        """
        x, y, width, height = rect.as_tuple()

        if rotation == 0:
            return CoordinateRect(x, y, width, height)
        if rotation == 90:
            return CoordinateRect(y, page_width - x - width, height, width)
        if rotation == 180:
            return CoordinateRect(page_width - x - width, page_height - y - height, width, height)
        if rotation == 270:
            return CoordinateRect(page_height - y - height, x, height, width)

        logger.warning(f"Unsupported rotation: {rotation}. Using 0 degrees.")
        return CoordinateRect(x, y, width, height)

    @staticmethod
    def apply_inverse_rotation_transform(
        rect: CoordinateRect,
        rotation: int,
        page_width: float,
        page_height: float
    ) -> CoordinateRect:
        """
        Undo apply_rotation_transform.

        The inverse is the rotation by (360 - rotation) % 360 taken in the
        rotated page's frame, where a quarter turn has swapped width and height.
        """
        inverse_rotation = (360 - rotation) % 360
        if rotation in (90, 270):
            page_width, page_height = page_height, page_width
        return CoordinateTransformer.apply_rotation_transform(
            rect, inverse_rotation, page_width, page_height
        )

    @staticmethod
    def screen_to_canvas(point: CoordinatePoint, canvas: CanvasElement) -> CoordinatePoint:
        """Map a client-space point onto the canvas' intrinsic pixel grid."""
        scale_x = _divide(canvas.width, canvas.client_width)
        scale_y = _divide(canvas.height, canvas.client_height)
        return CoordinatePoint(
            x=(point.x - canvas.left) * scale_x,
            y=(point.y - canvas.top) * scale_y
        )

    @staticmethod
    def canvas_to_screen(point: CoordinatePoint, canvas: CanvasElement) -> CoordinatePoint:
        """Inverse of screen_to_canvas."""
        scale_x = _divide(canvas.client_width, canvas.width)
        scale_y = _divide(canvas.client_height, canvas.height)
        return CoordinatePoint(
            x=point.x * scale_x + canvas.left,
            y=point.y * scale_y + canvas.top
        )

    @staticmethod
    def calculate_viewport_transform(
        pdf_dims: PDFPageDimensions,
        viewport_width: float,
        viewport_height: float,
        fit_mode: Union[FitMode, str] = FitMode.WIDTH
    ) -> ViewportTransform:
        """
        Fit a page into a viewport.

        Quarter-turned pages are fitted with width and height swapped. The fit
        scale is multiplied by the page scale, and the scaled page is centered
        (offsets never go negative).

        Raises:
            ValueError: fit_mode is not one of width/height/page
        """
        fit_mode = FitMode(fit_mode)

        if pdf_dims.is_sideways:
            rotated_width, rotated_height = pdf_dims.height, pdf_dims.width
        else:
            rotated_width, rotated_height = pdf_dims.width, pdf_dims.height

        fit_width = _divide(viewport_width, rotated_width)
        fit_height = _divide(viewport_height, rotated_height)

        if fit_mode == FitMode.WIDTH:
            scale = fit_width
        elif fit_mode == FitMode.HEIGHT:
            scale = fit_height
        else:
            scale = min(fit_width, fit_height)

        scale *= pdf_dims.scale

        offset_x = max(0.0, (viewport_width - rotated_width * scale) / 2)
        offset_y = max(0.0, (viewport_height - rotated_height * scale) / 2)

        return ViewportTransform(
            scale_x=scale,
            scale_y=scale,
            offset_x=offset_x,
            offset_y=offset_y,
            rotation=pdf_dims.rotation
        )

    @staticmethod
    def normalize_coordinates(rect: CoordinateRect, bounds: Bounds) -> CoordinateRect:
        """
        Clamp a rectangle into bounds.

        The origin is clamped to [0, bound - 1], the size is cut so the
        rectangle ends inside the bounds, and both sides are at least 1.
        Applying it twice gives the same result as applying it once.
        """
        x = min(max(0.0, rect.x), bounds.width - 1)
        y = min(max(0.0, rect.y), bounds.height - 1)

        width = min(rect.width, bounds.width - x)
        height = min(rect.height, bounds.height - y)

        return CoordinateRect(x, y, max(1.0, width), max(1.0, height))

    @staticmethod
    def relative_to_absolute(rect: CoordinateRect, dimensions: Bounds) -> CoordinateRect:
        """Scale a 0..1 relative rectangle up to the given dimensions."""
        return CoordinateRect(
            x=rect.x * dimensions.width,
            y=rect.y * dimensions.height,
            width=rect.width * dimensions.width,
            height=rect.height * dimensions.height
        )

    @staticmethod
    def absolute_to_relative(rect: CoordinateRect, dimensions: Bounds) -> CoordinateRect:
        """Scale an absolute rectangle down to 0..1 of the given dimensions."""
        return CoordinateRect(
            x=_divide(rect.x, dimensions.width),
            y=_divide(rect.y, dimensions.height),
            width=_divide(rect.width, dimensions.width),
            height=_divide(rect.height, dimensions.height)
        )

    @staticmethod
    def get_intersection(a: CoordinateRect, b: CoordinateRect) -> CoordinateRect | None:
        """Intersection of two rectangles, or None when it has no area."""
        left = max(a.x, b.x)
        top = max(a.y, b.y)
        right = min(a.right, b.right)
        bottom = min(a.bottom, b.bottom)

        if not (left < right and top < bottom):
            return None

        return CoordinateRect(left, top, right - left, bottom - top)

    @staticmethod
    def do_rects_overlap(a: CoordinateRect, b: CoordinateRect) -> bool:
        """True when the rectangles share some area. Touching edges do not count."""
        return CoordinateTransformer.get_intersection(a, b) is not None

    @staticmethod
    def get_overlap_percentage(a: CoordinateRect, b: CoordinateRect) -> float:
        """Intersection area as a percentage (0-100) of a's area. Not symmetric."""
        intersection = CoordinateTransformer.get_intersection(a, b)
        if intersection is None or a.area == 0:
            return 0.0
        return intersection.area / a.area * 100

    @staticmethod
    def overlap_ratios(rect: CoordinateRect, others: Sequence[CoordinateRect]) -> np.ndarray:
        """
        Overlap of rect with each of others, relative to the smaller of the two areas.

        Returns:
            Array with one ratio per entry of others; 0 where there is no overlap
        """
        if not others:
            return np.zeros(0, dtype=np.float64)

        boxes = np.array([o.as_tuple() for o in others], dtype=np.float64)
        box_x, box_y, box_w, box_h = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]

        left = np.maximum(rect.x, box_x)
        top = np.maximum(rect.y, box_y)
        right = np.minimum(rect.x + rect.width, box_x + box_w)
        bottom = np.minimum(rect.y + rect.height, box_y + box_h)

        overlapping = (left < right) & (top < bottom)
        intersection_area = np.where(overlapping, (right - left) * (bottom - top), 0.0)
        smaller_area = np.minimum(rect.width * rect.height, box_w * box_h)

        with np.errstate(divide='ignore', invalid='ignore'):
            ratios = np.where(
                overlapping & (smaller_area > 0),
                intersection_area / smaller_area,
                0.0
            )
        return ratios

    @staticmethod
    def snap_to_grid(rect: CoordinateRect, grid_size: float = 10) -> CoordinateRect:
        """Round x, y, width and height each to the nearest multiple of grid_size."""
        def snap(value: float) -> float:
            return _round_half_up(_divide(value, grid_size)) * grid_size

        return CoordinateRect(snap(rect.x), snap(rect.y), snap(rect.width), snap(rect.height))

    @staticmethod
    def get_distance(a: CoordinatePoint, b: CoordinatePoint) -> float:
        """Euclidean distance between two points."""
        return math.hypot(b.x - a.x, b.y - a.y)

    @staticmethod
    def get_rect_center(rect: CoordinateRect) -> CoordinatePoint:
        """Center point of a rectangle."""
        return CoordinatePoint(rect.x + rect.width / 2, rect.y + rect.height / 2)

    @staticmethod
    def scale_rect(rect: CoordinateRect, factor: float) -> CoordinateRect:
        """
        Scale a rectangle's size by factor, keeping its center fixed.
        Zero or negative factors are allowed and give degenerate or mirrored rectangles.
        """
        center = CoordinateTransformer.get_rect_center(rect)
        width = rect.width * factor
        height = rect.height * factor
        return CoordinateRect(center.x - width / 2, center.y - height / 2, width, height)


class CoordinateMapper:
    """Binds one page's geometry and canvas so callers can convert without repeating them."""

    def __init__(self, pdf_dims: PDFPageDimensions, canvas_dims: CanvasDimensions):
        self.pdf_dims = pdf_dims
        self.canvas_dims = canvas_dims

    def pdf_to_canvas(self, rect: CoordinateRect) -> CoordinateRect:
        return CoordinateTransformer.pdf_to_canvas(rect, self.pdf_dims, self.canvas_dims)

    def canvas_to_pdf(self, rect: CoordinateRect) -> CoordinateRect:
        return CoordinateTransformer.canvas_to_pdf(rect, self.pdf_dims, self.canvas_dims)

    def normalize(self, rect: CoordinateRect) -> CoordinateRect:
        """Clamp a canvas rectangle into the canvas."""
        return CoordinateTransformer.normalize_coordinates(rect, self.canvas_dims)


def is_supported_rotation(rotation: int) -> bool:
    """True for 0, 90, 180 and 270."""
    return rotation in SUPPORTED_ROTATIONS
