"""
Dye dot detection service for Micropad CV Service.

Finds circular dye wells among image contours, keeps the ones of consistent
size, orders them row-major on the card grid, and extracts one
representative dye color per well.
"""

import cv2
import numpy as np
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from config.micropad_config import get_micropad_config
from services.utils.debug import DebugContext
from utils.color_conversion import RGBTriple, bgr_to_rgb_triple
from utils.contour_geometry import Centroid, bounding_box, contour_centroid, contour_mask, shrink_contour
from utils.detection_visualization import draw_ordering

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class DotCandidate:
    """A located dye well, before color correction."""
    contour: np.ndarray  # Shrunk contour used for sampling
    centroid: Centroid
    area: float  # Area of the shrunk contour
    row: int = 0
    col: int = 0


def assign_grid_indices(
    centroids: Sequence[Centroid],
    row_tolerance_ratio: float = 0.6
) -> List[Tuple[int, int, int]]:
    """
    Order points row-major on an approximate grid.

    The nominal spacing is the mean nearest-neighbor distance. Points are
    visited by ascending y and joined to the first existing row whose running
    mean y lies within row_tolerance_ratio * spacing, otherwise they open a
    new row. Rows are sorted by mean y and members by x.

    Args:
        centroids: (x, y) points in any order
        row_tolerance_ratio: Row tolerance as a fraction of grid spacing

    Returns:
        List of (input_index, row, col) in row-major order
    """
    if not centroids:
        return []

    points = np.asarray(centroids, dtype=np.float64).reshape(-1, 2)

    if len(points) > 1:
        diffs = points[:, None, :] - points[None, :, :]
        distances = np.hypot(diffs[..., 0], diffs[..., 1])
        np.fill_diagonal(distances, np.inf)
        spacing = float(np.mean(distances.min(axis=1)))
    else:
        spacing = 0.0
    row_tolerance = spacing * row_tolerance_ratio

    # Stable sort on (y, x, index) keeps the result independent of input order
    by_y = sorted(range(len(points)), key=lambda i: (points[i][1], points[i][0], i))

    rows: List[List[int]] = []
    for i in by_y:
        y = points[i][1]
        for row in rows:
            row_y = float(np.mean([points[j][1] for j in row]))
            if abs(y - row_y) < row_tolerance:
                row.append(i)
                break
        else:
            rows.append([i])

    rows.sort(key=lambda row: float(np.mean([points[j][1] for j in row])))

    ordered = []
    for row_index, row in enumerate(rows):
        for col_index, i in enumerate(sorted(row, key=lambda j: (points[j][0], points[j][1], j))):
            ordered.append((i, row_index, col_index))
    return ordered


def extract_dye_color(
    image: np.ndarray,
    contour: np.ndarray,
    config: Optional[Dict] = None
) -> RGBTriple:
    """
    Representative dye color inside a contour.

    Pixels are kept when saturated enough and not too dark, minus near-white
    pixels (low saturation, high value).

    Args:
        image: Input image (BGR format)
        contour: Region to sample
        config: Optional 'dots' config section

    Returns:
        Mean (r, g, b) over the surviving pixels; (0, 0, 0) when none survive
    """
    config = config or get_micropad_config()['dots']

    region_mask = contour_mask(image.shape, contour)
    hsv = cv2.cvtColor(image, cv2.COLOR_BGR2HSV)

    color_mask = cv2.inRange(
        hsv,
        np.array([0, config['dye_min_saturation'], config['dye_min_value']]),
        np.array([180, 255, 255])
    )
    white_mask = cv2.inRange(
        hsv,
        np.array([0, 0, config['white_min_value']]),
        np.array([180, config['white_max_saturation'], 255])
    )
    color_mask = cv2.subtract(color_mask, white_mask)
    color_mask = cv2.bitwise_and(color_mask, region_mask)

    if cv2.countNonZero(color_mask) == 0:
        logger.warning('No dye pixels inside dot region, reporting black')
        return (0.0, 0.0, 0.0)

    return bgr_to_rgb_triple(cv2.mean(image, mask=color_mask))


class DotDetectionService:
    """Service for locating and ordering dye dots."""

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize dot detection service.

        Args:
            config: Optional 'dots' config section; defaults to
                get_micropad_config()['dots']
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or get_micropad_config()['dots']

    def find_dots(
        self,
        image: np.ndarray,
        contours: Sequence[np.ndarray],
        debug: Optional[DebugContext] = None
    ) -> List[DotCandidate]:
        """
        Locate dye dots and order them row-major.

        Args:
            image: Input image (BGR format), used for debug output only
            contours: Contours from ContourExtractionService
            debug: Optional DebugContext for visual logging

        Returns:
            Ordered dots with shrunk sampling contours and (row, col) set;
            empty if nothing circular was found
        """
        candidates = self._find_circular_candidates(contours)
        self.logger.debug(f'Found {len(candidates)} circular candidates')

        if not candidates:
            return []

        kept = self._filter_by_size(candidates)
        self.logger.debug(f'{len(kept)} dots after size consistency filter')

        ordering = assign_grid_indices(
            [dot.centroid for dot in kept],
            float(self.config['row_tolerance_ratio'])
        )
        dots = []
        for i, row, col in ordering:
            dot = kept[i]
            dot.row, dot.col = row, col
            dots.append(dot)

        if debug:
            debug.add_step(
                '05_dots',
                'Ordered Dye Dots',
                draw_ordering(image, dots),
                {
                    'candidate_count': len(candidates),
                    'dot_count': len(dots),
                    'grid': [(d.row, d.col) for d in dots]
                }
            )

        return dots

    def extract_colors(self, image: np.ndarray, dots: Sequence[DotCandidate]) -> List[RGBTriple]:
        """Extract the dye color of every dot from the given image."""
        return [extract_dye_color(image, dot.contour, self.config) for dot in dots]

    def _find_circular_candidates(self, contours: Sequence[np.ndarray]) -> List[DotCandidate]:
        """Contours whose area and perimeter both match a circle of the same width."""
        min_area = float(self.config['min_area'])
        max_area_error = float(self.config['max_area_error'])
        max_perimeter_error = float(self.config['max_perimeter_error'])
        shrink = float(self.config['shrink_factor'])

        candidates = []
        for contour in contours:
            area = cv2.contourArea(contour)
            if area <= min_area:
                continue

            _, _, w, h = bounding_box(contour)
            diameter = (w + h) / 2.0
            circular_area = math.pi * (diameter / 2.0) ** 2
            area_error = abs(circular_area - area) / area

            perimeter = cv2.arcLength(contour, True)
            if perimeter == 0:
                continue
            circularity = 4 * math.pi * area / (perimeter * perimeter)
            perimeter_error = abs(1 - circularity)

            if area_error >= max_area_error or perimeter_error >= max_perimeter_error:
                continue

            center = contour_centroid(contour)
            if center is None:
                continue

            shrunk = shrink_contour(contour, shrink, center)
            candidates.append(DotCandidate(
                contour=shrunk,
                centroid=center,
                area=float(cv2.contourArea(shrunk))
            ))
            self.logger.debug(
                f'Dot candidate at ({center[0]:.1f}, {center[1]:.1f}): '
                f'area error {area_error:.3f}, perimeter error {perimeter_error:.3f}'
            )

        return candidates

    def _filter_by_size(self, candidates: Sequence[DotCandidate]) -> List[DotCandidate]:
        """
        Keep candidates whose area is close to the typical dot area.

        The typical area is the median of the largest few candidates, which
        drops both merged and fragmented detections.
        """
        by_size = sorted(candidates, key=lambda d: d.area, reverse=True)
        top = sorted(d.area for d in by_size[:int(self.config['size_reference_count'])])
        median_area = top[len(top) // 2]
        if median_area <= 0:
            return []

        tolerance = float(self.config['size_tolerance'])
        return [d for d in by_size if abs(d.area - median_area) / median_area < tolerance]
