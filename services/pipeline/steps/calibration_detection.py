"""
Calibration swatch detection for Micropad CV Service.

Pure OpenCV detection of the four reference color squares printed in a row
on the micropad card. Square-like contours are filtered by size, then the
most collinear, most evenly spaced group of four is selected.
"""

import cv2
import numpy as np
import logging
import math
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple

from config.micropad_config import get_micropad_config
from services.utils.debug import DebugContext
from utils.contour_geometry import Centroid, bounding_box, contour_centroid, contour_mask

logger = logging.getLogger(__name__)

SWATCH_COUNT = 4


@dataclass(frozen=True, eq=False)
class CalibrationSquare:
    """One reference-color swatch located in the photo."""
    contour: np.ndarray
    centroid: Centroid
    area: float
    bbox: Tuple[int, int, int, int]  # x, y, width, height


def best_fit_line(points: Sequence[Centroid]) -> Tuple[float, float, float]:
    """
    Total least squares line through a set of points.

    Returns:
        (mean_x, mean_y, angle) where angle is the line direction in radians
    """
    xs = np.array([p[0] for p in points], dtype=np.float64)
    ys = np.array([p[1] for p in points], dtype=np.float64)
    cx, cy = xs.mean(), ys.mean()
    dx, dy = xs - cx, ys - cy
    sxx = float(np.sum(dx * dx))
    sxy = float(np.sum(dx * dy))
    syy = float(np.sum(dy * dy))
    angle = 0.5 * math.atan2(2 * sxy, sxx - syy)
    return float(cx), float(cy), angle


def collinearity_score(points: Sequence[Centroid]) -> float:
    """Sum of squared perpendicular distances of the points from their best-fit line."""
    cx, cy, angle = best_fit_line(points)
    nx, ny = -math.sin(angle), math.cos(angle)
    return float(sum(((x - cx) * nx + (y - cy) * ny) ** 2 for x, y in points))


def spacing_score(points: Sequence[Centroid]) -> float:
    """
    Unevenness of the gaps between points along their best-fit line.

    Points are projected onto the line, sorted, and the squared deviations of
    consecutive gaps from the mean gap are summed and divided by the squared
    mean gap. Zero means perfectly even spacing; coincident points score inf.
    """
    cx, cy, angle = best_fit_line(points)
    ux, uy = math.cos(angle), math.sin(angle)
    projections = sorted((x - cx) * ux + (y - cy) * uy for x, y in points)
    gaps = np.diff(projections)
    mean_gap = float(np.mean(gaps))
    if mean_gap == 0:
        return math.inf
    return float(np.sum((gaps - mean_gap) ** 2) / mean_gap ** 2)


class CalibrationDetectionService:
    """
    Service for locating the calibration swatches among image contours.

    No AI/ML required - uses polygon approximation and combinatorial search.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize calibration detection service.

        Args:
            config: Optional 'calibration' config section; defaults to
                get_micropad_config()['calibration']
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or get_micropad_config()['calibration']

    def find_calibration_squares(
        self,
        image: np.ndarray,
        contours: Sequence[np.ndarray],
        debug: Optional[DebugContext] = None
    ) -> List[CalibrationSquare]:
        """
        Find the four calibration swatches.

        Args:
            image: Input image (BGR format), used for debug output only
            contours: Contours from ContourExtractionService
            debug: Optional DebugContext for visual logging

        Returns:
            The 4 swatches sorted left to right by centroid x, or an empty
            list when fewer than 4 plausible candidates exist
        """
        candidates = self._find_square_candidates(contours)
        self.logger.debug(f'Found {len(candidates)} square candidates')

        if len(candidates) < SWATCH_COUNT:
            self.logger.warning(f'Not enough square candidates: {len(candidates)}')
            return []

        median_area = self._median_area(candidates)
        tolerance = float(self.config['area_tolerance'])
        filtered = [
            c for c in candidates
            if abs(c.area - median_area) / median_area < tolerance
        ]

        if len(filtered) < SWATCH_COUNT:
            self.logger.warning(f'Not enough candidates after area filter: {len(filtered)}')
            return []

        best_group, best_score = self._select_best_group(filtered, median_area)
        squares = sorted(best_group, key=lambda s: s.centroid[0])

        self.logger.debug(
            f'Calibration swatches selected from {len(filtered)} candidates, '
            f'best score: {best_score:.3f}'
        )

        if debug:
            debug.add_step(
                '04_calibration',
                'Calibration Swatches',
                debug.visualize_calibration(image, squares),
                {
                    'candidate_count': len(candidates),
                    'filtered_count': len(filtered),
                    'median_area': median_area,
                    'best_score': best_score,
                    'centroids': [s.centroid for s in squares]
                }
            )

        return squares

    def extract_calibration_colors(
        self,
        image: np.ndarray,
        squares: Sequence[CalibrationSquare]
    ) -> List[Tuple[float, float, float]]:
        """
        Mean color of each swatch region.

        Args:
            image: Input image (BGR format)
            squares: Swatches from find_calibration_squares

        Returns:
            List of (b, g, r) means in swatch order
        """
        colors = []
        for square in squares:
            mask = contour_mask(image.shape, square.contour)
            mean = cv2.mean(image, mask=mask)
            colors.append((float(mean[0]), float(mean[1]), float(mean[2])))
        return colors

    def _find_square_candidates(self, contours: Sequence[np.ndarray]) -> List[CalibrationSquare]:
        """Contours whose simplified outline is a small-vertex, square-like polygon."""
        min_area = float(self.config['min_area'])
        epsilon_ratio = float(self.config['approx_epsilon'])
        min_vertices = int(self.config['min_vertices'])
        max_vertices = int(self.config['max_vertices'])
        min_aspect, max_aspect = self.config['aspect_ratio_range']

        candidates = []
        for contour in contours:
            area = cv2.contourArea(contour)
            if area < min_area:
                continue

            perimeter = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, epsilon_ratio * perimeter, True)
            if not (min_vertices <= len(approx) <= max_vertices):
                continue

            x, y, w, h = bounding_box(contour)
            if h == 0:
                continue
            aspect = w / float(h)
            if not (min_aspect <= aspect <= max_aspect):
                continue

            centroid = contour_centroid(contour)
            if centroid is None:
                continue

            candidates.append(CalibrationSquare(
                contour=contour,
                centroid=centroid,
                area=float(area),
                bbox=(x, y, w, h)
            ))

        return candidates

    def _median_area(self, candidates: Sequence[CalibrationSquare]) -> float:
        areas = sorted(c.area for c in candidates)
        return areas[len(areas) // 2]

    def _select_best_group(
        self,
        candidates: Sequence[CalibrationSquare],
        median_area: float
    ) -> Tuple[Tuple[CalibrationSquare, ...], float]:
        """
        Exhaustive search over all groups of four.

        Score = collinearity + spacing * median_area; the first group reaching
        the minimum wins.
        """
        best_score = math.inf
        best_group = tuple(candidates[:SWATCH_COUNT])

        for group in combinations(candidates, SWATCH_COUNT):
            points = [c.centroid for c in group]
            score = collinearity_score(points) + spacing_score(points) * median_area
            if score < best_score:
                best_score = score
                best_group = group

        return best_group, best_score
