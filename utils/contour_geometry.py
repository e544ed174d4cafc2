"""
Contour geometry helpers shared by the calibration and dot locators.
"""

import cv2
import numpy as np
from typing import Optional, Tuple

Centroid = Tuple[float, float]


def contour_centroid(contour: np.ndarray) -> Optional[Centroid]:
    """
    Area-weighted centroid of a contour from its image moments.

    Args:
        contour: OpenCV contour (Nx1x2 or Nx2)

    Returns:
        (cx, cy), or None when the contour encloses zero area
    """
    moments = cv2.moments(np.asarray(contour, dtype=np.float32))
    if moments['m00'] == 0:
        return None
    return (moments['m10'] / moments['m00'], moments['m01'] / moments['m00'])


def shrink_contour(contour: np.ndarray, factor: float, center: Optional[Centroid] = None) -> np.ndarray:
    """
    Pull every contour point toward the centroid.

    Each point p becomes c + factor * (p - c), so factor=0.4 keeps the inner
    40% of the radius.

    Args:
        contour: OpenCV contour (Nx1x2)
        factor: Fraction of the distance to the centroid to keep
        center: Optional precomputed centroid

    Returns:
        New int32 contour with the same number of points

    Raises:
        ValueError: If the contour has zero area and no center is given
    """
    if center is None:
        center = contour_centroid(contour)
        if center is None:
            raise ValueError('Cannot shrink a contour with zero area')

    points = np.asarray(contour, dtype=np.float64).reshape(-1, 2)
    c = np.array(center, dtype=np.float64)
    shrunk = c + (points - c) * factor
    return np.round(shrunk).astype(np.int32).reshape(-1, 1, 2)


def contour_mask(shape: Tuple[int, ...], contour: np.ndarray) -> np.ndarray:
    """Filled single-channel mask (255 inside) of a contour for an image shape."""
    mask = np.zeros(shape[:2], dtype=np.uint8)
    cv2.drawContours(mask, [np.asarray(contour, dtype=np.int32)], 0, 255, thickness=cv2.FILLED)
    return mask


def bounding_box(contour: np.ndarray) -> Tuple[int, int, int, int]:
    """(x, y, width, height) of a contour's upright bounding rectangle."""
    x, y, w, h = cv2.boundingRect(np.asarray(contour, dtype=np.int32))
    return int(x), int(y), int(w), int(h)
