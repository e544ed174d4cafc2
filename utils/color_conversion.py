"""
Color conversion utilities for Micropad CV Service.
Handles conversions between BGR/RGB triples, greyscale and CIELAB.
"""

import numpy as np
from typing import Sequence, Tuple
import logging
from colormath.color_objects import LabColor, sRGBColor
from colormath.color_conversions import convert_color

logger = logging.getLogger(__name__)

RGBTriple = Tuple[float, float, float]

# ITU-R BT.601 luma weights
GREY_WEIGHTS: RGBTriple = (0.299, 0.587, 0.114)


def bgr_to_rgb_triple(bgr: Sequence[float]) -> RGBTriple:
    """
    Reorder an OpenCV BGR(A) scalar into an RGB triple of floats.

    Args:
        bgr: Sequence with at least 3 values in B, G, R order

    Returns:
        Tuple (r, g, b)
    """
    return (float(bgr[2]), float(bgr[1]), float(bgr[0]))


def rgb_to_greyscale(rgb: Sequence[float]) -> float:
    """
    Convert an RGB triple to a greyscale intensity.

    Grey = 0.299 R + 0.587 G + 0.114 B
    """
    r, g, b = rgb[0], rgb[1], rgb[2]
    return float(GREY_WEIGHTS[0] * r + GREY_WEIGHTS[1] * g + GREY_WEIGHTS[2] * b)


def rgb_to_lab(rgb: Sequence[float]) -> Tuple[float, float, float]:
    """
    Convert an 8-bit RGB triple to standard CIELAB (D65).

    Args:
        rgb: (r, g, b) with components in 0-255

    Returns:
        Tuple of (L, a, b):
        - L: 0-100
        - a: roughly -128 to +127
        - b: roughly -128 to +127
    """
    srgb = sRGBColor(float(rgb[0]), float(rgb[1]), float(rgb[2]), is_upscaled=True)
    lab = convert_color(srgb, LabColor)
    return (float(lab.lab_l), float(lab.lab_a), float(lab.lab_b))


def rgb_to_hex(r: int, g: int, b: int) -> str:
    """
    Convert RGB values to hex color string.

    Args:
        r: Red value (0-255)
        g: Green value (0-255)
        b: Blue value (0-255)

    Returns:
        Hex color string (e.g., "#A4C639")
    """
    def clamp(value):
        return max(0, min(255, int(round(value))))
    return f'#{clamp(r):02X}{clamp(g):02X}{clamp(b):02X}'


def as_lab_vector(rgb: Sequence[float]) -> np.ndarray:
    """Lab conversion as a float array, for vectorised distance functions."""
    return np.array(rgb_to_lab(rgb), dtype=np.float64)
