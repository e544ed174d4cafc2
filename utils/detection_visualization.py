"""
Visualization utilities for calibration and dot detection.
"""

import cv2
import math
import numpy as np
from typing import Sequence, Tuple


def draw_ordering(image: np.ndarray, dots: Sequence) -> np.ndarray:
    """
    Annotate dots with their 1-based order.

    Each contour is outlined and its index is drawn centered on the centroid,
    scaled to the dot radius (white outline under black text).

    Args:
        image: Image to draw on (BGR); it is copied, not modified
        dots: Objects with .contour and .centroid, in order

    Returns:
        Annotated copy of the image
    """
    output = image.copy()

    for index, dot in enumerate(dots):
        if dot.contour is None or dot.centroid is None:
            continue
        area = cv2.contourArea(dot.contour)
        radius = math.sqrt(area / math.pi)

        font_scale = max(radius / 20.0, 0.3)
        thickness = max(int(font_scale * 3), 1)
        outline_thickness = thickness + 4

        text = str(index + 1)
        (text_w, text_h), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness)
        origin = (
            int(round(dot.centroid[0] - text_w / 2.0)),
            int(round(dot.centroid[1] + text_h / 2.0))
        )

        cv2.drawContours(output, [dot.contour], -1, (0, 0, 0), 6)
        cv2.putText(output, text, origin, cv2.FONT_HERSHEY_SIMPLEX,
                    font_scale, (255, 255, 255), outline_thickness)
        cv2.putText(output, text, origin, cv2.FONT_HERSHEY_SIMPLEX,
                    font_scale, (0, 0, 0), thickness)

    return output


def create_color_summary(
    image: np.ndarray,
    colors_rgb: Sequence[Tuple[float, float, float]],
    swatch_size: int = 40
) -> np.ndarray:
    """
    Append a strip of color swatches below an image.

    Args:
        image: Annotated image (BGR)
        colors_rgb: Extracted dot colors in order, RGB
        swatch_size: Side length of each swatch in pixels

    Returns:
        New image, taller than the input by one swatch row
    """
    h, w = image.shape[:2]
    strip = np.full((swatch_size + 10, w, 3), 255, dtype=np.uint8)

    for idx, (r, g, b) in enumerate(colors_rgb):
        x = 5 + idx * (swatch_size + 5)
        if x + swatch_size > w:
            break
        bgr = (int(round(b)), int(round(g)), int(round(r)))
        cv2.rectangle(strip, (x, 5), (x + swatch_size, 5 + swatch_size), bgr, -1)
        cv2.rectangle(strip, (x, 5), (x + swatch_size, 5 + swatch_size), (0, 0, 0), 1)
        cv2.putText(strip, str(idx + 1), (x + 3, 5 + swatch_size - 5),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.4, (128, 128, 128), 1)

    base = image if image.ndim == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    return np.vstack([base, strip])
