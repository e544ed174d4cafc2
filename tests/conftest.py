"""
Shared fixtures: synthetic micropad photos drawn with OpenCV.
"""

import cv2
import numpy as np
import pytest

from config.micropad_config import REFERENCE_COLORS_BGR

# Dye colors (BGR) for the default three-dot pad: red, blue, green
DYE_COLORS_BGR = [(40, 40, 200), (200, 40, 40), (40, 160, 40)]


def draw_micropad(
    width=600,
    height=400,
    swatch_colors=REFERENCE_COLORS_BGR,
    swatch_side=30,
    swatch_y=60,
    swatch_xs=(100, 200, 300, 400),
    dot_colors=DYE_COLORS_BGR,
    dot_radius=24,
    dot_centers=((150, 250), (300, 250), (450, 250)),
    background=(255, 255, 255)
):
    """White card with a row of calibration squares above a row of dye dots."""
    image = np.full((height, width, 3), background, dtype=np.uint8)
    half = swatch_side // 2
    for x, color in zip(swatch_xs, swatch_colors):
        cv2.rectangle(
            image,
            (x - half, swatch_y - half),
            (x - half + swatch_side - 1, swatch_y - half + swatch_side - 1),
            tuple(int(c) for c in color),
            -1
        )
    for (cx, cy), color in zip(dot_centers, dot_colors):
        cv2.circle(image, (cx, cy), dot_radius, tuple(int(c) for c in color), -1)
    return image


@pytest.fixture
def micropad_image():
    return draw_micropad()


@pytest.fixture
def micropad_factory():
    return draw_micropad


@pytest.fixture
def framed_micropad_image():
    """The default micropad placed on a dark grey table."""
    card = draw_micropad()
    frame = np.full((card.shape[0] + 200, card.shape[1] + 200, 3), 70, dtype=np.uint8)
    frame[100:100 + card.shape[0], 100:100 + card.shape[1]] = card
    return frame
