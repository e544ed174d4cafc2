"""
Card detection service for Micropad CV Service.

Locates the white micropad card in a photo and crops to it, so background
clutter never reaches the contour search.
"""

import cv2
import numpy as np
import logging
from typing import Dict, Optional

from config.micropad_config import get_micropad_config
from services.utils.debug import DebugContext

logger = logging.getLogger(__name__)


class CardDetectionService:
    """Service for finding the white card region in a photo."""

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize card detection service.

        Args:
            config: Optional 'card' config section; defaults to
                get_micropad_config()['card']
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or get_micropad_config()['card']

    def white_mask(self, image: np.ndarray) -> np.ndarray:
        """Low saturation, high value pixels, closed with a 5x5 kernel."""
        hsv = cv2.cvtColor(image, cv2.COLOR_BGR2HSV)
        mask = cv2.inRange(
            hsv,
            np.array([0, 0, int(self.config['min_value'])]),
            np.array([180, int(self.config['max_saturation']), 255])
        )
        kernel = np.ones((5, 5), np.uint8)
        return cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel)

    def find_card(self, image: np.ndarray, debug: Optional[DebugContext] = None) -> Optional[np.ndarray]:
        """
        Crop an image to the white card it contains.

        Args:
            image: Input image (BGR format)
            debug: Optional DebugContext for visual logging

        Returns:
            Cropped copy of the card region, or None when no white region
            covers at least min_frame_ratio of the frame
        """
        mask = self.white_mask(image)
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        if not contours:
            self.logger.debug('No white regions found')
            return None

        largest = max(contours, key=cv2.contourArea)
        area = cv2.contourArea(largest)
        frame_area = image.shape[0] * image.shape[1]
        ratio = area / frame_area if frame_area else 0.0

        if ratio < float(self.config['min_frame_ratio']):
            self.logger.debug(f'Largest white region covers {ratio:.1%} of frame, no card')
            return None

        x, y, w, h = cv2.boundingRect(largest)
        card = image[y:y + h, x:x + w].copy()
        self.logger.debug(f'Card found at ({x}, {y}) size {w}x{h} ({ratio:.1%} of frame)')

        if debug:
            vis = image.copy()
            cv2.rectangle(vis, (x, y), (x + w, y + h), (0, 255, 0), 3)
            debug.add_step('00_card', 'Card Region', vis, {
                'bbox': [x, y, w, h],
                'frame_ratio': ratio
            })

        return card
