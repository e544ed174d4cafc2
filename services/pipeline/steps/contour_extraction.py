"""
Contour extraction service for Micropad CV Service.
Turns a color photo into the set of closed outer boundaries that the
calibration and dot locators search through.
"""

import cv2
import numpy as np
import logging
from typing import Dict, List, Optional

from config.micropad_config import get_micropad_config
from services.utils.debug import DebugContext

logger = logging.getLogger(__name__)


class ContourExtractionService:
    """Service for binarizing a photo and extracting external contours."""

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize contour extraction service.

        Args:
            config: Optional 'contours' config section; defaults to
                get_micropad_config()['contours']
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or get_micropad_config()['contours']

        blur = int(self.config['blur_kernel_size'])
        block = int(self.config['threshold_block_size'])
        if blur < 1 or blur % 2 == 0:
            raise ValueError(f'blur_kernel_size must be a positive odd number, got {blur}')
        if block < 3 or block % 2 == 0:
            raise ValueError(f'threshold_block_size must be an odd number >= 3, got {block}')

    def threshold(self, image: np.ndarray, debug: Optional[DebugContext] = None) -> np.ndarray:
        """
        Binarize an image so dark ink and markers become foreground.

        Args:
            image: Input image (BGR format)
            debug: Optional DebugContext for visual logging

        Returns:
            Single-channel uint8 mask (255 = foreground)
        """
        if image.ndim == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image

        kernel = int(self.config['blur_kernel_size'])
        blurred = cv2.GaussianBlur(gray, (kernel, kernel), 0)

        thresh = cv2.adaptiveThreshold(
            blurred, 255,
            cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
            cv2.THRESH_BINARY_INV,
            int(self.config['threshold_block_size']),
            float(self.config['threshold_constant'])
        )

        if debug:
            debug.add_step('01_blurred', 'Blurred Luminance', blurred, {
                'blur_kernel_size': kernel
            })
            debug.add_step('02_threshold', 'Adaptive Threshold', thresh, {
                'block_size': self.config['threshold_block_size'],
                'constant': self.config['threshold_constant']
            })

        return thresh

    def find_contours(
        self,
        image: np.ndarray,
        debug: Optional[DebugContext] = None
    ) -> List[np.ndarray]:
        """
        Find external closed contours in an image.

        Nested boundaries are discarded. The result has no guaranteed order,
        but the same buffer always yields the same contours.

        Args:
            image: Input image (BGR format)
            debug: Optional DebugContext for visual logging

        Returns:
            List of OpenCV contours (Nx1x2 int32 arrays)
        """
        thresh = self.threshold(image, debug)

        contours, _ = cv2.findContours(thresh, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        contours = list(contours)

        self.logger.debug(f'Found {len(contours)} external contours')

        if debug:
            debug.add_step(
                '03_contours',
                'External Contours',
                debug.visualize_contours(image, contours),
                {'contour_count': len(contours)}
            )

        return contours
