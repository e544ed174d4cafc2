"""
Unit tests for card detection.
"""

import cv2
import numpy as np

from services.pipeline.steps.card_detection import CardDetectionService


class TestCardDetection:
    """Test cases for CardDetectionService."""

    def setup_method(self):
        """Set up test fixtures."""
        self.service = CardDetectionService()

    def test_crops_to_white_card(self):
        image = np.full((400, 600, 3), 100, dtype=np.uint8)
        cv2.rectangle(image, (100, 50), (499, 349), (255, 255, 255), -1)

        card = self.service.find_card(image)

        assert card is not None
        assert card.shape == (300, 400, 3)
        assert np.all(card == 255)

    def test_card_with_printed_content(self, framed_micropad_image):
        card = self.service.find_card(framed_micropad_image)

        assert card is not None
        assert card.shape == (400, 600, 3)

    def test_small_white_region_ignored(self):
        image = np.full((400, 600, 3), 100, dtype=np.uint8)
        cv2.rectangle(image, (10, 10), (59, 59), (255, 255, 255), -1)

        assert self.service.find_card(image) is None

    def test_no_white_region(self):
        image = np.full((200, 200, 3), 60, dtype=np.uint8)
        assert self.service.find_card(image) is None

    def test_saturated_bright_color_is_not_card(self):
        image = np.full((200, 200, 3), (0, 255, 255), dtype=np.uint8)  # Yellow
        assert self.service.find_card(image) is None

    def test_input_not_modified(self):
        image = np.full((400, 600, 3), 100, dtype=np.uint8)
        cv2.rectangle(image, (100, 50), (499, 349), (255, 255, 255), -1)
        original = image.copy()

        card = self.service.find_card(image)
        card[:] = 0

        assert np.array_equal(image, original)
