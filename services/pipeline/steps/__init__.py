"""
Pipeline step services.

Steps:
- CardDetectionService: Crops the photo to the white card
- ContourExtractionService: Thresholds the photo and finds outer contours
- CalibrationDetectionService: Finds the four calibration swatches
- DotDetectionService: Finds, orders and samples the dye dots
- ColorRebalanceService: Corrects colors against the calibration references
"""

from services.pipeline.steps.card_detection import CardDetectionService
from services.pipeline.steps.contour_extraction import ContourExtractionService
from services.pipeline.steps.calibration_detection import CalibrationDetectionService
from services.pipeline.steps.dot_detection import DotDetectionService
from services.pipeline.steps.color_rebalance import ColorRebalanceService

__all__ = [
    'CardDetectionService',
    'ContourExtractionService',
    'CalibrationDetectionService',
    'DotDetectionService',
    'ColorRebalanceService'
]
