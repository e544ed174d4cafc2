"""
Service interfaces and type definitions for Micropad CV Service.

This module defines the data structures used for communication between
services and with API callers, ensuring clear contracts.
"""

from enum import Enum
from typing import TypedDict, List, Optional, Any


class NormalizationStrategy(str, Enum):
    """How the measured calibration colors are mapped onto the reference colors."""
    REGRESSION = 'Regression'
    MIN_MAX = 'MinMax'
    Z_SCORE = 'ZScore'


class DistanceKind(str, Enum):
    """Distance used when matching a dot color against reference samples."""
    EUCLIDEAN = 'Euclidean'
    MANHATTAN = 'Manhattan'
    CIEDE2000 = 'CIEDE2000'


class ColorSpace(str, Enum):
    """Representation of a dot color used by the classifier."""
    RGB = 'RGB'
    GREYSCALE = 'Greyscale'
    LAB = 'Lab'


class Point(TypedDict):
    """2-D image coordinate (pixels, may be fractional)."""
    x: float
    y: float


class RGBColor(TypedDict):
    """RGB color with 0-255 float components."""
    r: float
    g: float
    b: float


class CalibrationSwatchResult(TypedDict):
    """
    One calibration swatch as reported to callers.

    swatch_index follows left-to-right order on the card.
    """
    swatch_index: int
    centroid: Point
    area: float
    measured: RGBColor  # Mean color before correction
    expected: RGBColor  # Reference color


class ChannelFitResult(TypedDict):
    """Affine correction fitted for one color channel."""
    channel: str  # 'b', 'g' or 'r'
    scale: float
    offset: float


class DotResult(TypedDict):
    """
    Dye dot as reported to callers.

    dot_index is the canonical row-major index used for labeling and
    classification.
    """
    dot_index: int
    row: Optional[int]
    col: Optional[int]
    centroid: Optional[Point]
    rgb: RGBColor
    hex: str
    greyscale: float
    label: str


class SampleResult(TypedDict):
    """Serialized Sample."""
    sample_index: int
    dot_count: int
    dots: List[DotResult]
    labels: List[str]
    valid: bool
    is_reference: bool
    reference_name: str
    ordering_image: Optional[str]  # Base64 PNG if requested


class PhotoResult(TypedDict, total=False):
    """
    Outcome of ingesting one photograph.

    On failure only success, image_index, image_name, error and error_code
    are set.
    """
    success: bool
    image_index: int
    image_name: str
    sample: Any  # services.dataset.sample.Sample
    calibration: List[CalibrationSwatchResult]
    channel_fits: List[ChannelFitResult]
    dot_count: int
    card_cropped: bool
    processing_time_ms: int
    visual_log_path: Optional[str]
    error: Optional[str]
    error_code: Optional[str]


class IngestionResult(TypedDict):
    """
    Outcome of ingesting a batch of photographs.

    dataset holds the samples of successful photos in input order; results
    holds one PhotoResult per input photo, also in input order.
    """
    success: bool
    dataset: Any  # services.dataset.sample.SampleDataset
    results: List[PhotoResult]
    images_processed: int
    samples_created: int
    failed_count: int
    consistent_dot_count: bool
