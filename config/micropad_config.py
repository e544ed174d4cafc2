"""
Micropad analysis configuration.

Thresholds for contour extraction, calibration swatch detection, color
rebalancing, dot detection and ingestion. Values can be overridden through
environment variables.
"""

import os
from typing import Dict, Optional, Tuple

# Reference calibration colors in BGR order, left to right on the card
REFERENCE_COLORS_BGR: Tuple[Tuple[float, float, float], ...] = (
    (0.0, 0.0, 0.0),        # Black
    (255.0, 255.0, 0.0),    # Cyan
    (0.0, 255.0, 255.0),    # Yellow
    (255.0, 0.0, 255.0),    # Magenta
)

# Color the control dot is expected to have after correction
CONTROL_DOT_REFERENCE_BGR: Tuple[float, float, float] = (255.0, 255.0, 255.0)

# Ingestion
MAX_IMAGE_DIMENSION: int = int(os.getenv('MICROPAD_MAX_IMAGE_DIMENSION', '1000'))
INGEST_MAX_WORKERS: int = int(os.getenv('MICROPAD_INGEST_MAX_WORKERS', '4'))
CROP_CARD: bool = os.getenv('MICROPAD_CROP_CARD', 'true').lower() == 'true'

# Contour extraction
BLUR_KERNEL_SIZE: int = int(os.getenv('MICROPAD_BLUR_KERNEL_SIZE', '9'))  # Must be odd
THRESHOLD_BLOCK_SIZE: int = int(os.getenv('MICROPAD_THRESHOLD_BLOCK_SIZE', '35'))  # Must be odd
THRESHOLD_CONSTANT: float = float(os.getenv('MICROPAD_THRESHOLD_CONSTANT', '2.0'))

# Card detection
CARD_MIN_FRAME_RATIO: float = float(os.getenv('MICROPAD_CARD_MIN_FRAME_RATIO', '0.10'))
CARD_MAX_SATURATION: int = int(os.getenv('MICROPAD_CARD_MAX_SATURATION', '40'))
CARD_MIN_VALUE: int = int(os.getenv('MICROPAD_CARD_MIN_VALUE', '180'))

# Calibration swatches
CALIBRATION_MIN_AREA: float = float(os.getenv('MICROPAD_CALIBRATION_MIN_AREA', '50'))
CALIBRATION_APPROX_EPSILON: float = float(os.getenv('MICROPAD_CALIBRATION_APPROX_EPSILON', '0.04'))  # Ratio of perimeter
CALIBRATION_MIN_VERTICES: int = int(os.getenv('MICROPAD_CALIBRATION_MIN_VERTICES', '4'))
CALIBRATION_MAX_VERTICES: int = int(os.getenv('MICROPAD_CALIBRATION_MAX_VERTICES', '6'))
CALIBRATION_MIN_ASPECT: float = float(os.getenv('MICROPAD_CALIBRATION_MIN_ASPECT', '0.7'))
CALIBRATION_MAX_ASPECT: float = float(os.getenv('MICROPAD_CALIBRATION_MAX_ASPECT', '1.3'))
CALIBRATION_AREA_TOLERANCE: float = float(os.getenv('MICROPAD_CALIBRATION_AREA_TOLERANCE', '0.5'))

# Dye dots
DOT_MIN_AREA: float = float(os.getenv('MICROPAD_DOT_MIN_AREA', '100'))
DOT_MAX_AREA_ERROR: float = float(os.getenv('MICROPAD_DOT_MAX_AREA_ERROR', '0.3'))
DOT_MAX_PERIMETER_ERROR: float = float(os.getenv('MICROPAD_DOT_MAX_PERIMETER_ERROR', '0.4'))
DOT_SHRINK_FACTOR: float = float(os.getenv('MICROPAD_DOT_SHRINK_FACTOR', '0.4'))
DOT_SIZE_REFERENCE_COUNT: int = int(os.getenv('MICROPAD_DOT_SIZE_REFERENCE_COUNT', '4'))
DOT_SIZE_TOLERANCE: float = float(os.getenv('MICROPAD_DOT_SIZE_TOLERANCE', '0.2'))
ROW_TOLERANCE_RATIO: float = float(os.getenv('MICROPAD_ROW_TOLERANCE_RATIO', '0.6'))  # Ratio of grid spacing

# Dye color extraction (OpenCV HSV ranges: H 0-180, S/V 0-255)
DYE_MIN_SATURATION: int = int(os.getenv('MICROPAD_DYE_MIN_SATURATION', '15'))
DYE_MIN_VALUE: int = int(os.getenv('MICROPAD_DYE_MIN_VALUE', '50'))
WHITE_MAX_SATURATION: int = int(os.getenv('MICROPAD_WHITE_MAX_SATURATION', '40'))
WHITE_MIN_VALUE: int = int(os.getenv('MICROPAD_WHITE_MIN_VALUE', '200'))


MICROPAD_CONFIG: Dict = {
    'ingestion': {
        'max_image_dimension': MAX_IMAGE_DIMENSION,
        'max_workers': INGEST_MAX_WORKERS,
        'crop_card': CROP_CARD,
    },
    'contours': {
        'blur_kernel_size': BLUR_KERNEL_SIZE,
        'threshold_block_size': THRESHOLD_BLOCK_SIZE,
        'threshold_constant': THRESHOLD_CONSTANT,
    },
    'card': {
        'min_frame_ratio': CARD_MIN_FRAME_RATIO,
        'max_saturation': CARD_MAX_SATURATION,
        'min_value': CARD_MIN_VALUE,
    },
    'calibration': {
        'min_area': CALIBRATION_MIN_AREA,
        'approx_epsilon': CALIBRATION_APPROX_EPSILON,
        'min_vertices': CALIBRATION_MIN_VERTICES,
        'max_vertices': CALIBRATION_MAX_VERTICES,
        'aspect_ratio_range': (CALIBRATION_MIN_ASPECT, CALIBRATION_MAX_ASPECT),
        'area_tolerance': CALIBRATION_AREA_TOLERANCE,
    },
    'dots': {
        'min_area': DOT_MIN_AREA,
        'max_area_error': DOT_MAX_AREA_ERROR,
        'max_perimeter_error': DOT_MAX_PERIMETER_ERROR,
        'shrink_factor': DOT_SHRINK_FACTOR,
        'size_reference_count': DOT_SIZE_REFERENCE_COUNT,
        'size_tolerance': DOT_SIZE_TOLERANCE,
        'row_tolerance_ratio': ROW_TOLERANCE_RATIO,
        'dye_min_saturation': DYE_MIN_SATURATION,
        'dye_min_value': DYE_MIN_VALUE,
        'white_max_saturation': WHITE_MAX_SATURATION,
        'white_min_value': WHITE_MIN_VALUE,
    },
}

# Preset configurations
PRESETS: Dict[str, Dict] = {
    'strict': {
        'calibration': {
            'aspect_ratio_range': (0.9, 1.1),
            'min_area': 100.0,
        },
        'dots': {
            'max_area_error': 0.1,
            'max_perimeter_error': 0.2,
        },
    },
    'lenient': {
        'calibration': {
            'aspect_ratio_range': (0.6, 1.4),
        },
        'dots': {
            'max_area_error': 0.35,
            'max_perimeter_error': 0.45,
            'size_tolerance': 0.3,
        },
    },
}


def get_micropad_config(preset: Optional[str] = None) -> Dict:
    """
    Get micropad configuration.

    Args:
        preset: Preset name ('strict', 'lenient') or None for default

    Returns:
        Configuration dictionary (a fresh copy; callers may modify it)

    Raises:
        ValueError: If preset is not a known preset name
    """
    config = {key: dict(value) for key, value in MICROPAD_CONFIG.items()}
    if preset:
        if preset not in PRESETS:
            raise ValueError(f'Unknown config preset {preset!r}, expected one of: {", ".join(PRESETS)}')
        for key, value in PRESETS[preset].items():
            config[key] = {**config.get(key, {}), **value}
    return config
