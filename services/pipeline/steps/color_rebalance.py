"""
Color rebalancing service for Micropad CV Service.

Fits a per-channel affine correction from the measured calibration swatch
colors to their known reference colors and applies it to the whole image.

Strategies:
- Regression: least-squares slope/intercept per channel
- MinMax: maps the measured channel range onto the expected range
- ZScore: matches the measured channel mean/std to the expected mean/std
"""

import logging
import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from config.micropad_config import CONTROL_DOT_REFERENCE_BGR
from services.interfaces import NormalizationStrategy
from services.utils.debug import DebugContext

logger = logging.getLogger(__name__)

CHANNEL_NAMES = ('b', 'g', 'r')

ColorTriple = Tuple[float, float, float]


class DegenerateCalibrationError(ValueError):
    """Raised when measured calibration values cannot support an affine fit."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        super().__init__(f'Cannot fit channel {channel!r}: {reason}')


@dataclass(frozen=True)
class ChannelFit:
    """Affine correction output = scale * input + offset for one channel."""
    channel: str
    scale: float
    offset: float

    def to_dict(self) -> Dict:
        return {'channel': self.channel, 'scale': self.scale, 'offset': self.offset}


class BaseNormalizer(ABC):
    """Base class for per-channel normalization strategies."""

    strategy: NormalizationStrategy

    @abstractmethod
    def fit_channel(self, channel: str, measured: np.ndarray, expected: np.ndarray) -> ChannelFit:
        """
        Fit one channel.

        Args:
            channel: Channel name, used in error messages
            measured: Measured values (1-D float array)
            expected: Expected values, same length as measured

        Returns:
            ChannelFit for the channel

        Raises:
            DegenerateCalibrationError: If measured values cannot be fitted
        """
        pass

    def fit(self, measured: Sequence[ColorTriple], expected: Sequence[ColorTriple]) -> List[ChannelFit]:
        """Fit all three channels independently."""
        if len(measured) != len(expected):
            raise ValueError(
                f'Measured and expected color counts differ: {len(measured)} vs {len(expected)}'
            )
        if len(measured) < 2:
            raise ValueError(f'At least 2 calibration colors are required, got {len(measured)}')

        measured_arr = np.asarray(measured, dtype=np.float64)[:, :3]
        expected_arr = np.asarray(expected, dtype=np.float64)[:, :3]
        return [
            self.fit_channel(name, measured_arr[:, i], expected_arr[:, i])
            for i, name in enumerate(CHANNEL_NAMES)
        ]

    def get_method_name(self) -> str:
        """Return method name for logging."""
        return self.strategy.value


class RegressionNormalizer(BaseNormalizer):
    """Closed-form least-squares fit of expected ~ scale * measured + offset."""

    strategy = NormalizationStrategy.REGRESSION

    def fit_channel(self, channel: str, measured: np.ndarray, expected: np.ndarray) -> ChannelFit:
        n = len(measured)
        sum_x = float(np.sum(measured))
        sum_y = float(np.sum(expected))
        sum_xy = float(np.sum(measured * expected))
        sum_x2 = float(np.sum(measured * measured))

        denominator = n * sum_x2 - sum_x * sum_x
        if np.isclose(denominator, 0.0, atol=1e-9):
            raise DegenerateCalibrationError(channel, 'measured values have zero variance')

        scale = (n * sum_xy - sum_x * sum_y) / denominator
        offset = (sum_y - scale * sum_x) / n
        return ChannelFit(channel, float(scale), float(offset))


class MinMaxNormalizer(BaseNormalizer):
    """Map [min, max] of the measured values onto [min, max] of the expected values."""

    strategy = NormalizationStrategy.MIN_MAX

    def fit_channel(self, channel: str, measured: np.ndarray, expected: np.ndarray) -> ChannelFit:
        measured_range = float(np.max(measured) - np.min(measured))
        if np.isclose(measured_range, 0.0, atol=1e-9):
            raise DegenerateCalibrationError(channel, 'measured values have zero range')

        scale = float(np.max(expected) - np.min(expected)) / measured_range
        offset = float(np.min(expected)) - scale * float(np.min(measured))
        return ChannelFit(channel, scale, offset)


class ZScoreNormalizer(BaseNormalizer):
    """Match mean and standard deviation of the measured values to the expected values."""

    strategy = NormalizationStrategy.Z_SCORE

    def fit_channel(self, channel: str, measured: np.ndarray, expected: np.ndarray) -> ChannelFit:
        measured_std = float(np.std(measured))
        if np.isclose(measured_std, 0.0, atol=1e-9):
            raise DegenerateCalibrationError(channel, 'measured values have zero variance')

        scale = float(np.std(expected)) / measured_std
        offset = float(np.mean(expected)) - scale * float(np.mean(measured))
        return ChannelFit(channel, scale, offset)


NORMALIZERS: Dict[NormalizationStrategy, BaseNormalizer] = {
    NormalizationStrategy.REGRESSION: RegressionNormalizer(),
    NormalizationStrategy.MIN_MAX: MinMaxNormalizer(),
    NormalizationStrategy.Z_SCORE: ZScoreNormalizer(),
}

# Spellings accepted from callers in addition to the enum values
_STRATEGY_ALIASES = {
    'regression': NormalizationStrategy.REGRESSION,
    'minmax': NormalizationStrategy.MIN_MAX,
    'min-max': NormalizationStrategy.MIN_MAX,
    'zscore': NormalizationStrategy.Z_SCORE,
    'z-score': NormalizationStrategy.Z_SCORE,
}


def parse_strategy(value: Union[str, NormalizationStrategy]) -> NormalizationStrategy:
    """
    Resolve a normalization strategy name.

    Raises:
        ValueError: If the name is not a known strategy
    """
    if isinstance(value, NormalizationStrategy):
        return value
    strategy = _STRATEGY_ALIASES.get(str(value).strip().lower())
    if strategy is None:
        valid = ', '.join(s.value for s in NormalizationStrategy)
        raise ValueError(f'Unknown normalization strategy {value!r}, expected one of: {valid}')
    return strategy


def apply_channel_fits(image: np.ndarray, fits: Sequence[ChannelFit]) -> np.ndarray:
    """
    Apply per-channel affine corrections, clamping to 0-255.

    Returns:
        New uint8 BGR image; the input is not modified
    """
    scales = np.array([f.scale for f in fits], dtype=np.float32)
    offsets = np.array([f.offset for f in fits], dtype=np.float32)
    corrected = image[:, :, :3].astype(np.float32) * scales + offsets
    return np.clip(np.rint(corrected), 0, 255).astype(np.uint8)


class ColorRebalanceService:
    """Service for color-correcting a photo against calibration references."""

    def __init__(self):
        """Initialize color rebalance service."""
        self.logger = logging.getLogger(__name__)

    def fit(
        self,
        measured: Sequence[ColorTriple],
        reference: Sequence[ColorTriple],
        strategy: Union[str, NormalizationStrategy] = NormalizationStrategy.REGRESSION,
        control_color: Optional[ColorTriple] = None
    ) -> List[ChannelFit]:
        """
        Fit per-channel corrections.

        Args:
            measured: Measured swatch colors (BGR), in swatch order
            reference: Expected swatch colors (BGR), same order
            strategy: Normalization strategy
            control_color: Optional measured control dot color (BGR); when
                given it is paired with white and prepended to both lists

        Returns:
            One ChannelFit per channel (b, g, r)

        Raises:
            DegenerateCalibrationError: If a channel cannot be fitted
        """
        normalizer = NORMALIZERS[parse_strategy(strategy)]

        measured_points = list(measured)
        expected_points = list(reference)
        if control_color is not None:
            measured_points = [tuple(control_color)] + measured_points
            expected_points = [CONTROL_DOT_REFERENCE_BGR] + expected_points

        fits = normalizer.fit(measured_points, expected_points)
        self.logger.debug(
            f'{normalizer.get_method_name()} fit over {len(measured_points)} points: ' +
            ' | '.join(f'{f.channel.upper()}: {f.scale:.4f}, {f.offset:.2f}' for f in fits)
        )
        return fits

    def rebalance(
        self,
        image: np.ndarray,
        measured: Sequence[ColorTriple],
        reference: Sequence[ColorTriple],
        strategy: Union[str, NormalizationStrategy] = NormalizationStrategy.REGRESSION,
        control_color: Optional[ColorTriple] = None,
        debug: Optional[DebugContext] = None
    ) -> Tuple[np.ndarray, List[ChannelFit]]:
        """
        Color-correct an image.

        Args:
            image: Input image (BGR format)
            measured: Measured swatch colors (BGR)
            reference: Expected swatch colors (BGR)
            strategy: Normalization strategy
            control_color: Optional measured control dot color (BGR)
            debug: Optional DebugContext for visual logging

        Returns:
            Tuple of (balanced image, channel fits)

        Raises:
            DegenerateCalibrationError: If a channel cannot be fitted
        """
        fits = self.fit(measured, reference, strategy, control_color)
        balanced = apply_channel_fits(image, fits)

        if debug:
            debug.add_step('06_rebalanced', 'Rebalanced Image', balanced, {
                'strategy': parse_strategy(strategy),
                'fits': [f.to_dict() for f in fits],
                'measured': list(measured),
                'control_color': control_color
            })

        return balanced, fits
