"""
Unit tests for color rebalancing.
"""

import numpy as np
import pytest

from config.micropad_config import REFERENCE_COLORS_BGR
from services.interfaces import NormalizationStrategy
from services.pipeline.steps.color_rebalance import (
    ChannelFit,
    ColorRebalanceService,
    DegenerateCalibrationError,
    MinMaxNormalizer,
    RegressionNormalizer,
    ZScoreNormalizer,
    apply_channel_fits,
    parse_strategy,
)


def affine(colors, scale, offset):
    return [tuple(c * scale + offset for c in color) for color in colors]


class TestNormalizers:
    """Test cases for the per-channel normalization strategies."""

    @pytest.mark.parametrize('normalizer', [RegressionNormalizer(), MinMaxNormalizer(), ZScoreNormalizer()])
    def test_identity_fit(self, normalizer):
        fits = normalizer.fit(REFERENCE_COLORS_BGR, REFERENCE_COLORS_BGR)

        assert [f.channel for f in fits] == ['b', 'g', 'r']
        for fit in fits:
            assert fit.scale == pytest.approx(1.0)
            assert fit.offset == pytest.approx(0.0, abs=1e-9)

    @pytest.mark.parametrize('normalizer', [RegressionNormalizer(), MinMaxNormalizer(), ZScoreNormalizer()])
    def test_recovers_exact_affine_distortion(self, normalizer):
        measured = affine(REFERENCE_COLORS_BGR, 0.5, 20.0)
        fits = normalizer.fit(measured, REFERENCE_COLORS_BGR)

        for fit in fits:
            assert fit.scale == pytest.approx(2.0)
            assert fit.offset == pytest.approx(-40.0)

    def test_regression_least_squares_on_noisy_points(self):
        measured = [(0.0, 0.0, 0.0), (100.0, 100.0, 100.0), (200.0, 200.0, 200.0)]
        expected = [(10.0, 10.0, 10.0), (100.0, 100.0, 100.0), (220.0, 220.0, 220.0)]
        fit = RegressionNormalizer().fit(measured, expected)[0]

        # Closed form for x = 0, 100, 200 and y = 10, 100, 220
        assert fit.scale == pytest.approx(1.05)
        assert fit.offset == pytest.approx(5.0)

    def test_minmax_maps_range_endpoints(self):
        measured = [(20.0, 20.0, 20.0), (60.0, 60.0, 60.0), (220.0, 220.0, 220.0)]
        expected = [(0.0, 0.0, 0.0), (128.0, 128.0, 128.0), (255.0, 255.0, 255.0)]
        fit = MinMaxNormalizer().fit(measured, expected)[0]

        assert fit.scale * 20 + fit.offset == pytest.approx(0.0, abs=1e-9)
        assert fit.scale * 220 + fit.offset == pytest.approx(255.0)

    def test_zscore_matches_mean_and_std(self):
        measured = np.array([10.0, 50.0, 90.0, 130.0])
        expected = np.array([0.0, 85.0, 170.0, 255.0])
        fit = ZScoreNormalizer().fit_channel('g', measured, expected)
        corrected = measured * fit.scale + fit.offset

        assert np.mean(corrected) == pytest.approx(np.mean(expected))
        assert np.std(corrected) == pytest.approx(np.std(expected))

    @pytest.mark.parametrize('normalizer', [RegressionNormalizer(), MinMaxNormalizer(), ZScoreNormalizer()])
    def test_constant_channel_is_degenerate(self, normalizer):
        measured = [(10.0, 0.0, 0.0), (10.0, 255.0, 255.0), (10.0, 0.0, 255.0), (10.0, 255.0, 0.0)]
        with pytest.raises(DegenerateCalibrationError) as exc_info:
            normalizer.fit(measured, REFERENCE_COLORS_BGR)
        assert exc_info.value.channel == 'b'
        assert isinstance(exc_info.value, ValueError)

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError):
            RegressionNormalizer().fit(REFERENCE_COLORS_BGR[:3], REFERENCE_COLORS_BGR)

    def test_single_point_rejected(self):
        with pytest.raises(ValueError):
            RegressionNormalizer().fit(REFERENCE_COLORS_BGR[:1], REFERENCE_COLORS_BGR[:1])


class TestApplyChannelFits:
    """Test cases for applying fitted corrections to images."""

    def test_identity_leaves_image_unchanged(self):
        image = np.random.RandomState(0).randint(0, 256, (20, 30, 3), dtype=np.uint8)
        fits = [ChannelFit(c, 1.0, 0.0) for c in 'bgr']
        assert np.array_equal(apply_channel_fits(image, fits), image)

    def test_output_is_clamped(self):
        image = np.full((2, 2, 3), 200, dtype=np.uint8)
        fits = [ChannelFit('b', 2.0, 0.0), ChannelFit('g', 1.0, -250.0), ChannelFit('r', 1.0, 10.0)]

        result = apply_channel_fits(image, fits)

        assert result.dtype == np.uint8
        assert result[0, 0].tolist() == [255, 0, 210]

    def test_returns_new_buffer(self):
        image = np.full((4, 4, 3), 100, dtype=np.uint8)
        fits = [ChannelFit(c, 1.5, 0.0) for c in 'bgr']

        result = apply_channel_fits(image, fits)

        assert result is not image
        assert image[0, 0].tolist() == [100, 100, 100]
        assert result[0, 0].tolist() == [150, 150, 150]


class TestColorRebalanceService:
    """Test cases for ColorRebalanceService."""

    def setup_method(self):
        """Set up test fixtures."""
        self.service = ColorRebalanceService()

    def test_rebalance_identity(self):
        image = np.random.RandomState(1).randint(0, 256, (10, 10, 3), dtype=np.uint8)
        balanced, fits = self.service.rebalance(image, REFERENCE_COLORS_BGR, REFERENCE_COLORS_BGR)

        assert np.array_equal(balanced, image)
        assert len(fits) == 3

    def test_rebalance_corrects_dim_photo(self):
        measured = affine(REFERENCE_COLORS_BGR, 0.5, 20.0)
        image = np.full((5, 5, 3), (20, 147, 147), dtype=np.uint8)  # Dim yellow

        balanced, _ = self.service.rebalance(image, measured, REFERENCE_COLORS_BGR)

        assert balanced[0, 0].tolist() == [0, 254, 254]

    def test_control_color_is_prepended(self):
        measured = affine(REFERENCE_COLORS_BGR, 0.5, 20.0)
        # Control dot measured where a white dot would be under the same distortion
        fits = self.service.fit(
            measured, REFERENCE_COLORS_BGR,
            NormalizationStrategy.Z_SCORE,
            control_color=(147.5, 147.5, 147.5)
        )
        for fit in fits:
            assert fit.scale == pytest.approx(2.0)
            assert fit.offset == pytest.approx(-40.0)

    def test_control_color_changes_fit(self):
        with_control = self.service.fit(
            REFERENCE_COLORS_BGR, REFERENCE_COLORS_BGR,
            NormalizationStrategy.Z_SCORE,
            control_color=(100.0, 100.0, 100.0)
        )
        assert with_control[0].scale != pytest.approx(1.0)

    def test_reference_colors_not_mutated(self):
        reference = tuple(REFERENCE_COLORS_BGR)
        self.service.fit(REFERENCE_COLORS_BGR, REFERENCE_COLORS_BGR, 'MinMax', control_color=(1.0, 2.0, 3.0))
        assert REFERENCE_COLORS_BGR == reference
        assert len(REFERENCE_COLORS_BGR) == 4

    def test_strategy_accepts_names(self):
        for name in ('Regression', 'MinMax', 'ZScore'):
            fits = self.service.fit(REFERENCE_COLORS_BGR, REFERENCE_COLORS_BGR, name)
            assert fits[0].scale == pytest.approx(1.0)


class TestParseStrategy:
    """Test cases for strategy name parsing."""

    @pytest.mark.parametrize('name,expected', [
        ('Regression', NormalizationStrategy.REGRESSION),
        ('regression', NormalizationStrategy.REGRESSION),
        ('MinMax', NormalizationStrategy.MIN_MAX),
        ('min-max', NormalizationStrategy.MIN_MAX),
        ('ZScore', NormalizationStrategy.Z_SCORE),
        ('z-score', NormalizationStrategy.Z_SCORE),
        (NormalizationStrategy.Z_SCORE, NormalizationStrategy.Z_SCORE),
    ])
    def test_known_names(self, name, expected):
        assert parse_strategy(name) == expected

    def test_unknown_name_rejected(self):
        with pytest.raises(ValueError):
            parse_strategy('histogram')
