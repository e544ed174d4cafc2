"""
Pipeline service for analyzing micropad photographs.

Orchestrates: [Card Crop] → Contour Extraction → Calibration Detection →
Dot Detection → Color Rebalance → Dye Color Extraction → Sample
"""

import logging
import threading
import time
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Union

from config.micropad_config import REFERENCE_COLORS_BGR, get_micropad_config
from services.dataset.sample import Dot, Sample, SampleDataset
from services.interfaces import (
    CalibrationSwatchResult,
    IngestionResult,
    NormalizationStrategy,
    PhotoResult,
    SampleResult,
)
from services.pipeline.steps.card_detection import CardDetectionService
from services.pipeline.steps.calibration_detection import CalibrationDetectionService
from services.pipeline.steps.color_rebalance import (
    ColorRebalanceService,
    DegenerateCalibrationError,
    parse_strategy,
)
from services.pipeline.steps.contour_extraction import ContourExtractionService
from services.pipeline.steps.dot_detection import DotDetectionService
from services.utils.debug import DebugContext
from utils.color_conversion import rgb_to_hex
from utils.detection_visualization import create_color_summary
from utils.image_loader import downscale_image, encode_image_base64

logger = logging.getLogger(__name__)


def _bgr_to_rgb_dict(bgr: Sequence[float]) -> Dict:
    return {'r': float(bgr[2]), 'g': float(bgr[1]), 'b': float(bgr[0])}


def serialize_sample(sample: Sample, sample_index: int, include_overlay: bool = False) -> SampleResult:
    """
    Convert a Sample into a JSON-safe dict.

    Args:
        sample: Sample to serialize
        sample_index: Position of the sample in its dataset
        include_overlay: Attach the ordering overlay as base64 PNG

    Returns:
        SampleResult dict
    """
    dots = []
    for i, dot in enumerate(sample.dots):
        r, g, b = dot.color
        dots.append({
            'dot_index': i,
            'row': dot.row,
            'col': dot.col,
            'centroid': {'x': float(dot.centroid[0]), 'y': float(dot.centroid[1])} if dot.centroid else None,
            'rgb': {'r': float(r), 'g': float(g), 'b': float(b)},
            'hex': rgb_to_hex(r, g, b),
            'greyscale': float(dot.greyscale),
            'label': dot.label
        })

    ordering_image = None
    if include_overlay and sample.ordering is not None:
        ordering_image = encode_image_base64(sample.ordering)

    return {
        'sample_index': sample_index,
        'dot_count': sample.dot_count,
        'dots': dots,
        'labels': sample.names,
        'valid': sample.validate(),
        'is_reference': sample.is_reference,
        'reference_name': sample.reference_name,
        'ordering_image': ordering_image
    }


class MicropadPipelineService:
    """
    Main pipeline service that turns micropad photos into samples.

    Pipeline: Image → Card → Contours → Calibration → Dots → Rebalance → Sample
    Each stage produces new buffers; input images are never modified.
    """

    def __init__(
        self,
        card_detection_service: Optional[CardDetectionService] = None,
        contour_extraction_service: Optional[ContourExtractionService] = None,
        calibration_detection_service: Optional[CalibrationDetectionService] = None,
        dot_detection_service: Optional[DotDetectionService] = None,
        color_rebalance_service: Optional[ColorRebalanceService] = None,
        reference_colors: Sequence = REFERENCE_COLORS_BGR,
        config: Optional[Dict] = None
    ):
        """
        Initialize pipeline service.

        Args:
            card_detection_service: Optional pre-initialized service
            contour_extraction_service: Optional pre-initialized service
            calibration_detection_service: Optional pre-initialized service
            dot_detection_service: Optional pre-initialized service
            color_rebalance_service: Optional pre-initialized service
            reference_colors: Expected BGR colors of the calibration swatches,
                left to right
            config: Optional full config (see get_micropad_config); used for
                services not passed in and for ingestion limits
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or get_micropad_config()
        self.card_detection_service = card_detection_service or CardDetectionService(self.config['card'])
        self.contour_extraction_service = (
            contour_extraction_service or ContourExtractionService(self.config['contours'])
        )
        self.calibration_detection_service = (
            calibration_detection_service or CalibrationDetectionService(self.config['calibration'])
        )
        self.dot_detection_service = dot_detection_service or DotDetectionService(self.config['dots'])
        self.color_rebalance_service = color_rebalance_service or ColorRebalanceService()
        self.reference_colors = tuple(tuple(float(v) for v in color) for color in reference_colors)
        self.max_image_dimension = int(self.config['ingestion']['max_image_dimension'])
        self.max_workers = int(self.config['ingestion']['max_workers'])
        self.crop_card = bool(self.config['ingestion']['crop_card'])

    def process_image(
        self,
        image: np.ndarray,
        image_index: int = 0,
        image_name: str = 'unknown',
        normalization: Union[str, NormalizationStrategy] = NormalizationStrategy.REGRESSION,
        crop_card: Optional[bool] = None,
        card_image: Optional[np.ndarray] = None,
        debug_enabled: bool = False,
        output_dir: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> PhotoResult:
        """
        Analyze one photograph.

        Args:
            image: Input image (BGR format)
            image_index: Position of the photo in its batch
            image_name: Name of image for logging
            normalization: Color normalization strategy
            crop_card: Search for the white card and crop to it (default from
                ingestion config)
            card_image: Optional pre-cropped card image; skips card search
            debug_enabled: Write a visual log for this photo
            output_dir: Base directory for visual logs
            cancel_event: Optional event; when set the photo is abandoned

        Returns:
            PhotoResult; on success 'sample' holds the new Sample
        """
        start_time = time.time()

        if cancel_event is not None and cancel_event.is_set():
            return self._failure(image_index, image_name, 'Processing cancelled', 'CANCELLED')

        # Photos sharing a file name in one batch get separate log directories
        debug = DebugContext(
            enabled=debug_enabled,
            output_dir=output_dir,
            image_name=image_name,
            run_name=f'micropad_{image_index:03d}'
        )
        # Steps skip their diagnostic drawing entirely when not debugging
        step_debug = debug if debug_enabled else None

        try:
            strategy = parse_strategy(normalization)
            if crop_card is None:
                crop_card = self.crop_card

            working = downscale_image(image, self.max_image_dimension)
            card_cropped = False
            if card_image is not None:
                working = downscale_image(card_image, self.max_image_dimension)
                card_cropped = True
            elif crop_card:
                card = self.card_detection_service.find_card(working, step_debug)
                if card is not None:
                    working = card
                    card_cropped = True
                else:
                    self.logger.info(f'{image_name}: no card found, using full image')

            # Step 1: Contours shared by both locators
            contours = self.contour_extraction_service.find_contours(working, step_debug)

            # Step 2: Calibration swatches
            squares = self.calibration_detection_service.find_calibration_squares(working, contours, step_debug)
            if not squares:
                return self._failure(
                    image_index, image_name,
                    'Calibration swatches not found',
                    'CALIBRATION_NOT_FOUND',
                    debug, working
                )
            measured = self.calibration_detection_service.extract_calibration_colors(working, squares)

            # Step 3: Dot geometry
            candidates = self.dot_detection_service.find_dots(working, contours, step_debug)
            if not candidates:
                return self._failure(
                    image_index, image_name,
                    'No dye dots found',
                    'NO_DOTS_FOUND',
                    debug, working
                )

            if cancel_event is not None and cancel_event.is_set():
                return self._failure(image_index, image_name, 'Processing cancelled', 'CANCELLED')

            # Step 4: Color rebalance; non-regression strategies also anchor
            # the first dot (measured before correction) to white
            control_color = None
            if strategy != NormalizationStrategy.REGRESSION:
                r, g, b = self.dot_detection_service.extract_colors(working, candidates[:1])[0]
                control_color = (b, g, r)

            try:
                balanced, fits = self.color_rebalance_service.rebalance(
                    working, measured, self.reference_colors, strategy, control_color, step_debug
                )
            except DegenerateCalibrationError as e:
                return self._failure(image_index, image_name, str(e), 'DEGENERATE_CALIBRATION', debug, working)

            # Step 5: Dye colors from the corrected image
            colors = self.dot_detection_service.extract_colors(balanced, candidates)
            sample = Sample(
                [
                    Dot(
                        color=color,
                        contour=candidate.contour,
                        centroid=candidate.centroid,
                        row=candidate.row,
                        col=candidate.col
                    )
                    for candidate, color in zip(candidates, colors)
                ],
                image=working,
                balanced=balanced
            )

            calibration: List[CalibrationSwatchResult] = [
                {
                    'swatch_index': i,
                    'centroid': {'x': float(square.centroid[0]), 'y': float(square.centroid[1])},
                    'area': float(square.area),
                    'measured': _bgr_to_rgb_dict(measured[i]),
                    'expected': _bgr_to_rgb_dict(self.reference_colors[i])
                }
                for i, square in enumerate(squares)
            ]

            visual_log_path = None
            if debug.is_enabled():
                visual_log_path = debug.save_log(create_color_summary(sample.ordering, colors))

            processing_time_ms = int((time.time() - start_time) * 1000)
            self.logger.info(
                f'{image_name}: {sample.dot_count} dots, {strategy.value} correction, '
                f'{processing_time_ms}ms'
            )

            return {
                'success': True,
                'image_index': image_index,
                'image_name': image_name,
                'sample': sample,
                'calibration': calibration,
                'channel_fits': [f.to_dict() for f in fits],
                'dot_count': sample.dot_count,
                'card_cropped': card_cropped,
                'processing_time_ms': processing_time_ms,
                'visual_log_path': visual_log_path,
                'error': None,
                'error_code': None
            }

        except ValueError as e:
            self.logger.warning(f'{image_name}: invalid input: {e}')
            return self._failure(image_index, image_name, str(e), 'PROCESSING_ERROR', debug, image)
        except Exception as e:
            self.logger.error(f'{image_name}: processing failed: {e}', exc_info=True)
            return self._failure(image_index, image_name, str(e), 'PROCESSING_ERROR', debug, image)

    def ingest_images(
        self,
        images: Sequence[np.ndarray],
        image_names: Optional[Sequence[str]] = None,
        normalization: Union[str, NormalizationStrategy] = NormalizationStrategy.REGRESSION,
        crop_card: Optional[bool] = None,
        card_images: Optional[Sequence[Optional[np.ndarray]]] = None,
        debug_enabled: bool = False,
        output_dir: Optional[str] = None,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> IngestionResult:
        """
        Analyze a batch of photos concurrently and assemble a dataset.

        Photos are processed on a thread pool; results and samples keep the
        input order. Failed or cancelled photos contribute no sample.

        Args:
            images: Input images (BGR format)
            image_names: Optional names, one per image
            normalization: Color normalization strategy
            crop_card: Search for the white card in each photo (default from
                ingestion config)
            card_images: Optional pre-cropped card images, one per photo
            debug_enabled: Write a visual log per photo
            output_dir: Base directory for visual logs
            max_workers: Thread pool size (default from ingestion config)
            cancel_event: Optional event cancelling outstanding photos

        Returns:
            IngestionResult with the dataset and one PhotoResult per photo
        """
        images = list(images)
        names = list(image_names) if image_names is not None else [f'image_{i}' for i in range(len(images))]
        if len(names) != len(images):
            raise ValueError(f'Got {len(names)} names for {len(images)} images')

        cards = list(card_images) if card_images is not None else [None] * len(images)
        if len(cards) != len(images):
            raise ValueError(f'Got {len(cards)} card images for {len(images)} images')

        # Resolve once so a bad name fails the batch, not every photo
        strategy = parse_strategy(normalization)

        def task(index: int) -> PhotoResult:
            return self.process_image(
                images[index],
                image_index=index,
                image_name=names[index],
                normalization=strategy,
                crop_card=crop_card,
                card_image=cards[index],
                debug_enabled=debug_enabled,
                output_dir=output_dir,
                cancel_event=cancel_event
            )

        workers = max(1, min(max_workers or self.max_workers, len(images) or 1))
        self.logger.info(f'Ingesting {len(images)} images with {workers} workers')

        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(task, range(len(images))))

        dataset = SampleDataset(r['sample'] for r in results if r.get('success'))
        failed_count = sum(1 for r in results if not r.get('success'))

        consistent = dataset.has_consistent_dot_count()
        if not consistent:
            counts = sorted({s.dot_count for s in dataset})
            self.logger.warning(f'Samples have differing dot counts: {counts}')

        return {
            'success': len(dataset) > 0,
            'dataset': dataset,
            'results': results,
            'images_processed': len(images),
            'samples_created': len(dataset),
            'failed_count': failed_count,
            'consistent_dot_count': consistent
        }

    def _failure(
        self,
        image_index: int,
        image_name: str,
        error: str,
        error_code: str,
        debug: Optional[DebugContext] = None,
        image: Optional[np.ndarray] = None
    ) -> PhotoResult:
        """Build a failed PhotoResult, logging an error frame when debugging."""
        self.logger.warning(f'{image_name}: {error_code}: {error}')

        visual_log_path = None
        if debug is not None and debug.is_enabled() and image is not None:
            vis_error = debug.visualize_error(image, error, error_code)
            debug.add_step('99_failed', 'Processing Failed', vis_error, {
                'error': error,
                'error_code': error_code
            })
            visual_log_path = debug.save_log(vis_error)

        return {
            'success': False,
            'image_index': image_index,
            'image_name': image_name,
            'error': error,
            'error_code': error_code,
            'visual_log_path': visual_log_path
        }
