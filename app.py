"""
Micropad CV Service - Flask Application
Computer Vision service for colorimetric micropad analysis and classification
"""

from flask import Flask, request, jsonify, g
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import cv2
import numpy as np
import logging
import time
import uuid
from dotenv import load_dotenv
import os
from typing import Dict, List, Optional, Tuple

# Import services
from config.micropad_config import get_micropad_config
from services.dataset import ClassificationService, SampleDataset
from services.interfaces import ColorSpace, DistanceKind, NormalizationStrategy
from services.pipeline import MicropadPipelineService, serialize_sample
from services.pipeline.steps.color_rebalance import parse_strategy
from services.dataset.classifier import parse_color_space, parse_distance
from utils.image_loader import load_image

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create Flask app
app = Flask(__name__)
CORS(app)

# Determine if we're in production mode
is_production = os.getenv('FLASK_DEBUG', 'False').lower() != 'true'

MAX_IMAGES_PER_REQUEST = int(os.getenv('MAX_IMAGES_PER_REQUEST', '50'))
VISUAL_LOG_DIR = os.getenv('VISUAL_LOG_DIR', 'logs/micropad')


# Request ID middleware for tracing
@app.before_request
def generate_request_id():
    """Generate or use existing request ID for tracing."""
    g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
    logger.debug(f'[Request {g.request_id}] {request.method} {request.path}')


@app.after_request
def add_request_id_header(response):
    """Add request ID to response headers."""
    if hasattr(g, 'request_id'):
        response.headers['X-Request-ID'] = g.request_id
    return response


def sanitize_error_message(error: Exception) -> str:
    """
    Sanitize error messages for production.

    In production, returns generic messages to prevent information disclosure.
    In development, returns full error details for debugging.

    Args:
        error: Exception object

    Returns:
        Sanitized error message string
    """
    if is_production:
        return "An internal error occurred. Please try again later."
    else:
        return str(error)


# Rate limiting configuration
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=["200 per hour", "20 per minute"],
    storage_uri="memory://",  # In-memory storage (use Redis in production for multi-instance)
    headers_enabled=True
)

# Configuration
app.config['MAX_CONTENT_LENGTH'] = 10 * 1024 * 1024  # 10MB max request size

# Initialize services
pipeline_service = MicropadPipelineService(config=get_micropad_config(os.getenv('MICROPAD_CONFIG_PRESET') or None))
classification_service = ClassificationService()


def error_response(error: str, error_code: str, status: int = 400):
    return jsonify({
        'success': False,
        'error': error,
        'error_code': error_code
    }), status


@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        'status': 'healthy',
        'service': 'micropad-cv-service',
        'opencv_version': cv2.__version__,
        'numpy_version': np.__version__
    })


def _validate_enum(data: Dict, key: str, parser) -> Tuple[bool, Optional[str], Optional[str]]:
    if key in data:
        try:
            parser(data[key])
        except ValueError as e:
            return False, str(e), 'INVALID_PARAMETER'
    return True, None, None


def _validate_dot_count(data: Dict) -> Tuple[bool, Optional[str], Optional[str]]:
    if 'dot_count' not in data:
        return False, 'dot_count is required', 'MISSING_PARAMETER'
    dot_count = data['dot_count']
    if isinstance(dot_count, bool) or not isinstance(dot_count, int) or dot_count < 1:
        return False, 'dot_count must be a positive integer', 'INVALID_PARAMETER'
    return True, None, None


def validate_analyze_request(data: Dict) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate analyze micropads request.

    Args:
        data: Request JSON data

    Returns:
        Tuple of (is_valid, error_message, error_code)
    """
    if not isinstance(data, dict):
        return False, 'Request must be JSON object', 'INVALID_PARAMETER'

    if 'image_paths' not in data:
        return False, 'image_paths is required', 'MISSING_PARAMETER'

    paths = data['image_paths']
    if not isinstance(paths, list) or not paths:
        return False, 'image_paths must be a non-empty list', 'INVALID_PARAMETER'
    if len(paths) > MAX_IMAGES_PER_REQUEST:
        return False, f'At most {MAX_IMAGES_PER_REQUEST} images per request', 'INVALID_PARAMETER'
    if not all(isinstance(p, str) and p.strip() for p in paths):
        return False, 'image_paths must contain non-empty strings', 'INVALID_PARAMETER'

    if 'card_paths' in data:
        cards = data['card_paths']
        if not isinstance(cards, list) or len(cards) != len(paths):
            return False, 'card_paths must be a list matching image_paths', 'INVALID_PARAMETER'
        if not all(c is None or (isinstance(c, str) and c.strip()) for c in cards):
            return False, 'card_paths entries must be strings or null', 'INVALID_PARAMETER'

    is_valid, error_msg, error_code = _validate_enum(data, 'normalization', parse_strategy)
    if not is_valid:
        return is_valid, error_msg, error_code

    for flag in ('crop_card', 'debug', 'include_overlay'):
        if flag in data and not isinstance(data[flag], bool):
            return False, f'{flag} must be a boolean', 'INVALID_PARAMETER'

    return True, None, None


@app.route('/analyze-micropads', methods=['POST'])
@limiter.limit("10 per minute")  # More restrictive for heavy image processing
def analyze_micropads():
    """
    Analyze micropad photographs into a labeled-ready dataset.

    Pipeline: Image → Card → Contours → Calibration → Dots → Rebalance → Sample

    Request (JSON):
    - image_paths: Paths or URLs of the photos
    - card_paths: Optional pre-cropped card images, one per photo (null to search)
    - normalization: 'Regression' (default), 'MinMax' or 'ZScore'
    - crop_card: Search each photo for the white card (default from config)
    - debug: Write visual logs (default: false)
    - include_overlay: Return ordering overlays as base64 PNG (default: false)

    Returns:
    - Per-photo results in input order
    - Serialized samples of successful photos, with validity flags
    - CSV export of the samples
    """
    start_time = time.time()

    try:
        data = request.get_json(silent=True)

        if not data:
            return error_response('No JSON data provided', 'MISSING_PARAMETER')

        is_valid, error_msg, error_code = validate_analyze_request(data)
        if not is_valid:
            return error_response(error_msg, error_code)

        image_paths: List[str] = data['image_paths']
        card_paths = data.get('card_paths') or [None] * len(image_paths)
        normalization = parse_strategy(data.get('normalization', NormalizationStrategy.REGRESSION))
        crop_card = data.get('crop_card')
        debug_enabled = data.get('debug', False)
        include_overlay = data.get('include_overlay', False)

        request_id = getattr(g, 'request_id', 'unknown')
        logger.info(
            f'[Request {request_id}] Analyzing {len(image_paths)} images, '
            f'normalization: {normalization.value}'
        )

        # Load images; unreadable photos are reported, not fatal
        results: List[Optional[Dict]] = [None] * len(image_paths)
        loaded_indices, images, names, cards = [], [], [], []
        for index, (path, card_path) in enumerate(zip(image_paths, card_paths)):
            name = os.path.basename(path) or f'image_{index}'
            try:
                image = load_image(path)
                card = load_image(card_path) if card_path else None
            except ValueError as e:
                logger.warning(f'[Request {request_id}] Failed to load {path}: {e}')
                results[index] = {
                    'success': False,
                    'image_index': index,
                    'image_name': name,
                    'error': str(e),
                    'error_code': 'IMAGE_LOAD_ERROR'
                }
                continue
            loaded_indices.append(index)
            images.append(image)
            names.append(name)
            cards.append(card)

        ingestion = pipeline_service.ingest_images(
            images,
            image_names=names,
            normalization=normalization,
            crop_card=crop_card,
            card_images=cards,
            debug_enabled=debug_enabled,
            output_dir=VISUAL_LOG_DIR
        )

        dataset: SampleDataset = ingestion['dataset']
        sample_index = 0
        for original_index, photo in zip(loaded_indices, ingestion['results']):
            photo = dict(photo)
            photo['image_index'] = original_index
            if photo.pop('sample', None) is not None:
                photo['sample_index'] = sample_index
                sample_index += 1
            results[original_index] = photo

        processing_time_ms = int((time.time() - start_time) * 1000)
        samples_created = len(dataset)

        return jsonify({
            'success': samples_created > 0,
            'data': {
                'results': results,
                'samples': [
                    serialize_sample(sample, i, include_overlay)
                    for i, sample in enumerate(dataset)
                ],
                'all_samples_valid': dataset.all_samples_valid(),
                'consistent_dot_count': ingestion['consistent_dot_count'],
                'csv': dataset.to_csv(),
                'images_processed': len(image_paths),
                'samples_created': samples_created,
                'failed_count': len(image_paths) - samples_created,
                'processing_time_ms': processing_time_ms
            }
        })

    except Exception as e:
        request_id = getattr(g, 'request_id', 'unknown')
        logger.error(f'[Request {request_id}] Error in analyze_micropads: {str(e)}', exc_info=True)
        return error_response(sanitize_error_message(e), 'INTERNAL_ERROR', 500)


def validate_classify_request(data: Dict) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate classify request.

    Args:
        data: Request JSON data

    Returns:
        Tuple of (is_valid, error_message, error_code)
    """
    if not isinstance(data, dict):
        return False, 'Request must be JSON object', 'INVALID_PARAMETER'

    for key in ('reference_csv', 'target_csv'):
        if key not in data:
            return False, f'{key} is required', 'MISSING_PARAMETER'
        if not isinstance(data[key], str) or not data[key].strip():
            return False, f'{key} must be a non-empty string', 'INVALID_PARAMETER'

    is_valid, error_msg, error_code = _validate_dot_count(data)
    if not is_valid:
        return is_valid, error_msg, error_code

    is_valid, error_msg, error_code = _validate_enum(data, 'distance', parse_distance)
    if not is_valid:
        return is_valid, error_msg, error_code

    return _validate_enum(data, 'color_space', parse_color_space)


@app.route('/classify', methods=['POST'])
@limiter.limit("30 per minute")
def classify_samples():
    """
    Label target samples from a labeled reference set.

    Request (JSON):
    - reference_csv: Labeled reference samples (R,G,B per dot then labels)
    - target_csv: Samples to label, same layout
    - dot_count: Dots per sample
    - distance: 'Euclidean' (default), 'Manhattan' or 'CIEDE2000'
    - color_space: 'RGB' (default), 'Greyscale' or 'Lab'

    Returns:
    - Labeled samples with per-dot match details
    - CSV export of the labeled samples
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return error_response('No JSON data provided', 'MISSING_PARAMETER')

        is_valid, error_msg, error_code = validate_classify_request(data)
        if not is_valid:
            return error_response(error_msg, error_code)

        dot_count = data['dot_count']
        distance = parse_distance(data.get('distance', DistanceKind.EUCLIDEAN))
        color_space = parse_color_space(data.get('color_space', ColorSpace.RGB))

        reference = SampleDataset.from_csv(data['reference_csv'], dot_count, reference=True)
        target = SampleDataset.from_csv(data['target_csv'], dot_count)

        if len(reference) == 0:
            return error_response('No valid reference rows', 'INVALID_REFERENCE')
        if len(target) == 0:
            return error_response('No valid target rows', 'INVALID_TARGET')

        request_id = getattr(g, 'request_id', 'unknown')
        logger.info(
            f'[Request {request_id}] Classifying {len(target)} samples against '
            f'{len(reference)} references'
        )

        matches = classification_service.match(reference, target, distance, color_space)

        samples = []
        for i, (sample, sample_matches) in enumerate(zip(target, matches)):
            serialized = serialize_sample(sample, i)
            serialized['matches'] = sample_matches
            samples.append(serialized)

        return jsonify({
            'success': True,
            'data': {
                'samples': samples,
                'distance': distance.value,
                'color_space': color_space.value,
                'reference_count': len(reference),
                'all_samples_valid': target.all_samples_valid(),
                'csv': target.to_csv()
            }
        })

    except Exception as e:
        request_id = getattr(g, 'request_id', 'unknown')
        logger.error(f'[Request {request_id}] Error in classify_samples: {str(e)}', exc_info=True)
        return error_response(sanitize_error_message(e), 'INTERNAL_ERROR', 500)


def validate_parse_csv_request(data: Dict) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate parse CSV request.

    Args:
        data: Request JSON data

    Returns:
        Tuple of (is_valid, error_message, error_code)
    """
    if not isinstance(data, dict):
        return False, 'Request must be JSON object', 'INVALID_PARAMETER'

    if 'csv' not in data:
        return False, 'csv is required', 'MISSING_PARAMETER'
    if not isinstance(data['csv'], str):
        return False, 'csv must be a string', 'INVALID_PARAMETER'

    if 'reference' in data and not isinstance(data['reference'], bool):
        return False, 'reference must be a boolean', 'INVALID_PARAMETER'

    return _validate_dot_count(data)


@app.route('/parse-csv', methods=['POST'])
def parse_csv():
    """
    Parse exported samples and report their validity.

    Request (JSON):
    - csv: CSV text (R,G,B per dot then labels, one row per sample)
    - dot_count: Dots per sample
    - reference: Mark samples as reference samples (default: false)
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return error_response('No JSON data provided', 'MISSING_PARAMETER')

        is_valid, error_msg, error_code = validate_parse_csv_request(data)
        if not is_valid:
            return error_response(error_msg, error_code)

        dataset = SampleDataset.from_csv(data['csv'], data['dot_count'], reference=data.get('reference', False))

        return jsonify({
            'success': True,
            'data': {
                'samples': [serialize_sample(sample, i) for i, sample in enumerate(dataset)],
                'sample_count': len(dataset),
                'all_samples_valid': dataset.all_samples_valid(),
                'consistent_dot_count': dataset.has_consistent_dot_count()
            }
        })

    except Exception as e:
        request_id = getattr(g, 'request_id', 'unknown')
        logger.error(f'[Request {request_id}] Error in parse_csv: {str(e)}', exc_info=True)
        return error_response(sanitize_error_message(e), 'INTERNAL_ERROR', 500)


if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'

    logger.info(f'Starting Micropad CV Service on port {port}')
    app.run(host='0.0.0.0', port=port, debug=debug)
