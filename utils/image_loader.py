"""
Image loading utilities for Micropad CV Service.
Supports loading images from local paths and signed URLs, and bounding
their size before analysis.
"""

import base64
import cv2
import numpy as np
import requests
import logging
from urllib.parse import urlparse

from config.micropad_config import MAX_IMAGE_DIMENSION

logger = logging.getLogger(__name__)


def load_image(image_path: str, timeout: int = 30) -> np.ndarray:
    """
    Load image from local path or URL (e.g. S3 signed URL).

    Args:
        image_path: Path to image (local file path or HTTP/HTTPS URL)
        timeout: Request timeout in seconds for URL downloads

    Returns:
        OpenCV image array in BGR format (numpy.ndarray)

    Raises:
        ValueError: If image path is invalid or image cannot be loaded
    """
    if not image_path:
        raise ValueError('image_path cannot be empty')

    parsed = urlparse(image_path)
    is_url = parsed.scheme in ('http', 'https')

    try:
        if is_url:
            logger.info(f'Loading image from URL: {image_path}')
            response = requests.get(image_path, timeout=timeout, stream=True)
            response.raise_for_status()
            image = decode_image_bytes(response.content)
        else:
            logger.info(f'Loading image from local path: {image_path}')
            image = cv2.imread(image_path, cv2.IMREAD_COLOR)

        if image is None:
            raise ValueError(f'Failed to decode image: {image_path}')

        if image.size == 0:
            raise ValueError(f'Image is empty: {image_path}')

        height, width = image.shape[:2]
        if height < 10 or width < 10:
            raise ValueError(f'Image too small: {width}x{height} pixels')

        logger.debug(f'Successfully loaded image: {width}x{height} pixels')
        return image

    except requests.RequestException as e:
        logger.error(f'Failed to download image from URL: {e}')
        raise ValueError(f'Failed to load image from URL: {str(e)}')
    except ValueError:
        raise
    except Exception as e:
        logger.error(f'Unexpected error loading image: {e}', exc_info=True)
        raise ValueError(f'Failed to load image: {str(e)}')


def decode_image_bytes(data: bytes) -> np.ndarray:
    """
    Decode an encoded image (JPEG, PNG, ...) into a BGR array.

    Returns:
        Decoded image, or None if the bytes are not a readable image
    """
    image_array = np.frombuffer(data, np.uint8)
    return cv2.imdecode(image_array, cv2.IMREAD_COLOR)


def downscale_image(image: np.ndarray, max_dimension: int = MAX_IMAGE_DIMENSION) -> np.ndarray:
    """
    Shrink an image so that neither side exceeds max_dimension.

    Images already within bounds are returned unchanged; images are never
    upscaled. Uses area interpolation, which avoids moire on downscaling.

    Args:
        image: Input image (BGR format)
        max_dimension: Maximum width/height in pixels

    Returns:
        Downscaled image (new array) or the input image
    """
    height, width = image.shape[:2]
    ratio = min(max_dimension / float(width), max_dimension / float(height))
    if ratio >= 1.0:
        return image

    new_size = (max(1, int(round(width * ratio))), max(1, int(round(height * ratio))))
    logger.debug(f'Downscaling image from {width}x{height} to {new_size[0]}x{new_size[1]}')
    return cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)


def encode_image_base64(image: np.ndarray) -> str:
    """
    Encode an image as a base64 PNG string for JSON responses.

    Raises:
        ValueError: If OpenCV cannot encode the image
    """
    ok, buffer = cv2.imencode('.png', image)
    if not ok:
        raise ValueError('Failed to encode image as PNG')
    return base64.b64encode(buffer.tobytes()).decode('ascii')
