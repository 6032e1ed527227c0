#!/usr/bin/env python3
"""
Pixel Statistics Extractor
==========================

OpenCV adapter that turns a BGR frame into the luminance summary the quality
scorer and the liveness evaluator consume. Face geometry, pose and eye state
come from the external detector; only the pixel-level signals are computed
here.
"""

import base64
import binascii
import logging

import cv2
import numpy as np

from ..core.data_classes import PixelStatistics
from ..core.exceptions import InvalidFrameError

logger = logging.getLogger(__name__)

# Histogram tails (8-bit luminance)
DARK_LEVEL = 16
BRIGHT_LEVEL = 240


def validate_frame(frame: np.ndarray) -> None:
    """Validate input frame"""
    if frame is None:
        raise InvalidFrameError("Frame is None")

    if not isinstance(frame, np.ndarray):
        raise InvalidFrameError(f"Frame must be numpy array, got {type(frame)}")

    if len(frame.shape) != 3 or frame.shape[2] != 3:
        raise InvalidFrameError(f"Frame must be a 3-channel BGR image, got shape {frame.shape}")

    if frame.size == 0:
        raise InvalidFrameError("Frame is empty")


def compute_pixel_statistics(frame: np.ndarray) -> PixelStatistics:
    """
    Compute luminance statistics of a BGR frame

    Args:
        frame: BGR image (H x W x 3)

    Returns:
        PixelStatistics for the whole frame

    Raises:
        InvalidFrameError: If the frame is not a usable BGR image
    """
    validate_frame(frame)

    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)

    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    laplacian_var = cv2.Laplacian(gray, cv2.CV_64F).var()

    hist = cv2.calcHist([gray], [0], None, [256], [0, 256]).flatten()
    total = float(hist.sum())

    return PixelStatistics(
        mean_luminance=float(np.mean(gray)),
        luminance_std=float(np.std(gray)),
        laplacian_variance=float(laplacian_var),
        dark_fraction=float(hist[:DARK_LEVEL].sum() / total),
        bright_fraction=float(hist[BRIGHT_LEVEL:].sum() / total)
    )


def decode_image(image_data: bytes) -> np.ndarray:
    """
    Decode an encoded image (JPEG, PNG, ...) into a BGR array

    Raises:
        InvalidFrameError: If the bytes are not a decodable image
    """
    if not image_data:
        raise InvalidFrameError("Image data is empty")

    nparr = np.frombuffer(image_data, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)

    if image is None:
        raise InvalidFrameError("Failed to decode image data")

    return image


def decode_base64_image(base64_string: str) -> np.ndarray:
    """Decode a base64 (optionally data-URL prefixed) image into a BGR array"""
    # Remove data URL prefix if present
    if base64_string.startswith('data:image'):
        base64_string = base64_string.split(',', 1)[-1]

    try:
        image_data = base64.b64decode(base64_string, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.debug(f"Base64 decoding failed: {e}")
        raise InvalidFrameError("Image is not valid base64") from e

    return decode_image(image_data)
