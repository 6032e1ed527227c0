"""Tests for the OpenCV pixel statistics extractor."""

import base64

import cv2
import numpy as np
import pytest

from photo_arena_service.core.exceptions import InvalidFrameError
from photo_arena_service.extractors.pixel_statistics import (
    compute_pixel_statistics, decode_image, decode_base64_image
)


class TestComputePixelStatistics:

    def test_flat_grey_image(self):
        stats = compute_pixel_statistics(np.full((50, 50, 3), 100, dtype=np.uint8))

        assert stats.mean_luminance == pytest.approx(100.0)
        assert stats.luminance_std == pytest.approx(0.0)
        assert stats.laplacian_variance == pytest.approx(0.0)
        assert stats.dark_fraction == 0.0
        assert stats.bright_fraction == 0.0

    def test_texture_raises_laplacian_variance(self, bgr_image):
        flat = compute_pixel_statistics(np.full_like(bgr_image, 128))
        textured = compute_pixel_statistics(bgr_image)
        assert textured.laplacian_variance > flat.laplacian_variance
        assert textured.luminance_std > 0

    def test_histogram_tails(self):
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        image[:, 5:] = 255
        stats = compute_pixel_statistics(image)

        assert stats.dark_fraction == pytest.approx(0.5)
        assert stats.bright_fraction == pytest.approx(0.5)

    def test_float_image_is_clipped(self):
        image = np.full((10, 10, 3), 300.0)
        assert compute_pixel_statistics(image).mean_luminance == pytest.approx(255.0)

    @pytest.mark.parametrize("frame", [
        None,
        [[1, 2, 3]],
        np.zeros((10, 10), dtype=np.uint8),
        np.zeros((10, 10, 4), dtype=np.uint8),
        np.zeros((0, 10, 3), dtype=np.uint8),
    ])
    def test_invalid_frames(self, frame):
        with pytest.raises(InvalidFrameError):
            compute_pixel_statistics(frame)


class TestDecoding:

    def test_decode_png(self, bgr_image):
        ok, encoded = cv2.imencode('.png', bgr_image)
        assert ok
        decoded = decode_image(encoded.tobytes())
        assert np.array_equal(decoded, bgr_image)

    def test_decode_base64_data_url(self, bgr_image):
        ok, encoded = cv2.imencode('.png', bgr_image)
        data_url = 'data:image/png;base64,' + base64.b64encode(encoded.tobytes()).decode('ascii')
        assert decode_base64_image(data_url).shape == bgr_image.shape

    def test_empty_bytes(self):
        with pytest.raises(InvalidFrameError):
            decode_image(b'')

    def test_garbage_bytes(self):
        with pytest.raises(InvalidFrameError):
            decode_image(b'definitely not an image')

    def test_invalid_base64(self):
        with pytest.raises(InvalidFrameError):
            decode_base64_image('***')
