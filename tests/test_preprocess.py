import io

import cv2
import numpy as np
import pytest
from PIL import Image

from lithomesh.preprocess import decode_samples, load_samples


@pytest.fixture
def gradient():
    img = np.zeros((6, 8), dtype=np.uint8)
    img[:, 4:] = 255
    return img


def test_load_samples(tmp_path, gradient):
    path = tmp_path / "gradient.png"
    cv2.imwrite(str(path), gradient)
    samples = load_samples(str(path))
    assert samples.shape == (6, 8)
    assert samples.dtype == np.float64
    np.testing.assert_array_equal(samples[:, :4], 0.0)
    np.testing.assert_array_equal(samples[:, 4:], 1.0)


def test_load_samples_converts_colour_to_grey(tmp_path):
    path = tmp_path / "white.png"
    cv2.imwrite(str(path), np.full((3, 5, 3), 255, dtype=np.uint8))
    samples = load_samples(str(path))
    assert samples.shape == (3, 5)
    np.testing.assert_array_equal(samples, 1.0)


def test_load_samples_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_samples(str(tmp_path / "missing.png"))


def test_enhancements_keep_shape_and_range(tmp_path):
    rng = np.random.default_rng(0)
    path = tmp_path / "noise.png"
    cv2.imwrite(str(path), rng.integers(0, 256, size=(32, 32), dtype=np.uint8))
    samples = load_samples(str(path), normalize_hist=True, denoise=True)
    assert samples.shape == (32, 32)
    assert samples.min() >= 0.0 and samples.max() <= 1.0


def test_decode_samples(gradient):
    buffer = io.BytesIO()
    Image.fromarray(gradient).save(buffer, format="PNG")
    samples = decode_samples(buffer.getvalue())
    assert samples.shape == (6, 8)
    np.testing.assert_array_equal(samples[:, 4:], 1.0)


def test_decode_samples_rejects_garbage():
    with pytest.raises(ValueError):
        decode_samples(b"not an image")
