import io
import logging

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


def _enhance(img, normalize_hist, denoise):
    # Normalize brightness using Adaptive Histogram Equalization (CLAHE)
    if normalize_hist:
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        img = clahe.apply(img)
        logger.debug("Adaptive Histogram Equalization (CLAHE) applied.")

    # Denoise using median blur (kernel size 5x5)
    if denoise:
        img = cv2.medianBlur(img, 5)
        logger.debug("Median blur (denoising) applied.")

    return img


def load_samples(input_path, normalize_hist=False, denoise=False):
    """
    Load an image as per-pixel brightness samples.

    Returns:
        np.ndarray: float64 array of shape (height, width) in [0, 1], 1 being white.
    """
    img = cv2.imread(input_path, cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise FileNotFoundError(f"Image not found at {input_path}")

    img = _enhance(img, normalize_hist, denoise)
    h, w = img.shape
    logger.info(f"Loaded {w}x{h} samples from {input_path}")
    return img.astype(np.float64) / 255.0


def decode_samples(data, normalize_hist=False, denoise=False):
    """Same as load_samples, for image bytes already in memory (e.g. an upload)."""
    try:
        img = Image.open(io.BytesIO(data)).convert("L")
    except (OSError, ValueError) as e:
        raise ValueError(f"Could not decode image: {e}") from e

    img = _enhance(np.array(img, dtype=np.uint8), normalize_hist, denoise)
    return img.astype(np.float64) / 255.0
