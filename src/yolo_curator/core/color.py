"""
Dominant-color classification.

Pixels are sampled on a regular stride, converted to CIE L*a*b* (where
Euclidean distance tracks perceived color difference) and clustered with
Lloyd's k-means. The dominant color is the centroid of the most populous
cluster; an image is "near black" when every RGB channel of that color falls
below a threshold.

Seeding is deterministic, so identical pixels always give identical results.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple

import cv2
import numpy as np

from ..config.schemas import ColorConfig
from .exceptions import DecodeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    dominant_lab: Tuple[float, float, float]
    dominant_rgb: Tuple[int, int, int]
    is_near_black: bool
    dominant_share: float  # fraction of samples in the dominant cluster
    entry: Any = None


@dataclass(frozen=True)
class KMeansResult:
    centroids: np.ndarray  # (k, 3)
    labels: np.ndarray  # (N,)
    counts: np.ndarray  # (k,)
    iterations: int
    converged: bool


def load_rgb_image(image_path) -> np.ndarray:
    """Read an image as an (H, W, 3) uint8 RGB array. Raises DecodeError."""
    image_path = Path(image_path)
    img = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if img is None or img.size == 0:
        raise DecodeError(image_path, "Failed to read image")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)


def sampling_stride(height: int, width: int, max_samples: int) -> int:
    """Smallest square stride keeping the sample count near `max_samples`."""
    return max(1, math.ceil(math.sqrt((width * height) / float(max_samples))))


def sample_pixels(
    image: np.ndarray, stride: Optional[int] = None, max_samples: int = 100_000
) -> np.ndarray:
    """Take every `stride`-th pixel in both axes. Returns (N, 3) uint8 RGB."""
    if image.ndim == 2:
        image = np.repeat(image[:, :, None], 3, axis=2)
    if image.ndim != 3 or image.shape[2] < 3:
        raise ValueError(f"Expected an (H, W, 3) image, got shape {image.shape}")

    h, w = image.shape[:2]
    step = stride if stride is not None else sampling_stride(h, w, max_samples)
    return np.ascontiguousarray(image[::step, ::step, :3]).reshape(-1, 3)


def rgb_to_lab(pixels: np.ndarray) -> np.ndarray:
    """Convert (N, 3) uint8 sRGB to (N, 3) float64 L*a*b* (L in [0, 100])."""
    rgb = np.asarray(pixels, dtype=np.float32).reshape(-1, 1, 3) / 255.0
    lab = cv2.cvtColor(rgb, cv2.COLOR_RGB2Lab)
    return lab.reshape(-1, 3).astype(np.float64)


def lab_to_rgb(lab) -> Tuple[int, int, int]:
    """Convert one L*a*b* triplet back to 0-255 sRGB integers (clipped, truncated)."""
    arr = np.asarray(lab, dtype=np.float32).reshape(1, 1, 3)
    rgb = cv2.cvtColor(arr, cv2.COLOR_Lab2RGB).reshape(3)
    rgb = np.floor(np.clip(rgb * 255.0, 0.0, 255.0)).astype(int)
    return int(rgb[0]), int(rgb[1]), int(rgb[2])


def _seed_centroids(samples: np.ndarray, k: int) -> np.ndarray:
    # Evenly spaced picks along the lightness-sorted samples.
    order = np.argsort(samples[:, 0], kind="stable")
    picks = np.rint(np.linspace(0, len(samples) - 1, k)).astype(int)
    return samples[order[picks]].copy()


def _squared_distances(samples: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    diff = samples[:, None, :] - centroids[None, :, :]
    return np.einsum("nkd,nkd->nk", diff, diff)


def kmeans(
    samples: np.ndarray, k: int, max_iter: int = 20, tolerance: float = 1.0
) -> KMeansResult:
    """
    Lloyd's k-means with deterministic seeding.

    An empty cluster is re-seeded from the sample farthest from every current
    centroid. Stops when the largest centroid displacement drops below
    `tolerance` or after `max_iter` iterations.
    """
    samples = np.asarray(samples, dtype=np.float64)
    n = len(samples)
    if n == 0:
        raise ValueError("Cannot cluster an empty sample set")
    k = max(1, min(int(k), n))

    centroids = _seed_centroids(samples, k)
    labels = np.zeros(n, dtype=np.int64)
    converged = False
    iterations = 0

    for iterations in range(1, max_iter + 1):
        dist = _squared_distances(samples, centroids)
        labels = np.argmin(dist, axis=1)
        nearest = dist[np.arange(n), labels]

        new_centroids = centroids.copy()
        for c in range(k):
            members = samples[labels == c]
            if len(members):
                new_centroids[c] = members.mean(axis=0)
                continue
            far = int(np.argmax(nearest))
            new_centroids[c] = samples[far]
            # Keep the next empty cluster from picking the same sample.
            nearest = np.minimum(
                nearest, np.sum((samples - samples[far]) ** 2, axis=1)
            )

        shift = float(np.sqrt(np.max(np.sum((new_centroids - centroids) ** 2, axis=1))))
        centroids = new_centroids
        if shift < tolerance:
            converged = True
            break

    labels = np.argmin(_squared_distances(samples, centroids), axis=1)
    counts = np.bincount(labels, minlength=k)
    return KMeansResult(centroids, labels, counts, iterations, converged)


def is_near_black(rgb: Tuple[int, int, int], threshold: float = 10.0) -> bool:
    """True when every channel is strictly below `threshold`."""
    return all(float(c) < threshold for c in rgb)


def classify(pixels: np.ndarray, config: Optional[ColorConfig] = None, entry=None):
    """
    Classify pixels by dominant color.

    Args:
        pixels: (H, W, 3) RGB image (sampled with the configured stride) or an
            already sampled (N, 3) RGB array.
        config: Clustering and threshold settings.
        entry: Optional reference copied into the result.

    Returns:
        ClassificationResult
    """
    config = config or ColorConfig()
    pixels = np.asarray(pixels)
    if pixels.ndim == 3:
        pixels = sample_pixels(pixels, config.sample_stride, config.max_samples)
    pixels = pixels.reshape(-1, 3)
    if len(pixels) == 0:
        raise ValueError("No pixels to classify")

    lab = rgb_to_lab(pixels)
    result = kmeans(lab, config.n_clusters, config.max_iter, config.tolerance)

    dominant = int(np.argmax(result.counts))
    dominant_lab = tuple(float(v) for v in result.centroids[dominant])
    dominant_rgb = lab_to_rgb(dominant_lab)

    return ClassificationResult(
        dominant_lab=dominant_lab,
        dominant_rgb=dominant_rgb,
        is_near_black=is_near_black(dominant_rgb, config.near_black_threshold),
        dominant_share=float(result.counts[dominant]) / float(len(lab)),
        entry=entry,
    )


class ColorClassifier:
    """Scan visitor classifying an entry's image by dominant color."""

    def __init__(self, config: Optional[ColorConfig] = None):
        self.config = config or ColorConfig()

    def load(self, entry) -> np.ndarray:
        return load_rgb_image(entry.image_path)

    def __call__(self, entry, image: np.ndarray) -> ClassificationResult:
        result = classify(image, self.config, entry=entry)
        if result.is_near_black:
            logger.debug(
                "%s is near black (dominant RGB %s)", entry.name, result.dominant_rgb
            )
        return result

    @staticmethod
    def matched(result: ClassificationResult) -> bool:
        return result.is_near_black
