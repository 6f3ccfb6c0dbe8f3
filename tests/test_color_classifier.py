"""
Tests for dominant-color classification.

Tests cover:
- Near-black verdicts for dark and bright images
- Determinism of the clustering
- Stride sampling and k-means edge cases
- Image decoding errors
"""

import cv2
import numpy as np
import pytest

from yolo_curator.config.schemas import ColorConfig
from yolo_curator.core.color import (
    ColorClassifier,
    classify,
    is_near_black,
    kmeans,
    lab_to_rgb,
    load_rgb_image,
    rgb_to_lab,
    sample_pixels,
    sampling_stride,
)
from yolo_curator.core.exceptions import DecodeError


def make_dark_image(size=64, max_value=5, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, max_value, size=(size, size, 3), dtype=np.uint8)


class TestClassify:
    """Test suite for classify."""

    @pytest.mark.parametrize("k", [2, 3, 4, 5])
    def test_dark_image_is_near_black_for_any_k(self, k):
        """A 64x64 image with every channel below 5 is near black."""
        result = classify(make_dark_image(), ColorConfig(n_clusters=k))

        assert result.is_near_black
        assert all(c < 10 for c in result.dominant_rgb)

    def test_uniform_black_image(self):
        image = np.zeros((64, 64, 3), dtype=np.uint8)
        result = classify(image)

        assert result.is_near_black
        assert result.dominant_rgb == (0, 0, 0)
        assert result.dominant_share == pytest.approx(1.0)

    def test_bright_image_is_not_near_black(self):
        image = np.full((64, 64, 3), 200, dtype=np.uint8)
        result = classify(image)

        assert not result.is_near_black
        assert all(abs(c - 200) <= 1 for c in result.dominant_rgb)

    def test_mostly_dark_with_bright_patch(self):
        """The largest cluster wins even when a minority is bright."""
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        image[:20, :20] = (250, 250, 250)

        result = classify(image, ColorConfig(n_clusters=2))

        assert result.is_near_black
        assert result.dominant_share == pytest.approx(0.96, abs=0.01)

    def test_mostly_bright_with_dark_patch(self):
        image = np.full((100, 100, 3), (30, 160, 40), dtype=np.uint8)
        image[:10, :10] = 0

        result = classify(image, ColorConfig(n_clusters=3))

        assert not result.is_near_black

    def test_deterministic(self):
        """Identical pixels give identical results across calls."""
        rng = np.random.default_rng(42)
        image = rng.integers(0, 256, size=(80, 120, 3), dtype=np.uint8)
        config = ColorConfig(n_clusters=4)

        first = classify(image, config)
        second = classify(image.copy(), config)

        assert first == second

    def test_threshold_is_configurable(self):
        image = np.full((16, 16, 3), 20, dtype=np.uint8)

        assert not classify(image).is_near_black
        assert classify(image, ColorConfig(near_black_threshold=30)).is_near_black

    def test_accepts_presampled_pixels(self):
        pixels = np.zeros((50, 3), dtype=np.uint8)
        assert classify(pixels).is_near_black

    def test_empty_input_raises(self):
        with pytest.raises(ValueError):
            classify(np.zeros((0, 3), dtype=np.uint8))


class TestSampling:
    def test_stride_keeps_sample_count_bounded(self):
        stride = sampling_stride(1080, 1920, 100_000)
        assert stride == 5
        samples = sample_pixels(np.zeros((1080, 1920, 3), dtype=np.uint8), stride)
        assert len(samples) == 216 * 384
        assert len(samples) <= 100_000

    def test_small_image_uses_every_pixel(self):
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        assert len(sample_pixels(image)) == 100

    def test_explicit_stride(self):
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        assert len(sample_pixels(image, stride=5)) == 4

    def test_grayscale_is_expanded(self):
        image = np.zeros((4, 4), dtype=np.uint8)
        assert sample_pixels(image).shape == (16, 3)


class TestKMeans:
    def test_two_obvious_clusters(self):
        dark = np.zeros((30, 3), dtype=np.uint8)
        bright = np.full((10, 3), 255, dtype=np.uint8)
        lab = rgb_to_lab(np.vstack([dark, bright]))

        result = kmeans(lab, k=2)

        assert sorted(result.counts.tolist()) == [10, 30]
        assert result.converged

    def test_k_larger_than_samples_is_capped(self):
        lab = rgb_to_lab(np.array([[0, 0, 0], [255, 255, 255]], dtype=np.uint8))
        result = kmeans(lab, k=5)
        assert len(result.centroids) == 2

    def test_iteration_cap(self):
        rng = np.random.default_rng(1)
        lab = rgb_to_lab(rng.integers(0, 256, size=(500, 3), dtype=np.uint8))
        result = kmeans(lab, k=5, max_iter=1, tolerance=0.0)
        assert result.iterations == 1
        assert not result.converged

    def test_empty_samples_raise(self):
        with pytest.raises(ValueError):
            kmeans(np.zeros((0, 3)), k=3)


def test_is_near_black_is_strict():
    assert is_near_black((9, 9, 9))
    assert not is_near_black((10, 0, 0))


def test_dominant_rgb_is_truncated_not_rounded():
    """A centroid halfway between 9 and 10 truncates to 9 and stays near black."""
    pixels = np.vstack(
        [np.full((50, 3), 9, dtype=np.uint8), np.full((50, 3), 10, dtype=np.uint8)]
    )

    result = classify(pixels, ColorConfig(n_clusters=1))

    assert result.dominant_rgb == (9, 9, 9)
    assert result.is_near_black


def test_lab_to_rgb_truncates_fractions():
    lab = rgb_to_lab(np.array([[200, 120, 40]], dtype=np.uint8))[0]
    r, g, b = lab_to_rgb(lab)
    assert 199 <= r <= 200 and 119 <= g <= 120 and 39 <= b <= 40


class TestColorClassifier:
    def test_load_and_classify_entry(self, tmp_path):
        path = tmp_path / "dark.png"
        cv2.imwrite(str(path), np.zeros((32, 32, 3), dtype=np.uint8))

        class Entry:
            image_path = path
            name = path.name

        classifier = ColorClassifier()
        entry = Entry()
        result = classifier(entry, classifier.load(entry))

        assert ColorClassifier.matched(result)
        assert result.entry is entry

    def test_load_rgb_converts_channel_order(self, tmp_path):
        path = tmp_path / "red.png"
        bgr = np.zeros((8, 8, 3), dtype=np.uint8)
        bgr[:, :, 2] = 255
        cv2.imwrite(str(path), bgr)

        rgb = load_rgb_image(path)

        assert tuple(rgb[0, 0]) == (255, 0, 0)

    def test_corrupt_image_raises_decode_error(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not a png")

        with pytest.raises(DecodeError) as exc_info:
            load_rgb_image(path)
        assert exc_info.value.path == path
