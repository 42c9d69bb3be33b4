from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from io import BytesIO
from typing import Callable, List, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError
from PIL.Image import DecompressionBombError

from campaign_layout.models.campaign import (
    AnalysisFailure,
    AssetRef,
    BatchAnalysis,
    ImageAnalysis,
)
from campaign_layout.services.errors import DecodeError, MetricComputationWarning


logger = logging.getLogger(__name__)

# Aspect ratio thresholds for the three-way use classification.
BANNER_MIN_RATIO = 1.5
VERTICAL_MAX_RATIO = 0.8

# (exclusive lower bound on width*height, priority), highest bucket first.
PRIORITY_BUCKETS: Tuple[Tuple[int, int], ...] = (
    (2_000_000, 5),
    (1_000_000, 4),
    (500_000, 3),
    (200_000, 2),
)

COMPLEXITY_MAX_SIDE = 100
EDGE_THRESHOLD = 30
DOMINANT_COLOR_MAX_SIDE = 10

DEFAULT_BRIGHTNESS = 128.0
DEFAULT_COMPLEXITY = 0.1
DEFAULT_DOMINANT_COLOR = "#808080"


def classify_recommended_use(aspect_ratio: float) -> str:
    """
    Map an aspect ratio to banner / vertical / square.

    Strict inequalities: a ratio of exactly 1.5 or exactly 0.8 is square.
    """
    if aspect_ratio > BANNER_MIN_RATIO:
        return "banner"
    if aspect_ratio < VERTICAL_MAX_RATIO:
        return "vertical"
    return "square"


def calculate_layout_priority(width: int, height: int) -> int:
    """Bucket the image resolution into a 1-5 priority (higher resolution wins)."""
    total_pixels = width * height
    for lower_bound, priority in PRIORITY_BUCKETS:
        if total_pixels > lower_bound:
            return priority
    return 1


def _open_image(data: bytes) -> Image.Image:
    """
    Open raw bytes as a Pillow image, reading only the header.

    Any failure here means the base metadata is unavailable, which is the one
    case where analysis as a whole fails.
    """
    if not data:
        raise DecodeError("Empty image payload")
    try:
        image = Image.open(BytesIO(data))
    except (UnidentifiedImageError, DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeError(f"Unreadable image data: {exc}") from exc

    width, height = image.size
    if width <= 0 or height <= 0:
        raise DecodeError(f"Image has invalid dimensions {width}x{height}")
    return image


def _fit_inside(pixels: np.ndarray, max_side: int) -> np.ndarray:
    """Downscale so the longest side is at most `max_side`; never enlarges."""
    height, width = pixels.shape[:2]
    scale = min(max_side / width, max_side / height)
    if scale >= 1.0:
        return pixels
    new_w = max(1, int(round(width * scale)))
    new_h = max(1, int(round(height * scale)))
    return cv2.resize(pixels, (new_w, new_h), interpolation=cv2.INTER_AREA)


def _rgb_pixels(image: Image.Image) -> np.ndarray:
    """Decode the full pixel buffer as an RGB uint8 array (H, W, 3)."""
    rgb_image = image.convert("RGB") if image.mode != "RGB" else image
    return np.asarray(rgb_image, dtype=np.uint8)


def _compute_brightness(rgb: np.ndarray) -> float:
    """Mean luminance of the image in [0, 255]."""
    gray = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
    return float(np.clip(gray.mean(), 0.0, 255.0))


def _compute_complexity(rgb: np.ndarray) -> float:
    """
    Cheap edge-density proxy for visual busyness.

    The grayscale image is downscaled to at most 100px on its longest side.
    Every interior pixel is compared with its right and bottom neighbour and
    counted as an edge if either difference exceeds the threshold. The count
    is normalised by the total pixel count of the downscaled image.

    This is a heuristic, not real edge detection.
    """
    gray = _fit_inside(cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY), COMPLEXITY_MAX_SIDE)
    height, width = gray.shape[:2]
    if height < 3 or width < 3:
        # No interior pixels to compare.
        return 0.0

    pixels = gray.astype(np.int16)
    core = pixels[1 : height - 1, 1 : width - 1]
    right = pixels[1 : height - 1, 2:width]
    bottom = pixels[2:height, 1 : width - 1]
    edges = (np.abs(core - right) > EDGE_THRESHOLD) | (np.abs(core - bottom) > EDGE_THRESHOLD)

    density = np.count_nonzero(edges) / float(width * height)
    return float(min(max(density, 0.0), 1.0))


def _compute_dominant_color(rgb: np.ndarray) -> str:
    """Per-channel mean of a heavily downsampled copy, as '#rrggbb'."""
    small = _fit_inside(rgb, DOMINANT_COLOR_MAX_SIDE)
    means = small.reshape(-1, 3).mean(axis=0)
    r, g, b = (int(np.clip(np.floor(value + 0.5), 0, 255)) for value in means)
    return f"#{r:02x}{g:02x}{b:02x}"


def _safe_metric(
    name: str,
    default: object,
    compute: Callable[[], object],
    issues: List[MetricComputationWarning],
    file_name: str,
) -> object:
    """Run one metric; on failure log, record an issue and return the default."""
    try:
        return compute()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not compute %s for %s: %s", name, file_name, exc)
        issues.append(MetricComputationWarning(metric=name, message=str(exc), default=default))
        return default


def analyze_image(data: bytes, file_name: str, source_ref: str | None = None) -> ImageAnalysis:
    """
    Compute visual metrics for a single product image.

    Raises DecodeError if width/height/format cannot be read. Each pixel
    metric degrades independently to its documented default (brightness 128,
    complexity 0.1, dominant color mid-gray) and the substitution is listed
    in the result's `issues`.
    """
    image = _open_image(data)
    width, height = image.size
    aspect_ratio = width / height

    issues: List[MetricComputationWarning] = []
    pixel_error = ""
    try:
        rgb = _rgb_pixels(image)
    except Exception as exc:  # noqa: BLE001
        # Header was fine but the pixel data is not; every metric falls back.
        logger.warning("Could not decode pixel data for %s: %s", file_name, exc)
        rgb = None
        pixel_error = str(exc)

    if rgb is None:
        issues.extend(
            MetricComputationWarning(metric=name, message=pixel_error, default=default)
            for name, default in (
                ("brightness", DEFAULT_BRIGHTNESS),
                ("complexity", DEFAULT_COMPLEXITY),
                ("dominant_color", DEFAULT_DOMINANT_COLOR),
            )
        )
        brightness = DEFAULT_BRIGHTNESS
        complexity = DEFAULT_COMPLEXITY
        dominant_color = DEFAULT_DOMINANT_COLOR
    else:
        brightness = _safe_metric(
            "brightness", DEFAULT_BRIGHTNESS, lambda: _compute_brightness(rgb), issues, file_name
        )
        complexity = _safe_metric(
            "complexity", DEFAULT_COMPLEXITY, lambda: _compute_complexity(rgb), issues, file_name
        )
        dominant_color = _safe_metric(
            "dominant_color",
            DEFAULT_DOMINANT_COLOR,
            lambda: _compute_dominant_color(rgb),
            issues,
            file_name,
        )

    return ImageAnalysis(
        width=width,
        height=height,
        format=(image.format or "").lower() or None,
        aspect_ratio=aspect_ratio,
        file_name=file_name,
        brightness=float(brightness),
        complexity=float(complexity),
        dominant_color=str(dominant_color),
        recommended_use=classify_recommended_use(aspect_ratio),
        layout_priority=calculate_layout_priority(width, height),
        source_ref=source_ref if source_ref is not None else file_name,
        issues=tuple(issues),
    )


def analyze_images(
    items: Sequence[Tuple[AssetRef, bytes]],
    max_workers: int | None = None,
) -> BatchAnalysis:
    """
    Analyze a batch of images on a bounded worker pool.

    Results are placed back at their submission index rather than in
    completion order, because grid placement downstream is driven by the
    image index. An undecodable image is reported in `failures` and does not
    abort the rest of the batch.
    """
    if not items:
        return BatchAnalysis()

    workers = max(1, min(max_workers or os.cpu_count() or 1, len(items)))
    slots: List[ImageAnalysis | AnalysisFailure | None] = [None] * len(items)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            pool.submit(analyze_image, data, ref.file_name, ref.url): index
            for index, (ref, data) in enumerate(items)
        }
        for future in as_completed(futures):
            index = futures[future]
            ref = items[index][0]
            try:
                slots[index] = future.result()
            except DecodeError as exc:
                logger.warning("Failed to analyze product image %s: %s", ref.file_name, exc)
                slots[index] = AnalysisFailure(ref=ref, error=str(exc))

    batch = BatchAnalysis()
    for slot in slots:
        if isinstance(slot, ImageAnalysis):
            batch.analyses.append(slot)
        elif isinstance(slot, AnalysisFailure):
            batch.failures.append(slot)

    logger.info(
        "Analyzed %d image(s), %d failed to decode", len(batch.analyses), len(batch.failures)
    )
    return batch
