"""Visual regression testing.

Captures page screenshots through the automation capability and compares
them with stored baselines using PIL/Pillow and numpy.
"""

import io
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import numpy as np
from PIL import Image

from ..models.config_models import TestConfig
from ..models.result_models import TestResult, TestStatus, TestType
from ..utils.errors import classify_error
from ..utils.helpers import ensure_dir, generate_id, to_safe_filename
from .base import BaseBrowserAutomation
from .baseline_manager import BaselineManager

logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, bytes, Image.Image]


@dataclass
class ImageComparison:
    """Outcome of comparing a capture against its baseline."""

    diff_ratio: float
    pixel_difference: int
    total_pixels: int
    diff_region: Optional[Dict[str, int]] = None
    diff_image: Optional[Image.Image] = None
    resized: bool = False

    def within(self, threshold: float) -> bool:
        return self.diff_ratio <= threshold


@dataclass(frozen=True)
class ArtifactPaths:
    """Where the capture, baseline and diff of one (page, engine, viewport) live."""

    key: str
    capture: Path
    baseline: Path
    diff: Path


def _load(source: ImageSource) -> Image.Image:
    if isinstance(source, Image.Image):
        return source.convert("RGB")
    if isinstance(source, bytes):
        return Image.open(io.BytesIO(source)).convert("RGB")
    return Image.open(source).convert("RGB")


def compare_images(
    baseline: ImageSource, actual: ImageSource, pixel_tolerance: int = 0
) -> ImageComparison:
    """Compare two images pixel by pixel.

    A pixel differs when any channel differs by more than ``pixel_tolerance``.
    When sizes differ the actual image is resized to the baseline's size.

    Args:
        baseline: Baseline image, path or PNG bytes
        actual: Current image, path or PNG bytes
        pixel_tolerance: Per-channel difference still counted as equal

    Returns:
        ImageComparison with the differing pixel ratio, bounding box of the
        difference and a baseline | actual | diff visualization
    """
    baseline_img = _load(baseline)
    actual_img = _load(actual)

    resized = False
    if baseline_img.size != actual_img.size:
        logger.warning(
            f"Image size mismatch: baseline={baseline_img.size}, "
            f"actual={actual_img.size}. Resizing actual to match baseline."
        )
        actual_img = actual_img.resize(baseline_img.size, Image.LANCZOS)
        resized = True

    baseline_array = np.asarray(baseline_img, dtype=np.int16)
    actual_array = np.asarray(actual_img, dtype=np.int16)

    diff_mask = np.any(np.abs(baseline_array - actual_array) > pixel_tolerance, axis=2)
    pixel_difference = int(np.sum(diff_mask))
    total_pixels = int(diff_mask.size)
    diff_ratio = pixel_difference / total_pixels if total_pixels else 0.0

    comparison = ImageComparison(
        diff_ratio=diff_ratio,
        pixel_difference=pixel_difference,
        total_pixels=total_pixels,
        resized=resized,
    )
    if pixel_difference:
        comparison.diff_region = _diff_region(diff_mask)
        comparison.diff_image = _diff_image(
            baseline_array.astype(np.uint8), actual_array.astype(np.uint8), diff_mask
        )
    return comparison


def _diff_region(diff_mask: np.ndarray) -> Optional[Dict[str, int]]:
    """Bounding box of all differing pixels."""
    rows = np.where(np.any(diff_mask, axis=1))[0]
    cols = np.where(np.any(diff_mask, axis=0))[0]
    if len(rows) == 0 or len(cols) == 0:
        return None
    return {
        "x": int(cols[0]),
        "y": int(rows[0]),
        "width": int(cols[-1] - cols[0] + 1),
        "height": int(rows[-1] - rows[0] + 1),
    }


def _diff_image(baseline: np.ndarray, actual: np.ndarray, diff_mask: np.ndarray) -> Image.Image:
    """Side-by-side baseline | actual | actual with differences in red."""
    height, width = baseline.shape[:2]
    highlighted = actual.copy()
    highlighted[diff_mask] = [255, 0, 0]

    combined = np.zeros((height, width * 3, 3), dtype=np.uint8)
    combined[:, :width] = baseline
    combined[:, width : width * 2] = actual
    combined[:, width * 2 :] = highlighted
    return Image.fromarray(combined)


class VisualTester:
    """Visual regression testing for discovered pages.

    Artifacts for a page live under ``<output_dir>/<page_key>/`` where the
    page key is derived from the normalized URL, and are named
    ``<engine>-<viewport>.png`` (capture), ``-baseline.png`` and
    ``-diff.png``. A failed comparison never overwrites the baseline; it is
    recorded as a pending diff for review instead.
    """

    def __init__(
        self,
        config: TestConfig,
        baseline_manager: Optional[BaselineManager] = None,
        id_factory: Callable[[], str] = generate_id,
    ):
        self.config = config
        self.output_dir = ensure_dir(config.output_dir)
        self.baselines = baseline_manager or BaselineManager(self.output_dir)
        self.id_factory = id_factory

        logger.info(
            f"VisualTester initialized with threshold={config.visual_diff_threshold}, "
            f"pixel_tolerance={config.pixel_tolerance}"
        )

    def artifact_paths(self, page_url: str, engine: str, viewport: str) -> ArtifactPaths:
        page_key = to_safe_filename(page_url)
        stem = f"{engine}-{viewport}"
        page_dir = self.output_dir / page_key
        return ArtifactPaths(
            key=f"{page_key}/{stem}",
            capture=page_dir / f"{stem}.png",
            baseline=page_dir / f"{stem}-baseline.png",
            diff=page_dir / f"{stem}-diff.png",
        )

    async def capture(
        self, automation: BaseBrowserAutomation, page_handle: Any, path: Path
    ) -> bytes:
        """Let the page settle, capture a screenshot and write it to ``path``."""
        await automation.wait_for_idle(page_handle, self.config.timeout_ms)
        data = await automation.screenshot(page_handle, full_page=False)
        ensure_dir(path.parent)
        path.write_bytes(data)
        logger.debug(f"Screenshot saved: {path}")
        return data

    def _compare(self, paths: ArtifactPaths) -> Tuple[ImageComparison, Optional[Path]]:
        comparison = compare_images(
            paths.baseline, paths.capture, pixel_tolerance=self.config.pixel_tolerance
        )
        diff_path = None
        if not comparison.within(self.config.visual_diff_threshold) and comparison.diff_image:
            comparison.diff_image.save(paths.diff)
            diff_path = paths.diff
            logger.info(f"Diff image saved: {paths.diff}")
        return comparison, diff_path

    async def capture_and_compare(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page_url: str,
        engine: str,
        viewport: str,
    ) -> TestResult:
        """Capture the page and compare it with its baseline.

        Args:
            automation: Browser automation capability
            page_handle: Page showing ``page_url``
            page_url: Normalized URL identifying the page
            engine: Engine label
            viewport: Viewport label

        Returns:
            ``skipped`` when a baseline was created or updated, otherwise
            ``pass``/``fail`` against ``visual_diff_threshold``; ``error``
            if capture or comparison raised
        """
        started = time.monotonic()
        paths = self.artifact_paths(page_url, engine, viewport)

        def result(status, message="", artifact=None, data=None, error_kind=None):
            return TestResult(
                id=self.id_factory(),
                name="visual-regression",
                test_type=TestType.VISUAL,
                status=status,
                page_url=page_url,
                engine=engine,
                viewport=viewport,
                duration_ms=int((time.monotonic() - started) * 1000),
                error_kind=error_kind,
                message=message,
                artifact_path=str(artifact) if artifact else None,
                data=data or {},
            )

        try:
            await self.capture(automation, page_handle, paths.capture)

            if self.config.update_baselines or not paths.baseline.exists():
                created = not paths.baseline.exists()
                shutil.copyfile(paths.capture, paths.baseline)
                self.baselines.record_baseline(paths.key, page_url, engine, viewport, paths.baseline)
                message = "baseline created" if created else "baseline updated"
                logger.info(f"{message}: {paths.baseline}")
                return result(TestStatus.SKIPPED, message, paths.baseline, {"key": paths.key})

            comparison, diff_path = self._compare(paths)
        except Exception as e:
            kind = classify_error(e)
            logger.error(f"Visual check failed on {page_url} ({engine}): {e}")
            return result(TestStatus.ERROR, str(e), error_kind=kind)

        data = {
            "key": paths.key,
            "diff_ratio": comparison.diff_ratio,
            "pixel_difference": comparison.pixel_difference,
            "threshold": self.config.visual_diff_threshold,
            "diff_region": comparison.diff_region,
            "resized": comparison.resized,
        }
        logger.info(
            f"Visual comparison {paths.key}: ratio={comparison.diff_ratio:.4f}, "
            f"pixel_difference={comparison.pixel_difference}"
        )

        if comparison.within(self.config.visual_diff_threshold):
            return result(TestStatus.PASS, artifact=paths.capture, data=data)

        self.baselines.record_diff(
            paths.key,
            page_url,
            paths.baseline,
            paths.capture,
            diff_path,
            comparison.diff_ratio,
            comparison.pixel_difference,
        )
        return result(
            TestStatus.FAIL,
            f"{comparison.diff_ratio:.2%} of pixels differ "
            f"(threshold {self.config.visual_diff_threshold:.2%})",
            diff_path or paths.capture,
            data,
        )
