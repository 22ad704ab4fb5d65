"""Visual baseline bookkeeping.

Tracks reference screenshots in ``baselines.json`` and failed comparisons in
``pending-diffs.json``, both under the run's output directory, and lets a
reviewer accept or reject pending differences.
"""

import hashlib
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models.baseline_models import BaselineDiff, BaselineEntry, DiffStatus
from ..utils.helpers import ensure_dir

logger = logging.getLogger(__name__)

BASELINES_FILE = "baselines.json"
PENDING_DIFFS_FILE = "pending-diffs.json"


def file_hash(path: Union[str, Path]) -> str:
    """SHA-256 of a file's bytes."""
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


class BaselineManager:
    """Manage baseline entries and pending visual differences.

    State is loaded eagerly and written back after every change, so the two
    JSON files always reflect what is on disk.
    """

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = ensure_dir(output_dir)
        self.baselines_path = self.output_dir / BASELINES_FILE
        self.pending_path = self.output_dir / PENDING_DIFFS_FILE
        self.baselines: Dict[str, BaselineEntry] = {}
        self.pending: Dict[str, BaselineDiff] = {}
        self.load()

    # ── Persistence ──────────────────────────────────────────────────

    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable {path.name}: {e}")
            return {}

    def load(self) -> None:
        """Reload both files from disk."""
        self.baselines = {
            key: BaselineEntry.model_validate(value)
            for key, value in self._read(self.baselines_path).items()
        }
        self.pending = {
            key: BaselineDiff.model_validate(value)
            for key, value in self._read(self.pending_path).items()
        }
        logger.debug(f"Loaded {len(self.baselines)} baselines, {len(self.pending)} pending diffs")

    def save(self) -> None:
        """Write both files."""
        self.baselines_path.write_text(
            json.dumps(
                {k: v.model_dump(mode="json") for k, v in sorted(self.baselines.items())},
                indent=2,
            ),
            encoding="utf-8",
        )
        self.pending_path.write_text(
            json.dumps(
                {k: v.model_dump(mode="json") for k, v in sorted(self.pending.items())},
                indent=2,
            ),
            encoding="utf-8",
        )

    # ── Recording ────────────────────────────────────────────────────

    def record_baseline(
        self,
        key: str,
        page_url: str,
        engine: str,
        viewport: str,
        baseline_path: Union[str, Path],
    ) -> BaselineEntry:
        """Register (or refresh) the baseline stored at ``baseline_path``."""
        now = datetime.now()
        previous = self.baselines.get(key)
        entry = BaselineEntry(
            key=key,
            page_url=page_url,
            engine=engine,
            viewport=viewport,
            baseline_path=str(baseline_path),
            hash=file_hash(baseline_path),
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        self.baselines[key] = entry
        # A fresh baseline supersedes any diff waiting for review
        self.pending.pop(key, None)
        self.save()
        logger.info(f"Recorded baseline {key}")
        return entry

    def record_diff(
        self,
        key: str,
        page_url: str,
        baseline_path: Union[str, Path],
        current_path: Union[str, Path],
        diff_path: Optional[Union[str, Path]],
        diff_ratio: float,
        pixel_difference: int,
    ) -> BaselineDiff:
        """Record a failed comparison for review."""
        diff = BaselineDiff(
            key=key,
            page_url=page_url,
            baseline_path=str(baseline_path),
            current_path=str(current_path),
            diff_path=str(diff_path) if diff_path else None,
            diff_ratio=diff_ratio,
            pixel_difference=pixel_difference,
        )
        self.pending[key] = diff
        self.save()
        logger.info(f"Recorded pending diff {key} (ratio={diff_ratio:.4f})")
        return diff

    # ── Review ───────────────────────────────────────────────────────

    def accept_diff(self, key: str) -> BaselineEntry:
        """Promote the capture of a pending diff to the new baseline.

        Raises:
            KeyError: If no diff is pending for ``key``
        """
        diff = self.pending[key]
        shutil.copyfile(diff.current_path, diff.baseline_path)
        previous = self.baselines.get(key)
        entry = self.record_baseline(
            key,
            diff.page_url,
            previous.engine if previous else "",
            previous.viewport if previous else "",
            diff.baseline_path,
        )
        logger.info(f"Accepted diff {key}")
        return entry

    def reject_diff(self, key: str) -> BaselineDiff:
        """Discard a pending diff, keeping the baseline.

        Raises:
            KeyError: If no diff is pending for ``key``
        """
        diff = self.pending.pop(key)
        if diff.diff_path:
            Path(diff.diff_path).unlink(missing_ok=True)
        self.save()
        logger.info(f"Rejected diff {key}")
        return diff.model_copy(update={"status": DiffStatus.REJECTED})

    def accept_all(self) -> List[str]:
        keys = sorted(self.pending)
        for key in keys:
            self.accept_diff(key)
        return keys

    def reject_all(self) -> List[str]:
        keys = sorted(self.pending)
        for key in keys:
            self.reject_diff(key)
        return keys

    def list_baselines(self, page_url: Optional[str] = None) -> List[BaselineEntry]:
        entries = sorted(self.baselines.values(), key=lambda e: e.key)
        if page_url is not None:
            entries = [e for e in entries if e.page_url == page_url]
        return entries

    def list_pending(self) -> List[BaselineDiff]:
        return sorted(self.pending.values(), key=lambda d: d.key)

    def delete_baseline(self, key: str) -> bool:
        """Remove a baseline entry and its image. Returns False if unknown."""
        entry = self.baselines.pop(key, None)
        if entry is None:
            return False
        Path(entry.baseline_path).unlink(missing_ok=True)
        self.pending.pop(key, None)
        self.save()
        logger.info(f"Deleted baseline {key}")
        return True

    def summary(self) -> Dict[str, Any]:
        return {
            "baselines": len(self.baselines),
            "pending_diffs": len(self.pending),
            "pages": len({e.page_url for e in self.baselines.values()}),
            "engines": sorted({e.engine for e in self.baselines.values() if e.engine}),
        }
