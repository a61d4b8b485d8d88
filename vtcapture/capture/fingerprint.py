"""
Frame Fingerprint & Deduplication Module

Detects visually unchanged consecutive frames from the structural and style
state of the capture region instead of comparing pixels. Unchanged frames
are emitted as repeats of the previous frame.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 16

# Returns the region's state string, or null when the region is missing.
FINGERPRINT_SCRIPT = """
(selector) => {
  const region = document.querySelector(selector);
  if (!region) {
    return null;
  }
  const describe = (element) => {
    const style = window.getComputedStyle(element);
    return style.transform + '|' + style.opacity + '|' + (element.textContent || '');
  };
  const parts = [describe(region)];
  for (const child of region.children) {
    parts.push(describe(child));
  }
  let progress = 0;
  if (typeof window.getAnimationState === 'function') {
    const state = window.getAnimationState();
    if (state && state.progress !== undefined && state.progress !== null) {
      progress = state.progress;
    }
  }
  return parts.join('||') + '#' + String(progress);
}
"""


def fingerprint_state(state: str) -> str:
    """Short digest of a region state string."""
    return hashlib.sha256(state.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass
class DedupStats:
    """Deduplication statistics"""
    frames_checked: int = 0
    duplicates_detected: int = 0
    unique_frames: int = 0
    resets: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frames_checked": self.frames_checked,
            "duplicates_detected": self.duplicates_detected,
            "unique_frames": self.unique_frames,
            "resets": self.resets,
        }


class FrameDeduplicator:
    """
    Classifies each frame against the immediately preceding one.

    classify() does not change state; the orchestrator calls commit() once a
    unique frame's pixels were captured, so a failed capture never becomes
    the reference for the next comparison.

    Example:
        dedup = FrameDeduplicator()
        if dedup.classify(fp):
            await encoder.repeat()
        else:
            await encoder.write(pixels)
            dedup.commit(fp)
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._prior: Optional[str] = None
        self._stats = DedupStats()

        if self.enabled:
            logger.debug("[DEDUP] Frame deduplication enabled")

    @property
    def prior(self) -> Optional[str]:
        return self._prior

    def classify(self, fingerprint: Optional[str]) -> bool:
        """
        Check whether a frame duplicates the previous committed frame.

        Returns:
            True if the frame is a duplicate. The first frame of a job and
            any frame without a fingerprint are never duplicates.
        """
        if not self.enabled or fingerprint is None:
            return False

        self._stats.frames_checked += 1
        if self._prior is not None and fingerprint == self._prior:
            self._stats.duplicates_detected += 1
            return True
        return False

    def commit(self, fingerprint: Optional[str]) -> None:
        """Store a captured frame's fingerprint as the comparison reference."""
        self._stats.unique_frames += 1
        if self.enabled:
            self._prior = fingerprint

    def reset(self) -> None:
        """Forget the reference, e.g. after a frame was skipped."""
        if self._prior is not None:
            self._stats.resets += 1
            logger.debug("[DEDUP] Reference fingerprint cleared")
        self._prior = None

    def get_stats(self) -> DedupStats:
        return self._stats
