"""
Latest Mask Slot
================

Single publish/read hand-off between async inference and the paint loop.

Contract:
    - One writer: the completion of an inference task
    - Readers: the render loop, once per paint tick
    - publish() installs a mask with ONE reference assignment, so a reader
      sees either the old mask or the new one, never a mix
    - Masks only move forward: a result whose issue sequence is not newer
      than the installed mask is discarded
    - After close(), publishes are discarded (the session is torn down)
"""

import logging
from typing import Optional

from tryon_compositor.models.mask import SegmentationMask


logger = logging.getLogger(__name__)


class LatestMaskSlot:
    """
    Holds the most recent completed segmentation mask.

    Attributes:
        current: Installed mask, or None before the first inference
        closed: Whether the slot rejects further publishes
    """

    def __init__(self) -> None:
        self._mask: Optional[SegmentationMask] = None
        self._closed: bool = False
        self._published: int = 0
        self._stale_discarded: int = 0
        self._closed_discarded: int = 0

    @property
    def current(self) -> Optional[SegmentationMask]:
        return self._mask

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stale_discarded(self) -> int:
        """Results dropped because a newer mask was already installed."""
        return self._stale_discarded

    def publish(self, mask: SegmentationMask) -> bool:
        """
        Install a newly completed mask.

        Returns:
            True if installed, False if discarded (stale or slot closed)
        """
        if self._closed:
            self._closed_discarded += 1
            logger.debug(f"Slot closed, discarding mask seq={mask.sequence}")
            return False

        installed = self._mask
        if installed is not None and mask.sequence <= installed.sequence:
            self._stale_discarded += 1
            logger.debug(
                f"Discarding stale mask seq={mask.sequence} "
                f"(installed seq={installed.sequence})"
            )
            return False

        self._mask = mask
        self._published += 1
        return True

    def close(self) -> None:
        """Reject all further publishes."""
        self._closed = True

    def reset(self) -> None:
        """Forget the installed mask and reopen for a new session."""
        self._mask = None
        self._closed = False

    def metrics(self) -> dict:
        """
        Get slot metrics for observability.

        Returns:
            Dict with published, stale_discarded, closed_discarded and
            the installed sequence (or None)
        """
        return {
            "published": self._published,
            "stale_discarded": self._stale_discarded,
            "closed_discarded": self._closed_discarded,
            "current_sequence": self._mask.sequence if self._mask else None,
        }
