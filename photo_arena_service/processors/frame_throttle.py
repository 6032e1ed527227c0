#!/usr/bin/env python3
"""
Frame Throttle
==============

Bounded-rate gate in front of the quality scorer. Frames that arrive sooner
than the analysis interval after the last analyzed frame are dropped, not
queued: the freshest frame always wins.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Absorbs float error in timestamps like 0.3 - 0.2
_TOLERANCE = 1e-6


class FrameThrottle:
    """Per-session drop-based rate limiter keyed on frame timestamps"""

    def __init__(self, min_interval_ms: int = 100):
        self.min_interval = max(min_interval_ms, 0) / 1000.0
        self.reset()

    def reset(self) -> None:
        self._last_accepted: Optional[float] = None
        self.accepted_count = 0
        self.dropped_count = 0

    def should_analyze(self, timestamp: float) -> bool:
        """
        Decide whether a frame captured at `timestamp` (seconds) is analyzed

        Args:
            timestamp: Capture time of the frame

        Returns:
            True when the frame should be scored, False when it is dropped
        """
        if self._last_accepted is not None:
            elapsed = timestamp - self._last_accepted
            if elapsed < 0 or elapsed + _TOLERANCE < self.min_interval:
                self.dropped_count += 1
                return False

        self._last_accepted = timestamp
        self.accepted_count += 1
        return True
