#!/usr/bin/env python3
"""
Temporal Stabilizer Processor
=============================

Exponential moving average over per-frame quality vectors plus a
consecutive-pass streak. Gating on the averaged vector keeps one lucky frame
from triggering capture and one bad frame from flickering the guidance.
"""

import logging
from dataclasses import astuple
from typing import List, Optional

import numpy as np

from ..core.constants import FailureReason
from ..core.data_classes import QualityVector, QualityCriteria, StabilizedState
from .quality_scorer import evaluate_criteria

logger = logging.getLogger(__name__)


class TemporalStabilizer:
    """Session-scoped smoothing state. Not shared between sessions."""

    def __init__(self, criteria: QualityCriteria, decay: float = 0.3):
        """
        Initialize stabilizer

        Args:
            criteria: Criteria table checked against the averaged vector
            decay: Weight of each new sample in the moving average
        """
        if not 0.0 < decay <= 1.0:
            raise ValueError(f"decay must be in (0, 1], got {decay}")
        self.criteria = criteria
        self.decay = decay
        self.reset()

    def reset(self) -> None:
        """Discard all state (session start or cancellation)"""
        self._average: Optional[np.ndarray] = None
        self._sample_count = 0
        self._consecutive_pass_count = 0
        self._failure_reasons: List[FailureReason] = []

    def update(self, vector: QualityVector) -> StabilizedState:
        """
        Fold a new quality vector into the average

        Args:
            vector: Quality vector of the newest analyzed frame

        Returns:
            StabilizedState after the update
        """
        sample = np.asarray(astuple(vector), dtype=np.float64)
        if self._average is None:
            self._average = sample
        else:
            self._average = self.decay * sample + (1.0 - self.decay) * self._average
        self._sample_count += 1

        self._failure_reasons = evaluate_criteria(self.averaged, self.criteria)
        if self._failure_reasons:
            self._consecutive_pass_count = 0
        else:
            self._consecutive_pass_count += 1

        logger.debug(f"Stabilizer update #{self._sample_count}: "
                     f"streak={self._consecutive_pass_count}, "
                     f"failures={[r.value for r in self._failure_reasons]}")
        return self.snapshot()

    def register_unusable_frame(self, reason: FailureReason) -> StabilizedState:
        """A frame without exactly one face breaks the streak but keeps the average"""
        self._consecutive_pass_count = 0
        logger.debug(f"Stabilizer streak reset by unusable frame: {reason.value}")
        return self.snapshot()

    @property
    def averaged(self) -> Optional[QualityVector]:
        if self._average is None:
            return None
        return QualityVector(*(float(value) for value in self._average))

    @property
    def consecutive_pass_count(self) -> int:
        return self._consecutive_pass_count

    def snapshot(self) -> StabilizedState:
        return StabilizedState(
            averaged=self.averaged,
            sample_count=self._sample_count,
            consecutive_pass_count=self._consecutive_pass_count,
            failure_reasons=tuple(self._failure_reasons)
        )
