#!/usr/bin/env python3
"""
Quality Scorer Processor
========================

Turns one analyzed frame into a normalized quality vector and checks
vectors against the quality criteria table.

Each field comes from its own small detector function over one part of the
frame signals (face geometry, head pose, pixel statistics, eye state), so a
different detector vendor only has to replace the matching function.
"""

import logging
from typing import List, Optional

import numpy as np

from ..core.constants import FailureReason, sort_reasons
from ..core.data_classes import (
    FrameSignals, FaceSignal, HeadPose, PixelStatistics,
    QualityVector, QualityCriteria, QualityScore
)
from ..config import Config

logger = logging.getLogger(__name__)


def _clip01(value: float) -> float:
    return float(np.clip(value, 0.0, 1.0))


# =============================================================================
# Detectors
# =============================================================================

def face_area_fraction(face: FaceSignal) -> float:
    """Share of the frame covered by the face box (frame area is 1)"""
    return _clip01(face.bounding_box.area)


def pose_deviation(pose: Optional[HeadPose], missing_value: float = 90.0) -> float:
    """Largest absolute head angle, in degrees from frontal"""
    if pose is None:
        return missing_value
    return float(max(abs(pose.yaw), abs(pose.pitch), abs(pose.roll)))


def sharpness_score(stats: PixelStatistics, good_variance: float) -> float:
    """Laplacian variance normalized against a known-good focus level"""
    return _clip01(stats.laplacian_variance / good_variance)


def brightness_score(stats: PixelStatistics) -> float:
    """Exposure level; histogram tails push towards the clipped side"""
    level = stats.mean_luminance / 255.0
    level += 0.5 * (stats.bright_fraction - stats.dark_fraction)
    return _clip01(level)


def contrast_score(stats: PixelStatistics, reference_std: float) -> float:
    """RMS contrast relative to a reference standard deviation"""
    return _clip01(stats.luminance_std / reference_std)


def eye_openness_score(face: FaceSignal) -> float:
    return _clip01(face.eye_openness)


# =============================================================================
# Criteria
# =============================================================================

def evaluate_criteria(vector: QualityVector, criteria: QualityCriteria) -> List[FailureReason]:
    """
    Check a quality vector against the criteria table

    Args:
        vector: Quality vector (usually the stabilized average)
        criteria: Acceptable ranges

    Returns:
        Failing reason codes, highest priority first. Empty when the vector passes.
    """
    reasons = []

    if not (criteria.min_brightness <= vector.brightness <= criteria.max_brightness):
        reasons.append(FailureReason.POOR_LIGHTING)
    if vector.contrast <= criteria.min_contrast:
        reasons.append(FailureReason.POOR_LIGHTING)
    if vector.sharpness <= criteria.min_sharpness:
        reasons.append(FailureReason.BLURRY_IMAGE)
    if vector.pose_deviation > criteria.max_pose_deviation:
        reasons.append(FailureReason.INVALID_POSE)
    if vector.face_area_fraction < criteria.min_face_area_fraction:
        reasons.append(FailureReason.TOO_FAR_AWAY)
    elif vector.face_area_fraction > criteria.max_face_area_fraction:
        reasons.append(FailureReason.TOO_CLOSE)
    if vector.eye_openness <= criteria.min_eye_openness:
        reasons.append(FailureReason.EYES_CLOSED)

    return sort_reasons(reasons)


class QualityScorer:
    """Pure frame-to-quality-vector mapping"""

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize quality scorer

        Args:
            config: Configuration object. If None, uses default Config()
        """
        self.config = config or Config()
        self.criteria = self.config.get_quality_criteria()

    def score(self, signals: FrameSignals) -> QualityScore:
        """
        Score one analyzed frame

        Args:
            signals: Frame signals from the extractor

        Returns:
            QualityScore with either a vector or a NO_FACE_DETECTED /
            MULTIPLE_FACES failure
        """
        if signals.face_count <= 0:
            return QualityScore(failure=FailureReason.NO_FACE_DETECTED)
        if signals.face_count > 1:
            return QualityScore(failure=FailureReason.MULTIPLE_FACES)

        face = signals.primary_face
        stats = signals.pixel_statistics
        if face is None or stats is None:
            # Detector claimed one face but gave us nothing to measure
            logger.debug("Frame reports one face without face or pixel signals")
            return QualityScore(failure=FailureReason.NO_FACE_DETECTED)

        vector = QualityVector(
            face_area_fraction=face_area_fraction(face),
            sharpness=sharpness_score(stats, self.config.GOOD_SHARPNESS_VARIANCE),
            brightness=brightness_score(stats),
            contrast=contrast_score(stats, self.config.CONTRAST_REFERENCE_STD),
            pose_deviation=pose_deviation(signals.pose, self.config.MISSING_POSE_DEVIATION),
            eye_openness=eye_openness_score(face)
        )
        return QualityScore(vector=vector)

    def evaluate(self, vector: QualityVector) -> List[FailureReason]:
        """Failing reasons of a vector under this scorer's criteria"""
        return evaluate_criteria(vector, self.criteria)

