#!/usr/bin/env python3
"""
Core Data Classes for Photo Arena Service
=========================================

Value types flowing through the verification pipeline (frame signals,
quality vectors, decisions, liveness results) and the rating engine
(photo records, rating events, comparison pairs, commits).
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple
from datetime import datetime

from .constants import (
    FailureReason, DecisionStatus, VerificationState, VerificationStatus,
    DEFAULT_ELO_SCORE
)


def _serialize(value: Any) -> Any:
    """Convert enums (recursively) into their string values"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


# =============================================================================
# Frame signals (output contract of the frame extractor)
# =============================================================================

@dataclass(frozen=True)
class BoundingBox:
    """Face bounding box in normalized (0-1) frame coordinates"""
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        """Area of the part of the box that lies inside the frame"""
        x1 = min(max(self.x, 0.0), 1.0)
        y1 = min(max(self.y, 0.0), 1.0)
        x2 = min(max(self.x + self.width, 0.0), 1.0)
        y2 = min(max(self.y + self.height, 0.0), 1.0)
        return max(0.0, x2 - x1) * max(0.0, y2 - y1)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)


@dataclass(frozen=True)
class HeadPose:
    """Head pose angles in degrees (0, 0, 0 is frontal)"""
    yaw: float
    pitch: float
    roll: float


@dataclass(frozen=True)
class FaceSignal:
    """One detected face"""
    bounding_box: BoundingBox
    landmark_confidence: float
    eye_openness: float
    landmarks: Tuple[Tuple[float, float], ...] = ()


@dataclass(frozen=True)
class PixelStatistics:
    """Luminance summary of one frame"""
    mean_luminance: float      # 0-255
    luminance_std: float       # 0-255
    laplacian_variance: float  # focus measure, >= 0
    dark_fraction: float = 0.0
    bright_fraction: float = 0.0


@dataclass(frozen=True)
class FrameSignals:
    """One analyzed camera frame"""
    face_count: int
    faces: Tuple[FaceSignal, ...]
    pose: Optional[HeadPose]
    pixel_statistics: Optional[PixelStatistics]
    timestamp: float

    @property
    def primary_face(self) -> Optional[FaceSignal]:
        return self.faces[0] if self.faces else None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


# =============================================================================
# Quality
# =============================================================================

@dataclass(frozen=True)
class QualityVector:
    """Normalized per-frame quality scores"""
    face_area_fraction: float
    sharpness: float
    brightness: float
    contrast: float
    pose_deviation: float  # degrees from frontal
    eye_openness: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class QualityCriteria:
    """Acceptable ranges a (stabilized) quality vector must satisfy"""
    min_face_area_fraction: float = 0.15
    max_face_area_fraction: float = 0.60
    min_sharpness: float = 0.6
    min_brightness: float = 0.3
    max_brightness: float = 0.8
    min_contrast: float = 0.4
    max_pose_deviation: float = 30.0
    min_eye_openness: float = 0.7


@dataclass(frozen=True)
class QualityScore:
    """Quality scorer output: a vector, or a terminal per-frame failure"""
    vector: Optional[QualityVector] = None
    failure: Optional[FailureReason] = None

    @property
    def has_vector(self) -> bool:
        return self.vector is not None


@dataclass(frozen=True)
class StabilizedState:
    """Read-only view of the temporal stabilizer"""
    averaged: Optional[QualityVector]
    sample_count: int
    consecutive_pass_count: int
    failure_reasons: Tuple[FailureReason, ...] = ()

    @property
    def passes(self) -> bool:
        return self.averaged is not None and not self.failure_reasons

    def to_dict(self) -> Dict[str, Any]:
        return {
            'averaged': self.averaged.to_dict() if self.averaged else None,
            'sample_count': self.sample_count,
            'consecutive_pass_count': self.consecutive_pass_count,
            'failure_reasons': _serialize(list(self.failure_reasons))
        }


# =============================================================================
# Liveness and decisions
# =============================================================================

@dataclass
class LivenessResult:
    """Result of one anti-spoofing evaluation"""
    is_live: bool
    confidence: float
    evidence_summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class UploadRequest:
    """Payload handed to the upload collaborator on acceptance"""
    photo_ref: str
    verification_status: VerificationStatus
    liveness_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class VerificationDecision:
    """One evaluation tick of the verification state machine"""
    status: DecisionStatus
    state: VerificationState
    failure_reasons: List[FailureReason] = field(default_factory=list)
    guidance_message: str = ''
    upload: Optional[UploadRequest] = None
    liveness: Optional[LivenessResult] = None

    @property
    def is_final(self) -> bool:
        return self.state in (VerificationState.ACCEPTED, VerificationState.REJECTED)

    @property
    def is_accepted(self) -> bool:
        return self.status in (DecisionStatus.ACCEPTED, DecisionStatus.LOW_CONFIDENCE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'state': self.state.value,
            'failure_reasons': _serialize(self.failure_reasons),
            'guidance_message': self.guidance_message,
            'upload': self.upload.to_dict() if self.upload else None,
            'liveness': self.liveness.to_dict() if self.liveness else None
        }


# =============================================================================
# Rating
# =============================================================================

@dataclass(frozen=True)
class PhotoRecord:
    """Photo as seen by the rating engine"""
    id: str
    owner_id: str
    in_pool: bool = True
    elo_score: int = DEFAULT_ELO_SCORE
    rating_count: int = 0
    verification_status: VerificationStatus = VerificationStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class RatingEvent:
    """One user decision between two photos"""
    winner_photo_id: str
    loser_photo_id: str
    idempotency_key: str
    timestamp: float = 0.0

    def same_outcome(self, other: 'RatingEvent') -> bool:
        return (self.winner_photo_id == other.winner_photo_id and
                self.loser_photo_id == other.loser_photo_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ComparisonPair:
    """Two distinct pool photos shown side by side"""
    left: PhotoRecord
    right: PhotoRecord

    def to_dict(self) -> Dict[str, Any]:
        return {'left': self.left.to_dict(), 'right': self.right.to_dict()}


@dataclass(frozen=True)
class RatingCommit:
    """Committed result of applying a rating event"""
    idempotency_key: str
    winner_photo_id: str
    loser_photo_id: str
    new_winner_elo: int
    new_loser_elo: int
    rating_count_winner: int
    rating_count_loser: int
    committed_at: datetime
    duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))
