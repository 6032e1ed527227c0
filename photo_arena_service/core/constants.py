#!/usr/bin/env python3
"""
Core Constants for Photo Arena Service
======================================

Reason codes, statuses, state names and default tuning values shared by the
verification pipeline and the rating engine.
"""

from enum import Enum
from typing import Dict, List


# =============================================================================
# Verification Reason Codes
# =============================================================================

class FailureReason(str, Enum):
    """Stable reason codes reported to the UI collaborator"""

    # Signal quality (guidance, never fatal)
    NO_FACE_DETECTED = 'NO_FACE_DETECTED'
    MULTIPLE_FACES = 'MULTIPLE_FACES'
    POOR_LIGHTING = 'POOR_LIGHTING'
    BLURRY_IMAGE = 'BLURRY_IMAGE'
    INVALID_POSE = 'INVALID_POSE'
    TOO_FAR_AWAY = 'TOO_FAR_AWAY'
    TOO_CLOSE = 'TOO_CLOSE'
    EYES_CLOSED = 'EYES_CLOSED'

    # Authentication (terminate the session)
    BIOMETRIC_FAILED = 'BIOMETRIC_FAILED'
    SELFIE_FAILED = 'SELFIE_FAILED'
    LIVENESS_FAILED = 'LIVENESS_FAILED'
    SESSION_CANCELLED = 'SESSION_CANCELLED'


# Highest priority first. TOO_FAR_AWAY and TOO_CLOSE are mutually exclusive.
GUIDANCE_PRIORITY: List[FailureReason] = [
    FailureReason.NO_FACE_DETECTED,
    FailureReason.MULTIPLE_FACES,
    FailureReason.POOR_LIGHTING,
    FailureReason.BLURRY_IMAGE,
    FailureReason.INVALID_POSE,
    FailureReason.TOO_FAR_AWAY,
    FailureReason.TOO_CLOSE,
    FailureReason.EYES_CLOSED,
]

REASON_PRIORITY: Dict[FailureReason, int] = {
    reason: rank for rank, reason in enumerate(GUIDANCE_PRIORITY)
}

AUTHENTICATION_FAILURES = {
    FailureReason.BIOMETRIC_FAILED,
    FailureReason.SELFIE_FAILED,
    FailureReason.LIVENESS_FAILED,
    FailureReason.SESSION_CANCELLED,
}

# Guidance codes that are not failures
GUIDANCE_ANALYZING = 'ANALYZING'
GUIDANCE_HOLD_STILL = 'HOLD_STILL'
GUIDANCE_READY = 'READY_TO_CAPTURE'
GUIDANCE_AUTHENTICATING = 'AUTHENTICATING'
GUIDANCE_ACCEPTED = 'ACCEPTED'


# =============================================================================
# Verification States and Statuses
# =============================================================================

class VerificationState(str, Enum):
    """Internal states of the verification state machine"""
    INITIALIZING = 'INITIALIZING'
    ANALYZING = 'ANALYZING'
    GUIDANCE = 'GUIDANCE'
    READY_TO_CAPTURE = 'READY_TO_CAPTURE'
    CAPTURED = 'CAPTURED'
    BIOMETRIC_AUTH = 'BIOMETRIC_AUTH'
    SELFIE_CAPTURE = 'SELFIE_CAPTURE'
    PROCESSING = 'PROCESSING'
    ACCEPTED = 'ACCEPTED'
    REJECTED = 'REJECTED'


TERMINAL_STATES = {VerificationState.ACCEPTED, VerificationState.REJECTED}

PRE_CAPTURE_STATES = {
    VerificationState.ANALYZING,
    VerificationState.GUIDANCE,
    VerificationState.READY_TO_CAPTURE,
}

AUTHENTICATION_STATES = {
    VerificationState.CAPTURED,
    VerificationState.BIOMETRIC_AUTH,
    VerificationState.SELFIE_CAPTURE,
    VerificationState.PROCESSING,
}


class DecisionStatus(str, Enum):
    """Status carried by every VerificationDecision"""
    GUIDANCE = 'GUIDANCE'
    READY_TO_CAPTURE = 'READY_TO_CAPTURE'
    AUTHENTICATING = 'AUTHENTICATING'
    ACCEPTED = 'ACCEPTED'
    LOW_CONFIDENCE = 'LOW_CONFIDENCE'  # accepted, caller applies extra scrutiny
    REJECTED = 'REJECTED'


class VerificationStatus(str, Enum):
    """Verification status persisted on a PhotoRecord"""
    PENDING = 'PENDING'
    ACCEPTED = 'ACCEPTED'
    LOW_CONFIDENCE = 'LOW_CONFIDENCE'
    REJECTED = 'REJECTED'


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_EMA_DECAY = 0.3
DEFAULT_REQUIRED_CONSECUTIVE_PASSES = 3
DEFAULT_FRAME_INTERVAL_MS = 100

DEFAULT_ELO_SCORE = 1000
DEFAULT_K_FACTOR = 32
ELO_SCALE = 400.0

# Liveness sub-score names, in evaluation order
LIVENESS_MOTION = 'motion_plausibility'
LIVENESS_TEXTURE = 'depth_texture_consistency'
LIVENESS_LANDMARKS = 'landmark_continuity'


def sort_reasons(reasons) -> List[FailureReason]:
    """Order reason codes by guidance priority, dropping duplicates"""
    unique = []
    for reason in reasons:
        if reason not in unique:
            unique.append(reason)
    return sorted(unique, key=lambda r: REASON_PRIORITY.get(r, len(REASON_PRIORITY)))
