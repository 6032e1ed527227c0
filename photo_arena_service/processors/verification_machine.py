#!/usr/bin/env python3
"""
Verification State Machine
==========================

Drives one capture session from guidance to an accept/reject decision:

    INITIALIZING -> ANALYZING -> {GUIDANCE <-> READY_TO_CAPTURE} -> CAPTURED
        -> BIOMETRIC_AUTH -> SELFIE_CAPTURE -> PROCESSING -> {ACCEPTED | REJECTED}

The machine is a reactive state holder: it advances only when `handle()` is
given an event, processes one event at a time, and owns no timers or threads.
Each session gets its own instance, so nothing is shared across sessions.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..core.constants import (
    FailureReason, VerificationState, DecisionStatus, VerificationStatus,
    TERMINAL_STATES, PRE_CAPTURE_STATES,
    GUIDANCE_ANALYZING, GUIDANCE_HOLD_STILL, GUIDANCE_READY,
    GUIDANCE_AUTHENTICATING, GUIDANCE_ACCEPTED
)
from ..core.data_classes import (
    FrameSignals, VerificationDecision, LivenessResult, UploadRequest, StabilizedState,
    QualityVector
)
from ..core.exceptions import InvalidTransitionError, SessionClosedError, ValidationError
from ..config import Config
from .quality_scorer import QualityScorer
from .temporal_stabilizer import TemporalStabilizer
from .liveness_evaluator import LivenessEvaluator

logger = logging.getLogger(__name__)


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class SessionStarted:
    pass


@dataclass(frozen=True)
class FrameAnalyzed:
    signals: FrameSignals


@dataclass(frozen=True)
class CaptureTriggered:
    photo_ref: str
    frame: Optional[FrameSignals] = None  # folded into the average when given


@dataclass(frozen=True)
class AuthenticationStarted:
    pass


@dataclass(frozen=True)
class BiometricResult:
    passed: bool
    detail: str = ''


@dataclass(frozen=True)
class SelfieCaptured:
    frames: Tuple[FrameSignals, ...]


@dataclass(frozen=True)
class SelfieCancelled:
    detail: str = ''


@dataclass(frozen=True)
class SessionCancelled:
    detail: str = ''


class VerificationStateMachine:
    """Per-session verification flow"""

    def __init__(self, config: Optional[Config] = None,
                 scorer: Optional[QualityScorer] = None,
                 liveness_evaluator: Optional[LivenessEvaluator] = None,
                 session_id: str = ''):
        """
        Initialize state machine

        Args:
            config: Configuration object. If None, uses default Config()
            scorer: Quality scorer (stateless, may be shared)
            liveness_evaluator: Liveness evaluator (stateless, may be shared)
            session_id: Identifier used in log messages
        """
        self.config = config or Config()
        self.scorer = scorer or QualityScorer(self.config)
        self.liveness_evaluator = liveness_evaluator or LivenessEvaluator(self.config)
        self.session_id = session_id
        self.required_passes = self.config.REQUIRED_CONSECUTIVE_PASSES
        self.stabilizer = TemporalStabilizer(self.scorer.criteria, self.config.EMA_DECAY)

        self.state = VerificationState.INITIALIZING
        self._last_frame: Optional[FrameSignals] = None
        self._captured_frame: Optional[FrameSignals] = None
        self._captured_quality: Optional[QualityVector] = None
        self._capture_failure: Optional[FailureReason] = None
        self._photo_ref: Optional[str] = None
        self._decision = self._guidance([], GUIDANCE_ANALYZING)

        self._handlers: Dict[type, Callable] = {
            SessionStarted: self._on_session_started,
            FrameAnalyzed: self._on_frame_analyzed,
            CaptureTriggered: self._on_capture_triggered,
            AuthenticationStarted: self._on_authentication_started,
            BiometricResult: self._on_biometric_result,
            SelfieCaptured: self._on_selfie_captured,
            SelfieCancelled: self._on_selfie_cancelled,
            SessionCancelled: self._on_session_cancelled,
        }

    @property
    def decision(self) -> VerificationDecision:
        """Decision produced by the most recent event"""
        return self._decision

    @property
    def stabilized_state(self) -> StabilizedState:
        return self.stabilizer.snapshot()

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def handle(self, event) -> VerificationDecision:
        """
        Process one event

        Args:
            event: One of the event dataclasses defined in this module

        Returns:
            VerificationDecision for this evaluation tick

        Raises:
            InvalidTransitionError: If the event is not valid in the current state
            SessionClosedError: If the session already reached a final state
        """
        event_name = type(event).__name__
        handler = self._handlers.get(type(event))
        if handler is None:
            raise InvalidTransitionError(self.state.value, event_name)

        if self.is_finished:
            if isinstance(event, FrameAnalyzed):
                return self._decision
            raise SessionClosedError(self.state.value, event_name)

        previous = self.state
        self._decision = handler(event)

        if self.state != previous:
            logger.debug(f"[{self.session_id}] {previous.value} -> {self.state.value} on {event_name}")
        return self._decision

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _on_session_started(self, event: SessionStarted) -> VerificationDecision:
        self._require({VerificationState.INITIALIZING}, event)
        self.stabilizer.reset()
        self.state = VerificationState.ANALYZING
        return self._guidance([], GUIDANCE_ANALYZING)

    def _on_frame_analyzed(self, event: FrameAnalyzed) -> VerificationDecision:
        if self.state == VerificationState.INITIALIZING:
            raise InvalidTransitionError(self.state.value, type(event).__name__)
        if self.state not in PRE_CAPTURE_STATES:
            # Camera keeps streaming during authentication
            return self._decision

        self._last_frame = event.signals
        score = self.scorer.score(event.signals)

        if not score.has_vector:
            self.stabilizer.register_unusable_frame(score.failure)
            self.state = VerificationState.GUIDANCE
            return self._guidance([score.failure], score.failure.value)

        stabilized = self.stabilizer.update(score.vector)
        if stabilized.consecutive_pass_count >= self.required_passes:
            self.state = VerificationState.READY_TO_CAPTURE
            return VerificationDecision(
                status=DecisionStatus.READY_TO_CAPTURE,
                state=self.state,
                guidance_message=GUIDANCE_READY
            )

        self.state = VerificationState.GUIDANCE
        if stabilized.failure_reasons:
            reasons = list(stabilized.failure_reasons)
            return self._guidance(reasons, reasons[0].value)
        return self._guidance([], GUIDANCE_HOLD_STILL)

    def _on_capture_triggered(self, event: CaptureTriggered) -> VerificationDecision:
        self._require({VerificationState.READY_TO_CAPTURE}, event)
        if not event.photo_ref:
            raise ValidationError('photo_ref', event.photo_ref, 'capture needs a photo reference')

        self._photo_ref = event.photo_ref
        self._captured_frame = event.frame or self._last_frame
        if event.frame is not None:
            self._fold_capture_frame(event.frame)
        self._captured_quality = self.stabilizer.averaged
        self.state = VerificationState.CAPTURED
        logger.info(f"[{self.session_id}] Photo captured: {self._photo_ref}")
        return self._authenticating()

    def _on_authentication_started(self, event: AuthenticationStarted) -> VerificationDecision:
        self._require({VerificationState.CAPTURED}, event)
        self.state = VerificationState.BIOMETRIC_AUTH
        return self._authenticating()

    def _on_biometric_result(self, event: BiometricResult) -> VerificationDecision:
        self._require({VerificationState.BIOMETRIC_AUTH}, event)
        if not event.passed:
            logger.info(f"[{self.session_id}] Biometric authentication failed: {event.detail}")
            return self._reject([FailureReason.BIOMETRIC_FAILED])

        self.state = VerificationState.SELFIE_CAPTURE
        return self._authenticating()

    def _on_selfie_cancelled(self, event: SelfieCancelled) -> VerificationDecision:
        self._require({VerificationState.SELFIE_CAPTURE}, event)
        logger.info(f"[{self.session_id}] Selfie capture cancelled: {event.detail}")
        return self._reject([FailureReason.SELFIE_FAILED])

    def _on_selfie_captured(self, event: SelfieCaptured) -> VerificationDecision:
        self._require({VerificationState.SELFIE_CAPTURE}, event)
        if not event.frames:
            return self._reject([FailureReason.SELFIE_FAILED])

        self.state = VerificationState.PROCESSING
        return self._process(event.frames)

    def _on_session_cancelled(self, event: SessionCancelled) -> VerificationDecision:
        logger.info(f"[{self.session_id}] Session cancelled in {self.state.value}: {event.detail}")
        self.stabilizer.reset()
        self._last_frame = None
        self._captured_frame = None
        self._captured_quality = None
        self._capture_failure = None
        self._photo_ref = None
        return self._reject([FailureReason.SESSION_CANCELLED])

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def _process(self, selfie_frames: Sequence[FrameSignals]) -> VerificationDecision:
        """Liveness plus final quality check on the averaged vector frozen at capture"""
        liveness = self.liveness_evaluator.evaluate([self._captured_frame, *selfie_frames])

        reasons = []
        if self._capture_failure is not None:
            reasons.append(self._capture_failure)
        elif self._captured_quality is None:
            reasons.append(FailureReason.NO_FACE_DETECTED)
        else:
            reasons.extend(self.scorer.evaluate(self._captured_quality))

        if liveness.confidence <= self.config.LIVENESS_LOW_CONFIDENCE_THRESHOLD:
            reasons.append(FailureReason.LIVENESS_FAILED)

        if reasons:
            return self._reject(reasons, liveness)

        if liveness.confidence > self.config.LIVENESS_ACCEPT_THRESHOLD:
            return self._accept(DecisionStatus.ACCEPTED, VerificationStatus.ACCEPTED, liveness)
        return self._accept(DecisionStatus.LOW_CONFIDENCE, VerificationStatus.LOW_CONFIDENCE, liveness)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _fold_capture_frame(self, frame: FrameSignals) -> None:
        score = self.scorer.score(frame)
        if score.has_vector:
            self.stabilizer.update(score.vector)
        else:
            self.stabilizer.register_unusable_frame(score.failure)
            self._capture_failure = score.failure

    def _require(self, states, event) -> None:
        if self.state not in states:
            raise InvalidTransitionError(self.state.value, type(event).__name__)

    def _guidance(self, reasons, message: str) -> VerificationDecision:
        return VerificationDecision(
            status=DecisionStatus.GUIDANCE,
            state=self.state,
            failure_reasons=list(reasons),
            guidance_message=message
        )

    def _authenticating(self) -> VerificationDecision:
        return VerificationDecision(
            status=DecisionStatus.AUTHENTICATING,
            state=self.state,
            guidance_message=GUIDANCE_AUTHENTICATING
        )

    def _reject(self, reasons, liveness: Optional[LivenessResult] = None) -> VerificationDecision:
        self.state = VerificationState.REJECTED
        unique = []
        for reason in reasons:
            if reason not in unique:
                unique.append(reason)
        logger.info(f"[{self.session_id}] Verification rejected: {[r.value for r in unique]}")
        return VerificationDecision(
            status=DecisionStatus.REJECTED,
            state=self.state,
            failure_reasons=unique,
            guidance_message=unique[0].value,
            liveness=liveness
        )

    def _accept(self, status: DecisionStatus, verification_status: VerificationStatus,
                liveness: LivenessResult) -> VerificationDecision:
        self.state = VerificationState.ACCEPTED
        upload = UploadRequest(
            photo_ref=self._photo_ref,
            verification_status=verification_status,
            liveness_confidence=liveness.confidence
        )
        logger.info(f"[{self.session_id}] Verification accepted as {verification_status.value} "
                    f"(liveness confidence: {liveness.confidence:.3f})")
        return VerificationDecision(
            status=status,
            state=self.state,
            guidance_message=GUIDANCE_ACCEPTED if status == DecisionStatus.ACCEPTED else status.value,
            upload=upload,
            liveness=liveness
        )
