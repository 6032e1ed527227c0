#!/usr/bin/env python3
"""
Verification Session Manager
============================

Owns one verification state machine per capture session. Handles session
lifecycle, frame throttling, expiry and the hand-off of accepted photos to
the upload collaborator.
"""

import threading
import time
import uuid
import logging
from typing import Callable, Dict, List, Any, Optional, Sequence
from datetime import datetime, timedelta
from dataclasses import dataclass, field

from ..config import Config
from ..core.constants import PRE_CAPTURE_STATES
from ..core.data_classes import FrameSignals, UploadRequest, VerificationDecision
from ..core.exceptions import SessionNotFoundError, SessionLimitError
from ..processors.frame_throttle import FrameThrottle
from ..processors.quality_scorer import QualityScorer
from ..processors.liveness_evaluator import LivenessEvaluator
from ..processors.verification_machine import (
    VerificationStateMachine, SessionStarted, FrameAnalyzed, CaptureTriggered,
    AuthenticationStarted, BiometricResult, SelfieCaptured, SelfieCancelled, SessionCancelled
)
from .metrics import MetricsManager

logger = logging.getLogger(__name__)

AcceptedCallback = Callable[[str, UploadRequest, Dict[str, Any]], None]

# Finished sessions are kept this long for status queries
FINISHED_SESSION_RETENTION = timedelta(hours=1)


@dataclass
class VerificationSession:
    """Verification session data structure"""
    session_id: str
    machine: VerificationStateMachine
    throttle: FrameThrottle
    created_at: datetime
    expires_at: datetime
    last_activity: datetime
    status: str = 'active'  # 'active', 'accepted', 'rejected', 'cancelled', 'expired'
    metadata: Dict[str, Any] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class VerificationSessionManager:
    """Thread-safe verification session management"""

    def __init__(self, config: Optional[Config] = None,
                 scorer: Optional[QualityScorer] = None,
                 liveness_evaluator: Optional[LivenessEvaluator] = None,
                 metrics: Optional[MetricsManager] = None,
                 on_accepted: Optional[AcceptedCallback] = None):
        """
        Initialize session manager

        Args:
            config: Configuration object. If None, uses default Config()
            scorer: Shared quality scorer
            liveness_evaluator: Shared liveness evaluator
            metrics: Metrics sink
            on_accepted: Called with (session_id, upload, metadata) when a session is accepted
        """
        self.config = config or Config()
        settings = self.config.get_session_settings()
        self.max_sessions = settings['max_sessions']
        self.session_timeout_minutes = settings['session_timeout_minutes']
        self.frame_interval_ms = settings['frame_interval_ms']

        self.scorer = scorer or QualityScorer(self.config)
        self.liveness_evaluator = liveness_evaluator or LivenessEvaluator(self.config)
        self.metrics = metrics
        self.on_accepted = on_accepted

        self._lock = threading.RLock()
        self._sessions: Dict[str, VerificationSession] = {}
        self._stop_event = threading.Event()
        self._cleanup_thread = None

        if settings['cleanup_enabled']:
            self._cleanup_thread = threading.Thread(
                target=self._cleanup_worker,
                args=(settings['cleanup_interval_seconds'],),
                daemon=True
            )
            self._cleanup_thread.start()

        logger.info(f"VerificationSessionManager initialized: max_sessions={self.max_sessions}, "
                    f"timeout={self.session_timeout_minutes}min")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_session(self, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Create a new verification session and start its state machine

        Args:
            metadata: Optional session metadata (e.g. owner_id)

        Returns:
            Session ID

        Raises:
            SessionLimitError: If the maximum number of live sessions is reached
        """
        with self._lock:
            if self._count_active() >= self.max_sessions:
                self.cleanup_expired_sessions()

                if self._count_active() >= self.max_sessions:
                    raise SessionLimitError(self.max_sessions)

            session_id = self._generate_session_id()
            machine = VerificationStateMachine(
                config=self.config,
                scorer=self.scorer,
                liveness_evaluator=self.liveness_evaluator,
                session_id=session_id
            )
            machine.handle(SessionStarted())

            now = datetime.now()
            self._sessions[session_id] = VerificationSession(
                session_id=session_id,
                machine=machine,
                throttle=FrameThrottle(self.frame_interval_ms),
                created_at=now,
                expires_at=now + timedelta(minutes=self.session_timeout_minutes),
                last_activity=now,
                metadata=dict(metadata or {})
            )

        self._record_session('started')
        logger.info(f"Created verification session: {session_id}")
        return session_id

    def cancel_session(self, session_id: str, reason: str = 'User cancelled') -> bool:
        """
        Cancel a session

        Args:
            session_id: Session ID
            reason: Cancellation reason

        Returns:
            True if session was cancelled, False if unknown or already finished
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Cannot cancel session {session_id}: session not found")
            return False

        with session.lock:
            if session.status != 'active':
                logger.warning(f"Cannot cancel session {session_id}: session not active "
                               f"(status: {session.status})")
                return False

            decision = session.machine.handle(SessionCancelled(reason))
            session.throttle.reset()
            session.status = 'cancelled'
            session.metadata['cancellation_reason'] = reason
            session.last_activity = datetime.now()

        self._record_decision(decision)
        self._record_session('cancelled')
        logger.info(f"Cancelled session {session_id}: {reason}")
        return True

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def submit_frame(self, session_id: str, signals: FrameSignals) -> VerificationDecision:
        """
        Submit one analyzed frame

        Frames arriving faster than the analysis interval are dropped and the
        current decision is returned unchanged.
        """
        session = self._get_active_session(session_id)
        with session.lock:
            session.last_activity = datetime.now()
            if session.machine.state not in PRE_CAPTURE_STATES:
                return session.machine.decision

            analyzed = session.throttle.should_analyze(signals.timestamp)
            if self.metrics:
                self.metrics.record_frame(analyzed)
            if not analyzed:
                return session.machine.decision

            decision = session.machine.handle(FrameAnalyzed(signals))

        self._record_decision(decision)
        logger.debug(f"[{session_id}] Frame at {signals.timestamp:.3f}: {decision.status.value} "
                     f"({decision.guidance_message})")
        return decision

    def trigger_capture(self, session_id: str, photo_ref: str,
                        frame: Optional[FrameSignals] = None) -> VerificationDecision:
        return self._dispatch(session_id, CaptureTriggered(photo_ref, frame))

    def start_authentication(self, session_id: str) -> VerificationDecision:
        return self._dispatch(session_id, AuthenticationStarted())

    def submit_biometric_result(self, session_id: str, passed: bool,
                                detail: str = '') -> VerificationDecision:
        return self._dispatch(session_id, BiometricResult(passed, detail))

    def submit_selfie(self, session_id: str, frames: Sequence[FrameSignals]) -> VerificationDecision:
        return self._dispatch(session_id, SelfieCaptured(tuple(frames)))

    def cancel_selfie(self, session_id: str, detail: str = '') -> VerificationDecision:
        return self._dispatch(session_id, SelfieCancelled(detail))

    def _dispatch(self, session_id: str, event) -> VerificationDecision:
        """Run one event through the session's machine under the session lock"""
        session = self._get_active_session(session_id)
        with session.lock:
            session.last_activity = datetime.now()
            decision = session.machine.handle(event)
            if decision.is_final:
                session.status = 'accepted' if decision.is_accepted else 'rejected'

        self._record_decision(decision)
        if decision.is_final:
            self._record_session(session.status)
            if decision.is_accepted and decision.upload is not None:
                self._notify_accepted(session, decision.upload)
        return decision

    def _notify_accepted(self, session: VerificationSession, upload: UploadRequest) -> None:
        if self.on_accepted is None:
            return
        try:
            self.on_accepted(session.session_id, upload, dict(session.metadata))
        except Exception as e:
            # Decision is already final; the upload collaborator must retry on its side
            logger.error(f"Upload hand-off failed for session {session.session_id}: {e}")
            if self.metrics:
                self.metrics.update_error_metrics('UPLOAD_HANDOFF_FAILED', str(e))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_decision(self, session_id: str) -> VerificationDecision:
        return self._get_session(session_id).machine.decision

    def get_session_summary(self, session_id: str) -> Dict[str, Any]:
        """
        Get session summary for reporting

        Args:
            session_id: Session ID

        Returns:
            Session summary dictionary

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self._get_session(session_id)
        with session.lock:
            if session.status == 'active':
                duration = datetime.now() - session.created_at
            else:
                duration = session.last_activity - session.created_at

            return {
                'session_id': session_id,
                'status': session.status,
                'state': session.machine.state.value,
                'created_at': session.created_at.isoformat(),
                'expires_at': session.expires_at.isoformat(),
                'duration_seconds': duration.total_seconds(),
                'frames': {
                    'analyzed': session.throttle.accepted_count,
                    'dropped': session.throttle.dropped_count
                },
                'stabilizer': session.machine.stabilized_state.to_dict(),
                'decision': session.machine.decision.to_dict(),
                'metadata': dict(session.metadata)
            }

    def session_exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get_active_sessions(self) -> List[str]:
        """
        Get list of active session IDs

        Returns:
            List of active session IDs
        """
        with self._lock:
            return [session_id for session_id, session in self._sessions.items()
                    if session.status == 'active' and not self._is_session_expired(session)]

    def get_session_metrics(self) -> Dict[str, Any]:
        with self._lock:
            statuses = [session.status for session in self._sessions.values()]
        return {
            'total_sessions': len(statuses),
            'active_sessions': statuses.count('active'),
            'accepted_sessions': statuses.count('accepted'),
            'rejected_sessions': statuses.count('rejected'),
            'cancelled_sessions': statuses.count('cancelled'),
            'expired_sessions': statuses.count('expired'),
            'max_sessions': self.max_sessions
        }

    # -------------------------------------------------------------------------
    # Expiry and cleanup
    # -------------------------------------------------------------------------

    def cleanup_expired_sessions(self) -> int:
        """
        Expire timed-out sessions and drop finished ones past retention

        Returns:
            Number of sessions expired by this sweep
        """
        with self._lock:
            sessions = list(self._sessions.values())

        expired = 0
        for session in sessions:
            if session.status == 'active' and self._is_session_expired(session):
                if self._expire_session(session):
                    expired += 1

        cutoff = datetime.now() - FINISHED_SESSION_RETENTION
        with self._lock:
            stale = [session_id for session_id, session in self._sessions.items()
                     if session.status != 'active' and session.last_activity < cutoff]
            for session_id in stale:
                del self._sessions[session_id]

        if expired or stale:
            logger.debug(f"Session sweep: {expired} expired, {len(stale)} removed")
        return expired

    def shutdown(self) -> None:
        """Stop the background cleanup worker"""
        self._stop_event.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=5)

    def _expire_session(self, session: VerificationSession) -> bool:
        with session.lock:
            if session.status != 'active':
                return False
            decision = session.machine.handle(SessionCancelled('session expired'))
            session.status = 'expired'
            session.last_activity = datetime.now()

        self._record_decision(decision)
        self._record_session('expired')
        logger.info(f"Session {session.session_id} expired")
        return True

    def _cleanup_worker(self, interval_seconds: int) -> None:
        """Background worker for session cleanup"""
        while not self._stop_event.wait(interval_seconds):
            try:
                self.cleanup_expired_sessions()
            except Exception as e:
                logger.error(f"Session cleanup worker error: {e}")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _get_session(self, session_id: str) -> VerificationSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _get_active_session(self, session_id: str) -> VerificationSession:
        """Look up a session, expiring it first when it timed out"""
        session = self._get_session(session_id)
        if session.status == 'active' and self._is_session_expired(session):
            self._expire_session(session)
        if session.status == 'expired':
            raise SessionNotFoundError(session_id, {'reason': 'session expired'})
        return session

    def _count_active(self) -> int:
        return sum(1 for session in self._sessions.values() if session.status == 'active')

    def _generate_session_id(self) -> str:
        """Generate unique session ID"""
        timestamp = int(time.time() * 1000)
        random_part = str(uuid.uuid4()).replace('-', '')[:8]
        return f"session_{timestamp}_{random_part}"

    def _is_session_expired(self, session: VerificationSession) -> bool:
        return datetime.now() > session.expires_at

    def _record_decision(self, decision: VerificationDecision) -> None:
        if self.metrics:
            confidence = decision.liveness.confidence if decision.liveness else None
            self.metrics.record_decision(decision.status.value, confidence)

    def _record_session(self, event: str) -> None:
        if self.metrics:
            self.metrics.record_session(event)

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.shutdown()
