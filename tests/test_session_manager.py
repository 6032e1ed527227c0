"""Tests for the verification session manager."""

from datetime import datetime, timedelta

import pytest

from photo_arena_service.config import TestingConfig
from photo_arena_service.core.constants import DecisionStatus, VerificationState, FailureReason
from photo_arena_service.core.exceptions import (
    SessionNotFoundError, SessionLimitError, SessionClosedError
)
from photo_arena_service.utils.metrics import MetricsManager
from photo_arena_service.utils.session_manager import VerificationSessionManager

from conftest import make_frame, make_live_sequence, make_still_sequence


class SmallConfig(TestingConfig):
    MAX_SESSIONS = 2


@pytest.fixture
def metrics():
    return MetricsManager()


@pytest.fixture
def accepted():
    return []


@pytest.fixture
def manager(config, scorer, liveness_evaluator, metrics, accepted):
    def on_accepted(session_id, upload, metadata):
        accepted.append((session_id, upload, metadata))

    with VerificationSessionManager(config, scorer, liveness_evaluator, metrics, on_accepted) as manager:
        yield manager


def reach_selfie(manager, session_id):
    for i in range(3):
        manager.submit_frame(session_id, make_frame(timestamp=i * 0.1))
    manager.trigger_capture(session_id, 'photo-ref')
    manager.start_authentication(session_id)
    return manager.submit_biometric_result(session_id, True)


class TestLifecycle:

    def test_create_session(self, manager, metrics):
        session_id = manager.create_session({'owner_id': 'alice'})

        assert manager.session_exists(session_id)
        assert session_id in manager.get_active_sessions()
        assert manager.get_decision(session_id).state == VerificationState.ANALYZING
        assert metrics.get_session_count('started') == 1

    def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            manager.submit_frame('missing', make_frame())
        with pytest.raises(SessionNotFoundError):
            manager.get_session_summary('missing')

    def test_session_limit(self, scorer, liveness_evaluator):
        manager = VerificationSessionManager(SmallConfig(), scorer, liveness_evaluator)
        manager.create_session()
        manager.create_session()

        with pytest.raises(SessionLimitError):
            manager.create_session()

    def test_finished_sessions_free_slots(self, scorer, liveness_evaluator):
        manager = VerificationSessionManager(SmallConfig(), scorer, liveness_evaluator)
        first = manager.create_session()
        manager.create_session()
        manager.cancel_session(first)

        assert manager.create_session()

    def test_cancel_session(self, manager, metrics):
        session_id = manager.create_session()

        assert manager.cancel_session(session_id, 'changed my mind')
        decision = manager.get_decision(session_id)
        assert decision.failure_reasons == [FailureReason.SESSION_CANCELLED]
        assert manager.get_session_summary(session_id)['status'] == 'cancelled'
        assert metrics.get_session_count('cancelled') == 1

    def test_cancel_twice(self, manager):
        session_id = manager.create_session()
        assert manager.cancel_session(session_id)
        assert not manager.cancel_session(session_id)
        assert not manager.cancel_session('missing')


class TestFrames:

    def test_reaches_ready(self, manager, metrics):
        session_id = manager.create_session()
        decisions = [manager.submit_frame(session_id, make_frame(timestamp=i * 0.1)) for i in range(3)]

        assert decisions[-1].status == DecisionStatus.READY_TO_CAPTURE
        assert metrics.get_metric('frames_analyzed') == 3

    def test_fast_frames_are_dropped(self, manager, metrics):
        session_id = manager.create_session()
        manager.submit_frame(session_id, make_frame(timestamp=0.0))
        decision = manager.submit_frame(session_id, make_frame(timestamp=0.05, face_count=0))

        # Dropped frame leaves the previous decision in place
        assert decision.failure_reasons == []
        summary = manager.get_session_summary(session_id)
        assert summary['frames'] == {'analyzed': 1, 'dropped': 1}
        assert metrics.get_metric('frames_dropped') == 1

    def test_frames_after_capture_not_counted(self, manager):
        session_id = manager.create_session()
        for i in range(3):
            manager.submit_frame(session_id, make_frame(timestamp=i * 0.1))
        manager.trigger_capture(session_id, 'photo-ref')

        decision = manager.submit_frame(session_id, make_frame(timestamp=1.0))
        assert decision.state == VerificationState.CAPTURED
        assert manager.get_session_summary(session_id)['frames']['analyzed'] == 3


class TestOutcome:

    def test_accepted_session_notifies_upload(self, manager, accepted, metrics):
        session_id = manager.create_session({'owner_id': 'alice'})
        reach_selfie(manager, session_id)

        decision = manager.submit_selfie(session_id, make_live_sequence(start=0.3)[1:])

        assert decision.status == DecisionStatus.ACCEPTED
        assert len(accepted) == 1
        notified_id, upload, metadata = accepted[0]
        assert notified_id == session_id
        assert upload.photo_ref == 'photo-ref'
        assert metadata == {'owner_id': 'alice'}
        assert manager.get_session_summary(session_id)['status'] == 'accepted'
        assert metrics.get_session_count('accepted') == 1
        assert metrics.get_decision_count('ACCEPTED') == 1
        assert metrics.get_decision_count('REJECTED') == 0
        assert session_id not in manager.get_active_sessions()

    def test_rejected_session_does_not_notify(self, manager, accepted, metrics):
        session_id = manager.create_session()
        reach_selfie(manager, session_id)

        decision = manager.submit_selfie(session_id, make_still_sequence(start=0.3))
        assert decision.status == DecisionStatus.REJECTED
        assert accepted == []
        assert manager.get_session_summary(session_id)['status'] == 'rejected'
        assert metrics.get_decision_count('REJECTED') == 1

    def test_cancel_during_authentication_does_not_notify(self, manager, accepted):
        session_id = manager.create_session()
        reach_selfie(manager, session_id)

        assert manager.cancel_session(session_id)
        assert accepted == []

    def test_biometric_failure(self, manager):
        session_id = manager.create_session()
        for i in range(3):
            manager.submit_frame(session_id, make_frame(timestamp=i * 0.1))
        manager.trigger_capture(session_id, 'photo-ref')
        manager.start_authentication(session_id)

        decision = manager.submit_biometric_result(session_id, False, 'mismatch')
        assert decision.failure_reasons == [FailureReason.BIOMETRIC_FAILED]

    def test_selfie_cancelled(self, manager):
        session_id = manager.create_session()
        reach_selfie(manager, session_id)

        decision = manager.cancel_selfie(session_id, 'closed camera')
        assert decision.failure_reasons == [FailureReason.SELFIE_FAILED]

    def test_events_after_final_decision(self, manager):
        session_id = manager.create_session()
        manager.cancel_session(session_id)

        with pytest.raises(SessionClosedError):
            manager.start_authentication(session_id)

    def test_failing_upload_callback_is_contained(self, config, scorer, liveness_evaluator, metrics):
        def on_accepted(session_id, upload, metadata):
            raise RuntimeError("storage offline")

        manager = VerificationSessionManager(config, scorer, liveness_evaluator, metrics, on_accepted)
        session_id = manager.create_session()
        reach_selfie(manager, session_id)

        decision = manager.submit_selfie(session_id, make_live_sequence(start=0.3)[1:])
        assert decision.is_accepted
        assert metrics.get_all_metrics()['errors']['error_types'] == {'UPLOAD_HANDOFF_FAILED': 1}


class TestExpiry:

    def test_expired_session_is_rejected(self, manager, metrics):
        session_id = manager.create_session()
        manager._sessions[session_id].expires_at = datetime.now() - timedelta(seconds=1)

        with pytest.raises(SessionNotFoundError):
            manager.submit_frame(session_id, make_frame())

        summary = manager.get_session_summary(session_id)
        assert summary['status'] == 'expired'
        assert summary['decision']['failure_reasons'] == ['SESSION_CANCELLED']
        assert metrics.get_session_count('expired') == 1

    def test_cleanup_sweep(self, manager):
        expired_id = manager.create_session()
        live_id = manager.create_session()
        manager._sessions[expired_id].expires_at = datetime.now() - timedelta(seconds=1)

        assert manager.cleanup_expired_sessions() == 1
        assert manager.get_active_sessions() == [live_id]

    def test_old_finished_sessions_removed(self, manager):
        session_id = manager.create_session()
        manager.cancel_session(session_id)
        manager._sessions[session_id].last_activity = datetime.now() - timedelta(hours=2)

        manager.cleanup_expired_sessions()
        assert not manager.session_exists(session_id)

    def test_session_metrics(self, manager):
        first = manager.create_session()
        manager.create_session()
        manager.cancel_session(first)

        metrics = manager.get_session_metrics()
        assert metrics['total_sessions'] == 2
        assert metrics['active_sessions'] == 1
        assert metrics['cancelled_sessions'] == 1
