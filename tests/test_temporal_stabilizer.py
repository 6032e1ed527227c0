"""Tests for the temporal stabilizer."""

import pytest

from photo_arena_service.core.constants import FailureReason
from photo_arena_service.core.data_classes import QualityVector, QualityCriteria
from photo_arena_service.processors.temporal_stabilizer import TemporalStabilizer


def vector(**overrides):
    values = dict(face_area_fraction=0.3, sharpness=0.9, brightness=0.5,
                  contrast=0.8, pose_deviation=0.0, eye_openness=0.95)
    values.update(overrides)
    return QualityVector(**values)


@pytest.fixture
def stabilizer():
    return TemporalStabilizer(QualityCriteria(), decay=0.3)


class TestMovingAverage:

    def test_first_sample_initializes_average(self, stabilizer):
        state = stabilizer.update(vector(face_area_fraction=0.4))
        assert state.averaged.face_area_fraction == pytest.approx(0.4)
        assert state.sample_count == 1

    def test_exponential_moving_average(self, stabilizer):
        stabilizer.update(vector(sharpness=1.0))
        state = stabilizer.update(vector(sharpness=0.0))
        assert state.averaged.sharpness == pytest.approx(0.7)

        state = stabilizer.update(vector(sharpness=0.0))
        assert state.averaged.sharpness == pytest.approx(0.49)

    def test_single_bad_frame_does_not_flicker(self, stabilizer):
        for _ in range(3):
            stabilizer.update(vector())
        state = stabilizer.update(vector(sharpness=0.5))
        # 0.3 * 0.5 + 0.7 * 0.9 = 0.78 still passes
        assert state.passes
        assert state.consecutive_pass_count == 4

    def test_invalid_decay(self):
        with pytest.raises(ValueError):
            TemporalStabilizer(QualityCriteria(), decay=0.0)
        with pytest.raises(ValueError):
            TemporalStabilizer(QualityCriteria(), decay=1.5)


class TestConsecutivePasses:

    def test_streak_counts_passing_averages(self, stabilizer):
        counts = [stabilizer.update(vector()).consecutive_pass_count for _ in range(3)]
        assert counts == [1, 2, 3]

    def test_failing_average_resets_streak(self, stabilizer):
        for _ in range(3):
            stabilizer.update(vector())
        state = stabilizer.update(vector(eye_openness=0.0))

        # 0.7 * 0.95 = 0.665 is below the eye openness threshold
        assert state.consecutive_pass_count == 0
        assert state.failure_reasons == (FailureReason.EYES_CLOSED,)

    def test_small_face_keeps_failing(self, stabilizer):
        for _ in range(5):
            state = stabilizer.update(vector(face_area_fraction=0.10))
        assert state.consecutive_pass_count == 0
        assert state.failure_reasons == (FailureReason.TOO_FAR_AWAY,)

    def test_unusable_frame_resets_streak_but_keeps_average(self, stabilizer):
        stabilizer.update(vector())
        stabilizer.update(vector())
        before = stabilizer.averaged

        state = stabilizer.register_unusable_frame(FailureReason.NO_FACE_DETECTED)
        assert state.consecutive_pass_count == 0
        assert state.averaged == before

    def test_reset_discards_state(self, stabilizer):
        stabilizer.update(vector())
        stabilizer.reset()

        snapshot = stabilizer.snapshot()
        assert snapshot.averaged is None
        assert snapshot.sample_count == 0
        assert snapshot.consecutive_pass_count == 0
        assert not snapshot.passes
