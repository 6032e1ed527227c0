"""Shared test fixtures and synthetic signal factories."""

import random

import numpy as np
import pytest

from photo_arena_service.config import TestingConfig
from photo_arena_service.core.data_classes import (
    BoundingBox, HeadPose, FaceSignal, PixelStatistics, FrameSignals, PhotoRecord
)
from photo_arena_service.processors.quality_scorer import QualityScorer
from photo_arena_service.processors.liveness_evaluator import LivenessEvaluator
from photo_arena_service.processors.verification_machine import (
    VerificationStateMachine, SessionStarted, FrameAnalyzed
)
from photo_arena_service.services.rating_store import InMemoryRatingStore
from photo_arena_service.services.rating_engine import RatingEngine

BASE_LANDMARKS = ((0.40, 0.40), (0.60, 0.40), (0.50, 0.50), (0.42, 0.60), (0.58, 0.60))


def make_stats(mean=128.0, std=50.0, laplacian_variance=450.0, dark=0.0, bright=0.0):
    return PixelStatistics(
        mean_luminance=mean,
        luminance_std=std,
        laplacian_variance=laplacian_variance,
        dark_fraction=dark,
        bright_fraction=bright
    )


def make_face(width=0.4, height=0.5, eye_openness=0.95, offset=0.0, landmarks=BASE_LANDMARKS):
    """Face centred near the middle of the frame, shifted right by `offset`."""
    return FaceSignal(
        bounding_box=BoundingBox(0.3 + offset, 0.25, width, height),
        landmark_confidence=0.9,
        eye_openness=eye_openness,
        landmarks=tuple((x + offset, y) for x, y in landmarks)
    )


def make_frame(timestamp=0.0, face_count=1, face=None, faces=None,
               pose=HeadPose(0.0, 0.0, 0.0), stats=None, **face_kwargs):
    """Nominal single-face frame; every field can be overridden."""
    if faces is None:
        faces = () if face_count == 0 else (face or make_face(**face_kwargs),)
    return FrameSignals(
        face_count=face_count,
        faces=tuple(faces),
        pose=pose,
        pixel_statistics=stats if stats is not None else make_stats(),
        timestamp=timestamp
    )


def make_live_sequence(count=4, start=1.0, step=0.01, laplacian_variance=450.0):
    """Frames of a head drifting slowly to the right."""
    return [
        make_frame(timestamp=start + i * 0.1, offset=i * step,
                   stats=make_stats(laplacian_variance=laplacian_variance))
        for i in range(count)
    ]


def make_still_sequence(count=4, start=1.0, laplacian_variance=60.0):
    """Identical frames, as produced by a photo held in front of the camera."""
    return [
        make_frame(timestamp=start + i * 0.1, stats=make_stats(laplacian_variance=laplacian_variance))
        for i in range(count)
    ]


def frame_to_payload(frame: FrameSignals) -> dict:
    return frame.to_dict()


def drive_to_ready(machine, passes=3, start=0.0):
    """Feed nominal frames until the machine is ready to capture."""
    decision = None
    for i in range(passes):
        decision = machine.handle(FrameAnalyzed(make_frame(timestamp=start + i * 0.1)))
    return decision


@pytest.fixture
def config():
    return TestingConfig()


@pytest.fixture
def scorer(config):
    return QualityScorer(config)


@pytest.fixture
def liveness_evaluator(config):
    return LivenessEvaluator(config)


@pytest.fixture
def machine(config, scorer, liveness_evaluator):
    machine = VerificationStateMachine(config, scorer, liveness_evaluator, session_id='test')
    machine.handle(SessionStarted())
    return machine


@pytest.fixture
def rating_store():
    store = InMemoryRatingStore()
    store.add_photo(PhotoRecord(id='p1', owner_id='alice'))
    store.add_photo(PhotoRecord(id='p2', owner_id='bob'))
    store.add_photo(PhotoRecord(id='p3', owner_id='carol'))
    store.add_photo(PhotoRecord(id='p4', owner_id='carol'))
    return store


@pytest.fixture
def rating_engine(rating_store, config):
    return RatingEngine(rating_store, config, rng=random.Random(7))


@pytest.fixture
def bgr_image():
    """Mid-grey image with a sharp checkerboard patch."""
    image = np.full((120, 160, 3), 128, dtype=np.uint8)
    tile = np.indices((40, 40)).sum(axis=0) % 2
    image[40:80, 60:100] = (tile * 255)[..., None].astype(np.uint8)
    return image
