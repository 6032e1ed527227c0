#!/usr/bin/env python3
"""
Liveness Evaluator Processor
============================

Anti-spoofing over an ordered sequence of analyzed frames (the captured
photo followed by the selfie frames). Three independent detectors each return
a score in [0, 1]:

1. motion plausibility - the face moves a little between frames, like a live
   head, instead of standing still (printed photo) or teleporting (video cut)
2. depth/texture consistency - enough fine texture and no screen glare, with
   stable contrast across frames
3. landmark continuity - facial landmarks never jump implausibly far between
   consecutive frames

The scores are averaged with equal weight. The evaluator fails closed: bad
input yields confidence 0, never an exception.
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.constants import LIVENESS_MOTION, LIVENESS_TEXTURE, LIVENESS_LANDMARKS
from ..core.data_classes import FrameSignals, LivenessResult
from ..core.exceptions import InvalidFrameError
from ..config import Config

logger = logging.getLogger(__name__)

LivenessDetector = Callable[[Sequence[FrameSignals], Dict[str, float]], float]


def _consecutive_pairs(frames: Sequence[FrameSignals]):
    return zip(frames[:-1], frames[1:])


# =============================================================================
# Detectors
# =============================================================================

def motion_plausibility(frames: Sequence[FrameSignals], thresholds: Dict[str, float]) -> float:
    """Share of frame-to-frame steps whose head motion looks like a live person"""
    steps = []
    for previous, current in _consecutive_pairs(frames):
        prev_center = np.asarray(previous.faces[0].bounding_box.center)
        curr_center = np.asarray(current.faces[0].bounding_box.center)
        displacement = float(np.linalg.norm(curr_center - prev_center))

        pose_change = 0.0
        if previous.pose is not None and current.pose is not None:
            pose_change = max(
                abs(current.pose.yaw - previous.pose.yaw),
                abs(current.pose.pitch - previous.pose.pitch),
                abs(current.pose.roll - previous.pose.roll)
            )
        steps.append(displacement + pose_change * thresholds['pose_motion_scale'])

    if not steps or max(steps) == 0.0:
        # Identical frames: replayed still image
        return 0.0

    plausible = [
        thresholds['min_plausible_motion'] <= step <= thresholds['max_plausible_motion']
        for step in steps
    ]
    return float(np.mean(plausible))


def depth_texture_consistency(frames: Sequence[FrameSignals], thresholds: Dict[str, float]) -> float:
    """Fine texture without screen glare, with contrast stable across frames"""
    textures = []
    contrasts = []
    for frame in frames:
        stats = frame.pixel_statistics
        texture = min(stats.laplacian_variance / thresholds['texture_reference_variance'], 1.0)
        glare = min(thresholds['glare_penalty'] * stats.bright_fraction, 1.0)
        textures.append(texture * (1.0 - glare))
        contrasts.append(stats.luminance_std)

    mean_contrast = float(np.mean(contrasts))
    if mean_contrast <= 0.0:
        return 0.0
    spread = min(float(np.std(contrasts)) / mean_contrast, 1.0)

    return float(np.mean(textures)) * (1.0 - spread)


def landmark_continuity(frames: Sequence[FrameSignals], thresholds: Dict[str, float]) -> float:
    """Share of frame-to-frame steps without landmark jumps"""
    continuous = []
    for previous, current in _consecutive_pairs(frames):
        prev_points = np.asarray(previous.faces[0].landmarks, dtype=np.float64)
        curr_points = np.asarray(current.faces[0].landmarks, dtype=np.float64)
        mean_jump = float(np.mean(np.linalg.norm(curr_points - prev_points, axis=1)))
        continuous.append(mean_jump <= thresholds['max_landmark_jump'])

    return float(np.mean(continuous)) if continuous else 0.0


LIVENESS_DETECTORS: Tuple[Tuple[str, LivenessDetector], ...] = (
    (LIVENESS_MOTION, motion_plausibility),
    (LIVENESS_TEXTURE, depth_texture_consistency),
    (LIVENESS_LANDMARKS, landmark_continuity),
)


class LivenessEvaluator:
    """Combines the liveness detectors into one fail-closed result"""

    def __init__(self, config: Optional[Config] = None,
                 detectors: Sequence[Tuple[str, LivenessDetector]] = LIVENESS_DETECTORS):
        """
        Initialize liveness evaluator

        Args:
            config: Configuration object. If None, uses default Config()
            detectors: (name, detector) pairs, weighted equally
        """
        self.config = config or Config()
        self.thresholds = self.config.get_liveness_thresholds()
        self.detectors = tuple(detectors)
        self.analysis_count = 0

    def evaluate(self, frames: Sequence[FrameSignals]) -> LivenessResult:
        """
        Evaluate liveness over an ordered frame sequence

        Args:
            frames: Captured frame followed by selfie frames, in capture order

        Returns:
            LivenessResult; confidence 0 for missing or malformed input
        """
        try:
            frames = list(frames) if frames is not None else []
            self._validate_frames(frames)

            scores = {}
            for name, detector in self.detectors:
                score = float(detector(frames, self.thresholds))
                if not math.isfinite(score):
                    raise InvalidFrameError(f"detector '{name}' produced a non-finite score")
                scores[name] = min(max(score, 0.0), 1.0)

            confidence = float(np.mean(list(scores.values())))
            is_live = confidence > self.thresholds['is_live']
            self.analysis_count += 1

            logger.debug(f"Liveness evaluated over {len(frames)} frames: "
                         f"{'LIVE' if is_live else 'SPOOF'} (confidence: {confidence:.3f})")

            return LivenessResult(
                is_live=is_live,
                confidence=confidence,
                evidence_summary={
                    'frames_analyzed': len(frames),
                    'sub_scores': scores
                }
            )

        except InvalidFrameError as e:
            logger.warning(f"Liveness input rejected: {e.reason}")
            return self._failed_result(e.reason)

        except Exception as e:
            logger.error(f"Liveness evaluation error: {e}")
            return self._failed_result(f"evaluation error: {e}")

    def _validate_frames(self, frames: List[FrameSignals]) -> None:
        """
        Validate the frame sequence

        Raises:
            InvalidFrameError: If any frame is missing or malformed
        """
        min_frames = int(self.thresholds['min_frames'])
        if len(frames) < min_frames:
            raise InvalidFrameError(f"need at least {min_frames} frames, got {len(frames)}")

        landmark_count = None
        previous_timestamp = None
        for index, frame in enumerate(frames):
            if frame is None:
                raise InvalidFrameError(f"frame {index} is missing")
            if frame.face_count != 1 or len(frame.faces) != 1:
                raise InvalidFrameError(f"frame {index} must contain exactly one face")
            if frame.pixel_statistics is None:
                raise InvalidFrameError(f"frame {index} has no pixel statistics")

            face = frame.faces[0]
            if not face.landmarks:
                raise InvalidFrameError(f"frame {index} has no landmarks")
            if landmark_count is None:
                landmark_count = len(face.landmarks)
            elif len(face.landmarks) != landmark_count:
                raise InvalidFrameError(f"frame {index} has {len(face.landmarks)} landmarks, "
                                        f"expected {landmark_count}")

            values = [frame.timestamp, *_numeric_fields(frame)]
            if not all(math.isfinite(value) for value in values):
                raise InvalidFrameError(f"frame {index} contains non-finite values")
            if previous_timestamp is not None and frame.timestamp < previous_timestamp:
                raise InvalidFrameError(f"frame {index} is out of order")
            previous_timestamp = frame.timestamp

    def _failed_result(self, reason: str) -> LivenessResult:
        return LivenessResult(
            is_live=False,
            confidence=0.0,
            evidence_summary={'error': reason}
        )


def _numeric_fields(frame: FrameSignals) -> List[Any]:
    face = frame.faces[0]
    box = face.bounding_box
    stats = frame.pixel_statistics
    values = [box.x, box.y, box.width, box.height,
              stats.mean_luminance, stats.luminance_std, stats.laplacian_variance,
              stats.dark_fraction, stats.bright_fraction]
    if frame.pose is not None:
        values.extend([frame.pose.yaw, frame.pose.pitch, frame.pose.roll])
    for x, y in face.landmarks:
        values.extend([x, y])
    return [float(value) for value in values]
