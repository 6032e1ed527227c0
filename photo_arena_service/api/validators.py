#!/usr/bin/env python3
"""
Request Validation for Photo Arena API
======================================

Input validation for all API endpoints. `validate_*` functions return a
{'valid', 'errors'} dictionary; `parse_*` functions turn validated JSON into
the service's data classes.
"""

import math
from typing import Dict, List, Any, Optional
from flask import Request
import logging

from ..core.data_classes import (
    BoundingBox, HeadPose, FaceSignal, PixelStatistics, FrameSignals, RatingEvent
)
from ..core.exceptions import ValidationError
from ..extractors.pixel_statistics import compute_pixel_statistics, decode_base64_image

logger = logging.getLogger(__name__)

MAX_FACES_PER_FRAME = 10
MAX_LANDMARKS = 500
MAX_SELFIE_FRAMES = 30
MAX_ID_LENGTH = 200


def _error(field: str, code: str, message: str) -> Dict[str, str]:
    return {'field': field, 'error': code, 'message': message}


def _result(errors: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        'valid': len(errors) == 0,
        'errors': errors
    }


def _is_number(value: Any) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def _check_number(data: Dict[str, Any], field: str, errors: List[Dict[str, str]], prefix: str,
                  minimum: Optional[float] = None, maximum: Optional[float] = None,
                  required: bool = True) -> None:
    name = f"{prefix}{field}"
    if field not in data or data[field] is None:
        if required:
            errors.append(_error(name, 'MISSING_REQUIRED_FIELD', f'Field {name} is required'))
        return

    value = data[field]
    if not _is_number(value):
        errors.append(_error(name, 'INVALID_NUMBER', f'{name} must be a finite number'))
        return
    if minimum is not None and value < minimum:
        errors.append(_error(name, 'OUT_OF_RANGE', f'{name} must be >= {minimum}'))
    if maximum is not None and value > maximum:
        errors.append(_error(name, 'OUT_OF_RANGE', f'{name} must be <= {maximum}'))


def _check_string(data: Dict[str, Any], field: str, errors: List[Dict[str, str]]) -> None:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        errors.append(_error(field, 'MISSING_REQUIRED_FIELD', f'Field {field} must be a non-empty string'))
    elif len(value) > MAX_ID_LENGTH:
        errors.append(_error(field, 'VALUE_TOO_LONG', f'{field} must be at most {MAX_ID_LENGTH} characters'))


# =============================================================================
# Request-level validation
# =============================================================================

def validate_json_content_type(request: Request) -> Dict[str, Any]:
    """
    Validate that request has JSON content type

    Args:
        request: Flask request object

    Returns:
        Dictionary with validation result
    """
    errors = []

    if not request.is_json:
        errors.append(_error('content_type', 'INVALID_CONTENT_TYPE',
                             'Content-Type must be application/json'))

    return _result(errors)


def get_json_body(request: Request, required: bool = True) -> Dict[str, Any]:
    """
    Read the JSON object of a request

    Raises:
        ValidationError: If the body is missing or not a JSON object
    """
    data = request.get_json(silent=True)
    if data is None and not required and not request.data:
        return {}

    if not isinstance(data, dict):
        raise ValidationError('body', None, 'request body must be a JSON object')
    return data


# =============================================================================
# Frame signals
# =============================================================================

def validate_frame_signals(data: Dict[str, Any], prefix: str = '') -> Dict[str, Any]:
    """
    Validate one FrameSignals payload

    Args:
        data: Frame signals dictionary
        prefix: Field name prefix used in error messages

    Returns:
        Dictionary with validation result
    """
    errors = []

    if not isinstance(data, dict):
        return _result([_error(prefix.rstrip('.') or 'frame', 'INVALID_FRAME', 'Frame must be an object')])

    face_count = data.get('face_count')
    if not isinstance(face_count, int) or isinstance(face_count, bool) or face_count < 0:
        errors.append(_error(f'{prefix}face_count', 'INVALID_FACE_COUNT',
                             'face_count must be a non-negative integer'))

    _check_number(data, 'timestamp', errors, prefix, minimum=0.0)

    faces = data.get('faces', [])
    if not isinstance(faces, list) or len(faces) > MAX_FACES_PER_FRAME:
        errors.append(_error(f'{prefix}faces', 'INVALID_FACES',
                             f'faces must be a list of at most {MAX_FACES_PER_FRAME} items'))
        faces = []

    for index, face in enumerate(faces):
        face_prefix = f'{prefix}faces[{index}].'
        if not isinstance(face, dict):
            errors.append(_error(face_prefix.rstrip('.'), 'INVALID_FACE', 'Face must be an object'))
            continue

        box = face.get('bounding_box')
        if not isinstance(box, dict):
            errors.append(_error(f'{face_prefix}bounding_box', 'MISSING_REQUIRED_FIELD',
                                 'bounding_box is required'))
        else:
            for key in ('x', 'y'):
                _check_number(box, key, errors, f'{face_prefix}bounding_box.')
            for key in ('width', 'height'):
                _check_number(box, key, errors, f'{face_prefix}bounding_box.', minimum=0.0)

        _check_number(face, 'landmark_confidence', errors, face_prefix, 0.0, 1.0, required=False)
        _check_number(face, 'eye_openness', errors, face_prefix, 0.0, 1.0)

        landmarks = face.get('landmarks', [])
        if (not isinstance(landmarks, list) or len(landmarks) > MAX_LANDMARKS or
                not all(isinstance(point, (list, tuple)) and len(point) == 2 and
                        all(_is_number(v) for v in point) for point in landmarks)):
            errors.append(_error(f'{face_prefix}landmarks', 'INVALID_LANDMARKS',
                                 'landmarks must be a list of [x, y] number pairs'))

    pose = data.get('pose')
    if pose is not None:
        if not isinstance(pose, dict):
            errors.append(_error(f'{prefix}pose', 'INVALID_POSE', 'pose must be an object'))
        else:
            for key in ('yaw', 'pitch', 'roll'):
                _check_number(pose, key, errors, f'{prefix}pose.', -180.0, 180.0)

    stats = data.get('pixel_statistics')
    if stats is not None:
        if not isinstance(stats, dict):
            errors.append(_error(f'{prefix}pixel_statistics', 'INVALID_PIXEL_STATISTICS',
                                 'pixel_statistics must be an object'))
        else:
            stats_prefix = f'{prefix}pixel_statistics.'
            _check_number(stats, 'mean_luminance', errors, stats_prefix, 0.0, 255.0)
            _check_number(stats, 'luminance_std', errors, stats_prefix, 0.0, 255.0)
            _check_number(stats, 'laplacian_variance', errors, stats_prefix, minimum=0.0)
            _check_number(stats, 'dark_fraction', errors, stats_prefix, 0.0, 1.0, required=False)
            _check_number(stats, 'bright_fraction', errors, stats_prefix, 0.0, 1.0, required=False)

    image = data.get('image_base64')
    if image is not None and (not isinstance(image, str) or not image):
        errors.append(_error(f'{prefix}image_base64', 'INVALID_IMAGE',
                             'image_base64 must be a non-empty string'))

    return _result(errors)


def parse_frame_signals(data: Dict[str, Any]) -> FrameSignals:
    """
    Build FrameSignals from a validated payload

    When `image_base64` is present the pixel statistics are computed from the
    decoded image and override any supplied values.

    Raises:
        InvalidFrameError: If the embedded image cannot be decoded
    """
    faces = []
    for face in data.get('faces', []):
        box = face['bounding_box']
        faces.append(FaceSignal(
            bounding_box=BoundingBox(float(box['x']), float(box['y']),
                                     float(box['width']), float(box['height'])),
            landmark_confidence=float(face.get('landmark_confidence', 1.0)),
            eye_openness=float(face['eye_openness']),
            landmarks=tuple((float(x), float(y)) for x, y in face.get('landmarks', []))
        ))

    pose = data.get('pose')
    head_pose = None
    if pose is not None:
        head_pose = HeadPose(float(pose['yaw']), float(pose['pitch']), float(pose['roll']))

    pixel_statistics = None
    if data.get('image_base64'):
        pixel_statistics = compute_pixel_statistics(decode_base64_image(data['image_base64']))
    elif data.get('pixel_statistics') is not None:
        stats = data['pixel_statistics']
        pixel_statistics = PixelStatistics(
            mean_luminance=float(stats['mean_luminance']),
            luminance_std=float(stats['luminance_std']),
            laplacian_variance=float(stats['laplacian_variance']),
            dark_fraction=float(stats.get('dark_fraction', 0.0)),
            bright_fraction=float(stats.get('bright_fraction', 0.0))
        )

    return FrameSignals(
        face_count=int(data['face_count']),
        faces=tuple(faces),
        pose=head_pose,
        pixel_statistics=pixel_statistics,
        timestamp=float(data['timestamp'])
    )


def validate_selfie_request(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate selfie submission: either {'cancelled': true} or a list of frames

    Args:
        data: Request data dictionary

    Returns:
        Dictionary with validation result
    """
    errors = []

    cancelled = data.get('cancelled', False)
    if not isinstance(cancelled, bool):
        errors.append(_error('cancelled', 'INVALID_BOOLEAN', 'cancelled must be true or false'))
        return _result(errors)
    if cancelled:
        return _result(errors)

    frames = data.get('frames')
    if not isinstance(frames, list) or not frames or len(frames) > MAX_SELFIE_FRAMES:
        errors.append(_error('frames', 'INVALID_FRAMES',
                             f'frames must be a list of 1 to {MAX_SELFIE_FRAMES} frame objects'))
        return _result(errors)

    for index, frame in enumerate(frames):
        errors.extend(validate_frame_signals(frame, f'frames[{index}].')['errors'])

    return _result(errors)


# =============================================================================
# Verification session events
# =============================================================================

def validate_session_request(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate verification session creation request

    Args:
        data: Request data dictionary

    Returns:
        Dictionary with validation result
    """
    errors = []

    owner_id = data.get('owner_id')
    if owner_id is not None:
        _check_string(data, 'owner_id', errors)

    metadata = data.get('metadata')
    if metadata is not None and not isinstance(metadata, dict):
        errors.append(_error('metadata', 'INVALID_METADATA', 'metadata must be an object'))

    add_to_pool = data.get('add_to_pool')
    if add_to_pool is not None and not isinstance(add_to_pool, bool):
        errors.append(_error('add_to_pool', 'INVALID_BOOLEAN', 'add_to_pool must be true or false'))

    return _result(errors)


def validate_capture_request(data: Dict[str, Any]) -> Dict[str, Any]:
    errors = []
    _check_string(data, 'photo_ref', errors)
    if data.get('frame') is not None:
        errors.extend(validate_frame_signals(data['frame'], 'frame.')['errors'])
    return _result(errors)


def validate_biometric_request(data: Dict[str, Any]) -> Dict[str, Any]:
    errors = []

    if not isinstance(data.get('passed'), bool):
        errors.append(_error('passed', 'INVALID_BOOLEAN', 'passed must be true or false'))

    detail = data.get('detail')
    if detail is not None and not isinstance(detail, str):
        errors.append(_error('detail', 'INVALID_DETAIL', 'detail must be a string'))

    return _result(errors)


# =============================================================================
# Rating
# =============================================================================

def validate_pair_request(data: Dict[str, Any]) -> Dict[str, Any]:
    errors = []

    if data.get('requester_id') is not None:
        _check_string(data, 'requester_id', errors)

    excluded = data.get('excluded_photo_ids', [])
    if not isinstance(excluded, list) or not all(isinstance(item, str) for item in excluded):
        errors.append(_error('excluded_photo_ids', 'INVALID_PHOTO_IDS',
                             'excluded_photo_ids must be a list of strings'))

    return _result(errors)


def validate_rating_event(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate rating event structure

    Winner/loser equality is an integrity check of the rating engine, not a
    request format error, so it is not rejected here.

    Args:
        data: Request data dictionary

    Returns:
        Dictionary with validation result
    """
    errors = []

    for field in ('winner_photo_id', 'loser_photo_id', 'idempotency_key'):
        _check_string(data, field, errors)
    _check_number(data, 'timestamp', errors, '', minimum=0.0, required=False)

    return _result(errors)


def parse_rating_event(data: Dict[str, Any]) -> RatingEvent:
    return RatingEvent(
        winner_photo_id=data['winner_photo_id'],
        loser_photo_id=data['loser_photo_id'],
        idempotency_key=data['idempotency_key'],
        timestamp=float(data.get('timestamp') or 0.0)
    )


def validate_photo_request(data: Dict[str, Any]) -> Dict[str, Any]:
    errors = []

    _check_string(data, 'id', errors)
    _check_string(data, 'owner_id', errors)

    in_pool = data.get('in_pool')
    if in_pool is not None and not isinstance(in_pool, bool):
        errors.append(_error('in_pool', 'INVALID_BOOLEAN', 'in_pool must be true or false'))

    return _result(errors)
