#!/usr/bin/env python3
"""
Flask API Routes for Photo Arena Service
========================================

HTTP endpoint handlers for verification sessions and the rating engine.
"""

import time
import logging
from functools import wraps

import cv2
from flask import request

from ..core.data_classes import PhotoRecord
from ..core.exceptions import (
    PhotoArenaServiceError, SessionNotFoundError, SessionClosedError,
    RatingIntegrityError, get_http_status_code, log_exception
)
from .responses import (
    success_response, error_response, validation_error_response,
    health_response, metrics_response, decision_response, rating_commit_response
)
from .validators import (
    get_json_body, validate_json_content_type, validate_frame_signals, parse_frame_signals,
    validate_session_request, validate_capture_request, validate_biometric_request,
    validate_selfie_request, validate_pair_request, validate_rating_event,
    parse_rating_event, validate_photo_request
)

logger = logging.getLogger(__name__)

SERVICE_NAME = 'photo-arena-service'


class RequestValidationFailed(Exception):
    """Carries validator errors out of a route"""

    def __init__(self, errors):
        super().__init__('request validation failed')
        self.errors = errors


def _require_valid(validation_result) -> None:
    if not validation_result['valid']:
        raise RequestValidationFailed(validation_result['errors'])


def register_routes(app):
    """Register all API routes with the Flask app"""

    def api_endpoint(func):
        """Shared error handling and request metrics for JSON endpoints"""
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)

            except RequestValidationFailed as e:
                app.metrics_manager.update_error_metrics('VALIDATION_ERROR')
                return validation_error_response(e.errors)

            except PhotoArenaServiceError as e:
                log_exception(logger, e, {'endpoint': func.__name__})
                app.metrics_manager.update_error_metrics(e.error_code)
                return error_response(e.to_dict(), get_http_status_code(e))

            except Exception as e:
                logger.exception(f"Unexpected error in {func.__name__}: {e}")
                app.metrics_manager.update_error_metrics('unexpected', str(e))
                return error_response({
                    'error': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                    'details': {'endpoint': func.__name__}
                }, 500)

            finally:
                app.metrics_manager.record_request((time.time() - start_time) * 1000)

        return wrapper

    def json_body(required: bool = True):
        if required:
            _require_valid(validate_json_content_type(request))
        return get_json_body(request, required=required)

    # -------------------------------------------------------------------------
    # Service
    # -------------------------------------------------------------------------

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        try:
            health_data = {
                'status': 'healthy',
                'service': SERVICE_NAME,
                'opencv_version': cv2.__version__,
                'active_sessions': len(app.session_manager.get_active_sessions()),
                'pool_size': len(app.rating_store.get_pool_snapshot()),
                'metrics': app.metrics_manager.get_health_metrics()
            }
            return health_response(health_data)

        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return error_response({'status': 'unhealthy', 'error': str(e)}, 500)

    @app.route('/metrics', methods=['GET'])
    def get_metrics():
        """Performance metrics endpoint"""
        try:
            metrics_data = app.metrics_manager.get_all_metrics()
            metrics_data['sessions'] = app.session_manager.get_session_metrics()
            return metrics_response(metrics_data)

        except Exception as e:
            logger.error(f"Metrics retrieval failed: {e}")
            return error_response({'error': str(e)}, 500)

    # -------------------------------------------------------------------------
    # Verification sessions
    # -------------------------------------------------------------------------

    @app.route('/verification/sessions', methods=['POST'])
    @api_endpoint
    def create_verification_session():
        """Start a capture session"""
        data = json_body(required=False)
        _require_valid(validate_session_request(data))

        metadata = dict(data.get('metadata') or {})
        if data.get('owner_id'):
            metadata['owner_id'] = data['owner_id']
        metadata['add_to_pool'] = data.get('add_to_pool', True)

        session_id = app.session_manager.create_session(metadata)
        return decision_response(app.session_manager.get_decision(session_id), session_id, 201)

    @app.route('/verification/sessions/<session_id>', methods=['GET'])
    @api_endpoint
    def get_verification_session(session_id):
        """Current decision and summary of a session"""
        return success_response(app.session_manager.get_session_summary(session_id))

    @app.route('/verification/sessions/<session_id>', methods=['DELETE'])
    @api_endpoint
    def cancel_verification_session(session_id):
        """Cancel a session"""
        reason = request.args.get('reason', 'User cancelled')
        if not app.session_manager.cancel_session(session_id, reason):
            if not app.session_manager.session_exists(session_id):
                raise SessionNotFoundError(session_id)
            decision = app.session_manager.get_decision(session_id)
            raise SessionClosedError(decision.state.value, 'SessionCancelled')

        return decision_response(app.session_manager.get_decision(session_id), session_id)

    @app.route('/verification/sessions/<session_id>/frames', methods=['POST'])
    @api_endpoint
    def submit_frame(session_id):
        """Submit one analyzed frame"""
        data = json_body()
        _require_valid(validate_frame_signals(data))

        signals = parse_frame_signals(data)
        decision = app.session_manager.submit_frame(session_id, signals)
        return decision_response(decision, session_id)

    @app.route('/verification/sessions/<session_id>/capture', methods=['POST'])
    @api_endpoint
    def trigger_capture(session_id):
        """Capture trigger from the camera collaborator"""
        data = json_body()
        _require_valid(validate_capture_request(data))

        frame = parse_frame_signals(data['frame']) if data.get('frame') is not None else None
        decision = app.session_manager.trigger_capture(session_id, data['photo_ref'], frame)
        return decision_response(decision, session_id)

    @app.route('/verification/sessions/<session_id>/authentication', methods=['POST'])
    @api_endpoint
    def start_authentication(session_id):
        """Begin the biometric stage"""
        decision = app.session_manager.start_authentication(session_id)
        return decision_response(decision, session_id)

    @app.route('/verification/sessions/<session_id>/biometric', methods=['POST'])
    @api_endpoint
    def submit_biometric_result(session_id):
        """Biometric authentication result"""
        data = json_body()
        _require_valid(validate_biometric_request(data))

        decision = app.session_manager.submit_biometric_result(
            session_id, data['passed'], data.get('detail') or ''
        )
        return decision_response(decision, session_id)

    @app.route('/verification/sessions/<session_id>/selfie', methods=['POST'])
    @api_endpoint
    def submit_selfie(session_id):
        """Selfie frames, or cancellation of the selfie capture"""
        data = json_body()
        _require_valid(validate_selfie_request(data))

        if data.get('cancelled'):
            decision = app.session_manager.cancel_selfie(session_id, data.get('detail') or '')
        else:
            frames = [parse_frame_signals(frame) for frame in data['frames']]
            decision = app.session_manager.submit_selfie(session_id, frames)
        return decision_response(decision, session_id)

    # -------------------------------------------------------------------------
    # Rating
    # -------------------------------------------------------------------------

    @app.route('/ratings/photos', methods=['POST'])
    @api_endpoint
    def register_photo():
        """Add a photo to the rating store"""
        data = json_body()
        _require_valid(validate_photo_request(data))

        record = app.rating_store.add_photo(PhotoRecord(
            id=data['id'],
            owner_id=data['owner_id'],
            in_pool=data.get('in_pool', True),
            elo_score=app.config_obj.DEFAULT_ELO_SCORE
        ))
        return success_response(record.to_dict(), 201)

    @app.route('/ratings/photos/<photo_id>', methods=['GET'])
    @api_endpoint
    def get_photo(photo_id):
        return success_response(app.rating_store.get_photo(photo_id).to_dict())

    @app.route('/ratings/pairs', methods=['POST'])
    @api_endpoint
    def select_pair():
        """Select a comparison pair for the requester"""
        data = json_body(required=False)
        _require_valid(validate_pair_request(data))

        pair = app.rating_engine.select_pair(
            requester_id=data.get('requester_id'),
            excluded_photo_ids=data.get('excluded_photo_ids', [])
        )
        app.metrics_manager.record_pair_selected()
        return success_response(pair.to_dict())

    @app.route('/ratings/events', methods=['POST'])
    @api_endpoint
    def apply_rating_event():
        """Apply one comparison outcome"""
        data = json_body()
        _require_valid(validate_rating_event(data))

        try:
            commit = app.rating_engine.apply_outcome(parse_rating_event(data))
        except RatingIntegrityError:
            app.metrics_manager.record_integrity_failure()
            raise

        app.metrics_manager.record_rating(duplicate=commit.duplicate)
        return rating_commit_response(commit)

    logger.info("API routes registered")
