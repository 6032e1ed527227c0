#!/usr/bin/env python3
"""
API Response Formatters
=======================

JSON envelopes shared by every endpoint: {'success', 'timestamp', 'data'}
on success and {'success', 'timestamp', 'error'} on failure.
"""

from typing import Any, Dict, List
from datetime import datetime, timezone

from flask import jsonify, Response


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def success_response(data: Any, status_code: int = 200) -> Response:
    """
    Wrap a payload in the success envelope

    Args:
        data: JSON-serializable payload
        status_code: HTTP status code

    Returns:
        (Flask response, status code)
    """
    return jsonify({
        'success': True,
        'timestamp': _timestamp(),
        'data': data
    }), status_code


def error_response(error_data: Dict[str, Any], status_code: int = 400) -> Response:
    """
    Wrap an error description in the failure envelope

    Args:
        error_data: Usually PhotoArenaServiceError.to_dict()
        status_code: HTTP status code

    Returns:
        (Flask response, status code)
    """
    return jsonify({
        'success': False,
        'timestamp': _timestamp(),
        'error': error_data
    }), status_code


def validation_error_response(errors: List[Dict[str, str]]) -> Response:
    """400 with the per-field errors collected by the validators"""
    return error_response({
        'error': 'VALIDATION_ERROR',
        'message': 'Request validation failed',
        'validation_errors': errors
    }, 400)


def health_response(health_data: Dict[str, Any]) -> Response:
    return jsonify({'timestamp': _timestamp(), 'health': health_data})


def metrics_response(metrics_data: Dict[str, Any]) -> Response:
    return jsonify({'timestamp': _timestamp(), 'metrics': metrics_data})


def decision_response(decision, session_id: str, status_code: int = 200) -> Response:
    """
    Serialize a VerificationDecision for the UI collaborator

    Args:
        decision: VerificationDecision for the session
        session_id: Session the decision belongs to
        status_code: HTTP status code

    Returns:
        (Flask response, status code)
    """
    data = decision.to_dict()
    data['session_id'] = session_id
    data['is_final'] = decision.is_final
    return success_response(data, status_code)


def rating_commit_response(commit) -> Response:
    """Created for a new commit, OK for an idempotent replay"""
    return success_response(commit.to_dict(), 200 if commit.duplicate else 201)


def add_security_headers(response: Response) -> Response:
    headers = response.headers
    headers['X-Content-Type-Options'] = 'nosniff'
    headers['X-Frame-Options'] = 'DENY'
    headers['Cache-Control'] = 'no-store'
    return response
