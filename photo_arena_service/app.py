#!/usr/bin/env python3
"""
Main Application Module
=======================

Flask app factory and dependency injection setup for the photo arena service.
"""

from flask import Flask
import logging
import sys
from typing import Any, Dict, Optional

from .config import Config, get_config
from .core.data_classes import PhotoRecord, UploadRequest
from .core.exceptions import PhotoArenaServiceError, ConfigurationError, get_http_status_code
from .processors.quality_scorer import QualityScorer
from .processors.liveness_evaluator import LivenessEvaluator
from .services.rating_store import InMemoryRatingStore
from .services.rating_engine import RatingEngine
from .utils.metrics import MetricsManager
from .utils.session_manager import VerificationSessionManager
from .api.routes import register_routes
from .api.responses import error_response, add_security_headers

logger = logging.getLogger(__name__)


def create_app(config: Optional[Config] = None, environment: Optional[str] = None) -> Flask:
    """
    Flask app factory function

    Args:
        config: Configuration object
        environment: Environment name ('development', 'production', 'testing')

    Returns:
        Configured Flask application

    Raises:
        ConfigurationError: If the configuration does not validate
    """
    app = Flask(__name__)

    # Load configuration
    if config is None:
        config = get_config(environment)

    if not config.validate_configuration():
        raise ConfigurationError('config', type(config).__name__, 'configuration validation failed')

    app.config.update({
        'MAX_CONTENT_LENGTH': config.MAX_CONTENT_LENGTH,
        'DEBUG': config.DEBUG,
        'TESTING': config.TESTING
    })

    # Store config on app for access in routes
    app.config_obj = config

    setup_logging(config)
    initialize_services(app, config)
    register_routes(app)
    setup_middleware(app)
    setup_error_handlers(app)

    logger.info(f"Flask app created successfully with {len(list(app.url_map.iter_rules()))} routes")
    return app


def initialize_services(app: Flask, config: Config) -> None:
    """
    Initialize and inject all service dependencies

    Args:
        app: Flask application
        config: Configuration object
    """
    logger.info("Initializing service components...")

    metrics_manager = MetricsManager(config.MAX_PROCESSING_TIMES_STORED)
    app.metrics_manager = metrics_manager

    # Scorer and evaluator are stateless and shared by every session
    quality_scorer = QualityScorer(config)
    app.quality_scorer = quality_scorer

    liveness_evaluator = LivenessEvaluator(config)
    app.liveness_evaluator = liveness_evaluator

    rating_store = InMemoryRatingStore()
    app.rating_store = rating_store

    rating_engine = RatingEngine(rating_store, config)
    app.rating_engine = rating_engine

    session_manager = VerificationSessionManager(
        config=config,
        scorer=quality_scorer,
        liveness_evaluator=liveness_evaluator,
        metrics=metrics_manager,
        on_accepted=make_photo_registrar(rating_store, config)
    )
    app.session_manager = session_manager

    logger.info("All service components initialized successfully")


def make_photo_registrar(rating_store: InMemoryRatingStore, config: Config):
    """
    Build the upload hand-off callback

    Accepted photos of sessions that carry an owner_id are added to the
    rating store with the default rating. A photo that is already known
    keeps its rating; only its verification status and pool flag change.
    """
    def register_accepted_photo(session_id: str, upload: UploadRequest,
                                metadata: Dict[str, Any]) -> None:
        owner_id = metadata.get('owner_id')
        if not owner_id:
            logger.info(f"Session {session_id} accepted without owner_id, photo not registered")
            return

        record = rating_store.record_verification(PhotoRecord(
            id=upload.photo_ref,
            owner_id=owner_id,
            in_pool=bool(metadata.get('add_to_pool', True)),
            elo_score=config.DEFAULT_ELO_SCORE,
            verification_status=upload.verification_status
        ))
        logger.info(f"Photo {upload.photo_ref} registered for {owner_id} "
                    f"({upload.verification_status.value}, elo {record.elo_score})")

    return register_accepted_photo


def setup_logging(config: Config) -> None:
    """
    Setup application logging

    Args:
        config: Configuration object
    """
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format=config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
        ]
    )

    # Set specific logger levels
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={config.LOG_LEVEL}")


def setup_middleware(app: Flask) -> None:
    """
    Setup Flask middleware

    Args:
        app: Flask application
    """
    @app.after_request
    def after_request(response):
        """After request middleware"""
        return add_security_headers(response)


def setup_error_handlers(app: Flask) -> None:
    """
    Setup global error handlers

    Args:
        app: Flask application
    """
    @app.errorhandler(PhotoArenaServiceError)
    def handle_service_error(error):
        """Handle custom service errors"""
        return error_response(error.to_dict(), get_http_status_code(error))

    @app.errorhandler(404)
    def handle_not_found(error):
        return error_response({
            'error': 'NOT_FOUND',
            'message': 'The requested resource was not found'
        }, 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return error_response({
            'error': 'METHOD_NOT_ALLOWED',
            'message': 'The method is not allowed for the requested URL'
        }, 405)

    @app.errorhandler(413)
    def handle_payload_too_large(error):
        return error_response({
            'error': 'PAYLOAD_TOO_LARGE',
            'message': f'Request exceeds maximum allowed size of '
                       f'{app.config_obj.MAX_CONTENT_LENGTH} bytes'
        }, 413)

    @app.errorhandler(500)
    def handle_internal_error(error):
        logger.error(f"Internal server error: {error}")
        return error_response({
            'error': 'INTERNAL_SERVER_ERROR',
            'message': 'An internal server error occurred'
        }, 500)

    logger.info("Error handlers configured")


def main():
    """Main entry point for CLI"""
    import argparse

    parser = argparse.ArgumentParser(description='Photo Arena Service')
    parser.add_argument('--host', default=None, help='Host to bind to')
    parser.add_argument('--port', type=int, default=None, help='Port to bind to')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--production', action='store_true', help='Run in production mode')
    parser.add_argument('--check-config', action='store_true', help='Validate configuration and exit')

    args = parser.parse_args()

    config = get_config('production' if args.production else None)

    if args.check_config:
        if config.validate_configuration():
            print("Configuration is valid")
            sys.exit(0)
        print("Configuration is invalid")
        sys.exit(1)

    host = args.host or config.HOST
    port = args.port or config.PORT
    debug = args.debug or (config.DEBUG and not args.production)

    app = create_app(config)
    logger.info(f"Starting {'production' if args.production else 'development'} server on {host}:{port}")

    # In production, run behind a WSGI server such as gunicorn
    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == '__main__':
    main()
