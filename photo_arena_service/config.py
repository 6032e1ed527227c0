#!/usr/bin/env python3
"""
Configuration Module for Photo Arena Service
============================================

Centralized configuration for verification and rating components.
Every value can be overridden through an environment variable of the same name.
"""

import os
import logging
from typing import Dict, Any

from .core import constants
from .core.data_classes import QualityCriteria

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Main configuration class for photo arena service"""

    # =============================================================================
    # QUALITY CRITERIA TABLE
    # =============================================================================

    MIN_FACE_AREA_FRACTION = float(os.getenv('MIN_FACE_AREA_FRACTION', '0.15'))
    MAX_FACE_AREA_FRACTION = float(os.getenv('MAX_FACE_AREA_FRACTION', '0.60'))
    MIN_SHARPNESS = float(os.getenv('MIN_SHARPNESS', '0.6'))
    MIN_BRIGHTNESS = float(os.getenv('MIN_BRIGHTNESS', '0.3'))
    MAX_BRIGHTNESS = float(os.getenv('MAX_BRIGHTNESS', '0.8'))
    MIN_CONTRAST = float(os.getenv('MIN_CONTRAST', '0.4'))
    MAX_POSE_DEVIATION_DEGREES = float(os.getenv('MAX_POSE_DEVIATION_DEGREES', '30'))
    MIN_EYE_OPENNESS = float(os.getenv('MIN_EYE_OPENNESS', '0.7'))

    # Pixel statistics normalization
    GOOD_SHARPNESS_VARIANCE = float(os.getenv('GOOD_SHARPNESS_VARIANCE', '500'))
    CONTRAST_REFERENCE_STD = float(os.getenv('CONTRAST_REFERENCE_STD', '64'))
    MISSING_POSE_DEVIATION = float(os.getenv('MISSING_POSE_DEVIATION', '90'))

    # =============================================================================
    # TEMPORAL STABILIZATION
    # =============================================================================

    EMA_DECAY = float(os.getenv('EMA_DECAY', str(constants.DEFAULT_EMA_DECAY)))  # weight of newest sample
    REQUIRED_CONSECUTIVE_PASSES = int(os.getenv('REQUIRED_CONSECUTIVE_PASSES',
                                                str(constants.DEFAULT_REQUIRED_CONSECUTIVE_PASSES)))
    FRAME_INTERVAL_MS = int(os.getenv('FRAME_INTERVAL_MS', str(constants.DEFAULT_FRAME_INTERVAL_MS)))

    # =============================================================================
    # LIVENESS THRESHOLDS
    # =============================================================================

    LIVENESS_IS_LIVE_THRESHOLD = float(os.getenv('LIVENESS_IS_LIVE_THRESHOLD', '0.7'))
    LIVENESS_ACCEPT_THRESHOLD = float(os.getenv('LIVENESS_ACCEPT_THRESHOLD', '0.8'))
    LIVENESS_LOW_CONFIDENCE_THRESHOLD = float(os.getenv('LIVENESS_LOW_CONFIDENCE_THRESHOLD', '0.6'))
    LIVENESS_MIN_FRAMES = int(os.getenv('LIVENESS_MIN_FRAMES', '2'))

    # Motion plausibility, in normalized frame units per analyzed step
    MIN_PLAUSIBLE_MOTION = float(os.getenv('MIN_PLAUSIBLE_MOTION', '0.002'))
    MAX_PLAUSIBLE_MOTION = float(os.getenv('MAX_PLAUSIBLE_MOTION', '0.15'))
    POSE_MOTION_SCALE = float(os.getenv('POSE_MOTION_SCALE', '0.005'))  # per degree

    # Depth / texture consistency
    TEXTURE_REFERENCE_VARIANCE = float(os.getenv('TEXTURE_REFERENCE_VARIANCE', '300'))
    GLARE_PENALTY = float(os.getenv('GLARE_PENALTY', '2.0'))

    # Landmark continuity
    MAX_LANDMARK_JUMP = float(os.getenv('MAX_LANDMARK_JUMP', '0.05'))

    # =============================================================================
    # RATING CONFIGURATION
    # =============================================================================

    ELO_K_FACTOR = int(os.getenv('ELO_K_FACTOR', str(constants.DEFAULT_K_FACTOR)))
    DEFAULT_ELO_SCORE = int(os.getenv('DEFAULT_ELO_SCORE', str(constants.DEFAULT_ELO_SCORE)))
    STRICT_INTEGRITY_CHECKS = _env_bool('STRICT_INTEGRITY_CHECKS', 'true')

    # =============================================================================
    # SESSION CONFIGURATION
    # =============================================================================

    MAX_SESSIONS = int(os.getenv('MAX_SESSIONS', '1000'))
    SESSION_TIMEOUT_MINUTES = int(os.getenv('SESSION_TIMEOUT_MINUTES', '10'))
    SESSION_CLEANUP_ENABLED = _env_bool('SESSION_CLEANUP_ENABLED', 'true')
    SESSION_CLEANUP_INTERVAL_SECONDS = int(os.getenv('SESSION_CLEANUP_INTERVAL_SECONDS', '300'))

    # Metrics
    MAX_PROCESSING_TIMES_STORED = int(os.getenv('MAX_PROCESSING_TIMES_STORED', '1000'))

    # =============================================================================
    # API CONFIGURATION
    # =============================================================================

    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', '8003'))
    DEBUG = _env_bool('DEBUG', 'false')
    TESTING = False
    MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', '5242880'))  # 5MB

    # =============================================================================
    # LOGGING CONFIGURATION
    # =============================================================================

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # =============================================================================
    # HELPER METHODS
    # =============================================================================

    @classmethod
    def get_quality_criteria(cls) -> QualityCriteria:
        """Get the quality criteria table"""
        return QualityCriteria(
            min_face_area_fraction=cls.MIN_FACE_AREA_FRACTION,
            max_face_area_fraction=cls.MAX_FACE_AREA_FRACTION,
            min_sharpness=cls.MIN_SHARPNESS,
            min_brightness=cls.MIN_BRIGHTNESS,
            max_brightness=cls.MAX_BRIGHTNESS,
            min_contrast=cls.MIN_CONTRAST,
            max_pose_deviation=cls.MAX_POSE_DEVIATION_DEGREES,
            min_eye_openness=cls.MIN_EYE_OPENNESS
        )

    @classmethod
    def get_liveness_thresholds(cls) -> Dict[str, float]:
        """Get liveness evaluation thresholds"""
        return {
            'is_live': cls.LIVENESS_IS_LIVE_THRESHOLD,
            'accept': cls.LIVENESS_ACCEPT_THRESHOLD,
            'low_confidence': cls.LIVENESS_LOW_CONFIDENCE_THRESHOLD,
            'min_frames': cls.LIVENESS_MIN_FRAMES,
            'min_plausible_motion': cls.MIN_PLAUSIBLE_MOTION,
            'max_plausible_motion': cls.MAX_PLAUSIBLE_MOTION,
            'pose_motion_scale': cls.POSE_MOTION_SCALE,
            'texture_reference_variance': cls.TEXTURE_REFERENCE_VARIANCE,
            'glare_penalty': cls.GLARE_PENALTY,
            'max_landmark_jump': cls.MAX_LANDMARK_JUMP
        }

    @classmethod
    def get_rating_settings(cls) -> Dict[str, Any]:
        """Get rating engine settings"""
        return {
            'k_factor': cls.ELO_K_FACTOR,
            'default_elo_score': cls.DEFAULT_ELO_SCORE,
            'strict_integrity_checks': cls.STRICT_INTEGRITY_CHECKS
        }

    @classmethod
    def get_session_settings(cls) -> Dict[str, Any]:
        """Get verification session settings"""
        return {
            'max_sessions': cls.MAX_SESSIONS,
            'session_timeout_minutes': cls.SESSION_TIMEOUT_MINUTES,
            'cleanup_enabled': cls.SESSION_CLEANUP_ENABLED,
            'cleanup_interval_seconds': cls.SESSION_CLEANUP_INTERVAL_SECONDS,
            'frame_interval_ms': cls.FRAME_INTERVAL_MS
        }

    @classmethod
    def validate_configuration(cls) -> bool:
        """Validate configuration values"""
        try:
            assert 0.0 < cls.EMA_DECAY <= 1.0, "EMA_DECAY must be in (0, 1]"
            assert cls.REQUIRED_CONSECUTIVE_PASSES >= 1, "REQUIRED_CONSECUTIVE_PASSES must be at least 1"
            assert cls.MIN_FACE_AREA_FRACTION < cls.MAX_FACE_AREA_FRACTION, \
                "MIN_FACE_AREA_FRACTION must be below MAX_FACE_AREA_FRACTION"
            assert cls.MIN_BRIGHTNESS < cls.MAX_BRIGHTNESS, "MIN_BRIGHTNESS must be below MAX_BRIGHTNESS"
            assert (0.0 <= cls.LIVENESS_LOW_CONFIDENCE_THRESHOLD
                    <= cls.LIVENESS_ACCEPT_THRESHOLD <= 1.0), \
                "liveness thresholds must satisfy 0 <= low_confidence <= accept <= 1"
            assert cls.LIVENESS_MIN_FRAMES >= 2, "LIVENESS_MIN_FRAMES must be at least 2"
            assert cls.MIN_PLAUSIBLE_MOTION < cls.MAX_PLAUSIBLE_MOTION, \
                "MIN_PLAUSIBLE_MOTION must be below MAX_PLAUSIBLE_MOTION"
            assert cls.ELO_K_FACTOR > 0, "ELO_K_FACTOR must be positive"
            assert cls.FRAME_INTERVAL_MS >= 0, "FRAME_INTERVAL_MS must not be negative"
            assert cls.MAX_SESSIONS > 0, "MAX_SESSIONS must be positive"
            return True

        except AssertionError as e:
            logger.error(f"Configuration validation failed: {e}")
            return False


# Development/Testing Configuration
class DevelopmentConfig(Config):
    """Configuration for development environment"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    STRICT_INTEGRITY_CHECKS = True


# Production Configuration
class ProductionConfig(Config):
    """Configuration for production environment"""
    DEBUG = False
    LOG_LEVEL = 'WARNING'
    STRICT_INTEGRITY_CHECKS = False


class TestingConfig(Config):
    """Configuration for the test suite"""
    TESTING = True
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    SESSION_CLEANUP_ENABLED = False
    STRICT_INTEGRITY_CHECKS = True


# Configuration factory
def get_config(environment: str = None) -> Config:
    """Get configuration based on environment"""
    env = (environment or os.getenv('ENVIRONMENT', 'development')).lower()

    if env == 'production':
        return ProductionConfig()
    elif env == 'development':
        return DevelopmentConfig()
    elif env == 'testing':
        return TestingConfig()
    else:
        return Config()
