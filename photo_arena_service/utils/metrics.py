#!/usr/bin/env python3
"""
Metrics Manager Utility
=======================

Thread-safe counters and processing-time statistics for the verification
pipeline and the rating engine.
"""

import threading
import logging
from typing import Dict, Any, Optional
from collections import defaultdict, deque
from datetime import datetime

import numpy as np

logger = logging.getLogger(__name__)


class MetricsManager:
    """Thread-safe metrics collection and management"""

    def __init__(self, max_stored_times: int = 1000):
        """
        Initialize metrics manager

        Args:
            max_stored_times: Maximum number of processing times to store
        """
        self.max_stored_times = max_stored_times
        self._lock = threading.RLock()
        self._start_time = datetime.now()
        self.reset_metrics()

        logger.info("MetricsManager initialized")

    def reset_metrics(self) -> None:
        """Reset all metrics (useful for testing)"""
        with self._lock:
            self._metrics = {
                'requests_processed': 0,
                'frames_analyzed': 0,
                'frames_dropped': 0,
                'rating_commits': 0,
                'rating_duplicates': 0,
                'integrity_failures': 0,
                'pairs_selected': 0,
                'error_count': 0
            }
            self._session_counts = defaultdict(int)
            self._decision_counts = defaultdict(int)
            self._error_types = defaultdict(int)
            self._error_history = deque(maxlen=100)
            self._processing_times = deque(maxlen=self.max_stored_times)
            self._liveness_confidences = deque(maxlen=self.max_stored_times)

    def record_request(self, processing_time_ms: Optional[float] = None) -> None:
        with self._lock:
            self._metrics['requests_processed'] += 1
            if processing_time_ms is not None:
                self._processing_times.append(processing_time_ms)

    def record_frame(self, analyzed: bool) -> None:
        with self._lock:
            if analyzed:
                self._metrics['frames_analyzed'] += 1
            else:
                self._metrics['frames_dropped'] += 1

    def record_decision(self, status: str, liveness_confidence: Optional[float] = None) -> None:
        """
        Count a verification decision

        Args:
            status: Decision status value
            liveness_confidence: Confidence of the liveness result, once evaluated
        """
        with self._lock:
            self._decision_counts[status] += 1
            if liveness_confidence is not None:
                self._liveness_confidences.append(liveness_confidence)

    def record_session(self, event: str) -> None:
        """Count a session lifecycle event (started, accepted, rejected, cancelled, expired)"""
        with self._lock:
            self._session_counts[event] += 1

    def record_pair_selected(self) -> None:
        with self._lock:
            self._metrics['pairs_selected'] += 1

    def record_rating(self, duplicate: bool = False) -> None:
        with self._lock:
            if duplicate:
                self._metrics['rating_duplicates'] += 1
            else:
                self._metrics['rating_commits'] += 1

    def record_integrity_failure(self) -> None:
        with self._lock:
            self._metrics['integrity_failures'] += 1

    def update_error_metrics(self, error_type: str, error_details: Optional[str] = None) -> None:
        """
        Update error metrics

        Args:
            error_type: Type of error
            error_details: Additional error details
        """
        with self._lock:
            self._metrics['error_count'] += 1
            self._error_types[error_type] += 1
            self._error_history.append({
                'timestamp': datetime.now().isoformat(),
                'type': error_type,
                'details': error_details
            })

        logger.warning(f"Error metric updated: {error_type}")

    def get_metric(self, name: str) -> int:
        with self._lock:
            return self._metrics[name]

    def get_decision_count(self, status: str) -> int:
        with self._lock:
            return self._decision_counts.get(status, 0)

    def get_session_count(self, event: str) -> int:
        with self._lock:
            return self._session_counts.get(event, 0)

    def get_error_rate(self) -> float:
        """Get current error rate"""
        with self._lock:
            total = self._metrics['requests_processed']
            if total == 0:
                return 0.0
            return self._metrics['error_count'] / total

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get comprehensive metrics report"""
        with self._lock:
            uptime_hours = (datetime.now() - self._start_time).total_seconds() / 3600
            frames_total = self._metrics['frames_analyzed'] + self._metrics['frames_dropped']

            return {
                'overview': {
                    'service_uptime_hours': uptime_hours,
                    'total_requests': self._metrics['requests_processed'],
                    'error_rate': self.get_error_rate()
                },
                'verification': {
                    'frames_analyzed': self._metrics['frames_analyzed'],
                    'frames_dropped': self._metrics['frames_dropped'],
                    'drop_rate': self._metrics['frames_dropped'] / max(frames_total, 1),
                    'decisions': dict(self._decision_counts),
                    'sessions': dict(self._session_counts),
                    'liveness': self._calculate_stats(self._liveness_confidences, 'confidence')
                },
                'rating': {
                    'pairs_selected': self._metrics['pairs_selected'],
                    'commits': self._metrics['rating_commits'],
                    'duplicates': self._metrics['rating_duplicates'],
                    'integrity_failures': self._metrics['integrity_failures']
                },
                'performance': self._calculate_stats(self._processing_times, 'processing_time_ms'),
                'errors': {
                    'total_errors': self._metrics['error_count'],
                    'error_types': dict(self._error_types),
                    'recent_errors': list(self._error_history)[-10:]  # Last 10 errors
                }
            }

    def get_health_metrics(self) -> Dict[str, Any]:
        """Get metrics relevant for health checks"""
        with self._lock:
            return {
                'total_requests': self._metrics['requests_processed'],
                'error_rate': self.get_error_rate(),
                'avg_processing_time_ms': self._calculate_stats(
                    self._processing_times, 'processing_time_ms')['avg_processing_time_ms']
            }

    def _calculate_stats(self, values, name: str) -> Dict[str, float]:
        """Summary statistics of a bounded series"""
        if not values:
            return {f'avg_{name}': 0.0, f'min_{name}': 0.0, f'max_{name}': 0.0,
                    f'p95_{name}': 0.0, 'samples': 0}

        data = np.asarray(values, dtype=np.float64)
        return {
            f'avg_{name}': float(np.mean(data)),
            f'min_{name}': float(np.min(data)),
            f'max_{name}': float(np.max(data)),
            f'p95_{name}': float(np.percentile(data, 95)),
            'samples': int(data.size)
        }
