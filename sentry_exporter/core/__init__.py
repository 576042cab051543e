"""
Core Infrastructure - Logging and API call tracking

Usage:
    from sentry_exporter.core import ApiCallMetrics, get_logger

    logger = get_logger(__name__)
    metrics = ApiCallMetrics()
"""

from .api_call_metrics import ApiCallMetrics, track_collection_cycle
from .logging_config import get_logger, log_with_context, setup_logging

__all__ = [
    # Logging
    "get_logger",
    "log_with_context",
    "setup_logging",
    # API call tracking
    "ApiCallMetrics",
    "track_collection_cycle",
]
