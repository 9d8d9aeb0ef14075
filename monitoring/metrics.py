"""
Core metrics and monitoring decorators for the connector.

This module defines Prometheus metrics and decorators for tracking:
- Callback request latency and counts
- Error rates per component
- Update events published by the provider and relayed to the platform
- Action outcomes
- Polling cycle duration
- External API latency (Giphy and the Things platform)
"""

import time
import functools
import logging
from typing import Optional, Callable
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    'connector_callback_requests_total',
    'Total number of platform callback requests',
    ['method', 'endpoint', 'status']
)

REQUEST_LATENCY = Histogram(
    'connector_callback_request_duration_seconds',
    'Callback request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")]
)

# Error metrics
ERROR_COUNT = Counter(
    'connector_error_total',
    'Total number of errors',
    ['type', 'location']  # type: e.g. 'http', 'provider', 'relay'; location: specific component
)

# Event pipeline metrics
EVENTS_PUBLISHED = Counter(
    'connector_events_published_total',
    'Update events published to the event channel',
    ['kind']  # 'property', 'action', 'combined'
)

EVENTS_RELAYED = Counter(
    'connector_events_relayed_total',
    'Update events forwarded to the platform',
    ['kind', 'outcome']
)

ACTIONS_TOTAL = Counter(
    'connector_actions_total',
    'Action requests by action id and final status',
    ['action', 'status']
)

POLL_CYCLE_TIME = Histogram(
    'connector_poll_cycle_duration_seconds',
    'Time spent in one polling cycle',
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, float("inf")]
)

# External API metrics
GIF_API_REQUEST_TIME = Histogram(
    'gif_api_request_duration_seconds',
    'Time spent waiting for the GIF API',
    ['endpoint'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")]
)

PLATFORM_REQUEST_TIME = Histogram(
    'platform_request_duration_seconds',
    'Time spent waiting for the Things platform API',
    ['endpoint'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")]
)


def track_latency(metric: Histogram, labels: Optional[Callable] = None) -> Callable:
    """
    A decorator factory that tracks the execution time of a function using a Prometheus Histogram.

    Args:
        metric (Histogram): The Prometheus Histogram to record the timing in
        labels (Callable, optional): Function receiving the first positional argument
            (`self` for methods) and returning the metric labels dictionary

    Returns:
        Callable: The decorated function
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                if labels and args:
                    metric.labels(**labels(args[0])).observe(duration)
                else:
                    metric.observe(duration)

                logger.debug(
                    f"Function {func.__name__} execution time: {duration:.2f} seconds",
                    extra={'duration': duration, 'function': func.__name__}
                )
        return wrapper
    return decorator


def track_errors(error_type: str, location: str) -> Callable:
    """
    A decorator factory that counts exceptions escaping a function and re-raises them.

    Args:
        error_type (str): Type of error (e.g., 'http', 'provider', 'relay')
        location (str): Where the error occurred

    Returns:
        Callable: The decorated function

    Example:
        @track_errors('platform', 'create_thing')
        def create_thing(self, token, thing):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                ERROR_COUNT.labels(type=error_type, location=location).inc()
                logger.error(
                    f"Error in {location} ({error_type}): {e.__class__.__name__}",
                    extra={'error_type': error_type, 'location': location},
                )
                raise
        return wrapper
    return decorator
