"""
Monitoring package initializer.

This package exposes Prometheus metrics and helper decorators for tracking the connector's
callback handling, background workers and outbound API calls.
"""

from .metrics import (
    REQUEST_COUNT,
    REQUEST_LATENCY,
    ERROR_COUNT,
    EVENTS_PUBLISHED,
    EVENTS_RELAYED,
    ACTIONS_TOTAL,
    POLL_CYCLE_TIME,
    GIF_API_REQUEST_TIME,
    PLATFORM_REQUEST_TIME,
    track_latency,
    track_errors,
)

__all__ = [
    'REQUEST_COUNT',
    'REQUEST_LATENCY',
    'ERROR_COUNT',
    'EVENTS_PUBLISHED',
    'EVENTS_RELAYED',
    'ACTIONS_TOTAL',
    'POLL_CYCLE_TIME',
    'GIF_API_REQUEST_TIME',
    'PLATFORM_REQUEST_TIME',
    'track_latency',
    'track_errors',
]
