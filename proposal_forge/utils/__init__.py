"""
Utility modules for the proposal generation pipeline.

This package provides logging, retry with backoff and cooperative cancellation.
"""

from .logger import (
    setup_logging,
    get_logger,
    get_progress_logger,
    get_gateway_logger,
    get_analyzer_logger,
    get_voice_logger,
    get_workflow_logger,
    PipelineLogger,
    ProgressLogger
)

from .cancellation import (
    CancellationToken,
    run_cancellable
)

from .retry import (
    RetryPolicy,
    with_retry
)

__all__ = [
    # Logging
    'setup_logging',
    'get_logger',
    'get_progress_logger',
    'get_gateway_logger',
    'get_analyzer_logger',
    'get_voice_logger',
    'get_workflow_logger',
    'PipelineLogger',
    'ProgressLogger',

    # Cancellation
    'CancellationToken',
    'run_cancellable',

    # Retry
    'RetryPolicy',
    'with_retry'
]
