"""Utilities for the MACI processing engine."""

from .errors import (
    MACIError,
    InputValidationError,
    DecryptionError,
    CommandRejected,
    ProtocolViolation,
    ProofPreconditionError,
)
from .utils import (
    setup_logging,
    save_results,
    load_results,
    stringify_bigints,
    unstringify_bigints,
    PerformanceMonitor,
    PerformanceMetrics,
    get_system_info
)

__all__ = [
    'MACIError',
    'InputValidationError',
    'DecryptionError',
    'CommandRejected',
    'ProtocolViolation',
    'ProofPreconditionError',
    'setup_logging',
    'save_results',
    'load_results',
    'stringify_bigints',
    'unstringify_bigints',
    'PerformanceMonitor',
    'PerformanceMetrics',
    'get_system_info'
]
