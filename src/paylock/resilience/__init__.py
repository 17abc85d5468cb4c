"""
Resilience Layer for Paylock.

Provides the retry policy used by the settlement client.
"""

from .retry import RetryPolicy, execute_with_retry, is_transient_error

__all__ = [
    "RetryPolicy",
    "execute_with_retry",
    "is_transient_error",
]
