"""
Test Buddy - Services
"""
from testbuddy.services.retry import RetryExecutor, RetryPolicy

__all__ = ["RetryExecutor", "RetryPolicy"]
