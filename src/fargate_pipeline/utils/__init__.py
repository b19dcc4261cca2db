"""Utility decorators shared across the deployer."""
from .decorators import log_execution_time, retry

__all__ = ['log_execution_time', 'retry']
