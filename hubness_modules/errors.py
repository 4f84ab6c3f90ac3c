"""
This file contains the exception hierarchy shared by all hubness modules.

1. HubnessError: base class, carries a message, extra context and an exit code.
2. ConfigurationError: invalid parameters (bad k, mismatched lengths, ...).
3. DataAvailabilityError: a required input (labels, distances) is missing.
4. ComputeWorkerError: a parallel worker failed; raised after all workers joined.
"""

from typing import Any


class HubnessError(Exception):
    """Base exception class for hubness analysis errors."""
    exit_code = 1  # Default exit code

    def __init__(self, message: str, **kwargs: Any):
        self.message = message
        self.additional_info = kwargs
        super().__init__(self.message)


class ConfigurationError(HubnessError):
    """Raised when a parameter or an input shape is invalid."""
    exit_code = 2


class DataAvailabilityError(HubnessError):
    """Raised when ground truth, features or a distance matrix are required but absent."""
    exit_code = 3


class ComputeWorkerError(HubnessError):
    """Raised at the join point when one of the parallel workers has failed."""
    exit_code = 4
