"""
Serialization Exceptions

Author: System Architect
Date: 2025-12-10
"""

from llm_reliability.core.exceptions.base import ReliabilityError


class SerializationError(ReliabilityError):
    """
    Raised when a request body cannot be encoded or a response body cannot be
    decoded into the expected shape.
    """
    pass
