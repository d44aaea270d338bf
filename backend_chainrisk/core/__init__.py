"""
Core shared pieces: exceptions and input validators.
"""

from backend_chainrisk.core.exceptions import ChainRiskError, InvalidInputError

__all__ = ["ChainRiskError", "InvalidInputError"]
