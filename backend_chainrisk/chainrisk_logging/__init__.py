"""
Structured logging for the chain risk engine.

JSON logs with timestamp, event_type and subject_id.
"""

from backend_chainrisk.chainrisk_logging.logger import bind_subject, get_logger, short_address

__all__ = ["bind_subject", "get_logger", "short_address"]
