"""
Shared utilities for botgate.

Currently only logging configuration, used by both the agent core and the
HTTP server.
"""

from botgate.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
