"""
ArbanOS -- Observability Infrastructure

Structured logging.
"""

from arbanos.telemetry.logging import setup_logging

__all__ = ["setup_logging"]
