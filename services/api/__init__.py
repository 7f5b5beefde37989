"""
HTTP API for FlowGate.
"""

from .server import app, get_service

__all__ = ["app", "get_service"]
