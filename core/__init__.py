"""
FlowGate Core Components

Provides foundational infrastructure shared by all services:
- Configuration from environment
- Error taxonomy used for failover classification
- Fire-and-forget background tasks
"""

from .config import Config, get_config
from .errors import FlowGateError

__all__ = ["Config", "FlowGateError", "get_config"]
