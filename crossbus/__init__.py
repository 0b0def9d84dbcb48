"""
crossbus: cross-module event synchronization core.

This package contains:
- Events (pub/sub bus, replay buffer, state snapshot registry)
- Configuration (replay limits, middleware fault policy)
- Structured logging setup
"""

__version__ = "0.1.0"
