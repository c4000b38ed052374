"""
Infrastructure Layer
=====================

Low-level technical concerns shared by both bounded contexts:
- Logging setup
- Per-ticket serialization locks
"""

from slaflow.shared.infrastructure.locks import TicketLockRegistry
from slaflow.shared.infrastructure.logging import (
    get_logger,
    get_context_logger,
    log_latency,
    setup_logging,
)

__all__ = [
    "TicketLockRegistry",
    "get_logger",
    "get_context_logger",
    "log_latency",
    "setup_logging",
]
