"""
Shared Kernel Module
====================

This module contains shared infrastructure used across both bounded
contexts (SLA timers and workflows).

Architecture Pattern: Modular Monolith
- Each module (sla, workflows) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add business logic from SLA or Workflows to shared kernel.
"""

__version__ = "1.0.0"
