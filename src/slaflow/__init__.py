"""
slaflow
=======

SLA timer engine and workflow graph executor for support ticketing.

Modules:
- sla: Policy resolution, timer lifecycle, breach/escalation monitor
- workflows: Trigger dispatch and node/edge graph execution

Both bounded contexts share the kernel in ``slaflow.core``,
``slaflow.shared`` and ``slaflow.infrastructure``.
"""

__version__ = "1.0.0"
