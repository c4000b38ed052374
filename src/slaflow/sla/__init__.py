"""
SLA Timer Engine
================

Bounded Context for Service Level Agreement timers and escalation.

Responsibilities:
- Resolve the SLA policy applicable to a ticket
- Start, pause, resume and stop response/resolution timers
- Sweep running timers for escalations and breaches
- Auto-pause timers outside business hours
- Report compliance statistics
"""
