"""
Workflow Automation
===================

Bounded Context for visually-authored automation graphs.

Responsibilities:
- Store workflow graphs (trigger, logic and action nodes)
- Select the workflows matching a ticket event
- Walk a graph from its trigger node, calling the SLA timer engine and
  the ticket store / notification sink for side effects
"""
