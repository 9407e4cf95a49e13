"""
SLA Monitoring Module
=====================

Bounded Context for incident response deadlines.

Responsibilities:
- Record the open incidents mirrored from the incident store
- Derive each incident's SLA deadline from its severity
- Scan for overdue incidents and feed them to the escalation engine
"""

__version__ = "1.0.0"
