"""
Escalation Module
=================

Bounded Context for tiered, time-delayed escalation of alerts.

Responsibilities:
- Store escalation policies (ordered levels with delay and recipients)
- Drive one execution per alert through its policy's levels on a timer
- Stop on acknowledgment, resolution or cancellation
- Notify level recipients without blocking the timer
- Report counts, per-level breakdowns, mean time to resolution and trends
"""

__version__ = "1.0.0"
