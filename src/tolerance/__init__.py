"""
Tolerance Monitoring Module
===========================

Bounded Context for risk-metric tolerance monitoring.

Responsibilities:
- Classify metric readings against their tolerance band
- Re-classify the latest reading when a band is edited
- Create deduplicated breach notifications and track acknowledgment
- Hand breaches to the escalation engine
"""

__version__ = "1.0.0"
