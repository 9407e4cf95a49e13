"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (Tolerance Monitoring, Escalation and SLA Scanning).

Architecture Pattern: Modular Monolith
- Each module (tolerance, escalation, sla) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add business logic from the bounded contexts to the shared kernel.
"""

__version__ = "1.0.0"
