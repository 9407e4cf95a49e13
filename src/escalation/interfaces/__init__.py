"""
Escalation Interfaces Layer
============================

API controllers and dependency factories for the escalation engine.
"""

from src.escalation.interfaces.controllers import router

__all__ = ["router"]
