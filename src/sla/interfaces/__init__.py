"""
SLA Interfaces Layer
=====================

API controllers for incident SLA monitoring.
"""

from src.sla.interfaces.controllers import router

__all__ = ["router"]
