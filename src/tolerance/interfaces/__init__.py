"""
Tolerance Interfaces Layer
===========================

API controllers for tolerance monitoring.
"""

from src.tolerance.interfaces.controllers import router

__all__ = ["router"]
