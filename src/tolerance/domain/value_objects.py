"""
Tolerance Value Objects
========================

Immutable value objects for the tolerance monitoring domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

import math
from dataclasses import dataclass
from typing import Optional

from src.config import BreachType, VarianceStatus
from src.core import ConfigurationException


@dataclass(frozen=True)
class ToleranceBand:
    """
    Acceptable variance around a metric's appetite threshold.

    Percentages are fractions of the threshold: ``warning_percentage=0.10``
    means a 10% deviation in either direction starts a warning.
    """

    appetite_threshold: float
    warning_percentage: float
    breach_percentage: float
    critical_percentage: Optional[float] = None

    def __post_init__(self):
        """Reject bands the classifier cannot evaluate."""
        if not math.isfinite(self.appetite_threshold) or self.appetite_threshold <= 0:
            raise ConfigurationException(
                "appetite_threshold must be a positive finite number",
                {"appetite_threshold": self.appetite_threshold}
            )

        if not 0 < self.warning_percentage < self.breach_percentage:
            raise ConfigurationException(
                "tolerance band requires 0 < warning_percentage < breach_percentage",
                {
                    "warning_percentage": self.warning_percentage,
                    "breach_percentage": self.breach_percentage,
                }
            )

        if self.critical_percentage is not None and self.critical_percentage <= self.breach_percentage:
            raise ConfigurationException(
                "critical_percentage must exceed breach_percentage",
                {
                    "breach_percentage": self.breach_percentage,
                    "critical_percentage": self.critical_percentage,
                }
            )

    def to_dict(self) -> dict:
        return {
            "appetite_threshold": self.appetite_threshold,
            "warning_percentage": self.warning_percentage,
            "breach_percentage": self.breach_percentage,
            "critical_percentage": self.critical_percentage,
        }


@dataclass(frozen=True)
class VarianceResult:
    """Output of a single classification."""
    variance_status: VarianceStatus
    variance_percentage: float
    threshold_value: float


class VarianceCalculator:
    """
    Pure functions for variance classification.

    Stateless utility class - every classification decision lives here so
    ingestion and band edits cannot disagree.
    """

    @staticmethod
    def variance_percentage(actual_value: float, band: ToleranceBand) -> float:
        """
        Signed deviation from the threshold as a fraction of it.

        Positive means the reading is over the threshold.
        """
        return (actual_value - band.appetite_threshold) / band.appetite_threshold

    @staticmethod
    def classify(actual_value: float, band: ToleranceBand) -> VarianceResult:
        """
        Classify a reading against a tolerance band.

        Evaluated in precedence order, first match wins:
        1. |variance| >= breach_percentage  -> breach
        2. |variance| >= warning_percentage -> warning
        3. otherwise                        -> within_appetite

        Raises:
            ConfigurationException: if the reading is not a finite number
        """
        if not math.isfinite(actual_value):
            raise ConfigurationException(
                "actual_value must be a finite number",
                {"actual_value": actual_value}
            )

        variance = VarianceCalculator.variance_percentage(actual_value, band)
        magnitude = abs(variance)

        if magnitude >= band.breach_percentage:
            status = VarianceStatus.BREACH
        elif magnitude >= band.warning_percentage:
            status = VarianceStatus.WARNING
        else:
            status = VarianceStatus.WITHIN_APPETITE

        return VarianceResult(
            variance_status=status,
            variance_percentage=variance,
            threshold_value=band.appetite_threshold,
        )

    @staticmethod
    def breach_type_for(
        status: VarianceStatus,
        variance_percentage: float,
        band: ToleranceBand
    ) -> Optional[BreachType]:
        """
        Map a variance status to the breach notification type it warrants.

        Returns None for readings within appetite.
        """
        if status == VarianceStatus.WARNING:
            return BreachType.WARNING
        if status == VarianceStatus.BREACH:
            if band.critical_percentage is not None and abs(variance_percentage) >= band.critical_percentage:
                return BreachType.CRITICAL
            return BreachType.BREACH
        return None
