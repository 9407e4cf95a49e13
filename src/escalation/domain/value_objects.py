"""
Escalation Value Objects
=========================

Immutable value objects for the escalation domain.

A policy's level list is captured into every execution at creation time,
so the objects here are frozen and freely shared between executions.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from src.config import BreachType, IncidentSeverity
from src.core import ConfigurationException


@dataclass(frozen=True)
class EscalationLevel:
    """
    One tier of an escalation policy.

    ``delay_minutes`` is measured from the moment the escalation started,
    not from the previous level.
    """
    level: int
    delay_minutes: int
    recipients: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "delay_minutes": self.delay_minutes,
            "recipients": list(self.recipients),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationLevel":
        return cls(
            level=int(data["level"]),
            delay_minutes=int(data["delay_minutes"]),
            recipients=tuple(data.get("recipients", ())),
        )


def validate_levels(levels: tuple[EscalationLevel, ...]) -> None:
    """
    Check the ordering invariants of a level list.

    Raises:
        ConfigurationException: empty list, negative delay, or levels not
            strictly increasing by number and by delay
    """
    if not levels:
        raise ConfigurationException("escalation policy requires at least one level")

    if levels[0].delay_minutes < 0:
        raise ConfigurationException(
            "escalation delays must be non-negative",
            {"level": levels[0].level, "delay_minutes": levels[0].delay_minutes}
        )

    for previous, current in zip(levels, levels[1:]):
        if current.level <= previous.level:
            raise ConfigurationException(
                "escalation levels must be strictly increasing",
                {"previous": previous.level, "current": current.level}
            )
        if current.delay_minutes <= previous.delay_minutes:
            raise ConfigurationException(
                "escalation delays must be strictly increasing",
                {
                    "level": current.level,
                    "delay_minutes": current.delay_minutes,
                    "previous_delay_minutes": previous.delay_minutes,
                }
            )


@dataclass(frozen=True)
class PolicySnapshot:
    """
    The part of a policy an in-flight execution depends on.

    Captured once at execution start; editing the policy afterwards does
    not change the delays an existing execution replays.
    """
    levels: tuple[EscalationLevel, ...]
    repeat_interval_minutes: Optional[int] = None

    def __post_init__(self):
        validate_levels(self.levels)

    @property
    def first_level(self) -> EscalationLevel:
        return self.levels[0]

    @property
    def max_level(self) -> int:
        return self.levels[-1].level

    def get_level(self, level: int) -> EscalationLevel:
        for candidate in self.levels:
            if candidate.level == level:
                return candidate
        raise ConfigurationException(f"level {level} is not part of the policy snapshot")

    def next_level(self, level: int) -> Optional[EscalationLevel]:
        """The level after ``level``, or None at the last level."""
        for candidate in self.levels:
            if candidate.level > level:
                return candidate
        return None

    def to_dict(self) -> dict:
        return {
            "levels": [level.to_dict() for level in self.levels],
            "repeat_interval_minutes": self.repeat_interval_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicySnapshot":
        return cls(
            levels=tuple(EscalationLevel.from_dict(item) for item in data["levels"]),
            repeat_interval_minutes=data.get("repeat_interval_minutes"),
        )


@dataclass(frozen=True)
class EscalationPolicy:
    """A named, ordered set of escalation levels."""
    id: str
    policy_name: str
    levels: tuple[EscalationLevel, ...]
    description: str = ""
    repeat_interval_minutes: Optional[int] = None
    is_active: bool = True

    def __post_init__(self):
        validate_levels(self.levels)
        if self.repeat_interval_minutes is not None and self.repeat_interval_minutes < 0:
            raise ConfigurationException(
                "repeat_interval_minutes must be non-negative",
                {"repeat_interval_minutes": self.repeat_interval_minutes}
            )

    def snapshot(self, default_repeat_interval: Optional[int] = None) -> PolicySnapshot:
        """Freeze the level list for a new execution."""
        repeat = self.repeat_interval_minutes
        if repeat is None:
            repeat = default_repeat_interval
        return PolicySnapshot(levels=self.levels, repeat_interval_minutes=repeat or None)


class StepKind(str, Enum):
    """What a timer evaluation decided to do."""
    ADVANCE = "advance"
    REPEAT = "repeat"


@dataclass(frozen=True)
class EscalationStep:
    """A pending level transition (or last-level re-notification)."""
    kind: StepKind
    level: EscalationLevel
    due_at: datetime


class EscalationTimer:
    """
    Pure timing rules for escalation executions.

    A level becomes due once ``escalated_at + level.delay_minutes`` has
    passed and the current level has held for its full window since it was
    last notified. The second condition keeps a late or re-delivered tick
    from skipping through several levels at once.
    """

    @staticmethod
    def next_step(
        snapshot: PolicySnapshot,
        current_level: int,
        escalated_at: datetime,
        last_level_notified_at: datetime,
    ) -> Optional[EscalationStep]:
        """The next transition for an active, unacknowledged execution."""
        current = snapshot.get_level(current_level)
        upcoming = snapshot.next_level(current_level)

        if upcoming is not None:
            scheduled = escalated_at + timedelta(minutes=upcoming.delay_minutes)
            window = timedelta(minutes=upcoming.delay_minutes - current.delay_minutes)
            due_at = max(scheduled, last_level_notified_at + window)
            return EscalationStep(kind=StepKind.ADVANCE, level=upcoming, due_at=due_at)

        if snapshot.repeat_interval_minutes:
            due_at = last_level_notified_at + timedelta(minutes=snapshot.repeat_interval_minutes)
            return EscalationStep(kind=StepKind.REPEAT, level=current, due_at=due_at)

        return None


# ========== YAML configuration ==========

class EscalationLevelConfig(BaseModel):
    """Configuration for a single escalation level."""
    level: int = Field(ge=1, description="Escalation level (1-based)")
    delay_minutes: int = Field(ge=0, description="Minutes after escalation start")
    recipients: List[str] = Field(default_factory=list, description="Addresses to notify")


class EscalationPolicyConfig(BaseModel):
    """A policy seeded from the YAML file."""
    id: str
    policy_name: str
    description: str = ""
    levels: List[EscalationLevelConfig]
    repeat_interval_minutes: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True

    def to_domain(self) -> EscalationPolicy:
        return EscalationPolicy(
            id=self.id,
            policy_name=self.policy_name,
            description=self.description,
            levels=tuple(
                EscalationLevel(level=l.level, delay_minutes=l.delay_minutes, recipients=tuple(l.recipients))
                for l in self.levels
            ),
            repeat_interval_minutes=self.repeat_interval_minutes,
            is_active=self.is_active,
        )


class EscalationConfig(BaseModel):
    """
    Escalation configuration loaded from YAML.

    Holds policy seeds, which policy each breach type escalates through,
    and the SLA allowance for incidents by severity.
    """
    policies: List[EscalationPolicyConfig] = Field(default_factory=list)
    breach_policies: Dict[str, Optional[str]] = Field(
        default_factory=dict,
        description="Policy id per breach type; null means no escalation"
    )
    breach_recipients: List[str] = Field(
        default_factory=list,
        description="Addresses informed of every new breach notification"
    )
    sla_policy: Optional[str] = Field(default=None, description="Policy id for overdue incidents")
    sla_allowance_minutes: Dict[str, int] = Field(
        default_factory=dict,
        validate_default=True,
        description="Minutes from report to SLA deadline by incident severity"
    )
    default_repeat_interval_minutes: Optional[int] = Field(default=None, ge=0)

    @field_validator("breach_policies")
    @classmethod
    def validate_breach_policies(cls, v: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        """Only known breach types may be routed."""
        allowed = {t.value for t in BreachType}
        unknown = set(v) - allowed
        if unknown:
            raise ValueError(f"unknown breach types: {sorted(unknown)}")
        return v

    @field_validator("sla_allowance_minutes")
    @classmethod
    def validate_sla_allowances(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Fill in defaults for every severity."""
        defaults = {
            IncidentSeverity.CRITICAL.value: 60,
            IncidentSeverity.HIGH.value: 240,
            IncidentSeverity.MEDIUM.value: 1440,
            IncidentSeverity.LOW.value: 4320,
        }
        for severity, minutes in defaults.items():
            v.setdefault(severity, minutes)
        for severity, minutes in v.items():
            if minutes <= 0:
                raise ValueError(f"sla allowance for {severity} must be positive")
        return v

    def policy_for_breach(self, breach_type: BreachType) -> Optional[str]:
        """Policy id that a breach of this type escalates through, if any."""
        return self.breach_policies.get(BreachType(breach_type).value)

    def get_sla_minutes(self, severity: str) -> int:
        """SLA allowance for an incident severity (medium when unknown)."""
        return self.sla_allowance_minutes.get(
            severity,
            self.sla_allowance_minutes[IncidentSeverity.MEDIUM.value]
        )
