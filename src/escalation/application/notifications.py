"""
Escalation Notifications
=========================

Message rendering and fire-and-forget dispatch.

The escalation tick never waits on a send: ``NotificationDispatcher``
hands each message to a background task and keeps running. Delivery
retries belong to the sender implementation.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set

from src.core import DeliveryException
from src.escalation.domain import EscalationExecution, EscalationLevel
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class INotificationSender(ABC):
    """Outbound email/SMS relay."""

    @abstractmethod
    async def send(self, recipients: Sequence[str], subject: str, body: str) -> bool:
        """Deliver a message. True on success, False (or DeliveryException) on failure."""


@dataclass(frozen=True)
class NotificationMessage:
    recipients: tuple[str, ...]
    subject: str
    body: str
    context: Dict[str, Any]


def render_escalation_message(
    execution: EscalationExecution,
    level: EscalationLevel,
    repeat: bool = False,
) -> NotificationMessage:
    """Build the message sent to one escalation level's recipients."""
    prefix = "REMINDER" if repeat else "ESCALATED"
    subject = f"[{prefix}] Level {level.level}: {execution.alert_title}"
    lines = [
        f"Alert: {execution.alert_title}",
        f"Reason: {execution.escalation_reason}",
        f"Escalation level: {level.level} of {execution.policy_snapshot.max_level}",
        f"Escalated at: {execution.escalated_at.isoformat()}",
    ]
    if execution.assigned_to:
        lines.append(f"Assigned to: {execution.assigned_to}")
    lines.append("Acknowledge or resolve this escalation to stop further notifications.")

    return NotificationMessage(
        recipients=tuple(level.recipients),
        subject=subject,
        body="\n".join(lines),
        context={
            "execution_id": execution.id,
            "alert_id": execution.alert_id,
            "level": level.level,
        },
    )


class NotificationDispatcher:
    """
    Runs sends as background tasks and tracks their outcome.

    ``dispatch`` returns the task so callers that want a delivery count
    (the SLA scan) can await it; the tick loop ignores it.
    """

    def __init__(self, sender: INotificationSender):
        self._sender = sender
        self._pending: Set[asyncio.Task] = set()
        self.sent_count = 0
        self.failed_count = 0

    def dispatch(self, message: NotificationMessage) -> Optional[asyncio.Task]:
        if not message.recipients:
            logger.warning("Escalation level has no recipients", extra=message.context)
            return None

        task = asyncio.create_task(self._deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, message: NotificationMessage) -> bool:
        try:
            delivered = await self._sender.send(message.recipients, message.subject, message.body)
        except DeliveryException as e:
            logger.error("Notification delivery failed", extra={**message.context, "error": e.message})
            delivered = False
        except Exception as e:
            logger.error(
                "Notification sender raised unexpectedly",
                extra={**message.context, "error": str(e), "error_type": type(e).__name__}
            )
            delivered = False

        if delivered:
            self.sent_count += 1
        else:
            self.failed_count += 1
        return delivered

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> List[bool]:
        """Wait for every in-flight send; used on shutdown and in tests."""
        if not self._pending:
            return []
        return list(await asyncio.gather(*list(self._pending)))
