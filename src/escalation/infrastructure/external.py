"""
Escalation External Service Integrations
=========================================

External services for the escalation engine:
- YAML config file watcher
- Notification webhook relay (email/SMS gateway)
- APScheduler for the escalation tick and SLA scan
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.core import ConfigurationException
from src.escalation.application import IEscalationConfigProvider, INotificationSender
from src.escalation.domain import EscalationConfig
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for escalation config file changes."""

    def __init__(self, config_manager: "EscalationConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info(f"Escalation config file changed: {event.src_path}")
            self.config_manager.reload()


class EscalationConfigManager(IEscalationConfigProvider):
    """
    Thread-safe escalation configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A reload only affects executions
    started afterwards; running ones keep their policy snapshot.
    """

    def __init__(self):
        self._config: Optional[EscalationConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EscalationConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: the file exists but does not validate
        """
        self._path = path
        self._config = self._load_from_file(path)
        return self._config

    def _load_from_file(self, path: Path) -> EscalationConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning(f"Escalation config file not found: {path}, using defaults")
            return EscalationConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            config = EscalationConfig(**data)
            # Level ordering is a domain rule; check it now rather than at first use
            for policy in config.policies:
                policy.to_domain()
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid escalation config: {path}",
                {"errors": e.errors(include_url=False)}
            ) from e
        return config

    def reload(self) -> bool:
        """Reload configuration from file; the previous config stays on failure."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (ConfigurationException, yaml.YAMLError, OSError) as e:
            logger.error(f"Failed to reload escalation config: {e}")
            return False

        with self._lock:
            self._config = new_config
        logger.info("Escalation configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable
        (containers, serverless).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                f"Config file doesn't exist, skipping file watch: {self._path}. "
                "Using default escalation configuration."
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching config file: {self._path}")
        except OSError as e:
            logger.warning(
                f"File watching not available, using static config: {e}"
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> EscalationConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Escalation configuration not loaded")
            return self._config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookNotificationSender(INotificationSender):
    """
    Notification relay client with circuit breaker and retry logic.

    Posts ``{"recipients", "subject", "body"}`` to a gateway that fans
    out to email/SMS. Handles:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff_base = backoff_base
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def _build_payload(recipients: Sequence[str], subject: str, body: str) -> Dict[str, Any]:
        return {
            "recipients": list(recipients),
            "subject": subject,
            "body": body,
        }

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> bool:
        """
        Send a notification through the webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"subject": subject, "recipients": len(recipients)}
            )
            return False

        payload = self._build_payload(recipients, subject, body)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification sent",
                        extra={"subject": subject, "recipients": len(recipients)}
                    )
                    return True

                logger.warning(
                    "Notification webhook returned error status",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Notification delivery failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "subject": subject
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingNotificationSender(INotificationSender):
    """Sender used when no webhook is configured: writes the message to the log."""

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> bool:
        logger.info(
            "Notification (log only)",
            extra={"recipients": list(recipients), "subject": subject}
        )
        return True

    async def close(self) -> None:
        return None


JobFunc = Callable[[], Awaitable[Any]]


class EscalationScheduler:
    """
    Wrapper for APScheduler running the periodic escalation jobs.

    Manages the lifecycle of the scheduler and its interval jobs. Each job
    runs at most once at a time; a tick that overruns delays the next one
    instead of overlapping it.
    """

    def __init__(self, misfire_grace_time: int = 60):
        self.misfire_grace_time = misfire_grace_time
        self._jobs: Dict[str, tuple[JobFunc, int]] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def add_job(self, job_id: str, job_func: JobFunc, interval_seconds: int) -> None:
        """Register an interval job; a non-positive interval disables it."""
        if interval_seconds <= 0:
            logger.info(f"Scheduler job disabled: {job_id}")
            return
        self._jobs[job_id] = (job_func, interval_seconds)

    async def start(self) -> None:
        """Start the scheduler with the registered jobs."""
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        for job_id, (job_func, interval_seconds) in self._jobs.items():
            self._scheduler.add_job(
                job_func,
                "interval",
                seconds=interval_seconds,
                id=job_id,
                name=job_id.replace("_", " ").title(),
                misfire_grace_time=self.misfire_grace_time,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={"jobs": {job_id: interval for job_id, (_, interval) in self._jobs.items()}}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def job_ids(self) -> list[str]:
        return list(self._jobs)
