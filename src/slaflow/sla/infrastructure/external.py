"""
SLA External Service Integrations
==================================

External services for the SLA engine:
- Notification sinks (structured log, HTTP webhook, fan-out)
- YAML policy seed loader and file watcher
- APScheduler for the periodic monitor sweep and time triggers
"""

import asyncio
import threading
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml
import httpx
from pydantic import ValidationError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from slaflow.config import settings
from slaflow.core import ConfigurationException, NotificationException
from slaflow.sla.application import (
    INotificationSink, ISLAPolicyRepository,
    SLAPolicyFile
)
from slaflow.sla.domain import Notification, SLAPolicy
from slaflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Notification sinks ==========

class LoggingNotificationSink(INotificationSink):
    """Writes notifications to the structured log. Default sink."""

    async def send(self, notification: Notification) -> bool:
        logger.info(
            "Notification",
            extra={
                "recipient": notification.recipient,
                "subject": notification.subject,
                "notification_type": notification.type,
                "priority": notification.priority,
                "link": notification.link,
            }
        )
        return True


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
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookNotificationSink(INotificationSink):
    """
    Webhook client with circuit breaker and retry logic.

    Posts each notification as JSON with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    Raises NotificationException when delivery finally fails, so callers
    that track delivery (escalation stamps) retry on the next sweep.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        backoff_base: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url or settings.notification_webhook_url
        self._max_retries = max_retries or settings.notification_max_retries
        self._timeout = timeout or settings.notification_timeout_seconds
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
    def _build_payload(notification: Notification) -> Dict[str, Any]:
        payload = asdict(notification)
        payload["metadata"] = dict(notification.metadata)
        return payload

    async def send(self, notification: Notification) -> bool:
        if not self._webhook_url:
            raise NotificationException("webhook URL not configured")

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping webhook notification",
                extra={"recipient": notification.recipient}
            )
            raise NotificationException(
                "circuit breaker open",
                {"recipient": notification.recipient}
            )

        payload = self._build_payload(notification)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Webhook notification sent",
                        extra={
                            "recipient": notification.recipient,
                            "notification_type": notification.type
                        }
                    )
                    return True

                logger.warning(
                    "Webhook returned non-2xx",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Webhook notification failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "recipient": notification.recipient
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationException(
            f"delivery failed after {self._max_retries} attempts",
            {"recipient": notification.recipient}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class CompositeNotificationSink(INotificationSink):
    """
    Fans a notification out to several sinks.

    Every sink is attempted; the first failure is re-raised afterwards.
    """

    def __init__(self, sinks: List[INotificationSink]):
        self._sinks = list(sinks)

    async def send(self, notification: Notification) -> bool:
        first_error: Optional[Exception] = None
        for sink in self._sinks:
            try:
                await sink.send(notification)
            except Exception as e:
                logger.error(
                    "Notification sink failed",
                    extra={"sink": type(sink).__name__, "error": str(e)}
                )
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
        return True

    async def close(self) -> None:
        for sink in self._sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                await close()


# ========== Policy seeding ==========

DEFAULT_POLICIES: List[Dict[str, Any]] = [
    {
        "id": "default-policy",
        "name": "Standard Support SLA",
        "description": "Default SLA policy for all tickets",
        "is_active": True,
        "is_default": True,
        "targets": {
            "low": {"response": 480, "resolution": 2880},
            "medium": {"response": 240, "resolution": 1440},
            "high": {"response": 60, "resolution": 480},
            "urgent": {"response": 15, "resolution": 240},
        },
        "use_business_hours": True,
        "business_hours": {
            "monday": {"start": "09:00", "end": "18:00"},
            "tuesday": {"start": "09:00", "end": "18:00"},
            "wednesday": {"start": "09:00", "end": "18:00"},
            "thursday": {"start": "09:00", "end": "18:00"},
            "friday": {"start": "09:00", "end": "18:00"},
            "saturday": {"start": "10:00", "end": "14:00"},
        },
        "timezone": "UTC",
        "escalation_level1": 80,
        "escalation_level2": 95,
        "pause_on_waiting": True,
        "pause_on_hold": True,
        "pause_off_hours": True,
    },
    {
        "id": "high-priority-policy",
        "name": "High Priority SLA",
        "description": "Stricter SLA policy for high priority departments",
        "is_active": True,
        "is_default": False,
        "targets": {
            "low": {"response": 120, "resolution": 720},
            "medium": {"response": 60, "resolution": 480},
            "high": {"response": 30, "resolution": 240},
            "urgent": {"response": 10, "resolution": 120},
        },
        "use_business_hours": False,
        "escalation_level1": 70,
        "escalation_level2": 90,
        "pause_on_waiting": True,
        "pause_on_hold": True,
        "pause_off_hours": False,
        "department_ids": ["priority-support"],
    },
]


class PolicyFileLoader:
    """
    Loads SLA policies from a YAML seed file into the policy repository.

    File format:
        policies:
          - id: default-policy
            name: Standard Support SLA
            is_default: true
            targets:
              medium: {response: 240, resolution: 1440}
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path else settings.sla_policies_path

    @property
    def path(self) -> Path:
        return self._path

    def parse(self) -> List[SLAPolicy]:
        """
        Parse and validate the seed file.

        Falls back to DEFAULT_POLICIES when the file does not exist.

        Raises:
            ConfigurationException: on unreadable YAML or invalid policies
        """
        if not self._path.exists():
            logger.warning(
                "SLA policy file not found, using built-in defaults",
                extra={"path": str(self._path)}
            )
            return load_policies({"policies": DEFAULT_POLICIES})

        try:
            with open(self._path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationException(
                f"Cannot read SLA policy file: {e}",
                {"path": str(self._path)}
            ) from e

        return load_policies(data, source=str(self._path))

    async def load_into(self, repository: ISLAPolicyRepository) -> List[SLAPolicy]:
        """Parse the file and upsert every policy."""
        policies = self.parse()
        for policy in policies:
            await repository.save(policy)
        logger.info(
            "SLA policies loaded",
            extra={"path": str(self._path), "count": len(policies)}
        )
        return policies


def load_policies(data: Dict[str, Any], source: str = "defaults") -> List[SLAPolicy]:
    """Validate a `{"policies": [...]}` mapping into domain policies."""
    if not isinstance(data, dict):
        raise ConfigurationException(
            "SLA policy file must contain a mapping",
            {"source": source}
        )
    try:
        policy_file = SLAPolicyFile(**data)
    except ValidationError as e:
        raise ConfigurationException(
            "Invalid SLA policy configuration",
            {"source": source, "errors": e.errors(include_url=False)}
        ) from e
    return [config.to_domain() for config in policy_file.policies]


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, watcher: "PolicyFileWatcher", path: Path):
        self.watcher = watcher
        self.path = path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info("SLA policy file changed", extra={"path": str(event.src_path)})
            self.watcher.schedule_reload()


class PolicyFileWatcher:
    """
    Hot-reloads SLA policies when the seed file changes.

    Watchdog runs its observer in a thread; reloads are handed back to the
    event loop the watcher was started on.
    """

    def __init__(
        self,
        loader: PolicyFileLoader,
        reload_callback: Callable[[List[SLAPolicy]], Awaitable[None]]
    ):
        self._loader = loader
        self._reload_callback = reload_callback
        self._observer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    async def reload(self) -> bool:
        """Re-parse the file and hand the policies to the callback."""
        try:
            policies = self._loader.parse()
            await self._reload_callback(policies)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload SLA policies",
                extra={"error": e.message, "details": e.details}
            )
            return False
        logger.info("SLA policies reloaded", extra={"count": len(policies)})
        return True

    def schedule_reload(self) -> None:
        """Thread-safe entry point used by the watchdog handler."""
        with self._lock:
            loop = self._loop
        if loop is not None and not loop.is_closed():
            asyncio.run_coroutine_threadsafe(self.reload(), loop)

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if:
        - File doesn't exist (built-in defaults are in use)
        - File watching is not supported (e.g. some containers)
        """
        path = self._loader.path
        if not path.exists():
            logger.info(
                "SLA policy file doesn't exist, skipping file watch",
                extra={"path": str(path)}
            )
            return

        with self._lock:
            self._loop = asyncio.get_running_loop()

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, path)
            self._observer.schedule(handler, str(path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(path)})
        except OSError as e:
            logger.warning(
                "File watching not available, using static policies",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        with self._lock:
            self._loop = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None


# ========== Scheduler ==========

class SLAScheduler:
    """
    Wrapper for APScheduler running the periodic SLA jobs.

    Jobs:
    - sla_monitor_sweep: SLAMonitorService.sweep
    - workflow_time_trigger: time_scheduler workflows
    """

    MONITOR_JOB_ID = "sla_monitor_sweep"
    TIME_TRIGGER_JOB_ID = "workflow_time_trigger"

    def __init__(
        self,
        monitor_interval: Optional[int] = None,
        time_trigger_interval: Optional[int] = None
    ):
        self.monitor_interval = monitor_interval or settings.sla_monitor_interval
        self.time_trigger_interval = time_trigger_interval or settings.sla_time_trigger_interval
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(
        self,
        sweep_func: Callable[[], Awaitable[Any]],
        time_trigger_func: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> None:
        """Start the scheduler with the given job coroutines."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            sweep_func,
            "interval",
            seconds=self.monitor_interval,
            id=self.MONITOR_JOB_ID,
            name="SLA Monitor Sweep",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )

        if time_trigger_func is not None:
            self._scheduler.add_job(
                time_trigger_func,
                "interval",
                seconds=self.time_trigger_interval,
                id=self.TIME_TRIGGER_JOB_ID,
                name="Workflow Time Trigger",
                misfire_grace_time=60,
                max_instances=1,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={
                "monitor_interval_seconds": self.monitor_interval,
                "time_trigger_interval_seconds": self.time_trigger_interval,
            }
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("SLA scheduler stopped")

    def job_ids(self) -> List[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running


