"""
Issue External Integrations
===========================

- YAML escalation policy with watchdog hot-reload
- Webhook publisher for the realtime transport (circuit breaker + retry)
- APScheduler timer driving the escalation sweep
"""

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

import yaml
import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from src.config import settings
from src.core import ConfigurationException, ExternalServiceException
from src.issues.application import IEscalationPolicyProvider, IEventPublisher, EscalationService
from src.issues.domain import DomainEvent, EscalationConfig, EscalationPolicy
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for escalation policy file changes."""

    def __init__(self, config_manager: "EscalationConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Escalation config file changed", extra={"path": event.src_path})
            self.config_manager.reload()


class EscalationConfigManager(IEscalationPolicyProvider):
    """
    Thread-safe escalation policy holder with hot-reload support.

    The watchdog thread swaps in a fully built EscalationPolicy; readers
    always see one consistent snapshot. A reload that fails validation keeps
    the previous policy.
    """

    def __init__(self, timezone_name: Optional[str] = None):
        self._tz = ZoneInfo(timezone_name or settings.business_timezone)
        self._policy: Optional[EscalationPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EscalationPolicy:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: if the file exists but is invalid
        """
        self._path = Path(path)
        policy = self._build(self._path)
        with self._lock:
            self._policy = policy
        return policy

    def _build(self, path: Path) -> EscalationPolicy:
        if not path.exists():
            logger.warning("Escalation config file not found, using defaults", extra={"path": str(path)})
            return EscalationPolicy.from_config(EscalationConfig(), self._tz)

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return EscalationPolicy.from_config(EscalationConfig(**data), self._tz)
        except (yaml.YAMLError, ValidationError, ValueError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid escalation config: {path}",
                {"error": str(e)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            policy = self._build(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload escalation config, keeping previous",
                extra={"error": e.details.get("error", e.message)}
            )
            return False

        with self._lock:
            self._policy = policy
        logger.info("Escalation configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Escalation config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.resolve().parent), recursive=False)
            self._observer.start()
            logger.info("Started watching escalation config", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Safe to call even if not watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> EscalationPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("Escalation configuration not loaded")
            return self._policy

    @property
    def config(self) -> EscalationConfig:
        return self.get_policy().config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the realtime transport.

    - CLOSED: requests pass through
    - OPEN: after N consecutive failures, reject for `recovery_timeout` seconds
    - HALF_OPEN: after the timeout, allow a trial request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookEventPublisher(IEventPublisher):
    """
    Posts domain events as JSON to the push transport's ingress webhook.

    Delivery to connected clients, reconnects and channel subscriptions are
    the transport's concern. publish() never raises.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.realtime_webhook_url
        self._timeout = timeout_seconds or settings.realtime_timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = client

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _post(self, body: dict) -> None:
        client = await self._get_client()
        response = await client.post(self._webhook_url, json=body)
        if not response.is_success:
            raise ExternalServiceException(
                "realtime-webhook",
                f"non-2xx response {response.status_code}",
                {"status_code": response.status_code}
            )

    async def publish(self, event: DomainEvent) -> bool:
        if not self._webhook_url:
            logger.debug("Realtime webhook URL not configured, skipping event")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, dropping domain event",
                extra={"issue_id": event.issue_id, "event_type": event.event_type}
            )
            return False

        body = event.to_dict()
        for attempt in range(self._max_retries):
            try:
                await self._post(body)
                self._circuit_breaker.record_success()
                logger.info(
                    "Domain event published",
                    extra={"issue_id": event.issue_id, "event_type": event.event_type}
                )
                return True
            except (httpx.HTTPError, ExternalServiceException) as e:
                logger.error(
                    "Domain event publish failed",
                    extra={"error": str(e), "attempt": attempt + 1, "issue_id": event.issue_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class EscalationScheduler:
    """
    APScheduler timer for the escalation sweep.

    One interval job with max_instances=1 and coalescing; the first run is
    delayed so the sweep does not race application startup. Overlap is also
    refused inside EscalationService itself.
    """

    JOB_ID = "escalation_sweep"

    def __init__(
        self,
        service: EscalationService,
        interval_minutes: Optional[int] = None,
        initial_delay_seconds: Optional[int] = None
    ):
        self._service = service
        self.interval_minutes = interval_minutes or settings.escalation_sweep_interval_minutes
        self.initial_delay_seconds = (
            initial_delay_seconds if initial_delay_seconds is not None
            else settings.escalation_initial_delay_seconds
        )
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def _job(self) -> None:
        try:
            await self._service.run_sweep()
        except Exception as e:
            logger.error("Escalation sweep aborted", extra={"error": str(e)})

    async def start(self) -> None:
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._job,
            "interval",
            minutes=self.interval_minutes,
            next_run_time=datetime.now(timezone.utc) + timedelta(seconds=self.initial_delay_seconds),
            id=self.JOB_ID,
            name="Escalation Sweep",
            misfire_grace_time=60,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={
                "interval_minutes": self.interval_minutes,
                "initial_delay_seconds": self.initial_delay_seconds
            }
        )

    async def trigger_now(self):
        """Run one sweep on demand; returns None if a sweep is already running."""
        return await self._service.run_sweep()

    async def stop(self) -> None:
        """
        Stop the timer, then let the in-flight sweep finish the issues it
        already started.
        """
        if not self._running:
            return

        self._service.request_shutdown()
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
        await self._service.wait_idle()

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
