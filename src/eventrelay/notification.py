"""
Subscriber notification engine.

Delivers one enriched event to a snapshot of matching subscriptions. Each
subscription runs in its own task with a bounded, fixed-delay retry loop,
so a failing or slow handler never holds up its peers. An optional publish
timeout bounds how long the caller waits; handlers still running when it
expires keep going in the background.

Usage:
    notifier = SubscriberNotifier(max_retries=2, retry_delay=100)
    result = await notifier.notify(event, subscriptions, PublishConfig(timeout=5000))
    if not result.success:
        print(result.failed_handlers)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, NoReturn

from .correlation import set_correlation_id
from .events import Event, EventContext
from .exceptions import ConfigurationError, PublishTimeoutError
from .logger import ConsoleLogger, LoggerPlugin
from .metrics import TimingContext

if TYPE_CHECKING:
    from .metrics import MetricsCollector
    from .registry import Subscription

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if asyncio.iscoroutine(value) or isinstance(value, Awaitable):
        return await value
    return value


@dataclass(frozen=True, slots=True)
class PublishConfig:
    """
    Per-publish options.

    Attributes:
        timeout: Longest time in milliseconds to wait for all handlers,
            retries included. None or 0 waits indefinitely.
    """

    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.timeout is None:
            return
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)):
            raise ConfigurationError(f"Publish timeout must be a number, got: {self.timeout!r}")
        if self.timeout < 0:
            raise ConfigurationError(f"Publish timeout must be non-negative, got: {self.timeout}")

    @classmethod
    def from_options(cls, options: PublishConfig | Mapping[str, Any] | None) -> PublishConfig:
        """
        Build a PublishConfig from a PublishConfig, a mapping such as
        ``{"timeout": 500}``, or None.

        Raises:
            ConfigurationError: For any other type or an unknown option
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if not isinstance(options, Mapping):
            raise ConfigurationError(
                f"Publish config must be a PublishConfig or a mapping, got: {type(options).__name__}"
            )

        unknown = sorted(set(options) - {"timeout"})
        if unknown:
            raise ConfigurationError(f"Unknown publish option(s): {', '.join(map(str, unknown))}")
        return cls(timeout=options.get("timeout"))


@dataclass(frozen=True, slots=True)
class HandlerResult:
    """Outcome of one subscription's retry loop."""

    subscription_id: str
    success: bool
    attempts: int
    error: Exception | None = None
    duration_ms: float = 0.0

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)


@dataclass(frozen=True, slots=True)
class PublishResult:
    """
    Outcome of a publish.

    Attributes:
        event_id: ID of the published event
        success: True if no handler failed after exhausting its retries
        published_at: When notification started (UTC)
        subscribers_notified: Number of subscriptions matched
        failed_handlers: IDs of subscriptions that never succeeded
        total_retries: Attempts beyond the first, summed over subscriptions
        handler_results: Per-subscription outcomes, in notification order
    """

    event_id: str
    success: bool
    published_at: datetime
    subscribers_notified: int
    failed_handlers: list[str] = field(default_factory=list)
    total_retries: int = 0
    handler_results: list[HandlerResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "success": self.success,
            "published_at": self.published_at.isoformat(),
            "subscribers_notified": self.subscribers_notified,
            "failed_handlers": list(self.failed_handlers),
            "total_retries": self.total_retries,
        }


class SubscriberNotifier:
    """
    Runs handlers for a publish with isolation, retry and timeout.

    Every subscription gets ``max_retries + 1`` attempts with a fixed
    ``retry_delay`` (milliseconds) between them. Handler exceptions are
    caught per subscription and reported in the PublishResult.
    """

    def __init__(
        self,
        max_retries: int = 0,
        retry_delay: float = 0,
        logger: LoggerPlugin | None = None,
        enable_logging: bool = True,
        metrics: MetricsCollector | None = None,
    ):
        """
        Args:
            max_retries: Extra attempts per handler after the first
            retry_delay: Pause between attempts in milliseconds
            logger: Logger for publish and handler diagnostics
            enable_logging: If False, nothing is sent to the logger
            metrics: Optional MetricsCollector for handler metrics
        """
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.logger = logger if logger is not None else ConsoleLogger()
        self.enable_logging = enable_logging
        self._metrics = metrics

        # Strong references keep handler tasks alive after a publish times out
        self._pending_tasks: set[asyncio.Task[HandlerResult]] = set()

    async def notify(
        self,
        event: Event,
        subscriptions: Sequence[Subscription],
        publish_config: PublishConfig | Mapping[str, Any] | None = None,
    ) -> PublishResult:
        """
        Deliver an event to subscriptions.

        Args:
            event: Enriched, validated event
            subscriptions: Matching subscriptions, already snapshotted
            publish_config: Optional PublishConfig or {"timeout": ms} mapping

        Returns:
            PublishResult once every retry loop has finished

        Raises:
            PublishTimeoutError: If the timeout expires first
        """
        timeout = PublishConfig.from_options(publish_config).timeout
        published_at = datetime.now(timezone.utc)

        await self._log(
            "info",
            f"Publishing event: {event.event_type}",
            {"event_id": event.event_id, "subscriber_count": len(subscriptions)},
        )

        if not subscriptions:
            return self._build_result(event, published_at, [])

        tasks = [self._start(event, subscription) for subscription in subscriptions]

        if timeout:
            done, pending = await asyncio.wait(tasks, timeout=timeout / 1000)
            if pending:
                await self._raise_timeout(event, timeout, len(done), len(tasks))
        else:
            await asyncio.wait(tasks)

        return self._build_result(event, published_at, [task.result() for task in tasks])

    def get_pending_count(self) -> int:
        """Get the number of handler tasks still running."""
        return len(self._pending_tasks)

    async def wait_for_pending(self, timeout_ms: float = 30_000) -> int:
        """
        Wait for handler tasks left running by timed-out publishes.

        Tasks are never cancelled; this only waits.

        Args:
            timeout_ms: Maximum time to wait in milliseconds

        Returns:
            Number of tasks still running afterwards
        """
        tasks = list(self._pending_tasks)
        if not tasks:
            return 0

        _, pending = await asyncio.wait(tasks, timeout=timeout_ms / 1000)
        return len(pending)

    def _start(self, event: Event, subscription: Subscription) -> asyncio.Task[HandlerResult]:
        task = asyncio.create_task(
            self._run_with_retry(event, subscription),
            name=f"eventrelay-{subscription.id}",
        )
        self._track_task(task)
        return task

    def _track_task(self, task: asyncio.Task[HandlerResult]) -> None:
        self._pending_tasks.add(task)
        task.add_done_callback(self._untrack_task)

    def _untrack_task(self, task: asyncio.Task[HandlerResult]) -> None:
        self._pending_tasks.discard(task)

    async def _run_with_retry(self, event: Event, subscription: Subscription) -> HandlerResult:
        started = time.perf_counter()
        attempts = 0

        # Runs in the task's own context copy, so this stays with the handler
        if event.correlation_id:
            set_correlation_id(event.correlation_id)

        try:
            handler_name = subscription.handler_name
            last_error: Exception | None = None

            while attempts <= self.max_retries:
                attempts += 1
                context = EventContext(subscription=subscription.ref(), attempt=attempts)
                timing = TimingContext()

                try:
                    with timing:
                        await maybe_await(subscription.handler(event, context))
                except Exception as e:  # handler errors stay with their subscription
                    last_error = e
                    self._record_attempt(event, handler_name, timing.elapsed_ms, success=False)
                    await self._log(
                        "warn",
                        f"Handler failed attempt {attempts}",
                        {
                            "event_id": event.event_id,
                            "subscription_id": subscription.id,
                            "error": str(e),
                            "attempt": attempts,
                        },
                    )

                    if attempts <= self.max_retries:
                        if self._metrics:
                            self._metrics.record_handler_retry(event.event_type, handler_name)
                        if self.retry_delay > 0:
                            await asyncio.sleep(self.retry_delay / 1000)
                    continue

                self._record_attempt(event, handler_name, timing.elapsed_ms, success=True)
                if attempts > 1:
                    await self._log(
                        "info",
                        f"Handler succeeded after {attempts - 1} retries",
                        {
                            "event_id": event.event_id,
                            "subscription_id": subscription.id,
                            "attempt": attempts,
                        },
                    )
                return HandlerResult(
                    subscription_id=subscription.id,
                    success=True,
                    attempts=attempts,
                    duration_ms=_elapsed_ms(started),
                )

            if self.enable_logging:
                await maybe_await(
                    self.logger.error(
                        "Handler failed after all retries",
                        last_error,
                        {
                            "event_id": event.event_id,
                            "subscription_id": subscription.id,
                            "max_retries": self.max_retries,
                        },
                    )
                )
            if self._metrics:
                self._metrics.record_handler_failure(event.event_type, handler_name)
            error = last_error

        except Exception as e:  # logger or metrics failures fail only this subscription
            logger.exception("Error while notifying subscription %s", subscription.id)
            error = e

        return HandlerResult(
            subscription_id=subscription.id,
            success=False,
            attempts=attempts,
            error=error,
            duration_ms=_elapsed_ms(started),
        )

    async def _raise_timeout(
        self, event: Event, timeout: float, completed: int, total: int
    ) -> NoReturn:
        await self._log(
            "warn",
            f"Event publish timed out: {event.event_type}",
            {
                "event_id": event.event_id,
                "timeout_ms": timeout,
                "completed_handlers": completed,
                "total_subscribers": total,
            },
        )
        if self._metrics:
            self._metrics.record_publish_timeout(event.event_type)

        raise PublishTimeoutError(
            event_id=event.event_id,
            timeout_ms=timeout,
            completed_handlers=completed,
            total_handlers=total,
        )

    def _record_attempt(
        self, event: Event, handler_name: str, latency_ms: float, success: bool
    ) -> None:
        if self._metrics:
            self._metrics.record_handler_execution(
                event.event_type, handler_name, latency_ms, success
            )

    def _build_result(
        self,
        event: Event,
        published_at: datetime,
        handler_results: list[HandlerResult],
    ) -> PublishResult:
        failed = [r.subscription_id for r in handler_results if not r.success]
        return PublishResult(
            event_id=event.event_id,
            success=not failed,
            published_at=published_at,
            subscribers_notified=len(handler_results),
            failed_handlers=failed,
            total_retries=sum(r.retries for r in handler_results),
            handler_results=handler_results,
        )

    async def _log(self, level: str, message: str, context: dict[str, Any]) -> None:
        if not self.enable_logging:
            return
        await maybe_await(getattr(self.logger, level)(message, context))
