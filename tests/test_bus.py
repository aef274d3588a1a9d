"""
Event Bus Tests.

Covers the public EventBus surface:
1. Configuration merge and validation
2. Subscribe / unsubscribe
3. The publish pipeline: enrichment, validation, matching, notification
4. Retry and timeout behaviour seen through publish()
5. Correlation ID propagation
"""

from __future__ import annotations

import asyncio
import uuid

import pytest

from eventrelay import (
    ConfigurationError,
    ConsoleLogger,
    CorrelationContext,
    Event,
    EventBus,
    EventSchemaValidator,
    InvalidSubscriptionError,
    PublishConfig,
    PublishTimeoutError,
    SchemaValidationError,
    ValidationResult,
    get_correlation_id,
)
from eventrelay.config import MAX_RETRIES_LIMIT, MAX_RETRY_DELAY_MS


class TestConfiguration:
    """Test constructor option merging and validation."""

    def test_defaults(self):
        bus = EventBus()
        config = bus.get_config()

        assert config.max_retries == 0
        assert config.retry_delay == 0
        assert config.enable_logging is True
        assert isinstance(bus.get_logger(), ConsoleLogger)
        assert isinstance(bus.get_validator(), EventSchemaValidator)

    def test_custom_values(self, recording_logger):
        validator = EventSchemaValidator()
        bus = EventBus(
            max_retries=3,
            retry_delay=250,
            enable_logging=False,
            logger=recording_logger,
            validator=validator,
        )
        config = bus.get_config()

        assert config.max_retries == 3
        assert config.retry_delay == 250
        assert config.enable_logging is False
        assert bus.get_logger() is recording_logger
        assert bus.get_validator() is validator

    def test_limits_are_inclusive(self):
        bus = EventBus(max_retries=MAX_RETRIES_LIMIT, retry_delay=MAX_RETRY_DELAY_MS)
        assert bus.get_config().max_retries == 100

    @pytest.mark.parametrize(
        ("options", "message"),
        [
            ({"max_retries": -1}, "Max retries must be non-negative, got: -1"),
            ({"max_retries": 101}, "Max retries exceeds maximum allowed value of 100"),
            ({"retry_delay": -5}, "Retry delay must be non-negative, got: -5"),
            ({"retry_delay": 300_001}, "Retry delay exceeds maximum allowed value of 300000ms"),
            ({"max_retries": "3"}, "Max retries must be an integer"),
            ({"max_retries": 1.5}, "Max retries must be an integer"),
            ({"max_retries": True}, "Max retries must be an integer"),
            ({"retry_delay": "10"}, "Retry delay must be a number"),
            ({"retry_delay": float("nan")}, "Retry delay must be finite"),
        ],
    )
    def test_rejects_invalid_numbers(self, options, message):
        with pytest.raises(ConfigurationError) as exc_info:
            EventBus(**options)

        assert str(exc_info.value).startswith("Failed to initialize EventBus: ")
        assert message in str(exc_info.value)

    def test_rejects_incomplete_logger(self):
        class PartialLogger:
            async def info(self, message, context=None):
                pass

        with pytest.raises(ConfigurationError) as exc_info:
            EventBus(logger=PartialLogger())

        assert "Logger must implement all required methods: info, warn, error, fatal, debug" in str(
            exc_info.value
        )

    def test_rejects_validator_without_validate(self):
        with pytest.raises(ConfigurationError):
            EventBus(validator=object())

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            EventBus(max_retries=-1)

    def test_get_config_returns_copy(self):
        bus = EventBus(max_retries=2)
        config = bus.get_config()
        config.max_retries = 50

        assert bus.get_config().max_retries == 2
        assert bus.get_config() is not bus.get_config()


class TestSubscribe:
    """Test subscription lifecycle."""

    def test_subscribe_returns_subscription(self, event_bus):
        def handler(event, context):
            pass

        subscription = event_bus.subscribe("User.*", handler)

        assert subscription.id == "sub_1"
        assert subscription.pattern == "User.*"
        assert subscription.handler is handler
        assert subscription.config == {}
        assert event_bus.get_subscription_count() == 1
        assert event_bus.has_subscriptions()

    def test_ids_are_monotonic(self, event_bus):
        ids = [event_bus.subscribe("User.*", lambda e, c: None).id for _ in range(3)]
        assert ids == ["sub_1", "sub_2", "sub_3"]

    def test_ids_are_per_bus(self):
        first, second = EventBus(), EventBus()
        assert first.subscribe("*", lambda e, c: None).id == "sub_1"
        assert second.subscribe("*", lambda e, c: None).id == "sub_1"

    def test_pattern_is_normalized(self, event_bus):
        subscription = event_bus.subscribe("  User..Created ", lambda e, c: None)
        assert subscription.pattern == "User.Created"

    def test_subscription_config_is_stored(self, event_bus):
        subscription = event_bus.subscribe("User.*", lambda e, c: None, {"group": "audit"})
        assert subscription.config == {"group": "audit"}

    @pytest.mark.parametrize(
        ("pattern", "message"),
        [
            ("", "Pattern must be a non-empty string"),
            ("   ", "Pattern must be a non-empty string"),
            (None, "Pattern must be a non-empty string"),
            (42, "Pattern must be a non-empty string"),
            ("User.**", "Invalid pattern: User.**"),
            ("*User", "Invalid pattern: *User"),
            ("User/Created", "Invalid pattern: User/Created"),
        ],
    )
    def test_invalid_pattern(self, event_bus, pattern, message):
        with pytest.raises(InvalidSubscriptionError, match="^" + message.replace("*", r"\*") + "$"):
            event_bus.subscribe(pattern, lambda e, c: None)

        assert event_bus.get_subscription_count() == 0

    def test_non_callable_handler(self, event_bus):
        with pytest.raises(InvalidSubscriptionError, match="Handler must be a function"):
            event_bus.subscribe("User.*", "not callable")

        assert event_bus.get_subscription_count() == 0

    def test_unsubscribe_true_exactly_once(self, event_bus):
        subscription = event_bus.subscribe("User.*", lambda e, c: None)

        assert event_bus.unsubscribe(subscription) is True
        assert event_bus.unsubscribe(subscription) is False
        assert event_bus.get_subscription_count() == 0
        assert not event_bus.has_subscriptions()

    def test_unsubscribe_leaves_other_registrations(self, event_bus):
        def handler(event, context):
            pass

        first = event_bus.subscribe("User.*", handler)
        event_bus.subscribe("User.*", handler)

        event_bus.unsubscribe(first)

        assert event_bus.get_subscription_count() == 1


class TestPublish:
    """Test the publish pipeline."""

    @pytest.mark.asyncio
    async def test_wildcard_subscriber_receives_enriched_event(self, event_bus):
        received = []

        async def handler(event, context):
            received.append((event, context))

        subscription = event_bus.subscribe("User.*", handler)
        result = await event_bus.publish({"event_type": "User.Created", "source": "S", "data": {}})

        assert len(received) == 1
        event, context = received[0]
        assert uuid.UUID(event.event_id).version == 4
        assert event.version == "1.0"
        assert event.metadata["priority"] == "normal"
        assert context.subscription.id == subscription.id
        assert context.subscription.pattern == "User.*"
        assert context.attempt == 1

        assert result.success
        assert result.event_id == event.event_id
        assert result.subscribers_notified == 1
        assert result.published_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_global_and_exact_both_invoked(self, event_bus, make_event):
        calls = []
        event_bus.subscribe("*", lambda e, c: calls.append("global"))
        event_bus.subscribe("Order.Paid", lambda e, c: calls.append("exact"))

        result = await event_bus.publish(make_event("Order.Paid"))

        assert sorted(calls) == ["exact", "global"]
        assert result.subscribers_notified == 2

    @pytest.mark.asyncio
    async def test_no_matching_subscribers(self, event_bus, make_event):
        event_bus.subscribe("Order.*", lambda e, c: None)

        result = await event_bus.publish(make_event("User.Created"))

        assert result.subscribers_notified == 0
        assert result.success is True
        assert result.failed_handlers == []

    @pytest.mark.asyncio
    async def test_prefix_wildcard_needs_dot_boundary(self, event_bus, make_event):
        calls = []
        event_bus.subscribe("User.*", lambda e, c: calls.append(e.event_type))

        await event_bus.publish(make_event("UserService.Started"))
        await event_bus.publish(make_event("User.Profile.Updated"))

        assert calls == ["User.Profile.Updated"]

    @pytest.mark.asyncio
    async def test_publish_complete_event(self, event_bus):
        received = []
        event_bus.subscribe("Order.Paid", lambda e, c: received.append(e))
        event = Event(
            event_id=str(uuid.uuid4()),
            event_type="Order.Paid",
            timestamp="2024-05-01T12:00:00.000Z",
            source="checkout",
            version="1.0",
            data={"order_id": 1},
        )

        result = await event_bus.publish(event)

        assert result.event_id == event.event_id
        assert received[0].data == {"order_id": 1}

    @pytest.mark.asyncio
    async def test_caller_input_not_mutated(self, event_bus, make_event):
        partial = make_event()
        snapshot = dict(partial)

        await event_bus.publish(partial)

        assert partial == snapshot


class TestPublishValidation:
    """Test that invalid events never reach handlers."""

    @pytest.mark.asyncio
    async def test_invalid_event_raises(self, event_bus):
        called = []
        event_bus.subscribe("*", lambda e, c: called.append(e))

        with pytest.raises(SchemaValidationError) as exc_info:
            await event_bus.publish({"event_type": "Invalid", "source": "", "data": {}})

        assert called == []
        assert "Field 'event_type' does not match required pattern" in exc_info.value.errors
        assert "Field 'source' must not be empty" in exc_info.value.errors
        assert exc_info.value.event_id is not None

    @pytest.mark.asyncio
    async def test_non_mapping_event(self, event_bus):
        with pytest.raises(SchemaValidationError) as exc_info:
            await event_bus.publish("User.Created")

        assert exc_info.value.errors == ["Event must be object"]

    @pytest.mark.asyncio
    async def test_missing_data(self, event_bus):
        with pytest.raises(SchemaValidationError) as exc_info:
            await event_bus.publish({"event_type": "User.Created", "source": "S"})

        assert "Missing required property 'data'" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_raising_validator_propagates(self, make_event):
        class StrictValidator:
            def validate(self, event):
                raise PermissionError("not allowed")

        bus = EventBus(validator=StrictValidator(), enable_logging=False)
        called = []
        bus.subscribe("*", lambda e, c: called.append(e))

        with pytest.raises(PermissionError):
            await bus.publish(make_event())

        assert called == []

    @pytest.mark.asyncio
    async def test_custom_sync_validator_result(self, make_event):
        class RejectAll:
            def validate(self, event):
                return ValidationResult(is_valid=False, errors=["rejected"])

        bus = EventBus(validator=RejectAll(), enable_logging=False)

        with pytest.raises(SchemaValidationError, match="rejected"):
            await bus.publish(make_event())

    @pytest.mark.asyncio
    async def test_permissive_validator(self, make_event):
        class AcceptAll:
            async def validate(self, event):
                return ValidationResult(is_valid=True)

        bus = EventBus(validator=AcceptAll(), enable_logging=False)
        received = []
        bus.subscribe("Loose", lambda e, c: received.append(e))

        result = await bus.publish(make_event("Loose"))

        assert result.success
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_mapping_validator_result(self, make_event):
        class MappingValidator:
            def validate(self, event):
                if event.data.get("ok"):
                    return {"is_valid": True}
                return {"is_valid": False, "errors": ["data.ok is required"]}

        bus = EventBus(validator=MappingValidator(), enable_logging=False)
        received = []
        bus.subscribe("User.*", lambda e, c: received.append(e))

        with pytest.raises(SchemaValidationError) as exc_info:
            await bus.publish(make_event(data={}))

        assert exc_info.value.errors == ["data.ok is required"]
        assert received == []

        result = await bus.publish(make_event(data={"ok": True}))
        assert result.success
        assert len(received) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "output, message",
        [
            (True, "unsupported result type: bool"),
            ("valid", "unsupported result type: str"),
            ({"errors": []}, "without an 'is_valid' key"),
        ],
    )
    async def test_unrecognised_validator_result(self, make_event, output, message):
        class OddValidator:
            def validate(self, event):
                return output

        bus = EventBus(validator=OddValidator(), enable_logging=False)
        called = []
        bus.subscribe("*", lambda e, c: called.append(e))

        with pytest.raises(ConfigurationError, match=message):
            await bus.publish(make_event())

        assert called == []


class TestPublishRetries:
    """Test handler failure handling through publish()."""

    @pytest.mark.asyncio
    async def test_failing_handler_reported(self, recording_logger, make_event):
        bus = EventBus(max_retries=1, retry_delay=10, logger=recording_logger)
        calls = []

        async def failing(event, context):
            calls.append(context.attempt)
            raise RuntimeError("always")

        subscription = bus.subscribe("Order.*", failing)

        result = await bus.publish(make_event("Order.Created"))

        assert result.failed_handlers == [subscription.id]
        assert result.total_retries >= 1
        assert result.success is False
        assert calls == [1, 2]

    @pytest.mark.asyncio
    async def test_flaky_handler_recovers(self, recording_logger, make_event):
        bus = EventBus(max_retries=2, retry_delay=100, logger=recording_logger)
        calls = []

        def flaky(event, context):
            calls.append(context.attempt)
            if len(calls) < 3:
                raise ConnectionError("flaky")

        bus.subscribe("Order.*", flaky)

        result = await bus.publish(make_event("Order.Created"))

        assert len(calls) == 3
        assert result.failed_handlers == []
        assert result.success

    @pytest.mark.asyncio
    async def test_k_of_n_failures(self, recording_logger, make_event):
        bus = EventBus(max_retries=2, logger=recording_logger)
        counts = {}

        def make_handler(name, fail):
            def handler(event, context):
                counts[name] = counts.get(name, 0) + 1
                if fail:
                    raise RuntimeError(name)

            return handler

        failing_ids = set()
        for index in range(5):
            fail = index in (1, 4)
            sub = bus.subscribe("User.*", make_handler(f"h{index}", fail))
            if fail:
                failing_ids.add(sub.id)

        result = await bus.publish(make_event())

        assert set(result.failed_handlers) == failing_ids
        assert result.success is False
        assert counts["h1"] == counts["h4"] == 3
        assert counts["h0"] == counts["h2"] == counts["h3"] == 1

    @pytest.mark.asyncio
    async def test_raising_logger_does_not_fail_publish(self, make_event):
        class BrokenLogger:
            async def info(self, message, context=None):
                pass

            debug = info

            async def warn(self, message, context=None):
                raise RuntimeError("log sink down")

            async def error(self, message, error=None, context=None):
                pass

            fatal = error

        bus = EventBus(max_retries=1, logger=BrokenLogger())
        received = []

        def bad(event, context):
            raise ValueError("handler broke")

        bad_subscription = bus.subscribe("Order.Paid", bad)
        bus.subscribe("Order.Paid", lambda e, c: received.append(e))

        result = await bus.publish(make_event("Order.Paid"))

        assert result.subscribers_notified == 2
        assert result.failed_handlers == [bad_subscription.id]
        assert len(received) == 1


class TestPublishTimeout:
    """Test publish timeouts."""

    @pytest.mark.asyncio
    async def test_slow_handler_times_out(self, event_bus, make_event):
        async def slow(event, context):
            await asyncio.sleep(0.5)

        event_bus.subscribe("User.*", slow)
        event_id = str(uuid.uuid4())

        with pytest.raises(PublishTimeoutError) as exc_info:
            await event_bus.publish(make_event(event_id=event_id), PublishConfig(timeout=50))

        assert exc_info.value.event_id == event_id
        assert exc_info.value.total_handlers == 1
        assert event_bus.get_pending_count() == 1

        assert await event_bus.wait_for_pending(timeout_ms=2000) == 0

    @pytest.mark.asyncio
    async def test_fast_handler_within_timeout(self, event_bus, make_event):
        async def fast(event, context):
            await asyncio.sleep(0.01)

        event_bus.subscribe("User.*", fast)

        result = await event_bus.publish(make_event(), PublishConfig(timeout=1000))

        assert result.success

    @pytest.mark.asyncio
    async def test_mapping_publish_config(self, event_bus, make_event):
        async def slow(event, context):
            await asyncio.sleep(0.5)

        event_bus.subscribe("User.*", slow)

        with pytest.raises(PublishTimeoutError) as exc_info:
            await event_bus.publish(make_event(), {"timeout": 50})

        assert exc_info.value.timeout_ms == 50
        assert await event_bus.wait_for_pending(timeout_ms=2000) == 0

    @pytest.mark.asyncio
    async def test_invalid_publish_config(self, event_bus, make_event):
        called = []
        event_bus.subscribe("User.*", lambda e, c: called.append(e))

        with pytest.raises(ConfigurationError, match="Unknown publish option"):
            await event_bus.publish(make_event(), {"timeout_ms": 50})

        with pytest.raises(ConfigurationError, match="must be a PublishConfig or a mapping"):
            await event_bus.publish(make_event(), 50)

        assert called == []


class TestConcurrency:
    """Test cooperative scheduling guarantees."""

    @pytest.mark.asyncio
    async def test_subscribe_during_publish_does_not_affect_it(self, event_bus, make_event):
        calls = []

        async def first(event, context):
            calls.append("first")
            event_bus.subscribe("User.*", late)
            await asyncio.sleep(0)

        def late(event, context):
            calls.append("late")

        event_bus.subscribe("User.*", first)

        result = await event_bus.publish(make_event())
        assert result.subscribers_notified == 1
        assert calls == ["first"]

        await event_bus.publish(make_event())
        assert calls.count("late") == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_during_publish_does_not_affect_it(self, event_bus, make_event):
        calls = []
        holder = {}

        async def first(event, context):
            calls.append("first")
            event_bus.unsubscribe(holder["second"])

        async def second(event, context):
            await asyncio.sleep(0)
            calls.append("second")

        event_bus.subscribe("User.Created", first)
        holder["second"] = event_bus.subscribe("User.*", second)

        result = await event_bus.publish(make_event())

        assert result.subscribers_notified == 2
        assert sorted(calls) == ["first", "second"]
        assert event_bus.get_subscription_count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_publishes(self, event_bus, make_event):
        received = []

        async def handler(event, context):
            await asyncio.sleep(0.001)
            received.append(event.data["n"])

        event_bus.subscribe("User.*", handler)

        results = await asyncio.gather(
            *(event_bus.publish(make_event(data={"n": n})) for n in range(50))
        )

        assert all(r.success for r in results)
        assert sorted(received) == list(range(50))


class TestCorrelation:
    """Test correlation ID propagation into published events."""

    @pytest.mark.asyncio
    async def test_context_correlation_id_is_attached(self, event_bus, make_event):
        received = []
        event_bus.subscribe("User.*", lambda e, c: received.append(e))

        with CorrelationContext("req-123"):
            await event_bus.publish(make_event())

        assert received[0].correlation_id == "req-123"

    @pytest.mark.asyncio
    async def test_explicit_correlation_id_wins(self, event_bus, make_event):
        received = []
        event_bus.subscribe("User.*", lambda e, c: received.append(e))

        with CorrelationContext("req-123"):
            await event_bus.publish(make_event(correlation_id="explicit"))

        assert received[0].correlation_id == "explicit"

    @pytest.mark.asyncio
    async def test_no_correlation_without_context(self, event_bus, make_event):
        received = []
        event_bus.subscribe("User.*", lambda e, c: received.append(e))

        await event_bus.publish(make_event())

        assert received[0].correlation_id is None

    @pytest.mark.asyncio
    async def test_complete_event_gets_context_correlation(self, event_bus, make_event):
        received = []
        event_bus.subscribe("User.*", lambda e, c: received.append(e))
        event = Event.from_dict(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "User.Created",
                "timestamp": "2024-05-01T12:00:00Z",
                "source": "S",
                "version": "1.0",
                "data": {},
            }
        )

        with CorrelationContext("ctx-7"):
            await event_bus.publish(event)

        assert received[0].correlation_id == "ctx-7"
        assert event.correlation_id is None

    @pytest.mark.asyncio
    async def test_follow_up_events_continue_the_chain(self, event_bus, make_event):
        received = []

        async def on_order(event, context):
            await event_bus.publish(make_event("Invoice.Requested"))

        event_bus.subscribe("Order.Paid", on_order)
        event_bus.subscribe("Invoice.*", lambda e, c: received.append(e))

        await event_bus.publish(make_event("Order.Paid", correlation_id="order-42"))

        assert [e.correlation_id for e in received] == ["order-42"]
        assert get_correlation_id() is None


class TestLogging:
    """Test what the bus reports to its logger."""

    @pytest.mark.asyncio
    async def test_publish_is_logged(self, event_bus, recording_logger, make_event):
        await event_bus.publish(make_event())

        assert recording_logger.messages("info") == ["Publishing event: User.Created"]

    @pytest.mark.asyncio
    async def test_logging_disabled(self, recording_logger, make_event):
        bus = EventBus(logger=recording_logger, enable_logging=False)
        bus.subscribe("*", lambda e, c: 1 / 0)

        result = await bus.publish(make_event())

        assert not result.success
        assert recording_logger.records == []
