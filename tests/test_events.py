"""Tests for agentwire.events -- the error-isolated event bus."""

from agentwire.events import AgentEvent, EventBus


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

class TestDelivery:

    def test_callbacks_run_in_registration_order(self):
        bus = EventBus()
        calls = []
        bus.on("x", lambda p: calls.append(("first", p)))
        bus.on("x", lambda p: calls.append(("second", p)))

        bus.emit("x", 1)

        assert calls == [("first", 1), ("second", 1)]

    def test_wildcard_runs_after_named_callbacks(self):
        bus = EventBus()
        calls = []
        bus.on_any(lambda event, payload: calls.append(("any", event, payload)))
        bus.on("x", lambda p: calls.append(("named", p)))

        bus.emit("x", "payload")

        assert calls == [("named", "payload"), ("any", "x", "payload")]

    def test_other_events_are_not_delivered(self):
        bus = EventBus()
        calls = []
        bus.on("x", calls.append)

        bus.emit("y", 1)

        assert calls == []

    def test_enum_and_string_names_are_interchangeable(self):
        bus = EventBus()
        calls = []
        bus.on(AgentEvent.OPEN, calls.append)
        bus.on("ws:open", calls.append)

        bus.emit("ws:open", 1)
        bus.emit(AgentEvent.OPEN, 2)

        assert calls == [1, 1, 2, 2]
        assert bus.listener_count(AgentEvent.OPEN) == 2

    def test_wildcard_receives_plain_string_name(self):
        bus = EventBus()
        names = []
        bus.on_any(lambda event, payload: names.append(event))

        bus.emit(AgentEvent.CLOSE)

        assert names == ["ws:close"]
        assert type(names[0]) is str


# ---------------------------------------------------------------------------
# Error isolation
# ---------------------------------------------------------------------------

class TestErrorIsolation:

    def test_failing_callback_does_not_stop_later_callbacks(self):
        bus = EventBus()
        calls = []

        def broken(payload):
            raise ValueError("boom")

        bus.on("x", broken)
        bus.on("x", calls.append)
        bus.on_any(lambda event, payload: calls.append(event))

        bus.emit("x", 5)

        assert calls == [5, "x"]

    def test_failing_wildcard_does_not_raise(self):
        bus = EventBus()

        def broken(event, payload):
            raise RuntimeError("boom")

        bus.on_any(broken)
        bus.emit("x")


# ---------------------------------------------------------------------------
# Subscription management
# ---------------------------------------------------------------------------

class TestSubscriptions:

    def test_unsubscribe_is_idempotent(self):
        bus = EventBus()
        calls = []
        unsubscribe = bus.on("x", calls.append)
        bus.on("x", calls.append)

        unsubscribe()
        unsubscribe()
        bus.emit("x", 1)

        # Only the second registration of the same callable remains
        assert calls == [1]
        assert bus.listener_count("x") == 1

    def test_unsubscribe_wildcard(self):
        bus = EventBus()
        calls = []
        unsubscribe = bus.on_any(lambda event, payload: calls.append(event))

        unsubscribe()
        bus.emit("x")

        assert calls == []

    def test_subscribe_during_emit_applies_to_next_emit(self):
        bus = EventBus()
        calls = []

        def subscriber(payload):
            calls.append(("outer", payload))
            bus.on("x", lambda p: calls.append(("inner", p)))

        bus.on("x", subscriber)
        bus.emit("x", 1)
        assert calls == [("outer", 1)]

        bus.emit("x", 2)
        assert ("inner", 2) in calls

    def test_unsubscribe_during_emit_still_delivers_current_emit(self):
        bus = EventBus()
        calls = []
        unsubscribers = []

        def first(payload):
            calls.append("first")
            unsubscribers[0]()

        bus.on("x", first)
        unsubscribers.append(bus.on("x", lambda p: calls.append("second")))

        bus.emit("x")
        bus.emit("x")

        assert calls == ["first", "second", "first"]

    def test_clear_removes_everything(self):
        bus = EventBus()
        bus.on("x", print)
        bus.on_any(print)

        bus.clear()

        assert bus.listener_count() == 0

    def test_off_reports_whether_callback_was_found(self):
        bus = EventBus()
        bus.on("x", print)

        assert bus.off("x", print) is True
        assert bus.off("x", print) is False
        assert bus.off_any(print) is False
