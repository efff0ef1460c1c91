from __future__ import annotations

from observatory.core.events import ListenerRegistry


def test_listeners_run_in_registration_order() -> None:
    registry: ListenerRegistry[int] = ListenerRegistry("test")
    calls = []
    registry.subscribe(lambda v: calls.append(("a", v)))
    registry.subscribe(lambda v: calls.append(("b", v)))

    registry.dispatch(1)

    assert calls == [("a", 1), ("b", 1)]


def test_unsubscribe_during_dispatch_keeps_current_pass() -> None:
    registry: ListenerRegistry[int] = ListenerRegistry("test")
    calls = []
    subs = {}

    def first(value: int) -> None:
        calls.append(("first", value))
        subs["second"].unsubscribe()

    registry.subscribe(first)
    subs["second"] = registry.subscribe(lambda v: calls.append(("second", v)))

    registry.dispatch(1)
    registry.dispatch(2)

    assert calls == [("first", 1), ("second", 1), ("first", 2)]


def test_subscription_is_idempotent_and_scoped() -> None:
    registry: ListenerRegistry[str] = ListenerRegistry("test")
    seen = []
    with registry.subscribe(seen.append) as sub:
        registry.dispatch("inside")
    sub()
    sub.unsubscribe()
    registry.dispatch("outside")

    assert seen == ["inside"]
    assert not sub.active
    assert len(registry) == 0


def test_failing_listener_does_not_stop_dispatch() -> None:
    registry: ListenerRegistry[int] = ListenerRegistry("test")
    seen = []

    def broken(_value: int) -> None:
        raise RuntimeError("boom")

    registry.subscribe(broken)
    registry.subscribe(seen.append)
    registry.dispatch(5)

    assert seen == [5]


def test_same_callable_can_subscribe_twice() -> None:
    registry: ListenerRegistry[int] = ListenerRegistry("test")
    seen = []
    first = registry.subscribe(seen.append)
    registry.subscribe(seen.append)
    first.unsubscribe()

    registry.dispatch(3)

    assert seen == [3]
