from __future__ import annotations

import threading

from hapbridge.core.dispatch import SerialDispatcher
from hapbridge.core.events import DeviceEvents, EventSource


def test_event_source_manages_handlers() -> None:
    source = EventSource("identify")
    seen: list[int] = []
    source += seen.append
    source.fire(1)
    source -= seen.append
    source -= seen.append
    source.fire(2)
    assert seen == [1]
    assert len(source) == 0


def test_failing_handler_does_not_stop_others() -> None:
    source = EventSource("subscribed")
    seen: list[str] = []

    def broken(value: str) -> None:
        raise RuntimeError("boom")

    source += broken
    source += seen.append
    source.fire("fan")
    assert seen == ["fan"]


def test_device_events_are_independent() -> None:
    events = DeviceEvents()
    identified: list[str] = []
    events.identify += identified.append
    events.subscribed.fire("ignored")
    events.identify.fire("cpu")
    assert identified == ["cpu"]
    assert len(events.subscribed) == 0


def test_dispatcher_runs_jobs_in_order_on_one_thread() -> None:
    dispatcher = SerialDispatcher()
    dispatcher.start()
    seen: list[tuple[int, str]] = []
    for index in range(20):
        dispatcher.submit(lambda i: seen.append((i, threading.current_thread().name)), index)
    dispatcher.close(timeout=5)

    assert [i for i, _ in seen] == list(range(20))
    assert {name for _, name in seen} == {"hapbridge-dispatch"}


def test_dispatcher_contains_job_failures() -> None:
    dispatcher = SerialDispatcher()
    seen: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    dispatcher.submit(broken)
    dispatcher.submit(seen.append, "after")
    dispatcher.close()
    assert seen == ["after"]


def test_dispatcher_rejects_jobs_after_close() -> None:
    dispatcher = SerialDispatcher()
    dispatcher.close()
    dispatcher.close()
    assert dispatcher.closed
    assert dispatcher.submit(print, "late") is False


def test_run_pending_drains_on_caller_until_worker_starts() -> None:
    dispatcher = SerialDispatcher()
    seen: list[int] = []
    dispatcher.submit(seen.append, 1)
    dispatcher.submit(seen.append, 2)

    assert dispatcher.run_pending() == 2
    assert seen == [1, 2]
    assert dispatcher.pending == 0

    dispatcher.start()
    assert dispatcher.run_pending() == 0
    dispatcher.close(timeout=5)
