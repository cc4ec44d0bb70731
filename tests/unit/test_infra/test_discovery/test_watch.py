"""Tests for the ServiceWatch polling loop.

The watch is driven by a scripted catalog: each call to ``nodes()`` consumes
one step (a result, an exception, or BLOCK to hang until the task is
cancelled). When the script runs out the catalog cancels the watch's token,
so ``run()`` always terminates.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from consul_discovery.core.exceptions import ConsulConnectionError, MalformedPayloadError
from consul_discovery.infra.discovery import (
    CancellationToken,
    CompletionReason,
    IndexedResult,
    NodeService,
    Poll,
    ServiceWatch,
)
from consul_discovery.infra.metrics import REGISTRY

BLOCK = object()


def _active() -> float:
    return REGISTRY.get_sample_value("consul_watch_active_subscriptions")


def _instance(service_id: str, port: int = 8080) -> NodeService:
    return NodeService(service_id=service_id, service_name="web", service_port=port)


class ScriptedCatalog:
    """Catalog double returning scripted results and recording every query."""

    def __init__(self, steps: list[Any], events: list[tuple[str, Any]], token: CancellationToken) -> None:
        self.steps = list(steps)
        self.events = events
        self.token = token
        self.polls: list[Poll | None] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.last_index = 0

    async def nodes(self, service_name, datacenter=None, poll=None):
        self.polls.append(poll)
        self.events.append(("query", poll))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if not self.steps:
                self.token.cancel()
                return IndexedResult(self.last_index, [])
            step = self.steps.pop(0)
            if step is BLOCK:
                await asyncio.Event().wait()
            if isinstance(step, Exception):
                raise step
            self.last_index = step[0]
            return IndexedResult(*step)
        finally:
            self.in_flight -= 1


class Recorder:
    """Subscriber callbacks and fake sleep writing to one shared event log."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.results = []
        self.completions: list[CompletionReason] = []

    def on_next(self, result) -> None:
        self.results.append(result)
        self.events.append(("next", result.success))

    def on_complete(self, reason: CompletionReason) -> None:
        self.completions.append(reason)
        self.events.append(("complete", reason))

    async def sleep(self, seconds: float) -> None:
        self.events.append(("sleep", seconds))


def _watch(steps: list[Any], recorder: Recorder, **kwargs) -> tuple[ServiceWatch, ScriptedCatalog]:
    token = CancellationToken()
    catalog = ScriptedCatalog(steps, recorder.events, token)
    watch = ServiceWatch(
        catalog,
        "web",
        kwargs.pop("on_next", recorder.on_next),
        kwargs.pop("on_complete", recorder.on_complete),
        token,
        sleep=recorder.sleep,
        **kwargs,
    )
    return watch, catalog


@pytest.mark.unit
@pytest.mark.asyncio
class TestIndexHandling:
    """Test how the watch chains blocking-query indexes."""

    async def test_first_query_has_no_index(self):
        """Test the first query is sent without an index."""
        recorder = Recorder()
        watch, catalog = _watch([(5, [])], recorder)

        await watch.run()

        assert catalog.polls[0] is None

    async def test_each_query_uses_previous_index(self):
        """Test each query carries the index of the previous result."""
        recorder = Recorder()
        watch, catalog = _watch(
            [(5, [_instance("a")]), (7, [_instance("a"), _instance("b")]), (9, [_instance("b")])],
            recorder,
        )

        await watch.run()

        assert catalog.polls == [None, Poll(5, "10m"), Poll(7, "10m"), Poll(9, "10m")]
        assert [[i.service_id for i in r.data] for r in recorder.results] == [["a"], ["a", "b"], ["b"]]

    async def test_configured_wait_is_sent(self):
        """Test the configured wait is sent with the index."""
        recorder = Recorder()
        watch, catalog = _watch([(5, [])], recorder, wait="30s")

        await watch.run()

        assert catalog.polls[1] == Poll(5, "30s")

    async def test_index_reset_after_failure(self):
        """Test the query after a failure is sent without an index."""
        recorder = Recorder()
        watch, catalog = _watch(
            [(5, []), MalformedPayloadError("oops", status_code=500), (6, []), (7, [])],
            recorder,
        )

        await watch.run()

        assert catalog.polls == [None, Poll(5, "10m"), None, Poll(6, "10m"), Poll(7, "10m")]

    async def test_unchanged_index_is_delivered_again(self):
        """Test a result with an unchanged index is still delivered."""
        recorder = Recorder()
        watch, catalog = _watch([(5, [_instance("a")]), (5, [_instance("a")])], recorder)

        await watch.run()

        assert len(recorder.results) == 2
        assert catalog.polls[2] == Poll(5, "10m")


@pytest.mark.unit
@pytest.mark.asyncio
class TestFailureHandling:
    """Test delivery of failures and the retry back-off."""

    async def test_transport_failure_backs_off_then_requeries_without_index(self):
        """Test a failure is delivered, then the watch sleeps and re-queries."""
        recorder = Recorder()
        error = ConsulConnectionError("Failed to connect to consul API @ 127.0.0.1:8500")
        watch, _ = _watch([(5, [_instance("a")]), error, (8, [_instance("a")])], recorder)

        await watch.run()

        assert recorder.events == [
            ("query", None),
            ("next", True),
            ("query", Poll(5, "10m")),
            ("next", False),
            ("sleep", 5.0),
            ("query", None),
            ("next", True),
            ("query", Poll(8, "10m")),
            ("complete", CompletionReason.CANCELLATION_REQUESTED),
        ]
        assert recorder.results[1].error is error

    async def test_retry_interval_is_configurable(self):
        """Test the retry interval is configurable."""
        recorder = Recorder()
        watch, _ = _watch([ConsulConnectionError("down")], recorder, retry_interval=0.25)

        await watch.run()

        assert ("sleep", 0.25) in recorder.events

    async def test_repeated_failures_keep_retrying(self):
        """Test the watch keeps retrying through consecutive failures."""
        recorder = Recorder()
        errors = [ConsulConnectionError(f"down {n}") for n in range(4)]
        watch, catalog = _watch([*errors, (3, [])], recorder)

        await watch.run()

        assert [r.success for r in recorder.results] == [False, False, False, False, True]
        assert catalog.polls[:5] == [None] * 5
        assert recorder.events.count(("sleep", 5.0)) == 4

    async def test_unexpected_exception_is_delivered(self):
        """Test exceptions outside ConsulError are delivered as failures."""
        recorder = Recorder()
        watch, _ = _watch([RuntimeError("bug"), (2, [])], recorder)

        await watch.run()

        assert isinstance(recorder.results[0].error, RuntimeError)
        assert recorder.results[1].success


@pytest.mark.unit
@pytest.mark.asyncio
class TestSequencing:
    """Test that queries never overlap and follow delivery."""

    async def test_single_query_in_flight(self):
        """Test queries never overlap."""
        recorder = Recorder()

        async def slow_on_next(result):
            await asyncio.sleep(0.01)
            recorder.on_next(result)

        watch, catalog = _watch(
            [(1, []), (2, []), ConsulConnectionError("down"), (3, [])],
            recorder,
            on_next=slow_on_next,
        )

        await watch.run()

        assert catalog.max_in_flight == 1

    async def test_query_starts_after_async_delivery(self):
        """Test the next query waits for an async on_next to finish."""
        recorder = Recorder()

        async def slow_on_next(result):
            await asyncio.sleep(0.01)
            recorder.on_next(result)

        watch, _ = _watch([(1, []), (2, [])], recorder, on_next=slow_on_next)

        await watch.run()

        kinds = [kind for kind, _ in recorder.events]
        assert kinds == ["query", "next", "query", "next", "query", "complete"]

    async def test_callback_exception_does_not_stop_watch(self):
        """Test an on_next exception does not end the watch."""
        recorder = Recorder()
        calls = []

        def failing_on_next(result):
            calls.append(result)
            raise ValueError("subscriber bug")

        watch, catalog = _watch([(1, []), (2, [])], recorder, on_next=failing_on_next)

        await watch.run()

        assert len(calls) == 2
        assert recorder.completions == [CompletionReason.CANCELLATION_REQUESTED]

    async def test_async_on_complete_is_awaited(self):
        """Test an async on_complete is awaited."""
        recorder = Recorder()
        completed = []

        async def on_complete(reason):
            await asyncio.sleep(0)
            completed.append(reason)

        watch, _ = _watch([(1, [])], recorder, on_complete=on_complete)

        await watch.run()

        assert completed == [CompletionReason.CANCELLATION_REQUESTED]
        assert watch.completed


@pytest.mark.unit
@pytest.mark.asyncio
class TestCancellation:
    """Test cooperative and task cancellation."""

    async def test_cancel_stops_deliveries(self):
        """Test cancelling stops further deliveries."""
        recorder = Recorder()
        token_holder: list[CancellationToken] = []

        def on_next(result):
            recorder.on_next(result)
            if len(recorder.results) == 2:
                token_holder[0].cancel()

        watch, catalog = _watch([(1, []), (2, []), (3, []), (4, [])], recorder, on_next=on_next)
        token_holder.append(watch.token)

        await watch.run()

        assert len(recorder.results) == 2
        assert len(catalog.polls) == 3
        assert recorder.completions == [CompletionReason.CANCELLATION_REQUESTED]
        assert recorder.events[-1] == ("complete", CompletionReason.CANCELLATION_REQUESTED)

    async def test_cancel_twice_completes_once(self):
        """Test cancelling twice completes once."""
        recorder = Recorder()

        def on_next(result):
            recorder.on_next(result)
            watch.token.cancel()
            watch.token.cancel()

        watch, _ = _watch([(1, []), (2, [])], recorder, on_next=on_next)

        await watch.run()

        assert len(recorder.results) == 1
        assert recorder.completions == [CompletionReason.CANCELLATION_REQUESTED]

    async def test_cancel_during_failure_skips_delivery(self):
        """Test a failure after cancel is neither delivered nor retried."""
        recorder = Recorder()
        watch, _ = _watch([ConsulConnectionError("down")], recorder)
        watch.token.cancel()

        await watch.run()

        assert recorder.results == []
        assert ("sleep", 5.0) not in recorder.events
        assert recorder.completions == [CompletionReason.CANCELLATION_REQUESTED]

    async def test_task_cancellation_completes_unavailable(self):
        """Test task cancellation completes as unavailable."""
        recorder = Recorder()
        watch, _ = _watch([(1, []), BLOCK], recorder)

        task = asyncio.create_task(watch.run())
        while len(recorder.results) < 1:
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert recorder.completions == [CompletionReason.SERVICE_DISCOVERY_UNAVAILABLE]

    async def test_complete_is_idempotent(self):
        """Test completing an already completed watch does nothing."""
        recorder = Recorder()
        watch, _ = _watch([(1, [])], recorder)

        await watch.run()
        await watch.complete(CompletionReason.SERVICE_DISCOVERY_UNAVAILABLE)

        assert recorder.completions == [CompletionReason.CANCELLATION_REQUESTED]

    async def test_active_subscription_gauge(self):
        """Test the active subscription gauge tracks running watches."""
        recorder = Recorder()
        before = _active()
        watch, _ = _watch([(1, []), BLOCK], recorder)

        task = asyncio.create_task(watch.run())
        while not recorder.results:
            await asyncio.sleep(0)
        assert _active() == before + 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert _active() == before


@pytest.mark.unit
class TestCancellationToken:
    """Test the token itself."""

    def test_cancel_is_idempotent(self):
        """Test cancelling the token twice is harmless."""
        token = CancellationToken()
        assert not token.is_cancelled

        token.cancel()
        token.cancel()

        assert token.is_cancelled
        assert repr(token) == "CancellationToken(is_cancelled=True)"
