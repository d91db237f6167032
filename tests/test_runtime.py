from __future__ import annotations

import asyncio

from geo_recall.adapters import NetworkResponse, PageSnapshot, StaticDom
from geo_recall.geocoding import CountryResolutionPipeline
from geo_recall.lifecycle import RoundLifecycle
from geo_recall.models import Coordinate, LifecycleState, RoundKey
from geo_recall.runtime import RoundRuntime

URL = "https://www.geoguessr.com/game/run1"


class ExplodingLifecycle(RoundLifecycle):
    def __init__(self) -> None:
        super().__init__(pipeline=CountryResolutionPipeline(), settle_delay_seconds=0)
        self.handled = 0

    async def handle(self, event) -> None:
        self.handled += 1
        if isinstance(event, NetworkResponse):
            raise RuntimeError("boom")
        await super().handle(event)


class ScriptedHost:
    def __init__(self, snapshots: list[PageSnapshot]) -> None:
        self._snapshots = snapshots
        self.calls = 0

    def snapshot(self) -> PageSnapshot:
        self.calls += 1
        return self._snapshots[min(self.calls, len(self._snapshots)) - 1]


def _page(round_number: int) -> PageSnapshot:
    return PageSnapshot(
        url=URL,
        dom=StaticDom.from_mapping({'div[data-qa="round-number"]': f"{round_number} / 5"}),
    )


def test_runtime_feeds_events_in_order() -> None:
    async def _run() -> RoundLifecycle:
        lifecycle = RoundLifecycle(pipeline=CountryResolutionPipeline(), settle_delay_seconds=0)
        runtime = RoundRuntime(lifecycle)
        await runtime.start()
        assert runtime.publish(_page(1))
        assert runtime.publish(
            NetworkResponse(url="https://www.geoguessr.com/api/v3/games/run1", body={"rounds": [{"lat": 1.0, "lng": 2.0}]})
        )
        await asyncio.wait_for(runtime.drain(), timeout=1)
        await runtime.stop()
        return lifecycle

    lifecycle = asyncio.run(_run())
    record = lifecycle.store.get(RoundKey("run1", 1))

    assert record.actual.location == Coordinate(1.0, 2.0)
    assert record.lifecycle_state == LifecycleState.ACTIVE_ROUND


def test_worker_survives_failing_event() -> None:
    async def _run() -> ExplodingLifecycle:
        lifecycle = ExplodingLifecycle()
        runtime = RoundRuntime(lifecycle)
        await runtime.start()
        runtime.publish(NetworkResponse(url="x", body=None))
        runtime.publish(_page(1))
        await asyncio.wait_for(runtime.drain(), timeout=1)
        await runtime.stop()
        return lifecycle

    lifecycle = asyncio.run(_run())

    assert lifecycle.handled == 2
    assert lifecycle.current_key == RoundKey("run1", 1)


def test_publish_never_blocks_when_queue_is_full() -> None:
    async def _run() -> list[bool]:
        runtime = RoundRuntime(RoundLifecycle(pipeline=CountryResolutionPipeline()), max_queue_size=1)
        return [runtime.publish(_page(1)), runtime.publish(_page(1))]

    assert asyncio.run(_run()) == [True, False]


def test_poll_loop_snapshots_host_page() -> None:
    host = ScriptedHost([_page(1), _page(2)])

    async def _run() -> RoundLifecycle:
        lifecycle = RoundLifecycle(pipeline=CountryResolutionPipeline())
        runtime = RoundRuntime(lifecycle, host=host, poll_interval_seconds=0.01)
        await runtime.start()
        await asyncio.sleep(0.1)
        await runtime.stop()
        return lifecycle

    lifecycle = asyncio.run(_run())

    assert host.calls >= 2
    assert lifecycle.current_key == RoundKey("run1", 2)
    assert lifecycle.store.get(RoundKey("run1", 1)).superseded is True
