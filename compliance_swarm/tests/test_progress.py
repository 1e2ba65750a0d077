"""
Tests: ProgressPublisher delivery semantics.

Run with:
    pytest compliance_swarm/tests/test_progress.py -v
"""

import asyncio

from compliance_swarm.models.enums import EventType, Phase
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.progress import ProgressEvent, ProgressPublisher


def _event(run: AssessmentRun, message: str, type: EventType = EventType.STEP) -> ProgressEvent:
    run.current_step = message
    return ProgressEvent(
        type=type,
        run_id=run.run_id,
        phase=Phase.PLANNING,
        message=message,
        snapshot=run.snapshot(),
    )


def _run() -> AssessmentRun:
    return AssessmentRun(project_id="p1", user_id="u1", framework="SOC2")


class TestSubscribers:
    def test_events_arrive_in_publish_order(self):
        publisher = ProgressPublisher()
        run = _run()

        async def scenario():
            queue = publisher.subscribe(run.run_id)
            for i in range(3):
                await publisher.publish(_event(run, f"step {i}"))
            return [queue.get_nowait().message for _ in range(3)]

        assert asyncio.run(scenario()) == ["step 0", "step 1", "step 2"]

    def test_full_queue_drops_events_without_blocking(self):
        publisher = ProgressPublisher(queue_size=2)
        run = _run()

        async def scenario():
            queue = publisher.subscribe(run.run_id)
            for i in range(5):
                await publisher.publish(_event(run, f"step {i}"))
            return queue.qsize()

        assert asyncio.run(scenario()) == 2
        assert len(publisher.history(run.run_id)) == 5

    def test_replay_delivers_history_to_late_subscribers(self):
        publisher = ProgressPublisher()
        run = _run()

        async def scenario():
            await publisher.publish(_event(run, "early"))
            queue = publisher.subscribe(run.run_id, replay=True)
            return queue.get_nowait().message

        assert asyncio.run(scenario()) == "early"

    def test_unsubscribed_queue_gets_nothing(self):
        publisher = ProgressPublisher()
        run = _run()

        async def scenario():
            queue = publisher.subscribe(run.run_id)
            publisher.unsubscribe(run.run_id, queue)
            await publisher.publish(_event(run, "late"))
            return queue.empty()

        assert asyncio.run(scenario())


class TestCallbacks:
    def test_failing_callback_does_not_interrupt_publishing(self):
        publisher = ProgressPublisher()
        run = _run()
        seen = []

        def broken(event):
            raise RuntimeError("listener crashed")

        publisher.add_callback(run.run_id, broken)
        publisher.add_callback(run.run_id, lambda event: seen.append(event.message))

        asyncio.run(publisher.publish(_event(run, "hello")))

        assert seen == ["hello"]

    def test_slow_async_callback_is_abandoned(self):
        publisher = ProgressPublisher(delivery_timeout=0.05)
        run = _run()

        async def slow(event):
            await asyncio.sleep(5)

        publisher.add_callback(run.run_id, slow)

        async def scenario():
            loop = asyncio.get_running_loop()
            started = loop.time()
            await publisher.publish(_event(run, "hello"))
            return loop.time() - started

        assert asyncio.run(scenario()) < 1


class TestReads:
    def test_latest_tracks_newest_snapshot(self):
        publisher = ProgressPublisher()
        run = _run()

        async def scenario():
            await publisher.publish(_event(run, "first"))
            await publisher.publish(_event(run, "second", EventType.ERROR))

        asyncio.run(scenario())

        assert publisher.latest(run.run_id).current_step == "second"
        assert publisher.latest("run-unknown") is None

    def test_history_is_bounded(self):
        publisher = ProgressPublisher(history_size=3)
        run = _run()

        async def scenario():
            for i in range(6):
                await publisher.publish(_event(run, f"step {i}"))

        asyncio.run(scenario())

        assert [e.message for e in publisher.history(run.run_id)] == ["step 3", "step 4", "step 5"]


class TestRetention:
    def test_late_subscriber_of_a_long_run_still_gets_complete(self):
        publisher = ProgressPublisher(queue_size=128)
        run = _run()

        async def scenario():
            for i in range(200):
                await publisher.publish(_event(run, f"step {i}"))
            await publisher.publish(_event(run, "done", EventType.COMPLETE))
            queue = publisher.subscribe(run.run_id, replay=True)
            return [queue.get_nowait() for _ in range(queue.qsize())]

        events = asyncio.run(scenario())

        assert len(events) == 128
        assert events[-1].type == EventType.COMPLETE
        assert events[0].message == "step 73"

    def test_complete_releases_callbacks(self):
        publisher = ProgressPublisher()
        run = _run()
        seen = []
        publisher.add_callback(run.run_id, lambda event: seen.append(event.message))

        async def scenario():
            await publisher.publish(_event(run, "done", EventType.COMPLETE))
            await publisher.publish(_event(run, "straggler"))

        asyncio.run(scenario())

        assert seen == ["done"]
        assert publisher.is_finished(run.run_id)

    def test_oldest_finished_runs_are_evicted(self):
        publisher = ProgressPublisher(retained_runs=2)
        runs = [_run() for _ in range(3)]

        async def scenario():
            for run in runs:
                await publisher.publish(_event(run, "done", EventType.COMPLETE))

        asyncio.run(scenario())

        assert publisher.latest(runs[0].run_id) is None
        assert publisher.history(runs[0].run_id) == []
        assert not publisher.is_finished(runs[0].run_id)
        assert [publisher.latest(r.run_id).current_step for r in runs[1:]] == ["done", "done"]

    def test_running_runs_are_never_evicted(self):
        publisher = ProgressPublisher(retained_runs=1)
        running, first, second = _run(), _run(), _run()

        async def scenario():
            await publisher.publish(_event(running, "working"))
            await publisher.publish(_event(first, "done", EventType.COMPLETE))
            await publisher.publish(_event(second, "done", EventType.COMPLETE))

        asyncio.run(scenario())

        assert publisher.latest(running.run_id).current_step == "working"
        assert publisher.latest(first.run_id) is None
