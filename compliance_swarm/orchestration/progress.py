"""
Progress publishing for assessment runs.

Provides:
  - ProgressEvent      → tagged event {type, run_id, phase, source, message, snapshot}
  - ProgressPublisher  → in-process event bus with bounded per-run history

Delivery semantics:
  - Events for one run are published in the order the orchestrator emits them.
  - Subscribers get bounded queues; a full queue drops the event (at-most-once,
    no retry).
  - Callbacks get one delivery attempt bounded by a timeout; failures are
    logged and never abort the run.
  - The newest snapshot per run stays available through `latest()` for
    polling after a listener disconnects.
  - A `complete` event releases the run's callbacks and subscriber list;
    history and the final snapshot are kept for the newest `retained_runs`
    finished runs only.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field

from compliance_swarm.models.enums import EventType, Phase
from compliance_swarm.models.state import RunSnapshot

logger = logging.getLogger(__name__)


class ProgressEvent(BaseModel):
    type: EventType
    run_id: str
    phase: Phase
    source: Optional[str] = None
    message: str
    snapshot: RunSnapshot
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class ProgressPublisher:
    def __init__(
        self,
        history_size: int = 256,
        queue_size: int = 128,
        delivery_timeout: float = 2.0,
        retained_runs: int = 64,
    ) -> None:
        self.history_size = history_size
        self.queue_size = queue_size
        self.delivery_timeout = delivery_timeout
        self.retained_runs = retained_runs
        self._history: dict[str, deque[ProgressEvent]] = {}
        self._latest: dict[str, RunSnapshot] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._callbacks: dict[str, list[ProgressCallback]] = {}
        self._finished: deque[str] = deque()

    # ── Listener management ──────────────────────────────

    def add_callback(self, run_id: str, callback: ProgressCallback) -> None:
        self._callbacks.setdefault(run_id, []).append(callback)

    def subscribe(self, run_id: str, replay: bool = True) -> asyncio.Queue:
        """
        Open a bounded queue for *run_id*, optionally pre-filled with history.

        Replay keeps the newest events when history outgrows the queue, so a
        late subscriber of a finished run always receives `complete`.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        if replay:
            for event in list(self._history.get(run_id, ()))[-self.queue_size:]:
                queue.put_nowait(event)
        if run_id not in self._finished:
            self._subscribers.setdefault(run_id, []).append(queue)
        return queue

    def is_finished(self, run_id: str) -> bool:
        return run_id in self._finished

    def unsubscribe(self, run_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(run_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(run_id, None)

    # ── Reads ────────────────────────────────────────────

    def history(self, run_id: str) -> list[ProgressEvent]:
        return list(self._history.get(run_id, ()))

    def latest(self, run_id: str) -> Optional[RunSnapshot]:
        return self._latest.get(run_id)

    # ── Publishing ───────────────────────────────────────

    async def publish(self, event: ProgressEvent) -> None:
        run_id = event.run_id
        history = self._history.setdefault(run_id, deque(maxlen=self.history_size))
        history.append(event)
        self._latest[run_id] = event.snapshot

        for queue in self._subscribers.get(run_id, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(f"[Progress] [{run_id}] Subscriber queue full; dropped {event.type.value} event")

        for callback in list(self._callbacks.get(run_id, [])):
            await self._deliver(callback, event)

        if event.type == EventType.ERROR:
            logger.warning(f"✗  [{run_id}] {event.phase.value}: {event.message}")
        else:
            logger.info(f"▶  [{run_id}] {event.phase.value}: {event.message}")

        if event.type == EventType.COMPLETE:
            self._release(run_id)

    def _release(self, run_id: str) -> None:
        """Drop listeners of a finished run and evict the oldest retained runs."""
        self._callbacks.pop(run_id, None)
        self._subscribers.pop(run_id, None)
        if run_id not in self._finished:
            self._finished.append(run_id)
        while len(self._finished) > self.retained_runs:
            evicted = self._finished.popleft()
            self._history.pop(evicted, None)
            self._latest.pop(evicted, None)
            logger.debug(f"[Progress] Evicted history of finished run {evicted}")

    async def _deliver(self, callback: ProgressCallback, event: ProgressEvent) -> None:
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await asyncio.wait_for(result, timeout=self.delivery_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[Progress] [{event.run_id}] Callback exceeded {self.delivery_timeout}s; event not confirmed"
            )
        except Exception as exc:
            logger.warning(f"[Progress] [{event.run_id}] Callback failed: {exc}")

