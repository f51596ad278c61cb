"""Timing for event generation.

Two independent mechanisms:

``GenerationController``
    On-demand loop, one random event per tick, no pipeline handoff. The
    Idle/Running state is owned by a single coordinator task; ``start`` and
    ``stop`` are commands sent to it, so at most one loop exists at a time.

``AutoBatchScheduler``
    Started once at boot. Waits for the next wall-clock multiple of the
    interval, then generates a variable-size batch on every following boundary.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal, Optional, Sequence, Union

from event_ingest.core.events.generator import normalize_event_types
from event_ingest.core.service import EventIngestService
from event_ingest.utils.exceptions import BadRequestException, GenerationStateError

logger = logging.getLogger(__name__)

TICK_TASK_PREFIX = "generation-tick"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Running:
    interval_seconds: float
    event_types: tuple[int, ...]
    stop_event: asyncio.Event
    task: asyncio.Task


GenerationState = Union[Idle, Running]


@dataclass
class _Command:
    kind: Literal["start", "stop", "status"]
    reply: asyncio.Future
    interval_seconds: float = 0.0
    event_types: tuple[int, ...] = field(default_factory=tuple)


def _status(state: GenerationState) -> dict[str, Any]:
    if isinstance(state, Running):
        return {
            "running": True,
            "interval_seconds": state.interval_seconds,
            "event_types": list(state.event_types),
        }
    return {"running": False, "interval_seconds": None, "event_types": []}


class GenerationController:
    def __init__(self, service: EventIngestService) -> None:
        self._service = service
        self._state: GenerationState = Idle()
        self._commands: Optional[asyncio.Queue[Optional[_Command]]] = None
        self._actor: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> GenerationState:
        return self._state

    def is_running(self) -> bool:
        return isinstance(self._state, Running)

    # -- public commands ----------------------------------------------------------

    async def start(self, interval_seconds: float, event_types: Optional[Sequence[int]] = None) -> dict[str, Any]:
        if interval_seconds is None or interval_seconds <= 0:
            raise BadRequestException("interval_seconds must be positive")
        try:
            types = tuple(int(t) for t in normalize_event_types(event_types))
        except ValueError as exc:
            raise BadRequestException(str(exc), details={"event_types": list(event_types or [])}) from None
        return await self._send("start", interval_seconds=float(interval_seconds), event_types=types)

    async def stop(self) -> dict[str, Any]:
        """Signal the running loop and return at once; the loop exits on its own."""
        return await self._send("stop")

    async def status(self) -> dict[str, Any]:
        return await self._send("status")

    async def aclose(self) -> None:
        """Stop any running loop, wait for it, then shut the coordinator down."""
        state = self._state
        if isinstance(state, Running):
            try:
                await self.stop()
            except GenerationStateError:
                pass
            try:
                await asyncio.wait_for(state.task, timeout=5.0)
            except asyncio.TimeoutError:
                state.task.cancel()
            except Exception:
                logger.exception("generation.tick_loop_failed_on_close")

        actor, queue = self._actor, self._commands
        self._actor = None
        self._commands = None
        if actor is not None and queue is not None and not actor.done():
            await queue.put(None)
            await actor

    # -- coordinator --------------------------------------------------------------

    def _ensure_actor(self) -> asyncio.Queue[Optional[_Command]]:
        if self._actor is None or self._actor.done() or self._commands is None:
            self._commands = asyncio.Queue()
            self._actor = asyncio.create_task(self._run_actor(self._commands), name="generation-controller")
        return self._commands

    async def _send(self, kind: str, **kwargs: Any) -> dict[str, Any]:
        queue = self._ensure_actor()
        reply: asyncio.Future = asyncio.get_running_loop().create_future()
        await queue.put(_Command(kind=kind, reply=reply, **kwargs))
        return await reply

    async def _run_actor(self, queue: asyncio.Queue[Optional[_Command]]) -> None:
        while True:
            cmd = await queue.get()
            if cmd is None:
                return
            try:
                result = self._handle(cmd)
            except Exception as exc:
                if not cmd.reply.done():
                    cmd.reply.set_exception(exc)
            else:
                if not cmd.reply.done():
                    cmd.reply.set_result(result)

    def _handle(self, cmd: _Command) -> dict[str, Any]:
        state = self._state
        if cmd.kind == "status":
            return _status(state)

        if cmd.kind == "start":
            if isinstance(state, Running):
                raise GenerationStateError("event generation is already running")
            stop_event = asyncio.Event()
            task = asyncio.create_task(
                self._tick_loop(cmd.interval_seconds, cmd.event_types, stop_event),
                name=f"{TICK_TASK_PREFIX}:{cmd.interval_seconds}",
            )
            self._state = Running(
                interval_seconds=cmd.interval_seconds,
                event_types=cmd.event_types,
                stop_event=stop_event,
                task=task,
            )
            logger.info(
                "generation.started interval_s=%s event_types=%s", cmd.interval_seconds, list(cmd.event_types)
            )
            return _status(self._state)

        if cmd.kind == "stop":
            if not isinstance(state, Running):
                raise GenerationStateError("event generation is not running")
            state.stop_event.set()
            self._state = Idle()
            logger.info("generation.stopped")
            return _status(self._state)

        raise ValueError(f"unknown command: {cmd.kind!r}")

    async def _tick_loop(self, interval: float, event_types: tuple[int, ...], stop_event: asyncio.Event) -> None:
        generator = self._service.generator
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, next_tick - loop.time()))
                return
            except asyncio.TimeoutError:
                pass
            # Stop wins over a tick that became due at the same moment.
            if stop_event.is_set():
                return
            # Fixed period; a save slower than the interval drops the missed ticks.
            next_tick += interval
            while next_tick <= loop.time():
                next_tick += interval

            event = generator.generate_one(event_types)
            try:
                filename = await self._service.save_event(event, source="controller")
            except Exception:
                logger.exception("generation.save_failed event_type=%d", event.event_type)
                continue
            logger.info("generation.event_written event_type=%d file=%s", event.event_type, filename)


def next_boundary(now: datetime, interval_seconds: int) -> datetime:
    """Next instant after ``now`` that is an exact multiple of ``interval_seconds`` since the epoch.

    A result more than one interval ahead is pulled back by one interval.
    """
    interval = int(interval_seconds)
    if interval <= 0:
        raise ValueError("interval_seconds must be positive")
    ts = now.timestamp()
    boundary = (ts // interval + 1) * interval
    if boundary - ts > interval:
        boundary -= interval
    return datetime.fromtimestamp(boundary, tz=now.tzinfo)


class AutoBatchScheduler:
    def __init__(
        self,
        service: EventIngestService,
        *,
        interval_seconds: int,
        max_batch: int,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._service = service
        self.interval_seconds = int(interval_seconds)
        self.max_batch = max(1, int(max_batch))
        self._rng = rng or random.Random()
        self._clock = clock

    def pick_batch_size(self) -> int:
        return self._rng.randint(1, self.max_batch)

    async def run_once(self) -> Optional[str]:
        count = self.pick_batch_size()
        logger.info("auto_generation.generating count=%d", count)
        try:
            prefix = await self._service.generate_test_events(count)
        except Exception:
            logger.exception("auto_generation.failed count=%d", count)
            return None
        logger.info("auto_generation.done count=%d prefix=%s", count, prefix)
        return prefix

    @staticmethod
    async def _sleep_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if ``stop_event`` fired meanwhile."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, seconds))
            return True
        except asyncio.TimeoutError:
            return stop_event.is_set()

    async def run(self, stop_event: asyncio.Event) -> None:
        interval = self.interval_seconds
        now = self._clock()
        wait_s = (next_boundary(now, interval) - now).total_seconds()
        logger.info("auto_generation.waiting wait_s=%.3f interval_s=%d", wait_s, interval)
        if await self._sleep_or_stop(stop_event, wait_s):
            return

        logger.info("auto_generation.started interval_s=%d max_events=%d", interval, self.max_batch)
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while True:
            if await self._sleep_or_stop(stop_event, next_tick - loop.time()):
                return
            # Fixed period; ticks missed while a batch was slow are dropped.
            next_tick += interval
            while next_tick <= loop.time():
                next_tick += interval
            await self.run_once()
