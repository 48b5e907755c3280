"""Buffer streamed CLI output and deliver it to a chat channel."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable

from ..engine.events import ContentEvent, ErrorEvent, InitEvent, RawEvent, ResultEvent, StreamEvent
from .chunking import DEFAULT_CHUNK_SIZE, split_message

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str], Awaitable["bool | None"]]


class BufferState(str, Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    DONE = "done"


class OutputAggregator:
    """Collect one invocation's text output and flush it in bounded chunks.

    A flush happens when the buffer reaches ``flush_threshold`` characters or
    ``flush_interval`` seconds have passed since the previous flush. Between
    those points exactly one timer is armed for the remaining interval.

    Flushes are serialised. The buffer is swapped out without yielding to the
    event loop, so text appended while chunks are being sent lands in the next
    flush. When the channel rejects a chunk, everything not yet delivered is
    put back in front of the live buffer and retried on the next cycle.
    """

    def __init__(
        self,
        send: SendFn,
        destination: str,
        *,
        session_id: str | None = None,
        flush_threshold: int = 2000,
        flush_interval: float = 3.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_delay: float = 0.5,
        forward_errors: bool = True,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._send = send
        self._destination = destination
        self._session_id = session_id
        self._created_session_id: str | None = None
        self._flush_threshold = flush_threshold
        self._flush_interval = flush_interval
        self._chunk_size = chunk_size
        self._chunk_delay = chunk_delay
        self._forward_errors = forward_errors
        self._clock = clock or time.monotonic

        self._buffer = ""
        self._last_flush = self._clock()
        self._timer: asyncio.TimerHandle | None = None
        self._timer_deadline: float | None = None
        self._timer_tasks: set[asyncio.Task] = set()
        self._flush_lock = asyncio.Lock()
        self._done = False
        self._saw_result = False

        self.delivered_chunks = 0
        self.failed_flushes = 0

    @property
    def state(self) -> BufferState:
        if self._done:
            return BufferState.DONE
        return BufferState.ACCUMULATING if self._buffer else BufferState.EMPTY

    @property
    def buffered(self) -> str:
        return self._buffer

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def created_session_id(self) -> str | None:
        """Id announced by the runner's one-time "created" signal, if any."""

        return self._created_session_id

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    @property
    def timer_deadline(self) -> float | None:
        """Event-loop time at which the pending timer fires."""

        return self._timer_deadline

    @property
    def saw_result(self) -> bool:
        return self._saw_result

    def on_session_created(self, session_id: str) -> None:
        self._session_id = session_id
        self._created_session_id = session_id
        logger.debug("Captured new session id", extra={"session_id": session_id})

    async def handle_event(self, event: StreamEvent) -> None:
        if isinstance(event, ContentEvent):
            self.append(event.text)
        elif isinstance(event, RawEvent):
            if event.payload is None:
                self.append(event.text + "\n")
        elif isinstance(event, ErrorEvent):
            if self._forward_errors:
                self.append(f"\n⚠️ Error: {event.message}\n")
        elif isinstance(event, ResultEvent):
            self._saw_result = True
        elif isinstance(event, InitEvent):
            if event.session_id and self._session_id is None:
                self._session_id = event.session_id
        await self._flush_if_needed()

    def append(self, text: str) -> None:
        if not text:
            return
        if self._done:
            logger.warning(
                "Output arrived after completion",
                extra={"destination": self._destination, "chars": len(text)},
            )
            return
        self._buffer += text

    async def _flush_if_needed(self) -> None:
        if self._done or not self._buffer:
            return
        elapsed = self._clock() - self._last_flush
        if len(self._buffer) >= self._flush_threshold or elapsed >= self._flush_interval:
            await self.flush()
        else:
            self._arm_timer(self._flush_interval - elapsed)

    def _arm_timer(self, delay: float) -> None:
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer_deadline = loop.time() + delay
        self._timer = loop.call_later(delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._timer_deadline = None

    def _on_timer(self) -> None:
        self._timer = None
        self._timer_deadline = None
        if self._done or not self._buffer:
            return
        task = asyncio.ensure_future(self.flush())
        self._timer_tasks.add(task)
        task.add_done_callback(self._timer_tasks.discard)

    async def flush(self) -> bool:
        """Deliver everything buffered so far. Returns ``False`` on a delivery failure."""

        async with self._flush_lock:
            self._cancel_timer()
            if not self._buffer:
                return True

            captured = self._buffer
            self._buffer = ""
            self._last_flush = self._clock()

            chunks = split_message(captured, self._chunk_size)
            delivered = 0
            for index, chunk in enumerate(chunks):
                if index and self._chunk_delay:
                    await asyncio.sleep(self._chunk_delay)
                if not await self._deliver(chunk):
                    break
                delivered += 1

            if delivered == len(chunks):
                logger.debug(
                    "Flushed output",
                    extra={"destination": self._destination, "chars": len(captured), "chunks": delivered},
                )
                return True

            self._buffer = "".join(chunks[delivered:]) + self._buffer
            self.failed_flushes += 1
            logger.warning(
                "Flush failed; output re-buffered",
                extra={
                    "destination": self._destination,
                    "delivered_chunks": delivered,
                    "pending_chars": len(self._buffer),
                },
            )
            if not self._done:
                self._arm_timer(self._flush_interval)
            return False

    async def _deliver(self, chunk: str) -> bool:
        try:
            result = await self._send(self._destination, chunk)
        except Exception as exc:
            logger.warning(
                "Failed to send message chunk",
                extra={"destination": self._destination, "error": str(exc)},
            )
            return False
        if result is False:
            return False
        self.delivered_chunks += 1
        return True

    async def complete(self) -> None:
        """Cancel the timer and flush what is left. Safe to call more than once."""

        if self._done:
            return
        self._done = True
        self._cancel_timer()
        if self._timer_tasks:
            await asyncio.gather(*list(self._timer_tasks), return_exceptions=True)
        if self._buffer and not await self.flush():
            logger.error(
                "Undelivered output discarded at completion",
                extra={"destination": self._destination, "chars": len(self._buffer)},
            )
        self._buffer = ""

    def destroy(self) -> None:
        """Drop buffered output without sending it."""

        self._done = True
        self._cancel_timer()
        for task in list(self._timer_tasks):
            task.cancel()
        if self._buffer:
            logger.info(
                "Discarded buffered output",
                extra={"destination": self._destination, "chars": len(self._buffer)},
            )
        self._buffer = ""


__all__ = ["BufferState", "OutputAggregator", "SendFn"]
