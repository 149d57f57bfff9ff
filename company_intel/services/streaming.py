from __future__ import annotations

import asyncio
import contextlib
import inspect
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from loguru import logger

from company_intel.config import settings
from company_intel.errors import is_retriable
from company_intel.models.events import EventType, StreamEvent

T = TypeVar("T")

EventSink = Callable[[StreamEvent], Awaitable[None] | None]
ProgressCallback = Callable[[int, int, str], Awaitable[None] | None]
# on_error(exc_or_message, *, retriable=None, **context)
ErrorCallback = Callable[..., Awaitable[None] | None]
Work = Callable[[ProgressCallback, ErrorCallback], Awaitable[T]]


def started(message: str, **context: Any) -> StreamEvent:
    return StreamEvent(event=EventType.STARTED, data={"message": message, **context})


def progress(current: int, total: int, message: str, **context: Any) -> StreamEvent:
    percentage = round(current / total * 100) if total > 0 else 0
    return StreamEvent(
        event=EventType.PROGRESS,
        data={
            "current": current,
            "total": total,
            "percentage": min(percentage, 100),
            "message": message,
            **context,
        },
    )


def data(payload: Any, **context: Any) -> StreamEvent:
    return StreamEvent(event=EventType.DATA, data={"payload": payload, **context})


def error(
    exc: BaseException | str,
    *,
    retriable: bool | None = None,
    terminal: bool = False,
    **context: Any,
) -> StreamEvent:
    """Error event; `retriable` defaults to what the exception reports.

    Non-terminal errors describe one failed unit (a URL, a discovery phase)
    while the operation carries on. The terminal one ends the stream.
    """
    if isinstance(exc, BaseException):
        message = str(exc) or exc.__class__.__name__
        error_type = exc.__class__.__name__
        if retriable is None:
            retriable = is_retriable(exc)
    else:
        message = exc
        error_type = "Error"
    return StreamEvent(
        event=EventType.ERROR,
        data={
            "message": message,
            "error_type": error_type,
            "retriable": bool(retriable),
            "terminal": terminal,
            **context,
        },
        terminal=terminal,
    )


def complete(summary: dict[str, Any] | None = None, **context: Any) -> StreamEvent:
    return StreamEvent(event=EventType.COMPLETE, data={"summary": summary or {}, **context}, terminal=True)


async def notify_progress(
    callback: ProgressCallback | None,
    current: int,
    total: int,
    message: str,
) -> None:
    """Invoke a sync or async progress callback; failures are logged only."""
    if callback is None:
        return
    try:
        outcome = callback(current, total, message)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        logger.warning(f"Progress callback failed ({current}/{total}): {exc}")


async def notify_error(
    callback: ErrorCallback | None,
    exc: BaseException | str,
    *,
    retriable: bool | None = None,
    **context: Any,
) -> None:
    """Report a non-fatal failure; callback failures are logged only."""
    if callback is None:
        return
    try:
        outcome = callback(exc, retriable=retriable, **context)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as callback_exc:
        logger.warning(f"Error callback failed for '{exc}': {callback_exc}")


class StreamingAdapter:
    """Wraps one unit of work in the started → progress* → terminal contract."""

    def __init__(
        self,
        sink: EventSink,
        *,
        session_id: str | None = None,
        phase: str | None = None,
    ):
        self._sink = sink
        self.context: dict[str, Any] = {}
        if session_id is not None:
            self.context["session_id"] = session_id
        if phase is not None:
            self.context["phase"] = phase
        self._terminal_sent = False

    async def emit(self, event: StreamEvent) -> bool:
        try:
            outcome = self._sink(event)
            if inspect.isawaitable(outcome):
                await outcome
            return True
        except Exception as exc:
            logger.warning(f"Failed to emit {event.event.value} event: {exc}")
            return False

    def progress_callback(self) -> ProgressCallback:
        async def _report(current: int, total: int, message: str) -> None:
            await self.emit(progress(current, total, message, **self.context))

        return _report

    def error_callback(self) -> ErrorCallback:
        async def _report(exc: BaseException | str, *, retriable: bool | None = None, **context: Any) -> None:
            await self.emit(error(exc, retriable=retriable, **{**self.context, **context}))

        return _report

    async def send_data(self, payload: Any) -> bool:
        return await self.emit(data(payload, **self.context))

    async def _terminal(self, event: StreamEvent) -> None:
        if self._terminal_sent:
            return
        self._terminal_sent = True
        await self.emit(event)

    async def run(
        self,
        work: Work[T],
        *,
        message: str = "Operation started",
        summarize: Callable[[T], dict[str, Any]] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        self._terminal_sent = False
        await self.emit(started(message, **self.context))
        try:
            result = await work(self.progress_callback(), self.error_callback())
            summary = summarize(result) if summarize is not None else {}
        except asyncio.CancelledError:
            await self._terminal(
                error("Operation cancelled", retriable=True, terminal=True, cancelled=True, **self.context)
            )
            raise
        except Exception as exc:
            logger.error(f"Streamed operation failed: {exc}")
            await self._terminal(error(exc, terminal=True, **self.context))
            raise

        cancelled = cancel_event is not None and cancel_event.is_set()
        await self._terminal(complete(summary, cancelled=cancelled, **self.context))
        return result


async def stream(
    work: Work[T],
    *,
    session_id: str | None = None,
    phase: str | None = None,
    message: str = "Operation started",
    summarize: Callable[[T], dict[str, Any]] | None = None,
    result_payload: Callable[[T], Any] | None = None,
    cancel_event: asyncio.Event | None = None,
    grace_seconds: float | None = None,
) -> AsyncIterator[StreamEvent]:
    """Run `work` in a task and yield its events until the terminal one.

    If the consumer stops early, the cancel event is set and in-flight work
    gets `grace_seconds` to wind down before the task is cancelled.
    """
    queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
    adapter = StreamingAdapter(queue.put, session_id=session_id, phase=phase)
    grace = settings.stream_cancel_grace_seconds if grace_seconds is None else grace_seconds

    async def _wrapped(report: ProgressCallback, report_error: ErrorCallback) -> T:
        result = await work(report, report_error)
        if result_payload is not None:
            await adapter.send_data(result_payload(result))
        return result

    async def _runner() -> None:
        try:
            await adapter.run(_wrapped, message=message, summarize=summarize, cancel_event=cancel_event)
        except Exception as exc:
            logger.debug(f"Stream ended with error event: {exc}")

    task = asyncio.create_task(_runner())
    try:
        while True:
            event = await queue.get()
            yield event
            if event.is_terminal:
                break
        await task
    finally:
        if not task.done() and cancel_event is not None:
            cancel_event.set()
            try:
                await asyncio.wait_for(asyncio.shield(task), grace)
            except asyncio.TimeoutError:
                logger.warning(f"Streamed work still running {grace}s after abort, cancelling")
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
