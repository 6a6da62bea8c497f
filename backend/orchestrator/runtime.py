"""
Runtime execution shell for a single conversation.

Responsibilities:
- Own orchestrator state
- Call pure reducer
- Execute commands with side effects (capture, gateway, synthesis, timers)
- Convert adapter completions and timer expiry into events

Non-responsibilities:
- Orchestration decisions (reducer)
- Listener bookkeeping (ConversationOrchestrator)
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine, Protocol

from orchestrator.reducer import reduce
from orchestrator.commands import (
    AppendMessage,
    CancelAllTimers,
    CancelTimer,
    Command,
    LogEvent,
    NotifyPhase,
    NotifyTranscript,
    SendText,
    StartCapture,
    StartSynthesis,
    StartTimer,
    StopCapture,
    StopSynthesis,
)
from orchestrator.enums.service import Service
from orchestrator.events import (
    CaptureFailed,
    CaptureFinished,
    CaptureStarted,
    Event,
    EventType,
    NoSpeechTimeout,
    ResponseTimeout,
    SendAccepted,
    SendFailed,
    SilenceTimeout,
    SynthesisDone,
    SynthesisFailed,
    TranscriptPartial,
)
from orchestrator.state_dataclass import ConversationState
from orchestrator.timers import TimerOwner

from observability.logger import log_event
from observability.metrics import MetricTimers


if TYPE_CHECKING:
    from orchestrator.runtime_context import (
        RuntimeExecutionContext,
        TranscriptionSessionProtocol,
    )


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class TimerOwnerProtocol(Protocol):
    """Structural type of TimerOwner (tests substitute a manual fake)."""

    def arm(
        self, name: str, duration_ms: int, on_expire: Callable[[], Awaitable[None]]
    ) -> None: ...
    def disarm(self, name: str) -> bool: ...
    def disarm_all(self) -> int: ...
    def armed(self) -> tuple[str, ...]: ...
    async def aclose(self) -> None: ...


class Runtime:
    """
    Runtime execution boundary for a single conversation.

    Responsibilities:
    - Own the authoritative conversation state
    - Act as the universal event sink (user controls, adapter completions,
      gateway replies, timer expiry)
    - Invoke the pure reducer deterministically
    - Execute emitted commands with side effects

    Guarantees:
    - Reducer is always called exactly once per incoming event
    - State transitions are serialized by an asyncio.Lock
    - All side effects occur *after* state has been updated
    - Runtime never performs orchestration logic itself
    - Long operations (capture start/stop, send, speak) run as tasks and
      report back through handle_event, so stop/interrupt never wait on them
    - Capture start/stop tasks run in command order through a capture lock,
      so at most one transcription session is ever live
    """

    def __init__(
        self,
        *,
        context: RuntimeExecutionContext,
        initial_state: ConversationState | None = None,
        timers: TimerOwnerProtocol | None = None,
    ) -> None:
        self._state = initial_state or ConversationState()
        self._ctx = context
        self._timers = timers or TimerOwner(session_id=context.session_id)
        self._metrics = MetricTimers(session_id=context.session_id)

        self._lock = asyncio.Lock()
        self._capture_lock = asyncio.Lock()

        # capture run_id -> live transcription session
        self._capture_sessions: dict[int, TranscriptionSessionProtocol] = {}

        self._tasks: set[asyncio.Task[Any]] = set()
        self._reply_metric_key: str | None = None
        self._closed = False

    @property
    def state(self) -> ConversationState:
        """
        Return the current immutable conversation state.

        Consumers must never modify this state directly.
        """
        return self._state

    @property
    def timers(self) -> TimerOwnerProtocol:
        return self._timers

    async def handle_event(self, event: Event) -> tuple[Command, ...]:
        """
        Process a single event through the orchestration pipeline.

        Processing steps:
        1. Pass the current state and event to the pure reducer
        2. Atomically swap in the new state
        3. Execute all emitted commands sequentially

        This method is the *only* entry point for events affecting
        conversation state. Safe to call concurrently.

        Returns the commands the reducer emitted (empty once shut down).
        """
        async with self._lock:
            if self._closed:
                return ()
            new_state, commands = reduce(self._state, event)
            self._state = new_state

            for cmd in commands:
                await self._execute_command(cmd)
            return commands

    def spawn_event(self, event: Event) -> None:
        """
        Schedule handle_event(event) as a task.

        For synchronous callers (adapter callbacks, gateway reader) that must
        not block on the runtime lock.
        """
        if self._closed:
            return
        self._spawn(self.handle_event(event), event.event_type.value.lower())

    async def wait_idle(self) -> None:
        """Wait until every background task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Clean shutdown of runtime.

        Cancels timers and in-flight tasks and tears down any live capture
        session and synthesis. Further events are ignored.
        """
        async with self._lock:
            self._closed = True

        await self._timers.aclose()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        self._capture_sessions.clear()
        self._metrics.clear()

        try:
            await self._ctx.transcription.force_stop()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_error("transcription_force_stop_failed", exc)

        try:
            await self._ctx.synthesis.stop()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_error("synthesis_stop_failed", exc)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, StartCapture):
            self._spawn(self._run_start_capture(cmd.run_id), f"capture_start:{cmd.run_id}")

        elif isinstance(cmd, StopCapture):
            self._spawn(
                self._run_stop_capture(cmd.run_id, drain=cmd.drain),
                f"capture_stop:{cmd.run_id}",
            )

        elif isinstance(cmd, SendText):
            if self._reply_metric_key is not None:
                self._metrics.discard(self._reply_metric_key)
            self._reply_metric_key = self._metrics.start(
                "reply_latency", key=f"reply_latency:{cmd.run_id}"
            )
            self._spawn(self._run_send(cmd.run_id, cmd.text), f"send:{cmd.run_id}")

        elif isinstance(cmd, StartSynthesis):
            if self._reply_metric_key is not None:
                self._metrics.stop(self._reply_metric_key, phase=self._state.phase.value)
                self._reply_metric_key = None
            self._spawn(
                self._run_synthesis(cmd.run_id, cmd.text), f"synthesis:{cmd.run_id}"
            )

        elif isinstance(cmd, StopSynthesis):
            # Inline: adapter.stop() is prompt and never re-enters the runtime.
            try:
                await self._ctx.synthesis.stop()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log_error("synthesis_stop_failed", exc, synthesis_run_id=cmd.run_id)
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "synthesis_stop_executed",
                "session_id": self._ctx.session_id,
                "synthesis_run_id": cmd.run_id,
            })

        elif isinstance(cmd, StartTimer):
            self._timers.arm(
                cmd.timer_id,
                cmd.duration_ms,
                self._timeout_callback(cmd.timeout_event_type, cmd.run_id),
            )

        elif isinstance(cmd, CancelTimer):
            self._timers.disarm(cmd.timer_id)

        elif isinstance(cmd, CancelAllTimers):
            self._timers.disarm_all()

        elif isinstance(cmd, NotifyPhase):
            self._notify("phase", self._ctx.notify_phase, cmd.phase)

        elif isinstance(cmd, NotifyTranscript):
            self._notify("transcript", self._ctx.notify_transcript, cmd.text, cmd.is_final)

        elif isinstance(cmd, AppendMessage):
            self._ctx.history.append(cmd.message)
            self._notify("message", self._ctx.notify_message, cmd.message)

        else:
            log_event({
                "level": "WARNING",
                "ts_ms": _now_ms(),
                "event_type": "COMMAND_UNKNOWN",
                "session_id": self._ctx.session_id,
                "command_type": type(cmd).__name__,
            })

    # ------------------------------------------------------------------
    # Background operations (report back via handle_event)
    # ------------------------------------------------------------------

    async def _run_start_capture(self, run_id: int) -> None:
        failure: str | None = None

        async with self._capture_lock:
            try:
                session = await self._ctx.transcription.start(
                    self._partial_callback(run_id)
                )
            except Exception as exc:  # pylint: disable=broad-exception-caught
                failure = f"{type(exc).__name__}: {exc}"
                self._log_error("capture_start_failed", exc, capture_run_id=run_id)
            else:
                self._capture_sessions[run_id] = session

        if failure is not None:
            await self.handle_event(
                CaptureFailed(
                    event_type=EventType.CAPTURE_FAILED,
                    ts_ms=_now_ms(),
                    service=Service.CAPTURE,
                    run_id=run_id,
                    reason=failure,
                )
            )
            return

        await self.handle_event(
            CaptureStarted(
                event_type=EventType.CAPTURE_STARTED,
                ts_ms=_now_ms(),
                service=Service.CAPTURE,
                run_id=run_id,
            )
        )

    async def _run_stop_capture(self, run_id: int, *, drain: bool) -> None:
        text = ""

        async with self._capture_lock:
            session = self._capture_sessions.pop(run_id, None)
            if session is not None:
                try:
                    if drain:
                        with self._metrics.timed(
                            "capture_finalize", details={"capture_run_id": run_id}
                        ):
                            text = await session.stop()
                    else:
                        session.abort()
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    # Drain failure degrades to the last partial (reducer fallback).
                    self._log_error("capture_stop_failed", exc, capture_run_id=run_id)
                    text = ""

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "capture_stop_executed",
            "session_id": self._ctx.session_id,
            "capture_run_id": run_id,
            "drain": drain,
            "had_session": session is not None,
        })

        if drain:
            await self.handle_event(
                CaptureFinished(
                    event_type=EventType.CAPTURE_FINISHED,
                    ts_ms=_now_ms(),
                    service=Service.CAPTURE,
                    run_id=run_id,
                    text=text,
                )
            )

    async def _run_send(self, run_id: int, text: str) -> None:
        try:
            await self._ctx.gateway.send_message(text)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_error("send_failed", exc, send_run_id=run_id)
            await self.handle_event(
                SendFailed(
                    event_type=EventType.SEND_FAILED,
                    ts_ms=_now_ms(),
                    service=Service.GATEWAY,
                    run_id=run_id,
                    reason=f"{type(exc).__name__}: {exc}",
                )
            )
            return

        await self.handle_event(
            SendAccepted(
                event_type=EventType.SEND_ACCEPTED,
                ts_ms=_now_ms(),
                service=Service.GATEWAY,
                run_id=run_id,
            )
        )

    async def _run_synthesis(self, run_id: int, text: str) -> None:
        try:
            await self._ctx.synthesis.speak(text)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_error("synthesis_failed", exc, synthesis_run_id=run_id)
            await self.handle_event(
                SynthesisFailed(
                    event_type=EventType.SYNTHESIS_FAILED,
                    ts_ms=_now_ms(),
                    service=Service.SYNTHESIS,
                    run_id=run_id,
                    reason=f"{type(exc).__name__}: {exc}",
                )
            )
            return

        await self.handle_event(
            SynthesisDone(
                event_type=EventType.SYNTHESIS_DONE,
                ts_ms=_now_ms(),
                service=Service.SYNTHESIS,
                run_id=run_id,
            )
        )

    # ------------------------------------------------------------------
    # Adapter / timer callbacks
    # ------------------------------------------------------------------

    def _partial_callback(self, run_id: int) -> Callable[[str], None]:
        def _on_partial(text: str) -> None:
            self.spawn_event(
                TranscriptPartial(
                    event_type=EventType.TRANSCRIPT_PARTIAL,
                    ts_ms=_now_ms(),
                    service=Service.CAPTURE,
                    run_id=run_id,
                    text=text,
                )
            )

        return _on_partial

    def _timeout_callback(
        self, timeout_event_type: EventType, run_id: int
    ) -> Callable[[], Awaitable[None]]:
        async def _on_expire() -> None:
            await self.handle_event(
                self._construct_timeout_event(timeout_event_type, run_id)
            )

        return _on_expire

    def _construct_timeout_event(
        self, timeout_event_type: EventType, run_id: int
    ) -> Event:
        """
        Construct the timeout event for an expired timer.

        The run_id is the one captured when the timer was armed, so an
        expiry that lands in a later run is stale-gated by the reducer.
        """
        ts = _now_ms()

        if timeout_event_type is EventType.SILENCE_TIMEOUT:
            return SilenceTimeout(
                event_type=EventType.SILENCE_TIMEOUT,
                ts_ms=ts,
                service=Service.CAPTURE,
                run_id=run_id,
            )

        if timeout_event_type is EventType.NO_SPEECH_TIMEOUT:
            return NoSpeechTimeout(
                event_type=EventType.NO_SPEECH_TIMEOUT,
                ts_ms=ts,
                service=Service.CAPTURE,
                run_id=run_id,
            )

        if timeout_event_type is EventType.RESPONSE_TIMEOUT:
            return ResponseTimeout(
                event_type=EventType.RESPONSE_TIMEOUT,
                ts_ms=ts,
                service=Service.GATEWAY,
                run_id=run_id,
            )

        raise ValueError(f"Unknown timeout event type: {timeout_event_type}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notify(self, kind: str, sink: Callable[..., None], *args: Any) -> None:
        try:
            sink(*args)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_error("listener_failed", exc, listener=kind)

    def _log_error(self, event_type: str, exc: BaseException, **fields: Any) -> None:
        log_event({
            "level": "ERROR",
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "session_id": self._ctx.session_id,
            "error": str(exc),
            "error_type": type(exc).__name__,
            **fields,
        })
