"""
Pure conversation reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (phase, event) pair is handled or explicitly ignored (logged).
"""

# Reducer owns timer semantics; runtime must not cancel timers implicitly.
# Every phase exit emits CancelAllTimers before the next phase arms its own.

from __future__ import annotations

from dataclasses import replace
from typing import Any

from context.conversation import ChatMessage
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
from orchestrator.enums.phase import ConversationPhase
from orchestrator.enums.service import Service
from orchestrator.events import (
    CaptureFailed,
    CaptureFinished,
    CaptureStarted,
    ConversationStart,
    ConversationStop,
    Event,
    EventType,
    GatewayReply,
    Interrupt,
    NoSpeechTimeout,
    ResponseTimeout,
    SendAccepted,
    SendFailed,
    ServiceEvent,
    SilenceThresholdChanged,
    SilenceTimeout,
    SynthesisDone,
    SynthesisFailed,
    TranscriptPartial,
)
from orchestrator.run_ids import RunIds
from orchestrator.state_dataclass import ConversationState
from spec import NO_SPEECH_GUARD_MS, RESPONSE_WAIT_TIMEOUT_MS


# =============================================================================
# Invariants
# =============================================================================
# - Run IDs are bumped ONLY on new start (capture / send / synthesis)
# - Service events for a non-current run are ignored
# - At most one of {capture_active, synthesis_active} is True
# - PROCESSING implies waiting_for_reply (exactly one outstanding turn)
# - Stop is valid in every phase and always ends in IDLE with no timers

# =============================================================================
# Timer IDs
# =============================================================================

TIMER_SILENCE = "silence"
TIMER_NO_SPEECH = "no_speech"
TIMER_RESPONSE_WAIT = "response_wait"


# =============================================================================
# Small helpers
# =============================================================================

def _bump_run_id(active_runs: RunIds, service: Service) -> RunIds:
    if service is Service.CAPTURE:
        return replace(active_runs, capture=active_runs.capture + 1)
    if service is Service.GATEWAY:
        return replace(active_runs, send=active_runs.send + 1)
    if service is Service.SYNTHESIS:
        return replace(active_runs, synthesis=active_runs.synthesis + 1)
    raise ValueError(service)


def _active_run_for(active_runs: RunIds, service: Service) -> int:
    if service is Service.CAPTURE:
        return active_runs.capture
    if service is Service.GATEWAY:
        return active_runs.send
    if service is Service.SYNTHESIS:
        return active_runs.synthesis
    raise ValueError(service)


def _is_stale(state: ConversationState, event: ServiceEvent) -> bool:
    return event.run_id != _active_run_for(state.active_runs, event.service)


def _log(
    state: ConversationState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "phase": state.phase.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "run_ids": {
                "capture": state.active_runs.capture,
                "send": state.active_runs.send,
                "synthesis": state.active_runs.synthesis,
            },
            "capture_active": state.capture_active,
            "synthesis_active": state.synthesis_active,
            "waiting_for_reply": state.waiting_for_reply,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: ConversationState, event: Event, reason: str
) -> tuple[ConversationState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _phase_change(
    old: ConversationState,
    new: ConversationState,
    event: Event,
    source: str,
) -> tuple[Command, ...]:
    """NotifyPhase + state_changed log, only when the phase actually changes."""
    if old.phase is new.phase:
        return ()
    return (
        NotifyPhase(phase=new.phase),
        _log(
            new,
            event,
            "state_changed",
            {
                "from_phase": old.phase.value,
                "to_phase": new.phase.value,
                "source": source,
            },
        ),
    )


def _begin_listening(
    state: ConversationState,
    event: Event,
    source: str,
    prefix: tuple[Command, ...] = (),
) -> tuple[ConversationState, tuple[Command, ...]]:
    """
    Enter (or re-enter) LISTENING with a fresh capture run.

    Callers must have already stopped any previous capture/synthesis
    session (via `prefix` or earlier); this helper only starts the new one.
    """
    new_runs = _bump_run_id(state.active_runs, Service.CAPTURE)
    new_state = replace(
        state,
        phase=ConversationPhase.LISTENING,
        active_runs=new_runs,
        capture_active=True,
        synthesis_active=False,
        partial_text="",
        finalizing=False,
        waiting_for_reply=False,
    )

    cmds: tuple[Command, ...] = prefix + (
        CancelAllTimers(),
        StartCapture(run_id=new_runs.capture),
        StartTimer(
            timer_id=TIMER_NO_SPEECH,
            duration_ms=NO_SPEECH_GUARD_MS,
            timeout_event_type=EventType.NO_SPEECH_TIMEOUT,
            run_id=new_runs.capture,
        ),
        _log(
            new_state,
            event,
            "start_capture",
            {"capture_run_id": new_runs.capture, "source": source},
        ),
    ) + _phase_change(state, new_state, event, source)

    return new_state, _logs_last(cmds)


def _teardown(
    state: ConversationState, event: Event
) -> tuple[ConversationState, tuple[Command, ...]]:
    """
    Global stop: cancel all in-flight work, disarm all timers, go IDLE.

    Run IDs are not bumped; phase gating makes late completions of the
    torn-down runs no-ops.
    """
    cmds: list[Command] = [CancelAllTimers()]

    if state.capture_active:
        cmds.append(StopCapture(run_id=state.active_runs.capture, drain=False))
    if state.synthesis_active:
        cmds.append(StopSynthesis(run_id=state.active_runs.synthesis))

    new_state = replace(
        state,
        phase=ConversationPhase.IDLE,
        capture_active=False,
        synthesis_active=False,
        partial_text="",
        finalizing=False,
        waiting_for_reply=False,
    )

    decision = "stop_noop_idle" if state.phase is ConversationPhase.IDLE else "stop"
    cmds.append(_log(new_state, event, decision, {"from_phase": state.phase.value}))

    return new_state, _logs_last(
        tuple(cmds) + _phase_change(state, new_state, event, "user_stop")
    )


def _dispatch_turn(
    state: ConversationState,
    event: Event,
    text: str,
) -> tuple[ConversationState, tuple[Command, ...]]:
    """LISTENING -> PROCESSING with a finalized, non-empty turn."""
    new_runs = _bump_run_id(state.active_runs, Service.GATEWAY)
    new_state = replace(
        state,
        phase=ConversationPhase.PROCESSING,
        active_runs=new_runs,
        capture_active=False,
        partial_text="",
        finalizing=False,
        waiting_for_reply=True,
        turn_count=state.turn_count + 1,
    )

    return new_state, _logs_last((
        CancelAllTimers(),
        NotifyTranscript(text=text, is_final=True),
        AppendMessage(
            message=ChatMessage(role="user", text=text, timestamp=event.ts_ms)
        ),
        SendText(run_id=new_runs.send, text=text),
        StartTimer(
            timer_id=TIMER_RESPONSE_WAIT,
            duration_ms=RESPONSE_WAIT_TIMEOUT_MS,
            timeout_event_type=EventType.RESPONSE_TIMEOUT,
            run_id=new_runs.send,
        ),
        _log(
            new_state,
            event,
            "dispatch_turn",
            {"send_run_id": new_runs.send, "text_len": len(text)},
        ),
    ) + _phase_change(state, new_state, event, "turn_finalized"))


# =============================================================================
# Reducer entrypoint
# =============================================================================

def reduce(
    state: ConversationState, event: Event
) -> tuple[ConversationState, tuple[Command, ...]]:
    """
    Pure reducer for the conversation turn-taking state machine.

    Given the current state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (phase, event) pair is handled or explicitly ignored
    - Version-safe: ignores events with stale run IDs
    """

    # ------------------------------------------------------------------
    # Phase-independent events
    # ------------------------------------------------------------------
    if isinstance(event, ConversationStop):
        return _teardown(state, event)

    if isinstance(event, SilenceThresholdChanged):
        new_state = replace(state, silence_threshold_ms=event.threshold_ms)
        return new_state, (
            _log(
                new_state,
                event,
                "silence_threshold_set",
                {"threshold_ms": event.threshold_ms},
            ),
        )

    if isinstance(event, CaptureStarted):
        if _is_stale(state, event) or not state.capture_active:
            # Session came up after it was no longer wanted: close it.
            return state, (
                StopCapture(run_id=event.run_id, drain=False),
                _log(
                    state,
                    event,
                    "capture_started_unwanted",
                    {"capture_run_id": event.run_id},
                ),
            )
        return state, (
            _log(state, event, "capture_started", {"capture_run_id": event.run_id}),
        )

    if isinstance(event, SendAccepted):
        return state, (
            _log(state, event, "send_accepted", {"send_run_id": event.run_id}),
        )

    # ============================
    # IDLE
    # ============================
    if state.phase is ConversationPhase.IDLE:
        if isinstance(event, ConversationStart):
            return _begin_listening(state, event, "user_start")

        return _ignore(state, event, "idle")

    # ============================
    # LISTENING
    # ============================
    if state.phase is ConversationPhase.LISTENING:
        if isinstance(event, TranscriptPartial):
            if _is_stale(state, event):
                return _ignore(state, event, "transcript_partial_stale")
            if not state.capture_active or state.finalizing:
                return _ignore(state, event, "transcript_partial_after_stop")
            if not event.text.strip():
                return _ignore(state, event, "transcript_partial_empty")

            new_state = replace(state, partial_text=event.text)
            return new_state, _logs_last((
                CancelTimer(timer_id=TIMER_NO_SPEECH),
                StartTimer(
                    timer_id=TIMER_SILENCE,
                    duration_ms=state.silence_threshold_ms,
                    timeout_event_type=EventType.SILENCE_TIMEOUT,
                    run_id=state.active_runs.capture,
                ),
                NotifyTranscript(text=event.text, is_final=False),
                _log(
                    new_state,
                    event,
                    "transcript_partial",
                    {"text_len": len(event.text)},
                ),
            ))

        if isinstance(event, SilenceTimeout):
            if _is_stale(state, event):
                return _ignore(state, event, "silence_timeout_stale")
            if not state.capture_active or state.finalizing:
                return _ignore(state, event, "silence_timeout_after_stop")

            if state.partial_text.strip():
                new_state = replace(state, capture_active=False, finalizing=True)
                return new_state, _logs_last((
                    CancelAllTimers(),
                    StopCapture(run_id=state.active_runs.capture, drain=True),
                    _log(
                        new_state,
                        event,
                        "finalize_turn",
                        {"capture_run_id": state.active_runs.capture},
                    ),
                ))

            return _begin_listening(
                state,
                event,
                "silence_without_text",
                prefix=(StopCapture(run_id=state.active_runs.capture, drain=False),),
            )

        if isinstance(event, NoSpeechTimeout):
            if _is_stale(state, event):
                return _ignore(state, event, "no_speech_timeout_stale")
            if not state.capture_active or state.finalizing:
                return _ignore(state, event, "no_speech_timeout_after_stop")
            if state.partial_text.strip():
                return _ignore(state, event, "no_speech_superseded_by_silence_timer")

            return _begin_listening(
                state,
                event,
                "no_speech_guard",
                prefix=(StopCapture(run_id=state.active_runs.capture, drain=False),),
            )

        if isinstance(event, CaptureFinished):
            if _is_stale(state, event):
                return _ignore(state, event, "capture_finished_stale")
            if not state.finalizing:
                return _ignore(state, event, "capture_finished_not_finalizing")

            text = event.text.strip() or state.partial_text.strip()
            if not text:
                return _begin_listening(state, event, "empty_transcript")

            return _dispatch_turn(state, event, text)

        if isinstance(event, CaptureFailed):
            if _is_stale(state, event):
                return _ignore(state, event, "capture_failed_stale")

            new_state = replace(
                state,
                phase=ConversationPhase.IDLE,
                capture_active=False,
                partial_text="",
                finalizing=False,
            )
            return new_state, _logs_last((
                CancelAllTimers(),
                _log(new_state, event, "capture_failed", {"reason": event.reason}),
            ) + _phase_change(state, new_state, event, "capture_failed"))

        if isinstance(event, ConversationStart):
            return _ignore(state, event, "already_started")

        if isinstance(event, Interrupt):
            return _ignore(state, event, "interrupt_not_speaking")

        return _ignore(state, event, "listening_unhandled")

    # ============================
    # PROCESSING
    # ============================
    if state.phase is ConversationPhase.PROCESSING:
        if isinstance(event, GatewayReply):
            if not state.waiting_for_reply:
                return _ignore(state, event, "reply_not_awaited")
            if not event.text.strip():
                return _ignore(state, event, "reply_empty")

            new_runs = _bump_run_id(state.active_runs, Service.SYNTHESIS)
            new_state = replace(
                state,
                phase=ConversationPhase.SPEAKING,
                active_runs=new_runs,
                synthesis_active=True,
                waiting_for_reply=False,
            )
            return new_state, _logs_last((
                CancelAllTimers(),
                AppendMessage(
                    message=ChatMessage(
                        role="assistant", text=event.text, timestamp=event.ts_ms
                    )
                ),
                StartSynthesis(run_id=new_runs.synthesis, text=event.text),
                _log(
                    new_state,
                    event,
                    "start_synthesis",
                    {
                        "synthesis_run_id": new_runs.synthesis,
                        "message_id": event.message_id,
                    },
                ),
            ) + _phase_change(state, new_state, event, "gateway_reply"))

        if isinstance(event, ResponseTimeout):
            if _is_stale(state, event):
                return _ignore(state, event, "response_timeout_stale")
            if not state.waiting_for_reply:
                return _ignore(state, event, "response_timeout_after_reply")

            return _begin_listening(
                state,
                event,
                "response_timeout",
                prefix=(_log(state, event, "abandon_turn", {"reason": "response_timeout"}),),
            )

        if isinstance(event, SendFailed):
            if _is_stale(state, event):
                return _ignore(state, event, "send_failed_stale")
            if not state.waiting_for_reply:
                return _ignore(state, event, "send_failed_after_reply")

            return _begin_listening(
                state,
                event,
                "send_failed",
                prefix=(_log(state, event, "abandon_turn", {"reason": event.reason}),),
            )

        if isinstance(event, ConversationStart):
            return _ignore(state, event, "already_started")

        if isinstance(event, Interrupt):
            return _ignore(state, event, "interrupt_not_speaking")

        return _ignore(state, event, "processing_unhandled")

    # ============================
    # SPEAKING
    # ============================
    if state.phase is ConversationPhase.SPEAKING:
        if isinstance(event, Interrupt):
            return _begin_listening(
                state,
                event,
                "interrupt",
                prefix=(StopSynthesis(run_id=state.active_runs.synthesis),),
            )

        if isinstance(event, SynthesisDone):
            if _is_stale(state, event):
                return _ignore(state, event, "synthesis_done_stale")
            if not state.synthesis_active:
                return _ignore(state, event, "synthesis_done_after_stop")
            return _begin_listening(state, event, "synthesis_done")

        if isinstance(event, SynthesisFailed):
            if _is_stale(state, event):
                return _ignore(state, event, "synthesis_failed_stale")
            if not state.synthesis_active:
                return _ignore(state, event, "synthesis_failed_after_stop")
            return _begin_listening(
                state,
                event,
                "synthesis_failed",
                prefix=(_log(state, event, "synthesis_failed", {"reason": event.reason}),),
            )

        if isinstance(event, GatewayReply):
            return _ignore(state, event, "reply_not_awaited")

        if isinstance(event, ConversationStart):
            return _ignore(state, event, "already_started")

        return _ignore(state, event, "speaking_unhandled")

    return _ignore(state, event, "unknown_phase")
