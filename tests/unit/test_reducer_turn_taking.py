# pylint: disable=missing-module-docstring,missing-function-docstring
from dataclasses import replace

from orchestrator.reducer import (
    reduce,
    TIMER_NO_SPEECH,
    TIMER_RESPONSE_WAIT,
    TIMER_SILENCE,
)
from orchestrator.state_dataclass import ConversationState
from orchestrator.run_ids import RunIds
from orchestrator.enums.phase import ConversationPhase
from orchestrator.enums.service import Service

from orchestrator.events import (
    EventType,
    CaptureFinished,
    ConversationStart,
    ConversationStop,
    GatewayReply,
    Interrupt,
    NoSpeechTimeout,
    SilenceThresholdChanged,
    SilenceTimeout,
    SynthesisDone,
    TranscriptPartial,
)

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
from spec import NO_SPEECH_GUARD_MS, RESPONSE_WAIT_TIMEOUT_MS


# ---------------------------------------------------------------------
# Event helpers (mirror runtime construction)
# ---------------------------------------------------------------------

def start(ts_ms: int = 0) -> ConversationStart:
    return ConversationStart(ts_ms=ts_ms, event_type=EventType.CONVERSATION_START)


def stop(ts_ms: int = 0) -> ConversationStop:
    return ConversationStop(ts_ms=ts_ms, event_type=EventType.CONVERSATION_STOP)


def interrupt(ts_ms: int = 0) -> Interrupt:
    return Interrupt(ts_ms=ts_ms, event_type=EventType.INTERRUPT)


def partial(run_id: int, text: str = "hel") -> TranscriptPartial:
    return TranscriptPartial(
        ts_ms=0,
        event_type=EventType.TRANSCRIPT_PARTIAL,
        service=Service.CAPTURE,
        run_id=run_id,
        text=text,
    )


def silence(run_id: int) -> SilenceTimeout:
    return SilenceTimeout(
        ts_ms=0,
        event_type=EventType.SILENCE_TIMEOUT,
        service=Service.CAPTURE,
        run_id=run_id,
    )


def no_speech(run_id: int) -> NoSpeechTimeout:
    return NoSpeechTimeout(
        ts_ms=0,
        event_type=EventType.NO_SPEECH_TIMEOUT,
        service=Service.CAPTURE,
        run_id=run_id,
    )


def finished(run_id: int, text: str = "", ts_ms: int = 0) -> CaptureFinished:
    return CaptureFinished(
        ts_ms=ts_ms,
        event_type=EventType.CAPTURE_FINISHED,
        service=Service.CAPTURE,
        run_id=run_id,
        text=text,
    )


def reply(text: str = "hi there", ts_ms: int = 0) -> GatewayReply:
    return GatewayReply(ts_ms=ts_ms, event_type=EventType.GATEWAY_REPLY, text=text)


def synthesis_done(run_id: int) -> SynthesisDone:
    return SynthesisDone(
        ts_ms=0,
        event_type=EventType.SYNTHESIS_DONE,
        service=Service.SYNTHESIS,
        run_id=run_id,
    )


def non_log(commands: tuple[Command, ...]) -> list[Command]:
    return [c for c in commands if not isinstance(c, LogEvent)]


def decisions(commands: tuple[Command, ...]) -> list[str]:
    return [c.event["decision"] for c in commands if isinstance(c, LogEvent)]


def listening(capture: int = 1, partial_text: str = "") -> ConversationState:
    return ConversationState(
        phase=ConversationPhase.LISTENING,
        active_runs=RunIds(capture=capture),
        capture_active=True,
        partial_text=partial_text,
    )


# ---------------------------------------------------------------------
# Idle -> Listening
# ---------------------------------------------------------------------

def test_start_from_idle_begins_listening() -> None:
    s1, cmds = reduce(ConversationState(), start())

    assert s1.phase is ConversationPhase.LISTENING
    assert s1.active_runs.capture == 1
    assert s1.capture_active is True

    assert non_log(cmds) == [
        CancelAllTimers(),
        StartCapture(run_id=1),
        StartTimer(
            timer_id=TIMER_NO_SPEECH,
            duration_ms=NO_SPEECH_GUARD_MS,
            timeout_event_type=EventType.NO_SPEECH_TIMEOUT,
            run_id=1,
        ),
        NotifyPhase(phase=ConversationPhase.LISTENING),
    ]
    assert "state_changed" in decisions(cmds)


def test_start_when_not_idle_is_ignored() -> None:
    state = listening()
    s1, cmds = reduce(state, start())

    assert s1 == state
    assert non_log(cmds) == []
    assert decisions(cmds) == ["ignore"]


# ---------------------------------------------------------------------
# Listening: partials and silence countdown
# ---------------------------------------------------------------------

def test_partial_restarts_silence_countdown_and_notifies() -> None:
    state = replace(listening(), silence_threshold_ms=800)
    s1, cmds = reduce(state, partial(1, "hel"))

    assert s1.partial_text == "hel"
    assert non_log(cmds) == [
        CancelTimer(timer_id=TIMER_NO_SPEECH),
        StartTimer(
            timer_id=TIMER_SILENCE,
            duration_ms=800,
            timeout_event_type=EventType.SILENCE_TIMEOUT,
            run_id=1,
        ),
        NotifyTranscript(text="hel", is_final=False),
    ]


def test_partial_replaces_previous_partial() -> None:
    s1, _ = reduce(listening(partial_text="hel"), partial(1, "hello"))
    assert s1.partial_text == "hello"


def test_empty_partial_is_ignored() -> None:
    state = listening()
    s1, cmds = reduce(state, partial(1, "   "))
    assert s1 == state
    assert non_log(cmds) == []


def test_silence_with_text_drains_capture() -> None:
    s1, cmds = reduce(listening(partial_text="hello"), silence(1))

    assert s1.phase is ConversationPhase.LISTENING
    assert s1.finalizing is True
    assert s1.capture_active is False
    assert non_log(cmds) == [
        CancelAllTimers(),
        StopCapture(run_id=1, drain=True),
    ]


def test_capture_finished_dispatches_turn() -> None:
    state = replace(listening(partial_text="hello"), capture_active=False, finalizing=True)
    s1, cmds = reduce(state, finished(1, "hello world", ts_ms=1234))

    assert s1.phase is ConversationPhase.PROCESSING
    assert s1.waiting_for_reply is True
    assert s1.active_runs.send == 1
    assert s1.turn_count == 1

    commands = non_log(cmds)
    assert commands[0] == CancelAllTimers()
    assert NotifyTranscript(text="hello world", is_final=True) in commands
    assert SendText(run_id=1, text="hello world") in commands
    assert StartTimer(
        timer_id=TIMER_RESPONSE_WAIT,
        duration_ms=RESPONSE_WAIT_TIMEOUT_MS,
        timeout_event_type=EventType.RESPONSE_TIMEOUT,
        run_id=1,
    ) in commands
    appended = [c for c in commands if isinstance(c, AppendMessage)]
    assert len(appended) == 1
    assert appended[0].message.role == "user"
    assert appended[0].message.timestamp == 1234
    assert commands[-1] == NotifyPhase(phase=ConversationPhase.PROCESSING)


def test_capture_finished_empty_falls_back_to_partial() -> None:
    state = replace(listening(partial_text="hello"), capture_active=False, finalizing=True)
    _, cmds = reduce(state, finished(1, "  "))

    assert SendText(run_id=1, text="hello") in non_log(cmds)


def test_capture_finished_with_no_text_restarts_listening() -> None:
    state = replace(listening(partial_text=""), capture_active=False, finalizing=True)
    s1, cmds = reduce(state, finished(1, ""))

    assert s1.phase is ConversationPhase.LISTENING
    assert s1.active_runs.capture == 2
    assert StartCapture(run_id=2) in non_log(cmds)
    assert not any(isinstance(c, SendText) for c in cmds)


def test_silence_without_text_restarts_capture() -> None:
    s1, cmds = reduce(listening(), silence(1))

    assert s1.active_runs.capture == 2
    commands = non_log(cmds)
    assert commands[0] == StopCapture(run_id=1, drain=False)
    assert StartCapture(run_id=2) in commands
    # Phase unchanged: no notification.
    assert not any(isinstance(c, NotifyPhase) for c in commands)


def test_no_speech_guard_restarts_capture() -> None:
    s1, cmds = reduce(listening(), no_speech(1))

    assert s1.phase is ConversationPhase.LISTENING
    assert s1.active_runs.capture == 2
    assert s1.capture_active is True
    commands = non_log(cmds)
    assert commands[:3] == [
        StopCapture(run_id=1, drain=False),
        CancelAllTimers(),
        StartCapture(run_id=2),
    ]


def test_no_speech_after_partial_is_ignored() -> None:
    state = listening(partial_text="hel")
    s1, cmds = reduce(state, no_speech(1))
    assert s1 == state
    assert non_log(cmds) == []


def test_threshold_change_applies_to_next_countdown() -> None:
    changed = SilenceThresholdChanged(
        ts_ms=0,
        event_type=EventType.SILENCE_THRESHOLD_CHANGED,
        threshold_ms=2500,
    )
    s1, _ = reduce(listening(), changed)
    _, cmds = reduce(s1, partial(1, "hi"))

    timers = [c for c in cmds if isinstance(c, StartTimer)]
    assert timers[0].duration_ms == 2500


# ---------------------------------------------------------------------
# Processing -> Speaking -> Listening
# ---------------------------------------------------------------------

def processing() -> ConversationState:
    return ConversationState(
        phase=ConversationPhase.PROCESSING,
        active_runs=RunIds(capture=1, send=1),
        waiting_for_reply=True,
        turn_count=1,
    )


def test_reply_starts_synthesis() -> None:
    s1, cmds = reduce(processing(), reply("hi there", ts_ms=99))

    assert s1.phase is ConversationPhase.SPEAKING
    assert s1.synthesis_active is True
    assert s1.waiting_for_reply is False

    commands = non_log(cmds)
    assert commands[0] == CancelAllTimers()
    assert StartSynthesis(run_id=1, text="hi there") in commands
    appended = [c for c in commands if isinstance(c, AppendMessage)]
    assert appended[0].message.role == "assistant"
    assert appended[0].message.text == "hi there"


def test_synthesis_done_returns_to_listening() -> None:
    speaking, _ = reduce(processing(), reply())
    s2, cmds = reduce(speaking, synthesis_done(1))

    assert s2.phase is ConversationPhase.LISTENING
    assert s2.active_runs.capture == 2
    assert StartCapture(run_id=2) in non_log(cmds)


def test_interrupt_stops_synthesis_then_listens() -> None:
    speaking, _ = reduce(processing(), reply())
    s2, cmds = reduce(speaking, interrupt())

    assert s2.phase is ConversationPhase.LISTENING
    assert s2.synthesis_active is False
    commands = non_log(cmds)
    assert commands[0] == StopSynthesis(run_id=1)
    assert commands[1] == CancelAllTimers()


def test_interrupt_outside_speaking_is_ignored() -> None:
    for state in (ConversationState(), listening(), processing()):
        s1, cmds = reduce(state, interrupt())
        assert s1 == state
        assert non_log(cmds) == []


# ---------------------------------------------------------------------
# Global stop
# ---------------------------------------------------------------------

def test_stop_from_listening_discards_capture() -> None:
    s1, cmds = reduce(listening(partial_text="hel"), stop())

    assert s1.phase is ConversationPhase.IDLE
    assert s1.partial_text == ""
    assert non_log(cmds) == [
        CancelAllTimers(),
        StopCapture(run_id=1, drain=False),
        NotifyPhase(phase=ConversationPhase.IDLE),
    ]


def test_stop_from_speaking_stops_synthesis() -> None:
    speaking, _ = reduce(processing(), reply())
    s1, cmds = reduce(speaking, stop())

    assert s1.phase is ConversationPhase.IDLE
    assert StopSynthesis(run_id=1) in non_log(cmds)


def test_stop_from_processing_abandons_reply() -> None:
    s1, _ = reduce(processing(), stop())
    assert s1.phase is ConversationPhase.IDLE
    assert s1.waiting_for_reply is False


def test_stop_is_idempotent() -> None:
    s1, _ = reduce(listening(), stop())
    s2, cmds = reduce(s1, stop())

    assert s2 == s1
    assert non_log(cmds) == [CancelAllTimers()]
    assert decisions(cmds) == ["stop_noop_idle"]


def test_logs_come_after_side_effects() -> None:
    _, cmds = reduce(ConversationState(), start())
    kinds = [isinstance(c, LogEvent) for c in cmds]
    first_log = kinds.index(True)
    assert all(kinds[first_log:])
