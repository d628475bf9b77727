from speakup.capture.buffer import UtteranceBuffer
from speakup.capture.context import CaptureMode, CaptureTiming
from speakup.capture.timers import TimerKind, TimerSet
from speakup.config import Settings


def test_buffer_appends_final_and_replaces_interim():
    ticks = iter([1.0, 2.0, 3.0])
    buffer = UtteranceBuffer(clock=lambda: next(ticks))

    buffer.set_interim("I goed")
    assert buffer.text == "I goed"
    assert buffer.updated_at == 1.0

    buffer.append_final("I goed")
    buffer.set_interim("to the")
    assert buffer.finalized == "I goed"
    assert buffer.text == "I goed to the"
    assert buffer.updated_at == 3.0


def test_buffer_drain_clears_atomically():
    buffer = UtteranceBuffer()
    buffer.append_final("  hello ")
    buffer.set_interim(" world ")

    assert buffer.drain() == "hello world"
    assert buffer.is_empty
    assert buffer.finalized == ""
    assert buffer.interim == ""
    assert buffer.updated_at is None
    assert buffer.drain() == ""


def test_blank_final_fragment_does_not_grow_buffer():
    buffer = UtteranceBuffer()
    buffer.append_final("   ")
    assert buffer.is_empty


def test_rearming_cancels_previous_timer(scheduler):
    fired = []
    timers = TimerSet(scheduler)
    timers.arm(TimerKind.SILENCE, 1.0, lambda: fired.append("first"))
    timers.arm(TimerKind.SILENCE, 1.0, lambda: fired.append("second"))

    scheduler.advance(5)
    assert fired == ["second"]
    assert not timers.is_pending(TimerKind.SILENCE)


def test_arm_if_idle_keeps_existing_deadline(scheduler):
    fired = []
    timers = TimerSet(scheduler)
    timers.arm_if_idle(TimerKind.MAX_UTTERANCE, 10, lambda: fired.append(scheduler.now))
    scheduler.advance(5)
    timers.arm_if_idle(TimerKind.MAX_UTTERANCE, 10, lambda: fired.append(scheduler.now))

    scheduler.advance(20)
    assert fired == [10]


def test_cancel_capture_leaves_other_timers(scheduler):
    fired = []
    timers = TimerSet(scheduler)
    for kind in (TimerKind.SILENCE, TimerKind.MAX_UTTERANCE, TimerKind.SESSION_RENEWAL, TimerKind.RESUME):
        timers.arm(kind, 1, lambda kind=kind: fired.append(kind))

    timers.cancel_capture()
    assert timers.pending == ["resume"]

    scheduler.advance(2)
    assert fired == [TimerKind.RESUME]


def test_cancel_all(scheduler):
    timers = TimerSet(scheduler)
    timers.arm(TimerKind.SILENCE, 1, lambda: None)
    timers.arm(TimerKind.STOP_FALLBACK, 1, lambda: None)
    timers.cancel_all()
    assert timers.pending == []
    assert scheduler.pending == 0


def test_capture_mode_parse():
    assert CaptureMode.parse("push_to_finish") is CaptureMode.PUSH_TO_FINISH
    assert CaptureMode.parse(" AUTO ") is CaptureMode.AUTO
    assert CaptureMode.parse("bogus") is CaptureMode.AUTO
    assert CaptureMode.parse(None, CaptureMode.PUSH_TO_FINISH) is CaptureMode.PUSH_TO_FINISH


def test_timing_from_settings_converts_milliseconds():
    config = Settings(
        capture_silence_ms=1500,
        capture_max_utterance_ms=120_000,
        capture_session_renewal_ms=45_000,
        capture_stop_fallback_ms=300,
        capture_restart_backoff_ms=200,
        playback_resume_delay_ms=250,
    )
    timing = CaptureTiming.from_settings(config)

    assert timing.silence == 1.5
    assert timing.max_utterance == 120.0
    assert timing.session_renewal == 45.0
    assert timing.stop_fallback == 0.3
    assert timing.restart_backoff == 0.2
    assert timing.resume_delay == 0.25
    assert timing.session_renewal < 60
