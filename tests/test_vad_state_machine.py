import pytest

from voicebot.vad.state_machine import VadConfig, VadEvent, VadPhase, VadStateMachine


def _machine(threshold=0.03, **kw):
    return VadStateMachine(VadConfig(**kw), threshold)


def test_default_frame_counts():
    cfg = VadConfig()
    assert cfg.min_speech_frames == 5
    assert cfg.end_silence_frames == 16


def test_frame_counts_round_up():
    cfg = VadConfig(tick_ms=30, min_speech_ms=250, end_silence_ms=800)
    assert cfg.min_speech_frames == 9
    assert cfg.end_silence_frames == 27


def test_invalid_tick_rejected():
    with pytest.raises(ValueError):
        VadConfig(tick_ms=0)


def test_speech_start_fires_on_fifth_loud_tick():
    m = _machine()
    events = [m.tick(0.05) for _ in range(5)]
    assert events[:4] == [None] * 4
    assert events[4] is VadEvent.SPEECH_START
    assert m.phase is VadPhase.SPEAKING
    assert m.frames_above == 0


def test_speech_end_fires_on_sixteenth_quiet_tick():
    m = _machine()
    for _ in range(5):
        m.tick(0.05)
    events = [m.tick(0.01) for _ in range(16)]
    assert events[:15] == [None] * 15
    assert events[15] is VadEvent.SPEECH_END
    assert m.phase is VadPhase.IDLE
    assert m.frames_below == 0


def test_interrupted_loud_run_does_not_start():
    m = _machine()
    seq = [0.05] * 4 + [0.01] + [0.05] * 4
    assert all(m.tick(r) is None for r in seq)
    assert m.phase is VadPhase.IDLE
    assert m.tick(0.05) is VadEvent.SPEECH_START


def test_pause_shorter_than_end_silence_keeps_speaking():
    m = _machine()
    for _ in range(5):
        m.tick(0.05)
    for _ in range(15):
        assert m.tick(0.01) is None
    assert m.tick(0.05) is None
    assert m.phase is VadPhase.SPEAKING
    assert m.frames_below == 0
    for _ in range(15):
        m.tick(0.01)
    assert m.tick(0.01) is VadEvent.SPEECH_END


def test_value_equal_to_threshold_counts_as_quiet():
    m = _machine(threshold=0.03)
    for _ in range(10):
        assert m.tick(0.03) is None
    assert m.phase is VadPhase.IDLE
    assert m.frames_above == 0


@pytest.mark.parametrize(
    "seq",
    [
        [0.05, 0.01] * 20,
        [0.05] * 3 + [0.0] + [0.05] * 3 + [0.0] + [0.05] * 3,
        [0.01] * 50,
    ],
)
def test_no_start_without_consecutive_run(seq):
    m = _machine()
    assert [e for e in (m.tick(r) for r in seq) if e] == []


def test_handlers_called_once_per_event_in_order():
    m = _machine()
    calls = []
    m.on(VadEvent.SPEECH_START, lambda e: calls.append(("a", e, m.phase)))
    m.on(VadEvent.SPEECH_START, lambda e: calls.append(("b", e, m.phase)))
    m.on(VadEvent.SPEECH_END, lambda e: calls.append(("end", e, m.phase)))

    for _ in range(7):
        m.tick(0.05)
    assert calls == [
        ("a", VadEvent.SPEECH_START, VadPhase.SPEAKING),
        ("b", VadEvent.SPEECH_START, VadPhase.SPEAKING),
    ]

    for _ in range(16):
        m.tick(0.0)
    assert calls[-1] == ("end", VadEvent.SPEECH_END, VadPhase.IDLE)
    assert len(calls) == 3


def test_reset_clears_state():
    m = _machine()
    for _ in range(5):
        m.tick(0.05)
    m.tick(0.01)
    m.reset()
    assert m.phase is VadPhase.IDLE
    assert (m.frames_above, m.frames_below) == (0, 0)


def test_recalibrate_changes_threshold():
    m = _machine(threshold=0.03)
    m.recalibrate(0.5)
    assert m.threshold == 0.5
    for _ in range(10):
        assert m.tick(0.1) is None
