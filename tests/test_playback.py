import asyncio
import io
import threading
import wave

import numpy as np
import pytest

try:
    from voicebot.audio import playback
except OSError as e:  # sounddevice present but the PortAudio library is not
    pytest.skip(f"sounddevice unavailable: {e}", allow_module_level=True)


class FakeOutputStream:
    instances = []

    def __init__(self, samplerate, channels, dtype, blocksize, device, callback, finished_callback):
        self.samplerate = samplerate
        self.callback = callback
        self.finished_callback = finished_callback
        self.started = False
        self.aborted = False
        self.closed = False
        self.abort_error = None
        FakeOutputStream.instances.append(self)

    def start(self):
        self.started = True

    def abort(self):
        if self.abort_error:
            raise self.abort_error
        self.aborted = True

    def close(self):
        self.closed = True


@pytest.fixture
def player(monkeypatch):
    FakeOutputStream.instances = []
    monkeypatch.setattr(playback.sd, "OutputStream", FakeOutputStream)
    return playback.AudioPlayer()


def _tone(n=1600):
    return np.full(n, 0.1, dtype=np.float32)


def _wav_bytes(samples, sr=16000):
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sr)
        wf.writeframes((samples * 32767).astype("<i2").tobytes())
    return buf.getvalue()


def test_start_sets_flag_and_finish_clears_it(player):
    player.start(_tone(), 16000)
    stream = FakeOutputStream.instances[-1]
    assert stream.started
    assert player.is_playing

    stream.finished_callback()

    assert player.is_playing is False
    assert stream.closed


def test_finish_from_audio_thread_is_marshalled_to_loop(player):
    async def scenario():
        player.start(_tone(), 16000)
        stream = FakeOutputStream.instances[-1]
        t = threading.Thread(target=stream.finished_callback)
        t.start()
        t.join()
        for _ in range(10):
            if not player.is_playing:
                break
            await asyncio.sleep(0)
        return stream

    stream = asyncio.run(scenario())
    assert player.is_playing is False
    assert stream.closed


def test_stop_clears_flag_even_when_abort_fails(player):
    player.start(_tone(), 16000)
    stream = FakeOutputStream.instances[-1]
    stream.abort_error = RuntimeError("device gone")

    player.stop()

    assert player.is_playing is False
    player.stop()


def test_stale_finish_does_not_clear_newer_playback(player):
    player.start(_tone(), 16000)
    first = FakeOutputStream.instances[-1]
    player.start(_tone(), 16000)
    second = FakeOutputStream.instances[-1]
    assert first.aborted

    first.finished_callback()

    assert player.is_playing is True
    assert not second.closed

    second.finished_callback()
    assert player.is_playing is False


def test_finish_after_stop_is_ignored(player):
    player.start(_tone(), 16000)
    stream = FakeOutputStream.instances[-1]
    player.stop()
    stream.finished_callback()
    assert player.is_playing is False


def test_empty_audio_does_not_open_a_stream(player):
    player.start(np.zeros(0, dtype=np.float32), 16000)
    assert FakeOutputStream.instances == []
    assert player.is_playing is False


def test_callback_pads_and_stops_at_end(player):
    player.start(_tone(100), 16000)
    stream = FakeOutputStream.instances[-1]
    out = np.ones((64, 1), dtype=np.float32)
    stream.callback(out, 64, None, None)
    assert np.allclose(out[:, 0], 0.1)

    with pytest.raises(playback.sd.CallbackStop):
        stream.callback(out, 64, None, None)
    assert np.allclose(out[36:, 0], 0.0)


def test_decode_wav(player):
    x, sr = player.decode(_wav_bytes(_tone(800)), "audio/wav")
    assert sr == 16000
    assert x.shape == (800,)
    assert x.dtype == np.float32
    assert float(x[0]) == pytest.approx(0.1, abs=1e-3)


def test_infer_format_falls_back_on_magic_bytes():
    assert playback.infer_format("", b"RIFF....") == "wav"
    assert playback.infer_format("application/octet-stream", b"ID3") == "mp3"
    assert playback.infer_format("audio/mpeg; charset=binary", b"") == "mp3"
