import asyncio

import numpy as np
import pytest

from voicebot.vad.calibrator import ThresholdCalibrator, threshold_from_ambient
from voicebot.vad.sampler import EnergySampler, compute_rms
from voicebot.vad.state_machine import VadConfig


class FakeClock:
    """Time only moves when the calibrator sleeps."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


class ConstantSource:
    def __init__(self, level, size=2048):
        self.frame = np.full(size, level, dtype=np.float32)
        self.reads = 0

    def latest_frame(self):
        self.reads += 1
        return self.frame


class BrokenSource:
    def latest_frame(self):
        raise RuntimeError("device unplugged")


class SilentStartSource:
    def latest_frame(self):
        return None


def _calibrate(source, config=None):
    config = config or VadConfig()
    clock = FakeClock()
    calibrator = ThresholdCalibrator(config, clock=clock, sleep=clock.sleep)
    return asyncio.run(calibrator.calibrate(EnergySampler(source)))


def test_compute_rms():
    assert compute_rms(np.array([], dtype=np.float32)) == 0.0
    assert compute_rms(np.full(100, 0.5, dtype=np.float32)) == pytest.approx(0.5)
    assert compute_rms(np.array([3.0, -4.0], dtype=np.float32)) == pytest.approx((12.5) ** 0.5)


def test_sampler_skips_failing_tick():
    sampler = EnergySampler(BrokenSource())
    assert sampler.sample() is None
    assert sampler.skipped == 1


def test_sampler_skips_when_no_frame_yet():
    sampler = EnergySampler(SilentStartSource())
    assert sampler.sample() is None


@pytest.mark.parametrize("ambient", [0.0, 0.001, 0.005, 0.01, 0.02, 0.1])
def test_threshold_formula(ambient):
    assert threshold_from_ambient(ambient) == pytest.approx(max(0.02, 3.0 * ambient))


def test_ambient_001_gives_003():
    result = _calibrate(ConstantSource(0.01))
    assert result.threshold == pytest.approx(0.03)
    assert result.ambient == pytest.approx(0.01)
    assert result.samples == 20


def test_quiet_room_uses_floor():
    result = _calibrate(ConstantSource(0.001))
    assert result.threshold == pytest.approx(0.02)


def test_no_samples_falls_back_to_floor():
    result = _calibrate(BrokenSource())
    assert result.samples == 0
    assert result.threshold == pytest.approx(0.02)


def test_custom_floor_and_multiplier():
    cfg = VadConfig(rms_floor=0.05, threshold_multiplier=2.0)
    assert _calibrate(ConstantSource(0.01), cfg).threshold == pytest.approx(0.05)
    assert _calibrate(ConstantSource(0.1), cfg).threshold == pytest.approx(0.2)


def test_window_bounded_by_calibration_ms():
    source = ConstantSource(0.01)
    _calibrate(source, VadConfig(tick_ms=50, calibration_ms=500))
    assert source.reads == 10


def test_result_is_immutable():
    result = _calibrate(ConstantSource(0.01))
    with pytest.raises(Exception):
        result.threshold = 1.0
