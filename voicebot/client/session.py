# voicebot/client/session.py
"""
Session coordinator: owns everything one live conversation needs.

Order of operations:
  1) pick a recording encoding (fail fast with CapabilityError)
  2) optional greeting, played to the end
  3) open the microphone
  4) calibrate the threshold (fully, before detection)
  5) tick loop: sample -> state machine -> sleep tick_ms

All state lives in a SessionContext owned by the VoiceSession, and every
callback runs on the event loop thread, so no locks are needed around the
VAD state or the is_playing flag. Anything slow (clip encoding, reply
decoding, HTTP) is pushed to a worker thread so ticks stay short.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Set

from voicebot.audio.recorder import (
    ENCODING_CANDIDATES,
    RawClip,
    UtteranceRecorder,
    is_encoding_supported,
    pick_encoding,
)
from voicebot.client.dispatch import DispatchController
from voicebot.utils.logging import get_logger
from voicebot.vad.calibrator import CalibrationResult, ThresholdCalibrator
from voicebot.vad.sampler import EnergySampler
from voicebot.vad.state_machine import VadConfig, VadEvent, VadStateMachine

logger = get_logger(__name__)

# Slack on top of calibration_ms before calibration is abandoned.
CALIBRATION_GRACE_SEC = 2.0

# Longest wait for the greeting to finish before calibrating anyway.
GREETING_WAIT_SEC = 15.0


@dataclass
class SessionContext:
    encoding: str
    recorder: UtteranceRecorder
    sampler: EnergySampler
    calibration: Optional[CalibrationResult] = None
    machine: Optional[VadStateMachine] = None
    tick_task: Optional[asyncio.Task] = None
    pending: Set[asyncio.Task] = field(default_factory=set)
    utterances: int = 0


class VoiceSession:
    def __init__(
        self,
        source,
        dispatcher: DispatchController,
        config: Optional[VadConfig] = None,
        greeting: Optional[str] = None,
        encoding_candidates: Iterable[str] = ENCODING_CANDIDATES,
        is_supported: Callable[[str], bool] = is_encoding_supported,
        calibrator: Optional[ThresholdCalibrator] = None,
    ) -> None:
        self.source = source
        self.dispatcher = dispatcher
        self.config = config or VadConfig()
        self.greeting = greeting
        self.encoding_candidates = tuple(encoding_candidates)
        self.is_supported = is_supported
        self.calibrator = calibrator or ThresholdCalibrator(self.config)
        self.ctx: Optional[SessionContext] = None
        self._subscribed = False

    @property
    def active(self) -> bool:
        return self.ctx is not None

    @property
    def threshold(self) -> Optional[float]:
        if self.ctx is None or self.ctx.machine is None:
            return None
        return self.ctx.machine.threshold

    async def start(self) -> CalibrationResult:
        if self.ctx is not None:
            raise RuntimeError("session already started")

        encoding = pick_encoding(self.encoding_candidates, self.is_supported)
        logger.info("[session] recording encoding=%s", encoding)

        recorder = UtteranceRecorder(
            encoding,
            samplerate=self.source.samplerate,
            channels=self.source.channels,
        )
        ctx = SessionContext(encoding=encoding, recorder=recorder, sampler=EnergySampler(self.source))
        self.ctx = ctx

        if not self._subscribed:
            self.source.subscribe(self._on_chunk)
            self._subscribed = True

        try:
            if self.greeting:
                await self.dispatcher.greet(self.greeting)
                # the ambient window must not hear the greeting
                await self._wait_for_playback_end(GREETING_WAIT_SEC)

            self.source.open()
            ctx.calibration = await self._calibrate(ctx)
        except BaseException:
            await self.stop()
            raise

        machine = VadStateMachine(self.config, ctx.calibration.threshold)
        machine.on(VadEvent.SPEECH_START, self._on_speech_start)
        machine.on(VadEvent.SPEECH_END, self._on_speech_end)
        ctx.machine = machine

        ctx.tick_task = asyncio.create_task(self._run(ctx))
        logger.info("[session] listening (threshold ~%.3f)", machine.threshold)
        return ctx.calibration

    async def _wait_for_playback_end(self, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.dispatcher.is_playing:
            if loop.time() >= deadline:
                logger.warning("[session] greeting still playing after %.1fs; calibrating anyway", timeout)
                return
            await asyncio.sleep(self.config.tick_seconds)

    async def _calibrate(self, ctx: SessionContext) -> CalibrationResult:
        timeout = self.config.calibration_ms / 1000.0 + CALIBRATION_GRACE_SEC
        try:
            return await asyncio.wait_for(self.calibrator.calibrate(ctx.sampler), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("[session] calibration timed out; using floor %.3f", self.config.rms_floor)
            return CalibrationResult(threshold=self.config.rms_floor, ambient=0.0, samples=0)

    async def recalibrate(self) -> Optional[CalibrationResult]:
        """Measure ambient energy again; detection is paused meanwhile."""
        ctx = self.ctx
        if ctx is None or ctx.machine is None:
            return None
        if ctx.tick_task is not None:
            ctx.tick_task.cancel()
            await asyncio.gather(ctx.tick_task, return_exceptions=True)
        ctx.recorder.abandon()
        ctx.machine.reset()
        ctx.calibration = await self._calibrate(ctx)
        ctx.machine.recalibrate(ctx.calibration.threshold)
        ctx.tick_task = asyncio.create_task(self._run(ctx))
        return ctx.calibration

    async def run(self) -> None:
        """Start (if needed) and keep listening until stop() or cancellation."""
        if self.ctx is None:
            await self.start()
        ctx = self.ctx
        try:
            while ctx is not None and self.ctx is ctx and ctx.tick_task is not None:
                task = ctx.tick_task
                (outcome,) = await asyncio.gather(task, return_exceptions=True)
                if isinstance(outcome, Exception):
                    logger.error("[session] tick loop crashed: %r", outcome)
                # recalibrate() swaps in a new tick task
                if ctx.tick_task is task:
                    break
        finally:
            await self.stop()

    async def _run(self, ctx: SessionContext) -> None:
        while True:
            self.tick(ctx)
            await asyncio.sleep(self.config.tick_seconds)

    def tick(self, ctx: Optional[SessionContext] = None) -> Optional[VadEvent]:
        ctx = ctx or self.ctx
        if ctx is None or ctx.machine is None:
            return None
        rms = ctx.sampler.sample()
        if rms is None:
            return None
        return ctx.machine.tick(rms)

    def _on_chunk(self, chunk) -> None:
        ctx = self.ctx
        if ctx is not None:
            ctx.recorder.push(chunk)

    def _on_speech_start(self, event: VadEvent) -> None:
        ctx = self.ctx
        if ctx is None:
            return
        # barge-in before the new recording begins
        self.dispatcher.barge_in()
        ctx.recorder.start()
        logger.info("[session] speech detected, recording utterance")

    def _on_speech_end(self, event: VadEvent) -> None:
        ctx = self.ctx
        if ctx is None:
            return
        clip = ctx.recorder.stop()
        if clip is None:
            return

        ctx.utterances += 1
        logger.info("[session] utterance captured, sending")
        task = asyncio.create_task(self._send(ctx, clip))
        ctx.pending.add(task)
        task.add_done_callback(ctx.pending.discard)

    async def _send(self, ctx: SessionContext, clip: RawClip) -> None:
        try:
            utterance = await asyncio.to_thread(ctx.recorder.encode, clip)
        except Exception as e:
            logger.error("[session] failed to encode utterance: %s", e)
            return
        await self.dispatcher.dispatch(utterance)

    async def stop(self) -> None:
        """
        Tear down in order: tick timer, input stream, recorder (no flush),
        VAD state. Safe to call more than once.
        """
        ctx, self.ctx = self.ctx, None
        if ctx is None:
            return

        if ctx.tick_task is not None:
            ctx.tick_task.cancel()
            await asyncio.gather(ctx.tick_task, return_exceptions=True)

        try:
            self.source.close()
        except Exception as e:
            logger.warning("[session] closing input failed: %s", e)

        ctx.recorder.abandon()

        if ctx.machine is not None:
            ctx.machine.reset()

        for task in list(ctx.pending):
            task.cancel()
        if ctx.pending:
            await asyncio.gather(*ctx.pending, return_exceptions=True)

        logger.info("[session] stopped (utterances=%d)", ctx.utterances)
