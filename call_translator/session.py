"""
Real-Time Translation Session

Drives one call: waits for the call to connect, then on a fixed cadence
captures a short stretch of audio, translates it, optionally speaks it in a
cloned voice and plays it back. At most one cycle runs at a time; ticks that
arrive while a cycle is still running are dropped.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Deque, Dict, Optional, Union

import soundfile as sf

from .adapters import AudioIOAdapter, CallSignal, ImmediateCallSignal
from .audio.temp_files import TempAudioStore
from .config import (
    CAPTURE_DURATION, CYCLE_INTERVAL, CONNECT_TIMEOUT, AUDIO_IO_TIMEOUT, PLAYBACK_MARGIN,
    TEMP_AUDIO_DIR, TRANSLATION_HISTORY_LIMIT
)
from .errors import BackendTimeoutError, PipelineError
from .models import TranslationOutput, TranslationResult
from .orchestrator import TranslationOrchestrator

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    TRANSLATING = "translating"
    SPEAKING = "speaking"
    STOPPED = "stopped"


@dataclass
class SessionConfig:
    """Per-call translation settings."""
    source_lang: Optional[str] = None  # None detects per cycle
    target_lang: str = "en"
    capture_duration: float = CAPTURE_DURATION
    cycle_interval: float = CYCLE_INTERVAL
    connect_timeout: float = CONNECT_TIMEOUT
    io_timeout: float = AUDIO_IO_TIMEOUT
    playback_margin: float = PLAYBACK_MARGIN
    preserve_voice: bool = False
    profile_id: Optional[str] = None
    use_active_profile: bool = False


class TranslationSession:
    """Capture-translate-speak loop for one call."""

    def __init__(
        self,
        orchestrator: TranslationOrchestrator,
        audio_io: AudioIOAdapter,
        config: Optional[SessionConfig] = None,
        call_signal: Optional[CallSignal] = None,
        temp_store: Optional[TempAudioStore] = None,
        session_id: Optional[str] = None,
        on_result: Optional[Callable[[TranslationOutput], None]] = None
    ):
        """
        Args:
            orchestrator: Translation orchestrator shared across calls
            audio_io: Capture/playback adapter for this call
            config: Session settings
            call_signal: Connection signal (already connected when None)
            temp_store: Store used to delete cycle audio
            session_id: Identifier used for synthesis cancellation
            on_result: Callback invoked with each cycle's output
        """
        self.orchestrator = orchestrator
        self.audio_io = audio_io
        self.config = config or SessionConfig()
        self.call_signal = call_signal or ImmediateCallSignal()
        self.temp_store = temp_store or orchestrator.temp_store or TempAudioStore(TEMP_AUDIO_DIR)
        self.session_id = session_id or f"session_{uuid.uuid4().hex[:8]}"
        self.on_result = on_result

        self._state = SessionState.IDLE
        self._stopping = False
        self._cadence: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Task] = None
        self._recording_token: Optional[str] = None

        self.transcript: Deque[TranslationResult] = deque(maxlen=TRANSLATION_HISTORY_LIMIT)
        self.stats = {
            'captures_started': 0,
            'cycles_completed': 0,
            'cycles_failed': 0,
            'ticks_skipped': 0,
        }

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SessionState.LISTENING, SessionState.TRANSLATING, SessionState.SPEAKING)

    def _set_state(self, state: SessionState) -> None:
        if self._stopping and state != SessionState.STOPPED:
            return
        if state != self._state:
            logger.debug(f"Session {self.session_id}: {self._state.value} -> {state.value}")
            self._state = state

    async def start(self) -> None:
        """Wait for the call to connect, then begin the translation cadence."""
        if self._state != SessionState.IDLE:
            raise RuntimeError(f"Session {self.session_id} cannot start from state {self._state.value}")

        self._set_state(SessionState.CONNECTING)
        try:
            await asyncio.wait_for(self.call_signal.wait_until_connected(), self.config.connect_timeout)
        except asyncio.TimeoutError:
            self._state = SessionState.STOPPED
            raise BackendTimeoutError(f"Call did not connect within {self.config.connect_timeout}s", stage="session")

        self._set_state(SessionState.LISTENING)
        self._cadence = asyncio.get_running_loop().create_task(self._cadence_loop())
        logger.info(f"Session {self.session_id} started "
                    f"({self.config.source_lang or 'auto'} -> {self.config.target_lang})")

    async def _cadence_loop(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.config.cycle_interval)

    def tick(self) -> bool:
        """Start a cycle unless one is still running. Returns whether one started."""
        if self._stopping or not self.is_active:
            return False
        if self._cycle is not None and not self._cycle.done():
            self.stats['ticks_skipped'] += 1
            logger.debug(f"Session {self.session_id}: cycle still running, tick skipped")
            return False

        self._cycle = asyncio.get_running_loop().create_task(self._run_cycle())
        return True

    def _profile_id(self) -> Optional[str]:
        if self.config.profile_id:
            return self.config.profile_id
        voice_service = self.orchestrator.voice_service
        if self.config.use_active_profile and voice_service is not None:
            active = voice_service.store.get_active()
            return active.id if active else None
        return None

    async def _bounded(self, action: Awaitable, budget: float, name: str):
        """Await an adapter call; a hung device fails the cycle instead of freezing the loop."""
        try:
            return await asyncio.wait_for(action, budget)
        except asyncio.TimeoutError:
            raise BackendTimeoutError(f"Audio {name} did not finish within {budget:.1f}s", stage="session")

    def _playback_budget(self, audio_path: Union[str, Path]) -> float:
        try:
            duration = sf.info(str(audio_path)).duration
        except (RuntimeError, OSError):
            duration = 0.0
        return duration + self.config.playback_margin

    async def _run_cycle(self) -> None:
        capture: Optional[Path] = None
        output: Optional[TranslationOutput] = None
        self.stats['captures_started'] += 1

        try:
            self._recording_token = await self._bounded(
                self.audio_io.start_recording(), self.config.io_timeout, "capture start"
            )
            await asyncio.sleep(self.config.capture_duration)
            token, self._recording_token = self._recording_token, None
            capture = await self._bounded(
                self.audio_io.stop_recording(token), self.config.io_timeout, "capture stop"
            )

            self._set_state(SessionState.TRANSLATING)
            output = await self.orchestrator.translate(
                capture,
                self.config.source_lang,
                self.config.target_lang,
                profile=self._profile_id(),
                preserve_voice=self.config.preserve_voice,
                want_audio=True,
                session_id=self.session_id,
            )
            self.transcript.appendleft(output.result)
            if self.on_result is not None:
                self.on_result(output)

            if output.audio_path is not None and not self._stopping:
                self._set_state(SessionState.SPEAKING)
                await self._bounded(
                    self.audio_io.play(output.audio_path), self._playback_budget(output.audio_path), "playback"
                )

            self.stats['cycles_completed'] += 1
        except PipelineError as e:
            self.stats['cycles_failed'] += 1
            logger.error(f"Session {self.session_id} cycle failed at {e.stage}: {e}")
        except Exception as e:
            self.stats['cycles_failed'] += 1
            logger.exception(f"Session {self.session_id} cycle failed: {str(e)}")
        finally:
            if self._recording_token is not None:
                await self._release_recording()
            self.temp_store.delete(capture)
            if output is not None:
                self.temp_store.delete(output.audio_path)
            self._set_state(SessionState.LISTENING)

    async def _release_recording(self) -> None:
        token, self._recording_token = self._recording_token, None
        try:
            self.temp_store.delete(
                await self._bounded(self.audio_io.stop_recording(token), self.config.io_timeout, "capture release")
            )
        except PipelineError as e:
            logger.warning(f"Session {self.session_id}: failed to release recording: {e}")

    async def stop(self) -> None:
        """Cancel the cadence and any running cycle, release audio and mark the session stopped."""
        if self._state == SessionState.STOPPED:
            return
        self._stopping = True

        for task in (self._cadence, self._cycle):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self._recording_token is not None:
            await self._release_recording()

        voice_service = self.orchestrator.voice_service
        if voice_service is not None:
            voice_service.cancel_session(self.session_id)

        try:
            await self._bounded(self.audio_io.stop(), self.config.io_timeout, "device stop")
        except PipelineError as e:
            logger.warning(f"Session {self.session_id}: {e}")
        self._set_state(SessionState.STOPPED)
        logger.info(f"Session {self.session_id} stopped: {self.stats}")


class SessionManager:
    """Tracks one translation session per call."""

    def __init__(self, orchestrator: TranslationOrchestrator):
        self.orchestrator = orchestrator
        self.sessions: Dict[str, TranslationSession] = {}

    async def start_session(
        self,
        call_id: str,
        audio_io: AudioIOAdapter,
        config: Optional[SessionConfig] = None,
        call_signal: Optional[CallSignal] = None,
        on_result: Optional[Callable[[TranslationOutput], None]] = None
    ) -> TranslationSession:
        if call_id in self.sessions and self.sessions[call_id].state != SessionState.STOPPED:
            raise RuntimeError(f"Call {call_id} already has an active session")

        session = TranslationSession(
            self.orchestrator, audio_io, config, call_signal,
            session_id=call_id, on_result=on_result,
        )
        self.sessions[call_id] = session
        try:
            await session.start()
        except BaseException:
            self.sessions.pop(call_id, None)
            raise
        return session

    async def stop_session(self, call_id: str) -> bool:
        session = self.sessions.pop(call_id, None)
        if session is None:
            return False
        await session.stop()
        return True

    async def stop_all(self) -> None:
        for call_id in list(self.sessions):
            await self.stop_session(call_id)
