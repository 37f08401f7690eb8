"""
Synthesis Queue

Serializes voice synthesis requests. One worker task drains the queue in
submission order; each request resolves or fails on its own future without
affecting the requests behind it.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Deque, Dict, Optional

from ..audio.processor import AudioProcessor
from ..audio.temp_files import TempAudioStore
from ..config import SYNTHESIS_QUEUE_MAX_SIZE, SYNTHESIS_OVERFLOW_POLICY
from ..errors import (
    PipelineError, BackendNotReadyError, ProfileNotFoundError, RequestCancelledError, classify_error
)
from ..models import SynthesisOptions, VoiceCloneResult
from .profiles import VoiceProfileStore
from .runtime import VoiceRuntime

OVERFLOW_POLICIES = ("drop_oldest", "reject_new")


@dataclass
class SynthesisRequest:
    text: str
    profile_id: str
    options: SynthesisOptions
    future: asyncio.Future
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    submitted_at: float = field(default_factory=time.time)


class SynthesisQueue:
    """FIFO voice synthesis with a single worker."""

    def __init__(
        self,
        store: VoiceProfileStore,
        runtime: VoiceRuntime,
        temp_store: TempAudioStore,
        max_size: int = SYNTHESIS_QUEUE_MAX_SIZE,
        overflow_policy: str = SYNTHESIS_OVERFLOW_POLICY
    ):
        """
        Args:
            store: Profile store used to resolve profile ids
            runtime: Voice engine runtime
            temp_store: Store for synthesized and intermediate audio files
            max_size: Maximum pending requests (0 = unbounded)
            overflow_policy: 'drop_oldest' or 'reject_new'
        """
        if overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(f"Unknown overflow policy: {overflow_policy}")

        self.store = store
        self.runtime = runtime
        self.temp_store = temp_store
        self.max_size = max_size
        self.overflow_policy = overflow_policy

        self._pending: Deque[SynthesisRequest] = deque()
        self._current: Optional[SynthesisRequest] = None
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

        self.stats = {
            'submitted': 0,
            'completed': 0,
            'failed': 0,
            'dropped': 0,
            'cancelled': 0,
        }

        self.logger = logging.getLogger(__name__)

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def submit(self, text: str, profile_id: str, options: Optional[SynthesisOptions] = None) -> asyncio.Future:
        """
        Enqueue a synthesis request.

        Returns:
            Future resolving to a VoiceCloneResult
        """
        if self._closed:
            raise BackendNotReadyError("Synthesis queue is closed")
        if self.store.get(profile_id) is None:
            raise ProfileNotFoundError(f"Voice profile not found: {profile_id}")

        loop = asyncio.get_running_loop()
        request = SynthesisRequest(text, profile_id, options or SynthesisOptions(), loop.create_future())
        self.stats['submitted'] += 1

        if self.max_size and len(self._pending) >= self.max_size:
            if self.overflow_policy == "reject_new":
                self.stats['dropped'] += 1
                self.logger.warning(f"Synthesis queue full, rejecting request {request.id}")
                request.future.set_exception(RequestCancelledError("Synthesis queue is full"))
                return request.future

            oldest = self._pending.popleft()
            self.stats['dropped'] += 1
            self.logger.warning(f"Synthesis queue full, dropping oldest request {oldest.id}")
            self._reject(oldest, RequestCancelledError("Dropped from a full synthesis queue"))

        self._pending.append(request)
        self._ensure_worker()
        return request.future

    async def synthesize(self, text: str, profile_id: str, options: Optional[SynthesisOptions] = None) -> VoiceCloneResult:
        return await self.submit(text, profile_id, options)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    @staticmethod
    def _reject(request: SynthesisRequest, error: Exception) -> None:
        if not request.future.done():
            request.future.set_exception(error)

    async def _run(self) -> None:
        while self._pending:
            request = self._pending.popleft()
            if request.future.done():
                continue

            self._current = request
            try:
                result = await self._process(request)
            except PipelineError as e:
                self.stats['failed'] += 1
                self.logger.error(f"Synthesis request {request.id} failed: {e}")
                self._reject(request, e)
            except Exception as e:
                self.stats['failed'] += 1
                self.logger.error(f"Synthesis request {request.id} failed: {str(e)}")
                self._reject(request, classify_error(e))
            else:
                if request.future.done():
                    # Cancelled while in flight
                    self.temp_store.delete(result.audio_path)
                else:
                    self.stats['completed'] += 1
                    request.future.set_result(result)
            finally:
                self._current = None

    async def _pass(self, source: Path, prefix: str, step: Callable[[Path, Path], Awaitable[Path]]) -> Path:
        target = self.temp_store.new_path(prefix)
        try:
            return await step(source, target)
        except BaseException:
            self.temp_store.delete(target)
            raise
        finally:
            self.temp_store.delete(source)

    async def _process(self, request: SynthesisRequest) -> VoiceCloneResult:
        options = request.options
        profile = await self.store.ensure_registered(request.profile_id)

        path = self.temp_store.new_path("synth")
        try:
            path = await self.runtime.synthesize(profile.id, request.text, options.language, path)

            characteristics = profile.characteristics
            if options.characteristics is not None:
                characteristics = options.characteristics
                path = await self._pass(
                    path, "adjusted",
                    lambda src, dst: self.runtime.adjust_characteristics(src, characteristics, dst)
                )

            if AudioProcessor.needs_enhancement(options.quality):
                path = await self._pass(
                    path, "enhanced",
                    lambda src, dst: self.runtime.enhance(src, options.quality, dst)
                )

            similarity = await self.runtime.score_similarity(path, profile.embedding)
            duration = await self.runtime.get_duration(path)
        except BaseException:
            self.temp_store.delete(path)
            raise

        return VoiceCloneResult(
            audio_path=path,
            similarity=similarity,
            duration=duration,
            characteristics=characteristics,
        )

    def cancel_session(self, session_id: str) -> int:
        """Cancel pending and in-flight requests owned by a session. Returns the count."""
        cancelled = 0
        kept: Deque[SynthesisRequest] = deque()
        for request in self._pending:
            if request.options.session_id == session_id:
                self._reject(request, RequestCancelledError(f"Session {session_id} cancelled"))
                cancelled += 1
            else:
                kept.append(request)
        self._pending = kept

        current = self._current
        if current is not None and current.options.session_id == session_id and not current.future.done():
            current.future.cancel()
            cancelled += 1

        self.stats['cancelled'] += cancelled
        if cancelled:
            self.logger.info(f"Cancelled {cancelled} synthesis requests for session {session_id}")
        return cancelled

    async def close(self, drain: bool = True) -> None:
        """
        Stop accepting requests.

        Args:
            drain: Finish pending requests first; otherwise reject them
        """
        self._closed = True

        if drain:
            if self._worker is not None:
                await self._worker
            return

        while self._pending:
            self._reject(self._pending.popleft(), BackendNotReadyError("Synthesis queue shut down"))

        if self._worker is not None and not self._worker.done():
            current = self._current
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            if current is not None:
                self._reject(current, BackendNotReadyError("Synthesis queue shut down"))

    def get_status(self) -> Dict[str, int]:
        return {**self.stats, 'pending': self.pending}
