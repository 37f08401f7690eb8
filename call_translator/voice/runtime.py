"""
Async access to the voice engine

Runs blocking engine and audio post-processing calls in the executor,
enforces time budgets and classifies engine failures.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import soundfile as sf

from ..audio.processor import AudioProcessor
from ..config import SYNTHESIS_TIMEOUT, TTS_SAMPLE_RATE
from ..errors import (
    PipelineError, BackendNotReadyError, EmbeddingExtractionError, SynthesisError, classify_error
)
from ..models import VoiceCharacteristics
from ..resource import InferenceResource, wait_executor
from .embeddings import similarity_score


class VoiceRuntime:
    """Executor-backed wrapper around a VoiceEngine held by an InferenceResource."""

    def __init__(
        self,
        resource: InferenceResource,
        audio_processor: Optional[AudioProcessor] = None,
        timeout: float = SYNTHESIS_TIMEOUT
    ):
        """
        Args:
            resource: Resource whose loaded model is a VoiceEngine
            audio_processor: Processor for characteristics and enhancement passes
            timeout: Time budget for each engine call in seconds
        """
        self.resource = resource.retain()
        self.audio_processor = audio_processor or AudioProcessor(target_sample_rate=TTS_SAMPLE_RATE, max_duration=0)
        self.timeout = timeout
        self._engine_lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def is_ready(self) -> bool:
        return self.resource.is_loaded

    async def load(self) -> None:
        await self.resource.load()

    async def close(self) -> None:
        await self.resource.release()

    async def _call(
        self,
        method: str,
        *args,
        error_cls: type = SynthesisError,
        output_path: Optional[Path] = None
    ) -> Any:
        try:
            await self._engine_lock.acquire()
            try:
                future = self.resource.submit(lambda engine: getattr(engine, method)(*args))
            except BaseException:
                self._engine_lock.release()
                raise
            # The engine stays exclusive until the native call returns, even after a timeout
            future.add_done_callback(lambda _: self._engine_lock.release())
            return await wait_executor(future, self.timeout, discard=output_path)
        except BackendNotReadyError:
            raise
        except Exception as e:
            error = classify_error(e, error_cls)
            self.logger.error(f"Voice engine {method} failed: {error}")
            raise error

    async def extract_embedding(self, audio_path: Union[str, Path]) -> List[float]:
        if not self.is_ready:
            raise EmbeddingExtractionError("Voice engine is not ready")
        try:
            embedding = await self._call("extract_embedding", audio_path, error_cls=EmbeddingExtractionError)
        except PipelineError as e:
            if isinstance(e, EmbeddingExtractionError):
                raise
            raise EmbeddingExtractionError(f"Embedding extraction failed for {audio_path}: {e}")
        return list(embedding)

    async def register_profile(self, profile_id: str, samples: Sequence[str], embedding: Sequence[float]) -> None:
        await self._call("register_profile", profile_id, list(samples), list(embedding))

    async def has_profile(self, profile_id: str) -> bool:
        if not self.is_ready:
            return False
        return bool(await self._call("has_profile", profile_id))

    async def release_profile(self, profile_id: str) -> None:
        if not self.is_ready:
            return
        await self._call("release_profile", profile_id)

    async def synthesize(self, profile_id: str, text: str, language: str, output_path: Path) -> Path:
        return Path(await self._call(
            "synthesize", profile_id, text, language, output_path, output_path=output_path
        ))

    async def clone_from_sample(self, sample_path: Union[str, Path], text: str, language: str, output_path: Path) -> Path:
        return Path(await self._call(
            "clone_from_sample", sample_path, text, language, output_path, output_path=output_path
        ))

    async def get_info(self) -> Dict[str, Any]:
        if not self.is_ready:
            return {'loaded': False, 'resource': self.resource.name}
        info = dict(await self._call("get_info"))
        info['loaded'] = True
        return info

    async def _process(self, fn, *args, output_path: Optional[Path] = None) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await wait_executor(loop.run_in_executor(None, fn, *args), discard=output_path)
        except PipelineError:
            raise
        except Exception as e:
            raise SynthesisError(f"Audio post-processing failed: {str(e)}")

    def _adjust_file(self, input_path: Path, characteristics: VoiceCharacteristics, output_path: Path) -> Path:
        audio, sample_rate = sf.read(str(input_path), dtype='float32')
        adjusted = self.audio_processor.adjust_characteristics(audio, characteristics, sample_rate)
        return self.audio_processor.save_audio(adjusted, output_path, sample_rate)

    def _enhance_file(self, input_path: Path, quality: str, output_path: Path) -> Path:
        audio, sample_rate = sf.read(str(input_path), dtype='float32')
        enhanced = self.audio_processor.enhance_audio(audio, quality)
        return self.audio_processor.save_audio(enhanced, output_path, sample_rate)

    async def adjust_characteristics(self, input_path: Path, characteristics: VoiceCharacteristics, output_path: Path) -> Path:
        output_path = Path(output_path)
        return await self._process(self._adjust_file, Path(input_path), characteristics, output_path, output_path=output_path)

    async def enhance(self, input_path: Path, quality: str, output_path: Path) -> Path:
        output_path = Path(output_path)
        return await self._process(self._enhance_file, Path(input_path), quality, output_path, output_path=output_path)

    async def get_duration(self, audio_path: Path) -> float:
        return await self._process(self.audio_processor.get_duration, audio_path)

    async def score_similarity(self, audio_path: Path, reference: Sequence[float]) -> float:
        """Similarity of the output voice to a reference embedding; 0.0 when unscorable."""
        try:
            embedding = await self.extract_embedding(audio_path)
        except PipelineError as e:
            self.logger.warning(f"Similarity scoring unavailable: {e}")
            return 0.0
        return similarity_score(reference, embedding)
