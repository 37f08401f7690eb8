"""
Voice Cloning Service

Facade over the profile store, the synthesis queue and the voice engine
runtime, used by the orchestrator and the call session.
"""

import base64
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..audio.temp_files import TempAudioStore
from ..config import DEFAULT_PROFILE_QUALITY, REAL_TIME_QUALITY, PROFILES_FILE, VOICE_SAMPLES_DIR, TEMP_AUDIO_DIR
from ..errors import PipelineError, ProfileNotFoundError
from ..models import AudioChunk, SynthesisOptions, VoiceCharacteristics, VoiceCloneResult, VoiceProfile
from .embeddings import similarity_score
from .engine import VoiceEngine, create_voice_resource
from .profiles import VoiceProfileStore
from .runtime import VoiceRuntime
from .synthesis_queue import SynthesisQueue


class VoiceCloningService:
    """Voice profiles, queued cloned synthesis and direct sample cloning."""

    def __init__(
        self,
        engine: Optional[VoiceEngine] = None,
        runtime: Optional[VoiceRuntime] = None,
        temp_store: Optional[TempAudioStore] = None,
        profiles_file: Union[str, Path] = PROFILES_FILE,
        samples_dir: Optional[Union[str, Path]] = VOICE_SAMPLES_DIR,
        queue_options: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize the service.

        Args:
            engine: Voice engine instance (XTTS is loaded lazily when None)
            runtime: Prebuilt runtime (takes precedence over engine)
            temp_store: Store for transient audio
            profiles_file: Voice profile JSON document
            samples_dir: Directory profile samples are copied into
            queue_options: Extra SynthesisQueue keyword arguments
        """
        self.runtime = runtime or VoiceRuntime(create_voice_resource(engine))
        self.temp_store = temp_store or TempAudioStore(TEMP_AUDIO_DIR)
        self.store = VoiceProfileStore(self.runtime, profiles_file, samples_dir)
        self.queue = SynthesisQueue(self.store, self.runtime, self.temp_store, **(queue_options or {}))

        self.logger = logging.getLogger(__name__)

    @property
    def is_ready(self) -> bool:
        return self.runtime.is_ready

    async def initialize(self) -> None:
        """Load the voice engine and re-register persisted profiles."""
        await self.runtime.load()
        restored = await self.store.restore()
        self.logger.info(f"Voice cloning initialized ({restored} profiles restored)")

    async def create_voice_profile(
        self,
        name: str,
        samples: Sequence[Union[str, Path]],
        characteristics: Optional[VoiceCharacteristics] = None,
        language: str = "en",
        quality: str = DEFAULT_PROFILE_QUALITY
    ) -> VoiceProfile:
        return await self.store.create_profile(name, samples, characteristics, language, quality)

    def _resolve_profile(self, profile_id: Optional[str]) -> VoiceProfile:
        if profile_id is None:
            profile = self.store.get_active()
            if profile is None:
                raise ProfileNotFoundError("No active voice profile")
            return profile

        profile = self.store.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(f"Voice profile not found: {profile_id}")
        return profile

    async def synthesize_voice_with_cloning(
        self,
        text: str,
        profile_id: Optional[str] = None,
        options: Optional[SynthesisOptions] = None
    ) -> VoiceCloneResult:
        """
        Synthesize text in a profile's voice through the synthesis queue.

        Args:
            text: Text to speak
            profile_id: Profile to use (the active profile when None)
            options: Synthesis options (profile language and quality when None)

        Returns:
            VoiceCloneResult
        """
        profile = self._resolve_profile(profile_id)
        if options is None:
            options = SynthesisOptions(language=profile.language, quality=profile.quality)
        return await self.queue.synthesize(text, profile.id, options)

    async def clone_voice_from_sample(
        self,
        sample_path: Union[str, Path],
        text: str,
        language: str,
        characteristics: Optional[VoiceCharacteristics] = None,
        quality: str = REAL_TIME_QUALITY
    ) -> VoiceCloneResult:
        """
        Speak text in the voice of a single sample without creating a profile.

        The similarity compares the sample's embedding with the output's.
        """
        created = [self.temp_store.new_path("clone")]
        try:
            path = await self.runtime.clone_from_sample(sample_path, text, language, created[0])

            applied = characteristics or VoiceCharacteristics()
            if characteristics is not None and not characteristics.is_neutral:
                created.append(self.temp_store.new_path("adjusted"))
                path = await self.runtime.adjust_characteristics(path, characteristics, created[-1])

            if self.runtime.audio_processor.needs_enhancement(quality):
                created.append(self.temp_store.new_path("enhanced"))
                path = await self.runtime.enhance(path, quality, created[-1])

            try:
                reference = await self.runtime.extract_embedding(sample_path)
                produced = await self.runtime.extract_embedding(path)
                similarity = similarity_score(reference, produced)
            except PipelineError as e:
                self.logger.warning(f"Similarity scoring unavailable: {e}")
                similarity = 0.0

            duration = await self.runtime.get_duration(path)
        except BaseException:
            for intermediate in created:
                self.temp_store.delete(intermediate)
            raise

        for intermediate in created[:-1]:
            self.temp_store.delete(intermediate)

        return VoiceCloneResult(audio_path=path, similarity=similarity, duration=duration, characteristics=applied)

    async def translate_with_voice_cloning(
        self,
        translated_text: str,
        source_audio: Union[str, Path],
        language: str,
        characteristics: Optional[VoiceCharacteristics] = None,
        quality: str = DEFAULT_PROFILE_QUALITY,
        session_id: Optional[str] = None
    ) -> VoiceCloneResult:
        """Speak translated text in the source speaker's voice via a temporary profile."""
        profile = await self.store.create_profile(
            name="Temporary voice",
            samples=[source_audio],
            characteristics=characteristics,
            language=language,
            quality=quality,
            profile_id=f"temp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}",
            persist=False,
        )
        try:
            options = SynthesisOptions(
                language=language,
                characteristics=characteristics,
                quality=quality,
                session_id=session_id,
            )
            return await self.queue.synthesize(translated_text, profile.id, options)
        finally:
            await self.store.delete(profile.id)

    async def process_real_time_voice_cloning(
        self,
        chunk: AudioChunk,
        text: str,
        language: str,
        profile_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Clone a voice for one captured chunk at real-time quality.

        Uses the given (or active) profile when there is one, otherwise clones
        from the chunk itself. Every intermediate file is removed.

        Returns:
            Dictionary with base64 'audio', 'similarity' and 'duration'
        """
        if profile_id is None and self.store.get_active() is not None:
            profile_id = self.store.get_active().id

        with self.temp_store.scoped("chunk") as chunk_path:
            chunk_path.write_bytes(chunk.to_bytes())

            if profile_id is not None:
                options = SynthesisOptions(language=language, quality=REAL_TIME_QUALITY, real_time=True, session_id=session_id)
                result = await self.queue.synthesize(text, profile_id, options)
            else:
                result = await self.clone_voice_from_sample(chunk_path, text, language)

        try:
            audio = base64.b64encode(Path(result.audio_path).read_bytes()).decode('ascii')
        finally:
            self.temp_store.delete(result.audio_path)

        return {
            'audio': audio,
            'similarity': result.similarity,
            'duration': result.duration,
        }

    async def batch_voice_cloning(
        self,
        texts: List[str],
        profile_id: Optional[str] = None,
        options: Optional[SynthesisOptions] = None
    ) -> List[Dict[str, Any]]:
        """Synthesize several texts with one profile; failures are reported per item."""
        profile = self._resolve_profile(profile_id)
        futures = [self.queue.submit(text, profile.id, options) for text in texts]

        results = []
        for text, future in zip(texts, futures):
            try:
                result = await future
                results.append({'text': text, 'success': True, 'result': result})
            except PipelineError as e:
                results.append({'text': text, 'success': False, 'error': str(e)})

        successful = sum(1 for r in results if r['success'])
        self.logger.info(f"Batch cloning completed: {successful}/{len(texts)} successful")
        return results

    async def enhance_voice_quality(self, audio_path: Union[str, Path], quality: str = "high") -> Path:
        """Run the enhancement pass on an audio file, returning a new temp file."""
        return await self.runtime.enhance(Path(audio_path), quality, self.temp_store.new_path("enhanced"))

    def compare_voices(self, profile_a: str, profile_b: str) -> float:
        return self.store.compare(profile_a, profile_b)

    def cancel_session(self, session_id: str) -> int:
        return self.queue.cancel_session(session_id)

    async def get_model_info(self) -> Dict[str, Any]:
        info = await self.runtime.get_info()
        info['profiles'] = len(self.store.list_profiles())
        info['active_profile'] = getattr(self.store.get_active(), 'id', None)
        info['queue'] = self.queue.get_status()
        return info

    async def cleanup(self) -> None:
        """Shut down the queue, remove transient audio and release the engine."""
        await self.queue.close(drain=False)
        self.temp_store.cleanup()
        await self.runtime.close()
        self.logger.info("Voice cloning service cleaned up")
