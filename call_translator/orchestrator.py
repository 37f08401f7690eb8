"""
Translation Orchestrator

Routes each request to the on-device backend when it is ready and falls back
to the remote APIs in a fixed order. Native responses are normalized into
TranslationResult records; voice output is produced through the voice
cloning service when requested.
"""

import asyncio
import logging
from collections import deque
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple, Union

from .audio.temp_files import TempAudioStore
from .backends.base import TranslationBackend
from .config import (
    BACKEND_TIMEOUT, LANGUAGE_DETECTION_POLICY, DEFAULT_FALLBACK_LANGUAGE, DETECTION_FALLBACK_CONFIDENCE,
    TRANSLATION_HISTORY_LIMIT, SUPPORTED_LANGUAGES, REAL_TIME_QUALITY, TEMP_AUDIO_DIR, MAX_TEXT_CHARS
)
from .errors import LanguageDetectionError, PipelineError, TranslationUnavailableError
from .models import AudioChunk, SynthesisOptions, TranslationOutput, TranslationResult, VoiceProfile

DETECTION_POLICIES = ("fallback", "strict")

Source = Union[str, Path, AudioChunk]


def _normalize_native(response: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str], Optional[float]]:
    return (
        response['translated_text'],
        response.get('original_text'),
        response.get('source_language'),
        response.get('confidence'),
    )


def _normalize_mymemory(response: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str], Optional[float]]:
    data = response['responseData']
    match = data.get('match')
    return data['translatedText'], None, None, float(match) if match is not None else None


def _normalize_googletrans(response: Any) -> Tuple[str, Optional[str], Optional[str], Optional[float]]:
    confidence = getattr(response, 'confidence', None)
    return response.text, getattr(response, 'origin', None), getattr(response, 'src', None), confidence


NORMALIZERS = {
    'native': _normalize_native,
    'mymemory': _normalize_mymemory,
    'googletrans': _normalize_googletrans,
}


class TranslationOrchestrator:
    """Primary-then-fallback translation with optional voice output."""

    def __init__(
        self,
        primary: Optional[TranslationBackend] = None,
        fallbacks: Optional[Sequence[TranslationBackend]] = None,
        transcriber: Optional[Any] = None,
        voice_service: Optional[Any] = None,
        temp_store: Optional[TempAudioStore] = None,
        timeout: float = BACKEND_TIMEOUT,
        detection_policy: str = LANGUAGE_DETECTION_POLICY,
        fallback_language: str = DEFAULT_FALLBACK_LANGUAGE,
        history_limit: int = TRANSLATION_HISTORY_LIMIT
    ):
        """
        Initialize the orchestrator.

        Args:
            primary: On-device backend tried first
            fallbacks: Remote backends tried in order after the primary
            transcriber: Speech transcriber used to feed text-only fallbacks
            voice_service: VoiceCloningService for cloned voice output
            temp_store: Store for materialized audio chunks
            timeout: Per-call time budget in seconds
            detection_policy: 'fallback' or 'strict'
            fallback_language: Language assumed when detection fails under 'fallback'
            history_limit: Number of results kept in history
        """
        if detection_policy not in DETECTION_POLICIES:
            raise ValueError(f"Unknown language detection policy: {detection_policy}")

        self.primary = primary
        self.fallbacks = list(fallbacks or [])
        self.transcriber = transcriber
        self.voice_service = voice_service
        self.temp_store = temp_store or TempAudioStore(TEMP_AUDIO_DIR)
        self.timeout = timeout
        self.detection_policy = detection_policy
        self.fallback_language = fallback_language
        self.history: Deque[TranslationResult] = deque(maxlen=history_limit)

        self.logger = logging.getLogger(__name__)

    # Public API

    async def translate(
        self,
        source: Source,
        source_lang: Optional[str],
        target_lang: str,
        profile: Optional[Union[VoiceProfile, str]] = None,
        preserve_voice: bool = False,
        want_audio: bool = False,
        session_id: Optional[str] = None
    ) -> TranslationOutput:
        """
        Translate text or speech.

        Args:
            source: Text, an audio file path, or an AudioChunk
            source_lang: Source language code, or None/'auto' to detect
            target_lang: Target language code
            profile: Voice profile (or id) to speak the translation with
            preserve_voice: Clone the speaker's voice from the input audio when no profile is given
            want_audio: Return translated speech from the on-device model when no voice cloning is requested
            session_id: Owning call session, used for synthesis cancellation

        Returns:
            TranslationOutput with the result and any audio to play
        """
        is_audio = isinstance(source, (Path, AudioChunk))

        with ExitStack() as stack:
            audio_path = None
            if isinstance(source, AudioChunk):
                audio_path = stack.enter_context(self.temp_store.scoped("chunk"))
                audio_path.write_bytes(source.to_bytes())
            elif isinstance(source, Path):
                audio_path = source

            source_lang, confidence_cap = await self._resolve_source_language(audio_path, source_lang)

            speech_output = want_audio and profile is None and not preserve_voice
            if is_audio:
                result, audio_out = await self._translate_audio(audio_path, source_lang, target_lang, speech_output)
            else:
                result, audio_out = await self._translate_text(source, source_lang, target_lang), None

            if confidence_cap is not None and result.confidence > confidence_cap:
                result = self._with_confidence(result, confidence_cap)

            self.history.appendleft(result)
            self.logger.info(f"Translated via {result.engine}: {source_lang} -> {target_lang} "
                             f"(confidence {result.confidence:.2f})")

            voice = None
            if result.translated_text.strip() and (profile is not None or (preserve_voice and is_audio)):
                voice = await self._voice_output(result, audio_path, profile, session_id)
                audio_out = voice.audio_path

        return TranslationOutput(result=result, audio_path=audio_out, voice=voice)

    async def translate_text(self, text: str, source_lang: Optional[str], target_lang: str) -> TranslationResult:
        return (await self.translate(text, source_lang, target_lang)).result

    async def translate_speech(self, audio: Union[Path, AudioChunk], source_lang: Optional[str], target_lang: str) -> TranslationResult:
        return (await self.translate(Path(audio) if isinstance(audio, str) else audio, source_lang, target_lang)).result

    async def batch_translate(self, texts: List[str], source_lang: str, target_lang: str) -> List[TranslationResult]:
        results = []
        for text in texts:
            results.append(await self.translate_text(text, source_lang, target_lang))
        return results

    async def detect_language(self, audio: Union[Path, AudioChunk]) -> str:
        """Detect the spoken language, applying the configured failure policy."""
        if isinstance(audio, AudioChunk):
            with self.temp_store.scoped("detect") as path:
                path.write_bytes(audio.to_bytes())
                language, _ = await self._detect(path)
                return language
        language, _ = await self._detect(Path(audio))
        return language

    def get_supported_languages(self) -> Dict[str, str]:
        return dict(SUPPORTED_LANGUAGES)

    async def get_backend_status(self) -> List[Dict[str, Any]]:
        statuses = []
        for backend in ([self.primary] if self.primary else []) + self.fallbacks:
            status = backend.get_status()
            status['ready'] = await self._is_ready(backend)
            statuses.append(status)
        return statuses

    def clear_history(self) -> None:
        self.history.clear()

    # Internals

    async def _call(self, coro):
        return await asyncio.wait_for(coro, self.timeout)

    async def _is_ready(self, backend: TranslationBackend) -> bool:
        try:
            return bool(await self._call(backend.is_ready()))
        except Exception as e:
            self.logger.warning(f"Readiness check failed for {backend.name}: {str(e)}")
            return False

    def _normalize(
        self,
        backend: TranslationBackend,
        response: Any,
        original_text: Optional[str],
        source_lang: Optional[str],
        target_lang: str
    ) -> TranslationResult:
        normalizer = NORMALIZERS.get(backend.response_format)
        if normalizer is None:
            raise ValueError(f"Unknown response format: {backend.response_format}")

        translated, original, detected, confidence = normalizer(response)
        if confidence is None:
            confidence = backend.default_confidence
        else:
            confidence = min(float(confidence), backend.default_confidence)

        return TranslationResult(
            original_text=original_text if original_text is not None else (original or ""),
            translated_text=translated or "",
            source_language=source_lang or backend.unmap_language(detected or "") or self.fallback_language,
            target_language=target_lang,
            confidence=confidence,
            engine=backend.name,
        )

    @staticmethod
    def _with_confidence(result: TranslationResult, confidence: float) -> TranslationResult:
        return TranslationResult(
            original_text=result.original_text,
            translated_text=result.translated_text,
            source_language=result.source_language,
            target_language=result.target_language,
            confidence=confidence,
            engine=result.engine,
            timestamp=result.timestamp,
        )

    async def _resolve_source_language(self, audio_path: Optional[Path], source_lang: Optional[str]) -> Tuple[str, Optional[float]]:
        if source_lang and source_lang != 'auto':
            return source_lang, None

        if audio_path is not None:
            language, detected = await self._detect(audio_path)
            return language, None if detected else DETECTION_FALLBACK_CONFIDENCE

        if self.detection_policy == 'strict':
            raise LanguageDetectionError("Source language is required for text input")
        return self.fallback_language, DETECTION_FALLBACK_CONFIDENCE

    async def _detect(self, audio_path: Path) -> Tuple[str, bool]:
        for detector in (self.primary, self.transcriber):
            if detector is None or not await self._is_ready(detector):
                continue
            try:
                language = await self._call(detector.detect_language(audio_path))
            except NotImplementedError:
                continue
            except Exception as e:
                self.logger.warning(f"Language detection failed on {type(detector).__name__}: {str(e)}")
                continue
            if language:
                return language, True

        if self.detection_policy == 'strict':
            raise LanguageDetectionError(f"Could not detect the language of {audio_path}")

        self.logger.warning(f"Language detection failed, assuming '{self.fallback_language}'")
        return self.fallback_language, False

    async def _translate_text(self, text: str, source_lang: str, target_lang: str) -> TranslationResult:
        if not text.strip():
            return TranslationResult(text, text, source_lang, target_lang, 1.0, engine='passthrough')

        text = text[:MAX_TEXT_CHARS]
        if self.primary is not None and await self._is_ready(self.primary):
            try:
                response = await self._call(self.primary.translate_text(text, source_lang, target_lang))
                return self._normalize(self.primary, response, text, source_lang, target_lang)
            except Exception as e:
                self.logger.warning(f"Primary backend {self.primary.name} failed: {str(e)}")

        return await self._translate_with_fallbacks(text, source_lang, target_lang)

    async def _translate_audio(
        self,
        audio_path: Path,
        source_lang: str,
        target_lang: str,
        speech_output: bool
    ) -> Tuple[TranslationResult, Optional[Path]]:
        if self.primary is not None and self.primary.supports_speech and await self._is_ready(self.primary):
            output_path = None
            try:
                if speech_output:
                    output_path = self.temp_store.new_path("s2s")
                    response = await self._call(
                        self.primary.translate_speech_to_speech(audio_path, source_lang, target_lang, output_path)
                    )
                else:
                    response = await self._call(self.primary.translate_speech(audio_path, source_lang, target_lang))
                result = self._normalize(self.primary, response, None, source_lang, target_lang)
                audio_out = response.get('audio_path') if isinstance(response, dict) else None
                return result, Path(audio_out) if audio_out else None
            except Exception as e:
                self.temp_store.delete(output_path)
                self.logger.warning(f"Primary backend {self.primary.name} failed: {str(e)}")

        transcript = await self._transcribe(audio_path, source_lang)
        if not transcript.strip():
            return TranslationResult("", "", source_lang, target_lang, 1.0, engine='passthrough'), None
        return await self._translate_with_fallbacks(transcript[:MAX_TEXT_CHARS], source_lang, target_lang), None

    async def _transcribe(self, audio_path: Path, source_lang: str) -> str:
        if self.transcriber is None:
            raise TranslationUnavailableError("Primary backend unavailable and no transcriber for audio fallback")
        try:
            if not await self._is_ready(self.transcriber):
                await self._call(self.transcriber.load())
            transcript = await self._call(self.transcriber.transcribe(audio_path, source_lang))
        except Exception as e:
            self.logger.error(f"Transcription for fallback translation failed: {str(e)}")
            raise TranslationUnavailableError(f"Transcription failed: {str(e)}")
        return transcript['text']

    async def _translate_with_fallbacks(self, text: str, source_lang: str, target_lang: str) -> TranslationResult:
        for backend in self.fallbacks:
            if not await self._is_ready(backend):
                self.logger.debug(f"Fallback {backend.name} not ready, skipping")
                continue
            try:
                response = await self._call(backend.translate_text(text, source_lang, target_lang))
                return self._normalize(backend, response, text, source_lang, target_lang)
            except Exception as e:
                self.logger.warning(f"Fallback backend {backend.name} failed: {str(e)}")

        raise TranslationUnavailableError(f"All translation backends failed for {source_lang} -> {target_lang}")

    async def _voice_output(
        self,
        result: TranslationResult,
        audio_path: Optional[Path],
        profile: Optional[Union[VoiceProfile, str]],
        session_id: Optional[str]
    ):
        if self.voice_service is None:
            raise PipelineError("Voice output requested but no voice cloning service is configured", stage="synthesis")

        if profile is not None:
            profile_id = profile.id if isinstance(profile, VoiceProfile) else profile
            stored = self.voice_service.store.get(profile_id)
            quality = REAL_TIME_QUALITY if session_id else getattr(stored, 'quality', REAL_TIME_QUALITY)
            options = SynthesisOptions(
                language=result.target_language,
                quality=quality,
                real_time=session_id is not None,
                session_id=session_id,
            )
            return await self.voice_service.synthesize_voice_with_cloning(result.translated_text, profile_id, options)

        return await self.voice_service.clone_voice_from_sample(
            audio_path, result.translated_text, result.target_language
        )
