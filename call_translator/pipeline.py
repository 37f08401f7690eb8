"""
Main Pipeline Module

CallTranslator wires the translation backends, the voice cloning service and
the session manager together and exposes file-level translation for the CLI.
"""

import logging
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

from .adapters import AudioIOAdapter, CallSignal
from .audio.temp_files import TempAudioStore
from .backends import GoogleTranslateBackend, MyMemoryBackend, SeamlessM4TBackend, TranslationBackend, WhisperTranscriber
from .config import SUPPORTED_LANGUAGES, TEMP_AUDIO_DIR, ensure_directories
from .errors import PipelineError
from .models import TranslationOutput
from .orchestrator import TranslationOrchestrator
from .session import SessionConfig, SessionManager, TranslationSession
from .voice.cloner import VoiceCloningService


class CallTranslator:
    """Real-time call translation system with voice cloning."""

    def __init__(
        self,
        primary: Optional[TranslationBackend] = None,
        fallbacks: Optional[Sequence[TranslationBackend]] = None,
        transcriber: Optional[WhisperTranscriber] = None,
        voice_service: Optional[VoiceCloningService] = None,
        temp_store: Optional[TempAudioStore] = None,
        enable_on_device: bool = True,
        enable_voice: bool = True,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize the call translator.

        Args:
            primary: On-device backend (SeamlessM4T when None and enabled)
            fallbacks: Remote backends in fallback order (MyMemory, Google when None)
            transcriber: Speech transcriber for audio fallbacks (Whisper when None and enabled)
            voice_service: Voice cloning service (XTTS-backed when None and enabled)
            temp_store: Store for transient audio files
            enable_on_device: Whether to build the on-device models
            enable_voice: Whether to build the voice cloning service
            progress_callback: Optional callback for progress updates
        """
        self.temp_store = temp_store or TempAudioStore(TEMP_AUDIO_DIR)
        self.progress_callback = progress_callback

        if primary is None and enable_on_device:
            primary = SeamlessM4TBackend()
        if transcriber is None and enable_on_device:
            transcriber = WhisperTranscriber()
        if fallbacks is None:
            fallbacks = [MyMemoryBackend(), GoogleTranslateBackend()]
        if voice_service is None and enable_voice:
            voice_service = VoiceCloningService(temp_store=self.temp_store)

        self.voice_service = voice_service
        self.orchestrator = TranslationOrchestrator(
            primary=primary,
            fallbacks=fallbacks,
            transcriber=transcriber,
            voice_service=voice_service,
            temp_store=self.temp_store,
        )
        self.sessions = SessionManager(self.orchestrator)

        self.logger = logging.getLogger(__name__)

        # Processing statistics
        self.stats = {
            'total_processed': 0,
            'successful_translations': 0,
            'failed_translations': 0,
            'total_processing_time': 0.0
        }

    async def initialize(self, load_models: bool = True) -> Dict[str, bool]:
        """
        Load models. A component that fails to load is reported, not fatal:
        translation falls back to the remote backends.

        Returns:
            Dictionary of component name -> loaded
        """
        ensure_directories()
        loaded = {}
        components = [
            ('on_device_translation', self.orchestrator.primary, "Loading on-device translation model..."),
            ('speech_transcriber', self.orchestrator.transcriber, "Loading speech recognition model..."),
            ('voice_cloning', self.voice_service, "Loading voice cloning model..."),
        ]

        for name, component, message in components:
            if component is None or not load_models:
                loaded[name] = False
                continue
            self._update_progress(message)
            try:
                if isinstance(component, VoiceCloningService):
                    await component.initialize()
                else:
                    await component.load()
                loaded[name] = True
            except PipelineError as e:
                self.logger.warning(f"{name} unavailable: {e}")
                loaded[name] = False

        self._update_progress("Initialization complete!")
        self.logger.info(f"Call translation system initialized: {loaded}")
        return loaded

    async def translate_file(
        self,
        source: Union[str, Path],
        source_lang: Optional[str] = None,
        target_lang: str = "en",
        profile_id: Optional[str] = None,
        preserve_voice: bool = False,
        output_path: Optional[Union[str, Path]] = None,
        is_text: bool = False
    ) -> Dict[str, Any]:
        """
        Translate an audio file (or a text string) and optionally keep the spoken output.

        Args:
            source: Audio file path, or text when is_text is set
            source_lang: Source language (auto-detected if None)
            target_lang: Target language code
            profile_id: Voice profile to speak the translation with
            preserve_voice: Clone the input speaker's voice when no profile is given
            output_path: Where to copy the translated speech
            is_text: Treat source as text

        Returns:
            Dictionary with translation results
        """
        start_time = time.time()
        output: Optional[TranslationOutput] = None

        try:
            self._update_progress("Translating...")
            output = await self.orchestrator.translate(
                source if is_text else Path(source),
                source_lang,
                target_lang,
                profile=profile_id,
                preserve_voice=preserve_voice,
                want_audio=output_path is not None,
            )

            saved_audio = None
            if output.audio_path is not None and output_path is not None:
                output_path = Path(output_path)
                output_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(output.audio_path, output_path)
                saved_audio = str(output_path)

            processing_time = time.time() - start_time
            self.stats['total_processed'] += 1
            self.stats['successful_translations'] += 1
            self.stats['total_processing_time'] += processing_time

            result = output.result
            return {
                'success': True,
                'original_text': result.original_text,
                'translated_text': result.translated_text,
                'source_language': result.source_language,
                'target_language': result.target_language,
                'confidence': result.confidence,
                'engine': result.engine,
                'output_audio': saved_audio,
                'similarity': output.voice.similarity if output.voice else None,
                'processing_time': processing_time,
            }

        except PipelineError as e:
            self.stats['total_processed'] += 1
            self.stats['failed_translations'] += 1
            self.logger.error(f"Translation failed: {e}")
            return {
                'success': False,
                'error': str(e),
                'stage': e.stage,
                'processing_time': time.time() - start_time
            }
        finally:
            if output is not None:
                self.temp_store.delete(output.audio_path)

    async def start_call(
        self,
        call_id: str,
        audio_io: AudioIOAdapter,
        config: Optional[SessionConfig] = None,
        call_signal: Optional[CallSignal] = None,
        on_result: Optional[Callable[[TranslationOutput], None]] = None
    ) -> TranslationSession:
        return await self.sessions.start_session(call_id, audio_io, config, call_signal, on_result)

    async def stop_call(self, call_id: str) -> bool:
        return await self.sessions.stop_session(call_id)

    def get_supported_languages(self) -> Dict[str, str]:
        return SUPPORTED_LANGUAGES

    async def get_system_info(self) -> Dict[str, Any]:
        """Get system information and status."""
        info = {
            'backends': await self.orchestrator.get_backend_status(),
            'statistics': self.stats.copy(),
            'supported_languages': len(SUPPORTED_LANGUAGES),
            'active_calls': [
                call_id for call_id, session in self.sessions.sessions.items() if session.is_active
            ],
        }
        if self.voice_service is not None:
            info['voice_cloning'] = await self.voice_service.get_model_info()
        return info

    async def shutdown(self) -> None:
        """Stop every call and release all models and transient audio."""
        await self.sessions.stop_all()
        if self.voice_service is not None:
            await self.voice_service.cleanup()
        for component in (self.orchestrator.primary, self.orchestrator.transcriber):
            close = getattr(component, 'close', None)
            if close is not None:
                await close()
        self.temp_store.cleanup()
        self.logger.info("Call translation system shut down")

    def _update_progress(self, message: str) -> None:
        """Update progress via callback if available."""
        if self.progress_callback:
            self.progress_callback(message)
        self.logger.debug(message)


def create_call_translator(
    enable_on_device: bool = True,
    enable_voice: bool = True,
    progress_callback: Optional[Callable[[str], None]] = None
) -> CallTranslator:
    """
    Create a call translator with the default backends.

    Args:
        enable_on_device: Whether to use the on-device models
        enable_voice: Whether to enable voice cloning
        progress_callback: Optional progress callback

    Returns:
        CallTranslator instance (call initialize() before use)
    """
    return CallTranslator(
        enable_on_device=enable_on_device,
        enable_voice=enable_voice,
        progress_callback=progress_callback,
    )
