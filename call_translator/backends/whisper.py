"""
Speech transcription with OpenAI Whisper

Remote fallbacks only accept text, so audio input is transcribed here first.
Whisper also provides spoken-language detection.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..audio.processor import AudioProcessor
from ..config import WHISPER_MODEL_SIZE, MODEL_DEVICE, SAMPLE_RATE, MAX_AUDIO_SECONDS
from ..resource import InferenceResource
from .base import select_device


def create_whisper_resource(model_size: str = WHISPER_MODEL_SIZE, device: str = MODEL_DEVICE) -> InferenceResource:
    def load():
        import whisper
        return whisper.load_model(model_size, device=select_device(device))

    return InferenceResource(f"whisper:{model_size}", loader=load)


class WhisperTranscriber:
    """Transcribes and language-identifies captured speech."""

    def __init__(self, resource: Optional[InferenceResource] = None, max_audio_seconds: float = MAX_AUDIO_SECONDS):
        """
        Args:
            resource: Shared Whisper model session (a new one is created if None)
            max_audio_seconds: Audio payload limit per request
        """
        self.resource = (resource or create_whisper_resource()).retain()
        self.audio_processor = AudioProcessor(target_sample_rate=SAMPLE_RATE, max_duration=max_audio_seconds)
        self.logger = logging.getLogger(__name__)

    async def load(self) -> None:
        await self.resource.load()

    async def close(self) -> None:
        await self.resource.release()

    async def is_ready(self) -> bool:
        return self.resource.is_loaded

    async def transcribe(self, audio_path: Union[str, Path], language: Optional[str] = None) -> Dict[str, Any]:
        """
        Transcribe an audio file.

        Returns:
            Dictionary with 'text' and 'language'
        """
        audio = self.audio_processor.load_audio(audio_path)
        result = await self.resource.run(self._transcribe, audio, language)
        text = result.get('text', '').strip()
        self.logger.debug(f"Transcribed {audio_path}: '{text[:50]}'")
        return {'text': text, 'language': result.get('language') or language}

    async def detect_language(self, audio_path: Union[str, Path]) -> str:
        audio = self.audio_processor.load_audio(audio_path)
        return await self.resource.run(self._detect, audio)

    @staticmethod
    def _transcribe(model, audio, language: Optional[str]) -> Dict[str, Any]:
        options = {'language': language if language and language != 'auto' else None, 'fp16': False}
        options = {k: v for k, v in options.items() if v is not None}
        return model.transcribe(audio, **options)

    @staticmethod
    def _detect(model, audio) -> str:
        import whisper

        segment = whisper.pad_or_trim(audio)
        mel = whisper.log_mel_spectrogram(segment, n_mels=model.dims.n_mels).to(model.device)
        _, probs = model.detect_language(mel)
        return max(probs, key=probs.get)
