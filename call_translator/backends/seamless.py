"""
On-device SeamlessM4T backend

Speech-to-text, text-to-text and speech-to-speech translation with a single
multilingual model loaded through Hugging Face transformers.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from ..audio.processor import AudioProcessor
from ..config import (
    SEAMLESS_MODEL_NAME, SEAMLESS_LANGUAGE_MAP, PRIMARY_CONFIDENCE,
    MODEL_DEVICE, MAX_TEXT_CHARS, MAX_AUDIO_SECONDS, SAMPLE_RATE
)
from ..resource import InferenceResource, wait_executor
from .base import TranslationBackend, select_device


class SeamlessSession:
    """Loaded processor and model pair."""

    def __init__(self, processor, model, device: str):
        self.processor = processor
        self.model = model
        self.device = device

    @property
    def output_sample_rate(self) -> int:
        return int(getattr(self.model.config, 'sampling_rate', SAMPLE_RATE))


def load_seamless_session(model_name: str = SEAMLESS_MODEL_NAME, device: str = MODEL_DEVICE) -> SeamlessSession:
    """Blocking loader for the SeamlessM4T v2 model."""
    from transformers import AutoProcessor, SeamlessM4Tv2Model

    device = select_device(device)
    processor = AutoProcessor.from_pretrained(model_name)
    model = SeamlessM4Tv2Model.from_pretrained(model_name).to(device)
    model.eval()
    return SeamlessSession(processor, model, device)


def unload_seamless_session(session: SeamlessSession) -> None:
    if session is None:
        return
    session.model = None
    session.processor = None
    if session.device == "cuda":
        import torch
        torch.cuda.empty_cache()


def create_seamless_resource(model_name: str = SEAMLESS_MODEL_NAME, device: str = MODEL_DEVICE) -> InferenceResource:
    return InferenceResource(
        f"seamless:{model_name}",
        loader=lambda: load_seamless_session(model_name, device),
        unloader=unload_seamless_session,
    )


class SeamlessM4TBackend(TranslationBackend):
    """Primary on-device translation backend."""

    name = "seamless"
    response_format = "native"
    default_confidence = PRIMARY_CONFIDENCE
    language_map = SEAMLESS_LANGUAGE_MAP
    supports_speech = True

    def __init__(
        self,
        resource: Optional[InferenceResource] = None,
        max_text_chars: int = MAX_TEXT_CHARS,
        max_audio_seconds: float = MAX_AUDIO_SECONDS
    ):
        """
        Args:
            resource: Shared model session (a new one is created if None)
            max_text_chars: Text payload limit per request
            max_audio_seconds: Audio payload limit per request
        """
        super().__init__()
        self.resource = (resource or create_seamless_resource()).retain()
        self.max_text_chars = max_text_chars
        self.max_audio_seconds = max_audio_seconds
        self.audio_processor = AudioProcessor(target_sample_rate=SAMPLE_RATE, max_duration=max_audio_seconds)

    async def load(self) -> None:
        await self.resource.load()

    async def close(self) -> None:
        await self.resource.release()

    async def is_ready(self) -> bool:
        return self.resource.is_loaded

    async def translate_text(self, text: str, source_lang: str, target_lang: str) -> Dict[str, Any]:
        text = text[:self.max_text_chars]
        src, tgt = self.map_language(source_lang), self.map_language(target_lang)
        translated = await self.resource.run(self._generate_text, text, src, tgt)
        return {
            'translated_text': translated,
            'original_text': text,
            'source_language': source_lang,
        }

    async def _load_audio(self, audio_path: Union[str, Path]) -> np.ndarray:
        # librosa decoding and resampling block; keep them off the event loop
        loop = asyncio.get_running_loop()
        return await wait_executor(loop.run_in_executor(None, self.audio_processor.load_audio, audio_path))

    async def translate_speech(
        self,
        audio_path: Union[str, Path],
        source_lang: Optional[str],
        target_lang: str
    ) -> Dict[str, Any]:
        audio = await self._load_audio(audio_path)
        tgt = self.map_language(target_lang)
        translated = await self.resource.run(self._generate_from_audio, audio, tgt)

        original = ""
        if source_lang and source_lang != "auto":
            # Same-language generation yields the source transcript
            original = await self.resource.run(
                self._generate_from_audio, audio, self.map_language(source_lang)
            )

        return {
            'translated_text': translated,
            'original_text': original,
            'source_language': source_lang,
        }

    async def translate_speech_to_speech(
        self,
        audio_path: Union[str, Path],
        source_lang: Optional[str],
        target_lang: str,
        output_path: Union[str, Path]
    ) -> Dict[str, Any]:
        """Translate speech and write the generated target speech to output_path."""
        response = await self.translate_speech(audio_path, source_lang, target_lang)
        audio = await self._load_audio(audio_path)
        response['audio_path'] = await self.resource.run(
            self._generate_speech_file, audio, self.map_language(target_lang), Path(output_path),
            discard=output_path
        )
        return response

    def _generate_text(self, session: SeamlessSession, text: str, src: str, tgt: str) -> str:
        inputs = session.processor(text=text, src_lang=src, return_tensors="pt").to(session.device)
        output = session.model.generate(**inputs, tgt_lang=tgt, generate_speech=False)
        return session.processor.decode(output[0].tolist()[0], skip_special_tokens=True)

    def _generate_from_audio(self, session: SeamlessSession, audio: np.ndarray, tgt: str) -> str:
        inputs = session.processor(audios=audio, sampling_rate=SAMPLE_RATE, return_tensors="pt").to(session.device)
        output = session.model.generate(**inputs, tgt_lang=tgt, generate_speech=False)
        return session.processor.decode(output[0].tolist()[0], skip_special_tokens=True)

    def _generate_speech(self, session: SeamlessSession, audio: np.ndarray, tgt: str):
        inputs = session.processor(audios=audio, sampling_rate=SAMPLE_RATE, return_tensors="pt").to(session.device)
        output = session.model.generate(**inputs, tgt_lang=tgt)
        waveform = output[0].cpu().numpy().squeeze()
        return waveform, session.output_sample_rate

    def _generate_speech_file(self, session: SeamlessSession, audio: np.ndarray, tgt: str, output_path: Path) -> Path:
        waveform, sample_rate = self._generate_speech(session, audio, tgt)
        return self.audio_processor.save_audio(waveform, output_path, sample_rate)

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status['loaded'] = self.resource.is_loaded
        status['resource'] = self.resource.name
        return status
