"""
Test Configuration and Utilities

This module provides configuration, audio helpers and fake capability
providers for testing the call translation pipeline without loading models.
"""

import asyncio
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pytest
import soundfile as sf

# Keep default data directories out of the user's home during tests
os.environ.setdefault("CALL_TRANSLATOR_DATA_DIR", tempfile.mkdtemp(prefix="call_translator_test_"))

from call_translator.audio.temp_files import TempAudioStore
from call_translator.backends.base import TranslationBackend
from call_translator.voice.cloner import VoiceCloningService
from call_translator.voice.engine import VoiceEngine

# Test configuration
TEST_CONFIG = {
    'sample_rate': 16000,
    'test_duration': 1.0,  # seconds
    'test_text': "Hello, this is a test message for call translation.",
    'source_language': 'en',
    'target_language': 'es',
}

# Disable verbose logging during tests
logging.getLogger('TTS').setLevel(logging.ERROR)
logging.getLogger('transformers').setLevel(logging.ERROR)


def create_test_audio(
    duration: float = TEST_CONFIG['test_duration'],
    sample_rate: int = TEST_CONFIG['sample_rate'],
    frequency: float = 440.0
) -> np.ndarray:
    """
    Create a test audio signal (sine wave).

    Args:
        duration: Duration in seconds
        sample_rate: Sample rate in Hz
        frequency: Frequency of sine wave in Hz

    Returns:
        Audio data as numpy array
    """
    t = np.linspace(0, duration, int(duration * sample_rate), False)
    audio = 0.3 * np.sin(2 * np.pi * frequency * t)  # Amplitude 0.3 to avoid clipping
    return audio.astype(np.float32)


def create_test_audio_file(
    filepath: Path,
    duration: float = TEST_CONFIG['test_duration'],
    sample_rate: int = TEST_CONFIG['sample_rate']
) -> Path:
    """Create a test audio file."""
    audio = create_test_audio(duration, sample_rate)
    sf.write(str(filepath), audio, sample_rate)
    return filepath


@pytest.fixture
def test_audio_file(tmp_path):
    """A single test audio file."""
    return create_test_audio_file(tmp_path / "test_audio.wav")


@pytest.fixture
def voice_samples(tmp_path):
    """Two voice samples whose fake embeddings are [1, 0] and [0, 1]."""
    return [
        create_test_audio_file(tmp_path / "speaker_a.wav"),
        create_test_audio_file(tmp_path / "speaker_b.wav"),
    ]


@pytest.fixture
def temp_store(tmp_path):
    return TempAudioStore(tmp_path / "tmp")


class FakeVoiceEngine(VoiceEngine):
    """Voice engine writing sine waves, with embeddings looked up by file name."""

    OUTPUT_PREFIXES = ("synth_", "adjusted_", "enhanced_", "clone_")

    def __init__(
        self,
        embeddings: Optional[Dict[str, list]] = None,
        default_embedding=(1.0, 0.0),
        output_embedding=None,
        fail_texts=()
    ):
        self.embeddings = {
            'speaker_a.wav': [1.0, 0.0],
            'speaker_b.wav': [0.0, 1.0],
            **(embeddings or {})
        }
        self.default_embedding = list(default_embedding)
        self.output_embedding = list(output_embedding or default_embedding)
        self.fail_texts = set(fail_texts)
        self.registered: Dict[str, list] = {}
        self.released = []
        self.synthesized = []
        self.cloned = []
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()

    def extract_embedding(self, audio_path):
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(str(audio_path))
        if audio_path.name in self.embeddings:
            return list(self.embeddings[audio_path.name])
        if audio_path.name.startswith(self.OUTPUT_PREFIXES):
            return list(self.output_embedding)
        return list(self.default_embedding)

    def register_profile(self, profile_id, samples, embedding):
        self.registered[profile_id] = list(embedding)

    def has_profile(self, profile_id):
        return profile_id in self.registered

    def release_profile(self, profile_id):
        self.released.append(profile_id)
        self.registered.pop(profile_id, None)

    def _write(self, output_path) -> Path:
        sf.write(str(output_path), create_test_audio(0.5), TEST_CONFIG['sample_rate'])
        return Path(output_path)

    def synthesize(self, profile_id, text, language, output_path):
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if text in self.fail_texts:
            raise RuntimeError(f"synthesis exploded on '{text}'")
        self.synthesized.append(text)
        return self._write(output_path)

    def clone_from_sample(self, sample_path, text, language, output_path):
        self.cloned.append((Path(sample_path).name, text))
        return self._write(output_path)

    def get_info(self):
        return {'engine': 'fake', 'registered_profiles': len(self.registered)}


class SlowVoiceEngine(FakeVoiceEngine):
    """Fake engine whose synthesis and cloning block, counting overlapping calls."""

    def __init__(self, delay: float = 0.3, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._counter = threading.Lock()

    def _enter(self):
        with self._counter:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        time.sleep(self.delay)

    def _leave(self):
        with self._counter:
            self.active -= 1

    def synthesize(self, profile_id, text, language, output_path):
        self._enter()
        try:
            return super().synthesize(profile_id, text, language, output_path)
        finally:
            self._leave()

    def clone_from_sample(self, sample_path, text, language, output_path):
        self._enter()
        try:
            return super().clone_from_sample(sample_path, text, language, output_path)
        finally:
            self._leave()


class FakeBackend(TranslationBackend):
    """Scriptable translation backend."""

    def __init__(
        self,
        name: str = "fake",
        response_format: str = "native",
        ready: bool = True,
        response: Any = None,
        error: Optional[Exception] = None,
        default_confidence: float = 0.85,
        delay: float = 0.0,
        supports_speech: bool = False,
        detected: Any = None
    ):
        super().__init__()
        self.name = name
        self.response_format = response_format
        self.ready = ready
        self.response = response
        self.error = error
        self.default_confidence = default_confidence
        self.delay = delay
        self.supports_speech = supports_speech
        self.detected = detected
        self.load_error: Optional[Exception] = None
        self.loads = 0
        self.calls = []

    async def load(self):
        self.loads += 1
        if self.load_error is not None:
            raise self.load_error

    async def is_ready(self):
        return self.ready

    async def _respond(self, kind, payload, source_lang, target_lang):
        self.calls.append((kind, payload, source_lang, target_lang))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.response):
            return self.response(payload)
        return self.response

    async def translate_text(self, text, source_lang, target_lang):
        return await self._respond('text', text, source_lang, target_lang)

    async def translate_speech(self, audio_path, source_lang, target_lang):
        return await self._respond('speech', Path(audio_path), source_lang, target_lang)

    async def translate_speech_to_speech(self, audio_path, source_lang, target_lang, output_path):
        response = dict(await self._respond('s2s', Path(audio_path), source_lang, target_lang))
        create_test_audio_file(Path(output_path))
        response['audio_path'] = Path(output_path)
        return response

    async def detect_language(self, audio_path):
        if self.detected is None:
            raise NotImplementedError
        if isinstance(self.detected, Exception):
            raise self.detected
        return self.detected


class FakeTranscriber:
    """Stands in for the Whisper transcriber."""

    def __init__(self, text: str = TEST_CONFIG['test_text'], language: Any = None, ready: bool = True):
        self.text = text
        self.language = language
        self.ready = ready
        self.calls = []

    async def is_ready(self):
        return self.ready

    async def load(self):
        self.ready = True

    async def transcribe(self, audio_path, language=None):
        self.calls.append((Path(audio_path), language))
        return {'text': self.text, 'language': language}

    async def detect_language(self, audio_path):
        if self.language is None or isinstance(self.language, Exception):
            raise self.language or RuntimeError("no speech detected")
        return self.language


class GoogleResult:
    """Shape of a googletrans Translated object."""

    def __init__(self, text, src='en', origin=''):
        self.text = text
        self.src = src
        self.origin = origin


def native_response(translated: str, original: str = "", source_language: Optional[str] = None, **extra):
    return {'translated_text': translated, 'original_text': original, 'source_language': source_language, **extra}


def mymemory_response(translated: str, match=None):
    return {'responseData': {'translatedText': translated, 'match': match}, 'responseStatus': 200}


def make_voice_service(tmp_path: Path, engine: Optional[FakeVoiceEngine] = None, temp_store=None, **queue_options):
    """Voice cloning service backed by a fake engine and files under tmp_path."""
    return VoiceCloningService(
        engine=engine or FakeVoiceEngine(),
        temp_store=temp_store or TempAudioStore(tmp_path / "tmp"),
        profiles_file=tmp_path / "voice_profiles.json",
        samples_dir=tmp_path / "samples",
        queue_options=queue_options or None,
    )
