"""
Tests for Main Pipeline Integration

This module tests the CallTranslator facade and the integration between the
orchestrator, the voice cloning service and the session manager.
"""

import asyncio
from unittest.mock import patch, MagicMock

import pytest

from call_translator.adapters import FileAudioAdapter
from call_translator.errors import ModelNotFoundError
from call_translator.pipeline import CallTranslator, create_call_translator
from call_translator.session import SessionConfig, SessionState
from tests.conftest import (
    TEST_CONFIG, FakeBackend, FakeTranscriber, make_voice_service, mymemory_response, native_response
)


def _translator(tmp_path, temp_store, primary=None, fallbacks=None, voice_service=None, progress_callback=None):
    if primary is None:
        primary = FakeBackend(
            name="seamless",
            default_confidence=0.95,
            supports_speech=True,
            response=lambda payload: native_response("hola", original="hello"),
        )
    if fallbacks is None:
        fallbacks = [FakeBackend(name="mymemory", response_format="mymemory", response=mymemory_response("hola"))]
    return CallTranslator(
        primary=primary,
        fallbacks=fallbacks,
        transcriber=FakeTranscriber(text="hello"),
        voice_service=voice_service or make_voice_service(tmp_path, temp_store=temp_store),
        temp_store=temp_store,
        progress_callback=progress_callback,
    )


class TestCallTranslator:
    """Test the main CallTranslator class."""

    @pytest.mark.asyncio
    async def test_initialize(self, tmp_path, temp_store):
        """Test system initialization with fake components."""
        messages = []
        translator = _translator(tmp_path, temp_store, progress_callback=messages.append)

        loaded = await translator.initialize()

        assert loaded == {'on_device_translation': True, 'speech_transcriber': True, 'voice_cloning': True}
        assert translator.orchestrator.primary.loads == 1
        assert messages[-1] == "Initialization complete!"
        await translator.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_tolerates_missing_model(self, tmp_path, temp_store):
        """A model that cannot load leaves translation to the fallbacks."""
        translator = _translator(tmp_path, temp_store)
        translator.orchestrator.primary.load_error = ModelNotFoundError("seamless weights missing")

        loaded = await translator.initialize()

        assert loaded['on_device_translation'] is False
        assert loaded['voice_cloning'] is True
        await translator.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_without_loading(self, tmp_path, temp_store):
        translator = _translator(tmp_path, temp_store)

        loaded = await translator.initialize(load_models=False)

        assert not any(loaded.values())
        assert translator.orchestrator.primary.loads == 0

    @pytest.mark.asyncio
    async def test_translate_text(self, tmp_path, temp_store):
        """Test text translation result structure."""
        translator = _translator(tmp_path, temp_store)
        await translator.initialize()

        result = await translator.translate_file(TEST_CONFIG['test_text'], "en", "es", is_text=True)

        assert result['success'] is True
        assert result['original_text'] == TEST_CONFIG['test_text']
        assert result['translated_text'] == "hola"
        assert result['engine'] == "seamless"
        assert result['output_audio'] is None
        assert translator.stats['successful_translations'] == 1
        await translator.shutdown()

    @pytest.mark.asyncio
    async def test_translate_audio_with_output(self, tmp_path, temp_store, test_audio_file):
        """Translated speech is copied out and the temp file removed."""
        translator = _translator(tmp_path, temp_store)
        await translator.initialize()
        output_path = tmp_path / "out" / "translated.wav"

        result = await translator.translate_file(test_audio_file, "en", "es", output_path=output_path)

        assert result['success'] is True
        assert result['output_audio'] == str(output_path)
        assert output_path.exists()
        assert temp_store.outstanding == set()
        await translator.shutdown()

    @pytest.mark.asyncio
    async def test_translate_with_profile_voice(self, tmp_path, temp_store, voice_samples):
        translator = _translator(tmp_path, temp_store)
        await translator.initialize()
        profile = await translator.voice_service.create_voice_profile("A", voice_samples)
        output_path = tmp_path / "voiced.wav"

        result = await translator.translate_file(
            "hello", "en", "es", profile_id=profile.id, output_path=output_path, is_text=True
        )

        assert result['success'] is True
        assert result['similarity'] == pytest.approx(0.7071, abs=1e-3)
        assert output_path.exists()
        assert temp_store.outstanding == set()
        await translator.shutdown()

    @pytest.mark.asyncio
    async def test_translate_failure(self, tmp_path, temp_store):
        """All backends failing yields a failure result, not an exception."""
        translator = _translator(
            tmp_path, temp_store,
            primary=FakeBackend(name="seamless", error=RuntimeError("CUDA error")),
            fallbacks=[FakeBackend(name="mymemory", error=RuntimeError("quota"))],
        )
        await translator.initialize()

        result = await translator.translate_file("hello", "en", "es", is_text=True)

        assert result['success'] is False
        assert result['stage'] == "translation"
        assert translator.stats['failed_translations'] == 1
        await translator.shutdown()

    @pytest.mark.asyncio
    async def test_call_lifecycle(self, tmp_path, temp_store, test_audio_file):
        translator = _translator(tmp_path, temp_store)
        await translator.initialize()
        outputs = []
        audio_io = FileAudioAdapter([test_audio_file], temp_store, output_dir=tmp_path / "played")
        config = SessionConfig(source_lang="en", target_lang="es", capture_duration=0, cycle_interval=60)

        session = await translator.start_call("call-1", audio_io, config, on_result=outputs.append)
        await asyncio.sleep(0.1)
        info = await translator.get_system_info()

        assert info['active_calls'] == ["call-1"]
        assert outputs[0].result.translated_text == "hola"
        assert len(audio_io.played) == 1

        assert await translator.stop_call("call-1") is True
        assert session.state == SessionState.STOPPED
        await translator.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_stops_calls_and_releases_models(self, tmp_path, temp_store, test_audio_file):
        translator = _translator(tmp_path, temp_store)
        await translator.initialize()
        config = SessionConfig(source_lang="en", target_lang="es", capture_duration=60)
        session = await translator.start_call("call-1", FileAudioAdapter([test_audio_file], temp_store), config)

        await translator.shutdown()

        assert session.state == SessionState.STOPPED
        assert not translator.voice_service.is_ready
        assert temp_store.outstanding == set()

    @pytest.mark.asyncio
    async def test_get_system_info(self, tmp_path, temp_store):
        """Test getting system information."""
        translator = _translator(tmp_path, temp_store)

        info = await translator.get_system_info()

        for key in ['backends', 'statistics', 'supported_languages', 'active_calls', 'voice_cloning']:
            assert key in info
        assert info['voice_cloning']['loaded'] is False

    def test_get_supported_languages(self, tmp_path, temp_store):
        translator = _translator(tmp_path, temp_store)

        languages = translator.get_supported_languages()

        assert 'en' in languages
        assert 'es' in languages

    def test_progress_callback(self, tmp_path, temp_store):
        """Test progress callback functionality."""
        progress_messages = []
        translator = _translator(tmp_path, temp_store, progress_callback=progress_messages.append)

        translator._update_progress("Test message")

        assert progress_messages == ["Test message"]


class TestUtilityFunctions:
    """Test utility functions."""

    @patch('call_translator.pipeline.CallTranslator')
    def test_create_call_translator(self, mock_call_translator):
        """Test create_call_translator utility function."""
        mock_instance = MagicMock()
        mock_call_translator.return_value = mock_instance

        translator = create_call_translator(enable_on_device=False)

        assert translator is mock_instance
        mock_call_translator.assert_called_once_with(
            enable_on_device=False, enable_voice=True, progress_callback=None
        )
