"""
Tests for the translation backends.

Remote APIs are replaced by mocks; on-device models by a loaded resource
whose generation helpers are patched.
"""

import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests

from call_translator.backends.google import GoogleTranslateBackend
from call_translator.backends.mymemory import MyMemoryBackend
from call_translator.backends.seamless import SeamlessM4TBackend
from call_translator.backends.whisper import WhisperTranscriber
from call_translator.errors import BackendNotReadyError
from call_translator.resource import InferenceResource
from tests.conftest import GoogleResult, create_test_audio, mymemory_response


def _http_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


class TestMyMemoryBackend:
    """MyMemory HTTP backend."""

    @pytest.mark.asyncio
    async def test_translate(self):
        session = MagicMock()
        session.get.return_value = _http_response(payload=mymemory_response("hola", match=0.98))
        backend = MyMemoryBackend(session=session, email=None)

        response = await backend.translate_text("hello", "en", "es")

        assert response['responseData']['translatedText'] == "hola"
        params = session.get.call_args.kwargs['params']
        assert params == {'q': "hello", 'langpair': "en|es"}

    @pytest.mark.asyncio
    async def test_language_mapping_and_email(self):
        session = MagicMock()
        session.get.return_value = _http_response(payload=mymemory_response("你好"))
        backend = MyMemoryBackend(session=session, email="ops@example.com")

        await backend.translate_text("hello", "en", "zh")

        params = session.get.call_args.kwargs['params']
        assert params['langpair'] == "en|zh-CN"
        assert params['de'] == "ops@example.com"

    @pytest.mark.asyncio
    async def test_quota_exhausted(self):
        session = MagicMock()
        session.get.return_value = _http_response(status_code=429)
        backend = MyMemoryBackend(session=session)

        with pytest.raises(requests.HTTPError):
            await backend.translate_text("hello", "en", "es")

        assert not await backend.is_ready()
        assert backend.get_status()['quota_exhausted']

    @pytest.mark.asyncio
    async def test_api_error_status(self):
        session = MagicMock()
        session.get.return_value = _http_response(
            payload={'responseStatus': 403, 'responseDetails': "INVALID LANGUAGE PAIR"}
        )
        backend = MyMemoryBackend(session=session)

        with pytest.raises(RuntimeError, match="INVALID LANGUAGE PAIR"):
            await backend.translate_text("hello", "en", "xx")
        assert await backend.is_ready()

    @pytest.mark.asyncio
    async def test_disabled(self):
        backend = MyMemoryBackend(session=MagicMock(), enabled=False)
        assert not await backend.is_ready()


class TestGoogleTranslateBackend:
    """googletrans backend, blocking and coroutine flavours."""

    @pytest.mark.asyncio
    async def test_blocking_translator(self):
        translator = MagicMock()
        translator.translate.return_value = GoogleResult("hola", src="en", origin="hello")
        backend = GoogleTranslateBackend(translator=translator)

        result = await backend.translate_text("hello", "en", "es")

        assert result.text == "hola"
        translator.translate.assert_called_once_with("hello", src="en", dest="es")

    @pytest.mark.asyncio
    async def test_coroutine_translator(self):
        translator = MagicMock()
        translator.translate = AsyncMock(return_value=GoogleResult("bonjour"))
        backend = GoogleTranslateBackend(translator=translator)

        result = await backend.translate_text("hello", "en", "fr")

        assert result.text == "bonjour"

    @pytest.mark.asyncio
    async def test_language_mapping(self):
        translator = MagicMock()
        translator.translate.return_value = GoogleResult("שלום")
        backend = GoogleTranslateBackend(translator=translator)

        await backend.translate_text("hello", None, "he")

        translator.translate.assert_called_once_with("hello", src="auto", dest="iw")
        assert backend.unmap_language("zh-cn") == "zh"


class TestSeamlessM4TBackend:
    """On-device backend over a shared resource."""

    @pytest.mark.asyncio
    async def test_not_loaded(self):
        backend = SeamlessM4TBackend(resource=InferenceResource("seamless", MagicMock()))

        assert not await backend.is_ready()
        with pytest.raises(BackendNotReadyError):
            await backend.translate_text("hello", "en", "es")

    @pytest.mark.asyncio
    async def test_translate_text(self):
        backend = SeamlessM4TBackend(resource=InferenceResource("seamless", MagicMock(return_value="session")))
        await backend.load()

        with patch.object(SeamlessM4TBackend, '_generate_text', return_value="hola") as generate:
            response = await backend.translate_text("hello", "en", "es")

        assert response == {'translated_text': "hola", 'original_text': "hello", 'source_language': "en"}
        generate.assert_called_once_with("session", "hello", "eng", "spa")
        assert backend.get_status()['loaded']

    @pytest.mark.asyncio
    async def test_text_truncated(self):
        backend = SeamlessM4TBackend(
            resource=InferenceResource("seamless", MagicMock(return_value="session")), max_text_chars=5
        )
        await backend.load()

        with patch.object(SeamlessM4TBackend, '_generate_text', return_value="hola"):
            response = await backend.translate_text("hello world", "en", "es")

        assert response['original_text'] == "hello"

    @pytest.mark.asyncio
    async def test_translate_speech(self, test_audio_file):
        backend = SeamlessM4TBackend(resource=InferenceResource("seamless", MagicMock(return_value="session")))
        await backend.load()

        with patch.object(SeamlessM4TBackend, '_generate_from_audio', side_effect=["hola", "hello"]) as generate:
            response = await backend.translate_speech(test_audio_file, "en", "es")

        assert response['translated_text'] == "hola"
        assert response['original_text'] == "hello"
        assert [c.args[2] for c in generate.call_args_list] == ["spa", "eng"]

    @pytest.mark.asyncio
    async def test_audio_decoded_off_the_event_loop(self, test_audio_file):
        backend = SeamlessM4TBackend(resource=InferenceResource("seamless", MagicMock(return_value="session")))
        await backend.load()
        load_audio = backend.audio_processor.load_audio
        threads = []

        def tracked_load(path):
            threads.append(threading.get_ident())
            return load_audio(path)

        backend.audio_processor.load_audio = tracked_load
        with patch.object(SeamlessM4TBackend, '_generate_from_audio', return_value="hola"):
            await backend.translate_speech(test_audio_file, None, "es")

        assert threads and threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_speech_to_speech_writes_output(self, test_audio_file, tmp_path):
        backend = SeamlessM4TBackend(resource=InferenceResource("seamless", MagicMock(return_value="session")))
        await backend.load()
        output_path = tmp_path / "s2s.wav"

        with patch.object(SeamlessM4TBackend, '_generate_from_audio', return_value="hola"), \
                patch.object(SeamlessM4TBackend, '_generate_speech', return_value=(create_test_audio(0.5), 16000)):
            response = await backend.translate_speech_to_speech(test_audio_file, None, "es", output_path)

        assert response['translated_text'] == "hola"
        assert response['audio_path'] == output_path
        assert output_path.exists()

    @pytest.mark.asyncio
    async def test_close_unloads_shared_resource(self):
        resource = InferenceResource("seamless", MagicMock(return_value="session"))
        first = SeamlessM4TBackend(resource=resource)
        second = SeamlessM4TBackend(resource=resource)
        await first.load()

        await first.close()
        assert await second.is_ready()
        await second.close()
        assert not await second.is_ready()


class TestWhisperTranscriber:
    """Whisper transcription over a mocked model."""

    @pytest.mark.asyncio
    async def test_transcribe(self, test_audio_file):
        model = MagicMock()
        model.transcribe.return_value = {'text': " hola mundo ", 'language': "es"}
        transcriber = WhisperTranscriber(resource=InferenceResource("whisper", MagicMock(return_value=model)))
        await transcriber.load()

        result = await transcriber.transcribe(test_audio_file)

        assert result == {'text': "hola mundo", 'language': "es"}
        assert model.transcribe.call_args.kwargs == {'fp16': False}

    @pytest.mark.asyncio
    async def test_transcribe_with_language(self, test_audio_file):
        model = MagicMock()
        model.transcribe.return_value = {'text': "bonjour"}
        transcriber = WhisperTranscriber(resource=InferenceResource("whisper", MagicMock(return_value=model)))
        await transcriber.load()

        result = await transcriber.transcribe(test_audio_file, "fr")

        assert result['language'] == "fr"
        assert model.transcribe.call_args.kwargs['language'] == "fr"
