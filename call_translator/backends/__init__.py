from .base import TranslationBackend
from .seamless import SeamlessM4TBackend, create_seamless_resource
from .mymemory import MyMemoryBackend
from .google import GoogleTranslateBackend
from .whisper import WhisperTranscriber, create_whisper_resource

__all__ = [
    "TranslationBackend",
    "SeamlessM4TBackend",
    "MyMemoryBackend",
    "GoogleTranslateBackend",
    "WhisperTranscriber",
    "create_seamless_resource",
    "create_whisper_resource",
]
