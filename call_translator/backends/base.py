"""
Translation Backends

Every capability provider the orchestrator can route a request to implements
TranslationBackend. Responses are returned in the backend's native shape and
normalized by the orchestrator according to ``response_format``.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config import FALLBACK_CONFIDENCE


def select_device(device: str) -> str:
    """Resolve 'auto' to cuda when available."""
    if device != "auto":
        return device
    try:
        import torch
    except ImportError:
        return "cpu"
    return "cuda" if torch.cuda.is_available() else "cpu"


class TranslationBackend(ABC):
    """Abstract base class for translation backends."""

    name = "backend"
    response_format = "native"
    default_confidence = FALLBACK_CONFIDENCE
    language_map: Dict[str, str] = {}
    supports_speech = False

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def map_language(self, code: str) -> str:
        """Application language code to backend code. Unknown codes pass through."""
        return self.language_map.get(code, code)

    def unmap_language(self, code: str) -> str:
        """Backend language code to application code. Unknown codes pass through."""
        for app_code, native in self.language_map.items():
            if native == code:
                return app_code
        return code

    @abstractmethod
    async def is_ready(self) -> bool:
        """Whether the backend can serve a request right now."""
        pass

    @abstractmethod
    async def translate_text(self, text: str, source_lang: str, target_lang: str) -> Any:
        """Translate text. Language codes are application codes."""
        pass

    async def translate_speech(
        self,
        audio_path: Union[str, Path],
        source_lang: Optional[str],
        target_lang: str
    ) -> Any:
        """Translate speech audio directly. Only speech-capable backends override this."""
        raise NotImplementedError(f"{self.name} does not accept audio input")

    async def detect_language(self, audio_path: Union[str, Path]) -> str:
        """Detect the spoken language of an audio file as an application code."""
        raise NotImplementedError(f"{self.name} does not detect language")

    def get_status(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'response_format': self.response_format,
            'supports_speech': self.supports_speech,
        }
