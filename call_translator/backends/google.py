"""
Google Translate backend via googletrans.
"""

import asyncio
import inspect
from typing import Any, Dict, Optional

from ..config import GOOGLE_LANGUAGE_MAP, FALLBACK_CONFIDENCE
from .base import TranslationBackend


class GoogleTranslateBackend(TranslationBackend):
    """Second remote fallback."""

    name = "google"
    response_format = "googletrans"
    default_confidence = FALLBACK_CONFIDENCE
    language_map = GOOGLE_LANGUAGE_MAP

    def __init__(self, translator: Optional[Any] = None, enabled: bool = True):
        """
        Args:
            translator: googletrans Translator instance (created lazily if None)
            enabled: Whether the backend may be used at all
        """
        super().__init__()
        self._translator = translator
        self.enabled = enabled

    @property
    def translator(self):
        if self._translator is None:
            from googletrans import Translator
            self._translator = Translator()
        return self._translator

    async def is_ready(self) -> bool:
        return self.enabled

    async def translate_text(self, text: str, source_lang: str, target_lang: str) -> Any:
        src = self.map_language(source_lang) if source_lang else 'auto'
        dest = self.map_language(target_lang)

        # googletrans 4.x exposes a coroutine, older releases block
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None, lambda: self.translator.translate(text, src=src, dest=dest)
        )
        if inspect.isawaitable(result):
            result = await result
        return result

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status['enabled'] = self.enabled
        return status
