"""
MyMemory translation API backend (free, no auth required).
"""

import asyncio
from typing import Any, Dict, Optional

import requests

from ..config import MYMEMORY_URL, MYMEMORY_EMAIL, MYMEMORY_LANGUAGE_MAP, HTTP_TIMEOUT, FALLBACK_CONFIDENCE
from .base import TranslationBackend


class MyMemoryBackend(TranslationBackend):
    """First remote fallback."""

    name = "mymemory"
    response_format = "mymemory"
    default_confidence = FALLBACK_CONFIDENCE
    language_map = MYMEMORY_LANGUAGE_MAP

    def __init__(
        self,
        url: str = MYMEMORY_URL,
        email: Optional[str] = MYMEMORY_EMAIL,
        timeout: int = HTTP_TIMEOUT,
        session: Optional[requests.Session] = None,
        enabled: bool = True
    ):
        """
        Args:
            url: API endpoint
            email: Contact email raising the anonymous daily quota
            timeout: HTTP timeout in seconds
            session: Optional requests session
            enabled: Whether the backend may be used at all
        """
        super().__init__()
        self.url = url
        self.email = email
        self.timeout = timeout
        self.session = session or requests.Session()
        self.enabled = enabled
        self.quota_exhausted = False

    async def is_ready(self) -> bool:
        return self.enabled and not self.quota_exhausted

    async def translate_text(self, text: str, source_lang: str, target_lang: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._request, text, source_lang, target_lang)

    def _request(self, text: str, source_lang: str, target_lang: str) -> Dict[str, Any]:
        params = {
            'q': text,
            'langpair': f"{self.map_language(source_lang)}|{self.map_language(target_lang)}"
        }
        if self.email:
            params['de'] = self.email

        response = self.session.get(self.url, params=params, timeout=self.timeout)
        if response.status_code == 429:
            self.quota_exhausted = True
        response.raise_for_status()

        data = response.json()
        status = int(data.get('responseStatus', 0) or 0)
        if status != 200:
            if status == 429 or data.get('quotaFinished'):
                self.quota_exhausted = True
            raise RuntimeError(f"MyMemory API error {status}: {data.get('responseDetails')}")

        return data

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status['enabled'] = self.enabled
        status['quota_exhausted'] = self.quota_exhausted
        return status
