"""
Real-Time Call Translation with Voice Cloning

Translates captured call audio through an on-device multilingual model with
remote fallbacks and speaks the result in the original speaker's voice.
"""

__version__ = "1.0.0"
__author__ = "Call Translation Team"

from .pipeline import CallTranslator, create_call_translator

__all__ = ["CallTranslator", "create_call_translator"]
