"""
Configuration settings for the Call Translation Pipeline
"""

import os
from pathlib import Path

# Project paths
DATA_DIR = Path(os.getenv("CALL_TRANSLATOR_DATA_DIR", Path.home() / ".call_translator"))
PROFILES_FILE = DATA_DIR / "voice_profiles.json"
VOICE_SAMPLES_DIR = DATA_DIR / "voice_samples"
TEMP_AUDIO_DIR = Path(os.getenv("CALL_TRANSLATOR_TEMP_DIR", DATA_DIR / "tmp"))

# Language Settings
SUPPORTED_LANGUAGES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "ar": "Arabic",
    "hi": "Hindi",
    "tr": "Turkish",
    "pl": "Polish",
    "nl": "Dutch",
    "sv": "Swedish",
    "da": "Danish",
    "no": "Norwegian",
    "fi": "Finnish",
    "cs": "Czech",
    "hu": "Hungarian",
    "ro": "Romanian",
    "bg": "Bulgarian",
    "hr": "Croatian",
    "sk": "Slovak",
    "sl": "Slovenian",
    "et": "Estonian",
    "lv": "Latvian",
    "lt": "Lithuanian",
    "mt": "Maltese",
    "ga": "Irish",
    "cy": "Welsh",
}

# Application code -> SeamlessM4T code
SEAMLESS_LANGUAGE_MAP = {
    "en": "eng",
    "es": "spa",
    "fr": "fra",
    "de": "deu",
    "it": "ita",
    "pt": "por",
    "ru": "rus",
    "zh": "cmn",
    "ja": "jpn",
    "ko": "kor",
    "ar": "arb",
    "hi": "hin",
    "tr": "tur",
    "pl": "pol",
    "nl": "nld",
    "sv": "swe",
    "da": "dan",
    "no": "nob",
    "fi": "fin",
    "cs": "ces",
    "hu": "hun",
    "ro": "ron",
    "bg": "bul",
    "hr": "hrv",
    "sk": "slk",
    "sl": "slv",
    "et": "est",
    "lv": "lvs",
    "lt": "lit",
    "mt": "mlt",
    "ga": "gle",
    "cy": "cym",
}

# Application code -> googletrans code
GOOGLE_LANGUAGE_MAP = {
    "zh": "zh-cn",
    "he": "iw",
}

# Application code -> MyMemory code
MYMEMORY_LANGUAGE_MAP = {
    "zh": "zh-CN",
}

DEFAULT_FALLBACK_LANGUAGE = os.getenv("CALL_TRANSLATOR_FALLBACK_LANGUAGE", "en")
LANGUAGE_DETECTION_POLICY = os.getenv("CALL_TRANSLATOR_DETECTION_POLICY", "fallback")  # fallback, strict

# Model Settings
SEAMLESS_MODEL_NAME = "facebook/seamless-m4t-v2-large"
WHISPER_MODEL_SIZE = "base"  # Options: tiny, base, small, medium, large
TTS_MODEL = "tts_models/multilingual/multi-dataset/xtts_v2"
MODEL_DEVICE = os.getenv("CALL_TRANSLATOR_DEVICE", "auto")  # auto, cpu, cuda

# Confidence defaults for backends that do not report one
PRIMARY_CONFIDENCE = 0.95
FALLBACK_CONFIDENCE = 0.85
DETECTION_FALLBACK_CONFIDENCE = 0.5

# Audio Processing Settings
SAMPLE_RATE = 16000
TTS_SAMPLE_RATE = 24000
AUDIO_FORMATS = [".wav", ".flac", ".ogg"]
MAX_TEXT_CHARS = 1000
MAX_AUDIO_SECONDS = 30.0
PITCH_SEMITONE_RANGE = 4.0  # pitch=1.0 shifts up this many semitones

# Gain applied per emotion during the characteristics pass
EMOTION_GAIN = {
    "neutral": 1.0,
    "happy": 1.1,
    "sad": 0.85,
    "angry": 1.2,
    "excited": 1.15,
    "calm": 0.9,
}

# Noise reduction strength per quality tier; tiers missing here skip enhancement
ENHANCEMENT_STRENGTH = {
    "high": 0.1,
    "ultra": 0.2,
}

DEFAULT_CHARACTERISTICS = {
    "pitch": 0.0,
    "speed": 1.0,
    "emotion": "neutral",
}
DEFAULT_PROFILE_QUALITY = "high"
REAL_TIME_QUALITY = "medium"

# Timeouts (seconds)
BACKEND_TIMEOUT = float(os.getenv("CALL_TRANSLATOR_BACKEND_TIMEOUT", "15"))
SYNTHESIS_TIMEOUT = float(os.getenv("CALL_TRANSLATOR_SYNTHESIS_TIMEOUT", "30"))
CONNECT_TIMEOUT = float(os.getenv("CALL_TRANSLATOR_CONNECT_TIMEOUT", "60"))
HTTP_TIMEOUT = 10
AUDIO_IO_TIMEOUT = float(os.getenv("CALL_TRANSLATOR_AUDIO_IO_TIMEOUT", "10"))  # recorder start/stop, device stop
PLAYBACK_MARGIN = float(os.getenv("CALL_TRANSLATOR_PLAYBACK_MARGIN", "5"))  # added to clip duration

# Session cadence (seconds)
CAPTURE_DURATION = float(os.getenv("CALL_TRANSLATOR_CAPTURE_DURATION", "3"))
CYCLE_INTERVAL = float(os.getenv("CALL_TRANSLATOR_CYCLE_INTERVAL", "5"))

# Synthesis queue
SYNTHESIS_QUEUE_MAX_SIZE = int(os.getenv("CALL_TRANSLATOR_QUEUE_SIZE", "8"))  # 0 = unbounded
SYNTHESIS_OVERFLOW_POLICY = os.getenv("CALL_TRANSLATOR_QUEUE_OVERFLOW", "drop_oldest")  # drop_oldest, reject_new

TRANSLATION_HISTORY_LIMIT = 100

# API Settings
MYMEMORY_URL = "https://api.mymemory.translated.net/get"
MYMEMORY_EMAIL = os.getenv("MYMEMORY_EMAIL")

# Logging
LOG_LEVEL = os.getenv("CALL_TRANSLATOR_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def ensure_directories() -> None:
    """Create the data and temp directories if they do not exist."""
    for dir_path in [DATA_DIR, VOICE_SAMPLES_DIR, TEMP_AUDIO_DIR]:
        Path(dir_path).mkdir(parents=True, exist_ok=True)
