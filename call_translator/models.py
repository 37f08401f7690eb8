"""
Data Models

Records exchanged between the translation orchestrator, the voice profile
store, the synthesis queue and the session loop.
"""

import base64
import io
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import soundfile as sf

from .config import SAMPLE_RATE

EMOTIONS = ("neutral", "happy", "sad", "angry", "excited", "calm")
AGES = ("young", "middle", "old")
GENDERS = ("male", "female", "neutral")
QUALITY_TIERS = ("low", "medium", "high", "ultra")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class VoiceCharacteristics:
    """Adjustable properties applied to synthesized speech."""

    pitch: float = 0.0
    speed: float = 1.0
    emotion: str = "neutral"
    accent: Optional[str] = None
    age: Optional[str] = None
    gender: Optional[str] = None

    def __post_init__(self):
        if not -1.0 <= self.pitch <= 1.0:
            raise ValueError(f"pitch must be within [-1, 1], got {self.pitch}")
        if not 0.5 <= self.speed <= 2.0:
            raise ValueError(f"speed must be within [0.5, 2.0], got {self.speed}")
        if self.emotion not in EMOTIONS:
            raise ValueError(f"Unsupported emotion: {self.emotion}")
        if self.age is not None and self.age not in AGES:
            raise ValueError(f"Unsupported age: {self.age}")
        if self.gender is not None and self.gender not in GENDERS:
            raise ValueError(f"Unsupported gender: {self.gender}")

    @property
    def is_neutral(self) -> bool:
        return self.pitch == 0.0 and self.speed == 1.0 and self.emotion == "neutral"

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "VoiceCharacteristics":
        data = data or {}
        return cls(
            pitch=float(data.get("pitch", 0.0)),
            speed=float(data.get("speed", 1.0)),
            emotion=data.get("emotion", "neutral"),
            accent=data.get("accent"),
            age=data.get("age"),
            gender=data.get("gender"),
        )


@dataclass
class VoiceProfile:
    """A named speaker identity backed by an averaged embedding."""

    id: str
    name: str
    language: str
    audio_samples: List[str] = field(default_factory=list)
    embedding: List[float] = field(default_factory=list)
    characteristics: VoiceCharacteristics = field(default_factory=VoiceCharacteristics)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    is_active: bool = False
    quality: str = "high"

    def __post_init__(self):
        if self.quality not in QUALITY_TIERS:
            raise ValueError(f"Unsupported quality tier: {self.quality}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "language": self.language,
            "audio_samples": list(self.audio_samples),
            "embedding": [float(v) for v in self.embedding],
            "characteristics": self.characteristics.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_active": self.is_active,
            "quality": self.quality,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VoiceProfile":
        return cls(
            id=data["id"],
            name=data["name"],
            language=data.get("language", "en"),
            audio_samples=list(data.get("audio_samples", [])),
            embedding=[float(v) for v in data.get("embedding", [])],
            characteristics=VoiceCharacteristics.from_dict(data.get("characteristics")),
            created_at=data.get("created_at") or _now_iso(),
            updated_at=data.get("updated_at") or data.get("created_at") or _now_iso(),
            is_active=bool(data.get("is_active", False)),
            quality=data.get("quality", "high"),
        )


@dataclass(frozen=True)
class TranslationResult:
    """Normalized output of any translation backend."""

    original_text: str
    translated_text: str
    source_language: str
    target_language: str
    confidence: float
    engine: str
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        # Clamp rather than reject; backends report loosely bounded scores
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AudioChunk:
    """A base64-encoded WAV buffer captured during a call."""

    data: str
    duration: float
    sample_rate: int = SAMPLE_RATE
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_samples(cls, samples: np.ndarray, sample_rate: int = SAMPLE_RATE) -> "AudioChunk":
        buffer = io.BytesIO()
        sf.write(buffer, samples, sample_rate, format="WAV")
        return cls(
            data=base64.b64encode(buffer.getvalue()).decode("ascii"),
            duration=len(samples) / sample_rate,
            sample_rate=sample_rate,
        )

    @classmethod
    def from_file(cls, audio_path: Union[str, Path]) -> "AudioChunk":
        raw = Path(audio_path).read_bytes()
        info = sf.info(io.BytesIO(raw))
        return cls(
            data=base64.b64encode(raw).decode("ascii"),
            duration=float(info.duration),
            sample_rate=int(info.samplerate),
        )

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    def decode(self) -> np.ndarray:
        """Decode the buffer into float32 samples."""
        samples, _ = sf.read(io.BytesIO(self.to_bytes()), dtype="float32")
        return samples


@dataclass
class VoiceCloneResult:
    """Outcome of one synthesis or cloning request."""

    audio_path: Optional[Path]
    similarity: float
    duration: float
    characteristics: VoiceCharacteristics = field(default_factory=VoiceCharacteristics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audio_path": str(self.audio_path) if self.audio_path else None,
            "similarity": self.similarity,
            "duration": self.duration,
            "characteristics": self.characteristics.to_dict(),
        }


@dataclass
class SynthesisOptions:
    """Per-request synthesis settings."""

    language: str = "en"
    characteristics: Optional[VoiceCharacteristics] = None
    quality: str = "high"
    real_time: bool = False
    session_id: Optional[str] = None

    def __post_init__(self):
        if self.quality not in QUALITY_TIERS:
            raise ValueError(f"Unsupported quality tier: {self.quality}")


@dataclass
class TranslationOutput:
    """Translation result plus the audio to play back, if any."""

    result: TranslationResult
    audio_path: Optional[Path] = None
    voice: Optional[VoiceCloneResult] = None
