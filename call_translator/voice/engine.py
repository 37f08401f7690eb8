"""
Voice Cloning Engine

Speaker embedding extraction and cloned speech synthesis using the Coqui
XTTS model. Engine methods are blocking; VoiceRuntime runs them in the
executor through an InferenceResource.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import soundfile as sf

from ..config import TTS_MODEL, TTS_SAMPLE_RATE, MODEL_DEVICE
from ..resource import InferenceResource
from ..backends.base import select_device

# Application code -> XTTS code
XTTS_LANGUAGE_MAP = {
    "zh": "zh-cn",
}


class VoiceEngine(ABC):
    """Abstract base class for voice cloning engines."""

    @abstractmethod
    def extract_embedding(self, audio_path: Union[str, Path]) -> List[float]:
        """Extract a fixed-length speaker embedding from one sample."""
        pass

    @abstractmethod
    def register_profile(self, profile_id: str, samples: Sequence[Union[str, Path]], embedding: Sequence[float]) -> None:
        """Bind a profile id to its samples and averaged embedding."""
        pass

    @abstractmethod
    def has_profile(self, profile_id: str) -> bool:
        pass

    @abstractmethod
    def release_profile(self, profile_id: str) -> None:
        """Free engine-side state for a profile. Unknown ids are ignored."""
        pass

    @abstractmethod
    def synthesize(self, profile_id: str, text: str, language: str, output_path: Union[str, Path]) -> Path:
        """Speak text in a registered profile's voice."""
        pass

    @abstractmethod
    def clone_from_sample(
        self,
        sample_path: Union[str, Path],
        text: str,
        language: str,
        output_path: Union[str, Path]
    ) -> Path:
        """Speak text in the voice of a single reference sample."""
        pass

    def get_info(self) -> Dict[str, Any]:
        return {'engine': type(self).__name__}

    def unload(self) -> None:
        pass


class XTTSVoiceEngine(VoiceEngine):
    """Voice cloning using the Coqui XTTS v2 model."""

    def __init__(self, model_name: str = TTS_MODEL, device: str = MODEL_DEVICE):
        """
        Initialize the engine.

        Args:
            model_name: Coqui TTS model name
            device: Device to run model on (auto, cpu, cuda)
        """
        self.model_name = model_name
        self.device = select_device(device)
        self.tts = None
        self.sample_rate = TTS_SAMPLE_RATE

        # profile id -> (gpt_cond_latent, speaker_embedding)
        self.speaker_latents: Dict[str, Any] = {}

        self.logger = logging.getLogger(__name__)

    def load_model(self) -> "XTTSVoiceEngine":
        """Load the TTS model."""
        from TTS.api import TTS

        self.logger.info(f"Loading TTS model: {self.model_name}")
        self.tts = TTS(model_name=self.model_name, progress_bar=False).to(self.device)
        self.sample_rate = int(getattr(self.tts.synthesizer, 'output_sample_rate', TTS_SAMPLE_RATE))
        self.logger.info("TTS model loaded successfully")
        return self

    @property
    def xtts(self):
        if self.tts is None:
            raise RuntimeError("TTS model is not loaded")
        return self.tts.synthesizer.tts_model

    def _language(self, language: str) -> str:
        return XTTS_LANGUAGE_MAP.get(language, language)

    def _conditioning(self, samples: Sequence[Union[str, Path]]):
        return self.xtts.get_conditioning_latents(audio_path=[str(p) for p in samples])

    def extract_embedding(self, audio_path: Union[str, Path]) -> List[float]:
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(f"Voice sample not found: {audio_path}")

        _, speaker_embedding = self._conditioning([audio_path])
        return [float(v) for v in speaker_embedding.detach().cpu().numpy().reshape(-1)]

    def register_profile(self, profile_id: str, samples: Sequence[Union[str, Path]], embedding: Sequence[float]) -> None:
        import torch

        gpt_cond_latent, speaker_embedding = self._conditioning(samples)
        if embedding:
            averaged = torch.tensor(list(embedding), dtype=speaker_embedding.dtype)
            speaker_embedding = averaged.reshape(speaker_embedding.shape).to(speaker_embedding.device)

        self.speaker_latents[profile_id] = (gpt_cond_latent, speaker_embedding)
        self.logger.info(f"Registered voice profile: {profile_id} ({len(samples)} samples)")

    def has_profile(self, profile_id: str) -> bool:
        return profile_id in self.speaker_latents

    def release_profile(self, profile_id: str) -> None:
        self.speaker_latents.pop(profile_id, None)

    def synthesize(self, profile_id: str, text: str, language: str, output_path: Union[str, Path]) -> Path:
        if profile_id not in self.speaker_latents:
            raise KeyError(f"Voice profile not registered: {profile_id}")

        gpt_cond_latent, speaker_embedding = self.speaker_latents[profile_id]
        output = self.xtts.inference(text, self._language(language), gpt_cond_latent, speaker_embedding)
        wav = np.asarray(output['wav'], dtype=np.float32)

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        sf.write(str(output_path), wav, self.sample_rate)
        return output_path

    def clone_from_sample(
        self,
        sample_path: Union[str, Path],
        text: str,
        language: str,
        output_path: Union[str, Path]
    ) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.tts.tts_to_file(
            text=text,
            speaker_wav=str(sample_path),
            language=self._language(language),
            file_path=str(output_path)
        )
        return output_path

    def get_info(self) -> Dict[str, Any]:
        return {
            'engine': 'xtts',
            'model_name': self.model_name,
            'device': self.device,
            'sample_rate': self.sample_rate,
            'loaded': self.tts is not None,
            'registered_profiles': len(self.speaker_latents),
        }

    def unload(self) -> None:
        self.speaker_latents.clear()
        self.tts = None
        if self.device == "cuda":
            import torch
            torch.cuda.empty_cache()


def create_voice_resource(engine: Optional[VoiceEngine] = None) -> InferenceResource:
    """Wrap a voice engine in a shared resource. Defaults to XTTS."""
    if engine is None:
        engine = XTTSVoiceEngine()
        loader = engine.load_model
    else:
        def loader():
            return engine
    return InferenceResource("voice-engine", loader=loader, unloader=lambda e: e.unload())
