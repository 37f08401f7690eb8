"""
Audio Processing Module

Loading, saving and post-processing of call audio: payload truncation,
voice characteristics adjustment and quality enhancement passes.
"""

import logging
from typing import Optional, Union
from pathlib import Path

import numpy as np
import librosa
import soundfile as sf
from scipy import signal

from ..config import (
    SAMPLE_RATE, AUDIO_FORMATS, MAX_AUDIO_SECONDS, PITCH_SEMITONE_RANGE,
    EMOTION_GAIN, ENHANCEMENT_STRENGTH
)
from ..errors import AudioLoadError
from ..models import VoiceCharacteristics


class AudioProcessor:
    """Handles audio file loading, saving and enhancement."""

    def __init__(self, target_sample_rate: int = SAMPLE_RATE, max_duration: float = MAX_AUDIO_SECONDS):
        """
        Initialize the audio processor.

        Args:
            target_sample_rate: Target sample rate for processing
            max_duration: Maximum duration in seconds kept by load_audio
        """
        self.target_sample_rate = target_sample_rate
        self.max_duration = max_duration
        self.supported_formats = AUDIO_FORMATS

        self.logger = logging.getLogger(__name__)

    def load_audio(
        self,
        audio_path: Union[str, Path],
        normalize: bool = False,
        sample_rate: Optional[int] = None,
        max_duration: Optional[float] = None
    ) -> np.ndarray:
        """
        Load an audio file as mono float32 samples.

        Args:
            audio_path: Path to audio file
            normalize: Whether to normalize audio amplitude
            sample_rate: Sample rate to resample to (target_sample_rate if None)
            max_duration: Truncation limit in seconds (max_duration if None)

        Returns:
            Audio data as numpy array
        """
        audio_path = Path(audio_path)
        sample_rate = sample_rate or self.target_sample_rate
        max_duration = self.max_duration if max_duration is None else max_duration

        if not audio_path.exists():
            raise AudioLoadError(f"Audio file not found: {audio_path}")

        if audio_path.suffix.lower() not in self.supported_formats:
            raise AudioLoadError(f"Unsupported audio format: {audio_path.suffix}")

        try:
            audio_data, _ = librosa.load(str(audio_path), sr=sample_rate, mono=True, dtype=np.float32)
        except Exception as e:
            self.logger.error(f"Failed to load audio {audio_path}: {str(e)}")
            raise AudioLoadError(f"Audio loading failed: {str(e)}")

        duration = len(audio_data) / sample_rate
        if max_duration and duration > max_duration:
            self.logger.warning(f"Audio duration ({duration:.1f}s) exceeds maximum "
                                f"({max_duration}s). Truncating.")
            audio_data = audio_data[:int(max_duration * sample_rate)]

        if normalize:
            audio_data = self.normalize_audio(audio_data)

        self.logger.debug(f"Loaded audio: duration={duration:.2f}s, sample_rate={sample_rate}")
        return audio_data

    def save_audio(
        self,
        audio_data: np.ndarray,
        output_path: Union[str, Path],
        sample_rate: Optional[int] = None
    ) -> Path:
        """
        Save audio data to a WAV or FLAC file.

        Args:
            audio_data: Audio data as numpy array
            output_path: Output file path
            sample_rate: Sample rate (uses target_sample_rate if None)

        Returns:
            Path of the written file
        """
        output_path = Path(output_path)
        sample_rate = sample_rate or self.target_sample_rate

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            audio_format = output_path.suffix.lower().lstrip('.') or 'wav'
            sf.write(str(output_path), audio_data, sample_rate, format=audio_format.upper())
            self.logger.debug(f"Saved audio to: {output_path}")
            return output_path
        except Exception as e:
            self.logger.error(f"Failed to save audio to {output_path}: {str(e)}")
            raise RuntimeError(f"Audio saving failed: {str(e)}")

    def get_duration(self, audio_path: Union[str, Path]) -> float:
        """Duration of an audio file in seconds."""
        try:
            return float(sf.info(str(audio_path)).duration)
        except Exception as e:
            raise AudioLoadError(f"Cannot read audio info for {audio_path}: {str(e)}")

    def normalize_audio(self, audio_data: np.ndarray, target_db: float = -20.0) -> np.ndarray:
        """
        Normalize audio amplitude.

        Args:
            audio_data: Input audio data
            target_db: Target RMS level in dB

        Returns:
            Normalized audio data
        """
        rms = np.sqrt(np.mean(audio_data ** 2)) if len(audio_data) else 0.0

        if rms > 0:
            target_linear = 10 ** (target_db / 20.0)
            normalized = audio_data * (target_linear / rms)
            return np.clip(normalized, -0.95, 0.95)

        return audio_data

    def apply_noise_reduction(self, audio_data: np.ndarray, noise_factor: float = 0.1) -> np.ndarray:
        """
        Apply basic noise reduction using spectral subtraction.

        Args:
            audio_data: Input audio data
            noise_factor: Noise reduction factor (0.0 to 1.0)

        Returns:
            Noise-reduced audio data
        """
        stft = librosa.stft(audio_data)
        magnitude, phase = np.abs(stft), np.angle(stft)

        # Noise estimate from the leading frames
        noise_frames = max(1, min(10, magnitude.shape[1] // 4))
        noise_spectrum = np.mean(magnitude[:, :noise_frames], axis=1, keepdims=True)

        magnitude_clean = magnitude - (noise_factor * noise_spectrum)
        magnitude_clean = np.maximum(magnitude_clean, 0.1 * magnitude)

        stft_clean = magnitude_clean * np.exp(1j * phase)
        return librosa.istft(stft_clean, length=len(audio_data))

    def remove_dc_offset(self, audio_data: np.ndarray, cutoff_hz: float = 40.0) -> np.ndarray:
        """High-pass filter out DC offset and rumble."""
        b, a = signal.butter(2, cutoff_hz, btype='highpass', fs=self.target_sample_rate)
        return signal.filtfilt(b, a, audio_data).astype(np.float32)

    def adjust_characteristics(
        self,
        audio_data: np.ndarray,
        characteristics: VoiceCharacteristics,
        sample_rate: Optional[int] = None
    ) -> np.ndarray:
        """
        Apply pitch, speed and emotion adjustments.

        Args:
            audio_data: Input audio data
            characteristics: Target voice characteristics
            sample_rate: Sample rate of audio_data

        Returns:
            Adjusted audio data
        """
        sample_rate = sample_rate or self.target_sample_rate
        adjusted = audio_data

        if characteristics.pitch:
            adjusted = librosa.effects.pitch_shift(
                adjusted, sr=sample_rate, n_steps=characteristics.pitch * PITCH_SEMITONE_RANGE
            )

        if characteristics.speed != 1.0:
            adjusted = librosa.effects.time_stretch(adjusted, rate=characteristics.speed)

        gain = EMOTION_GAIN.get(characteristics.emotion, 1.0)
        if gain != 1.0:
            adjusted = np.clip(adjusted * gain, -1.0, 1.0)

        return adjusted.astype(np.float32)

    def enhance_audio(self, audio_data: np.ndarray, quality: str) -> np.ndarray:
        """
        Quality enhancement pass for high and ultra tiers.

        Args:
            audio_data: Input audio data
            quality: Quality tier of the request

        Returns:
            Enhanced audio data (unchanged for tiers without enhancement)
        """
        strength = ENHANCEMENT_STRENGTH.get(quality)
        if strength is None:
            return audio_data

        enhanced = self.apply_noise_reduction(audio_data, noise_factor=strength)
        enhanced = self.remove_dc_offset(enhanced)
        return self.normalize_audio(enhanced)

    @staticmethod
    def needs_enhancement(quality: str) -> bool:
        return quality in ENHANCEMENT_STRENGTH
