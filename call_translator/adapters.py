"""
Audio capture/playback and call signalling adapters

The session loop only talks to these contracts. FileAudioAdapter replays
prerecorded samples (simulation and tests); SoundDeviceAdapter uses the
default microphone and speakers.
"""

import asyncio
import itertools
import logging
import queue
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import soundfile as sf

from .audio.temp_files import TempAudioStore
from .config import SAMPLE_RATE
from .errors import AudioLoadError


class AudioIOAdapter(ABC):
    """Recording and playback contract."""

    @abstractmethod
    async def start_recording(self) -> str:
        """Begin capturing. Returns a recording token."""
        pass

    @abstractmethod
    async def stop_recording(self, token: str) -> Path:
        """Finish capturing and return the path of the recorded audio."""
        pass

    @abstractmethod
    async def play(self, audio_path: Union[str, Path]) -> None:
        """Play an audio file, returning when playback finishes."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop playback and release any active recording."""
        pass


class CallSignal(ABC):
    """Call connection contract."""

    @abstractmethod
    async def wait_until_connected(self) -> None:
        pass


class ImmediateCallSignal(CallSignal):
    """A call that is already connected."""

    async def wait_until_connected(self) -> None:
        return None


class EventCallSignal(CallSignal):
    """A call connected by an external trigger."""

    def __init__(self):
        self._connected = asyncio.Event()

    def connected(self) -> None:
        self._connected.set()

    async def wait_until_connected(self) -> None:
        await self._connected.wait()


class FileAudioAdapter(AudioIOAdapter):
    """Replays sample files as captures and copies played audio to a directory."""

    def __init__(
        self,
        samples: Sequence[Union[str, Path]],
        temp_store: TempAudioStore,
        output_dir: Optional[Union[str, Path]] = None,
        loop_samples: bool = True
    ):
        """
        Args:
            samples: Audio files returned by successive recordings
            temp_store: Store the capture copies are written to
            output_dir: Directory played audio is copied into (None discards it)
            loop_samples: Cycle through samples instead of stopping after the last
        """
        if not samples:
            raise ValueError("At least one sample file is required")

        self.samples = [Path(s) for s in samples]
        self.temp_store = temp_store
        self.output_dir = Path(output_dir) if output_dir else None
        self._next_sample = itertools.cycle(self.samples) if loop_samples else iter(self.samples)
        self._recordings: Dict[str, Path] = {}
        self.played: List[Path] = []
        self.stopped = False
        self.logger = logging.getLogger(__name__)

    @property
    def active_recordings(self) -> int:
        return len(self._recordings)

    async def start_recording(self) -> str:
        try:
            sample = next(self._next_sample)
        except StopIteration:
            raise AudioLoadError("No more sample recordings")
        token = uuid.uuid4().hex
        self._recordings[token] = sample
        return token

    async def stop_recording(self, token: str) -> Path:
        sample = self._recordings.pop(token, None)
        if sample is None:
            raise AudioLoadError(f"Unknown recording token: {token}")
        capture = self.temp_store.new_path("capture", sample.suffix or ".wav")
        shutil.copy2(sample, capture)
        return capture

    async def play(self, audio_path: Union[str, Path]) -> None:
        audio_path = Path(audio_path)
        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            target = self.output_dir / f"played_{len(self.played):04d}{audio_path.suffix}"
            shutil.copy2(audio_path, target)
            self.played.append(target)
        else:
            self.played.append(audio_path)
        self.logger.debug(f"Played {audio_path}")

    async def stop(self) -> None:
        self._recordings.clear()
        self.stopped = True


class SoundDeviceAdapter(AudioIOAdapter):
    """Microphone capture and speaker playback through sounddevice."""

    def __init__(self, temp_store: TempAudioStore, sample_rate: int = SAMPLE_RATE, device=None):
        """
        Args:
            temp_store: Store recordings are written to
            sample_rate: Capture sample rate
            device: sounddevice device identifier (default device when None)
        """
        import sounddevice as sd

        self.sd = sd
        self.temp_store = temp_store
        self.sample_rate = sample_rate
        self.device = device
        self._streams: Dict[str, object] = {}
        self._buffers: Dict[str, "queue.Queue[np.ndarray]"] = {}
        self.logger = logging.getLogger(__name__)

    async def start_recording(self) -> str:
        token = uuid.uuid4().hex
        buffer: "queue.Queue[np.ndarray]" = queue.Queue()

        def callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                self.logger.debug(f"Input stream status: {status}")
            buffer.put(indata.copy().flatten().astype(np.float32))

        stream = self.sd.InputStream(
            samplerate=self.sample_rate,
            channels=1,
            device=self.device,
            callback=callback,
        )
        stream.start()
        self._streams[token] = stream
        self._buffers[token] = buffer
        return token

    async def stop_recording(self, token: str) -> Path:
        stream = self._streams.pop(token, None)
        buffer = self._buffers.pop(token, None)
        if stream is None:
            raise AudioLoadError(f"Unknown recording token: {token}")

        stream.stop()
        stream.close()

        blocks = []
        while not buffer.empty():
            blocks.append(buffer.get_nowait())
        audio = np.concatenate(blocks) if blocks else np.zeros(0, dtype=np.float32)

        path = self.temp_store.new_path("capture")
        sf.write(str(path), audio, self.sample_rate)
        return path

    async def play(self, audio_path: Union[str, Path]) -> None:
        audio, sample_rate = sf.read(str(audio_path), dtype='float32')
        self.sd.play(audio, sample_rate, device=self.device)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.sd.wait)

    async def stop(self) -> None:
        self.sd.stop()
        for token in list(self._streams):
            stream = self._streams.pop(token)
            self._buffers.pop(token, None)
            stream.stop()
            stream.close()
