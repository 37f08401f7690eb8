"""
Scoped storage for transient audio files.
"""

import logging
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Set, Union

from ..config import TEMP_AUDIO_DIR


class TempAudioStore:
    """Hands out temp file paths and guarantees their removal."""

    def __init__(self, base_dir: Union[str, Path] = TEMP_AUDIO_DIR):
        self.base_dir = Path(base_dir)
        self._issued: Set[Path] = set()
        self.logger = logging.getLogger(__name__)

    def new_path(self, prefix: str = "audio", suffix: str = ".wav") -> Path:
        """Reserve a unique path in the temp directory."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        path = self.base_dir / f"{prefix}_{uuid.uuid4().hex}{suffix}"
        self._issued.add(path)
        return path

    def write_bytes(self, data: bytes, prefix: str = "audio", suffix: str = ".wav") -> Path:
        path = self.new_path(prefix, suffix)
        path.write_bytes(data)
        return path

    def delete(self, path: Optional[Union[str, Path]]) -> None:
        """Delete a file if it exists. Missing files are ignored."""
        if path is None:
            return
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to delete temp audio {path}: {str(e)}")
        self._issued.discard(path)

    @contextmanager
    def scoped(self, prefix: str = "audio", suffix: str = ".wav") -> Iterator[Path]:
        """Yield a temp path that is deleted on exit, on success and on error."""
        path = self.new_path(prefix, suffix)
        try:
            yield path
        finally:
            self.delete(path)

    @property
    def outstanding(self) -> Set[Path]:
        return {path for path in self._issued if path.exists()}

    def cleanup(self) -> int:
        """Delete every file this store issued. Returns the number removed."""
        removed = 0
        for path in list(self._issued):
            if path.exists():
                removed += 1
            self.delete(path)
        self._issued.clear()
        return removed
