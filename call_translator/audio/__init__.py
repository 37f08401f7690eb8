from .processor import AudioProcessor
from .temp_files import TempAudioStore

__all__ = ["AudioProcessor", "TempAudioStore"]
