"""
Pipeline Exceptions

Error taxonomy shared by the translation, voice cloning and session layers.
"""

import asyncio
from typing import Optional


class PipelineError(RuntimeError):
    """Base exception for pipeline errors"""

    stage = "pipeline"

    def __init__(self, detail: str = "", stage: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if stage is not None:
            self.stage = stage


class BackendNotReadyError(PipelineError):
    """Raised when a backend or model session is not loaded or was shut down"""
    stage = "backend"


class ModelNotFoundError(PipelineError):
    """Raised when a model is not available to load"""
    stage = "model"


class ModelLoadError(PipelineError):
    """Raised when a model fails to load"""
    stage = "model"


class AudioLoadError(PipelineError):
    """Raised when an audio sample cannot be read"""
    stage = "audio"


class EmbeddingExtractionError(PipelineError):
    """Raised when a speaker embedding cannot be extracted"""
    stage = "embedding"


class MalformedEmbeddingError(PipelineError):
    """Raised when embeddings have mismatched or empty lengths"""
    stage = "embedding"


class ProfileNotFoundError(PipelineError):
    """Raised when a voice profile id is unknown"""
    stage = "profile"


class SynthesisError(PipelineError):
    """Raised when voice synthesis or a post-processing pass fails"""
    stage = "synthesis"


class TranslationUnavailableError(PipelineError):
    """Raised when the primary backend and every fallback failed"""
    stage = "translation"


class RequestCancelledError(PipelineError):
    """Raised when a queued request is cancelled or dropped"""
    stage = "queue"


class BackendTimeoutError(PipelineError):
    """Raised when a backend call exceeds its time budget"""
    stage = "backend"


class LanguageDetectionError(PipelineError):
    """Raised when language detection fails under the strict policy"""
    stage = "detection"


def classify_error(error: BaseException, default: type = SynthesisError) -> PipelineError:
    """
    Map an arbitrary backend exception onto the pipeline taxonomy.

    Args:
        error: Exception raised by a backend or engine
        default: Taxonomy class used when nothing more specific applies

    Returns:
        A PipelineError instance (the original one if already classified)
    """
    if isinstance(error, PipelineError):
        return error
    if isinstance(error, asyncio.TimeoutError):
        return BackendTimeoutError(f"Timed out: {str(error) or type(error).__name__}")
    if isinstance(error, FileNotFoundError):
        return AudioLoadError(f"Audio not found: {str(error)}")
    if isinstance(error, ImportError):
        return ModelNotFoundError(f"Model library unavailable: {str(error)}")
    return default(f"{type(error).__name__}: {str(error)}")
