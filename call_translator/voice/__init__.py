from .engine import VoiceEngine, XTTSVoiceEngine, create_voice_resource
from .runtime import VoiceRuntime
from .profiles import VoiceProfileStore
from .synthesis_queue import SynthesisQueue, SynthesisRequest
from .cloner import VoiceCloningService

__all__ = [
    "VoiceEngine",
    "XTTSVoiceEngine",
    "create_voice_resource",
    "VoiceRuntime",
    "VoiceProfileStore",
    "SynthesisQueue",
    "SynthesisRequest",
    "VoiceCloningService",
]
