"""
Voice Profile Store

Owns voice profiles and their averaged speaker embeddings, keeps at most one
profile active, and persists the collection as a JSON array.
"""

import json
import logging
import os
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Union

from ..config import PROFILES_FILE, VOICE_SAMPLES_DIR, DEFAULT_PROFILE_QUALITY
from ..errors import EmbeddingExtractionError, ProfileNotFoundError
from ..models import VoiceCharacteristics, VoiceProfile, QUALITY_TIERS
from .embeddings import average_embeddings, cosine_similarity
from .runtime import VoiceRuntime


class VoiceProfileStore:
    """Create, activate, compare and delete voice profiles."""

    def __init__(
        self,
        runtime: VoiceRuntime,
        profiles_file: Union[str, Path] = PROFILES_FILE,
        samples_dir: Optional[Union[str, Path]] = VOICE_SAMPLES_DIR,
        autoload: bool = True
    ):
        """
        Initialize the store.

        Args:
            runtime: Voice engine runtime used for embeddings and registration
            profiles_file: JSON document holding all persisted profiles
            samples_dir: Directory samples are copied into (None keeps the caller's paths)
            autoload: Whether to load persisted profiles immediately
        """
        self.runtime = runtime
        self.profiles_file = Path(profiles_file)
        self.samples_dir = Path(samples_dir) if samples_dir else None
        self.profiles: Dict[str, VoiceProfile] = {}
        self._transient: Set[str] = set()

        self.logger = logging.getLogger(__name__)

        if autoload:
            self.load()

    # Persistence

    def load(self) -> int:
        """Load profiles from disk. Returns the number loaded."""
        if not self.profiles_file.exists():
            return 0

        try:
            with open(self.profiles_file, 'r', encoding='utf-8') as f:
                documents = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to read voice profiles from {self.profiles_file}: {str(e)}")
            return 0

        self.profiles = {}
        for document in documents:
            try:
                profile = VoiceProfile.from_dict(document)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed voice profile: {str(e)}")
                continue
            self.profiles[profile.id] = profile

        self._enforce_single_active()
        self.logger.info(f"Loaded {len(self.profiles)} voice profiles")
        return len(self.profiles)

    def save(self) -> None:
        """Write all persistent profiles atomically."""
        documents = [
            profile.to_dict() for profile in self.profiles.values()
            if profile.id not in self._transient
        ]

        self.profiles_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.profiles_file.parent), suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(documents, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.profiles_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _enforce_single_active(self) -> None:
        active = [p for p in self.profiles.values() if p.is_active]
        for profile in active[1:]:
            profile.is_active = False

    async def restore(self) -> int:
        """Re-register persisted profiles with the engine after a restart."""
        restored = 0
        for profile in self.profiles.values():
            available = [s for s in profile.audio_samples if Path(s).exists()]
            if not available:
                self.logger.warning(f"No samples left on disk for profile {profile.id}")
                continue
            await self.runtime.register_profile(profile.id, available, profile.embedding)
            restored += 1
        return restored

    async def ensure_registered(self, profile_id: str) -> VoiceProfile:
        """Return the profile, registering it with the engine if needed."""
        profile = self.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(f"Voice profile not found: {profile_id}")
        if not await self.runtime.has_profile(profile_id):
            await self.runtime.register_profile(profile.id, profile.audio_samples, profile.embedding)
        return profile

    # Embeddings

    async def extract_embedding(self, audio: Union[str, Path]) -> List[float]:
        """Extract one sample's speaker embedding."""
        return await self.runtime.extract_embedding(audio)

    def _store_samples(self, profile_id: str, samples: Sequence[Union[str, Path]]) -> List[str]:
        if self.samples_dir is None:
            return [str(s) for s in samples]

        target_dir = self.samples_dir / profile_id
        target_dir.mkdir(parents=True, exist_ok=True)
        stored = []
        for index, sample in enumerate(samples):
            sample = Path(sample)
            target = target_dir / f"sample_{index}{sample.suffix or '.wav'}"
            shutil.copy2(sample, target)
            stored.append(str(target))
        return stored

    # Profile lifecycle

    async def create_profile(
        self,
        name: str,
        samples: Sequence[Union[str, Path]],
        characteristics: Optional[VoiceCharacteristics] = None,
        language: str = "en",
        quality: str = DEFAULT_PROFILE_QUALITY,
        profile_id: Optional[str] = None,
        persist: bool = True
    ) -> VoiceProfile:
        """
        Create a voice profile from one or more samples.

        Args:
            name: Display name
            samples: Audio sample paths (at least one)
            characteristics: Voice characteristics (defaults when None)
            language: Language the samples are spoken in
            quality: Quality tier used when synthesizing with the profile
            profile_id: Explicit id (generated when None)
            persist: Whether the profile is written to the profiles file

        Returns:
            The created profile
        """
        if not samples:
            raise ValueError("At least one voice sample is required")

        embeddings = []
        for sample in samples:
            embedding = await self.extract_embedding(sample)
            if not embedding:
                raise EmbeddingExtractionError(f"Empty embedding extracted from {sample}")
            embeddings.append(embedding)

        averaged = average_embeddings(embeddings)
        profile_id = profile_id or f"voice_{uuid.uuid4().hex[:12]}"

        stored_samples = self._store_samples(profile_id, samples) if persist else [str(s) for s in samples]
        await self.runtime.register_profile(profile_id, stored_samples, averaged)

        profile = VoiceProfile(
            id=profile_id,
            name=name,
            language=language,
            audio_samples=stored_samples,
            embedding=averaged,
            characteristics=characteristics or VoiceCharacteristics(),
            quality=quality,
        )
        self.profiles[profile_id] = profile

        if persist:
            self.save()
        else:
            self._transient.add(profile_id)

        self.logger.info(f"Created voice profile '{name}' ({profile_id}) from {len(samples)} samples")
        return profile

    def update_profile(
        self,
        profile_id: str,
        name: Optional[str] = None,
        language: Optional[str] = None,
        characteristics: Optional[VoiceCharacteristics] = None,
        quality: Optional[str] = None
    ) -> VoiceProfile:
        profile = self.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(f"Voice profile not found: {profile_id}")
        if quality is not None and quality not in QUALITY_TIERS:
            raise ValueError(f"Unsupported quality tier: {quality}")

        if name is not None:
            profile.name = name
        if language is not None:
            profile.language = language
        if characteristics is not None:
            profile.characteristics = characteristics
        if quality is not None:
            profile.quality = quality
        profile.updated_at = datetime.now(timezone.utc).isoformat()

        self.save()
        return profile

    def set_active(self, profile_id: str) -> VoiceProfile:
        """Activate one profile and deactivate every other."""
        if profile_id not in self.profiles:
            raise ProfileNotFoundError(f"Voice profile not found: {profile_id}")

        for profile in self.profiles.values():
            profile.is_active = profile.id == profile_id

        self.save()
        self.logger.info(f"Active voice profile: {profile_id}")
        return self.profiles[profile_id]

    def get_active(self) -> Optional[VoiceProfile]:
        for profile in self.profiles.values():
            if profile.is_active:
                return profile
        return None

    def get(self, profile_id: str) -> Optional[VoiceProfile]:
        return self.profiles.get(profile_id)

    def list_profiles(self) -> List[VoiceProfile]:
        return [p for p in self.profiles.values() if p.id not in self._transient]

    async def delete(self, profile_id: str) -> bool:
        """Delete a profile. Returns False when it did not exist."""
        if profile_id not in self.profiles:
            return False

        await self.runtime.release_profile(profile_id)
        profile = self.profiles.pop(profile_id)
        transient = profile_id in self._transient
        self._transient.discard(profile_id)

        if not transient:
            if self.samples_dir is not None:
                shutil.rmtree(self.samples_dir / profile_id, ignore_errors=True)
            self.save()

        self.logger.info(f"Deleted voice profile: {profile_id}")
        return True

    def compare(self, profile_a: str, profile_b: str) -> float:
        """Cosine similarity of two profiles' embeddings; 0.0 when not comparable."""
        a = self.profiles.get(profile_a)
        b = self.profiles.get(profile_b)
        if a is None or b is None:
            return 0.0
        return cosine_similarity(a.embedding, b.embedding)
