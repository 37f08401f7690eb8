"""
Tests for the voice profile store and embedding arithmetic.
"""

import json

import pytest

from call_translator.errors import EmbeddingExtractionError, MalformedEmbeddingError, ProfileNotFoundError
from call_translator.models import VoiceCharacteristics
from call_translator.voice.embeddings import average_embeddings, cosine_similarity, similarity_score
from call_translator.voice.profiles import VoiceProfileStore
from tests.conftest import FakeVoiceEngine, create_test_audio_file, make_voice_service


class TestEmbeddings:
    """Averaging and similarity."""

    def test_average(self):
        assert average_embeddings([[1.0, 0.0], [0.0, 1.0]]) == [0.5, 0.5]

    def test_average_single(self):
        assert average_embeddings([[0.2, 0.4, 0.6]]) == pytest.approx([0.2, 0.4, 0.6])

    @pytest.mark.parametrize("embeddings", [[], [[]], [[1.0, 0.0], [1.0]]])
    def test_average_malformed(self, embeddings):
        with pytest.raises(MalformedEmbeddingError):
            average_embeddings(embeddings)

    def test_cosine_identical(self):
        assert cosine_similarity([0.3, 0.4], [0.3, 0.4]) == pytest.approx(1.0)

    def test_cosine_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    @pytest.mark.parametrize("a,b", [
        (None, [1.0]),
        ([], []),
        ([1.0, 0.0], [1.0]),
        ([0.0, 0.0], [1.0, 0.0]),
    ])
    def test_cosine_not_comparable(self, a, b):
        assert cosine_similarity(a, b) == 0.0

    def test_similarity_score_clamped(self):
        assert similarity_score([1.0, 0.0], [-1.0, 0.0]) == 0.0


class TestProfileCreation:
    """Profile creation from samples."""

    @pytest.mark.asyncio
    async def test_embedding_is_sample_average(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()

        profile = await service.store.create_profile("A", voice_samples)

        assert profile.embedding == pytest.approx([0.5, 0.5])
        assert profile.id.startswith("voice_")
        assert service.runtime.resource.is_loaded
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_samples_copied_and_registered(self, tmp_path, voice_samples):
        engine = FakeVoiceEngine()
        service = make_voice_service(tmp_path, engine=engine)
        await service.initialize()

        profile = await service.store.create_profile("A", voice_samples, language="es")

        assert len(profile.audio_samples) == 2
        for sample in profile.audio_samples:
            assert str(tmp_path / "samples" / profile.id) in sample
        assert engine.registered[profile.id] == pytest.approx([0.5, 0.5])
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_requires_samples(self, tmp_path):
        service = make_voice_service(tmp_path)
        await service.initialize()

        with pytest.raises(ValueError):
            await service.store.create_profile("Empty", [])
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_engine_not_ready(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)

        with pytest.raises(EmbeddingExtractionError):
            await service.store.create_profile("A", voice_samples)
        assert service.store.list_profiles() == []

    @pytest.mark.asyncio
    async def test_missing_sample(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()

        with pytest.raises(EmbeddingExtractionError):
            await service.store.create_profile("A", [voice_samples[0], tmp_path / "missing.wav"])
        assert service.store.list_profiles() == []
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_mismatched_embeddings(self, tmp_path, voice_samples):
        engine = FakeVoiceEngine(embeddings={'speaker_b.wav': [0.0, 1.0, 0.0]})
        service = make_voice_service(tmp_path, engine=engine)
        await service.initialize()

        with pytest.raises(MalformedEmbeddingError):
            await service.store.create_profile("A", voice_samples)
        await service.cleanup()


class TestProfileManagement:
    """Activation, comparison, deletion and persistence."""

    @pytest.mark.asyncio
    async def test_compare(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()
        a = await service.store.create_profile("A", [voice_samples[0]])
        b = await service.store.create_profile("B", [voice_samples[1]])

        assert service.compare_voices(a.id, a.id) == pytest.approx(1.0)
        assert service.compare_voices(a.id, b.id) == pytest.approx(0.0)
        assert service.compare_voices(a.id, "unknown") == 0.0
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_single_active_profile(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()
        a = await service.store.create_profile("A", voice_samples)
        b = await service.store.create_profile("B", voice_samples)

        service.store.set_active(a.id)
        service.store.set_active(b.id)

        active = [p for p in service.store.list_profiles() if p.is_active]
        assert [p.id for p in active] == [b.id]
        assert service.store.get_active().id == b.id
        await service.cleanup()

    def test_set_active_unknown(self, tmp_path):
        service = make_voice_service(tmp_path)

        with pytest.raises(ProfileNotFoundError):
            service.store.set_active("voice_missing")

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, tmp_path, voice_samples):
        engine = FakeVoiceEngine()
        service = make_voice_service(tmp_path, engine=engine)
        await service.initialize()
        profile = await service.store.create_profile("A", voice_samples)

        assert await service.store.delete(profile.id) is True
        assert await service.store.delete(profile.id) is False
        assert service.store.get(profile.id) is None
        assert engine.released == [profile.id]
        assert not (tmp_path / "samples" / profile.id).exists()
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_update_profile(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()
        profile = await service.store.create_profile("A", voice_samples)

        updated = service.store.update_profile(
            profile.id, name="Renamed", characteristics=VoiceCharacteristics(pitch=0.2), quality="ultra"
        )

        assert updated.name == "Renamed"
        assert updated.characteristics.pitch == 0.2
        assert updated.quality == "ultra"
        with pytest.raises(ValueError):
            service.store.update_profile(profile.id, quality="studio")
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_persistence_round_trip(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()
        profile = await service.store.create_profile(
            "A", voice_samples, characteristics=VoiceCharacteristics(speed=1.2, emotion="calm")
        )
        service.store.set_active(profile.id)

        reloaded = VoiceProfileStore(service.runtime, tmp_path / "voice_profiles.json", tmp_path / "samples")

        restored = reloaded.get(profile.id)
        assert restored.embedding == pytest.approx([0.5, 0.5])
        assert restored.characteristics.emotion == "calm"
        assert reloaded.get_active().id == profile.id
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_transient_profiles_not_persisted(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()
        await service.store.create_profile("Temp", voice_samples, profile_id="temp_1", persist=False)

        assert service.store.list_profiles() == []
        assert service.store.get("temp_1") is not None
        assert not (tmp_path / "voice_profiles.json").exists()
        await service.cleanup()

    def test_load_skips_malformed_and_extra_active(self, tmp_path):
        profiles_file = tmp_path / "voice_profiles.json"
        profiles_file.write_text(json.dumps([
            {'id': 'voice_a', 'name': 'A', 'embedding': [1.0, 0.0], 'is_active': True},
            {'id': 'voice_b', 'name': 'B', 'embedding': [0.0, 1.0], 'is_active': True},
            {'name': 'no id'},
            {'id': 'voice_c', 'name': 'C', 'quality': 'studio'},
        ]))
        service = make_voice_service(tmp_path)

        assert {p.id for p in service.store.list_profiles()} == {'voice_a', 'voice_b'}
        assert service.store.get_active().id == 'voice_a'
        assert not service.store.get('voice_b').is_active

    @pytest.mark.asyncio
    async def test_restore_registers_persisted_profiles(self, tmp_path, voice_samples):
        service = make_voice_service(tmp_path)
        await service.initialize()
        profile = await service.store.create_profile("A", voice_samples)
        await service.cleanup()

        engine = FakeVoiceEngine()
        restarted = make_voice_service(tmp_path, engine=engine)
        await restarted.initialize()

        assert engine.registered[profile.id] == pytest.approx([0.5, 0.5])
        await restarted.cleanup()

    @pytest.mark.asyncio
    async def test_extract_embedding(self, tmp_path):
        service = make_voice_service(tmp_path)
        await service.initialize()
        sample = create_test_audio_file(tmp_path / "speaker_b.wav")

        assert await service.store.extract_embedding(sample) == [0.0, 1.0]
        await service.cleanup()
