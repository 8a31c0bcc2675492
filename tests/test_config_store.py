"""
Tests for the encrypted connector configuration store.
"""

import json

import pytest

from healthlink.errors import NotFoundError, StorageError, ValidationError
from healthlink.storage import (
    ConfigStore,
    FileSystemBackend,
    InvalidConfigEntry,
    MemoryBackend,
    StoredConfigSummary,
)

from conftest import MASTER_SECRET, make_config


@pytest.fixture
def fs_store(tmp_path):
    return ConfigStore(master_secret=MASTER_SECRET, backend=FileSystemBackend(tmp_path / "configs"))


class TestSaveLoad:

    @pytest.mark.asyncio
    async def test_round_trip(self, config_store):
        ack = await config_store.save("fhir-main", make_config())
        assert ack.success is True

        config = await config_store.load("fhir-main")

        assert config.id == "fhir-main"
        assert config.name == "Test FHIR Server"
        assert config.authentication.token == "bearer-secret"

    @pytest.mark.asyncio
    async def test_record_is_encrypted_at_rest(self, fs_store, tmp_path):
        await fs_store.save("fhir-main", make_config())

        raw = (tmp_path / "configs" / "fhir-main.json").read_text()
        envelope = json.loads(raw)

        assert {"ciphertext", "iv", "authTag", "algorithmId", "encryptedAt"} <= set(envelope)
        assert "bearer-secret" not in raw
        assert "Test FHIR Server" not in raw

    @pytest.mark.asyncio
    async def test_metadata_is_store_owned(self, config_store):
        await config_store.save("fhir-main", make_config(metadata={"createdAt": "1999-01-01"}))

        first = await config_store.load_record("fhir-main")
        await config_store.save("fhir-main", make_config(name="Renamed"))
        second = await config_store.load_record("fhir-main")

        assert first.metadata.created_at.year != 1999
        assert second.metadata.created_at == first.metadata.created_at
        assert second.metadata.updated_at >= first.metadata.updated_at
        assert second.metadata.schema_version == "1.0.0"

    @pytest.mark.asyncio
    async def test_missing_name_rejected(self, config_store):
        config = make_config()
        del config["name"]

        with pytest.raises(ValidationError, match="name"):
            await config_store.save("fhir-main", config)
        assert await config_store.list() == []

    @pytest.mark.asyncio
    async def test_framework_flag_required(self, config_store):
        config = make_config(healthcareCompliance={"encryptionRequired": True})

        with pytest.raises(ValidationError, match="HIPAA or NPHIES"):
            await config_store.save("fhir-main", config)

    @pytest.mark.asyncio
    async def test_invalid_id_rejected(self, config_store):
        with pytest.raises(ValidationError):
            await config_store.save("../escape", make_config())

    @pytest.mark.asyncio
    async def test_load_missing(self, config_store):
        with pytest.raises(NotFoundError):
            await config_store.load("absent")

    def test_secret_required(self, monkeypatch):
        monkeypatch.setattr(
            "healthlink.storage.config_store.get_settings",
            lambda: type("S", (), {"master_secret": None})(),
        )
        with pytest.raises(ValidationError, match="Encryption key required"):
            ConfigStore(backend=MemoryBackend())


class TestListing:

    @pytest.mark.asyncio
    async def test_list_summaries(self, config_store):
        await config_store.save("b-lab", make_config(type="lis_system", name="Lab"))
        await config_store.save("a-fhir", make_config())

        entries = await config_store.list()

        assert [e.id for e in entries] == ["a-fhir", "b-lab"]
        assert all(isinstance(e, StoredConfigSummary) for e in entries)
        assert entries[1].type == "lis_system"
        assert entries[0].compliance["hipaa"] is True
        assert entries[0].last_modified is not None

    @pytest.mark.asyncio
    async def test_listing_is_stable(self, config_store):
        await config_store.save("a-fhir", make_config())
        assert await config_store.list() == await config_store.list()

    @pytest.mark.asyncio
    async def test_bad_record_is_flagged(self, config_store):
        await config_store.save("good", make_config())
        config_store.backend.write("broken", b'{"ciphertext": "AAAA", "iv": "AAAA", "authTag": "AAAA"}')
        config_store.backend.write("garbage", b"not json")

        entries = {e.id: e for e in await config_store.list()}

        assert isinstance(entries["good"], StoredConfigSummary)
        assert isinstance(entries["broken"], InvalidConfigEntry)
        assert entries["broken"].status == "invalid"
        assert isinstance(entries["garbage"], InvalidConfigEntry)

    @pytest.mark.asyncio
    async def test_other_secret_cannot_read(self, config_store):
        await config_store.save("a-fhir", make_config())
        intruder = ConfigStore(master_secret="another-secret", backend=config_store.backend)

        entries = await intruder.list()

        assert isinstance(entries[0], InvalidConfigEntry)


class TestUpdateDelete:

    @pytest.mark.asyncio
    async def test_partial_update_merges(self, config_store):
        await config_store.save("fhir-main", make_config(headers={"X-One": "1"}))

        await config_store.update("fhir-main", {
            "name": "Updated",
            "headers": {"X-Two": "2"},
            "errorHandling": {"timeoutMs": 5000},
        })
        config = await config_store.load("fhir-main")

        assert config.name == "Updated"
        assert config.headers == {"X-One": "1", "X-Two": "2"}
        assert config.error_handling.timeout_ms == 5000
        assert config.error_handling.retry_attempts == 2
        assert config.authentication.token == "bearer-secret"

    @pytest.mark.asyncio
    async def test_update_switching_auth_replaces_block(self, config_store):
        await config_store.save("fhir-main", make_config())

        await config_store.update("fhir-main", {"authentication": {"type": "apikey", "key": "k-1"}})
        config = await config_store.load("fhir-main")

        assert config.authentication.type == "apikey"
        assert config.authentication.key == "k-1"

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_record(self, config_store):
        await config_store.save("fhir-main", make_config())

        with pytest.raises(ValidationError):
            await config_store.update("fhir-main", {"endpoint": "not-a-url"})

        assert (await config_store.load("fhir-main")).endpoint == "https://fhir.test.local/R4"

    @pytest.mark.asyncio
    async def test_update_missing(self, config_store):
        with pytest.raises(NotFoundError):
            await config_store.update("absent", {"name": "x"})

    @pytest.mark.asyncio
    async def test_delete(self, config_store):
        await config_store.save("fhir-main", make_config())

        await config_store.delete("fhir-main")

        with pytest.raises(NotFoundError):
            await config_store.load("fhir-main")
        with pytest.raises(NotFoundError):
            await config_store.delete("fhir-main")

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self, config_store):
        await config_store.save("fhir-main", make_config())
        await config_store.update("fhir-main", {"name": "Renamed"})
        await config_store.delete("fhir-main")
        with pytest.raises(NotFoundError):
            await config_store.delete("ghost")

        assert len(config_store._locks) == 0


class TestBackup:

    @pytest.mark.asyncio
    async def test_filesystem_backup(self, fs_store, tmp_path):
        await fs_store.save("a-fhir", make_config())
        await fs_store.save("b-fhir", make_config())

        result = await fs_store.backup()

        assert result.count == 2
        backup_files = sorted(p.name for p in (tmp_path / "configs" / "backups").glob("*/*.json"))
        assert backup_files == ["a-fhir.json", "b-fhir.json"]
        # Backups are not listed as configurations
        assert [e.id for e in await fs_store.list()] == ["a-fhir", "b-fhir"]

    @pytest.mark.asyncio
    async def test_memory_backup(self, config_store):
        await config_store.save("a-fhir", make_config())

        result = await config_store.backup()

        assert result.count == 1
        assert result.location.startswith("memory://backups/")

    @pytest.mark.asyncio
    async def test_medium_failure_is_storage_error(self, config_store, monkeypatch):
        def fail(key, data):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(config_store.backend, "write", fail)

        with pytest.raises(StorageError):
            await config_store.save("a-fhir", make_config())
