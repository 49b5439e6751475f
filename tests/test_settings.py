"""
Tests for the settings document and SettingsStore.

Tests cover:
- Defaults for missing or blank files
- Provider keys encrypted on disk and decrypted on load
- Graceful degradation for undecryptable keys
- Save aborts on encryption failure
- Atomic writes leave no temporary files behind
"""
import errno
import asyncio
import logging

import orjson
import pytest

from device_vault.exceptions import IdentityUnavailable, SettingsError
from device_vault.settings import (
    ApiProviderConfig,
    AppSettings,
    ChatSettings,
    SettingsStore,
)
from device_vault.vault import DeviceVault, KeyStore, StaticIdentitySource, VaultConfig
from device_vault.vault.identity import IdentitySource


class FailingIdentitySource(IdentitySource):
    name = "failing"

    async def resolve(self) -> str:
        raise IdentityUnavailable("no machine id")


@pytest.fixture
def settings_path(data_dir):
    return data_dir / "settings.json"


@pytest.fixture
def store(vault, settings_path):
    return SettingsStore(vault, settings_path)


@pytest.fixture
def app_settings():
    return AppSettings(
        default_chat_settings=ChatSettings(model="gpt-4o", temperature=0.2),
        api_providers=[
            ApiProviderConfig(
                id="p1", provider_id="openai", name="OpenAI", api_key="sk-abc123",
            ),
            ApiProviderConfig(
                id="p2", provider_id="local", name="Local", api_key="",
                base_url="http://localhost:11434",
            ),
        ],
        send_with_enter=False,
    )


# --- Test Document Layout ---

class TestAppSettingsModel:
    """Tests for the on-disk document layout."""

    def test_defaults(self):
        settings = AppSettings()
        assert settings.default_chat_settings.model == "gpt-4o-mini"
        assert settings.default_chat_settings.temperature == 0.7
        assert settings.api_providers == []
        assert settings.send_with_enter is True

    def test_camel_case_keys(self, app_settings):
        data = orjson.loads(app_settings.to_json())
        assert data["sendWithEnter"] is False
        assert data["defaultChatSettings"]["model"] == "gpt-4o"
        assert data["apiProviders"][0]["providerId"] == "openai"
        assert data["apiProviders"][1]["baseUrl"] == "http://localhost:11434"

    def test_unset_optionals_omitted(self, app_settings):
        data = orjson.loads(app_settings.to_json())
        assert "systemPrompt" not in data["defaultChatSettings"]
        assert "maxTokens" not in data["defaultChatSettings"]
        assert "baseUrl" not in data["apiProviders"][0]

    def test_partial_document_merges_defaults(self):
        settings = AppSettings.from_json(b'{"sendWithEnter": false}')
        assert settings.send_with_enter is False
        assert settings.default_chat_settings.model == "gpt-4o-mini"

    def test_repr_hides_api_key(self, app_settings):
        assert "sk-abc123" not in repr(app_settings)

    def test_invalid_json(self):
        with pytest.raises(SettingsError):
            AppSettings.from_json(b"{not json")

    def test_non_object_root(self):
        with pytest.raises(SettingsError):
            AppSettings.from_json(b"[]")

    def test_invalid_document(self):
        with pytest.raises(SettingsError):
            AppSettings.from_json(b'{"apiProviders": [{"name": "x"}]}')


# --- Test Load ---

class TestLoad:
    """Tests for SettingsStore.load."""

    @pytest.mark.asyncio
    async def test_missing_file_gives_defaults(self, store):
        assert await store.load() == AppSettings()

    @pytest.mark.asyncio
    async def test_blank_file_gives_defaults(self, store, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text("  \n")
        assert await store.load() == AppSettings()

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, store, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text("{oops")
        with pytest.raises(SettingsError):
            await store.load()

    @pytest.mark.asyncio
    async def test_undecryptable_key_becomes_empty(
        self, store, settings_path, app_settings, caplog,
    ):
        """Test one bad credential does not abort loading the document."""
        await store.save(app_settings)
        data = orjson.loads(settings_path.read_bytes())
        data["apiProviders"].append({
            "id": "p3", "providerId": "anthropic", "name": "Broken", "apiKey": "zz-secret-zz",
        })
        settings_path.write_bytes(orjson.dumps(data))

        with caplog.at_level(logging.WARNING, logger="device_vault.settings"):
            loaded = await store.load()

        keys = {p.name: p.api_key for p in loaded.api_providers}
        assert keys == {"OpenAI": "sk-abc123", "Local": "", "Broken": ""}
        assert "Broken" in caplog.text
        assert "zz-secret-zz" not in caplog.text

    @pytest.mark.asyncio
    async def test_other_machine_loads_with_empty_keys(
        self, store, settings_path, app_settings, data_dir,
    ):
        """Test a copied settings file loads but its secrets are dropped."""
        await store.save(app_settings)
        elsewhere = DeviceVault(KeyStore(data_dir, StaticIdentitySource("other-host")))
        loaded = await SettingsStore(elsewhere, settings_path).load()
        assert [p.api_key for p in loaded.api_providers] == ["", ""]
        assert loaded.default_chat_settings.model == "gpt-4o"


# --- Test Save ---

class TestSave:
    """Tests for SettingsStore.save."""

    @pytest.mark.asyncio
    async def test_roundtrip(self, store, app_settings):
        await store.save(app_settings)
        assert await store.load() == app_settings

    @pytest.mark.asyncio
    async def test_keys_encrypted_on_disk(self, store, settings_path, app_settings):
        await store.save(app_settings)
        raw = settings_path.read_bytes()
        assert b"sk-abc123" not in raw
        data = orjson.loads(raw)
        assert data["apiProviders"][0]["apiKey"] != ""
        assert data["apiProviders"][1]["apiKey"] == ""

    @pytest.mark.asyncio
    async def test_caller_object_untouched(self, store, app_settings):
        await store.save(app_settings)
        assert app_settings.api_providers[0].api_key == "sk-abc123"

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, vault, tmp_path, app_settings):
        path = tmp_path / "nested" / "dir" / "settings.json"
        await SettingsStore(vault, path).save(app_settings)
        assert sorted(p.name for p in path.parent.iterdir()) == ["settings.json"]

    @pytest.mark.asyncio
    async def test_failed_replace_leaves_no_temp_file(
        self, store, settings_path, app_settings, monkeypatch,
    ):
        """Test a failed rename reports SettingsError and cleans up."""
        def failing_replace(src, dst):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        monkeypatch.setattr("device_vault.settings.os.replace", failing_replace)
        with pytest.raises(SettingsError, match="Failed to write"):
            await store.save(app_settings)
        assert not settings_path.exists()
        assert not list(settings_path.parent.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_concurrent_saves(self, store, settings_path, app_settings):
        """Test overlapping saves each use their own temp file."""
        variants = [
            app_settings.model_copy(update={"send_with_enter": bool(i % 2)})
            for i in range(6)
        ]
        await asyncio.gather(*(store.save(s) for s in variants))
        loaded = await store.load()
        assert loaded.api_providers == app_settings.api_providers
        assert not list(settings_path.parent.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_encryption_failure_aborts(self, data_dir, settings_path, app_settings):
        """Test nothing is written when a key cannot be encrypted."""
        vault = DeviceVault(KeyStore(data_dir, FailingIdentitySource()))
        store = SettingsStore(vault, settings_path)
        with pytest.raises(SettingsError, match="OpenAI"):
            await store.save(app_settings)
        assert not settings_path.exists()

    @pytest.mark.asyncio
    async def test_encryption_failure_keeps_previous_file(
        self, store, data_dir, settings_path, app_settings,
    ):
        await store.save(app_settings)
        before = settings_path.read_bytes()
        broken = SettingsStore(
            DeviceVault(KeyStore(data_dir, FailingIdentitySource())), settings_path,
        )
        with pytest.raises(SettingsError):
            await broken.save(app_settings)
        assert settings_path.read_bytes() == before


# --- Test Factory ---

class TestFromConfig:
    """Tests for SettingsStore.from_config."""

    def test_path_next_to_salt(self, vault, tmp_path):
        config = VaultConfig(data_dir=tmp_path, settings_filename="app.json")
        store = SettingsStore.from_config(vault, config)
        assert store.path == tmp_path / "app.json"
