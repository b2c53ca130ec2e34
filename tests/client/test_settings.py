"""Tests for per-folder project settings."""

import json
from pathlib import Path

import pytest

from leafsync.client.settings import NotLinkedError, ProjectSettings, SettingsManager
from leafsync.core.config import DEFAULT_SERVER


class TestProjectSettings:
    """Tests for ProjectSettings serialization."""

    def test_to_dict_uses_camel_case(self) -> None:
        settings = ProjectSettings(project_id="p1", project_name="Thesis")
        data = settings.to_dict()

        assert data["projectId"] == "p1"
        assert data["projectName"] == "Thesis"
        assert data["mainTex"] == "main.tex"
        assert "lastSynced" not in data

    def test_from_dict_defaults(self) -> None:
        settings = ProjectSettings.from_dict({"projectId": "p1"})

        assert settings.server_url == DEFAULT_SERVER
        assert settings.main_pdf == "main.pdf"
        assert settings.auto_sync is True


class TestSettingsManager:
    """Tests for SettingsManager persistence."""

    def test_not_linked(self, tmp_path: Path) -> None:
        manager = SettingsManager(tmp_path)
        assert not manager.is_linked()
        assert manager.load() is None

    def test_require(self, tmp_path: Path) -> None:
        manager = SettingsManager(tmp_path)
        with pytest.raises(NotLinkedError):
            manager.require()

        manager.save(SettingsManager.create_default("p1"))
        assert SettingsManager(tmp_path).require().project_id == "p1"

    def test_save_and_load(self, tmp_path: Path) -> None:
        manager = SettingsManager(tmp_path)
        manager.save(SettingsManager.create_default("p1", "Thesis", "https://example.com"))

        assert manager.settings_file == tmp_path.resolve() / ".leafsync" / "settings.json"
        reloaded = SettingsManager(tmp_path).load()
        assert reloaded is not None
        assert reloaded.project_id == "p1"
        assert reloaded.server_url == "https://example.com"

    def test_invalid_file(self, tmp_path: Path) -> None:
        """A corrupt settings file should load as unlinked."""
        manager = SettingsManager(tmp_path)
        manager.config_dir.mkdir()
        manager.settings_file.write_text("{not json")

        assert manager.load() is None

    def test_missing_project_id(self, tmp_path: Path) -> None:
        manager = SettingsManager(tmp_path)
        manager.config_dir.mkdir()
        manager.settings_file.write_text(json.dumps({"projectName": "x"}))

        assert manager.load() is None

    def test_update(self, tmp_path: Path) -> None:
        manager = SettingsManager(tmp_path)
        manager.save(SettingsManager.create_default("p1"))

        updated = manager.update(main_tex="thesis.tex")

        assert updated is not None
        assert updated.main_tex == "thesis.tex"
        assert SettingsManager(tmp_path).load().main_tex == "thesis.tex"  # type: ignore[union-attr]

    def test_update_unlinked(self, tmp_path: Path) -> None:
        assert SettingsManager(tmp_path).update(main_tex="x.tex") is None

    def test_update_last_synced(self, tmp_path: Path) -> None:
        manager = SettingsManager(tmp_path)
        manager.save(SettingsManager.create_default("p1"))

        manager.update_last_synced()

        loaded = manager.load()
        assert loaded is not None
        assert loaded.last_synced is not None

    def test_unlink(self, tmp_path: Path) -> None:
        manager = SettingsManager(tmp_path)
        manager.save(SettingsManager.create_default("p1"))

        manager.unlink()

        assert not manager.config_dir.exists()
        assert manager.settings is None
