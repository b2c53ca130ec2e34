"""Per-folder project settings.

A linked folder carries `.leafsync/settings.json` describing which remote
project it mirrors. The file uses camelCase keys:

    {
      "serverUrl": "https://www.overleaf.com",
      "projectId": "64f...",
      "projectName": "Thesis",
      "mainTex": "main.tex",
      "mainPdf": "main.pdf",
      "autoSync": true,
      "lastSynced": "2026-01-01T10:00:00+00:00"
    }
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from leafsync.core.config import CONFIG_DIR, DEFAULT_SERVER, SETTINGS_FILE, STATE_FILE

logger = logging.getLogger(__name__)


class NotLinkedError(Exception):
    """The folder has no project link."""


_JSON_KEYS = {
    "server_url": "serverUrl",
    "project_id": "projectId",
    "project_name": "projectName",
    "main_tex": "mainTex",
    "main_pdf": "mainPdf",
    "auto_sync": "autoSync",
    "last_synced": "lastSynced",
}


@dataclass
class ProjectSettings:
    """Settings of a linked folder."""

    project_id: str
    project_name: str = ""
    server_url: str = DEFAULT_SERVER
    main_tex: str = "main.tex"
    main_pdf: str = "main.pdf"
    auto_sync: bool = True
    last_synced: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectSettings:
        """Create from the JSON representation."""
        return cls(
            project_id=data["projectId"],
            project_name=data.get("projectName", ""),
            server_url=data.get("serverUrl") or DEFAULT_SERVER,
            main_tex=data.get("mainTex") or "main.tex",
            main_pdf=data.get("mainPdf") or "main.pdf",
            auto_sync=bool(data.get("autoSync", True)),
            last_synced=data.get("lastSynced"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            _JSON_KEYS[key]: value
            for key, value in asdict(self).items()
            if value is not None
        }


class SettingsManager:
    """Loads and saves the settings of one linked folder."""

    def __init__(self, folder: Path) -> None:
        self._folder = Path(folder).resolve()
        self._settings: ProjectSettings | None = None

    @property
    def folder(self) -> Path:
        return self._folder

    @property
    def config_dir(self) -> Path:
        return self._folder / CONFIG_DIR

    @property
    def settings_file(self) -> Path:
        return self.config_dir / SETTINGS_FILE

    @property
    def state_file(self) -> Path:
        return self.config_dir / STATE_FILE

    @property
    def settings(self) -> ProjectSettings | None:
        """Settings as last loaded or saved."""
        return self._settings

    def require(self) -> ProjectSettings:
        """Settings of a linked folder.

        Raises:
            NotLinkedError: If the folder is not linked or its settings are invalid.
        """
        settings = self._settings or self.load()
        if settings is None:
            raise NotLinkedError(f"{self._folder} is not linked to a project")
        return settings

    def is_linked(self) -> bool:
        return self.settings_file.exists()

    def load(self) -> ProjectSettings | None:
        """Load settings from disk; None if the folder is not linked."""
        if not self.settings_file.exists():
            self._settings = None
            return None
        try:
            data = json.loads(self.settings_file.read_text(encoding="utf-8"))
            self._settings = ProjectSettings.from_dict(data)
        except (json.JSONDecodeError, KeyError) as e:
            logger.warning("Invalid settings file %s: %s", self.settings_file, e)
            self._settings = None
        return self._settings

    def save(self, settings: ProjectSettings) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.settings_file.write_text(
            json.dumps(settings.to_dict(), indent=2), encoding="utf-8"
        )
        self._settings = settings

    def update(self, **changes: Any) -> ProjectSettings | None:
        """Apply changes to the stored settings."""
        current = self.load()
        if current is None:
            return None
        updated = replace(current, **changes)
        self.save(updated)
        return updated

    def update_last_synced(self) -> None:
        self.update(last_synced=datetime.now(timezone.utc).isoformat())

    def unlink(self) -> None:
        """Remove the configuration directory."""
        if self.config_dir.exists():
            shutil.rmtree(self.config_dir)
        self._settings = None

    @staticmethod
    def create_default(project_id: str, project_name: str = "", server_url: str = "") -> ProjectSettings:
        return ProjectSettings(
            project_id=project_id,
            project_name=project_name,
            server_url=server_url or DEFAULT_SERVER,
        )
