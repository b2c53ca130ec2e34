"""Bidirectional index between remote entity ids and local paths.

Path rule:
    root folder          "/"
    folder               parent_path + name + "/"
    doc or file          parent_path + name

Both maps hold the same EntityEntry objects and every mutator updates
them together, so no two ids share a path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from leafsync.client.api import RemoteEntityRef, entity_id_for_path
from leafsync.client.protocol import ProjectFolder
from leafsync.core.types import EntityKind

logger = logging.getLogger(__name__)

ROOT_PATH = "/"


@dataclass
class EntityEntry:
    """An indexed remote entity."""

    id: str
    kind: EntityKind
    name: str
    path: str
    parent_id: str | None = None

    @property
    def is_folder(self) -> bool:
        return self.kind == EntityKind.FOLDER

    @property
    def is_doc(self) -> bool:
        return self.kind == EntityKind.DOC


def child_path(parent_path: str, name: str, kind: EntityKind) -> str:
    """Path of a child named `name` inside the folder at parent_path."""
    if not parent_path.endswith("/"):
        parent_path += "/"
    path = parent_path + name
    return path + "/" if kind == EntityKind.FOLDER else path


def parent_path(path: str) -> str:
    """Path of the folder containing path ("/" for top-level entries)."""
    trimmed = path.rstrip("/")
    index = trimmed.rfind("/")
    return trimmed[: index + 1] if index >= 0 else ROOT_PATH


def base_name(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


class EntityTreeIndex:
    """id <-> path index of a project tree."""

    def __init__(self) -> None:
        self._by_id: dict[str, EntityEntry] = {}
        self._by_path: dict[str, EntityEntry] = {}
        self._root_id: str | None = None

    @property
    def root_id(self) -> str | None:
        return self._root_id

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._by_id

    def entries(self) -> list[EntityEntry]:
        """All entries, ordered by path."""
        return sorted(self._by_id.values(), key=lambda e: e.path)

    def lookup_by_id(self, entity_id: str) -> EntityEntry | None:
        return self._by_id.get(entity_id)

    def lookup_by_path(self, path: str) -> EntityEntry | None:
        return self._by_path.get(path)

    def children_of(self, folder_id: str) -> list[EntityEntry]:
        return sorted(
            (e for e in self._by_id.values() if e.parent_id == folder_id),
            key=lambda e: e.path,
        )

    def parent_path_of(self, path: str) -> str:
        return parent_path(path)

    def folder_for(self, path: str) -> EntityEntry | None:
        """Folder entry that would contain path."""
        folder = self._by_path.get(parent_path(path))
        if folder is not None and folder.is_folder:
            return folder
        return None

    # === Building ===

    def clear(self) -> None:
        self._by_id.clear()
        self._by_path.clear()
        self._root_id = None

    def build(self, root: ProjectFolder) -> None:
        """Replace the index with a project tree snapshot."""
        by_id: dict[str, EntityEntry] = {}

        def traverse(folder: ProjectFolder, path: str, parent_id: str | None) -> None:
            by_id[folder.id] = EntityEntry(
                id=folder.id,
                kind=EntityKind.FOLDER,
                name=folder.name,
                path=path,
                parent_id=parent_id,
            )
            for leaf in (*folder.docs, *folder.file_refs):
                by_id[leaf.id] = EntityEntry(
                    id=leaf.id,
                    kind=leaf.kind,
                    name=leaf.name,
                    path=child_path(path, leaf.name, leaf.kind),
                    parent_id=folder.id,
                )
            for sub in folder.folders:
                traverse(sub, child_path(path, sub.name, EntityKind.FOLDER), folder.id)

        traverse(root, ROOT_PATH, None)
        self._replace(by_id, root.id)
        logger.debug("Indexed %d entities", len(self._by_id))

    def build_from_entities(self, entities: Iterable[RemoteEntityRef]) -> None:
        """Replace the index with a flat path listing.

        Identities are derived from paths; intermediate folders are
        synthesized.
        """
        root_id = entity_id_for_path(ROOT_PATH)
        by_id: dict[str, EntityEntry] = {
            root_id: EntityEntry(root_id, EntityKind.FOLDER, "", ROOT_PATH, None)
        }
        by_path: dict[str, EntityEntry] = {ROOT_PATH: by_id[root_id]}

        def ensure_folder(path: str) -> EntityEntry:
            existing = by_path.get(path)
            if existing is not None:
                return existing
            parent = ensure_folder(parent_path(path))
            entry = EntityEntry(
                id=entity_id_for_path(path),
                kind=EntityKind.FOLDER,
                name=base_name(path),
                path=path,
                parent_id=parent.id,
            )
            by_id[entry.id] = by_path[path] = entry
            return entry

        for ref in entities:
            raw = "/" + ref.path.lstrip("/")
            kind = ref.kind
            if kind == EntityKind.FOLDER:
                ensure_folder(raw.rstrip("/") + "/")
                continue
            parent = ensure_folder(parent_path(raw))
            entry = EntityEntry(
                id=entity_id_for_path(raw),
                kind=kind,
                name=base_name(raw),
                path=raw,
                parent_id=parent.id,
            )
            by_id[entry.id] = by_path[raw] = entry

        self._replace(by_id, root_id)

    def _replace(self, by_id: dict[str, EntityEntry], root_id: str) -> None:
        self._by_id = by_id
        self._by_path = {e.path: e for e in by_id.values()}
        self._root_id = root_id

    # === Structural mutators ===

    def insert(
        self,
        entity_id: str,
        kind: EntityKind,
        name: str,
        parent_id: str | None,
    ) -> EntityEntry:
        """Add an entity under parent_id (the root when unknown).

        Re-inserting an entity at its current path returns the existing
        entry unchanged.
        """
        parent = self._by_id.get(parent_id) if parent_id else None
        if parent is None and self._root_id is not None:
            parent = self._by_id.get(self._root_id)
        path = child_path(parent.path if parent else ROOT_PATH, name, kind)

        existing = self._by_id.get(entity_id)
        if existing is not None and existing.path == path:
            return existing
        if existing is not None:
            self.remove(entity_id)

        occupant = self._by_path.get(path)
        if occupant is not None:
            logger.debug("Replacing %s at %s with %s", occupant.id, path, entity_id)
            self.remove(occupant.id)

        entry = EntityEntry(
            id=entity_id,
            kind=kind,
            name=name,
            path=path,
            parent_id=parent.id if parent else None,
        )
        self._by_id[entity_id] = entry
        self._by_path[path] = entry
        return entry

    def rename(self, entity_id: str, new_name: str) -> tuple[str, str] | None:
        """Rename an entity.

        Returns:
            (old_path, new_path), or None if the id is unknown.
        """
        entry = self._by_id.get(entity_id)
        if entry is None:
            return None
        old_path = entry.path
        new_path = child_path(parent_path(old_path), new_name, entry.kind)
        entry.name = new_name
        if new_path != old_path:
            self._repath(entry, new_path)
        return old_path, new_path

    def move(self, entity_id: str, new_parent_id: str) -> tuple[str, str] | None:
        """Move an entity into another folder.

        Returns:
            (old_path, new_path), or None if the entity or folder is unknown.
        """
        entry = self._by_id.get(entity_id)
        parent = self._by_id.get(new_parent_id)
        if entry is None or parent is None or not parent.is_folder:
            return None
        old_path = entry.path
        new_path = child_path(parent.path, entry.name, entry.kind)
        entry.parent_id = parent.id
        if new_path != old_path:
            self._repath(entry, new_path)
        return old_path, new_path

    def remove(self, entity_id: str) -> list[EntityEntry]:
        """Remove an entity and, for folders, all of its descendants."""
        entry = self._by_id.get(entity_id)
        if entry is None:
            return []
        removed = [entry, *self._descendants(entry)]
        for item in removed:
            self._by_id.pop(item.id, None)
            if self._by_path.get(item.path) is item:
                del self._by_path[item.path]
        if entity_id == self._root_id:
            self._root_id = None
        return removed

    def replace_id(self, old_id: str, new_id: str) -> EntityEntry | None:
        """Re-key an entry whose remote identity changed (e.g. file replaced)."""
        entry = self._by_id.pop(old_id, None)
        if entry is None:
            return None
        entry.id = new_id
        self._by_id[new_id] = entry
        for child in self._by_id.values():
            if child.parent_id == old_id:
                child.parent_id = new_id
        return entry

    def _descendants(self, entry: EntityEntry) -> list[EntityEntry]:
        if not entry.is_folder:
            return []
        prefix = entry.path
        return [
            e for e in self._by_id.values()
            if e is not entry and e.path.startswith(prefix)
        ]

    def _repath(self, entry: EntityEntry, new_path: str) -> None:
        old_path = entry.path
        moved = [entry, *self._descendants(entry)]
        for item in moved:
            if self._by_path.get(item.path) is item:
                del self._by_path[item.path]
        for item in moved:
            item.path = new_path + item.path[len(old_path):]
            occupant = self._by_path.get(item.path)
            if occupant is not None and occupant is not item:
                logger.debug("Evicting %s from %s", occupant.id, item.path)
                self._by_id.pop(occupant.id, None)
            self._by_path[item.path] = item

    # === Diagnostics ===

    def check_consistency(self) -> list[str]:
        """Describe every violation of the index invariants."""
        problems: list[str] = []
        if len(self._by_id) != len(self._by_path):
            problems.append(f"{len(self._by_id)} ids but {len(self._by_path)} paths")
        for entry in self._by_id.values():
            if self._by_path.get(entry.path) is not entry:
                problems.append(f"{entry.id} not indexed at {entry.path}")
            if entry.parent_id is None:
                if entry.path != ROOT_PATH:
                    problems.append(f"{entry.id} has no parent but path {entry.path}")
                continue
            parent = self._by_id.get(entry.parent_id)
            if parent is None:
                problems.append(f"{entry.id} has unknown parent {entry.parent_id}")
            elif child_path(parent.path, entry.name, entry.kind) != entry.path:
                problems.append(f"{entry.id} path {entry.path} does not follow parent {parent.path}")
        return problems
